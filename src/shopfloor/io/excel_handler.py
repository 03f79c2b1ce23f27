"""Excel (XLSX) import and export for inventory."""

from pathlib import Path
from typing import Optional
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from shopfloor.database.repository import Repository
from shopfloor.io.csv_handler import (
    INVENTORY_CSV_COLUMNS,
    import_inventory_rows,
    inventory_row,
)

_HEADERS = [
    "SKU", "Name", "Description", "Item Type", "Category", "Unit",
    "Supplier", "Location", "Quantity", "Min Qty", "Max Qty",
    "Unit Price", "Notes",
]

# Spreadsheet header variations -> import column
_HEADER_MAP = {
    "sku_number": "sku",
    "item_number": "sku",
    "qty": "quantity",
    "min_qty": "min_quantity",
    "max_qty": "max_quantity",
    "price": "unit_price",
    "type": "item_type",
}


def export_inventory_excel(repo: Repository, filepath: str | Path) -> int:
    """Export all inventory items to an Excel workbook. Returns row count."""
    items = repo.get_all_items()
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"
    ws.append(_HEADERS)

    for item in items:
        row = inventory_row(item)
        ws.append([row[c] for c in INVENTORY_CSV_COLUMNS])

    # Auto-fit column widths (approximate)
    for col in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col)
        ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 40)

    wb.save(filepath)
    return len(items)


def _normalize_header(value) -> str:
    header = (str(value or "").strip().lower()
              .replace(" ", "_").replace("#", "number"))
    return _HEADER_MAP.get(header, header)


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def import_inventory_excel(
    repo: Repository, filepath: str | Path, user_id: Optional[int] = None,
) -> dict:
    """Import inventory from the first sheet, upserting by SKU."""
    filepath = Path(filepath)
    try:
        wb = load_workbook(filepath, read_only=True)
    except (OSError, BadZipFile, InvalidFileException, KeyError) as e:
        return {"imported": 0, "updated": 0, "skipped": 0,
                "errors": [f"File error: {e}"]}
    try:
        rows = list(wb.active.iter_rows(values_only=True))
    finally:
        wb.close()

    if not rows:
        return {"imported": 0, "updated": 0, "skipped": 0,
                "errors": ["Empty workbook"]}

    header = [_normalize_header(h) for h in rows[0]]
    parsed = [
        (row_num, dict(zip(header, [_cell_text(v) for v in row_data])))
        for row_num, row_data in enumerate(rows[1:], start=2)
        if any(v is not None for v in row_data)
    ]
    return import_inventory_rows(repo, parsed, user_id)
