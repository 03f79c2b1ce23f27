"""CSV import and export for inventory and stock movements."""

import csv
import logging
from pathlib import Path
from typing import Iterable, Optional

from shopfloor.database.models import InventoryItem, ItemType
from shopfloor.database.repository import Repository
from shopfloor.errors import ShopfloorError
from shopfloor.io.validators import validate_inventory_row

logger = logging.getLogger(__name__)

INVENTORY_CSV_COLUMNS = [
    "sku", "name", "description", "item_type", "category", "unit",
    "supplier", "location", "quantity", "min_quantity", "max_quantity",
    "unit_price", "notes",
]

MOVEMENT_CSV_COLUMNS = [
    "date", "sku", "item", "movement_type", "quantity", "quantity_before",
    "quantity_after", "reference_type", "reference_number", "notes",
]


def inventory_row(item: InventoryItem) -> dict:
    """One export row for an item, keyed by INVENTORY_CSV_COLUMNS."""
    return {
        "sku": item.sku,
        "name": item.name,
        "description": item.description,
        "item_type": item.item_type,
        "category": item.category_name,
        "unit": item.unit_name,
        "supplier": item.supplier_name,
        "location": item.location,
        "quantity": item.quantity,
        "min_quantity": item.min_quantity,
        "max_quantity": item.max_quantity,
        "unit_price": item.unit_price,
        "notes": item.notes,
    }


def _as_int(value, default: int = 0) -> int:
    return int(float(value)) if value not in ("", None) else default


def import_inventory_rows(
    repo: Repository, rows: Iterable[tuple[int, dict]],
    user_id: Optional[int] = None,
) -> dict:
    """Upsert ``(row_num, row)`` pairs by SKU. Returns counts and errors.

    Invalid rows are skipped and reported; valid rows are still imported.
    """
    results = {"imported": 0, "updated": 0, "skipped": 0, "errors": []}

    categories = {c.name: c.id for c in repo.get_all_categories()}
    units = {u.abbreviation: u.id for u in repo.get_all_units()}
    units.update({u.name: u.id for u in repo.get_all_units()})
    suppliers = {s.name: s.id for s in repo.get_all_suppliers()}

    for row_num, row in rows:
        errors = validate_inventory_row(row, row_num)
        if errors:
            results["errors"].extend(errors)
            results["skipped"] += 1
            continue

        sku = row["sku"].strip()
        existing = repo.get_item_by_sku(sku)
        item = InventoryItem(
            id=existing.id if existing else None,
            sku=sku,
            name=row.get("name", "").strip(),
            description=row.get("description", "").strip() or None,
            item_type=row.get("item_type", "").strip()
            or (existing.item_type if existing else ItemType.RAW_MATERIAL.value),
            category_id=categories.get(row.get("category", "").strip()),
            unit_id=units.get(row.get("unit", "").strip()),
            supplier_id=suppliers.get(row.get("supplier", "").strip()),
            location=row.get("location", "").strip() or None,
            quantity=_as_int(row.get("quantity")),
            min_quantity=_as_int(row.get("min_quantity")),
            max_quantity=_as_int(row.get("max_quantity"), 1000),
            unit_price=float(row.get("unit_price", 0) or 0),
            notes=row.get("notes", "").strip() or None,
        )

        try:
            if existing:
                repo.update_item(item, user_id)
                results["updated"] += 1
            else:
                repo.create_item(item, user_id)
                results["imported"] += 1
        except ShopfloorError as e:
            results["errors"].append(f"Row {row_num}: {e}")
            results["skipped"] += 1

    logger.info(
        f"Inventory import: {results['imported']} new, "
        f"{results['updated']} updated, {results['skipped']} skipped"
    )
    return results


def export_inventory_csv(repo: Repository, filepath: str | Path) -> int:
    """Export all inventory items to CSV. Returns the number of rows written."""
    items = repo.get_all_items()
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=INVENTORY_CSV_COLUMNS)
        writer.writeheader()
        for item in items:
            writer.writerow(inventory_row(item))
    return len(items)


def import_inventory_csv(
    repo: Repository, filepath: str | Path, user_id: Optional[int] = None,
) -> dict:
    """Import inventory from CSV, updating items whose SKU already exists."""
    filepath = Path(filepath)
    try:
        with open(filepath, "r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            rows = [
                (row_num, {k: (v or "") for k, v in row.items() if k})
                for row_num, row in enumerate(reader, start=2)
            ]
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        return {"imported": 0, "updated": 0, "skipped": 0,
                "errors": [f"File error: {e}"]}
    return import_inventory_rows(repo, rows, user_id)


def export_stock_movements_csv(
    repo: Repository, filepath: str | Path,
    item_id: Optional[int] = None, limit: int = 10000,
) -> int:
    """Export stock movement history, newest first. Returns the row count."""
    movements = repo.ledger.get_stock_movements(item_id=item_id, limit=limit)
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=MOVEMENT_CSV_COLUMNS)
        writer.writeheader()
        for m in movements:
            writer.writerow({
                "date": m.created_at,
                "sku": m.item_sku,
                "item": m.item_name,
                "movement_type": m.movement_type,
                "quantity": m.quantity,
                "quantity_before": m.quantity_before,
                "quantity_after": m.quantity_after,
                "reference_type": m.reference_type,
                "reference_number": m.reference_number,
                "notes": m.notes,
            })
    return len(movements)
