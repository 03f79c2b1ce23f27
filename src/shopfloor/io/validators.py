"""Validation rules for import data."""

from shopfloor.database.models import ItemType

_ITEM_TYPES = [t.value for t in ItemType]


def _check_int(row: dict, name: str, row_num: int, errors: list[str]):
    value = row.get(name, "")
    if value == "":
        return
    try:
        number = float(value)
    except (ValueError, TypeError):
        errors.append(f"Row {row_num}: {name} must be an integer")
        return
    if not number.is_integer():
        errors.append(f"Row {row_num}: {name} must be an integer")
    elif number < 0:
        errors.append(f"Row {row_num}: {name} cannot be negative")


def validate_inventory_row(row: dict, row_num: int) -> list[str]:
    """Validate a single row of inventory import data. Returns error strings."""
    errors = []

    sku = row.get("sku", "").strip()
    if not sku:
        errors.append(f"Row {row_num}: sku is required")
    elif len(sku) > 50:
        errors.append(f"Row {row_num}: sku exceeds 50 chars")

    if not row.get("name", "").strip():
        errors.append(f"Row {row_num}: name is required")

    item_type = row.get("item_type", "").strip()
    if item_type and item_type not in _ITEM_TYPES:
        errors.append(
            f"Row {row_num}: item_type must be one of {', '.join(_ITEM_TYPES)}"
        )

    for name in ("quantity", "min_quantity", "max_quantity"):
        _check_int(row, name, row_num, errors)

    price = row.get("unit_price", "")
    if price != "":
        try:
            if float(price) < 0:
                errors.append(f"Row {row_num}: unit_price cannot be negative")
        except (ValueError, TypeError):
            errors.append(f"Row {row_num}: unit_price must be a number")

    return errors
