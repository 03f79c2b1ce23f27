"""Standalone export script: write inventory or stock movements to a file."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shopfloor.app import configure_logging, create_services
from shopfloor.io.csv_handler import (
    export_inventory_csv,
    export_stock_movements_csv,
)
from shopfloor.io.excel_handler import export_inventory_excel


def main():
    if len(sys.argv) < 3:
        print("Usage: python export_inventory.py <inventory|movements> "
              "<output.csv|output.xlsx>")
        sys.exit(1)

    data_type = sys.argv[1].lower()
    filepath = Path(sys.argv[2])

    configure_logging()
    services = create_services()

    if data_type == "inventory" and filepath.suffix.lower() == ".xlsx":
        count = export_inventory_excel(services.repo, filepath)
    elif data_type == "inventory":
        count = export_inventory_csv(services.repo, filepath)
    elif data_type == "movements":
        count = export_stock_movements_csv(services.repo, filepath)
    else:
        print(f"Unknown data type: {data_type}. "
              f"Use 'inventory' or 'movements'.")
        sys.exit(1)

    print(f"Exported {count} {data_type} rows to {filepath}")


if __name__ == "__main__":
    main()
