"""Standalone import script: upsert inventory items by SKU from CSV or XLSX."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shopfloor.app import configure_logging, create_services
from shopfloor.io.csv_handler import import_inventory_csv
from shopfloor.io.excel_handler import import_inventory_excel


def main():
    if len(sys.argv) < 2:
        print("Usage: python import_inventory.py <file.csv|file.xlsx>")
        sys.exit(1)

    filepath = Path(sys.argv[1])
    configure_logging()
    services = create_services()

    print(f"Importing from: {filepath}")
    if filepath.suffix.lower() == ".xlsx":
        results = import_inventory_excel(services.repo, filepath)
    else:
        results = import_inventory_csv(services.repo, filepath)

    print("\nResults:")
    print(f"  Imported: {results['imported']}")
    print(f"  Updated:  {results['updated']}")
    print(f"  Skipped:  {results['skipped']}")

    if results["errors"]:
        print(f"\nErrors ({len(results['errors'])}):")
        for err in results["errors"]:
            print(f"  - {err}")
        sys.exit(1)


if __name__ == "__main__":
    main()
