"""Application entry point: wires the database, repository and engines."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shopfloor.config import Config
from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.repository import Repository
from shopfloor.database.schema import initialize_database
from shopfloor.engines.audit import AuditTrail
from shopfloor.engines.boms import BOMService
from shopfloor.engines.cabinets import CabinetCostCalculator
from shopfloor.engines.kitchen_projects import KitchenProjectService
from shopfloor.engines.ledger import InventoryLedger
from shopfloor.engines.production import ProductionOrderEngine
from shopfloor.engines.purchasing import PurchaseOrderEngine
from shopfloor.engines.requisitions import RequisitionEngine
from shopfloor.utils.constants import APP_NAME, APP_VERSION
from shopfloor.utils.formatters import format_currency

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    """Apply ``Config.LOG_LEVEL`` (or ``level``) to the root logger."""
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL).upper(),
                      logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class Services:
    """Everything a caller needs, sharing one store and audit trail."""

    db: DatabaseConnection
    repo: Repository
    audit: AuditTrail
    ledger: InventoryLedger
    requisitions: RequisitionEngine
    cabinets: CabinetCostCalculator
    kitchen_projects: KitchenProjectService
    boms: BOMService
    production: ProductionOrderEngine
    purchasing: PurchaseOrderEngine


def create_services(db_path: str | Path | None = None) -> Services:
    """Open (and if needed create) the database and build the engines."""
    db = DatabaseConnection(db_path or Config.DATABASE_PATH)
    initialize_database(db)

    audit = AuditTrail(db)
    repo = Repository(db, audit)
    ledger = repo.ledger
    cabinets = CabinetCostCalculator(repo)
    boms = BOMService(db, audit)
    return Services(
        db=db,
        repo=repo,
        audit=audit,
        ledger=ledger,
        requisitions=RequisitionEngine(db, audit, ledger),
        cabinets=cabinets,
        kitchen_projects=KitchenProjectService(db, cabinets, boms, audit),
        boms=boms,
        production=ProductionOrderEngine(db, audit, ledger),
        purchasing=PurchaseOrderEngine(db, audit, ledger),
    )


def main():
    """Initialize the database and report the inventory position."""
    configure_logging()
    services = create_services()
    summary = services.repo.get_inventory_summary()
    logger.info(
        f"{APP_NAME} {APP_VERSION} ready at {services.db.db_path}: "
        f"{summary['item_count']} items, {summary['total_units']} units, "
        f"value {format_currency(summary['total_value'])}, "
        f"{summary['low_stock_count']} low on stock"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
