"""Application configuration: loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "shopfloor.db"))
    )
    BACKUP_PATH: Path = Path(
        os.getenv("DATABASE_BACKUP_PATH", str(_PROJECT_ROOT / "data" / "backups"))
    )
    BACKUP_KEEP: int = int(os.getenv("DATABASE_BACKUP_KEEP", "10"))

    # Seconds a writer waits on a locked store before giving up
    DB_BUSY_TIMEOUT: float = float(os.getenv("DB_BUSY_TIMEOUT", "30"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Document numbering (settings.json overrides .env)
    PO_NUMBER_PREFIX: str = _runtime.get(
        "po_number_prefix",
        os.getenv("PO_NUMBER_PREFIX", "PO"),
    )
    PRODUCTION_ORDER_PREFIX: str = _runtime.get(
        "production_order_prefix",
        os.getenv("PRODUCTION_ORDER_PREFIX", "PRO"),
    )
    REQUISITION_REFERENCE_PREFIX: str = _runtime.get(
        "requisition_reference_prefix",
        os.getenv("REQUISITION_REFERENCE_PREFIX", "REQ"),
    )

    # Costing
    PO_TAX_RATE: float = float(_runtime.get(
        "po_tax_rate",
        os.getenv("PO_TAX_RATE", "0.10"),
    ))
    DEFAULT_LABOR_RATE: float = float(_runtime.get(
        "default_labor_rate",
        os.getenv("DEFAULT_LABOR_RATE", "25.0"),
    ))
    DEFAULT_WASTE_FACTOR: float = float(_runtime.get(
        "default_waste_factor",
        os.getenv("DEFAULT_WASTE_FACTOR", "0.05"),
    ))

    @classmethod
    def update_numbering_settings(
        cls, po_prefix: str, production_prefix: str,
        requisition_prefix: str,
    ):
        """Update document number prefixes and persist."""
        cls.PO_NUMBER_PREFIX = po_prefix
        cls.PRODUCTION_ORDER_PREFIX = production_prefix
        cls.REQUISITION_REFERENCE_PREFIX = requisition_prefix

        settings = _load_settings()
        settings.update({
            "po_number_prefix": po_prefix,
            "production_order_prefix": production_prefix,
            "requisition_reference_prefix": requisition_prefix,
        })
        _save_settings(settings)

    @classmethod
    def update_costing_settings(
        cls, po_tax_rate: float, default_labor_rate: float,
        default_waste_factor: float,
    ):
        """Update costing defaults and persist."""
        if po_tax_rate < 0 or default_labor_rate < 0 or default_waste_factor < 0:
            raise ValueError("Costing settings cannot be negative")
        cls.PO_TAX_RATE = po_tax_rate
        cls.DEFAULT_LABOR_RATE = default_labor_rate
        cls.DEFAULT_WASTE_FACTOR = default_waste_factor

        settings = _load_settings()
        settings.update({
            "po_tax_rate": po_tax_rate,
            "default_labor_rate": default_labor_rate,
            "default_waste_factor": default_waste_factor,
        })
        _save_settings(settings)
