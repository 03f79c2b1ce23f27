"""Online SQLite backups with rotation."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "shopfloor_"


def backup_database(
    db_path: str | Path, backup_dir: str | Path, keep: int = 10,
) -> Optional[Path]:
    """Copy the database into ``backup_dir`` with a timestamp.

    Uses sqlite3's online backup API, so a WAL-mode store with open
    connections is copied consistently. Only the newest ``keep`` backups
    are retained. Returns the new file, or None if there is no database.
    """
    db_path = Path(db_path)
    backup_dir = Path(backup_dir)
    if not db_path.exists():
        logger.warning(f"Database not found at {db_path}")
        return None
    backup_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    backup_file = backup_dir / f"{BACKUP_PREFIX}{timestamp}.db"
    source = sqlite3.connect(str(db_path))
    try:
        target = sqlite3.connect(str(backup_file))
        try:
            source.backup(target)
        finally:
            target.close()
    finally:
        source.close()
    logger.info(f"Backup created: {backup_file}")

    backups = sorted(backup_dir.glob(f"{BACKUP_PREFIX}*.db"), reverse=True)
    for old in backups[max(keep, 1):]:
        old.unlink()
        logger.info(f"Removed old backup: {old.name}")
    return backup_file
