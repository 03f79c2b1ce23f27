"""Database backup script: creates a timestamped SQLite backup."""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shopfloor.app import configure_logging
from shopfloor.config import Config
from shopfloor.utils.backup import backup_database


if __name__ == "__main__":
    configure_logging()
    backup = backup_database(
        Config.DATABASE_PATH, Config.BACKUP_PATH, Config.BACKUP_KEEP
    )
    sys.exit(0 if backup else 1)
