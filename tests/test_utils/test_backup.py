"""Tests for database backups."""

import sqlite3

from shopfloor.utils.backup import BACKUP_PREFIX, backup_database


class TestBackupDatabase:
    def test_copies_live_database(self, services, make_item, tmp_path):
        make_item("Plywood", quantity=12)
        backup_dir = tmp_path / "backups"

        backup = backup_database(services.db.db_path, backup_dir)
        assert backup.parent == backup_dir
        assert backup.name.startswith(BACKUP_PREFIX)

        conn = sqlite3.connect(backup)
        try:
            row = conn.execute(
                "SELECT name, quantity FROM inventory_items"
            ).fetchone()
        finally:
            conn.close()
        assert row == ("Plywood", 12)

    def test_missing_database(self, tmp_path):
        assert backup_database(tmp_path / "none.db", tmp_path / "b") is None
        assert not (tmp_path / "b").exists()

    def test_rotation_keeps_newest(self, db_path, db, tmp_path):
        backup_dir = tmp_path / "backups"
        made = [backup_database(db_path, backup_dir, keep=2)
                for _ in range(4)]

        remaining = sorted(backup_dir.glob(f"{BACKUP_PREFIX}*.db"))
        assert remaining == sorted(made[-2:])
