"""Audit trail sink.

Writes happen on their own connection after the business transaction has
committed. A failed write is logged and dropped; it never fails the
operation being audited.
"""

import json
import logging
import sqlite3
from dataclasses import asdict, is_dataclass
from typing import Any, Optional

from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import AuditAction, AuditEntry, from_row

logger = logging.getLogger(__name__)


def _encode(values: Any) -> Optional[str]:
    if values is None:
        return None
    if is_dataclass(values):
        values = asdict(values)
    return json.dumps(values, default=str)


class AuditTrail:
    """Fire-and-forget recorder for inserts, updates and deletes."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def log(
        self, table_name: str, record_id: Optional[int],
        action: AuditAction | str, old_values: Any = None,
        new_values: Any = None, user_id: Optional[int] = None,
    ) -> Optional[int]:
        """Record one change. Returns the entry id, or None if it was lost."""
        try:
            action = AuditAction(action).value
            result = self.db.run_statement(
                "INSERT INTO audit_trail "
                "(table_name, record_id, action, old_values, new_values, "
                "user_id) VALUES (?, ?, ?, ?, ?, ?)",
                (table_name, record_id, action, _encode(old_values),
                 _encode(new_values), user_id),
            )
            return result.id
        except (sqlite3.Error, TypeError, ValueError):
            logger.exception(
                f"Failed to write audit entry for {table_name} #{record_id}"
            )
            return None

    def get_trail(self, table_name: str, record_id: int) -> list[AuditEntry]:
        """All entries for one record, newest first."""
        rows = self.db.execute(
            "SELECT * FROM audit_trail WHERE table_name = ? AND record_id = ? "
            "ORDER BY timestamp DESC, id DESC",
            (table_name, record_id),
        )
        return [from_row(AuditEntry, r) for r in rows]
