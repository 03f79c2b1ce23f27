"""SQLite database connection management."""

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shopfloor.config import Config


@dataclass(frozen=True)
class StatementResult:
    """Outcome of a single write statement."""

    id: Optional[int]
    changes: int


class DatabaseConnection:
    """Manages SQLite connections with WAL mode and foreign keys.

    Every unit of work opens a fresh connection, so the store may be closed
    and reopened (e.g. during a backup) between calls.
    """

    def __init__(self, db_path: str | Path, timeout: float | None = None):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = Config.DB_BUSY_TIMEOUT if timeout is None else timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self):
        """Yield a connection that commits on success, rolls back on error."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """Yield a connection inside an explicit write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock before the first read, so
        validate-then-mutate sequences see no interleaved writers. Any
        exception rolls the whole unit back.
        """
        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Run a query and return all rows."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def run_statement(self, sql: str, params: tuple = ()) -> StatementResult:
        """Run a single write statement and report the new row id and changes."""
        with self.get_connection() as conn:
            cursor = conn.execute(sql, params)
            return StatementResult(id=cursor.lastrowid, changes=cursor.rowcount)

    def execute_script(self, sql_script: str):
        """Execute a multi-statement SQL script."""
        with self.get_connection() as conn:
            conn.executescript(sql_script)
