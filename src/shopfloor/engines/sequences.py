"""Atomic document number issuing."""

from datetime import datetime
from typing import Optional


def next_sequence_value(conn, name: str, period: int) -> int:
    """Increment and return the counter for ``(name, period)``.

    Must run inside the caller's write transaction so the number is
    consumed only if the document that uses it is committed.
    """
    conn.execute(
        "INSERT INTO document_sequences (name, period, last_value) "
        "VALUES (?, ?, 1) "
        "ON CONFLICT (name, period) DO UPDATE SET last_value = last_value + 1",
        (name, period),
    )
    row = conn.execute(
        "SELECT last_value FROM document_sequences "
        "WHERE name = ? AND period = ?",
        (name, period),
    ).fetchone()
    return row["last_value"]


def next_document_number(
    conn, prefix: str, when: Optional[datetime] = None, width: int = 4,
) -> str:
    """Issue the next ``{prefix}-{year}-{n}`` number, e.g. ``PO-2026-0001``."""
    year = (when or datetime.now()).year
    value = next_sequence_value(conn, prefix, year)
    return f"{prefix}-{year}-{value:0{width}d}"
