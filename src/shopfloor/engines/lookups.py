"""Row lookups shared by the engines; missing rows raise NotFoundError."""

from typing import Optional

from shopfloor.errors import NotFoundError, PermissionDeniedError


def require_row(conn, table: str, row_id: int, entity: Optional[str] = None):
    """Fetch ``table.id = row_id`` inside ``conn`` or raise NotFoundError."""
    row = conn.execute(
        f"SELECT * FROM {table} WHERE id = ?", (row_id,)
    ).fetchone()
    if row is None:
        entity = entity or table.rstrip("s")
        label = entity.replace("_", " ").capitalize()
        raise NotFoundError(
            f"{label} {row_id} not found", entity=entity, entity_id=row_id,
        )
    return row


def require_user(conn, user_id: int):
    return require_row(conn, "users", user_id, "user")


def require_authorized(authorized: bool, action: str, entity: str,
                       entity_id: Optional[int] = None):
    """Refuse when the caller's pre-checked permission is false."""
    if not authorized:
        raise PermissionDeniedError(
            f"Not authorized to {action}", entity=entity, entity_id=entity_id,
        )
