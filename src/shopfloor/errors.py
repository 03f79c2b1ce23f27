"""Domain error taxonomy shared by every engine.

All errors subclass ``ValueError`` so callers that only care about
"the request was refused" can keep catching that.
"""

from typing import Any, Optional


class ShopfloorError(ValueError):
    """Base class for refused operations."""

    def __init__(
        self, message: str, *, entity: Optional[str] = None,
        entity_id: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(ShopfloorError):
    """Caller input violates a precondition.

    ``field`` names the offending attribute and ``limit`` carries the bound
    that was exceeded (remaining approved quantity, stock on hand, a
    dimension range, ...).
    """

    def __init__(
        self, message: str, *, entity: Optional[str] = None,
        entity_id: Any = None, field: Optional[str] = None,
        limit: Any = None,
    ):
        super().__init__(message, entity=entity, entity_id=entity_id)
        self.field = field
        self.limit = limit


class NotFoundError(ShopfloorError):
    """Referenced record does not exist or is not linked as expected."""


class ConflictError(ShopfloorError):
    """Operation conflicts with the current state of stored data."""


class PermissionDeniedError(ShopfloorError):
    """The caller was not authorized for the operation."""
