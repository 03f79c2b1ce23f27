"""Inventory ledger and the shared allocatable-quantity rules.

Stock only changes through ``InventoryLedger.increment`` and
``InventoryLedger.decrement``; each call appends exactly one row to
``stock_movements``. Requisition issuance, production material issuance
and purchase order receiving all validate their lines with
``check_allocation`` before touching stock.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import (
    AuditAction,
    IssueStatus,
    MovementType,
    StockMovement,
    from_row,
    parse_enum,
)
from shopfloor.engines.audit import AuditTrail
from shopfloor.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Fractional quantities (sheet goods, waste-adjusted requirements) are kept
# to four decimal places
QUANTITY_PLACES = 4


def normalize_quantity(value: float) -> float:
    """Round a quantity to ledger precision, keeping whole numbers as int."""
    value = round(float(value), QUANTITY_PLACES)
    return int(value) if value.is_integer() else value


# ── Allocatable lines ────────────────────────────────────────────


@dataclass
class AllocationLine:
    """One line that can be drawn down up to ``limit``.

    ``limit`` is the approved quantity for requisitions, the required
    quantity for production orders and the ordered quantity for purchase
    orders; ``allocated`` is what has already been issued or received.
    ``stock`` is the quantity on hand, or None when stock does not bound
    the operation.
    """

    entity: str
    line_id: int
    label: str
    limit: float
    allocated: float
    stock: Optional[float] = None
    limit_name: str = "approved"
    verb: str = "issue"

    @property
    def remaining(self) -> float:
        return normalize_quantity(self.limit - self.allocated)


def check_allocation(line: AllocationLine, quantity: float) -> float:
    """Validate drawing ``quantity`` from ``line``; return it normalized.

    Raises ValidationError naming the line and the bound that was hit.
    Nothing is ever clamped.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError(
            f"Quantity to {line.verb} for {line.label} must be greater "
            f"than zero",
            entity=line.entity, entity_id=line.line_id,
            field="quantity", limit=0,
        )
    quantity = normalize_quantity(quantity)
    remaining = line.remaining
    if quantity > remaining:
        raise ValidationError(
            f"Cannot {line.verb} {quantity} of {line.label}: only "
            f"{remaining} remaining of {line.limit_name} quantity "
            f"{normalize_quantity(line.limit)}",
            entity=line.entity, entity_id=line.line_id,
            field="quantity", limit=remaining,
        )
    if line.stock is not None and quantity > normalize_quantity(line.stock):
        stock = normalize_quantity(line.stock)
        raise ValidationError(
            f"Insufficient stock for {line.label}: available {stock}, "
            f"requested {quantity}",
            entity=line.entity, entity_id=line.line_id,
            field="quantity", limit=stock,
        )
    return quantity


def issue_status_for(limit: float, allocated: float) -> IssueStatus:
    """Status of a single line after issuing."""
    allocated = normalize_quantity(allocated)
    if allocated <= 0:
        return IssueStatus.PENDING
    if allocated >= normalize_quantity(limit):
        return IssueStatus.ISSUED
    return IssueStatus.PARTIAL


def allocation_progress(lines: Iterable[tuple[float, float]]) -> IssueStatus:
    """Roll ``(limit, allocated)`` pairs up into one status.

    Lines with a zero limit do not count. Fully allocated means the total
    allocated reaches the total limit.
    """
    pairs = [(limit, allocated) for limit, allocated in lines if limit > 0]
    total_limit = normalize_quantity(math.fsum(p[0] for p in pairs))
    total_allocated = normalize_quantity(math.fsum(p[1] for p in pairs))
    if total_limit > 0 and total_allocated >= total_limit:
        return IssueStatus.ISSUED
    if total_allocated > 0:
        return IssueStatus.PARTIAL
    return IssueStatus.PENDING


# ── Inventory ledger ─────────────────────────────────────────────


class InventoryLedger:
    """Atomic stock mutations with movement logging."""

    def __init__(self, db: DatabaseConnection, audit: AuditTrail = None):
        self.db = db
        self.audit = audit or AuditTrail(db)

    @staticmethod
    def fetch_item(conn, item_id: int):
        row = conn.execute(
            "SELECT id, sku, name, quantity, unit_price "
            "FROM inventory_items WHERE id = ?",
            (item_id,),
        ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Inventory item {item_id} not found",
                entity="inventory_item", entity_id=item_id,
            )
        return row

    @staticmethod
    def _record_movement(
        conn, item_id: int, movement_type: MovementType, quantity: float,
        before: float, after: float, reference_type: Optional[str],
        reference_id: Optional[int], reference_number: Optional[str],
        notes: Optional[str], user_id: Optional[int],
    ) -> int:
        cursor = conn.execute(
            "INSERT INTO stock_movements "
            "(item_id, movement_type, quantity, quantity_before, "
            "quantity_after, reference_type, reference_id, "
            "reference_number, notes, created_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (item_id, movement_type.value, quantity, before, after,
             reference_type, reference_id, reference_number, notes, user_id),
        )
        return cursor.lastrowid

    def decrement(
        self, conn, item_id: int, quantity: float, *,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None, user_id: Optional[int] = None,
    ) -> int:
        """Take ``quantity`` out of stock inside ``conn``'s transaction.

        Returns the stock movement id.
        """
        quantity = normalize_quantity(quantity)
        if quantity <= 0:
            raise ValidationError(
                "Quantity to remove must be greater than zero",
                entity="inventory_item", entity_id=item_id,
                field="quantity", limit=0,
            )
        row = self.fetch_item(conn, item_id)
        before = row["quantity"]
        if quantity > before:
            raise ValidationError(
                f"Insufficient stock for {row['name']}: available {before}, "
                f"requested {quantity}",
                entity="inventory_item", entity_id=item_id,
                field="quantity", limit=before,
            )
        after = normalize_quantity(before - quantity)
        conn.execute(
            "UPDATE inventory_items SET quantity = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (after, item_id),
        )
        return self._record_movement(
            conn, item_id, MovementType.OUT, quantity, before, after,
            reference_type, reference_id, reference_number, notes, user_id,
        )

    def increment(
        self, conn, item_id: int, quantity: float, *,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        reference_number: Optional[str] = None,
        notes: Optional[str] = None, user_id: Optional[int] = None,
    ) -> int:
        """Put ``quantity`` into stock inside ``conn``'s transaction."""
        quantity = normalize_quantity(quantity)
        if quantity <= 0:
            raise ValidationError(
                "Quantity to add must be greater than zero",
                entity="inventory_item", entity_id=item_id,
                field="quantity", limit=0,
            )
        row = self.fetch_item(conn, item_id)
        before = row["quantity"]
        after = normalize_quantity(before + quantity)
        conn.execute(
            "UPDATE inventory_items SET quantity = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (after, item_id),
        )
        return self._record_movement(
            conn, item_id, MovementType.IN, quantity, before, after,
            reference_type, reference_id, reference_number, notes, user_id,
        )

    def record_correction(
        self, conn, item_id: int, before: float, after: float,
        notes: Optional[str] = None, user_id: Optional[int] = None,
    ) -> Optional[int]:
        """Log a quantity that was overwritten by a manual item edit."""
        if normalize_quantity(before) == normalize_quantity(after):
            return None
        return self._record_movement(
            conn, item_id, MovementType.ADJUSTMENT,
            normalize_quantity(abs(after - before)), before, after,
            "manual_edit", item_id, None, notes, user_id,
        )

    def adjust_stock(
        self, item_id: int, adjustment_type: str, quantity: float,
        reason: Optional[str] = None, user_id: Optional[int] = None,
    ) -> StockMovement:
        """Manually add or subtract stock. Returns the movement written."""
        if adjustment_type not in ("add", "subtract"):
            raise ValidationError(
                f"Adjustment type must be 'add' or 'subtract', "
                f"got '{adjustment_type}'",
                entity="inventory_item", entity_id=item_id,
                field="adjustment_type", limit=["add", "subtract"],
            )
        with self.db.transaction() as conn:
            before = self.fetch_item(conn, item_id)["quantity"]
            mutate = self.increment if adjustment_type == "add" else self.decrement
            movement_id = mutate(
                conn, item_id, quantity, reference_type="adjustment",
                reference_id=item_id, notes=reason, user_id=user_id,
            )
            row = conn.execute(
                "SELECT * FROM stock_movements WHERE id = ?", (movement_id,)
            ).fetchone()
        movement = from_row(StockMovement, row)
        logger.info(
            f"Stock {adjustment_type} of {movement.quantity} on item "
            f"{item_id}: {before} -> {movement.quantity_after}"
        )
        self.audit.log(
            "inventory_items", item_id, AuditAction.UPDATE,
            {"quantity": before}, {"quantity": movement.quantity_after,
                                   "reason": reason},
            user_id,
        )
        return movement

    def get_stock_movements(
        self, item_id: Optional[int] = None,
        movement_type: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None, limit: int = 100,
    ) -> list[StockMovement]:
        """Movement history, newest first, optionally filtered."""
        sql = (
            "SELECT m.*, i.name AS item_name, i.sku AS item_sku "
            "FROM stock_movements m "
            "JOIN inventory_items i ON m.item_id = i.id WHERE 1 = 1"
        )
        params: list = []
        if item_id is not None:
            sql += " AND m.item_id = ?"
            params.append(item_id)
        if movement_type is not None:
            sql += " AND m.movement_type = ?"
            params.append(
                parse_enum(MovementType, movement_type, "movement_type").value
            )
        if reference_type is not None:
            sql += " AND m.reference_type = ?"
            params.append(reference_type)
        if reference_id is not None:
            sql += " AND m.reference_id = ?"
            params.append(reference_id)
        sql += " ORDER BY m.id DESC LIMIT ?"
        params.append(limit)
        rows = self.db.execute(sql, tuple(params))
        return [from_row(StockMovement, r) for r in rows]
