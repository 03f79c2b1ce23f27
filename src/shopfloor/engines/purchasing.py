"""Purchase order engine: ordering, approval and goods receiving."""

import logging
import math
from datetime import date
from typing import Iterable, Optional, Sequence

from shopfloor.config import Config
from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import (
    AuditAction,
    IssueStatus,
    Priority,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderLine,
    PurchaseOrderStatus,
    ReceiptLine,
    from_row,
    parse_enum,
)
from shopfloor.engines.audit import AuditTrail
from shopfloor.engines.ledger import (
    AllocationLine,
    InventoryLedger,
    allocation_progress,
    check_allocation,
)
from shopfloor.engines.lookups import (
    require_authorized,
    require_row,
    require_user,
)
from shopfloor.engines.sequences import next_document_number
from shopfloor.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.utils.constants import (
    PURCHASE_ORDER_STATUS_TRANSITIONS,
    REFERENCE_PURCHASE_ORDER,
)

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = (
    PurchaseOrderStatus.SENT,
    PurchaseOrderStatus.PARTIALLY_RECEIVED,
)
DELETABLE_STATUSES = (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.CANCELLED)
# Requisitions whose approved lines can be turned into an order
ORDERABLE_REQUISITION_STATUSES = (
    "approved", "partially_approved", "partially_issued", "issued",
)


def calculate_po_totals(
    lines: Iterable[tuple[int, float]], tax_rate: float,
    shipping_cost: float = 0.0,
) -> dict:
    """Totals for ``(quantity, unit_price)`` lines."""
    subtotal = math.fsum(quantity * price for quantity, price in lines)
    tax_amount = round(subtotal * tax_rate, 2)
    return {
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "shipping_cost": shipping_cost,
        "total_amount": subtotal + tax_amount + shipping_cost,
    }


class PurchaseOrderEngine:
    """Purchase order lifecycle with receiving into stock."""

    def __init__(self, db: DatabaseConnection, audit: AuditTrail = None,
                 ledger: InventoryLedger = None):
        self.db = db
        self.audit = audit or AuditTrail(db)
        self.ledger = ledger or InventoryLedger(db, self.audit)

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _fetch_header(conn, po_id: int):
        return require_row(conn, "purchase_orders", po_id, "purchase_order")

    @staticmethod
    def _fetch_lines(conn, po_id: int):
        return conn.execute(
            "SELECT * FROM purchase_order_items WHERE po_id = ? ORDER BY id",
            (po_id,),
        ).fetchall()

    @staticmethod
    def _validate_lines(lines: Sequence[PurchaseOrderLine]):
        if not lines:
            raise ValidationError(
                "A purchase order needs at least one line",
                entity="purchase_order", field="items",
            )
        for line in lines:
            if isinstance(line.quantity, bool) or \
                    not isinstance(line.quantity, int) or line.quantity <= 0:
                raise ValidationError(
                    f"Quantity for item {line.item_id} must be a whole "
                    f"number greater than zero",
                    entity="purchase_order_item", entity_id=line.item_id,
                    field="quantity", limit=0,
                )
            if line.unit_price is None or line.unit_price < 0:
                raise ValidationError(
                    f"Unit price for item {line.item_id} cannot be negative",
                    entity="purchase_order_item", entity_id=line.item_id,
                    field="unit_price", limit=0,
                )

    @staticmethod
    def _validate_shipping(shipping_cost: float):
        if shipping_cost is None or shipping_cost < 0:
            raise ValidationError(
                "Shipping cost cannot be negative", entity="purchase_order",
                field="shipping_cost", limit=0,
            )

    @staticmethod
    def _insert_lines(conn, po_id: int, lines: Sequence[PurchaseOrderLine]):
        for line in lines:
            require_row(conn, "inventory_items", line.item_id,
                        "inventory_item")
            conn.execute(
                "INSERT INTO purchase_order_items "
                "(po_id, item_id, quantity, unit_price, total_price, notes) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (po_id, line.item_id, line.quantity, line.unit_price,
                 line.quantity * line.unit_price, line.notes),
            )

    # ── Create / read ───────────────────────────────────────────

    def create_purchase_order(
        self, supplier_id: int, title: str,
        lines: Sequence[PurchaseOrderLine], created_by: int, *,
        description: Optional[str] = None,
        priority: str = Priority.MEDIUM.value,
        requisition_id: Optional[int] = None,
        order_date: Optional[str] = None,
        expected_delivery_date: Optional[str] = None,
        shipping_cost: float = 0.0, notes: Optional[str] = None,
    ) -> int:
        """Create a draft purchase order; returns its id."""
        if not title or not title.strip():
            raise ValidationError("Purchase order title is required",
                                  entity="purchase_order", field="title")
        self._validate_lines(lines)
        self._validate_shipping(shipping_cost)
        priority = parse_enum(Priority, priority, "priority", "purchase_order")
        totals = calculate_po_totals(
            [(line.quantity, line.unit_price) for line in lines],
            Config.PO_TAX_RATE, shipping_cost,
        )

        with self.db.transaction() as conn:
            require_user(conn, created_by)
            require_row(conn, "suppliers", supplier_id, "supplier")
            if requisition_id is not None:
                require_row(conn, "requisitions", requisition_id,
                            "requisition")
            po_number = next_document_number(conn, Config.PO_NUMBER_PREFIX)
            cursor = conn.execute(
                "INSERT INTO purchase_orders "
                "(po_number, title, description, supplier_id, "
                "requisition_id, priority, order_date, "
                "expected_delivery_date, subtotal, tax_amount, "
                "shipping_cost, total_amount, notes, created_by) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (po_number, title.strip(), description, supplier_id,
                 requisition_id, priority.value, order_date,
                 expected_delivery_date, totals["subtotal"],
                 totals["tax_amount"], totals["shipping_cost"],
                 totals["total_amount"], notes, created_by),
            )
            po_id = cursor.lastrowid
            self._insert_lines(conn, po_id, lines)

        logger.info(
            f"Created purchase order {po_number} "
            f"({len(lines)} lines, total {totals['total_amount']:.2f})"
        )
        self.audit.log(
            "purchase_orders", po_id, AuditAction.INSERT, None,
            {"po_number": po_number, "supplier_id": supplier_id, **totals},
            created_by,
        )
        return po_id

    def create_from_requisition(
        self, requisition_id: int, supplier_id: int, created_by: int, *,
        title: Optional[str] = None, shipping_cost: float = 0.0,
        expected_delivery_date: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Order the approved quantities of a requisition at list price."""
        with self.db.get_connection() as conn:
            header = require_row(conn, "requisitions", requisition_id,
                                 "requisition")
            rows = conn.execute(
                "SELECT ri.item_id, ri.approved_quantity, i.unit_price "
                "FROM requisition_items ri "
                "JOIN inventory_items i ON ri.item_id = i.id "
                "WHERE ri.requisition_id = ? AND ri.approved_quantity > 0 "
                "ORDER BY ri.id",
                (requisition_id,),
            ).fetchall()
        if header["status"] not in ORDERABLE_REQUISITION_STATUSES:
            raise ConflictError(
                f"Requisition {requisition_id} is {header['status']}; only "
                f"approved requisitions can be ordered",
                entity="requisition", entity_id=requisition_id,
            )
        if not rows:
            raise ValidationError(
                f"Requisition {requisition_id} has no approved lines",
                entity="requisition", entity_id=requisition_id,
                field="items",
            )
        lines = [
            PurchaseOrderLine(item_id=r["item_id"],
                              quantity=r["approved_quantity"],
                              unit_price=r["unit_price"])
            for r in rows
        ]
        return self.create_purchase_order(
            supplier_id, title or f"Purchase for {header['title']}", lines,
            created_by, description=header["description"],
            priority=header["priority"], requisition_id=requisition_id,
            expected_delivery_date=expected_delivery_date,
            shipping_cost=shipping_cost, notes=notes,
        )

    def get_purchase_order(self, po_id: int) -> Optional[PurchaseOrder]:
        rows = self.db.execute(
            "SELECT po.*, s.name AS supplier_name FROM purchase_orders po "
            "JOIN suppliers s ON po.supplier_id = s.id WHERE po.id = ?",
            (po_id,),
        )
        if not rows:
            return None
        order = from_row(PurchaseOrder, rows[0])
        items = self.db.execute(
            "SELECT poi.*, i.name AS item_name, i.sku AS item_sku "
            "FROM purchase_order_items poi "
            "JOIN inventory_items i ON poi.item_id = i.id "
            "WHERE poi.po_id = ? ORDER BY poi.id",
            (po_id,),
        )
        order.items = [from_row(PurchaseOrderItem, r) for r in items]
        return order

    def list_purchase_orders(
        self, status: Optional[str] = None,
        supplier_id: Optional[int] = None, limit: int = 50, offset: int = 0,
    ) -> list[PurchaseOrder]:
        sql = (
            "SELECT po.*, s.name AS supplier_name FROM purchase_orders po "
            "JOIN suppliers s ON po.supplier_id = s.id WHERE 1 = 1"
        )
        params: list = []
        if status is not None:
            sql += " AND po.status = ?"
            params.append(
                parse_enum(PurchaseOrderStatus, status, "status").value
            )
        if supplier_id is not None:
            sql += " AND po.supplier_id = ?"
            params.append(supplier_id)
        sql += " ORDER BY po.created_at DESC, po.id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [from_row(PurchaseOrder, r)
                for r in self.db.execute(sql, tuple(params))]

    def update_purchase_order(
        self, po_id: int, user_id: int, *, title: Optional[str] = None,
        description: Optional[str] = None, priority: Optional[str] = None,
        expected_delivery_date: Optional[str] = None,
        shipping_cost: Optional[float] = None, notes: Optional[str] = None,
        lines: Optional[Sequence[PurchaseOrderLine]] = None,
        authorized: bool,
    ) -> dict:
        """Edit a draft order; replacing lines recomputes the totals."""
        require_authorized(authorized, "edit purchase orders",
                           "purchase_order", po_id)
        if priority is not None:
            priority = parse_enum(Priority, priority, "priority",
                                  "purchase_order", po_id).value
        if shipping_cost is not None:
            self._validate_shipping(shipping_cost)
        if lines is not None:
            self._validate_lines(lines)

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, po_id)
            if header["status"] != PurchaseOrderStatus.DRAFT.value:
                raise ConflictError(
                    f"Purchase order {header['po_number']} is "
                    f"{header['status']}; only drafts can be edited",
                    entity="purchase_order", entity_id=po_id,
                )
            if lines is not None:
                conn.execute("DELETE FROM purchase_order_items WHERE po_id = ?",
                             (po_id,))
                self._insert_lines(conn, po_id, lines)
            totals = calculate_po_totals(
                [(r["quantity"], r["unit_price"])
                 for r in self._fetch_lines(conn, po_id)],
                Config.PO_TAX_RATE,
                header["shipping_cost"] if shipping_cost is None
                else shipping_cost,
            )
            conn.execute(
                "UPDATE purchase_orders SET title = COALESCE(?, title), "
                "description = COALESCE(?, description), "
                "priority = COALESCE(?, priority), "
                "expected_delivery_date = COALESCE(?, expected_delivery_date), "
                "notes = COALESCE(?, notes), subtotal = ?, tax_amount = ?, "
                "shipping_cost = ?, total_amount = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (title, description, priority, expected_delivery_date, notes,
                 totals["subtotal"], totals["tax_amount"],
                 totals["shipping_cost"], totals["total_amount"], po_id),
            )
        self.audit.log(
            "purchase_orders", po_id, AuditAction.UPDATE,
            {"total_amount": header["total_amount"]}, totals, user_id,
        )
        return totals

    # ── Workflow ────────────────────────────────────────────────

    def change_status(
        self, po_id: int, status: str, user_id: int,
        notes: Optional[str] = None, *, authorized: bool,
    ) -> PurchaseOrderStatus:
        """Move an order along its workflow.

        Approving stamps the approver and date, sending stamps the sent
        date (and the order date when unset). Receiving statuses are set
        only by ``receive_items``.
        """
        require_authorized(authorized, "change purchase order status",
                           "purchase_order", po_id)
        new_status = parse_enum(PurchaseOrderStatus, status, "status",
                                "purchase_order", po_id)

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, po_id)
            if new_status.value not in \
                    PURCHASE_ORDER_STATUS_TRANSITIONS[header["status"]]:
                raise ConflictError(
                    f"Cannot change purchase order {header['po_number']} "
                    f"from {header['status']} to {new_status.value}",
                    entity="purchase_order", entity_id=po_id,
                )
            require_user(conn, user_id)
            if new_status is PurchaseOrderStatus.CANCELLED:
                received = conn.execute(
                    "SELECT COALESCE(SUM(received_quantity), 0) AS n "
                    "FROM purchase_order_items WHERE po_id = ?",
                    (po_id,),
                ).fetchone()["n"]
                if received:
                    raise ConflictError(
                        f"Purchase order {header['po_number']} has received "
                        f"goods and cannot be cancelled",
                        entity="purchase_order", entity_id=po_id,
                    )

            if new_status is PurchaseOrderStatus.APPROVED:
                conn.execute(
                    "UPDATE purchase_orders SET status = ?, approved_by = ?, "
                    "approval_date = CURRENT_TIMESTAMP, approval_notes = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value, user_id, notes, po_id),
                )
            elif new_status is PurchaseOrderStatus.SENT:
                conn.execute(
                    "UPDATE purchase_orders SET status = ?, "
                    "sent_date = CURRENT_TIMESTAMP, "
                    "order_date = COALESCE(order_date, ?), "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value, date.today().isoformat(), po_id),
                )
            else:
                conn.execute(
                    "UPDATE purchase_orders SET status = ?, "
                    "notes = COALESCE(?, notes), "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value, notes, po_id),
                )

        logger.info(
            f"Purchase order {header['po_number']}: {header['status']} -> "
            f"{new_status.value}"
        )
        self.audit.log(
            "purchase_orders", po_id, AuditAction.UPDATE,
            {"status": header["status"]}, {"status": new_status.value},
            user_id,
        )
        return new_status

    def approve_purchase_order(self, po_id: int, approver_id: int,
                               notes: Optional[str] = None, *,
                               authorized: bool) -> PurchaseOrderStatus:
        return self.change_status(po_id, PurchaseOrderStatus.APPROVED,
                                  approver_id, notes, authorized=authorized)

    def send_purchase_order(self, po_id: int, user_id: int, *,
                            authorized: bool) -> PurchaseOrderStatus:
        return self.change_status(po_id, PurchaseOrderStatus.SENT, user_id,
                                  authorized=authorized)

    def receive_items(
        self, po_id: int, receipts: Sequence[ReceiptLine], received_by: int,
        *, authorized: bool,
    ) -> PurchaseOrderStatus:
        """Receive goods against an order as one atomic batch.

        Every receipt counts against the ordered quantity. Only receipts
        that pass the quality check add stock.
        """
        require_authorized(authorized, "receive purchase orders",
                           "purchase_order", po_id)
        if not receipts:
            raise ValidationError(
                "No items to receive", entity="purchase_order",
                entity_id=po_id, field="items",
            )

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, po_id)
            if header["status"] not in [s.value for s in RECEIVABLE_STATUSES]:
                raise ConflictError(
                    f"Purchase order {header['po_number']} is "
                    f"{header['status']} and cannot receive goods",
                    entity="purchase_order", entity_id=po_id,
                )
            require_user(conn, received_by)

            for receipt in receipts:
                row = conn.execute(
                    "SELECT poi.*, i.name AS item_name "
                    "FROM purchase_order_items poi "
                    "JOIN inventory_items i ON poi.item_id = i.id "
                    "WHERE poi.id = ? AND poi.po_id = ?",
                    (receipt.po_item_id, po_id),
                ).fetchone()
                if row is None:
                    raise NotFoundError(
                        f"Item {receipt.po_item_id} does not belong to "
                        f"purchase order {header['po_number']}",
                        entity="purchase_order_item",
                        entity_id=receipt.po_item_id,
                    )
                if receipt.received_quantity is not None and \
                        int(receipt.received_quantity) != receipt.received_quantity:
                    raise ValidationError(
                        f"Received quantity for {row['item_name']} must be a "
                        f"whole number",
                        entity="purchase_order_item", entity_id=row["id"],
                        field="received_quantity",
                    )
                quantity = check_allocation(AllocationLine(
                    entity="purchase_order_item",
                    line_id=row["id"],
                    label=row["item_name"],
                    limit=row["quantity"],
                    allocated=row["received_quantity"],
                    limit_name="ordered",
                    verb="receive",
                ), receipt.received_quantity)

                conn.execute(
                    "UPDATE purchase_order_items "
                    "SET received_quantity = received_quantity + ? "
                    "WHERE id = ?",
                    (quantity, row["id"]),
                )
                conn.execute(
                    "INSERT INTO po_receiving "
                    "(po_id, po_item_id, received_quantity, received_by, "
                    "batch_number, expiry_date, quality_check_passed, notes) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (po_id, row["id"], quantity, received_by,
                     receipt.batch_number, receipt.expiry_date,
                     1 if receipt.quality_check_passed else 0, receipt.notes),
                )
                if receipt.quality_check_passed:
                    self.ledger.increment(
                        conn, row["item_id"], quantity,
                        reference_type=REFERENCE_PURCHASE_ORDER,
                        reference_id=po_id,
                        reference_number=header["po_number"],
                        notes=receipt.notes, user_id=received_by,
                    )
                else:
                    logger.warning(
                        f"{quantity} x {row['item_name']} on "
                        f"{header['po_number']} failed quality check"
                    )

            progress = allocation_progress(
                (r["quantity"], r["received_quantity"])
                for r in self._fetch_lines(conn, po_id)
            )
            if progress is IssueStatus.ISSUED:
                new_status = PurchaseOrderStatus.RECEIVED
                conn.execute(
                    "UPDATE purchase_orders SET status = ?, "
                    "actual_delivery_date = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value, date.today().isoformat(), po_id),
                )
            else:
                new_status = PurchaseOrderStatus.PARTIALLY_RECEIVED
                conn.execute(
                    "UPDATE purchase_orders SET status = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value, po_id),
                )

        logger.info(
            f"Received {len(receipts)} lines on {header['po_number']}; now "
            f"{new_status.value}"
        )
        self.audit.log(
            "purchase_orders", po_id, AuditAction.UPDATE,
            {"status": header["status"]},
            {"status": new_status.value, "received": [
                {"po_item_id": r.po_item_id,
                 "received_quantity": r.received_quantity,
                 "quality_check_passed": r.quality_check_passed}
                for r in receipts
            ]},
            received_by,
        )
        return new_status

    def get_receiving_history(self, po_id: int) -> list[dict]:
        rows = self.db.execute(
            "SELECT r.*, i.name AS item_name FROM po_receiving r "
            "JOIN purchase_order_items poi ON r.po_item_id = poi.id "
            "JOIN inventory_items i ON poi.item_id = i.id "
            "WHERE r.po_id = ? ORDER BY r.id",
            (po_id,),
        )
        return [dict(r) for r in rows]

    # ── Delete / statistics ─────────────────────────────────────

    def delete_purchase_order(self, po_id: int, user_id: int, *,
                              authorized: bool):
        require_authorized(authorized, "delete purchase orders",
                           "purchase_order", po_id)
        with self.db.transaction() as conn:
            header = self._fetch_header(conn, po_id)
            if header["status"] not in [s.value for s in DELETABLE_STATUSES]:
                raise ConflictError(
                    f"Only draft or cancelled purchase orders can be "
                    f"deleted; {header['po_number']} is {header['status']}",
                    entity="purchase_order", entity_id=po_id,
                )
            conn.execute("DELETE FROM purchase_orders WHERE id = ?", (po_id,))
        logger.info(f"Deleted purchase order {header['po_number']}")
        self.audit.log("purchase_orders", po_id, AuditAction.DELETE,
                       dict(header), None, user_id)

    def get_statistics(self) -> dict:
        rows = self.db.execute(
            "SELECT status, COUNT(*) AS n, SUM(total_amount) AS value "
            "FROM purchase_orders GROUP BY status"
        )
        outstanding = self.db.execute(
            "SELECT COALESCE(SUM((poi.quantity - poi.received_quantity) "
            "* poi.unit_price), 0) AS value "
            "FROM purchase_order_items poi "
            "JOIN purchase_orders po ON poi.po_id = po.id "
            "WHERE po.status IN ('approved', 'sent', 'partially_received')"
        )[0]["value"]
        return {
            "total": sum(r["n"] for r in rows),
            "by_status": {r["status"]: r["n"] for r in rows},
            "total_value": math.fsum(
                r["value"] or 0 for r in rows if r["status"] != "cancelled"
            ),
            "outstanding_value": outstanding,
        }
