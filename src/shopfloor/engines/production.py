"""Production order engine: BOM requirements → issuance → finished goods.

Header lifecycle::

    draft → planned → in_progress → completed
      └────────┴───────────┴──→ cancelled

The first material issue moves a planned order to in_progress, and
starting an operation does the same for a draft or planned order. When
every operation is completed or skipped the order is completed; finished
goods are still recorded through ``complete_production``.
"""

import logging
import math
from typing import Iterable, Optional, Sequence

from shopfloor.config import Config
from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import (
    AuditAction,
    ComponentType,
    IssueRequest,
    IssueStatus,
    OperationStatus,
    Priority,
    ProductionCompletion,
    ProductionOrder,
    ProductionOrderItem,
    ProductionOrderOperation,
    ProductionStatus,
    from_row,
    parse_enum,
)
from shopfloor.engines.audit import AuditTrail
from shopfloor.engines.ledger import (
    AllocationLine,
    InventoryLedger,
    allocation_progress,
    check_allocation,
    issue_status_for,
    normalize_quantity,
)
from shopfloor.engines.lookups import (
    require_authorized,
    require_row,
    require_user,
)
from shopfloor.engines.sequences import next_document_number
from shopfloor.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.utils.constants import (
    OPERATION_STATUS_TRANSITIONS,
    PRODUCTION_STATUS_TRANSITIONS,
    REFERENCE_PRODUCTION_ORDER,
)

logger = logging.getLogger(__name__)

ISSUABLE_STATUSES = (ProductionStatus.PLANNED, ProductionStatus.IN_PROGRESS)
EDITABLE_STATUSES = (ProductionStatus.DRAFT, ProductionStatus.PLANNED)
DELETABLE_STATUSES = (ProductionStatus.DRAFT, ProductionStatus.CANCELLED)


def required_quantity(order_quantity: int, per_unit: float,
                      waste_factor: float) -> float:
    """Material needed for ``order_quantity`` units including waste."""
    return normalize_quantity(order_quantity * per_unit * (1 + waste_factor))


def compute_actual_cost(
    items: Iterable[tuple[float, float]],
    operations: Iterable[tuple[str, int, int, float]],
    overhead: float = 0.0,
) -> float:
    """Incurred cost of an order.

    ``items`` are ``(issued_quantity, unit_cost)`` pairs. ``operations`` are
    ``(status, estimated_minutes, actual_minutes, labor_rate)``; completed
    operations are charged their actual minutes when recorded, otherwise
    their estimate, and skipped or unfinished ones are not charged.
    """
    material = math.fsum(issued * cost for issued, cost in items)
    labor = math.fsum(
        (actual or estimated) / 60 * rate
        for status, estimated, actual, rate in operations
        if status == OperationStatus.COMPLETED.value
    )
    return material + labor + overhead


def order_status_from_operations(
    statuses: Sequence[str],
) -> Optional[ProductionStatus]:
    """Order status implied by its operations, or None if they imply none."""
    if not statuses:
        return None
    parsed = [OperationStatus(s) for s in statuses]
    if all(s.is_terminal for s in parsed):
        return ProductionStatus.COMPLETED
    if any(s is not OperationStatus.PENDING for s in parsed):
        return ProductionStatus.IN_PROGRESS
    return None


class ProductionOrderEngine:
    """Creates production orders from BOMs and runs them to completion."""

    def __init__(self, db: DatabaseConnection, audit: AuditTrail = None,
                 ledger: InventoryLedger = None):
        self.db = db
        self.audit = audit or AuditTrail(db)
        self.ledger = ledger or InventoryLedger(db, self.audit)

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _fetch_header(conn, order_id: int):
        return require_row(conn, "production_orders", order_id,
                           "production_order")

    @staticmethod
    def _fetch_items(conn, order_id: int):
        return conn.execute(
            "SELECT * FROM production_order_items "
            "WHERE production_order_id = ? ORDER BY id",
            (order_id,),
        ).fetchall()

    @staticmethod
    def _fetch_operations(conn, order_id: int):
        return conn.execute(
            "SELECT * FROM production_order_operations "
            "WHERE production_order_id = ? ORDER BY sequence_number, id",
            (order_id,),
        ).fetchall()

    @staticmethod
    def _completed_quantity(conn, order_id: int) -> int:
        return conn.execute(
            "SELECT COALESCE(SUM(quantity), 0) AS n "
            "FROM production_order_completions WHERE production_order_id = ?",
            (order_id,),
        ).fetchone()["n"]

    def _actual_cost(self, conn, order_id: int, header) -> float:
        overhead = conn.execute(
            "SELECT overhead_cost FROM bill_of_materials WHERE id = ?",
            (header["bom_id"],),
        ).fetchone()["overhead_cost"]
        return compute_actual_cost(
            [(r["issued_quantity"], r["unit_cost"])
             for r in self._fetch_items(conn, order_id)],
            [(r["status"], r["estimated_time_minutes"],
              r["actual_time_minutes"], r["labor_rate"])
             for r in self._fetch_operations(conn, order_id)],
            overhead * header["quantity"],
        )

    @staticmethod
    def _validate_quantity(quantity, order_id: Optional[int] = None) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int) \
                or quantity <= 0:
            raise ValidationError(
                "Order quantity must be a whole number greater than zero",
                entity="production_order", entity_id=order_id,
                field="quantity", limit=0,
            )
        return quantity

    # ── Create / read ───────────────────────────────────────────

    def create_production_order(
        self, bom_id: int, title: str, quantity: int, created_by: int, *,
        description: Optional[str] = None,
        priority: str = Priority.MEDIUM.value,
        start_date: Optional[str] = None, due_date: Optional[str] = None,
        finished_product_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Create an order with items and operations copied from a BOM.

        Each item requires ``quantity × component quantity × (1 + waste)``.
        Planned cost is the BOM total cost times the order quantity.
        """
        if not title or not title.strip():
            raise ValidationError("Production order title is required",
                                  entity="production_order", field="title")
        self._validate_quantity(quantity)
        priority = parse_enum(Priority, priority, "priority",
                              "production_order")

        with self.db.transaction() as conn:
            require_user(conn, created_by)
            bom = require_row(conn, "bill_of_materials", bom_id, "bom")
            if bom["status"] in ("inactive", "archived"):
                raise ConflictError(
                    f"BOM {bom['name']} is {bom['status']} and cannot be "
                    f"used for production",
                    entity="bom", entity_id=bom_id,
                )
            product_id = finished_product_id or bom["finished_product_id"]
            if product_id is not None:
                require_row(conn, "inventory_items", product_id,
                            "inventory_item")
            components = conn.execute(
                "SELECT c.*, COALESCE(i.name, b.name) AS component_name "
                "FROM bom_components c "
                "LEFT JOIN inventory_items i ON c.item_id = i.id "
                "LEFT JOIN bill_of_materials b ON c.component_bom_id = b.id "
                "WHERE c.bom_id = ? ORDER BY c.sort_order, c.id",
                (bom_id,),
            ).fetchall()
            operations = conn.execute(
                "SELECT * FROM bom_operations WHERE bom_id = ? "
                "ORDER BY sequence_number, id",
                (bom_id,),
            ).fetchall()

            order_number = next_document_number(
                conn, Config.PRODUCTION_ORDER_PREFIX
            )
            cursor = conn.execute(
                "INSERT INTO production_orders "
                "(order_number, title, description, bom_id, priority, "
                "quantity, start_date, due_date, finished_product_id, "
                "planned_cost, notes, created_by) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (order_number, title.strip(), description, bom_id,
                 priority.value, quantity, start_date, due_date, product_id,
                 bom["total_cost"] * quantity, notes, created_by),
            )
            order_id = cursor.lastrowid

            for c in components:
                needed = required_quantity(
                    quantity, c["quantity"], c["waste_factor"]
                )
                conn.execute(
                    "INSERT INTO production_order_items "
                    "(production_order_id, item_id, component_bom_id, "
                    "component_type, item_name, required_quantity, "
                    "unit_cost, total_cost, waste_factor, notes) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (order_id, c["item_id"], c["component_bom_id"],
                     (ComponentType.ITEM if c["item_id"] is not None
                      else ComponentType.BOM).value,
                     c["component_name"], needed, c["unit_cost"],
                     needed * c["unit_cost"], c["waste_factor"], c["notes"]),
                )
            for op in operations:
                conn.execute(
                    "INSERT INTO production_order_operations "
                    "(production_order_id, operation_name, description, "
                    "sequence_number, estimated_time_minutes, labor_rate, "
                    "machine_required, skill_level, notes) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (order_id, op["operation_name"], op["description"],
                     op["sequence_number"], op["estimated_time_minutes"],
                     op["labor_rate"], op["machine_required"],
                     op["skill_level"], op["notes"]),
                )

        logger.info(
            f"Created production order {order_number} for {quantity} x "
            f"BOM '{bom['name']}'"
        )
        self.audit.log(
            "production_orders", order_id, AuditAction.INSERT, None,
            {"order_number": order_number, "bom_id": bom_id,
             "quantity": quantity},
            created_by,
        )
        return order_id

    def get_production_order(self, order_id: int) -> Optional[ProductionOrder]:
        rows = self.db.execute(
            "SELECT o.*, b.name AS bom_name FROM production_orders o "
            "JOIN bill_of_materials b ON o.bom_id = b.id WHERE o.id = ?",
            (order_id,),
        )
        if not rows:
            return None
        order = from_row(ProductionOrder, rows[0])
        with self.db.get_connection() as conn:
            order.items = [from_row(ProductionOrderItem, r)
                           for r in self._fetch_items(conn, order_id)]
            order.operations = [
                from_row(ProductionOrderOperation, r)
                for r in self._fetch_operations(conn, order_id)
            ]
            order.completions = [
                from_row(ProductionCompletion, r) for r in conn.execute(
                    "SELECT * FROM production_order_completions "
                    "WHERE production_order_id = ? ORDER BY id",
                    (order_id,),
                )
            ]
        return order

    def list_production_orders(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0,
    ) -> list[ProductionOrder]:
        sql = (
            "SELECT o.*, b.name AS bom_name FROM production_orders o "
            "JOIN bill_of_materials b ON o.bom_id = b.id"
        )
        params: list = []
        if status is not None:
            sql += " WHERE o.status = ?"
            params.append(parse_enum(ProductionStatus, status, "status").value)
        sql += " ORDER BY o.created_at DESC, o.id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [from_row(ProductionOrder, r)
                for r in self.db.execute(sql, tuple(params))]

    # ── Edit / status ───────────────────────────────────────────

    def update_production_order(
        self, order_id: int, user_id: int, *, title: Optional[str] = None,
        description: Optional[str] = None, priority: Optional[str] = None,
        quantity: Optional[int] = None, start_date: Optional[str] = None,
        due_date: Optional[str] = None, notes: Optional[str] = None,
        authorized: bool,
    ):
        """Edit a draft or planned order.

        Changing the quantity rescales required quantities and planned cost.
        """
        require_authorized(authorized, "edit production orders",
                           "production_order", order_id)
        if priority is not None:
            priority = parse_enum(Priority, priority, "priority",
                                  "production_order", order_id).value
        if quantity is not None:
            self._validate_quantity(quantity, order_id)

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, order_id)
            if header["status"] not in [s.value for s in EDITABLE_STATUSES]:
                raise ConflictError(
                    f"Production order {header['order_number']} is "
                    f"{header['status']} and can no longer be edited",
                    entity="production_order", entity_id=order_id,
                )
            if quantity is not None and quantity != header["quantity"]:
                for item in self._fetch_items(conn, order_id):
                    needed = normalize_quantity(
                        item["required_quantity"] * quantity
                        / header["quantity"]
                    )
                    conn.execute(
                        "UPDATE production_order_items "
                        "SET required_quantity = ?, total_cost = ? "
                        "WHERE id = ?",
                        (needed, needed * item["unit_cost"], item["id"]),
                    )
                conn.execute(
                    "UPDATE production_orders SET quantity = ?, "
                    "planned_cost = ? WHERE id = ?",
                    (quantity,
                     header["planned_cost"] / header["quantity"] * quantity,
                     order_id),
                )
            conn.execute(
                "UPDATE production_orders SET title = COALESCE(?, title), "
                "description = COALESCE(?, description), "
                "priority = COALESCE(?, priority), "
                "start_date = COALESCE(?, start_date), "
                "due_date = COALESCE(?, due_date), "
                "notes = COALESCE(?, notes), "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (title, description, priority, start_date, due_date, notes,
                 order_id),
            )
        self.audit.log(
            "production_orders", order_id, AuditAction.UPDATE,
            dict(header),
            {"title": title, "priority": priority, "quantity": quantity},
            user_id,
        )

    def change_status(
        self, order_id: int, status: str, user_id: int,
        notes: Optional[str] = None, *, authorized: bool,
    ) -> ProductionStatus:
        """Move the order along its lifecycle."""
        require_authorized(authorized, "change production order status",
                           "production_order", order_id)
        new_status = parse_enum(ProductionStatus, status, "status",
                                "production_order", order_id)
        with self.db.transaction() as conn:
            header = self._fetch_header(conn, order_id)
            allowed = PRODUCTION_STATUS_TRANSITIONS[header["status"]]
            if new_status.value not in allowed:
                raise ConflictError(
                    f"Cannot change production order "
                    f"{header['order_number']} from {header['status']} to "
                    f"{new_status.value}",
                    entity="production_order", entity_id=order_id,
                )
            require_user(conn, user_id)
            if new_status is ProductionStatus.COMPLETED:
                conn.execute(
                    "UPDATE production_orders SET status = ?, "
                    "completion_date = CURRENT_TIMESTAMP, actual_cost = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value,
                     self._actual_cost(conn, order_id, header), order_id),
                )
            else:
                conn.execute(
                    "UPDATE production_orders SET status = ?, "
                    "notes = COALESCE(?, notes), "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status.value, notes, order_id),
                )
        logger.info(
            f"Production order {header['order_number']}: "
            f"{header['status']} -> {new_status.value}"
        )
        self.audit.log(
            "production_orders", order_id, AuditAction.UPDATE,
            {"status": header["status"]}, {"status": new_status.value},
            user_id,
        )
        return new_status

    # ── Material issuance ───────────────────────────────────────

    def issue_materials(
        self, order_id: int, issues: Sequence[IssueRequest], issued_by: int,
        notes: Optional[str] = None, *, authorized: bool,
    ) -> list[int]:
        """Issue BOM materials from stock as one atomic batch.

        Each request names a production order item. Returns the stock
        movement ids. Sub-assembly lines have no stock to issue.
        """
        require_authorized(authorized, "issue production materials",
                           "production_order", order_id)
        if not issues:
            raise ValidationError(
                "No materials to issue", entity="production_order",
                entity_id=order_id, field="items",
            )

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, order_id)
            if header["status"] not in [s.value for s in ISSUABLE_STATUSES]:
                raise ConflictError(
                    f"Production order {header['order_number']} is "
                    f"{header['status']} and cannot issue materials",
                    entity="production_order", entity_id=order_id,
                )
            require_user(conn, issued_by)

            movement_ids = []
            for request in issues:
                row = conn.execute(
                    "SELECT poi.*, i.quantity AS available_quantity "
                    "FROM production_order_items poi "
                    "LEFT JOIN inventory_items i ON poi.item_id = i.id "
                    "WHERE poi.id = ? AND poi.production_order_id = ?",
                    (request.line_id, order_id),
                ).fetchone()
                if row is None:
                    raise NotFoundError(
                        f"Item {request.line_id} does not belong to "
                        f"production order {header['order_number']}",
                        entity="production_order_item",
                        entity_id=request.line_id,
                    )
                if row["item_id"] is None:
                    raise ValidationError(
                        f"{row['item_name']} is a sub-assembly and must be "
                        f"produced by its own order",
                        entity="production_order_item", entity_id=row["id"],
                        field="item_id",
                    )
                quantity = check_allocation(AllocationLine(
                    entity="production_order_item",
                    line_id=row["id"],
                    label=row["item_name"],
                    limit=row["required_quantity"],
                    allocated=row["issued_quantity"],
                    stock=row["available_quantity"],
                    limit_name="required",
                ), request.quantity)

                issued = normalize_quantity(row["issued_quantity"] + quantity)
                conn.execute(
                    "UPDATE production_order_items SET issued_quantity = ?, "
                    "status = ? WHERE id = ?",
                    (issued,
                     issue_status_for(row["required_quantity"], issued).value,
                     row["id"]),
                )
                conn.execute(
                    "INSERT INTO production_order_issues "
                    "(production_order_id, production_order_item_id, "
                    "quantity, issued_by, notes) VALUES (?, ?, ?, ?, ?)",
                    (order_id, row["id"], quantity, issued_by,
                     request.notes or notes),
                )
                movement_ids.append(self.ledger.decrement(
                    conn, row["item_id"], quantity,
                    reference_type=REFERENCE_PRODUCTION_ORDER,
                    reference_id=order_id,
                    reference_number=header["order_number"],
                    notes=request.notes or notes,
                    user_id=issued_by,
                ))

            if header["status"] != ProductionStatus.IN_PROGRESS.value:
                conn.execute(
                    "UPDATE production_orders SET status = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (ProductionStatus.IN_PROGRESS.value, order_id),
                )
            progress = allocation_progress(
                (r["required_quantity"], r["issued_quantity"])
                for r in self._fetch_items(conn, order_id)
                if r["item_id"] is not None
            )

        logger.info(
            f"Issued {len(movement_ids)} lines for production order "
            f"{header['order_number']}; materials {progress.value}"
        )
        self.audit.log(
            "production_orders", order_id, AuditAction.UPDATE,
            {"status": header["status"]},
            {"status": ProductionStatus.IN_PROGRESS.value, "issued": [
                {"production_order_item_id": i.line_id,
                 "quantity": i.quantity}
                for i in issues
            ]},
            issued_by,
        )
        return movement_ids

    def material_status(self, order_id: int) -> IssueStatus:
        """How much of the order's stock materials have been issued."""
        with self.db.get_connection() as conn:
            self._fetch_header(conn, order_id)
            return allocation_progress(
                (r["required_quantity"], r["issued_quantity"])
                for r in self._fetch_items(conn, order_id)
                if r["item_id"] is not None
            )

    # ── Operations ──────────────────────────────────────────────

    def update_operation_status(
        self, operation_id: int, status: str, user_id: int, *,
        actual_time_minutes: Optional[int] = None,
        notes: Optional[str] = None, authorized: bool,
    ) -> ProductionStatus:
        """Progress one operation and recompute the order status.

        Returns the order status after the change.
        """
        require_authorized(authorized, "update production operations",
                           "production_order_operation", operation_id)
        new_status = parse_enum(OperationStatus, status, "status",
                                "production_order_operation", operation_id)
        if actual_time_minutes is not None and actual_time_minutes < 0:
            raise ValidationError(
                "Actual time cannot be negative",
                entity="production_order_operation", entity_id=operation_id,
                field="actual_time_minutes", limit=0,
            )

        with self.db.transaction() as conn:
            op = require_row(conn, "production_order_operations",
                             operation_id, "production_order_operation")
            header = self._fetch_header(conn, op["production_order_id"])
            order_id = header["id"]
            if header["status"] in (ProductionStatus.COMPLETED.value,
                                    ProductionStatus.CANCELLED.value):
                raise ConflictError(
                    f"Production order {header['order_number']} is "
                    f"{header['status']}; its operations are closed",
                    entity="production_order", entity_id=order_id,
                )
            if new_status.value not in OPERATION_STATUS_TRANSITIONS[op["status"]]:
                raise ConflictError(
                    f"Cannot change operation {op['operation_name']} from "
                    f"{op['status']} to {new_status.value}",
                    entity="production_order_operation",
                    entity_id=operation_id,
                )
            require_user(conn, user_id)

            stamp = (
                "actual_start_date = CURRENT_TIMESTAMP"
                if new_status is OperationStatus.IN_PROGRESS
                else "actual_end_date = CURRENT_TIMESTAMP"
            )
            conn.execute(
                f"UPDATE production_order_operations SET status = ?, {stamp}, "
                f"actual_time_minutes = COALESCE(?, actual_time_minutes), "
                f"notes = COALESCE(?, notes) WHERE id = ?",
                (new_status.value, actual_time_minutes, notes, operation_id),
            )

            implied = order_status_from_operations(
                [r["status"] for r in self._fetch_operations(conn, order_id)]
            )
            order_status = ProductionStatus(header["status"])
            if implied is ProductionStatus.COMPLETED:
                order_status = implied
                conn.execute(
                    "UPDATE production_orders SET status = ?, "
                    "completion_date = CURRENT_TIMESTAMP, actual_cost = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (order_status.value,
                     self._actual_cost(conn, order_id, header), order_id),
                )
            elif implied is not None and implied is not order_status:
                order_status = implied
                conn.execute(
                    "UPDATE production_orders SET status = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (order_status.value, order_id),
                )

        logger.info(
            f"Operation {op['operation_name']} on {header['order_number']}: "
            f"{op['status']} -> {new_status.value}; order "
            f"{order_status.value}"
        )
        self.audit.log(
            "production_order_operations", operation_id, AuditAction.UPDATE,
            {"status": op["status"]}, {"status": new_status.value}, user_id,
        )
        return order_status

    # ── Completion ──────────────────────────────────────────────

    def complete_production(
        self, order_id: int, quantity: int, completed_by: int, *,
        quality_check_passed: bool = True,
        batch_number: Optional[str] = None, notes: Optional[str] = None,
        authorized: bool,
    ) -> int:
        """Record finished units; returns the completion record id.

        A passed quality check adds the units to the finished product's
        stock. A failed one is recorded and counted but adds nothing.
        """
        require_authorized(authorized, "complete production orders",
                           "production_order", order_id)
        self._validate_quantity(quantity, order_id)

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, order_id)
            if header["status"] not in (ProductionStatus.IN_PROGRESS.value,
                                        ProductionStatus.COMPLETED.value):
                raise ConflictError(
                    f"Production order {header['order_number']} is "
                    f"{header['status']} and cannot record completions",
                    entity="production_order", entity_id=order_id,
                )
            require_user(conn, completed_by)
            done = self._completed_quantity(conn, order_id)
            remaining = header["quantity"] - done
            if quantity > remaining:
                raise ValidationError(
                    f"Cannot complete {quantity} units of "
                    f"{header['order_number']}: only {remaining} of "
                    f"{header['quantity']} remaining",
                    entity="production_order", entity_id=order_id,
                    field="quantity", limit=remaining,
                )

            cursor = conn.execute(
                "INSERT INTO production_order_completions "
                "(production_order_id, quantity, completed_by, "
                "quality_check_passed, batch_number, notes) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (order_id, quantity, completed_by,
                 1 if quality_check_passed else 0, batch_number, notes),
            )
            completion_id = cursor.lastrowid

            product_id = header["finished_product_id"]
            if quality_check_passed and product_id is not None:
                self.ledger.increment(
                    conn, product_id, quantity,
                    reference_type=REFERENCE_PRODUCTION_ORDER,
                    reference_id=order_id,
                    reference_number=header["order_number"],
                    notes=notes or f"Production completion {batch_number or ''}".strip(),
                    user_id=completed_by,
                )
            elif quality_check_passed:
                logger.warning(
                    f"Production order {header['order_number']} has no "
                    f"finished product; {quantity} units not stocked"
                )

            if done + quantity >= header["quantity"]:
                conn.execute(
                    "UPDATE production_orders SET status = ?, "
                    "completion_date = COALESCE(completion_date, "
                    "CURRENT_TIMESTAMP), actual_cost = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (ProductionStatus.COMPLETED.value,
                     self._actual_cost(conn, order_id, header), order_id),
                )

        logger.info(
            f"Completed {quantity} units on {header['order_number']} "
            f"(QC {'passed' if quality_check_passed else 'failed'})"
        )
        self.audit.log(
            "production_order_completions", completion_id,
            AuditAction.INSERT, None,
            {"production_order_id": order_id, "quantity": quantity,
             "quality_check_passed": quality_check_passed},
            completed_by,
        )
        return completion_id

    # ── Delete / statistics ─────────────────────────────────────

    def delete_production_order(self, order_id: int, user_id: int, *,
                                authorized: bool):
        """Delete a draft or cancelled order. Stock is never touched."""
        require_authorized(authorized, "delete production orders",
                           "production_order", order_id)
        with self.db.transaction() as conn:
            header = self._fetch_header(conn, order_id)
            if header["status"] not in [s.value for s in DELETABLE_STATUSES]:
                raise ConflictError(
                    f"Only draft or cancelled production orders can be "
                    f"deleted; {header['order_number']} is {header['status']}",
                    entity="production_order", entity_id=order_id,
                )
            conn.execute("DELETE FROM production_orders WHERE id = ?",
                         (order_id,))
        logger.info(f"Deleted production order {header['order_number']}")
        self.audit.log("production_orders", order_id, AuditAction.DELETE,
                       dict(header), None, user_id)

    def get_statistics(self) -> dict:
        rows = self.db.execute(
            "SELECT status, COUNT(*) AS n, SUM(planned_cost) AS planned, "
            "SUM(actual_cost) AS actual FROM production_orders "
            "GROUP BY status"
        )
        completed = self.db.execute(
            "SELECT COALESCE(SUM(quantity), 0) AS n, "
            "COALESCE(SUM(CASE WHEN quality_check_passed = 0 "
            "THEN quantity ELSE 0 END), 0) AS failed "
            "FROM production_order_completions"
        )[0]
        return {
            "total": sum(r["n"] for r in rows),
            "by_status": {r["status"]: r["n"] for r in rows},
            "planned_cost": math.fsum(r["planned"] or 0 for r in rows),
            "actual_cost": math.fsum(r["actual"] or 0 for r in rows),
            "units_completed": completed["n"],
            "units_failed_qc": completed["failed"],
        }
