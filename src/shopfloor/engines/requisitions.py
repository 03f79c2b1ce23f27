"""Requisition engine: request → approval → issuance → inventory.

Header lifecycle::

    pending → approved | rejected | partially_approved
            → partially_issued → issued

Deleting never touches stock. Issued quantities go back to inventory only
through ``restore_inventory``.
"""

import logging
from typing import Iterable, Optional, Sequence

from shopfloor.config import Config
from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import (
    ApprovalStatus,
    AuditAction,
    IssueRequest,
    IssueStatus,
    ItemApproval,
    Priority,
    Requisition,
    RequisitionItem,
    RequisitionLine,
    RequisitionStatus,
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
)
from shopfloor.engines.lookups import (
    require_authorized,
    require_row,
    require_user,
)
from shopfloor.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.utils.constants import REFERENCE_REQUISITION

logger = logging.getLogger(__name__)

ISSUABLE_STATUSES = (
    RequisitionStatus.APPROVED,
    RequisitionStatus.PARTIALLY_APPROVED,
    RequisitionStatus.PARTIALLY_ISSUED,
)


# ── Pure approval rules ──────────────────────────────────────────


def validate_approval(
    requested: int, approved: int, rejected: int,
    line_id: Optional[int] = None,
):
    """Reject negative splits and splits that exceed the requested amount."""
    for name, value in (("approved_quantity", approved),
                        ("rejected_quantity", rejected)):
        if value is None or value < 0 or int(value) != value:
            raise ValidationError(
                f"{name} must be a whole number of zero or more "
                f"(line {line_id})",
                entity="requisition_item", entity_id=line_id,
                field=name, limit=0,
            )
    if approved + rejected > requested:
        raise ValidationError(
            f"Approved ({approved}) plus rejected ({rejected}) exceeds the "
            f"requested quantity {requested} (line {line_id})",
            entity="requisition_item", entity_id=line_id,
            field="approved_quantity", limit=requested,
        )


def classify_item_approval(
    requested: int, approved: int, rejected: int,
) -> ApprovalStatus:
    """Approval outcome for one line.

    Fully approved needs ``approved == requested``; anything short of that
    with a non-zero decision is a partial approval, even with nothing
    rejected.
    """
    if approved > 0 and rejected == 0 and approved == requested:
        return ApprovalStatus.APPROVED
    if rejected > 0 and approved == 0 and rejected == requested:
        return ApprovalStatus.REJECTED
    if approved > 0 or rejected > 0:
        return ApprovalStatus.PARTIALLY_APPROVED
    return ApprovalStatus.PENDING


def aggregate_requisition_status(
    item_statuses: Iterable[ApprovalStatus | str],
) -> RequisitionStatus:
    """Header status from the set of line outcomes; order does not matter."""
    statuses = {ApprovalStatus(s) for s in item_statuses}
    has_partial = ApprovalStatus.PARTIALLY_APPROVED in statuses
    has_approved = has_partial or ApprovalStatus.APPROVED in statuses
    has_rejected = ApprovalStatus.REJECTED in statuses

    if has_partial:
        return RequisitionStatus.PARTIALLY_APPROVED
    if has_approved and not has_rejected:
        return RequisitionStatus.APPROVED
    if has_rejected and not has_approved:
        return RequisitionStatus.REJECTED
    return RequisitionStatus.PENDING


# ── Engine ───────────────────────────────────────────────────────


class RequisitionEngine:
    """Owns requisitions and their lines."""

    def __init__(
        self, db: DatabaseConnection, audit: AuditTrail = None,
        ledger: InventoryLedger = None,
    ):
        self.db = db
        self.audit = audit or AuditTrail(db)
        self.ledger = ledger or InventoryLedger(db, self.audit)

    @staticmethod
    def reference_number(requisition_id: int) -> str:
        return f"{Config.REQUISITION_REFERENCE_PREFIX}-{requisition_id}"

    @staticmethod
    def _fetch_header(conn, requisition_id: int):
        return require_row(conn, "requisitions", requisition_id, "requisition")

    @staticmethod
    def _fetch_lines(conn, requisition_id: int):
        return conn.execute(
            "SELECT ri.*, i.name AS item_name, i.sku AS item_sku, "
            "i.quantity AS available_quantity "
            "FROM requisition_items ri "
            "JOIN inventory_items i ON ri.item_id = i.id "
            "WHERE ri.requisition_id = ? ORDER BY ri.id",
            (requisition_id,),
        ).fetchall()

    @staticmethod
    def _validate_lines(lines: Sequence[RequisitionLine]):
        if not lines:
            raise ValidationError(
                "A requisition needs at least one item",
                entity="requisition", field="items",
            )
        for line in lines:
            if (line.quantity is None or line.quantity <= 0
                    or int(line.quantity) != line.quantity):
                raise ValidationError(
                    f"Requested quantity for item {line.item_id} must be a "
                    f"whole number greater than zero",
                    entity="inventory_item", entity_id=line.item_id,
                    field="quantity", limit=0,
                )

    def _insert_lines(
        self, conn, requisition_id: int, lines: Sequence[RequisitionLine],
    ) -> float:
        """Insert lines and return their estimated cost."""
        estimated = 0.0
        for line in lines:
            item = InventoryLedger.fetch_item(conn, line.item_id)
            conn.execute(
                "INSERT INTO requisition_items "
                "(requisition_id, item_id, quantity, unit_price, notes) "
                "VALUES (?, ?, ?, ?, ?)",
                (requisition_id, line.item_id, int(line.quantity),
                 item["unit_price"], line.notes),
            )
            estimated += int(line.quantity) * item["unit_price"]
        return estimated

    # ── Create & read ───────────────────────────────────────────

    def create_requisition(
        self, requester_id: int, title: str,
        items: Sequence[RequisitionLine], *,
        description: Optional[str] = None,
        department: Optional[str] = None,
        priority: str = Priority.MEDIUM.value,
        required_date: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Persist a pending requisition. Stock is not touched."""
        if not title or not title.strip():
            raise ValidationError(
                "Title is required", entity="requisition", field="title",
            )
        priority = parse_enum(Priority, priority, "priority", "requisition")
        self._validate_lines(items)

        with self.db.transaction() as conn:
            require_user(conn, requester_id)
            cursor = conn.execute(
                "INSERT INTO requisitions "
                "(title, description, requester_id, department, priority, "
                "status, required_date, notes) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (title.strip(), description, requester_id, department,
                 priority.value, RequisitionStatus.PENDING.value,
                 required_date, notes),
            )
            requisition_id = cursor.lastrowid
            estimated = self._insert_lines(conn, requisition_id, items)
            conn.execute(
                "UPDATE requisitions SET estimated_cost = ? WHERE id = ?",
                (estimated, requisition_id),
            )

        logger.info(
            f"Requisition #{requisition_id} created by user {requester_id} "
            f"with {len(items)} items"
        )
        self.audit.log(
            "requisitions", requisition_id, AuditAction.INSERT, None,
            {"title": title, "items": [
                {"item_id": i.item_id, "quantity": i.quantity} for i in items
            ]},
            requester_id,
        )
        return requisition_id

    def get_requisition(self, requisition_id: int) -> Optional[Requisition]:
        """A requisition with its lines, or None."""
        rows = self.db.execute(
            "SELECT r.*, u.display_name AS requester_name, "
            "a.display_name AS approver_name FROM requisitions r "
            "LEFT JOIN users u ON r.requester_id = u.id "
            "LEFT JOIN users a ON r.approver_id = a.id WHERE r.id = ?",
            (requisition_id,),
        )
        if not rows:
            return None
        requisition = from_row(Requisition, rows[0])
        requisition.requester_name = rows[0]["requester_name"] or ""
        requisition.approver_name = rows[0]["approver_name"] or ""
        with self.db.get_connection() as conn:
            requisition.items = [
                from_row(RequisitionItem, r)
                for r in self._fetch_lines(conn, requisition_id)
            ]
        return requisition

    def list_requisitions(
        self, status: Optional[str] = None,
        requester_id: Optional[int] = None,
        limit: int = 50, offset: int = 0,
    ) -> list[Requisition]:
        """Headers only, newest first."""
        sql = (
            "SELECT r.*, u.display_name AS requester_name FROM requisitions r "
            "LEFT JOIN users u ON r.requester_id = u.id WHERE 1 = 1"
        )
        params: list = []
        if status is not None:
            sql += " AND r.status = ?"
            params.append(
                parse_enum(RequisitionStatus, status, "status").value
            )
        if requester_id is not None:
            sql += " AND r.requester_id = ?"
            params.append(requester_id)
        sql += " ORDER BY r.created_at DESC, r.id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        result = []
        for row in self.db.execute(sql, tuple(params)):
            requisition = from_row(Requisition, row)
            requisition.requester_name = row["requester_name"] or ""
            result.append(requisition)
        return result

    # ── Approval ────────────────────────────────────────────────

    def _require_pending(self, header):
        if header["status"] != RequisitionStatus.PENDING.value:
            raise ConflictError(
                f"Only pending requisitions can be approved or rejected "
                f"(requisition {header['id']} is {header['status']})",
                entity="requisition", entity_id=header["id"],
            )

    def decide_requisition(
        self, requisition_id: int, decision: str, approver_id: int,
        notes: Optional[str] = None, *, authorized: bool,
    ) -> RequisitionStatus:
        """Approve or reject every line in full with one decision."""
        require_authorized(authorized, "approve requisitions", "requisition",
                           requisition_id)
        decision = parse_enum(
            RequisitionStatus, decision, "decision", "requisition",
            requisition_id,
        )
        if decision not in (RequisitionStatus.APPROVED,
                            RequisitionStatus.REJECTED):
            raise ValidationError(
                f"Decision must be approved or rejected, got {decision.value}",
                entity="requisition", entity_id=requisition_id,
                field="decision", limit=["approved", "rejected"],
            )

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, requisition_id)
            self._require_pending(header)
            require_user(conn, approver_id)
            if decision is RequisitionStatus.APPROVED:
                conn.execute(
                    "UPDATE requisition_items SET approved_quantity = quantity, "
                    "rejected_quantity = 0, status = ? "
                    "WHERE requisition_id = ?",
                    (ApprovalStatus.APPROVED.value, requisition_id),
                )
            else:
                conn.execute(
                    "UPDATE requisition_items SET approved_quantity = 0, "
                    "rejected_quantity = quantity, status = ? "
                    "WHERE requisition_id = ?",
                    (ApprovalStatus.REJECTED.value, requisition_id),
                )
            conn.execute(
                "UPDATE requisitions SET status = ?, approver_id = ?, "
                "approval_date = CURRENT_TIMESTAMP, approval_notes = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (decision.value, approver_id, notes, requisition_id),
            )

        logger.info(
            f"Requisition #{requisition_id} {decision.value} by user "
            f"{approver_id}"
        )
        self.audit.log(
            "requisitions", requisition_id, AuditAction.UPDATE,
            {"status": header["status"]},
            {"status": decision.value, "approval_notes": notes},
            approver_id,
        )
        return decision

    def approve_items(
        self, requisition_id: int, approvals: Sequence[ItemApproval],
        approver_id: int, notes: Optional[str] = None, *, authorized: bool,
    ) -> RequisitionStatus:
        """Record per-line approved/rejected splits and aggregate the header.

        The whole batch is validated before anything is written.
        """
        require_authorized(authorized, "approve requisitions", "requisition",
                           requisition_id)
        if not approvals:
            raise ValidationError(
                "No item approvals supplied", entity="requisition",
                entity_id=requisition_id, field="items",
            )

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, requisition_id)
            self._require_pending(header)
            require_user(conn, approver_id)
            lines = {r["id"]: r for r in self._fetch_lines(conn, requisition_id)}

            for approval in approvals:
                line = lines.get(approval.requisition_item_id)
                if line is None:
                    raise NotFoundError(
                        f"Item {approval.requisition_item_id} does not belong "
                        f"to requisition {requisition_id}",
                        entity="requisition_item",
                        entity_id=approval.requisition_item_id,
                    )
                validate_approval(
                    line["quantity"], approval.approved_quantity,
                    approval.rejected_quantity, line["id"],
                )

            statuses = {line_id: line["status"] for line_id, line in lines.items()}
            for approval in approvals:
                line = lines[approval.requisition_item_id]
                status = classify_item_approval(
                    line["quantity"], approval.approved_quantity,
                    approval.rejected_quantity,
                )
                statuses[line["id"]] = status.value
                conn.execute(
                    "UPDATE requisition_items SET approved_quantity = ?, "
                    "rejected_quantity = ?, status = ?, "
                    "notes = COALESCE(?, notes) WHERE id = ?",
                    (int(approval.approved_quantity),
                     int(approval.rejected_quantity), status.value,
                     approval.notes, line["id"]),
                )

            header_status = aggregate_requisition_status(statuses.values())
            conn.execute(
                "UPDATE requisitions SET status = ?, approver_id = ?, "
                "approval_date = CURRENT_TIMESTAMP, approval_notes = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (header_status.value, approver_id, notes, requisition_id),
            )

        logger.info(
            f"Requisition #{requisition_id} reviewed by user {approver_id}: "
            f"{header_status.value}"
        )
        self.audit.log(
            "requisitions", requisition_id, AuditAction.UPDATE,
            {"status": header["status"]},
            {"status": header_status.value, "approvals": [
                {"requisition_item_id": a.requisition_item_id,
                 "approved_quantity": a.approved_quantity,
                 "rejected_quantity": a.rejected_quantity}
                for a in approvals
            ]},
            approver_id,
        )
        return header_status

    # ── Issuance ────────────────────────────────────────────────

    def issue_items(
        self, requisition_id: int, issues: Sequence[IssueRequest],
        issued_by: int, notes: Optional[str] = None, *, authorized: bool,
    ) -> list[int]:
        """Issue approved quantities from stock as one atomic batch.

        Each request names a requisition line. Returns the stock movement
        ids. Any invalid request aborts the whole batch.
        """
        require_authorized(authorized, "issue requisitions", "requisition",
                           requisition_id)
        if not issues:
            raise ValidationError(
                "No items to issue", entity="requisition",
                entity_id=requisition_id, field="items",
            )
        reference = self.reference_number(requisition_id)

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, requisition_id)
            if header["status"] not in [s.value for s in ISSUABLE_STATUSES]:
                raise ConflictError(
                    f"Requisition {requisition_id} is {header['status']} "
                    f"and cannot be issued",
                    entity="requisition", entity_id=requisition_id,
                )
            require_user(conn, issued_by)

            movement_ids = []
            for request in issues:
                row = conn.execute(
                    "SELECT ri.*, i.name AS item_name, "
                    "i.quantity AS available_quantity "
                    "FROM requisition_items ri "
                    "JOIN inventory_items i ON ri.item_id = i.id "
                    "WHERE ri.id = ? AND ri.requisition_id = ?",
                    (request.line_id, requisition_id),
                ).fetchone()
                if row is None:
                    raise NotFoundError(
                        f"Item {request.line_id} does not belong to "
                        f"requisition {requisition_id}",
                        entity="requisition_item", entity_id=request.line_id,
                    )
                if request.quantity is not None and \
                        int(request.quantity) != request.quantity:
                    raise ValidationError(
                        f"Issue quantity for {row['item_name']} must be a "
                        f"whole number",
                        entity="requisition_item", entity_id=row["id"],
                        field="quantity",
                    )
                quantity = check_allocation(AllocationLine(
                    entity="requisition_item",
                    line_id=row["id"],
                    label=row["item_name"],
                    limit=row["approved_quantity"],
                    allocated=row["issued_quantity"],
                    stock=row["available_quantity"],
                ), request.quantity)

                issued = row["issued_quantity"] + quantity
                conn.execute(
                    "UPDATE requisition_items SET issued_quantity = ?, "
                    "issue_status = ? WHERE id = ?",
                    (issued,
                     issue_status_for(row["approved_quantity"], issued).value,
                     row["id"]),
                )
                movement_ids.append(self.ledger.decrement(
                    conn, row["item_id"], quantity,
                    reference_type=REFERENCE_REQUISITION,
                    reference_id=requisition_id,
                    reference_number=reference,
                    notes=request.notes or notes,
                    user_id=issued_by,
                ))

            progress = allocation_progress(
                (r["approved_quantity"], r["issued_quantity"])
                for r in self._fetch_lines(conn, requisition_id)
            )
            new_status = (
                RequisitionStatus.ISSUED if progress is IssueStatus.ISSUED
                else RequisitionStatus.PARTIALLY_ISSUED
            )
            conn.execute(
                "UPDATE requisitions SET status = ?, issued_by = ?, "
                "issued_date = CURRENT_TIMESTAMP, "
                "issue_notes = COALESCE(?, issue_notes), "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (new_status.value, issued_by, notes, requisition_id),
            )

        logger.info(
            f"Issued {len(movement_ids)} lines for requisition "
            f"#{requisition_id}; now {new_status.value}"
        )
        self.audit.log(
            "requisitions", requisition_id, AuditAction.UPDATE,
            {"status": header["status"]},
            {"status": new_status.value, "issued": [
                {"requisition_item_id": i.line_id, "quantity": i.quantity}
                for i in issues
            ]},
            issued_by,
        )
        return movement_ids

    def restore_inventory(
        self, requisition_id: int, user_id: int, *, authorized: bool,
    ) -> int:
        """Return every issued quantity to stock.

        Lines go back to not-issued and the header returns to its approval
        outcome. Returns the number of lines restored; calling it again is
        a no-op.
        """
        require_authorized(authorized, "restore requisition stock",
                           "requisition", requisition_id)
        reference = self.reference_number(requisition_id)
        with self.db.transaction() as conn:
            header = self._fetch_header(conn, requisition_id)
            lines = self._fetch_lines(conn, requisition_id)
            restored = 0
            for line in lines:
                if line["issued_quantity"] <= 0:
                    continue
                self.ledger.increment(
                    conn, line["item_id"], line["issued_quantity"],
                    reference_type=REFERENCE_REQUISITION,
                    reference_id=requisition_id,
                    reference_number=reference,
                    notes="Restored from requisition",
                    user_id=user_id,
                )
                restored += 1
            if restored:
                conn.execute(
                    "UPDATE requisition_items SET issued_quantity = 0, "
                    "issue_status = ? WHERE requisition_id = ?",
                    (IssueStatus.PENDING.value, requisition_id),
                )
                status = aggregate_requisition_status(
                    line["status"] for line in lines
                )
                conn.execute(
                    "UPDATE requisitions SET status = ?, issued_by = NULL, "
                    "issued_date = NULL, updated_at = CURRENT_TIMESTAMP "
                    "WHERE id = ?",
                    (status.value, requisition_id),
                )

        if restored:
            logger.info(
                f"Restored {restored} lines of requisition #{requisition_id} "
                f"to inventory"
            )
            self.audit.log(
                "requisitions", requisition_id, AuditAction.UPDATE,
                {"status": header["status"]},
                {"status": status.value, "restored_lines": restored},
                user_id,
            )
        return restored

    # ── Edit & delete ───────────────────────────────────────────

    def update_requisition(
        self, requisition_id: int, user_id: int, *, authorized: bool,
        title: Optional[str] = None, description: Optional[str] = None,
        department: Optional[str] = None, priority: Optional[str] = None,
        required_date: Optional[str] = None, notes: Optional[str] = None,
        items: Optional[Sequence[RequisitionLine]] = None,
    ):
        """Edit header fields and optionally replace the lines.

        Replacing lines resets the requisition to pending and clears the
        previous approval. Lines with issued stock must be restored first.
        """
        require_authorized(authorized, "edit requisitions", "requisition",
                           requisition_id)
        if title is not None and not title.strip():
            raise ValidationError(
                "Title cannot be empty", entity="requisition",
                entity_id=requisition_id, field="title",
            )
        if priority is not None:
            priority = parse_enum(
                Priority, priority, "priority", "requisition", requisition_id,
            ).value
        if items is not None:
            self._validate_lines(items)

        with self.db.transaction() as conn:
            header = self._fetch_header(conn, requisition_id)
            conn.execute(
                "UPDATE requisitions SET title = COALESCE(?, title), "
                "description = COALESCE(?, description), "
                "department = COALESCE(?, department), "
                "priority = COALESCE(?, priority), "
                "required_date = COALESCE(?, required_date), "
                "notes = COALESCE(?, notes), "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (title.strip() if title else None, description, department,
                 priority, required_date, notes, requisition_id),
            )
            if items is not None:
                issued = conn.execute(
                    "SELECT COUNT(*) AS n FROM requisition_items "
                    "WHERE requisition_id = ? AND issued_quantity > 0",
                    (requisition_id,),
                ).fetchone()["n"]
                if issued:
                    raise ConflictError(
                        f"Requisition {requisition_id} has issued stock; "
                        f"restore inventory before replacing its items",
                        entity="requisition", entity_id=requisition_id,
                    )
                conn.execute(
                    "DELETE FROM requisition_items WHERE requisition_id = ?",
                    (requisition_id,),
                )
                estimated = self._insert_lines(conn, requisition_id, items)
                conn.execute(
                    "UPDATE requisitions SET status = ?, estimated_cost = ?, "
                    "approver_id = NULL, approval_date = NULL, "
                    "approval_notes = NULL WHERE id = ?",
                    (RequisitionStatus.PENDING.value, estimated,
                     requisition_id),
                )

        self.audit.log(
            "requisitions", requisition_id, AuditAction.UPDATE,
            dict(header),
            {"title": title, "description": description,
             "department": department, "priority": priority,
             "required_date": required_date, "notes": notes,
             "items_replaced": items is not None},
            user_id,
        )

    def delete_requisition(
        self, requisition_id: int, user_id: int, *, authorized: bool,
    ):
        """Remove a requisition at any stage. Inventory is left as it is."""
        require_authorized(authorized, "delete requisitions", "requisition",
                           requisition_id)
        with self.db.transaction() as conn:
            header = self._fetch_header(conn, requisition_id)
            lines = [dict(r) for r in self._fetch_lines(conn, requisition_id)]
            conn.execute(
                "DELETE FROM requisitions WHERE id = ?", (requisition_id,)
            )
        outstanding = sum(line["issued_quantity"] for line in lines)
        if outstanding:
            logger.warning(
                f"Requisition #{requisition_id} deleted with {outstanding} "
                f"issued units not restored"
            )
        else:
            logger.info(f"Requisition #{requisition_id} deleted")
        self.audit.log(
            "requisitions", requisition_id, AuditAction.DELETE,
            {**dict(header), "items": lines}, None, user_id,
        )

    # ── Reporting ───────────────────────────────────────────────

    def get_statistics(self) -> dict:
        """Counts per status and average days from creation to approval."""
        counts = {s.value: 0 for s in RequisitionStatus}
        for row in self.db.execute(
            "SELECT status, COUNT(*) AS n FROM requisitions GROUP BY status"
        ):
            counts[row["status"]] = row["n"]
        avg = self.db.execute(
            "SELECT AVG(julianday(approval_date) - julianday(created_at)) "
            "AS days FROM requisitions WHERE approval_date IS NOT NULL"
        )[0]["days"]
        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "average_approval_days": round(avg, 2) if avg is not None else None,
        }
