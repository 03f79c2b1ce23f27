"""Tests for the requisition engine: request, approval, issuance, restore."""

import pytest

from shopfloor.database.models import (
    IssueRequest,
    ItemApproval,
    RequisitionLine,
)
from shopfloor.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


@pytest.fixture
def engine(services):
    return services.requisitions


@pytest.fixture
def stock(make_item):
    """Three items: screws (100), glue (10), hinges (4)."""
    return {
        "screw": make_item("Screw", quantity=100, unit_price=0.1),
        "glue": make_item("Glue", quantity=10, unit_price=5.0),
        "hinge": make_item("Hinge", quantity=4, unit_price=3.0),
    }


@pytest.fixture
def requisition(engine, requester, stock):
    return engine.create_requisition(
        requester, "Cabinet run 12", [
            RequisitionLine(stock["screw"], 20),
            RequisitionLine(stock["glue"], 2),
            RequisitionLine(stock["hinge"], 4),
        ],
        department="Assembly", priority="high",
    )


def _line_ids(engine, requisition_id):
    return [i.id for i in engine.get_requisition(requisition_id).items]


class TestCreateRequisition:
    def test_creates_pending(self, engine, requisition):
        req = engine.get_requisition(requisition)
        assert req.status == "pending"
        assert req.priority == "high"
        assert req.requester_name == "Shop Worker"
        assert len(req.items) == 3
        assert req.estimated_cost == pytest.approx(20 * 0.1 + 2 * 5 + 4 * 3)

    def test_stock_untouched(self, services, engine, requisition, stock):
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 100

    def test_needs_items(self, engine, requester):
        with pytest.raises(ValidationError) as exc:
            engine.create_requisition(requester, "Empty", [])
        assert exc.value.field == "items"

    def test_needs_title(self, engine, requester, stock):
        with pytest.raises(ValidationError):
            engine.create_requisition(
                requester, " ", [RequisitionLine(stock["glue"], 1)])

    def test_rejects_fractional_quantity(self, engine, requester, stock):
        with pytest.raises(ValidationError):
            engine.create_requisition(
                requester, "Bad", [RequisitionLine(stock["glue"], 1.5)])

    def test_unknown_item(self, engine, requester):
        with pytest.raises(NotFoundError):
            engine.create_requisition(
                requester, "Ghost", [RequisitionLine(999, 1)])

    def test_unknown_requester(self, engine, stock):
        with pytest.raises(NotFoundError):
            engine.create_requisition(
                999, "Nobody", [RequisitionLine(stock["glue"], 1)])

    def test_invalid_priority(self, engine, requester, stock):
        with pytest.raises(ValidationError) as exc:
            engine.create_requisition(
                requester, "Rush", [RequisitionLine(stock["glue"], 1)],
                priority="asap",
            )
        assert exc.value.field == "priority"


class TestListRequisitions:
    def test_filters(self, engine, requisition, requester, stock):
        engine.create_requisition(
            requester, "Second", [RequisitionLine(stock["glue"], 1)])
        assert len(engine.list_requisitions()) == 2
        assert len(engine.list_requisitions(status="pending")) == 2
        assert engine.list_requisitions(status="issued") == []
        assert len(engine.list_requisitions(requester_id=requester)) == 2


class TestDecideRequisition:
    def test_approve_all(self, engine, requisition, admin):
        status = engine.decide_requisition(
            requisition, "approved", admin, authorized=True)
        assert status.value == "approved"
        req = engine.get_requisition(requisition)
        assert req.approver_name == "Admin"
        assert all(i.approved_quantity == i.quantity for i in req.items)
        assert all(i.status == "approved" for i in req.items)

    def test_reject_all(self, engine, requisition, admin):
        engine.decide_requisition(
            requisition, "rejected", admin, "Over budget", authorized=True)
        req = engine.get_requisition(requisition)
        assert req.status == "rejected"
        assert req.approval_notes == "Over budget"
        assert all(i.rejected_quantity == i.quantity for i in req.items)

    def test_unauthorized(self, engine, requisition, requester):
        with pytest.raises(PermissionDeniedError):
            engine.decide_requisition(
                requisition, "approved", requester, authorized=False)
        assert engine.get_requisition(requisition).status == "pending"

    def test_only_pending(self, engine, requisition, admin):
        engine.decide_requisition(requisition, "approved", admin,
                                  authorized=True)
        with pytest.raises(ConflictError):
            engine.decide_requisition(requisition, "rejected", admin,
                                      authorized=True)

    def test_bad_decision(self, engine, requisition, admin):
        with pytest.raises(ValidationError):
            engine.decide_requisition(requisition, "issued", admin,
                                      authorized=True)


class TestApproveItems:
    def test_partial_split(self, engine, requisition, admin):
        screw, glue, hinge = _line_ids(engine, requisition)
        status = engine.approve_items(requisition, [
            ItemApproval(screw, approved_quantity=20),
            ItemApproval(glue, approved_quantity=1, rejected_quantity=1),
            ItemApproval(hinge, approved_quantity=4),
        ], admin, authorized=True)
        assert status.value == "partially_approved"
        items = engine.get_requisition(requisition).items
        assert [i.status for i in items] == [
            "approved", "partially_approved", "approved",
        ]

    def test_approved_and_rejected_lines_leave_header_pending(
        self, engine, requisition, admin,
    ):
        screw, glue, hinge = _line_ids(engine, requisition)
        status = engine.approve_items(requisition, [
            ItemApproval(screw, approved_quantity=20),
            ItemApproval(glue, rejected_quantity=2),
            ItemApproval(hinge, approved_quantity=4),
        ], admin, authorized=True)
        assert status.value == "pending"

    def test_invalid_split_writes_nothing(self, engine, requisition, admin):
        screw, glue, _ = _line_ids(engine, requisition)
        with pytest.raises(ValidationError):
            engine.approve_items(requisition, [
                ItemApproval(screw, approved_quantity=20),
                ItemApproval(glue, approved_quantity=2, rejected_quantity=1),
            ], admin, authorized=True)
        items = engine.get_requisition(requisition).items
        assert all(i.approved_quantity == 0 for i in items)

    def test_foreign_line(self, engine, requisition, admin):
        with pytest.raises(NotFoundError):
            engine.approve_items(requisition, [ItemApproval(999, 1)], admin,
                                 authorized=True)

    def test_empty_batch(self, engine, requisition, admin):
        with pytest.raises(ValidationError):
            engine.approve_items(requisition, [], admin, authorized=True)


class TestIssueItems:
    @pytest.fixture
    def approved(self, engine, requisition, admin):
        engine.decide_requisition(requisition, "approved", admin,
                                  authorized=True)
        return requisition

    def test_full_issue(self, services, engine, approved, admin, stock):
        lines = _line_ids(engine, approved)
        movements = engine.issue_items(approved, [
            IssueRequest(lines[0], 20),
            IssueRequest(lines[1], 2),
            IssueRequest(lines[2], 4),
        ], admin, authorized=True)
        assert len(movements) == 3
        req = engine.get_requisition(approved)
        assert req.status == "issued"
        assert all(i.issue_status == "issued" for i in req.items)
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 80
        assert services.repo.get_item_by_id(stock["hinge"]).quantity == 0
        movement = services.ledger.get_stock_movements(
            item_id=stock["glue"])[0]
        assert movement.reference_type == "requisition"
        assert movement.reference_number == f"REQ-{approved}"

    def test_partial_issue_then_rest(self, engine, approved, admin):
        lines = _line_ids(engine, approved)
        engine.issue_items(approved, [IssueRequest(lines[0], 5)], admin,
                           authorized=True)
        req = engine.get_requisition(approved)
        assert req.status == "partially_issued"
        assert req.items[0].issue_status == "partial"

        engine.issue_items(approved, [
            IssueRequest(lines[0], 15),
            IssueRequest(lines[1], 2),
            IssueRequest(lines[2], 4),
        ], admin, authorized=True)
        assert engine.get_requisition(approved).status == "issued"

    def test_failing_line_rolls_back_batch(
        self, services, engine, approved, admin, stock,
    ):
        services.ledger.adjust_stock(stock["hinge"], "subtract", 2)
        lines = _line_ids(engine, approved)
        with pytest.raises(ValidationError) as exc:
            engine.issue_items(approved, [
                IssueRequest(lines[0], 20),
                IssueRequest(lines[1], 2),
                IssueRequest(lines[2], 4),
            ], admin, authorized=True)
        assert exc.value.limit == 2
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 100
        assert services.repo.get_item_by_id(stock["glue"]).quantity == 10
        req = engine.get_requisition(approved)
        assert req.status == "approved"
        assert all(i.issued_quantity == 0 for i in req.items)
        assert services.ledger.get_stock_movements(
            reference_type="requisition") == []

    def test_over_approved_refused(self, engine, approved, admin):
        lines = _line_ids(engine, approved)
        with pytest.raises(ValidationError) as exc:
            engine.issue_items(approved, [IssueRequest(lines[1], 3)], admin,
                               authorized=True)
        assert exc.value.limit == 2

    def test_pending_requisition_refused(self, engine, requisition, admin):
        lines = _line_ids(engine, requisition)
        with pytest.raises(ConflictError):
            engine.issue_items(requisition, [IssueRequest(lines[0], 1)],
                               admin, authorized=True)

    def test_partially_approved_is_issuable(self, engine, requisition, admin):
        screw, glue, hinge = _line_ids(engine, requisition)
        engine.approve_items(requisition, [
            ItemApproval(screw, approved_quantity=10, rejected_quantity=10),
        ], admin, authorized=True)
        engine.issue_items(requisition, [IssueRequest(screw, 10)], admin,
                           authorized=True)
        assert engine.get_requisition(requisition).status == "issued"

    def test_unauthorized(self, engine, approved, requester):
        lines = _line_ids(engine, approved)
        with pytest.raises(PermissionDeniedError):
            engine.issue_items(approved, [IssueRequest(lines[0], 1)],
                               requester, authorized=False)

    def test_audit_failure_keeps_issued_stock(self, services, engine,
                                              approved, admin, stock):
        services.db.execute("DROP TABLE audit_trail")
        lines = _line_ids(engine, approved)
        movements = engine.issue_items(approved, [
            IssueRequest(lines[0], 20),
            IssueRequest(lines[1], 2),
        ], admin, authorized=True)
        assert len(movements) == 2
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 80
        assert services.repo.get_item_by_id(stock["glue"]).quantity == 8
        assert len(services.ledger.get_stock_movements(
            reference_type="requisition")) == 2
        assert engine.get_requisition(approved).status == "partially_issued"


class TestRestoreAndDelete:
    @pytest.fixture
    def issued(self, engine, requisition, admin):
        engine.decide_requisition(requisition, "approved", admin,
                                  authorized=True)
        lines = _line_ids(engine, requisition)
        engine.issue_items(requisition, [
            IssueRequest(lines[0], 20), IssueRequest(lines[1], 2),
        ], admin, authorized=True)
        return requisition

    def test_restore_returns_stock(self, services, engine, issued, admin,
                                   stock):
        restored = engine.restore_inventory(issued, admin, authorized=True)
        assert restored == 2
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 100
        assert services.repo.get_item_by_id(stock["glue"]).quantity == 10
        req = engine.get_requisition(issued)
        assert req.status == "approved"
        assert all(i.issued_quantity == 0 for i in req.items)

    def test_restore_twice_is_noop(self, services, engine, issued, admin,
                                   stock):
        engine.restore_inventory(issued, admin, authorized=True)
        assert engine.restore_inventory(issued, admin, authorized=True) == 0
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 100

    def test_delete_leaves_stock_alone(self, services, engine, issued, admin,
                                       stock):
        engine.delete_requisition(issued, admin, authorized=True)
        assert engine.get_requisition(issued) is None
        assert services.repo.get_item_by_id(stock["screw"]).quantity == 80
        assert services.ledger.get_stock_movements(
            item_id=stock["screw"], movement_type="in") == []

    def test_delete_is_audited(self, services, engine, requisition, admin):
        engine.delete_requisition(requisition, admin, authorized=True)
        latest = services.audit.get_trail("requisitions", requisition)[0]
        assert latest.action == "DELETE"
        assert len(latest.old["items"]) == 3

    def test_delete_missing(self, engine, admin):
        with pytest.raises(NotFoundError):
            engine.delete_requisition(999, admin, authorized=True)


class TestUpdateRequisition:
    def test_header_fields(self, engine, requisition, requester):
        engine.update_requisition(
            requisition, requester, authorized=True,
            title="Cabinet run 12b", notes="Rush",
        )
        req = engine.get_requisition(requisition)
        assert req.title == "Cabinet run 12b"
        assert req.notes == "Rush"
        assert req.department == "Assembly"

    def test_replace_items_resets_approval(
        self, engine, requisition, requester, admin, stock,
    ):
        engine.decide_requisition(requisition, "approved", admin,
                                  authorized=True)
        engine.update_requisition(
            requisition, requester, authorized=True,
            items=[RequisitionLine(stock["glue"], 3)],
        )
        req = engine.get_requisition(requisition)
        assert req.status == "pending"
        assert req.approver_id is None
        assert [i.quantity for i in req.items] == [3]
        assert req.estimated_cost == pytest.approx(15.0)

    def test_replace_items_refused_after_issue(
        self, engine, requisition, requester, admin, stock,
    ):
        engine.decide_requisition(requisition, "approved", admin,
                                  authorized=True)
        lines = _line_ids(engine, requisition)
        engine.issue_items(requisition, [IssueRequest(lines[0], 1)], admin,
                           authorized=True)
        with pytest.raises(ConflictError):
            engine.update_requisition(
                requisition, requester, authorized=True, title="Changed",
                items=[RequisitionLine(stock["glue"], 1)],
            )
        assert engine.get_requisition(requisition).title == "Cabinet run 12"


class TestStatistics:
    def test_counts(self, engine, requisition, requester, admin, stock):
        other = engine.create_requisition(
            requester, "Other", [RequisitionLine(stock["glue"], 1)])
        engine.decide_requisition(other, "rejected", admin, authorized=True)
        stats = engine.get_statistics()
        assert stats["total"] == 2
        assert stats["by_status"]["pending"] == 1
        assert stats["by_status"]["rejected"] == 1
        assert stats["average_approval_days"] is not None
