"""Tests for production orders: creation, issuance, operations, completion."""

import pytest

from shopfloor.database.models import (
    BOMComponent,
    BOMOperation,
    IssueRequest,
    IssueStatus,
    ProductionStatus,
)
from shopfloor.engines.production import (
    compute_actual_cost,
    order_status_from_operations,
    required_quantity,
)
from shopfloor.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


@pytest.fixture
def engine(services):
    return services.production


@pytest.fixture
def materials(make_item):
    return {
        "board": make_item("MDF Board", quantity=10, unit_price=10.0),
        "screw": make_item("Screw", quantity=100, unit_price=0.25),
        "cabinet": make_item("Wall Cabinet", quantity=0, unit_price=150.0,
                             item_type="finished_product"),
    }


@pytest.fixture
def bom(services, admin, materials):
    """Per unit: 2 boards (+10% waste), 8 screws, 30 + 60 min, overhead 5."""
    return services.boms.create_bom(
        "Wall Cabinet", admin,
        [BOMComponent(item_id=materials["board"], quantity=2,
                      waste_factor=0.1),
         BOMComponent(item_id=materials["screw"], quantity=8)],
        [BOMOperation(operation_name="Cut", estimated_time_minutes=30,
                      labor_rate=20.0),
         BOMOperation(operation_name="Assemble", estimated_time_minutes=60,
                      labor_rate=30.0)],
        status="active", overhead_cost=5.0,
        finished_product_id=materials["cabinet"],
    )


@pytest.fixture
def order(engine, bom, admin):
    return engine.create_production_order(bom, "Wall cabinets", 3, admin)


def _planned(engine, order, admin):
    engine.change_status(order, "planned", admin, authorized=True)
    return engine.get_production_order(order)


class TestPureRules:
    def test_required_quantity(self):
        assert required_quantity(3, 2, 0.1) == 6.6
        assert required_quantity(3, 8, 0) == 24

    def test_actual_cost_charges_completed_operations(self):
        cost = compute_actual_cost(
            [(6.6, 10.0), (24, 0.25)],
            [("completed", 30, 0, 20.0), ("completed", 60, 90, 30.0),
             ("skipped", 60, 0, 30.0), ("in_progress", 10, 0, 60.0)],
            15.0,
        )
        assert cost == pytest.approx(66 + 6 + 10 + 45 + 15)

    @pytest.mark.parametrize("statuses,expected", [
        (["completed", "skipped"], ProductionStatus.COMPLETED),
        (["completed", "pending"], ProductionStatus.IN_PROGRESS),
        (["in_progress", "pending"], ProductionStatus.IN_PROGRESS),
        (["pending", "pending"], None),
        ([], None),
    ])
    def test_order_status_from_operations(self, statuses, expected):
        assert order_status_from_operations(statuses) is expected


class TestCreateProductionOrder:
    def test_copies_bom(self, engine, order):
        po = engine.get_production_order(order)
        assert po.status == "draft"
        assert po.bom_name == "Wall Cabinet"
        assert [i.required_quantity for i in po.items] == [6.6, 24]
        assert [o.operation_name for o in po.operations] == ["Cut", "Assemble"]
        # BOM total (24 + 40 + 5) per unit
        assert po.planned_cost == pytest.approx(69 * 3)

    def test_order_numbers_are_sequential(self, engine, order, bom, admin):
        second = engine.create_production_order(bom, "More", 1, admin)
        first_no = engine.get_production_order(order).order_number
        second_no = engine.get_production_order(second).order_number
        assert first_no.startswith("PRO-")
        assert first_no.endswith("-0001")
        assert second_no.endswith("-0002")

    def test_inherits_finished_product(self, engine, order, materials):
        po = engine.get_production_order(order)
        assert po.finished_product_id == materials["cabinet"]

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
    def test_bad_quantity(self, engine, bom, admin, quantity):
        with pytest.raises(ValidationError):
            engine.create_production_order(bom, "Bad", quantity, admin)

    def test_archived_bom_refused(self, services, engine, bom, admin):
        services.boms.update_bom(bom, admin, status="archived")
        with pytest.raises(ConflictError):
            engine.create_production_order(bom, "Old", 1, admin)

    def test_missing_bom(self, engine, admin):
        with pytest.raises(NotFoundError):
            engine.create_production_order(999, "Ghost", 1, admin)

    def test_list(self, engine, order):
        assert [o.id for o in engine.list_production_orders()] == [order]
        assert engine.list_production_orders(status="completed") == []


class TestUpdateProductionOrder:
    def test_quantity_rescales(self, engine, order, admin):
        engine.update_production_order(order, admin, quantity=6,
                                       title="Wall cabinets x6",
                                       authorized=True)
        po = engine.get_production_order(order)
        assert po.title == "Wall cabinets x6"
        assert [i.required_quantity for i in po.items] == [13.2, 48]
        assert po.planned_cost == pytest.approx(69 * 6)

    def test_in_progress_refused(self, engine, order, admin):
        _planned(engine, order, admin)
        engine.change_status(order, "in_progress", admin, authorized=True)
        with pytest.raises(ConflictError):
            engine.update_production_order(order, admin, title="Late",
                                           authorized=True)

    def test_unauthorized_edit_refused(self, engine, order, requester):
        with pytest.raises(PermissionDeniedError):
            engine.update_production_order(order, requester, quantity=6,
                                           authorized=False)
        assert engine.get_production_order(order).quantity == 3


class TestChangeStatus:
    def test_forward(self, engine, order, admin):
        assert engine.change_status(
            order, "planned", admin, authorized=True) is ProductionStatus.PLANNED

    def test_illegal_transition(self, engine, order, admin):
        with pytest.raises(ConflictError):
            engine.change_status(order, "completed", admin, authorized=True)

    def test_unauthorized(self, engine, order, requester):
        with pytest.raises(PermissionDeniedError):
            engine.change_status(order, "planned", requester,
                                 authorized=False)

    def test_cancelled_is_final(self, engine, order, admin):
        engine.change_status(order, "cancelled", admin, authorized=True)
        with pytest.raises(ConflictError):
            engine.change_status(order, "planned", admin, authorized=True)


class TestIssueMaterials:
    def test_issue_moves_order_in_progress(self, services, engine, order,
                                           admin, materials):
        po = _planned(engine, order, admin)
        board, screw = po.items
        engine.issue_materials(order, [IssueRequest(board.id, 6.6)], admin,
                               authorized=True)
        po = engine.get_production_order(order)
        assert po.status == "in_progress"
        assert po.items[0].status == "issued"
        assert engine.material_status(order) is IssueStatus.PARTIAL
        assert services.repo.get_item_by_id(
            materials["board"]).quantity == pytest.approx(3.4)
        movement = services.ledger.get_stock_movements(
            item_id=materials["board"])[0]
        assert movement.reference_type == "production_order"
        assert movement.reference_number == po.order_number

    def test_full_issue(self, engine, order, admin):
        po = _planned(engine, order, admin)
        engine.issue_materials(order, [
            IssueRequest(po.items[0].id, 6.6),
            IssueRequest(po.items[1].id, 24),
        ], admin, authorized=True)
        assert engine.material_status(order) is IssueStatus.ISSUED

    def test_over_required_refused(self, engine, order, admin):
        po = _planned(engine, order, admin)
        with pytest.raises(ValidationError) as exc:
            engine.issue_materials(order, [IssueRequest(po.items[1].id, 25)],
                                   admin, authorized=True)
        assert exc.value.limit == 24
        assert "required quantity" in str(exc.value)

    def test_insufficient_stock_rolls_back(self, services, engine, order,
                                           admin, materials):
        services.ledger.adjust_stock(materials["board"], "subtract", 5)
        po = _planned(engine, order, admin)
        with pytest.raises(ValidationError):
            engine.issue_materials(order, [
                IssueRequest(po.items[1].id, 24),
                IssueRequest(po.items[0].id, 6.6),
            ], admin, authorized=True)
        assert services.repo.get_item_by_id(materials["screw"]).quantity == 100
        assert engine.get_production_order(order).status == "planned"

    def test_draft_order_refused(self, engine, order, admin):
        po = engine.get_production_order(order)
        with pytest.raises(ConflictError):
            engine.issue_materials(order, [IssueRequest(po.items[0].id, 1)],
                                   admin, authorized=True)

    def test_sub_assembly_line_refused(self, services, engine, bom, admin):
        parent = services.boms.create_bom(
            "Cabinet Pair", admin,
            [BOMComponent(component_bom_id=bom, quantity=2)],
            status="active",
        )
        order_id = engine.create_production_order(parent, "Pairs", 1, admin)
        po = _planned(engine, order_id, admin)
        assert po.items[0].component_type == "bom"
        with pytest.raises(ValidationError) as exc:
            engine.issue_materials(order_id, [IssueRequest(po.items[0].id, 1)],
                                   admin, authorized=True)
        assert exc.value.field == "item_id"


class TestOperations:
    def test_operations_drive_order_status(self, engine, order, admin):
        cut, assemble = engine.get_production_order(order).operations
        status = engine.update_operation_status(
            cut.id, "in_progress", admin, authorized=True)
        assert status is ProductionStatus.IN_PROGRESS
        engine.update_operation_status(cut.id, "completed", admin,
                                       actual_time_minutes=45,
                                       authorized=True)
        engine.update_operation_status(assemble.id, "in_progress", admin,
                                       authorized=True)
        status = engine.update_operation_status(
            assemble.id, "completed", admin, authorized=True)
        assert status is ProductionStatus.COMPLETED

        po = engine.get_production_order(order)
        assert po.completion_date is not None
        assert po.operations[0].actual_time_minutes == 45
        assert po.operations[0].actual_end_date is not None
        # 45 min at 20 + 60 min at 30 + overhead 5 x 3; no materials issued
        assert po.actual_cost == pytest.approx(15 + 30 + 15)

    def test_illegal_operation_transition(self, engine, order, admin):
        cut = engine.get_production_order(order).operations[0]
        with pytest.raises(ConflictError):
            engine.update_operation_status(cut.id, "completed", admin,
                                           authorized=True)

    def test_closed_order(self, engine, order, admin):
        engine.change_status(order, "cancelled", admin, authorized=True)
        cut = engine.get_production_order(order).operations[0]
        with pytest.raises(ConflictError):
            engine.update_operation_status(cut.id, "in_progress", admin,
                                           authorized=True)

    def test_negative_time(self, engine, order, admin):
        cut = engine.get_production_order(order).operations[0]
        with pytest.raises(ValidationError):
            engine.update_operation_status(cut.id, "in_progress", admin,
                                           actual_time_minutes=-5,
                                           authorized=True)


class TestCompleteProduction:
    @pytest.fixture
    def running(self, engine, order, admin):
        _planned(engine, order, admin)
        engine.change_status(order, "in_progress", admin, authorized=True)
        return order

    def test_partial_then_full(self, services, engine, running, admin,
                               materials):
        engine.complete_production(running, 1, admin, batch_number="B1",
                                   authorized=True)
        assert engine.get_production_order(running).status == "in_progress"
        engine.complete_production(running, 2, admin, authorized=True)
        po = engine.get_production_order(running)
        assert po.status == "completed"
        assert len(po.completions) == 2
        assert services.repo.get_item_by_id(materials["cabinet"]).quantity == 3

    def test_failed_qc_adds_no_stock(self, services, engine, running, admin,
                                     materials):
        engine.complete_production(running, 1, admin,
                                   quality_check_passed=False,
                                   authorized=True)
        assert services.repo.get_item_by_id(materials["cabinet"]).quantity == 0
        stats = engine.get_statistics()
        assert stats["units_completed"] == 1
        assert stats["units_failed_qc"] == 1

    def test_over_completion_refused(self, engine, running, admin):
        engine.complete_production(running, 2, admin, authorized=True)
        with pytest.raises(ValidationError) as exc:
            engine.complete_production(running, 2, admin, authorized=True)
        assert exc.value.limit == 1

    def test_planned_order_refused(self, engine, order, admin):
        _planned(engine, order, admin)
        with pytest.raises(ConflictError):
            engine.complete_production(order, 1, admin, authorized=True)

    def test_actual_cost_from_issued_materials(self, engine, running, admin):
        po = engine.get_production_order(running)
        engine.issue_materials(running, [
            IssueRequest(po.items[0].id, 6.6),
            IssueRequest(po.items[1].id, 24),
        ], admin, authorized=True)
        engine.complete_production(running, 3, admin, authorized=True)
        # materials 66 + 6, no operations completed, overhead 15
        assert engine.get_production_order(running).actual_cost == (
            pytest.approx(87.0)
        )


class TestDeleteAndStatistics:
    def test_delete_draft(self, engine, order, admin):
        engine.delete_production_order(order, admin, authorized=True)
        assert engine.get_production_order(order) is None

    def test_delete_planned_refused(self, engine, order, admin):
        _planned(engine, order, admin)
        with pytest.raises(ConflictError):
            engine.delete_production_order(order, admin, authorized=True)

    def test_statistics(self, engine, order, bom, admin):
        engine.create_production_order(bom, "Second", 1, admin)
        stats = engine.get_statistics()
        assert stats["total"] == 2
        assert stats["by_status"] == {"draft": 2}
        assert stats["planned_cost"] == pytest.approx(69 * 4)
