"""Tests for kitchen projects and their conversion into BOMs."""

import sqlite3

import pytest

from shopfloor.database.models import AccessorySelection, Dimensions
from shopfloor.errors import ConflictError, NotFoundError, ValidationError

STANDARD = {"width": 24, "height": 30, "depth": 24}


@pytest.fixture
def kitchens(services):
    return services.kitchen_projects


@pytest.fixture
def project(kitchens, admin):
    return kitchens.create_project("Smith Kitchen", client_id=admin,
                                   user_id=admin)


class TestProjects:
    def test_create_and_get(self, kitchens, project, admin):
        found = kitchens.get_project(project)
        assert found.name == "Smith Kitchen"
        assert found.client_id == admin
        assert found.status == "draft"
        assert found.total_estimated_cost == 0
        assert found.cabinets == []

    def test_name_required(self, kitchens):
        with pytest.raises(ValidationError):
            kitchens.create_project("   ")

    def test_unknown_client(self, kitchens):
        with pytest.raises(NotFoundError):
            kitchens.create_project("Ghost", client_id=999)

    def test_update(self, kitchens, project):
        kitchens.update_project(project, name="Smith Remodel", notes="Oak")
        found = kitchens.get_project(project)
        assert found.name == "Smith Remodel"
        assert found.notes == "Oak"

    def test_list_by_status(self, kitchens, project):
        other = kitchens.create_project("Jones Kitchen")
        kitchens.set_status(other, "quoted")
        assert [p.id for p in kitchens.list_projects("quoted")] == [other]
        assert {p.id for p in kitchens.list_projects()} == {project, other}

    def test_status_transitions(self, kitchens, project):
        assert kitchens.set_status(project, "quoted").value == "quoted"
        assert kitchens.set_status(project, "ordered").value == "ordered"
        with pytest.raises(ConflictError):
            kitchens.set_status(project, "draft")

    def test_unknown_status(self, kitchens, project):
        with pytest.raises(ValidationError):
            kitchens.set_status(project, "shipped")

    def test_delete_removes_cabinets(self, services, kitchens, project,
                                     configured_cabinet, plywood):
        kitchens.add_cabinet(project, configured_cabinet, STANDARD, plywood)
        kitchens.delete_project(project)
        assert kitchens.get_project(project) is None
        assert services.db.execute(
            "SELECT COUNT(*) AS n FROM kitchen_project_cabinets"
        )[0]["n"] == 0


class TestCabinets:
    def test_add_prices_and_totals(self, kitchens, project,
                                   configured_cabinet, plywood, hinge):
        kitchens.add_cabinet(project, configured_cabinet, STANDARD, plywood)
        kitchens.add_cabinet(
            project, configured_cabinet, Dimensions(24, 30, 24), plywood,
            [AccessorySelection(hinge)],
        )
        found = kitchens.get_project(project)
        assert [c.calculated_cost for c in found.cabinets] == \
            pytest.approx([106.0, 115.0])
        assert found.total_estimated_cost == pytest.approx(221.0)
        assert found.cabinets[0].model_name == "Base Cabinet"
        assert found.cabinets[1].selected_accessories == [
            AccessorySelection(hinge, None),
        ]

    def test_out_of_range_not_added(self, kitchens, project,
                                    configured_cabinet, plywood):
        with pytest.raises(ValidationError):
            kitchens.add_cabinet(project, configured_cabinet,
                                 {"width": 40, "height": 30, "depth": 24},
                                 plywood)
        assert kitchens.get_project(project).cabinets == []

    def test_update_reprices(self, kitchens, project, configured_cabinet,
                             plywood, handle):
        cabinet = kitchens.add_cabinet(project, configured_cabinet, STANDARD,
                                       plywood)
        price = kitchens.update_cabinet(
            cabinet, accessories=[{"accessory_item_id": handle,
                                   "quantity": 2}],
        )
        assert price == pytest.approx(118.0)
        found = kitchens.get_project(project)
        assert found.total_estimated_cost == pytest.approx(118.0)
        assert found.cabinets[0].custom_width == 24

    def test_remove_updates_total(self, kitchens, project,
                                  configured_cabinet, plywood):
        first = kitchens.add_cabinet(project, configured_cabinet, STANDARD,
                                     plywood)
        kitchens.add_cabinet(project, configured_cabinet, STANDARD, plywood)
        kitchens.remove_cabinet(first)
        assert kitchens.get_project(project).total_estimated_cost == \
            pytest.approx(106.0)

    def test_ordered_project_is_frozen(self, kitchens, project,
                                       configured_cabinet, plywood):
        cabinet = kitchens.add_cabinet(project, configured_cabinet, STANDARD,
                                       plywood)
        kitchens.set_status(project, "quoted")
        kitchens.set_status(project, "ordered")
        with pytest.raises(ConflictError):
            kitchens.add_cabinet(project, configured_cabinet, STANDARD,
                                 plywood)
        with pytest.raises(ConflictError):
            kitchens.update_cabinet(cabinet, dimensions=STANDARD)
        with pytest.raises(ConflictError):
            kitchens.remove_cabinet(cabinet)

    def test_unknown_cabinet(self, kitchens):
        with pytest.raises(NotFoundError):
            kitchens.remove_cabinet(999)


class TestConvertToBoms:
    def test_one_bom_per_cabinet(self, services, kitchens, project,
                                 configured_cabinet, plywood, hinge, admin):
        first = kitchens.add_cabinet(project, configured_cabinet, STANDARD,
                                     plywood, [AccessorySelection(hinge)])
        second = kitchens.add_cabinet(
            project, configured_cabinet,
            {"width": 30, "height": 30, "depth": 24}, plywood,
        )
        bom_ids = kitchens.convert_to_boms(project, admin, labor_rate=20.0)

        boms = [services.boms.get_bom(b) for b in bom_ids]
        assert [b.name for b in boms] == [
            f"Custom Base Cabinet (24W x 30H x 24D) - Smith Kitchen #{first}",
            f"Custom Base Cabinet (30W x 30H x 24D) - Smith Kitchen #{second}",
        ]
        assert all(b.status == "active" for b in boms)
        assert [c.item_id for c in boms[0].components] == [plywood, hinge]
        assert [c.item_id for c in boms[1].components] == [plywood]
        assert len(boms[0].operations) == 4

    def test_empty_project(self, kitchens, project, admin):
        with pytest.raises(ValidationError):
            kitchens.convert_to_boms(project, admin)

    def test_second_conversion_creates_nothing(self, services, kitchens,
                                               project, configured_cabinet,
                                               plywood, admin):
        kitchens.add_cabinet(project, configured_cabinet, STANDARD, plywood)
        kitchens.convert_to_boms(project, admin)
        with pytest.raises(ConflictError):
            kitchens.convert_to_boms(project, admin)
        assert len(services.boms.list_boms()) == 1

    def test_failed_insert_leaves_no_boms(self, services, kitchens, project,
                                          configured_cabinet, plywood, admin,
                                          monkeypatch):
        for width in (24, 30, 36):
            kitchens.add_cabinet(project, configured_cabinet,
                                 {"width": width, "height": 30, "depth": 24},
                                 plywood)
        real_insert = kitchens.boms.insert_bom_from_virtual
        calls = []

        def fail_second(conn, *args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise sqlite3.OperationalError("disk I/O error")
            return real_insert(conn, *args, **kwargs)

        monkeypatch.setattr(kitchens.boms, "insert_bom_from_virtual",
                            fail_second)
        with pytest.raises(sqlite3.OperationalError):
            kitchens.convert_to_boms(project, admin)
        assert services.boms.list_boms() == []

        monkeypatch.undo()
        assert len(kitchens.convert_to_boms(project, admin)) == 3
        assert len(services.boms.list_boms()) == 3

    def test_unknown_project(self, kitchens, admin):
        with pytest.raises(NotFoundError):
            kitchens.convert_to_boms(999, admin)
