"""Tests for the Repository master data layer."""

import pytest

from shopfloor.database.models import (
    Category,
    InventoryItem,
    Supplier,
    Unit,
    User,
)
from shopfloor.errors import ConflictError, NotFoundError, ValidationError


class TestUsers:
    def test_create_and_get_user(self, repo):
        uid = repo.create_user(User(
            username="jdoe", display_name="J. Doe", department="Cutting",
        ))
        user = repo.get_user_by_id(uid)
        assert user.username == "jdoe"
        assert user.department == "Cutting"
        assert repo.get_user_by_username("jdoe").id == uid

    def test_duplicate_username(self, repo):
        repo.create_user(User(username="dup", display_name="Dup"))
        with pytest.raises(ConflictError):
            repo.create_user(User(username="dup", display_name="Again"))

    def test_inactive_users_hidden_by_default(self, repo):
        repo.create_user(User(username="a", display_name="A"))
        repo.create_user(User(username="b", display_name="B", is_active=0))
        assert [u.username for u in repo.get_all_users()] == ["a"]
        assert len(repo.get_all_users(active_only=False)) == 2


class TestUnitsAndCategories:
    def test_create_unit(self, repo):
        uid = repo.create_unit(Unit(name="Meter", abbreviation="m"))
        assert repo.get_unit_by_abbreviation("m").id == uid

    def test_duplicate_unit(self, repo):
        with pytest.raises(ConflictError):
            repo.create_unit(Unit(name="Each", abbreviation="ea"))

    def test_create_category(self, repo):
        cid = repo.create_category(Category(name="Edge Banding"))
        assert repo.get_category_by_name("Edge Banding").id == cid

    def test_duplicate_category(self, repo):
        with pytest.raises(ConflictError):
            repo.create_category(Category(name="Hardware"))


class TestSuppliers:
    def test_create_update_supplier(self, repo):
        sid = repo.create_supplier(Supplier(name="Acme Lumber"))
        supplier = repo.get_supplier_by_id(sid)
        supplier.email = "orders@acme.test"
        repo.update_supplier(supplier)
        assert repo.get_supplier_by_id(sid).email == "orders@acme.test"

    def test_update_missing_supplier(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_supplier(Supplier(id=999, name="Ghost"))

    def test_delete_supplier(self, repo):
        sid = repo.create_supplier(Supplier(name="Short Lived"))
        repo.delete_supplier(sid)
        assert repo.get_supplier_by_id(sid) is None

    def test_active_only_filter(self, repo):
        repo.create_supplier(Supplier(name="Open"))
        repo.create_supplier(Supplier(name="Closed", is_active=0))
        names = [s.name for s in repo.get_all_suppliers(active_only=True)]
        assert names == ["Open"]


class TestInventoryItems:
    def _item(self, **kwargs):
        defaults = dict(sku="BLT-10", name="Bolt", quantity=10,
                        unit_price=0.25)
        defaults.update(kwargs)
        return InventoryItem(**defaults)

    def test_create_item_with_joins(self, repo):
        category = repo.get_category_by_name("Hardware")
        unit = repo.get_unit_by_abbreviation("ea")
        item_id = repo.create_item(self._item(
            category_id=category.id, unit_id=unit.id,
        ))
        item = repo.get_item_by_id(item_id)
        assert item.sku == "BLT-10"
        assert item.category_name == "Hardware"
        assert item.unit_name == "ea"

    def test_duplicate_sku(self, repo):
        repo.create_item(self._item())
        with pytest.raises(ConflictError):
            repo.create_item(self._item(name="Other bolt"))

    def test_sku_required(self, repo):
        with pytest.raises(ValidationError) as exc:
            repo.create_item(self._item(sku="  "))
        assert exc.value.field == "sku"

    def test_negative_quantity_rejected(self, repo):
        with pytest.raises(ValidationError) as exc:
            repo.create_item(self._item(quantity=-1))
        assert exc.value.field == "quantity"

    def test_unknown_item_type_rejected(self, repo):
        with pytest.raises(ValidationError) as exc:
            repo.create_item(self._item(item_type="gizmo"))
        assert exc.value.field == "item_type"

    def test_get_by_sku(self, repo):
        item_id = repo.create_item(self._item())
        assert repo.get_item_by_sku("BLT-10").id == item_id
        assert repo.get_item_by_sku("NOPE") is None

    def test_update_item_fields(self, repo):
        item_id = repo.create_item(self._item())
        item = repo.get_item_by_id(item_id)
        item.name = "Hex Bolt"
        item.location = "Bin 4"
        repo.update_item(item)
        updated = repo.get_item_by_id(item_id)
        assert updated.name == "Hex Bolt"
        assert updated.location == "Bin 4"

    def test_edited_quantity_writes_adjustment(self, repo):
        item_id = repo.create_item(self._item(quantity=10))
        item = repo.get_item_by_id(item_id)
        item.quantity = 7
        repo.update_item(item, user_id=None)

        movements = repo.ledger.get_stock_movements(item_id=item_id)
        assert len(movements) == 1
        assert movements[0].movement_type == "adjustment"
        assert movements[0].quantity == 3
        assert movements[0].quantity_before == 10
        assert movements[0].quantity_after == 7

    def test_unchanged_quantity_writes_no_movement(self, repo):
        item_id = repo.create_item(self._item())
        item = repo.get_item_by_id(item_id)
        item.notes = "Restocked shelf label"
        repo.update_item(item)
        assert repo.ledger.get_stock_movements(item_id=item_id) == []

    def test_update_missing_item(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_item(self._item(id=404))

    def test_delete_item(self, repo):
        item_id = repo.create_item(self._item())
        repo.delete_item(item_id)
        assert repo.get_item_by_id(item_id) is None

    def test_delete_missing_item(self, repo):
        with pytest.raises(NotFoundError):
            repo.delete_item(404)

    def test_delete_referenced_item_refused(self, services, make_item,
                                           requester):
        from shopfloor.database.models import RequisitionLine

        item_id = make_item("Glue")
        services.requisitions.create_requisition(
            requester, "Glue run", [RequisitionLine(item_id, 1)],
        )
        with pytest.raises(ConflictError):
            services.repo.delete_item(item_id)
        assert services.repo.get_item_by_id(item_id) is not None

    def test_create_is_audited(self, repo):
        item_id = repo.create_item(self._item())
        trail = repo.audit.get_trail("inventory_items", item_id)
        assert [e.action for e in trail] == ["INSERT"]
        assert trail[0].new["sku"] == "BLT-10"


class TestSearchAndReports:
    @pytest.fixture
    def stocked(self, repo):
        repo.create_item(InventoryItem(
            sku="PLY-1", name="Birch Plywood", item_type="sheet_material",
            quantity=2, min_quantity=5, unit_price=40.0, location="Rack A",
        ))
        repo.create_item(InventoryItem(
            sku="HNG-1", name="Euro Hinge", item_type="hardware_accessory",
            quantity=100, min_quantity=10, unit_price=2.5,
        ))
        repo.create_item(InventoryItem(
            sku="SCR-1", name="Wood Screw", quantity=0, min_quantity=0,
            unit_price=0.05,
        ))
        return repo

    def test_search_by_name(self, stocked):
        results = stocked.search_items("hinge")
        assert [i.sku for i in results] == ["HNG-1"]

    def test_search_by_location(self, stocked):
        assert [i.sku for i in stocked.search_items("Rack A")] == ["PLY-1"]

    def test_search_by_type(self, stocked):
        results = stocked.get_items_by_type("sheet_material")
        assert [i.sku for i in results] == ["PLY-1"]

    def test_search_invalid_type(self, stocked):
        with pytest.raises(ValidationError):
            stocked.search_items(item_type="widget")

    def test_low_stock(self, stocked):
        skus = [i.sku for i in stocked.get_low_stock_items()]
        assert "PLY-1" in skus
        assert "HNG-1" not in skus

    def test_low_stock_property(self, stocked):
        ply = stocked.get_item_by_sku("PLY-1")
        screw = stocked.get_item_by_sku("SCR-1")
        assert ply.is_low_stock
        assert not screw.is_low_stock

    def test_summary(self, stocked):
        summary = stocked.get_inventory_summary()
        assert summary["item_count"] == 3
        assert summary["total_units"] == 102
        assert summary["total_value"] == pytest.approx(80 + 250)

    def test_untracked_items_never_low(self, stocked):
        assert [i.sku for i in stocked.get_low_stock_items()] == ["PLY-1"]
        assert [i.sku for i in stocked.search_items(low_stock_only=True)] \
            == ["PLY-1"]
        assert stocked.get_inventory_summary()["low_stock_count"] == 1
        assert [i.sku for i in stocked.search_items() if i.is_low_stock] \
            == ["PLY-1"]
