"""Tests for schema creation and seed data."""

import sqlite3

import pytest

from shopfloor.database.schema import SCHEMA_VERSION, initialize_database


def _tables(db):
    rows = db.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table'"
    )
    return {r["name"] for r in rows}


class TestSchemaCreation:
    def test_core_tables_exist(self, db):
        tables = _tables(db)
        for name in (
            "users", "inventory_items", "stock_movements", "audit_trail",
            "requisitions", "requisition_items", "cabinet_models",
            "cabinet_model_materials", "cabinet_model_accessories",
            "kitchen_projects", "kitchen_project_cabinets",
            "bill_of_materials", "bom_components", "bom_operations",
            "production_orders", "production_order_items",
            "production_order_operations", "purchase_orders",
            "purchase_order_items", "po_receiving", "document_sequences",
        ):
            assert name in tables, name

    def test_schema_version_recorded(self, db):
        row = db.execute("SELECT MAX(version) AS v FROM schema_version")[0]
        assert row["v"] == SCHEMA_VERSION

    def test_initialize_is_idempotent(self, db):
        initialize_database(db)
        initialize_database(db)
        units = db.execute("SELECT COUNT(*) AS n FROM units")[0]["n"]
        assert units == 6


class TestSeedData:
    def test_units_seeded(self, repo):
        abbreviations = {u.abbreviation for u in repo.get_all_units()}
        assert {"ea", "sqft", "lf", "box", "pr", "gal"} <= abbreviations

    def test_categories_seeded(self, repo):
        names = {c.name for c in repo.get_all_categories()}
        assert "Sheet Goods" in names
        assert "Hardware" in names
        assert len(names) == 6


class TestConstraints:
    def test_unknown_item_type_rejected_by_store(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO inventory_items (sku, name, item_type) "
                "VALUES ('X', 'X', 'gadget')"
            )

    def test_negative_stock_rejected_by_store(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO inventory_items (sku, name, quantity) "
                "VALUES ('X', 'X', -1)"
            )

    def test_bom_component_needs_exactly_one_target(self, db):
        db.execute("INSERT INTO users (username, display_name) "
                   "VALUES ('u', 'U')")
        db.execute("INSERT INTO bill_of_materials (name, created_by) "
                   "VALUES ('B', 1)")
        with pytest.raises(sqlite3.IntegrityError):
            db.execute("INSERT INTO bom_components (bom_id, quantity) "
                       "VALUES (1, 1)")
