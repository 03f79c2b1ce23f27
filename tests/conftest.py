"""Shared test fixtures."""

import pytest

from shopfloor.app import create_services
from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import CabinetModel, InventoryItem, User
from shopfloor.database.repository import Repository
from shopfloor.database.schema import initialize_database
from shopfloor.engines.audit import AuditTrail


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    """Provide an initialized database connection."""
    conn = DatabaseConnection(db_path)
    initialize_database(conn)
    return conn


@pytest.fixture
def audit(db):
    return AuditTrail(db)


@pytest.fixture
def repo(db, audit):
    """Provide a repository with an initialized database."""
    return Repository(db, audit)


@pytest.fixture
def services(db_path):
    """Every engine wired to one temporary database."""
    return create_services(db_path)


@pytest.fixture
def admin(services):
    return services.repo.create_user(User(
        username="admin", display_name="Admin", role="admin",
    ))


@pytest.fixture
def requester(services):
    return services.repo.create_user(User(
        username="worker", display_name="Shop Worker", role="user",
        department="Assembly",
    ))


@pytest.fixture
def make_item(services):
    """Factory creating inventory items with sensible defaults."""
    counter = {"n": 0}

    def _make(name="Item", quantity=10, unit_price=1.0,
              item_type="raw_material", min_quantity=0, **kwargs):
        counter["n"] += 1
        return services.repo.create_item(InventoryItem(
            sku=kwargs.pop("sku", f"SKU-{counter['n']:03d}"),
            name=name,
            item_type=item_type,
            quantity=quantity,
            min_quantity=min_quantity,
            unit_price=unit_price,
            **kwargs,
        ))

    return _make


@pytest.fixture
def base_cabinet(services):
    """A base cabinet: width 18-36, height 30-36, depth 12-24, base cost 50."""
    return services.repo.create_cabinet_model(CabinetModel(
        name="Base Cabinet",
        default_width=24, default_height=30, default_depth=24,
        min_width=18, max_width=36,
        min_height=30, max_height=36,
        min_depth=12, max_depth=24,
        base_cost=50.0,
    ))


@pytest.fixture
def plywood(make_item):
    return make_item("3/4 Plywood", quantity=100, unit_price=3.0,
                     item_type="sheet_material", sku="PLY-34")


@pytest.fixture
def hinge(make_item):
    return make_item("Soft-close Hinge", quantity=200, unit_price=4.0,
                     item_type="hardware_accessory", sku="HNG-SC")


@pytest.fixture
def handle(make_item):
    return make_item("Bar Handle", quantity=50, unit_price=6.0,
                     item_type="hardware_accessory", sku="HDL-BAR")


@pytest.fixture
def configured_cabinet(services, base_cabinet, plywood, hinge, handle):
    """Base cabinet with plywood at 2/sqft, 2 hinges (+0.5) and 1 handle."""
    services.repo.link_material(base_cabinet, plywood, 2.0)
    services.repo.link_accessory(base_cabinet, hinge, 2, 0.5)
    services.repo.link_accessory(base_cabinet, handle, 1)
    return base_cabinet
