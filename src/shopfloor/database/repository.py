"""Repository layer: master data CRUD and queries."""

import logging
import sqlite3
from typing import Optional

from shopfloor.engines.audit import AuditTrail
from shopfloor.engines.ledger import InventoryLedger
from shopfloor.errors import ConflictError, NotFoundError, ValidationError

from .connection import DatabaseConnection
from .models import (
    AuditAction,
    CabinetAccessoryLink,
    CabinetMaterialLink,
    CabinetModel,
    Category,
    InventoryItem,
    ItemType,
    Supplier,
    Unit,
    User,
    from_row,
    parse_enum,
)

logger = logging.getLogger(__name__)

_ITEM_SELECT = (
    "SELECT i.*, c.name AS category_name, u.abbreviation AS unit_name, "
    "s.name AS supplier_name "
    "FROM inventory_items i "
    "LEFT JOIN categories c ON i.category_id = c.id "
    "LEFT JOIN units u ON i.unit_id = u.id "
    "LEFT JOIN suppliers s ON i.supplier_id = s.id"
)

_DIMENSIONS = ("width", "height", "depth")


def _item_from_row(row) -> InventoryItem:
    item = from_row(InventoryItem, row)
    item.category_name = row["category_name"] or ""
    item.unit_name = row["unit_name"] or ""
    item.supplier_name = row["supplier_name"] or ""
    return item


class Repository:
    """Provides master data operations for the application."""

    def __init__(self, db: DatabaseConnection, audit: AuditTrail = None):
        self.db = db
        self.audit = audit or AuditTrail(db)
        self.ledger = InventoryLedger(db, self.audit)

    # ── Users ───────────────────────────────────────────────────

    def create_user(self, user: User) -> int:
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO users "
                    "(username, display_name, role, department, is_active) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (user.username, user.display_name, user.role,
                     user.department, user.is_active),
                )
                return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"User '{user.username}' already exists", entity="user",
            ) from e

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        rows = self.db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        return User(**dict(rows[0])) if rows else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        rows = self.db.execute(
            "SELECT * FROM users WHERE username = ?", (username,)
        )
        return User(**dict(rows[0])) if rows else None

    def get_all_users(self, active_only: bool = True) -> list[User]:
        sql = "SELECT * FROM users"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self.db.execute(sql + " ORDER BY display_name")
        return [User(**dict(r)) for r in rows]

    # ── Units & Categories ──────────────────────────────────────

    def get_all_units(self) -> list[Unit]:
        rows = self.db.execute("SELECT * FROM units ORDER BY name")
        return [Unit(**dict(r)) for r in rows]

    def get_unit_by_abbreviation(self, abbreviation: str) -> Optional[Unit]:
        rows = self.db.execute(
            "SELECT * FROM units WHERE abbreviation = ?", (abbreviation,)
        )
        return Unit(**dict(rows[0])) if rows else None

    def create_unit(self, unit: Unit) -> int:
        try:
            return self.db.run_statement(
                "INSERT INTO units (name, abbreviation, description) "
                "VALUES (?, ?, ?)",
                (unit.name, unit.abbreviation, unit.description),
            ).id
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Unit '{unit.name}' already exists", entity="unit",
            ) from e

    def get_all_categories(self) -> list[Category]:
        rows = self.db.execute("SELECT * FROM categories ORDER BY name")
        return [Category(**dict(r)) for r in rows]

    def get_category_by_name(self, name: str) -> Optional[Category]:
        rows = self.db.execute(
            "SELECT * FROM categories WHERE name = ?", (name,)
        )
        return Category(**dict(rows[0])) if rows else None

    def create_category(self, category: Category) -> int:
        try:
            return self.db.run_statement(
                "INSERT INTO categories (name, description) VALUES (?, ?)",
                (category.name, category.description),
            ).id
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Category '{category.name}' already exists",
                entity="category",
            ) from e

    # ── Suppliers ───────────────────────────────────────────────

    def get_all_suppliers(self, active_only: bool = False) -> list[Supplier]:
        sql = "SELECT * FROM suppliers"
        if active_only:
            sql += " WHERE is_active = 1"
        rows = self.db.execute(sql + " ORDER BY name")
        return [Supplier(**dict(r)) for r in rows]

    def get_supplier_by_id(self, supplier_id: int) -> Optional[Supplier]:
        rows = self.db.execute(
            "SELECT * FROM suppliers WHERE id = ?", (supplier_id,)
        )
        return Supplier(**dict(rows[0])) if rows else None

    def create_supplier(self, supplier: Supplier) -> int:
        try:
            return self.db.run_statement(
                "INSERT INTO suppliers "
                "(name, contact_name, email, phone, address, notes, "
                "is_active) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (supplier.name, supplier.contact_name, supplier.email,
                 supplier.phone, supplier.address, supplier.notes,
                 supplier.is_active),
            ).id
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Supplier '{supplier.name}' already exists",
                entity="supplier",
            ) from e

    def update_supplier(self, supplier: Supplier):
        result = self.db.run_statement(
            "UPDATE suppliers SET name = ?, contact_name = ?, email = ?, "
            "phone = ?, address = ?, notes = ?, is_active = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (supplier.name, supplier.contact_name, supplier.email,
             supplier.phone, supplier.address, supplier.notes,
             supplier.is_active, supplier.id),
        )
        if result.changes == 0:
            raise NotFoundError(
                f"Supplier {supplier.id} not found",
                entity="supplier", entity_id=supplier.id,
            )

    def delete_supplier(self, supplier_id: int):
        """Delete a supplier; refused while purchase orders reference it."""
        try:
            result = self.db.run_statement(
                "DELETE FROM suppliers WHERE id = ?", (supplier_id,)
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                "Cannot delete a supplier that has purchase orders",
                entity="supplier", entity_id=supplier_id,
            ) from e
        if result.changes == 0:
            raise NotFoundError(
                f"Supplier {supplier_id} not found",
                entity="supplier", entity_id=supplier_id,
            )

    # ── Inventory Items ─────────────────────────────────────────

    def _validate_item(self, item: InventoryItem):
        parse_enum(ItemType, item.item_type, "item_type",
                   "inventory_item", item.id)
        if not item.sku or not item.sku.strip():
            raise ValidationError(
                "SKU is required", entity="inventory_item",
                entity_id=item.id, field="sku",
            )
        if not item.name or not item.name.strip():
            raise ValidationError(
                "Name is required", entity="inventory_item",
                entity_id=item.id, field="name",
            )
        for name in ("quantity", "min_quantity", "max_quantity", "unit_price"):
            value = getattr(item, name)
            if value is None or value < 0:
                raise ValidationError(
                    f"{name} cannot be negative", entity="inventory_item",
                    entity_id=item.id, field=name, limit=0,
                )

    def get_all_items(self) -> list[InventoryItem]:
        rows = self.db.execute(f"{_ITEM_SELECT} ORDER BY i.name")
        return [_item_from_row(r) for r in rows]

    def get_item_by_id(self, item_id: int) -> Optional[InventoryItem]:
        rows = self.db.execute(f"{_ITEM_SELECT} WHERE i.id = ?", (item_id,))
        return _item_from_row(rows[0]) if rows else None

    def get_item_by_sku(self, sku: str) -> Optional[InventoryItem]:
        rows = self.db.execute(f"{_ITEM_SELECT} WHERE i.sku = ?", (sku,))
        return _item_from_row(rows[0]) if rows else None

    def search_items(
        self, query: str = "", item_type: Optional[str] = None,
        category_id: Optional[int] = None, low_stock_only: bool = False,
    ) -> list[InventoryItem]:
        """Search by name, SKU, description or location."""
        sql = f"{_ITEM_SELECT} WHERE 1 = 1"
        params: list = []
        if query:
            like = f"%{query}%"
            sql += (
                " AND (i.name LIKE ? OR i.sku LIKE ? "
                "OR i.description LIKE ? OR i.location LIKE ?)"
            )
            params.extend([like, like, like, like])
        if item_type is not None:
            sql += " AND i.item_type = ?"
            params.append(parse_enum(ItemType, item_type, "item_type").value)
        if category_id is not None:
            sql += " AND i.category_id = ?"
            params.append(category_id)
        if low_stock_only:
            sql += " AND i.min_quantity > 0 AND i.quantity <= i.min_quantity"
        rows = self.db.execute(sql + " ORDER BY i.name", tuple(params))
        return [_item_from_row(r) for r in rows]

    def get_items_by_type(self, item_type: str) -> list[InventoryItem]:
        return self.search_items(item_type=item_type)

    def get_low_stock_items(self) -> list[InventoryItem]:
        rows = self.db.execute(
            f"{_ITEM_SELECT} WHERE i.min_quantity > 0 "
            "AND i.quantity <= i.min_quantity "
            "ORDER BY (i.quantity - i.min_quantity), i.name"
        )
        return [_item_from_row(r) for r in rows]

    def create_item(
        self, item: InventoryItem, user_id: Optional[int] = None,
    ) -> int:
        self._validate_item(item)
        try:
            with self.db.get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO inventory_items "
                    "(sku, name, description, item_type, category_id, "
                    "unit_id, supplier_id, location, quantity, min_quantity, "
                    "max_quantity, unit_price, notes) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (item.sku.strip(), item.name.strip(), item.description,
                     ItemType(item.item_type).value, item.category_id,
                     item.unit_id, item.supplier_id, item.location,
                     item.quantity, item.min_quantity, item.max_quantity,
                     item.unit_price, item.notes),
                )
                item_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"An item with SKU '{item.sku}' already exists",
                entity="inventory_item",
            ) from e
        logger.info(f"Created inventory item {item.sku} (#{item_id})")
        self.audit.log("inventory_items", item_id, AuditAction.INSERT,
                       None, item, user_id)
        return item_id

    def update_item(self, item: InventoryItem, user_id: Optional[int] = None):
        """Update an item. A changed quantity is logged as an adjustment."""
        self._validate_item(item)
        old = self.get_item_by_id(item.id)
        if old is None:
            raise NotFoundError(
                f"Inventory item {item.id} not found",
                entity="inventory_item", entity_id=item.id,
            )
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "UPDATE inventory_items SET sku = ?, name = ?, "
                    "description = ?, item_type = ?, category_id = ?, "
                    "unit_id = ?, supplier_id = ?, location = ?, "
                    "quantity = ?, min_quantity = ?, max_quantity = ?, "
                    "unit_price = ?, notes = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (item.sku.strip(), item.name.strip(), item.description,
                     ItemType(item.item_type).value, item.category_id,
                     item.unit_id, item.supplier_id, item.location,
                     item.quantity, item.min_quantity, item.max_quantity,
                     item.unit_price, item.notes, item.id),
                )
                self.ledger.record_correction(
                    conn, item.id, old.quantity, item.quantity,
                    notes="Quantity edited", user_id=user_id,
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"An item with SKU '{item.sku}' already exists",
                entity="inventory_item", entity_id=item.id,
            ) from e
        self.audit.log("inventory_items", item.id, AuditAction.UPDATE,
                       old, item, user_id)

    def delete_item(self, item_id: int, user_id: Optional[int] = None):
        """Delete an item; refused while BOM, requisition or PO rows use it."""
        old = self.get_item_by_id(item_id)
        if old is None:
            raise NotFoundError(
                f"Inventory item {item_id} not found",
                entity="inventory_item", entity_id=item_id,
            )
        try:
            self.db.run_statement(
                "DELETE FROM inventory_items WHERE id = ?", (item_id,)
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Cannot delete {old.name}: it is referenced by BOMs, "
                f"requisitions, orders or cabinet models",
                entity="inventory_item", entity_id=item_id,
            ) from e
        logger.info(f"Deleted inventory item {old.sku} (#{item_id})")
        self.audit.log("inventory_items", item_id, AuditAction.DELETE,
                       old, None, user_id)

    def get_inventory_summary(self) -> dict:
        """Aggregate counts and value for the dashboard."""
        row = self.db.execute(
            "SELECT COUNT(*) AS item_count, "
            "COALESCE(SUM(quantity), 0) AS total_units, "
            "COALESCE(SUM(quantity * unit_price), 0) AS total_value, "
            "COALESCE(SUM(CASE WHEN min_quantity > 0 "
            "AND quantity <= min_quantity "
            "THEN 1 ELSE 0 END), 0) AS low_stock_count "
            "FROM inventory_items"
        )[0]
        return dict(row)

    # ── Cabinet Models ──────────────────────────────────────────

    @staticmethod
    def _validate_cabinet_model(model: CabinetModel):
        if not model.name or not model.name.strip():
            raise ValidationError(
                "Cabinet model name is required", entity="cabinet_model",
                entity_id=model.id, field="name",
            )
        for dim in _DIMENSIONS:
            low = getattr(model, f"min_{dim}")
            high = getattr(model, f"max_{dim}")
            default = getattr(model, f"default_{dim}")
            if low <= 0 or high < low:
                raise ValidationError(
                    f"Invalid {dim} range {low}-{high}",
                    entity="cabinet_model", entity_id=model.id,
                    field=f"min_{dim}", limit=(low, high),
                )
            if not low <= default <= high:
                raise ValidationError(
                    f"Default {dim} {default} must be between {low} and "
                    f"{high} inches",
                    entity="cabinet_model", entity_id=model.id,
                    field=f"default_{dim}", limit=(low, high),
                )
        if model.base_cost < 0:
            raise ValidationError(
                "Base cost cannot be negative", entity="cabinet_model",
                entity_id=model.id, field="base_cost", limit=0,
            )

    def get_all_cabinet_models(self) -> list[CabinetModel]:
        rows = self.db.execute("SELECT * FROM cabinet_models ORDER BY name")
        return [CabinetModel(**dict(r)) for r in rows]

    def get_cabinet_model_by_id(self, model_id: int) -> Optional[CabinetModel]:
        rows = self.db.execute(
            "SELECT * FROM cabinet_models WHERE id = ?", (model_id,)
        )
        return CabinetModel(**dict(rows[0])) if rows else None

    def create_cabinet_model(
        self, model: CabinetModel, user_id: Optional[int] = None,
    ) -> int:
        self._validate_cabinet_model(model)
        try:
            model_id = self.db.run_statement(
                "INSERT INTO cabinet_models "
                "(name, description, default_width, default_height, "
                "default_depth, min_width, max_width, min_height, "
                "max_height, min_depth, max_depth, base_cost) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (model.name.strip(), model.description, model.default_width,
                 model.default_height, model.default_depth, model.min_width,
                 model.max_width, model.min_height, model.max_height,
                 model.min_depth, model.max_depth, model.base_cost),
            ).id
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Cabinet model '{model.name}' already exists",
                entity="cabinet_model",
            ) from e
        self.audit.log("cabinet_models", model_id, AuditAction.INSERT,
                       None, model, user_id)
        return model_id

    def update_cabinet_model(
        self, model: CabinetModel, user_id: Optional[int] = None,
    ):
        """Edit a template. Already priced cabinets keep their snapshot."""
        self._validate_cabinet_model(model)
        old = self.get_cabinet_model_by_id(model.id)
        if old is None:
            raise NotFoundError(
                f"Cabinet model {model.id} not found",
                entity="cabinet_model", entity_id=model.id,
            )
        try:
            self.db.run_statement(
                "UPDATE cabinet_models SET name = ?, description = ?, "
                "default_width = ?, default_height = ?, default_depth = ?, "
                "min_width = ?, max_width = ?, min_height = ?, "
                "max_height = ?, min_depth = ?, max_depth = ?, "
                "base_cost = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (model.name.strip(), model.description, model.default_width,
                 model.default_height, model.default_depth, model.min_width,
                 model.max_width, model.min_height, model.max_height,
                 model.min_depth, model.max_depth, model.base_cost, model.id),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(
                f"Cabinet model '{model.name}' already exists",
                entity="cabinet_model", entity_id=model.id,
            ) from e
        self.audit.log("cabinet_models", model.id, AuditAction.UPDATE,
                       old, model, user_id)

    def delete_cabinet_model(
        self, model_id: int, user_id: Optional[int] = None,
    ):
        """Delete a template; refused while kitchen projects use it."""
        with self.db.transaction() as conn:
            model = conn.execute(
                "SELECT * FROM cabinet_models WHERE id = ?", (model_id,)
            ).fetchone()
            if model is None:
                raise NotFoundError(
                    f"Cabinet model {model_id} not found",
                    entity="cabinet_model", entity_id=model_id,
                )
            used = conn.execute(
                "SELECT COUNT(*) AS n FROM kitchen_project_cabinets "
                "WHERE cabinet_model_id = ?",
                (model_id,),
            ).fetchone()["n"]
            if used:
                raise ConflictError(
                    f"Cannot delete cabinet model that is used in kitchen "
                    f"projects ({used} cabinets)",
                    entity="cabinet_model", entity_id=model_id,
                )
            conn.execute("DELETE FROM cabinet_models WHERE id = ?", (model_id,))
        logger.info(f"Deleted cabinet model #{model_id}")
        self.audit.log("cabinet_models", model_id, AuditAction.DELETE,
                       dict(model), None, user_id)

    # ── Cabinet Material & Accessory Links ──────────────────────

    def _require_linkable_item(
        self, conn, model_id: int, item_id: int, expected: ItemType,
    ):
        if conn.execute(
            "SELECT 1 FROM cabinet_models WHERE id = ?", (model_id,)
        ).fetchone() is None:
            raise NotFoundError(
                f"Cabinet model {model_id} not found",
                entity="cabinet_model", entity_id=model_id,
            )
        row = conn.execute(
            "SELECT item_type FROM inventory_items WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(
                f"Inventory item {item_id} not found",
                entity="inventory_item", entity_id=item_id,
            )
        if row["item_type"] != expected.value:
            raise ValidationError(
                f"Item {item_id} is a {row['item_type']}, expected "
                f"{expected.value}",
                entity="inventory_item", entity_id=item_id,
                field="item_type", limit=expected.value,
            )

    def link_material(
        self, model_id: int, material_item_id: int,
        cost_factor_per_sqft: float,
    ) -> int:
        """Register (or re-price) a sheet material for a cabinet model."""
        if cost_factor_per_sqft is None or cost_factor_per_sqft < 0:
            raise ValidationError(
                "Cost factor per sqft cannot be negative",
                entity="cabinet_model", entity_id=model_id,
                field="cost_factor_per_sqft", limit=0,
            )
        with self.db.transaction() as conn:
            self._require_linkable_item(
                conn, model_id, material_item_id, ItemType.SHEET_MATERIAL,
            )
            conn.execute(
                "INSERT INTO cabinet_model_materials "
                "(cabinet_model_id, material_item_id, cost_factor_per_sqft) "
                "VALUES (?, ?, ?) "
                "ON CONFLICT (cabinet_model_id, material_item_id) "
                "DO UPDATE SET cost_factor_per_sqft = excluded.cost_factor_per_sqft",
                (model_id, material_item_id, cost_factor_per_sqft),
            )
            return conn.execute(
                "SELECT id FROM cabinet_model_materials "
                "WHERE cabinet_model_id = ? AND material_item_id = ?",
                (model_id, material_item_id),
            ).fetchone()["id"]

    def link_accessory(
        self, model_id: int, accessory_item_id: int,
        quantity_per_cabinet: int, cost_factor_per_unit: float = 0.0,
    ) -> int:
        """Register (or update) a hardware accessory for a cabinet model."""
        if quantity_per_cabinet is None or quantity_per_cabinet < 0:
            raise ValidationError(
                "Quantity per cabinet cannot be negative",
                entity="cabinet_model", entity_id=model_id,
                field="quantity_per_cabinet", limit=0,
            )
        with self.db.transaction() as conn:
            self._require_linkable_item(
                conn, model_id, accessory_item_id, ItemType.HARDWARE_ACCESSORY,
            )
            conn.execute(
                "INSERT INTO cabinet_model_accessories "
                "(cabinet_model_id, accessory_item_id, quantity_per_cabinet, "
                "cost_factor_per_unit) VALUES (?, ?, ?, ?) "
                "ON CONFLICT (cabinet_model_id, accessory_item_id) "
                "DO UPDATE SET "
                "quantity_per_cabinet = excluded.quantity_per_cabinet, "
                "cost_factor_per_unit = excluded.cost_factor_per_unit",
                (model_id, accessory_item_id, quantity_per_cabinet,
                 cost_factor_per_unit),
            )
            return conn.execute(
                "SELECT id FROM cabinet_model_accessories "
                "WHERE cabinet_model_id = ? AND accessory_item_id = ?",
                (model_id, accessory_item_id),
            ).fetchone()["id"]

    def unlink_material(self, model_id: int, material_item_id: int):
        result = self.db.run_statement(
            "DELETE FROM cabinet_model_materials "
            "WHERE cabinet_model_id = ? AND material_item_id = ?",
            (model_id, material_item_id),
        )
        if result.changes == 0:
            raise NotFoundError(
                f"Material {material_item_id} is not linked to cabinet "
                f"model {model_id}",
                entity="cabinet_model", entity_id=model_id,
            )

    def unlink_accessory(self, model_id: int, accessory_item_id: int):
        result = self.db.run_statement(
            "DELETE FROM cabinet_model_accessories "
            "WHERE cabinet_model_id = ? AND accessory_item_id = ?",
            (model_id, accessory_item_id),
        )
        if result.changes == 0:
            raise NotFoundError(
                f"Accessory {accessory_item_id} is not linked to cabinet "
                f"model {model_id}",
                entity="cabinet_model", entity_id=model_id,
            )

    def get_model_materials(self, model_id: int) -> list[CabinetMaterialLink]:
        rows = self.db.execute(
            "SELECT m.*, i.name AS material_name, i.sku AS material_sku, "
            "i.unit_price FROM cabinet_model_materials m "
            "JOIN inventory_items i ON m.material_item_id = i.id "
            "WHERE m.cabinet_model_id = ? ORDER BY i.name",
            (model_id,),
        )
        return [CabinetMaterialLink(**dict(r)) for r in rows]

    def get_model_accessories(
        self, model_id: int,
    ) -> list[CabinetAccessoryLink]:
        rows = self.db.execute(
            "SELECT a.*, i.name AS accessory_name, i.sku AS accessory_sku, "
            "i.unit_price FROM cabinet_model_accessories a "
            "JOIN inventory_items i ON a.accessory_item_id = i.id "
            "WHERE a.cabinet_model_id = ? ORDER BY i.name",
            (model_id,),
        )
        return [CabinetAccessoryLink(**dict(r)) for r in rows]
