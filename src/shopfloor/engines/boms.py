"""Bill of materials management and cost roll-up."""

import logging
import math
from typing import Optional, Sequence

from shopfloor.config import Config
from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import (
    BOM,
    AuditAction,
    BOMComponent,
    BOMOperation,
    BOMStatus,
    SkillLevel,
    VirtualBOM,
    from_row,
    parse_enum,
)
from shopfloor.engines.audit import AuditTrail
from shopfloor.engines.lookups import require_row, require_user
from shopfloor.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def component_cost(quantity: float, unit_cost: float, waste_factor: float) -> float:
    """Extended cost of one component line including waste."""
    return quantity * unit_cost * (1 + waste_factor)


def roll_up_costs(
    component_totals: Sequence[float],
    operations: Sequence[tuple[int, float]],
    overhead_cost: float,
) -> dict:
    """BOM cost fields from component totals and ``(minutes, rate)`` pairs."""
    unit_cost = math.fsum(component_totals)
    labor_cost = math.fsum(minutes / 60 * rate for minutes, rate in operations)
    return {
        "unit_cost": unit_cost,
        "labor_cost": labor_cost,
        "overhead_cost": overhead_cost,
        "total_cost": unit_cost + labor_cost + overhead_cost,
    }


class BOMService:
    """Creates, edits and prices bills of materials."""

    def __init__(self, db: DatabaseConnection, audit: AuditTrail = None):
        self.db = db
        self.audit = audit or AuditTrail(db)

    # ── Validation helpers ──────────────────────────────────────

    @staticmethod
    def _validate_component(component: BOMComponent):
        if (component.item_id is None) == (component.component_bom_id is None):
            raise ValidationError(
                "A BOM component must reference exactly one of an item or "
                "a sub-assembly BOM",
                entity="bom_component", entity_id=component.id,
                field="item_id",
            )
        if component.quantity is None or component.quantity <= 0:
            raise ValidationError(
                "Component quantity must be greater than zero",
                entity="bom_component", entity_id=component.id,
                field="quantity", limit=0,
            )
        if component.waste_factor is None or component.waste_factor < 0:
            raise ValidationError(
                "Waste factor cannot be negative",
                entity="bom_component", entity_id=component.id,
                field="waste_factor", limit=0,
            )

    @staticmethod
    def _validate_operation(operation: BOMOperation):
        if not operation.operation_name or not operation.operation_name.strip():
            raise ValidationError(
                "Operation name is required", entity="bom_operation",
                entity_id=operation.id, field="operation_name",
            )
        if operation.estimated_time_minutes < 0 or operation.labor_rate < 0:
            raise ValidationError(
                f"Time and labor rate for {operation.operation_name} cannot "
                f"be negative",
                entity="bom_operation", entity_id=operation.id,
                field="estimated_time_minutes", limit=0,
            )
        parse_enum(SkillLevel, operation.skill_level, "skill_level",
                   "bom_operation", operation.id)

    @staticmethod
    def _reaches(conn, start_bom_id: int, target_bom_id: int) -> bool:
        """True when ``target`` is ``start`` or one of its sub-assemblies."""
        seen = set()
        stack = [start_bom_id]
        while stack:
            current = stack.pop()
            if current == target_bom_id:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(
                r["component_bom_id"] for r in conn.execute(
                    "SELECT component_bom_id FROM bom_components "
                    "WHERE bom_id = ? AND component_bom_id IS NOT NULL",
                    (current,),
                )
            )
        return False

    def _insert_component(
        self, conn, bom_id: int, component: BOMComponent, sort_order: int,
    ) -> int:
        self._validate_component(component)
        if component.item_id is not None:
            source = require_row(
                conn, "inventory_items", component.item_id, "inventory_item"
            )
            default_cost = source["unit_price"]
        else:
            source = require_row(
                conn, "bill_of_materials", component.component_bom_id, "bom"
            )
            if self._reaches(conn, component.component_bom_id, bom_id):
                raise ConflictError(
                    f"Adding BOM {component.component_bom_id} to BOM {bom_id} "
                    f"would create a circular assembly",
                    entity="bom", entity_id=bom_id,
                )
            default_cost = source["total_cost"]
        # A zero unit cost means "use the current catalog price"
        unit_cost = component.unit_cost or default_cost
        cursor = conn.execute(
            "INSERT INTO bom_components "
            "(bom_id, item_id, component_bom_id, quantity, unit_id, "
            "unit_cost, total_cost, waste_factor, notes, sort_order) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (bom_id, component.item_id, component.component_bom_id,
             component.quantity, component.unit_id, unit_cost,
             component_cost(component.quantity, unit_cost,
                            component.waste_factor),
             component.waste_factor, component.notes, sort_order),
        )
        return cursor.lastrowid

    def _insert_operation(
        self, conn, bom_id: int, operation: BOMOperation, sequence: int,
    ) -> int:
        self._validate_operation(operation)
        cursor = conn.execute(
            "INSERT INTO bom_operations "
            "(bom_id, operation_name, description, sequence_number, "
            "estimated_time_minutes, labor_rate, machine_required, "
            "skill_level, notes) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (bom_id, operation.operation_name.strip(), operation.description,
             sequence, operation.estimated_time_minutes, operation.labor_rate,
             operation.machine_required, SkillLevel(operation.skill_level).value,
             operation.notes),
        )
        return cursor.lastrowid

    @staticmethod
    def recalculate_costs(conn, bom_id: int) -> dict:
        """Recompute and store the roll-up fields of one BOM."""
        header = require_row(conn, "bill_of_materials", bom_id, "bom")
        totals = [
            r["total_cost"] for r in conn.execute(
                "SELECT total_cost FROM bom_components WHERE bom_id = ?",
                (bom_id,),
            )
        ]
        operations = [
            (r["estimated_time_minutes"], r["labor_rate"])
            for r in conn.execute(
                "SELECT estimated_time_minutes, labor_rate "
                "FROM bom_operations WHERE bom_id = ?",
                (bom_id,),
            )
        ]
        costs = roll_up_costs(totals, operations, header["overhead_cost"])
        conn.execute(
            "UPDATE bill_of_materials SET unit_cost = ?, labor_cost = ?, "
            "total_cost = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (costs["unit_cost"], costs["labor_cost"], costs["total_cost"],
             bom_id),
        )
        return costs

    # ── CRUD ────────────────────────────────────────────────────

    @staticmethod
    def _require_unique_name(conn, name: str,
                             bom_id: Optional[int] = None) -> None:
        clash = conn.execute(
            "SELECT id FROM bill_of_materials WHERE name = ? AND id IS NOT ?",
            (name, bom_id),
        ).fetchone()
        if clash is not None:
            raise ConflictError(
                f"A BOM named '{name}' already exists",
                entity="bom", entity_id=bom_id,
            )

    def insert_bom(
        self, conn, name: str, created_by: int,
        components: Sequence[BOMComponent] = (),
        operations: Sequence[BOMOperation] = (), *,
        description: Optional[str] = None,
        finished_product_id: Optional[int] = None,
        version: str = "1.0", status: str = BOMStatus.DRAFT.value,
        overhead_cost: float = 0.0,
    ) -> tuple[int, dict]:
        """Insert a BOM on the caller's transaction.

        Returns the new id and its rolled-up costs. Nothing is audited here;
        the caller logs once its transaction has committed.
        """
        if not name or not name.strip():
            raise ValidationError("BOM name is required", entity="bom",
                                  field="name")
        status = parse_enum(BOMStatus, status, "status", "bom")
        if overhead_cost is None or overhead_cost < 0:
            raise ValidationError(
                "Overhead cost cannot be negative", entity="bom",
                field="overhead_cost", limit=0,
            )
        name = name.strip()
        require_user(conn, created_by)
        if finished_product_id is not None:
            require_row(conn, "inventory_items", finished_product_id,
                        "inventory_item")
        self._require_unique_name(conn, name)
        cursor = conn.execute(
            "INSERT INTO bill_of_materials "
            "(name, description, finished_product_id, version, "
            "status, overhead_cost, created_by) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (name, description, finished_product_id, version,
             status.value, overhead_cost, created_by),
        )
        bom_id = cursor.lastrowid
        for position, component in enumerate(components):
            self._insert_component(conn, bom_id, component, position)
        for position, operation in enumerate(operations, start=1):
            self._insert_operation(
                conn, bom_id, operation,
                operation.sequence_number or position,
            )
        return bom_id, self.recalculate_costs(conn, bom_id)

    def create_bom(
        self, name: str, created_by: int,
        components: Sequence[BOMComponent] = (),
        operations: Sequence[BOMOperation] = (), *,
        description: Optional[str] = None,
        finished_product_id: Optional[int] = None,
        version: str = "1.0", status: str = BOMStatus.DRAFT.value,
        overhead_cost: float = 0.0,
    ) -> int:
        """Create a BOM with its components and operations in one step."""
        with self.db.transaction() as conn:
            bom_id, costs = self.insert_bom(
                conn, name, created_by, components, operations,
                description=description,
                finished_product_id=finished_product_id, version=version,
                status=status, overhead_cost=overhead_cost,
            )
        self.log_created(bom_id, name, costs, created_by)
        return bom_id

    def log_created(self, bom_id: int, name: str, costs: dict,
                     created_by: int) -> None:
        logger.info(
            f"Created BOM '{name}' (#{bom_id}) total {costs['total_cost']:.2f}"
        )
        self.audit.log("bill_of_materials", bom_id, AuditAction.INSERT, None,
                       {"name": name, **costs}, created_by)

    def insert_bom_from_virtual(
        self, conn, virtual: VirtualBOM, created_by: int, *,
        name: Optional[str] = None, waste_factor: Optional[float] = None,
        status: str = BOMStatus.ACTIVE.value, notes: Optional[str] = None,
        finished_product_id: Optional[int] = None,
    ) -> tuple[int, dict]:
        """Insert a generated virtual BOM on the caller's transaction."""
        waste = Config.DEFAULT_WASTE_FACTOR if waste_factor is None else waste_factor
        components = [
            BOMComponent(
                item_id=c.item_id, component_bom_id=c.component_bom_id,
                quantity=c.quantity, unit_id=c.unit_id,
                unit_cost=c.unit_cost, waste_factor=waste,
                notes=notes or c.notes,
            )
            for c in virtual.components
        ]
        operations = [
            BOMOperation(
                operation_name=o.operation_name, description=o.description,
                sequence_number=position,
                estimated_time_minutes=o.estimated_time_minutes,
                labor_rate=o.labor_rate, skill_level=o.skill_level,
            )
            for position, o in enumerate(virtual.operations, start=1)
        ]
        return self.insert_bom(
            conn, name or virtual.name, created_by, components, operations,
            description=virtual.description, status=status,
            finished_product_id=finished_product_id,
        )

    def create_bom_from_virtual(
        self, virtual: VirtualBOM, created_by: int, *,
        name: Optional[str] = None, waste_factor: Optional[float] = None,
        status: str = BOMStatus.ACTIVE.value, notes: Optional[str] = None,
        finished_product_id: Optional[int] = None,
    ) -> int:
        """Persist a generated virtual BOM as a real one."""
        with self.db.transaction() as conn:
            bom_id, costs = self.insert_bom_from_virtual(
                conn, virtual, created_by, name=name,
                waste_factor=waste_factor, status=status, notes=notes,
                finished_product_id=finished_product_id,
            )
        self.log_created(bom_id, name or virtual.name, costs, created_by)
        return bom_id

    def get_bom(self, bom_id: int) -> Optional[BOM]:
        """A BOM with components and operations, or None."""
        rows = self.db.execute(
            "SELECT * FROM bill_of_materials WHERE id = ?", (bom_id,)
        )
        if not rows:
            return None
        bom = from_row(BOM, rows[0])
        components = self.db.execute(
            "SELECT c.*, COALESCE(i.name, b.name) AS component_name "
            "FROM bom_components c "
            "LEFT JOIN inventory_items i ON c.item_id = i.id "
            "LEFT JOIN bill_of_materials b ON c.component_bom_id = b.id "
            "WHERE c.bom_id = ? ORDER BY c.sort_order, c.id",
            (bom_id,),
        )
        bom.components = [from_row(BOMComponent, r) for r in components]
        operations = self.db.execute(
            "SELECT * FROM bom_operations WHERE bom_id = ? "
            "ORDER BY sequence_number, id",
            (bom_id,),
        )
        bom.operations = [from_row(BOMOperation, r) for r in operations]
        return bom

    def list_boms(self, status: Optional[str] = None) -> list[BOM]:
        if status is None:
            rows = self.db.execute(
                "SELECT * FROM bill_of_materials ORDER BY name"
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM bill_of_materials WHERE status = ? ORDER BY name",
                (parse_enum(BOMStatus, status, "status").value,),
            )
        return [from_row(BOM, r) for r in rows]

    def update_bom(
        self, bom_id: int, user_id: int, *, name: Optional[str] = None,
        description: Optional[str] = None, status: Optional[str] = None,
        version: Optional[str] = None,
        overhead_cost: Optional[float] = None,
        finished_product_id: Optional[int] = None,
    ) -> dict:
        """Edit header fields; returns the recomputed costs."""
        if status is not None:
            status = parse_enum(BOMStatus, status, "status", "bom", bom_id).value
        if overhead_cost is not None and overhead_cost < 0:
            raise ValidationError(
                "Overhead cost cannot be negative", entity="bom",
                entity_id=bom_id, field="overhead_cost", limit=0,
            )
        with self.db.transaction() as conn:
            old = require_row(conn, "bill_of_materials", bom_id, "bom")
            if finished_product_id is not None:
                require_row(conn, "inventory_items", finished_product_id,
                            "inventory_item")
            if name:
                self._require_unique_name(conn, name.strip(), bom_id)
            conn.execute(
                "UPDATE bill_of_materials SET name = COALESCE(?, name), "
                "description = COALESCE(?, description), "
                "status = COALESCE(?, status), "
                "version = COALESCE(?, version), "
                "overhead_cost = COALESCE(?, overhead_cost), "
                "finished_product_id = COALESCE(?, finished_product_id) "
                "WHERE id = ?",
                (name.strip() if name else None, description, status,
                 version, overhead_cost, finished_product_id, bom_id),
            )
            costs = self.recalculate_costs(conn, bom_id)
        self.audit.log("bill_of_materials", bom_id, AuditAction.UPDATE,
                       dict(old), {"name": name, "status": status, **costs},
                       user_id)
        return costs

    def update_bom_costs(self, bom_id: int) -> dict:
        with self.db.transaction() as conn:
            return self.recalculate_costs(conn, bom_id)

    def add_component(self, bom_id: int, component: BOMComponent) -> int:
        with self.db.transaction() as conn:
            require_row(conn, "bill_of_materials", bom_id, "bom")
            next_order = conn.execute(
                "SELECT COALESCE(MAX(sort_order) + 1, 0) AS n "
                "FROM bom_components WHERE bom_id = ?",
                (bom_id,),
            ).fetchone()["n"]
            component_id = self._insert_component(
                conn, bom_id, component, next_order
            )
            self.recalculate_costs(conn, bom_id)
        return component_id

    def remove_component(self, bom_id: int, component_id: int):
        with self.db.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM bom_components WHERE id = ? AND bom_id = ?",
                (component_id, bom_id),
            ).rowcount
            if not deleted:
                raise NotFoundError(
                    f"Component {component_id} is not part of BOM {bom_id}",
                    entity="bom_component", entity_id=component_id,
                )
            self.recalculate_costs(conn, bom_id)

    def add_operation(self, bom_id: int, operation: BOMOperation) -> int:
        with self.db.transaction() as conn:
            require_row(conn, "bill_of_materials", bom_id, "bom")
            next_sequence = conn.execute(
                "SELECT COALESCE(MAX(sequence_number) + 1, 1) AS n "
                "FROM bom_operations WHERE bom_id = ?",
                (bom_id,),
            ).fetchone()["n"]
            operation_id = self._insert_operation(
                conn, bom_id, operation,
                operation.sequence_number
                if operation.sequence_number > 1 else next_sequence,
            )
            self.recalculate_costs(conn, bom_id)
        return operation_id

    def remove_operation(self, bom_id: int, operation_id: int):
        with self.db.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM bom_operations WHERE id = ? AND bom_id = ?",
                (operation_id, bom_id),
            ).rowcount
            if not deleted:
                raise NotFoundError(
                    f"Operation {operation_id} is not part of BOM {bom_id}",
                    entity="bom_operation", entity_id=operation_id,
                )
            self.recalculate_costs(conn, bom_id)

    def delete_bom(self, bom_id: int, user_id: int):
        """Delete a BOM; refused while orders or parent BOMs use it."""
        with self.db.transaction() as conn:
            old = require_row(conn, "bill_of_materials", bom_id, "bom")
            orders = conn.execute(
                "SELECT COUNT(*) AS n FROM production_orders WHERE bom_id = ?",
                (bom_id,),
            ).fetchone()["n"]
            parents = conn.execute(
                "SELECT COUNT(*) AS n FROM bom_components "
                "WHERE component_bom_id = ?",
                (bom_id,),
            ).fetchone()["n"]
            if orders or parents:
                raise ConflictError(
                    f"Cannot delete BOM {old['name']}: used by {orders} "
                    f"production orders and {parents} parent BOMs",
                    entity="bom", entity_id=bom_id,
                )
            conn.execute("DELETE FROM bill_of_materials WHERE id = ?", (bom_id,))
        logger.info(f"Deleted BOM '{old['name']}' (#{bom_id})")
        self.audit.log("bill_of_materials", bom_id, AuditAction.DELETE,
                       dict(old), None, user_id)
