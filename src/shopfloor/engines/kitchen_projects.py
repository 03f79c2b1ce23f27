"""Kitchen projects: priced cabinet configurations grouped for a client."""

import logging
import math
from typing import Iterable, Optional

from shopfloor.database.connection import DatabaseConnection
from shopfloor.database.models import (
    AuditAction,
    KitchenProject,
    KitchenProjectCabinet,
    KitchenProjectStatus,
    dump_accessories,
    from_row,
    load_accessories,
    parse_enum,
)
from shopfloor.engines.audit import AuditTrail
from shopfloor.engines.boms import BOMService
from shopfloor.engines.cabinets import CabinetCostCalculator, coerce_dimensions
from shopfloor.engines.lookups import require_row
from shopfloor.errors import ConflictError, NotFoundError, ValidationError
from shopfloor.utils.constants import KITCHEN_PROJECT_STATUS_TRANSITIONS

logger = logging.getLogger(__name__)

# Cabinets can be added, repriced or removed only while quoting
EDITABLE_STATUSES = (KitchenProjectStatus.DRAFT, KitchenProjectStatus.QUOTED)

_CABINET_SELECT = (
    "SELECT c.*, m.name AS model_name, i.name AS material_name "
    "FROM kitchen_project_cabinets c "
    "JOIN cabinet_models m ON c.cabinet_model_id = m.id "
    "JOIN inventory_items i ON c.selected_material_id = i.id"
)


def _cabinet_from_row(row) -> KitchenProjectCabinet:
    cabinet = from_row(KitchenProjectCabinet, row)
    cabinet.selected_accessories = load_accessories(row["selected_accessories"])
    return cabinet


class KitchenProjectService:
    """Quotes kitchen projects and turns their cabinets into BOMs."""

    def __init__(self, db: DatabaseConnection,
                 calculator: CabinetCostCalculator,
                 boms: BOMService = None, audit: AuditTrail = None):
        self.db = db
        self.calculator = calculator
        self.audit = audit or AuditTrail(db)
        self.boms = boms or BOMService(db, self.audit)

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _require_editable(project):
        if project["status"] not in [s.value for s in EDITABLE_STATUSES]:
            raise ConflictError(
                f"Kitchen project '{project['name']}' is {project['status']}; "
                f"its cabinets can no longer change",
                entity="kitchen_project", entity_id=project["id"],
            )

    @staticmethod
    def _recalculate_total(conn, project_id: int) -> float:
        total = math.fsum(
            r["calculated_cost"] for r in conn.execute(
                "SELECT calculated_cost FROM kitchen_project_cabinets "
                "WHERE kitchen_project_id = ?",
                (project_id,),
            )
        )
        conn.execute(
            "UPDATE kitchen_projects SET total_estimated_cost = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (total, project_id),
        )
        return total

    def _fetch_cabinet(self, conn, cabinet_id: int):
        cabinet = require_row(conn, "kitchen_project_cabinets", cabinet_id,
                              "kitchen_project_cabinet")
        project = require_row(conn, "kitchen_projects",
                              cabinet["kitchen_project_id"], "kitchen_project")
        return cabinet, project

    # ── Projects ────────────────────────────────────────────────

    def create_project(self, name: str, *, client_id: Optional[int] = None,
                       notes: Optional[str] = None,
                       user_id: Optional[int] = None) -> int:
        if not name or not name.strip():
            raise ValidationError("Project name is required",
                                  entity="kitchen_project", field="name")
        with self.db.transaction() as conn:
            if client_id is not None:
                require_row(conn, "users", client_id, "user")
            project_id = conn.execute(
                "INSERT INTO kitchen_projects (name, client_id, notes) "
                "VALUES (?, ?, ?)",
                (name.strip(), client_id, notes),
            ).lastrowid
        logger.info(f"Created kitchen project '{name}' (#{project_id})")
        self.audit.log("kitchen_projects", project_id, AuditAction.INSERT,
                       None, {"name": name, "client_id": client_id}, user_id)
        return project_id

    def get_project(self, project_id: int) -> Optional[KitchenProject]:
        """A project with its cabinets, or None."""
        rows = self.db.execute(
            "SELECT * FROM kitchen_projects WHERE id = ?", (project_id,)
        )
        if not rows:
            return None
        project = from_row(KitchenProject, rows[0])
        project.cabinets = [
            _cabinet_from_row(r) for r in self.db.execute(
                f"{_CABINET_SELECT} WHERE c.kitchen_project_id = ? "
                f"ORDER BY c.id",
                (project_id,),
            )
        ]
        return project

    def list_projects(self, status: Optional[str] = None) -> list[KitchenProject]:
        if status is None:
            rows = self.db.execute(
                "SELECT * FROM kitchen_projects ORDER BY created_at DESC, id DESC"
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM kitchen_projects WHERE status = ? "
                "ORDER BY created_at DESC, id DESC",
                (parse_enum(KitchenProjectStatus, status, "status").value,),
            )
        return [from_row(KitchenProject, r) for r in rows]

    def update_project(self, project_id: int, *, name: Optional[str] = None,
                       client_id: Optional[int] = None,
                       notes: Optional[str] = None,
                       user_id: Optional[int] = None):
        if name is not None and not name.strip():
            raise ValidationError("Project name is required",
                                  entity="kitchen_project",
                                  entity_id=project_id, field="name")
        with self.db.transaction() as conn:
            old = require_row(conn, "kitchen_projects", project_id,
                              "kitchen_project")
            if client_id is not None:
                require_row(conn, "users", client_id, "user")
            conn.execute(
                "UPDATE kitchen_projects SET name = COALESCE(?, name), "
                "client_id = COALESCE(?, client_id), "
                "notes = COALESCE(?, notes), "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (name.strip() if name else None, client_id, notes, project_id),
            )
        self.audit.log("kitchen_projects", project_id, AuditAction.UPDATE,
                       dict(old), {"name": name, "client_id": client_id,
                                   "notes": notes}, user_id)

    def set_status(self, project_id: int, status: str,
                   user_id: Optional[int] = None) -> KitchenProjectStatus:
        new_status = parse_enum(KitchenProjectStatus, status, "status",
                                "kitchen_project", project_id)
        with self.db.transaction() as conn:
            project = require_row(conn, "kitchen_projects", project_id,
                                  "kitchen_project")
            if new_status.value not in \
                    KITCHEN_PROJECT_STATUS_TRANSITIONS[project["status"]]:
                raise ConflictError(
                    f"Cannot change kitchen project '{project['name']}' "
                    f"from {project['status']} to {new_status.value}",
                    entity="kitchen_project", entity_id=project_id,
                )
            conn.execute(
                "UPDATE kitchen_projects SET status = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (new_status.value, project_id),
            )
        self.audit.log("kitchen_projects", project_id, AuditAction.UPDATE,
                       {"status": project["status"]},
                       {"status": new_status.value}, user_id)
        return new_status

    def delete_project(self, project_id: int, user_id: Optional[int] = None):
        """Delete a project and its cabinets. BOMs already created remain."""
        with self.db.transaction() as conn:
            old = require_row(conn, "kitchen_projects", project_id,
                              "kitchen_project")
            conn.execute("DELETE FROM kitchen_projects WHERE id = ?",
                         (project_id,))
        logger.info(f"Deleted kitchen project '{old['name']}' (#{project_id})")
        self.audit.log("kitchen_projects", project_id, AuditAction.DELETE,
                       dict(old), None, user_id)

    # ── Cabinets ────────────────────────────────────────────────

    def add_cabinet(
        self, project_id: int, model_id: int, dimensions, material_id: int,
        accessories: Optional[Iterable] = None, notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> int:
        """Price a configured cabinet and add it to the project."""
        quote = self.calculator.calculate_cost(
            model_id, dimensions, material_id, accessories
        )
        selections = self.calculator.parse_selections(accessories)
        with self.db.transaction() as conn:
            project = require_row(conn, "kitchen_projects", project_id,
                                  "kitchen_project")
            self._require_editable(project)
            cabinet_id = conn.execute(
                "INSERT INTO kitchen_project_cabinets "
                "(kitchen_project_id, cabinet_model_id, custom_width, "
                "custom_height, custom_depth, selected_material_id, "
                "selected_accessories, calculated_cost, notes) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (project_id, model_id, quote.dimensions.width,
                 quote.dimensions.height, quote.dimensions.depth,
                 material_id, dump_accessories(selections),
                 quote.total_cost, notes),
            ).lastrowid
            total = self._recalculate_total(conn, project_id)
        logger.info(
            f"Added cabinet #{cabinet_id} ({quote.total_cost:.2f}) to "
            f"project #{project_id}; total {total:.2f}"
        )
        self.audit.log("kitchen_project_cabinets", cabinet_id,
                       AuditAction.INSERT, None, quote.to_dict(), user_id)
        return cabinet_id

    def update_cabinet(
        self, cabinet_id: int, *, dimensions=None,
        material_id: Optional[int] = None,
        accessories: Optional[Iterable] = None, notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> float:
        """Change a cabinet's configuration and reprice it.

        Omitted arguments keep the stored values. Returns the new price.
        """
        with self.db.get_connection() as conn:
            current, project = self._fetch_cabinet(conn, cabinet_id)
        self._require_editable(project)
        dims = coerce_dimensions(
            dimensions if dimensions is not None else {
                "width": current["custom_width"],
                "height": current["custom_height"],
                "depth": current["custom_depth"],
            }
        )
        material_id = material_id or current["selected_material_id"]
        if accessories is None:
            selections = load_accessories(current["selected_accessories"])
        else:
            selections = self.calculator.parse_selections(accessories)
        quote = self.calculator.calculate_cost(
            current["cabinet_model_id"], dims, material_id, selections
        )
        with self.db.transaction() as conn:
            _, project = self._fetch_cabinet(conn, cabinet_id)
            self._require_editable(project)
            conn.execute(
                "UPDATE kitchen_project_cabinets SET custom_width = ?, "
                "custom_height = ?, custom_depth = ?, "
                "selected_material_id = ?, selected_accessories = ?, "
                "calculated_cost = ?, notes = COALESCE(?, notes) "
                "WHERE id = ?",
                (dims.width, dims.height, dims.depth, material_id,
                 dump_accessories(selections), quote.total_cost, notes,
                 cabinet_id),
            )
            self._recalculate_total(conn, project["id"])
        self.audit.log("kitchen_project_cabinets", cabinet_id,
                       AuditAction.UPDATE,
                       {"calculated_cost": current["calculated_cost"]},
                       quote.to_dict(), user_id)
        return quote.total_cost

    def remove_cabinet(self, cabinet_id: int, user_id: Optional[int] = None):
        with self.db.transaction() as conn:
            cabinet, project = self._fetch_cabinet(conn, cabinet_id)
            self._require_editable(project)
            conn.execute("DELETE FROM kitchen_project_cabinets WHERE id = ?",
                         (cabinet_id,))
            self._recalculate_total(conn, project["id"])
        self.audit.log("kitchen_project_cabinets", cabinet_id,
                       AuditAction.DELETE, dict(cabinet), None, user_id)

    # ── BOM conversion ──────────────────────────────────────────

    def convert_to_boms(
        self, project_id: int, created_by: int, *,
        labor_rate: Optional[float] = None,
        waste_factor: Optional[float] = None,
    ) -> list[int]:
        """Create one active BOM per cabinet; returns the BOM ids.

        BOMs are named ``"{virtual name} - {project} #{cabinet id}"``. If any
        of those names is already taken, or any insert fails, nothing is created.
        """
        project = self.get_project(project_id)
        if project is None:
            raise NotFoundError(
                f"Kitchen project {project_id} not found",
                entity="kitchen_project", entity_id=project_id,
            )
        if not project.cabinets:
            raise ValidationError(
                f"Kitchen project '{project.name}' has no cabinets to convert",
                entity="kitchen_project", entity_id=project_id,
                field="cabinets",
            )

        planned = []
        for cabinet in project.cabinets:
            virtual = self.calculator.generate_bom(
                cabinet.cabinet_model_id, cabinet.dimensions,
                cabinet.selected_material_id, cabinet.selected_accessories,
                labor_rate,
            )
            planned.append(
                (f"{virtual.name} - {project.name} #{cabinet.id}", virtual)
            )

        with self.db.transaction() as conn:
            taken = [name for name, _ in planned if conn.execute(
                "SELECT 1 FROM bill_of_materials WHERE name = ?", (name,)
            ).fetchone()]
            if taken:
                raise ConflictError(
                    f"BOMs already exist for this project: {', '.join(taken)}",
                    entity="kitchen_project", entity_id=project_id,
                )
            created = [
                (name, *self.boms.insert_bom_from_virtual(
                    conn, virtual, created_by, name=name,
                    waste_factor=waste_factor,
                    notes=f"Kitchen project: {project.name}",
                ))
                for name, virtual in planned
            ]

        for name, bom_id, costs in created:
            self.boms.log_created(bom_id, name, costs, created_by)
        logger.info(
            f"Converted kitchen project '{project.name}' into "
            f"{len(created)} BOMs"
        )
        return [bom_id for _, bom_id, _ in created]
