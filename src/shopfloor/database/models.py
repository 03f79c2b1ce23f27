"""Data models for the database layer."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from shopfloor.errors import ValidationError


# ── Closed value sets ────────────────────────────────────────────


class ItemType(str, Enum):
    RAW_MATERIAL = "raw_material"
    SEMI_FINISHED_PRODUCT = "semi_finished_product"
    FINISHED_PRODUCT = "finished_product"
    SHEET_MATERIAL = "sheet_material"
    HARDWARE_ACCESSORY = "hardware_accessory"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class AuditAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class RequisitionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"
    ISSUED = "issued"
    PARTIALLY_ISSUED = "partially_issued"


class ApprovalStatus(str, Enum):
    """Outcome of the approval step for one requisition line."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PARTIALLY_APPROVED = "partially_approved"


class IssueStatus(str, Enum):
    """How much of an allocatable line has left the warehouse."""

    PENDING = "pending"
    PARTIAL = "partial"
    ISSUED = "issued"


class KitchenProjectStatus(str, Enum):
    DRAFT = "draft"
    QUOTED = "quoted"
    ORDERED = "ordered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BOMStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class SkillLevel(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class ComponentType(str, Enum):
    ITEM = "item"
    BOM = "bom"


class ProductionStatus(str, Enum):
    DRAFT = "draft"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OperationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.SKIPPED)


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT = "sent"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


def parse_enum(enum_cls, value, field_name: str, entity: str = None,
               entity_id=None):
    """Coerce ``value`` into ``enum_cls`` or raise ValidationError."""
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid {field_name} '{value}' (expected one of: {allowed})",
            entity=entity, entity_id=entity_id, field=field_name,
            limit=[m.value for m in enum_cls],
        ) from None


# ── Master data ──────────────────────────────────────────────────


@dataclass
class User:
    id: Optional[int] = None
    username: str = ""
    display_name: str = ""
    role: str = "user"
    department: Optional[str] = None
    is_active: int = 1
    created_at: Optional[datetime] = None


@dataclass
class Unit:
    id: Optional[int] = None
    name: str = ""
    abbreviation: str = ""
    description: Optional[str] = None


@dataclass
class Category:
    id: Optional[int] = None
    name: str = ""
    description: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Supplier:
    id: Optional[int] = None
    name: str = ""
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    is_active: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class InventoryItem:
    id: Optional[int] = None
    sku: str = ""
    name: str = ""
    description: Optional[str] = None
    item_type: str = ItemType.RAW_MATERIAL.value
    category_id: Optional[int] = None
    unit_id: Optional[int] = None
    supplier_id: Optional[int] = None
    location: Optional[str] = None
    quantity: int = 0
    min_quantity: int = 0
    max_quantity: int = 1000
    unit_price: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Joined fields (not stored directly)
    category_name: str = field(default="", repr=False)
    unit_name: str = field(default="", repr=False)
    supplier_name: str = field(default="", repr=False)

    @property
    def is_low_stock(self) -> bool:
        return self.min_quantity > 0 and self.quantity <= self.min_quantity

    @property
    def is_over_stock(self) -> bool:
        return self.max_quantity > 0 and self.quantity > self.max_quantity

    @property
    def stock_value(self) -> float:
        return self.quantity * self.unit_price


@dataclass
class StockMovement:
    id: Optional[int] = None
    item_id: int = 0
    movement_type: str = MovementType.ADJUSTMENT.value
    quantity: float = 0
    quantity_before: float = 0
    quantity_after: float = 0
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    # Joined
    item_name: str = field(default="", repr=False)
    item_sku: str = field(default="", repr=False)


@dataclass
class AuditEntry:
    id: Optional[int] = None
    table_name: str = ""
    record_id: Optional[int] = None
    action: str = ""
    old_values: Optional[str] = None
    new_values: Optional[str] = None
    user_id: Optional[int] = None
    timestamp: Optional[datetime] = None

    @property
    def old(self) -> Optional[dict]:
        return json.loads(self.old_values) if self.old_values else None

    @property
    def new(self) -> Optional[dict]:
        return json.loads(self.new_values) if self.new_values else None


# ── Requisitions ─────────────────────────────────────────────────


@dataclass
class Requisition:
    id: Optional[int] = None
    title: str = ""
    description: Optional[str] = None
    requester_id: Optional[int] = None
    department: Optional[str] = None
    priority: str = Priority.MEDIUM.value
    status: str = RequisitionStatus.PENDING.value
    required_date: Optional[str] = None
    estimated_cost: float = 0.0
    approver_id: Optional[int] = None
    approval_date: Optional[datetime] = None
    approval_notes: Optional[str] = None
    issued_by: Optional[int] = None
    issued_date: Optional[datetime] = None
    issue_notes: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Joined
    requester_name: str = field(default="", repr=False)
    approver_name: str = field(default="", repr=False)
    items: list = field(default_factory=list, repr=False)


@dataclass
class RequisitionItem:
    id: Optional[int] = None
    requisition_id: Optional[int] = None
    item_id: Optional[int] = None
    quantity: int = 0
    approved_quantity: int = 0
    rejected_quantity: int = 0
    issued_quantity: int = 0
    unit_price: float = 0.0
    status: str = ApprovalStatus.PENDING.value
    issue_status: str = IssueStatus.PENDING.value
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    # Joined
    item_name: str = field(default="", repr=False)
    item_sku: str = field(default="", repr=False)
    available_quantity: int = field(default=0, repr=False)

    @property
    def remaining_to_issue(self) -> int:
        return self.approved_quantity - self.issued_quantity


@dataclass
class RequisitionLine:
    """Caller input for one requested line."""

    item_id: int
    quantity: int
    notes: Optional[str] = None


@dataclass
class ItemApproval:
    """Caller input for the per-line approval decision."""

    requisition_item_id: int
    approved_quantity: int = 0
    rejected_quantity: int = 0
    notes: Optional[str] = None


@dataclass
class IssueRequest:
    """Caller input for issuing stock against one allocatable line."""

    line_id: int
    quantity: float
    notes: Optional[str] = None


# ── Cabinet catalog ──────────────────────────────────────────────


@dataclass
class Dimensions:
    """Cabinet dimensions in inches."""

    width: float
    height: float
    depth: float


@dataclass
class AccessorySelection:
    accessory_item_id: int
    quantity: Optional[int] = None

    def to_dict(self) -> dict:
        return {"accessory_item_id": self.accessory_item_id,
                "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: dict) -> "AccessorySelection":
        return cls(
            accessory_item_id=int(data["accessory_item_id"]),
            quantity=data.get("quantity"),
        )


def dump_accessories(selections: list[AccessorySelection]) -> str:
    """Serialize an accessory selection list for storage."""
    return json.dumps([s.to_dict() for s in selections])


def load_accessories(raw: Optional[str]) -> list[AccessorySelection]:
    """Parse a stored accessory selection list."""
    if not raw:
        return []
    return [AccessorySelection.from_dict(d) for d in json.loads(raw)]


@dataclass
class CabinetModel:
    id: Optional[int] = None
    name: str = ""
    description: Optional[str] = None
    default_width: float = 0.0
    default_height: float = 0.0
    default_depth: float = 0.0
    min_width: float = 0.0
    max_width: float = 0.0
    min_height: float = 0.0
    max_height: float = 0.0
    min_depth: float = 0.0
    max_depth: float = 0.0
    base_cost: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def default_dimensions(self) -> Dimensions:
        return Dimensions(
            self.default_width, self.default_height, self.default_depth
        )


@dataclass
class CabinetMaterialLink:
    id: Optional[int] = None
    cabinet_model_id: Optional[int] = None
    material_item_id: Optional[int] = None
    cost_factor_per_sqft: float = 0.0
    created_at: Optional[datetime] = None
    # Joined
    material_name: str = field(default="", repr=False)
    material_sku: str = field(default="", repr=False)
    unit_price: float = field(default=0.0, repr=False)


@dataclass
class CabinetAccessoryLink:
    id: Optional[int] = None
    cabinet_model_id: Optional[int] = None
    accessory_item_id: Optional[int] = None
    quantity_per_cabinet: int = 0
    cost_factor_per_unit: float = 0.0
    created_at: Optional[datetime] = None
    # Joined
    accessory_name: str = field(default="", repr=False)
    accessory_sku: str = field(default="", repr=False)
    unit_price: float = field(default=0.0, repr=False)


@dataclass
class KitchenProject:
    id: Optional[int] = None
    name: str = ""
    client_id: Optional[int] = None
    status: str = KitchenProjectStatus.DRAFT.value
    total_estimated_cost: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cabinets: list = field(default_factory=list, repr=False)


@dataclass
class KitchenProjectCabinet:
    id: Optional[int] = None
    kitchen_project_id: Optional[int] = None
    cabinet_model_id: Optional[int] = None
    custom_width: float = 0.0
    custom_height: float = 0.0
    custom_depth: float = 0.0
    selected_material_id: Optional[int] = None
    selected_accessories: list[AccessorySelection] = field(default_factory=list)
    calculated_cost: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    # Joined
    model_name: str = field(default="", repr=False)
    material_name: str = field(default="", repr=False)

    @property
    def dimensions(self) -> Dimensions:
        return Dimensions(self.custom_width, self.custom_height, self.custom_depth)


# ── Bills of materials ───────────────────────────────────────────


@dataclass
class BOM:
    id: Optional[int] = None
    name: str = ""
    description: Optional[str] = None
    finished_product_id: Optional[int] = None
    version: str = "1.0"
    status: str = BOMStatus.DRAFT.value
    unit_cost: float = 0.0
    labor_cost: float = 0.0
    overhead_cost: float = 0.0
    total_cost: float = 0.0
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    components: list = field(default_factory=list, repr=False)
    operations: list = field(default_factory=list, repr=False)


@dataclass
class BOMComponent:
    id: Optional[int] = None
    bom_id: Optional[int] = None
    item_id: Optional[int] = None
    component_bom_id: Optional[int] = None
    quantity: float = 0.0
    unit_id: Optional[int] = None
    unit_cost: float = 0.0
    total_cost: float = 0.0
    waste_factor: float = 0.0
    notes: Optional[str] = None
    sort_order: int = 0
    created_at: Optional[datetime] = None
    # Joined
    component_name: str = field(default="", repr=False)

    @property
    def component_type(self) -> str:
        if self.component_bom_id is not None:
            return ComponentType.BOM.value
        return ComponentType.ITEM.value


@dataclass
class BOMOperation:
    id: Optional[int] = None
    bom_id: Optional[int] = None
    operation_name: str = ""
    description: Optional[str] = None
    sequence_number: int = 1
    estimated_time_minutes: int = 0
    labor_rate: float = 0.0
    machine_required: Optional[str] = None
    skill_level: str = SkillLevel.BASIC.value
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def labor_cost(self) -> float:
        return self.estimated_time_minutes / 60 * self.labor_rate


@dataclass
class VirtualBOM:
    """A BOM-shaped structure that has not been persisted."""

    name: str
    description: str
    components: list[BOMComponent] = field(default_factory=list)
    operations: list[BOMOperation] = field(default_factory=list)


# ── Production orders ────────────────────────────────────────────


@dataclass
class ProductionOrder:
    id: Optional[int] = None
    order_number: str = ""
    title: str = ""
    description: Optional[str] = None
    bom_id: Optional[int] = None
    status: str = ProductionStatus.DRAFT.value
    priority: str = Priority.MEDIUM.value
    quantity: int = 1
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    completion_date: Optional[datetime] = None
    finished_product_id: Optional[int] = None
    planned_cost: float = 0.0
    actual_cost: float = 0.0
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Joined
    bom_name: str = field(default="", repr=False)
    items: list = field(default_factory=list, repr=False)
    operations: list = field(default_factory=list, repr=False)
    completions: list = field(default_factory=list, repr=False)


@dataclass
class ProductionOrderItem:
    id: Optional[int] = None
    production_order_id: Optional[int] = None
    item_id: Optional[int] = None
    component_bom_id: Optional[int] = None
    component_type: str = ComponentType.ITEM.value
    item_name: str = ""
    required_quantity: float = 0.0
    issued_quantity: float = 0.0
    unit_cost: float = 0.0
    total_cost: float = 0.0
    waste_factor: float = 0.0
    status: str = IssueStatus.PENDING.value
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def remaining_quantity(self) -> float:
        return self.required_quantity - self.issued_quantity


@dataclass
class ProductionOrderOperation:
    id: Optional[int] = None
    production_order_id: Optional[int] = None
    operation_name: str = ""
    description: Optional[str] = None
    sequence_number: int = 1
    status: str = OperationStatus.PENDING.value
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    estimated_time_minutes: int = 0
    actual_time_minutes: int = 0
    labor_rate: float = 0.0
    machine_required: Optional[str] = None
    skill_level: str = SkillLevel.BASIC.value
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class ProductionCompletion:
    id: Optional[int] = None
    production_order_id: Optional[int] = None
    quantity: int = 0
    completed_by: Optional[int] = None
    completion_date: Optional[datetime] = None
    quality_check_passed: int = 1
    batch_number: Optional[str] = None
    notes: Optional[str] = None


# ── Purchase orders ──────────────────────────────────────────────


@dataclass
class PurchaseOrder:
    id: Optional[int] = None
    po_number: str = ""
    title: str = ""
    description: Optional[str] = None
    supplier_id: Optional[int] = None
    requisition_id: Optional[int] = None
    status: str = PurchaseOrderStatus.DRAFT.value
    priority: str = Priority.MEDIUM.value
    order_date: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    actual_delivery_date: Optional[str] = None
    subtotal: float = 0.0
    tax_amount: float = 0.0
    shipping_cost: float = 0.0
    total_amount: float = 0.0
    notes: Optional[str] = None
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    approval_date: Optional[datetime] = None
    approval_notes: Optional[str] = None
    sent_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Joined
    supplier_name: str = field(default="", repr=False)
    items: list = field(default_factory=list, repr=False)


@dataclass
class PurchaseOrderItem:
    id: Optional[int] = None
    po_id: Optional[int] = None
    item_id: Optional[int] = None
    quantity: int = 0
    unit_price: float = 0.0
    total_price: float = 0.0
    received_quantity: int = 0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    # Joined
    item_name: str = field(default="", repr=False)
    item_sku: str = field(default="", repr=False)

    @property
    def outstanding_quantity(self) -> int:
        return self.quantity - self.received_quantity


@dataclass
class PurchaseOrderLine:
    """Caller input for one ordered line."""

    item_id: int
    quantity: int
    unit_price: float
    notes: Optional[str] = None


@dataclass
class ReceiptLine:
    """Caller input for receiving against one purchase order line."""

    po_item_id: int
    received_quantity: int
    batch_number: Optional[str] = None
    expiry_date: Optional[str] = None
    quality_check_passed: bool = True
    notes: Optional[str] = None


def from_row(cls, row):
    """Build a dataclass from a row, ignoring columns the class lacks."""
    return cls(**{k: row[k] for k in row.keys() if k in cls.__dataclass_fields__})
