"""Cabinet cost calculator and virtual BOM generation.

The pricing and BOM-building functions in this module are pure: they take
already-loaded catalog records and return new values. ``CabinetCostCalculator``
loads those records from the repository and delegates.
"""

import math
from dataclasses import asdict, dataclass
from typing import Iterable, Optional, Sequence

from shopfloor.config import Config
from shopfloor.database.models import (
    AccessorySelection,
    BOMComponent,
    BOMOperation,
    CabinetAccessoryLink,
    CabinetMaterialLink,
    CabinetModel,
    Dimensions,
    VirtualBOM,
)
from shopfloor.database.repository import Repository
from shopfloor.errors import NotFoundError, ValidationError
from shopfloor.utils.constants import (
    INCHES_PER_FOOT,
    STANDARD_CABINET_OPERATIONS,
)
from shopfloor.utils.formatters import format_dimensions


@dataclass(frozen=True)
class MaterialCost:
    id: int
    name: str
    surface_area_sqft: float
    cost_factor_per_sqft: float
    total_cost: float


@dataclass(frozen=True)
class AccessoryCost:
    id: int
    name: str
    quantity: int
    unit_price: float
    cost_factor: float
    total_cost: float


@dataclass(frozen=True)
class CabinetQuote:
    """Total price of one configured cabinet and how it was reached."""

    total_cost: float
    base_cost: float
    material: MaterialCost
    accessories: tuple[AccessoryCost, ...]
    dimensions: Dimensions

    @property
    def accessories_cost(self) -> float:
        return math.fsum(a.total_cost for a in self.accessories)

    def to_dict(self) -> dict:
        return {
            "total_cost": self.total_cost,
            "breakdown": {
                "base_cost": self.base_cost,
                "material": asdict(self.material),
                "accessories": [asdict(a) for a in self.accessories],
            },
            "dimensions": asdict(self.dimensions),
        }


def coerce_dimensions(dimensions) -> Dimensions:
    """Accept a Dimensions or a ``{width, height, depth}`` mapping."""
    if isinstance(dimensions, Dimensions):
        values = asdict(dimensions)
    elif isinstance(dimensions, dict):
        values = dimensions
    else:
        raise ValidationError(
            "Dimensions must provide width, height and depth",
            entity="dimensions", field="dimensions",
        )
    parsed = {}
    for name in ("width", "height", "depth"):
        value = values.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(
                f"{name.capitalize()} must be a number of inches",
                entity="dimensions", field=name,
            )
        parsed[name] = value
    return Dimensions(**parsed)


def validate_dimensions(model: CabinetModel, dimensions: Dimensions):
    """Raise ValidationError for the first dimension outside the model range."""
    for name in ("width", "height", "depth"):
        value = getattr(dimensions, name)
        low = getattr(model, f"min_{name}")
        high = getattr(model, f"max_{name}")
        if value < low or value > high:
            raise ValidationError(
                f"{name.capitalize()} must be between {low:g} and {high:g} "
                f"inches",
                entity="cabinet_model", entity_id=model.id,
                field=name, limit=(low, high),
            )


def surface_area_sqft(dimensions: Dimensions) -> float:
    """Six-sided box area in square feet from inch dimensions."""
    w = dimensions.width / INCHES_PER_FOOT
    h = dimensions.height / INCHES_PER_FOOT
    d = dimensions.depth / INCHES_PER_FOOT
    return 2 * (w * d) + 2 * (h * d) + 2 * (w * h)


def resolve_accessories(
    model_id: int,
    links: Iterable[CabinetAccessoryLink],
    selections: Iterable[AccessorySelection],
) -> list[tuple[CabinetAccessoryLink, int]]:
    """Pair each selection with its model link and effective quantity."""
    by_item = {link.accessory_item_id: link for link in links}
    resolved = []
    for selection in selections:
        link = by_item.get(selection.accessory_item_id)
        if link is None:
            raise NotFoundError(
                f"Accessory ID {selection.accessory_item_id} is not "
                f"available for this cabinet model",
                entity="cabinet_model", entity_id=model_id,
            )
        quantity = selection.quantity
        if quantity is None:
            quantity = link.quantity_per_cabinet
        elif quantity < 0:
            raise ValidationError(
                f"Accessory quantity cannot be negative (accessory "
                f"{selection.accessory_item_id})",
                entity="cabinet_accessory",
                entity_id=selection.accessory_item_id,
                field="quantity", limit=0,
            )
        resolved.append((link, quantity))
    return resolved


def price_cabinet(
    model: CabinetModel,
    material: CabinetMaterialLink,
    accessory_links: Iterable[CabinetAccessoryLink],
    dimensions: Dimensions,
    selections: Sequence[AccessorySelection] = (),
) -> CabinetQuote:
    """Price one cabinet configuration.

    ``total = base_cost + area * cost_factor_per_sqft
    + sum(quantity * (unit_price + cost_factor_per_unit))``. Sums use
    ``math.fsum`` so reordering the accessories never changes the total.
    """
    validate_dimensions(model, dimensions)
    area = surface_area_sqft(dimensions)
    material_cost = MaterialCost(
        id=material.material_item_id,
        name=material.material_name,
        surface_area_sqft=area,
        cost_factor_per_sqft=material.cost_factor_per_sqft,
        total_cost=area * material.cost_factor_per_sqft,
    )
    accessories = tuple(
        AccessoryCost(
            id=link.accessory_item_id,
            name=link.accessory_name,
            quantity=quantity,
            unit_price=link.unit_price,
            cost_factor=link.cost_factor_per_unit,
            total_cost=quantity * (link.unit_price + link.cost_factor_per_unit),
        )
        for link, quantity in resolve_accessories(
            model.id, accessory_links, selections
        )
    )
    total = math.fsum(
        [model.base_cost, material_cost.total_cost]
        + [a.total_cost for a in accessories]
    )
    return CabinetQuote(
        total_cost=total,
        base_cost=model.base_cost,
        material=material_cost,
        accessories=accessories,
        dimensions=dimensions,
    )


def build_virtual_bom(
    model: CabinetModel,
    material: CabinetMaterialLink,
    accessory_links: Iterable[CabinetAccessoryLink],
    dimensions: Dimensions,
    selections: Sequence[AccessorySelection] = (),
    labor_rate: float = 0.0,
) -> VirtualBOM:
    """Component list and standard operations for one configured cabinet."""
    validate_dimensions(model, dimensions)
    if labor_rate is None or labor_rate < 0:
        raise ValidationError(
            "Labor rate cannot be negative", entity="cabinet_model",
            entity_id=model.id, field="labor_rate", limit=0,
        )
    components = [
        BOMComponent(
            item_id=material.material_item_id,
            quantity=surface_area_sqft(dimensions),
            unit_cost=material.unit_price,
            component_name=material.material_name,
            sort_order=0,
        )
    ]
    for position, (link, quantity) in enumerate(
        resolve_accessories(model.id, accessory_links, selections), start=1
    ):
        if quantity <= 0:
            continue
        components.append(BOMComponent(
            item_id=link.accessory_item_id,
            quantity=quantity,
            unit_cost=link.unit_price,
            component_name=link.accessory_name,
            sort_order=position,
        ))
    operations = [
        BOMOperation(
            operation_name=name,
            description=description,
            sequence_number=sequence,
            estimated_time_minutes=minutes,
            labor_rate=labor_rate,
        )
        for sequence, (name, description, minutes)
        in enumerate(STANDARD_CABINET_OPERATIONS, start=1)
    ]
    size = format_dimensions(
        dimensions.width, dimensions.height, dimensions.depth
    )
    return VirtualBOM(
        name=f"Custom {model.name} ({size})",
        description=f"Custom cabinet based on {model.name} model",
        components=components,
        operations=operations,
    )


class CabinetCostCalculator:
    """Loads catalog records and prices cabinets against them."""

    def __init__(self, repo: Repository):
        self.repo = repo

    def _load_model(self, model_id: int) -> CabinetModel:
        model = self.repo.get_cabinet_model_by_id(model_id)
        if model is None:
            raise NotFoundError(
                f"Cabinet model {model_id} not found",
                entity="cabinet_model", entity_id=model_id,
            )
        return model

    def _load_material(
        self, model_id: int, material_id: int,
    ) -> CabinetMaterialLink:
        material = next(
            (m for m in self.repo.get_model_materials(model_id)
             if m.material_item_id == material_id),
            None,
        )
        if material is None:
            raise NotFoundError(
                "Selected material is not available for this cabinet model",
                entity="cabinet_model", entity_id=model_id,
            )
        return material

    @staticmethod
    def parse_selections(accessories) -> list[AccessorySelection]:
        return [
            a if isinstance(a, AccessorySelection)
            else AccessorySelection.from_dict(a)
            for a in (accessories or [])
        ]

    def calculate_cost(
        self, model_id: int, dimensions, material_id: int,
        accessories: Optional[Iterable] = None,
    ) -> CabinetQuote:
        """Price a cabinet; see ``price_cabinet`` for the formula."""
        dims = coerce_dimensions(dimensions)
        model = self._load_model(model_id)
        validate_dimensions(model, dims)
        material = self._load_material(model_id, material_id)
        return price_cabinet(
            model, material, self.repo.get_model_accessories(model_id),
            dims, self.parse_selections(accessories),
        )

    def generate_bom(
        self, model_id: int, dimensions, material_id: int,
        accessories: Optional[Iterable] = None,
        labor_rate: Optional[float] = None,
    ) -> VirtualBOM:
        """Build the non-persisted BOM for a configured cabinet."""
        dims = coerce_dimensions(dimensions)
        model = self._load_model(model_id)
        validate_dimensions(model, dims)
        material = self._load_material(model_id, material_id)
        return build_virtual_bom(
            model, material, self.repo.get_model_accessories(model_id),
            dims, self.parse_selections(accessories),
            Config.DEFAULT_LABOR_RATE if labor_rate is None else labor_rate,
        )
