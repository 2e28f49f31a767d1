from __future__ import annotations
from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt, field_validator, model_validator

import itertools
_id_counter = itertools.count()

def get_instance_id():
    return next(_id_counter)

def advance_instance_ids(past: int) -> None:
    """Make sure freshly issued ids never collide with ids loaded from storage."""
    global _id_counter
    current = next(_id_counter)
    _id_counter = itertools.count(max(current, past + 1))

# ────────────────────────────────────────────────────────────────────────────
# Resources & Recipes (static content)
# ────────────────────────────────────────────────────────────────────────────

class Resource(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    weight: PositiveFloat = Field(1.0, description="Capacity consumed by one unit")
    base_price: PositiveFloat = Field(..., description="Suggested market price")
    consumption_rate: float = Field(0.0, ge=0, description="Units consumed per capita per tick")
    price_ratio: PositiveFloat = Field(1.0, description="Reference price index for substitution")
    price_sensitivity: float = Field(0.5, ge=0)
    # Other resource id -> how readily consumers of *this* resource switch to it (0-1)
    substitution_elasticity: Dict[str, float] = Field(default_factory=dict)

    @field_validator("substitution_elasticity")
    def _elasticity_range(cls, v):
        for rid, e in v.items():
            if not 0 <= e <= 1:
                raise ValueError(f"Elasticity towards {rid} must be within 0..1, got {e}")
        return v

class ResourceAmount(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource: str
    amount: PositiveFloat

class Recipe(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    inputs: List[ResourceAmount] = Field(default_factory=list)
    outputs: List[ResourceAmount]
    ticks_required: PositiveInt = 1

    def describe(self) -> str:
        ins = ", ".join(f"{i.amount}x {i.resource}" for i in self.inputs)
        outs = ", ".join(f"{o.amount}x {o.resource}" for o in self.outputs)
        return f"{self.id}: [{ins}] -> [{outs}] ({self.ticks_required} ticks)"

# ────────────────────────────────────────────────────────────────────────────
# Facility types
# ────────────────────────────────────────────────────────────────────────────

class FacilityCategory(str, Enum):
    """Mutually exclusive capability sets a facility can have."""
    production = "production"
    storage = "storage"
    retail = "retail"
    office = "office"

    @property
    def has_inventory(self) -> bool:
        return self is not FacilityCategory.office

    @property
    def produces(self) -> bool:
        return self is FacilityCategory.production

    @property
    def sells(self) -> bool:
        return self is FacilityCategory.retail

    @property
    def administers(self) -> bool:
        return self is FacilityCategory.office

class FacilityDefinition(BaseModel):
    """Static blueprint for a facility type."""
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    category: FacilityCategory
    cost: PositiveFloat = Field(..., description="Build cost and base cost for upgrades")
    worker_multiplier: PositiveFloat = 1.0
    capacity_multiplier: float = Field(1.0, ge=0)
    allowed_recipes: List[str] = Field(default_factory=list)
    default_recipe: Optional[str] = None
    description: str = ""

    @model_validator(mode="after")
    def _default_is_allowed(self):
        if self.default_recipe is not None and self.default_recipe not in self.allowed_recipes:
            raise ValueError(f"Default recipe {self.default_recipe!r} is not in allowed_recipes")
        return self

# ────────────────────────────────────────────────────────────────────────────
# Cities
# ────────────────────────────────────────────────────────────────────────────

class City(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    country: str
    wealth: float = Field(..., ge=0, le=1)
    population: int = Field(..., ge=0)

    def __str__(self) -> str:
        return f"{self.name}, {self.country} (Pop: {self.population:,}, Wealth: {self.wealth})"

# ────────────────────────────────────────────────────────────────────────────
# Facilities (runtime)
# ────────────────────────────────────────────────────────────────────────────

class _RouteLink(BaseModel):
    """A facility's cached view of one trade route it takes part in."""
    route_id: int
    resource: str
    amount_per_tick: float
    price_per_unit: float
    direction: Literal["in", "out"]
    is_internal: bool = False

class _ProductionState(BaseModel):
    recipe_id: Optional[str] = None
    progress: int = 0
    is_producing: bool = False

class _RetailState(BaseModel):
    prices: Dict[str, float] = Field(default_factory=dict)
    sales_this_tick: Dict[str, float] = Field(default_factory=dict)
    revenue: float = 0.0

    def get_price(self, resource_id: str) -> float:
        return self.prices.get(resource_id, 0.0)

    def sold(self, resource_id: str) -> float:
        return self.sales_this_tick.get(resource_id, 0.0)

class _OfficeState(BaseModel):
    administrative_load: float = 0.0
    controlled_ids: List[int] = Field(default_factory=list)

class _FacilityInstance(BaseModel):
    instance_id: int = Field(default_factory=get_instance_id)
    name: str
    type_id: str
    category: FacilityCategory
    company_id: int
    city_id: str

    size: PositiveInt = 1
    workers: int = Field(0, ge=0)

    # two-slot cache: capacity for tick t is derived from previous_effectivity (end of t-1)
    effectivity: float = 1.0
    previous_effectivity: float = 1.0
    cached_capacity: float = 0.0

    controlling_office_id: Optional[int] = None
    office_multiplier: float = 1.0

    inventory: Optional[Dict[str, float]] = None
    routes: Dict[int, _RouteLink] = Field(default_factory=dict)

    production: Optional[_ProductionState] = None
    retail: Optional[_RetailState] = None
    office: Optional[_OfficeState] = None

    @model_validator(mode="before")
    @classmethod
    def init_category_state(cls, values):
        if not isinstance(values, dict):
            return values
        values = dict(values)
        category = FacilityCategory(values.get("category"))
        if category.has_inventory and values.get("inventory") is None:
            values["inventory"] = {}
        if category.produces and values.get("production") is None:
            values["production"] = _ProductionState()
        if category.sells and values.get("retail") is None:
            values["retail"] = _RetailState()
        if category.administers and values.get("office") is None:
            values["office"] = _OfficeState()
        return values

    # ── Inventory ──────────────────────────────────────────────────────────
    def get_resource(self, resource_id: str) -> float:
        if self.inventory is None:
            return 0.0
        return self.inventory.get(resource_id, 0.0)

    def add_resource(self, resource_id: str, amount: float) -> None:
        if self.inventory is None:
            raise ValueError(f"{self.name} has no inventory")
        if amount < 0:
            raise ValueError("Amount must not be negative")
        self.inventory[resource_id] = self.inventory.get(resource_id, 0.0) + amount

    def remove_resource(self, resource_id: str, amount: float) -> bool:
        current = self.get_resource(resource_id)
        if self.inventory is None or amount < 0 or current < amount:
            return False
        remaining = current - amount
        if remaining > 0:
            self.inventory[resource_id] = remaining
        else:
            self.inventory.pop(resource_id, None)
        return True

    # ── Route memberships ──────────────────────────────────────────────────
    def link_route(self, link: _RouteLink) -> None:
        self.routes[link.route_id] = link

    def unlink_route(self, route_id: int) -> bool:
        return self.routes.pop(route_id, None) is not None

    def _rate(self, direction: str) -> Dict[str, float]:
        rates: Dict[str, float] = {}
        for link in self.routes.values():
            if link.direction == direction:
                rates[link.resource] = rates.get(link.resource, 0.0) + link.amount_per_tick
        return rates

    def import_rate(self) -> Dict[str, float]:
        return self._rate("in")

    def export_rate(self) -> Dict[str, float]:
        return self._rate("out")

# ────────────────────────────────────────────────────────────────────────────
# Companies & Market
# ────────────────────────────────────────────────────────────────────────────

class _CompanyInstance(BaseModel):
    instance_id: int = Field(default_factory=get_instance_id)
    name: str
    balance: float = 0.0

class _SellOffer(BaseModel):
    instance_id: int = Field(default_factory=get_instance_id)
    seller_company_id: int
    seller_facility_id: int
    resource: str
    amount_available: float
    # amount_available minus what is already committed to linked routes
    amount_in_stock: float
    price_per_unit: float

class _TradeRoute(BaseModel):
    instance_id: int = Field(default_factory=get_instance_id)
    seller_company_id: int
    seller_facility_id: int
    buyer_company_id: int
    buyer_facility_id: int
    resource: str
    amount_per_tick: float
    price_per_unit: float = 0.0
    total_price: float = 0.0
    creation_order: int
    last_failed_tick: Optional[int] = None
    is_internal: bool = False
    offer_id: Optional[int] = None

    @property
    def failed(self) -> bool:
        return self.last_failed_tick is not None

# ────────────────────────────────────────────────────────────────────────────
# World
# ────────────────────────────────────────────────────────────────────────────

class _WorldState(BaseModel):
    tick: int = 0
    route_counter: int = 0
    companies: Dict[int, _CompanyInstance] = Field(default_factory=dict)
    facilities: Dict[int, _FacilityInstance] = Field(default_factory=dict)
    offers: Dict[int, _SellOffer] = Field(default_factory=dict)
    routes: Dict[int, _TradeRoute] = Field(default_factory=dict)

    # ── Helper methods -----------------------------------------------------
    def facilities_of(self, company_id: int) -> List[_FacilityInstance]:
        return [f for f in self.facilities.values() if f.company_id == company_id]

    def next_route_order(self) -> int:
        order = self.route_counter
        self.route_counter += 1
        return order

    def max_instance_id(self) -> int:
        ids = [-1]
        for collection in (self.companies, self.facilities, self.offers, self.routes):
            ids.extend(collection.keys())
        return max(ids)
