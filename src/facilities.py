"""
Facility model: staffing, effectivity, capacity, production and retail primitives.

All functions operate on `objects._FacilityInstance` plus the static `register.Catalog`.
Mutating operations return a bool (or the cost/refund) instead of raising on
business-rule failures; the caller commits money only after a successful call.
"""
import logging
from math import ceil, floor, sqrt
from typing import Dict, Optional

import objects as G
from register import Catalog

logger = logging.getLogger(__name__)

BASE_WAGE = 1.0
HIRING_WAGE_FACTOR = 4.0
WORKER_EXPONENT = 1.2
MAX_WORKER_FACTOR = 10
BASE_CAPACITY = 100
ADMIN_LOAD_PER_WORKER = 50.0
DEGRADE_REFUND_RATE = 0.5


# -----------------------------------
# Construction
# -----------------------------------

def new_facility(catalog: Catalog, type_id: str, company: G._CompanyInstance, city_id: str,
                 serial: int = 1) -> G._FacilityInstance:
    """Build a size-1 facility staffed with exactly its required workers."""
    definition = catalog.facility_types[type_id]
    facility = G._FacilityInstance(
        name=f"{company.name} {definition.display_name} #{serial}",
        type_id=type_id,
        category=definition.category,
        company_id=company.instance_id,
        city_id=city_id,
    )
    if definition.category.administers:
        facility.office_multiplier = 1.0
    if definition.default_recipe is not None:
        facility.production.recipe_id = definition.default_recipe
    facility.workers = required_workers(facility, catalog)
    compute_effectivity(facility, catalog)
    facility.previous_effectivity = facility.effectivity
    facility.cached_capacity = compute_capacity(facility, catalog, facility.effectivity)
    return facility


# -----------------------------------
# Staffing & costs
# -----------------------------------

def required_workers(facility: G._FacilityInstance, catalog: Catalog, size: Optional[int] = None) -> int:
    size = facility.size if size is None else size
    if facility.category.administers:
        load = facility.office.administrative_load
        if load <= 0:
            return 1
        return max(1, ceil((load / ADMIN_LOAD_PER_WORKER) ** WORKER_EXPONENT))
    definition = catalog.facility_types[facility.type_id]
    return ceil(definition.worker_multiplier * size ** WORKER_EXPONENT)


def max_workers(facility: G._FacilityInstance, catalog: Catalog, size: Optional[int] = None) -> int:
    return required_workers(facility, catalog, size) * MAX_WORKER_FACTOR


def wage_per_tick(facility: G._FacilityInstance, city: G.City) -> float:
    return facility.workers * BASE_WAGE * city.wealth


def hiring_cost(facility: G._FacilityInstance, city: G.City, new_count: int) -> float:
    """Hiring and firing cost the same per head."""
    return HIRING_WAGE_FACTOR * BASE_WAGE * city.wealth * abs(new_count - facility.workers)


def upgrade_cost(base_cost: float, size: int) -> int:
    return ceil(base_cost * (size + 1) ** 2)


def degrade_refund(base_cost: float, size: int) -> int:
    if size <= 1:
        return 0
    cost_to_reach = ceil(base_cost * size ** 2)
    return ceil(cost_to_reach * DEGRADE_REFUND_RATE)


def production_multiplier(facility: G._FacilityInstance) -> float:
    return sqrt(facility.size)


# -----------------------------------
# Effectivity & capacity
# -----------------------------------

def worker_effectivity(workers: int, required: int) -> float:
    ratio = workers / required
    if ratio < 1:
        return ratio * ratio
    return 1 + sqrt(ratio - 1)


def inventory_weight(facility: G._FacilityInstance, catalog: Catalog) -> float:
    if facility.inventory is None:
        return 0.0
    total = 0.0
    for rid, amount in facility.inventory.items():
        res = catalog.resources.get(rid)
        total += amount * (res.weight if res else 1.0)
    return total


def overflow_penalty(facility: G._FacilityInstance, catalog: Catalog) -> float:
    if not facility.category.has_inventory:
        return 1.0
    weight = inventory_weight(facility, catalog)
    capacity = facility.cached_capacity
    # a zeroed cache (idle or orphaned last tick) is not an overflow
    if weight <= capacity or capacity <= 0:
        return 1.0
    overflow = weight - capacity
    return max(0.0, 1 - (overflow / capacity) ** 2)


def compute_capacity(facility: G._FacilityInstance, catalog: Catalog, effectivity: float) -> float:
    definition = catalog.facility_types[facility.type_id]
    return float(ceil(BASE_CAPACITY * facility.size * definition.capacity_multiplier * effectivity))


def compute_effectivity(facility: G._FacilityInstance, catalog: Catalog) -> float:
    """Recompute `facility.effectivity` against the currently cached capacity."""
    staffing = worker_effectivity(facility.workers, required_workers(facility, catalog))
    if facility.category.administers:
        facility.effectivity = staffing
    else:
        facility.effectivity = staffing * overflow_penalty(facility, catalog) * facility.office_multiplier
    return facility.effectivity


def roll_effectivity_cache(facility: G._FacilityInstance, catalog: Catalog) -> None:
    """Shift end-of-last-tick effectivity into the previous slot and derive this tick's capacity from it."""
    facility.previous_effectivity = facility.effectivity
    facility.cached_capacity = compute_capacity(facility, catalog, facility.previous_effectivity)


def apply_office_multiplier(facility: G._FacilityInstance, office: Optional[G._FacilityInstance]) -> None:
    if facility.category.administers:
        facility.office_multiplier = 1.0
        return
    if office is None:
        facility.office_multiplier = 0.0
        return
    facility.office_multiplier = min(1.0, max(0.0, office.effectivity))


# -----------------------------------
# Mutations
# -----------------------------------

def set_worker_count(facility: G._FacilityInstance, catalog: Catalog, count: int) -> bool:
    if count < 0 or count > max_workers(facility, catalog):
        return False
    facility.workers = count
    compute_effectivity(facility, catalog)
    return True


def clamp_workers(facility: G._FacilityInstance, catalog: Catalog) -> None:
    limit = max_workers(facility, catalog)
    if facility.workers > limit:
        facility.workers = limit


def upgrade_size(facility: G._FacilityInstance, catalog: Catalog) -> Optional[int]:
    """Grow by one size level. Returns the cost to charge."""
    definition = catalog.facility_types.get(facility.type_id)
    if definition is None:
        return None
    cost = upgrade_cost(definition.cost, facility.size)
    facility.size += 1
    clamp_workers(facility, catalog)
    compute_effectivity(facility, catalog)
    return cost


def degrade_size(facility: G._FacilityInstance, catalog: Catalog) -> Optional[int]:
    """Shrink by one size level. Returns the refund to credit."""
    definition = catalog.facility_types.get(facility.type_id)
    if definition is None or facility.size <= 1:
        return None
    refund = degrade_refund(definition.cost, facility.size)
    facility.size -= 1
    clamp_workers(facility, catalog)
    compute_effectivity(facility, catalog)
    return refund


def set_recipe(facility: G._FacilityInstance, catalog: Catalog, recipe_id: Optional[str]) -> bool:
    if not facility.category.produces:
        return False
    if recipe_id is not None:
        definition = catalog.facility_types[facility.type_id]
        if recipe_id not in definition.allowed_recipes or recipe_id not in catalog.recipes:
            return False
    facility.production = G._ProductionState(recipe_id=recipe_id)
    compute_effectivity(facility, catalog)
    return True


# -----------------------------------
# Production
# -----------------------------------

def _scale(facility: G._FacilityInstance) -> float:
    return production_multiplier(facility) * facility.effectivity


def _inputs_available(facility: G._FacilityInstance, recipe: G.Recipe) -> bool:
    scale = _scale(facility)
    return all(facility.get_resource(i.resource) >= i.amount * scale for i in recipe.inputs)


def _try_start(facility: G._FacilityInstance, recipe: G.Recipe) -> bool:
    state = facility.production
    if state.is_producing:
        return False
    if _inputs_available(facility, recipe):
        state.is_producing = True
        state.progress = 0
        return True
    return False


def production_step(facility: G._FacilityInstance, catalog: Catalog) -> bool:
    """Advance one tick. Returns True when a cycle completed."""
    state = facility.production
    if state is None or state.recipe_id is None:
        return False
    recipe = catalog.recipes[state.recipe_id]

    if not state.is_producing:
        _try_start(facility, recipe)
    if not state.is_producing:
        return False

    state.progress += 1
    if state.progress < recipe.ticks_required:
        return False

    state.is_producing = False
    state.progress = 0
    if not _inputs_available(facility, recipe):
        logger.debug("%s abandoned %s: inputs gone", facility.name, recipe.id)
        return False

    scale = _scale(facility)
    for i in recipe.inputs:
        facility.remove_resource(i.resource, i.amount * scale)
    for o in recipe.outputs:
        amount = o.amount * scale
        if amount > 0:
            facility.add_resource(o.resource, amount)
    # re-enter Producing; the next cycle only advances on the next tick
    _try_start(facility, recipe)
    return True


def production_rate(facility: G._FacilityInstance, catalog: Catalog) -> Dict[str, float]:
    return _recipe_rate(facility, catalog, outputs=True)


def consumption_rate(facility: G._FacilityInstance, catalog: Catalog) -> Dict[str, float]:
    return _recipe_rate(facility, catalog, outputs=False)


def _recipe_rate(facility: G._FacilityInstance, catalog: Catalog, outputs: bool) -> Dict[str, float]:
    rates: Dict[str, float] = {}
    if facility.production is None or facility.production.recipe_id is None:
        return rates
    recipe = catalog.recipes[facility.production.recipe_id]
    scale = _scale(facility)
    for entry in (recipe.outputs if outputs else recipe.inputs):
        rates[entry.resource] = rates.get(entry.resource, 0.0) + entry.amount * scale / recipe.ticks_required
    return rates


def net_flow(facility: G._FacilityInstance, catalog: Catalog) -> Dict[str, float]:
    """imports + production - exports - consumption per resource, zero entries omitted."""
    imports = facility.import_rate()
    exports = facility.export_rate()
    produced = production_rate(facility, catalog)
    consumed = consumption_rate(facility, catalog)

    resources = set(facility.inventory or {}) | set(imports) | set(exports) | set(produced) | set(consumed)
    flow: Dict[str, float] = {}
    for rid in sorted(resources):
        net = imports.get(rid, 0.0) + produced.get(rid, 0.0) - exports.get(rid, 0.0) - consumed.get(rid, 0.0)
        if net != 0:
            flow[rid] = net
    return flow


def ticks_until_depletion(facility: G._FacilityInstance, catalog: Catalog, resource_id: str) -> Optional[int]:
    net = net_flow(facility, catalog).get(resource_id, 0.0)
    if net >= 0:
        return None
    stock = facility.get_resource(resource_id)
    if stock <= 0:
        return 0
    return floor(stock / abs(net))


# -----------------------------------
# Retail
# -----------------------------------

def set_price(facility: G._FacilityInstance, resource_id: str, price: float) -> bool:
    if not facility.category.sells or price < 0:
        return False
    if price == 0:
        facility.retail.prices.pop(resource_id, None)
    else:
        facility.retail.prices[resource_id] = price
    return True


def execute_sale(facility: G._FacilityInstance, resource_id: str, quantity: float) -> float:
    """Sell up to `quantity` at the set price; returns the revenue."""
    retail = facility.retail
    price = retail.get_price(resource_id)
    if price <= 0 or quantity <= 0:
        return 0.0
    sold = min(quantity, facility.get_resource(resource_id))
    if sold <= 0:
        return 0.0
    facility.remove_resource(resource_id, sold)
    revenue = sold * price
    retail.revenue += revenue
    retail.sales_this_tick[resource_id] = retail.sold(resource_id) + sold
    return revenue


def reset_retail_counters(facility: G._FacilityInstance) -> None:
    if facility.retail is not None:
        facility.retail.revenue = 0.0
        facility.retail.sales_this_tick.clear()


def status_line(facility: G._FacilityInstance, catalog: Catalog) -> str:
    if facility.category.administers:
        return (f"[{facility.name}] Administrative | Load: ${facility.office.administrative_load:.2f} | "
                f"Required Workers: {required_workers(facility, catalog)} | "
                f"Controlling: {len(facility.office.controlled_ids)} facilities")
    inv = ", ".join(f"{rid}: {amt:g}" for rid, amt in facility.inventory.items() if amt > 0) or "empty"
    if facility.production is not None and facility.production.recipe_id is not None:
        state = facility.production
        ticks = catalog.recipes[state.recipe_id].ticks_required
        status = f"Producing ({state.progress}/{ticks})" if state.is_producing else "Idle"
        return f"[{facility.name}] {status} | Inventory: {{{inv}}}"
    return (f"[{facility.name}] Inventory: {{{inv}}} | "
            f"{inventory_weight(facility, catalog):g}/{facility.cached_capacity:g} | "
            f"Effectivity: {facility.effectivity * 100:.1f}%")
