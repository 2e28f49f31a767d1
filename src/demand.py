"""
City demand & consumer price response.

Turns a city's population and wealth into per-resource consumption, shifts part of it
between substitutable resources when one is overpriced relative to its reference
ratio, and sells it through the city's retail facilities in two passes.
"""
import logging
import random
from math import exp
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

import facilities as F
import objects as G
from register import Catalog

logger = logging.getLogger(__name__)

WEALTH_DEMAND_MIN = 0.8
WEALTH_DEMAND_MAX = 1.5
PRICE_EFFECT_EXPONENT = 1.2
PRICE_EFFECT_CAP = 5.0
DEMAND_CREATION_EXPONENT = 0.9
DEMAND_CREATION_CAP = 10.0
SELECTION_WEIGHT_MIN = 0.5
SELECTION_WEIGHT_MAX = 2.0
SUBSTITUTION_THRESHOLD = 0.3
SUBSTITUTION_CHANCE = 0.2
SUBSTITUTION_MIN_SHIFT = 0.3
SUBSTITUTION_MAX_SHIFT = 0.7
DEMAND_SHOCK_CHANCE = 0.05
DEMAND_SHOCK_SIZE = 0.15


class CityDemandResult(BaseModel):
    city_id: str
    base_demand: Dict[str, float] = Field(default_factory=dict)
    adjusted_demand: Dict[str, float] = Field(default_factory=dict)
    sales: Dict[str, float] = Field(default_factory=dict)
    revenue: float = 0.0


# -----------------------------------
# Pure curves
# -----------------------------------

def wealth_multiplier(wealth: float) -> float:
    return WEALTH_DEMAND_MIN + (WEALTH_DEMAND_MAX - WEALTH_DEMAND_MIN) * wealth


def base_demand(city: G.City, resource: G.Resource) -> float:
    return city.population * resource.consumption_rate * wealth_multiplier(city.wealth)


def price_effect(price: float, average: float, sensitivity: float) -> float:
    """Power-law boost below the average, exponential decay above; exactly 1 at the average."""
    ratio = price / average
    if ratio <= 1:
        return min((average / price) ** (sensitivity * PRICE_EFFECT_EXPONENT), PRICE_EFFECT_CAP)
    return exp(-sensitivity * PRICE_EFFECT_EXPONENT * (ratio - 1))


def demand_creation(price: float, average: float, sensitivity: float) -> float:
    if price / average >= 1:
        return 1.0
    return min((average / price) ** (sensitivity * DEMAND_CREATION_EXPONENT), DEMAND_CREATION_CAP)


def selection_shares(prices: List[float], average: float) -> List[float]:
    weights = [min(SELECTION_WEIGHT_MAX, max(SELECTION_WEIGHT_MIN, average / p)) ** 2 for p in prices]
    total = sum(weights)
    return [w / total for w in weights]


def substitution_shift(base: float, elasticity: float, disparity: float) -> float:
    scale = max(SUBSTITUTION_MIN_SHIFT, elasticity) * min(1.5, max(1.0, disparity - 0.5))
    return base * min(SUBSTITUTION_MAX_SHIFT, scale)


# -----------------------------------
# Allocation
# -----------------------------------

def eligible_retailers(retailers: List[G._FacilityInstance], resource_id: str) -> List[G._FacilityInstance]:
    return [r for r in retailers
            if r.retail.get_price(resource_id) > 0 and r.get_resource(resource_id) > 0]


def average_price(retailers: List[G._FacilityInstance], resource_id: str) -> Optional[float]:
    if not retailers:
        return None
    return sum(r.retail.get_price(resource_id) for r in retailers) / len(retailers)


def apply_substitution(base: Dict[str, float], averages: Dict[str, float], catalog: Catalog,
                       rng: random.Random) -> Dict[str, float]:
    losses: Dict[str, float] = {}
    gains: Dict[str, Dict[str, float]] = {}
    for src_id, src_base in base.items():
        src = catalog.resources[src_id]
        for dst_id, elasticity in sorted(src.substitution_elasticity.items()):
            if elasticity <= 0 or src_id not in averages or dst_id not in averages:
                continue
            dst = catalog.resources[dst_id]
            actual = averages[src_id] / averages[dst_id]
            reference = src.price_ratio / dst.price_ratio
            disparity = actual / reference
            roll = rng.random()
            if disparity > 1 + SUBSTITUTION_THRESHOLD * elasticity or (roll < SUBSTITUTION_CHANCE * elasticity and disparity > 1):
                shift = substitution_shift(src_base, elasticity, disparity)
                losses[src_id] = losses.get(src_id, 0.0) + shift
                gains.setdefault(src_id, {})[dst_id] = shift

    adjusted = dict(base)
    for src_id, lost in losses.items():
        scale = base[src_id] / lost if lost > base[src_id] else 1.0
        adjusted[src_id] -= lost * scale
        for dst_id, shift in gains[src_id].items():
            adjusted[dst_id] = adjusted.get(dst_id, 0.0) + shift * scale
    return {rid: max(0.0, d) for rid, d in adjusted.items()}


def demand_weights(prices: List[float], average: float, sensitivity: float) -> List[float]:
    """Selection share times price effect, renormalised to sum to 1: price moves demand between shops."""
    shares = selection_shares(prices, average)
    raw = [share * price_effect(p, average, sensitivity) for p, share in zip(prices, shares)]
    total = sum(raw)
    return [w / total for w in raw]


def retailer_demands(total: float, retailers: List[G._FacilityInstance], resource: G.Resource,
                     rng: random.Random) -> List[float]:
    """
    Per-retailer demand for `resource`. Only `demand_creation` adds units on top of `total`;
    a demand shock moves units from or to one retailer without changing the sum.
    """
    prices = [r.retail.get_price(resource.id) for r in retailers]
    avg = sum(prices) / len(prices)
    weights = demand_weights(prices, avg, resource.price_sensitivity)
    demands = [
        total * weight * demand_creation(p, avg, resource.price_sensitivity)
        for p, weight in zip(prices, weights)
    ]
    if len(retailers) > 1 and rng.random() < DEMAND_SHOCK_CHANCE:
        hit = rng.randrange(len(retailers))
        factor = 1 - DEMAND_SHOCK_SIZE if rng.random() < 0.5 else 1 + DEMAND_SHOCK_SIZE
        others = sum(d for i, d in enumerate(demands) if i != hit)
        if others > 0:
            # the others can give up at most what they have
            diff = max(demands[hit] - demands[hit] * factor, -others)
            demands[hit] -= diff
            for i in range(len(demands)):
                if i != hit:
                    demands[i] += diff * demands[i] / others
            logger.debug("Demand shock on %s for %s (x%.2f)", retailers[hit].name, resource.id, factor)
    return demands


def allocate(resource_id: str, retailers: List[G._FacilityInstance],
             demands: List[float]) -> Tuple[float, float]:
    """Two-pass sale; returns (units sold, revenue). Demand beyond stock is lost."""
    sold = 0.0
    revenue = 0.0
    unmet = 0.0
    for retailer, wanted in zip(retailers, demands):
        available = retailer.get_resource(resource_id)
        qty = min(wanted, available)
        revenue += F.execute_sale(retailer, resource_id, qty)
        sold += qty
        unmet += wanted - qty

    if unmet > 0:
        stocked = [r for r in retailers if r.get_resource(resource_id) > 0]
        if stocked:
            split = unmet / len(stocked)
            for retailer in stocked:
                qty = min(split, retailer.get_resource(resource_id))
                revenue += F.execute_sale(retailer, resource_id, qty)
                sold += qty
    return sold, revenue


def distribute_city_demand(city: G.City, retailers: List[G._FacilityInstance], catalog: Catalog,
                           world: G._WorldState, rng: random.Random) -> CityDemandResult:
    result = CityDemandResult(city_id=city.id)
    if not retailers:
        return result

    eligible: Dict[str, List[G._FacilityInstance]] = {}
    averages: Dict[str, float] = {}
    for resource in catalog.consumed_resources():
        result.base_demand[resource.id] = base_demand(city, resource)
        found = eligible_retailers(retailers, resource.id)
        if found:
            eligible[resource.id] = found
            averages[resource.id] = average_price(found, resource.id)

    result.adjusted_demand = apply_substitution(result.base_demand, averages, catalog, rng)

    for rid, total in list(result.adjusted_demand.items()):
        if total <= 0 or rid not in eligible:
            continue
        stock = eligible[rid]
        demands = retailer_demands(total, stock, catalog.resources[rid], rng)
        result.adjusted_demand[rid] = sum(demands)
        before = {r.instance_id: r.retail.revenue for r in stock}
        sold, revenue = allocate(rid, stock, demands)
        for retailer in stock:
            earned = retailer.retail.revenue - before[retailer.instance_id]
            company = world.companies.get(retailer.company_id)
            if company is not None and earned > 0:
                company.balance += earned
        result.sales[rid] = sold
        result.revenue += revenue
    return result
