"""Read-only projections of the world for dashboards and the CLI."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

import demand as D
import facilities as F
import objects as G
from register import Catalog


class CompanyRow(BaseModel):
    company_id: int
    name: str
    balance: float
    facilities: int


class FacilityRow(BaseModel):
    facility_id: int
    name: str
    type_id: str
    city_id: str
    size: int
    workers: int
    required_workers: int
    effectivity: float
    capacity: float
    status: str


class FlowRow(BaseModel):
    resource: str
    stock: float
    net_per_tick: float
    ticks_until_depletion: Optional[int] = None


class RouteRow(BaseModel):
    route_id: int
    resource: str
    amount_per_tick: float
    price_per_unit: float
    is_internal: bool
    failed: bool
    last_failed_tick: Optional[int] = None


class RetailerRow(BaseModel):
    facility_id: int
    name: str
    price: float
    sales: float
    revenue: float
    stock: float
    market_share: float


class ResourceDemandRow(BaseModel):
    resource: str
    base_demand: float
    consumption_rate: float
    total_sales: float
    fulfilment_rate: float
    retailers: List[RetailerRow] = Field(default_factory=list)


class CityReport(BaseModel):
    city_id: str
    population: int
    resources: List[ResourceDemandRow] = Field(default_factory=list)


def list_companies(world: G._WorldState) -> List[CompanyRow]:
    return [
        CompanyRow(company_id=c.instance_id, name=c.name, balance=c.balance,
                   facilities=len(world.facilities_of(c.instance_id)))
        for c in sorted(world.companies.values(), key=lambda c: c.instance_id)
    ]


def company_facilities(world: G._WorldState, catalog: Catalog, company_id: int) -> List[FacilityRow]:
    return [
        FacilityRow(
            facility_id=f.instance_id, name=f.name, type_id=f.type_id, city_id=f.city_id,
            size=f.size, workers=f.workers, required_workers=F.required_workers(f, catalog),
            effectivity=f.effectivity, capacity=f.cached_capacity, status=F.status_line(f, catalog),
        )
        for f in world.facilities_of(company_id)
    ]


def facility_flow(facility: G._FacilityInstance, catalog: Catalog) -> List[FlowRow]:
    flow = F.net_flow(facility, catalog)
    return [
        FlowRow(resource=rid, stock=facility.get_resource(rid), net_per_tick=net,
                ticks_until_depletion=F.ticks_until_depletion(facility, catalog, rid))
        for rid, net in flow.items()
    ]


def route_rows(routes: List[G._TradeRoute]) -> List[RouteRow]:
    return [
        RouteRow(route_id=r.instance_id, resource=r.resource, amount_per_tick=r.amount_per_tick,
                 price_per_unit=r.price_per_unit, is_internal=r.is_internal,
                 failed=r.failed, last_failed_tick=r.last_failed_tick)
        for r in routes
    ]


def city_demand_report(city: G.City, world: G._WorldState, catalog: Catalog) -> CityReport:
    """Last tick's sales per priced resource, compared with the city's base demand."""
    retailers = [f for f in world.facilities.values() if f.category.sells and f.city_id == city.id]
    report = CityReport(city_id=city.id, population=city.population)

    priced: Dict[str, List[G._FacilityInstance]] = {}
    for r in retailers:
        for rid in r.retail.prices:
            priced.setdefault(rid, []).append(r)

    for rid in sorted(priced):
        resource = catalog.resources.get(rid)
        if resource is None:
            continue
        base = D.base_demand(city, resource)
        rows = [
            RetailerRow(facility_id=r.instance_id, name=r.name, price=r.retail.get_price(rid),
                        sales=r.retail.sold(rid), revenue=r.retail.sold(rid) * r.retail.get_price(rid),
                        stock=r.get_resource(rid), market_share=0.0)
            for r in priced[rid]
        ]
        total = sum(row.sales for row in rows)
        for row in rows:
            row.market_share = row.sales / total if total > 0 else 0.0
        rows.sort(key=lambda row: row.sales, reverse=True)
        report.resources.append(ResourceDemandRow(
            resource=rid, base_demand=base, consumption_rate=resource.consumption_rate,
            total_sales=total, fulfilment_rate=total / base if base > 0 else 0.0, retailers=rows,
        ))
    return report
