import logging
import random
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

import demand as D
import facilities as F
import objects as G
import reports
from market import Market, SettlementSummary
from persistence import JsonWorldRepository
from register import ALL_SOURCES, Catalog, load_catalog

logger = logging.getLogger(__name__)

# Constants
WORLD_STATE_PATH = Path("world_state.json")
STARTING_BALANCE = 10000.0


class TickReport(BaseModel):
    tick: int
    completed_cycles: int = 0
    settlement: Optional[SettlementSummary] = None
    cities: List[D.CityDemandResult] = Field(default_factory=list)
    wages_paid: Dict[int, float] = Field(default_factory=dict)


# -----------------------------------
# Tick phases
# -----------------------------------

class Behavior:
    def tick(
        self,
        world: G._WorldState,
        catalog: Catalog,
        market: Market,
        tick: int,
        rng: random.Random,
        report: TickReport,
    ) -> None:
        raise NotImplementedError


class FacilityBehavior(Behavior):
    """
    Production step for every facility. Capacity for this tick comes from last tick's
    effectivity; office effectivity is settled before it is propagated to the
    facilities the office controls.
    """
    def tick(self, world, catalog, market, tick, rng, report) -> None:
        offices = [f for f in world.facilities.values() if f.category.administers]
        others = [f for f in world.facilities.values() if not f.category.administers]

        for office in offices:
            refresh_administrative_load(office, world, catalog)
            # a shrinking load lowers the office's worker ceiling
            F.clamp_workers(office, catalog)

        for facility in world.facilities.values():
            F.roll_effectivity_cache(facility, catalog)

        for office in offices:
            F.compute_effectivity(office, catalog)
        for facility in others:
            office = world.facilities.get(facility.controlling_office_id) if facility.controlling_office_id is not None else None
            F.apply_office_multiplier(facility, office)
            F.compute_effectivity(facility, catalog)

        for facility in others:
            F.reset_retail_counters(facility)

        for facility in others:
            if facility.category.produces and F.production_step(facility, catalog):
                report.completed_cycles += 1


class SettlementBehavior(Behavior):
    def tick(self, world, catalog, market, tick, rng, report) -> None:
        report.settlement = market.settle(tick)


class CityDemandBehavior(Behavior):
    def tick(self, world, catalog, market, tick, rng, report) -> None:
        by_city: Dict[str, List[G._FacilityInstance]] = {}
        for facility in world.facilities.values():
            if facility.category.sells:
                by_city.setdefault(facility.city_id, []).append(facility)
        for city_id in sorted(by_city):
            city = catalog.cities.get(city_id)
            if city is None:
                continue
            report.cities.append(D.distribute_city_demand(city, by_city[city_id], catalog, world, rng))


class OfferRefreshBehavior(Behavior):
    def tick(self, world, catalog, market, tick, rng, report) -> None:
        market.refresh_offers()


class WageBehavior(Behavior):
    def tick(self, world, catalog, market, tick, rng, report) -> None:
        for company in world.companies.values():
            bill = wage_bill(company.instance_id, world, catalog)
            company.balance -= bill
            report.wages_paid[company.instance_id] = bill


class ClockBehavior(Behavior):
    def tick(self, world, catalog, market, tick, rng, report) -> None:
        world.tick += 1


def refresh_administrative_load(office: G._FacilityInstance, world: G._WorldState, catalog: Catalog) -> None:
    load = 0.0
    for fid in office.office.controlled_ids:
        facility = world.facilities.get(fid)
        if facility is not None:
            load += F.wage_per_tick(facility, catalog.cities[facility.city_id])
    office.office.administrative_load = load


def wage_bill(company_id: int, world: G._WorldState, catalog: Catalog) -> float:
    return sum(F.wage_per_tick(f, catalog.cities[f.city_id]) for f in world.facilities_of(company_id))


# -----------------------------------
# Simulation & action surface
# -----------------------------------

class Simulation:
    """Owns one world, the catalog it runs against and a deterministic random source."""

    def __init__(self, catalog: Catalog, world: Optional[G._WorldState] = None, seed: int = 0):
        self.catalog = catalog
        self.world = world if world is not None else G._WorldState()
        self.market = Market(self.world, catalog)
        self.random = random.Random(seed)
        self.behaviors: List[Behavior] = [
            FacilityBehavior(),
            SettlementBehavior(),
            CityDemandBehavior(),
            OfferRefreshBehavior(),
            WageBehavior(),
            ClockBehavior(),
        ]

    # ── lookups ────────────────────────────────────────────────────────────
    def country_of(self, facility: G._FacilityInstance) -> str:
        return self.catalog.cities[facility.city_id].country

    def office_in(self, company_id: int, country: str) -> Optional[G._FacilityInstance]:
        for f in self.world.facilities_of(company_id):
            if f.category.administers and self.country_of(f) == country:
                return f
        return None

    def _owned(self, company_id: int, facility_id: int) -> Optional[G._FacilityInstance]:
        facility = self.world.facilities.get(facility_id)
        if facility is None or facility.company_id != company_id:
            logger.debug("Company %s does not own facility %s", company_id, facility_id)
            return None
        return facility

    def _city(self, facility: G._FacilityInstance) -> G.City:
        return self.catalog.cities[facility.city_id]

    # ── companies ──────────────────────────────────────────────────────────
    def add_company(self, name: str, balance: float = STARTING_BALANCE) -> G._CompanyInstance:
        company = G._CompanyInstance(name=name, balance=balance)
        self.world.companies[company.instance_id] = company
        return company

    # ── facilities ─────────────────────────────────────────────────────────
    def create_facility(self, company_id: int, type_id: str, city_id: str) -> Optional[G._FacilityInstance]:
        company = self.world.companies.get(company_id)
        definition = self.catalog.facility_types.get(type_id)
        city = self.catalog.cities.get(city_id)
        if company is None or definition is None or city is None:
            return None
        if company.balance < definition.cost:
            logger.debug("%s cannot afford %s (%.2f < %.2f)", company.name, type_id, company.balance, definition.cost)
            return None

        office = self.office_in(company_id, city.country)
        if definition.category.administers and office is not None:
            logger.debug("%s already has an office in %s", company.name, city.country)
            return None
        if not definition.category.administers and office is None:
            logger.debug("%s needs an office in %s before building %s", company.name, city.country, type_id)
            return None

        serial = sum(1 for f in self.world.facilities_of(company_id) if f.type_id == type_id) + 1
        facility = F.new_facility(self.catalog, type_id, company, city_id, serial)
        company.balance -= definition.cost
        self.world.facilities[facility.instance_id] = facility

        if definition.category.administers:
            self._adopt_orphans(facility, city.country)
        else:
            self._attach(facility, office)
        logger.info("%s built %s in %s", company.name, facility.name, city.name)
        return facility

    def _attach(self, facility: G._FacilityInstance, office: G._FacilityInstance) -> None:
        facility.controlling_office_id = office.instance_id
        if facility.instance_id not in office.office.controlled_ids:
            office.office.controlled_ids.append(facility.instance_id)
        F.apply_office_multiplier(facility, office)
        F.compute_effectivity(facility, self.catalog)

    def _adopt_orphans(self, office: G._FacilityInstance, country: str) -> None:
        for f in self.world.facilities_of(office.company_id):
            if f.category.administers or f.controlling_office_id is not None:
                continue
            if self.country_of(f) == country:
                self._attach(f, office)

    def destroy_facility(self, company_id: int, facility_id: int) -> bool:
        facility = self._owned(company_id, facility_id)
        if facility is None:
            return False
        del self.world.facilities[facility_id]

        if facility.category.administers:
            country = self.country_of(facility)
            for f in self.world.facilities_of(company_id):
                if f.controlling_office_id == facility_id or (not f.category.administers and self.country_of(f) == country):
                    f.controlling_office_id = None
                    f.office_multiplier = 0.0
                    f.effectivity = 0.0
            logger.warning("Office %s destroyed: facilities in %s stop working", facility.name, country)
        elif facility.controlling_office_id is not None:
            office = self.world.facilities.get(facility.controlling_office_id)
            if office is not None and facility_id in office.office.controlled_ids:
                office.office.controlled_ids.remove(facility_id)
        return True

    def upgrade_facility(self, company_id: int, facility_id: int) -> bool:
        facility = self._owned(company_id, facility_id)
        if facility is None:
            return False
        company = self.world.companies[company_id]
        cost = F.upgrade_cost(self.catalog.facility_types[facility.type_id].cost, facility.size)
        if company.balance < cost:
            return False
        charged = F.upgrade_size(facility, self.catalog)
        if charged is None:
            return False
        company.balance -= charged
        return True

    def degrade_facility(self, company_id: int, facility_id: int) -> bool:
        facility = self._owned(company_id, facility_id)
        if facility is None:
            return False
        refund = F.degrade_size(facility, self.catalog)
        if refund is None:
            return False
        self.world.companies[company_id].balance += refund
        return True

    def set_workers(self, company_id: int, facility_id: int, count: int) -> bool:
        facility = self._owned(company_id, facility_id)
        if facility is None:
            return False
        if count < 0 or count > F.max_workers(facility, self.catalog):
            return False
        company = self.world.companies[company_id]
        cost = F.hiring_cost(facility, self._city(facility), count)
        if company.balance < cost:
            return False
        if not F.set_worker_count(facility, self.catalog, count):
            return False
        company.balance -= cost
        return True

    def set_recipe(self, company_id: int, facility_id: int, recipe_id: Optional[str]) -> bool:
        facility = self._owned(company_id, facility_id)
        return facility is not None and F.set_recipe(facility, self.catalog, recipe_id)

    def set_retail_price(self, company_id: int, facility_id: int, resource_id: str, price: float) -> bool:
        facility = self._owned(company_id, facility_id)
        if facility is None or resource_id not in self.catalog.resources:
            return False
        return F.set_price(facility, resource_id, price)

    # ── market ─────────────────────────────────────────────────────────────
    def create_offer(self, company_id: int, facility_id: int, resource: str, amount: float, price: float):
        return self.market.create_offer(company_id, facility_id, resource, amount, price)

    def cancel_offer(self, company_id: int, offer_id: int) -> bool:
        return self.market.cancel_offer(company_id, offer_id)

    def update_offer(self, company_id: int, offer_id: int, price: Optional[float] = None,
                     amount: Optional[float] = None) -> bool:
        return self.market.update_offer(company_id, offer_id, price=price, amount=amount)

    def accept_offer(self, company_id: int, facility_id: int, offer_id: int, amount: float):
        return self.market.accept_offer(company_id, facility_id, offer_id, amount)

    def cancel_route(self, company_id: int, route_id: int) -> bool:
        return self.market.cancel_route(company_id, route_id)

    def update_route(self, company_id: int, route_id: int, amount: Optional[float] = None,
                     price: Optional[float] = None) -> bool:
        return self.market.update_route(company_id, route_id, amount=amount, price=price)

    def create_internal_transfer(self, company_id: int, from_id: int, to_id: int, resource: str, amount: float):
        return self.market.create_internal_transfer(company_id, from_id, to_id, resource, amount)

    def cancel_internal_transfer(self, company_id: int, route_id: int) -> bool:
        return self.market.cancel_internal_transfer(company_id, route_id)

    def update_internal_transfer(self, company_id: int, route_id: int, amount: float) -> bool:
        return self.market.update_internal_transfer(company_id, route_id, amount)

    def transfer_resource(self, company_id: int, from_id: int, to_id: int, resource: str, amount: float) -> bool:
        return self.market.transfer_resource(company_id, from_id, to_id, resource, amount)

    # ── clock ──────────────────────────────────────────────────────────────
    def tick(self) -> TickReport:
        """Run all phases in order. A phase that raises leaves the world as it was before the tick."""
        snapshot = self.world.model_copy(deep=True)
        rng_state = self.random.getstate()
        report = TickReport(tick=self.world.tick)
        try:
            for behavior in self.behaviors:
                behavior.tick(self.world, self.catalog, self.market, report.tick, self.random, report)
        except Exception:
            logger.exception("Tick %d failed, restoring previous state", report.tick)
            self.world = snapshot
            self.market = Market(snapshot, self.catalog)
            self.random.setstate(rng_state)
            raise
        logger.info("Tick %d done: %d cycles, %d routes settled, %d failed",
                    report.tick, report.completed_cycles, report.settlement.settled, report.settlement.failed)
        return report

    def run(self, ticks: int) -> List[TickReport]:
        return [self.tick() for _ in range(ticks)]


# -----------------------------------
# Main Simulation Loop
# -----------------------------------

def main(ticks: int = 1, seed: int = 0, state: Path = WORLD_STATE_PATH) -> int:
    """Run the simulation for a number of ticks using the given RNG seed."""
    catalog = load_catalog(ALL_SOURCES)
    repo = JsonWorldRepository(state)
    loaded = repo.load()
    if not loaded.success:
        logger.error("Could not load %s: %s", state, loaded.error)
        return 1

    sim = Simulation(catalog, loaded.world, seed=seed)
    sim.run(ticks)

    for row in reports.list_companies(sim.world):
        print(f"{row.name:<24} balance={row.balance:>12.2f} facilities={row.facilities}")

    saved = repo.save(sim.world)
    if not saved.success:
        logger.error("Could not save %s: %s", state, saved.error)
        return 1
    return 0


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run economic simulation")
    parser.add_argument("--ticks", type=int, default=10, help="Number of ticks to run")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed for deterministic runs")
    parser.add_argument("--state", type=Path, default=WORLD_STATE_PATH, help="World state JSON file")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    raise SystemExit(main(ticks=args.ticks, seed=args.seed, state=args.state))
