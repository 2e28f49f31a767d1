import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import facilities as F  # type: ignore
import objects as G  # type: ignore
from register import load_catalog, LOCAL_CONTENT  # type: ignore

CATALOG = load_catalog([LOCAL_CONTENT])


def make(type_id: str, city_id: str = "copenhagen") -> G._FacilityInstance:
    owner = G._CompanyInstance(name="Acme")
    return F.new_facility(CATALOG, type_id, owner, city_id)


def test_new_facility_is_fully_staffed():
    farm = make("farm")
    assert farm.name == "Acme Farm #1"
    assert farm.workers == 3
    assert farm.effectivity == pytest.approx(1.0)
    assert farm.cached_capacity == 100
    assert farm.production.recipe_id == "Grow Grain"
    assert farm.office is None and farm.retail is None


def test_required_workers_and_wage():
    farm = make("farm")
    city = CATALOG.cities["copenhagen"]
    assert F.required_workers(farm, CATALOG) == 3
    assert F.wage_per_tick(farm, city) == pytest.approx(2.7)
    assert F.hiring_cost(farm, city, 5) == pytest.approx(4 * 0.9 * 2)
    assert F.hiring_cost(farm, city, 1) == pytest.approx(4 * 0.9 * 2)


def test_office_needs_one_worker_without_load():
    office = make("office")
    assert office.inventory is None
    assert office.office.administrative_load == 0
    assert F.required_workers(office, CATALOG) == 1
    office.office.administrative_load = 100
    assert F.required_workers(office, CATALOG) == 3


def test_worker_effectivity_curve():
    assert F.worker_effectivity(3, 3) == 1
    assert F.worker_effectivity(0, 3) == 0
    assert F.worker_effectivity(3, 6) == pytest.approx(0.25)
    assert F.worker_effectivity(6, 3) == pytest.approx(2.0)


def test_capacity_grows_with_size():
    farm = make("farm")
    previous = 0
    for size in range(1, 12):
        farm.size = size
        cap = F.compute_capacity(farm, CATALOG, 0.8)
        assert cap >= previous
        previous = cap


def test_upgrade_and_degrade_costs():
    assert F.upgrade_cost(1000, 1) == 4000
    assert F.degrade_refund(1000, 2) == 2000
    assert F.degrade_refund(1000, 1) == 0
    costs = [F.upgrade_cost(1000, s) for s in range(1, 8)]
    assert costs == sorted(set(costs))


def test_upgrade_then_degrade_clamps_workers():
    farm = make("farm")
    assert F.upgrade_size(farm, CATALOG) == 4000
    assert farm.size == 2
    assert F.set_worker_count(farm, CATALOG, 60)
    assert F.degrade_size(farm, CATALOG) == 2000
    assert farm.size == 1
    assert farm.workers == 30
    assert F.degrade_size(farm, CATALOG) is None


def test_set_worker_count_bounds():
    farm = make("farm")
    assert not F.set_worker_count(farm, CATALOG, -1)
    assert not F.set_worker_count(farm, CATALOG, 31)
    assert F.set_worker_count(farm, CATALOG, 30)
    assert farm.effectivity == pytest.approx(1 + 3.0)


def test_overflow_penalty_uses_cached_capacity():
    farm = make("farm")
    farm.add_resource("grain", 150)
    assert F.overflow_penalty(farm, CATALOG) == pytest.approx(0.75)
    farm.add_resource("grain", 100)
    assert F.overflow_penalty(farm, CATALOG) == 0
    farm.cached_capacity = 0
    assert F.overflow_penalty(farm, CATALOG) == 1.0


def test_rehired_stocked_facility_recovers():
    store = make("warehouse")
    store.add_resource("grain", 10)
    assert F.set_worker_count(store, CATALOG, 0)
    F.roll_effectivity_cache(store, CATALOG)
    assert F.compute_effectivity(store, CATALOG) == 0
    assert store.cached_capacity == 0

    assert F.set_worker_count(store, CATALOG, F.required_workers(store, CATALOG))
    assert store.effectivity == pytest.approx(1.0)
    F.roll_effectivity_cache(store, CATALOG)
    assert store.cached_capacity == 1000
    assert F.compute_effectivity(store, CATALOG) == pytest.approx(1.0)


def test_office_multiplier_is_clamped():
    farm = make("farm")
    office = make("office")
    office.effectivity = 1.8
    F.apply_office_multiplier(farm, office)
    assert farm.office_multiplier == 1.0
    office.effectivity = 0.4
    F.apply_office_multiplier(farm, office)
    assert farm.office_multiplier == pytest.approx(0.4)
    F.apply_office_multiplier(farm, None)
    assert farm.office_multiplier == 0
    assert F.compute_effectivity(farm, CATALOG) == 0


def test_set_recipe_only_allowed():
    farm = make("farm")
    assert F.set_recipe(farm, CATALOG, "Grow Grapes")
    assert not F.set_recipe(farm, CATALOG, "Bake Bread")
    assert farm.production.recipe_id == "Grow Grapes"
    shop = make("retail")
    assert not F.set_recipe(shop, CATALOG, "Grow Grain")


def test_production_completes_once_per_tick():
    mill = make("mill")
    mill.add_resource("grain", 100)
    assert F.production_step(mill, CATALOG)
    assert mill.get_resource("grain") == pytest.approx(98)
    assert mill.get_resource("flour") == pytest.approx(10)
    assert mill.production.is_producing
    assert F.production_step(mill, CATALOG)
    assert mill.get_resource("grain") == pytest.approx(96)
    assert mill.get_resource("flour") == pytest.approx(20)


def test_multi_tick_recipe():
    farm = make("farm")
    assert not F.production_step(farm, CATALOG)
    assert farm.production.progress == 1
    assert F.production_step(farm, CATALOG)
    assert farm.get_resource("grain") == pytest.approx(10)


def test_cycle_abandoned_when_inputs_vanish():
    winery = make("winery")
    winery.add_resource("grapes", 5)
    assert not F.production_step(winery, CATALOG)
    assert winery.production.is_producing
    assert winery.remove_resource("grapes", 3)
    assert not F.production_step(winery, CATALOG)
    assert not winery.production.is_producing
    assert winery.get_resource("grapes") == 2
    assert winery.get_resource("wine") == 0


def test_idle_without_inputs():
    bakery = make("bakery")
    bakery.add_resource("flour", 5)
    assert not F.production_step(bakery, CATALOG)
    assert not bakery.production.is_producing
    assert bakery.get_resource("flour") == 5


def test_net_flow_and_depletion():
    mill = make("mill")
    mill.add_resource("grain", 5)
    flow = F.net_flow(mill, CATALOG)
    assert flow["grain"] == pytest.approx(-2)
    assert flow["flour"] == pytest.approx(10)
    assert F.ticks_until_depletion(mill, CATALOG, "grain") == 2
    assert F.ticks_until_depletion(mill, CATALOG, "flour") is None
    mill.link_route(G._RouteLink(route_id=1, resource="grain", amount_per_tick=2,
                                 price_per_unit=1, direction="in"))
    assert "grain" not in F.net_flow(mill, CATALOG)


def test_retail_sale_and_reset():
    shop = make("retail")
    shop.add_resource("bread", 4)
    assert F.execute_sale(shop, "bread", 2) == 0
    assert F.set_price(shop, "bread", 12.0)
    assert not F.set_price(shop, "bread", -1)
    assert F.execute_sale(shop, "bread", 10) == pytest.approx(48)
    assert shop.get_resource("bread") == 0
    assert shop.retail.sold("bread") == 4
    F.reset_retail_counters(shop)
    assert shop.retail.revenue == 0
    assert shop.retail.sold("bread") == 0


def test_inventory_never_negative():
    farm = make("farm")
    farm.add_resource("grain", 1)
    assert not farm.remove_resource("grain", 2)
    assert farm.get_resource("grain") == 1
    with pytest.raises(ValueError):
        farm.add_resource("grain", -1)
