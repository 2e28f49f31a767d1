import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import demand as D  # type: ignore
import facilities as F  # type: ignore
import objects as G  # type: ignore
from register import load_catalog, LOCAL_CONTENT  # type: ignore

CATALOG = load_catalog([LOCAL_CONTENT])
COPENHAGEN = CATALOG.cities["copenhagen"]


def setup_shops(*stock_and_price):
    world = G._WorldState()
    owner = G._CompanyInstance(name="Shops", balance=0.0)
    world.companies[owner.instance_id] = owner
    shops = []
    for n, (stock, price) in enumerate(stock_and_price, start=1):
        shop = F.new_facility(CATALOG, "retail", owner, "copenhagen", n)
        if stock:
            shop.add_resource("bread", stock)
        F.set_price(shop, "bread", price)
        world.facilities[shop.instance_id] = shop
        shops.append(shop)
    return world, owner, shops


def test_price_effect_is_continuous_at_average():
    for sensitivity in (0.0, 0.5, 0.8, 2.0):
        assert D.price_effect(10.0, 10.0, sensitivity) == pytest.approx(1.0)
        assert D.price_effect(10.0 + 1e-9, 10.0, sensitivity) == pytest.approx(1.0)
        assert D.price_effect(10.0 - 1e-9, 10.0, sensitivity) == pytest.approx(1.0)


def test_price_effect_shape():
    assert D.price_effect(5.0, 10.0, 0.5) == pytest.approx(2 ** 0.6)
    assert D.price_effect(0.01, 10.0, 2.0) == 5.0
    assert D.price_effect(20.0, 10.0, 0.5) == pytest.approx(0.5488, rel=1e-3)
    assert D.demand_creation(20.0, 10.0, 0.5) == 1.0
    assert D.demand_creation(0.0001, 10.0, 2.0) == 10.0


def test_wealth_maps_to_demand_multiplier():
    assert D.wealth_multiplier(0) == pytest.approx(0.8)
    assert D.wealth_multiplier(1) == pytest.approx(1.5)
    bread = CATALOG.resources["bread"]
    assert D.base_demand(COPENHAGEN, bread) == pytest.approx(1_000_000 * 0.0003 * 1.43)


def test_selection_shares_favour_cheaper_shops():
    shares = D.selection_shares([5.0, 10.0, 40.0], 10.0)
    assert sum(shares) == pytest.approx(1.0)
    assert shares[0] > shares[1] > shares[2]
    assert shares[0] / shares[2] == pytest.approx(16)


def test_single_shop_sells_base_demand():
    world, owner, (shop,) = setup_shops((1000, 12.0))
    result = D.distribute_city_demand(COPENHAGEN, [shop], CATALOG, world, random.Random(0))
    assert result.sales["bread"] == pytest.approx(429)
    assert shop.get_resource("bread") == pytest.approx(571)
    assert owner.balance == pytest.approx(429 * 12.0)
    assert shop.retail.sold("bread") == pytest.approx(429)


def test_second_pass_moves_unmet_demand():
    world, owner, (small, big) = setup_shops((100, 10.0), (1000, 10.0))
    result = D.distribute_city_demand(COPENHAGEN, [small, big], CATALOG, world, random.Random(3))
    assert small.get_resource("bread") == 0
    assert result.sales["bread"] == pytest.approx(429)
    assert big.retail.sold("bread") == pytest.approx(329)


def test_unpriced_or_empty_shops_are_skipped():
    world, owner, (unpriced, empty, stocked) = setup_shops((50, 0.0), (0, 8.0), (10, 8.0))
    D.distribute_city_demand(COPENHAGEN, [unpriced, empty, stocked], CATALOG, world, random.Random(0))
    assert unpriced.get_resource("bread") == 50
    assert stocked.get_resource("bread") == 0
    assert owner.balance == pytest.approx(80.0)


def test_allocation_never_exceeds_demand_or_stock():
    rng = random.Random(11)
    bread = CATALOG.resources["bread"]
    for _ in range(50):
        world, owner, shops = setup_shops(*[(rng.uniform(0, 300), rng.uniform(1, 30)) for _ in range(4)])
        eligible = D.eligible_retailers(shops, "bread")
        if not eligible:
            continue
        prices = [s.retail.get_price("bread") for s in eligible]
        avg = sum(prices) / len(prices)
        # the only demand allowed above the city's total comes from underpriced shops
        lift = max(D.demand_creation(p, avg, bread.price_sensitivity) for p in prices)
        total = rng.uniform(0, 800)
        demands = D.retailer_demands(total, eligible, bread, rng)
        assert sum(demands) <= total * lift + 1e-9
        stock = sum(s.get_resource("bread") for s in eligible)
        sold, revenue = D.allocate("bread", eligible, demands)
        assert sold <= min(total * lift, stock) + 1e-9
        assert sold <= sum(demands) + 1e-9
        assert all(s.get_resource("bread") >= 0 for s in eligible)


def test_price_effect_only_moves_demand_between_shops():
    weights = D.demand_weights([1.0, 3.0, 9.0], 13 / 3, 0.6)
    assert sum(weights) == pytest.approx(1.0)
    assert weights[0] > weights[1] > weights[2]


def test_cheap_shop_sales_stay_within_created_demand():
    world, owner, (cheap, dear) = setup_shops((100_000, 1.0), (100_000, 3.0))
    result = D.distribute_city_demand(COPENHAGEN, [cheap, dear], CATALOG, world, random.Random(0))
    lift = D.demand_creation(1.0, 2.0, CATALOG.resources["bread"].price_sensitivity)
    assert lift == pytest.approx(2 ** 0.54)

    assert result.base_demand["bread"] == pytest.approx(429)
    assert result.sales["bread"] == pytest.approx(result.adjusted_demand["bread"])
    assert 429 < result.sales["bread"] <= 429 * lift + 1e-6
    assert cheap.retail.sold("bread") > dear.retail.sold("bread")


def test_substitution_moves_demand_to_cheaper_good():
    base = {"grain": 100.0, "flour": 200.0, "bread": 300.0}
    # flour priced 4x its reference ratio to grain
    averages = {"grain": 10.0, "flour": 100.0}
    adjusted = D.apply_substitution(base, averages, CATALOG, random.Random(0))
    assert adjusted["flour"] < 200.0
    assert adjusted["grain"] > 100.0
    assert adjusted["bread"] == 300.0
    assert sum(adjusted.values()) == pytest.approx(sum(base.values()))


def test_substitution_shift_is_bounded():
    assert D.substitution_shift(100, 0.1, 1.2) == pytest.approx(30)
    assert D.substitution_shift(100, 0.6, 5.0) == pytest.approx(70)
    assert D.substitution_shift(100, 0.4, 2.0) == pytest.approx(60)
