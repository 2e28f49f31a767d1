from pathlib import Path
import logging
import sys

# Make src package discoverable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import sim  # type: ignore
import reports  # type: ignore
from register import load_catalog, ALL_SOURCES  # type: ignore

# --- New import for live plotting ---
import matplotlib.pyplot as plt


def setup_world(seed: int = 42) -> sim.Simulation:
    """Seed a small bread economy in Denmark: a grain farmer supplying a vertically integrated baker."""
    simulation = sim.Simulation(load_catalog(ALL_SOURCES), seed=seed)

    farmer = simulation.add_company("Nordic Grain", balance=20000)
    simulation.create_facility(farmer.instance_id, "office", "aarhus")
    farm = simulation.create_facility(farmer.instance_id, "farm", "aarhus")
    simulation.upgrade_facility(farmer.instance_id, farm.instance_id)

    baker = simulation.add_company("Copenhagen Bakeries", balance=30000)
    simulation.create_facility(baker.instance_id, "office", "copenhagen")
    mill = simulation.create_facility(baker.instance_id, "mill", "copenhagen")
    bakery = simulation.create_facility(baker.instance_id, "bakery", "copenhagen")
    warehouse = simulation.create_facility(baker.instance_id, "warehouse", "copenhagen")
    shop = simulation.create_facility(baker.instance_id, "retail", "copenhagen")

    offer = simulation.create_offer(farmer.instance_id, farm.instance_id, "grain", 12, 2.5)
    simulation.accept_offer(baker.instance_id, warehouse.instance_id, offer.instance_id, 6)
    simulation.create_internal_transfer(baker.instance_id, warehouse.instance_id, mill.instance_id, "grain", 3)
    simulation.create_internal_transfer(baker.instance_id, mill.instance_id, warehouse.instance_id, "flour", 14)
    simulation.create_internal_transfer(baker.instance_id, warehouse.instance_id, bakery.instance_id, "flour", 14)
    simulation.create_internal_transfer(baker.instance_id, bakery.instance_id, warehouse.instance_id, "bread", 0.5)
    simulation.create_internal_transfer(baker.instance_id, warehouse.instance_id, shop.instance_id, "bread", 0.5)
    simulation.set_retail_price(baker.instance_id, shop.instance_id, "bread", 12.0)
    return simulation


def run_simulation(ticks: int = 50, seed: int = 42) -> None:
    """Run the seeded economy and plot company balances and bread sales live."""
    simulation = setup_world(seed)
    companies = list(simulation.world.companies.values())

    plt.ion()  # Enable interactive mode so the GUI updates continuously
    fig, (ax_balance, ax_sales) = plt.subplots(2, 1, sharex=True)

    balance_history = {c.instance_id: [] for c in companies}
    balance_lines = {}
    for c in companies:
        (line,) = ax_balance.plot([], [], label=c.name)
        balance_lines[c.instance_id] = line
    ax_balance.set_ylabel("Balance")
    ax_balance.set_title("Company balances")
    ax_balance.legend()

    sales_history: list[float] = []
    (line_sales,) = ax_sales.plot([], [], label="bread sold")
    ax_sales.set_xlabel("Tick")
    ax_sales.set_ylabel("Units")
    ax_sales.legend()

    for t in range(1, ticks + 1):
        report = simulation.tick()

        for c in companies:
            balance_history[c.instance_id].append(simulation.world.companies[c.instance_id].balance)
            balance_lines[c.instance_id].set_data(range(1, t + 1), balance_history[c.instance_id])

        sold = sum(city.sales.get("bread", 0.0) for city in report.cities)
        sales_history.append(sold)
        line_sales.set_data(range(1, t + 1), sales_history)

        snapshot = ", ".join(f"{row.name}: {row.balance:.0f}" for row in reports.list_companies(simulation.world))
        print(f"Tick {t:>3}: {snapshot} | bread sold: {sold:.2f} | failed routes: {report.settlement.failed}")

        for ax in (ax_balance, ax_sales):
            ax.relim()
            ax.autoscale_view()
        plt.pause(0.001)  # Allow the GUI event loop to process events

    plt.ioff()
    plt.show()


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    run_simulation(ticks=200)
