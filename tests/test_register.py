import json
import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import objects as G  # type: ignore
import sim  # type: ignore
from persistence import JsonWorldRepository  # type: ignore
from register import Catalog, load_catalog, register_content, LOCAL_CONTENT  # type: ignore


def write(folder: Path, model: str, name: str, data) -> None:
    target = folder / model
    target.mkdir(parents=True, exist_ok=True)
    text = data if isinstance(data, str) else json.dumps(data)
    (target / f"{name}.json").write_text(text, encoding="utf-8")


def test_default_content_loads():
    catalog = load_catalog([LOCAL_CONTENT])
    assert {"grain", "flour", "bread"} <= set(catalog.resources)
    assert catalog.recipes["Make Flour"].inputs[0].resource == "grain"
    assert catalog.facility_types["office"].category is G.FacilityCategory.office
    assert [c.id for c in catalog.cities_in("Denmark")] == ["aarhus", "copenhagen"]


def test_mods_override_and_bad_files_are_skipped(tmp_path):
    base, mod = tmp_path / "base", tmp_path / "mod"
    write(base, "Resource", "grain", {"id": "grain", "display_name": "Grain", "base_price": 2.5})
    write(base, "Resource", "broken", "{ not json")
    write(base, "Resource", "invalid", {"id": "x", "display_name": "X", "base_price": -1})
    write(base, "meta", "ignored", {"id": "meta"})
    write(base, "Unknown", "thing", {"id": "thing"})
    write(mod, "Resource", "grain", {"id": "grain", "display_name": "Mod Grain", "base_price": 3.0})

    registry = register_content([base, mod, tmp_path / "missing"])
    assert list(registry["Resource"]) == ["grain"]
    assert registry["Resource"]["grain"].display_name == "Mod Grain"


def test_dangling_references_are_rejected():
    grain = G.Resource(id="grain", display_name="Grain", base_price=1)
    recipe = G.Recipe(id="Make Flour", inputs=[{"resource": "grain", "amount": 2}],
                      outputs=[{"resource": "flour", "amount": 10}])
    with pytest.raises(ValueError):
        Catalog(resources={"grain": grain}, recipes={recipe.id: recipe}).validate_references()

    mill = G.FacilityDefinition(id="mill", display_name="Mill", category="production", cost=10,
                                allowed_recipes=["Make Flour"])
    with pytest.raises(ValueError):
        Catalog(resources={"grain": grain}, facility_types={"mill": mill}).validate_references()


def test_default_recipe_must_be_allowed():
    with pytest.raises(ValidationError):
        G.FacilityDefinition(id="farm", display_name="Farm", category="production", cost=10,
                             allowed_recipes=["Grow Grain"], default_recipe="Bake Bread")


def test_city_construction_is_validated():
    with pytest.raises(ValidationError):
        G.City(id="x", name="X", country="Y", wealth=1.2, population=10)
    with pytest.raises(ValidationError):
        G.City(id="x", name="X", country="Y", wealth=0.5, population=-1)
    city = G.City(id="x", name="X", country="Y", wealth=0.0, population=0)
    assert str(city) == "X, Y (Pop: 0, Wealth: 0.0)"


def test_world_round_trip(tmp_path):
    catalog = load_catalog([LOCAL_CONTENT])
    simulation = sim.Simulation(catalog, seed=3)
    seller = simulation.add_company("Seller")
    buyer = simulation.add_company("Buyer")
    simulation.create_facility(seller.instance_id, "office", "prague")
    simulation.create_facility(buyer.instance_id, "office", "prague")
    farm = simulation.create_facility(seller.instance_id, "farm", "prague")
    store = simulation.create_facility(buyer.instance_id, "warehouse", "prague")
    offer = simulation.create_offer(seller.instance_id, farm.instance_id, "grain", 10, 2.0)
    simulation.accept_offer(buyer.instance_id, store.instance_id, offer.instance_id, 4)
    simulation.run(3)

    repo = JsonWorldRepository(tmp_path / "state" / "world.json")
    assert repo.save(simulation.world).success
    loaded = repo.load()
    assert loaded.success
    assert loaded.world.model_dump() == simulation.world.model_dump()
    assert loaded.world.route_counter == 1

    fresh = G._CompanyInstance(name="Later")
    assert fresh.instance_id > loaded.world.max_instance_id()

    resumed = sim.Simulation(catalog, loaded.world, seed=3)
    resumed.tick()
    assert resumed.world.tick == 4


def test_missing_and_corrupt_state(tmp_path):
    repo = JsonWorldRepository(tmp_path / "world.json")
    fresh = repo.load()
    assert fresh.success and fresh.world.tick == 0

    (tmp_path / "world.json").write_text("{\"tick\": \"soon\"}", encoding="utf-8")
    broken = repo.load()
    assert not broken.success
    assert broken.error

    assert repo.reset().success
    assert not (tmp_path / "world.json").exists()
