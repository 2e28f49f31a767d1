# src/register.py
"""
Scans content source folders (the local `content/` directory plus optional mod folders),
loads all JSON definitions into Pydantic models and freezes them into a `Catalog`.
Ignores any subfolder named "meta" or starting with a dot.
Every catalog model is keyed by its `id`; later folders override earlier definitions with the same id.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

import objects as G

logger = logging.getLogger(__name__)

# Hard-coded content source directories (relative to project root)
MOD_PATHS = [
    Path(__file__).resolve().parent.parent / "content_custom" / "modA",
    Path(__file__).resolve().parent.parent / "content_custom" / "modB",
]
# Local content directory
LOCAL_CONTENT = Path(__file__).resolve().parent.parent / "content"
ALL_SOURCES = [LOCAL_CONTENT] + MOD_PATHS

CATALOG_MODELS: Dict[str, Type[BaseModel]] = {
    "Resource": G.Resource,
    "Recipe": G.Recipe,
    "FacilityDefinition": G.FacilityDefinition,
    "City": G.City,
}


class Catalog(BaseModel):
    """Immutable view of all static content the simulation runs against."""
    model_config = ConfigDict(frozen=True)

    resources: Dict[str, G.Resource] = Field(default_factory=dict)
    recipes: Dict[str, G.Recipe] = Field(default_factory=dict)
    facility_types: Dict[str, G.FacilityDefinition] = Field(default_factory=dict)
    cities: Dict[str, G.City] = Field(default_factory=dict)

    def consumed_resources(self) -> List[G.Resource]:
        return [r for r in self.resources.values() if r.consumption_rate > 0]

    def cities_in(self, country: str) -> List[G.City]:
        return [c for c in self.cities.values() if c.country == country]

    def validate_references(self) -> "Catalog":
        """Raise ValueError on the first dangling id between catalog entries."""
        for recipe in self.recipes.values():
            for entry in list(recipe.inputs) + list(recipe.outputs):
                if entry.resource not in self.resources:
                    raise ValueError(f"Recipe {recipe.id!r} uses unknown resource {entry.resource!r}")
        for ftype in self.facility_types.values():
            for rid in ftype.allowed_recipes:
                if rid not in self.recipes:
                    raise ValueError(f"Facility type {ftype.id!r} allows unknown recipe {rid!r}")
            if ftype.allowed_recipes and not ftype.category.produces:
                raise ValueError(f"Only production facilities may have recipes ({ftype.id!r})")
        for res in self.resources.values():
            for target in res.substitution_elasticity:
                if target not in self.resources:
                    raise ValueError(f"Resource {res.id!r} substitutes into unknown resource {target!r}")
        return self


def is_valid_folder(path: Path) -> bool:
    return (
        path.is_dir()
        and not path.name.startswith('.')
        and path.name != 'meta'
    )


def register_content(folders: Iterable[Path]) -> Dict[str, Dict[str, BaseModel]]:
    """
    Load all JSON files in each valid subfolder of the given folders,
    parse them with the corresponding Pydantic model based on folder name,
    and collect them into { model_name: { id: instance, ... } }.
    """
    registry: Dict[str, Dict[str, BaseModel]] = {name: {} for name in CATALOG_MODELS}

    # Load in order: base content first, then mods
    for folder in folders:
        folder = Path(folder)
        if not folder.exists():
            continue
        for sub in sorted(folder.iterdir()):
            if not is_valid_folder(sub):
                continue
            model_name = sub.name
            model_cls = CATALOG_MODELS.get(model_name)
            if model_cls is None:
                # skip unknown model folders
                logger.debug("Skipping unknown content folder %s", sub)
                continue
            for json_file in sorted(sub.glob("*.json")):
                try:
                    data = json.loads(json_file.read_text(encoding="utf-8"))
                    instance = model_cls.model_validate(data)
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.error("Error parsing %s: %s", json_file, e)
                    continue
                key = getattr(instance, 'id')
                if key in registry[model_name]:
                    logger.info("%s %r overridden by %s", model_name, key, json_file)
                registry[model_name][key] = instance

    return registry


def load_catalog(folders: Iterable[Path] = ALL_SOURCES) -> Catalog:
    registry = register_content(folders)
    catalog = Catalog(
        resources=registry["Resource"],
        recipes=registry["Recipe"],
        facility_types=registry["FacilityDefinition"],
        cities=registry["City"],
    ).validate_references()
    logger.info(
        "Loaded %d resources, %d recipes, %d facility types, %d cities",
        len(catalog.resources), len(catalog.recipes), len(catalog.facility_types), len(catalog.cities),
    )
    return catalog


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    catalog = load_catalog(ALL_SOURCES)
    # Summary output
    for label, collection in (
        ("Resource", catalog.resources),
        ("Recipe", catalog.recipes),
        ("FacilityDefinition", catalog.facility_types),
        ("City", catalog.cities),
    ):
        print(f"Loaded {len(collection)} {label} entries.")


if __name__ == "__main__":
    main()
