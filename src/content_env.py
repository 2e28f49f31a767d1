# src/content_env.py
"""
Writes a JSON Schema for every catalog model (Resource, Recipe, FacilityDefinition, City)
to content/meta/<ClassName>/schema.json so content authors get editor validation.
"""
import json
import logging
import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root / "src"))

from register import CATALOG_MODELS  # noqa: E402

logger = logging.getLogger(__name__)


def write_schemas(output_base: Path) -> list:
    written = []
    output_base.mkdir(parents=True, exist_ok=True)
    for name, cls in CATALOG_MODELS.items():
        # Prepare output folder: content/meta/<ClassName>/
        model_dir = output_base / name
        model_dir.mkdir(parents=True, exist_ok=True)

        schema_file = model_dir / "schema.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(cls.model_json_schema(), f, indent=2)
        written.append(schema_file)
        logger.info("Wrote schema for %r to %s", name, schema_file)
    return written


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    write_schemas(project_root / "content" / "meta")


if __name__ == "__main__":
    main()
