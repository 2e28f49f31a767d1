"""JSON file adapter that keeps storage concerns out of the domain models."""
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError

import objects as G

logger = logging.getLogger(__name__)


class PersistenceResult(BaseModel):
    success: bool
    error: Optional[str] = None
    world: Optional[G._WorldState] = None


class JsonWorldRepository:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> PersistenceResult:
        """A missing file yields a fresh, empty world."""
        if not self.path.exists():
            logger.info("No saved world at %s, starting fresh", self.path)
            return PersistenceResult(success=True, world=G._WorldState())
        try:
            raw = self.path.read_text(encoding="utf-8")
            world = G._WorldState.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            return PersistenceResult(success=False, error=str(e))
        G.advance_instance_ids(world.max_instance_id())
        logger.info("Loaded world at tick %d from %s", world.tick, self.path)
        return PersistenceResult(success=True, world=world)

    def save(self, world: G._WorldState) -> PersistenceResult:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(world.model_dump_json(indent=2), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            return PersistenceResult(success=False, error=str(e))
        logger.info("Saved world at tick %d to %s", world.tick, self.path)
        return PersistenceResult(success=True)

    def reset(self) -> PersistenceResult:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            return PersistenceResult(success=False, error=str(e))
        return PersistenceResult(success=True)
