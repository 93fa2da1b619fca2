"""
Achievement catalog

The catalog is immutable while the engine runs. It is loaded from the store
once and cached; `refresh()` reloads it after the definitions are reseeded.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from goaltracker.config import ACHIEVEMENT_CATALOG_PATH
from goaltracker.db.store import GamificationStore
from goaltracker.exceptions import ConfigurationError
from goaltracker.models.gamification import AchievementDefinition

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("achievements.json")

_definitions_adapter = TypeAdapter(List[AchievementDefinition])


def load_catalog_file(path: Optional[Union[str, Path]] = None) -> List[AchievementDefinition]:
    """
    Load and validate achievement definitions from a JSON file

    Args:
        path: Catalog file (defaults to ACHIEVEMENT_CATALOG_PATH, then the bundled achievements.json)

    Returns:
        List of definitions in file order

    Raises:
        ConfigurationError: unreadable file, malformed entries (including
            non-positive condition thresholds) or duplicate ids
    """
    path = Path(path) if path else (ACHIEVEMENT_CATALOG_PATH or DEFAULT_CATALOG_PATH)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read achievement catalog {path}: {e}",
            config_key="ACHIEVEMENT_CATALOG_PATH",
            cause=e,
        ) from e

    try:
        definitions = _definitions_adapter.validate_json(raw)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Malformed achievement catalog {path}: {e.error_count()} error(s)",
            config_key="ACHIEVEMENT_CATALOG_PATH",
            context={"errors": e.errors(include_url=False)},
            cause=e,
        ) from e

    seen = set()
    for definition in definitions:
        if definition.id in seen:
            raise ConfigurationError(
                f"Duplicate achievement id in catalog: {definition.id}",
                config_key="ACHIEVEMENT_CATALOG_PATH",
            )
        seen.add(definition.id)

    logger.info(f"Loaded {len(definitions)} achievement definitions from {path}")
    return definitions


class AchievementCatalog:
    """Cached view of the store's achievement definitions"""

    def __init__(self, store: GamificationStore):
        self.store = store
        self._definitions: Optional[List[AchievementDefinition]] = None
        self._by_id: Dict[str, AchievementDefinition] = {}

    async def definitions(self) -> List[AchievementDefinition]:
        """All definitions (loaded on first use)"""
        if self._definitions is None:
            await self.refresh()
        return self._definitions

    async def refresh(self) -> List[AchievementDefinition]:
        """Reload definitions from the store"""
        definitions = await self.store.list_achievement_definitions()
        self._definitions = list(definitions)
        self._by_id = {d.id: d for d in self._definitions}
        logger.debug(f"Achievement catalog loaded: {len(self._definitions)} definitions")
        return self._definitions

    async def get(self, achievement_id: str) -> Optional[AchievementDefinition]:
        """Definition by id, or None"""
        await self.definitions()
        return self._by_id.get(achievement_id)
