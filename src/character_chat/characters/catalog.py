"""
Character persona catalog.

Loads read-only persona definitions from YAML files, one character per
file, keyed by `character_id`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..core.config.yaml_loader import load_yaml_mapping
from ..core.exceptions import ConfigurationError, NotFoundError
from ..core.protocols import CharacterPersona

logger = logging.getLogger(__name__)


class CharacterCatalog:
    """In-memory index of personas loaded from a directory of YAML files."""

    def __init__(self, characters_dir: Optional[Union[str, Path]] = None):
        self.characters_dir = Path(characters_dir) if characters_dir else None
        self._personas: Dict[str, CharacterPersona] = {}
        if self.characters_dir is not None:
            self.load_directory(self.characters_dir)

    def load_directory(self, directory: Path) -> int:
        """Load every *.yaml / *.yml persona in a directory. Returns the count."""
        if not directory.exists():
            logger.warning(f"Characters directory not found: {directory}")
            return 0

        loaded = 0
        for path in sorted(directory.iterdir()):
            if path.suffix.lower() not in {".yaml", ".yml"}:
                continue
            self.register(self.load_file(path))
            loaded += 1

        logger.info(f"Loaded {loaded} character personas from {directory}")
        return loaded

    @staticmethod
    def load_file(path: Path) -> CharacterPersona:
        """Parse one persona file."""
        data = load_yaml_mapping(path, "persona")
        if "character_id" not in data:
            data["character_id"] = path.stem
        if "name" not in data:
            raise ConfigurationError(f"Persona {path} is missing 'name'")
        return CharacterPersona.from_dict(data)

    def register(self, persona: CharacterPersona) -> None:
        """Add or replace a persona."""
        self._personas[persona.character_id] = persona

    def get(self, character_id: str) -> CharacterPersona:
        """Fetch a persona; unknown ids raise `NotFoundError`."""
        persona = self._personas.get(character_id)
        if persona is None:
            raise NotFoundError("character", character_id)
        return persona

    def list(self) -> List[CharacterPersona]:
        return [self._personas[key] for key in sorted(self._personas)]

    def __contains__(self, character_id: object) -> bool:
        return character_id in self._personas

    def __len__(self) -> int:
        return len(self._personas)
