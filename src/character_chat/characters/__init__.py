"""Character personas."""

from .catalog import CharacterCatalog

__all__ = ["CharacterCatalog"]
