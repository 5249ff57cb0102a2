"""
YAML mapping loader shared by runtime configuration and persona files.
"""

import logging
from pathlib import Path
from typing import Any, Dict

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def load_yaml_mapping(path: Path, kind: str = "config") -> Dict[str, Any]:
    """Read a YAML file whose top level must be a mapping.

    An empty file (or one holding only comments) yields an empty dict.
    Parse errors and non-mapping documents raise `ConfigurationError`
    naming the file and what it was supposed to contain.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"{kind} file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid {kind} YAML {path}: {e}") from e

    if data is None:
        logger.warning(f"{kind} file {path} is empty")
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{kind} file {path} must contain a mapping, got {type(data).__name__}"
        )
    return data
