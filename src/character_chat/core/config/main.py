"""
Main configuration class for Character Chat.

Contains the Config class that orchestrates all configuration sections.
Precedence: dataclass defaults < configs/runtime.yaml < CCH_* environment.
"""

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .runtime import (
    APIConfig,
    BillingConfig,
    ChatConfig,
    LLMConfig,
    MemoryConfig,
    PathsConfig,
    StreamingConfig,
)
from .yaml_loader import load_yaml_mapping

logger = logging.getLogger(__name__)

ENV_PREFIX = "CCH_"
DEFAULT_RUNTIME_CONFIG = Path("configs/runtime.yaml")

SECTIONS = ("llm", "memory", "chat", "streaming", "billing", "paths", "api")


class Environment(Enum):
    """Deployment environment, reported at startup and in `config show`."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


def _coerce(value: str, current: Any) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return value.lower() in {"1", "true", "yes", "on"}
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, Path):
        return Path(value)
    return value


def _apply_section(section: Any, data: Dict[str, Any], source: str) -> None:
    known = {f.name for f in fields(section)}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Unknown config key '{key}' in {source}")
            continue
        current = getattr(section, key)
        if isinstance(current, Path) and not isinstance(value, Path):
            value = Path(str(value))
        setattr(section, key, value)


@dataclass
class Config:
    """Main configuration class for Character Chat."""

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    llm: LLMConfig = field(default_factory=LLMConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    api: APIConfig = field(default_factory=APIConfig)

    runtime_config_path: Optional[Path] = DEFAULT_RUNTIME_CONFIG

    def __post_init__(self) -> None:
        """Load configs/runtime.yaml over the defaults when present."""
        if self.runtime_config_path is not None:
            self._load_from_runtime_yaml(Path(self.runtime_config_path))

    def _load_from_runtime_yaml(self, runtime_path: Path) -> None:
        """Load configuration sections from runtime.yaml if available."""
        if not runtime_path.exists():
            return

        data = load_yaml_mapping(runtime_path, "runtime config")
        self.apply_dict(data, source=str(runtime_path))
        logger.debug(f"Loaded runtime configuration from {runtime_path}")

    def apply_dict(self, data: Dict[str, Any], source: str = "dict") -> None:
        """Apply a nested mapping of section -> values."""
        if "environment" in data:
            self.environment = Environment(str(data["environment"]))
        if "debug" in data:
            self.debug = bool(data["debug"])

        for name in SECTIONS:
            section_data = data.get(name) or {}
            if section_data:
                _apply_section(getattr(self, name), section_data, source)

    def apply_env(self) -> None:
        """Apply CCH_<SECTION>__<KEY> environment overrides."""
        if os.getenv(f"{ENV_PREFIX}ENV"):
            self.environment = Environment(os.environ[f"{ENV_PREFIX}ENV"])
        if os.getenv(f"{ENV_PREFIX}DEBUG") is not None:
            self.debug = _coerce(os.environ[f"{ENV_PREFIX}DEBUG"], False)

        for name in SECTIONS:
            section = getattr(self, name)
            for f in fields(section):
                env_name = f"{ENV_PREFIX}{name.upper()}__{f.name.upper()}"
                raw = os.getenv(env_name)
                if raw is None:
                    continue
                try:
                    setattr(section, f.name, _coerce(raw, getattr(section, f.name)))
                except ValueError:
                    logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")

    @classmethod
    def from_env(cls, runtime_config_path: Optional[Path] = DEFAULT_RUNTIME_CONFIG) -> "Config":
        """Load configuration from runtime.yaml and environment variables."""
        config = cls(runtime_config_path=runtime_config_path)
        config.apply_env()
        return config

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "Config":
        """Load configuration from a YAML file (runtime.yaml schema)."""
        return cls(runtime_config_path=Path(config_path))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize configuration, masking API keys."""
        result: Dict[str, Any] = {
            "environment": self.environment.value,
            "debug": self.debug,
        }
        for name in SECTIONS:
            section = getattr(self, name)
            values: Dict[str, Any] = {}
            for f in fields(section):
                value = getattr(section, f.name)
                if f.name.endswith("api_key"):
                    value = "***" if value else None
                elif isinstance(value, Path):
                    value = str(value)
                elif is_dataclass(value):
                    continue
                values[f.name] = value
            result[name] = values
        return result
