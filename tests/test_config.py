"""
Tests for configuration loading and precedence.
"""

from pathlib import Path

import pytest

from character_chat.core.config import Config, Environment
from character_chat.core.exceptions import ConfigurationError


class TestConfig:
    """Defaults < runtime.yaml < CCH_* environment."""

    def test_defaults(self) -> None:
        """Test dataclass defaults without a runtime file."""
        config = Config(runtime_config_path=None)

        assert config.environment == Environment.DEVELOPMENT
        assert config.llm.default_model == "gemini-2.5-flash"
        assert config.llm.timeout_s == 60.0
        assert config.memory.dedup_threshold == 0.95
        assert config.memory.retrieval_threshold == 0.7
        assert config.memory.search_limit == 5
        assert config.memory.summarize_every_n_messages == 20
        assert config.chat.max_message_length == 2000
        assert config.streaming.chunk_size > 0

    def test_runtime_yaml_overrides_defaults(self, tmp_path: Path) -> None:
        """Test values from runtime.yaml replace the defaults."""
        runtime = tmp_path / "runtime.yaml"
        runtime.write_text(
            "environment: production\n"
            "llm:\n  default_model: gpt-4o\n  timeout_s: 12.5\n"
            "memory:\n  search_limit: 3\n"
            "paths:\n  database_path: /tmp/other.db\n",
            encoding="utf-8",
        )

        config = Config(runtime_config_path=runtime)

        assert config.environment == Environment.PRODUCTION
        assert config.llm.default_model == "gpt-4o"
        assert config.llm.timeout_s == 12.5
        assert config.memory.search_limit == 3
        assert config.paths.database_path == Path("/tmp/other.db")

    def test_missing_runtime_yaml_is_ignored(self, tmp_path: Path) -> None:
        """Test a missing runtime file leaves the defaults in place."""
        config = Config(runtime_config_path=tmp_path / "absent.yaml")
        assert config.llm.default_model == "gemini-2.5-flash"

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test CCH_<SECTION>__<KEY> wins over runtime.yaml, typed like the field."""
        runtime = tmp_path / "runtime.yaml"
        runtime.write_text("memory:\n  search_limit: 3\n", encoding="utf-8")
        monkeypatch.setenv("CCH_MEMORY__SEARCH_LIMIT", "8")
        monkeypatch.setenv("CCH_MEMORY__ENABLED", "false")
        monkeypatch.setenv("CCH_LLM__TIMEOUT_S", "30")
        monkeypatch.setenv("CCH_ENV", "testing")

        config = Config.from_env(runtime_config_path=runtime)

        assert config.memory.search_limit == 8
        assert config.memory.enabled is False
        assert config.llm.timeout_s == 30.0
        assert config.environment == Environment.TESTING

    def test_invalid_env_value_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test an unparseable override keeps the previous value."""
        monkeypatch.setenv("CCH_CHAT__MAX_MESSAGE_LENGTH", "lots")
        config = Config.from_env(runtime_config_path=None)
        assert config.chat.max_message_length == 2000

    def test_api_keys_from_provider_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test vendor key variables are picked up."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.delenv("GOOGLE_GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "g-test")

        config = Config(runtime_config_path=None)

        assert config.llm.openai_api_key == "sk-test"
        assert config.llm.gemini_api_key == "g-test"

    def test_to_dict_masks_api_keys(self) -> None:
        """Test serialized configuration never exposes keys."""
        config = Config(runtime_config_path=None)
        config.llm.openai_api_key = "sk-secret"
        config.llm.anthropic_api_key = None

        data = config.to_dict()

        assert data["llm"]["openai_api_key"] == "***"
        assert data["llm"]["anthropic_api_key"] is None
        assert isinstance(data["paths"]["database_path"], str)
        assert data["environment"] == "development"

    def test_runtime_yaml_must_be_a_mapping(self, tmp_path: Path) -> None:
        """Test a list at the top level is rejected with the file named."""
        runtime = tmp_path / "runtime.yaml"
        runtime.write_text("- llm\n- memory\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            Config(runtime_config_path=runtime)

    def test_empty_runtime_yaml(self, tmp_path: Path) -> None:
        """Test a comment-only runtime file keeps the defaults."""
        runtime = tmp_path / "runtime.yaml"
        runtime.write_text("# nothing yet\n", encoding="utf-8")
        assert Config(runtime_config_path=runtime).memory.search_limit == 5
