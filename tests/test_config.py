"""Tests for configuration loading.

Precedence is environment > YAML file > defaults.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from lucicodex.core.config import (
    DEFAULT_ALLOWLIST,
    DEFAULT_DENYLIST,
    Config,
    ConfigError,
    ConfigLoader,
)


@pytest.fixture
def loader(tmp_path: Path) -> ConfigLoader:
    """Loader whose search path only contains a file inside tmp_path."""
    return ConfigLoader(search_paths=[tmp_path / "config.yaml"])


def write_yaml(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:
    def test_defaults(self):
        config = Config()
        assert config.timeout_seconds == 30
        assert config.max_commands == 10
        assert config.max_retries == 2
        assert config.auto_retry is True
        assert config.allowlist == DEFAULT_ALLOWLIST
        assert config.denylist == DEFAULT_DENYLIST
        assert config.sandbox.max_execution_time == 30

    def test_default_lists_not_shared(self):
        a, b = Config(), Config()
        a.allowlist.append("^extra")
        assert "^extra" not in b.allowlist

    def test_no_file_found(self, loader):
        assert loader.find_config_file() is None
        assert loader.load(env={}) == Config()


class TestYamlLoading:
    """Values from the discovered or explicit YAML file."""

    def test_discovered_file(self, loader, tmp_path):
        write_yaml(tmp_path / "config.yaml", {"timeout_seconds": 5, "allowlist": []})
        config = loader.load(env={})
        assert config.timeout_seconds == 5
        assert config.allowlist == []

    def test_explicit_path(self, loader, tmp_path):
        path = write_yaml(tmp_path / "other.yaml", {"max_retries": 4})
        assert loader.load(path, env={}).max_retries == 4

    def test_nested_sandbox_limits(self, loader, tmp_path):
        path = write_yaml(
            tmp_path / "c.yaml",
            {"sandbox": {"max_execution_time": 3, "max_memory_mb": 64}},
        )
        config = loader.load(path, env={})
        assert config.sandbox.max_execution_time == 3
        assert config.sandbox.max_memory_mb == 64

    def test_empty_file(self, loader, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert loader.load(path, env={}) == Config()

    def test_invalid_yaml(self, loader, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("timeout_seconds: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            loader.load(path, env={})

    def test_not_a_mapping(self, loader, tmp_path):
        path = write_yaml(tmp_path / "list.yaml", ["a", "b"])
        with pytest.raises(ConfigError, match="must contain a mapping"):
            loader.load(path, env={})

    def test_invalid_value(self, loader, tmp_path):
        path = write_yaml(tmp_path / "c.yaml", {"sandbox": {"max_execution_time": 0}})
        with pytest.raises(ConfigError, match="Invalid configuration"):
            loader.load(path, env={})

    def test_missing_explicit_file(self, loader, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read config file"):
            loader.load(tmp_path / "missing.yaml", env={})


class TestEnvironmentOverrides:
    def test_env_beats_file(self, loader, tmp_path):
        write_yaml(tmp_path / "config.yaml", {"timeout_seconds": 5, "auto_retry": True})
        config = loader.load(
            env={"LUCICODEX_TIMEOUT": "9", "LUCICODEX_AUTO_RETRY": "false"}
        )
        assert config.timeout_seconds == 9
        assert config.auto_retry is False

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("0", False), ("off", False)])
    def test_boolean_parsing(self, loader, raw, expected):
        assert loader.load(env={"LUCICODEX_DRY_RUN": raw}).dry_run is expected

    def test_string_fields(self, loader, tmp_path):
        config = loader.load(
            env={
                "LUCICODEX_ELEVATE_COMMAND": "sudo -n",
                "LUCICODEX_SANDBOX_DIR": str(tmp_path / "box"),
            }
        )
        assert config.elevate_command == "sudo -n"
        assert config.sandbox_dir == tmp_path / "box"

    def test_empty_value_ignored(self, loader):
        assert loader.load(env={"LUCICODEX_TIMEOUT": ""}).timeout_seconds == 30

    def test_invalid_integer(self, loader):
        with pytest.raises(ConfigError, match="LUCICODEX_MAX_RETRIES"):
            loader.load(env={"LUCICODEX_MAX_RETRIES": "many"})
