"""Configuration model and YAML loading.

Precedence: environment (LUCICODEX_*) > YAML file > defaults.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from lucicodex.core.models import LuciCodexError, ResourceLimits

logger = logging.getLogger(__name__)


class ConfigError(LuciCodexError):
    """Configuration file is unreadable or invalid."""

    pass


DEFAULT_ALLOWLIST = [
    r"^uci(\s|$)",
    r"^ubus(\s|$)",
    r"^fw4(\s|$)",
    r"^opkg\s+(?:update|install|remove|list(?:-installed|-upgradable)?|info)(?:\s|$)",
    r"^logread(\s|$)",
    r"^dmesg(\s|$)",
    r"^ip(\s|$)",
    r"^ifstatus(\s|$)",
    r"^cat(\s|$)",
    r"^tail(\s|$)",
    r"^grep(\s|$)",
    r"^awk(\s|$)",
    r"^sed(\s|$)",
    r"^wifi(\s|$)",
    r"^ping(\s|$)",
    r"^nslookup(\s|$)",
    r"^ifconfig(\s|$)",
    r"^route(\s|$)",
    r"^iptables(\s|$)",
    r"^/etc/init\.d/",
]

DEFAULT_DENYLIST = [
    r"^rm\s+-rf\s+/",
    r"^mkfs(\s|$)",
    r"^dd(\s|$)",
    r"^:\(\)\{:\|:&\};:",
]


class Config(BaseModel):
    """Typed settings consumed by the execution core."""

    timeout_seconds: int = 30
    max_commands: int = 10
    max_retries: int = 2
    auto_retry: bool = True
    dry_run: bool = False
    elevate_command: str = ""
    allowlist: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWLIST))
    denylist: list[str] = Field(default_factory=lambda: list(DEFAULT_DENYLIST))
    sandbox: ResourceLimits = Field(default_factory=ResourceLimits)
    sandbox_dir: Path | None = None
    log_file: str | None = None
    log_level: str = "WARNING"


class ConfigLoader:
    """Load Config from YAML files with defined precedence."""

    STATIC_SEARCH_PATHS = [
        Path("/etc/lucicodex/config.yaml"),
        Path.home() / ".config/lucicodex/config.yaml",
    ]

    ENV_PREFIX = "LUCICODEX_"

    # Env var suffix -> (field, converter)
    ENV_FIELDS = {
        "TIMEOUT": ("timeout_seconds", int),
        "MAX_COMMANDS": ("max_commands", int),
        "MAX_RETRIES": ("max_retries", int),
        "AUTO_RETRY": ("auto_retry", "bool"),
        "DRY_RUN": ("dry_run", "bool"),
        "ELEVATE_COMMAND": ("elevate_command", str),
        "SANDBOX_DIR": ("sandbox_dir", str),
        "LOG_FILE": ("log_file", str),
        "LOG_LEVEL": ("log_level", str),
    }

    def __init__(self, search_paths: list[Path] | None = None) -> None:
        self._search_paths = (
            list(search_paths) if search_paths is not None else self.STATIC_SEARCH_PATHS.copy()
        )

    def find_config_file(self) -> Path | None:
        for path in self._search_paths:
            if path.is_file():
                return path
        return None

    def load(self, path: Path | str | None = None, env: Mapping[str, str] | None = None) -> Config:
        """Build a Config from file (explicit or discovered) and environment."""
        data: dict[str, Any] = {}
        source = Path(path) if path is not None else self.find_config_file()
        if source is not None:
            data = self._read_yaml(source)
            logger.debug(f"Loaded configuration from {source}")

        data.update(self._env_overrides(os.environ if env is None else env))

        try:
            return Config.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            return {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return loaded

    def _env_overrides(self, env: Mapping[str, str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for suffix, (field_name, kind) in self.ENV_FIELDS.items():
            raw = env.get(self.ENV_PREFIX + suffix)
            if raw is None or raw == "":
                continue
            if kind == "bool":
                overrides[field_name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                try:
                    overrides[field_name] = kind(raw)
                except ValueError as e:
                    raise ConfigError(f"Invalid value for {self.ENV_PREFIX}{suffix}: {raw!r}") from e
        return overrides


def load_config(path: Path | str | None = None) -> Config:
    """Load configuration using the default search paths."""
    return ConfigLoader().load(path)
