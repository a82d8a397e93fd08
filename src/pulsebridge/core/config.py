"""
Layered configuration for pulsebridge.

Sources, lowest to highest precedence:
    1. Built-in defaults (plus any ``defaults=`` the caller passes)
    2. A YAML or JSON file
    3. Environment variables, ``PULSEBRIDGE_<SECTION>__<KEY>``

Environment values are parsed as YAML scalars, so ``true`` becomes a bool
and ``60`` an int.  Plugin ids are hyphenated while env var names cannot
be, so the segment after ``PLUGINS`` has its underscores turned into
hyphens::

    PULSEBRIDGE_PLUGINS__MOCK_GLUCOSE__FEATURES__FAST_MODE=true
        -> config["plugins"]["mock-glucose"]["features"]["fast_mode"] = True

Usage:
    config = Config(config_file="pulsebridge.yaml")

    config.get("registry.enabled_plugins")
    config.section("sync")
    config.plugin_overrides("mock-glucose")
"""

from __future__ import annotations

import copy
import json
import os
from typing import Any

import yaml
from loguru import logger

from .config_schema import PulseBridgeConfig
from .exceptions import ConfigurationError

_DEFAULT_ENV_PREFIX = "PULSEBRIDGE_"

DEFAULTS: dict[str, Any] = {
    "environment": "development",
    "logging": {"level": "WARNING", "file": None, "serialize": False},
    "registry": {},
    "sync": {
        "interval_seconds": 300,
        "include_historical": False,
        "historical_days": 7,
        "concurrency": 1,
    },
    "plugins": {},
}


class Config:
    """
    Merged view over defaults, config file and environment.

    Reads are dot-notation (``get("sync.concurrency")``); typed access goes
    through :meth:`validated`.
    """

    def __init__(
        self,
        config_file: str | None = None,
        env_prefix: str = _DEFAULT_ENV_PREFIX,
        defaults: dict[str, Any] | None = None,
    ):
        """
        Args:
            config_file: YAML (.yaml/.yml) or JSON file.  A missing file is
                logged and skipped.
            env_prefix: Prefix for environment overrides; empty disables them.
            defaults: Extra defaults merged over the built-in ones.
        """
        self.config_file = config_file
        self.env_prefix = env_prefix or ""
        self.config_data: dict[str, Any] = copy.deepcopy(DEFAULTS)

        if defaults:
            _deep_merge(self.config_data, defaults)
        if config_file:
            _deep_merge(self.config_data, self._read_file(config_file))
        if self.env_prefix:
            self._apply_env()

    @staticmethod
    def _read_file(path: str) -> dict[str, Any]:
        if not os.path.exists(path):
            logger.warning(f"Config file {path} not found, using defaults")
            return {}
        ext = os.path.splitext(path)[1].lower()
        try:
            with open(path) as f:
                if ext in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                elif ext == ".json":
                    data = json.load(f)
                else:
                    raise ConfigurationError(f"Unsupported config file type: {path}")
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not parse config file {path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
        return data

    def _apply_env(self) -> None:
        for env_key, raw in os.environ.items():
            if not env_key.startswith(self.env_prefix):
                continue
            parts = env_key[len(self.env_prefix) :].lower().split("__")
            if len(parts) > 1 and parts[0] == "plugins":
                parts[1] = parts[1].replace("_", "-")
            self.set(".".join(parts), _parse_env_value(raw))

    def get(self, key_path: str, default: Any = None) -> Any:
        """Value at a dot-notation path such as ``"sync.interval_seconds"``, else *default*."""
        current: Any = self.config_data
        for part in key_path.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def set(self, key_path: str, value: Any) -> None:
        """Set a dot-notation path, creating (or replacing non-dict) intermediate sections."""
        parts = key_path.split(".")
        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value

    def section(self, name: str) -> dict[str, Any]:
        """A copy of a top-level section; empty when absent or not a mapping."""
        value = self.config_data.get(name)
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def plugin_overrides(self, plugin_id: str) -> dict[str, Any]:
        """The ``plugins.<plugin_id>`` section, layered over environment defaults by the registry."""
        value = self.section("plugins").get(plugin_id)
        return value if isinstance(value, dict) else {}

    def validated(self) -> PulseBridgeConfig:
        """Return the config as a typed, validated model.

        Raises:
            ConfigurationError: if any section fails validation.
        """
        from pydantic import ValidationError

        try:
            return PulseBridgeConfig.model_validate(self.config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(target: dict[str, Any], source: dict[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(target.get(key), dict) and isinstance(value, dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


def _parse_env_value(raw: str) -> Any:
    # "mock-bp,mock-glucose" stays a string; RegistryConfig splits it
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    return value if isinstance(value, str | int | float | bool | list) else raw


_config_instance: Config | None = None


def get_config(config_file: str | None = None, env_prefix: str = _DEFAULT_ENV_PREFIX) -> Config:
    """Get or create the global Config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_file=config_file, env_prefix=env_prefix)
    return _config_instance


def reset_config() -> None:
    """Reset the global Config singleton (useful for testing)."""
    global _config_instance
    _config_instance = None
