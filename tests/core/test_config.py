"""Tests for pulsebridge.core.config."""

import json
import os

import pytest
import yaml

from pulsebridge.core.config import Config, get_config, reset_config
from pulsebridge.core.exceptions import ConfigurationError


class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.get("environment") == "development"
        assert config.get("sync.interval_seconds") == 300
        assert config.get("plugins") == {}

    def test_custom_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MYAPP_ENVIRONMENT", "staging")
        config = Config(env_prefix="MYAPP_")
        assert config.get("environment") == "staging"

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("PULSEBRIDGE_SYNC__CONCURRENCY", "4")
        monkeypatch.setenv("PULSEBRIDGE_SYNC__INCLUDE_HISTORICAL", "true")
        monkeypatch.setenv("PULSEBRIDGE_REGISTRY__ENABLED_PLUGINS", "mock-bp,mock-glucose")
        config = Config()
        assert config.get("sync.concurrency") == 4
        assert config.get("sync.include_historical") is True
        assert config.get("registry.enabled_plugins") == "mock-bp,mock-glucose"

    def test_plugin_env_keys_are_hyphenated(self, monkeypatch):
        monkeypatch.setenv("PULSEBRIDGE_PLUGINS__MOCK_GLUCOSE__FEATURES__FAST_MODE", "true")
        monkeypatch.setenv("PULSEBRIDGE_PLUGINS__MOCK_GLUCOSE__SEED", "11")
        config = Config()
        assert config.plugin_overrides("mock-glucose") == {"features": {"fast_mode": True}, "seed": 11}

    def test_yaml_config_file(self, tmp_config_file):
        config = Config(config_file=tmp_config_file)
        assert config.get("registry.enabled_plugins") == ["mock-glucose"]
        assert config.get("plugins.mock-glucose.features.fast_mode") is True
        # untouched defaults survive the merge
        assert config.get("sync.historical_days") == 7

    def test_json_config_file(self, tmp_dir):
        config_path = os.path.join(tmp_dir, "config.json")
        with open(config_path, "w") as f:
            json.dump({"environment": "production"}, f)

        config = Config(config_file=config_path)
        assert config.get("environment") == "production"

    def test_missing_file_uses_defaults(self, tmp_dir):
        config = Config(config_file=os.path.join(tmp_dir, "nope.yaml"))
        assert config.get("environment") == "development"

    @pytest.mark.parametrize(
        ("name", "content"),
        [
            ("broken.yaml", "registry: [unclosed"),
            ("list.yaml", "- mock-bp\n- mock-glucose\n"),
            ("broken.json", "{\"environment\": "),
            ("config.toml", "environment = \"staging\""),
        ],
    )
    def test_unreadable_file(self, tmp_dir, name, content):
        path = os.path.join(tmp_dir, name)
        with open(path, "w") as f:
            f.write(content)
        with pytest.raises(ConfigurationError):
            Config(config_file=path)

    def test_empty_yaml_file(self, tmp_dir):
        path = os.path.join(tmp_dir, "empty.yaml")
        open(path, "w").close()
        assert Config(config_file=path).get("sync.historical_days") == 7

    def test_env_overrides_file(self, tmp_dir, monkeypatch):
        config_path = os.path.join(tmp_dir, "config.yaml")
        with open(config_path, "w") as f:
            yaml.dump({"environment": "staging"}, f)

        monkeypatch.setenv("PULSEBRIDGE_ENVIRONMENT", "production")
        config = Config(config_file=config_path)
        assert config.get("environment") == "production"

    def test_get_missing_key(self):
        config = Config()
        assert config.get("nonexistent.key") is None
        assert config.get("nonexistent.key", "fallback") == "fallback"

    def test_set(self):
        config = Config()
        config.set("plugins.mock-bp.features.fast_mode", True)
        assert config.get("plugins.mock-bp.features.fast_mode") is True

    def test_extra_defaults(self):
        config = Config(defaults={"custom": {"key": "value"}})
        assert config.get("custom.key") == "value"

    def test_defaults_not_shared_between_instances(self):
        Config().set("sync.concurrency", 8)
        assert Config().get("sync.concurrency") == 1

    def test_set_replaces_scalar_section(self):
        config = Config()
        config.set("environment.region", "EU")
        assert config.get("environment.region") == "EU"


class TestSections:
    def test_section_is_a_copy(self):
        config = Config()
        sync = config.section("sync")
        sync["concurrency"] = 9
        assert config.get("sync.concurrency") == 1

    def test_missing_or_scalar_section(self):
        config = Config()
        assert config.section("nope") == {}
        assert config.section("environment") == {}

    def test_plugin_overrides(self, tmp_config_file):
        config = Config(config_file=tmp_config_file)
        assert config.plugin_overrides("mock-glucose") == {"features": {"fast_mode": True}, "seed": 3}
        assert config.plugin_overrides("mock-bp") == {}


class TestValidated:
    def test_typed_sections(self, tmp_config_file):
        cfg = Config(config_file=tmp_config_file).validated()
        assert cfg.registry.enabled_plugins == ["mock-glucose"]
        assert cfg.sync.interval_seconds == 60
        assert cfg.sync.concurrency == 2
        assert cfg.plugins["mock-glucose"]["seed"] == 3

    def test_env_strings_are_coerced(self, monkeypatch):
        monkeypatch.setenv("PULSEBRIDGE_SYNC__INTERVAL_SECONDS", "30")
        monkeypatch.setenv("PULSEBRIDGE_REGISTRY__ENABLED_PLUGINS", "mock-bp, mock-glucose")
        cfg = Config().validated()
        assert cfg.sync.interval_seconds == 30.0
        assert cfg.registry.enabled_plugins == ["mock-bp", "mock-glucose"]

    def test_invalid_raises_configuration_error(self):
        config = Config(defaults={"sync": {"interval_seconds": -1}})
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            config.validated()

    def test_unknown_environment_rejected(self):
        config = Config(defaults={"environment": "qa"})
        with pytest.raises(ConfigurationError):
            config.validated()


class TestGetConfig:
    def test_singleton(self):
        c1 = get_config()
        c2 = get_config()
        assert c1 is c2

    def test_reset_clears_singleton(self):
        c1 = get_config()
        reset_config()
        c2 = get_config()
        assert c1 is not c2
