"""Tests for devices.environments — per-environment plugin settings."""

import pytest

from pulsebridge.core.config import reset_config
from pulsebridge.devices import environments
from pulsebridge.devices.environments import (
    current_environment,
    get_plugin_config,
    get_plugins_for_device_type,
    get_plugins_for_region,
    get_registry_config,
    is_plugin_enabled,
    validate_plugin_compatibility,
)


@pytest.mark.smoke
def test_current_environment_follows_config(monkeypatch):
    assert current_environment() == "development"
    monkeypatch.setenv("PULSEBRIDGE_ENVIRONMENT", "staging")
    reset_config()
    assert current_environment() == "staging"
    assert get_plugin_config("mock-bp")["features"]["simulate_errors"] is True


class TestPluginConfig:
    def test_development(self):
        config = get_plugin_config("mock-glucose", "development")
        assert config["environment"] == "development"
        assert config["features"]["fast_mode"] is True

    def test_returns_copy(self):
        config = get_plugin_config("mock-glucose", "development")
        config["features"]["fast_mode"] = False
        config["seed"] = 1
        fresh = get_plugin_config("mock-glucose", "development")
        assert fresh["features"]["fast_mode"] is True
        assert "seed" not in fresh
        assert environments.PLUGIN_CONFIGS["development"]["mock-glucose"]["features"]["fast_mode"] is True

    def test_missing(self):
        assert get_plugin_config("mock-glucose", "production") == {}
        assert get_plugin_config("fitbit", "development") == {}
        assert get_plugin_config("mock-bp", "qa") == {}


class TestRegistryConfig:
    def test_per_environment(self):
        assert get_registry_config("development").log_level == "DEBUG"
        assert get_registry_config("staging").max_retries == 5
        production = get_registry_config("production")
        assert production.enabled_plugins == []
        assert production.health_check_interval == 300

    def test_unknown_falls_back_to_development(self):
        assert get_registry_config("qa").environment == "development"

    def test_returns_copy(self):
        config = get_registry_config("development")
        config.enabled_plugins.append("fitbit")
        assert "fitbit" not in get_registry_config("development").enabled_plugins

    def test_is_plugin_enabled(self):
        assert is_plugin_enabled("mock-bp", "development")
        assert not is_plugin_enabled("mock-bp", "production")


class TestLookups:
    def test_device_types(self):
        assert get_plugins_for_device_type("GLUCOSE_METER") == ["mock-glucose", "generic-bluetooth"]
        assert get_plugins_for_device_type("MRI") == []

    def test_regions(self):
        assert "fitbit" in get_plugins_for_region("US")
        assert "fitbit" not in get_plugins_for_region("EU")
        assert get_plugins_for_region("BR") == get_plugins_for_region("global")

    def test_lookup_returns_copy(self):
        get_plugins_for_region("US").clear()
        assert get_plugins_for_region("US")


class TestCompatibility:
    def test_compatible(self):
        result = validate_plugin_compatibility("mock-glucose", "GLUCOSE_METER", "EU", "development")
        assert result.compatible
        assert result.reasons == []

    def test_every_reason_reported(self):
        result = validate_plugin_compatibility("fitbit", "GLUCOSE_METER", "EU", "production")
        assert not result.compatible
        assert result.reasons == [
            "Plugin fitbit does not support device type GLUCOSE_METER",
            "Plugin fitbit is not available in region EU",
            "Plugin fitbit is not enabled in current environment",
        ]

    def test_disabled_in_production(self):
        result = validate_plugin_compatibility("mock-bp", "BLOOD_PRESSURE", "IN", "production")
        assert result.reasons == ["Plugin mock-bp is not enabled in current environment"]
