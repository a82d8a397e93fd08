"""
Per-environment plugin settings.

Default ``PluginConfig`` payloads and registry settings for development,
staging and production, plus the advisory maps of which plugin ids serve a
device type or a market region.  Ids in the maps may belong to third-party
plugins discovered through entry points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pulsebridge.core.config import get_config
from pulsebridge.core.config_schema import RegistryConfig

PLUGIN_CONFIGS: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "mock-bp": {
            "environment": "development",
            "features": {"mock_data": True, "real_time_sync": False, "simulate_errors": False, "fast_mode": True},
        },
        "mock-glucose": {
            "environment": "development",
            "features": {
                "mock_data": True,
                "real_time_sync": False,
                "simulate_errors": False,
                "ketones_support": True,
                "fast_mode": True,
            },
        },
    },
    "staging": {
        "mock-bp": {
            "environment": "staging",
            "features": {"mock_data": True, "real_time_sync": True, "simulate_errors": True, "fast_mode": False},
        },
        "mock-glucose": {
            "environment": "staging",
            "features": {
                "mock_data": True,
                "real_time_sync": True,
                "simulate_errors": True,
                "ketones_support": True,
                "fast_mode": False,
            },
        },
    },
    "production": {},
}

REGISTRY_CONFIGS: dict[str, RegistryConfig] = {
    "development": RegistryConfig(
        environment="development",
        enabled_plugins=["mock-bp", "mock-glucose"],
        max_retries=3,
        health_check_interval=30,
        enable_hot_reload=True,
        log_level="DEBUG",
    ),
    "staging": RegistryConfig(
        environment="staging",
        enabled_plugins=["mock-bp", "mock-glucose"],
        max_retries=5,
        health_check_interval=60,
        log_level="INFO",
    ),
    # production enables nothing by default; set PULSEBRIDGE_REGISTRY__ENABLED_PLUGINS
    "production": RegistryConfig(
        environment="production",
        enabled_plugins=[],
        max_retries=5,
        health_check_interval=300,
        log_level="ERROR",
    ),
}

DEVICE_TYPE_PLUGINS: dict[str, list[str]] = {
    "BLOOD_PRESSURE": ["mock-bp", "omron-bp", "generic-bluetooth"],
    "GLUCOSE_METER": ["mock-glucose", "generic-bluetooth"],
    "WEARABLE": ["fitbit"],
    "PULSE_OXIMETER": ["generic-bluetooth"],
    "THERMOMETER": ["generic-bluetooth"],
    "ECG_MONITOR": ["generic-bluetooth"],
    "SCALE": ["fitbit", "generic-bluetooth"],
    "SPIROMETER": ["generic-bluetooth"],
}

REGIONAL_PLUGINS: dict[str, list[str]] = {
    "US": ["fitbit", "omron-bp", "mock-bp", "mock-glucose", "generic-bluetooth"],
    "EU": ["omron-bp", "mock-bp", "mock-glucose", "generic-bluetooth"],
    "IN": ["mock-bp", "mock-glucose", "generic-bluetooth"],
    "global": ["mock-bp", "mock-glucose", "generic-bluetooth"],
}


@dataclass
class CompatibilityResult:
    compatible: bool
    reasons: list[str] = field(default_factory=list)


def current_environment() -> str:
    return str(get_config().get("environment", "development"))


def get_plugin_config(plugin_id: str, environment: str | None = None) -> dict[str, Any]:
    """Environment default config for *plugin_id* (empty when none is defined)."""
    env = environment or current_environment()
    config = PLUGIN_CONFIGS.get(env, {}).get(plugin_id, {})
    return {**config, "features": dict(config.get("features", {}))} if config else {}


def get_registry_config(environment: str | None = None) -> RegistryConfig:
    env = environment or current_environment()
    return REGISTRY_CONFIGS.get(env, REGISTRY_CONFIGS["development"]).model_copy(deep=True)


def get_plugins_for_device_type(device_type: str) -> list[str]:
    return list(DEVICE_TYPE_PLUGINS.get(device_type, []))


def get_plugins_for_region(region: str) -> list[str]:
    return list(REGIONAL_PLUGINS.get(region, REGIONAL_PLUGINS["global"]))


def is_plugin_enabled(plugin_id: str, environment: str | None = None) -> bool:
    return plugin_id in get_registry_config(environment).enabled_plugins


def validate_plugin_compatibility(
    plugin_id: str,
    device_type: str,
    region: str,
    environment: str | None = None,
) -> CompatibilityResult:
    reasons = []
    if plugin_id not in get_plugins_for_device_type(device_type):
        reasons.append(f"Plugin {plugin_id} does not support device type {device_type}")
    if plugin_id not in get_plugins_for_region(region):
        reasons.append(f"Plugin {plugin_id} is not available in region {region}")
    if not is_plugin_enabled(plugin_id, environment):
        reasons.append(f"Plugin {plugin_id} is not enabled in current environment")
    return CompatibilityResult(compatible=not reasons, reasons=reasons)
