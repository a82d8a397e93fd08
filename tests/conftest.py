"""Shared test fixtures for pulsebridge."""

import os
import tempfile

import pytest

from pulsebridge.core.config import reset_config
from pulsebridge.core.config_schema import RegistryConfig
from pulsebridge.devices.models import DeviceRegistration
from pulsebridge.devices.plugins import MockBloodPressurePlugin, MockGlucoseMeterPlugin
from pulsebridge.devices.registry import PluginRegistry, register_builtin_plugins, reset_plugin_registry
from pulsebridge.devices.service import DeviceManagementService
from pulsebridge.devices.stores import InMemoryDeviceStore, InMemoryReadingStore

# No simulated latency, reproducible readings
FAST_GLUCOSE_CONFIG = {
    "environment": "development",
    "features": {"mock_data": True, "simulate_errors": False, "fast_mode": True},
    "seed": 42,
}
FAST_BP_CONFIG = {
    "environment": "development",
    "features": {"mock_data": True, "simulate_errors": False, "fast_mode": True},
    "seed": 7,
}


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Isolate every test from process-wide config and registry state."""
    for key in list(os.environ):
        if key.startswith("PULSEBRIDGE_"):
            monkeypatch.delenv(key)
    reset_config()
    reset_plugin_registry()
    yield
    reset_config()
    reset_plugin_registry()


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def tmp_config_file(tmp_dir):
    """Create a temporary YAML config file."""
    import yaml

    config_data = {
        "environment": "development",
        "logging": {"level": "ERROR"},
        "registry": {"enabled_plugins": ["mock-glucose"]},
        "sync": {"interval_seconds": 60, "concurrency": 2},
        "plugins": {"mock-glucose": {"features": {"fast_mode": True}, "seed": 3}},
    }
    config_path = os.path.join(tmp_dir, "config.yaml")
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
async def glucose_plugin():
    plugin = MockGlucoseMeterPlugin()
    await plugin.initialize(FAST_GLUCOSE_CONFIG)
    yield plugin
    await plugin.destroy()


@pytest.fixture
async def bp_plugin():
    plugin = MockBloodPressurePlugin()
    await plugin.initialize(FAST_BP_CONFIG)
    yield plugin
    await plugin.destroy()


@pytest.fixture
async def registry():
    reg = PluginRegistry(RegistryConfig(enabled_plugins=["mock-bp", "mock-glucose"]))
    register_builtin_plugins(reg)
    await reg.initialize(plugin_configs={"mock-bp": FAST_BP_CONFIG, "mock-glucose": FAST_GLUCOSE_CONFIG})
    yield reg
    await reg.shutdown()


@pytest.fixture
def device_store():
    return InMemoryDeviceStore()


@pytest.fixture
def reading_store():
    return InMemoryReadingStore()


@pytest.fixture
async def service(registry, device_store, reading_store):
    svc = DeviceManagementService(registry, device_store, reading_store)
    yield svc
    await svc.shutdown()


def _glucose_registration(**overrides) -> DeviceRegistration:
    fields = {
        "patient_id": "patient-1",
        "plugin_id": "mock-glucose",
        "device_name": "Kitchen meter",
        "device_type": "GLUCOSE_METER",
        "device_identifier": "mock-glucose-001",
        "added_by": "test",
    }
    fields.update(overrides)
    return DeviceRegistration(**fields)


def _bp_registration(**overrides) -> DeviceRegistration:
    fields = {
        "patient_id": "patient-1",
        "plugin_id": "mock-bp",
        "device_name": "Arm cuff",
        "device_type": "BLOOD_PRESSURE",
        "device_identifier": "mock-bp-001",
        "added_by": "test",
    }
    fields.update(overrides)
    return DeviceRegistration(**fields)


@pytest.fixture
def glucose_registration():
    """Factory for glucose meter registrations."""
    return _glucose_registration


@pytest.fixture
def bp_registration():
    """Factory for blood pressure monitor registrations."""
    return _bp_registration
