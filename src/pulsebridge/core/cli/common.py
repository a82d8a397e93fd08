"""Shared setup logic for CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from pulsebridge.core.config import Config
    from pulsebridge.core.config_schema import LoggingConfig
    from pulsebridge.devices.service import DeviceManagementService

DEMO_PATIENT_ID = "demo-patient"
DEMO_DEVICES = (
    ("mock-bp", "BLOOD_PRESSURE", "mock-bp-001", "Demo BP cuff"),
    ("mock-glucose", "GLUCOSE_METER", "mock-glucose-001", "Demo glucose meter"),
)


def config_option(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Add the shared ``--config`` option."""
    return click.option(
        "--config",
        "config_file",
        type=click.Path(dir_okay=False),
        default=None,
        help="YAML or JSON config file.",
    )(fn)


def load_config(config_file: str | None, *, fast: bool = False, verbose: bool = False) -> Config:
    """Load config and set up logging.  ``fast`` disables simulated device delays."""
    from pulsebridge.core.config import Config
    from pulsebridge.core.config_schema import LoggingConfig
    from pulsebridge.core.utils.logging import setup_logging

    config = Config(config_file=config_file)
    if fast:
        for plugin_id, *_ in DEMO_DEVICES:
            config.set(f"plugins.{plugin_id}.features.fast_mode", True)

    settings = LoggingConfig.model_validate(config.section("logging"))
    setup_logging(
        level="DEBUG" if verbose else settings.level,
        log_file=settings.file,
        serialize=settings.serialize,
    )
    return config


async def build_service(config: Config, **registry_overrides: Any) -> DeviceManagementService:
    """Load the plugin registry and wire a service over in-memory stores."""
    from pulsebridge.devices.registry import initialize_plugin_registry, reset_plugin_registry
    from pulsebridge.devices.service import DeviceManagementService
    from pulsebridge.devices.stores import InMemoryDeviceStore, InMemoryReadingStore

    reset_plugin_registry()
    registry = await initialize_plugin_registry(config, **registry_overrides)
    for plugin_id, error in registry.failures.items():
        click.echo(f"  ! plugin {plugin_id} failed to load: {error}")
    return DeviceManagementService(registry, InMemoryDeviceStore(), InMemoryReadingStore())


async def register_demo_devices(service: DeviceManagementService, *, connect: bool = True) -> list[str]:
    """Register (and connect) one device per loaded mock plugin.  Returns device ids."""
    from pulsebridge.devices.models import DeviceRegistration

    device_ids = []
    for plugin_id, device_type, identifier, name in DEMO_DEVICES:
        if service.registry.get_plugin(plugin_id) is None:
            continue
        device_id = await service.register_device(
            DeviceRegistration(
                patient_id=DEMO_PATIENT_ID,
                plugin_id=plugin_id,
                device_name=name,
                device_type=device_type,
                device_identifier=identifier,
                added_by="cli",
            )
        )
        if connect:
            connection = await service.connect_device(device_id)
            click.echo(f"  connected {name} ({identifier}) battery={connection.battery_level}%")
        device_ids.append(device_id)
    return device_ids


def print_report(report: Any) -> None:
    duration = (report.end_time - report.start_time).total_seconds() if report.end_time else 0.0
    click.echo(
        f"  sync: {report.devices_synced} devices, {report.records_processed} records, "
        f"{len(report.errors)} errors, {duration:.2f}s"
    )
    for error in report.errors:
        click.echo(f"    [{error.severity}] {error.device_id}: {error.error}")
    for warning in report.warnings:
        click.echo(f"    warning: {warning}")
