"""pulsebridge demo — exercise the mock devices end to end."""

from __future__ import annotations

import asyncio

import click

from .common import config_option


@click.command()
@config_option
@click.option("--fast/--realistic", default=True, help="Skip simulated device latency.")
@click.option("--historical", is_flag=True, help="Also backfill historical readings.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def demo(config_file: str | None, fast: bool, historical: bool, verbose: bool) -> None:
    """Register, connect, read and sync the mock devices, then report."""
    from .common import load_config

    config = load_config(config_file, fast=fast, verbose=verbose)
    asyncio.run(_demo(config, historical))


async def _demo(config, historical: bool) -> None:  # type: ignore[no-untyped-def]
    from pulsebridge.core.events import VITAL_ALERT_CRITICAL
    from pulsebridge.devices.service import SyncOptions

    from .common import build_service, print_report, register_demo_devices

    click.echo("Loading plugins...")
    service = await build_service(config, enabled_plugins=["mock-bp", "mock-glucose"])
    service.events.on(
        VITAL_ALERT_CRITICAL,
        lambda event: click.echo(f"  ALERT {event.payload['severity']}: {event.payload['message']}"),
    )

    try:
        click.echo("Registering devices...")
        device_ids = await register_demo_devices(service)

        click.echo("Taking live readings...")
        for device_id in device_ids:
            registration = await service.device_store.find_by_id(device_id)
            plugin = service.registry.get_plugin(registration.plugin_id)
            for reading in await plugin.read_data(registration.device_identifier):
                validation = await service.process_vital_data(device_id, registration.plugin_id, reading)
                value = f"{reading.primary_value:g}"
                if reading.secondary_value is not None:
                    value += f"/{reading.secondary_value:g}"
                click.echo(f"  {reading.reading_type}: {value} {reading.unit} valid={validation.is_valid}")
                for warning in validation.warnings:
                    click.echo(f"    warning: {warning}")

        click.echo("Syncing...")
        report = await service.sync_devices(SyncOptions(include_historical=historical, force=True))
        print_report(report)
    finally:
        await service.shutdown()
        await service.registry.shutdown()
