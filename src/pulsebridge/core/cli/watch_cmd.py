"""pulsebridge watch — run the scheduled sync loop for a while."""

from __future__ import annotations

import asyncio

import click

from .common import config_option


@click.command()
@config_option
@click.option("--seconds", type=float, default=60.0, show_default=True, help="How long to run.")
@click.option("--interval", type=float, default=None, help="Sync interval in seconds (overrides config).")
@click.option("--fast/--realistic", default=True, help="Skip simulated device latency.")
def watch(config_file: str | None, seconds: float, interval: float | None, fast: bool) -> None:
    """Connect the mock devices and sync them on a schedule."""
    from .common import load_config

    config = load_config(config_file, fast=fast)
    if interval is not None:
        config.set("sync.interval_seconds", interval)
    asyncio.run(_watch(config, seconds))


async def _watch(config, seconds: float) -> None:  # type: ignore[no-untyped-def]
    from pulsebridge.devices.scheduler import SyncScheduler

    from .common import build_service, print_report, register_demo_devices

    service = await build_service(config)
    scheduler = SyncScheduler.from_config(service, config, on_report=print_report)
    try:
        await register_demo_devices(service)
        scheduler.start()
        click.echo(f"Syncing every {scheduler.settings.interval_seconds:g}s for {seconds:g}s. Press Ctrl+C to stop.")
        await asyncio.sleep(seconds)
    finally:
        scheduler.stop()
        await service.shutdown()
        await service.registry.shutdown()
    click.echo(f"Done: {scheduler.runs} scheduled sync(s).")
