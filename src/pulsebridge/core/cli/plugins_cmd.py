"""pulsebridge plugins — list the device plugins that can be loaded."""

from __future__ import annotations

import click


@click.command()
def plugins() -> None:
    """List available device plugins and what they support."""
    from pulsebridge.devices.registry import get_plugin_registry

    registry = get_plugin_registry()
    registry.discover()

    for plugin_id in sorted(registry.list_available()):
        metadata = getattr(registry.get_plugin_class(plugin_id), "metadata", None)
        if metadata is None:
            click.echo(f"{plugin_id}  (no metadata)")
            continue
        caps = metadata.capabilities
        click.echo(f"{plugin_id}  {metadata.name} v{metadata.version}")
        click.echo(f"    devices: {', '.join(metadata.supported_devices)}")
        click.echo(f"    regions: {', '.join(metadata.supported_regions)}")
        click.echo(f"    readings: {', '.join(str(t) for t in caps.reading_types)}")
        click.echo(f"    history: {caps.max_history_days} days, min sync interval {caps.min_sync_interval:g}s")
