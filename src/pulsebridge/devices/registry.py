"""
Device-plugin registry.

Holds plugin *classes* (registered manually or discovered at runtime via
``importlib.metadata`` entry points, group ``pulsebridge.device_plugins``)
and the plugin *instances* loaded from them.  Third-party packages can ship
plugins in their own ``pyproject.toml``:

    [project.entry-points."pulsebridge.device_plugins"]
    omron-bp = "my_package.omron:OmronPlugin"

The registry is process-wide state; every mutation runs under one
``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from importlib.metadata import entry_points
from typing import Any

from loguru import logger

from pulsebridge.core.config import Config, get_config
from pulsebridge.core.config_schema import RegistryConfig
from pulsebridge.core.events import (
    PLUGIN_ERROR,
    PLUGIN_LOADED,
    PLUGIN_UNLOADED,
    REGISTRY_READY,
    Event,
    EventBus,
)
from pulsebridge.core.exceptions import ConfigurationError, PluginError, RegistrationError

from .environments import get_plugin_config, get_registry_config
from .models import utcnow
from .plugin import DevicePlugin

ENTRY_POINT_GROUP = "pulsebridge.device_plugins"
MAINTENANCE_ERROR_THRESHOLD = 5


class PluginStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"
    MAINTENANCE = "maintenance"


@dataclass
class PluginHealth:
    plugin_id: str
    status: PluginStatus = PluginStatus.HEALTHY
    connected_devices: int = 0
    last_sync: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    loaded_at: datetime = field(default_factory=utcnow)

    @property
    def uptime(self) -> float:
        return (utcnow() - self.loaded_at).total_seconds()


def merge_plugin_config(*layers: dict[str, Any] | None) -> dict[str, Any]:
    """Merge config layers left to right; ``features`` are merged key by key."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if key == "features" and isinstance(value, dict):
                merged["features"] = {**merged.get("features", {}), **value}
            else:
                merged[key] = value
    return merged


class PluginRegistry:
    """Discover, load and track device plugins."""

    def __init__(self, config: RegistryConfig | None = None, events: EventBus | None = None):
        self.config = config or RegistryConfig()
        self.events = events or EventBus()
        self._classes: dict[str, type] = {}
        self._configs: dict[str, dict[str, Any]] = {}
        self._plugins: dict[str, DevicePlugin] = {}
        self._health: dict[str, PluginHealth] = {}
        self._failures: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ── Plugin classes ────────────────────────────────────────────

    def register(self, plugin_id: str, plugin_class: type) -> None:
        """Manually register a plugin class (useful for testing)."""
        self._classes[plugin_id] = plugin_class

    def discover(self) -> dict[str, type]:
        """Scan entry points and return {plugin_id: plugin_class}."""
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                cls = ep.load()
            except Exception as e:
                logger.warning(f"Failed to load device plugin entry point '{ep.name}': {e}")
                continue
            if not isinstance(cls, type):
                logger.warning(f"Entry point '{ep.name}' is not a class, skipping")
                continue
            self._classes[ep.name] = cls
            logger.debug(f"Discovered device plugin: {ep.name}")
        return dict(self._classes)

    def list_available(self) -> list[str]:
        return list(self._classes)

    def get_plugin_class(self, plugin_id: str) -> type | None:
        return self._classes.get(plugin_id)

    def set_plugin_config(self, plugin_id: str, config: dict[str, Any]) -> None:
        self._configs[plugin_id] = dict(config)

    # ── Loading ───────────────────────────────────────────────────

    async def initialize(
        self,
        enabled_plugins: list[str] | None = None,
        plugin_configs: dict[str, dict[str, Any]] | None = None,
    ) -> list[str]:
        """Load every enabled plugin; one failure does not stop the others.

        Returns the ids that loaded.
        """
        enabled = self.config.enabled_plugins if enabled_plugins is None else enabled_plugins
        for plugin_id, config in (plugin_configs or {}).items():
            self.set_plugin_config(plugin_id, config)

        logger.info(f"Initializing plugin registry with {len(enabled)} plugins ({self.config.environment})")
        for plugin_id in enabled:
            try:
                await self.load_plugin(plugin_id)
            except Exception as e:
                logger.warning(f"Plugin {plugin_id} skipped: {e}")

        loaded = list(self._plugins)
        logger.info(f"Plugin registry ready: {len(loaded)} loaded, {len(self._failures)} failed")
        self.events.emit_sync(
            Event(
                name=REGISTRY_READY,
                payload={"loaded_plugins": loaded, "failed_plugins": dict(self._failures)},
                source="registry",
            )
        )
        return loaded

    async def load_plugin(self, plugin_id: str, config: dict[str, Any] | None = None) -> DevicePlugin:
        """Instantiate and initialize *plugin_id*.  Idempotent per id.

        Raises:
            RegistrationError: unknown id or the object is not a device plugin.
            ConfigurationError: the merged config fails validation.
        """
        async with self._lock:
            return await self._load(plugin_id, config)

    async def _load(self, plugin_id: str, config: dict[str, Any] | None) -> DevicePlugin:
        if plugin_id in self._plugins:
            logger.warning(f"Plugin {plugin_id} is already loaded")
            return self._plugins[plugin_id]

        try:
            cls = self._classes.get(plugin_id)
            if cls is None:
                raise RegistrationError(f"Unknown plugin id '{plugin_id}'. Available: {self.list_available()}")

            plugin = cls()
            self._check_plugin(plugin, plugin_id)

            merged = merge_plugin_config(plugin.get_default_config(), self._configs.get(plugin_id), config)
            result = plugin.validate_config(merged)
            if not result.is_valid:
                raise ConfigurationError(f"Invalid config for plugin {plugin_id}: {'; '.join(result.errors)}")
            await plugin.initialize(result.sanitized_config if result.sanitized_config is not None else merged)
        except Exception as e:
            logger.error(f"Failed to load plugin {plugin_id}: {e}")
            self._failures[plugin_id] = str(e)
            self.events.emit_sync(
                Event(name=PLUGIN_ERROR, payload={"plugin_id": plugin_id, "error": str(e)}, source="registry")
            )
            raise

        self._plugins[plugin_id] = plugin
        self._health[plugin_id] = PluginHealth(plugin_id=plugin_id)
        self._failures.pop(plugin_id, None)

        routes = plugin.register_routes()
        logger.info(f"Plugin {plugin_id} loaded ({len(routes)} API routes declared)")
        self.events.emit_sync(
            Event(
                name=PLUGIN_LOADED,
                payload={"plugin_id": plugin_id, "metadata": plugin.metadata, "routes": routes},
                source="registry",
            )
        )
        return plugin

    @staticmethod
    def _check_plugin(plugin: Any, plugin_id: str) -> None:
        if not isinstance(plugin, DevicePlugin):
            raise RegistrationError(f"Plugin {plugin_id} does not implement the DevicePlugin interface")
        metadata = getattr(plugin, "metadata", None)
        if metadata is None or not metadata.id or not metadata.name:
            raise RegistrationError(f"Plugin {plugin_id} is missing required metadata (id, name)")

    async def unload_plugin(self, plugin_id: str) -> None:
        async with self._lock:
            await self._unload(plugin_id)

    async def _unload(self, plugin_id: str) -> None:
        plugin = self._plugins.get(plugin_id)
        if plugin is None:
            raise PluginError(f"Plugin {plugin_id} is not loaded", plugin_id=plugin_id)

        logger.info(f"Unloading plugin {plugin_id}")
        try:
            await plugin.destroy()
        finally:
            del self._plugins[plugin_id]
            self._health.pop(plugin_id, None)
        self.events.emit_sync(Event(name=PLUGIN_UNLOADED, payload={"plugin_id": plugin_id}, source="registry"))

    async def reload_plugin(self, plugin_id: str, config: dict[str, Any] | None = None) -> DevicePlugin:
        async with self._lock:
            if plugin_id in self._plugins:
                await self._unload(plugin_id)
            return await self._load(plugin_id, config)

    async def shutdown(self) -> None:
        """Destroy every loaded plugin, tolerating individual failures."""
        logger.info("Shutting down plugin registry")
        async with self._lock:
            for plugin_id in list(self._plugins):
                try:
                    await self._unload(plugin_id)
                except Exception as e:
                    logger.error(f"Error unloading plugin {plugin_id} during shutdown: {e}")
            self._plugins.clear()
            self._health.clear()

    # ── Lookup ────────────────────────────────────────────────────

    def get_plugin(self, plugin_id: str) -> DevicePlugin | None:
        return self._plugins.get(plugin_id)

    def get_loaded_plugins(self) -> list[DevicePlugin]:
        return list(self._plugins.values())

    def is_loaded(self, plugin_id: str) -> bool:
        return plugin_id in self._plugins

    @property
    def failures(self) -> dict[str, str]:
        """Plugin id -> error message for plugins that failed to load."""
        return dict(self._failures)

    def get_plugins_for_device_type(self, device_type: str) -> list[DevicePlugin]:
        return [p for p in self._plugins.values() if p.metadata.supports_device(device_type)]

    def get_plugins_for_region(self, region: str) -> list[DevicePlugin]:
        return [p for p in self._plugins.values() if p.metadata.supports_region(region)]

    # ── Health ────────────────────────────────────────────────────

    def get_plugin_health(self, plugin_id: str) -> PluginHealth | None:
        return self._health.get(plugin_id)

    def get_all_plugin_health(self) -> list[PluginHealth]:
        return list(self._health.values())

    def record_error(self, plugin_id: str, message: str) -> None:
        health = self._health.get(plugin_id)
        if health is None:
            return
        health.error_count += 1
        health.last_error = message
        if health.status != PluginStatus.MAINTENANCE:
            health.status = PluginStatus.ERROR

    def record_sync(self, plugin_id: str, success: bool = True) -> None:
        health = self._health.get(plugin_id)
        if health is None:
            return
        health.last_sync = utcnow()
        if success and health.status == PluginStatus.WARNING:
            health.status = PluginStatus.HEALTHY

    def record_connection(self, plugin_id: str, connected: bool) -> None:
        health = self._health.get(plugin_id)
        if health is None:
            return
        health.connected_devices = max(0, health.connected_devices + (1 if connected else -1))

    def check_health(self) -> list[PluginHealth]:
        """Move plugins with too many errors into maintenance."""
        for plugin_id, health in self._health.items():
            if health.status == PluginStatus.ERROR and health.error_count > MAINTENANCE_ERROR_THRESHOLD:
                health.status = PluginStatus.MAINTENANCE
                logger.warning(f"Plugin {plugin_id} moved to maintenance after {health.error_count} errors")
        return self.get_all_plugin_health()


def register_builtin_plugins(registry: PluginRegistry) -> None:
    from .plugins import MockBloodPressurePlugin, MockGlucoseMeterPlugin

    registry.register(MockBloodPressurePlugin.metadata.id, MockBloodPressurePlugin)
    registry.register(MockGlucoseMeterPlugin.metadata.id, MockGlucoseMeterPlugin)


# Module-level singleton
_registry_instance: PluginRegistry | None = None


def get_plugin_registry(config: RegistryConfig | None = None, events: EventBus | None = None) -> PluginRegistry:
    """Get or create the global PluginRegistry (bundled plugins pre-registered)."""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = PluginRegistry(config=config, events=events)
        register_builtin_plugins(_registry_instance)
    return _registry_instance


def reset_plugin_registry() -> None:
    """Drop the global PluginRegistry without shutting it down (useful for testing)."""
    global _registry_instance
    _registry_instance = None


async def initialize_plugin_registry(
    config: Config | None = None,
    events: EventBus | None = None,
    **overrides: Any,
) -> PluginRegistry:
    """Build the registry settings for the configured environment and load plugins.

    Precedence (highest wins): *overrides*, the ``registry`` config section,
    the environment defaults.  Per-plugin configs merge the environment
    defaults with the ``plugins.<id>`` config section.
    """
    from pydantic import ValidationError

    config = config or get_config()
    environment = str(config.get("environment", "development"))

    settings = get_registry_config(environment).model_dump()
    settings.update(config.section("registry"))
    settings.update(overrides)
    try:
        registry_config = RegistryConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid registry configuration: {e}") from e

    registry = get_plugin_registry(registry_config, events)
    registry.config = registry_config
    registry.discover()

    plugin_configs = {
        plugin_id: merge_plugin_config(
            {"environment": environment},
            get_plugin_config(plugin_id, environment),
            config.plugin_overrides(plugin_id),
        )
        for plugin_id in registry_config.enabled_plugins
    }
    await registry.initialize(plugin_configs=plugin_configs)
    return registry
