"""
DevicePlugin protocol and base class.

Any device adapter (a vendor cloud API, a Bluetooth meter, a simulator, …)
implements this interface so the registry and the management service can
treat them uniformly.  Plugins only *produce* readings; persistence, HTTP
and notification delivery live outside them.
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import ValidationError

from pulsebridge.core.config_schema import PluginConfig
from pulsebridge.core.exceptions import (
    ConfigurationError,
    ConnectionFailedError,
    DeviceNotConnectedError,
    PluginNotInitializedError,
)
from pulsebridge.core.utils.logging import plugin_logger

from .models import (
    ApiRoute,
    BulkSyncResult,
    ConfigValidationResult,
    DeviceConnection,
    DeviceConnectionConfig,
    HistoricalDataOptions,
    PluginMetadata,
    ReadDataOptions,
    SyncResult,
    ValidationResult,
    VitalData,
)
from .transformer import DataTransformer

T = TypeVar("T")


@runtime_checkable
class DevicePlugin(Protocol):
    """Protocol that every device plugin must satisfy."""

    metadata: PluginMetadata

    async def initialize(self, config: PluginConfig | Mapping[str, Any]) -> None:
        """Validate *config* and get ready to serve devices."""
        ...

    async def destroy(self) -> None:
        """Release every resource; the plugin may be initialized again later."""
        ...

    async def discover_devices(self) -> list[DeviceConnection]:
        """Return candidate devices that are not connected yet."""
        ...

    async def connect(self, config: DeviceConnectionConfig) -> DeviceConnection: ...

    async def disconnect(self, device_id: str) -> None:
        """Idempotent.  Cancels any in-flight acquisition for the device."""
        ...

    async def get_connection_status(self, device_id: str) -> DeviceConnection: ...

    async def read_data(self, device_id: str, options: ReadDataOptions | None = None) -> list[VitalData]: ...

    async def read_historical_data(self, device_id: str, options: HistoricalDataOptions) -> list[VitalData]: ...

    async def sync_device(self, device_id: str) -> SyncResult:
        """Pull new readings.  Partial failure is reported in the result, not raised."""
        ...

    async def bulk_sync(self, device_ids: list[str]) -> BulkSyncResult: ...

    def transform_data(self, raw_data: Mapping[str, Any], device_type: str) -> VitalData: ...

    def validate_data(self, data: VitalData) -> ValidationResult: ...

    def get_default_config(self) -> dict[str, Any]: ...

    def validate_config(self, config: PluginConfig | Mapping[str, Any]) -> ConfigValidationResult:
        """Never raises; problems are reported in the result."""
        ...

    def register_routes(self) -> list[ApiRoute]: ...


class BaseDevicePlugin(ABC):
    """Optional ABC providing shared plumbing for device plugins.

    Subclass this for initialization bookkeeping, config validation, bulk
    sync, scaled simulated delays, timeout/retry handshakes and cancellable
    acquisitions.  Or just implement the ``DevicePlugin`` protocol directly.
    Per-device state belongs to the subclass.
    """

    metadata: PluginMetadata
    # extra config keys the plugin reads itself
    config_extras: frozenset[str] = frozenset({"seed"})

    def __init__(self) -> None:
        self.config: PluginConfig | None = None
        self._initialized = False
        self._pending: dict[str, set[asyncio.Task]] = defaultdict(set)
        self._rng = random.Random()

    @property
    def plugin_id(self) -> str:
        return self.metadata.id

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def log(self):
        return plugin_logger(self.plugin_id)

    # ── Lifecycle ─────────────────────────────────────────────────

    async def initialize(self, config: PluginConfig | Mapping[str, Any]) -> None:
        result = self.validate_config(config)
        if not result.is_valid:
            raise ConfigurationError(f"Invalid config for plugin {self.plugin_id}: {'; '.join(result.errors)}")
        for warning in result.warnings:
            self.log.warning(f"{self.plugin_id}: {warning}")

        self.config = result.sanitized_config
        seed = (self.config.model_extra or {}).get("seed")
        if seed is not None:
            self._rng.seed(seed)
        await self._on_initialize()
        self._initialized = True
        self.log.info(f"Plugin {self.plugin_id} initialized ({self.config.environment})")

    async def destroy(self) -> None:
        for device_id in list(self._pending):
            self._cancel_pending(device_id)
        await self._on_destroy()
        self._initialized = False
        self.log.info(f"Plugin {self.plugin_id} destroyed")

    async def _on_initialize(self) -> None:
        """Subclass hook, runs after the config is accepted."""

    async def _on_destroy(self) -> None:
        """Subclass hook, runs before the plugin is marked uninitialized."""

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise PluginNotInitializedError(f"Plugin {self.plugin_id} is not initialized", plugin_id=self.plugin_id)

    # ── Device operations ─────────────────────────────────────────

    @abstractmethod
    async def discover_devices(self) -> list[DeviceConnection]: ...

    @abstractmethod
    async def connect(self, config: DeviceConnectionConfig) -> DeviceConnection: ...

    @abstractmethod
    async def disconnect(self, device_id: str) -> None: ...

    @abstractmethod
    async def get_connection_status(self, device_id: str) -> DeviceConnection: ...

    @abstractmethod
    async def read_data(self, device_id: str, options: ReadDataOptions | None = None) -> list[VitalData]: ...

    @abstractmethod
    async def read_historical_data(self, device_id: str, options: HistoricalDataOptions) -> list[VitalData]: ...

    @abstractmethod
    async def sync_device(self, device_id: str) -> SyncResult: ...

    async def bulk_sync(self, device_ids: list[str]) -> BulkSyncResult:
        """Sync each device in turn; one device's failure never stops the rest."""
        self._require_initialized()
        started = time.monotonic()
        results: list[SyncResult] = []
        for device_id in device_ids:
            try:
                results.append(await self.sync_device(device_id))
            except Exception as e:
                self.log.warning(f"{self.plugin_id}: sync of {device_id} raised: {e}")
                results.append(
                    SyncResult(
                        device_id=device_id,
                        success=False,
                        errors=[str(e)],
                        error_code=getattr(e, "error_code", None),
                    )
                )
        return BulkSyncResult.from_results(results, time.monotonic() - started)

    # ── Data and config ───────────────────────────────────────────

    @abstractmethod
    def transform_data(self, raw_data: Mapping[str, Any], device_type: str) -> VitalData: ...

    def validate_data(self, data: VitalData) -> ValidationResult:
        return DataTransformer.validate_vital_data(data)

    @abstractmethod
    def get_default_config(self) -> dict[str, Any]: ...

    def validate_config(self, config: PluginConfig | Mapping[str, Any]) -> ConfigValidationResult:
        if isinstance(config, PluginConfig):
            data = config.model_dump()
        elif isinstance(config, Mapping):
            data = dict(config)
        else:
            return ConfigValidationResult(is_valid=False, errors=["Configuration must be a mapping"])

        try:
            parsed = PluginConfig.model_validate(data)
        except ValidationError as e:
            errors = [f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()]
            return ConfigValidationResult(is_valid=False, errors=errors)

        warnings: list[str] = []
        if not data.get("features"):
            warnings.append("No features specified, using defaults")
        unknown = sorted(k for k in data if k not in PluginConfig.model_fields and k not in self.config_extras)
        if unknown:
            warnings.append(f"Ignoring unrecognized config keys: {', '.join(unknown)}")

        return ConfigValidationResult(is_valid=True, warnings=warnings, sanitized_config=parsed)

    def register_routes(self) -> list[ApiRoute]:
        return []

    # ── Helpers ───────────────────────────────────────────────────

    def _feature(self, name: str, default: bool = False) -> bool:
        return self.config.feature(name, default) if self.config is not None else default

    def _delay_scale(self) -> float:
        if self.config is None:
            return 1.0
        if self.config.feature("fast_mode"):
            return 0.0
        return self.config.delay_scale

    async def _simulate_delay(self, low: float, high: float) -> None:
        """Sleep a random ``low``-``high`` seconds, scaled by the config."""
        seconds = self._rng.uniform(low, high) * self._delay_scale()
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def _connect_with_retries(
        self,
        config: DeviceConnectionConfig,
        handshake: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *handshake* with ``config.timeout`` per attempt.

        Only timeouts are retried; any other failure propagates immediately.
        """
        attempts = max(1, config.retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(handshake(), timeout=config.timeout)
            except TimeoutError:
                self.log.warning(
                    f"{self.plugin_id}: connect to {config.device_id} timed out (attempt {attempt}/{attempts})"
                )
        raise ConnectionFailedError(
            f"Timed out connecting to {config.device_id} after {attempts} attempts",
            plugin_id=self.plugin_id,
            device_id=config.device_id,
        )

    async def _track(self, device_id: str, coro: Coroutine[Any, Any, T]) -> T:
        """Run *coro* as a task that ``disconnect`` can cancel.

        A cancelled acquisition surfaces as ``DeviceNotConnectedError``; a
        cancellation of the caller itself propagates unchanged.
        """
        task = asyncio.ensure_future(coro)
        self._pending[device_id].add(task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise DeviceNotConnectedError(
                f"Device {device_id} disconnected during acquisition",
                plugin_id=self.plugin_id,
                device_id=device_id,
            ) from None
        finally:
            tasks = self._pending.get(device_id)
            if tasks is not None:
                tasks.discard(task)
                if not tasks:
                    del self._pending[device_id]

    def _cancel_pending(self, device_id: str) -> int:
        tasks = self._pending.pop(device_id, set())
        for task in tasks:
            task.cancel()
        if tasks:
            self.log.debug(f"{self.plugin_id}: cancelled {len(tasks)} pending operation(s) on {device_id}")
        return len(tasks)
