"""
Device management service.

Orchestrates the device lifecycle on top of the plugin registry: register,
connect, disconnect, batch sync, vital-data processing and alerting.
Registration and connection errors raise; batch sync never raises and
accounts for every failure in its ``SyncReport``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger

from pulsebridge.core.events import (
    DEVICE_CONNECTED,
    DEVICE_CONNECTION_FAILED,
    DEVICE_DEACTIVATED,
    DEVICE_DISCONNECTED,
    DEVICE_REGISTERED,
    DEVICE_REGISTRATION_FAILED,
    DEVICE_SYNC_FAILED,
    DEVICE_SYNC_SUCCESS,
    SYNC_COMPLETED,
    SYNC_FAILED,
    VITAL_ALERT_CRITICAL,
    VITAL_DATA_PROCESSED,
    Event,
    EventBus,
)
from pulsebridge.core.exceptions import (
    DeviceNotFoundError,
    PluginError,
    RegistrationError,
    ResourceExhaustedError,
)

from .models import (
    ConnectionStatus,
    DeviceConnection,
    DeviceConnectionConfig,
    DeviceRegistration,
    HistoricalDataOptions,
    ReadingType,
    Severity,
    SyncReport,
    ValidationResult,
    VitalData,
    ensure_aware,
    utcnow,
)
from .plugin import DevicePlugin
from .registry import PluginRegistry
from .stores import DeviceFilter, DeviceStore, ReadingStore
from .transformer import validate_vital_data

HISTORICAL_BATCH_LIMIT = 500


@dataclass
class SyncOptions:
    """Selection and behaviour of one ``sync_devices`` batch.

    Without ``device_id`` only active devices with auto-sync enabled are
    picked; an explicit ``device_id`` still has to be active.
    """

    device_id: str | None = None
    patient_id: str | None = None
    plugin_ids: list[str] | None = None
    include_historical: bool = False
    historical_days: int = 7
    concurrency: int = 1
    force: bool = False  # ignore the plugin's minimum sync interval


@dataclass(frozen=True)
class AlertThresholds:
    systolic_crisis: float = 180.0
    diastolic_crisis: float = 120.0
    hypoglycemia: float = 70.0
    severe_hyperglycemia: float = 250.0


@dataclass
class DeviceStatus:
    registration: DeviceRegistration
    connection: DeviceConnection | None = None
    live: bool = False  # connection was fetched from the plugin just now


class DeviceManagementService:
    """Device lifecycle, sync and vital-data processing."""

    def __init__(
        self,
        registry: PluginRegistry,
        device_store: DeviceStore,
        reading_store: ReadingStore,
        events: EventBus | None = None,
        thresholds: AlertThresholds | None = None,
    ):
        self.registry = registry
        self.device_store = device_store
        self.reading_store = reading_store
        self.events = events or registry.events
        self.thresholds = thresholds or AlertThresholds()
        self._syncing: set[str] = set()
        self._connections: dict[str, DeviceConnection] = {}

        self.events.on(VITAL_ALERT_CRITICAL, self._log_alert)
        self.events.on(DEVICE_SYNC_FAILED, self._log_sync_failure)

    def _emit(self, name: str, **payload: Any) -> None:
        self.events.emit_sync(Event(name=name, payload=payload, source="devices"))

    # ── Registration ──────────────────────────────────────────────

    async def register_device(self, registration: DeviceRegistration) -> str:
        """Persist *registration* after checking its plugin supports the device type.

        Raises:
            RegistrationError: plugin missing, unsupported device type, or the store failed.
        """
        logger.info(f"Registering device {registration.device_name} for patient {registration.patient_id}")
        try:
            plugin = self.registry.get_plugin(registration.plugin_id)
            if plugin is None:
                raise RegistrationError(f"Plugin {registration.plugin_id} not found or not loaded")
            if not plugin.metadata.supports_device(registration.device_type):
                raise RegistrationError(
                    f"Plugin {registration.plugin_id} does not support device type {registration.device_type}"
                )
            try:
                device_id = await self.device_store.save(registration)
            except Exception as e:
                raise RegistrationError(f"Could not store device {registration.device_name}: {e}") from e
        except RegistrationError as e:
            logger.error(f"Device registration failed: {e}")
            self._emit(
                DEVICE_REGISTRATION_FAILED,
                patient_id=registration.patient_id,
                plugin_id=registration.plugin_id,
                error=str(e),
            )
            raise

        logger.info(f"Device {registration.device_name} registered with id {device_id}")
        self._emit(
            DEVICE_REGISTERED,
            device_id=device_id,
            patient_id=registration.patient_id,
            plugin_id=registration.plugin_id,
            device_type=registration.device_type,
        )
        return device_id

    async def deactivate_device(self, device_id: str) -> DeviceRegistration:
        """Soft delete: disconnect if needed and flip ``is_active``."""
        registration = await self._require_registration(device_id)
        if registration.connection_status == ConnectionStatus.CONNECTED:
            await self.disconnect_device(device_id)
        updated = await self.device_store.update(device_id, is_active=False)
        logger.info(f"Device {device_id} deactivated")
        self._emit(DEVICE_DEACTIVATED, device_id=device_id, plugin_id=registration.plugin_id)
        return updated

    # ── Connection ────────────────────────────────────────────────

    async def connect_device(
        self,
        device_id: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float = 30.0,
        retry_attempts: int = 3,
    ) -> DeviceConnection:
        """Connect a registered device through its plugin.

        Raises:
            DeviceNotFoundError: unknown *device_id*.
            PluginError: the plugin is missing or the connect failed.
        """
        registration = await self._require_registration(device_id)
        plugin_id = registration.plugin_id
        logger.info(f"Connecting to device {device_id} via {plugin_id}")

        try:
            plugin = self._require_plugin(registration)
            connection = await plugin.connect(
                DeviceConnectionConfig(
                    device_id=registration.device_identifier,
                    connection_params={**registration.connection_config, **(params or {})},
                    timeout=timeout,
                    retry_attempts=retry_attempts,
                )
            )
        except Exception as e:
            logger.error(f"Device connection failed for {device_id}: {e}")
            await self.device_store.update(
                device_id,
                connection_status=ConnectionStatus.ERROR,
                sync_error_count=registration.sync_error_count + 1,
                last_error=str(e),
            )
            self.registry.record_error(plugin_id, str(e))
            self._emit(DEVICE_CONNECTION_FAILED, device_id=device_id, plugin_id=plugin_id, error=str(e))
            raise

        await self.device_store.update(
            device_id, connection_status=ConnectionStatus.CONNECTED, sync_error_count=0, last_error=None
        )
        if registration.connection_status != ConnectionStatus.CONNECTED:
            self.registry.record_connection(plugin_id, connected=True)
        self._connections[device_id] = connection
        self._emit(DEVICE_CONNECTED, device_id=device_id, plugin_id=plugin_id, connection=connection)
        return connection

    async def disconnect_device(self, device_id: str) -> None:
        """Disconnect a device.  Already-disconnected devices are fine."""
        registration = await self._require_registration(device_id)
        plugin = self.registry.get_plugin(registration.plugin_id)
        if plugin is not None:
            await plugin.disconnect(registration.device_identifier)

        await self.device_store.update(device_id, connection_status=ConnectionStatus.DISCONNECTED)
        if registration.connection_status == ConnectionStatus.CONNECTED:
            self.registry.record_connection(registration.plugin_id, connected=False)
        self._connections.pop(device_id, None)
        logger.info(f"Device {device_id} disconnected")
        self._emit(DEVICE_DISCONNECTED, device_id=device_id, plugin_id=registration.plugin_id)

    async def get_device_status(self, device_id: str) -> DeviceStatus:
        """Registration plus telemetry, fresh from the plugin when it can answer."""
        registration = await self._require_registration(device_id)
        plugin = self.registry.get_plugin(registration.plugin_id)
        if plugin is not None:
            try:
                connection = await plugin.get_connection_status(registration.device_identifier)
            except (DeviceNotFoundError, PluginError) as e:
                logger.debug(f"No live status for {device_id}: {e}")
            else:
                self._connections[device_id] = connection
                return DeviceStatus(registration=registration, connection=connection, live=True)
        return DeviceStatus(registration=registration, connection=self._connections.get(device_id))

    # ── Sync ──────────────────────────────────────────────────────

    async def sync_devices(self, options: SyncOptions | None = None) -> SyncReport:
        """Sync every selected device.  Never raises; see ``SyncReport.errors``."""
        options = options or SyncOptions()
        report = SyncReport()
        logger.info("Starting device data synchronization")

        try:
            devices = await self._devices_for_sync(options)
            logger.info(f"Found {len(devices)} devices to sync")

            if options.concurrency > 1:
                semaphore = asyncio.Semaphore(options.concurrency)

                async def bounded(registration: DeviceRegistration) -> None:
                    async with semaphore:
                        await self._sync_one(registration, options, report)

                await asyncio.gather(*(bounded(d) for d in devices))
            else:
                for registration in devices:
                    await self._sync_one(registration, options, report)
        except Exception as e:
            logger.error(f"Device sync failed: {e}")
            report.end_time = utcnow()
            report.add_error("N/A", "N/A", f"Sync process failed: {e}", Severity.CRITICAL)
            self._emit(SYNC_FAILED, **report.to_dict())
            return report

        report.end_time = utcnow()
        logger.info(
            f"Sync completed: {report.devices_synced}/{len(devices)} devices, "
            f"{report.records_processed} records processed"
        )
        self._emit(SYNC_COMPLETED, **report.to_dict())
        return report

    @contextmanager
    def _sync_slot(self, device_id: str) -> Iterator[bool]:
        """Claim *device_id* for syncing; yields False when it is already claimed."""
        if device_id in self._syncing:
            yield False
            return
        self._syncing.add(device_id)
        try:
            yield True
        finally:
            self._syncing.discard(device_id)

    def is_syncing(self, device_id: str) -> bool:
        return device_id in self._syncing

    async def _sync_one(self, registration: DeviceRegistration, options: SyncOptions, report: SyncReport) -> None:
        device_id = registration.id
        with self._sync_slot(device_id) as claimed:
            if not claimed:
                logger.warning(f"Sync already in progress for device {device_id}")
                report.warnings.append(f"Sync already in progress for device {device_id}")
                return
            try:
                await self._sync_device(registration, options, report)
            except Exception as e:
                logger.error(f"Sync failed for device {device_id}: {e}")
                report.add_error(device_id, registration.plugin_id, str(e), Severity.HIGH)
                self.registry.record_error(registration.plugin_id, str(e))
                self._emit(DEVICE_SYNC_FAILED, device_id=device_id, plugin_id=registration.plugin_id, errors=[str(e)])

    async def _sync_device(self, registration: DeviceRegistration, options: SyncOptions, report: SyncReport) -> None:
        device_id, plugin_id = registration.id, registration.plugin_id

        plugin = self.registry.get_plugin(plugin_id)
        if plugin is None:
            report.add_error(device_id, plugin_id, f"Plugin {plugin_id} not available", Severity.HIGH)
            return

        min_interval = plugin.metadata.capabilities.min_sync_interval
        if not options.force and min_interval and registration.last_sync is not None:
            elapsed = (utcnow() - ensure_aware(registration.last_sync)).total_seconds()
            if elapsed < min_interval:
                report.warnings.append(
                    f"Skipped device {device_id}: synced {elapsed:.1f}s ago, minimum interval is {min_interval}s"
                )
                return

        result = await plugin.sync_device(registration.device_identifier)

        if not result.success:
            message = ", ".join(result.errors) or "Sync failed"
            severity = Severity.LOW if result.error_code == ResourceExhaustedError.error_code else Severity.MEDIUM
            report.add_error(device_id, plugin_id, message, severity)
            await self.device_store.update(
                device_id, sync_error_count=registration.sync_error_count + 1, last_error=message
            )
            self.registry.record_error(plugin_id, message)
            self._emit(
                DEVICE_SYNC_FAILED,
                device_id=device_id,
                plugin_id=plugin_id,
                errors=list(result.errors),
                error_code=result.error_code,
            )
            return

        for reading in result.readings:
            await self.process_vital_data(device_id, plugin_id, reading, age_group=registration.age_group)
        report.devices_synced += 1
        report.records_processed += result.records_synced

        if options.include_historical:
            try:
                report.records_processed += await self.sync_historical_data(
                    registration, plugin, options.historical_days
                )
            except PluginError as e:
                logger.warning(f"Historical sync failed for device {device_id}: {e}")
                report.warnings.append(f"Historical sync failed for device {device_id}: {e}")

        await self.device_store.update(device_id, last_sync=utcnow(), sync_error_count=0, last_error=None)
        self.registry.record_sync(plugin_id)
        self._emit(
            DEVICE_SYNC_SUCCESS, device_id=device_id, plugin_id=plugin_id, records_synced=result.records_synced
        )

    async def sync_historical_data(self, registration: DeviceRegistration, plugin: DevicePlugin, days: int) -> int:
        """Backfill up to *days* of history (capped by the plugin); returns readings processed."""
        capabilities = plugin.metadata.capabilities
        if not capabilities.supports_historical:
            logger.debug(f"Plugin {registration.plugin_id} has no historical data")
            return 0

        days = min(days, capabilities.max_history_days)
        end = utcnow()
        readings = await plugin.read_historical_data(
            registration.device_identifier,
            HistoricalDataOptions(start_date=end - timedelta(days=days), end_date=end, limit=HISTORICAL_BATCH_LIMIT),
        )
        for reading in readings:
            await self.process_vital_data(
                registration.id, registration.plugin_id, reading, age_group=registration.age_group
            )

        logger.info(f"Synced {len(readings)} historical records for device {registration.id}")
        return len(readings)

    async def _devices_for_sync(self, options: SyncOptions) -> list[DeviceRegistration]:
        return await self.device_store.find_many(
            DeviceFilter(
                device_id=options.device_id,
                patient_id=options.patient_id,
                plugin_ids=options.plugin_ids,
                is_active=True,
                auto_sync_enabled=None if options.device_id else True,
            )
        )

    # ── Vital data ────────────────────────────────────────────────

    async def process_vital_data(
        self,
        device_id: str,
        plugin_id: str,
        vital_data: VitalData,
        *,
        age_group: str | None = None,
    ) -> ValidationResult:
        """Validate, persist (unless invalid), evaluate alerts and announce one reading."""
        started = time.monotonic()
        plugin = self.registry.get_plugin(plugin_id)
        if plugin is not None and (age_group or "adult") == "adult":
            validation = plugin.validate_data(vital_data)
        else:
            validation = validate_vital_data(vital_data, age_group or "adult")

        persisted = False
        if validation.is_valid:
            persisted = await self.reading_store.insert(
                validation.normalized_data or vital_data, device_id, plugin_id, validation
            )
        else:
            logger.warning(f"Invalid vital data for device {device_id}: {'; '.join(validation.errors)}")

        self.check_alert_conditions(device_id, vital_data)

        self._emit(
            VITAL_DATA_PROCESSED,
            device_id=device_id,
            plugin_id=plugin_id,
            reading_type=str(vital_data.reading_type),
            value=vital_data.primary_value,
            is_valid=validation.is_valid,
            persisted=persisted,
            warnings=list(validation.warnings),
        )
        logger.debug(f"Processed {vital_data.reading_type} for {device_id} in {time.monotonic() - started:.3f}s")
        return validation

    def check_alert_conditions(self, device_id: str, vital_data: VitalData) -> None:
        """Emit ``vital_alert:critical`` for readings past the alert thresholds."""
        t = self.thresholds
        reading_type = str(vital_data.reading_type)
        payload: dict[str, Any] | None = None

        if reading_type == ReadingType.BLOOD_PRESSURE:
            diastolic = vital_data.secondary_value
            crisis_diastolic = diastolic is not None and diastolic > t.diastolic_crisis
            if vital_data.primary_value > t.systolic_crisis or crisis_diastolic:
                payload = {
                    "severity": Severity.CRITICAL,
                    "message": "Hypertensive crisis detected",
                    "values": {"systolic": vital_data.primary_value, "diastolic": diastolic},
                }
        elif reading_type == ReadingType.BLOOD_GLUCOSE:
            if vital_data.primary_value < t.hypoglycemia:
                payload = {"severity": Severity.CRITICAL, "message": "Hypoglycemia detected"}
            elif vital_data.primary_value > t.severe_hyperglycemia:
                payload = {"severity": Severity.HIGH, "message": "Severe hyperglycemia detected"}
            if payload is not None:
                payload["value"] = vital_data.primary_value

        if payload is not None:
            self._emit(
                VITAL_ALERT_CRITICAL,
                device_id=device_id,
                reading_type=reading_type,
                timestamp=vital_data.timestamp.isoformat(),
                **payload,
            )

    # ── Lifecycle ─────────────────────────────────────────────────

    async def shutdown(self) -> None:
        logger.info("Shutting down device management service")
        for device_id in list(self._connections):
            try:
                await self.disconnect_device(device_id)
            except Exception as e:
                logger.warning(f"Could not disconnect {device_id} during shutdown: {e}")
        self.events.off(VITAL_ALERT_CRITICAL, self._log_alert)
        self.events.off(DEVICE_SYNC_FAILED, self._log_sync_failure)
        await self.events.drain()

    # ── Helpers ───────────────────────────────────────────────────

    async def _require_registration(self, device_id: str) -> DeviceRegistration:
        registration = await self.device_store.find_by_id(device_id)
        if registration is None:
            raise DeviceNotFoundError(f"Device {device_id} not found", device_id=device_id)
        return registration

    def _require_plugin(self, registration: DeviceRegistration) -> DevicePlugin:
        plugin = self.registry.get_plugin(registration.plugin_id)
        if plugin is None:
            raise PluginError(
                f"Plugin {registration.plugin_id} not available",
                plugin_id=registration.plugin_id,
                device_id=registration.id,
            )
        return plugin

    @staticmethod
    def _log_alert(event: Event) -> None:
        payload = event.payload
        logger.warning(f"ALERT [{payload.get('severity')}] {payload.get('message')} on {payload.get('device_id')}")

    @staticmethod
    def _log_sync_failure(event: Event) -> None:
        payload = event.payload
        logger.warning(f"Sync failed for device {payload.get('device_id')}: {', '.join(payload.get('errors', []))}")
