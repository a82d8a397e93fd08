"""Mock blood-pressure monitor plugin."""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pulsebridge.core.exceptions import (
    ConnectionFailedError,
    DeviceNotConnectedError,
    DeviceNotFoundError,
    PluginError,
    UnsupportedOperationError,
)

from ..models import (
    ApiRoute,
    ConnectionStatus,
    DeviceConnection,
    DeviceConnectionConfig,
    DeviceState,
    HistoricalDataOptions,
    PluginCapability,
    PluginMetadata,
    ReadDataOptions,
    ReadingType,
    SyncResult,
    VitalData,
    utcnow,
)
from ..plugin import BaseDevicePlugin
from ..transformer import DataTransformer, TransformationRule

HISTORY_LIMIT = 100
FIRMWARE_VERSION = "1.2.3"
MOCK_DEVICE_IDS = ("mock-bp-001", "mock-bp-002")
READINGS_PER_DAY = 3  # one every 8 hours

_CONTEXTS = (
    ("resting", False, ()),
    ("after_exercise", False, ("elevated_heart_rate",)),
    ("morning", True, ()),
    ("evening", False, ("stress",)),
)


@dataclass
class BloodPressureMonitorState:
    device_id: str
    battery_level: int
    is_connected: bool = False
    state: DeviceState = DeviceState.DISCOVERED
    last_sync: datetime | None = None
    history: deque[VitalData] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))


class MockBloodPressurePlugin(BaseDevicePlugin):
    """Simulated upper-arm cuff (device type ``BLOOD_PRESSURE``)."""

    metadata = PluginMetadata(
        id="mock-bp",
        name="Mock Blood Pressure Monitor",
        version="1.0.0",
        description="Mock plugin for simulating blood pressure monitoring devices",
        author="pulsebridge developers",
        supported_devices=("BLOOD_PRESSURE",),
        capabilities=PluginCapability(
            reading_types=(ReadingType.BLOOD_PRESSURE,),
            max_history_days=30,
            min_sync_interval=5.0,
        ),
    )

    rules = [
        TransformationRule("systolic", "primary_value", required=True),
        TransformationRule("diastolic", "secondary_value", required=True),
        TransformationRule("pulse", "heart_rate"),
        TransformationRule("timestamp", "timestamp"),
        TransformationRule("unit", "unit"),
        TransformationRule("context", "context"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._devices: dict[str, BloodPressureMonitorState] = {}

    async def _on_initialize(self) -> None:
        if self._feature("mock_data"):
            for device_id in MOCK_DEVICE_IDS:
                self._devices.setdefault(
                    device_id, BloodPressureMonitorState(device_id, battery_level=self._rng.randint(60, 100))
                )

    async def _on_destroy(self) -> None:
        self._devices.clear()

    async def discover_devices(self) -> list[DeviceConnection]:
        self._require_initialized()
        return [
            DeviceConnection(
                device_id=device_id,
                is_connected=False,
                status=ConnectionStatus.DISCONNECTED,
                battery_level=self._devices[device_id].battery_level if device_id in self._devices else 85,
                signal_strength=self._rng.randint(80, 100),
                firmware_version=FIRMWARE_VERSION,
            )
            for device_id in MOCK_DEVICE_IDS
            if not (device_id in self._devices and self._devices[device_id].is_connected)
        ]

    async def connect(self, config: DeviceConnectionConfig) -> DeviceConnection:
        self._require_initialized()
        device_id = config.device_id

        async def handshake() -> None:
            await self._simulate_delay(1.0, 3.0)
            if config.connection_params.get("simulate_error"):
                raise ConnectionFailedError(
                    f"Failed to connect to device {device_id}: simulated connection error",
                    plugin_id=self.plugin_id,
                    device_id=device_id,
                )

        try:
            await self._connect_with_retries(config, handshake)
        except PluginError:
            if device_id in self._devices:
                self._devices[device_id].state = DeviceState.ERROR
            raise

        device = self._devices.setdefault(
            device_id, BloodPressureMonitorState(device_id, battery_level=self._rng.randint(60, 100))
        )
        device.is_connected = True
        device.state = DeviceState.CONNECTED
        self.log.info(f"Connected to mock BP monitor {device_id}")
        return self._snapshot(device)

    async def disconnect(self, device_id: str) -> None:
        self._require_initialized()
        self._cancel_pending(device_id)
        device = self._devices.get(device_id)
        if device is not None and device.is_connected:
            device.is_connected = False
            device.state = DeviceState.DISCONNECTED
            self.log.info(f"Disconnected from mock BP monitor {device_id}")

    async def get_connection_status(self, device_id: str) -> DeviceConnection:
        self._require_initialized()
        device = self._devices.get(device_id)
        if device is None or device.state == DeviceState.DISCOVERED:
            raise DeviceNotFoundError(f"Device {device_id} not found", device_id=device_id)
        return self._snapshot(device)

    async def read_data(self, device_id: str, options: ReadDataOptions | None = None) -> list[VitalData]:
        self._require_initialized()
        device = self._require_connected(device_id)
        device.state = DeviceState.READING
        reading = await self._track(device_id, self._measure(device))
        device.state = DeviceState.CONNECTED
        return [reading]

    async def _measure(self, device: BloodPressureMonitorState) -> VitalData:
        await self._simulate_delay(0.5, 2.0)
        if not device.is_connected:
            raise DeviceNotConnectedError(
                f"Device {device.device_id} not connected", plugin_id=self.plugin_id, device_id=device.device_id
            )
        reading = self.generate_reading(device)
        device.history.append(reading)
        return reading

    async def read_historical_data(self, device_id: str, options: HistoricalDataOptions) -> list[VitalData]:
        self._require_initialized()
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(f"Device {device_id} not found", device_id=device_id)

        start, end = options.start_date, options.end_date
        if end < start:
            return []
        if options.reading_types and ReadingType.BLOOD_PRESSURE not in options.reading_types:
            return []

        window_days = (end - start).total_seconds() / 86400
        max_days = self.metadata.capabilities.max_history_days
        if window_days > max_days:
            raise UnsupportedOperationError(
                f"BP monitor stores at most {max_days} days of history",
                plugin_id=self.plugin_id,
                device_id=device_id,
            )

        limit = options.limit if options.limit is not None else HISTORY_LIMIT
        days = max(1, math.ceil(window_days))
        per_day = min(READINGS_PER_DAY, limit // days or 1)

        readings: list[VitalData] = []
        for day in range(days):
            for slot in range(per_day):
                if len(readings) >= limit:
                    break
                timestamp = start + timedelta(days=day, hours=8 * slot)
                if timestamp <= end:
                    readings.append(self.generate_reading(device, timestamp))
        return sorted(readings, key=lambda r: r.timestamp)

    async def sync_device(self, device_id: str) -> SyncResult:
        self._require_initialized()
        started = time.monotonic()
        device = self._devices.get(device_id)
        if device is None or not device.is_connected:
            return SyncResult(
                device_id=device_id,
                success=False,
                errors=[f"Device {device_id} not connected"],
                error_code=DeviceNotConnectedError.error_code,
                sync_duration=time.monotonic() - started,
            )

        device.state = DeviceState.SYNCING
        try:
            await self._track(device_id, self._simulate_delay(1.0, 3.0))
            if self._feature("simulate_errors") and self._rng.random() < self.config.error_rate:
                raise PluginError(
                    f"Simulated sync failure on {device_id}",
                    plugin_id=self.plugin_id,
                    device_id=device_id,
                    error_code="SYNC_FAILED",
                    retryable=True,
                )
            count = self._rng.randint(1, 5)
            now = utcnow()
            readings = [
                self.generate_reading(device, now - timedelta(minutes=10 * (count - 1 - i))) for i in range(count)
            ]
            device.history.extend(readings)
        except Exception as e:
            self.log.warning(f"{self.plugin_id}: sync of {device_id} failed: {e}")
            device.state = DeviceState.ERROR if device.is_connected else DeviceState.DISCONNECTED
            return SyncResult(
                device_id=device_id,
                success=False,
                errors=[str(e)],
                error_code=getattr(e, "error_code", None),
                sync_duration=time.monotonic() - started,
            )

        device.last_sync = utcnow()
        device.state = DeviceState.CONNECTED
        return SyncResult(
            device_id=device_id,
            success=True,
            records_synced=len(readings),
            sync_duration=time.monotonic() - started,
            last_sync_time=device.last_sync,
            readings=readings,
        )

    def transform_data(self, raw_data: Mapping[str, Any], device_type: str) -> VitalData:
        return DataTransformer.transform_to_vital_data(raw_data, device_type, self.rules)

    def get_default_config(self) -> dict[str, Any]:
        return {
            "environment": "development",
            "features": {"mock_data": True, "real_time_sync": False, "simulate_errors": False, "fast_mode": False},
        }

    def register_routes(self) -> list[ApiRoute]:
        return [
            ApiRoute("GET", "/mock-bp/devices", "get_devices", allowed_roles=("DOCTOR", "HSP", "PATIENT")),
            ApiRoute("POST", "/mock-bp/simulate-reading", "simulate_reading", allowed_roles=("DOCTOR", "HSP")),
        ]

    def get_device(self, device_id: str) -> BloodPressureMonitorState | None:
        return self._devices.get(device_id)

    def reading_history(self, device_id: str) -> list[VitalData]:
        device = self._devices.get(device_id)
        return list(device.history) if device else []

    def generate_reading(self, device: BloodPressureMonitorState, timestamp: datetime | None = None) -> VitalData:
        systolic = round(120 + (self._rng.random() - 0.5) * 40 + (self._rng.random() - 0.5) * 10)
        diastolic = round(80 + (self._rng.random() - 0.5) * 20 + (self._rng.random() - 0.5) * 8)
        condition, medication_taken, symptoms = self._rng.choice(_CONTEXTS)
        raw = {
            "device_id": device.device_id,
            "systolic": systolic,
            "diastolic": diastolic,
            "pulse": self._rng.randint(60, 90),
            "timestamp": timestamp or utcnow(),
            "unit": "mmHg",
            "context": {
                "patient_condition": condition,
                "medication_taken": medication_taken,
                "symptoms": list(symptoms),
                "location": "upper_arm",
            },
            "battery_level": device.battery_level,
            "device_model": "Mock BP Monitor 3000",
        }
        return self.transform_data(raw, "BLOOD_PRESSURE")

    def _snapshot(self, device: BloodPressureMonitorState) -> DeviceConnection:
        return DeviceConnection(
            device_id=device.device_id,
            is_connected=device.is_connected,
            status=ConnectionStatus.CONNECTED if device.is_connected else ConnectionStatus.DISCONNECTED,
            last_sync=device.last_sync,
            battery_level=device.battery_level,
            signal_strength=self._rng.randint(80, 100),
            firmware_version=FIRMWARE_VERSION,
        )

    def _require_connected(self, device_id: str) -> BloodPressureMonitorState:
        device = self._devices.get(device_id)
        if device is None or not device.is_connected:
            raise DeviceNotConnectedError(
                f"Device {device_id} not connected", plugin_id=self.plugin_id, device_id=device_id
            )
        return device
