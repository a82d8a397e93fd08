"""
Mock glucose meter plugin.

Simulates finger-stick glucose meters for development and testing: a
consumable test-strip counter, realistic acquisition latency, meal-time
glucose patterns and a per-device synthetic patient profile.
"""

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
    ResourceExhaustedError,
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
    ValidationResult,
    VitalData,
    utcnow,
)
from ..plugin import BaseDevicePlugin
from ..transformer import DataTransformer, TransformationRule

HISTORY_LIMIT = 200
FIRMWARE_VERSION = "2.1.0"
MOCK_DEVICE_IDS = ("mock-glucose-001", "mock-glucose-002")

# (hour, minute, context) of the readings a meter stores per day
DAILY_SCHEDULE = (
    (7, 0, "fasting"),
    (11, 30, "pre_meal"),
    (14, 0, "post_meal"),
    (18, 30, "pre_meal"),
    (21, 0, "post_meal"),
    (22, 30, "bedtime"),
)

# context -> ((type 1 centre, spread), (other centre, spread)) in mg/dL
_BASE_GLUCOSE = {
    "fasting": ((120, 60), (100, 40)),
    "pre_meal": ((140, 80), (110, 50)),
    "post_meal": ((200, 120), (150, 80)),
    "bedtime": ((130, 70), (105, 40)),
}


@dataclass
class PatientProfile:
    is_type1_diabetic: bool = False
    is_type2_diabetic: bool = False
    target_min: float = 80.0
    target_max: float = 180.0

    @property
    def is_diabetic(self) -> bool:
        return self.is_type1_diabetic or self.is_type2_diabetic


@dataclass
class GlucoseMeterState:
    device_id: str
    battery_level: int
    test_strips: int
    profile: PatientProfile
    is_connected: bool = False
    state: DeviceState = DeviceState.DISCOVERED
    last_sync: datetime | None = None
    last_reading: VitalData | None = None
    history: deque[VitalData] = field(default_factory=lambda: deque(maxlen=HISTORY_LIMIT))


class MockGlucoseMeterPlugin(BaseDevicePlugin):
    """Simulated glucose meter (device type ``GLUCOSE_METER``)."""

    metadata = PluginMetadata(
        id="mock-glucose",
        name="Mock Glucose Meter",
        version="1.0.0",
        description="Mock plugin for simulating glucose monitoring devices",
        author="pulsebridge developers",
        supported_devices=("GLUCOSE_METER",),
        capabilities=PluginCapability(
            reading_types=(ReadingType.BLOOD_GLUCOSE,),
            max_history_days=90,
            min_sync_interval=10.0,
        ),
    )

    rules = [
        TransformationRule("glucose", "primary_value", required=True, transform=lambda v: round(float(v), 1)),
        TransformationRule("timestamp", "timestamp"),
        TransformationRule("unit", "unit", transform=lambda u: u or "mg/dL"),
        TransformationRule("context", "context"),
        TransformationRule("ketones", "ketones"),
        TransformationRule("test_strip_lot", "test_strip_lot"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._devices: dict[str, GlucoseMeterState] = {}

    async def _on_initialize(self) -> None:
        if self._feature("mock_data"):
            for device_id in MOCK_DEVICE_IDS:
                self._devices.setdefault(device_id, self._new_state(device_id))
            self.log.debug(f"{self.plugin_id}: seeded {len(MOCK_DEVICE_IDS)} mock devices")

    async def _on_destroy(self) -> None:
        self._devices.clear()

    # ── Connection ────────────────────────────────────────────────

    async def discover_devices(self) -> list[DeviceConnection]:
        self._require_initialized()
        candidates = []
        for device_id in MOCK_DEVICE_IDS:
            device = self._devices.get(device_id)
            if device is not None and device.is_connected:
                continue
            candidates.append(
                DeviceConnection(
                    device_id=device_id,
                    is_connected=False,
                    status=ConnectionStatus.DISCONNECTED,
                    battery_level=device.battery_level if device else self._rng.randint(40, 90),
                    signal_strength=self._rng.randint(80, 95),
                    firmware_version=FIRMWARE_VERSION,
                )
            )
        return candidates

    async def connect(self, config: DeviceConnectionConfig) -> DeviceConnection:
        self._require_initialized()
        device_id = config.device_id

        async def handshake() -> None:
            await self._simulate_delay(1.5, 4.0)
            if config.connection_params.get("simulate_error"):
                raise ConnectionFailedError(
                    f"Failed to connect to glucose meter {device_id}: simulated connection error",
                    plugin_id=self.plugin_id,
                    device_id=device_id,
                )

        try:
            await self._connect_with_retries(config, handshake)
        except PluginError:
            if device_id in self._devices:
                self._devices[device_id].state = DeviceState.ERROR
            raise

        device = self._devices.get(device_id)
        if device is None:
            device = self._devices[device_id] = self._new_state(device_id)
        device.is_connected = True
        device.state = DeviceState.CONNECTED

        self.log.info(f"Connected to mock glucose meter {device_id} ({device.test_strips} strips)")
        return self._snapshot(device)

    async def disconnect(self, device_id: str) -> None:
        self._require_initialized()
        self._cancel_pending(device_id)
        device = self._devices.get(device_id)
        if device is None or not device.is_connected:
            return
        device.is_connected = False
        device.state = DeviceState.DISCONNECTED
        self.log.info(f"Disconnected from mock glucose meter {device_id}")

    async def get_connection_status(self, device_id: str) -> DeviceConnection:
        self._require_initialized()
        device = self._devices.get(device_id)
        if device is None or device.state == DeviceState.DISCOVERED:
            raise DeviceNotFoundError(f"Glucose meter {device_id} not found", device_id=device_id)
        return self._snapshot(device)

    # ── Readings ──────────────────────────────────────────────────

    async def read_data(self, device_id: str, options: ReadDataOptions | None = None) -> list[VitalData]:
        self._require_initialized()
        device = self._require_connected(device_id)
        self._require_strips(device)

        device.state = DeviceState.READING
        try:
            reading = await self._track(device_id, self._measure(device, options))
        except DeviceNotConnectedError:
            raise
        except PluginError:
            device.state = DeviceState.CONNECTED if device.is_connected else DeviceState.DISCONNECTED
            raise
        device.state = DeviceState.CONNECTED
        return [reading]

    async def _measure(self, device: GlucoseMeterState, options: ReadDataOptions | None) -> VitalData:
        # meters need 8-15 s to process a strip
        await self._simulate_delay(8.0, 15.0)
        if not device.is_connected:
            raise DeviceNotConnectedError(
                f"Glucose meter {device.device_id} not connected",
                plugin_id=self.plugin_id,
                device_id=device.device_id,
            )
        self._require_strips(device)

        reading = self.generate_reading(device, context=options.context if options else None)
        device.test_strips -= 1
        self._remember(device, reading)
        return reading

    async def read_historical_data(self, device_id: str, options: HistoricalDataOptions) -> list[VitalData]:
        self._require_initialized()
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(f"Glucose meter {device_id} not found", device_id=device_id)

        start, end = options.start_date, options.end_date
        if end < start:
            return []
        if options.reading_types and ReadingType.BLOOD_GLUCOSE not in options.reading_types:
            return []

        window_days = (end - start).total_seconds() / 86400
        max_days = self.metadata.capabilities.max_history_days
        if window_days > max_days:
            raise UnsupportedOperationError(
                f"Glucose meter stores at most {max_days} days of history",
                plugin_id=self.plugin_id,
                device_id=device_id,
            )

        limit = options.limit if options.limit is not None else HISTORY_LIMIT
        days = max(1, math.ceil(window_days))
        per_day = min(len(DAILY_SCHEDULE), limit // days or 1)
        first_day = start.replace(hour=0, minute=0, second=0, microsecond=0)

        readings: list[VitalData] = []
        for day in range(days + 1):
            day_start = first_day + timedelta(days=day)
            slots = [
                (day_start + timedelta(hours=hour, minutes=minute), context) for hour, minute, context in DAILY_SCHEDULE
            ]
            slots = [(timestamp, context) for timestamp, context in slots if start <= timestamp <= end]
            for timestamp, context in slots[:per_day]:
                if len(readings) >= limit:
                    break
                readings.append(self.generate_reading(device, timestamp=timestamp, context=context))

        return sorted(readings, key=lambda r: r.timestamp)

    async def sync_device(self, device_id: str) -> SyncResult:
        self._require_initialized()
        started = time.monotonic()
        device = self._devices.get(device_id)

        if device is None or not device.is_connected:
            return SyncResult(
                device_id=device_id,
                success=False,
                errors=[f"Glucose meter {device_id} not connected"],
                error_code=DeviceNotConnectedError.error_code,
                sync_duration=time.monotonic() - started,
            )
        if device.test_strips <= 0:
            return SyncResult(
                device_id=device_id,
                success=False,
                errors=[f"No test strips available in device {device_id}"],
                error_code=ResourceExhaustedError.error_code,
                sync_duration=time.monotonic() - started,
            )

        device.state = DeviceState.SYNCING
        try:
            await self._track(device_id, self._simulate_delay(2.0, 5.0))
            if self._feature("simulate_errors") and self._rng.random() < self.config.error_rate:
                raise PluginError(
                    f"Simulated sync failure on {device_id}",
                    plugin_id=self.plugin_id,
                    device_id=device_id,
                    error_code="SYNC_FAILED",
                    retryable=True,
                )

            wanted = self._rng.randint(1, 3)
            count = min(wanted, device.test_strips)
            now = utcnow()
            readings = []
            for i in range(count):
                # readings taken since the previous sync, oldest first
                reading = self.generate_reading(device, timestamp=now - timedelta(minutes=5 * (count - 1 - i)))
                device.test_strips -= 1
                self._remember(device, reading)
                readings.append(reading)
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

    # ── Data and config ───────────────────────────────────────────

    def transform_data(self, raw_data: Mapping[str, Any], device_type: str) -> VitalData:
        return DataTransformer.transform_to_vital_data(raw_data, device_type, self.rules)

    def validate_data(self, data: VitalData) -> ValidationResult:
        result = DataTransformer.validate_vital_data(data, "adult")
        if data.primary_value < 70:
            result.warnings.append("Hypoglycemia detected - glucose below 70 mg/dL")
        elif data.primary_value > 250:
            result.warnings.append("Severe hyperglycemia detected - glucose above 250 mg/dL")
        return result

    def get_default_config(self) -> dict[str, Any]:
        return {
            "environment": "development",
            "features": {
                "mock_data": True,
                "real_time_sync": False,
                "simulate_errors": False,
                "ketones_support": True,
                "alternative_sites_testing": False,
                "fast_mode": False,
            },
        }

    def register_routes(self) -> list[ApiRoute]:
        return [
            ApiRoute("GET", "/mock-glucose/devices", "get_devices", allowed_roles=("DOCTOR", "HSP", "PATIENT")),
            ApiRoute("POST", "/mock-glucose/simulate-reading", "simulate_reading", allowed_roles=("DOCTOR", "HSP")),
            ApiRoute(
                "GET",
                "/mock-glucose/strip-count/{device_id}",
                "get_strip_count",
                allowed_roles=("DOCTOR", "HSP", "PATIENT"),
            ),
        ]

    # ── Inspection ────────────────────────────────────────────────

    def get_device(self, device_id: str) -> GlucoseMeterState | None:
        return self._devices.get(device_id)

    def strip_count(self, device_id: str) -> int:
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(f"Glucose meter {device_id} not found", device_id=device_id)
        return device.test_strips

    def reading_history(self, device_id: str) -> list[VitalData]:
        device = self._devices.get(device_id)
        return list(device.history) if device else []

    # ── Simulation ────────────────────────────────────────────────

    def generate_reading(
        self,
        device: GlucoseMeterState,
        timestamp: datetime | None = None,
        context: str | None = None,
    ) -> VitalData:
        now = timestamp or utcnow()
        context = context or self._context_for_hour(now.hour)
        profile = device.profile

        if context in _BASE_GLUCOSE:
            type1, other = _BASE_GLUCOSE[context]
            centre, spread = type1 if profile.is_type1_diabetic else other
        else:
            centre, spread = 120, 80
        glucose = centre + (self._rng.random() - 0.5) * spread

        medication_taken = False
        if profile.is_diabetic:
            medication_taken = self._rng.random() > 0.3
            if not medication_taken:
                glucose += 20 + self._rng.random() * 40

        glucose = max(40.0, min(500.0, round(glucose, 1)))

        symptoms: list[str] = []
        if glucose < 70:
            symptoms = ["sweating", "shaking", "hunger"]
        elif glucose > 250:
            symptoms = ["thirst", "frequent_urination", "fatigue"]

        raw = {
            "device_id": device.device_id,
            "glucose": glucose,
            "timestamp": now,
            "unit": "mg/dL",
            "context": {
                "patient_condition": context,
                "medication_taken": medication_taken,
                "symptoms": symptoms,
                "location": "fingertip",
            },
            "battery_level": device.battery_level,
            "test_strip_lot": f"LOT{self._rng.randint(1000, 9999)}",
            "device_model": "Mock Glucose Meter Pro",
            "test_strip_count": device.test_strips,
        }
        return self.transform_data(raw, "GLUCOSE_METER")

    @staticmethod
    def _context_for_hour(hour: int) -> str:
        if 6 <= hour <= 8:
            return "fasting"
        if 11 <= hour <= 13 or 17 <= hour <= 19:
            return "pre_meal"
        if 13 < hour <= 15 or 19 < hour <= 21:
            return "post_meal"
        return "random"

    def _new_state(self, device_id: str) -> GlucoseMeterState:
        return GlucoseMeterState(
            device_id=device_id,
            battery_level=self._rng.randint(50, 90),
            test_strips=self._rng.randint(10, 50),
            profile=PatientProfile(
                is_type1_diabetic=self._rng.random() > 0.7,
                is_type2_diabetic=self._rng.random() > 0.5,
            ),
        )

    def _snapshot(self, device: GlucoseMeterState) -> DeviceConnection:
        return DeviceConnection(
            device_id=device.device_id,
            is_connected=device.is_connected,
            status=ConnectionStatus.CONNECTED if device.is_connected else ConnectionStatus.DISCONNECTED,
            last_sync=device.last_sync,
            battery_level=device.battery_level,
            signal_strength=self._rng.randint(85, 100),
            firmware_version=FIRMWARE_VERSION,
        )

    def _require_connected(self, device_id: str) -> GlucoseMeterState:
        device = self._devices.get(device_id)
        if device is None or not device.is_connected:
            raise DeviceNotConnectedError(
                f"Glucose meter {device_id} not connected", plugin_id=self.plugin_id, device_id=device_id
            )
        return device

    def _require_strips(self, device: GlucoseMeterState) -> None:
        if device.test_strips <= 0:
            raise ResourceExhaustedError(
                f"No test strips available in device {device.device_id}",
                plugin_id=self.plugin_id,
                device_id=device.device_id,
            )

    @staticmethod
    def _remember(device: GlucoseMeterState, reading: VitalData) -> None:
        device.history.append(reading)
        device.last_reading = reading
