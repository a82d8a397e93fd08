"""
Device-layer data models.

Canonical vital-sign records, connection snapshots, plugin descriptors and
the transient outcome records of sync runs.  Pure data: no I/O.

All timestamps are timezone-aware UTC datetimes; naive values handed in by
callers are interpreted as UTC.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from pulsebridge.core.config_schema import PluginConfig


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ── Enumerations ─────────────────────────────────────────────────────


class ReadingType(StrEnum):
    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_GLUCOSE = "blood_glucose"
    HEART_RATE = "heart_rate"
    OXYGEN_SATURATION = "oxygen_saturation"
    BODY_TEMPERATURE = "body_temperature"
    WEIGHT = "weight"
    UNKNOWN = "unknown"


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SYNCING = "syncing"
    ERROR = "error"


class DeviceState(StrEnum):
    """Per-device lifecycle tracked by plugins.

    unknown -> discovered -> connected -> (reading | syncing) -> disconnected
    error is reachable from connected/reading/syncing and recovers to
    connected on a successful retry or a disconnect + connect.
    """

    UNKNOWN = "unknown"
    DISCOVERED = "discovered"
    CONNECTED = "connected"
    READING = "reading"
    SYNCING = "syncing"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ── Vital data ───────────────────────────────────────────────────────


@dataclass
class ReadingContext:
    """Circumstances of a measurement."""

    patient_condition: str | None = None  # fasting, post_meal, resting, ...
    symptoms: list[str] = field(default_factory=list)
    medication_taken: bool | None = None
    location: str | None = None  # measurement site


@dataclass
class ReadingQuality:
    score: float = 1.0  # 0.0 - 1.0
    issues: list[str] = field(default_factory=list)


@dataclass
class VitalData:
    """A normalized physiological reading.

    ``timestamp`` is when the reading was taken, not when it was synced.
    ``raw_data`` keeps the original device payload for audit; ``extra``
    holds mapped plugin-specific fields (ketones, pulse, strip lot, ...).
    """

    reading_type: str
    primary_value: float
    unit: str
    timestamp: datetime
    device_id: str = ""
    secondary_value: float | None = None
    context: ReadingContext = field(default_factory=ReadingContext)
    quality: ReadingQuality = field(default_factory=ReadingQuality)
    raw_data: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reading_type"] = str(self.reading_type)
        data["timestamp"] = self.timestamp.isoformat()
        data["raw_data"] = {k: v.isoformat() if isinstance(v, datetime) else v for k, v in self.raw_data.items()}
        return data


# ── Connections ──────────────────────────────────────────────────────


@dataclass
class DeviceConnection:
    """Point-in-time connection snapshot issued by a plugin."""

    device_id: str
    is_connected: bool
    status: ConnectionStatus
    last_sync: datetime | None = None
    battery_level: int | None = None
    signal_strength: int | None = None
    firmware_version: str | None = None
    error_message: str | None = None


@dataclass
class DeviceConnectionConfig:
    device_id: str
    connection_params: dict[str, Any] = field(default_factory=dict)
    timeout: float = 30.0  # seconds, per attempt
    retry_attempts: int = 3


@dataclass
class ReadDataOptions:
    since: datetime | None = None
    limit: int | None = None
    reading_types: list[str] | None = None
    include_raw: bool = True
    context: str | None = None  # explicit measurement context, e.g. "fasting"


@dataclass
class HistoricalDataOptions:
    start_date: datetime
    end_date: datetime
    limit: int | None = None
    reading_types: list[str] | None = None
    aggregation: Literal["none", "hourly", "daily", "weekly"] = "none"

    def __post_init__(self) -> None:
        self.start_date = ensure_aware(self.start_date)
        self.end_date = ensure_aware(self.end_date)


# ── Plugin descriptors ───────────────────────────────────────────────


@dataclass(frozen=True)
class PluginCapability:
    reading_types: tuple[str, ...]
    supports_realtime: bool = True
    supports_historical: bool = True
    supports_bulk_sync: bool = True
    max_history_days: int = 30
    min_sync_interval: float = 0.0  # seconds


@dataclass(frozen=True)
class PluginMetadata:
    """Static descriptor of what a plugin supports.  Immutable after load."""

    id: str
    name: str
    version: str
    description: str
    author: str
    supported_devices: tuple[str, ...]
    capabilities: PluginCapability
    supported_regions: tuple[str, ...] = ("global",)
    homepage: str | None = None
    repository: str | None = None
    dependencies: tuple[str, ...] = ()
    min_platform_version: str = "0.1.0"

    def supports_device(self, device_type: str) -> bool:
        return device_type in self.supported_devices or "*" in self.supported_devices

    def supports_region(self, region: str) -> bool:
        regions = self.supported_regions
        return not regions or "global" in regions or region in regions


@dataclass(frozen=True)
class ApiRoute:
    """HTTP endpoint a plugin wants mounted.  Metadata only; plugins never serve HTTP."""

    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
    path: str
    handler: str
    requires_auth: bool = True
    allowed_roles: tuple[str, ...] = ()
    middleware: tuple[str, ...] = ()


# ── Results ──────────────────────────────────────────────────────────


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    normalized_data: VitalData | None = None

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.is_valid = False


@dataclass
class ConfigValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    sanitized_config: PluginConfig | None = None


@dataclass
class SyncResult:
    """Outcome of syncing one device.  Failures live in ``errors``."""

    device_id: str
    success: bool
    records_synced: int = 0
    errors: list[str] = field(default_factory=list)
    error_code: str | None = None
    sync_duration: float = 0.0  # seconds
    last_sync_time: datetime = field(default_factory=utcnow)
    readings: list[VitalData] = field(default_factory=list)


@dataclass
class BulkSyncResult:
    total_devices: int
    success_count: int
    failed_count: int
    results: list[SyncResult]
    total_records: int
    duration: float

    @classmethod
    def from_results(cls, results: list[SyncResult], duration: float) -> BulkSyncResult:
        success_count = sum(1 for r in results if r.success)
        return cls(
            total_devices=len(results),
            success_count=success_count,
            failed_count=len(results) - success_count,
            results=results,
            total_records=sum(r.records_synced for r in results),
            duration=duration,
        )


@dataclass
class SyncError:
    device_id: str
    plugin_id: str
    error: str
    severity: Severity


@dataclass
class SyncReport:
    """Outcome of one ``sync_devices`` batch, covering every candidate device."""

    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    devices_synced: int = 0
    records_processed: int = 0
    errors: list[SyncError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def has_critical(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    def add_error(self, device_id: str, plugin_id: str, error: str, severity: Severity) -> None:
        self.errors.append(SyncError(device_id=device_id, plugin_id=plugin_id, error=error, severity=severity))

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "devices_synced": self.devices_synced,
            "records_processed": self.records_processed,
            "errors": [
                {"device_id": e.device_id, "plugin_id": e.plugin_id, "error": e.error, "severity": str(e.severity)}
                for e in self.errors
            ],
            "warnings": list(self.warnings),
        }


# ── Registrations ────────────────────────────────────────────────────


@dataclass
class DeviceRegistration:
    """Persistent record of a patient's device, owned by the management service.

    Never physically deleted: deactivation flips ``is_active``.
    """

    patient_id: str
    plugin_id: str
    device_name: str
    device_type: str
    device_identifier: str
    connection_type: str = "bluetooth"
    connection_config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    auto_sync_enabled: bool = True
    added_by: str = ""
    age_group: str = "adult"
    id: str = ""
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_sync: datetime | None = None
    sync_error_count: int = 0
    last_error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
