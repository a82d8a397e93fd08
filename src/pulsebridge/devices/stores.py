"""
Persistence interfaces for device registrations and readings.

The management service only talks to these protocols; a deployment backs
them with its database.  The in-memory implementations serve tests, the
CLI demo and single-process setups.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from pulsebridge.core.exceptions import DeviceNotFoundError

from .models import DeviceRegistration, ValidationResult, VitalData, ensure_aware, utcnow


@dataclass
class DeviceFilter:
    """Criteria for ``DeviceStore.find_many``.  ``None`` means "any"."""

    device_id: str | None = None
    patient_id: str | None = None
    plugin_ids: list[str] | None = None
    is_active: bool | None = None
    auto_sync_enabled: bool | None = None

    def matches(self, device: DeviceRegistration) -> bool:
        if self.device_id is not None and device.id != self.device_id:
            return False
        if self.patient_id is not None and device.patient_id != self.patient_id:
            return False
        if self.plugin_ids is not None and device.plugin_id not in self.plugin_ids:
            return False
        if self.is_active is not None and device.is_active != self.is_active:
            return False
        if self.auto_sync_enabled is not None and device.auto_sync_enabled != self.auto_sync_enabled:
            return False
        return True


@dataclass
class StoredReading:
    device_id: str
    plugin_id: str
    vital_data: VitalData
    is_valid: bool = True
    warnings: tuple[str, ...] = ()
    stored_at: datetime | None = None


@runtime_checkable
class DeviceStore(Protocol):
    async def save(self, registration: DeviceRegistration) -> str:
        """Persist a new registration and return its id."""
        ...

    async def find_by_id(self, device_id: str) -> DeviceRegistration | None: ...

    async def find_many(self, criteria: DeviceFilter) -> list[DeviceRegistration]: ...

    async def update(self, device_id: str, **patch: Any) -> DeviceRegistration:
        """Apply *patch* and bump ``updated_at``.  Unknown ids raise ``DeviceNotFoundError``."""
        ...


@runtime_checkable
class ReadingStore(Protocol):
    async def insert(
        self,
        vital_data: VitalData,
        device_id: str,
        plugin_id: str,
        validation: ValidationResult | None = None,
    ) -> bool:
        """Store one reading.  Returns False when it was already stored."""
        ...


class InMemoryDeviceStore:
    """Dict-backed ``DeviceStore``."""

    def __init__(self) -> None:
        self._devices: dict[str, DeviceRegistration] = {}

    async def save(self, registration: DeviceRegistration) -> str:
        device_id = registration.id or uuid.uuid4().hex
        now = utcnow()
        self._devices[device_id] = replace(registration, id=device_id, created_at=now, updated_at=now)
        return device_id

    async def find_by_id(self, device_id: str) -> DeviceRegistration | None:
        return self._devices.get(device_id)

    async def find_many(self, criteria: DeviceFilter) -> list[DeviceRegistration]:
        return [d for d in self._devices.values() if criteria.matches(d)]

    async def update(self, device_id: str, **patch: Any) -> DeviceRegistration:
        device = self._devices.get(device_id)
        if device is None:
            raise DeviceNotFoundError(f"Device {device_id} not found", device_id=device_id)
        updated = replace(device, **patch, updated_at=utcnow())
        self._devices[device_id] = updated
        return updated

    def __len__(self) -> int:
        return len(self._devices)


class InMemoryReadingStore:
    """``ReadingStore`` keyed by (device id, timestamp); re-inserts are ignored."""

    def __init__(self) -> None:
        self._readings: dict[tuple[str, datetime], StoredReading] = {}

    async def insert(
        self,
        vital_data: VitalData,
        device_id: str,
        plugin_id: str,
        validation: ValidationResult | None = None,
    ) -> bool:
        key = (device_id, ensure_aware(vital_data.timestamp))
        if key in self._readings:
            return False
        self._readings[key] = StoredReading(
            device_id=device_id,
            plugin_id=plugin_id,
            vital_data=vital_data,
            is_valid=validation.is_valid if validation else True,
            warnings=tuple(validation.warnings) if validation else (),
            stored_at=utcnow(),
        )
        return True

    def for_device(self, device_id: str) -> list[StoredReading]:
        readings = [r for (d, _), r in self._readings.items() if d == device_id]
        return sorted(readings, key=lambda r: r.vital_data.timestamp)

    def all(self) -> list[StoredReading]:
        return sorted(self._readings.values(), key=lambda r: r.vital_data.timestamp)

    def __len__(self) -> int:
        return len(self._readings)
