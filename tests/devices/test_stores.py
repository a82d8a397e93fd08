"""Tests for devices.stores — in-memory registration and reading stores."""

from datetime import UTC, datetime, timedelta

import pytest

from pulsebridge.core.exceptions import DeviceNotFoundError
from pulsebridge.devices.models import ReadingType, ValidationResult, VitalData
from pulsebridge.devices.stores import DeviceFilter, DeviceStore, InMemoryDeviceStore, InMemoryReadingStore, ReadingStore

T = datetime(2026, 3, 1, 8, 30, tzinfo=UTC)


def vital(timestamp=T, value=100.0):
    return VitalData(reading_type=ReadingType.BLOOD_GLUCOSE, primary_value=value, unit="mg/dL", timestamp=timestamp)


@pytest.mark.smoke
def test_in_memory_stores_satisfy_protocols():
    assert isinstance(InMemoryDeviceStore(), DeviceStore)
    assert isinstance(InMemoryReadingStore(), ReadingStore)


class TestDeviceStore:
    async def test_save_assigns_id(self, device_store, glucose_registration):
        device_id = await device_store.save(glucose_registration())
        stored = await device_store.find_by_id(device_id)
        assert stored.id == device_id
        assert stored.device_identifier == "mock-glucose-001"
        assert len(device_store) == 1

    async def test_save_keeps_caller_registration_untouched(self, device_store, glucose_registration):
        registration = glucose_registration()
        await device_store.save(registration)
        assert registration.id == ""

    async def test_find_by_unknown_id(self, device_store):
        assert await device_store.find_by_id("nope") is None

    async def test_find_many_filters(self, device_store, glucose_registration, bp_registration):
        glucose_id = await device_store.save(glucose_registration())
        bp_id = await device_store.save(bp_registration(auto_sync_enabled=False))
        await device_store.save(glucose_registration(patient_id="patient-2", is_active=False))

        active = await device_store.find_many(DeviceFilter(is_active=True))
        assert {d.id for d in active} == {glucose_id, bp_id}

        auto = await device_store.find_many(DeviceFilter(is_active=True, auto_sync_enabled=True))
        assert [d.id for d in auto] == [glucose_id]

        by_plugin = await device_store.find_many(DeviceFilter(plugin_ids=["mock-bp"]))
        assert [d.id for d in by_plugin] == [bp_id]

        by_patient = await device_store.find_many(DeviceFilter(patient_id="patient-2"))
        assert len(by_patient) == 1

        assert len(await device_store.find_many(DeviceFilter())) == 3

    async def test_update(self, device_store, glucose_registration):
        device_id = await device_store.save(glucose_registration())
        before = await device_store.find_by_id(device_id)

        updated = await device_store.update(device_id, sync_error_count=2, last_error="boom")

        assert updated.sync_error_count == 2
        assert updated.last_error == "boom"
        assert updated.updated_at >= before.updated_at
        assert (await device_store.find_by_id(device_id)).last_error == "boom"

    async def test_update_unknown(self, device_store):
        with pytest.raises(DeviceNotFoundError):
            await device_store.update("nope", is_active=False)


class TestReadingStore:
    async def test_insert(self, reading_store):
        validation = ValidationResult(warnings=["High blood_glucose"])
        assert await reading_store.insert(vital(), "d1", "mock-glucose", validation)
        [stored] = reading_store.for_device("d1")
        assert stored.plugin_id == "mock-glucose"
        assert stored.warnings == ("High blood_glucose",)
        assert stored.stored_at is not None

    async def test_duplicate_timestamp_ignored(self, reading_store):
        assert await reading_store.insert(vital(value=100), "d1", "mock-glucose")
        assert not await reading_store.insert(vital(value=180), "d1", "mock-glucose")
        assert len(reading_store) == 1
        assert reading_store.for_device("d1")[0].vital_data.primary_value == 100

    async def test_naive_and_aware_timestamps_collide(self, reading_store):
        await reading_store.insert(vital(timestamp=T), "d1", "mock-glucose")
        assert not await reading_store.insert(vital(timestamp=T.replace(tzinfo=None)), "d1", "mock-glucose")

    async def test_same_timestamp_other_device(self, reading_store):
        await reading_store.insert(vital(), "d1", "mock-glucose")
        assert await reading_store.insert(vital(), "d2", "mock-glucose")

    async def test_ordering(self, reading_store):
        await reading_store.insert(vital(timestamp=T + timedelta(hours=1)), "d1", "mock-glucose")
        await reading_store.insert(vital(timestamp=T), "d1", "mock-glucose")
        await reading_store.insert(vital(timestamp=T - timedelta(hours=1)), "d2", "mock-glucose")

        assert [r.vital_data.timestamp for r in reading_store.for_device("d1")] == [T, T + timedelta(hours=1)]
        assert [r.device_id for r in reading_store.all()] == ["d2", "d1", "d1"]
