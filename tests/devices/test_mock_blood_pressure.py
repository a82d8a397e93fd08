"""Tests for the mock blood pressure monitor plugin."""

from datetime import UTC, datetime, timedelta

import pytest

from pulsebridge.core.exceptions import ConnectionFailedError, DeviceNotConnectedError, UnsupportedOperationError
from pulsebridge.devices.models import DeviceConnectionConfig, HistoricalDataOptions, ReadingType
from pulsebridge.devices.plugins import MockBloodPressurePlugin
from pulsebridge.devices.plugins.mock_blood_pressure import HISTORY_LIMIT

DEVICE = "mock-bp-001"


async def connect(plugin, device_id=DEVICE, **params):
    return await plugin.connect(DeviceConnectionConfig(device_id=device_id, connection_params=params))


@pytest.mark.smoke
def test_metadata():
    meta = MockBloodPressurePlugin.metadata
    assert meta.id == "mock-bp"
    assert meta.supports_device("BLOOD_PRESSURE")
    assert meta.capabilities.max_history_days == 30
    assert meta.capabilities.min_sync_interval == 5.0


class TestConnection:
    async def test_connect_and_status(self, bp_plugin):
        connection = await connect(bp_plugin)
        assert connection.is_connected
        status = await bp_plugin.get_connection_status(DEVICE)
        assert status.is_connected
        assert 60 <= status.battery_level <= 100

    async def test_simulated_error(self, bp_plugin):
        with pytest.raises(ConnectionFailedError):
            await connect(bp_plugin, simulate_error=True)

    async def test_read_requires_connection(self, bp_plugin):
        with pytest.raises(DeviceNotConnectedError):
            await bp_plugin.read_data(DEVICE)


class TestReadings:
    async def test_reading_shape(self, bp_plugin):
        await connect(bp_plugin)
        [reading] = await bp_plugin.read_data(DEVICE)
        assert reading.reading_type == ReadingType.BLOOD_PRESSURE
        assert reading.unit == "mmHg"
        assert reading.secondary_value is not None
        assert reading.primary_value > reading.secondary_value
        assert 60 <= reading.extra["heart_rate"] <= 90
        assert reading.context.location == "upper_arm"
        assert bp_plugin.validate_data(reading).is_valid

    async def test_history_is_capped(self, bp_plugin):
        await connect(bp_plugin)
        for _ in range(HISTORY_LIMIT + 3):
            await bp_plugin.read_data(DEVICE)
        assert len(bp_plugin.reading_history(DEVICE)) == HISTORY_LIMIT

    async def test_historical_three_per_day(self, bp_plugin):
        start = datetime(2026, 2, 1, tzinfo=UTC)
        readings = await bp_plugin.read_historical_data(
            DEVICE, HistoricalDataOptions(start_date=start, end_date=start + timedelta(days=2))
        )
        assert len(readings) == 6
        assert readings[1].timestamp - readings[0].timestamp == timedelta(hours=8)
        assert all(start <= r.timestamp <= start + timedelta(days=2) for r in readings)

    async def test_historical_retention(self, bp_plugin):
        start = datetime(2026, 2, 1, tzinfo=UTC)
        with pytest.raises(UnsupportedOperationError):
            await bp_plugin.read_historical_data(
                DEVICE, HistoricalDataOptions(start_date=start, end_date=start + timedelta(days=31))
            )

    async def test_sync(self, bp_plugin):
        await connect(bp_plugin)
        result = await bp_plugin.sync_device(DEVICE)
        assert result.success
        assert 1 <= result.records_synced <= 5
        timestamps = [r.timestamp for r in result.readings]
        assert timestamps == sorted(timestamps)

    async def test_sync_not_connected(self, bp_plugin):
        result = await bp_plugin.sync_device("mock-bp-002")
        assert not result.success
        assert result.error_code == "DEVICE_NOT_CONNECTED"
