"""Tests for core.events — Event and EventBus."""

import asyncio
import warnings
from dataclasses import FrozenInstanceError
from datetime import UTC

import pytest

from pulsebridge.core.events import (
    DEVICE_CONNECTED,
    DEVICE_REGISTERED,
    SYNC_COMPLETED,
    VITAL_ALERT_CRITICAL,
    Event,
    EventBus,
)


@pytest.fixture
def bus():
    return EventBus()


@pytest.mark.smoke
class TestEvent:
    def test_namespace(self):
        assert Event(name=DEVICE_CONNECTED).namespace == "device"
        assert Event(name="startup").namespace == "startup"

    def test_occurred_at_is_aware(self):
        assert Event(name=SYNC_COMPLETED).occurred_at.tzinfo is UTC

    def test_frozen(self):
        event = Event(name=DEVICE_CONNECTED, payload={"device_id": "d1"}, source="devices")
        with pytest.raises(FrozenInstanceError):
            event.name = "device:disconnected"  # type: ignore[misc]


class TestSubscriptions:
    async def test_exact_name(self, bus):
        received = []
        bus.on(DEVICE_CONNECTED, received.append)
        event = Event(name=DEVICE_CONNECTED, payload={"device_id": "d1"})

        await bus.emit(event)
        await bus.emit(Event(name=DEVICE_REGISTERED))

        assert received == [event]

    async def test_namespace_and_wildcard(self, bus):
        order = []
        bus.on_all(lambda e: order.append(("*", e.name)))
        bus.on("device:*", lambda e: order.append(("device", e.name)))
        bus.on(DEVICE_CONNECTED, lambda e: order.append(("exact", e.name)))

        await bus.emit(Event(name=DEVICE_CONNECTED))
        await bus.emit(Event(name=SYNC_COMPLETED))

        assert order == [
            ("exact", DEVICE_CONNECTED),
            ("device", DEVICE_CONNECTED),
            ("*", DEVICE_CONNECTED),
            ("*", SYNC_COMPLETED),
        ]

    async def test_off(self, bus):
        received = []
        bus.on("device:*", received.append)
        bus.off("device:*", received.append)
        await bus.emit(Event(name=DEVICE_CONNECTED))
        assert received == []

    def test_off_unknown_is_ignored(self, bus):
        bus.off(DEVICE_CONNECTED, print)
        bus.on(DEVICE_CONNECTED, len)
        bus.off(DEVICE_CONNECTED, print)
        assert bus.subscribers(DEVICE_CONNECTED) == [len]

    def test_clear(self, bus):
        bus.on(DEVICE_CONNECTED, len)
        bus.on_all(len)
        bus.clear()
        assert bus.subscribers(DEVICE_CONNECTED) == []


class TestEmit:
    async def test_awaits_async_subscribers(self, bus):
        received = []

        async def slow(event):
            await asyncio.sleep(0)
            received.append(event.name)

        bus.on(VITAL_ALERT_CRITICAL, slow)
        await bus.emit(Event(name=VITAL_ALERT_CRITICAL))
        assert received == [VITAL_ALERT_CRITICAL]

    async def test_failing_subscribers_are_isolated(self, bus):
        received = []

        def broken(event):
            raise RuntimeError("pager offline")

        async def broken_async(event):
            raise RuntimeError("audit sink down")

        bus.on(VITAL_ALERT_CRITICAL, broken)
        bus.on(VITAL_ALERT_CRITICAL, broken_async)
        bus.on(VITAL_ALERT_CRITICAL, lambda e: received.append("delivered"))

        await bus.emit(Event(name=VITAL_ALERT_CRITICAL))
        assert received == ["delivered"]

    async def test_no_subscribers(self, bus):
        await bus.emit(Event(name="nobody:listening"))
        bus.emit_sync(Event(name="nobody:listening"))


class TestEmitSync:
    async def test_plain_hooks_run_inline(self, bus):
        received = []
        bus.on(VITAL_ALERT_CRITICAL, received.append)
        event = Event(name=VITAL_ALERT_CRITICAL, payload={"severity": "critical"}, source="devices")

        bus.emit_sync(event)

        assert received == [event]

    async def test_async_hooks_run_in_background(self, bus):
        received = []

        async def notify(event):
            await asyncio.sleep(0)
            received.append(event.payload["device_id"])

        bus.on("device:*", notify)
        bus.emit_sync(Event(name=DEVICE_CONNECTED, payload={"device_id": "d1"}))

        assert received == []
        await bus.drain()
        assert received == ["d1"]

    async def test_background_failure_is_swallowed(self, bus):
        async def broken(event):
            raise RuntimeError("boom")

        bus.on(DEVICE_CONNECTED, broken)
        bus.emit_sync(Event(name=DEVICE_CONNECTED))
        await bus.drain()

    async def test_failing_plain_hook_does_not_stop_others(self, bus):
        received = []

        def broken(event):
            raise ValueError("bad payload")

        bus.on(DEVICE_CONNECTED, broken)
        bus.on_all(lambda e: received.append(e.name))
        bus.emit_sync(Event(name=DEVICE_CONNECTED))

        assert received == [DEVICE_CONNECTED]

    def test_without_loop_async_hooks_are_dropped(self, bus):
        received = []

        async def notify(event):
            received.append("async")

        bus.on(DEVICE_CONNECTED, notify)
        bus.on(DEVICE_CONNECTED, lambda e: received.append("sync"))
        bus.emit_sync(Event(name=DEVICE_CONNECTED))

        assert received == ["sync"]

    async def test_async_callable_object_is_delivered(self, bus):
        class Pager:
            def __init__(self):
                self.paged = []

            async def __call__(self, event):
                await asyncio.sleep(0)
                self.paged.append(event.name)

        pager = Pager()
        bus.on(VITAL_ALERT_CRITICAL, pager)
        bus.emit_sync(Event(name=VITAL_ALERT_CRITICAL))
        await bus.drain()

        assert pager.paged == [VITAL_ALERT_CRITICAL]

    def test_without_loop_async_callable_is_closed(self, bus):
        class Pager:
            async def __call__(self, event):
                raise AssertionError("never awaited")

        bus.on(DEVICE_CONNECTED, Pager())
        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            bus.emit_sync(Event(name=DEVICE_CONNECTED))
