"""In-process event bus for device, sync and alert notifications.

The device layer never talks to notification delivery, dashboards or audit
sinks directly; it publishes ``Event`` objects and whoever cares subscribes.
Event names are ``namespace:action`` strings.  A subscription can name one
event (``device:connected``), a whole namespace (``device:*``) or
everything (``*``).

Publishing is usually fire-and-forget (:meth:`EventBus.emit_sync`) so a slow
subscriber never stalls a sync batch; :meth:`EventBus.emit` awaits every
subscriber instead.  Either way a failing subscriber is logged and skipped.

Usage::

    from pulsebridge.core.events import EventBus, Event, VITAL_ALERT_CRITICAL

    bus = EventBus()

    async def page_on_call(event: Event) -> None:
        await pager.send(event.payload["message"])

    bus.on(VITAL_ALERT_CRITICAL, page_on_call)
    bus.on("device:*", audit_log.write)
    bus.emit_sync(Event(name=VITAL_ALERT_CRITICAL, payload={"message": "..."}, source="devices"))
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

# Device lifecycle
DEVICE_REGISTERED = "device:registered"
DEVICE_REGISTRATION_FAILED = "device:registration_failed"
DEVICE_CONNECTED = "device:connected"
DEVICE_CONNECTION_FAILED = "device:connection_failed"
DEVICE_DISCONNECTED = "device:disconnected"
DEVICE_DEACTIVATED = "device:deactivated"
DEVICE_SYNC_SUCCESS = "device:sync_success"
DEVICE_SYNC_FAILED = "device:sync_failed"

# Sync batches
SYNC_COMPLETED = "sync:completed"
SYNC_FAILED = "sync:failed"

# Readings
VITAL_DATA_PROCESSED = "vital_data:processed"
VITAL_ALERT_CRITICAL = "vital_alert:critical"

# Plugin registry
PLUGIN_LOADED = "plugin:loaded"
PLUGIN_UNLOADED = "plugin:unloaded"
PLUGIN_ERROR = "plugin:error"
REGISTRY_READY = "registry:ready"

WILDCARD = "*"

Hook = Callable[["Event"], Awaitable[None] | None]


@dataclass(frozen=True)
class Event:
    """One published occurrence.  Immutable once emitted."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    source: str = ""
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def namespace(self) -> str:
        """``device`` for ``device:connected``; the full name when there is no colon."""
        return self.name.split(":", 1)[0]


class EventBus:
    """Publish/subscribe with exact, namespace and wildcard subscriptions."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[Hook]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()  # strong refs for scheduled async hooks

    # ── Subscriptions ─────────────────────────────────────────────

    def on(self, pattern: str, hook: Hook) -> None:
        """Subscribe *hook* to an event name, a ``namespace:*`` pattern, or ``*``."""
        self._hooks[pattern].append(hook)

    def on_all(self, hook: Hook) -> None:
        self.on(WILDCARD, hook)

    def off(self, pattern: str, hook: Hook) -> None:
        """Remove one subscription.  Unknown subscriptions are ignored."""
        hooks = self._hooks.get(pattern)
        if hooks and hook in hooks:
            hooks.remove(hook)

    def clear(self) -> None:
        self._hooks.clear()

    def subscribers(self, name: str) -> list[Hook]:
        """Hooks an event called *name* would reach, most specific first."""
        namespace = name.split(":", 1)[0]
        return [
            *self._hooks.get(name, ()),
            *self._hooks.get(f"{namespace}:*", ()),
            *self._hooks.get(WILDCARD, ()),
        ]

    # ── Publishing ────────────────────────────────────────────────

    async def emit(self, event: Event) -> None:
        """Deliver *event* and wait for every subscriber, async ones included."""
        for hook in self.subscribers(event.name):
            try:
                result = hook(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning(f"Subscriber {_hook_name(hook)} failed on {event.name}: {exc}")

    def emit_sync(self, event: Event) -> None:
        """Deliver *event* without waiting.

        Plain hooks run right away.  A hook that returns an awaitable has it
        scheduled as a background task on the running loop (see
        :meth:`drain`), or dropped with a debug log when no loop is running.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for hook in self.subscribers(event.name):
            try:
                result = hook(event)
            except Exception as exc:
                logger.warning(f"Subscriber {_hook_name(hook)} failed on {event.name}: {exc}")
                continue
            if not inspect.isawaitable(result):
                continue
            if loop is None:
                if inspect.iscoroutine(result):
                    result.close()
                logger.debug(f"No running loop, dropping async subscriber {_hook_name(hook)} for {event.name}")
                continue
            task = loop.create_task(self._deliver(hook, result, event.name))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every background delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _deliver(hook: Hook, pending: Awaitable[None], name: str) -> None:
        try:
            await pending
        except Exception as exc:
            logger.warning(f"Subscriber {_hook_name(hook)} failed on {name}: {exc}")


def _hook_name(hook: Hook) -> str:
    return getattr(hook, "__qualname__", None) or repr(hook)
