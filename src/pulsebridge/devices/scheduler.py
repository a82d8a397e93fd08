"""Scheduled device sync via APScheduler.

Wraps APScheduler's ``AsyncIOScheduler`` to run
:meth:`DeviceManagementService.sync_devices` on an interval, plus a plugin
health check on the registry's ``health_check_interval``.

APScheduler is imported lazily (only in :meth:`start`) so the module
can be imported without triggering heavy dependencies at import time.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

from loguru import logger

from pulsebridge.core.config import Config
from pulsebridge.core.config_schema import SyncSettings

from .models import SyncReport
from .service import DeviceManagementService, SyncOptions

ReportFn = Callable[[SyncReport], None]
"""Sync callable receiving each finished report, e.g. for printing."""


class SyncScheduler:
    """Interval-driven sync loop.

    Args:
        service: The service whose ``sync_devices`` runs on each tick.
        settings: Interval, historical backfill and concurrency defaults.
        options: Base ``SyncOptions`` for every run (selection filters).
        on_report: Optional callback receiving each ``SyncReport``.
        timezone: Timezone for the APScheduler instance.
    """

    def __init__(
        self,
        service: DeviceManagementService,
        settings: SyncSettings | None = None,
        options: SyncOptions | None = None,
        on_report: ReportFn | None = None,
        timezone: str = "UTC",
    ):
        self.service = service
        self.settings = settings or SyncSettings()
        self._options = options or SyncOptions()
        self._on_report = on_report
        self._timezone = timezone
        self._scheduler: Any = None  # AsyncIOScheduler, lazily created
        self.runs = 0
        self.last_report: SyncReport | None = None

    @classmethod
    def from_config(cls, service: DeviceManagementService, config: Config, **kwargs: Any) -> SyncScheduler:
        """Build from the ``sync`` section of a Config object."""
        settings = SyncSettings.model_validate(config.section("sync"))
        return cls(service, settings=settings, **kwargs)

    def sync_options(self) -> SyncOptions:
        return replace(
            self._options,
            include_historical=self._options.include_historical or self.settings.include_historical,
            historical_days=self.settings.historical_days,
            concurrency=max(self._options.concurrency, self.settings.concurrency),
        )

    # ── Lifecycle ──────────────────────────────────────────────────

    def start(self) -> None:
        """Create the APScheduler instance, add the jobs, and start.

        Must be called from a running asyncio event loop.
        """
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.settings.interval_seconds, timezone=self._timezone),
            id="device_sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        health_interval = self.service.registry.config.health_check_interval
        if health_interval > 0:
            self._scheduler.add_job(
                self.service.registry.check_health,
                trigger=IntervalTrigger(seconds=health_interval, timezone=self._timezone),
                id="plugin_health",
                replace_existing=True,
            )

        self._scheduler.start()
        logger.info(f"SyncScheduler started: every {self.settings.interval_seconds}s, tz={self._timezone}")

    def stop(self) -> None:
        """Stop the APScheduler instance."""
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("SyncScheduler shut down")

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def apscheduler(self) -> Any:
        """The raw APScheduler instance, or ``None`` before :meth:`start`."""
        return self._scheduler

    # ── Jobs ───────────────────────────────────────────────────────

    async def run_once(self) -> SyncReport:
        """Run one sync batch now."""
        report = await self.service.sync_devices(self.sync_options())
        self.runs += 1
        self.last_report = report
        logger.debug(
            f"Scheduled sync #{self.runs}: {report.devices_synced} devices, {len(report.errors)} errors"
        )
        if self._on_report is not None:
            self._on_report(report)
        return report
