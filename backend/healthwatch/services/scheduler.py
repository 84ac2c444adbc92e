"""Scheduler service - periodic timers driving the monitor engine.

Timers:
- full scan every SCAN_INTERVAL_SECONDS (default 5 minutes), plus one initial
  scan shortly after startup
- retest queue drain every RETEST_TICK_SECONDS (default 1 minute)
- alert reminder sweep every ALERT_SWEEP_MINUTES (default 10 minutes)
- weekly report every Monday at 09:00
- check history cleanup once a day

Each job runs with max_instances=1 and catches its own errors, so a failing
cycle never stops later ones.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import Settings
from .engine import MonitorEngine
from .reporter import ReportService

logger = logging.getLogger(__name__)


class SchedulerService:
    """Owns the APScheduler instance and the jobs bound to one engine."""

    def __init__(self, engine: MonitorEngine, reporter: ReportService, settings: Settings):
        self.engine = engine
        self.reporter = reporter
        self.settings = settings
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        settings = self.settings
        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._run_scan,
            trigger=IntervalTrigger(seconds=settings.scan_interval_seconds),
            id="full_scan",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._run_scan,
            trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=settings.initial_scan_delay_seconds)),
            id="initial_scan",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._process_retests,
            trigger=IntervalTrigger(seconds=settings.retest_tick_seconds),
            id="retest_queue",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._sweep_alerts,
            trigger=IntervalTrigger(minutes=settings.alert_sweep_minutes),
            id="alert_sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self._send_weekly_report,
            trigger=CronTrigger(day_of_week="mon", hour=9, minute=0),
            id="weekly_report",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(days=1),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (scan={settings.scan_interval_seconds}s, "
            f"retests={settings.retest_tick_seconds}s, sweep={settings.alert_sweep_minutes}m, "
            f"batch={settings.batch_size})"
        )

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _run_scan(self):
        try:
            await self.engine.run_scan()
        except Exception as e:
            logger.error(f"Error during health check: {e}")

    async def _process_retests(self):
        try:
            await self.engine.process_retests()
        except Exception as e:
            logger.error(f"Error processing retest queue: {e}")

    async def _sweep_alerts(self):
        try:
            await self.engine.sweep_alerts()
        except Exception as e:
            logger.error(f"Error processing alert queue: {e}")

    async def _send_weekly_report(self):
        try:
            logger.info("Generating weekly report...")
            endpoints = self.engine.endpoints or self.engine.reload()
            await self.reporter.send_weekly_report(endpoints)
        except Exception as e:
            logger.error(f"Error in weekly report job: {e}")

    async def _cleanup_old_records(self):
        """Delete check records older than the retention period."""
        try:
            await self.engine.purge_history(self.settings.history_retention_days)
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")
