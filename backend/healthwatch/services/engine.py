"""Monitor engine - runs fleet scans and retests and routes results to alerting.

The engine object holds all mutable scheduling state:

- ``retests``: pending retest tasks.
- the scan guard: at most one full scan at a time; overlapping triggers are dropped.
- per-endpoint locks: probe, failure tracking, and alert evaluation for one
  URL never run concurrently, whichever timer started them.

All of it is only touched from the event loop.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..schemas.endpoint import MonitoredEndpoint
from ..utils.clock import Clock, system_clock
from .alert_manager import AlertEvent, AlertManager, DEFAULT_SLOW_RESPONSE_MS
from .dispatcher import DispatchReport, NotificationDispatcher
from .failure_tracker import FailureOutcome, FailureTracker
from .notifier import Notifier
from .prober import CheckResult, ProberService
from .retest_queue import RetestQueue, RetestTask
from .sources import ConfigSource, EndpointSource
from .store import CheckStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


@dataclass
class ScanSummary:
    started_at: datetime
    skipped: bool = False
    endpoints: int = 0
    checked: int = 0
    errors: int = 0
    events: List[AlertEvent] = field(default_factory=list)
    dispatch: DispatchReport = field(default_factory=DispatchReport)
    duration_ms: int = 0


class MonitorEngine:
    """Wires prober, failure tracker, retest queue, alert manager, and dispatcher together."""

    def __init__(
        self,
        store: CheckStore,
        endpoint_source: EndpointSource,
        config_source: ConfigSource,
        notifier: Notifier,
        prober: Optional[ProberService] = None,
        clock: Clock = system_clock,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retest_delay_seconds: int = 60,
        slow_threshold_ms: int = DEFAULT_SLOW_RESPONSE_MS,
    ):
        self.store = store
        self.endpoint_source = endpoint_source
        self.config_source = config_source
        self.notifier = notifier
        self.clock = clock
        self.prober = prober or ProberService(clock=clock)
        self.batch_size = max(1, batch_size)

        self.tracker = FailureTracker()
        self.retests = RetestQueue(delay_seconds=retest_delay_seconds)
        self.alerts = AlertManager(store, clock=clock, slow_threshold_ms=slow_threshold_ms)
        self.dispatcher = NotificationDispatcher(notifier)

        self._scan_guard = asyncio.Lock()
        self._endpoint_locks: Dict[str, asyncio.Lock] = {}
        self._endpoints: List[MonitoredEndpoint] = []
        self.last_scan: Optional[ScanSummary] = None

    @property
    def endpoints(self) -> List[MonitoredEndpoint]:
        """Endpoint snapshot from the most recent reload."""
        return list(self._endpoints)

    @property
    def scan_in_progress(self) -> bool:
        return self._scan_guard.locked()

    def lock_for(self, url: str) -> asyncio.Lock:
        lock = self._endpoint_locks.get(url)
        if lock is None:
            lock = self._endpoint_locks[url] = asyncio.Lock()
        return lock

    def reload(self) -> List[MonitoredEndpoint]:
        """Snapshot endpoints and notifier settings for one cycle."""
        try:
            self.notifier.configure(self.config_source.load())
        except Exception as e:
            logger.error(f"Error loading notification config: {e}")

        try:
            loaded = self.endpoint_source.load_endpoints()
        except Exception as e:
            logger.error(f"Error loading endpoints: {e}")
            loaded = []

        self._endpoints = [endpoint for endpoint in loaded if endpoint.enabled]
        return self.endpoints

    def find_endpoint(self, url: str) -> Optional[MonitoredEndpoint]:
        for endpoint in self._endpoints or self.reload():
            if endpoint.url == url:
                return endpoint
        return None

    async def run_scan(self) -> ScanSummary:
        """Run one full-fleet scan, or drop the trigger if a scan is in flight."""
        summary = ScanSummary(started_at=self.clock.now())

        if self._scan_guard.locked():
            logger.info("Skipping scan - previous scan still running")
            summary.skipped = True
            return summary

        async with self._scan_guard:
            start = datetime.now()
            logger.info("Reloading configuration...")
            endpoints = self.reload()
            summary.endpoints = len(endpoints)

            if not endpoints:
                logger.warning("No endpoints to check")
                self.last_scan = summary
                return summary

            logger.info(f"Starting health check for {len(endpoints)} endpoints...")

            for batch in self._batches(endpoints):
                outcomes = await asyncio.gather(*[self._scan_endpoint(endpoint) for endpoint in batch])
                for events in outcomes:
                    if events is None:
                        summary.errors += 1
                        continue
                    summary.checked += 1
                    summary.events.extend(events)

            summary.dispatch = await self.dispatcher.dispatch(summary.events)
            summary.duration_ms = int((datetime.now() - start).total_seconds() * 1000)
            logger.info(
                f"Health check completed in {summary.duration_ms}ms "
                f"({summary.checked} checked, {summary.errors} errors, {len(summary.events)} alerts)"
            )
            self.last_scan = summary
            return summary

    async def process_retests(self) -> int:
        """Re-probe every retest whose delay elapsed. Returns the number processed."""
        due = self.retests.pop_due(self.clock.now())
        if not due:
            return 0

        logger.info(f"Processing {len(due)} scheduled retests...")
        events: List[AlertEvent] = []
        for batch in self._batches(due):
            outcomes = await asyncio.gather(*[self._retest(task) for task in batch])
            for batch_events in outcomes:
                events.extend(batch_events)

        if events:
            await self.dispatcher.dispatch(events)
        return len(due)

    async def sweep_alerts(self) -> int:
        """Send throttled reminders for open alerts."""
        endpoints = self._endpoints or self.reload()
        return await self.alerts.sweep(endpoints, self.notifier, lock_for=self.lock_for)

    async def check_endpoint(
        self,
        endpoint: MonitoredEndpoint,
        carried_failures: Optional[int] = None,
    ) -> List[AlertEvent]:
        """Probe, track, and evaluate one endpoint under its lock."""
        async with self.lock_for(endpoint.url):
            result = await self.prober.probe(endpoint)
            return await self._handle_result(endpoint, result, carried_failures)

    async def _handle_result(
        self,
        endpoint: MonitoredEndpoint,
        result: CheckResult,
        carried_failures: Optional[int],
    ) -> List[AlertEvent]:
        last_check = None
        if carried_failures is None:
            try:
                last_check = await self.store.last_for(endpoint.url)
            except SQLAlchemyError as e:
                logger.error(f"Could not read last check for {endpoint.name}: {e}")

        prior = self.tracker.prior_failures(last_check, carried_failures)
        decision = self.tracker.evaluate(endpoint, result, prior)

        result.consecutive_failures = decision.consecutive_failures
        try:
            await self.store.record_check(result)
            await self.store.update_failure_count(endpoint.url, decision.consecutive_failures)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record check for {endpoint.name}: {e}")

        if decision.needs_retest:
            self.retests.schedule(endpoint, decision.consecutive_failures, self.clock.now())
            return []

        if decision.outcome is FailureOutcome.RECOVERED and self.retests.cancel(endpoint.url):
            logger.debug(f"Cancelled pending retest for {endpoint.name}")

        return await self.alerts.process(endpoint, result)

    async def _scan_endpoint(self, endpoint: MonitoredEndpoint) -> Optional[List[AlertEvent]]:
        try:
            events = await self.check_endpoint(endpoint)
        except Exception as e:
            logger.error(f"Error checking {endpoint.name}: {e}")
            return None
        logger.debug(f"{endpoint.name}: {len(events)} alert event(s)")
        return events

    async def _retest(self, task: RetestTask) -> List[AlertEvent]:
        try:
            events = await self.check_endpoint(task.endpoint, carried_failures=task.failures)
        except Exception as e:
            logger.error(f"Error retesting {task.endpoint.name}: {e}")
            return []
        logger.info(f"Retest {task.endpoint.name}: {len(events)} alert event(s)")
        return events

    async def purge_history(self, retention_days: int) -> int:
        cutoff = self.clock.now() - timedelta(days=retention_days)
        removed = await self.store.purge_checks_older_than(cutoff)
        logger.info(f"Cleaned {removed} old check records")
        return removed

    def _batches(self, items: Sequence) -> List[Sequence]:
        return [items[i:i + self.batch_size] for i in range(0, len(items), self.batch_size)]
