"""Alert lifecycle manager - issue derivation, throttling, and alert bookkeeping."""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..models import Alert, AlertStatus, IssueType, OPEN_STATUSES
from ..schemas.endpoint import MonitoredEndpoint
from ..utils.clock import Clock, system_clock
from .notifier import Notifier
from .prober import CheckResult
from .store import AlertConflictError, AlertNotFoundError, CheckStore

logger = logging.getLogger(__name__)

# Re-notification windows per alert status
RENOTIFY_AFTER = {
    AlertStatus.NEW.value: timedelta(hours=1),
    AlertStatus.IN_PROCESS.value: timedelta(hours=24),
}

DEFAULT_SLOW_RESPONSE_MS = 5000


class Severity(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


CRITICAL_ISSUES = {IssueType.OFFLINE, IssueType.SSL_FAILED}


@dataclass(frozen=True)
class Issue:
    type: IssueType
    details: str


@dataclass
class AlertEvent:
    """An alert that passed the throttle in this cycle and should be notified."""
    endpoint: MonitoredEndpoint
    alert: Alert
    is_new: bool

    @property
    def count(self) -> int:
        return self.alert.alert_count


def derive_issues(
    result: CheckResult,
    ssl_alert_days: int,
    slow_threshold_ms: int = DEFAULT_SLOW_RESPONSE_MS,
) -> List[Issue]:
    """Map a check result to the issues it exhibits. Pure function."""
    issues: List[Issue] = []

    if not result.online:
        issues.append(Issue(
            IssueType.OFFLINE,
            f"Server is offline: {result.error_message or 'No response'}",
        ))

    if result.server_url.lower().startswith("https://"):
        days = result.ssl_days_remaining
        if result.ssl_valid is False:
            issues.append(Issue(IssueType.SSL_FAILED, "SSL certificate is invalid or expired"))
        elif days is not None and 0 < days <= ssl_alert_days:
            issues.append(Issue(IssueType.SSL_EXPIRING, f"SSL certificate expiring in {days} days"))

    if result.response_time_ms is not None and result.response_time_ms > slow_threshold_ms:
        issues.append(Issue(IssueType.SLOW_RESPONSE, f"Slow response time: {result.response_time_ms}ms"))

    return issues


def severity(issues: Iterable[Issue]) -> Severity:
    """Display severity; has no effect on alerting."""
    level = Severity.HEALTHY
    for issue in issues:
        if issue.type in CRITICAL_ISSUES:
            return Severity.CRITICAL
        level = Severity.WARNING
    return level


def should_notify(alert: Optional[Alert], now: datetime) -> bool:
    """Throttle check for an existing open alert.

    new: hourly, in_process: daily, done/abort: never.
    """
    if alert is None:
        return True
    window = RENOTIFY_AFTER.get(alert.status)
    if window is None:
        return False
    return now - alert.last_alerted_at >= window


class AlertManager:
    """Owns the per-(endpoint, issue type) alert state."""

    def __init__(
        self,
        store: CheckStore,
        clock: Clock = system_clock,
        slow_threshold_ms: int = DEFAULT_SLOW_RESPONSE_MS,
    ):
        self.store = store
        self.clock = clock
        self.slow_threshold_ms = slow_threshold_ms

    async def process(self, endpoint: MonitoredEndpoint, result: CheckResult) -> List[AlertEvent]:
        """Create or re-notify alerts for every issue in the result.

        The caller must hold the endpoint's lock so the open-alert lookup and
        the insert cannot interleave with another evaluation.
        """
        events: List[AlertEvent] = []
        now = self.clock.now()

        for issue in derive_issues(result, endpoint.ssl_alert_days, self.slow_threshold_ms):
            existing = await self.store.open_alert_for(endpoint.url, issue.type.value)

            if existing is not None:
                if should_notify(existing, now):
                    await self.store.touch_alert(existing.id)
                    existing.alert_count = (existing.alert_count or 1) + 1
                    existing.last_alerted_at = now
                    events.append(AlertEvent(endpoint=endpoint, alert=existing, is_new=False))
                    logger.info(f"Re-alert for {endpoint.name}: {issue.type.value} (#{existing.alert_count})")
                continue

            alert = Alert(
                id=str(uuid.uuid4()),
                server_name=endpoint.name,
                server_url=endpoint.url,
                issue_type=issue.type.value,
                issue_details=issue.details,
                status=AlertStatus.NEW.value,
                created_at=now,
                last_alerted_at=now,
                alert_count=1,
            )
            await self.store.create_alert(alert)
            events.append(AlertEvent(endpoint=endpoint, alert=alert, is_new=True))
            logger.info(f"New alert for {endpoint.name}: {issue.type.value}")

        return events

    async def update_status(self, alert_id: str, status: str) -> Alert:
        """Operator-driven transition (API or email link)."""
        try:
            target = AlertStatus(status)
        except ValueError:
            raise ValueError(f"Invalid alert status: {status}")

        current = await self.store.get_alert(alert_id)
        if current is None:
            raise AlertNotFoundError(alert_id)

        # Reopening must not create a second open alert for the pair
        if target.value in OPEN_STATUSES and not current.is_open:
            other = await self.store.open_alert_for(current.server_url, current.issue_type)
            if other is not None and other.id != current.id:
                raise AlertConflictError(
                    f"Alert {other.id} is already open for {current.server_url} ({current.issue_type})"
                )

        alert = await self.store.set_alert_status(alert_id, target)
        logger.info(f"Alert {alert_id} marked {target.value}")
        return alert

    async def sweep(
        self,
        endpoints: Iterable[MonitoredEndpoint],
        notifier: Notifier,
        lock_for: Optional[Callable[[str], asyncio.Lock]] = None,
    ) -> int:
        """Re-send single reminders for open alerts whose throttle window elapsed.

        Alerts for endpoints missing from the current snapshot, or without a
        recipient, are left untouched. The alert is re-read under the
        endpoint's lock so a concurrent scan cannot notify it twice.
        """
        by_url: Dict[str, MonitoredEndpoint] = {e.url: e for e in endpoints}
        sent = 0

        for status in (AlertStatus.NEW.value, AlertStatus.IN_PROCESS.value):
            for candidate in await self.store.list_alerts(status=status, limit=1000):
                endpoint = by_url.get(candidate.server_url)
                if endpoint is None or not endpoint.alert_email:
                    continue

                lock = lock_for(endpoint.url) if lock_for else asyncio.Lock()
                async with lock:
                    now = self.clock.now()
                    alert = await self.store.get_alert(candidate.id)
                    if alert is None or not alert.is_open or not should_notify(alert, now):
                        continue
                    await self.store.touch_alert(alert.id)
                    alert.alert_count = (alert.alert_count or 1) + 1
                    alert.last_alerted_at = now

                try:
                    delivered = await notifier.send_single_alert(alert, endpoint.alert_email)
                except Exception as e:
                    logger.error(f"Failed to send reminder for {alert.server_name}: {e}")
                    continue
                if delivered:
                    sent += 1
                    logger.info(f"Sent scheduled alert: {alert.server_name} - {alert.issue_type}")
                else:
                    logger.warning(f"Scheduled alert not delivered: {alert.server_name} - {alert.issue_type}")

        return sent
