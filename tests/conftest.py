from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import pytest
from sqlalchemy.exc import OperationalError

from healthwatch.models import Alert, AlertStatus, CLOSED_STATUSES, OPEN_STATUSES
from healthwatch.schemas.endpoint import MonitoredEndpoint
from healthwatch.services.notifier import NotificationEntry, NotifierConfig, ReportAttachment
from healthwatch.services.prober import CheckResult
from healthwatch.services.store import AlertNotFoundError

T0 = datetime(2024, 3, 4, 12, 0, 0)

ALERT_FIELDS = (
    "id",
    "server_name",
    "server_url",
    "issue_type",
    "issue_details",
    "status",
    "created_at",
    "last_alerted_at",
    "resolved_at",
    "alert_count",
)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def copy_alert(alert: Alert) -> Alert:
    return Alert(**{name: getattr(alert, name) for name in ALERT_FIELDS})


class MemoryStore:
    """In-memory check store. Alerts are handed out as copies, like detached ORM rows."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.checks: List[CheckResult] = []
        self.alerts: Dict[str, Alert] = {}
        self.fail_writes = False
        self.fail_updates = False

    async def record_check(self, result: CheckResult) -> None:
        if self.fail_writes:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        self.checks.append(replace(result))

    async def latest_per_endpoint(self) -> List[CheckResult]:
        latest: Dict[str, CheckResult] = {}
        for check in self.checks:
            latest[check.server_url] = check
        return [replace(c) for c in latest.values()]

    async def history_for(self, server_url: str, limit: int = 50) -> List[CheckResult]:
        rows = [replace(c) for c in self.checks if c.server_url == server_url]
        return list(reversed(rows))[:limit]

    async def last_for(self, server_url: str) -> Optional[CheckResult]:
        history = await self.history_for(server_url, limit=1)
        return history[0] if history else None

    async def update_failure_count(self, server_url: str, count: int) -> None:
        if self.fail_updates:
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
        for check in reversed(self.checks):
            if check.server_url == server_url:
                check.consecutive_failures = count
                return

    async def create_alert(self, alert: Alert) -> None:
        self.alerts[alert.id] = copy_alert(alert)

    async def open_alert_for(self, server_url: str, issue_type: str) -> Optional[Alert]:
        matches = [
            a for a in self.alerts.values()
            if a.server_url == server_url and a.issue_type == issue_type and a.status in OPEN_STATUSES
        ]
        if not matches:
            return None
        return copy_alert(max(matches, key=lambda a: a.created_at))

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self.alerts.get(alert_id)
        return copy_alert(alert) if alert else None

    async def touch_alert(self, alert_id: str) -> None:
        alert = self.alerts[alert_id]
        alert.last_alerted_at = self.clock.now()
        alert.alert_count += 1

    async def set_alert_status(self, alert_id: str, status: AlertStatus) -> Alert:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        status = AlertStatus(status)
        alert.status = status.value
        alert.resolved_at = self.clock.now() if status.value in CLOSED_STATUSES else None
        return copy_alert(alert)

    async def list_alerts(self, status: Optional[str] = None, limit: int = 100) -> List[Alert]:
        rows = [a for a in self.alerts.values() if status is None or a.status == status]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return [copy_alert(a) for a in rows[:limit]]

    async def purge_checks_older_than(self, cutoff: datetime) -> int:
        before = len(self.checks)
        self.checks = [c for c in self.checks if c.checked_at >= cutoff]
        return before - len(self.checks)


class RecordingNotifier:
    def __init__(self, deliver: bool = True) -> None:
        self.deliver = deliver
        self.config: Optional[NotifierConfig] = None
        self.grouped: List[tuple[str, str, List[NotificationEntry]]] = []
        self.singles: List[tuple[Alert, str]] = []
        self.reports: List[tuple[str, str, List[ReportAttachment]]] = []
        self.raise_for: set[str] = set()

    def configure(self, config: NotifierConfig) -> None:
        self.config = config

    async def send_grouped_alert(self, recipient: str, customer: str, entries: List[NotificationEntry]) -> bool:
        if recipient in self.raise_for:
            raise ConnectionError("smtp down")
        self.grouped.append((recipient, customer, list(entries)))
        return self.deliver

    async def send_single_alert(self, alert: Alert, recipient: str) -> bool:
        self.singles.append((alert, recipient))
        return self.deliver

    async def test_connection(self) -> bool:
        return self.deliver

    async def send_report(self, subject: str, body: str, attachments: List[ReportAttachment]) -> bool:
        self.reports.append((subject, body, list(attachments)))
        return self.deliver


class StubProber:
    """Returns scripted results per URL; the last scripted entry repeats."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.script: Dict[str, List[dict]] = {}
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    def set(self, url: str, *outcomes: dict) -> None:
        self.script[url] = list(outcomes)

    async def probe(self, endpoint: MonitoredEndpoint) -> CheckResult:
        self.calls.append(endpoint.url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
        finally:
            self.active -= 1

        outcomes = self.script.get(endpoint.url) or [{"online": True}]
        fields = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        fields = {"online": True, "response_time_ms": 120, **fields}
        return CheckResult(
            server_name=endpoint.name,
            server_url=endpoint.url,
            checked_at=self.clock.now(),
            **fields,
        )


OFFLINE = {"online": False, "response_time_ms": None, "error_message": "Connection error: refused"}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def prober(clock: FakeClock) -> StubProber:
    return StubProber(clock)


@pytest.fixture
def make_endpoint() -> Callable[..., MonitoredEndpoint]:
    def _make(name: str = "api", url: str = "http://api.example.com", **kwargs) -> MonitoredEndpoint:
        kwargs.setdefault("alert_email", "ops@example.com")
        return MonitoredEndpoint(name=name, url=url, **kwargs)

    return _make
