from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta

import pytest

from conftest import T0, RecordingNotifier
from healthwatch.models import Alert
from healthwatch.services.alert_manager import (
    AlertManager,
    Severity,
    derive_issues,
    severity,
    should_notify,
)
from healthwatch.services.prober import CheckResult
from healthwatch.services.store import AlertConflictError, AlertNotFoundError


def _result(url: str = "https://shop.example.com", **fields) -> CheckResult:
    fields.setdefault("online", True)
    return CheckResult(server_name="shop", server_url=url, checked_at=T0, **fields)


def _alert(status: str, last_alerted_minutes_ago: int) -> Alert:
    return Alert(
        id="a-1",
        server_name="shop",
        server_url="https://shop.example.com",
        issue_type="offline",
        status=status,
        created_at=T0 - timedelta(days=2),
        last_alerted_at=T0 - timedelta(minutes=last_alerted_minutes_ago),
        alert_count=1,
    )


def test_offline_issue_carries_error_message() -> None:
    issues = derive_issues(_result(online=False, error_message="Request timeout"), 30)
    assert [(i.type.value, i.details) for i in issues] == [("offline", "Server is offline: Request timeout")]

    issues = derive_issues(_result(online=False), 30)
    assert issues[0].details == "Server is offline: No response"


def test_ssl_expiring_boundary() -> None:
    assert [i.type.value for i in derive_issues(_result(ssl_valid=True, ssl_days_remaining=30), 30)] == [
        "ssl_expiring"
    ]
    assert derive_issues(_result(ssl_valid=True, ssl_days_remaining=31), 30) == []


def test_invalid_certificate_wins_over_expiring() -> None:
    issues = derive_issues(_result(ssl_valid=False, ssl_days_remaining=5), 30)
    assert [(i.type.value, i.details) for i in issues] == [
        ("ssl_failed", "SSL certificate is invalid or expired")
    ]


def test_plain_http_ignores_certificate_fields() -> None:
    result = _result(url="http://api.example.com", ssl_valid=False, ssl_days_remaining=3)
    assert derive_issues(result, 30) == []


def test_slow_response_threshold_is_exclusive() -> None:
    assert derive_issues(_result(url="http://a.example.com", response_time_ms=5000), 30) == []
    issues = derive_issues(_result(url="http://a.example.com", response_time_ms=5001), 30)
    assert issues[0].details == "Slow response time: 5001ms"


def test_derive_issues_is_pure() -> None:
    result = _result(online=False, ssl_valid=False, response_time_ms=9000)
    before = asdict(result)
    first = derive_issues(result, 30)
    assert derive_issues(result, 30) == first
    assert asdict(result) == before


def test_severity_levels() -> None:
    assert severity([]) is Severity.HEALTHY
    assert severity(derive_issues(_result(ssl_valid=True, ssl_days_remaining=5), 30)) is Severity.WARNING
    assert severity(derive_issues(_result(online=False, response_time_ms=9000), 30)) is Severity.CRITICAL


def test_throttle_windows() -> None:
    assert should_notify(None, T0) is True
    assert should_notify(_alert("new", 59), T0) is False
    assert should_notify(_alert("new", 60), T0) is True
    assert should_notify(_alert("in_process", 60 * 24 - 1), T0) is False
    assert should_notify(_alert("in_process", 60 * 24), T0) is True
    assert should_notify(_alert("done", 60 * 24 * 365), T0) is False
    assert should_notify(_alert("abort", 60 * 24 * 365), T0) is False


@pytest.mark.asyncio
async def test_open_alert_is_reused(store, clock, make_endpoint) -> None:
    manager = AlertManager(store, clock=clock)
    endpoint = make_endpoint(url="https://shop.example.com")
    offline = _result(online=False)

    (first,) = await manager.process(endpoint, offline)
    assert first.is_new is True

    clock.advance(minutes=30)
    assert await manager.process(endpoint, offline) == []

    clock.advance(minutes=30)
    (again,) = await manager.process(endpoint, offline)
    assert again.is_new is False
    assert again.alert.id == first.alert.id
    assert again.count == 2
    assert len(store.alerts) == 1


@pytest.mark.asyncio
async def test_closed_alert_is_never_reused(store, clock, make_endpoint) -> None:
    manager = AlertManager(store, clock=clock)
    endpoint = make_endpoint(url="https://shop.example.com")
    offline = _result(online=False)

    (first,) = await manager.process(endpoint, offline)
    await manager.update_status(first.alert.id, "done")
    assert store.alerts[first.alert.id].resolved_at == clock.now()

    clock.advance(minutes=5)
    (second,) = await manager.process(endpoint, offline)
    assert second.is_new is True
    assert second.alert.id != first.alert.id


@pytest.mark.asyncio
async def test_reopening_closed_alert_conflicts_with_open_one(store, clock, make_endpoint) -> None:
    manager = AlertManager(store, clock=clock)
    endpoint = make_endpoint(url="https://shop.example.com")
    offline = _result(online=False)

    (first,) = await manager.process(endpoint, offline)
    await manager.update_status(first.alert.id, "done")
    clock.advance(minutes=5)
    (second,) = await manager.process(endpoint, offline)

    for status in ("in_process", "new"):
        with pytest.raises(AlertConflictError):
            await manager.update_status(first.alert.id, status)

    open_alerts = [a.id for a in store.alerts.values() if a.is_open]
    assert open_alerts == [second.alert.id]
    assert store.alerts[first.alert.id].status == "done"

    # With no other open alert the old one may be reopened
    await manager.update_status(second.alert.id, "abort")
    reopened = await manager.update_status(first.alert.id, "in_process")
    assert reopened.status == "in_process"
    assert reopened.resolved_at is None


@pytest.mark.asyncio
async def test_update_status_validation(store, clock) -> None:
    manager = AlertManager(store, clock=clock)

    with pytest.raises(ValueError):
        await manager.update_status("missing", "resolved")
    with pytest.raises(AlertNotFoundError):
        await manager.update_status("missing", "done")


@pytest.mark.asyncio
async def test_sweep_respects_in_process_window(store, clock, make_endpoint) -> None:
    manager = AlertManager(store, clock=clock)
    endpoint = make_endpoint(url="https://shop.example.com")
    notifier = RecordingNotifier()
    (event,) = await manager.process(endpoint, _result(online=False))
    await manager.update_status(event.alert.id, "in_process")

    clock.advance(hours=2)
    assert await manager.sweep([endpoint], notifier) == 0

    clock.advance(hours=22)
    assert await manager.sweep([endpoint], notifier) == 1
    alert, recipient = notifier.singles[0]
    assert alert.alert_count == 2
    assert recipient == "ops@example.com"


@pytest.mark.asyncio
async def test_sweep_skips_unknown_and_unaddressed_endpoints(store, clock, make_endpoint) -> None:
    manager = AlertManager(store, clock=clock)
    notifier = RecordingNotifier()
    silent = make_endpoint(url="https://quiet.example.com", alert_email=None)
    await manager.process(silent, _result(url=silent.url, online=False))
    clock.advance(hours=2)

    assert await manager.sweep([silent], notifier) == 0
    assert await manager.sweep([], notifier) == 0
    assert notifier.singles == []
