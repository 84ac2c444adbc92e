from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from conftest import T0, FakeClock
from healthwatch.database import build_engine, build_session_factory, create_tables
from healthwatch.models import Alert
from healthwatch.services.prober import CheckResult
from healthwatch.services.store import AlertNotFoundError, SqlAlchemyStore


@pytest_asyncio.fixture
async def sql_store(tmp_path: Path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'checks.db'}")
    await create_tables(engine)
    clock = FakeClock()
    yield SqlAlchemyStore(build_session_factory(engine), clock=clock), clock
    await engine.dispose()


def _check(url: str, minutes: int, online: bool = True, **fields) -> CheckResult:
    return CheckResult(
        server_name=url.split("//")[1],
        server_url=url,
        checked_at=T0 + timedelta(minutes=minutes),
        online=online,
        **fields,
    )


def _alert(alert_id: str, status: str = "new", minutes: int = 0) -> Alert:
    return Alert(
        id=alert_id,
        server_name="shop",
        server_url="https://shop.example.com",
        issue_type="offline",
        issue_details="Server is offline: Request timeout",
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
        last_alerted_at=T0 + timedelta(minutes=minutes),
        alert_count=1,
    )


@pytest.mark.asyncio
async def test_checks_round_trip_and_latest(sql_store) -> None:
    store, _ = sql_store
    await store.record_check(_check("http://a.example.com", 0))
    await store.record_check(_check("http://a.example.com", 5, online=False, error_message="Request timeout"))
    await store.record_check(_check("https://b.example.com", 1, ssl_valid=True, ssl_days_remaining=20))

    latest = {c.server_url: c for c in await store.latest_per_endpoint()}
    assert latest["http://a.example.com"].online is False
    assert latest["http://a.example.com"].error_message == "Request timeout"
    assert latest["https://b.example.com"].ssl_valid is True
    assert latest["https://b.example.com"].ssl_days_remaining == 20

    history = await store.history_for("http://a.example.com")
    assert [c.checked_at for c in history] == [T0 + timedelta(minutes=5), T0]
    assert (await store.last_for("http://missing.example.com")) is None


@pytest.mark.asyncio
async def test_update_failure_count_targets_newest_row(sql_store) -> None:
    store, _ = sql_store
    await store.record_check(_check("http://a.example.com", 0, online=False))
    await store.record_check(_check("http://a.example.com", 5, online=False))

    await store.update_failure_count("http://a.example.com", 2)

    newest, older = await store.history_for("http://a.example.com")
    assert newest.consecutive_failures == 2
    assert older.consecutive_failures == 0


@pytest.mark.asyncio
async def test_alert_lifecycle(sql_store) -> None:
    store, clock = sql_store
    await store.create_alert(_alert("a-1"))

    open_alert = await store.open_alert_for("https://shop.example.com", "offline")
    assert open_alert.id == "a-1"
    assert await store.open_alert_for("https://shop.example.com", "ssl_failed") is None

    clock.advance(hours=1)
    await store.touch_alert("a-1")
    touched = await store.get_alert("a-1")
    assert touched.alert_count == 2
    assert touched.last_alerted_at == clock.now()

    closed = await store.set_alert_status("a-1", "abort")
    assert closed.status == "abort"
    assert closed.resolved_at == clock.now()
    assert await store.open_alert_for("https://shop.example.com", "offline") is None

    with pytest.raises(AlertNotFoundError):
        await store.set_alert_status("nope", "done")


@pytest.mark.asyncio
async def test_list_alerts_filters_by_status(sql_store) -> None:
    store, _ = sql_store
    await store.create_alert(_alert("a-1", "new", minutes=0))
    await store.create_alert(_alert("a-2", "done", minutes=1))
    await store.create_alert(_alert("a-3", "new", minutes=2))

    assert [a.id for a in await store.list_alerts()] == ["a-3", "a-2", "a-1"]
    assert [a.id for a in await store.list_alerts(status="new")] == ["a-3", "a-1"]
    assert [a.id for a in await store.list_alerts(limit=1)] == ["a-3"]


@pytest.mark.asyncio
async def test_purge_old_checks(sql_store) -> None:
    store, _ = sql_store
    await store.record_check(_check("http://a.example.com", 0))
    await store.record_check(_check("http://a.example.com", 60 * 24 * 40))

    assert await store.purge_checks_older_than(T0 + timedelta(days=30)) == 1
    assert len(await store.history_for("http://a.example.com")) == 1
