"""Result and alert store backed by SQLAlchemy."""
import logging
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models import Alert, AlertStatus, CheckRecord, CLOSED_STATUSES, OPEN_STATUSES
from ..utils.clock import Clock, system_clock
from ..utils.db_utils import retry_on_lock
from .prober import CheckResult

logger = logging.getLogger(__name__)


class AlertNotFoundError(LookupError):
    """No alert exists with the requested id."""


class AlertConflictError(Exception):
    """Another alert is already open for the same endpoint and issue type."""


class CheckStore(Protocol):
    """Durable storage for check results and alerts."""

    async def record_check(self, result: CheckResult) -> None: ...
    async def latest_per_endpoint(self) -> List[CheckResult]: ...
    async def history_for(self, server_url: str, limit: int = 50) -> List[CheckResult]: ...
    async def last_for(self, server_url: str) -> Optional[CheckResult]: ...
    async def update_failure_count(self, server_url: str, count: int) -> None: ...
    async def create_alert(self, alert: Alert) -> None: ...
    async def open_alert_for(self, server_url: str, issue_type: str) -> Optional[Alert]: ...
    async def get_alert(self, alert_id: str) -> Optional[Alert]: ...
    async def touch_alert(self, alert_id: str) -> None: ...
    async def set_alert_status(self, alert_id: str, status: AlertStatus) -> Alert: ...
    async def list_alerts(self, status: Optional[str] = None, limit: int = 100) -> List[Alert]: ...
    async def purge_checks_older_than(self, cutoff: datetime) -> int: ...


def _to_result(row: CheckRecord) -> CheckResult:
    return CheckResult(
        server_name=row.server_name,
        server_url=row.server_url,
        checked_at=row.checked_at,
        online=bool(row.is_online),
        response_time_ms=row.response_time_ms,
        ssl_valid=row.ssl_valid,
        ssl_expires_at=row.ssl_expires_at,
        ssl_days_remaining=row.ssl_days_remaining,
        ssl_issuer=row.ssl_issuer,
        status_code=row.status_code,
        error_message=row.error_message,
        consecutive_failures=row.consecutive_failures or 0,
    )


class SqlAlchemyStore:
    """CheckStore implementation; every call runs in its own short session."""

    def __init__(self, session_factory: async_sessionmaker, clock: Clock = system_clock):
        self.session_factory = session_factory
        self.clock = clock

    async def record_check(self, result: CheckResult) -> None:
        async with self.session_factory() as session:
            session.add(CheckRecord(
                server_name=result.server_name,
                server_url=result.server_url,
                checked_at=result.checked_at,
                is_online=result.online,
                response_time_ms=result.response_time_ms,
                ssl_valid=result.ssl_valid,
                ssl_expires_at=result.ssl_expires_at,
                ssl_days_remaining=result.ssl_days_remaining,
                ssl_issuer=result.ssl_issuer,
                status_code=result.status_code,
                error_message=result.error_message,
                consecutive_failures=result.consecutive_failures,
            ))
            await retry_on_lock(session.commit)

    async def latest_per_endpoint(self) -> List[CheckResult]:
        async with self.session_factory() as session:
            newest = (
                select(func.max(CheckRecord.id))
                .group_by(CheckRecord.server_url)
            )
            result = await session.execute(
                select(CheckRecord)
                .where(CheckRecord.id.in_(newest))
                .order_by(CheckRecord.server_name)
            )
            return [_to_result(row) for row in result.scalars().all()]

    async def history_for(self, server_url: str, limit: int = 50) -> List[CheckResult]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CheckRecord)
                .where(CheckRecord.server_url == server_url)
                .order_by(CheckRecord.checked_at.desc(), CheckRecord.id.desc())
                .limit(limit)
            )
            return [_to_result(row) for row in result.scalars().all()]

    async def last_for(self, server_url: str) -> Optional[CheckResult]:
        history = await self.history_for(server_url, limit=1)
        return history[0] if history else None

    async def update_failure_count(self, server_url: str, count: int) -> None:
        """Set the count on the newest row for the endpoint in a single statement."""
        newest = (
            select(CheckRecord.id)
            .where(CheckRecord.server_url == server_url)
            .order_by(CheckRecord.checked_at.desc(), CheckRecord.id.desc())
            .limit(1)
            .scalar_subquery()
        )
        async with self.session_factory() as session:
            await session.execute(
                update(CheckRecord)
                .where(CheckRecord.id == newest)
                .values(consecutive_failures=count)
            )
            await retry_on_lock(session.commit)

    async def create_alert(self, alert: Alert) -> None:
        async with self.session_factory() as session:
            session.add(alert)
            await retry_on_lock(session.commit)

    async def open_alert_for(self, server_url: str, issue_type: str) -> Optional[Alert]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Alert)
                .where(
                    Alert.server_url == server_url,
                    Alert.issue_type == issue_type,
                    Alert.status.in_(OPEN_STATUSES),
                )
                .order_by(Alert.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        async with self.session_factory() as session:
            return await session.get(Alert, alert_id)

    async def touch_alert(self, alert_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Alert)
                .where(Alert.id == alert_id)
                .values(last_alerted_at=self.clock.now(), alert_count=Alert.alert_count + 1)
            )
            await retry_on_lock(session.commit)

    async def set_alert_status(self, alert_id: str, status: AlertStatus) -> Alert:
        async with self.session_factory() as session:
            alert = await session.get(Alert, alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            status = AlertStatus(status)
            alert.status = status.value
            alert.resolved_at = self.clock.now() if status.value in CLOSED_STATUSES else None
            await retry_on_lock(session.commit)
            return alert

    async def list_alerts(self, status: Optional[str] = None, limit: int = 100) -> List[Alert]:
        async with self.session_factory() as session:
            query = select(Alert)
            if status:
                query = query.where(Alert.status == status)
            result = await session.execute(query.order_by(Alert.created_at.desc()).limit(limit))
            return list(result.scalars().all())

    async def purge_checks_older_than(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(CheckRecord).where(CheckRecord.checked_at < cutoff)
            )
            await retry_on_lock(session.commit)
            return result.rowcount or 0
