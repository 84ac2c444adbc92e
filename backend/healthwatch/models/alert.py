"""Alert model - one open issue per endpoint and issue type."""
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String

from ..database import Base


class IssueType(str, Enum):
    OFFLINE = "offline"
    SSL_EXPIRING = "ssl_expiring"
    SSL_FAILED = "ssl_failed"
    SLOW_RESPONSE = "slow_response"


class AlertStatus(str, Enum):
    NEW = "new"
    IN_PROCESS = "in_process"
    DONE = "done"
    ABORT = "abort"


OPEN_STATUSES = (AlertStatus.NEW.value, AlertStatus.IN_PROCESS.value)
CLOSED_STATUSES = (AlertStatus.DONE.value, AlertStatus.ABORT.value)


class Alert(Base):
    """Alert lifecycle record.

    Status only moves through explicit operator action (API or email link).
    Alerts are never resolved automatically when the condition clears.
    """

    __tablename__ = "alerts"

    id = Column(String, primary_key=True)  # uuid4
    server_name = Column(String, nullable=False)
    server_url = Column(String, nullable=False, index=True)
    issue_type = Column(String, nullable=False)  # offline, ssl_expiring, ssl_failed, slow_response
    issue_details = Column(String, nullable=True)
    status = Column(String, nullable=False, default=AlertStatus.NEW.value, index=True)
    created_at = Column(DateTime, nullable=False)
    last_alerted_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)
    alert_count = Column(Integer, nullable=False, default=1)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES
