"""Database models."""
from .check_record import CheckRecord
from .alert import Alert, AlertStatus, IssueType, OPEN_STATUSES, CLOSED_STATUSES

__all__ = ["CheckRecord", "Alert", "AlertStatus", "IssueType", "OPEN_STATUSES", "CLOSED_STATUSES"]
