"""Services for probing, failure tracking, alerting, and scheduling."""
from .prober import CheckResult, ProberService
from .engine import MonitorEngine, ScanSummary
from .alert_manager import AlertManager
from .dispatcher import NotificationDispatcher
from .email_sender import EmailNotifier
from .scheduler import SchedulerService

__all__ = [
    "CheckResult",
    "ProberService",
    "MonitorEngine",
    "ScanSummary",
    "AlertManager",
    "NotificationDispatcher",
    "EmailNotifier",
    "SchedulerService",
]
