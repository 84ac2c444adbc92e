"""Notifier interface consumed by the dispatcher, the alert sweep, and the weekly report."""
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from ..models import Alert


@dataclass
class NotifierConfig:
    """Point-in-time notification settings, reloaded once per scan cycle."""
    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    use_tls: bool = True
    from_address: str = ""
    cc_address: str = ""  # Comma-separated list added to every alert
    report_to: str = ""
    base_url: str = "http://localhost:8000"

    @property
    def configured(self) -> bool:
        return bool(self.host)


@dataclass
class NotificationEntry:
    """One (endpoint, issue) line in a grouped notification."""
    endpoint_name: str
    endpoint_url: str
    issue_type: str
    details: str
    is_new: bool
    count: int
    alert_id: Optional[str] = None


@dataclass
class ReportAttachment:
    filename: str
    content: str
    content_type: Tuple[str, str] = ("text", "csv")


@dataclass
class NotificationGroup:
    customer: str
    recipient: str
    entries: List[NotificationEntry] = field(default_factory=list)


class Notifier(Protocol):
    def configure(self, config: NotifierConfig) -> None: ...
    async def send_grouped_alert(self, recipient: str, customer: str, entries: List[NotificationEntry]) -> bool: ...
    async def send_single_alert(self, alert: Alert, recipient: str) -> bool: ...
    async def test_connection(self) -> bool: ...
    async def send_report(self, subject: str, body: str, attachments: List[ReportAttachment]) -> bool: ...
