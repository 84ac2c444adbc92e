"""Email notifier - sends grouped alerts, reminders, and reports via SMTP."""
import asyncio
import logging
import smtplib
import ssl
from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from ..models import Alert
from .notifier import NotificationEntry, NotifierConfig, ReportAttachment

logger = logging.getLogger(__name__)

ISSUE_TITLES = {
    "offline": "Server Offline",
    "ssl_expiring": "SSL Certificate Expiring Soon",
    "ssl_failed": "SSL Certificate Failed",
    "slow_response": "Slow Response Time",
}

ACTIONS = (
    ("in_process", "Mark as In Process (reminders every 24 hours)"),
    ("abort", "Abort - false alarm, no more alerts"),
    ("done", "Mark as Done - resolved, no more alerts"),
)


def parse_recipients(to_address: str) -> List[str]:
    """Parse comma-separated email addresses into a list."""
    if not to_address:
        return []
    return [addr.strip() for addr in to_address.split(",") if addr.strip()]


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def action_links(base_url: str, alert_id: str) -> List[str]:
    base = base_url.rstrip("/")
    return [f"  {label}: {base}/api/alerts/{alert_id}/status?action={action}" for action, label in ACTIONS]


def build_grouped_subject(customer: str, entries: List[NotificationEntry]) -> str:
    plural = "s" if len(entries) > 1 else ""
    return f"[Server Monitor] {customer}: {len(entries)} Alert{plural}"


def build_grouped_body(customer: str, entries: List[NotificationEntry], base_url: str) -> str:
    plural = "s" if len(entries) > 1 else ""
    lines = [
        f"Customer: {customer}",
        "=" * 40,
        "",
        f"{len(entries)} server issue{plural} detected:",
        "",
    ]
    for entry in entries:
        badge = " [NEW]" if entry.is_new else ""
        lines.append(f"* {entry.endpoint_name}{badge}")
        lines.append(f"  URL: {entry.endpoint_url}")
        lines.append(f"  Issue: {ISSUE_TITLES.get(entry.issue_type, entry.issue_type)}")
        lines.append(f"  Details: {entry.details}")
        if entry.count > 1:
            lines.append(f"  Alert count: {entry.count}")
        if entry.alert_id:
            lines.extend(action_links(base_url, entry.alert_id))
        lines.append("")

    lines.append(f"Generated at: {_timestamp()}")
    lines.append("")
    lines.append("--")
    lines.append("Server Health Monitor")
    return "\n".join(lines)


def build_single_subject(alert: Alert) -> str:
    title = ISSUE_TITLES.get(alert.issue_type, "Server Issue")
    return f"ALERT: {alert.server_name} - {title}"


def build_single_body(alert: Alert, base_url: str) -> str:
    lines = [
        "Server Health Alert",
        "=" * 40,
        "",
        f"Server: {alert.server_name}",
        f"URL: {alert.server_url}",
        f"Issue: {alert.issue_details}",
        f"First seen: {alert.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        f"Alert ID: {alert.id}",
        f"Current status: {str(alert.status).upper()}",
    ]
    if (alert.alert_count or 1) > 1:
        lines.append(f"This is alert #{alert.alert_count} for this issue.")
    lines.append("")
    lines.append("Update the alert status:")
    lines.extend(action_links(base_url, alert.id))
    lines.append("")
    lines.append("--")
    lines.append(f"Server Health Monitor | {base_url}")
    return "\n".join(lines)


class EmailNotifier:
    """Notifier implementation over SMTP.

    smtplib is blocking, so delivery runs in the default executor.
    """

    def __init__(self, config: Optional[NotifierConfig] = None):
        self.config = config or NotifierConfig()

    def configure(self, config: NotifierConfig):
        """Swap in the settings snapshot for the current cycle."""
        self.config = config

    async def send_grouped_alert(self, recipient: str, customer: str, entries: List[NotificationEntry]) -> bool:
        subject = build_grouped_subject(customer, entries)
        body = build_grouped_body(customer, entries, self.config.base_url)
        return await self.send_email(self._with_cc(recipient), subject, body)

    async def send_single_alert(self, alert: Alert, recipient: str) -> bool:
        subject = build_single_subject(alert)
        body = build_single_body(alert, self.config.base_url)
        return await self.send_email(self._with_cc(recipient), subject, body)

    async def send_report(self, subject: str, body: str, attachments: List[ReportAttachment]) -> bool:
        to_address = self.config.report_to or self.config.from_address
        return await self.send_email(parse_recipients(to_address), subject, body, attachments)

    async def test_connection(self) -> bool:
        if not self.config.configured:
            logger.warning("Email not configured - missing host")
            return False
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._verify)
            logger.info("SMTP connection verified")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP connection failed: {type(e).__name__}: {e}")
            return False

    def _with_cc(self, recipient: str) -> List[str]:
        recipients = parse_recipients(recipient)
        for extra in parse_recipients(self.config.cc_address):
            if extra not in recipients:
                recipients.append(extra)
        return recipients

    async def send_email(
        self,
        recipients: List[str],
        subject: str,
        body: str,
        attachments: Optional[List[ReportAttachment]] = None,
    ) -> bool:
        """Send an email. Returns True on success, False on failure."""
        config = self.config
        if not config.host:
            logger.warning("Email not configured - missing host")
            return False
        if not recipients:
            logger.warning("No valid recipients for email")
            return False

        msg = MIMEMultipart()
        msg["Subject"] = subject
        msg["From"] = config.from_address or config.username
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(body, "plain"))
        for attachment in attachments or []:
            part = MIMEApplication(attachment.content.encode("utf-8"), _subtype=attachment.content_type[1])
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            msg.attach(part)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._deliver, recipients, msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed for user '{config.username}': {e}")
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"Recipients refused by server: {e}")
            return False
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {type(e).__name__}: {e}")
            return False
        except OSError as e:
            logger.error(f"Could not reach {config.host}:{config.port}: {e}")
            return False

        logger.info(f"Email sent to {len(recipients)} recipient(s): {subject}")
        return True

    def _open(self) -> smtplib.SMTP:
        config = self.config
        server = smtplib.SMTP(config.host, config.port, timeout=30)
        if config.use_tls:
            server.starttls(context=ssl.create_default_context())
        if config.username and config.password:
            server.login(config.username, config.password)
        return server

    def _deliver(self, recipients: List[str], msg: MIMEMultipart):
        from_addr = self.config.from_address or self.config.username
        with self._open() as server:
            server.sendmail(from_addr, recipients, msg.as_string())

    def _verify(self):
        with self._open() as server:
            server.noop()
