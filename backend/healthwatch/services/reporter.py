"""Weekly report - CSV and text summary of the latest check per endpoint."""
import csv
import io
import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional

from ..schemas.endpoint import MonitoredEndpoint
from ..utils.clock import Clock, system_clock
from .notifier import Notifier, ReportAttachment
from .prober import CheckResult
from .store import CheckStore

logger = logging.getLogger(__name__)

UPTIME_WINDOW = timedelta(days=7)
UPTIME_HISTORY_LIMIT = 2000

CSV_HEADER = [
    "Server Name",
    "URL",
    "Customer",
    "Status",
    "Response Time (ms)",
    "SSL Valid",
    "SSL Issuer",
    "SSL Expires",
    "Days Remaining",
    "Last Checked",
    "Uptime % (7 days)",
]


@dataclass
class WeeklyReport:
    timestamp: str
    csv_content: str
    text_content: str
    csv_path: Optional[str] = None
    text_path: Optional[str] = None


def _yes_no(value: Optional[bool]) -> str:
    if value is None:
        return "N/A"
    return "Yes" if value else "No"


def _ssl_warning(check: CheckResult, threshold_days: int = 30) -> bool:
    days = check.ssl_days_remaining
    return days is not None and 0 < days <= threshold_days


class ReportService:
    """Builds the weekly report, saves it under the reports directory, and mails it."""

    def __init__(
        self,
        store: CheckStore,
        notifier: Notifier,
        reports_dir: str,
        clock: Clock = system_clock,
    ):
        self.store = store
        self.notifier = notifier
        self.reports_dir = reports_dir
        self.clock = clock

    async def uptime_percent(self, server_url: str) -> float:
        """Share of online checks over the last seven days."""
        cutoff = self.clock.now() - UPTIME_WINDOW
        history = await self.store.history_for(server_url, UPTIME_HISTORY_LIMIT)
        recent = [check for check in history if check.checked_at >= cutoff]
        if not recent:
            return 0.0
        online = sum(1 for check in recent if check.online)
        return round(online / len(recent) * 100, 2)

    async def build(self, endpoints: List[MonitoredEndpoint]) -> WeeklyReport:
        checks = await self.store.latest_per_endpoint()
        customers: Dict[str, str] = {e.url: e.customer or "Unknown" for e in endpoints}

        # Offline first, then soonest certificate expiry
        checks.sort(key=lambda c: (
            c.online,
            c.ssl_days_remaining is None,
            c.ssl_days_remaining or 0,
        ))

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADER)
        for check in checks:
            writer.writerow([
                check.server_name,
                check.server_url,
                customers.get(check.server_url, "Unknown"),
                "Online" if check.online else "Offline",
                check.response_time_ms if check.response_time_ms is not None else "N/A",
                _yes_no(check.ssl_valid),
                check.ssl_issuer or "N/A",
                check.ssl_expires_at.strftime("%Y-%m-%d") if check.ssl_expires_at else "N/A",
                check.ssl_days_remaining if check.ssl_days_remaining is not None else "N/A",
                check.checked_at.strftime("%Y-%m-%d %H:%M:%S"),
                f"{await self.uptime_percent(check.server_url):.2f}",
            ])

        now = self.clock.now()
        online = sum(1 for c in checks if c.online)
        lines = [
            "Weekly Server Health Report",
            "=" * 40,
            f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "",
            f"Online: {online}",
            f"Offline: {len(checks) - online}",
            f"SSL Warnings: {sum(1 for c in checks if _ssl_warning(c))}",
            f"Total Servers: {len(checks)}",
            "",
        ]
        for check in checks:
            status = "ONLINE" if check.online else "OFFLINE"
            days = f", SSL {check.ssl_days_remaining} days" if check.ssl_days_remaining is not None else ""
            lines.append(f"{status:8} {check.server_name} ({check.server_url}){days}")
        lines.append("")
        lines.append("The full table is attached as CSV.")

        return WeeklyReport(
            timestamp=now.strftime("%Y-%m-%d"),
            csv_content=buffer.getvalue(),
            text_content="\n".join(lines),
        )

    def save(self, report: WeeklyReport) -> WeeklyReport:
        os.makedirs(self.reports_dir, exist_ok=True)
        report.csv_path = os.path.join(self.reports_dir, f"weekly-report-{report.timestamp}.csv")
        report.text_path = os.path.join(self.reports_dir, f"weekly-report-{report.timestamp}.txt")
        with open(report.csv_path, "w", encoding="utf-8", newline="") as f:
            f.write(report.csv_content)
        with open(report.text_path, "w", encoding="utf-8") as f:
            f.write(report.text_content)
        logger.info(f"Report saved: {report.csv_path}")
        return report

    async def send_weekly_report(self, endpoints: List[MonitoredEndpoint]) -> bool:
        report = self.save(await self.build(endpoints))
        subject = f"Weekly Server Health Report - {report.timestamp}"
        attachment = ReportAttachment(
            filename=f"weekly-report-{report.timestamp}.csv",
            content=report.csv_content,
        )
        sent = await self.notifier.send_report(subject, report.text_content, [attachment])
        if sent:
            logger.info("Weekly report generated and sent")
        else:
            logger.warning("Weekly report generated but not sent")
        return sent
