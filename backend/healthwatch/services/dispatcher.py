"""Notification dispatcher - groups a cycle's alert events by customer and recipient."""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .alert_manager import AlertEvent
from .notifier import NotificationEntry, NotificationGroup, Notifier

logger = logging.getLogger(__name__)

UNKNOWN_CUSTOMER = "Unknown"


@dataclass
class DispatchReport:
    sent: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (customer, recipient)

    @property
    def attempted(self) -> int:
        return self.sent + len(self.failed)


def group_events(events: Iterable[AlertEvent]) -> List[NotificationGroup]:
    """Group events by (customer, recipient), preserving first-seen order.

    Events whose endpoint has no recipient are dropped.
    """
    groups: Dict[Tuple[str, str], NotificationGroup] = {}

    for event in events:
        recipient = event.endpoint.alert_email
        if not recipient:
            continue
        customer = event.endpoint.customer or UNKNOWN_CUSTOMER
        key = (customer, recipient)

        group = groups.get(key)
        if group is None:
            group = groups[key] = NotificationGroup(customer=customer, recipient=recipient)

        group.entries.append(NotificationEntry(
            endpoint_name=event.endpoint.name,
            endpoint_url=event.endpoint.url,
            issue_type=event.alert.issue_type,
            details=event.alert.issue_details or "",
            is_new=event.is_new,
            count=event.count,
            alert_id=event.alert.id,
        ))

    return list(groups.values())


class NotificationDispatcher:
    """Sends one grouped notification per customer group."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    async def dispatch(self, events: Iterable[AlertEvent]) -> DispatchReport:
        report = DispatchReport()

        for group in group_events(events):
            try:
                delivered = await self.notifier.send_grouped_alert(group.recipient, group.customer, group.entries)
            except Exception as e:
                logger.error(f"Failed to send alert to {group.customer} <{group.recipient}>: {e}")
                report.failed.append((group.customer, group.recipient))
                continue

            if delivered:
                report.sent += 1
                logger.info(f"Sent grouped alert to {group.customer} ({len(group.entries)} issues)")
            else:
                report.failed.append((group.customer, group.recipient))
                logger.warning(f"Grouped alert to {group.customer} <{group.recipient}> was not delivered")

        return report
