"""Retest queue - delayed single-fire re-probes after tolerated failures."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List

from ..schemas.endpoint import MonitoredEndpoint

logger = logging.getLogger(__name__)


@dataclass
class RetestTask:
    endpoint: MonitoredEndpoint
    failures: int
    fire_at: datetime


class RetestQueue:
    """One pending retest per endpoint URL.

    Only touched from the event loop thread, so no locking is needed.
    """

    def __init__(self, delay_seconds: int = 60):
        self.delay = timedelta(seconds=delay_seconds)
        self._tasks: Dict[str, RetestTask] = {}
        self.scheduled_total = 0

    def schedule(self, endpoint: MonitoredEndpoint, failures: int, now: datetime) -> RetestTask:
        """Schedule a retest, replacing any pending one for the same endpoint."""
        task = RetestTask(endpoint=endpoint, failures=failures, fire_at=now + self.delay)
        self._tasks.pop(endpoint.url, None)
        self._tasks[endpoint.url] = task
        self.scheduled_total += 1
        logger.info(
            f"Scheduled retest for {endpoint.name} in {int(self.delay.total_seconds())}s (failures: {failures})"
        )
        return task

    def pop_due(self, now: datetime) -> List[RetestTask]:
        """Remove and return every task whose fire time has elapsed."""
        due = [task for task in self._tasks.values() if task.fire_at <= now]
        for task in due:
            del self._tasks[task.endpoint.url]
        return due

    def cancel(self, url: str) -> bool:
        return self._tasks.pop(url, None) is not None

    def pending(self) -> List[RetestTask]:
        return sorted(self._tasks.values(), key=lambda task: task.fire_at)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, url: str) -> bool:
        return url in self._tasks
