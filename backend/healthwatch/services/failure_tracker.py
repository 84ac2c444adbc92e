"""Failure tracker - decides whether an offline result is tolerated or escalated."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..schemas.endpoint import MonitoredEndpoint
from .prober import CheckResult

logger = logging.getLogger(__name__)


class FailureOutcome(str, Enum):
    RECOVERED = "recovered"
    TOLERATED = "tolerated"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class FailureDecision:
    outcome: FailureOutcome
    consecutive_failures: int

    @property
    def needs_retest(self) -> bool:
        return self.outcome is FailureOutcome.TOLERATED


class FailureTracker:
    """Consecutive-failure bookkeeping.

    Holds no state of its own; the caller supplies the prior count, so the
    tracker is safe to share between the scan and retest timers.
    """

    @staticmethod
    def prior_failures(last_check: Optional[CheckResult], carried: Optional[int] = None) -> int:
        """Baseline count before the current result.

        A retest carries its own count because the store may not yet reflect
        the attempt that scheduled it.
        """
        if carried is not None:
            return carried
        if last_check is not None and not last_check.online:
            return last_check.consecutive_failures or 0
        return 0

    def evaluate(
        self,
        endpoint: MonitoredEndpoint,
        result: CheckResult,
        prior_failures: int,
    ) -> FailureDecision:
        if result.online:
            if prior_failures > 0:
                logger.info(f"{endpoint.name} recovered (was {prior_failures} failures)")
            return FailureDecision(FailureOutcome.RECOVERED, 0)

        count = prior_failures + 1
        logger.info(f"{endpoint.name} failure count: {count}/{endpoint.failure_threshold}")

        if count < endpoint.failure_threshold:
            return FailureDecision(FailureOutcome.TOLERATED, count)

        logger.warning(f"{endpoint.name} reached failure threshold ({count}/{endpoint.failure_threshold})")
        return FailureDecision(FailureOutcome.ESCALATE, count)
