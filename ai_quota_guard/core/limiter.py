"""
Per-request quota enforcement.

Wires the selector to the usage store: read today's usage, decide, and
record the request once it has been routed.

Failure Policy:
Storage problems never turn into a denial. If usage cannot be read, the
decision is made as if the user had no usage at all (fail open), and a
failed increment is logged rather than raised.
"""

import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from .day_boundary import as_aware, utc_now
from .selector import NextAvailability, QuotaSelector, SelectionDecision, UsageSummary
from ai_quota_guard.storage.models import UsageRecord
from ai_quota_guard.storage.repository import UsageRepository

logger = structlog.get_logger()

FAIL_OPEN_MESSAGE = "Error checking rate limits. Using default model."


class ModelQuotaLimiter:
    """Quota checks and usage recording for request handlers.

    Args:
        selector: Model selector built from the registry
        repository: Durable usage counters
    """

    def __init__(self, selector: QuotaSelector, repository: UsageRepository):
        self.selector = selector
        self.repository = repository

    def check(self, user_id: str, now: Optional[datetime] = None) -> SelectionDecision:
        """Decide which model may serve the user's next request.

        Returns:
            SelectionDecision. When usage could not be read, a decision over
            empty usage flagged ``degraded``.
        """
        now = as_aware(now or utc_now())
        try:
            usage = self.repository.fetch_usage(user_id, now)
        except sqlite3.Error as e:
            logger.warning("usage_read_failed_failing_open", user_id=user_id, error=str(e))
            decision = self.selector.decide(user_id, [], now)
            return replace(decision, message=FAIL_OPEN_MESSAGE, degraded=True)

        return self.selector.decide(user_id, usage, now)

    def record(self, user_id: str, model_name: str, now: Optional[datetime] = None) -> bool:
        """Count one request against a model.

        Returns:
            True if the increment was stored
        """
        try:
            self.repository.increment(user_id, model_name, now)
        except sqlite3.Error as e:
            logger.error(
                "usage_increment_failed",
                user_id=user_id,
                model=model_name,
                error=str(e)
            )
            return False
        return True

    def usage_stats(self, user_id: str, now: Optional[datetime] = None) -> UsageSummary:
        return self.selector.summarize(self._usage_or_empty(user_id, now), now)

    def next_available(self, user_id: str, now: Optional[datetime] = None) -> NextAvailability:
        return self.selector.next_available(self._usage_or_empty(user_id, now), now)

    def detailed_status(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """JSON-ready view of everything that goes into a decision.

        Intended for debug endpoints and the CLI.
        """
        now = as_aware(now or utc_now())
        usage = self._usage_or_empty(user_id, now)
        snapshots = self.selector.availability(usage, now)
        upcoming = self.selector.next_available(usage, now)

        return {
            "user_id": user_id,
            "timestamp": now.isoformat(),
            "model_availability": [
                {
                    "model_name": s.model.name,
                    "display_name": s.model.display_name,
                    "daily_limit": s.model.daily_limit,
                    "daily_usage": s.daily_usage,
                    "daily_remaining": s.daily_remaining,
                    "is_available": s.is_available,
                    "cooldown": {
                        "in_cooldown": s.cooldown.in_cooldown,
                        "cooldown_ends_at": _iso(s.cooldown.cooldown_ends_at),
                        "minutes_remaining": s.cooldown.minutes_remaining,
                    },
                    "priority": s.model.priority,
                    "cost": s.model.cost.value,
                }
                for s in snapshots
            ],
            "raw_usage": [
                {
                    "model_name": r.model_name,
                    "request_count": r.request_count,
                    "last_request_at": _iso(r.last_request_at),
                    "day": r.day,
                }
                for r in usage
            ],
            "next_available": {
                "model": upcoming.model.display_name,
                "available_at": upcoming.available_at.isoformat(),
                "reason": upcoming.reason.value,
            },
        }

    def _usage_or_empty(self, user_id: str, now: Optional[datetime]) -> List[UsageRecord]:
        try:
            return self.repository.fetch_usage(user_id, now)
        except sqlite3.Error as e:
            logger.warning("usage_read_failed", user_id=user_id, error=str(e))
            return []


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None
