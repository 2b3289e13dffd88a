"""
Data models for storage layer.

Defines the per-user, per-model, per-day usage counter.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class UsageRecord:
    """Request counter for one (user, model, day) key.

    A record exists only once the first request for its key has been
    recorded. Absence means zero usage.
    """
    user_id: str
    model_name: str
    day: str
    request_count: int = 0
    last_request_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate the counter is non-negative."""
        if self.request_count < 0:
            raise ValueError("request_count must be >= 0")
