"""
Quota and cooldown model selection.

Pure computation over a model registry and a user's usage records for the
current day. Nothing here touches storage or holds state between calls, so a
single selector can be shared by any number of concurrent request handlers.

Selection Rules:
1. Models are tried strictly in registry (priority) order
2. A model is available while it has daily quota left and is not cooling down
3. Cooldown only starts once a model has reached its daily limit
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .day_boundary import as_aware, day_key, next_reset, utc_now
from .registry import ModelDescriptor, ModelRegistry
from ai_quota_guard.storage.models import UsageRecord

logger = structlog.get_logger()

NO_MODEL_AVAILABLE = "No models available"


@dataclass(frozen=True)
class CooldownState:
    """Derived cooldown status of one model."""
    in_cooldown: bool
    cooldown_ends_at: Optional[datetime] = None
    minutes_remaining: Optional[int] = None


NOT_IN_COOLDOWN = CooldownState(in_cooldown=False)


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """Availability of one model at decision time."""
    model: ModelDescriptor
    daily_usage: int
    daily_remaining: int
    cooldown: CooldownState

    @property
    def is_available(self) -> bool:
        return self.daily_remaining > 0 and not self.cooldown.in_cooldown

    @property
    def is_exhausted(self) -> bool:
        """True when the model cannot serve requests for now."""
        return self.daily_remaining == 0 or self.cooldown.in_cooldown


@dataclass(frozen=True)
class SelectionDecision:
    """Outcome of a model selection for a single request."""
    allowed: bool
    reset_time: datetime
    all_availability: Tuple[AvailabilitySnapshot, ...]
    selected_model: Optional[ModelDescriptor] = None
    remaining_after_this_request: int = 0
    all_models_exhausted: bool = False
    next_available_at: Optional[datetime] = None
    message: Optional[str] = None
    degraded: bool = False


class AvailabilityReason(Enum):
    """Why a model is reported as the next one to become usable."""
    AVAILABLE_NOW = "available_now"
    COOLDOWN = "cooldown"
    DAILY_RESET = "daily_reset"


@dataclass(frozen=True)
class NextAvailability:
    model: ModelDescriptor
    available_at: datetime
    reason: AvailabilityReason


@dataclass(frozen=True)
class ModelUsageRow:
    """Per-model line of a usage summary."""
    name: str
    display_name: str
    remaining: int
    in_cooldown: bool
    cooldown_ends_at: Optional[datetime] = None
    minutes_remaining: Optional[int] = None


@dataclass(frozen=True)
class UsageSummary:
    """User-facing overview of today's quota across all models."""
    current_model: str
    total_requests_today: int
    models: Tuple[ModelUsageRow, ...]
    reset_time: datetime
    all_models_exhausted: bool
    next_available_at: Optional[datetime] = None


def derive_cooldown(
    model: ModelDescriptor,
    daily_usage: int,
    last_request_at: Optional[datetime],
    now: datetime
) -> CooldownState:
    """Derive the cooldown state of a model from today's usage.

    Cooldown is a penalty for reaching the daily limit, not a per-request
    throttle: a model under its limit is never cooling down.

    Args:
        model: Model being checked
        daily_usage: Requests made today on this model
        last_request_at: Time of the most recent request, if any
        now: Evaluation time

    Returns:
        CooldownState for the model
    """
    if daily_usage < model.daily_limit:
        return NOT_IN_COOLDOWN

    if last_request_at is None:
        return NOT_IN_COOLDOWN

    cooldown_ends_at = as_aware(last_request_at) + timedelta(hours=model.cooldown_hours)
    if now >= cooldown_ends_at:
        return NOT_IN_COOLDOWN

    minutes = math.ceil((cooldown_ends_at - now) / timedelta(minutes=1))
    return CooldownState(
        in_cooldown=True,
        cooldown_ends_at=cooldown_ends_at,
        minutes_remaining=max(1, minutes)
    )


class QuotaSelector:
    """Chooses the model that serves a request.

    Args:
        registry: Model catalog, loaded once at startup
        tz: Reference time zone for day keys and the daily reset
    """

    def __init__(self, registry: ModelRegistry, tz: tzinfo = timezone.utc):
        self.registry = registry
        self.tz = tz

    def availability(
        self,
        usage_records: Iterable[UsageRecord],
        now: Optional[datetime] = None
    ) -> Tuple[AvailabilitySnapshot, ...]:
        """Availability of every model, in registry order."""
        now = as_aware(now or utc_now())
        return self._snapshots(self._index_today(usage_records, now), now)

    def decide(
        self,
        user_id: str,
        usage_records: Iterable[UsageRecord],
        now: Optional[datetime] = None
    ) -> SelectionDecision:
        """Select the highest-priority available model for a request.

        Args:
            user_id: User making the request
            usage_records: The user's usage records for today; records
                belonging to other users are ignored
            now: Decision time (defaults to current UTC time)

        Returns:
            SelectionDecision; when no model is available it carries the
            earliest time a model leaves cooldown, or the daily reset.
        """
        now = as_aware(now or utc_now())
        snapshots = self._snapshots(self._index_today(usage_records, now, user_id), now)
        reset_time = next_reset(now, self.tz)

        for snapshot in snapshots:
            if snapshot.is_available:
                remaining = max(0, snapshot.model.daily_limit - snapshot.daily_usage - 1)
                logger.debug(
                    "model_selected",
                    user_id=user_id,
                    model=snapshot.model.name,
                    remaining=remaining
                )
                return SelectionDecision(
                    allowed=True,
                    selected_model=snapshot.model,
                    remaining_after_this_request=remaining,
                    reset_time=reset_time,
                    all_availability=snapshots
                )

        cooldown_end = _earliest_cooldown_end(snapshots)
        next_available_at = cooldown_end or reset_time
        all_models_exhausted = all(s.is_exhausted for s in snapshots)

        if cooldown_end is not None:
            message = f"All models in cooldown. Next available at {next_available_at.isoformat()}"
        else:
            message = "All model limits exceeded for today. Resets at midnight."

        logger.info(
            "no_model_available",
            user_id=user_id,
            next_available_at=next_available_at.isoformat(),
            all_models_exhausted=all_models_exhausted
        )
        return SelectionDecision(
            allowed=False,
            reset_time=reset_time,
            all_availability=snapshots,
            all_models_exhausted=all_models_exhausted,
            next_available_at=next_available_at,
            message=message
        )

    def has_available_model(
        self,
        usage_records: Iterable[UsageRecord],
        now: Optional[datetime] = None
    ) -> bool:
        return any(s.is_available for s in self.availability(usage_records, now))

    def next_available(
        self,
        usage_records: Iterable[UsageRecord],
        now: Optional[datetime] = None
    ) -> NextAvailability:
        """Report which model becomes usable next, when, and why.

        Each pending cooldown expiry before the daily reset is replayed in
        order with today's usage unchanged; the first instant at which some
        model is available wins. Otherwise the answer is the daily reset.
        """
        now = as_aware(now or utc_now())
        usage = self._index_today(usage_records, now)
        snapshots = self._snapshots(usage, now)

        for snapshot in snapshots:
            if snapshot.is_available:
                return NextAvailability(snapshot.model, now, AvailabilityReason.AVAILABLE_NOW)

        reset_time = next_reset(now, self.tz)
        expiries = sorted({
            s.cooldown.cooldown_ends_at
            for s in snapshots
            if s.cooldown.in_cooldown and s.cooldown.cooldown_ends_at < reset_time
        })
        for moment in expiries:
            for snapshot in self._snapshots(usage, moment):
                if snapshot.is_available:
                    return NextAvailability(snapshot.model, moment, AvailabilityReason.COOLDOWN)

        return NextAvailability(
            self.registry.default_model(),
            reset_time,
            AvailabilityReason.DAILY_RESET
        )

    def summarize(
        self,
        usage_records: Iterable[UsageRecord],
        now: Optional[datetime] = None
    ) -> UsageSummary:
        """Summarize today's usage for display."""
        now = as_aware(now or utc_now())
        snapshots = self._snapshots(self._index_today(usage_records, now), now)
        reset_time = next_reset(now, self.tz)

        current = next((s for s in snapshots if s.is_available), None)
        rows = tuple(
            ModelUsageRow(
                name=s.model.name,
                display_name=s.model.display_name,
                remaining=s.daily_remaining,
                in_cooldown=s.cooldown.in_cooldown,
                cooldown_ends_at=s.cooldown.cooldown_ends_at,
                minutes_remaining=s.cooldown.minutes_remaining
            )
            for s in snapshots
        )

        next_available_at = None
        if current is None:
            next_available_at = _earliest_cooldown_end(snapshots) or reset_time

        return UsageSummary(
            current_model=current.model.display_name if current else NO_MODEL_AVAILABLE,
            total_requests_today=sum(s.daily_usage for s in snapshots),
            models=rows,
            reset_time=reset_time,
            all_models_exhausted=current is None,
            next_available_at=next_available_at
        )

    def _index_today(
        self,
        usage_records: Iterable[UsageRecord],
        now: datetime,
        user_id: Optional[str] = None
    ) -> Dict[str, UsageRecord]:
        # Records from other days, or other users when one is given, never
        # count; first record per model wins
        today = day_key(now, self.tz)
        usage: Dict[str, UsageRecord] = {}
        for record in usage_records:
            if record.day != today or record.model_name in usage:
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            usage[record.model_name] = record
        return usage

    def _snapshots(
        self,
        usage: Dict[str, UsageRecord],
        now: datetime
    ) -> Tuple[AvailabilitySnapshot, ...]:
        snapshots: List[AvailabilitySnapshot] = []
        for model in self.registry:
            record = usage.get(model.name)
            daily_usage = record.request_count if record else 0
            last_request_at = record.last_request_at if record else None
            snapshots.append(AvailabilitySnapshot(
                model=model,
                daily_usage=daily_usage,
                daily_remaining=max(0, model.daily_limit - daily_usage),
                cooldown=derive_cooldown(model, daily_usage, last_request_at, now)
            ))
        return tuple(snapshots)


def _earliest_cooldown_end(snapshots: Iterable[AvailabilitySnapshot]) -> Optional[datetime]:
    ends = [s.cooldown.cooldown_ends_at for s in snapshots if s.cooldown.in_cooldown]
    return min(ends) if ends else None
