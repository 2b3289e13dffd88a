"""
Tests for per-request quota enforcement against real storage.
"""
import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from ai_quota_guard.core.limiter import FAIL_OPEN_MESSAGE, ModelQuotaLimiter
from ai_quota_guard.core.registry import CostClass, ModelDescriptor, ModelRegistry
from ai_quota_guard.core.selector import AvailabilityReason, QuotaSelector
from ai_quota_guard.storage.db import get_connection
from ai_quota_guard.storage.repository import UsageRepository

NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)

MODEL_A = ModelDescriptor("model-a", "Model A", 3, 1, CostClass.HIGH, 3)
MODEL_B = ModelDescriptor("model-b", "Model B", 2, 2, CostClass.LOW, 1)


class TestModelQuotaLimiter:
    """Test the read, decide, record cycle."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.repository = UsageRepository(self.db_path)
        self.repository.initialize_schema()
        self.selector = QuotaSelector(ModelRegistry([MODEL_A, MODEL_B]))
        self.limiter = ModelQuotaLimiter(self.selector, self.repository)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _serve(self, user_id, now):
        """Run one request through the limiter the way a handler would."""
        decision = self.limiter.check(user_id, now)
        if decision.allowed:
            assert self.limiter.record(user_id, decision.selected_model.name, now)
        return decision

    def test_fresh_user_gets_top_model(self):
        decision = self.limiter.check("user-1", NOW)

        assert decision.allowed is True
        assert decision.selected_model == MODEL_A
        assert decision.remaining_after_this_request == 2
        assert decision.degraded is False

    def test_check_does_not_record(self):
        self.limiter.check("user-1", NOW)
        assert self.repository.fetch_usage("user-1", NOW) == []

    def test_quota_walks_down_priority_list(self):
        models_used = []
        for minute in range(5):
            decision = self._serve("user-1", NOW + timedelta(minutes=minute))
            models_used.append(decision.selected_model.name)

        assert models_used == ["model-a"] * 3 + ["model-b"] * 2

        decision = self.limiter.check("user-1", NOW + timedelta(minutes=5))
        assert decision.allowed is False
        assert decision.all_models_exhausted is True
        # B's one hour cooldown from minute 4 ends before A's three hours from minute 2
        assert decision.next_available_at == NOW + timedelta(minutes=4, hours=1)

    def test_users_are_isolated(self):
        for minute in range(3):
            self._serve("user-1", NOW + timedelta(minutes=minute))

        assert self.limiter.check("user-1", NOW).selected_model == MODEL_B
        assert self.limiter.check("user-2", NOW).selected_model == MODEL_A

    def test_quota_resets_next_day(self):
        for minute in range(5):
            self._serve("user-1", NOW + timedelta(minutes=minute))

        decision = self.limiter.check("user-1", NOW + timedelta(days=1))
        assert decision.selected_model == MODEL_A

    def test_fail_open_when_usage_unreadable(self):
        """Read failures select the top model instead of denying."""
        with patch.object(
            self.repository, "fetch_usage", side_effect=sqlite3.OperationalError("disk I/O error")
        ):
            decision = self.limiter.check("user-1", NOW)

        assert decision.allowed is True
        assert decision.selected_model == MODEL_A
        assert decision.degraded is True
        assert decision.message == FAIL_OPEN_MESSAGE

    def test_fail_open_without_schema(self):
        repository = UsageRepository(os.path.join(self.temp_dir, "empty.db"))
        limiter = ModelQuotaLimiter(self.selector, repository)

        decision = limiter.check("user-1", NOW)

        assert decision.allowed is True
        assert decision.degraded is True

    def test_record_failure_returns_false(self):
        repository = UsageRepository(os.path.join(self.temp_dir, "empty.db"))
        limiter = ModelQuotaLimiter(self.selector, repository)

        assert limiter.record("user-1", "model-a", NOW) is False

    def test_usage_stats(self):
        for minute in range(4):
            self._serve("user-1", NOW + timedelta(minutes=minute))

        summary = self.limiter.usage_stats("user-1", NOW + timedelta(minutes=5))

        assert summary.total_requests_today == 4
        assert summary.current_model == "Model B"
        assert [row.remaining for row in summary.models] == [0, 1]
        assert summary.models[0].in_cooldown is True

    def test_usage_stats_when_store_unreadable(self):
        with patch.object(
            self.repository, "fetch_usage", side_effect=sqlite3.DatabaseError("malformed")
        ):
            summary = self.limiter.usage_stats("user-1", NOW)

        assert summary.total_requests_today == 0
        assert summary.current_model == "Model A"

    def _insert_raw(self, db_path, request_count, last_request_at):
        conn = get_connection(db_path)
        try:
            conn.execute("""
                INSERT INTO model_usage
                (user_id, model_name, day, request_count, last_request_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, ("user-1", "model-a", "2024-06-15", request_count, last_request_at,
                  NOW.isoformat()))
            conn.commit()
        finally:
            conn.close()

    def test_fail_open_on_unparseable_timestamp(self):
        self._insert_raw(self.db_path, 1, "not-a-date")

        decision = self.limiter.check("user-1", NOW)

        assert decision.allowed is True
        assert decision.selected_model == MODEL_A
        assert decision.degraded is True
        assert decision.message == FAIL_OPEN_MESSAGE

        summary = self.limiter.usage_stats("user-1", NOW)
        assert summary.total_requests_today == 0

    def test_fail_open_on_negative_count_from_unchecked_table(self):
        """A table created without the count constraint can hold a negative count."""
        db_path = os.path.join(self.temp_dir, "legacy.db")
        conn = get_connection(db_path)
        try:
            conn.execute("""
                CREATE TABLE model_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    model_name TEXT NOT NULL,
                    day TEXT NOT NULL,
                    request_count INTEGER NOT NULL DEFAULT 0,
                    last_request_at TEXT,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, model_name, day)
                )
            """)
            conn.commit()
        finally:
            conn.close()
        self._insert_raw(db_path, -1, None)
        limiter = ModelQuotaLimiter(self.selector, UsageRepository(db_path))

        decision = limiter.check("user-1", NOW)

        assert decision.allowed is True
        assert decision.selected_model == MODEL_A
        assert decision.degraded is True
        assert limiter.next_available("user-1", NOW).reason == AvailabilityReason.AVAILABLE_NOW

    def test_next_available(self):
        result = self.limiter.next_available("user-1", NOW)
        assert result.reason == AvailabilityReason.AVAILABLE_NOW
        assert result.model == MODEL_A

    def test_detailed_status(self):
        self._serve("user-1", NOW)

        status = self.limiter.detailed_status("user-1", NOW)

        assert status["user_id"] == "user-1"
        assert status["timestamp"] == NOW.isoformat()
        assert [m["model_name"] for m in status["model_availability"]] == ["model-a", "model-b"]
        assert status["model_availability"][0]["daily_usage"] == 1
        assert status["model_availability"][0]["cost"] == "high"
        assert status["raw_usage"][0]["request_count"] == 1
        assert status["raw_usage"][0]["last_request_at"] == NOW.isoformat()
        assert status["next_available"]["reason"] == "available_now"
