"""
Unit tests for rate_limit.py

windows   → UTC day boundaries, per-day keys
limiter   → check does not consume, acquire is bounded, release
headers   → X-RateLimit-* values
"""

from datetime import datetime, timedelta, timezone

import pytest


NOW = datetime(2026, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


def _limiter(limit=3):
    from rate_limit import RateLimiter
    from services import MemoryQuotaCounter
    counter = MemoryQuotaCounter()
    return RateLimiter(counter, limit), counter


# ─────────────────────────────────────────────────────────────────────────────
# 1. Windows
# ─────────────────────────────────────────────────────────────────────────────

class TestWindow:

    def test_window_is_utc_calendar_day(self):
        from rate_limit import next_reset, window_start
        assert window_start(NOW) == datetime(2026, 3, 14, tzinfo=timezone.utc)
        assert next_reset(NOW) == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_non_utc_input_is_converted(self):
        from rate_limit import window_key
        local = datetime(2026, 3, 15, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        assert window_key("agent-1", local) == "agent-1:2026-03-14"

    def test_new_day_starts_fresh_counter(self):
        limiter, _ = _limiter(limit=1)
        limiter.acquire("agent-1", NOW)
        limiter.acquire("agent-1", NOW + timedelta(days=1))
        assert limiter.status("agent-1", NOW).used == 1


# ─────────────────────────────────────────────────────────────────────────────
# 2. Limiter
# ─────────────────────────────────────────────────────────────────────────────

class TestRateLimiter:

    def test_check_does_not_consume(self):
        limiter, _ = _limiter()
        for _ in range(5):
            limiter.check("agent-1", NOW)
        assert limiter.status("agent-1", NOW).used == 0

    def test_acquire_up_to_limit_then_rate_limited(self):
        from errors import RateLimited
        limiter, _ = _limiter(limit=3)
        for _ in range(3):
            limiter.acquire("agent-1", NOW)
        with pytest.raises(RateLimited) as exc:
            limiter.acquire("agent-1", NOW)
        assert exc.value.status_code == 429
        assert exc.value.details["limit"] == 3
        assert exc.value.details["used"] == 3
        assert exc.value.details["resets_at"] == "2026-03-15T00:00:00+00:00"

    def test_check_fails_when_exhausted(self):
        from errors import RateLimited
        limiter, _ = _limiter(limit=1)
        limiter.acquire("agent-1", NOW)
        with pytest.raises(RateLimited):
            limiter.check("agent-1", NOW)

    def test_agents_are_independent(self):
        limiter, _ = _limiter(limit=1)
        limiter.acquire("agent-1", NOW)
        limiter.acquire("agent-2", NOW)

    def test_release_returns_quota(self):
        limiter, _ = _limiter(limit=1)
        limiter.acquire("agent-1", NOW)
        limiter.release("agent-1", NOW)
        limiter.acquire("agent-1", NOW)

    def test_release_never_goes_negative(self):
        limiter, counter = _limiter()
        limiter.release("agent-1", NOW)
        assert counter.counts == {}


class TestQuotaStatus:

    def test_headers(self):
        limiter, _ = _limiter(limit=10)
        limiter.acquire("agent-1", NOW)
        headers = limiter.status("agent-1", NOW).headers()
        assert headers == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "9",
            "X-RateLimit-Reset": str(int(datetime(2026, 3, 15, tzinfo=timezone.utc).timestamp())),
        }

    def test_anonymous_status_has_full_quota(self):
        limiter, _ = _limiter(limit=10)
        assert limiter.status(None, NOW).remaining == 10
