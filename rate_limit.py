"""
Per-agent daily submission quota.

The window is the UTC calendar day; each (agent, date) pair is its own
counter key, so crossing midnight starts a fresh counter without any reset
job. Counting itself is delegated to a quota counter collaborator whose
try_increment is atomic.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from config import DAILY_SUBMISSION_LIMIT
from errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaStatus:
    limit: int
    used: int
    resets_at: datetime

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.resets_at.timestamp())),
        }


def window_start(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_reset(now: datetime) -> datetime:
    return window_start(now) + timedelta(days=1)


def window_key(agent_id: str, now: datetime) -> str:
    return f"{agent_id}:{window_start(now).date().isoformat()}"


class RateLimiter:
    def __init__(self, counter, limit: int = DAILY_SUBMISSION_LIMIT):
        self._counter = counter
        self.limit = limit

    def status(self, agent_id: Optional[str], now: datetime) -> QuotaStatus:
        used = self._counter.peek(window_key(agent_id, now)) if agent_id else 0
        return QuotaStatus(limit=self.limit, used=used, resets_at=next_reset(now))

    def _limited(self, status: QuotaStatus) -> RateLimited:
        return RateLimited(
            f"Daily submission limit of {status.limit} reached; resets at {status.resets_at.isoformat()}",
            details={
                "limit": status.limit,
                "used": status.used,
                "resets_at": status.resets_at.isoformat(),
            },
        )

    def check(self, agent_id: str, now: datetime) -> QuotaStatus:
        """Fail if the agent has no quota left. Does not consume quota."""
        status = self.status(agent_id, now)
        if status.used >= status.limit:
            logger.info(f"Rate limit reached for agent {agent_id}: {status.used}/{status.limit}")
            raise self._limited(status)
        return status

    def acquire(self, agent_id: str, now: datetime) -> None:
        """Atomically consume one unit of quota, or fail with RATE_LIMITED."""
        acquired = self._counter.try_increment(
            window_key(agent_id, now), self.limit, agent_id, window_start(now)
        )
        if not acquired:
            logger.info(f"Quota reservation lost for agent {agent_id}")
            raise self._limited(self.status(agent_id, now))

    def release(self, agent_id: str, now: datetime) -> None:
        self._counter.decrement(window_key(agent_id, now))
