"""Fair-use gate checked before any inbound event is routed."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from reviewbot.errors import RateLimited
from reviewbot.quota.store import QuotaCounter

logger = logging.getLogger(__name__)

REASON_DAILY = "daily"
REASON_LIFETIME = "lifetime"


@dataclass
class QuotaConfig:
    daily_limit: int = 100
    lifetime_limit: int = 3000
    timezone: str = "UTC"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    daily_count: int
    lifetime_count: int
    daily_limit: int
    lifetime_limit: int
    reason: Optional[str] = None
    reset_time: Optional[datetime] = None


class QuotaGate:
    """
    Daily and lifetime message quotas.

    ``check_and_consider`` never writes counts; only ``record_accepted`` does,
    and only after the event has been routed. A counter from a previous day
    reads as zero daily messages until the next accepted write resets it.
    """

    def __init__(
        self,
        store,
        config: Optional[QuotaConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or QuotaConfig()
        self._tz = ZoneInfo(self.config.timezone)
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=self._tz)

    def today(self) -> str:
        return self._now().date().isoformat()

    def next_reset(self) -> datetime:
        """Next midnight in the quota timezone."""
        tomorrow = self._now().date() + timedelta(days=1)
        return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=self._tz)

    def effective_daily_count(self, counter: QuotaCounter) -> int:
        return counter.daily_count if counter.window_date == self.today() else 0

    async def check_and_consider(self, subject_id: int) -> QuotaDecision:
        counter = await self.store.get_or_create(subject_id, self.today(), self._clock())
        daily = self.effective_daily_count(counter)
        lifetime = counter.lifetime_count
        limits = dict(
            daily_count=daily,
            lifetime_count=lifetime,
            daily_limit=self.config.daily_limit,
            lifetime_limit=self.config.lifetime_limit,
        )

        if daily >= self.config.daily_limit:
            return QuotaDecision(
                allowed=False, reason=REASON_DAILY, reset_time=self.next_reset(), **limits
            )
        if lifetime >= self.config.lifetime_limit:
            return QuotaDecision(allowed=False, reason=REASON_LIFETIME, **limits)
        return QuotaDecision(allowed=True, **limits)

    async def status(self, subject_id: int) -> QuotaDecision:
        return await self.check_and_consider(subject_id)

    async def record_accepted(self, subject_id: int) -> QuotaCounter:
        return await self.store.increment(subject_id, self.today(), self._clock())

    async def reset_daily(self, subject_id: int) -> QuotaCounter:
        logger.info("quota_daily_reset", extra={"subject_id": subject_id})
        return await self.store.reset_daily(subject_id, self.today(), self._clock())

    async def require(self, subject_id: int) -> QuotaDecision:
        """Like ``check_and_consider`` but raises RateLimited on denial."""
        decision = await self.check_and_consider(subject_id)
        if not decision.allowed:
            raise RateLimited(subject_id, decision.reason or REASON_DAILY, decision.reset_time)
        return decision
