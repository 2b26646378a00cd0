"""Per-subject message counters."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional

import redis.asyncio as redis

from reviewbot import redis_client

logger = logging.getLogger(__name__)


@dataclass
class QuotaCounter:
    subject_id: int
    daily_count: int = 0
    lifetime_count: int = 0
    window_date: str = ""  # YYYY-MM-DD in the quota timezone
    last_message_at: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "QuotaCounter":
        return cls(
            subject_id=int(data["subject_id"]),
            daily_count=int(data.get("daily_count", 0)),
            lifetime_count=int(data.get("lifetime_count", 0)),
            window_date=str(data.get("window_date", "")),
            last_message_at=float(data.get("last_message_at", 0.0)),
        )

    def incremented(self, today: str, now: float) -> "QuotaCounter":
        same_window = self.window_date == today
        return QuotaCounter(
            subject_id=self.subject_id,
            daily_count=self.daily_count + 1 if same_window else 1,
            lifetime_count=self.lifetime_count + 1,
            window_date=today,
            last_message_at=now,
        )


class RedisQuotaStore:
    """Counters in the shared store; increments are conditional writes."""

    def __init__(self, client: redis.Redis, key_prefix: str = "quota:"):
        self._redis = client
        self.key_prefix = key_prefix

    def _key(self, subject_id: int) -> str:
        return f"{self.key_prefix}{subject_id}"

    async def get_or_create(self, subject_id: int, today: str, now: float) -> QuotaCounter:
        key = self._key(subject_id)
        data = await redis_client.get_json(self._redis, key)
        if data is not None:
            return QuotaCounter.from_dict(data)
        fresh = QuotaCounter(subject_id=subject_id, window_date=today, last_message_at=now)
        if await redis_client.create_json(self._redis, key, fresh.to_dict()):
            return fresh
        # Lost the creation race; another instance wrote it first.
        data = await redis_client.get_json(self._redis, key)
        return QuotaCounter.from_dict(data) if data is not None else fresh

    async def increment(self, subject_id: int, today: str, now: float) -> QuotaCounter:
        def bump(current: Optional[Dict]) -> Dict:
            counter = (
                QuotaCounter.from_dict(current)
                if current is not None
                else QuotaCounter(subject_id=subject_id, window_date=today)
            )
            return counter.incremented(today, now).to_dict()

        updated = await redis_client.update_json(self._redis, self._key(subject_id), bump)
        return QuotaCounter.from_dict(updated)

    async def reset_daily(self, subject_id: int, today: str, now: float) -> QuotaCounter:
        def reset(current: Optional[Dict]) -> Dict:
            counter = (
                QuotaCounter.from_dict(current)
                if current is not None
                else QuotaCounter(subject_id=subject_id)
            )
            counter.daily_count = 0
            counter.window_date = today
            counter.last_message_at = now
            return counter.to_dict()

        updated = await redis_client.update_json(self._redis, self._key(subject_id), reset)
        return QuotaCounter.from_dict(updated)


class InMemoryQuotaStore:
    """Process-local counters for tests and single-instance development."""

    def __init__(self) -> None:
        self._counters: Dict[int, QuotaCounter] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, subject_id: int, today: str, now: float) -> QuotaCounter:
        async with self._lock:
            counter = self._counters.get(subject_id)
            if counter is None:
                counter = QuotaCounter(subject_id=subject_id, window_date=today, last_message_at=now)
                self._counters[subject_id] = counter
            return QuotaCounter(**counter.to_dict())

    async def increment(self, subject_id: int, today: str, now: float) -> QuotaCounter:
        async with self._lock:
            current = self._counters.get(subject_id) or QuotaCounter(
                subject_id=subject_id, window_date=today
            )
            updated = current.incremented(today, now)
            self._counters[subject_id] = updated
            return QuotaCounter(**updated.to_dict())

    async def reset_daily(self, subject_id: int, today: str, now: float) -> QuotaCounter:
        async with self._lock:
            counter = self._counters.get(subject_id) or QuotaCounter(subject_id=subject_id)
            counter.daily_count = 0
            counter.window_date = today
            counter.last_message_at = now
            self._counters[subject_id] = counter
            return QuotaCounter(**counter.to_dict())
