"""Session state persistence: where each subject currently is in the dialogue."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Any, AsyncIterator, Callable, Dict, Optional

import redis.asyncio as redis

from reviewbot import redis_client
from reviewbot.conversation.states import ConversationState

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_WINDOW_S = 30 * 60

Clock = Callable[[], float]


def activity_expired(last_activity_at: float, now: float, window_s: float) -> bool:
    """A session is live up to and including the end of its window."""
    return now - last_activity_at > window_s


@dataclass
class Session:
    subject_id: int
    state: ConversationState = ConversationState.ROOT
    context: Dict[str, Any] = field(default_factory=dict)
    last_activity_at: float = 0.0
    warning_sent: bool = False

    def is_expired(self, now: float, window_s: float) -> bool:
        return activity_expired(self.last_activity_at, now, window_s)

    def to_dict(self) -> Dict:
        """Serialize session to dictionary."""
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Session":
        """Deserialize session from dictionary."""
        return cls(
            subject_id=int(data["subject_id"]),
            state=ConversationState(data.get("state", ConversationState.ROOT.value)),
            context=dict(data.get("context") or {}),
            last_activity_at=float(data.get("last_activity_at", 0.0)),
            warning_sent=bool(data.get("warning_sent", False)),
        )


@dataclass(frozen=True)
class StateSnapshot:
    state: ConversationState
    context: Dict[str, Any]


class RedisSessionStore:
    """
    Redis-backed session storage shared by every bot instance.

    Expiry is decided from ``last_activity_at``, not from the key TTL: the TTL
    only keeps the keyspace tidy and is longer than the inactivity window so
    the timeout sweep can still see (and notify) sessions that just expired.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        inactivity_window_s: float = DEFAULT_INACTIVITY_WINDOW_S,
        key_prefix: str = "session:",
        retention_grace_s: int = 3600,
        client: Optional[redis.Redis] = None,
        clock: Clock = time.time,
    ):
        self.redis_url = redis_url
        self.inactivity_window_s = inactivity_window_s
        self.key_prefix = key_prefix
        self.retention_grace_s = retention_grace_s
        self._redis: Optional[redis.Redis] = client
        self._clock = clock

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis_client.connect(self.redis_url)
            # Test connection
            await self._redis.ping()
            logger.info(f"Connected to Redis at {self.redis_url}")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected from Redis")

    def _key(self, subject_id: int) -> str:
        return f"{self.key_prefix}{subject_id}"

    @property
    def _ttl(self) -> int:
        return int(self.inactivity_window_s + self.retention_grace_s)

    def _client(self) -> redis.Redis:
        if not self._redis:
            raise RuntimeError("Not connected to Redis")
        return self._redis

    async def get_session(self, subject_id: int) -> Optional[Session]:
        """
        Retrieve the raw session record, expired or not.

        Returns None if no record exists.
        """
        data = await redis_client.get_json(self._client(), self._key(subject_id))
        if data is None:
            return None
        try:
            return Session.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to deserialize session: {e}")
            return None

    async def get_state(self, subject_id: int) -> Optional[StateSnapshot]:
        """
        Current state and context, or None when absent or expired.

        An expired record is deleted as a side effect.
        """
        session = await self.get_session(subject_id)
        if session is None:
            return None
        now = self._clock()
        if session.is_expired(now, self.inactivity_window_s):
            if await self.expire_if_stale(subject_id, now):
                logger.info("session_expired", extra={"subject_id": subject_id})
            return None
        return StateSnapshot(state=session.state, context=dict(session.context))

    async def set_state(
        self,
        subject_id: int,
        state: ConversationState,
        context: Optional[Dict[str, Any]] = None,
    ) -> Session:
        """
        Replace the subject's state and context.

        Always writes a fresh record; an expired context is never carried over.
        """
        session = Session(
            subject_id=subject_id,
            state=state,
            context=dict(context or {}),
            last_activity_at=self._clock(),
        )
        await redis_client.set_json(
            self._client(), self._key(subject_id), session.to_dict(), ttl_seconds=self._ttl
        )
        return session

    async def clear(self, subject_id: int) -> None:
        await redis_client.delete_key(self._client(), self._key(subject_id))

    async def expire_if_stale(self, subject_id: int, now: Optional[float] = None) -> bool:
        """
        Delete the record only if it is still expired when the write lands.

        Returns True when this call removed it. A session renewed or replaced
        by another instance since it was read is left alone.
        """
        now = self._clock() if now is None else now
        window = self.inactivity_window_s
        removed = []

        def drop_if_stale(current: Optional[Dict]) -> Optional[Dict]:
            removed.clear()
            if current is None:
                return None
            if not activity_expired(float(current.get("last_activity_at", 0.0)), now, window):
                return current
            removed.append(True)
            return None

        await redis_client.update_json(
            self._client(), self._key(subject_id), drop_if_stale, ttl_seconds=self._ttl
        )
        return bool(removed)

    async def renew(self, subject_id: int) -> bool:
        """
        Bump activity without changing state.

        Returns False if the session is absent or expired; an expired record
        is removed on the way.
        """
        now = self._clock()
        window = self.inactivity_window_s

        def bump(current: Optional[Dict]) -> Optional[Dict]:
            if current is None:
                return None
            if activity_expired(float(current.get("last_activity_at", 0.0)), now, window):
                return None
            current["last_activity_at"] = now
            current["warning_sent"] = False
            return current

        updated = await redis_client.update_json(
            self._client(), self._key(subject_id), bump, ttl_seconds=self._ttl
        )
        return updated is not None

    async def mark_warning_sent(self, subject_id: int) -> None:
        def mark(current: Optional[Dict]) -> Optional[Dict]:
            if current is None:
                return None
            current["warning_sent"] = True
            return current

        await redis_client.update_json(
            self._client(), self._key(subject_id), mark, ttl_seconds=self._ttl
        )

    async def iter_sessions(self) -> AsyncIterator[Session]:
        async for _, data in redis_client.scan_json(self._client(), f"{self.key_prefix}*"):
            try:
                yield Session.from_dict(data)
            except (KeyError, TypeError, ValueError):
                continue

    async def sweep_expired(self) -> int:
        """Delete expired records. Returns how many were removed."""
        now = self._clock()
        expired = [
            session.subject_id
            async for session in self.iter_sessions()
            if session.is_expired(now, self.inactivity_window_s)
        ]
        removed = 0
        for subject_id in expired:
            if await self.expire_if_stale(subject_id, now):
                removed += 1
        return removed


class InMemorySessionStore:
    """
    In-memory session store for testing/development.

    Same interface as RedisSessionStore but scoped to one process.
    """

    def __init__(
        self,
        inactivity_window_s: float = DEFAULT_INACTIVITY_WINDOW_S,
        clock: Clock = time.time,
    ):
        self.inactivity_window_s = inactivity_window_s
        self._clock = clock
        self._sessions: Dict[int, Session] = {}

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get_session(self, subject_id: int) -> Optional[Session]:
        return self._sessions.get(subject_id)

    async def get_state(self, subject_id: int) -> Optional[StateSnapshot]:
        session = self._sessions.get(subject_id)
        if session is None:
            return None
        if session.is_expired(self._clock(), self.inactivity_window_s):
            self._sessions.pop(subject_id, None)
            return None
        return StateSnapshot(state=session.state, context=dict(session.context))

    async def set_state(
        self,
        subject_id: int,
        state: ConversationState,
        context: Optional[Dict[str, Any]] = None,
    ) -> Session:
        session = Session(
            subject_id=subject_id,
            state=state,
            context=dict(context or {}),
            last_activity_at=self._clock(),
        )
        self._sessions[subject_id] = session
        return session

    async def clear(self, subject_id: int) -> None:
        self._sessions.pop(subject_id, None)

    async def expire_if_stale(self, subject_id: int, now: Optional[float] = None) -> bool:
        session = self._sessions.get(subject_id)
        now = self._clock() if now is None else now
        if session is None or not session.is_expired(now, self.inactivity_window_s):
            return False
        del self._sessions[subject_id]
        return True

    async def renew(self, subject_id: int) -> bool:
        session = self._sessions.get(subject_id)
        now = self._clock()
        if session is None:
            return False
        if session.is_expired(now, self.inactivity_window_s):
            del self._sessions[subject_id]
            return False
        session.last_activity_at = now
        session.warning_sent = False
        return True

    async def mark_warning_sent(self, subject_id: int) -> None:
        session = self._sessions.get(subject_id)
        if session:
            session.warning_sent = True

    async def iter_sessions(self) -> AsyncIterator[Session]:
        for session in list(self._sessions.values()):
            yield session

    async def sweep_expired(self) -> int:
        now = self._clock()
        expired = [
            subject_id
            for subject_id, session in self._sessions.items()
            if session.is_expired(now, self.inactivity_window_s)
        ]
        for subject_id in expired:
            del self._sessions[subject_id]
        return len(expired)
