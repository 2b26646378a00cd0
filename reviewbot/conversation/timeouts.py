"""Inactivity warnings and session expiry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from reviewbot.conversation.store import activity_expired

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[int], Awaitable[None]]


@dataclass
class TimeoutConfig:
    inactivity_window_s: float = 30 * 60
    warning_lead_s: float = 5 * 60


@dataclass(frozen=True)
class TimeoutInfo:
    time_until_warning: float
    time_until_expiry: float
    is_expired: bool
    needs_warning: bool


def compute_timeout_info(last_activity_at: float, now: float, config: TimeoutConfig) -> TimeoutInfo:
    """Derive both deadlines from the stored activity time alone."""
    time_until_expiry = config.inactivity_window_s - (now - last_activity_at)
    time_until_warning = time_until_expiry - config.warning_lead_s
    is_expired = activity_expired(last_activity_at, now, config.inactivity_window_s)
    return TimeoutInfo(
        time_until_warning=max(0.0, time_until_warning),
        time_until_expiry=max(0.0, time_until_expiry),
        is_expired=is_expired,
        needs_warning=not is_expired and time_until_expiry <= config.warning_lead_s,
    )


class TimeoutSupervisor:
    """
    Delivers inactivity warnings and expiry notices.

    ``get_timeout_info`` is the source of truth and only reads the stored
    activity time. Local asyncio timers (``schedule``) are a latency
    optimisation for a long-lived process; they die with the process.
    ``sweep`` does the same job from a periodic loop and is what keeps
    stateless or recycled instances correct.
    """

    def __init__(
        self,
        session_store,
        on_warning: TimeoutCallback,
        on_timeout: TimeoutCallback,
        config: Optional[TimeoutConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session_store = session_store
        self.on_warning = on_warning
        self.on_timeout = on_timeout
        self.config = config or TimeoutConfig()
        self._clock = clock
        self._warning_timers: Dict[int, asyncio.Task] = {}
        self._expiry_timers: Dict[int, asyncio.Task] = {}

    async def get_timeout_info(self, subject_id: int) -> Optional[TimeoutInfo]:
        session = await self.session_store.get_session(subject_id)
        if session is None:
            return None
        return compute_timeout_info(session.last_activity_at, self._clock(), self.config)

    def schedule(self, subject_id: int) -> None:
        """(Re)arm both timers for a subject, cancelling any pending ones."""
        self.cancel(subject_id)
        warning_delay = max(0.0, self.config.inactivity_window_s - self.config.warning_lead_s)
        self._warning_timers[subject_id] = asyncio.create_task(
            self._warning_after(subject_id, warning_delay)
        )
        self._expiry_timers[subject_id] = asyncio.create_task(
            self._expiry_after(subject_id, self.config.inactivity_window_s)
        )

    async def renew(self, subject_id: int) -> bool:
        """Bump activity in the store and reschedule the timers."""
        renewed = await self.session_store.renew(subject_id)
        if renewed:
            self.schedule(subject_id)
        return renewed

    def cancel(self, subject_id: int) -> None:
        for timers in (self._warning_timers, self._expiry_timers):
            task = timers.pop(subject_id, None)
            if task and not task.done() and task is not asyncio.current_task():
                task.cancel()

    async def _warning_after(self, subject_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._warning_timers.pop(subject_id, None)
        try:
            session = await self.session_store.get_session(subject_id)
            if session is None or session.warning_sent:
                return
            info = compute_timeout_info(session.last_activity_at, self._clock(), self.config)
            if info.needs_warning:
                await self._deliver_warning(subject_id)
        except Exception:  # pylint: disable=broad-except
            logger.exception(f"Error sending timeout warning to subject {subject_id}")

    async def _expiry_after(self, subject_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        self._expiry_timers.pop(subject_id, None)
        try:
            info = await self.get_timeout_info(subject_id)
            if info and info.is_expired:
                await self._expire(subject_id, self._clock())
        except Exception:  # pylint: disable=broad-except
            logger.exception(f"Error handling session timeout for subject {subject_id}")

    async def _deliver_warning(self, subject_id: int) -> None:
        await self.session_store.mark_warning_sent(subject_id)
        logger.info("session_timeout_warning", extra={"subject_id": subject_id})
        await self.on_warning(subject_id)

    async def _expire(self, subject_id: int, now: float) -> bool:
        # Another instance may have renewed the session since it was read.
        if not await self.session_store.expire_if_stale(subject_id, now):
            return False
        await self._notify_timeout(subject_id)
        return True

    async def _notify_timeout(self, subject_id: int) -> None:
        logger.info("session_timeout", extra={"subject_id": subject_id})
        await self.on_timeout(subject_id)

    async def sweep(self) -> Tuple[List[int], List[int]]:
        """
        One pass over every stored session.

        Returns the subjects warned and the subjects expired in this pass.
        """
        now = self._clock()
        warned: List[int] = []
        expired: List[int] = []
        async for session in self.session_store.iter_sessions():
            info = compute_timeout_info(session.last_activity_at, now, self.config)
            if info.is_expired:
                self.cancel(session.subject_id)
                if await self._expire(session.subject_id, now):
                    expired.append(session.subject_id)
            elif info.needs_warning and not session.warning_sent:
                await self._deliver_warning(session.subject_id)
                warned.append(session.subject_id)
        return warned, expired

    async def run_sweeps(self, interval_s: float, stop_event: asyncio.Event) -> None:
        """Sweep periodically until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                await self.sweep()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Timeout sweep failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                continue

    async def force_timeout(self, subject_id: int) -> None:
        self.cancel(subject_id)
        await self.session_store.clear(subject_id)
        await self._notify_timeout(subject_id)

    def active_timer_count(self) -> Dict[str, int]:
        return {
            "warnings": len(self._warning_timers),
            "sessions": len(self._expiry_timers),
        }

    def close(self) -> None:
        """Cancel every pending timer (shutdown)."""
        for subject_id in list(set(self._warning_timers) | set(self._expiry_timers)):
            self.cancel(subject_id)
