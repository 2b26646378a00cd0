from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis

from reviewbot import redis_client
from reviewbot.config import BotConfig
from reviewbot.conversation.drafts import DraftEditor, InMemoryDraftStore, RedisDraftStore
from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import InMemorySessionStore, RedisSessionStore
from reviewbot.conversation.timeouts import TimeoutSupervisor
from reviewbot.errors import RateLimited, StoreUnavailable
from reviewbot.quota.gate import REASON_DAILY, QuotaGate
from reviewbot.quota.store import InMemoryQuotaStore, RedisQuotaStore
from reviewbot.reviews.catalog import CourseCatalog, load_catalog
from reviewbot.reviews.repository import InMemoryReviewRepository, RedisReviewRepository
from reviewbot.reviews.service import ReviewService
from reviewbot.routing.events import InboundEvent
from reviewbot.routing.replies import Reply, ReplyKind, error, main_menu_keyboard, notice
from reviewbot.routing.router import EventRouter

logger = logging.getLogger(__name__)

Notifier = Callable[[int, Reply], Awaitable[None]]


async def _no_notify(subject_id: int, reply: Reply) -> None:
    logger.debug(f"No notifier configured; dropping message for subject {subject_id}")


def rate_limited_reply(exc: RateLimited) -> Reply:
    if exc.reason == REASON_DAILY and exc.reset_time is not None:
        reset = exc.reset_time.strftime("%H:%M %Z")
        text = f"⏳ You've reached today's message limit. You can continue after {reset}."
    else:
        text = "⛔ You've reached the maximum number of messages for this account."
    return error(ReplyKind.RATE_LIMITED, text)


def unavailable_reply() -> Reply:
    return error(
        ReplyKind.UNAVAILABLE,
        "The service is temporarily unavailable. Please try again in a moment.",
    )


class ReviewBot:
    """
    Entry point for every inbound event.

    Quota check, then session renewal, then routing; the quota is only
    charged for events that got past the gate.
    """

    def __init__(
        self,
        sessions,
        quota: QuotaGate,
        router: EventRouter,
        drafts: DraftEditor,
        supervisor: Optional[TimeoutSupervisor] = None,
        notifier: Optional[Notifier] = None,
        local_timers: bool = False,
    ) -> None:
        self.sessions = sessions
        self.quota = quota
        self.router = router
        self.drafts = drafts
        self.supervisor = supervisor
        self.notifier = notifier or _no_notify
        self.local_timers = local_timers

    async def handle_event(self, event: InboundEvent) -> Reply:
        subject_id = event.subject_id
        try:
            await self.quota.require(subject_id)
        except RateLimited as e:
            logger.warning(
                "rate_limit_violation",
                extra={"subject_id": subject_id, "reason": e.reason},
            )
            return rate_limited_reply(e)
        except StoreUnavailable:
            return unavailable_reply()

        try:
            await self._touch(subject_id)
            reply = await self.router.dispatch(event)
            await self.quota.record_accepted(subject_id)
        except StoreUnavailable:
            return unavailable_reply()
        except Exception:  # pylint: disable=broad-except
            logger.exception(f"Unhandled error for subject {subject_id}")
            return unavailable_reply()
        return reply

    async def _touch(self, subject_id: int) -> None:
        if not await self.sessions.renew(subject_id):
            await self.sessions.set_state(subject_id, ConversationState.ROOT)
            logger.info("session_created", extra={"subject_id": subject_id})
        if self.supervisor is not None and self.local_timers:
            self.supervisor.schedule(subject_id)

    async def on_timeout_warning(self, subject_id: int) -> None:
        minutes = 5
        if self.supervisor is not None:
            minutes = int(self.supervisor.config.warning_lead_s // 60)
        await self.notifier(
            subject_id,
            notice(f"⏰ Your session will expire in {minutes} minutes due to inactivity."),
        )

    async def on_timeout(self, subject_id: int) -> None:
        await self.drafts.discard(subject_id)
        await self.notifier(
            subject_id,
            notice(
                "⌛ Your session has expired due to inactivity. Any unsaved review was discarded.",
                main_menu_keyboard(),
            ),
        )


def create_bot(
    config: BotConfig,
    notifier: Optional[Notifier] = None,
    client: Optional[redis.Redis] = None,
    catalog: Optional[CourseCatalog] = None,
    clock: Callable[[], float] = time.time,
) -> ReviewBot:
    """
    Wire every component from configuration.

    ``client`` is required for the redis backends; the caller owns it.
    """
    catalog = catalog if catalog is not None else load_catalog(config.course_catalog_path)

    if config.store_backend == "redis":
        if client is None:
            raise ValueError("A Redis client is required for the redis store backend")
        sessions = RedisSessionStore(
            redis_url=config.redis_url,
            inactivity_window_s=config.session_timeout_s,
            client=client,
            clock=clock,
        )
        quota_store = RedisQuotaStore(client)
        repository = RedisReviewRepository(client)
    else:
        sessions = InMemorySessionStore(inactivity_window_s=config.session_timeout_s, clock=clock)
        quota_store = InMemoryQuotaStore()
        repository = InMemoryReviewRepository()

    if config.draft_backend == "redis" and client is not None:
        draft_store = RedisDraftStore(client, ttl_seconds=config.draft_ttl_seconds)
    else:
        draft_store = InMemoryDraftStore()

    service = ReviewService(repository, catalog, clock=clock)
    drafts = DraftEditor(draft_store, service, clock=clock)
    router = EventRouter(sessions, drafts, service, catalog)
    quota = QuotaGate(quota_store, config.quota(), clock=clock)

    bot = ReviewBot(
        sessions=sessions,
        quota=quota,
        router=router,
        drafts=drafts,
        notifier=notifier,
        local_timers=config.local_timeout_timers,
    )
    bot.supervisor = TimeoutSupervisor(
        sessions,
        on_warning=bot.on_timeout_warning,
        on_timeout=bot.on_timeout,
        config=config.timeouts(),
        clock=clock,
    )
    logger.info(
        f"Review bot wired: store={config.store_backend}, drafts={type(draft_store).__name__}, "
        f"courses={len(catalog)}"
    )
    return bot


def connect_store(config: BotConfig) -> Optional[redis.Redis]:
    if config.store_backend != "redis" and config.draft_backend != "redis":
        return None
    return redis_client.connect(config.redis_url)
