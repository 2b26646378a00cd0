import argparse
import asyncio
import logging
import signal
from dataclasses import replace
from typing import Optional

import httpx

from review_bot import ReviewBot, connect_store, create_bot
from reviewbot.config import BotConfig
from reviewbot.routing.replies import Reply
from reviewbot.transport.telegram import TelegramClient, TelegramError, parse_update

logger = logging.getLogger(__name__)

POLL_ERROR_BACKOFF_S = 5.0


async def _handle_update(bot: ReviewBot, telegram: TelegramClient, update: dict) -> None:
    event = parse_update(update)
    if event is None:
        return
    reply = await bot.handle_event(event)
    if event.callback_query_id:
        try:
            await telegram.answer_callback_query(event.callback_query_id)
        except (httpx.HTTPError, TelegramError):
            logger.warning(f"Could not answer callback query {event.callback_query_id}")
    await telegram.send_reply(event.chat_id or event.subject_id, reply)


async def poll_updates(bot: ReviewBot, telegram: TelegramClient, stop_event: asyncio.Event) -> None:
    offset: Optional[int] = None
    stop_task = asyncio.create_task(stop_event.wait())
    try:
        while not stop_event.is_set():
            poll_task = asyncio.create_task(telegram.get_updates(offset=offset))
            done, _ = await asyncio.wait({poll_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if poll_task not in done:
                poll_task.cancel()
                break
            try:
                updates = poll_task.result()
            except (httpx.HTTPError, TelegramError) as e:
                logger.error(f"Polling failed: {e}")
                await asyncio.sleep(POLL_ERROR_BACKOFF_S)
                continue

            for update in updates:
                offset = int(update["update_id"]) + 1
                try:
                    await _handle_update(bot, telegram, update)
                except (httpx.HTTPError, TelegramError):
                    logger.exception(f"Failed to deliver reply for update {update.get('update_id')}")
    finally:
        stop_task.cancel()


async def run_bot(config: BotConfig) -> None:
    if not config.telegram_bot_token:
        raise SystemExit("TELEGRAM_BOT_TOKEN is not set")

    client = connect_store(config)
    if client is not None:
        await client.ping()
        logger.info(f"Connected to Redis at {config.redis_url}")

    telegram = TelegramClient(config.telegram())

    async def notify(subject_id: int, reply: Reply) -> None:
        try:
            await telegram.send_reply(subject_id, reply)
        except (httpx.HTTPError, TelegramError):
            logger.warning(f"Could not notify subject {subject_id}")

    bot = create_bot(config, notifier=notify, client=client)

    stop_event = asyncio.Event()

    def request_shutdown() -> None:
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            signal.signal(sig, lambda *_: request_shutdown())

    sweeper = asyncio.create_task(
        bot.supervisor.run_sweeps(config.sweep_interval_seconds, stop_event)
    )
    logger.info("Review bot running. Press Ctrl+C to stop.")
    try:
        await poll_updates(bot, telegram, stop_event)
    finally:
        stop_event.set()
        await sweeper
        bot.supervisor.close()
        await telegram.close()
        if client is not None:
            await client.aclose()
        logger.info("Review bot stopped.")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Course review Telegram bot")
    parser.add_argument(
        "--redis-url",
        default=None,
        help="Shared store URL (or REDIS_URL env var)",
    )
    parser.add_argument(
        "--store-backend",
        choices=("redis", "memory"),
        default=None,
        help="Session, quota and review storage (or STORE_BACKEND env var)",
    )
    parser.add_argument(
        "--draft-backend",
        choices=("memory", "redis"),
        default=None,
        help="Where in-progress reviews live (or DRAFT_BACKEND env var)",
    )
    parser.add_argument(
        "--catalog",
        default=None,
        help="Path to the course catalog JSON (or COURSE_CATALOG_PATH env var)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (or LOG_LEVEL env var)",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> BotConfig:
    config = BotConfig.from_env()
    overrides = {
        "redis_url": args.redis_url,
        "store_backend": args.store_backend,
        "draft_backend": args.draft_backend,
        "course_catalog_path": args.catalog,
        "log_level": args.log_level,
    }
    return replace(config, **{k: v for k, v in overrides.items() if v is not None})


def main() -> None:
    config = build_config(parse_args())
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_bot(config))


if __name__ == "__main__":
    main()
