"""Telegram Bot API client over httpx."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from reviewbot.routing.events import EventKind, InboundEvent
from reviewbot.routing.replies import Keyboard, Reply

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


class TelegramError(Exception):
    """The Bot API answered with ``ok: false``."""


@dataclass
class TelegramConfig:
    bot_token: str
    api_base: str = "https://api.telegram.org"
    poll_timeout_s: int = 30
    request_timeout_s: float = 10.0


def keyboard_markup(buttons: Keyboard) -> Optional[Dict[str, Any]]:
    if not buttons:
        return None
    return {
        "inline_keyboard": [
            [{"text": label, "callback_data": token} for label, token in row] for row in buttons
        ]
    }


def parse_update(update: Dict[str, Any]) -> Optional[InboundEvent]:
    """
    Map a raw update to an inbound event.

    Returns None for updates the bot does not handle (edits, stickers,
    channel posts).
    """
    callback = update.get("callback_query")
    if callback:
        sender = callback.get("from") or {}
        message = callback.get("message") or {}
        return InboundEvent(
            subject_id=int(sender["id"]),
            kind=EventKind.CALLBACK,
            callback_token=callback.get("data") or "",
            chat_id=(message.get("chat") or {}).get("id"),
            callback_query_id=callback.get("id"),
            username=sender.get("username"),
        )

    message = update.get("message")
    if not message or "text" not in message or "from" not in message:
        return None
    sender = message["from"]
    text = message["text"]
    chat_id = (message.get("chat") or {}).get("id")
    if text.startswith("/"):
        return InboundEvent(
            subject_id=int(sender["id"]),
            kind=EventKind.COMMAND,
            command_token=text,
            chat_id=chat_id,
            username=sender.get("username"),
        )
    return InboundEvent(
        subject_id=int(sender["id"]),
        kind=EventKind.TEXT,
        text=text,
        chat_id=chat_id,
        username=sender.get("username"),
    )


class TelegramClient:
    """
    Minimal Bot API client: long polling, messages and callback answers.

    Connection errors and timeouts are retried with backoff; an ``ok: false``
    answer raises TelegramError straight away.
    """

    def __init__(self, config: TelegramConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client or httpx.AsyncClient(
            timeout=config.request_timeout_s + config.poll_timeout_s
        )

    @property
    def _base_url(self) -> str:
        return f"{self.config.api_base}/bot{self.config.bot_token}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        reraise=True,
    )
    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        try:
            response = await self._client.post(f"{self._base_url}/{method}", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Telegram API error on {method}: {e.response.status_code}")
            raise
        data = response.json()
        if not data.get("ok"):
            description = data.get("description", "unknown error")
            logger.error(f"Telegram API rejected {method}: {description}")
            raise TelegramError(description)
        return data.get("result")

    async def send_message(
        self, chat_id: int, text: str, buttons: Optional[Keyboard] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text[:MAX_MESSAGE_LENGTH]}
        markup = keyboard_markup(buttons or [])
        if markup:
            payload["reply_markup"] = markup
        return await self._call("sendMessage", payload)

    async def send_reply(self, chat_id: int, reply: Reply) -> Dict[str, Any]:
        return await self.send_message(chat_id, reply.text, reply.buttons)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> bool:
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        return bool(await self._call("answerCallbackQuery", payload))

    async def get_updates(self, offset: Optional[int] = None, timeout: Optional[int] = None) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "timeout": self.config.poll_timeout_s if timeout is None else timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return list(await self._call("getUpdates", payload) or [])

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
