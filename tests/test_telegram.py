import json

import httpx
import pytest

from reviewbot.routing.events import EventKind
from reviewbot.routing.replies import Reply, ReplyKind
from reviewbot.transport.telegram import (
    TelegramClient,
    TelegramConfig,
    TelegramError,
    keyboard_markup,
    parse_update,
)


def _client(handler) -> TelegramClient:
    transport = httpx.MockTransport(handler)
    return TelegramClient(
        TelegramConfig(bot_token="123:abc", poll_timeout_s=0),
        client=httpx.AsyncClient(transport=transport),
    )


@pytest.mark.asyncio
async def test_send_reply_posts_text_and_inline_keyboard():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

    client = _client(handler)
    reply = Reply(ReplyKind.SUCCESS, "Pick one", [[("CSE", "category_CSE")]])

    result = await client.send_reply(42, reply)

    assert result == {"message_id": 1}
    assert requests[0].url.path == "/bot123:abc/sendMessage"
    body = json.loads(requests[0].content)
    assert body["chat_id"] == 42
    assert body["text"] == "Pick one"
    assert body["reply_markup"] == {
        "inline_keyboard": [[{"text": "CSE", "callback_data": "category_CSE"}]]
    }
    await client.close()


@pytest.mark.asyncio
async def test_api_rejection_raises_telegram_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "description": "Bad Request: chat not found"})

    client = _client(handler)
    with pytest.raises(TelegramError):
        await client.send_message(1, "hello")
    await client.close()


@pytest.mark.asyncio
async def test_http_error_status_is_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"ok": False})

    client = _client(handler)
    with pytest.raises(httpx.HTTPStatusError):
        await client.answer_callback_query("cb1")
    await client.close()


@pytest.mark.asyncio
async def test_connect_errors_are_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, json={"ok": True, "result": True})

    client = _client(handler)
    assert await client.answer_callback_query("cb1", text="done") is True
    assert len(attempts) == 3
    await client.close()


@pytest.mark.asyncio
async def test_get_updates_passes_offset():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": [{"update_id": 7}]})

    client = _client(handler)
    updates = await client.get_updates(offset=7)

    assert updates == [{"update_id": 7}]
    assert seen["offset"] == 7
    assert seen["allowed_updates"] == ["message", "callback_query"]
    await client.close()


def test_parse_command_text_and_callback_updates():
    command = parse_update(
        {"update_id": 1, "message": {"from": {"id": 5, "username": "asha"}, "chat": {"id": 5}, "text": "/start"}}
    )
    assert command.kind is EventKind.COMMAND
    assert command.command_token == "/start"
    assert command.username == "asha"

    text = parse_update({"update_id": 2, "message": {"from": {"id": 5}, "chat": {"id": 9}, "text": "hello"}})
    assert text.kind is EventKind.TEXT
    assert text.chat_id == 9

    callback = parse_update(
        {
            "update_id": 3,
            "callback_query": {
                "id": "cb-1",
                "from": {"id": 5},
                "message": {"chat": {"id": 5}},
                "data": "category_CSE",
            },
        }
    )
    assert callback.kind is EventKind.CALLBACK
    assert callback.callback_token == "category_CSE"
    assert callback.callback_query_id == "cb-1"


def test_unsupported_updates_are_ignored():
    assert parse_update({"update_id": 4, "message": {"from": {"id": 5}, "sticker": {}}}) is None
    assert parse_update({"update_id": 5, "edited_message": {"text": "x"}}) is None


def test_empty_keyboard_has_no_markup():
    assert keyboard_markup([]) is None
