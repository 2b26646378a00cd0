"""
JSON helpers over the shared Redis store.

Every store in the engine keeps one JSON document per key. Reads and blind
writes go through ``get_json``/``set_json``; read-modify-write goes through
``update_json`` which uses WATCH/MULTI so two instances updating the same key
never both win. Connection and timeout errors are retried with bounded
exponential backoff and surface as ``StoreUnavailable`` once exhausted.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError
from tenacity import (
    RetryCallState,
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from reviewbot.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Mutator = Callable[[Optional[Any]], Optional[Any]]


def _raise_unavailable(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.error(f"Shared store unavailable after {retry_state.attempt_number} attempts: {exc}")
    raise StoreUnavailable("Shared store temporarily unavailable") from exc


store_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    retry_error_callback=_raise_unavailable,
)


def connect(redis_url: str) -> redis.Redis:
    """Build a client; callers own it and must close it."""
    return redis.from_url(redis_url, decode_responses=True)


@store_retry
async def get_json(client: redis.Redis, key: str) -> Optional[Any]:
    """
    Load a JSON value.

    Returns None on missing key or malformed payload.
    """
    raw = await client.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding malformed JSON under {key}")
        return None


@store_retry
async def set_json(
    client: redis.Redis, key: str, value: Any, *, ttl_seconds: Optional[int] = None
) -> None:
    data = json.dumps(value, ensure_ascii=False)
    if ttl_seconds is not None:
        await client.set(key, data, ex=ttl_seconds)
    else:
        await client.set(key, data)


@store_retry
async def create_json(
    client: redis.Redis, key: str, value: Any, *, ttl_seconds: Optional[int] = None
) -> bool:
    """Write only if the key does not exist yet. Returns True when written."""
    data = json.dumps(value, ensure_ascii=False)
    created = await client.set(key, data, ex=ttl_seconds, nx=True)
    return bool(created)


@store_retry
async def delete_key(client: redis.Redis, key: str) -> None:
    await client.delete(key)


@store_retry
async def update_json(
    client: redis.Redis,
    key: str,
    mutate: Mutator,
    *,
    ttl_seconds: Optional[int] = None,
) -> Optional[Any]:
    """
    Conditionally rewrite one key.

    ``mutate`` receives the current value (or None) and returns the new value,
    or None to delete the key. It may run more than once if another writer
    touches the key concurrently, so it must not have side effects.
    """
    async with client.pipeline(transaction=True) as pipe:
        while True:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                current = json.loads(raw) if raw is not None else None
                updated = mutate(current)
                pipe.multi()
                if updated is None:
                    pipe.delete(key)
                elif ttl_seconds is not None:
                    pipe.set(key, json.dumps(updated, ensure_ascii=False), ex=ttl_seconds)
                else:
                    pipe.set(key, json.dumps(updated, ensure_ascii=False))
                await pipe.execute()
                return updated
            except WatchError:
                logger.debug(f"Concurrent write on {key}, retrying")
                continue


async def scan_json(client: redis.Redis, pattern: str) -> AsyncIterator[Tuple[str, Any]]:
    """Iterate over (key, value) pairs matching a glob pattern."""
    async for key in client.scan_iter(match=pattern):
        value = await get_json(client, key)
        if value is not None:
            yield key, value
