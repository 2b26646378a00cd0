import json

import pytest

from reviewbot.conversation.states import ConversationState
from reviewbot.conversation.store import InMemorySessionStore, RedisSessionStore

WINDOW = 30 * 60


@pytest.fixture(params=["memory", "redis"])
def store(request, dummy_redis, clock):
    if request.param == "memory":
        return InMemorySessionStore(inactivity_window_s=WINDOW, clock=clock)
    return RedisSessionStore(inactivity_window_s=WINDOW, client=dummy_redis, clock=clock)


@pytest.mark.asyncio
async def test_set_and_get_state(store):
    assert await store.get_state(1) is None

    await store.set_state(1, ConversationState.BROWSING, {"category": "CSE"})
    snapshot = await store.get_state(1)

    assert snapshot.state is ConversationState.BROWSING
    assert snapshot.context == {"category": "CSE"}


@pytest.mark.asyncio
async def test_expired_session_reads_absent_and_is_not_resurrected(store, clock):
    await store.set_state(1, ConversationState.DRAFTING, {"course_id": "CSE101"})
    clock.advance(WINDOW + 1)

    assert await store.get_state(1) is None
    assert await store.get_session(1) is None

    await store.set_state(1, ConversationState.BROWSING)
    snapshot = await store.get_state(1)
    assert snapshot.state is ConversationState.BROWSING
    assert snapshot.context == {}


@pytest.mark.asyncio
async def test_session_at_window_edge_is_still_live(store, clock):
    await store.set_state(1, ConversationState.ROOT)
    clock.advance(WINDOW)
    assert await store.get_state(1) is not None


@pytest.mark.asyncio
async def test_expire_if_stale_only_removes_expired_records(store, clock):
    assert await store.expire_if_stale(1) is False

    await store.set_state(1, ConversationState.BROWSING)
    clock.advance(WINDOW)
    assert await store.expire_if_stale(1) is False
    assert await store.get_session(1) is not None

    clock.advance(1)
    assert await store.expire_if_stale(1) is True
    assert await store.get_session(1) is None


@pytest.mark.asyncio
async def test_redis_expire_if_stale_spares_a_session_replaced_concurrently(dummy_redis, clock):
    store = RedisSessionStore(inactivity_window_s=WINDOW, client=dummy_redis, clock=clock)
    await store.set_state(1, ConversationState.DRAFTING, {"step": "rating"})
    clock.advance(WINDOW + 60)

    async def fresh_start(redis):
        await store.set_state(1, ConversationState.ROOT)

    dummy_redis.on_watch = fresh_start

    assert await store.expire_if_stale(1) is False
    assert (await store.get_state(1)).state is ConversationState.ROOT


@pytest.mark.asyncio
async def test_renew_bumps_activity_and_clears_warning(store, clock):
    await store.set_state(1, ConversationState.BROWSING)
    await store.mark_warning_sent(1)
    clock.advance(WINDOW - 10)

    assert await store.renew(1) is True
    session = await store.get_session(1)
    assert session.last_activity_at == clock.now
    assert session.warning_sent is False

    clock.advance(WINDOW - 10)
    assert await store.get_state(1) is not None


@pytest.mark.asyncio
async def test_renew_absent_or_expired(store, clock):
    assert await store.renew(1) is False

    await store.set_state(1, ConversationState.ROOT)
    clock.advance(WINDOW + 5)
    assert await store.renew(1) is False
    assert await store.get_session(1) is None


@pytest.mark.asyncio
async def test_clear(store):
    await store.set_state(1, ConversationState.ROOT)
    await store.clear(1)
    assert await store.get_state(1) is None


@pytest.mark.asyncio
async def test_sweep_expired_removes_only_stale_sessions(store, clock):
    await store.set_state(1, ConversationState.ROOT)
    clock.advance(WINDOW - 60)
    await store.set_state(2, ConversationState.BROWSING)
    clock.advance(120)

    assert await store.sweep_expired() == 1
    assert await store.get_session(1) is None
    assert await store.get_session(2) is not None


@pytest.mark.asyncio
async def test_iter_sessions_includes_expired_records(store, clock):
    await store.set_state(1, ConversationState.ROOT)
    clock.advance(WINDOW + 1)
    await store.set_state(2, ConversationState.BROWSING)

    seen = {session.subject_id: session.state async for session in store.iter_sessions()}

    assert seen == {1: ConversationState.ROOT, 2: ConversationState.BROWSING}


@pytest.mark.asyncio
async def test_redis_record_layout_and_ttl(dummy_redis, clock):
    store = RedisSessionStore(inactivity_window_s=WINDOW, client=dummy_redis, clock=clock)
    await store.set_state(42, ConversationState.VIEWING_RECORD, {"course_id": "CSE101"})

    raw = json.loads(dummy_redis._data["session:42"])
    assert raw["state"] == "VIEWING_RECORD"
    assert raw["context"] == {"course_id": "CSE101"}
    assert dummy_redis.ttls["session:42"] == WINDOW + store.retention_grace_s


@pytest.mark.asyncio
async def test_redis_malformed_record_reads_absent(dummy_redis, clock):
    store = RedisSessionStore(inactivity_window_s=WINDOW, client=dummy_redis, clock=clock)
    dummy_redis._data["session:7"] = "{not json"
    assert await store.get_state(7) is None


@pytest.mark.asyncio
async def test_redis_store_requires_connection(clock):
    store = RedisSessionStore(clock=clock)
    with pytest.raises(RuntimeError):
        await store.get_state(1)
