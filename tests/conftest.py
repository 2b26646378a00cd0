import fnmatch
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import pytest
from redis.exceptions import WatchError

from reviewbot.reviews.catalog import CourseCatalog
from reviewbot.reviews.models import Course


class DummyPipeline:
    """
    WATCH/MULTI/EXEC emulation.

    After ``watch`` commands run immediately; after ``multi`` they are queued
    until ``execute``, which fails with WatchError if a watched key was written
    in between.
    """

    def __init__(self, redis: "DummyRedis") -> None:
        self._redis = redis
        self._immediate = False
        self._watched: Dict[str, int] = {}
        self._queue: List[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.reset()

    async def watch(self, *keys: str) -> None:
        self._immediate = True
        self._watched = {key: self._redis.version(key) for key in keys}
        if self._redis.on_watch is not None:
            hook, self._redis.on_watch = self._redis.on_watch, None
            await hook(self._redis)

    def multi(self) -> None:
        self._immediate = False

    def _command(self, name: str, *args, **kwargs):
        if self._immediate:
            return getattr(self._redis, name)(*args, **kwargs)
        self._queue.append((name, args, kwargs))
        return self

    def get(self, *args, **kwargs):
        return self._command("get", *args, **kwargs)

    def set(self, *args, **kwargs):
        return self._command("set", *args, **kwargs)

    def delete(self, *args, **kwargs):
        return self._command("delete", *args, **kwargs)

    def sadd(self, *args, **kwargs):
        return self._command("sadd", *args, **kwargs)

    async def execute(self) -> List[Any]:
        changed = any(self._redis.version(k) != v for k, v in self._watched.items())
        queue = self._queue
        self.reset()
        if changed:
            raise WatchError("Watched variable changed.")
        return [await getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in queue]

    def reset(self) -> None:
        self._immediate = False
        self._watched = {}
        self._queue = []


class DummyRedis:
    """
    Minimal Redis replacement that supports the subset of commands used
    by the stores: strings with NX/EX, sets, SCAN and optimistic transactions.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._versions: Dict[str, int] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.fail_with: Optional[Exception] = None
        self.on_watch: Optional[Callable] = None
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with

    def version(self, key: str) -> int:
        return self._versions.get(key, 0)

    def _touch(self, key: str) -> None:
        self._versions[key] = self.version(key) + 1

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str):
        self._check()
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False):
        self._check()
        if nx and key in self._data:
            return None
        self._data[key] = value
        self.ttls[key] = ex
        self._touch(key)
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
            self._touch(key)
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        self._check()
        members_set: Set[str] = self._data.setdefault(key, set())
        before = len(members_set)
        members_set.update(members)
        self._touch(key)
        return len(members_set) - before

    async def smembers(self, key: str) -> Set[str]:
        self._check()
        return set(self._data.get(key, set()))

    async def scan_iter(self, match: str = "*"):
        self._check()
        for key in list(self._data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> DummyPipeline:
        return DummyPipeline(self)

    async def aclose(self) -> None:
        pass


class FakeClock:
    def __init__(self, start: float) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def dummy_redis() -> DummyRedis:
    return DummyRedis()


@pytest.fixture
def clock() -> FakeClock:
    # 2024-03-10 12:00:00 UTC
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc).timestamp())


@pytest.fixture
def catalog() -> CourseCatalog:
    return CourseCatalog(
        [
            Course(course_id="CSE101", category="CSE", name="Introduction to Programming"),
            Course(course_id="CSE201", category="CSE", name="Data Structures"),
            Course(course_id="MAA101", category="MAA", name="Calculus I"),
            Course(course_id="PHY_LAB_1", category="PHY", name="Physics Lab"),
        ]
    )
