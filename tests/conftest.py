import json
from typing import Dict, List

import pytest
import redis.asyncio as redis

from backend.model import NormalizedResult, StudioContext
from backend.poller import ResultPoller
from backend.stores import AssetStore, JobStore
from backend.studio import StudioSession
from backend.utils import utc_now_iso

BASE_URL = "https://cdn.test"


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the stores."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.broken = False
        self.calls: List[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.broken:
            raise redis.ConnectionError("redis is down")

    async def set(self, key, value, nx=False):
        self._check("set")
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def get(self, key):
        self._check("get")
        return self.values.get(key)

    async def lpush(self, key, *values):
        self._check("lpush")
        items = self.lists.setdefault(key, [])
        for v in values:
            items.insert(0, v)
        return len(items)

    async def lrange(self, key, start, end):
        self._check("lrange")
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def ltrim(self, key, start, end):
        self._check("ltrim")
        items = self.lists.get(key, [])
        self.lists[key] = items[start:end + 1]
        return True

    async def hset(self, key, mapping=None):
        self._check("hset")
        self.hashes.setdefault(key, {}).update(mapping or {})
        return len(mapping or {})

    def push_asset(self, user_id, project_id, url, role, type_="image", created_at=None):
        record = {"url": url, "role": role, "type": type_, "created_at": created_at or utc_now_iso()}
        self.lists.setdefault(f"assets:{user_id}:{project_id}", []).insert(0, json.dumps(record))


class FakeDispatcher:
    def __init__(self, result=None, error=None):
        self.result = result if result is not None else NormalizedResult(accepted=True)
        self.error = error
        self.requests = []

    async def dispatch(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.result


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.delays: List[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep(len(self.delays))


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_factory(fake_redis):
    async def factory():
        return fake_redis

    return factory


@pytest.fixture
def make_session(fake_redis, redis_factory):
    """Build a StudioSession wired to in-memory collaborators."""

    def _make(dispatcher=None, sleep=None, user_id="user-1", project_id="proj-1", **kwargs):
        counter = iter(range(1, 10_000))
        assets = AssetStore(user_id, project_id, client_factory=redis_factory)
        poller = ResultPoller(assets, asset_base_url=BASE_URL, sleep=sleep or RecordingSleep())

        async def measure(url):
            return None

        return StudioSession(
            StudioContext(user_id=user_id, project_id=project_id),
            dispatcher=dispatcher or FakeDispatcher(),
            jobs=JobStore(client_factory=redis_factory),
            assets=assets,
            poller=poller,
            job_id_factory=lambda: f"job_{next(counter):012x}",
            measure_source=measure,
            **kwargs,
        )

    return _make
