"""
Tests for the materialized leaderboard cache.
"""

import asyncio

import pytest

from league_indexer.cache import LAST_UPDATED_KEY, LEADERBOARD_KEY, LeaderboardCache, decode_snapshot
from league_indexer.leaderboard import build_leaderboard
from league_indexer.storage import MemoryKVStore
from tests.fakes import ALICE, BOB, stats


class FailingStore(MemoryKVStore):
    def __init__(self, fail_get=False, fail_set=False):
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set

    async def get(self, key):
        if self.fail_get:
            raise ConnectionError("kv unavailable")
        return await super().get(key)

    async def set(self, key, value):
        if self.fail_set:
            raise ConnectionError("kv unavailable")
        await super().set(key, value)


class Compute:
    """Leaderboard computation that blocks until released."""

    def __init__(self, blocking=False):
        self.calls = 0
        self.release = asyncio.Event()
        if not blocking:
            self.release.set()
        self.board = build_leaderboard([(ALICE, stats(ALICE, 2, 3)), (BOB, stats(BOB, 1, 3))])

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        return self.board


@pytest.fixture
def now():
    return [1_000_000.0]


@pytest.fixture
def clock(now):
    return lambda: now[0]


class TestLeaderboardCache:
    """Tests for get-or-refresh behavior."""

    @pytest.mark.asyncio
    async def test_empty_cache_returns_immediately(self, config, clock):
        """Readers get the empty snapshot at once while a refresh runs."""
        compute = Compute(blocking=True)
        cache = LeaderboardCache(config, MemoryKVStore(), compute, clock=clock)

        snapshot = await cache.get_leaderboard()

        assert snapshot.entries == ()
        assert snapshot.last_updated is None
        assert cache.refresh_task is not None
        assert not cache.refresh_task.done()

        compute.release.set()
        await cache.refresh_task
        assert len(cache.snapshot.entries) == 2

    @pytest.mark.asyncio
    async def test_fresh_snapshot_no_refresh(self, config, clock, now):
        compute = Compute()
        cache = LeaderboardCache(config, MemoryKVStore(), compute, clock=clock)
        await cache.regenerate()

        now[0] += config.stale_after - 1
        snapshot = await cache.get_leaderboard()

        assert len(snapshot.entries) == 2
        assert compute.calls == 1
        assert cache.refresh_task is None

    @pytest.mark.asyncio
    async def test_stale_snapshot_served_then_refreshed(self, config, clock, now):
        compute = Compute()
        cache = LeaderboardCache(config, MemoryKVStore(), compute, clock=clock)
        first = await cache.regenerate()

        now[0] += config.stale_after + 1
        compute.release.clear()
        served = await cache.get_leaderboard()

        assert served == first
        assert cache.is_stale(served)
        compute.release.set()
        await cache.refresh_task
        assert cache.snapshot.last_updated == now[0]

    @pytest.mark.asyncio
    async def test_single_flight_refresh(self, config, clock):
        """Concurrent stale reads start at most one regeneration."""
        compute = Compute(blocking=True)
        cache = LeaderboardCache(config, MemoryKVStore(), compute, clock=clock)

        await asyncio.gather(*(cache.get_leaderboard() for _ in range(5)))
        task = cache.refresh_task
        await asyncio.gather(*(cache.get_leaderboard() for _ in range(5)))

        assert cache.refresh_task is task
        compute.release.set()
        await task
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_not_fatal(self, config, clock):
        store = FailingStore(fail_set=True)
        cache = LeaderboardCache(config, store, Compute(), clock=clock)

        snapshot = await cache.regenerate()

        assert len(snapshot.entries) == 2
        assert cache.snapshot == snapshot
        assert await store.get(LEADERBOARD_KEY) is None

    @pytest.mark.asyncio
    async def test_read_failure_serves_memory(self, config, clock):
        store = FailingStore()
        cache = LeaderboardCache(config, store, Compute(), clock=clock)
        await cache.regenerate()
        store.fail_get = True

        snapshot = await cache.get_leaderboard()

        assert len(snapshot.entries) == 2

    @pytest.mark.asyncio
    async def test_snapshot_survives_restart(self, config, clock):
        store = MemoryKVStore()
        await LeaderboardCache(config, store, Compute(), clock=clock).regenerate()

        compute = Compute()
        cache = LeaderboardCache(config, store, compute, clock=clock)
        snapshot = await cache.get_leaderboard()

        assert [e.participant for e in snapshot.entries] == [ALICE, BOB]
        assert compute.calls == 0
        assert await store.get(LAST_UPDATED_KEY) == str(snapshot.last_updated)
        assert decode_snapshot(await store.get(LEADERBOARD_KEY)) == snapshot

    @pytest.mark.asyncio
    async def test_superseded_refresh_discarded(self, config, clock, now):
        """A slow older refresh never overwrites a newer published snapshot."""
        releases = [asyncio.Event(), asyncio.Event()]
        boards = [
            build_leaderboard([(ALICE, stats(ALICE, 1, 1))]),
            build_leaderboard([(BOB, stats(BOB, 1, 1))]),
        ]
        calls = []

        async def compute():
            i = len(calls)
            calls.append(i)
            await releases[i].wait()
            return boards[i]

        cache = LeaderboardCache(config, MemoryKVStore(), compute, clock=clock)
        older = asyncio.create_task(cache.regenerate())
        await asyncio.sleep(0)
        newer = asyncio.create_task(cache.regenerate())
        await asyncio.sleep(0)

        releases[1].set()
        await newer
        now[0] += 10
        releases[0].set()
        await older

        assert [e.participant for e in cache.snapshot.entries] == [BOB]

    @pytest.mark.asyncio
    async def test_regenerate_timeout(self, config, clock):
        compute = Compute(blocking=True)
        cache = LeaderboardCache(config, MemoryKVStore(), compute, clock=clock)

        with pytest.raises(asyncio.TimeoutError):
            await cache.regenerate(timeout=0.01)

        assert cache.snapshot.entries == ()

    @pytest.mark.asyncio
    async def test_page_and_rank(self, config, clock):
        cache = LeaderboardCache(config, MemoryKVStore(), Compute(), clock=clock)
        await cache.regenerate()

        page = await cache.get_page(1, 1)
        entry = await cache.get_rank(BOB)

        assert [e.participant for e in page.entries] == [ALICE]
        assert page.pages == 2
        assert entry.rank == 2

    @pytest.mark.asyncio
    async def test_clear(self, config, clock):
        store = MemoryKVStore()
        cache = LeaderboardCache(config, store, Compute(), clock=clock)
        await cache.regenerate()

        await cache.clear()

        assert cache.snapshot.entries == ()
        assert await store.get(LEADERBOARD_KEY) is None
