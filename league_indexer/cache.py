"""Materialized leaderboard: get-or-refresh over a key-value store.

Readers always get the last published snapshot immediately. A stale snapshot
schedules one background regeneration; readers never wait on it.
"""

import asyncio
import json
import time
from dataclasses import asdict
from typing import Awaitable, Callable, List, Optional

from .config import IndexerConfig
from .errors import CachePersistenceError
from .leaderboard import LeaderboardPage, find_entry, paginate
from .models import CachedLeaderboard, LeaderboardEntry
from .storage import KVStore
from .util import _json_dumps, _log

LEADERBOARD_KEY = "leaderboard:all"
LAST_UPDATED_KEY = "leaderboard:lastUpdated"


def encode_snapshot(snapshot: CachedLeaderboard) -> str:
    return _json_dumps(
        {
            "entries": [asdict(entry) for entry in snapshot.entries],
            "lastUpdated": snapshot.last_updated,
        }
    )


def decode_snapshot(blob: str) -> CachedLeaderboard:
    data = json.loads(blob)
    entries = tuple(LeaderboardEntry(**item) for item in data.get("entries", []))
    last_updated = data.get("lastUpdated")
    return CachedLeaderboard(entries=entries, last_updated=float(last_updated) if last_updated is not None else None)


class LeaderboardCache:
    def __init__(
        self,
        config: IndexerConfig,
        store: KVStore,
        compute: Callable[[], Awaitable[List[LeaderboardEntry]]],
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.compute = compute
        self.stale_after = config.stale_after
        self.timeout = config.regenerate_timeout
        self.page_size = config.page_size
        self._clock = clock
        self._snapshot = CachedLeaderboard.empty()
        self._generation = 0
        self._published_generation = 0
        self.refresh_task: Optional["asyncio.Task[None]"] = None

    @property
    def snapshot(self) -> CachedLeaderboard:
        return self._snapshot

    def is_stale(self, snapshot: CachedLeaderboard) -> bool:
        if snapshot.last_updated is None:
            return True
        return self._clock() - snapshot.last_updated > self.stale_after

    async def get_leaderboard(self) -> CachedLeaderboard:
        snapshot = await self._load()
        if self.is_stale(snapshot):
            self.trigger_refresh()
        return snapshot

    async def get_page(self, page: int = 1, page_size: Optional[int] = None) -> LeaderboardPage:
        snapshot = await self.get_leaderboard()
        return paginate(snapshot.entries, page, page_size or self.page_size)

    async def get_rank(self, participant: str) -> Optional[LeaderboardEntry]:
        snapshot = await self.get_leaderboard()
        return find_entry(snapshot.entries, participant)

    def trigger_refresh(self) -> "asyncio.Task[None]":
        if self.refresh_task is not None and not self.refresh_task.done():
            return self.refresh_task
        _log("Leaderboard snapshot is stale, scheduling background refresh")
        self.refresh_task = asyncio.create_task(self._background_regenerate())
        return self.refresh_task

    async def _background_regenerate(self) -> None:
        try:
            await self.regenerate()
        except Exception as exc:
            _log(f"ERROR: background leaderboard refresh failed: {exc!r}")

    async def regenerate(self, timeout: Optional[float] = None) -> CachedLeaderboard:
        """Recompute the leaderboard and publish it unless a newer run already did."""
        self._generation += 1
        generation = self._generation
        budget = timeout if timeout is not None else self.timeout
        if budget:
            entries = await asyncio.wait_for(self.compute(), budget)
        else:
            entries = await self.compute()
        snapshot = CachedLeaderboard(entries=tuple(entries), last_updated=self._clock())

        if generation < self._published_generation:
            _log(f"WARN: discarding leaderboard from superseded refresh #{generation}")
            return snapshot
        self._snapshot = snapshot
        self._published_generation = generation
        try:
            await self._persist(snapshot)
        except CachePersistenceError as exc:
            _log(f"WARN: {exc}; serving unpersisted snapshot")
        _log(f"Leaderboard regenerated with {len(snapshot.entries)} entries")
        return snapshot

    async def clear(self) -> None:
        self._snapshot = CachedLeaderboard.empty()
        try:
            await self.store.delete(LEADERBOARD_KEY)
            await self.store.delete(LAST_UPDATED_KEY)
        except Exception as exc:
            raise CachePersistenceError(f"leaderboard cache delete failed: {exc}") from exc

    async def _persist(self, snapshot: CachedLeaderboard) -> None:
        try:
            await self.store.set(LEADERBOARD_KEY, encode_snapshot(snapshot))
            await self.store.set(LAST_UPDATED_KEY, str(snapshot.last_updated))
        except Exception as exc:
            raise CachePersistenceError(f"leaderboard cache write failed: {exc}") from exc

    async def _load(self) -> CachedLeaderboard:
        try:
            blob = await self.store.get(LEADERBOARD_KEY)
        except Exception as exc:
            _log(f"WARN: leaderboard cache read failed: {exc}")
            return self._snapshot
        if not blob:
            return self._snapshot
        try:
            stored = decode_snapshot(blob)
        except (ValueError, TypeError, KeyError) as exc:
            _log(f"WARN: unreadable leaderboard cache blob: {exc}")
            return self._snapshot
        current = self._snapshot
        if current.last_updated is None or (
            stored.last_updated is not None and stored.last_updated > current.last_updated
        ):
            self._snapshot = stored
            return stored
        return current
