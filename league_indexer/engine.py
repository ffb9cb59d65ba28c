"""End-to-end pipeline: scan logs, read aggregates, rank or reconcile."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Protocol, Sequence, Tuple

from .config import IndexerConfig
from .events import MATCH_REGISTERED, PREDICTIONS_SUBMITTED, RESULT_RECORDED, EventIndex, normalize
from .fetcher import Chunk, ChunkedLogFetcher, LogSource
from .leaderboard import build_leaderboard
from .models import LeaderboardEntry
from .reconcile import ReconciliationReport, build_report
from .stats import AggregateStatsReader, StatsSource
from .util import _log

ALL_EVENTS = (PREDICTIONS_SUBMITTED, MATCH_REGISTERED, RESULT_RECORDED)


class ChainSource(LogSource, StatsSource, Protocol):
    async def block_number(self) -> int:
        ...


@dataclass
class Scan:
    index: EventIndex
    from_block: int
    to_block: int
    omitted: Dict[str, List[Chunk]] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.omitted


class LeaderboardEngine:
    def __init__(
        self,
        config: IndexerConfig,
        source: ChainSource,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.source = source
        self.fetcher = ChunkedLogFetcher(config, source, sleep=sleep)
        self.stats_reader = AggregateStatsReader(config, source, sleep=sleep)

    async def scan_range(self) -> Tuple[int, int]:
        latest = await self.source.block_number()
        if self.config.start_block is not None:
            return self.config.start_block, latest
        from_block = max(latest - self.config.fallback_window, 0)
        _log(
            f"WARN: start_block not configured, scanning only the last {self.config.fallback_window} "
            f"blocks ({from_block}-{latest}); older activity is not indexed"
        )
        return from_block, latest

    async def scan(self, events: Sequence[str] = ALL_EVENTS) -> Scan:
        from_block, to_block = await self.scan_range()
        _log(f"Scanning {', '.join(events)} over blocks {from_block}-{to_block}")
        records = []
        omitted: Dict[str, List[Chunk]] = {}
        for event_name in events:
            result = await self.fetcher.fetch(event_name, from_block, to_block)
            records.extend(result.records)
            if result.omitted:
                omitted[event_name] = result.omitted
        index = normalize(records)
        if index.malformed:
            _log(f"WARN: skipped {index.malformed_total} malformed record(s): {dict(index.malformed)}")
        _log(f"Found {len(index.participants)} participant(s), {len(index.per_match_participants)} match id(s)")
        return Scan(index=index, from_block=from_block, to_block=to_block, omitted=omitted)

    async def compute_leaderboard(self) -> List[LeaderboardEntry]:
        scan = await self.scan((PREDICTIONS_SUBMITTED,))
        read = await self.stats_reader.read_all(sorted(scan.index.participants))
        return build_leaderboard(read.stats.items())

    async def diagnose(self) -> ReconciliationReport:
        scan = await self.scan((PREDICTIONS_SUBMITTED, RESULT_RECORDED))
        read = await self.stats_reader.read_all(sorted(scan.index.participants))
        report = build_report(scan.index, read)
        report.omitted_chunks = scan.omitted
        return report
