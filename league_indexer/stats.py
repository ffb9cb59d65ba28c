"""Concurrent point reads of each participant's on-chain aggregate."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from .config import IndexerConfig
from .errors import MissingAggregateError, TransientSourceError
from .models import UserAggregateStats
from .util import _log, retry_async


class StatsSource(Protocol):
    async def get_user_stats(self, participant: str) -> UserAggregateStats:
        ...


@dataclass
class StatsReadResult:
    stats: Dict[str, UserAggregateStats] = field(default_factory=dict)
    missing: List[MissingAggregateError] = field(default_factory=list)

    @property
    def missing_participants(self) -> List[str]:
        return [err.participant for err in self.missing]


class AggregateStatsReader:
    def __init__(
        self,
        config: IndexerConfig,
        source: StatsSource,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.concurrency = config.stats_concurrency
        self.retry_attempts = config.retry_attempts
        self.retry_base_delay = config.retry_base_delay
        self.retry_max_delay = config.retry_max_delay
        self._sleep = sleep

    async def read_all(self, participants: Iterable[str], concurrency: Optional[int] = None) -> StatsReadResult:
        semaphore = asyncio.Semaphore(concurrency or self.concurrency)
        ordered = list(participants)

        async def read_one(participant: str) -> Tuple[str, Optional[UserAggregateStats], Optional[MissingAggregateError]]:
            async with semaphore:
                try:
                    stats = await self._read(participant)
                    return participant, stats, None
                except Exception as exc:
                    return participant, None, MissingAggregateError(participant, exc)

        result = StatsReadResult()
        for participant, stats, error in await asyncio.gather(*(read_one(p) for p in ordered)):
            if error is not None:
                result.missing.append(error)
            else:
                result.stats[participant] = stats
        if result.missing:
            _log(
                f"WARN: {len(result.missing)} of {len(ordered)} aggregate read(s) failed, "
                f"excluded: {result.missing_participants}"
            )
        return result

    async def _read(self, participant: str) -> UserAggregateStats:
        return await retry_async(
            lambda: self.source.get_user_stats(participant),
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            retryable=lambda exc: isinstance(exc, (TransientSourceError, asyncio.TimeoutError, ConnectionError)),
            label=f"getUserStats {participant}",
            sleep=self._sleep,
        )
