"""Chunked, parallel log scanning over a bounded block range."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple

from .config import IndexerConfig
from .errors import LogRangeTooLargeError, TransientSourceError
from .models import RawLogRecord
from .util import _log, retry_async

Chunk = Tuple[int, int]


class LogSource(Protocol):
    async def get_logs(self, event_name: str, from_block: int, to_block: int) -> List[RawLogRecord]:
        ...


def split_range(from_block: int, to_block: int, max_chunk_size: int) -> List[Chunk]:
    if max_chunk_size < 1:
        raise ValueError("max_chunk_size must be >= 1")
    chunks: List[Chunk] = []
    current = from_block
    while current <= to_block:
        chunk_to = min(current + max_chunk_size - 1, to_block)
        chunks.append((current, chunk_to))
        current = chunk_to + 1
    return chunks


@dataclass
class FetchResult:
    records: List[RawLogRecord] = field(default_factory=list)
    omitted: List[Chunk] = field(default_factory=list)
    chunks: int = 0

    @property
    def complete(self) -> bool:
        return not self.omitted


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, (TransientSourceError, asyncio.TimeoutError, ConnectionError))


class ChunkedLogFetcher:
    def __init__(
        self,
        config: IndexerConfig,
        source: LogSource,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.source = source
        self.max_chunk_size = config.max_chunk_size
        self.parallelism = config.parallelism
        self.retry_attempts = config.retry_attempts
        self.retry_base_delay = config.retry_base_delay
        self.retry_max_delay = config.retry_max_delay
        self._sleep = sleep

    async def fetch(
        self,
        event_name: str,
        from_block: int,
        to_block: int,
        max_chunk_size: Optional[int] = None,
        parallelism: Optional[int] = None,
    ) -> FetchResult:
        chunk_size = max_chunk_size or self.max_chunk_size
        wave_size = parallelism or self.parallelism
        result = FetchResult()
        if from_block > to_block:
            return result
        chunks = split_range(from_block, to_block, chunk_size)
        result.chunks = len(chunks)

        for start in range(0, len(chunks), wave_size):
            wave = chunks[start:start + wave_size]
            outcomes = await asyncio.gather(*(self._fetch_chunk(event_name, chunk) for chunk in wave))
            for records, omitted in outcomes:
                result.records.extend(records)
                result.omitted.extend(omitted)

        if result.omitted:
            _log(
                f"WARN: {event_name} scan {from_block}-{to_block} incomplete, "
                f"{len(result.omitted)} chunk(s) omitted: {result.omitted}"
            )
        return result

    async def _fetch_chunk(self, event_name: str, chunk: Chunk) -> Tuple[List[RawLogRecord], List[Chunk]]:
        from_block, to_block = chunk

        async def attempt() -> List[RawLogRecord]:
            return await self.source.get_logs(event_name, from_block, to_block)

        try:
            records = await retry_async(
                attempt,
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                max_delay=self.retry_max_delay,
                retryable=_is_transient,
                label=f"get_logs {event_name} {from_block}-{to_block}",
                sleep=self._sleep,
            )
            return records, []
        except LogRangeTooLargeError:
            if from_block == to_block:
                _log(f"ERROR: {event_name} block {from_block} rejected as too large, omitting")
                return [], [chunk]
            mid = (from_block + to_block) // 2
            _log(f"WARN: get_logs too large ({from_block}-{to_block}), splitting at {mid}")
            left = await self._fetch_chunk(event_name, (from_block, mid))
            right = await self._fetch_chunk(event_name, (mid + 1, to_block))
            return left[0] + right[0], left[1] + right[1]
        except Exception as exc:
            if not _is_transient(exc):
                raise
            _log(f"ERROR: {event_name} chunk {from_block}-{to_block} omitted after {self.retry_attempts} attempts: {exc}")
            return [], [chunk]
