"""Duplicate-free result batches for the non-idempotent batch write.

``batchRecordResults`` increments a user's aggregate every time it sees a
pair, so each (participant, matchId) pair must reach it at most once. The
already-recorded set is the idempotency ledger, unioned with ``ResultRecorded``
confirmations found in the logs.
"""

import asyncio
import time
import uuid
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from .config import IndexerConfig
from .errors import BatchWriteFailure, RateLimitedError, TransientSourceError
from .events import RESULT_RECORDED, EventIndex
from .models import FinalScore, MatchRecord, ResultBatch, ResultEntry, StoredPrediction
from .storage import IdempotencyLedger, Pair
from .util import _log

BatchWriter = Callable[[List[str], List[int], List[bool]], Awaitable[Optional[str]]]


class MatchSource(Protocol):
    async def get_match(self, match_id: int) -> MatchRecord:
        ...

    async def get_user_prediction(self, participant: str, match_id: int) -> StoredPrediction:
        ...


class ScoreSource(Protocol):
    async def get_final_score(self, match_id: int) -> Optional[FinalScore]:
        ...


class MatchState(str, Enum):
    MISSING = "missing"
    SCHEDULED = "scheduled"
    AWAITING_FINALITY = "awaiting-finality"
    RESULT_UNKNOWN = "finality-reached-result-unknown"
    RESULT_KNOWN_UNRECORDED = "result-known-unrecorded"
    RECORDED = "recorded"


SCAN_INCOMPLETE = "scan-incomplete"


def match_state(
    match: MatchRecord,
    now: float,
    finality_buffer: int,
    score: Optional[FinalScore] = None,
) -> MatchState:
    if not match.exists:
        return MatchState.MISSING
    if match.is_recorded:
        return MatchState.RECORDED
    if now < match.start_time:
        return MatchState.SCHEDULED
    if now < match.start_time + finality_buffer:
        return MatchState.AWAITING_FINALITY
    if score is None:
        return MatchState.RESULT_UNKNOWN
    return MatchState.RESULT_KNOWN_UNRECORDED


def select_pairs(
    eligible_match_ids: Iterable[int],
    per_match_participants: Mapping[int, Set[str]],
    recorded: Set[Pair],
) -> List[Pair]:
    """Every (participant, match) pair over eligible matches not already recorded."""
    pairs: List[Pair] = []
    for match_id in sorted(set(eligible_match_ids)):
        for participant in sorted(per_match_participants.get(match_id, ())):
            if (participant, match_id) not in recorded:
                pairs.append((participant, match_id))
    return pairs


class DuplicateWriteGuard:
    def __init__(
        self,
        config: IndexerConfig,
        contract: MatchSource,
        scores: ScoreSource,
        ledger: IdempotencyLedger,
        clock: Callable[[], float] = time.time,
    ):
        self.contract = contract
        self.scores = scores
        self.ledger = ledger
        self.finality_buffer = config.finality_buffer
        self.use_log_confirmations = config.use_log_confirmations
        self.concurrency = config.stats_concurrency
        self._clock = clock

    async def already_recorded(self, index: EventIndex) -> Set[Pair]:
        recorded = await self.ledger.recorded_pairs()
        if self.use_log_confirmations:
            recorded |= set(index.recorded_pairs)
        return recorded

    async def eligible_matches(self, index: EventIndex) -> Tuple[Dict[int, FinalScore], Dict[int, str]]:
        """Matches in the ``result-known-unrecorded`` state, plus why others were skipped."""
        eligible: Dict[int, FinalScore] = {}
        skipped: Dict[int, str] = {}
        now = self._clock()

        for match_id in sorted(index.per_match_participants):
            # MatchRegistered start times are immutable; no point read needed before finality.
            start_time = index.match_start_times.get(match_id)
            if start_time is not None and now < start_time + self.finality_buffer:
                state = MatchState.SCHEDULED if now < start_time else MatchState.AWAITING_FINALITY
                skipped[match_id] = state.value
                continue
            try:
                match = await self.contract.get_match(match_id)
            except TransientSourceError as exc:
                skipped[match_id] = f"getMatch failed: {exc}"
                continue
            state = match_state(match, now, self.finality_buffer)
            if state is not MatchState.RESULT_UNKNOWN:
                skipped[match_id] = state.value
                continue
            try:
                score = await self.scores.get_final_score(match_id)
            except RateLimitedError:
                skipped[match_id] = "rate-limited"
                _log(f"WARN: match {match_id} rate limited, deferring to next run")
                continue
            except TransientSourceError as exc:
                skipped[match_id] = f"score lookup failed: {exc}"
                continue
            state = match_state(match, now, self.finality_buffer, score)
            if state is MatchState.RESULT_KNOWN_UNRECORDED:
                eligible[match_id] = score
            else:
                skipped[match_id] = state.value
        return eligible, skipped

    async def plan_batch(
        self,
        index: EventIndex,
        omitted: Optional[Mapping[str, Sequence[Tuple[int, int]]]] = None,
    ) -> ResultBatch:
        """Duplicate-free batch for every eligible match.

        With log confirmations on, a gap in the ResultRecorded scan may hide a
        recorded pair, so nothing is planned until a complete scan is available.
        """
        gaps = (omitted or {}).get(RESULT_RECORDED)
        if self.use_log_confirmations and gaps:
            _log(f"WARN: ResultRecorded scan omitted {len(gaps)} chunk(s) {list(gaps)}; planning nothing this run")
            return ResultBatch(skipped_matches={m: SCAN_INCOMPLETE for m in sorted(index.per_match_participants)})
        recorded = await self.already_recorded(index)
        eligible, skipped = await self.eligible_matches(index)
        batch = ResultBatch(matches=eligible, skipped_matches=skipped)
        pairs = select_pairs(eligible, index.per_match_participants, recorded)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def check(pair: Pair) -> Optional[ResultEntry]:
            participant, match_id = pair
            async with semaphore:
                try:
                    prediction = await self.contract.get_user_prediction(participant, match_id)
                except TransientSourceError as exc:
                    _log(f"WARN: prediction read {participant}/{match_id} failed, leaving for next run: {exc}")
                    return None
            if prediction.outcome is None:
                return None
            if prediction.is_processed:
                _log(f"WARN: {participant}/{match_id} already processed on-chain but not in ledger or logs")
                return None
            return ResultEntry(participant, match_id, prediction.outcome == eligible[match_id].outcome)

        for entry in await asyncio.gather(*(check(pair) for pair in pairs)):
            if entry is not None:
                batch.entries.append(entry)
        _log(
            f"Planned {len(batch)} result(s) over {len(eligible)} match(es); "
            f"{len(recorded)} pair(s) already recorded, {len(skipped)} match(es) skipped"
        )
        return batch


async def submit_batch(
    batch: ResultBatch,
    writer: BatchWriter,
    ledger: IdempotencyLedger,
    batch_id: Optional[str] = None,
) -> Optional[str]:
    """Reserve the batch in the ledger, then hand it to the write path once.

    Failures are not retried here: an ambiguous failure may have been applied.
    """
    if not batch.entries:
        return None
    batch_id = batch_id or uuid.uuid4().hex
    pairs = batch.pairs()
    await ledger.reserve(pairs, batch_id)
    users, match_ids, corrects = batch.as_call_args()
    try:
        tx_hash = await writer(users, match_ids, corrects)
    except Exception as exc:
        _log(f"ERROR: batch {batch_id} write failed, {len(pairs)} pair(s) left pending: {exc}")
        raise BatchWriteFailure(pairs, exc) from exc
    await ledger.confirm(pairs, tx_hash)
    _log(f"Batch {batch_id} submitted: {len(pairs)} result(s), tx {tx_hash}")
    return tx_hash
