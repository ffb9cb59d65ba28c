"""Domain records shared by the pipeline stages."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class RawLogRecord:
    event_name: str
    block_number: int
    args: Dict[str, Any]
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None


@dataclass(frozen=True)
class PredictionEvent:
    participant: str
    match_ids: Tuple[int, ...]
    unit_count: int
    free_units_used: int
    fee_paid: int
    block_number: int


@dataclass(frozen=True)
class MatchRegisteredEvent:
    match_id: int
    start_time: int
    block_number: int


@dataclass(frozen=True)
class ResultRecordedEvent:
    participant: str
    match_id: int
    correct: bool
    block_number: int


@dataclass(frozen=True)
class MatchRecord:
    match_id: int
    start_time: int
    home_score: int
    away_score: int
    is_recorded: bool
    exists: bool


@dataclass(frozen=True)
class UserAggregateStats:
    participant: str
    correct_count: int
    total_count: int
    current_streak: int
    longest_streak: int
    free_units_used: int
    last_prediction_time: int = 0
    total_fees_paid: int = 0


class Outcome(IntEnum):
    HOME_WIN = 1
    DRAW = 2
    AWAY_WIN = 3

    @classmethod
    def from_score(cls, home_score: int, away_score: int) -> "Outcome":
        if home_score > away_score:
            return cls.HOME_WIN
        if home_score < away_score:
            return cls.AWAY_WIN
        return cls.DRAW


@dataclass(frozen=True)
class StoredPrediction:
    outcome: Optional[Outcome]
    timestamp: int
    is_processed: bool = False


@dataclass(frozen=True)
class FinalScore:
    home_score: int
    away_score: int
    status: str

    @property
    def outcome(self) -> Outcome:
        return Outcome.from_score(self.home_score, self.away_score)


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    participant: str
    accuracy_percent: int
    total_count: int
    correct_count: int
    current_streak: int
    longest_streak: int


@dataclass(frozen=True)
class CachedLeaderboard:
    entries: Tuple[LeaderboardEntry, ...]
    last_updated: Optional[float]

    @classmethod
    def empty(cls) -> "CachedLeaderboard":
        return cls(entries=(), last_updated=None)


class ReconciliationStatus(str, Enum):
    OK = "ok"
    ZERO_AGGREGATE = "zero-aggregate-despite-activity"
    COUNT_MISMATCH = "count-mismatch"
    IMPOSSIBLE = "impossible"


@dataclass(frozen=True)
class ResultEntry:
    participant: str
    match_id: int
    is_correct: bool

    @property
    def pair(self) -> Tuple[str, int]:
        return (self.participant, self.match_id)


@dataclass
class ResultBatch:
    entries: List[ResultEntry] = field(default_factory=list)
    matches: Dict[int, FinalScore] = field(default_factory=dict)
    skipped_matches: Dict[int, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def pairs(self) -> Tuple[Tuple[str, int], ...]:
        return tuple(entry.pair for entry in self.entries)

    def as_call_args(self) -> Tuple[List[str], List[int], List[bool]]:
        """Parallel arrays in the order the batch write endpoint takes them."""
        return (
            [entry.participant for entry in self.entries],
            [entry.match_id for entry in self.entries],
            [entry.is_correct for entry in self.entries],
        )
