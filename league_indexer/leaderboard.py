"""Ranking, pagination and rank lookup over aggregate stats."""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import LeaderboardEntry, UserAggregateStats


def accuracy_percent(correct_count: int, total_count: int) -> int:
    """``round(correct * 100 / total)`` with halves rounded up, in integer math.

    Values above 100 are possible for corrupted aggregates and are kept as-is.
    """
    if total_count <= 0:
        return 0
    return (correct_count * 200 + total_count) // (total_count * 2)


def _sort_key(item: Tuple[str, UserAggregateStats, int]) -> Tuple[int, int, int, str]:
    participant, stats, accuracy = item
    return (-accuracy, -stats.total_count, -stats.current_streak, participant)


def build_leaderboard(rows: Iterable[Tuple[str, UserAggregateStats]]) -> List[LeaderboardEntry]:
    """Rank participants by accuracy, then total count, then current streak.

    Rows with ``total_count == 0`` do not qualify. Participant address is the
    final key, so equal rows still produce one fixed order.
    """
    qualifying = [
        (participant, stats, accuracy_percent(stats.correct_count, stats.total_count))
        for participant, stats in rows
        if stats.total_count > 0
    ]
    qualifying.sort(key=_sort_key)
    return [
        LeaderboardEntry(
            rank=position + 1,
            participant=participant,
            accuracy_percent=accuracy,
            total_count=stats.total_count,
            correct_count=stats.correct_count,
            current_streak=stats.current_streak,
            longest_streak=stats.longest_streak,
        )
        for position, (participant, stats, accuracy) in enumerate(qualifying)
    ]


@dataclass(frozen=True)
class LeaderboardPage:
    entries: Tuple[LeaderboardEntry, ...]
    page: int
    page_size: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))


def paginate(entries: Sequence[LeaderboardEntry], page: int = 1, page_size: int = 65) -> LeaderboardPage:
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    start = (page - 1) * page_size
    return LeaderboardPage(
        entries=tuple(entries[start:start + page_size]),
        page=page,
        page_size=page_size,
        total=len(entries),
    )


def find_entry(entries: Sequence[LeaderboardEntry], participant: str) -> Optional[LeaderboardEntry]:
    wanted = participant.strip().lower()
    for entry in entries:
        if entry.participant.lower() == wanted:
            return entry
    return None
