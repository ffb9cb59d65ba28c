"""Diagnostic comparison of log-derived activity against on-chain aggregates.

Findings are reported, never corrected: the authoritative store is left as is.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import CorruptionDetected
from .events import EventIndex
from .models import ReconciliationStatus, UserAggregateStats
from .stats import StatsReadResult


@dataclass(frozen=True)
class Finding:
    participant: str
    status: ReconciliationStatus
    log_units: int
    stats: UserAggregateStats
    detail: str = ""


def impossible_reason(stats: UserAggregateStats) -> Optional[str]:
    if stats.correct_count > stats.total_count:
        if stats.total_count == 0:
            return f"correctCount={stats.correct_count} while totalCount=0"
        return f"correctCount={stats.correct_count} > totalCount={stats.total_count}"
    if stats.current_streak > stats.longest_streak:
        return f"currentStreak={stats.current_streak} > longestStreak={stats.longest_streak}"
    return None


def classify(participant: str, log_units: int, stats: UserAggregateStats) -> Finding:
    reason = impossible_reason(stats)
    if reason:
        return Finding(participant, ReconciliationStatus.IMPOSSIBLE, log_units, stats, reason)
    if log_units > 0 and stats.total_count == 0:
        return Finding(
            participant,
            ReconciliationStatus.ZERO_AGGREGATE,
            log_units,
            stats,
            f"{log_units} predicted unit(s) in logs, aggregate totalCount=0",
        )
    if log_units != stats.total_count:
        return Finding(
            participant,
            ReconciliationStatus.COUNT_MISMATCH,
            log_units,
            stats,
            f"{log_units} unit(s) in logs vs totalCount={stats.total_count}",
        )
    return Finding(participant, ReconciliationStatus.OK, log_units, stats)


@dataclass
class ReconciliationReport:
    findings: Dict[str, Finding] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)
    duplicate_recordings: Dict[str, Dict[int, int]] = field(default_factory=dict)
    malformed_records: int = 0
    omitted_chunks: Dict[str, List[Tuple[int, int]]] = field(default_factory=dict)

    def counts(self) -> Dict[str, int]:
        counts = Counter(finding.status.value for finding in self.findings.values())
        return {status.value: counts.get(status.value, 0) for status in ReconciliationStatus}

    def with_status(self, status: ReconciliationStatus) -> List[Finding]:
        return [f for f in self.findings.values() if f.status is status]

    def corruption(self) -> List[CorruptionDetected]:
        return [
            CorruptionDetected(f.participant, f.detail)
            for f in self.with_status(ReconciliationStatus.IMPOSSIBLE)
        ]

    def raise_on_corruption(self) -> None:
        found = self.corruption()
        if found:
            raise found[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                **self.counts(),
                "participants": len(self.findings) + len(self.missing),
                "missing_aggregate": len(self.missing),
                "duplicate_pairs": sum(len(v) for v in self.duplicate_recordings.values()),
                "malformed_records": self.malformed_records,
                "scan_complete": not self.omitted_chunks,
            },
            "findings": [
                {
                    "participant": f.participant,
                    "status": f.status.value,
                    "log_units": f.log_units,
                    "detail": f.detail,
                    "stats": f.stats,
                }
                for f in sorted(self.findings.values(), key=lambda f: f.participant)
            ],
            "corruption": [str(err) for err in self.corruption()],
            "missing": sorted(self.missing),
            "omitted_chunks": {name: [list(c) for c in chunks] for name, chunks in self.omitted_chunks.items()},
            "duplicate_recordings": {
                participant: {str(match_id): extra for match_id, extra in sorted(matches.items())}
                for participant, matches in sorted(self.duplicate_recordings.items())
            },
        }


def reconcile(
    per_participant_units: Mapping[str, Counter],
    stats: Mapping[str, UserAggregateStats],
) -> Dict[str, Finding]:
    findings: Dict[str, Finding] = {}
    for participant, aggregate in stats.items():
        units = sum(per_participant_units.get(participant, Counter()).values())
        findings[participant] = classify(participant, units, aggregate)
    return findings


def build_report(index: EventIndex, read: StatsReadResult) -> ReconciliationReport:
    return ReconciliationReport(
        findings=reconcile(index.per_participant_units, read.stats),
        missing=read.missing_participants,
        duplicate_recordings=index.duplicate_recordings(),
        malformed_records=index.malformed_total,
    )
