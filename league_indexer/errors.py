"""Exception types raised and handled across the indexer."""

from typing import Optional, Tuple


class LeagueIndexerError(Exception):
    """Base exception for the league indexer."""
    pass


class ConfigError(LeagueIndexerError):
    pass


class TransientSourceError(LeagueIndexerError):
    """Network or provider hiccup; safe to retry."""
    pass


class LogRangeTooLargeError(LeagueIndexerError):
    """The log source refused a block span (too many results or span limit)."""

    def __init__(self, from_block: int, to_block: int, message: str = ""):
        super().__init__(message or f"log range {from_block}-{to_block} too large")
        self.from_block = from_block
        self.to_block = to_block


class MalformedRecordError(LeagueIndexerError):
    def __init__(self, event_name: str, reason: str):
        super().__init__(f"{event_name}: {reason}")
        self.event_name = event_name
        self.reason = reason


class MissingAggregateError(LeagueIndexerError):
    def __init__(self, participant: str, cause: Optional[BaseException] = None):
        super().__init__(f"no readable aggregate for {participant}: {cause}")
        self.participant = participant
        self.cause = cause


class CorruptionDetected(LeagueIndexerError):
    """An authoritative aggregate violates its invariants. Never auto-corrected."""

    def __init__(self, participant: str, detail: str):
        super().__init__(f"aggregate corruption for {participant}: {detail}")
        self.participant = participant
        self.detail = detail


class CachePersistenceError(LeagueIndexerError):
    pass


class RateLimitedError(LeagueIndexerError):
    def __init__(self, match_id: int, retry_after: Optional[float] = None):
        super().__init__(f"rate limited fetching match {match_id}")
        self.match_id = match_id
        self.retry_after = retry_after


class BatchWriteFailure(LeagueIndexerError):
    """The result-recording write failed or its outcome is unknown.

    The pairs stay pending in the ledger; resubmission is an operator decision.
    """

    def __init__(self, pairs: Tuple[Tuple[str, int], ...], cause: BaseException):
        super().__init__(f"batch write of {len(pairs)} results failed: {cause}")
        self.pairs = pairs
        self.cause = cause


class LedgerConflictError(LeagueIndexerError):
    def __init__(self, pairs: Tuple[Tuple[str, int], ...]):
        super().__init__(f"{len(pairs)} pairs already present in ledger")
        self.pairs = pairs
