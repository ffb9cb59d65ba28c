"""Event indexing and leaderboard engine for an on-chain prediction league."""

from .cache import LeaderboardCache
from .config import IndexerConfig, load_config
from .engine import LeaderboardEngine
from .guard import DuplicateWriteGuard, submit_batch

__version__ = "0.1.0"

__all__ = [
    "DuplicateWriteGuard",
    "IndexerConfig",
    "LeaderboardCache",
    "LeaderboardEngine",
    "load_config",
    "submit_batch",
]
