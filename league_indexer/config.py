"""Indexer configuration.

Loaded from a JSON file (see ``load_config``); secrets may instead come from
the environment. One ``IndexerConfig`` instance is passed to every component.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from .errors import ConfigError
from .util import _load_json

ENV_FALLBACKS = {
    "rpc_http": ("RPC_HTTP",),
    "sports_api_key": ("SPORTS_API_KEY", "FOOTBALL_DATA_API_KEY"),
}


@dataclass
class IndexerConfig:
    contract_address: str
    rpc_http: Optional[str] = None
    abi: Optional[str] = None

    # log scanning
    start_block: Optional[int] = None
    fallback_window: int = 1_000_000
    max_chunk_size: int = 10_000
    parallelism: int = 4
    retry_attempts: int = 4
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # aggregate reads
    stats_concurrency: int = 8

    # leaderboard cache
    db_path: Optional[str] = "./leaderboard.db"
    stale_after: float = 3600.0
    regenerate_timeout: Optional[float] = 280.0
    page_size: int = 65

    # result recording
    finality_buffer: int = 2 * 60 * 60
    use_log_confirmations: bool = True
    sports_api_base: str = "https://api.football-data.org/v4"
    sports_api_key: Optional[str] = None
    sports_min_interval: float = 1.0
    sports_retry_attempts: int = 3
    sports_retry_base_delay: float = 5.0
    sports_retry_max_delay: float = 30.0

    def __post_init__(self) -> None:
        if not self.contract_address:
            raise ConfigError("contract_address is required")
        if self.max_chunk_size < 1:
            raise ConfigError("max_chunk_size must be >= 1")
        if self.parallelism < 1 or self.stats_concurrency < 1:
            raise ConfigError("parallelism and stats_concurrency must be >= 1")
        if self.retry_attempts < 1 or self.sports_retry_attempts < 1:
            raise ConfigError("retry attempts must be >= 1")
        if self.start_block is not None and self.start_block < 0:
            raise ConfigError("start_block must be >= 0")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "IndexerConfig":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in raw.items() if key in known}
        for key, env_names in ENV_FALLBACKS.items():
            if values.get(key):
                continue
            for env_name in env_names:
                if os.environ.get(env_name):
                    values[key] = os.environ[env_name]
                    break
        if "contract_address" not in values:
            raise ConfigError("config.contract_address is missing")
        return cls(**values)


def load_config(path: str) -> IndexerConfig:
    try:
        cfg = _load_json(path)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ConfigError(f"{path}: expected a JSON object")
    return IndexerConfig.from_dict(cfg)
