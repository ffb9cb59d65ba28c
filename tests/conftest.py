"""
Pytest fixtures shared by all tests.
"""

from typing import List

import pytest

from league_indexer.config import IndexerConfig

CONTRACT = "0x" + "1" * 40


@pytest.fixture
def config() -> IndexerConfig:
    """Config with small chunks and no real backoff delays."""
    return IndexerConfig(
        contract_address=CONTRACT,
        rpc_http="http://localhost:8545",
        start_block=0,
        max_chunk_size=100,
        parallelism=3,
        retry_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        stats_concurrency=2,
        db_path=None,
        stale_after=3600.0,
        regenerate_timeout=None,
        finality_buffer=7200,
        sports_api_key="test-key",
        sports_min_interval=1.0,
        sports_retry_attempts=3,
        sports_retry_base_delay=5.0,
        sports_retry_max_delay=30.0,
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Records requested delays instead of sleeping."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep
