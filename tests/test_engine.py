"""
End-to-end tests for the scan, rank and diagnose pipeline over a fake chain.
"""

import pytest

from league_indexer.cache import LeaderboardCache
from league_indexer.engine import LeaderboardEngine
from league_indexer.models import RawLogRecord, ReconciliationStatus
from league_indexer.storage import MemoryKVStore
from tests.fakes import ALICE, BOB, CAROL, DAVE, FakeChain, predictions, recorded, registered, stats


def _chain():
    return FakeChain(
        records=[
            predictions(ALICE, [1, 2], block=10),
            predictions(BOB, [1], block=150),
            predictions(CAROL, [2], block=420),
            predictions(DAVE, [1, 2], block=999),
            registered(1, 1_700_000_000, block=5),
            recorded(BOB, 1, True, block=600),
        ],
        user_stats={
            ALICE: stats(ALICE, 0, 0),
            BOB: stats(BOB, 1, 1, current=1),
            CAROL: stats(CAROL, 0, 1),
            DAVE: stats(DAVE, 3, 1),
        },
        latest=1000,
    )


class TestLeaderboardEngine:
    """Tests for LeaderboardEngine."""

    @pytest.mark.asyncio
    async def test_compute_leaderboard(self, config, fake_sleep):
        engine = LeaderboardEngine(config, _chain(), sleep=fake_sleep)

        board = await engine.compute_leaderboard()

        assert [(e.rank, e.participant, e.accuracy_percent) for e in board] == [
            (1, DAVE, 300),
            (2, BOB, 100),
            (3, CAROL, 0),
        ]

    @pytest.mark.asyncio
    async def test_failed_read_excluded_from_board(self, config, fake_sleep):
        chain = _chain()
        chain.stats_failures.add(BOB)
        engine = LeaderboardEngine(config, chain, sleep=fake_sleep)

        board = await engine.compute_leaderboard()

        assert BOB not in [e.participant for e in board]

    @pytest.mark.asyncio
    async def test_diagnose(self, config, fake_sleep):
        engine = LeaderboardEngine(config, _chain(), sleep=fake_sleep)

        report = await engine.diagnose()

        assert report.findings[ALICE].status is ReconciliationStatus.ZERO_AGGREGATE
        assert report.findings[BOB].status is ReconciliationStatus.OK
        assert report.findings[CAROL].status is ReconciliationStatus.OK
        assert report.findings[DAVE].status is ReconciliationStatus.IMPOSSIBLE
        assert report.to_dict()["summary"]["scan_complete"] is True
        assert [DAVE in line for line in report.to_dict()["corruption"]] == [True]

    @pytest.mark.asyncio
    async def test_diagnose_reports_omitted_chunks(self, config, fake_sleep):
        chain = _chain()
        chain.failures[(400, 499)] = config.retry_attempts
        engine = LeaderboardEngine(config, chain, sleep=fake_sleep)

        report = await engine.diagnose()

        assert report.omitted_chunks == {"PredictionsSubmitted": [(400, 499)]}
        assert CAROL not in report.findings

    @pytest.mark.asyncio
    async def test_fallback_window(self, config, fake_sleep):
        """Without a start block only the trailing window is scanned."""
        config.start_block = None
        config.fallback_window = 500
        chain = _chain()
        engine = LeaderboardEngine(config, chain, sleep=fake_sleep)

        scan = await engine.scan()

        assert (scan.from_block, scan.to_block) == (500, 1000)
        assert scan.index.participants == {DAVE}
        assert min(f for _, f, _ in chain.log_calls) == 500

    @pytest.mark.asyncio
    async def test_scan_warns_on_malformed_records(self, config, fake_sleep, capsys):
        chain = _chain()
        chain.records.append(RawLogRecord("PredictionsSubmitted", 700, {"user": None, "matchIds": [1]}))
        engine = LeaderboardEngine(config, chain, sleep=fake_sleep)

        scan = await engine.scan()

        assert scan.index.malformed_total == 1
        assert "skipped 1 malformed record(s)" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_cache_over_engine(self, config, fake_sleep):
        engine = LeaderboardEngine(config, _chain(), sleep=fake_sleep)
        cache = LeaderboardCache(config, MemoryKVStore(), engine.compute_leaderboard)

        await cache.regenerate()
        entry = await cache.get_rank(CAROL)

        assert entry.rank == 3
