"""Prediction league leaderboard indexer.

Usage:
  league-indexer --config config.json regenerate
  league-indexer --config config.json leaderboard --page 1 --address 0xabc...
  league-indexer --config config.json diagnose --strict
  league-indexer --config config.json plan-results
  league-indexer --config config.json events --name PredictionsSubmitted --from-block 100
  league-indexer --config config.json ledger --status pending
  league-indexer --config config.json ledger --release 0xabc...:42

Notes:
- ``plan-results`` prints the duplicate-free batch for the result-recording
  write path; submitting it is left to the operator's signer.
- Without ``start_block`` only the last ``fallback_window`` blocks are scanned.
"""

import argparse
import asyncio
import sys
from typing import List, Optional, Tuple

from .cache import LeaderboardCache
from .config import IndexerConfig, load_config
from .contract import LeagueContract
from .engine import ALL_EVENTS, LeaderboardEngine
from .errors import LeagueIndexerError
from .guard import DuplicateWriteGuard
from .leaderboard import paginate
from .sports import SportsDataClient
from .storage import IdempotencyLedger, KVStore, MemoryKVStore, SqliteKVStore
from .util import _json_dumps, _log


def _store(cfg: IndexerConfig) -> KVStore:
    if cfg.db_path:
        return SqliteKVStore(cfg.db_path)
    return MemoryKVStore()


def _ledger(cfg: IndexerConfig) -> IdempotencyLedger:
    return IdempotencyLedger(cfg.db_path or ":memory:")


def _parse_pair(value: str) -> Tuple[str, int]:
    participant, sep, match_id = value.rpartition(":")
    if not sep or not participant:
        raise argparse.ArgumentTypeError(f"expected participant:matchId, got {value!r}")
    return participant.lower(), int(match_id)


def _print(obj: object) -> None:
    print(_json_dumps(obj, indent=2))


async def _run_regenerate(cfg: IndexerConfig) -> None:
    engine = LeaderboardEngine(cfg, LeagueContract(cfg))
    cache = LeaderboardCache(cfg, _store(cfg), engine.compute_leaderboard)
    snapshot = await cache.regenerate()
    page = paginate(snapshot.entries, 1, min(cfg.page_size, 10))
    _print({"total": page.total, "lastUpdated": snapshot.last_updated, "top": page.entries})


async def _run_leaderboard(cfg: IndexerConfig, page: int, page_size: Optional[int], address: Optional[str]) -> None:
    engine = LeaderboardEngine(cfg, LeagueContract(cfg))
    cache = LeaderboardCache(cfg, _store(cfg), engine.compute_leaderboard)
    snapshot = await cache.get_leaderboard()
    result = paginate(snapshot.entries, page, page_size or cfg.page_size)
    out = {
        "entries": result.entries,
        "page": result.page,
        "pages": result.pages,
        "total": result.total,
        "lastUpdated": snapshot.last_updated,
        "stale": cache.is_stale(snapshot),
    }
    if address:
        out["userRank"] = await cache.get_rank(address)
    _print(out)
    sys.stdout.flush()
    if cache.refresh_task is not None:
        await cache.refresh_task


async def _run_diagnose(cfg: IndexerConfig, strict: bool) -> None:
    engine = LeaderboardEngine(cfg, LeagueContract(cfg))
    report = await engine.diagnose()
    _print(report.to_dict())
    if strict:
        report.raise_on_corruption()


async def _run_plan_results(cfg: IndexerConfig) -> None:
    contract = LeagueContract(cfg)
    engine = LeaderboardEngine(cfg, contract)
    scan = await engine.scan(ALL_EVENTS)
    async with SportsDataClient(cfg) as scores:
        guard = DuplicateWriteGuard(cfg, contract, scores, _ledger(cfg))
        batch = await guard.plan_batch(scan.index, scan.omitted)
    users, match_ids, corrects = batch.as_call_args()
    _print(
        {
            "users": users,
            "matchIds": match_ids,
            "corrects": corrects,
            "matches": {str(k): v for k, v in batch.matches.items()},
            "skipped": {str(k): v for k, v in batch.skipped_matches.items()},
            "scanComplete": scan.complete,
        }
    )


async def _run_events(cfg: IndexerConfig, name: str, from_block: Optional[int], to_block: Optional[int], limit: int) -> None:
    contract = LeagueContract(cfg)
    engine = LeaderboardEngine(cfg, contract)
    default_from, latest = await engine.scan_range()
    result = await engine.fetcher.fetch(
        name,
        from_block if from_block is not None else default_from,
        to_block if to_block is not None else latest,
    )
    records = sorted(result.records, key=lambda r: (r.block_number, r.log_index or 0), reverse=True)
    _print({"count": len(result.records), "omitted": result.omitted, "records": records[:limit]})


async def _run_ledger(cfg: IndexerConfig, status: Optional[str], release: List[Tuple[str, int]]) -> None:
    ledger = _ledger(cfg)
    if release:
        released = await ledger.release(release)
        _log(f"Released {released} of {len(release)} pending pair(s)")
    _print(await ledger.entries(status))


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Prediction league leaderboard indexer")
    parser.add_argument("--config", default="config.json", help="Path to config JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("regenerate", help="Rebuild and cache the leaderboard")

    lb_parser = sub.add_parser("leaderboard", help="Serve the cached leaderboard")
    lb_parser.add_argument("--page", type=int, default=1)
    lb_parser.add_argument("--page-size", type=int, default=None)
    lb_parser.add_argument("--address", type=str, default=None)

    diagnose_parser = sub.add_parser("diagnose", help="Reconcile log activity against on-chain aggregates")
    diagnose_parser.add_argument("--strict", action="store_true", help="Exit 1 when an aggregate is impossible")
    sub.add_parser("plan-results", help="Compute the duplicate-free result batch")

    events_parser = sub.add_parser("events", help="Dump decoded logs for one event")
    events_parser.add_argument("--name", type=str, required=True)
    events_parser.add_argument("--from-block", type=int, default=None)
    events_parser.add_argument("--to-block", type=int, default=None)
    events_parser.add_argument("--limit", type=int, default=200)

    ledger_parser = sub.add_parser("ledger", help="Inspect or release idempotency ledger pairs")
    ledger_parser.add_argument("--status", choices=("pending", "confirmed"), default=None)
    ledger_parser.add_argument("--release", type=_parse_pair, nargs="*", default=[])

    args = parser.parse_args(argv)
    try:
        cfg = load_config(args.config)
        if args.command == "regenerate":
            asyncio.run(_run_regenerate(cfg))
        elif args.command == "leaderboard":
            asyncio.run(_run_leaderboard(cfg, args.page, args.page_size, args.address))
        elif args.command == "diagnose":
            asyncio.run(_run_diagnose(cfg, args.strict))
        elif args.command == "plan-results":
            asyncio.run(_run_plan_results(cfg))
        elif args.command == "events":
            asyncio.run(_run_events(cfg, args.name, args.from_block, args.to_block, args.limit))
        elif args.command == "ledger":
            asyncio.run(_run_ledger(cfg, args.status, args.release))
    except LeagueIndexerError as exc:
        _log(f"ERROR: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
