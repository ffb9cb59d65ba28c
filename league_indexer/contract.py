"""Web3 access to the prediction league contract: log queries and point reads.

Logs are decoded against the contract ABI and handed out as ``RawLogRecord``;
typed validation happens later in ``events``.
"""

import os
from typing import Any, Dict, List, Optional

from eth_utils import event_abi_to_log_topic
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3._utils.events import get_event_data

from .config import IndexerConfig
from .errors import ConfigError, LogRangeTooLargeError, TransientSourceError
from .models import MatchRecord, Outcome, RawLogRecord, StoredPrediction, UserAggregateStats
from .util import _addr, _load_json, _log, _parse_int


def _event(name: str, inputs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"anonymous": False, "inputs": inputs, "name": name, "type": "event"}


def _arg(name: str, type_: str, indexed: bool = False) -> Dict[str, Any]:
    return {"indexed": indexed, "internalType": type_, "name": name, "type": type_}


def _view(name: str, inputs: List[Dict[str, Any]], outputs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "inputs": [{"internalType": i["type"], "name": i["name"], "type": i["type"]} for i in inputs],
        "name": name,
        "outputs": outputs,
        "stateMutability": "view",
        "type": "function",
    }


def _tuple(components: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "components": [{"internalType": c["type"], "name": c["name"], "type": c["type"]} for c in components],
            "internalType": "struct",
            "name": "",
            "type": "tuple",
        }
    ]


DEFAULT_ABI: List[Dict[str, Any]] = [
    _event(
        "PredictionsSubmitted",
        [
            _arg("user", "address", indexed=True),
            _arg("matchIds", "uint256[]"),
            _arg("predictionsCount", "uint256"),
            _arg("freeUsed", "uint256"),
            _arg("feePaid", "uint256"),
        ],
    ),
    _event("MatchRegistered", [_arg("matchId", "uint256", indexed=True), _arg("startTime", "uint256")]),
    _event(
        "ResultRecorded",
        [
            _arg("user", "address", indexed=True),
            _arg("matchId", "uint256", indexed=True),
            _arg("correct", "bool"),
            _arg("timestamp", "uint256"),
        ],
    ),
    _event(
        "MatchResultUpdated",
        [
            _arg("matchId", "uint256", indexed=True),
            _arg("homeScore", "uint256"),
            _arg("awayScore", "uint256"),
            _arg("timestamp", "uint256"),
        ],
    ),
    _view(
        "getUserStats",
        [{"name": "user", "type": "address"}],
        _tuple(
            [
                {"name": "correctPredictions", "type": "uint256"},
                {"name": "totalPredictions", "type": "uint256"},
                {"name": "freePredictionsUsed", "type": "uint256"},
                {"name": "currentStreak", "type": "uint256"},
                {"name": "longestStreak", "type": "uint256"},
                {"name": "lastPredictionTime", "type": "uint256"},
                {"name": "totalFeesPaid", "type": "uint256"},
            ]
        ),
    ),
    _view(
        "getMatch",
        [{"name": "matchId", "type": "uint256"}],
        _tuple(
            [
                {"name": "id", "type": "uint256"},
                {"name": "startTime", "type": "uint256"},
                {"name": "homeScore", "type": "uint256"},
                {"name": "awayScore", "type": "uint256"},
                {"name": "isRecorded", "type": "bool"},
                {"name": "exists", "type": "bool"},
                {"name": "recordedAt", "type": "uint256"},
            ]
        ),
    ),
    _view(
        "getUserPrediction",
        [{"name": "user", "type": "address"}, {"name": "matchId", "type": "uint256"}],
        _tuple(
            [
                {"name": "matchId", "type": "uint256"},
                {"name": "outcome", "type": "uint8"},
                {"name": "timestamp", "type": "uint256"},
                {"name": "isProcessed", "type": "bool"},
            ]
        ),
    ),
]

RANGE_ERROR_MARKERS = ("query returned more than", "too many", "block range", "range is too large", "exceed")


def _hex(value: Any) -> str:
    return "0x" + bytes(value).hex()


def _normalize_log(log: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(log)
    if isinstance(out.get("transactionHash"), str):
        out["transactionHash"] = HexBytes(out["transactionHash"])
    if isinstance(out.get("blockHash"), str):
        out["blockHash"] = HexBytes(out["blockHash"])
    if isinstance(out.get("data"), str):
        out["data"] = HexBytes(out["data"])
    if isinstance(out.get("topics"), list):
        out["topics"] = [HexBytes(t) if isinstance(t, str) else t for t in out["topics"]]
    for key in ("blockNumber", "transactionIndex", "logIndex"):
        if key in out:
            out[key] = _parse_int(out[key])
    if "address" in out and isinstance(out["address"], str):
        out["address"] = Web3.to_checksum_address(out["address"])
    return out


def _extract_abi(abi_json: Any) -> Optional[List[Dict[str, Any]]]:
    if isinstance(abi_json, list):
        return abi_json
    if isinstance(abi_json, dict) and "abi" in abi_json:
        return abi_json.get("abi")
    return None


def load_abi(source: Optional[str]) -> List[Dict[str, Any]]:
    """ABI from a raw ABI JSON file or a Hardhat artifact; the embedded ABI otherwise."""
    if not source:
        return DEFAULT_ABI
    if not os.path.exists(source):
        raise ConfigError(f"ABI path not found: {source}")
    abi = _extract_abi(_load_json(source))
    if not abi:
        raise ConfigError(f"no ABI in {source}")
    return abi


def _is_range_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(marker in msg for marker in RANGE_ERROR_MARKERS)


class LeagueContract:
    """Log source and point-read source backed by an async web3 HTTP provider."""

    def __init__(self, config: IndexerConfig, w3: Optional[AsyncWeb3] = None):
        if w3 is None:
            if not config.rpc_http:
                raise ConfigError("rpc_http is required")
            w3 = AsyncWeb3(AsyncHTTPProvider(config.rpc_http))
        self.w3 = w3
        self.address = Web3.to_checksum_address(config.contract_address)
        self.abi = load_abi(config.abi)
        self.contract = self.w3.eth.contract(address=self.address, abi=self.abi)
        self.event_abis: Dict[str, Dict[str, Any]] = {}
        for item in self.abi:
            if isinstance(item, dict) and item.get("type") == "event" and not item.get("anonymous"):
                self.event_abis[item["name"]] = item

    async def block_number(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as exc:
            raise TransientSourceError(f"eth_blockNumber failed: {exc}") from exc

    async def get_logs(self, event_name: str, from_block: int, to_block: int) -> List[RawLogRecord]:
        event_abi = self.event_abis.get(event_name)
        if event_abi is None:
            raise ConfigError(f"event {event_name} not in ABI")
        topic = _hex(event_abi_to_log_topic(event_abi))
        try:
            logs = await self.w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": self.address,
                    "topics": [topic],
                }
            )
        except Exception as exc:
            if _is_range_error(exc):
                raise LogRangeTooLargeError(from_block, to_block, str(exc)) from exc
            raise TransientSourceError(f"get_logs {from_block}-{to_block} failed: {exc}") from exc
        return [self._decode_log(event_name, event_abi, _normalize_log(log)) for log in logs]

    def _decode_log(self, event_name: str, event_abi: Dict[str, Any], log: Dict[str, Any]) -> RawLogRecord:
        tx_hash = log.get("transactionHash")
        try:
            event_data = get_event_data(self.w3.codec, event_abi, log)
            args = dict(event_data.get("args", {}))
        except Exception as exc:
            _log(f"WARN: Failed decoding {event_name} log at block {log.get('blockNumber')}: {exc}")
            args = {}
        return RawLogRecord(
            event_name=event_name,
            block_number=log.get("blockNumber", 0),
            args=args,
            transaction_hash=_hex(tx_hash) if tx_hash else None,
            log_index=log.get("logIndex"),
        )

    async def _call(self, fn_name: str, *args: Any) -> Any:
        fn = getattr(self.contract.functions, fn_name)
        try:
            return await fn(*args).call()
        except Exception as exc:
            raise TransientSourceError(f"{fn_name}{args} failed: {exc}") from exc

    async def get_user_stats(self, participant: str) -> UserAggregateStats:
        raw = await self._call("getUserStats", Web3.to_checksum_address(participant))
        values = [int(v) for v in raw] + [0] * max(0, 7 - len(raw))
        return UserAggregateStats(
            participant=_addr(participant),
            correct_count=values[0],
            total_count=values[1],
            free_units_used=values[2],
            current_streak=values[3],
            longest_streak=values[4],
            last_prediction_time=values[5],
            total_fees_paid=values[6],
        )

    async def get_match(self, match_id: int) -> MatchRecord:
        raw = await self._call("getMatch", match_id)
        return MatchRecord(
            match_id=match_id,
            start_time=int(raw[1]),
            home_score=int(raw[2]),
            away_score=int(raw[3]),
            is_recorded=bool(raw[4]),
            exists=bool(raw[5]),
        )

    async def get_user_prediction(self, participant: str, match_id: int) -> StoredPrediction:
        raw = await self._call("getUserPrediction", Web3.to_checksum_address(participant), match_id)
        outcome_value = int(raw[1])
        outcome = Outcome(outcome_value) if outcome_value in (1, 2, 3) else None
        return StoredPrediction(
            outcome=outcome,
            timestamp=int(raw[2]),
            is_processed=bool(raw[3]) if len(raw) > 3 else False,
        )
