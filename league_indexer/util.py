"""Small helpers shared by the indexer modules: logging, JSON, int parsing, retries."""

import asyncio
import json
import sys
import time
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from hexbytes import HexBytes

T = TypeVar("T")


def _log(msg: str) -> None:
    ts = time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime())
    sys.stderr.write(f"[{ts} UTC] {msg}\n")
    sys.stderr.flush()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, HexBytes):
        return obj.hex()
    if isinstance(obj, (bytes, bytearray)):
        return "0x" + obj.hex()
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    return str(obj)


def _json_dumps(obj: Any, indent: Optional[int] = None) -> str:
    return json.dumps(obj, default=_json_default, ensure_ascii=True, indent=indent)


def _load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("bool is not an integer field")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if value.startswith("0x"):
            return int(value, 16)
        return int(value)
    return int(value)


def _addr(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    text = str(value).strip().lower()
    if not text.startswith("0x") or len(text) != 42:
        raise ValueError(f"not an address: {value!r}")
    return text


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2 ** attempt), max_delay)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retryable: Callable[[BaseException], bool],
    label: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    delay_hint: Optional[Callable[[BaseException], Optional[float]]] = None,
) -> T:
    """Run ``fn`` up to ``attempts`` times, sleeping with exponential backoff
    between failures that ``retryable`` accepts. The last error is re-raised.

    ``delay_hint`` may return a server-requested minimum delay for an error.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as exc:
            if not retryable(exc) or attempt == attempts - 1:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            hinted = delay_hint(exc) if delay_hint is not None else None
            if hinted is not None:
                delay = max(delay, hinted)
            _log(f"WARN: {label} failed ({exc}); retry {attempt + 1}/{attempts - 1} in {delay:.1f}s")
            await sleep(delay)
    raise AssertionError("unreachable")
