"""Final-score lookups against the football-data.org v4 API.

The provider enforces a strict per-minute quota, so requests go out one at a
time with a fixed minimum spacing, and 429 responses back off exponentially.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .config import IndexerConfig
from .errors import ConfigError, RateLimitedError, TransientSourceError
from .models import FinalScore
from .util import _log, retry_async

FINISHED = "FINISHED"


def parse_final_score(payload: Dict[str, Any]) -> Optional[FinalScore]:
    match = payload.get("match") or payload
    status = match.get("status")
    if status != FINISHED:
        return None
    full_time = (match.get("score") or {}).get("fullTime") or {}
    home, away = full_time.get("home"), full_time.get("away")
    if home is None or away is None:
        return None
    return FinalScore(home_score=int(home), away_score=int(away), status=status)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class SportsDataClient:
    def __init__(
        self,
        config: IndexerConfig,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if client is None and not config.sports_api_key:
            raise ConfigError("sports_api_key is required for score lookups")
        self.min_interval = config.sports_min_interval
        self.retry_attempts = config.sports_retry_attempts
        self.retry_base_delay = config.sports_retry_base_delay
        self.retry_max_delay = config.sports_retry_max_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=config.sports_api_base,
            headers={"X-Auth-Token": config.sports_api_key or ""},
            timeout=30.0,
        )
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    async def __aenter__(self) -> "SportsDataClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def get_final_score(self, match_id: int) -> Optional[FinalScore]:
        """Final score for a finished match, ``None`` while it is not finished.

        Raises ``RateLimitedError`` once the retry budget is spent on 429s
        (waiting at least as long as any ``Retry-After``), and
        ``TransientSourceError`` for server errors or unreadable bodies.
        """
        return await retry_async(
            lambda: self._fetch(match_id),
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            retryable=lambda exc: isinstance(exc, (RateLimitedError, TransientSourceError)),
            label=f"score lookup for match {match_id}",
            sleep=self._sleep,
            delay_hint=lambda exc: getattr(exc, "retry_after", None),
        )

    async def _throttle(self) -> None:
        if self._last_request is not None:
            wait = self.min_interval - (self._clock() - self._last_request)
            if wait > 0:
                await self._sleep(wait)
        self._last_request = self._clock()

    async def _fetch(self, match_id: int) -> Optional[FinalScore]:
        async with self._lock:
            await self._throttle()
            try:
                response = await self.client.get(f"/matches/{match_id}")
            except httpx.HTTPError as exc:
                raise TransientSourceError(f"score lookup for match {match_id} failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitedError(match_id, _retry_after(response))
        if response.status_code >= 500:
            raise TransientSourceError(f"score lookup for match {match_id}: HTTP {response.status_code}")
        if response.status_code != 200:
            _log(f"WARN: score lookup for match {match_id}: HTTP {response.status_code}")
            return None
        try:
            score = parse_final_score(response.json())
        except (ValueError, TypeError, AttributeError) as exc:
            raise TransientSourceError(f"score lookup for match {match_id}: unreadable body: {exc}") from exc
        if score is None:
            _log(f"Match {match_id} not finished yet")
        return score
