"""HTTP client for the pump.fun frontend API with rate limiting and retry logic."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from pumpfun_creator_tracker.ingestor.models import CoinRecord, CoinRecordError

logger = logging.getLogger(__name__)

# Constants
DEFAULT_BASE_URL = "https://frontend-api-v3.pump.fun"
MAX_REQUESTS_PER_SECOND = 5
DEFAULT_TIMEOUT_SECONDS = 15.0

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

USER_COINS_PAGE_SIZE = 1000
USER_COINS_MAX_ITEMS = 10_000
USER_COINS_PAGE_DELAY = 0.1


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class FeedClientError(Exception):
    """Base exception for feed client errors."""


class UpstreamUnavailable(FeedClientError):
    """Raised when the feed is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryError(UpstreamUnavailable):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


@dataclass(frozen=True)
class CoinPage:
    """One page of a paginated listing."""

    records: list[CoinRecord]
    raw_count: int
    offset: int
    limit: int

    @property
    def is_last(self) -> bool:
        """A short page signals end-of-data."""
        return self.raw_count < self.limit


class PumpFunClient:
    """Async client for the pump.fun coin listings.

    Requests are rate limited client-side and retried with exponential
    backoff on 429/5xx responses and transport errors. Exhausted retries
    and other non-2xx responses surface as `UpstreamUnavailable`.

    Example:
        >>> async with PumpFunClient() as client:
        ...     coins = await client.get_recent_coins(limit=50)
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
    ) -> None:
        """Initialize the feed client.

        Args:
            base_url: API base URL.
            http_client: Pre-built client (tests inject a mock transport here).
            timeout: Request timeout in seconds.
            max_retries: Maximum retry attempts for transient failures.
            retry_base_delay: Base delay in seconds (doubles with each retry).
            requests_per_second: Rate limit for API requests.
        """
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._rate_limiter = RateLimiter(requests_per_second)

        logger.info(
            "Initialized PumpFunClient with base_url=%s, rate_limit=%.1f req/s",
            self._base_url,
            requests_per_second,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> PumpFunClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        allow_not_found: bool = False,
    ) -> Any:
        """GET a JSON document with retry.

        Returns None for a 404 when `allow_not_found` is set.

        Raises:
            UpstreamUnavailable: On non-retryable errors or exhausted retries
                (as `RetryError`).
        """
        last_error: str = "no attempt made"
        last_exception: Exception | None = None
        delay = self._retry_base_delay

        for attempt in range(self._max_retries + 1):
            await self._rate_limiter.acquire()
            try:
                response = await self._client.get(path, params=params)
            except httpx.RequestError as e:
                last_error = f"{type(e).__name__}: {e}"
                last_exception = e
            else:
                if response.status_code == 404 and allow_not_found:
                    return None
                if response.status_code not in RETRY_STATUS_CODES:
                    if not response.is_success:
                        raise UpstreamUnavailable(
                            f"GET {path} returned HTTP {response.status_code}",
                            status_code=response.status_code,
                        )
                    try:
                        return response.json()
                    except ValueError as e:
                        raise UpstreamUnavailable(f"GET {path} returned invalid JSON: {e}") from e
                last_error = f"HTTP {response.status_code}"

            if attempt < self._max_retries:
                logger.warning(
                    "GET %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                    path,
                    attempt + 1,
                    self._max_retries + 1,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)
                delay *= 2

        raise RetryError(
            f"GET {path} failed after {self._max_retries + 1} attempts: {last_error}",
            last_exception,
        )

    @staticmethod
    def _unwrap(payload: Any, *, context: str) -> list[Any]:
        if isinstance(payload, dict) and isinstance(payload.get("coins"), list):
            payload = payload["coins"]
        if not isinstance(payload, list):
            raise UpstreamUnavailable(
                f"{context}: expected a list of coins, got {type(payload).__name__}"
            )
        return payload

    @classmethod
    def _parse_records(cls, payload: Any, *, context: str) -> list[CoinRecord]:
        payload = cls._unwrap(payload, context=context)
        records: list[CoinRecord] = []
        for item in payload:
            try:
                records.append(CoinRecord.from_api(item))
            except CoinRecordError as e:
                logger.warning("%s: dropping invalid coin record: %s", context, e)
        return records

    async def get_coins_page(
        self,
        *,
        offset: int = 0,
        limit: int = 50,
        complete: bool | None = None,
        include_nsfw: bool = True,
    ) -> CoinPage:
        """Fetch one page of the coin listing (newest first).

        Args:
            offset: Pagination offset.
            limit: Page size.
            complete: If True, only coins that left the bonding curve.
            include_nsfw: Include coins flagged NSFW.

        Returns:
            The valid records plus the raw item count, which is what
            decides end-of-data.
        """
        params: dict[str, Any] = {
            "offset": offset,
            "limit": limit,
            "includeNsfw": str(include_nsfw).lower(),
        }
        if complete is not None:
            params["complete"] = str(complete).lower()
        context = f"coins offset={offset}"
        raw = self._unwrap(await self._get_json("/coins", params), context=context)
        return CoinPage(
            records=self._parse_records(raw, context=context),
            raw_count=len(raw),
            offset=offset,
            limit=limit,
        )

    async def get_coins(
        self,
        *,
        offset: int = 0,
        limit: int = 50,
        complete: bool | None = None,
        include_nsfw: bool = True,
    ) -> list[CoinRecord]:
        page = await self.get_coins_page(
            offset=offset, limit=limit, complete=complete, include_nsfw=include_nsfw
        )
        return page.records

    async def get_recent_coins(self, limit: int = 100) -> list[CoinRecord]:
        return await self.get_coins(offset=0, limit=limit)

    async def get_recent_migrated_coins(self, limit: int = 50) -> list[CoinRecord]:
        return await self.get_coins(offset=0, limit=limit, complete=True)

    async def get_user_coins(
        self,
        address: str,
        *,
        offset: int = 0,
        limit: int = USER_COINS_PAGE_SIZE,
        include_nsfw: bool = True,
    ) -> list[CoinRecord]:
        """Fetch one page of coins created by a wallet.

        An unknown wallet (HTTP 404) yields an empty list.
        """
        records, _ = await self._user_coins_page(
            address, offset=offset, limit=limit, include_nsfw=include_nsfw
        )
        return records

    async def _user_coins_page(
        self,
        address: str,
        *,
        offset: int,
        limit: int,
        include_nsfw: bool = True,
    ) -> tuple[list[CoinRecord], int]:
        payload = await self._get_json(
            f"/coins/user-created-coins/{address}",
            {
                "offset": offset,
                "limit": limit,
                "includeNsfw": str(include_nsfw).lower(),
            },
            allow_not_found=True,
        )
        if payload is None:
            return [], 0
        context = f"user-created-coins {address}"
        raw = self._unwrap(payload, context=context)
        return self._parse_records(raw, context=context), len(raw)

    async def get_all_user_coins(
        self,
        address: str,
        *,
        page_size: int = USER_COINS_PAGE_SIZE,
        max_items: int = USER_COINS_MAX_ITEMS,
        page_delay: float = USER_COINS_PAGE_DELAY,
    ) -> list[CoinRecord]:
        """Fetch a wallet's complete coin history.

        Pages until a short page signals end-of-data or `max_items` is reached.
        """
        coins: list[CoinRecord] = []
        offset = 0
        while offset < max_items:
            limit = min(page_size, max_items - offset)
            page, raw_count = await self._user_coins_page(address, offset=offset, limit=limit)
            coins.extend(page)
            if raw_count < limit:
                break
            offset += limit
            if page_delay > 0:
                await asyncio.sleep(page_delay)

        logger.debug("Fetched %d coins for creator %s", len(coins), address)
        return coins

    async def get_latest_user_coin(self, address: str) -> CoinRecord | None:
        """Return the newest coin created by a wallet, if any."""
        page = await self.get_user_coins(address, offset=0, limit=1)
        return page[0] if page else None
