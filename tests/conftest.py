"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from pumpfun_creator_tracker.ingestor.models import CoinRecord
from pumpfun_creator_tracker.storage.database import DatabaseManager

# 2024-01-01T00:00:00Z in epoch milliseconds.
BASE_TIMESTAMP_MS = 1_704_067_200_000

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def make_address(tag: str) -> str:
    """Pad a base-58 tag into a 44 character Solana-style address."""
    return (tag + "1" * 44)[:44]


def numbered_address(tag: str, n: int) -> str:
    """Distinct address per `n`, still valid base-58."""
    digits = ""
    while True:
        n, rem = divmod(n, 58)
        digits = BASE58_ALPHABET[rem] + digits
        if n == 0:
            break
    return make_address(tag + "z" + digits)


def coin_payload(
    mint: str,
    creator: str,
    *,
    complete: bool = False,
    created_timestamp: int = BASE_TIMESTAMP_MS,
    symbol: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "mint": mint,
        "creator": creator,
        "symbol": symbol or mint[:4].upper(),
        "name": f"Token {mint[:6]}",
        "created_timestamp": created_timestamp,
        "complete": complete,
        "usd_market_cap": 5234.12,
        "bonding_curve": make_address("Curve" + mint[:4]),
    }
    payload.update(extra)
    return payload


@pytest.fixture
def address() -> Callable[[str], str]:
    """Factory for valid base-58 addresses."""
    return make_address


@pytest.fixture
def make_coin() -> Callable[..., CoinRecord]:
    """Factory for validated coin records."""

    def _make(mint: str, creator: str, **kwargs: Any) -> CoinRecord:
        return CoinRecord.from_api(coin_payload(mint, creator, **kwargs))

    return _make


@pytest.fixture
def creator_a() -> str:
    return make_address("CreatorA")


@pytest.fixture
def creator_b() -> str:
    return make_address("CreatorB")


@pytest.fixture
async def db() -> AsyncIterator[DatabaseManager]:
    """In-memory SQLite store with the full schema."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()
