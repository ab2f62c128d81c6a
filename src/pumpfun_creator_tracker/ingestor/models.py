"""Data models for upstream coin records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

# Solana public keys are base-58 strings of 32-44 characters.
BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class CoinRecordError(ValueError):
    """Raised when an upstream coin record fails boundary validation."""


def is_solana_address(value: str) -> bool:
    return bool(BASE58_ADDRESS.match(value))


def _normalize_timestamp_ms(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        ts = int(float(value))
    except (TypeError, ValueError, OverflowError) as e:
        raise CoinRecordError(f"invalid created_timestamp: {value!r}") from e
    if ts < 0:
        raise CoinRecordError(f"negative created_timestamp: {ts}")
    # Some listings report seconds rather than milliseconds.
    if 0 < ts < 10**12:
        ts *= 1000
    return ts


def _parse_complete(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise CoinRecordError(f"invalid complete flag: {value!r}")


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class CoinRecord:
    """A validated token-launch record from the upstream feed.

    Only the documented fields are parsed. The full upstream payload is kept
    verbatim in `raw` for auditability.
    """

    mint: str
    creator: str
    symbol: str
    name: str
    created_timestamp: int
    complete: bool
    description: str | None = None
    image_uri: str | None = None
    metadata_uri: str | None = None
    usd_market_cap: Decimal | None = None
    bonding_curve: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CoinRecord:
        """Validate and build a record from an API payload.

        Raises:
            CoinRecordError: If the mint or creator is missing or malformed, or a
                typed field (timestamp, completion flag) cannot be read.
        """
        if not isinstance(data, dict):
            raise CoinRecordError(f"coin record must be an object, got {type(data).__name__}")

        mint = str(data.get("mint") or "").strip()
        if not is_solana_address(mint):
            raise CoinRecordError(f"invalid mint: {mint!r}")

        creator = str(data.get("creator") or "").strip()
        if not is_solana_address(creator):
            raise CoinRecordError(f"invalid creator for {mint}: {creator!r}")

        return cls(
            mint=mint,
            creator=creator,
            symbol=str(data.get("symbol") or ""),
            name=str(data.get("name") or ""),
            created_timestamp=_normalize_timestamp_ms(data.get("created_timestamp")),
            complete=_parse_complete(data.get("complete")),
            description=_optional_str(data.get("description")),
            image_uri=_optional_str(data.get("image_uri")),
            metadata_uri=_optional_str(data.get("metadata_uri")),
            usd_market_cap=_optional_decimal(data.get("usd_market_cap")),
            bonding_curve=_optional_str(data.get("bonding_curve")),
            raw=dict(data),
        )

    @property
    def created_at(self) -> datetime | None:
        if not self.created_timestamp:
            return None
        return datetime.fromtimestamp(self.created_timestamp / 1000, tz=UTC)

    def age_seconds(self, now: datetime | None = None) -> float | None:
        """Seconds since creation, or None if the creation time is unknown."""
        created = self.created_at
        if created is None:
            return None
        now = now or datetime.now(UTC)
        return (now - created).total_seconds()
