"""Data ingestion layer - pump.fun feed polling and wallet transaction streaming."""

from pumpfun_creator_tracker.ingestor.feed_client import (
    CoinPage,
    FeedClientError,
    PumpFunClient,
    RetryError,
    UpstreamUnavailable,
)
from pumpfun_creator_tracker.ingestor.models import CoinRecord, CoinRecordError
from pumpfun_creator_tracker.ingestor.wallet_stream import (
    ConnectionLost,
    WalletStreamError,
    WalletTransactionStream,
)

__all__ = [
    "CoinPage",
    "CoinRecord",
    "CoinRecordError",
    "ConnectionLost",
    "FeedClientError",
    "PumpFunClient",
    "RetryError",
    "UpstreamUnavailable",
    "WalletStreamError",
    "WalletTransactionStream",
]
