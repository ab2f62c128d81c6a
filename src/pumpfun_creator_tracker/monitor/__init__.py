"""Monitoring layer - Polling loops and push-based launch detection."""

from pumpfun_creator_tracker.monitor.base import LoopState, LoopStats, PollingLoop
from pumpfun_creator_tracker.monitor.migrations import MigrationMonitor
from pumpfun_creator_tracker.monitor.new_coins import (
    LaunchOutcome,
    LaunchProcessor,
    NewCoinMonitor,
    SeenCache,
)
from pumpfun_creator_tracker.monitor.wallet_tracker import WalletTracker

__all__ = [
    "LaunchOutcome",
    "LaunchProcessor",
    "LoopState",
    "LoopStats",
    "MigrationMonitor",
    "NewCoinMonitor",
    "PollingLoop",
    "SeenCache",
    "WalletTracker",
]
