"""Push feed of transactions touching tracked wallets.

Wraps a Helius `transactionSubscribe` WebSocket. The connection is driven by
a supervisor loop with an explicit state machine
(disconnected -> connecting -> subscribed -> disconnected) and a linear
reconnect backoff that gives up after a bounded number of attempts.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 30  # seconds
DEFAULT_MAX_RECONNECTS = 10
DEFAULT_RECONNECT_STEP_SECONDS = 5.0
SUBSCRIBE_REQUEST_ID = 1


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


@dataclass
class StreamStats:
    notifications_received: int = 0
    wallet_matches: int = 0
    reconnect_count: int = 0
    subscriptions_sent: int = 0
    gave_up: bool = False
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class WalletStreamError(Exception):
    """Base exception for wallet stream errors."""


class ConnectionLost(WalletStreamError):
    """Raised when the socket cannot be opened or drops."""


WalletCallback = Callable[[str], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def reconnect_delay(attempt: int, *, step: float, max_attempts: int) -> float | None:
    """Linear backoff: `step * attempt` seconds, or None once attempts run out."""
    if attempt < 1 or attempt > max_attempts:
        return None
    return step * attempt


def build_subscribe_message(
    wallets: Iterable[str], *, request_id: int = SUBSCRIBE_REQUEST_ID
) -> dict[str, Any]:
    accounts = sorted(set(wallets))
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "transactionSubscribe",
        "params": [
            {"accountInclude": accounts, "accountRequired": accounts},
            {
                "commitment": "confirmed",
                "encoding": "jsonParsed",
                "transactionDetails": "full",
                "showRewards": False,
                "maxSupportedTransactionVersion": 0,
            },
        ],
    }


def extract_account_keys(params: Any) -> list[str]:
    """Account keys of a `transactionNotification`; entries may be strings or objects."""
    node: Any = params
    for key in ("result", "transaction", "transaction", "message", "accountKeys"):
        if not isinstance(node, dict):
            return []
        node = node.get(key)
    if not isinstance(node, list):
        return []

    keys: list[str] = []
    for account in node:
        if isinstance(account, str):
            keys.append(account)
        elif isinstance(account, dict) and isinstance(account.get("pubkey"), str):
            keys.append(account["pubkey"])
    return keys


class WalletTransactionStream:
    """WebSocket client for wallet transaction notifications.

    `on_wallet_activity` is awaited with the first tracked wallet found in
    each notification.

    Example:
        ```python
        stream = WalletTransactionStream(url, on_wallet_activity=handle)
        await stream.update_wallets({"7xKX...", "9WzD..."})
        await stream.start()  # returns after stop() or when reconnects run out
        ```
    """

    def __init__(
        self,
        url: str,
        *,
        on_wallet_activity: WalletCallback | None = None,
        on_state_change: StateCallback | None = None,
        max_reconnects: int = DEFAULT_MAX_RECONNECTS,
        reconnect_step: float = DEFAULT_RECONNECT_STEP_SECONDS,
        ping_interval: int = DEFAULT_PING_INTERVAL,
    ) -> None:
        self._url = url
        self._on_wallet_activity = on_wallet_activity
        self._on_state_change = on_state_change
        self._max_reconnects = max_reconnects
        self._reconnect_step = reconnect_step
        self._ping_interval = ping_interval

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

        self._wallets_lock = asyncio.Lock()
        self._wallets: frozenset[str] = frozenset()
        self._resubscribe = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def wallets(self) -> frozenset[str]:
        return self._wallets

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Wallet stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def update_wallets(self, wallets: Iterable[str]) -> None:
        """Replace the tracked set; a live connection resubscribes on its next tick."""
        new = frozenset(w for w in wallets if w)
        async with self._wallets_lock:
            if new != self._wallets:
                self._wallets = new
                self._resubscribe = True

    async def _send_subscription(self, ws: ClientConnection) -> None:
        async with self._wallets_lock:
            wallets = self._wallets
            self._resubscribe = False
        if not wallets:
            logger.debug("No wallets to subscribe to yet")
            return
        await ws.send(json.dumps(build_subscribe_message(wallets)))
        self._stats.subscriptions_sent += 1
        logger.info("Subscribed to %d wallets", len(wallets))

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except (OSError, TimeoutError, websockets.WebSocketException) as e:
            raise ConnectionLost(f"Failed to connect to wallet stream: {e}") from e

        try:
            await self._send_subscription(ws)
        except websockets.ConnectionClosed as e:
            raise ConnectionLost(f"Connection closed while subscribing: {e}") from e

        await self._set_state(ConnectionState.SUBSCRIBED)
        self._stats.connected_since = time.time()
        return ws

    async def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON message on wallet stream")
            return
        if not isinstance(data, dict):
            return

        if data.get("id") == SUBSCRIBE_REQUEST_ID and "result" in data:
            logger.info("Wallet subscription confirmed: %s", data["result"])
            return
        if data.get("error"):
            logger.warning("Wallet stream error response: %s", data["error"])
            return
        if data.get("method") != "transactionNotification":
            return

        self._stats.notifications_received += 1
        self._stats.last_message_time = time.time()

        tracked = self._wallets
        wallet = next((k for k in extract_account_keys(data.get("params")) if k in tracked), None)
        if wallet is None:
            return

        self._stats.wallet_matches += 1
        logger.info("Transaction detected for tracked wallet %s", wallet)
        if self._on_wallet_activity:
            try:
                await self._on_wallet_activity(wallet)
            except Exception as e:
                logger.error("Wallet activity handler failed for %s: %s", wallet, e)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    message = None

                if isinstance(message, str):
                    await self._handle_message(message)
                elif message is not None:
                    logger.debug("Ignoring non-text wallet stream message")

                if self._resubscribe:
                    await self._send_subscription(ws)
        except websockets.ConnectionClosed as e:
            raise ConnectionLost(f"Wallet stream connection closed: {e}") from e

    async def start(self) -> None:
        """Run the connection supervisor until stopped or out of reconnects."""
        if self._running:
            raise RuntimeError("Wallet stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        attempt = 0
        while self._running and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                attempt = 0
                await self._listen(self._ws)
            except WalletStreamError as e:
                self._stats.last_error = str(e)
                logger.warning("%s", e)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None
                await self._set_state(ConnectionState.DISCONNECTED)

            if not self._running or self._stop_event.is_set():
                break

            attempt += 1
            delay = reconnect_delay(
                attempt, step=self._reconnect_step, max_attempts=self._max_reconnects
            )
            if delay is None:
                self._stats.gave_up = True
                logger.error(
                    "Wallet stream giving up after %d reconnect attempts", self._max_reconnects
                )
                break

            self._stats.reconnect_count += 1
            logger.info(
                "Reconnecting in %.0fs (attempt %d/%d)", delay, attempt, self._max_reconnects
            )
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

        self._running = False
        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
