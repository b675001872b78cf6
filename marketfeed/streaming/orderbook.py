"""Top-of-book feed over a multiplexed subscribe/unsubscribe connection."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import websockets

from ..providers.base import OrderBookChannel, OrderBookConnector
from ..providers.normalize import MalformedPayload, normalize_orderbook
from ..types import OrderBookState, OrderBookTop, StreamStatus, StreamSubscription
from ..utils.backoff import reconnect_delay


logger = logging.getLogger(__name__)


OrderBookListener = Callable[[OrderBookState], None]


@dataclass(frozen=True)
class SubscriptionAction:
    kind: str  # "subscribe" | "unsubscribe"
    symbol: str


def reconcile_subscription(
    current: str | None,
    desired: str | None,
    connected: bool,
) -> list[SubscriptionAction]:
    """
    Diff the server-side subscription against the desired one.

    Nothing is emitted while disconnected (the intent is applied on connect)
    or when they already match. Otherwise the old symbol is unsubscribed
    before the new one is subscribed, so at most one symbol is ever active.
    """
    if not connected or current == desired:
        return []
    actions: list[SubscriptionAction] = []
    if current is not None:
        actions.append(SubscriptionAction("unsubscribe", current))
    if desired is not None:
        actions.append(SubscriptionAction("subscribe", desired))
    return actions


def normalize_book_symbol(symbol: str | None) -> str | None:
    if symbol is None:
        return None
    trimmed = str(symbol).strip().upper()
    return trimmed or None


class OrderBookStreamManager:
    """
    Keeps one auto-reconnecting relay connection and at most one logical
    subscription on it.

    set_symbol() records the desired symbol. While connected the change is
    applied right away (unsubscribe old, subscribe new); while not connected it
    waits for the next connect, and a newer set_symbol() simply replaces it.
    After a reconnect the desired symbol is subscribed again.
    """

    def __init__(
        self,
        connector: OrderBookConnector,
        reconnect_min_delay: float = 1.0,
        reconnect_max_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.connector = connector
        self.reconnect_min_delay = reconnect_min_delay
        self.reconnect_max_delay = reconnect_max_delay
        self._sleep = sleep

        self._status = StreamStatus.IDLE
        self._error: str | None = None
        self._data: OrderBookTop | None = None
        self._desired: str | None = None
        self._subscription: StreamSubscription | None = None

        self._conn: OrderBookChannel | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._closed = False
        self._listeners: list[OrderBookListener] = []

    @property
    def snapshot(self) -> OrderBookState:
        return OrderBookState(
            data=self._data,
            status=self._status,
            error=self._error,
            active_symbol=self._subscription.symbol if self._subscription else None,
            subscription=self._subscription,
        )

    def add_listener(self, listener: OrderBookListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: OrderBookListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def start(self) -> None:
        """Open the connection (idempotent)."""
        if self._task is None and not self._closed:
            self._set_status(StreamStatus.CONNECTING)
            self._task = asyncio.create_task(self._run_forever())

    async def set_symbol(self, symbol: str | None) -> None:
        desired = normalize_book_symbol(symbol)
        if desired == self._desired:
            return

        self._desired = desired
        if self._data is not None and self._data.symbol != desired:
            self._data = None
        self._notify()

        if self._closed:
            return
        self.start()
        await self._sync()

    async def close(self) -> None:
        """Unsubscribe the active symbol while still connected, then close the connection."""
        self._closed = True
        async with self._lock:
            conn = self._conn
            if conn is not None and self._subscription is not None:
                symbol = self._subscription.symbol
                try:
                    await conn.emit("unsubscribe", {"symbol": symbol})
                    logger.info(f"Unsubscribed order book {symbol} before closing")
                except (websockets.exceptions.WebSocketException, OSError) as e:
                    logger.warning(f"Could not unsubscribe {symbol} on close: {e}")
            self._subscription = None

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        self._conn = None
        self._desired = None
        self._status = StreamStatus.DISCONNECTED
        self._notify()

    async def _sync(self) -> None:
        """Apply reconcile_subscription() actions on the current connection."""
        async with self._lock:
            conn = self._conn
            current = self._subscription.symbol if self._subscription else None
            actions = reconcile_subscription(current, self._desired, conn is not None)
            for action in actions:
                try:
                    await conn.emit(action.kind, {"symbol": action.symbol})
                except (websockets.exceptions.WebSocketException, OSError) as e:
                    # the run loop sees the broken socket and resubscribes after reconnect
                    logger.warning(f"Order book {action.kind} {action.symbol} failed: {e}")
                    return

                if action.kind == "unsubscribe":
                    self._subscription = None
                else:
                    self._subscription = StreamSubscription(
                        symbol=action.symbol,
                        connection_handle=conn.handle,
                        status=StreamStatus.CONNECTED,
                        subscribed_at=time.time(),
                    )
                logger.info(f"Order book {action.kind} {action.symbol}")
            if actions:
                self._notify()

    async def _run_forever(self) -> None:
        attempt = 0
        while not self._closed:
            self._set_status(StreamStatus.CONNECTING)
            try:
                async with self.connector.connect() as conn:
                    self._conn = conn
                    self._subscription = None  # fresh socket, no server-side state
                    attempt = 0
                    self._error = None
                    self._set_status(StreamStatus.CONNECTED)
                    logger.info(f"Order book relay connected (handle {conn.handle})")

                    await self._sync()

                    async for event, data in conn.events():
                        self._handle_event(event, data)

                    logger.warning("Order book relay closed by server")

            except asyncio.CancelledError:
                raise
            except (websockets.exceptions.WebSocketException, asyncio.TimeoutError, OSError) as e:
                logger.error(f"Order book relay connection error: {e}")
                self._error = str(e) or type(e).__name__
            except Exception as e:
                logger.error(f"Unexpected error in order book relay: {e}", exc_info=True)
                self._error = str(e) or type(e).__name__
            finally:
                self._conn = None
                self._subscription = None

            if self._closed:
                break

            self._set_status(StreamStatus.DISCONNECTED)
            attempt += 1
            delay = reconnect_delay(attempt, self.reconnect_min_delay, self.reconnect_max_delay)
            logger.info(f"Reconnecting order book relay in {delay:.1f}s (attempt {attempt})...")
            await self._sleep(delay)

    def _handle_event(self, event: str, data: Any) -> None:
        if event == "orderbook":
            try:
                top = normalize_orderbook(data)
            except MalformedPayload as e:
                logger.warning(f"Dropping malformed order book event: {e}")
                return
            active = self._subscription.symbol if self._subscription else None
            if top.symbol != self._desired or top.symbol != active:
                logger.debug(f"Dropping order book for inactive symbol {top.symbol}")
                return
            self._data = top
            self._notify()
        elif event == "error":
            self._error = str(data)
            logger.warning(f"Order book relay error event: {data}")
            self._notify()

    def _set_status(self, status: StreamStatus) -> None:
        if status is not self._status:
            self._status = status
            self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Order book listener raised")
