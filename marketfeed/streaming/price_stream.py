"""Live last-price feed for the currently selected symbol."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Optional

import aiohttp

from ..providers.base import MarketDataREST, PriceStreamProvider
from ..providers.binance_rest import BinanceAPIError
from ..providers.normalize import MalformedPayload
from ..symbols import parse_symbol
from ..types import FeedState, PricePoint, PriceSnapshot, SymbolSpec
from ..utils.precision import (
    MAX_PLACES,
    SENTINEL,
    decimal_places_hint,
    format_amount,
    format_decimal,
)
from .precision_cache import PrecisionCache
from .throttle import Throttler


logger = logging.getLogger(__name__)


PriceListener = Callable[[PriceSnapshot], None]


class PriceStreamManager:
    """
    Maintains one live price feed for the active symbol.

    Lifecycle per symbol: IDLE -> CONNECTING -> LIVE <-> DEGRADED -> CLOSED.

    On every symbol change the previous stream task, HTTP fallback and throttle
    timer are cancelled. Every async result is tagged with the symbol it was
    requested for and dropped if that symbol is no longer active.
    """

    def __init__(
        self,
        streamer: PriceStreamProvider,
        rest: MarketDataREST,
        precision_cache: PrecisionCache,
        fallback_delay: float = 3.0,
        throttle_ms: float = 500,
        fallback_decimals: int = 2,
        clock: Callable[[], float] = time.monotonic,
        call_later: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ):
        """
        Args:
            streamer: Push feed (trade or ticker stream)
            rest: REST source for the timed fallback
            precision_cache: Shared PrecisionSpec cache
            fallback_delay: Seconds to wait for the push feed before asking REST
            throttle_ms: Minimum interval between emitted snapshots (0 = no throttling)
            fallback_decimals: Price decimals when exchange metadata is unavailable
        """
        self.streamer = streamer
        self.rest = rest
        self.precision_cache = precision_cache
        self.fallback_delay = fallback_delay
        self.fallback_decimals = fallback_decimals

        self._throttle: Throttler[PricePoint] = Throttler(
            self._publish, throttle_ms, clock=clock, call_later=call_later
        )
        self._listeners: list[PriceListener] = []

        self._active: str | None = None
        self._state = FeedState.IDLE
        self._has_data = False
        self._last_point: PricePoint | None = None

        self._stream_task: asyncio.Task | None = None
        self._fallback_task: asyncio.Task | None = None
        self._precision_task: asyncio.Task | None = None
        # one symbol switch (or close) at a time
        self._switch_lock = asyncio.Lock()

        self._snapshot = self._empty_snapshot(None)

    @property
    def snapshot(self) -> PriceSnapshot:
        return self._snapshot

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def active_symbol(self) -> str | None:
        return self._active

    def add_listener(self, listener: PriceListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PriceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_symbol(self, symbol: str | SymbolSpec | None) -> None:
        """Switch the feed to symbol (no-op if unchanged). None stops the feed."""
        key = self._resolve_key(symbol)

        async with self._switch_lock:
            if key == self._active and self._state is not FeedState.CLOSED:
                return

            previous = self._active
            # Retag first so late results for the previous symbol are dropped from here on
            self._active = key
            await self._teardown()
            self._has_data = False
            self._last_point = None

            if key is None:
                self._set_state(FeedState.IDLE)
                self._notify(self._empty_snapshot(None))
                logger.info(f"Price feed stopped (was {previous})")
                return

            self._set_state(FeedState.CONNECTING)
            self._notify(self._empty_snapshot(key))
            logger.info(f"Price feed switching {previous} -> {key}")

            self._stream_task = asyncio.create_task(self._run_stream(key))
            self._fallback_task = asyncio.create_task(self._run_fallback(key))
            self._precision_task = asyncio.create_task(self._resolve_precision(key))

    async def close(self) -> None:
        """Cancel all timers/tasks and close the transport."""
        async with self._switch_lock:
            await self._teardown()
            self._set_state(FeedState.CLOSED)
            self._notify(replace(self._snapshot, state=FeedState.CLOSED))
            logger.info(f"Price feed closed ({self._active})")

    def _resolve_key(self, symbol: str | SymbolSpec | None) -> str | None:
        if symbol is None:
            return None
        if isinstance(symbol, SymbolSpec):
            return symbol.symbol
        return parse_symbol(symbol).symbol

    async def _teardown(self) -> None:
        self._throttle.reset()
        tasks = [t for t in (self._stream_task, self._fallback_task, self._precision_task) if t]
        self._stream_task = self._fallback_task = self._precision_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_stream(self, symbol: str) -> None:
        try:
            async for point in self.streamer.stream(
                symbol, on_status=lambda up: self._on_transport(symbol, up)
            ):
                self._apply(symbol, point)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Price stream for {symbol} failed: {e}", exc_info=True)
            if symbol == self._active and self._has_data:
                self._set_state(FeedState.DEGRADED)
                self._notify(replace(self._snapshot, state=FeedState.DEGRADED))

    async def _run_fallback(self, symbol: str) -> None:
        """Fetch the price over REST only if the push feed stays silent for fallback_delay."""
        await asyncio.sleep(self.fallback_delay)
        if symbol != self._active or self._has_data:
            return

        logger.info(f"No push data for {symbol} after {self.fallback_delay}s, using REST fallback")
        try:
            point = await self.rest.fetch_last_price(symbol)
        except (BinanceAPIError, MalformedPayload, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"REST price fallback failed for {symbol}: {e}")
            return

        if symbol != self._active or self._has_data:
            logger.debug(f"Discarding late REST price for {symbol}")
            return
        self._apply(symbol, point)

    async def _resolve_precision(self, symbol: str) -> None:
        spec = await self.precision_cache.resolve(symbol)
        if spec is None or symbol != self._active:
            return
        # Re-render the current value at the exchange precision
        if self._last_point is not None and not self._throttle.has_pending:
            self._publish(self._last_point)

    def _on_transport(self, symbol: str, connected: bool) -> None:
        if symbol != self._active:
            return
        if not connected and self._has_data and self._state is FeedState.LIVE:
            logger.warning(f"Price stream for {symbol} degraded; keeping last value")
            self._set_state(FeedState.DEGRADED)
            self._notify(replace(self._snapshot, state=FeedState.DEGRADED))

    def _apply(self, symbol: str, point: PricePoint) -> None:
        if symbol != self._active:
            return
        if point.symbol != symbol:
            logger.debug(f"Dropping {point.symbol} update on {symbol} feed")
            return

        first = not self._has_data
        self._has_data = True
        self._last_point = point
        self._set_state(FeedState.LIVE)

        if first and point.source == "stream" and self._fallback_task and not self._fallback_task.done():
            self._fallback_task.cancel()

        self._throttle.submit(point)

    def _places_for(self, symbol: str, raw: str | None) -> int:
        spec = self.precision_cache.get(symbol)
        cached = spec.price_places if spec is not None else self.fallback_decimals
        hint = decimal_places_hint(raw) if raw is not None else 0
        return min(MAX_PLACES, max(cached, hint))

    def _publish(self, point: PricePoint) -> None:
        if point.symbol != self._active:
            return

        places = self._places_for(point.symbol, point.raw)
        spec = self.precision_cache.get(point.symbol)

        snapshot = PriceSnapshot(
            symbol=point.symbol,
            price=format_decimal(point.value, places),
            numeric_price=float(point.value),
            is_loading=False,
            decimal_places=places,
            state=self._state,
            received_at=point.received_at,
            source=point.source,
            high=format_decimal(point.high, places) if point.high is not None else None,
            low=format_decimal(point.low, places) if point.low is not None else None,
            volume=format_amount(point.volume, spec) if point.volume is not None else None,
            quote_volume=format_decimal(point.quote_volume, 2) if point.quote_volume is not None else None,
        )
        self._notify(snapshot)

    def _empty_snapshot(self, symbol: str | None) -> PriceSnapshot:
        return PriceSnapshot(
            symbol=symbol,
            price=SENTINEL,
            numeric_price=None,
            is_loading=symbol is not None,
            decimal_places=self._places_for(symbol, None) if symbol else self.fallback_decimals,
            state=self._state,
        )

    def _set_state(self, state: FeedState) -> None:
        self._state = state

    def _notify(self, snapshot: PriceSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            # a failing consumer must not break the feed
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Price listener raised")
