"""Candle aggregation lifecycle: REST backfill + live trade ticks for one symbol/interval."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import aiohttp

from ..providers.base import MarketDataREST, PriceStreamProvider
from ..providers.binance_rest import BinanceAPIError
from ..providers.normalize import MalformedPayload
from ..symbols import parse_symbol
from ..types import CandleSnapshot, SymbolSpec
from ..utils.timeframes import interval_to_ms
from .candles import CandleSeries


logger = logging.getLogger(__name__)


CandleListener = Callable[[CandleSnapshot], None]
Selection = tuple[str, str]


class CandleAggregator:
    """
    Builds a live candle sequence with SMA/EMA overlays for the selected
    symbol+interval.

    A selection change clears the sequence and publishes an empty loading
    snapshot before the new backfill starts, so a stale partial candle is never
    visible. Ticks are tagged with the selection they were requested for and
    dropped once it changes.
    """

    def __init__(
        self,
        streamer: PriceStreamProvider,
        rest: MarketDataREST,
        history_limit: int = 500,
        sma_period: int = 20,
        ema_period: int = 20,
        max_candles: int = 5000,
        default_interval: str = "1m",
    ):
        """
        Args:
            streamer: Trade-tick push feed (qty and trade time are needed for volume/buckets)
            rest: Source of historical klines
            history_limit: Number of historical buckets to backfill
            sma_period: SMA window
            ema_period: EMA period
            max_candles: Upper bound on retained candles
            default_interval: Interval used by set_symbol before any interval is chosen
        """
        self.streamer = streamer
        self.rest = rest
        self.history_limit = history_limit
        self.sma_period = sma_period
        self.ema_period = ema_period
        self.max_candles = max_candles
        self.default_interval = default_interval

        self._selection: Selection | None = None
        self._task: asyncio.Task | None = None
        self._switch_lock = asyncio.Lock()
        self._listeners: list[CandleListener] = []
        self._snapshot = CandleSnapshot(symbol=None, interval=None)

    @property
    def snapshot(self) -> CandleSnapshot:
        return self._snapshot

    @property
    def selection(self) -> Selection | None:
        return self._selection

    def add_listener(self, listener: CandleListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CandleListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_selection(self, symbol: str | SymbolSpec | None, interval: str | None = None) -> None:
        """
        Switch to symbol+interval and rebuild from scratch.

        Raises:
            ValueError: if interval is not a supported fixed-width interval
        """
        async with self._switch_lock:
            await self._switch(symbol, interval)

    async def set_symbol(self, symbol: str | SymbolSpec | None) -> None:
        # interval=None keeps the current one
        await self.set_selection(symbol)

    async def set_interval(self, interval: str) -> None:
        async with self._switch_lock:
            if self._selection is None:
                raise ValueError("No symbol selected")
            await self._switch(self._selection[0], interval)

    async def close(self) -> None:
        async with self._switch_lock:
            await self._teardown()
        logger.info(f"Candle aggregator closed ({self._selection})")

    async def _switch(self, symbol: str | SymbolSpec | None, interval: str | None) -> None:
        """Caller holds _switch_lock."""
        if symbol is None:
            self._selection = None
            await self._teardown()
            self._notify(CandleSnapshot(symbol=None, interval=None))
            return

        key_symbol = symbol.symbol if isinstance(symbol, SymbolSpec) else parse_symbol(symbol).symbol
        key_interval = (interval or (self._selection[1] if self._selection else self.default_interval)).strip()
        interval_ms = interval_to_ms(key_interval)

        key = (key_symbol, key_interval)
        if key == self._selection and self._task is not None:
            return

        previous = self._selection
        self._selection = key
        await self._teardown()

        series = CandleSeries(
            interval_ms,
            sma_period=self.sma_period,
            ema_period=self.ema_period,
            max_candles=self.max_candles,
        )
        self._notify(CandleSnapshot(symbol=key_symbol, interval=key_interval, is_loading=True))
        logger.info(f"Candles switching {previous} -> {key}")

        self._task = asyncio.create_task(self._run(key, series))

    async def _teardown(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _run(self, key: Selection, series: CandleSeries) -> None:
        symbol, interval = key
        error: str | None = None

        try:
            history = await self.rest.fetch_klines(symbol, interval, limit=self.history_limit)
        except (BinanceAPIError, MalformedPayload, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Kline backfill failed for {symbol} {interval}: {e}")
            error = str(e) or type(e).__name__
            history = []

        if key != self._selection:
            return

        series.bootstrap(history)
        logger.info(f"Backfilled {len(series)} {interval} candles for {symbol}")
        self._publish(key, series, error=error)

        try:
            async for point in self.streamer.stream(symbol):
                if key != self._selection:
                    return
                ts_ms = point.event_time_ms if point.event_time_ms is not None else int(point.received_at * 1000)
                qty = float(point.qty) if point.qty is not None else None
                if series.apply_tick(float(point.value), qty, ts_ms):
                    self._publish(key, series, error=error)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Candle stream for {symbol} {interval} failed: {e}", exc_info=True)
            if key == self._selection:
                self._publish(key, series, error=str(e))

    def _publish(self, key: Selection, series: CandleSeries, error: str | None = None) -> None:
        if key != self._selection:
            return
        self._notify(
            CandleSnapshot(
                symbol=key[0],
                interval=key[1],
                candles=series.candles,
                sma=series.sma,
                ema=series.ema,
                volumes=series.volumes,
                is_loading=False,
                error=error,
            )
        )

    def _notify(self, snapshot: CandleSnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Candle listener raised")
