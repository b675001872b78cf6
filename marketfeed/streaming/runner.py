"""Runner that drives every market data component from one symbol/interval selection."""

from __future__ import annotations

import asyncio
import logging

from ..config import Settings
from ..providers.base import MarketDataREST, OrderBookConnector, PriceStreamProvider
from ..providers.binance_rest import BinanceRESTClient
from ..providers.binance_ws import BinanceTradeStreamer
from ..providers.orderbook_ws import OrderBookSocketClient
from ..symbols import parse_symbol
from ..types import SymbolSpec
from ..utils.timeframes import interval_to_ms
from .aggregator import CandleAggregator
from .orderbook import OrderBookStreamManager
from .precision_cache import PrecisionCache
from .price_stream import PriceStreamManager


logger = logging.getLogger(__name__)


class StreamingRunner:
    """
    Owns the precision cache and the three streaming managers.

    The managers never talk to each other; the runner only forwards the
    selection to each of them and tears them down together. A failure in one
    component is logged and does not stop the others.
    """

    def __init__(
        self,
        settings: Settings,
        rest: MarketDataREST | None = None,
        price_streamer: PriceStreamProvider | None = None,
        trade_streamer: PriceStreamProvider | None = None,
        orderbook_connector: OrderBookConnector | None = None,
    ):
        self.settings = settings
        self.rest = rest or BinanceRESTClient(settings.binance_rest_url, settings.request_timeout_seconds)

        price_streamer = price_streamer or BinanceTradeStreamer(
            settings.binance_ws_url,
            channel=settings.get_price_stream_channel(),
            min_retry_delay=settings.reconnect_min_delay,
            max_retry_delay=settings.reconnect_max_delay,
        )
        # Candles always need individual trades (qty + trade time)
        trade_streamer = trade_streamer or BinanceTradeStreamer(
            settings.binance_ws_url,
            channel="trade",
            min_retry_delay=settings.reconnect_min_delay,
            max_retry_delay=settings.reconnect_max_delay,
        )
        orderbook_connector = orderbook_connector or OrderBookSocketClient(settings.orderbook_ws_url)

        self.precision_cache = PrecisionCache(self.rest)
        self.price = PriceStreamManager(
            price_streamer,
            self.rest,
            self.precision_cache,
            fallback_delay=settings.price_fallback_seconds,
            throttle_ms=settings.price_throttle_ms,
            fallback_decimals=settings.default_price_decimals,
        )
        self.candles = CandleAggregator(
            trade_streamer,
            self.rest,
            history_limit=settings.candle_history_limit,
            sma_period=settings.sma_period,
            ema_period=settings.ema_period,
            default_interval=settings.default_interval,
        )
        self.orderbook = OrderBookStreamManager(
            orderbook_connector,
            reconnect_min_delay=settings.reconnect_min_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
        )

        self.symbol: SymbolSpec | None = None
        self.interval: str | None = None

    async def start(self) -> None:
        """Open the order-book connection and select the configured default symbol."""
        logger.info("Starting streaming runner...")
        self.orderbook.start()
        await self.select(self.settings.default_symbol, self.settings.default_interval)

    async def select(self, symbol: str, interval: str | None = None) -> SymbolSpec:
        """
        Point every component at symbol (and candles at interval).

        Raises:
            ValueError: for an unparsable symbol, or an interval that is malformed
                or not in settings.bar_intervals
        """
        spec = parse_symbol(symbol)
        interval = (interval or self.interval or self.settings.default_interval).strip()
        interval_to_ms(interval)  # validate before touching any component
        allowed = self.settings.get_bar_intervals()
        if allowed and interval not in allowed:
            raise ValueError(f"Interval {interval} not enabled (allowed: {', '.join(allowed)})")

        self.symbol = spec
        self.interval = interval
        logger.info(f"Selection -> {spec.symbol} {interval}")

        results = await asyncio.gather(
            self.price.set_symbol(spec),
            self.candles.set_selection(spec, interval),
            self.orderbook.set_symbol(spec.base),
            return_exceptions=True,
        )
        for name, result in zip(("price", "candles", "orderbook"), results):
            if isinstance(result, Exception):
                logger.error(f"Selecting {spec.symbol} failed in {name}: {result}", exc_info=result)
        return spec

    async def stop(self) -> None:
        """Stop all components gracefully."""
        logger.info("Stopping streaming runner...")
        await asyncio.gather(
            self.price.close(),
            self.candles.close(),
            self.orderbook.close(),
            return_exceptions=True,
        )
        logger.info("Streaming runner stopped.")
