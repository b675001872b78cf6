"""Binance WebSocket trade/ticker stream."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Callable

import websockets

from ..types import PricePoint
from ..utils.backoff import reconnect_delay
from .normalize import MalformedPayload, normalize_price_message


logger = logging.getLogger(__name__)


StatusCallback = Callable[[bool], None]


class BinanceTradeStreamer:
    """Streams last-price updates for one symbol from the Binance WebSocket API."""

    def __init__(
        self,
        base_url: str = "wss://stream.binance.com:9443/ws",
        channel: str = "trade",
        min_retry_delay: float = 1.0,
        max_retry_delay: float = 5.0,
        connect=websockets.connect,
    ):
        """
        Initialize the streamer.

        Args:
            base_url: Raw-stream endpoint
            channel: "trade" for every trade, "ticker" for 1s 24h ticker updates
            min_retry_delay: Lower bound of the reconnect window (seconds)
            max_retry_delay: Upper bound of the reconnect window (seconds)
            connect: websockets.connect-compatible factory (swapped in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.channel = channel
        self.min_retry_delay = min_retry_delay
        self.max_retry_delay = max_retry_delay
        self._connect = connect

    def stream_url(self, symbol: str) -> str:
        return f"{self.base_url}/{symbol.lower()}@{self.channel}"

    async def stream(
        self,
        symbol: str,
        on_status: StatusCallback | None = None,
    ) -> AsyncIterator[PricePoint]:
        """
        Yield normalized price points for symbol until cancelled.

        Reconnects forever with capped backoff. on_status(True) is called after
        each successful connect and on_status(False) after each disconnect.
        Malformed messages are logged and dropped.
        """
        url = self.stream_url(symbol)
        symbol_upper = symbol.upper()
        retry_count = 0

        while True:
            try:
                logger.info(f"Connecting to Binance WebSocket: {url}")

                async with self._connect(
                    url,
                    open_timeout=10,
                    close_timeout=5,
                    ping_interval=20,
                    ping_timeout=20,
                ) as ws:
                    retry_count = 0
                    logger.info(f"Connected to Binance {self.channel} stream for {symbol_upper}.")
                    if on_status:
                        on_status(True)

                    async for message in ws:
                        try:
                            data = json.loads(message)
                            point = normalize_price_message(data, symbol_hint=symbol_upper)
                        except json.JSONDecodeError as e:
                            logger.warning(f"Failed to parse Binance message: {e}")
                            continue
                        except MalformedPayload as e:
                            logger.warning(f"Dropping malformed Binance message for {symbol_upper}: {e}")
                            continue
                        yield point

                    logger.warning(f"Binance stream for {symbol_upper} closed by server.")

            except (
                websockets.exceptions.WebSocketException,
                asyncio.TimeoutError,
                OSError,
            ) as e:
                logger.error(f"Binance WebSocket connection error for {symbol_upper}: {e}")

            except Exception as e:
                logger.error(f"Unexpected error in Binance stream for {symbol_upper}: {e}", exc_info=True)

            if on_status:
                on_status(False)

            retry_count += 1
            delay = reconnect_delay(retry_count, self.min_retry_delay, self.max_retry_delay)
            logger.info(f"Reconnecting to Binance WebSocket in {delay:.1f}s (attempt {retry_count})...")
            await asyncio.sleep(delay)
