"""Per-symbol PrecisionSpec cache."""

from __future__ import annotations

import asyncio
import logging

import aiohttp

from ..providers.base import MarketDataREST
from ..providers.binance_rest import BinanceAPIError
from ..providers.normalize import MalformedPayload
from ..symbols import normalize_symbol_key
from ..types import PrecisionSpec
from ..utils.precision import derive_precision


logger = logging.getLogger(__name__)


class PrecisionCache:
    """
    Caches PrecisionSpec per exchange symbol for the process lifetime.

    Tick/step sizes are treated as static, so a successful lookup is kept until
    invalidate() is called. Concurrent resolve() calls for the same symbol share
    one in-flight request, which makes that request the only writer of the key.
    Failed lookups are not cached; callers fall back to default decimals.
    """

    def __init__(self, rest: MarketDataREST):
        self.rest = rest
        self._entries: dict[str, PrecisionSpec] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def get(self, symbol: str) -> PrecisionSpec | None:
        return self._entries.get(normalize_symbol_key(symbol))

    def put(self, symbol: str, spec: PrecisionSpec) -> None:
        self._entries[normalize_symbol_key(symbol)] = spec

    def invalidate(self, symbol: str | None = None) -> None:
        """Drop one symbol, or everything when symbol is None."""
        if symbol is None:
            self._entries.clear()
        else:
            self._entries.pop(normalize_symbol_key(symbol), None)

    async def resolve(self, symbol: str) -> PrecisionSpec | None:
        """Return the cached spec, fetching exchange metadata on first use."""
        key = normalize_symbol_key(symbol)
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._fetch(key))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))

        # shield: one cancelled waiter must not cancel the shared lookup
        return await asyncio.shield(task)

    async def _fetch(self, key: str) -> PrecisionSpec | None:
        try:
            tick_size, step_size = await self.rest.fetch_symbol_filters(key)
        # ValueError: 200 with a body that is not JSON
        except (BinanceAPIError, MalformedPayload, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Precision metadata unavailable for {key}: {e}")
            return None

        if tick_size is None and step_size is None:
            logger.warning(f"No PRICE_FILTER/LOT_SIZE filters found for {key}")
            return None

        spec = derive_precision(tick_size, step_size)
        self._entries[key] = spec
        logger.info(
            f"Precision for {key}: tick={tick_size} step={step_size} "
            f"-> price_places={spec.price_places} quantity_places={spec.quantity_places}"
        )
        return spec
