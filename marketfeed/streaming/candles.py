"""Incremental OHLCV aggregation with SMA/EMA overlays."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Iterable

from ..types import Candle
from ..utils.timeframes import bucket_start


logger = logging.getLogger(__name__)


def compute_sma(closes: list[float], period: int) -> list[float | None]:
    """Trailing arithmetic mean over `period` closes; None until enough closes exist."""
    out: list[float | None] = []
    window_sum = 0.0
    for i, close in enumerate(closes):
        window_sum += close
        if i >= period:
            window_sum -= closes[i - period]
        out.append(window_sum / period if i >= period - 1 else None)
    return out


def compute_ema(closes: list[float], period: int) -> list[float | None]:
    """EMA with k = 2/(period+1), seeded by the first close."""
    k = 2.0 / (period + 1.0)
    out: list[float | None] = []
    prev: float | None = None
    for close in closes:
        prev = close if prev is None else close * k + prev * (1.0 - k)
        out.append(prev)
    return out


class CandleSeries:
    """
    Ordered candle sequence for one symbol+interval.

    Only the last candle is mutable; it is updated in place until a tick for a
    newer bucket arrives. Indicators stay aligned index-for-index with the
    candles and are extended incrementally: an in-place update recomputes only
    the last element, a new candle appends one. All math is float and nothing is
    rounded here.
    """

    def __init__(
        self,
        interval_ms: int,
        sma_period: int = 20,
        ema_period: int = 20,
        max_candles: int = 5000,
        max_gap_fill: int = 1000,
    ):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        if sma_period < 1 or ema_period < 1:
            raise ValueError("indicator periods must be >= 1")

        self.interval_ms = interval_ms
        self.sma_period = sma_period
        self.ema_period = ema_period
        self.max_candles = max_candles
        self.max_gap_fill = max_gap_fill

        self._candles: list[Candle] = []
        self._sma: list[float | None] = []
        self._ema: list[float | None] = []
        self._open_bucket: int | None = None

    def __len__(self) -> int:
        return len(self._candles)

    @property
    def open_bucket(self) -> int | None:
        return self._open_bucket

    @property
    def candles(self) -> tuple[Candle, ...]:
        """Candles with the mutable last one copied, safe to hand to readers."""
        if not self._candles:
            return ()
        return tuple(self._candles[:-1]) + (replace(self._candles[-1]),)

    @property
    def sma(self) -> tuple[float | None, ...]:
        return tuple(self._sma)

    @property
    def ema(self) -> tuple[float | None, ...]:
        return tuple(self._ema)

    @property
    def volumes(self) -> tuple[float, ...]:
        return tuple(c.volume for c in self._candles)

    def clear(self) -> None:
        self._candles = []
        self._sma = []
        self._ema = []
        self._open_bucket = None

    def bootstrap(self, candles: Iterable[Candle]) -> None:
        """Replace the sequence with historical bars and seed the open bucket from the last one."""
        by_time: dict[int, Candle] = {}
        for c in candles:
            by_time[c.open_time] = replace(c)
        ordered = [by_time[t] for t in sorted(by_time)]
        if self.max_candles and len(ordered) > self.max_candles:
            ordered = ordered[-self.max_candles:]

        self._candles = ordered
        closes = [c.close for c in ordered]
        self._sma = compute_sma(closes, self.sma_period)
        self._ema = compute_ema(closes, self.ema_period)
        self._open_bucket = ordered[-1].open_time if ordered else None

    def apply_tick(self, price: float, qty: float | None, ts_ms: int) -> bool:
        """
        Fold one trade into the sequence.

        Returns False when the tick is dropped (bad price, or it belongs to a
        bucket older than the open one).
        """
        price = float(price)
        if not math.isfinite(price) or price <= 0:
            return False
        qty = float(qty) if qty is not None else 0.0
        if not math.isfinite(qty) or qty < 0:
            qty = 0.0

        bucket = bucket_start(int(ts_ms), self.interval_ms)
        quote_volume = price * qty

        if self._open_bucket is None:
            self._open_new(bucket, price, quote_volume)
            return True

        if bucket < self._open_bucket:
            logger.debug(f"Dropping out-of-order tick for closed bucket {bucket}")
            return False

        if bucket > self._open_bucket:
            self._fill_gap(bucket)
            self._open_new(bucket, price, quote_volume)
            return True

        current = self._candles[-1]
        current.close = price
        current.high = max(current.high, price)
        current.low = min(current.low, price)
        current.volume += quote_volume
        self._update_last_indicators()
        return True

    def _open_new(self, bucket: int, price: float, quote_volume: float) -> None:
        self._candles.append(
            Candle(open_time=bucket, open=price, high=price, low=price, close=price, volume=quote_volume)
        )
        self._open_bucket = bucket
        self._append_indicators()
        self._trim()

    def _fill_gap(self, bucket: int) -> None:
        """Insert flat zero-volume candles for buckets no trade touched."""
        missing = (bucket - self._open_bucket) // self.interval_ms - 1
        if missing <= 0:
            return
        if missing > self.max_gap_fill:
            logger.warning(f"Gap of {missing} buckets exceeds max_gap_fill; leaving it unfilled")
            return

        prev_close = self._candles[-1].close
        t = self._open_bucket + self.interval_ms
        while t < bucket:
            self._candles.append(
                Candle(open_time=t, open=prev_close, high=prev_close, low=prev_close, close=prev_close, volume=0.0)
            )
            self._append_indicators()
            t += self.interval_ms

    def _sma_at_end(self) -> float | None:
        n = len(self._candles)
        if n < self.sma_period:
            return None
        window = self._candles[n - self.sma_period:]
        return sum(c.close for c in window) / self.sma_period

    def _ema_at_end(self) -> float:
        close = self._candles[-1].close
        if len(self._ema) < len(self._candles):
            prev = self._ema[-1] if self._ema else None
        else:
            prev = self._ema[-2] if len(self._ema) >= 2 else None
        if prev is None:
            return close
        k = 2.0 / (self.ema_period + 1.0)
        return close * k + prev * (1.0 - k)

    def _append_indicators(self) -> None:
        self._sma.append(self._sma_at_end())
        self._ema.append(self._ema_at_end())

    def _update_last_indicators(self) -> None:
        self._sma[-1] = self._sma_at_end()
        self._ema[-1] = self._ema_at_end()

    def _trim(self) -> None:
        excess = len(self._candles) - self.max_candles if self.max_candles else 0
        if excess > 0:
            del self._candles[:excess]
            del self._sma[:excess]
            del self._ema[:excess]
