from __future__ import annotations

import re


INTERVAL_RE = re.compile(r"^(\d+)(s|m|h|d|w)$")


def interval_to_seconds(interval: str) -> int:
    """Convert intervals like 1s/1m/5m/1h/1d/1w into seconds."""
    m = INTERVAL_RE.match(interval.strip())
    if not m:
        raise ValueError(f"Unsupported interval '{interval}'. Use like 1m,5m,1h,1d,1w.")
    n = int(m.group(1))
    if n <= 0:
        raise ValueError(f"Interval must be positive, got '{interval}'.")
    unit = m.group(2)
    if unit == "s":
        return n
    if unit == "m":
        return n * 60
    if unit == "h":
        return n * 3600
    if unit == "d":
        return n * 86400
    if unit == "w":
        return n * 7 * 86400
    raise ValueError(f"Unsupported interval unit '{unit}'.")


def interval_to_ms(interval: str) -> int:
    """Same as interval_to_seconds, in milliseconds (exchange timestamps are ms)."""
    return interval_to_seconds(interval) * 1000


def bucket_start(ts_ms: int, interval_ms: int) -> int:
    """Open time of the fixed-width bucket containing ts_ms."""
    return (ts_ms // interval_ms) * interval_ms
