from __future__ import annotations

import random


# 2**16 is far past any sane cap; keeps the float conversion bounded
_MAX_EXPONENT = 16


def reconnect_delay(attempt: int, min_delay: float = 1.0, max_delay: float = 5.0) -> float:
    """Capped exponential backoff with jitter, always within [min_delay, max_delay]."""
    attempt = max(1, attempt)
    base = min_delay * (2 ** min(attempt - 1, _MAX_EXPONENT))
    delay = base + random.uniform(0, min_delay * 0.5)
    return max(min_delay, min(delay, max_delay))
