"""
Exchange-correct price/amount formatting.

Tick size and step size from the exchange filters decide how many decimals a
price or quantity is shown with. Formatting always truncates toward zero: a
rounded-up amount would overstate what the user can actually trade.

None of the public functions raise on bad input. Absent or unparsable values
render as SENTINEL.
"""

from __future__ import annotations

import math
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Any

from ..types import PrecisionSpec


SENTINEL = "-"
MAX_PLACES = 8
DEFAULT_PRICE_PLACES = 2
DEFAULT_AMOUNT_PLACES = 6

_COMPACT_TIERS = (
    (Decimal(10) ** 12, "T"),
    (Decimal(10) ** 9, "B"),
    (Decimal(10) ** 6, "M"),
    (Decimal(10) ** 3, "k"),
)
_COMPACT_CEILING = Decimal(10) ** 15


def parse_decimal(value: Any) -> Decimal | None:
    """
    Parse a wire/user value into a finite Decimal.

    Accepts Decimal, int, float and numeric strings (thousands separators are
    ignored). Returns None for anything else, including NaN/Infinity and bools.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        # str() gives the shortest repr, avoiding binary noise like 0.1000000000000000055
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None

    if not result.is_finite():
        return None
    return result


def places_from_size(size: Any) -> int:
    """Decimal places for a tick/step size: max(0, round(-log10(size))), capped at MAX_PLACES."""
    d = parse_decimal(size)
    if d is None or d <= 0:
        return 0
    places = round(-math.log10(float(d)))
    return max(0, min(MAX_PLACES, places))


def derive_precision(tick_size: Any, step_size: Any) -> PrecisionSpec:
    """Build a PrecisionSpec from exchange tick/step sizes. Malformed sizes yield 0 places."""
    tick = parse_decimal(tick_size)
    step = parse_decimal(step_size)
    return PrecisionSpec(
        tick_size=tick if tick is not None else Decimal(0),
        step_size=step if step is not None else Decimal(0),
        price_places=places_from_size(tick),
        quantity_places=places_from_size(step),
    )


def decimals_from_size(size: str | None) -> int | None:
    """
    Exact count of significant decimals in a size string.

    Trailing zeros are ignored ("0.01000000" -> 2) and exponent forms are
    supported ("1e-5" -> 5). Returns None for empty input.
    """
    if size is None:
        return None
    trimmed = str(size).strip()
    if not trimmed:
        return None

    lower = trimmed.lower()
    if "e" in lower:
        mantissa, _, exponent_raw = lower.partition("e")
        if not mantissa:
            return None
        try:
            exponent = int(exponent_raw)
        except ValueError:
            return None
        decimals = (decimals_from_size(mantissa) or 0) - exponent
        return decimals if decimals > 0 else 0

    if "." not in trimmed:
        return 0
    fraction = trimmed.split(".", 1)[1]
    return len(fraction.rstrip("0"))


def decimal_places_hint(raw: Any) -> int:
    """Decimals carried by a numeric string payload; 0 when raw is not a string."""
    if not isinstance(raw, str):
        return 0
    if parse_decimal(raw) is None:
        return 0
    return decimals_from_size(raw.replace(",", "")) or 0


def _clamp_places(places: Any, default: int) -> int:
    try:
        places = int(places)
    except (TypeError, ValueError):
        return default
    return max(0, min(MAX_PLACES, places))


def _truncate(value: Decimal, places: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 100
        truncated = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    if truncated == 0:
        # drop the sign of "-0.00"
        truncated = abs(truncated)
    return truncated


def format_decimal(value: Any, places: int) -> str:
    """Truncate value to `places` decimals and group thousands. SENTINEL on bad input."""
    d = parse_decimal(value)
    if d is None:
        return SENTINEL
    places = _clamp_places(places, 0)
    try:
        truncated = _truncate(d, places)
    except InvalidOperation:
        return SENTINEL
    return f"{truncated:,.{places}f}"


def format_price(
    value: Any,
    spec: PrecisionSpec | None = None,
    fallback_places: int = DEFAULT_PRICE_PLACES,
) -> str:
    """Format a price at the symbol's tick precision (or fallback_places without metadata)."""
    if spec is not None:
        places = spec.price_places
    else:
        places = _clamp_places(fallback_places, DEFAULT_PRICE_PLACES)
    return format_decimal(value, places)


def format_amount(
    value: Any,
    spec: PrecisionSpec | None = None,
    fallback_places: int = DEFAULT_AMOUNT_PLACES,
) -> str:
    """Format a quantity at the symbol's step precision (or fallback_places without metadata)."""
    if spec is not None:
        places = spec.quantity_places
    else:
        places = _clamp_places(fallback_places, DEFAULT_AMOUNT_PLACES)
    return format_decimal(value, places)


def format_compact(value: Any) -> str:
    """
    Compact large magnitudes for depth/amount displays.

    1,234 -> "1.23k", 2,345,678 -> "2.34M", and so on up to "T". The scaled
    value is truncated (not rounded) to 2 decimals before the suffix is added.
    Values below 1,000 or at/above 1e15 are shown as plain 2-decimal numbers.
    """
    d = parse_decimal(value)
    if d is None:
        return SENTINEL

    magnitude = abs(d)
    if magnitude < 1000 or magnitude >= _COMPACT_CEILING:
        return format_decimal(d, 2)

    for unit, suffix in _COMPACT_TIERS:
        if magnitude >= unit:
            return f"{format_decimal(d / unit, 2)}{suffix}"

    return format_decimal(d, 2)
