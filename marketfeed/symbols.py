"""Symbol label parsing and normalization."""

from __future__ import annotations

import re

from .types import SymbolSpec


DEFAULT_QUOTE = "USDT"

# Longest first so "FDUSD" wins over "USD"-like suffixes
KNOWN_QUOTES = ("FDUSD", "USDT", "USDC", "BUSD", "TUSD", "EUR", "TRY", "BTC", "ETH", "BNB")

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def normalize_symbol_key(symbol: str) -> str:
    """Strip separators and uppercase: "btc/usdt" -> "BTCUSDT"."""
    return _NON_ALNUM.sub("", symbol).upper()


def make_pair_key(base: str, quote: str = DEFAULT_QUOTE) -> str:
    return normalize_symbol_key(f"{base}{quote}")


def parse_symbol(label: str, default_quote: str = DEFAULT_QUOTE) -> SymbolSpec:
    """
    Parse a user-facing label into a SymbolSpec.

    Accepts "BTC/USDT", "BTC-USDT", "btcusdt" and bare bases like "BTC"
    (which get default_quote).

    Raises:
        ValueError: if the label has no alphanumeric content
    """
    if label is None or not normalize_symbol_key(str(label)):
        raise ValueError(f"Invalid symbol label: {label!r}")

    text = str(label).strip()
    parts = [p for p in re.split(r"[/\-_:\s]+", text) if p]
    if len(parts) >= 2:
        base = normalize_symbol_key(parts[0])
        quote = normalize_symbol_key(parts[1]) or default_quote.upper()
        return SymbolSpec(base=base, quote=quote, symbol=base + quote)

    key = normalize_symbol_key(text)
    for quote in KNOWN_QUOTES:
        if key.endswith(quote) and len(key) > len(quote):
            base = key[: -len(quote)]
            return SymbolSpec(base=base, quote=quote, symbol=key)

    quote = default_quote.upper()
    return SymbolSpec(base=key, quote=quote, symbol=key + quote)
