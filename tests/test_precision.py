"""Tests for tick/step precision derivation and display formatting."""

from decimal import Decimal

import pytest

from marketfeed.utils.precision import (
    SENTINEL,
    decimal_places_hint,
    decimals_from_size,
    derive_precision,
    format_amount,
    format_compact,
    format_decimal,
    format_price,
    parse_decimal,
    places_from_size,
)


class TestDerivePrecision:
    """Tests for derive_precision."""

    def test_typical_sizes(self):
        spec = derive_precision(tick_size=0.01, step_size=0.0001)

        assert spec.price_places == 2
        assert spec.quantity_places == 4

    def test_string_sizes_from_exchange_filters(self):
        spec = derive_precision("0.01000000", "0.00001000")

        assert spec.price_places == 2
        assert spec.quantity_places == 5
        assert spec.tick_size == Decimal("0.01")

    def test_zero_sizes_give_zero_places(self):
        spec = derive_precision(0, 0)

        assert spec.price_places == 0
        assert spec.quantity_places == 0

    @pytest.mark.parametrize("size", [None, "", "abc", float("nan"), float("inf"), -0.01, "-1"])
    def test_malformed_sizes_give_zero_places(self, size):
        assert places_from_size(size) == 0

    def test_caps_at_eight_places(self):
        assert places_from_size("0.0000000001") == 8

    def test_sizes_of_one_or_more(self):
        assert places_from_size("1") == 0
        assert places_from_size("10") == 0


class TestFormatting:
    """Truncation and thousands grouping."""

    def test_format_amount_truncates(self):
        spec = derive_precision("0.01", "0.01")

        assert format_amount(1234.5678, spec) == "1,234.56"

    def test_format_price_never_rounds_up(self):
        spec = derive_precision("0.01", "0.001")

        assert format_price("67999.999", spec) == "67,999.99"

    def test_fallback_places_without_metadata(self):
        assert format_price("1234.5678") == "1,234.56"
        assert format_amount("0.123456789") == "0.123456"
        assert format_amount("0.123456789", None, fallback_places=3) == "0.123"

    def test_pads_to_place_count(self):
        spec = derive_precision("0.0001", "1")

        assert format_price(5, spec) == "5.0000"
        assert format_amount("12.9", spec) == "12"

    def test_large_values_grouped(self):
        assert format_decimal("1234567890.129", 2) == "1,234,567,890.12"

    def test_negative_truncates_toward_zero(self):
        assert format_decimal(-1234.5678, 2) == "-1,234.56"
        assert format_decimal("-0.001", 2) == "0.00"

    def test_accepts_grouped_strings(self):
        assert format_decimal("1,234.5", 1) == "1,234.5"

    @pytest.mark.parametrize("value", [None, "", "  ", "n/a", float("nan"), True, object()])
    def test_absent_or_invalid_renders_sentinel(self, value):
        assert format_price(value) == SENTINEL
        assert format_amount(value) == SENTINEL

    def test_bad_fallback_places_does_not_raise(self):
        assert format_price("1.2345", None, fallback_places="x") == "1.23"
        assert format_price("1.2345", None, fallback_places=99) == "1.23450000"


class TestFormatCompact:
    """Large-number compaction for depth/amount displays."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (999.999, "999.99"),
            (1000, "1.00k"),
            (1999.99, "1.99k"),
            (2_345_678, "2.34M"),
            (9_999_999_999, "9.99B"),
            (1_250_000_000_000, "1.25T"),
            (-1_239, "-1.23k"),
            (1e15, "1,000,000,000,000,000.00"),
        ],
    )
    def test_tiers_truncate(self, value, expected):
        assert format_compact(value) == expected

    def test_invalid(self):
        assert format_compact(None) == SENTINEL


class TestDecimalHints:
    """Helpers that read decimal counts off raw strings."""

    def test_decimals_from_size(self):
        assert decimals_from_size("0.01000000") == 2
        assert decimals_from_size("1.00000000") == 0
        assert decimals_from_size("1e-5") == 5
        assert decimals_from_size("2.5E-3") == 4
        assert decimals_from_size("100") == 0
        assert decimals_from_size("") is None
        assert decimals_from_size(None) is None

    def test_decimal_places_hint(self):
        assert decimal_places_hint("67000.12345000") == 5
        assert decimal_places_hint("0.00001234") == 8
        assert decimal_places_hint("42") == 0
        assert decimal_places_hint(42.5) == 0
        assert decimal_places_hint("garbage.123") == 0

    def test_parse_decimal(self):
        assert parse_decimal("1,000.5") == Decimal("1000.5")
        assert parse_decimal(0.1) == Decimal("0.1")
        assert parse_decimal(7) == Decimal(7)
        assert parse_decimal("NaN") is None
        assert parse_decimal(False) is None
