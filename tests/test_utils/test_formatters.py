"""Tests for formatting utilities."""

from shopfloor.utils.formatters import (
    format_currency,
    format_dimensions,
    format_quantity,
)


class TestFormatCurrency:
    """Test USD currency formatting."""

    def test_basic_amount(self):
        assert format_currency(10.00) == "$10.00"

    def test_zero(self):
        assert format_currency(0) == "$0.00"

    def test_large_number_comma_separated(self):
        assert format_currency(1234567.89) == "$1,234,567.89"

    def test_rounds_to_cents(self):
        assert format_currency(0.333) == "$0.33"


class TestFormatQuantity:
    def test_integer(self):
        assert format_quantity(12) == "12"

    def test_fractional(self):
        assert format_quantity(6.6) == "6.6"

    def test_whole_float(self):
        assert format_quantity(4.0) == "4"

    def test_low_stock_flag(self):
        assert format_quantity(5, min_quantity=5) == "5 (LOW)"
        assert format_quantity(6, min_quantity=5) == "6"

    def test_no_minimum_never_low(self):
        assert format_quantity(0) == "0"


class TestFormatDimensions:
    def test_whole_inches(self):
        assert format_dimensions(24, 30, 24) == "24W x 30H x 24D"

    def test_stored_floats(self):
        assert format_dimensions(24.0, 34.5, 12.0) == "24W x 34.5H x 12D"
