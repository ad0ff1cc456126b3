"""
Tests for tenantlib/costs.py cost arithmetic.

Covers:
- price_to_cents parsing and half-up rounding
- annual_price_cents annualization
- annual_cost_cents with missing and invalid prices
- Accumulation without floating point drift
- format_currency / cents_to_major / average_cents / percentage
"""
import logging
import os
import sys
from decimal import Decimal

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tenantlib.costs import (
    annual_cost_cents,
    annual_price_cents,
    average_cents,
    cents_to_major,
    format_currency,
    percentage,
    price_to_cents,
)

# =============================================================================
# price_to_cents Tests
# =============================================================================

class TestPriceToCents:
    """Tests for price_to_cents function."""

    def test_string_price(self):
        assert price_to_cents("16.40") == 1640

    def test_float_price_not_truncated(self):
        """16.4 as a float must not become 1639."""
        assert price_to_cents(16.4) == 1640

    def test_integer_price(self):
        assert price_to_cents(10) == 1000

    def test_decimal_price(self):
        assert price_to_cents(Decimal("57.00")) == 5700

    def test_half_up_rounding(self):
        assert price_to_cents("0.005") == 1
        assert price_to_cents("2.345") == 235

    def test_thousands_separator(self):
        assert price_to_cents("1,200.50") == 120050

    def test_whitespace(self):
        assert price_to_cents("  8.00 ") == 800

    @pytest.mark.parametrize("bad", [None, "", "   ", "abc", "NaN", "inf"])
    def test_invalid_prices(self, bad):
        with pytest.raises(ValueError):
            price_to_cents(bad)


# =============================================================================
# annual_price_cents Tests
# =============================================================================

class TestAnnualPriceCents:
    """Tests for annual_price_cents function."""

    def test_twelve_months(self):
        assert annual_price_cents("10.00") == 12000

    def test_exact_annual_cost(self):
        """16.40/month is exactly 196.80/year."""
        assert annual_price_cents("16.40") == 19680
        assert cents_to_major(annual_price_cents("16.40")) == Decimal("196.80")

    def test_zero_price(self):
        assert annual_price_cents("0") == 0

    def test_negative_price_is_zero(self):
        assert annual_price_cents("-5.00") == 0


# =============================================================================
# annual_cost_cents Tests
# =============================================================================

class TestAnnualCostCents:
    """Tests for annual_cost_cents function."""

    def test_sums_products(self):
        prices = {"p1": "10.00", "p2": "16.40"}
        assert annual_cost_cents(["p1", "p2"], prices) == 12000 + 19680

    def test_empty_list(self):
        assert annual_cost_cents([], {"p1": "10.00"}) == 0

    def test_missing_price_skipped(self):
        assert annual_cost_cents(["p1", "unknown"], {"p1": "10.00"}) == 12000

    def test_blank_price_skipped(self):
        assert annual_cost_cents(["p1"], {"p1": "  "}) == 0

    def test_invalid_price_skipped(self):
        assert annual_cost_cents(["p1", "p2"], {"p1": "abc", "p2": "1.00"}) == 1200

    def test_missing_logged_once(self, caplog):
        """A product without a price is warned about once per run."""
        missing = set()
        with caplog.at_level(logging.WARNING, logger="tenantlib.costs"):
            annual_cost_cents(["gone"], {}, missing)
            annual_cost_cents(["gone"], {}, missing)
            annual_cost_cents(["gone", "gone"], {}, missing)

        warnings = [r for r in caplog.records if "gone" in r.getMessage()]
        assert len(warnings) == 1
        assert missing == {"gone"}

    def test_no_drift_over_many_additions(self):
        """10,000 sequential additions of 16.40 stay exact."""
        total = 0
        for _ in range(10_000):
            total += annual_cost_cents(["p"], {"p": "16.40"})

        assert total == 19680 * 10_000
        assert cents_to_major(total) == Decimal("1968000.00")

    def test_monthly_no_drift(self):
        total = sum(price_to_cents("16.40") for _ in range(10_000))
        assert cents_to_major(total) == Decimal("164000.00")


# =============================================================================
# Formatting Tests
# =============================================================================

class TestFormatting:
    """Tests for currency formatting helpers."""

    def test_format_usd(self):
        assert format_currency(19680, "USD") == "$196.80"

    def test_format_thousands(self):
        assert format_currency(123456789, "USD") == "$1,234,567.89"

    def test_format_eur(self):
        assert format_currency(12000, "eur") == "€120.00"

    def test_format_unknown_currency(self):
        assert format_currency(12000, "SEK") == "120.00 SEK"

    def test_format_zero(self):
        assert format_currency(0) == "$0.00"

    def test_format_negative(self):
        assert format_currency(-150, "USD") == "-$1.50"

    def test_cents_to_major(self):
        assert cents_to_major(5) == Decimal("0.05")

    def test_average_rounds_half_up(self):
        assert average_cents(10, 4) == 3  # 2.5 -> 3
        assert average_cents(100, 3) == 33

    def test_average_no_records(self):
        assert average_cents(1000, 0) == 0

    def test_percentage(self):
        assert percentage(1, 3) == Decimal("33.33")
        assert percentage(50, 100) == Decimal("50.00")

    def test_percentage_zero_whole(self):
        assert percentage(10, 0) == Decimal("0.00")
