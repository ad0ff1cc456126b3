"""
License cost arithmetic.

Prices arrive as monthly amounts in major units (e.g. "16.40"). They are
converted to integer cents once, annualized and accumulated as integers, and
only turned back into major units when a report is rendered.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Set

from .constants import CENTS_PER_UNIT, DEFAULT_CURRENCY, MONTHS_PER_YEAR

logger = logging.getLogger(__name__)

_ONE_CENT = Decimal("0.01")

# Symbols for the currencies Microsoft bills in most often; anything else
# is rendered with its ISO code as a suffix
CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "AUD": "A$",
    "CAD": "C$",
    "NZD": "NZ$",
    "JPY": "¥",
    "CHF": "CHF ",
}


def price_to_cents(price: Any) -> int:
    """
    Convert a monthly price to integer cents.

    Accepts strings, ints, floats and Decimals. Floats are routed through
    ``str`` first so 16.4 becomes 1640 rather than 1639.

    Raises:
        ValueError: If the value cannot be parsed as a number
    """
    if price is None:
        raise ValueError("Price is missing")
    if isinstance(price, str):
        price = price.strip().replace(",", "")
        if not price:
            raise ValueError("Price is empty")
    try:
        amount = Decimal(str(price))
    except InvalidOperation as e:
        raise ValueError(f"Invalid price: {price!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid price: {price!r}")
    return int((amount * CENTS_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def annual_price_cents(price: Any) -> int:
    """Annual cost in cents for one unit at the given monthly price (0 if not positive)."""
    cents = price_to_cents(price)
    if cents <= 0:
        return 0
    return cents * MONTHS_PER_YEAR


def annual_cost_cents(
    product_ids: Iterable[str],
    price_table: Mapping[str, Any],
    missing: Optional[Set[str]] = None,
) -> int:
    """
    Sum the annualized cost of a list of products.

    Identifiers absent from the price table (or with an unparseable price)
    are skipped without failing the whole computation. Each omission is
    logged once per identifier when a ``missing`` set is supplied, which the
    caller keeps for the lifetime of the run.

    Args:
        product_ids: Product (SKU) identifiers to cost
        price_table: Identifier -> monthly price in major units
        missing: Identifiers already reported as missing; updated in place

    Returns:
        Total annual cost in cents
    """
    total = 0
    for product_id in product_ids:
        price = price_table.get(product_id)
        if price is None or (isinstance(price, str) and not price.strip()):
            if missing is None or product_id not in missing:
                logger.warning(f"No price found for product {product_id} - excluded from cost")
                if missing is not None:
                    missing.add(product_id)
            continue
        try:
            total += annual_price_cents(price)
        except ValueError as e:
            if missing is None or product_id not in missing:
                logger.warning(f"Invalid price for product {product_id}: {e}")
                if missing is not None:
                    missing.add(product_id)
    return total


def cents_to_major(cents: int) -> Decimal:
    """Convert integer cents back to a two-decimal major-unit amount."""
    return (Decimal(cents) / CENTS_PER_UNIT).quantize(_ONE_CENT)


def average_cents(total_cents: int, count: int) -> int:
    """Average in cents, rounded half-up; zero when there is nothing to average."""
    if count <= 0:
        return 0
    return int((Decimal(total_cents) / count).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percentage(part: int, whole: int) -> Decimal:
    """Percentage of ``part`` in ``whole`` to two decimals (0 when whole is 0)."""
    if whole <= 0:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(_ONE_CENT, rounding=ROUND_HALF_UP)


def format_currency(cents: int, currency: str = DEFAULT_CURRENCY) -> str:
    """Format cents for display, e.g. 19680 -> '$196.80'."""
    amount = cents_to_major(cents)
    code = (currency or DEFAULT_CURRENCY).upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    sign = "-" if amount < 0 else ""
    if symbol:
        return f"{sign}{symbol}{abs(amount):,.2f}"
    return f"{sign}{abs(amount):,.2f} {code}"
