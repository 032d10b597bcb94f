"""
Discount calculator for Discounts Service.

A bare integer is a flat amount and ignores the eligible price; a
``numerator/denominator`` fraction scales the eligible price. Anything else
is worth nothing.
"""

import re
from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")

# Largest flat amount that still quantizes to cents under the default context
MAX_FLAT_DIGITS = 26

FLAT_PATTERN = re.compile(r"\d+")
FRACTION_PATTERN = re.compile(r"(\d+)/(\d+)")


def calculate_discount(discount_expr: str, eligible_price: Decimal) -> Decimal:
    """Compute the discount amount for an eligible price."""
    if FLAT_PATTERN.fullmatch(discount_expr):
        return Decimal(discount_expr).quantize(CENTS, rounding=ROUND_HALF_UP)

    match = FRACTION_PATTERN.fullmatch(discount_expr)
    if match:
        numerator, denominator = (Decimal(part) for part in match.groups())
        if not denominator:
            return Decimal("0")
        return (numerator / denominator * eligible_price).quantize(CENTS, rounding=ROUND_HALF_UP)

    return Decimal("0")
