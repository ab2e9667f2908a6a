"""
Fixed-point money helpers.

Every amount the finance core stores or compares goes through to_money,
so arithmetic stays in Decimal cents end to end.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Coerce a number (or None) to a 2-place Decimal."""
    if value is None or value == "":
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return total


def allocate(total: Decimal, weights: List[Decimal]) -> List[Decimal]:
    """
    Split total across weights proportionally.

    Each share is rounded to the cent and the rounding remainder goes to
    the largest weight, so sum(result) == total exactly.
    """
    total = to_money(total)
    if not weights:
        return []

    weight_sum = sum(weights, ZERO)
    if weight_sum <= 0:
        raise ValueError("Cannot allocate across non-positive weights")

    shares = [to_money(total * w / weight_sum) for w in weights]

    remainder = total - sum(shares, ZERO)
    if remainder:
        largest = max(range(len(weights)), key=lambda i: weights[i])
        shares[largest] += remainder

    return shares


def ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if not denominator:
        return ZERO
    return Decimal(numerator) / Decimal(denominator)


def percent(numerator: Decimal, denominator: Decimal, places: str = "0.01") -> float:
    """Percentage rounded half-up, as a float for reporting payloads."""
    value = ratio(numerator, denominator) * 100
    return float(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))
