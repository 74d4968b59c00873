"""
Money — integer minor-unit arithmetic.

Every stored amount is an int in the currency's minor unit (kobo for NGN).
Fractions only appear transiently, as Decimal, and are collapsed with
round-half-away-from-zero.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

type Minor = int

BASIS_POINTS = 10_000


def round_half_away(value: Decimal) -> Minor:
    """Round to the nearest integer, ties away from zero (2.5 -> 3, -2.5 -> -3)."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def vat_amount(net: Minor, vat_rate_bp: int) -> Minor:
    """VAT on a net line amount. Rate is in basis points (750 == 7.5%)."""
    return round_half_away(Decimal(net) * Decimal(vat_rate_bp) / BASIS_POINTS)


def percent_of(amount: Minor, percent: int | Decimal) -> Minor:
    return round_half_away(Decimal(amount) * Decimal(percent) / 100)


def per_km(fee_per_km: Minor, distance_km: Decimal) -> Minor:
    return round_half_away(Decimal(fee_per_km) * distance_km)


def to_minor(major: str | int | Decimal, exponent: int = 2) -> Minor:
    """'1500.50' -> 150050."""
    return round_half_away(Decimal(major) * (10**exponent))


def format_minor(amount: Minor, currency: str, exponent: int = 2) -> str:
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 10**exponent)
    return f"{sign}{major}.{minor:0{exponent}d} {currency}"


__all__ = (
    "Minor",
    "BASIS_POINTS",
    "round_half_away",
    "vat_amount",
    "percent_of",
    "per_km",
    "to_minor",
    "format_minor",
)
