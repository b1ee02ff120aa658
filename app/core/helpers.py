"""
Helper functions shared by the settlement apps.

Usage:
    from core.helpers import format_amount, ceil_div

    format_amount(12345, "ghs")  # "123.45 GHS"
    ceil_div(105, 10)            # 11
"""

from __future__ import annotations

import uuid


def format_amount(amount_cents: int, currency: str) -> str:
    """
    Render an integer minor-unit amount for humans.

    Integer arithmetic only; floats never touch money.
    """
    sign = "-" if amount_cents < 0 else ""
    major, minor = divmod(abs(amount_cents), 100)
    return f"{sign}{major:,}.{minor:02d} {currency.upper()}"


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounding up, for non-negative operands."""
    return -(-numerator // denominator)


def short_id(value: uuid.UUID | str) -> str:
    """First block of a UUID, used in notification text."""
    return str(value).split("-")[0]
