"""Formatting utilities for currency, dates and budget periods."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Union

from .config import CURRENCY_SYMBOL


def format_currency(amount: Union[float, int], include_sign: bool = True) -> str:
    """Format a currency amount with proper formatting.

    Negative amounts keep the minus sign in front of the currency symbol so
    over-budget figures read naturally.

    Args:
        amount: The amount to format
        include_sign: Whether to include the currency symbol

    Returns:
        Formatted currency string (e.g., "$1,234.56" or "1,234.56")

    Example:
        >>> format_currency(1234.56)
        '$1,234.56'
        >>> format_currency(-20)
        '-$20.00'
        >>> format_currency(1234.56, include_sign=False)
        '1,234.56'
    """
    formatted = f"{abs(amount):,.2f}"
    prefix = '-' if amount < 0 else ''
    return f"{prefix}{CURRENCY_SYMBOL}{formatted}" if include_sign else f"{prefix}{formatted}"


def escape_dollar_for_markdown(amount: float) -> str:
    """Format a dollar amount and escape the dollar sign for markdown rendering.

    Example:
        >>> escape_dollar_for_markdown(1234.56)
        '\\\\$1,234.56'
    """
    return format_currency(amount).replace("$", "\\$")


def format_date(value: Optional[Union[date, datetime]]) -> str:
    """Render a date as e.g. ``Mar 5, 2024``; empty string for ``None``."""
    if value is None:
        return ''
    return f"{value:%b} {value.day}, {value.year}"


def format_percentage(value: float, digits: int = 1) -> str:
    return f"{value:.{digits}f}%"


def period_key(value: Optional[Union[date, datetime]] = None) -> str:
    """Return the ``YYYY-MM`` budget period key for ``value`` (default: today).

    Example:
        >>> period_key(date(2024, 3, 9))
        '2024-03'
    """
    value = value or datetime.now()
    return f"{value.year:04d}-{value.month:02d}"
