"""
Helper functions for common infrastructure operations.

- Money formatting (integer minor units to decimal strings)
- Merchant reference number generation
- HTTP request helpers (client IP extraction)

Usage:
    from core.helpers import format_minor_units, generate_reference_number

    format_minor_units(29900)  # "299.00"
    generate_reference_number("ORD", digits=8)  # "ORD2025061512345678"
"""

from __future__ import annotations

import secrets
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone

if TYPE_CHECKING:
    from datetime import datetime

    from django.http import HttpRequest

MINOR_UNITS_PER_MAJOR = 100


def format_minor_units(amount: int | None) -> str:
    """
    Render an integer amount in minor units (cents/fen) as a decimal string.

    Amounts are never handled as floats. None renders as "0.00".

    Example:
        format_minor_units(29900)  # "299.00"
        format_minor_units(5)      # "0.05"
    """
    value = Decimal(amount or 0) / MINOR_UNITS_PER_MAJOR
    return f"{value.quantize(Decimal('0.01'))}"


def to_minor_units(amount: Decimal | str) -> int:
    """
    Convert a decimal major-unit amount to integer minor units.

    Example:
        to_minor_units(Decimal("299.00"))  # 29900
    """
    return int((Decimal(amount) * MINOR_UNITS_PER_MAJOR).to_integral_value())


def random_digits(count: int) -> str:
    """Return ``count`` cryptographically random decimal digits."""
    return "".join(str(secrets.randbelow(10)) for _ in range(count))


def generate_reference_number(
    prefix: str,
    *parts: str,
    digits: int = 4,
    now: datetime | None = None,
) -> str:
    """
    Build a merchant reference number: prefix + YYYYMMDD + parts + random digits.

    Args:
        prefix: Leading tag such as "ORD" or "REF"
        *parts: Fixed segments appended after the date
        digits: Number of random trailing digits
        now: Override the date (defaults to the current local date)

    Example:
        generate_reference_number("REF", "0042", "5678")  # "REF2025061500425678" + 4 digits
    """
    date_part = timezone.localtime(now or timezone.now()).strftime("%Y%m%d")
    return f"{prefix}{date_part}{''.join(parts)}{random_digits(digits)}"


def last_digits(value, count: int = 4) -> str:
    """
    Last ``count`` digits of the decimal digits in ``value``, zero padded.

    Example:
        last_digits("ORD2025061512345678")  # "5678"
        last_digits(7)                      # "0007"
        last_digits(None)                   # "0000"
    """
    digits_only = "".join(ch for ch in str(value or "") if ch.isdigit())
    return digits_only[-count:].rjust(count, "0")


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains.
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # Take the first IP in the chain (original client)
        ip = x_forwarded_for.split(",")[0].strip()
    else:
        ip = request.META.get("REMOTE_ADDR", "")
    return ip
