"""Billing period parsing utilities.

Parses ISO 8601 duration strings used for the service term and converts
them to milliseconds for date arithmetic.
"""

import re

# Milliseconds in common time units
MILLIS_PER_SECOND = 1000
MILLIS_PER_MINUTE = 60 * MILLIS_PER_SECOND
MILLIS_PER_HOUR = 60 * MILLIS_PER_MINUTE
MILLIS_PER_DAY = 24 * MILLIS_PER_HOUR
MILLIS_PER_WEEK = 7 * MILLIS_PER_DAY
MILLIS_PER_MONTH = 30 * MILLIS_PER_DAY  # Standard approximation for billing
MILLIS_PER_YEAR = 365 * MILLIS_PER_DAY  # Leap days are not added


def parse_billing_period(period: str) -> int:
    """Parse ISO 8601 duration string to milliseconds.

    Supports:
    - P[n]D - days (e.g., P7D = 7 days)
    - P[n]W - weeks (e.g., P1W = 1 week)
    - P[n]M - months (e.g., P1M = 1 month = 30 days)
    - P[n]Y - years (e.g., P1Y = 1 year = 365 days)

    Months are fixed at 30 days and years at 365 days, so a one-year term
    that spans 29 February ends on the same calendar day minus one.

    Args:
        period: ISO 8601 duration string (e.g., "P1Y", "P365D")

    Returns:
        Duration in milliseconds

    Raises:
        ValueError: If the period string is invalid or unsupported

    Examples:
        >>> parse_billing_period("P1D")
        86400000

        >>> parse_billing_period("P1Y")
        31536000000
    """
    if not period or not isinstance(period, str):
        raise ValueError("Period must be a non-empty string")

    period = period.strip().upper()

    if not period.startswith("P"):
        raise ValueError(f"Invalid period format: '{period}'. Must start with 'P'")

    duration_str = period[1:]

    if not duration_str:
        raise ValueError(f"Invalid period format: '{period}'. No duration specified")

    match = re.match(r"^(\d+)?([DWMY])$", duration_str)

    if not match:
        raise ValueError(
            f"Unsupported period format: '{period}'. "
            "Supported formats: P[n]D, P[n]W, P[n]M, P[n]Y"
        )

    number_str, unit = match.groups()
    number = int(number_str) if number_str else 1

    if number <= 0:
        raise ValueError(f"Period number must be positive, got: {number}")

    if unit == "D":
        return number * MILLIS_PER_DAY
    elif unit == "W":
        return number * MILLIS_PER_WEEK
    elif unit == "M":
        return number * MILLIS_PER_MONTH
    else:
        return number * MILLIS_PER_YEAR


def validate_billing_period(period: str) -> bool:
    """Validate that a string is a valid billing period format.

    Examples:
        >>> validate_billing_period("P1Y")
        True

        >>> validate_billing_period("yearly")
        False
    """
    try:
        parse_billing_period(period)
        return True
    except (ValueError, TypeError):
        return False


def whole_days_between(later_millis: int, earlier_millis: int) -> int:
    """Number of complete days from ``earlier_millis`` to ``later_millis``.

    Floors towards negative infinity, so anything already past is negative.

    Examples:
        >>> whole_days_between(30 * MILLIS_PER_DAY + 5, 0)
        30

        >>> whole_days_between(0, 1)
        -1
    """
    return (later_millis - earlier_millis) // MILLIS_PER_DAY
