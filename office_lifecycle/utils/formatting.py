"""Human-readable money and date rendering for notification text."""

from datetime import datetime, timezone

_CURRENCY_SYMBOLS = {
    "gbp": "£",
    "usd": "$",
    "eur": "€",
}


def format_amount(amount_minor_units: int, currency: str) -> str:
    """Render integer minor units as a display amount.

    Examples:
        >>> format_amount(7500, "gbp")
        '£75.00'

        >>> format_amount(1999, "chf")
        'CHF 19.99'
    """
    major, minor = divmod(amount_minor_units, 100)
    symbol = _CURRENCY_SYMBOLS.get(currency.lower())
    if symbol:
        return f"{symbol}{major}.{minor:02d}"
    return f"{currency.upper()} {major}.{minor:02d}"


def format_date(timestamp_millis: int) -> str:
    """Render a UTC timestamp as e.g. ``5 March 2027``."""
    moment = datetime.fromtimestamp(timestamp_millis / 1000, tz=timezone.utc)
    return f"{moment.day} {moment:%B %Y}"
