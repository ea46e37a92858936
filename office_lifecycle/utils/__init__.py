"""Utility functions and helpers."""

from office_lifecycle.utils.billing_period import (
    MILLIS_PER_DAY,
    MILLIS_PER_YEAR,
    parse_billing_period,
    validate_billing_period,
    whole_days_between,
)
from office_lifecycle.utils.formatting import format_amount, format_date
from office_lifecycle.utils.identifiers import (
    generate_record_id,
    shorten,
    validate_record_id,
)

__all__ = [
    # Billing periods
    "MILLIS_PER_DAY",
    "MILLIS_PER_YEAR",
    "parse_billing_period",
    "validate_billing_period",
    "whole_days_between",
    # Formatting
    "format_amount",
    "format_date",
    # Identifiers
    "generate_record_id",
    "validate_record_id",
    "shorten",
]
