"""Tests for record identifiers and notification formatting helpers."""

import re
import time

from office_lifecycle.utils import (
    format_amount,
    format_date,
    generate_record_id,
    shorten,
    validate_record_id,
)
from office_lifecycle.utils.identifiers import PAYMENT_PREFIX, SUBSCRIPTION_PREFIX


class TestRecordIdGeneration:
    """Test record identifier generation."""

    def test_format(self):
        record_id = generate_record_id(SUBSCRIPTION_PREFIX, 1_767_225_600_000)

        assert re.match(r"^sub_[a-f0-9]{16}_1767225600000$", record_id)

    def test_uniqueness(self):
        ids = [generate_record_id(PAYMENT_PREFIX, 1_767_225_600_000) for _ in range(100)]

        assert len(ids) == len(set(ids))

    def test_defaults_to_wall_clock(self):
        before = int(time.time() * 1000)
        record_id = generate_record_id("ntf")
        after = int(time.time() * 1000)

        timestamp = int(record_id.rsplit("_", 1)[1])
        assert before <= timestamp <= after


class TestRecordIdValidation:
    """Test validate_record_id function."""

    def test_valid_ids(self):
        record_id = generate_record_id("act", 1_767_225_600_000)

        assert validate_record_id(record_id)
        assert validate_record_id(record_id, prefix="act")
        assert not validate_record_id(record_id, prefix="sub")

    def test_invalid_ids(self):
        assert not validate_record_id("")
        assert not validate_record_id(None)
        assert not validate_record_id("sub_123")
        assert not validate_record_id("SUB_a1b2c3d4e5f6a7b8_1767225600000")

    def test_shorten(self):
        assert shorten(None) is None
        assert shorten("pi_1") == "pi_1"
        assert shorten("sub_a1b2c3d4e5f6a7b8_1767225600000") == "sub_a1b2c3d4e5f6a7b8..."


class TestFormatting:
    """Money and dates in notification text."""

    def test_known_currency_symbols(self):
        assert format_amount(7500, "gbp") == "£75.00"
        assert format_amount(7500, "GBP") == "£75.00"
        assert format_amount(1999, "usd") == "$19.99"
        assert format_amount(5, "eur") == "€0.05"

    def test_unknown_currency_uses_code(self):
        assert format_amount(1999, "chf") == "CHF 19.99"

    def test_format_date(self):
        assert format_date(1_767_225_600_000) == "1 January 2026"
        assert format_date(1_767_225_600_000 + 364 * 86_400_000) == "31 December 2026"
