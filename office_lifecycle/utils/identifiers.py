"""Record identifier generation.

Identifiers look like ``{prefix}_{16 hex chars}_{timestamp millis}`` so they
sort roughly by creation time and stay readable in logs.
"""

import re
import time
import uuid
from typing import Optional

SUBSCRIPTION_PREFIX = "sub"
PAYMENT_PREFIX = "pay"
ADMIN_ACTION_PREFIX = "act"
NOTIFICATION_PREFIX = "ntf"

_ID_PATTERN = re.compile(r"^([a-z]{2,8})_[a-f0-9]{16}_\d{13}$")


def generate_record_id(prefix: str, timestamp_millis: Optional[int] = None) -> str:
    """Generate a unique record identifier.

    Example: sub_a1b2c3d4e5f6a7b8_1700000000000

    Args:
        prefix: Record type prefix (e.g., "sub", "pay")
        timestamp_millis: Creation time (defaults to wall clock)

    Returns:
        Unique identifier string
    """
    if timestamp_millis is None:
        timestamp_millis = int(time.time() * 1000)
    return f"{prefix}_{uuid.uuid4().hex[:16]}_{timestamp_millis:013d}"


def validate_record_id(record_id: str, prefix: Optional[str] = None) -> bool:
    """Validate identifier format, optionally requiring a specific prefix."""
    if not record_id or not isinstance(record_id, str):
        return False

    match = _ID_PATTERN.match(record_id)
    if not match:
        return False

    return prefix is None or match.group(1) == prefix


def shorten(value: Optional[str], keep: int = 20) -> Optional[str]:
    """Truncate long identifiers for log output."""
    if value is None or len(value) <= keep:
        return value
    return value[:keep] + "..."
