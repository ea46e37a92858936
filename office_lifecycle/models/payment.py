"""Payment records.

Append-only: a row is created once per charge and afterwards only its
status (and paid time) may change.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, StrictInt, field_validator

from .subscription import PaymentMethodKind


class PaymentStatus(str, Enum):
    """Outcome of a charge."""

    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Allowed in-place status changes
PAYMENT_STATUS_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED}),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class PaymentRecord(BaseModel):
    """One attempted or completed charge."""

    id: str = Field(..., description="Payment identifier")
    subscription_id: str = Field(..., description="Subscription charged")
    owner_id: str = Field(..., description="Owning client account id")
    amount_minor_units: StrictInt = Field(..., ge=0, description="Amount in minor currency units")
    currency: str = Field(..., description="ISO 4217 currency code, lower case")
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, description="Charge outcome")
    payment_method: Optional[PaymentMethodKind] = Field(None, description="Payment method used")
    external_intent_ref: Optional[str] = Field(
        None, description="Gateway payment intent id (unique idempotency key)"
    )
    paid_time_millis: Optional[int] = Field(None, description="When the charge succeeded")
    created_time_millis: int = Field(..., description="Creation time (Unix millis)")

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.lower()

    def can_transition_to(self, new_status: PaymentStatus) -> bool:
        """Whether ``new_status`` is a legal in-place change from the current status."""
        return new_status in PAYMENT_STATUS_TRANSITIONS[self.status]
