"""Subscription status and record models.

One subscription exists per client account. Its status only ever changes
through the subscription state machine.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class SubscriptionStatus(str, Enum):
    """Lifecycle status of a registered office subscription."""

    DRAFT = "DRAFT"  # Account created, nothing paid yet
    PENDING_APPROVAL = "PENDING_APPROVAL"  # Paid, awaiting admin review
    ACTIVE = "ACTIVE"  # Service running
    SUSPENDED = "SUSPENDED"  # Halted by an admin or by repeated payment failure
    EXPIRED = "EXPIRED"  # Term ended without renewal (terminal)
    WITHDRAWN = "WITHDRAWN"  # Withdrawn or cancelled (terminal)
    REJECTED = "REJECTED"  # Application refused (terminal)


TERMINAL_STATUSES = frozenset(
    {SubscriptionStatus.EXPIRED, SubscriptionStatus.WITHDRAWN, SubscriptionStatus.REJECTED}
)


class PaymentMethodKind(str, Enum):
    """How the client pays."""

    CARD = "CARD"
    BANK_DEBIT = "BANK_DEBIT"


class SubscriptionRecord(BaseModel):
    """Stored subscription row."""

    id: str = Field(..., description="Subscription identifier")
    owner_id: str = Field(..., description="Owning client account id (1:1)")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.DRAFT, description="Lifecycle status")

    # Term
    start_time_millis: Optional[int] = Field(None, description="Service start (Unix millis)")
    end_time_millis: Optional[int] = Field(None, description="Service end (Unix millis)")
    next_payment_time_millis: Optional[int] = Field(None, description="Next charge due (Unix millis)")

    # Billing
    payment_method: Optional[PaymentMethodKind] = Field(None, description="Payment method in use")
    external_customer_ref: Optional[str] = Field(None, description="Gateway customer id")
    retry_count: int = Field(default=0, ge=0, description="Consecutive failed payment attempts")

    # Bookkeeping
    created_time_millis: int = Field(..., description="Creation time (Unix millis)")
    updated_time_millis: int = Field(..., description="Last committed write (Unix millis)")
    version: int = Field(default=0, ge=0, description="Incremented on every committed write")

    @model_validator(mode="after")
    def _check_term(self) -> "SubscriptionRecord":
        if (
            self.start_time_millis is not None
            and self.end_time_millis is not None
            and self.end_time_millis < self.start_time_millis
        ):
            raise ValueError("end_time_millis must not be before start_time_millis")
        return self

    @property
    def is_terminal(self) -> bool:
        """Whether no transition can leave the current status."""
        return self.status in TERMINAL_STATUSES

    class Config:
        json_schema_extra = {
            "example": {
                "id": "sub_a1b2c3d4e5f6a7b8_1700000000000",
                "owner_id": "user-123",
                "status": SubscriptionStatus.ACTIVE,
                "start_time_millis": 1700000000000,
                "end_time_millis": 1731536000000,
                "next_payment_time_millis": 1731536000000,
                "payment_method": PaymentMethodKind.CARD,
                "external_customer_ref": "cus_123",
                "retry_count": 0,
                "created_time_millis": 1699990000000,
                "updated_time_millis": 1700000000000,
                "version": 3,
            }
        }
