"""Lifecycle events fed into the subscription state machine.

Every event names its target subscription. Gateway webhooks produce
``PaymentSucceeded``/``PaymentFailed``, staff produce ``AdminCommand`` and
the renewal sweep produces ``RenewalCheckTick``.
"""

from typing import Optional, Union

from pydantic import BaseModel, Field, StrictInt

from .ledger import AdminActionType
from .subscription import PaymentMethodKind


class PaymentSucceeded(BaseModel):
    """A charge for the subscription completed."""

    subscription_id: str = Field(..., description="Target subscription")
    amount_minor_units: StrictInt = Field(..., ge=0, description="Amount in minor currency units")
    currency: str = Field(..., description="ISO 4217 currency code")
    external_intent_ref: Optional[str] = Field(None, description="Gateway payment intent id")
    method: PaymentMethodKind = Field(default=PaymentMethodKind.CARD, description="Payment method used")
    external_customer_ref: Optional[str] = Field(None, description="Gateway customer id")

    class Config:
        json_schema_extra = {
            "example": {
                "subscription_id": "sub_a1b2c3d4e5f6a7b8_1700000000000",
                "amount_minor_units": 7500,
                "currency": "gbp",
                "external_intent_ref": "pi_1",
                "method": PaymentMethodKind.CARD,
                "external_customer_ref": "cus_123",
            }
        }


class PaymentFailed(BaseModel):
    """A charge for the subscription was declined."""

    subscription_id: str = Field(..., description="Target subscription")
    external_intent_ref: Optional[str] = Field(None, description="Gateway payment intent id")


class AdminCommand(BaseModel):
    """A lifecycle command issued by staff."""

    subscription_id: str = Field(..., description="Target subscription")
    type: AdminActionType = Field(..., description="Command kind")
    reason: Optional[str] = Field(None, description="Reason shown to the client")
    notes: Optional[str] = Field(None, description="Internal notes, audit only")


class RenewalCheckTick(BaseModel):
    """Periodic expiry / reminder check."""

    subscription_id: str = Field(..., description="Target subscription")
    as_of_millis: int = Field(..., description="Evaluation time (Unix millis)")


LifecycleEvent = Union[PaymentSucceeded, PaymentFailed, AdminCommand, RenewalCheckTick]


def event_name(event: LifecycleEvent) -> str:
    """Short name used in logs and IllegalTransition messages."""
    if isinstance(event, AdminCommand):
        return f"AdminCommand({event.type.value})"
    return type(event).__name__
