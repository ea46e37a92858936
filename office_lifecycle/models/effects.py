"""Side effects returned by the state machine.

The machine only describes them; the lifecycle engine writes them to the
ledger inside the transition's transaction, except ``SendEmail`` which is
dispatched after commit.
"""

from typing import Optional, Union

from pydantic import BaseModel, Field, StrictInt

from .ledger import NotificationType
from .payment import PaymentStatus
from .subscription import PaymentMethodKind


class RecordPayment(BaseModel):
    """Write (or settle) the payment row for a charge."""

    amount_minor_units: StrictInt = Field(..., ge=0)
    currency: str
    status: PaymentStatus = PaymentStatus.SUCCEEDED
    method: Optional[PaymentMethodKind] = None
    external_intent_ref: Optional[str] = None
    paid_time_millis: Optional[int] = None


class NotifyOwner(BaseModel):
    """In-app notification for the subscription owner."""

    owner_id: str
    type: NotificationType
    title: str
    message: str


class NotifyAdmins(BaseModel):
    """In-app notification fanned out to every staff account."""

    type: NotificationType
    title: str
    message: str


class SendEmail(BaseModel):
    """Email to the subscription owner, sent after commit."""

    owner_id: str
    template: str = Field(..., description="Mail sender template key")
    subject: str
    body: str


class RecordReminder(BaseModel):
    """Dedup row for a renewal reminder bucket."""

    bucket_days: int = Field(..., gt=0)
    end_time_millis: int


SideEffect = Union[RecordPayment, NotifyOwner, NotifyAdmins, SendEmail, RecordReminder]


class EmailMessage(BaseModel):
    """Outbound email published for the mail sender."""

    to: str = Field(..., description="Recipient address")
    owner_id: str = Field(..., description="Recipient account id")
    template: str = Field(..., description="Mail sender template key")
    subject: str
    body: str
    subscription_id: Optional[str] = Field(None, description="Subscription the email is about")
    created_time_millis: int = Field(..., description="When the transition committed")

    class Config:
        json_schema_extra = {
            "example": {
                "to": "director@example.com",
                "owner_id": "user-123",
                "template": "payment_received",
                "subject": "Payment Received: Registered Office Address",
                "body": "Thank you, Acme Ltd. We have received your payment of £75.00.",
                "subscription_id": "sub_a1b2c3d4e5f6a7b8_1700000000000",
                "created_time_millis": 1700000000000,
            }
        }
