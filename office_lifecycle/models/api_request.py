"""API request and response models for the HTTP surface.

Field names follow the JSON shapes the web and mobile clients already send
and read, hence camelCase.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .ledger import AdminActionRecord, AdminActionType, NotificationRecord
from .subscription import SubscriptionRecord, SubscriptionStatus


class AdminActionRequest(BaseModel):
    """Lifecycle command issued from the admin console."""

    actionType: AdminActionType = Field(..., description="One of the six admin command kinds")
    reason: Optional[str] = Field(None, description="Reason shown to the client")
    notes: Optional[str] = Field(None, description="Internal notes, stored in the audit trail")

    class Config:
        json_schema_extra = {
            "example": {
                "actionType": "REJECT",
                "reason": "KYC mismatch",
                "notes": "Director name does not match Companies House record",
            }
        }


class AdminActionResponse(BaseModel):
    """Result of an accepted admin command."""

    success: bool = Field(..., description="Always true for accepted commands")
    newStatus: SubscriptionStatus = Field(..., description="Status after the command")
    message: str = Field(..., description="Human readable summary")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "newStatus": "REJECTED",
                "message": "Action REJECT completed successfully",
            }
        }


class AdminActionListResponse(BaseModel):
    """Audit trail for one subscription, oldest first."""

    subscriptionId: str
    actions: list[AdminActionRecord] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment gateway."""

    received: bool = Field(default=True, description="Event accepted, do not redeliver")
    status: str = Field(..., description="processed, already_processed, ignored or rejected")
    eventId: Optional[str] = Field(None, description="Gateway event id")
    eventType: Optional[str] = Field(None, description="Gateway event type")

    class Config:
        json_schema_extra = {
            "example": {
                "received": True,
                "status": "processed",
                "eventId": "evt_1",
                "eventType": "checkout.session.completed",
            }
        }


class RenewalSweepRequest(BaseModel):
    """Optional body for the cron trigger."""

    asOfMillis: Optional[int] = Field(None, description="Evaluation time, defaults to now")


class RenewalSweepResponse(BaseModel):
    """Summary of one renewal sweep."""

    success: bool = Field(default=True)
    asOfMillis: int = Field(..., description="Evaluation time used")
    examined: int = Field(..., description="ACTIVE subscriptions looked at")
    remindersSent: int = Field(..., description="Renewal reminders issued")
    subscriptionsExpired: int = Field(..., description="Subscriptions moved to EXPIRED")
    skipped: int = Field(default=0, description="No longer ACTIVE when locked")
    failed: int = Field(default=0, description="Left for the next run after a per-subscription failure")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "asOfMillis": 1731536000000,
                "examined": 42,
                "remindersSent": 3,
                "subscriptionsExpired": 1,
                "skipped": 0,
                "failed": 0,
            }
        }


class RegisterAccountRequest(BaseModel):
    """Client sign-up: the account plus its DRAFT subscription."""

    accountId: str = Field(..., min_length=1, description="Account id issued by the identity provider")
    email: str = Field(..., min_length=3, description="Contact email address")
    companyName: Optional[str] = Field(None, description="Registered company name")

    class Config:
        json_schema_extra = {
            "example": {
                "accountId": "user-42",
                "email": "director@acme.test",
                "companyName": "Acme Ltd",
            }
        }


class RegisterAccountResponse(BaseModel):
    accountId: str
    subscription: SubscriptionRecord


class NotificationListResponse(BaseModel):
    """In-app notifications for one account, oldest first."""

    accountId: str
    notifications: list[NotificationRecord] = Field(default_factory=list)
    unreadCount: int = Field(..., description="Unread notifications in the list")


class MarkReadResponse(BaseModel):
    success: bool = Field(default=True)
    notificationId: str


class AdvanceTimeRequest(BaseModel):
    """Request to advance the service clock."""

    days: int = Field(default=0, ge=0, description="Days to advance")
    hours: int = Field(default=0, ge=0, description="Hours to advance")
    minutes: int = Field(default=0, ge=0, description="Minutes to advance")

    class Config:
        json_schema_extra = {
            "example": {
                "days": 335,
                "hours": 0,
                "minutes": 0,
            }
        }


class AdvanceTimeResponse(BaseModel):
    """Clock change plus the sweep run at the new time."""

    previousTimeMillis: int = Field(..., description="Time before the jump")
    currentTimeMillis: int = Field(..., description="Time after the jump")
    advancedByMillis: int = Field(..., description="Size of the jump")
    sweep: Optional[RenewalSweepResponse] = Field(None, description="None when the clock did not move")

    class Config:
        json_schema_extra = {
            "example": {
                "previousTimeMillis": 1767225600000,
                "currentTimeMillis": 1796169600000,
                "advancedByMillis": 28944000000,
                "sweep": {
                    "success": True,
                    "asOfMillis": 1796169600000,
                    "examined": 1,
                    "remindersSent": 1,
                    "subscriptionsExpired": 0,
                    "skipped": 0,
                    "failed": 0,
                },
            }
        }


class TimeResponse(BaseModel):
    currentTimeMillis: int
    offsetMillis: int = Field(..., description="Shift from wall-clock time")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Machine-readable error code")
    message: Optional[str] = Field(None, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "invalid_for_state",
                "message": "Cannot apply AdminCommand(APPROVE) to subscription in ACTIVE status",
            }
        }
