"""Audit, dedup and notification records kept alongside subscriptions."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ProcessedEventRecord(BaseModel):
    """Marks a gateway event id as applied."""

    external_event_id: str = Field(..., description="Gateway event id (unique)")
    event_type: str = Field(..., description="Gateway event type")
    processed_time_millis: int = Field(..., description="When the event was applied")


class AdminActionType(str, Enum):
    """Lifecycle commands staff can issue."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SUSPEND = "SUSPEND"
    REACTIVATE = "REACTIVATE"
    WITHDRAW = "WITHDRAW"
    CANCEL = "CANCEL"


class AdminActionRecord(BaseModel):
    """Append-only audit row for an accepted admin command."""

    id: str = Field(..., description="Audit row identifier")
    actor_id: str = Field(..., description="Staff member who issued the command")
    target_subscription_id: str = Field(..., description="Subscription acted upon")
    action_type: AdminActionType = Field(..., description="Command kind")
    reason: Optional[str] = Field(None, description="Reason shown to the client")
    notes: Optional[str] = Field(None, description="Internal notes")
    created_time_millis: int = Field(..., description="When the command was committed")


class NotificationType(str, Enum):
    """In-app notification categories."""

    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    NEW_APPLICATION = "NEW_APPLICATION"
    APPLICATION_APPROVED = "APPLICATION_APPROVED"
    APPLICATION_REJECTED = "APPLICATION_REJECTED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    ACCOUNT_REACTIVATED = "ACCOUNT_REACTIVATED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    RENEWAL_REMINDER = "RENEWAL_REMINDER"
    SERVICE_WITHDRAWN = "SERVICE_WITHDRAWN"
    SERVICE_CANCELLED = "SERVICE_CANCELLED"


class NotificationRecord(BaseModel):
    """In-app message for one recipient. Only ``is_read`` changes after creation."""

    id: str = Field(..., description="Notification identifier")
    owner_id: str = Field(..., description="Recipient account id")
    type: NotificationType = Field(..., description="Notification category")
    title: str = Field(..., description="Short headline")
    message: str = Field(..., description="Body text")
    is_read: bool = Field(default=False, description="Whether the recipient opened it")
    created_time_millis: int = Field(..., description="Creation time (Unix millis)")


class RenewalReminderRecord(BaseModel):
    """Dedup row: one reminder per subscription, bucket and term end."""

    subscription_id: str
    bucket_days: int = Field(..., gt=0)
    end_time_millis: int
    sent_time_millis: int

    @property
    def key(self) -> tuple:
        return (self.subscription_id, self.bucket_days, self.end_time_millis)
