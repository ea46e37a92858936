"""Pydantic models for domain records, lifecycle events and the HTTP surface."""

# Configuration models
from .settings import (
    PlanConfig,
    BillingConfig,
    ReminderConfig,
    StaffAccount,
    NotificationConfig,
    PubSubConfig,
    SecurityConfig,
    LifecycleConfig,
)

# Account models
from .account import (
    AccountRole,
    AccountRecord,
    ELEVATED_ROLES,
)

# Subscription models
from .subscription import (
    SubscriptionStatus,
    PaymentMethodKind,
    SubscriptionRecord,
    TERMINAL_STATUSES,
)

# Payment models
from .payment import (
    PaymentStatus,
    PaymentRecord,
)

# Ledger models
from .ledger import (
    ProcessedEventRecord,
    AdminActionType,
    AdminActionRecord,
    NotificationType,
    NotificationRecord,
    RenewalReminderRecord,
)

# State machine inputs
from .events import (
    PaymentSucceeded,
    PaymentFailed,
    AdminCommand,
    RenewalCheckTick,
    LifecycleEvent,
)

# State machine outputs
from .effects import (
    RecordPayment,
    NotifyOwner,
    NotifyAdmins,
    SendEmail,
    RecordReminder,
    SideEffect,
    EmailMessage,
)

# API models
from .api_request import (
    AdminActionRequest,
    AdminActionResponse,
    AdminActionListResponse,
    WebhookResponse,
    RenewalSweepRequest,
    RenewalSweepResponse,
    RegisterAccountRequest,
    RegisterAccountResponse,
    NotificationListResponse,
    MarkReadResponse,
    AdvanceTimeRequest,
    AdvanceTimeResponse,
    TimeResponse,
    ErrorResponse,
)

__all__ = [
    # Configuration
    "PlanConfig",
    "BillingConfig",
    "ReminderConfig",
    "StaffAccount",
    "NotificationConfig",
    "PubSubConfig",
    "SecurityConfig",
    "LifecycleConfig",
    # Account
    "AccountRole",
    "AccountRecord",
    "ELEVATED_ROLES",
    # Subscription
    "SubscriptionStatus",
    "PaymentMethodKind",
    "SubscriptionRecord",
    "TERMINAL_STATUSES",
    # Payment
    "PaymentStatus",
    "PaymentRecord",
    # Ledger
    "ProcessedEventRecord",
    "AdminActionType",
    "AdminActionRecord",
    "NotificationType",
    "NotificationRecord",
    "RenewalReminderRecord",
    # Events
    "PaymentSucceeded",
    "PaymentFailed",
    "AdminCommand",
    "RenewalCheckTick",
    "LifecycleEvent",
    # Effects
    "RecordPayment",
    "NotifyOwner",
    "NotifyAdmins",
    "SendEmail",
    "RecordReminder",
    "SideEffect",
    "EmailMessage",
    # API
    "AdminActionRequest",
    "AdminActionResponse",
    "AdminActionListResponse",
    "WebhookResponse",
    "RenewalSweepRequest",
    "RenewalSweepResponse",
    "RegisterAccountRequest",
    "RegisterAccountResponse",
    "NotificationListResponse",
    "MarkReadResponse",
    "AdvanceTimeRequest",
    "AdvanceTimeResponse",
    "TimeResponse",
    "ErrorResponse",
]
