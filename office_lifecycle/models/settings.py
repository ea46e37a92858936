"""Service configuration models.

Models for config/lifecycle.yaml.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from office_lifecycle.utils.billing_period import validate_billing_period


class PlanConfig(BaseModel):
    """The single registered office plan."""

    name: str = Field(default="Registered Office Address", description="Plan display name")
    price_minor_units: int = Field(default=7500, ge=0, description="Annual price in minor units")
    currency: str = Field(default="gbp", description="ISO 4217 currency code")
    term: str = Field(default="P1Y", description="ISO 8601 duration of one service term")

    @field_validator("term")
    @classmethod
    def _check_term(cls, value: str) -> str:
        if not validate_billing_period(value):
            raise ValueError(f"Invalid term duration: {value}")
        return value

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Registered Office Address",
                "price_minor_units": 7500,
                "currency": "gbp",
                "term": "P1Y",
            }
        }


class BillingConfig(BaseModel):
    """Payment retry and ledger contention settings."""

    retry_threshold: int = Field(default=3, ge=1, description="Failed payments before suspension")
    conflict_retry_attempts: int = Field(default=3, ge=1, description="Attempts on lock contention")
    conflict_retry_min_seconds: float = Field(default=0.05, ge=0, description="First backoff wait")
    conflict_retry_max_seconds: float = Field(default=1.0, ge=0, description="Backoff ceiling")
    lock_timeout_seconds: float = Field(default=5.0, gt=0, description="Row lock wait before conflict")


class ReminderConfig(BaseModel):
    """Renewal reminder day buckets."""

    bucket_days: list[int] = Field(default_factory=lambda: [60, 30, 7])

    @field_validator("bucket_days")
    @classmethod
    def _check_buckets(cls, value: list[int]) -> list[int]:
        if not value or any(day <= 0 for day in value):
            raise ValueError("bucket_days must be a non-empty list of positive integers")
        if len(set(value)) != len(value):
            raise ValueError("bucket_days must not repeat")
        return sorted(value, reverse=True)


class StaffAccount(BaseModel):
    """Staff account seeded into the account directory."""

    id: str
    email: str
    role: str = Field(default="ADMIN", description="ADMIN or SUPER_ADMIN")


class NotificationConfig(BaseModel):
    """Who receives admin fan-out notifications."""

    admins: list[StaffAccount] = Field(default_factory=list)


class PubSubConfig(BaseModel):
    """Outbound email topic on Pub/Sub."""

    enabled: bool = Field(default=False, description="Publish outbound email messages")
    project_id: str = Field(default="office-lifecycle", description="GCP project ID")
    topic: str = Field(default="outbound-email", description="Pub/Sub topic name")
    create_topic: bool = Field(default=False, description="Create the topic on startup if missing")


class SecurityConfig(BaseModel):
    """Shared secrets. Environment variables override these values."""

    webhook_secret: Optional[str] = Field(None, description="Gateway webhook signing secret")
    cron_secret: Optional[str] = Field(None, description="Shared secret for the cron trigger")
    signature_tolerance_seconds: int = Field(
        default=300, ge=0, description="Maximum webhook timestamp age"
    )


class LifecycleConfig(BaseModel):
    """Complete lifecycle.yaml configuration."""

    plan: PlanConfig = Field(default_factory=PlanConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    pubsub: PubSubConfig = Field(default_factory=PubSubConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
