"""Client and staff account records (owned by the account service)."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AccountRole(str, Enum):
    """Account roles. Only staff roles may issue admin commands."""

    CLIENT = "CLIENT"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ELEVATED_ROLES = frozenset({AccountRole.ADMIN, AccountRole.SUPER_ADMIN})


class AccountRecord(BaseModel):
    """The parts of an account the lifecycle engine reads or toggles."""

    id: str = Field(..., description="Account identifier")
    email: str = Field(..., description="Contact email address")
    company_name: Optional[str] = Field(None, description="Registered company name")
    role: AccountRole = Field(default=AccountRole.CLIENT)
    is_active: bool = Field(default=True, description="Whether the account can use the service")

    @property
    def is_staff(self) -> bool:
        return self.role in ELEVATED_ROLES
