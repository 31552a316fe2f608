from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    CUSTOMER = "customer"
    SELLER = "seller"
    ADMIN = "admin"


class UserStatus(str, Enum):
    """Account lifecycle states persisted on the user record."""

    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"


@dataclass
class User:
    id: str
    email: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    role: str = Role.CUSTOMER.value
    status: str = UserStatus.PENDING_VERIFICATION.value
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    @property
    def is_email_verified(self) -> bool:
        return self.status == UserStatus.ACTIVE.value
