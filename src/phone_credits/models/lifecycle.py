from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class VerificationStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


VERIFICATION_TERMINAL_STATES = frozenset(
    {VerificationStatus.COMPLETED, VerificationStatus.EXPIRED, VerificationStatus.FAILED}
)


class RentalType(str, Enum):
    NON_RENEWABLE = "non_renewable"
    RENEWABLE = "renewable"


class RentalStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Verification(DBSerializableModel):
    """
    One time-boxed attempt to receive a single code on a leased number.
    """

    collection_name: ClassVar[str] = "verifications"

    id: Optional[str] = Field(default=None)
    user_id: str
    service_id: str
    phone_number: Optional[str] = None
    status: VerificationStatus = VerificationStatus.PENDING
    code: Optional[str] = None
    price: Decimal = Field(description="Service price at purchase time.")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Rental(DBSerializableModel):
    """
    A longer number lease, fixed-term or renewable.
    """

    collection_name: ClassVar[str] = "rentals"

    id: Optional[str] = Field(default=None)
    user_id: str
    phone_number: str
    type: RentalType
    duration_days: int
    start_date: datetime = Field(default_factory=datetime.utcnow)
    expires_at: datetime
    auto_renew: bool = False
    price: Decimal = Field(description="Pricing-setting value at purchase time.")
    status: RentalStatus = RentalStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.utcnow)
