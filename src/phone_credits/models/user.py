from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class UserAccount(DBSerializableModel):
    """
    Internal user representation for the credit system.

    The id is the external identity id asserted by the upstream identity
    provider; the record is created on first sight and never deleted here.
    """

    collection_name: ClassVar[str] = "users"

    id: Optional[str] = Field(default=None)
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    credit_balance: Decimal = Field(default=Decimal("0.00"))
    is_admin: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
