from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    DEDUCTION = "deduction"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(DBSerializableModel):
    """
    Immutable ledger row. `amount` is always positive; the direction is
    carried by `type`.
    """

    collection_name: ClassVar[str] = "transactions"
    unique_fields: ClassVar[tuple[str, ...]] = ("external_payment_ref",)

    id: Optional[str] = Field(default=None)
    user_id: str
    type: TransactionType
    amount: Decimal
    description: str
    status: TransactionStatus = TransactionStatus.COMPLETED
    external_payment_ref: Optional[str] = Field(
        default=None,
        description="Payment-intent id for purchases; unique when present.",
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
