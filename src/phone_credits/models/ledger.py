from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class LedgerEventType(str, Enum):
    TRANSACTION = "transaction"
    LIFECYCLE = "lifecycle"
    ERROR = "error"


class LedgerEntry(DBSerializableModel):
    """
    Audit trail entry for balance mutations and verification/rental state
    changes, persisted to the store and mirrored to the JSONL ledger file.
    """

    collection_name: ClassVar[str] = "credit_ledger"

    id: Optional[str] = Field(default=None)
    event_type: LedgerEventType
    user_id: Optional[str] = None
    correlation_id: Optional[str] = Field(
        default=None,
        description="Request id tying the entry to the HTTP call that caused it.",
    )
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
