from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from ..models.lifecycle import RentalType


class NumberRequest(BaseModel):
    """What the caller needs a number for."""

    user_id: str
    service_slug: Optional[str] = None
    rental_type: Optional[RentalType] = None
    duration_days: Optional[int] = None
    country: str = "US"


class NumberProvider(ABC):
    """
    SMS/voice provisioning capability.

    A real provider leases a number from a carrier API and later reports the
    received code through `VerificationService.receive_code`, usually via the
    provider callback endpoint.
    """

    @abstractmethod
    async def assign_number(self, request: NumberRequest) -> str:
        ...


class PlaceholderNumberProvider(NumberProvider):
    """
    Stand-in until a carrier integration is configured: synthesizes a
    number in the reserved 555 exchange.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.Random()

    async def assign_number(self, request: NumberRequest) -> str:
        return (
            f"+1 (555) {self._rng.randint(100, 999)}-{self._rng.randint(1000, 9999)}"
        )
