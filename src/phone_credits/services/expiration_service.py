from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from ..db.base import BaseDBManager
from ..errors import PhoneCreditsError
from .rental_service import RentalService
from .verification_service import VerificationService

logger = logging.getLogger(__name__)


class ExpirationService:
    """
    Sweeps lifecycle records whose time box has passed.

    Unanswered verifications become `expired` and are refunded; active
    rentals past `expires_at` become `expired`. Typically invoked by a
    scheduler or the periodic task started by the app.
    """

    def __init__(
        self,
        db: BaseDBManager,
        verifications: VerificationService,
        rentals: RentalService,
    ) -> None:
        self._db = db
        self._verifications = verifications
        self._rentals = rentals

    async def expire_verifications(self, as_of: Optional[datetime] = None) -> int:
        as_of = as_of or datetime.utcnow()
        expired = 0
        for verification in await self._db.get_expired_verifications(as_of):
            try:
                await self._verifications.expire(verification)
            except PhoneCreditsError as exc:
                # Completed by a provider callback after the query ran.
                logger.info("Skipped verification %s: %s", verification.id, exc.message)
                continue
            expired += 1
        return expired

    async def expire_rentals(self, as_of: Optional[datetime] = None) -> int:
        as_of = as_of or datetime.utcnow()
        expired = 0
        for rental in await self._db.get_expired_rentals(as_of):
            try:
                await self._rentals.expire(rental)
            except PhoneCreditsError as exc:
                logger.info("Skipped rental %s: %s", rental.id, exc.message)
                continue
            expired += 1
        return expired

    async def run_sweep(self, as_of: Optional[datetime] = None) -> Dict[str, int]:
        as_of = as_of or datetime.utcnow()
        result = {
            "verifications": await self.expire_verifications(as_of),
            "rentals": await self.expire_rentals(as_of),
        }
        if any(result.values()):
            logger.info("Expiry sweep: %s", result)
        return result

    async def run_forever(self, interval_seconds: float) -> None:
        while True:
            try:
                await self.run_sweep()
            except Exception:
                logger.exception("Expiry sweep failed")
            await asyncio.sleep(interval_seconds)
