from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..db.base import BaseDBManager
from ..errors import InsufficientCreditsError, InvalidInputError, NotFoundError
from ..logging.ledger_logger import LedgerLogger
from ..models.lifecycle import (
    VERIFICATION_TERMINAL_STATES,
    Verification,
    VerificationStatus,
)
from ..providers.numbers import NumberProvider, NumberRequest
from .catalog_service import CatalogService
from .credit_service import CreditService

logger = logging.getLogger(__name__)


class VerificationService:
    """
    Time-boxed verification sessions: pending -> active -> completed,
    expired or failed.

    A purchase debits the ledger, writes the deduction, creates the record
    and assigns a number inside one unit of work, so a failure at any step
    leaves neither a debit nor a record behind.
    """

    def __init__(
        self,
        db: BaseDBManager,
        catalog: CatalogService,
        credits: CreditService,
        numbers: NumberProvider,
        ledger: LedgerLogger,
        window_minutes: int = 5,
    ) -> None:
        self._db = db
        self._catalog = catalog
        self._credits = credits
        self._numbers = numbers
        self._ledger = ledger
        self._window = timedelta(minutes=window_minutes)

    async def purchase_verification(
        self,
        user_id: str,
        service_id: str,
        correlation_id: Optional[str] = None,
    ) -> Verification:
        service = await self._catalog.get_service(service_id)
        if not service.is_active:
            raise NotFoundError("Service not found")

        user = await self._credits.get_user(user_id)
        price = service.base_price
        if user.credit_balance < price:
            await self._ledger.log_error(
                message="Insufficient credits for verification",
                details={
                    "service_id": service_id,
                    "price": str(price),
                    "balance": str(user.credit_balance),
                },
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise InsufficientCreditsError()

        now = datetime.utcnow()
        async with self._db.transaction():
            await self._credits.deduct_credits(
                user_id,
                price,
                description=f"Phone verification - {service.name}",
                correlation_id=correlation_id,
            )
            verification = await self._db.add_verification(
                Verification(
                    user_id=user_id,
                    service_id=service.id or service_id,
                    status=VerificationStatus.ACTIVE,
                    price=price,
                    created_at=now,
                    expires_at=now + self._window,
                )
            )
            verification.phone_number = await self._numbers.assign_number(
                NumberRequest(user_id=user_id, service_slug=service.slug)
            )
            verification = await self._db.update_verification(verification)
            await self._ledger.log_lifecycle(
                user_id=user_id,
                message="Verification started",
                details={
                    "verification_id": verification.id,
                    "service_id": verification.service_id,
                    "phone_number": verification.phone_number,
                    "expires_at": verification.expires_at.isoformat()
                    if verification.expires_at
                    else None,
                },
                correlation_id=correlation_id,
            )

        logger.info(
            "Verification %s for user %s on %s at %s",
            verification.id,
            user_id,
            service.slug,
            price,
        )
        return verification

    async def list_user_verifications(self, user_id: str) -> Iterable[Verification]:
        return await self._db.get_user_verifications(user_id)

    async def get_verification(self, user_id: str, verification_id: str) -> Verification:
        verification = await self._db.get_verification(verification_id)
        if verification is None or verification.user_id != user_id:
            raise NotFoundError("Verification not found")
        return verification

    async def receive_code(
        self,
        verification_id: str,
        code: str,
        correlation_id: Optional[str] = None,
    ) -> Verification:
        """Provider callback: the one-time code arrived on the leased number."""
        code = code.strip()
        if not code or len(code) > 20:
            raise InvalidInputError("Code must be 1-20 characters")

        async with self._db.transaction():
            verification = await self._load_live(verification_id)
            verification.code = code
            verification.status = VerificationStatus.COMPLETED
            verification.completed_at = datetime.utcnow()
            verification = await self._db.update_verification(verification)
            await self._ledger.log_lifecycle(
                user_id=verification.user_id,
                message="Verification code received",
                details={"verification_id": verification.id},
                correlation_id=correlation_id,
            )
        return verification

    async def mark_failed(
        self,
        verification_id: str,
        reason: str,
        correlation_id: Optional[str] = None,
    ) -> Verification:
        """Provider callback: the number could not be used. Refunds the price."""
        async with self._db.transaction():
            verification = await self._load_live(verification_id)
            verification.status = VerificationStatus.FAILED
            verification.completed_at = datetime.utcnow()
            verification = await self._db.update_verification(verification)
            if verification.price > 0:
                await self._credits.refund_credits(
                    verification.user_id,
                    verification.price,
                    description=f"Refund - failed verification {verification.id}",
                    correlation_id=correlation_id,
                )
            await self._ledger.log_lifecycle(
                user_id=verification.user_id,
                message="Verification failed",
                details={"verification_id": verification.id, "reason": reason},
                correlation_id=correlation_id,
            )
        return verification

    async def expire(
        self,
        verification: Verification,
        correlation_id: Optional[str] = None,
    ) -> Verification:
        """Close an unanswered session and refund its price."""
        async with self._db.transaction():
            verification = await self._load_live(verification.id or "")
            verification.status = VerificationStatus.EXPIRED
            verification = await self._db.update_verification(verification)
            if verification.price > 0:
                await self._credits.refund_credits(
                    verification.user_id,
                    verification.price,
                    description=f"Refund - expired verification {verification.id}",
                    correlation_id=correlation_id,
                )
            await self._ledger.log_lifecycle(
                user_id=verification.user_id,
                message="Verification expired",
                details={"verification_id": verification.id},
                correlation_id=correlation_id,
            )
        return verification

    async def _load_live(self, verification_id: str) -> Verification:
        verification = await self._db.get_verification(verification_id)
        if verification is None:
            raise NotFoundError("Verification not found")
        if verification.status in VERIFICATION_TERMINAL_STATES:
            raise InvalidInputError(
                f"Verification is already {verification.status.value}"
            )
        return verification
