from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from ..db.base import BaseDBManager
from ..errors import (
    DuplicateRecordError,
    InsufficientCreditsError,
    InvalidInputError,
    NotFoundError,
)
from ..logging.ledger_logger import LedgerLogger
from ..models.base import to_money
from ..models.transaction import Transaction, TransactionStatus, TransactionType
from ..models.user import UserAccount

logger = logging.getLogger(__name__)


class CreditService:
    """
    Credit ledger: user balances plus the append-only transaction log.

    Every balance change is written together with its transaction row in
    one unit of work, and debits are conditional updates so two concurrent
    spends can never take a balance below zero.
    """

    def __init__(self, db: BaseDBManager, ledger: LedgerLogger) -> None:
        self._db = db
        self._ledger = ledger

    async def get_user(self, user_id: str) -> UserAccount:
        user = await self._db.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def get_balance(self, user_id: str) -> Decimal:
        user = await self.get_user(user_id)
        return user.credit_balance

    async def ensure_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
    ) -> UserAccount:
        """
        Upsert by external identity id. New users start with a zero balance;
        existing users get their profile fields refreshed when they changed.
        """
        profile = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "profile_image_url": profile_image_url,
        }
        profile = {k: v for k, v in profile.items() if v is not None}

        user = await self._db.get_user(user_id)
        if user is None:
            try:
                user = await self._db.add_user(UserAccount(id=user_id, **profile))
            except InvalidInputError:
                # Lost a first-login race with a concurrent request.
                return await self.get_user(user_id)
            logger.info("Created user %s", user_id)
            return user

        changed = {k: v for k, v in profile.items() if getattr(user, k) != v}
        if changed:
            user = await self._db.update_user(user.model_copy(update=changed))
        return user

    async def adjust_balance(
        self,
        user_id: str,
        signed_amount: Decimal,
        correlation_id: Optional[str] = None,
    ) -> UserAccount:
        """
        Add a signed amount to the balance atomically, rounded to cents.
        A debit larger than the balance raises InsufficientCreditsError.
        """
        amount = to_money(signed_amount)
        user = await self._db.adjust_user_balance(user_id, amount)
        if user is None:
            await self._ledger.log_error(
                message="Insufficient credits for deduction",
                details={"requested": str(-amount)},
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise InsufficientCreditsError()
        return user

    async def record_transaction(
        self,
        user_id: str,
        type: TransactionType,
        amount: Decimal,
        description: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        external_ref: Optional[str] = None,
    ) -> Transaction:
        tx = Transaction(
            user_id=user_id,
            type=type,
            amount=abs(to_money(amount)),
            description=description,
            status=status,
            external_payment_ref=external_ref,
        )
        return await self._db.add_transaction(tx)

    async def add_credits(
        self,
        user_id: str,
        amount: Decimal,
        description: str = "Credit purchase",
        external_ref: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Tuple[Transaction, bool]:
        """
        Credit a purchase. Returns (transaction, created); when
        `external_ref` was already applied the existing transaction is
        returned with created=False and the balance is left alone.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidInputError("amount must be positive")

        if external_ref is not None:
            existing = await self._applied_payment(user_id, external_ref)
            if existing is not None:
                return existing, False

        await self.get_user(user_id)
        try:
            async with self._db.transaction():
                # The row goes first: its unique payment reference is what
                # stops a concurrent replay, even without multi-document
                # transactions.
                tx = await self.record_transaction(
                    user_id,
                    TransactionType.PURCHASE,
                    amount,
                    description,
                    external_ref=external_ref,
                )
                user = await self.adjust_balance(user_id, amount, correlation_id=correlation_id)
                await self._ledger.log_transaction(
                    user_id=user_id,
                    message="Credits added",
                    details={
                        "amount": str(amount),
                        "new_balance": str(user.credit_balance),
                        "external_ref": external_ref or "",
                    },
                    correlation_id=correlation_id,
                )
                return tx, True
        except DuplicateRecordError:
            if external_ref is None:
                raise
            existing = await self._applied_payment(user_id, external_ref)
            if existing is None:
                raise
            return existing, False

    async def _applied_payment(self, user_id: str, external_ref: str) -> Optional[Transaction]:
        existing = await self._db.get_transaction_by_external_ref(external_ref)
        if existing is None:
            return None
        if existing.user_id != user_id:
            raise InvalidInputError("Payment has already been applied")
        logger.info("Payment %s already credited, skipping", external_ref)
        return existing

    async def deduct_credits(
        self,
        user_id: str,
        amount: Decimal,
        description: str,
        correlation_id: Optional[str] = None,
    ) -> Transaction:
        amount = to_money(amount)
        if amount < 0:
            raise InvalidInputError("amount must not be negative")

        async with self._db.transaction():
            user = await self.adjust_balance(user_id, -amount, correlation_id=correlation_id)
            tx = await self.record_transaction(
                user_id, TransactionType.DEDUCTION, amount, description
            )
            await self._ledger.log_transaction(
                user_id=user_id,
                message="Credits deducted",
                details={
                    "amount": str(amount),
                    "new_balance": str(user.credit_balance),
                    "description": description,
                },
                correlation_id=correlation_id,
            )
            return tx

    async def refund_credits(
        self,
        user_id: str,
        amount: Decimal,
        description: str,
        correlation_id: Optional[str] = None,
    ) -> Transaction:
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidInputError("amount must be positive")

        async with self._db.transaction():
            user = await self.adjust_balance(user_id, amount, correlation_id=correlation_id)
            tx = await self.record_transaction(
                user_id, TransactionType.REFUND, amount, description
            )
            await self._ledger.log_transaction(
                user_id=user_id,
                message="Credits refunded",
                details={
                    "amount": str(amount),
                    "new_balance": str(user.credit_balance),
                    "description": description,
                },
                correlation_id=correlation_id,
            )
            return tx

    async def get_credit_history(self, user_id: str) -> Iterable[Transaction]:
        return await self._db.get_transactions(user_id)
