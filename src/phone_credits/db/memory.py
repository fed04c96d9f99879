from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, TypeVar

from .base import BaseDBManager
from ..errors import DuplicateRecordError, NotFoundError
from ..models.base import to_money
from ..models.catalog import PricingServiceType, PricingSetting, Service
from ..models.ledger import LedgerEntry
from ..models.lifecycle import (
    Rental,
    RentalStatus,
    Verification,
    VerificationStatus,
)
from ..models.transaction import Transaction
from ..models.user import UserAccount

T = TypeVar("T", Transaction, Verification, Rental)


def _newest_first(items: List[T]) -> List[T]:
    # Insertion order breaks ties between records created in the same instant.
    ordered = sorted(enumerate(items), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
    return [item for _, item in ordered]


class InMemoryDBManager(BaseDBManager):
    """
    Simple in-memory implementation used for tests and local development.
    NOT suitable for production, but exercises the abstraction and services.

    Units of work are serialized with a lock and rolled back by restoring a
    snapshot of every table taken when the outermost transaction opened.
    """

    def __init__(self) -> None:
        self._users: Dict[str, UserAccount] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._services: Dict[str, Service] = {}
        self._pricing: Dict[PricingServiceType, PricingSetting] = {}
        self._verifications: Dict[str, Verification] = {}
        self._rentals: Dict[str, Rental] = {}
        self._ledger: List[LedgerEntry] = []
        self._id_counter: int = 0
        self._lock = asyncio.Lock()
        # Post-commit callbacks of the open unit of work; None outside one.
        self._pending: ContextVar[Optional[List[Callable[[], None]]]] = ContextVar(
            f"inmemory_tx_{id(self)}", default=None
        )

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "_users": {k: v.model_copy(deep=True) for k, v in self._users.items()},
            "_transactions": dict(self._transactions),
            "_services": {k: v.model_copy(deep=True) for k, v in self._services.items()},
            "_pricing": {k: v.model_copy(deep=True) for k, v in self._pricing.items()},
            "_verifications": {
                k: v.model_copy(deep=True) for k, v in self._verifications.items()
            },
            "_rentals": {k: v.model_copy(deep=True) for k, v in self._rentals.items()},
            "_ledger": list(self._ledger),
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._pending.get() is not None:
            yield
            return

        callbacks: List[Callable[[], None]] = []
        async with self._lock:
            token = self._pending.set(callbacks)
            snapshot = self._snapshot()
            try:
                yield
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._pending.reset(token)
        for callback in callbacks:
            callback()

    def on_commit(self, callback: Callable[[], None]) -> None:
        pending = self._pending.get()
        if pending is None:
            callback()
        else:
            pending.append(callback)

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        if user.id is None:
            user.id = self._next_id()
        if user.id in self._users:
            raise DuplicateRecordError(f"User {user.id} already exists")
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return self._users.get(user_id)

    async def update_user(self, user: UserAccount) -> UserAccount:
        if user.id is None:
            raise ValueError("User must have id to be updated")
        self._users[user.id] = user
        return user

    async def adjust_user_balance(
        self,
        user_id: str,
        delta: Decimal,
        minimum: Optional[Decimal] = Decimal("0.00"),
    ) -> Optional[UserAccount]:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        new_balance = to_money(user.credit_balance + delta)
        if minimum is not None and new_balance < minimum:
            return None
        updated = user.model_copy(
            update={"credit_balance": new_balance, "updated_at": datetime.utcnow()}
        )
        self._users[user_id] = updated
        return updated

    # Transaction log
    async def add_transaction(self, tx: Transaction) -> Transaction:
        if tx.id is None:
            tx.id = self._next_id()
        if tx.external_payment_ref is not None:
            existing = await self.get_transaction_by_external_ref(tx.external_payment_ref)
            if existing is not None:
                raise DuplicateRecordError("Payment has already been applied")
        self._transactions[tx.id] = tx
        return tx

    async def get_transactions(self, user_id: str) -> Iterable[Transaction]:
        txs = [t for t in self._transactions.values() if t.user_id == user_id]
        return _newest_first(txs)

    async def get_transaction_by_external_ref(
        self, external_payment_ref: str
    ) -> Optional[Transaction]:
        for tx in self._transactions.values():
            if tx.external_payment_ref == external_payment_ref:
                return tx
        return None

    # Catalog
    async def add_service(self, service: Service) -> Service:
        if await self.get_service_by_slug(service.slug) is not None:
            raise DuplicateRecordError(f"Service slug {service.slug!r} already exists")
        if service.id is None:
            service.id = self._next_id()
        self._services[service.id] = service
        return service

    async def get_service(self, service_id: str) -> Optional[Service]:
        return self._services.get(service_id)

    async def get_service_by_slug(self, slug: str) -> Optional[Service]:
        for service in self._services.values():
            if service.slug == slug:
                return service
        return None

    async def get_active_services(self) -> Iterable[Service]:
        active = [s for s in self._services.values() if s.is_active]
        return sorted(active, key=lambda s: s.name)

    async def get_pricing_settings(self) -> Iterable[PricingSetting]:
        return list(self._pricing.values())

    async def get_pricing_setting(
        self, service_type: PricingServiceType
    ) -> Optional[PricingSetting]:
        return self._pricing.get(PricingServiceType(service_type))

    async def add_pricing_setting(self, setting: PricingSetting) -> PricingSetting:
        if setting.service_type in self._pricing:
            raise DuplicateRecordError(
                f"Pricing for {setting.service_type.value} already exists"
            )
        if setting.id is None:
            setting.id = self._next_id()
        self._pricing[setting.service_type] = setting
        return setting

    async def update_pricing_setting(self, setting: PricingSetting) -> PricingSetting:
        if setting.service_type not in self._pricing:
            raise NotFoundError("Pricing not found")
        self._pricing[setting.service_type] = setting
        return setting

    # Verifications
    async def add_verification(self, verification: Verification) -> Verification:
        if verification.id is None:
            verification.id = self._next_id()
        self._verifications[verification.id] = verification
        return verification

    async def get_verification(self, verification_id: str) -> Optional[Verification]:
        return self._verifications.get(verification_id)

    async def update_verification(self, verification: Verification) -> Verification:
        if verification.id is None:
            raise ValueError("Verification must have id to be updated")
        self._verifications[verification.id] = verification
        return verification

    async def get_user_verifications(self, user_id: str) -> Iterable[Verification]:
        items = [v for v in self._verifications.values() if v.user_id == user_id]
        return _newest_first(items)

    async def get_expired_verifications(self, as_of: datetime) -> Iterable[Verification]:
        live = {VerificationStatus.PENDING, VerificationStatus.ACTIVE}
        return [
            v
            for v in self._verifications.values()
            if v.status in live and v.expires_at is not None and v.expires_at < as_of
        ]

    # Rentals
    async def add_rental(self, rental: Rental) -> Rental:
        if rental.id is None:
            rental.id = self._next_id()
        self._rentals[rental.id] = rental
        return rental

    async def get_rental(self, rental_id: str) -> Optional[Rental]:
        return self._rentals.get(rental_id)

    async def update_rental(self, rental: Rental) -> Rental:
        if rental.id is None:
            raise ValueError("Rental must have id to be updated")
        self._rentals[rental.id] = rental
        return rental

    async def get_user_rentals(self, user_id: str) -> Iterable[Rental]:
        items = [r for r in self._rentals.values() if r.user_id == user_id]
        return _newest_first(items)

    async def get_expired_rentals(self, as_of: datetime) -> Iterable[Rental]:
        return [
            r
            for r in self._rentals.values()
            if r.status == RentalStatus.ACTIVE and r.expires_at < as_of
        ]

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.id is None:
            entry.id = self._next_id()
        self._ledger.append(entry)
        return entry

    @property
    def ledger_entries(self) -> List[LedgerEntry]:
        return list(self._ledger)
