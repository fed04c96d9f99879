from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Callable, Iterable, Optional

from ..models.catalog import PricingServiceType, PricingSetting, Service
from ..models.ledger import LedgerEntry
from ..models.lifecycle import Rental, Verification
from ..models.transaction import Transaction
from ..models.user import UserAccount


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Services receive an instance of this class instead of reaching for a
    global store, so tests can substitute the in-memory implementation.
    Multi-step writes are grouped with the `transaction()` context manager;
    nested calls join the outermost unit of work.
    """

    @abstractmethod
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Provide an atomic transaction context if the backend supports it.
        Should rollback on exception and commit on success.
        """
        yield

    def on_commit(self, callback: Callable[[], None]) -> None:
        """
        Run `callback` once the current unit of work commits; it is dropped
        if the unit rolls back. Outside a unit of work it runs immediately.
        """
        callback()

    # User operations
    @abstractmethod
    async def add_user(self, user: UserAccount) -> UserAccount: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def update_user(self, user: UserAccount) -> UserAccount: ...

    @abstractmethod
    async def adjust_user_balance(
        self,
        user_id: str,
        delta: Decimal,
        minimum: Optional[Decimal] = Decimal("0.00"),
    ) -> Optional[UserAccount]:
        """
        Atomically add `delta` to the user's balance.

        The write only happens when the resulting balance is >= `minimum`
        (pass None to skip the floor). Returns the updated user, or None
        when the floor condition rejected the write. Raises NotFoundError
        when the user does not exist.
        """
        ...

    # Transaction log
    @abstractmethod
    async def add_transaction(self, tx: Transaction) -> Transaction: ...

    @abstractmethod
    async def get_transactions(self, user_id: str) -> Iterable[Transaction]:
        """Transactions for a user, newest first."""
        ...

    @abstractmethod
    async def get_transaction_by_external_ref(
        self, external_payment_ref: str
    ) -> Optional[Transaction]: ...

    # Catalog
    @abstractmethod
    async def add_service(self, service: Service) -> Service: ...

    @abstractmethod
    async def get_service(self, service_id: str) -> Optional[Service]: ...

    @abstractmethod
    async def get_service_by_slug(self, slug: str) -> Optional[Service]: ...

    @abstractmethod
    async def get_active_services(self) -> Iterable[Service]:
        """Active services ordered by name."""
        ...

    @abstractmethod
    async def get_pricing_settings(self) -> Iterable[PricingSetting]: ...

    @abstractmethod
    async def get_pricing_setting(
        self, service_type: PricingServiceType
    ) -> Optional[PricingSetting]: ...

    @abstractmethod
    async def add_pricing_setting(self, setting: PricingSetting) -> PricingSetting: ...

    @abstractmethod
    async def update_pricing_setting(self, setting: PricingSetting) -> PricingSetting: ...

    # Verifications
    @abstractmethod
    async def add_verification(self, verification: Verification) -> Verification: ...

    @abstractmethod
    async def get_verification(self, verification_id: str) -> Optional[Verification]: ...

    @abstractmethod
    async def update_verification(self, verification: Verification) -> Verification: ...

    @abstractmethod
    async def get_user_verifications(self, user_id: str) -> Iterable[Verification]:
        """Verifications for a user, newest first."""
        ...

    @abstractmethod
    async def get_expired_verifications(self, as_of: datetime) -> Iterable[Verification]:
        """Pending/active verifications whose `expires_at` is before `as_of`."""
        ...

    # Rentals
    @abstractmethod
    async def add_rental(self, rental: Rental) -> Rental: ...

    @abstractmethod
    async def get_rental(self, rental_id: str) -> Optional[Rental]: ...

    @abstractmethod
    async def update_rental(self, rental: Rental) -> Rental: ...

    @abstractmethod
    async def get_user_rentals(self, user_id: str) -> Iterable[Rental]:
        """Rentals for a user, newest first."""
        ...

    @abstractmethod
    async def get_expired_rentals(self, as_of: datetime) -> Iterable[Rental]:
        """Active rentals whose `expires_at` is before `as_of`."""
        ...

    # Ledger
    @abstractmethod
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry: ...
