from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from phone_credits.cache.memory import InMemoryAsyncCache
from phone_credits.db.memory import InMemoryDBManager
from phone_credits.errors import InvalidInputError, UpstreamUnavailableError
from phone_credits.logging.ledger_logger import LedgerLogger
from phone_credits.models.catalog import Service
from phone_credits.providers.numbers import NumberProvider, NumberRequest
from phone_credits.providers.payments import PaymentIntent, PaymentProvider
from phone_credits.services.catalog_service import CatalogService
from phone_credits.services.credit_service import CreditService
from phone_credits.services.expiration_service import ExpirationService
from phone_credits.services.payment_service import PaymentService
from phone_credits.services.rental_service import RentalService
from phone_credits.services.verification_service import VerificationService


class FakeNumberProvider(NumberProvider):
    """Hands out sequential 555 numbers; can be told to fail."""

    def __init__(self) -> None:
        self.requests: List[NumberRequest] = []
        self.fail = False
        self._next = 1

    async def assign_number(self, request: NumberRequest) -> str:
        if self.fail:
            raise UpstreamUnavailableError("No numbers available", status_code=502)
        self.requests.append(request)
        number = f"+1 (555) 010-{self._next:04d}"
        self._next += 1
        return number


class FakePaymentProvider(PaymentProvider):
    """Payment intents kept in a dict; tests mark them succeeded by hand."""

    def __init__(self) -> None:
        self.intents: Dict[str, PaymentIntent] = {}
        self.created: List[PaymentIntent] = []

    def add_intent(
        self, intent_id: str, amount_cents: int, status: str = "succeeded", currency: str = "usd"
    ) -> PaymentIntent:
        intent = PaymentIntent(
            id=intent_id,
            status=status,
            amount=amount_cents,
            currency=currency,
            client_secret=f"{intent_id}_secret_test",
        )
        self.intents[intent_id] = intent
        return intent

    async def create_payment_intent(
        self, amount_cents: int, currency: str, metadata: Dict[str, str]
    ) -> PaymentIntent:
        intent_id = f"pi_test{len(self.created) + 1}"
        intent = PaymentIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount_cents,
            currency=currency,
            client_secret=f"{intent_id}_secret_test",
            metadata=metadata,
        )
        self.created.append(intent)
        self.intents[intent_id] = intent
        return intent

    async def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise InvalidInputError("Payment intent not found")
        return intent


class Stack:
    """The service graph over one in-memory store, as the app wires it."""

    def __init__(self, tmp_path) -> None:
        self.db = InMemoryDBManager()
        self.ledger_path = tmp_path / "ledger.log"
        self.ledger = LedgerLogger(db=self.db, file_path=self.ledger_path)
        self.credits = CreditService(db=self.db, ledger=self.ledger)
        self.catalog = CatalogService(
            db=self.db, ledger=self.ledger, cache=InMemoryAsyncCache()
        )
        self.numbers = FakeNumberProvider()
        self.payment_provider = FakePaymentProvider()
        self.verifications = VerificationService(
            db=self.db,
            catalog=self.catalog,
            credits=self.credits,
            numbers=self.numbers,
            ledger=self.ledger,
        )
        self.rentals = RentalService(
            db=self.db,
            catalog=self.catalog,
            credits=self.credits,
            numbers=self.numbers,
            ledger=self.ledger,
        )
        self.payments = PaymentService(credits=self.credits, provider=self.payment_provider)
        self.expiration = ExpirationService(
            db=self.db, verifications=self.verifications, rentals=self.rentals
        )

    async def user_with_balance(self, user_id: str, balance: str) -> None:
        await self.credits.ensure_user(user_id)
        if Decimal(balance) > 0:
            await self.credits.add_credits(user_id, Decimal(balance))

    async def add_service(
        self, name: str, price: str, is_active: bool = True
    ) -> Service:
        return await self.catalog.add_service(
            Service(
                name=name,
                slug=name.lower(),
                category="Test",
                base_price=Decimal(price),
                is_active=is_active,
            )
        )

    def ledger_messages(self, user_id: Optional[str] = None) -> List[str]:
        return [
            e.message
            for e in self.db.ledger_entries
            if user_id is None or e.user_id == user_id
        ]


@pytest.fixture
def stack(tmp_path) -> Stack:
    return Stack(tmp_path)
