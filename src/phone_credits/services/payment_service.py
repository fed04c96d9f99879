from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Tuple, Union

from ..errors import InvalidInputError, UpstreamUnavailableError
from ..models.transaction import Transaction
from ..providers.payments import PaymentIntent, PaymentProvider
from .credit_service import CreditService

logger = logging.getLogger(__name__)

DEFAULT_CREDIT_PACKAGES = (5, 10, 25, 50, 100)

_PAYMENT_INTENT_ID = re.compile(r"^[A-Za-z0-9_]{1,255}$")


class PaymentService:
    """
    Credit purchases through the payment processor.

    The client only chooses a package; the credited amount is always the
    amount the processor reports for a succeeded payment intent, and each
    intent credits its user once.
    """

    def __init__(
        self,
        credits: CreditService,
        provider: Optional[PaymentProvider],
        packages: Iterable[int] = DEFAULT_CREDIT_PACKAGES,
        currency: str = "usd",
    ) -> None:
        self._credits = credits
        self._provider = provider
        self._packages = frozenset(Decimal(p) for p in packages)
        self._currency = currency

    @property
    def packages(self) -> list[int]:
        return sorted(int(p) for p in self._packages)

    def _require_provider(self, action: str) -> PaymentProvider:
        if self._provider is None:
            raise UpstreamUnavailableError(
                f"Payments are not configured. Set STRIPE_SECRET_KEY to {action}."
            )
        return self._provider

    def validate_package(self, package_amount: Union[Decimal, int, float, str, None]) -> Decimal:
        try:
            amount = Decimal(str(package_amount))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidInputError(self._package_message()) from exc
        if not amount.is_finite() or amount not in self._packages:
            raise InvalidInputError(self._package_message())
        return amount

    def _package_message(self) -> str:
        listed = ", ".join(f"${p}" for p in self.packages)
        return f"Invalid package amount. Must be one of: {listed}"

    async def create_payment_intent(
        self, package_amount: Union[Decimal, int, float, str, None]
    ) -> PaymentIntent:
        amount = self.validate_package(package_amount)
        provider = self._require_provider("accept payments")
        intent = await provider.create_payment_intent(
            amount_cents=int(amount * 100),
            currency=self._currency,
            metadata={"packageAmount": str(int(amount))},
        )
        logger.info("Created payment intent %s for $%s", intent.id, amount)
        return intent

    async def purchase_credits(
        self,
        user_id: str,
        payment_intent_id: str,
        correlation_id: Optional[str] = None,
    ) -> Tuple[Transaction, bool]:
        """
        Credit the user for a succeeded payment intent.

        Returns (transaction, created). Replaying an intent id that was
        already credited returns the original transaction with created=False.
        """
        if not payment_intent_id or not _PAYMENT_INTENT_ID.match(payment_intent_id):
            raise InvalidInputError("Payment intent ID is required")
        provider = self._require_provider("process credit purchases")

        intent = await provider.retrieve_payment_intent(payment_intent_id)
        if intent.status != "succeeded":
            logger.warning(
                "Payment intent %s for user %s is %s", intent.id, user_id, intent.status
            )
            raise InvalidInputError("Payment has not succeeded")
        if intent.currency.lower() != self._currency:
            raise InvalidInputError(f"Unsupported payment currency: {intent.currency}")

        amount = (Decimal(intent.amount) / 100).quantize(Decimal("0.01"))
        return await self._credits.add_credits(
            user_id,
            amount,
            description="Credit purchase",
            external_ref=intent.id,
            correlation_id=correlation_id,
        )
