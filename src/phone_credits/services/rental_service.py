from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Union

from ..db.base import BaseDBManager
from ..errors import InsufficientCreditsError, InvalidInputError, NotFoundError
from ..logging.ledger_logger import LedgerLogger
from ..models.catalog import PricingServiceType
from ..models.lifecycle import Rental, RentalStatus, RentalType
from ..providers.numbers import NumberProvider, NumberRequest
from .catalog_service import CatalogService
from .credit_service import CreditService

logger = logging.getLogger(__name__)

_PRICING_KEYS = {
    RentalType.RENEWABLE: PricingServiceType.RENEWABLE_RENTAL,
    RentalType.NON_RENEWABLE: PricingServiceType.NON_RENEWABLE_RENTAL,
}

MAX_RENTAL_DAYS = 365


class RentalService:
    """
    Number leases priced from the pricing settings.
    """

    def __init__(
        self,
        db: BaseDBManager,
        catalog: CatalogService,
        credits: CreditService,
        numbers: NumberProvider,
        ledger: LedgerLogger,
    ) -> None:
        self._db = db
        self._catalog = catalog
        self._credits = credits
        self._numbers = numbers
        self._ledger = ledger

    async def purchase_rental(
        self,
        user_id: str,
        rental_type: Union[RentalType, str],
        duration_days: int,
        correlation_id: Optional[str] = None,
    ) -> Rental:
        try:
            rental_type = RentalType(rental_type)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown rental type: {rental_type}") from exc
        if isinstance(duration_days, bool) or not isinstance(duration_days, int):
            raise InvalidInputError("Duration must be a whole number of days")
        if not 1 <= duration_days <= MAX_RENTAL_DAYS:
            raise InvalidInputError(f"Duration must be between 1 and {MAX_RENTAL_DAYS} days")

        pricing = await self._catalog.get_pricing_setting(
            _PRICING_KEYS[rental_type], fresh=True
        )
        price = pricing.base_price

        user = await self._credits.get_user(user_id)
        if user.credit_balance < price:
            await self._ledger.log_error(
                message="Insufficient credits for rental",
                details={
                    "rental_type": rental_type.value,
                    "price": str(price),
                    "balance": str(user.credit_balance),
                },
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise InsufficientCreditsError()

        start_date = datetime.utcnow()
        label = "Renewable" if rental_type == RentalType.RENEWABLE else "Non-renewable"

        async with self._db.transaction():
            phone_number = await self._numbers.assign_number(
                NumberRequest(
                    user_id=user_id,
                    rental_type=rental_type,
                    duration_days=duration_days,
                )
            )
            rental = await self._db.add_rental(
                Rental(
                    user_id=user_id,
                    phone_number=phone_number,
                    type=rental_type,
                    duration_days=duration_days,
                    start_date=start_date,
                    expires_at=start_date + timedelta(days=duration_days),
                    auto_renew=rental_type == RentalType.RENEWABLE,
                    price=price,
                    status=RentalStatus.ACTIVE,
                    created_at=start_date,
                )
            )
            await self._credits.deduct_credits(
                user_id,
                price,
                description=f"{label} rental ({duration_days} days)",
                correlation_id=correlation_id,
            )
            await self._ledger.log_lifecycle(
                user_id=user_id,
                message="Rental started",
                details={
                    "rental_id": rental.id,
                    "type": rental_type.value,
                    "duration_days": duration_days,
                    "expires_at": rental.expires_at.isoformat(),
                },
                correlation_id=correlation_id,
            )

        logger.info(
            "Rental %s (%s, %d days) for user %s at %s",
            rental.id,
            rental_type.value,
            duration_days,
            user_id,
            price,
        )
        return rental

    async def list_user_rentals(self, user_id: str) -> Iterable[Rental]:
        return await self._db.get_user_rentals(user_id)

    async def get_rental(self, user_id: str, rental_id: str) -> Rental:
        rental = await self._db.get_rental(rental_id)
        if rental is None or rental.user_id != user_id:
            raise NotFoundError("Rental not found")
        return rental

    async def expire(self, rental: Rental, correlation_id: Optional[str] = None) -> Rental:
        """Mark a lapsed lease expired. Renewal billing is not automated."""
        async with self._db.transaction():
            current = await self._db.get_rental(rental.id or "")
            if current is None:
                raise NotFoundError("Rental not found")
            if current.status != RentalStatus.ACTIVE:
                raise InvalidInputError(f"Rental is already {current.status.value}")
            current.status = RentalStatus.EXPIRED
            current = await self._db.update_rental(current)
            await self._ledger.log_lifecycle(
                user_id=current.user_id,
                message="Rental expired",
                details={"rental_id": current.id, "auto_renew": current.auto_renew},
                correlation_id=correlation_id,
            )
        return current
