from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from ..cache.base import AsyncCacheBackend
from ..db.base import BaseDBManager
from ..errors import InvalidInputError, NotFoundError
from ..logging.ledger_logger import LedgerLogger
from ..models.base import to_money
from ..models.catalog import PricingServiceType, PricingSetting, Service

logger = logging.getLogger(__name__)

_ACTIVE_SERVICES_KEY = "catalog:services:active"


class CatalogService:
    """
    Read-mostly catalog of verifiable services and rental pricing.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: Optional[LedgerLogger] = None,
        cache: Optional[AsyncCacheBackend] = None,
        cache_ttl_seconds: int = 300,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._cache = cache
        self._cache_ttl = cache_ttl_seconds

    async def list_active_services(self) -> List[Service]:
        if self._cache:
            cached = await self._cache.get(_ACTIVE_SERVICES_KEY)
            if isinstance(cached, list):
                return cached
        services = list(await self._db.get_active_services())
        if self._cache:
            await self._cache.set(_ACTIVE_SERVICES_KEY, services, ttl_seconds=self._cache_ttl)
        return services

    async def get_service(self, service_id: str) -> Service:
        service = await self._db.get_service(service_id)
        if service is None:
            raise NotFoundError("Service not found")
        return service

    async def add_service(self, service: Service) -> Service:
        service.base_price = self._validate_price(service.base_price)
        service = await self._db.add_service(service)
        if self._cache:
            await self._cache.delete(_ACTIVE_SERVICES_KEY)
        return service

    async def list_pricing_settings(self) -> Iterable[PricingSetting]:
        settings = list(await self._db.get_pricing_settings())
        order = list(PricingServiceType)
        return sorted(settings, key=lambda s: order.index(s.service_type))

    async def get_pricing_setting(
        self, service_type: Union[PricingServiceType, str], fresh: bool = False
    ) -> PricingSetting:
        """
        Look up the pricing for a service type. `fresh` skips the cache;
        anything that charges credits must use it, since another process
        may have changed the price since this one cached it.
        """
        setting_type = self._parse_service_type(service_type)
        cache_key = self._pricing_cache_key(setting_type)
        if self._cache and not fresh:
            cached = await self._cache.get(cache_key)
            if isinstance(cached, PricingSetting):
                return cached
        setting = await self._db.get_pricing_setting(setting_type)
        if setting is None:
            raise NotFoundError("Pricing not found")
        if self._cache:
            await self._cache.set(cache_key, setting, ttl_seconds=self._cache_ttl)
        return setting

    async def add_pricing_setting(self, setting: PricingSetting) -> PricingSetting:
        setting.base_price = self._validate_price(setting.base_price)
        setting = await self._db.add_pricing_setting(setting)
        if self._cache:
            await self._cache.delete(self._pricing_cache_key(setting.service_type))
        return setting

    async def set_pricing_setting(
        self,
        service_type: Union[PricingServiceType, str],
        new_price: Union[Decimal, str],
        updated_by: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> PricingSetting:
        """
        Overwrite the base price for a service type. Takes effect for the
        next purchase; existing records keep their snapshotted price.
        """
        setting_type = self._parse_service_type(service_type)
        price = self._validate_price(new_price)

        current = await self._db.get_pricing_setting(setting_type)
        if current is None:
            raise NotFoundError("Pricing not found")

        updated = current.model_copy(
            update={"base_price": price, "updated_at": datetime.utcnow()}
        )
        updated = await self._db.update_pricing_setting(updated)
        if self._cache:
            await self._cache.delete(self._pricing_cache_key(setting_type))

        logger.info(
            "Pricing for %s changed from %s to %s",
            setting_type.value,
            current.base_price,
            price,
        )
        if self._ledger and updated_by:
            await self._ledger.log_lifecycle(
                user_id=updated_by,
                message="Pricing setting updated",
                details={
                    "service_type": setting_type.value,
                    "old_price": str(current.base_price),
                    "new_price": str(price),
                },
                correlation_id=correlation_id,
            )
        return updated

    @staticmethod
    def _parse_service_type(service_type: Union[PricingServiceType, str]) -> PricingServiceType:
        try:
            return PricingServiceType(service_type)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown service type: {service_type}") from exc

    @staticmethod
    def _validate_price(value: Union[Decimal, str, int, float]) -> Decimal:
        try:
            price = to_money(value)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise InvalidInputError("Price must be a decimal amount") from exc
        if not price.is_finite() or price < 0:
            raise InvalidInputError("Price must be a non-negative amount")
        return price

    @staticmethod
    def _pricing_cache_key(service_type: PricingServiceType) -> str:
        return f"catalog:pricing:{service_type.value}"
