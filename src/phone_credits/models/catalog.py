from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class PricingServiceType(str, Enum):
    VERIFICATION = "verification"
    NON_RENEWABLE_RENTAL = "non_renewable_rental"
    RENEWABLE_RENTAL = "renewable_rental"


class Service(DBSerializableModel):
    """
    A third-party platform numbers can be verified against.
    """

    collection_name: ClassVar[str] = "services"
    unique_fields: ClassVar[tuple[str, ...]] = ("slug",)

    id: Optional[str] = Field(default=None)
    name: str
    slug: str
    logo_url: Optional[str] = None
    category: Optional[str] = None
    base_price: Decimal
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PricingSetting(DBSerializableModel):
    """
    Admin-adjustable base price, one row per service type.
    Rentals are priced from here; verifications use `Service.base_price`.
    """

    collection_name: ClassVar[str] = "pricing_settings"
    unique_fields: ClassVar[tuple[str, ...]] = ("service_type",)

    id: Optional[str] = Field(default=None)
    service_type: PricingServiceType
    base_price: Decimal
    description: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
