from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .catalog import PricingServiceType
from .lifecycle import RentalStatus, RentalType, VerificationStatus
from .transaction import TransactionStatus, TransactionType


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Requests


class CreateVerificationRequest(ApiModel):
    service_id: str = Field(min_length=1)


class CreateRentalRequest(ApiModel):
    type: RentalType
    duration_days: int


class CreatePaymentIntentRequest(ApiModel):
    package_amount: Any = None


class PurchaseCreditsRequest(ApiModel):
    payment_intent_id: str = Field(min_length=1)


class UpdatePricingRequest(ApiModel):
    base_price: Decimal


class ProviderCodeRequest(ApiModel):
    code: Optional[str] = None
    failed: bool = False
    reason: Optional[str] = None


# Responses


class UserResponse(ApiModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    credit_balance: Decimal
    is_admin: bool
    created_at: datetime
    updated_at: datetime


class TransactionResponse(ApiModel):
    id: str
    user_id: str
    type: TransactionType
    amount: Decimal
    description: str
    status: TransactionStatus
    external_payment_ref: Optional[str] = None
    created_at: datetime


class ServiceResponse(ApiModel):
    id: str
    name: str
    slug: str
    logo_url: Optional[str] = None
    category: Optional[str] = None
    base_price: Decimal
    is_active: bool
    created_at: datetime


class VerificationResponse(ApiModel):
    id: str
    user_id: str
    service_id: str
    phone_number: Optional[str] = None
    status: VerificationStatus
    code: Optional[str] = None
    price: Decimal
    created_at: datetime
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RentalResponse(ApiModel):
    id: str
    user_id: str
    phone_number: str
    type: RentalType
    duration_days: int
    start_date: datetime
    expires_at: datetime
    auto_renew: bool
    price: Decimal
    status: RentalStatus
    created_at: datetime


class PricingSettingResponse(ApiModel):
    id: str
    service_type: PricingServiceType
    base_price: Decimal
    description: Optional[str] = None
    updated_at: datetime


class PaymentIntentResponse(ApiModel):
    client_secret: Optional[str]


class PurchaseCreditsResponse(ApiModel):
    success: bool
    transaction: TransactionResponse
    duplicate: bool = False


class ErrorResponse(ApiModel):
    message: str
    code: str
