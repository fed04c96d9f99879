from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends

from ..errors import InvalidInputError
from ..models.api_models import (
    CreatePaymentIntentRequest,
    CreateRentalRequest,
    CreateVerificationRequest,
    ErrorResponse,
    PaymentIntentResponse,
    PricingSettingResponse,
    ProviderCodeRequest,
    PurchaseCreditsRequest,
    PurchaseCreditsResponse,
    RentalResponse,
    ServiceResponse,
    TransactionResponse,
    UpdatePricingRequest,
    UserResponse,
    VerificationResponse,
)
from ..models.user import UserAccount
from .dependencies import (
    ServiceContainer,
    get_container,
    get_correlation_id,
    get_current_admin_user,
    get_current_user,
    verify_provider_secret,
)


_ERRORS = {status: {"model": ErrorResponse} for status in (400, 401, 403, 404)}

router = APIRouter(prefix="/api", responses=_ERRORS)


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


# Auth


@router.get("/auth/user", response_model=UserResponse, tags=["auth"])
async def get_auth_user(user: UserAccount = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)


# Ledger


@router.get("/transactions", response_model=List[TransactionResponse], tags=["credits"])
async def list_transactions(
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> List[TransactionResponse]:
    history = await container.credits.get_credit_history(user.id or "")
    return [TransactionResponse.model_validate(tx) for tx in history]


@router.post(
    "/create-payment-intent", response_model=PaymentIntentResponse, tags=["credits"]
)
async def create_payment_intent(
    payload: CreatePaymentIntentRequest,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> PaymentIntentResponse:
    intent = await container.payments.create_payment_intent(payload.package_amount)
    return PaymentIntentResponse(client_secret=intent.client_secret)


@router.post("/credits/purchase", response_model=PurchaseCreditsResponse, tags=["credits"])
async def purchase_credits(
    payload: PurchaseCreditsRequest,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> PurchaseCreditsResponse:
    tx, created = await container.payments.purchase_credits(
        user.id or "", payload.payment_intent_id, correlation_id=correlation_id
    )
    return PurchaseCreditsResponse(
        success=True,
        transaction=TransactionResponse.model_validate(tx),
        duplicate=not created,
    )


# Catalog


@router.get("/services", response_model=List[ServiceResponse], tags=["catalog"])
async def list_services(
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> List[ServiceResponse]:
    services = await container.catalog.list_active_services()
    return [ServiceResponse.model_validate(s) for s in services]


@router.get("/services/{service_id}", response_model=ServiceResponse, tags=["catalog"])
async def get_service(
    service_id: str,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> ServiceResponse:
    service = await container.catalog.get_service(service_id)
    return ServiceResponse.model_validate(service)


@router.get(
    "/settings/pricing", response_model=List[PricingSettingResponse], tags=["catalog"]
)
async def list_pricing(
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> List[PricingSettingResponse]:
    settings = await container.catalog.list_pricing_settings()
    return [PricingSettingResponse.model_validate(s) for s in settings]


@router.put(
    "/settings/pricing/{service_type}",
    response_model=PricingSettingResponse,
    tags=["catalog"],
)
async def update_pricing(
    service_type: str,
    payload: UpdatePricingRequest,
    admin: UserAccount = Depends(get_current_admin_user),
    container: ServiceContainer = Depends(get_container),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> PricingSettingResponse:
    setting = await container.catalog.set_pricing_setting(
        service_type,
        payload.base_price,
        updated_by=admin.id,
        correlation_id=correlation_id,
    )
    return PricingSettingResponse.model_validate(setting)


# Verifications


@router.get(
    "/verifications", response_model=List[VerificationResponse], tags=["verifications"]
)
async def list_verifications(
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> List[VerificationResponse]:
    items = await container.verifications.list_user_verifications(user.id or "")
    return [VerificationResponse.model_validate(v) for v in items]


@router.post(
    "/verifications", response_model=VerificationResponse, tags=["verifications"]
)
async def create_verification(
    payload: CreateVerificationRequest,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> VerificationResponse:
    verification = await container.verifications.purchase_verification(
        user.id or "", payload.service_id, correlation_id=correlation_id
    )
    return VerificationResponse.model_validate(verification)


@router.get(
    "/verifications/{verification_id}",
    response_model=VerificationResponse,
    tags=["verifications"],
)
async def get_verification(
    verification_id: str,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> VerificationResponse:
    verification = await container.verifications.get_verification(
        user.id or "", verification_id
    )
    return VerificationResponse.model_validate(verification)


# Rentals


@router.get("/rentals", response_model=List[RentalResponse], tags=["rentals"])
async def list_rentals(
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> List[RentalResponse]:
    items = await container.rentals.list_user_rentals(user.id or "")
    return [RentalResponse.model_validate(r) for r in items]


@router.post("/rentals", response_model=RentalResponse, tags=["rentals"])
async def create_rental(
    payload: CreateRentalRequest,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> RentalResponse:
    rental = await container.rentals.purchase_rental(
        user.id or "",
        payload.type,
        payload.duration_days,
        correlation_id=correlation_id,
    )
    return RentalResponse.model_validate(rental)


@router.get("/rentals/{rental_id}", response_model=RentalResponse, tags=["rentals"])
async def get_rental(
    rental_id: str,
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> RentalResponse:
    rental = await container.rentals.get_rental(user.id or "", rental_id)
    return RentalResponse.model_validate(rental)


# Number provider callbacks


@router.post(
    "/provider/verifications/{verification_id}/code",
    response_model=VerificationResponse,
    tags=["provider"],
    dependencies=[Depends(verify_provider_secret)],
)
async def provider_code_callback(
    verification_id: str,
    payload: ProviderCodeRequest,
    container: ServiceContainer = Depends(get_container),
    correlation_id: Optional[str] = Depends(get_correlation_id),
) -> VerificationResponse:
    if payload.failed:
        verification = await container.verifications.mark_failed(
            verification_id,
            payload.reason or "provider reported failure",
            correlation_id=correlation_id,
        )
    elif payload.code:
        verification = await container.verifications.receive_code(
            verification_id, payload.code, correlation_id=correlation_id
        )
    else:
        raise InvalidInputError("Either code or failed must be provided")
    return VerificationResponse.model_validate(verification)
