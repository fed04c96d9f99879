from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from ..config import Settings
from ..db.base import BaseDBManager
from ..errors import ForbiddenError, NotFoundError, UnauthenticatedError
from ..logging.ledger_logger import LedgerLogger
from ..models.user import UserAccount
from ..services.catalog_service import CatalogService
from ..services.credit_service import CreditService
from ..services.expiration_service import ExpirationService
from ..services.payment_service import PaymentService
from ..services.rental_service import RentalService
from ..services.verification_service import VerificationService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything a request handler may need, built once per app."""

    settings: Settings
    db: BaseDBManager
    ledger: LedgerLogger
    credits: CreditService
    catalog: CatalogService
    verifications: VerificationService
    rentals: RentalService
    payments: PaymentService
    expiration: ExpirationService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


async def get_current_user(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> UserAccount:
    """
    The upstream identity proxy authenticates the session and forwards the
    identity in headers. First sight of an id creates the user.
    """
    settings = container.settings
    user_id = (request.headers.get(settings.AUTH_USER_HEADER) or "").strip()
    if not user_id:
        raise UnauthenticatedError()

    user = await container.credits.ensure_user(
        user_id,
        email=request.headers.get("X-User-Email"),
        first_name=request.headers.get("X-User-First-Name"),
        last_name=request.headers.get("X-User-Last-Name"),
        profile_image_url=request.headers.get("X-User-Profile-Image"),
    )
    request.state.user = user
    return user


async def get_current_admin_user(
    user: UserAccount = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> UserAccount:
    if user.is_admin or user.id in container.settings.ADMIN_USER_IDS:
        return user
    raise ForbiddenError("Admin access required")


def verify_provider_secret(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> None:
    secret = container.settings.NUMBER_PROVIDER_WEBHOOK_SECRET
    if not secret:
        # Callbacks are disabled until a provider is configured.
        raise NotFoundError("Not found")
    supplied = request.headers.get("X-Provider-Secret", "")
    if not hmac.compare_digest(supplied.encode(), secret.encode()):
        logger.warning("Rejected provider callback from %s", request.client)
        raise UnauthenticatedError("Invalid provider secret")
