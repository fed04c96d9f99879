"""
Application factory.

    uvicorn phone_credits.app:create_app --factory
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .api.dependencies import ServiceContainer
from .api.errors import register_exception_handlers
from .api.middleware import RequestContextMiddleware
from .api.router import router
from .cache.base import AsyncCacheBackend
from .cache.memory import InMemoryAsyncCache
from .config import Settings
from .config import settings as default_settings
from .db.base import BaseDBManager
from .db.memory import InMemoryDBManager
from .db.mongo import MongoDBManager
from .logging.ledger_logger import LedgerLogger
from .providers.numbers import NumberProvider, PlaceholderNumberProvider
from .providers.payments import PaymentProvider, StripePaymentProvider
from .seed import seed_catalog
from .services.catalog_service import CatalogService
from .services.credit_service import CreditService
from .services.expiration_service import ExpirationService
from .services.payment_service import PaymentService
from .services.rental_service import RentalService
from .services.verification_service import VerificationService

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_db_manager(settings: Settings) -> BaseDBManager:
    if settings.MONGO_URI:
        return MongoDBManager.from_client_uri(
            settings.MONGO_URI,
            settings.MONGO_DB,
            use_transactions=settings.MONGO_TRANSACTIONS,
        )
    logger.warning("MONGO_URI is not set; using the in-memory store")
    return InMemoryDBManager()


async def init_store(db: BaseDBManager) -> None:
    if isinstance(db, MongoDBManager):
        await db.ensure_indexes()


def build_container(
    settings: Settings,
    db: BaseDBManager,
    payment_provider: Optional[PaymentProvider] = None,
    number_provider: Optional[NumberProvider] = None,
    cache: Optional[AsyncCacheBackend] = None,
) -> ServiceContainer:
    ledger = LedgerLogger(db=db, file_path=settings.LEDGER_LOG_PATH)
    credits = CreditService(db=db, ledger=ledger)
    catalog = CatalogService(
        db=db,
        ledger=ledger,
        cache=cache if cache is not None else InMemoryAsyncCache(),
        cache_ttl_seconds=settings.CATALOG_CACHE_TTL_SECONDS,
    )
    numbers = number_provider or PlaceholderNumberProvider()
    verifications = VerificationService(
        db=db,
        catalog=catalog,
        credits=credits,
        numbers=numbers,
        ledger=ledger,
        window_minutes=settings.VERIFICATION_WINDOW_MINUTES,
    )
    rentals = RentalService(
        db=db, catalog=catalog, credits=credits, numbers=numbers, ledger=ledger
    )

    if payment_provider is None and settings.STRIPE_SECRET_KEY:
        payment_provider = StripePaymentProvider(
            secret_key=settings.STRIPE_SECRET_KEY,
            base_url=settings.STRIPE_API_BASE,
            api_version=settings.STRIPE_API_VERSION,
            timeout=settings.STRIPE_TIMEOUT_SECONDS,
        )
    if payment_provider is None:
        logger.warning("STRIPE_SECRET_KEY is not set; credit purchases are disabled")
    payments = PaymentService(
        credits=credits, provider=payment_provider, packages=settings.CREDIT_PACKAGES
    )

    return ServiceContainer(
        settings=settings,
        db=db,
        ledger=ledger,
        credits=credits,
        catalog=catalog,
        verifications=verifications,
        rentals=rentals,
        payments=payments,
        expiration=ExpirationService(db=db, verifications=verifications, rentals=rentals),
    )


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[BaseDBManager] = None,
    payment_provider: Optional[PaymentProvider] = None,
    number_provider: Optional[NumberProvider] = None,
    cache: Optional[AsyncCacheBackend] = None,
) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)

    container = build_container(
        settings,
        db if db is not None else build_db_manager(settings),
        payment_provider=payment_provider,
        number_provider=number_provider,
        cache=cache,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await init_store(container.db)
        if settings.SEED_CATALOG:
            await seed_catalog(container.catalog)

        sweeper: Optional[asyncio.Task] = None
        if settings.EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
            sweeper = asyncio.create_task(
                container.expiration.run_forever(settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
            )
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.services = container
    app.add_middleware(RequestContextMiddleware)
    register_exception_handlers(app)
    app.include_router(router)
    return app


def main() -> None:
    import uvicorn

    uvicorn.run("phone_credits.app:create_app", factory=True, host="0.0.0.0", port=5000)


if __name__ == "__main__":
    main()
