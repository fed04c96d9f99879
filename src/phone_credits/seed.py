"""
Catalog seed data: pricing settings and the supported services.

Run directly against the configured store:

    python -m phone_credits.seed
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Dict

from .errors import InvalidInputError, NotFoundError
from .models.catalog import PricingServiceType, PricingSetting, Service
from .services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

PRICING_SEED = [
    (PricingServiceType.VERIFICATION, "0.25", "One-time SMS verification"),
    (PricingServiceType.NON_RENEWABLE_RENTAL, "1.50", "1-14 day phone number rental"),
    (PricingServiceType.RENEWABLE_RENTAL, "5.00", "Monthly renewable phone number rental"),
]

SERVICES_SEED = [
    ("Google", "google", "Social Media", "0.25"),
    ("Tinder", "tinder", "Dating", "0.30"),
    ("PayPal", "paypal", "Finance", "0.25"),
    ("Uber", "uber", "Rideshare", "0.25"),
    ("Twitter", "twitter", "Social Media", "0.25"),
    ("Facebook", "facebook", "Social Media", "0.25"),
    ("Amazon", "amazon", "E-commerce", "0.25"),
    ("WhatsApp", "whatsapp", "Messaging", "0.25"),
    ("Instagram", "instagram", "Social Media", "0.25"),
    ("LinkedIn", "linkedin", "Professional", "0.30"),
    ("Snapchat", "snapchat", "Social Media", "0.25"),
    ("Discord", "discord", "Messaging", "0.25"),
    ("Telegram", "telegram", "Messaging", "0.25"),
    ("Microsoft", "microsoft", "Technology", "0.25"),
    ("Apple", "apple", "Technology", "0.30"),
    ("Netflix", "netflix", "Entertainment", "0.25"),
    ("Spotify", "spotify", "Entertainment", "0.25"),
    ("eBay", "ebay", "E-commerce", "0.25"),
    ("Airbnb", "airbnb", "Travel", "0.30"),
    ("Lyft", "lyft", "Rideshare", "0.25"),
]


async def seed_catalog(catalog: CatalogService) -> Dict[str, int]:
    """Insert missing pricing settings and services; existing rows are left alone."""
    created = {"pricing_settings": 0, "services": 0}

    for service_type, price, description in PRICING_SEED:
        try:
            await catalog.get_pricing_setting(service_type)
            continue
        except NotFoundError:
            pass
        await catalog.add_pricing_setting(
            PricingSetting(
                service_type=service_type,
                base_price=Decimal(price),
                description=description,
            )
        )
        created["pricing_settings"] += 1

    for name, slug, category, price in SERVICES_SEED:
        try:
            await catalog.add_service(
                Service(name=name, slug=slug, category=category, base_price=Decimal(price))
            )
        except InvalidInputError:
            continue
        created["services"] += 1

    logger.info("Catalog seeded: %s", created)
    return created


async def _main() -> None:
    from .app import LOG_FORMAT, build_db_manager, init_store
    from .config import settings

    logging.basicConfig(level=settings.LOG_LEVEL, format=LOG_FORMAT)
    db = build_db_manager(settings)
    await init_store(db)
    await seed_catalog(CatalogService(db))


if __name__ == "__main__":
    asyncio.run(_main())
