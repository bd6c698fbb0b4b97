"""
Seed a local database: create tables, enable all three integrations for the
default account, and add a few properties for the OLX/ZAP listing match.

Usage:
    python scripts/seed_integrations.py
    python scripts/seed_integrations.py --meta-access-token EAAB... --meta-app-secret s3cret
"""
import argparse
import asyncio
import logging
import secrets

from sqlalchemy import select

from src.database import async_session_factory, create_all_tables, dispose_engine
from src.models.integration import Integration, PLATFORMS, PLATFORM_META_ADS, PLATFORM_GOOGLE_ADS
from src.models.property import Property
from src.services.integration_registry import build_webhook_url, resolve_account_id
from src.utils.encryption import encrypt_value

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_PROPERTIES = [
    ("Apartamento 2 quartos - Vila Mariana", "AP0042"),
    ("Casa térrea com quintal - Butantã", "CA0107"),
    ("Studio mobiliado - Pinheiros", "ST0015"),
]


async def seed(meta_access_token: str, meta_app_secret: str, google_webhook_secret: str):
    await create_all_tables()
    account_id = resolve_account_id()

    async with async_session_factory() as session:
        for platform in PLATFORMS:
            result = await session.execute(
                select(Integration).where(
                    Integration.account_id == account_id,
                    Integration.platform == platform,
                )
            )
            if result.scalar_one_or_none():
                logger.info("%s integration already exists. Skipping.", platform)
                continue

            integration = Integration(
                account_id=account_id,
                platform=platform,
                is_active=True,
                webhook_url=build_webhook_url(platform),
                settings={},
            )
            if platform == PLATFORM_META_ADS:
                integration.verify_token = secrets.token_urlsafe(32)
                integration.access_token = encrypt_value(meta_access_token or None)
                integration.app_secret = encrypt_value(meta_app_secret or None)
            elif platform == PLATFORM_GOOGLE_ADS:
                integration.webhook_secret = encrypt_value(google_webhook_secret or None)
            session.add(integration)
            logger.info("Seeded %s integration (webhook: %s)", platform, integration.webhook_url)

        result = await session.execute(
            select(Property).where(Property.account_id == account_id).limit(1)
        )
        if result.scalar_one_or_none():
            logger.info("Properties already exist. Skipping.")
        else:
            for title, code in SAMPLE_PROPERTIES:
                session.add(Property(account_id=account_id, title=title, listing_code=code))
            logger.info("Seeded %d sample properties.", len(SAMPLE_PROPERTIES))

        await session.commit()

    await dispose_engine()


def main():
    parser = argparse.ArgumentParser(description="Seed local integrations and properties")
    parser.add_argument("--meta-access-token", default="")
    parser.add_argument("--meta-app-secret", default="")
    parser.add_argument("--google-webhook-secret", default="")
    args = parser.parse_args()
    asyncio.run(seed(args.meta_access_token, args.meta_app_secret, args.google_webhook_secret))


if __name__ == "__main__":
    main()
