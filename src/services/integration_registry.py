"""
Integration registry - which account a webhook belongs to and whether its
integration for that platform is usable.

The deployment is single-tenant: webhooks bind to DEFAULT_ACCOUNT_ID unless
a caller names an account explicitly.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.integration import (
    Integration,
    PLATFORM_GOOGLE_ADS,
    PLATFORM_META_ADS,
    PLATFORM_OLX_ZAP,
)
from src.utils.encryption import decrypt_value

logger = logging.getLogger(__name__)

WEBHOOK_PATHS = {
    PLATFORM_META_ADS: "/webhooks/meta-ads-leads",
    PLATFORM_OLX_ZAP: "/webhooks/olx-zap-leads",
    PLATFORM_GOOGLE_ADS: "/webhooks/google-ads-leads",
}


def resolve_account_id(account_id: Optional[str] = None) -> uuid.UUID:
    """Explicit account id, else the configured default. Raises ValueError on a malformed id."""
    return uuid.UUID(str(account_id or get_settings().default_account_id))


def build_webhook_url(platform: str) -> str:
    base = get_settings().app_base_url.rstrip("/")
    return f"{base}{WEBHOOK_PATHS[platform]}"


def integration_secret(integration: Optional[Integration], field: str) -> Optional[str]:
    """Decrypted credential column, or None."""
    if integration is None:
        return None
    return decrypt_value(getattr(integration, field))


async def get_integration(
    db: AsyncSession,
    account_id: uuid.UUID,
    platform: str,
    active_only: bool = False,
) -> Optional[Integration]:
    query = select(Integration).where(
        Integration.account_id == account_id,
        Integration.platform == platform,
    )
    if active_only:
        query = query.where(Integration.is_active.is_(True))
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none()


async def get_or_provision_integration(
    db: AsyncSession,
    account_id: uuid.UUID,
    platform: str,
    active: bool = False,
) -> Integration:
    """
    Existing integration for (account, platform), or a new one.

    Rows created from the management API start inactive until an operator
    enables them. The OLX/ZAP receiver provisions with active=True: the
    delivery already passed origin verification.
    """
    integration = await get_integration(db, account_id, platform)
    if integration is not None:
        return integration

    integration = Integration(
        id=uuid.uuid4(),
        account_id=account_id,
        platform=platform,
        is_active=active,
        webhook_url=build_webhook_url(platform),
        total_leads_received=0,
        settings={},
    )
    try:
        async with db.begin_nested():
            db.add(integration)
            await db.flush()
    except SQLAlchemyError:
        # A concurrent first contact created it
        existing = await get_integration(db, account_id, platform)
        if existing is None:
            raise
        return existing

    logger.info(
        "Auto-provisioned %s integration for account %s (active=%s)",
        platform, str(account_id)[:8], active,
        extra={"platform": platform, "account_id": str(account_id)},
    )
    return integration


async def record_leads_received(
    db: AsyncSession,
    integration: Optional[Integration],
    count: int = 1,
) -> None:
    """
    Bump the integration's counters after successful ingestion.
    Best-effort: tries an atomic increment, falls back to read-then-write,
    and only logs if both fail.
    """
    if integration is None or count <= 0:
        return

    integration_id = integration.id
    now = datetime.now(timezone.utc)
    try:
        async with db.begin_nested():
            await db.execute(
                update(Integration)
                .where(Integration.id == integration_id)
                .values(
                    total_leads_received=Integration.total_leads_received + count,
                    last_sync_at=now,
                    last_lead_received_at=now,
                )
            )
        return
    except SQLAlchemyError as e:
        logger.warning("Atomic lead counter increment failed, falling back: %s", str(e))

    try:
        async with db.begin_nested():
            current = await db.get(Integration, integration_id)
            if current is None:
                return
            current.total_leads_received = (current.total_leads_received or 0) + count
            current.last_sync_at = now
            current.last_lead_received_at = now
            await db.flush()
    except SQLAlchemyError as e:
        logger.error(
            "Failed to update lead counters for integration %s: %s",
            integration_id, str(e),
        )
