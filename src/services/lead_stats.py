"""
Ingestion statistics and staging-lead listing for the integration management API.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.external_lead import GoogleAdsLead, MetaAdsLead, OlxZapLead
from src.models.integration import PLATFORM_GOOGLE_ADS, PLATFORM_META_ADS, PLATFORM_OLX_ZAP
from src.schemas.api_responses import IntegrationStats
from src.utils.text import fold_accents

logger = logging.getLogger(__name__)

STAGING_MODELS = {
    PLATFORM_META_ADS: MetaAdsLead,
    PLATFORM_OLX_ZAP: OlxZapLead,
    PLATFORM_GOOGLE_ADS: GoogleAdsLead,
}

MAX_PAGE_SIZE = 200


def empty_stats(platform: str) -> IntegrationStats:
    stats = IntegrationStats()
    if platform == PLATFORM_OLX_ZAP:
        stats.by_temperature = {"alta": 0, "media": 0, "baixa": 0}
        stats.by_transaction_type = {"sell": 0, "rent": 0}
    return stats


async def _count_since(db: AsyncSession, model, account_id: uuid.UUID, since: Optional[datetime]) -> int:
    query = select(func.count()).select_from(model).where(model.account_id == account_id)
    if since is not None:
        query = query.where(model.created_at >= since)
    return (await db.execute(query)).scalar() or 0


async def get_integration_stats(
    db: AsyncSession,
    account_id: uuid.UUID,
    platform: str,
    now: Optional[datetime] = None,
) -> IntegrationStats:
    """
    Lead counts for one platform. Today and month start at UTC midnight;
    "this week" is the trailing 7 days. Any query failure yields zeroed stats.
    """
    model = STAGING_MODELS[platform]
    now = now or datetime.now(timezone.utc)
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = today_start.replace(day=1)
    week_ago = now - timedelta(days=7)

    stats = empty_stats(platform)
    # Savepoint keeps a failed query from aborting the request transaction
    try:
        async with db.begin_nested():
            stats.total_leads = await _count_since(db, model, account_id, None)
            stats.leads_today = await _count_since(db, model, account_id, today_start)
            stats.leads_this_week = await _count_since(db, model, account_id, week_ago)
            stats.leads_this_month = await _count_since(db, model, account_id, month_start)

            status_rows = await db.execute(
                select(model.status, func.count())
                .where(model.account_id == account_id)
                .group_by(model.status)
            )
            stats.by_status = {status: count for status, count in status_rows.all()}

            if platform == PLATFORM_OLX_ZAP:
                await _add_portal_breakdowns(db, account_id, stats)
    except SQLAlchemyError as e:
        logger.error("Failed to compute %s stats: %s", platform, str(e))
        return empty_stats(platform)

    return stats


async def _add_portal_breakdowns(db: AsyncSession, account_id: uuid.UUID, stats: IntegrationStats) -> None:
    temperature_rows = await db.execute(
        select(OlxZapLead.temperature, func.count())
        .where(OlxZapLead.account_id == account_id)
        .group_by(OlxZapLead.temperature)
    )
    for temperature, count in temperature_rows.all():
        key = fold_accents(temperature)
        if key in stats.by_temperature:
            stats.by_temperature[key] += count

    transaction_rows = await db.execute(
        select(OlxZapLead.transaction_type, func.count())
        .where(OlxZapLead.account_id == account_id)
        .group_by(OlxZapLead.transaction_type)
    )
    for transaction_type, count in transaction_rows.all():
        key = (transaction_type or "").lower()
        if key in stats.by_transaction_type:
            stats.by_transaction_type[key] += count


async def list_external_leads(
    db: AsyncSession,
    account_id: uuid.UUID,
    platform: str,
    *,
    status: Optional[str] = None,
    temperature: Optional[str] = None,
    transaction_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list, int, int, int]:
    """Newest-first page of staging leads. Returns (rows, total, page, limit)."""
    model = STAGING_MODELS[platform]
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    filters = [model.account_id == account_id]
    if status:
        filters.append(model.status == status)
    if start_date:
        filters.append(model.created_at >= start_date)
    if end_date:
        filters.append(model.created_at <= end_date)
    if model is OlxZapLead:
        if temperature:
            filters.append(func.lower(OlxZapLead.temperature) == temperature.lower())
        if transaction_type:
            filters.append(OlxZapLead.transaction_type == transaction_type.upper())

    total = (
        await db.execute(select(func.count()).select_from(model).where(*filters))
    ).scalar() or 0
    result = await db.execute(
        select(model)
        .where(*filters)
        .order_by(model.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total, page, limit


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0
