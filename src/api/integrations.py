"""
Integration management API - configure the ad-platform integrations, browse
ingested leads, read statistics and webhook logs, and reprocess failed leads.

Authentication is handled by the proxy in front of this service.
"""
import logging
import secrets
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.webhook_sources import CRM_LEAD_BUILDERS
from src.database import get_db
from src.models.external_lead import STATUS_ERROR, STATUS_PROCESSED
from src.models.integration import Integration, PLATFORMS, PLATFORM_META_ADS, PLATFORM_OLX_ZAP
from src.models.webhook_log import WebhookLog
from src.schemas.api_responses import (
    ExternalLeadListResponse,
    ExternalLeadSummary,
    IntegrationDetail,
    IntegrationResponse,
    IntegrationStats,
    IntegrationUpdate,
    Pagination,
    ReprocessResponse,
    WebhookLogSummary,
)
from src.services.integration_registry import (
    build_webhook_url,
    get_integration,
    get_or_provision_integration,
    record_leads_received,
    resolve_account_id,
)
from src.services.lead_ingestion import CrmLeadCreateError, create_crm_lead
from src.services.lead_stats import (
    STAGING_MODELS,
    get_integration_stats,
    list_external_leads,
    total_pages,
)
from src.utils.encryption import SECRET_FIELDS, encrypt_value, mask_secret

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/integrations", tags=["integrations"])

# Columns shown without masking in the integration detail
PLAIN_FIELDS = ("app_id", "page_id", "form_id", "verify_token", "webhook_url")
# Platform columns surfaced in lead listings
LEAD_DETAIL_FIELDS = (
    "platform", "form_id", "campaign_id", "ad_id", "adset_id", "created_time",
    "lead_origin", "origin_timestamp", "origin_listing_id", "client_listing_id",
    "message", "temperature", "transaction_type",
    "gclid", "ad_group_id", "creative_id", "is_test",
)


def _check_platform(platform: str) -> str:
    if platform not in PLATFORMS:
        raise HTTPException(status_code=404, detail=f"Unknown platform: {platform}")
    return platform


def _account(account_id: Optional[str]) -> uuid.UUID:
    try:
        return resolve_account_id(account_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid account_id")


def _integration_detail(integration: Integration) -> IntegrationDetail:
    data = {
        "id": str(integration.id),
        "account_id": str(integration.account_id),
        "platform": integration.platform,
        "is_active": integration.is_active,
        "total_leads_received": integration.total_leads_received or 0,
        "last_sync_at": integration.last_sync_at,
        "last_lead_received_at": integration.last_lead_received_at,
        "created_at": integration.created_at,
        "updated_at": integration.updated_at,
    }
    for field in PLAIN_FIELDS:
        data[field] = getattr(integration, field)
    for field in SECRET_FIELDS:
        data[field] = mask_secret(getattr(integration, field))
    return IntegrationDetail(**data)


def _lead_summary(row) -> ExternalLeadSummary:
    details = {
        field: getattr(row, field)
        for field in LEAD_DETAIL_FIELDS
        if hasattr(row, field)
    }
    return ExternalLeadSummary(
        id=str(row.id),
        origin_lead_id=row.origin_lead_id,
        name=row.name,
        email=row.email,
        phone=row.phone,
        status=row.status,
        processing_error=row.processing_error,
        lead_id=str(row.lead_id) if row.lead_id else None,
        property_id=str(row.property_id) if row.property_id else None,
        details=details,
        created_at=row.created_at,
        processed_at=row.processed_at,
    )


@router.get("/{platform}", response_model=IntegrationResponse)
async def get_integration_settings(
    platform: str,
    account_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Integration (secrets masked) plus ingestion statistics."""
    _check_platform(platform)
    account = _account(account_id)

    if platform == PLATFORM_OLX_ZAP:
        integration = await get_or_provision_integration(db, account, platform)
    else:
        integration = await get_integration(db, account, platform)

    stats = await get_integration_stats(db, account, platform)
    return IntegrationResponse(
        integration=_integration_detail(integration) if integration else None,
        stats=stats,
    )


@router.put("/{platform}", response_model=IntegrationResponse)
async def update_integration_settings(
    platform: str,
    body: IntegrationUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Create or update an integration. Only fields present in the body are written."""
    _check_platform(platform)
    account = _account(body.account_id)

    integration = await get_or_provision_integration(db, account, platform)
    changes = body.model_dump(exclude_unset=True, exclude={"account_id"})
    for field, value in changes.items():
        if field in SECRET_FIELDS:
            value = encrypt_value(value)
        setattr(integration, field, value)

    if platform == PLATFORM_META_ADS and not integration.verify_token:
        integration.verify_token = secrets.token_urlsafe(32)
    integration.webhook_url = build_webhook_url(platform)
    await db.flush()

    logger.info(
        "Integration %s updated for account %s (active=%s)",
        platform, str(account)[:8], integration.is_active,
        extra={"platform": platform, "account_id": str(account)},
    )
    return IntegrationResponse(integration=_integration_detail(integration))


@router.get("/{platform}/leads", response_model=ExternalLeadListResponse)
async def list_leads(
    platform: str,
    account_id: Optional[str] = None,
    status: Optional[str] = None,
    temperature: Optional[str] = None,
    transaction_type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Paginated staging leads, newest first."""
    _check_platform(platform)
    account = _account(account_id)

    rows, total, page, limit = await list_external_leads(
        db,
        account,
        platform,
        status=status,
        temperature=temperature,
        transaction_type=transaction_type,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ExternalLeadListResponse(
        leads=[_lead_summary(row) for row in rows],
        pagination=Pagination(
            page=page, limit=limit, total=total, total_pages=total_pages(total, limit),
        ),
    )


@router.get("/{platform}/stats", response_model=IntegrationStats)
async def integration_stats(
    platform: str,
    account_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    _check_platform(platform)
    return await get_integration_stats(db, _account(account_id), platform)


@router.post(
    "/{platform}/leads/{external_lead_id}/reprocess",
    response_model=ReprocessResponse,
)
async def reprocess_lead(
    platform: str,
    external_lead_id: uuid.UUID,
    account_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    Retry CRM lead creation for a staging row left in status=error.
    The row keeps status=error (with the new message) if it fails again.
    """
    _check_platform(platform)
    account = _account(account_id)
    model = STAGING_MODELS[platform]

    result = await db.execute(
        select(model).where(model.id == external_lead_id, model.account_id == account)
    )
    staging = result.scalar_one_or_none()
    if staging is None:
        raise HTTPException(status_code=404, detail="External lead not found")
    if staging.status != STATUS_ERROR:
        raise HTTPException(
            status_code=409,
            detail=f"Only leads in status '{STATUS_ERROR}' can be reprocessed (current: {staging.status})",
        )

    try:
        outcome = await create_crm_lead(db, staging, CRM_LEAD_BUILDERS[model])
    except CrmLeadCreateError as e:
        response = ReprocessResponse(
            success=False,
            external_lead_id=str(external_lead_id),
            status=STATUS_ERROR,
            message=str(e),
        )
        return JSONResponse(status_code=500, content=response.model_dump())

    integration = await get_integration(db, account, platform)
    await record_leads_received(db, integration, 1)

    logger.info(
        "Reprocessed %s lead %s", platform, external_lead_id,
        extra={"platform": platform, "lead_id": str(outcome.lead_id)},
    )
    return ReprocessResponse(
        success=True,
        external_lead_id=str(external_lead_id),
        lead_id=str(outcome.lead_id),
        status=STATUS_PROCESSED,
    )


@router.get("/{platform}/webhook-logs", response_model=list[WebhookLogSummary])
async def recent_webhook_logs(
    platform: str,
    account_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Most recent audit rows for a platform."""
    _check_platform(platform)
    account = _account(account_id)

    result = await db.execute(
        select(WebhookLog)
        .where(
            WebhookLog.platform == platform,
            (WebhookLog.account_id == account) | WebhookLog.account_id.is_(None),
        )
        .order_by(WebhookLog.created_at.desc())
        .limit(limit)
    )
    return [
        WebhookLogSummary(
            id=str(log.id),
            platform=log.platform,
            method=log.method,
            response_status=log.response_status,
            processing_time_ms=log.processing_time_ms,
            processed=bool(log.processed),
            error_message=log.error_message,
            origin_lead_id=log.origin_lead_id,
            external_lead_id=str(log.external_lead_id) if log.external_lead_id else None,
            correlation_id=log.correlation_id,
            created_at=log.created_at,
        )
        for log in result.scalars().all()
    ]
