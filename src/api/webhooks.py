"""
Webhook endpoints - receive leads from the ad platforms.

Pipeline per request:
1. Origin verification (HMAC signature or user-agent + shared secret)
2. Parse and validate the payload
3. Integration lookup for the account
4. Idempotency check on (account_id, origin_lead_id)
5. Staging row -> CRM lead -> link (src/services/lead_ingestion.py)
6. Audit row (webhook_logs) - exactly one per request, on every path

Every path returns an explicit response so the audit row always matches the
status the platform actually saw.
"""
import json
import logging
import traceback
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.webhook_sources import (
    build_google_ads_staging_lead,
    build_meta_staging_lead,
    build_olx_zap_staging_lead,
    crm_lead_from_google_ads,
    crm_lead_from_meta,
    crm_lead_from_olx_zap,
    google_ads_origin_id,
    missing_olx_zap_fields,
)
from src.config import get_settings
from src.database import get_db
from src.models.external_lead import GoogleAdsLead, MetaAdsLead, OlxZapLead
from src.models.integration import PLATFORM_GOOGLE_ADS, PLATFORM_META_ADS, PLATFORM_OLX_ZAP
from src.schemas.api_responses import ReceiverHealthResponse
from src.schemas.webhook_payloads import (
    GoogleAdsLeadPayload,
    MetaWebhookPayload,
    OlxZapLeadPayload,
)
from src.services.integration_registry import (
    get_integration,
    get_or_provision_integration,
    integration_secret,
    record_leads_received,
    resolve_account_id,
)
from src.services.lead_ingestion import (
    CrmLeadCreateError,
    IngestionError,
    StagingInsertError,
    find_existing_external_lead,
    ingest_external_lead,
)
from src.services.meta_graph import LeadFetchError, fetch_lead_details
from src.services.property_matcher import find_property_for_listing
from src.services.webhook_audit import WebhookAudit
from src.utils.logging import mask_phone
from src.utils.webhook_signatures import (
    extract_bearer_secret,
    verify_google_ads_signature,
    verify_meta_signature,
    verify_olx_zap_origin,
    verify_token_matches,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

OLX_ZAP_SERVICE_NAME = "OLX/ZAP Webhook Receiver"
OLX_ZAP_RECEIVER_VERSION = "1.0.0"


def _error_body(error: str, message: str = None) -> dict:
    body = {"success": False, "error": error}
    if message:
        body["message"] = message
    return body


def _parse_json(raw_body: bytes):
    """Raises ValueError for anything that is not a JSON object."""
    data = json.loads(raw_body)
    if not isinstance(data, dict):
        raise ValueError("Payload must be a JSON object")
    return data


async def _internal_error(audit: WebhookAudit, error: Exception) -> JSONResponse:
    """Last-resort 500. Stack details are returned only when STRICT_AUTH is off."""
    logger.error(
        "%s webhook processing error: %s", audit.platform, str(error),
        exc_info=True,
        extra={"platform": audit.platform, "origin_lead_id": audit.origin_lead_id},
    )
    await audit.discard_transaction()

    content = _error_body("Internal server error")
    if not get_settings().strict_auth:
        content["message"] = str(error)
        content["stack"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
    return await audit.respond(500, content, error=error)


# --- Meta Lead Ads -------------------------------------------------------------------


@router.get("/meta-ads-leads")
async def meta_ads_verify(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Meta subscription handshake. Echo hub.challenge when hub.verify_token
    matches the active integration's verify token.
    """
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge", "")

    try:
        integration = await get_integration(
            db, resolve_account_id(), PLATFORM_META_ADS, active_only=True,
        )
    except Exception as e:
        logger.error("Meta handshake lookup failed: %s", str(e), exc_info=True)
        return JSONResponse(status_code=500, content=_error_body("Internal server error"))

    expected = integration.verify_token if integration else None
    if mode == "subscribe" and verify_token_matches(token, expected):
        logger.info("Meta webhook subscription verified")
        return PlainTextResponse(challenge, status_code=200)

    logger.warning("Meta webhook verification failed (mode=%s)", mode)
    return JSONResponse(status_code=403, content=_error_body("Forbidden"))


@router.post("/meta-ads-leads")
async def meta_ads_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Meta leadgen notifications. A delivery may bundle several leads; each is
    fetched from the Graph API and persisted independently, so one failure
    never aborts the rest of the batch.
    """
    raw_body = await request.body()
    audit = WebhookAudit(request, db, PLATFORM_META_ADS, raw_body)
    try:
        return await _handle_meta_delivery(request, db, audit, raw_body)
    except Exception as e:
        return await _internal_error(audit, e)


async def _handle_meta_delivery(
    request: Request, db: AsyncSession, audit: WebhookAudit, raw_body: bytes,
) -> JSONResponse:
    try:
        payload = MetaWebhookPayload.model_validate(_parse_json(raw_body))
    except (ValueError, ValidationError) as e:
        return await audit.respond(400, _error_body("Invalid JSON payload"), error_message=str(e))

    account_id = resolve_account_id()
    audit.account_id = account_id

    integration = await get_integration(db, account_id, PLATFORM_META_ADS, active_only=True)
    if integration is None:
        logger.warning("Meta webhook received but no active integration")
        return await audit.respond(404, _error_body("Integration not found or inactive"))
    integration_id = integration.id
    audit.integration_id = integration_id

    signature = request.headers.get("x-hub-signature-256")
    if not verify_meta_signature(raw_body, signature, integration_secret(integration, "app_secret")):
        logger.warning("Meta webhook rejected: invalid signature")
        return await audit.respond(401, _error_body("Invalid signature"))

    changes = payload.leadgen_changes()
    if len(changes) == 1:
        audit.origin_lead_id = changes[0].leadgen_id

    access_token = integration_secret(integration, "access_token")
    lead_ids = []
    external_lead_ids = []
    duplicates = 0
    failed = 0

    for change in changes:
        leadgen_id = change.leadgen_id
        existing = await find_existing_external_lead(db, MetaAdsLead, account_id, leadgen_id)
        if existing is not None:
            duplicates += 1
            logger.info(
                "Meta lead %s already ingested, skipping", leadgen_id,
                extra={"origin_lead_id": leadgen_id, "external_lead_id": str(existing.id)},
            )
            continue

        try:
            detail = await fetch_lead_details(leadgen_id, access_token)
        except LeadFetchError as e:
            failed += 1
            logger.warning(
                "Skipping Meta lead %s: %s", leadgen_id, str(e),
                extra={"origin_lead_id": leadgen_id},
            )
            continue

        staging = build_meta_staging_lead(detail, account_id, integration_id, change.platform)
        try:
            result = await ingest_external_lead(db, staging, crm_lead_from_meta)
        except IngestionError as e:
            failed += 1
            logger.error(
                "Meta lead %s not persisted: %s", leadgen_id, str(e),
                extra={"origin_lead_id": leadgen_id},
            )
            continue

        if result.duplicate:
            duplicates += 1
            continue
        lead_ids.append(str(result.lead_id))
        external_lead_ids.append(result.external_lead_id)

    await record_leads_received(db, integration, len(lead_ids))

    logger.info(
        "Meta delivery: %d processed, %d duplicate, %d failed",
        len(lead_ids), duplicates, failed,
        extra={"platform": PLATFORM_META_ADS, "account_id": str(account_id)},
    )
    content = {"success": True, "leads_processed": len(lead_ids), "processing_time_ms": 0}
    return await audit.respond(
        200,
        content,
        log_body={**content, "lead_ids": lead_ids, "duplicates": duplicates, "failed": failed},
        external_lead_id=external_lead_ids[0] if len(external_lead_ids) == 1 else None,
        processed=bool(lead_ids),
    )


# --- Grupo OLX / ZAP ---------------------------------------------------------------


@router.get("/olx-zap-leads", response_model=ReceiverHealthResponse)
async def olx_zap_healthcheck():
    """Grupo OLX pings this before enabling lead delivery."""
    return ReceiverHealthResponse(
        service=OLX_ZAP_SERVICE_NAME,
        status="active",
        version=OLX_ZAP_RECEIVER_VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.post("/olx-zap-leads")
async def olx_zap_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Grupo OLX (ZAP Imoveis, Viva Real) lead delivery - one lead per request.
    Any 2xx stops their retry schedule, so duplicates answer 200.
    """
    raw_body = await request.body()
    audit = WebhookAudit(request, db, PLATFORM_OLX_ZAP, raw_body)
    try:
        return await _handle_olx_zap_delivery(request, db, audit, raw_body)
    except Exception as e:
        return await _internal_error(audit, e)


async def _handle_olx_zap_delivery(
    request: Request, db: AsyncSession, audit: WebhookAudit, raw_body: bytes,
) -> JSONResponse:
    settings = get_settings()
    supplied_secret = extract_bearer_secret(
        request.headers.get("authorization"),
        request.query_params.get("secret_key"),
    )
    authorized, reason = verify_olx_zap_origin(
        request.headers.get("user-agent"),
        supplied_secret,
        expected_secret=settings.olx_zap_secret_key,
        user_agent_token=settings.olx_zap_user_agent_token,
        strict=settings.strict_auth,
    )
    if not authorized:
        return await audit.respond(401, _error_body("Unauthorized", reason))

    try:
        payload = OlxZapLeadPayload.model_validate(_parse_json(raw_body))
    except (ValueError, ValidationError) as e:
        return await audit.respond(400, _error_body("Invalid JSON payload"), error_message=str(e))

    missing = missing_olx_zap_fields(payload)
    if missing:
        message = f"Missing required fields: {', '.join(missing)}"
        return await audit.respond(400, _error_body("Missing required fields", message))

    origin_lead_id = payload.originLeadId
    audit.origin_lead_id = origin_lead_id
    account_id = resolve_account_id()
    audit.account_id = account_id

    integration = await get_or_provision_integration(db, account_id, PLATFORM_OLX_ZAP, active=True)
    audit.integration_id = integration.id
    if not integration.is_active:
        logger.warning("OLX/ZAP lead %s rejected: integration disabled", origin_lead_id)
        return await audit.respond(403, _error_body("Integration is disabled"))

    existing = await find_existing_external_lead(db, OlxZapLead, account_id, origin_lead_id)
    if existing is not None:
        logger.info(
            "OLX/ZAP lead %s already ingested", origin_lead_id,
            extra={"origin_lead_id": origin_lead_id, "lead_id": str(existing.lead_id)},
        )
        return await audit.respond(
            200,
            _olx_zap_body("Lead already processed", existing.id, existing.lead_id, existing.property_id),
            external_lead_id=existing.id,
            processed=True,
        )

    logger.info(
        "OLX/ZAP lead %s received (phone %s)",
        origin_lead_id, mask_phone(payload.phoneNumber or payload.phone),
        extra={"origin_lead_id": origin_lead_id, "account_id": str(account_id)},
    )

    property_id = await find_property_for_listing(db, account_id, payload.clientListingId)
    staging = build_olx_zap_staging_lead(payload, account_id, integration.id, property_id)
    try:
        result = await ingest_external_lead(db, staging, crm_lead_from_olx_zap)
    except StagingInsertError as e:
        return await audit.respond(500, _error_body("Failed to store lead", str(e)), error=e)
    except CrmLeadCreateError as e:
        return await audit.respond(
            500,
            _error_body("Failed to create CRM lead", str(e)),
            external_lead_id=e.external_lead_id,
            error=e,
        )

    if result.duplicate:
        return await audit.respond(
            200,
            _olx_zap_body("Lead already processed", result.external_lead_id, result.lead_id, result.property_id),
            external_lead_id=result.external_lead_id,
            processed=True,
        )

    await record_leads_received(db, integration, 1)
    return await audit.respond(
        200,
        _olx_zap_body("Lead received successfully", result.external_lead_id, result.lead_id, result.property_id),
        external_lead_id=result.external_lead_id,
        processed=True,
    )


def _olx_zap_body(message: str, external_lead_id, lead_id, property_id) -> dict:
    return {
        "success": True,
        "message": message,
        "olxZapLeadId": str(external_lead_id) if external_lead_id else None,
        "leadId": str(lead_id) if lead_id else None,
        "propertyId": str(property_id) if property_id else None,
    }


# --- Google Ads lead forms ----------------------------------------------------------


@router.post("/google-ads-leads")
async def google_ads_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Google Ads lead-form extension delivery - one lead per request."""
    raw_body = await request.body()
    audit = WebhookAudit(request, db, PLATFORM_GOOGLE_ADS, raw_body)
    try:
        return await _handle_google_ads_delivery(request, db, audit, raw_body)
    except Exception as e:
        return await _internal_error(audit, e)


async def _handle_google_ads_delivery(
    request: Request, db: AsyncSession, audit: WebhookAudit, raw_body: bytes,
) -> JSONResponse:
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type:
        return await audit.respond(400, _error_body("Content-Type must be application/json"))

    try:
        payload = GoogleAdsLeadPayload.model_validate(_parse_json(raw_body))
    except (ValueError, ValidationError) as e:
        return await audit.respond(400, _error_body("Invalid JSON payload"), error_message=str(e))

    origin_lead_id = google_ads_origin_id(payload)
    if not origin_lead_id:
        return await audit.respond(400, _error_body("Missing required fields", "lead_id or gclid is required"))
    audit.origin_lead_id = origin_lead_id

    account_id = resolve_account_id()
    audit.account_id = account_id
    integration = await get_integration(db, account_id, PLATFORM_GOOGLE_ADS, active_only=True)
    if integration is None:
        logger.warning("Google Ads webhook received but no active integration")
        return await audit.respond(404, _error_body("Integration not found or inactive"))
    audit.integration_id = integration.id

    signature = request.headers.get("x-google-ads-signature")
    if not verify_google_ads_signature(
        raw_body, signature, integration_secret(integration, "webhook_secret"),
    ):
        logger.warning("Google Ads webhook rejected: invalid signature")
        return await audit.respond(401, _error_body("Invalid signature"))

    existing = await find_existing_external_lead(db, GoogleAdsLead, account_id, origin_lead_id)
    if existing is not None:
        return await audit.respond(
            200,
            _google_ads_body(existing.id, existing.lead_id, duplicate=True),
            external_lead_id=existing.id,
            processed=True,
        )

    staging = build_google_ads_staging_lead(payload, account_id, integration.id)
    try:
        result = await ingest_external_lead(db, staging, crm_lead_from_google_ads)
    except IngestionError as e:
        return await audit.respond(
            500,
            _error_body("Failed to process lead", str(e)),
            external_lead_id=e.external_lead_id,
            error=e,
        )

    if not result.duplicate:
        await record_leads_received(db, integration, 1)
    return await audit.respond(
        200,
        _google_ads_body(result.external_lead_id, result.lead_id, duplicate=result.duplicate),
        external_lead_id=result.external_lead_id,
        processed=True,
    )


def _google_ads_body(external_lead_id, lead_id, duplicate: bool = False) -> dict:
    return {
        "success": True,
        "lead_id": str(lead_id) if lead_id else None,
        "google_ads_lead_id": str(external_lead_id),
        "duplicate": duplicate,
        "processing_time_ms": 0,
    }
