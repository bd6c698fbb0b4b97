"""
Platform-specific payload parsers.

Each platform gets two functions:
- build_*_staging_lead: payload -> unsaved staging row (MetaAdsLead, OlxZapLead, GoogleAdsLead)
- crm_lead_from_*: staging row -> unsaved CrmLead

CRM leads are built from the stored staging row rather than the request, so
the same builder serves first ingestion and manual reprocessing.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from dateutil import parser as date_parser

from src.models.external_lead import GoogleAdsLead, MetaAdsLead, OlxZapLead, STATUS_PENDING
from src.models.lead import CrmLead
from src.schemas.webhook_payloads import (
    GoogleAdsColumn,
    GoogleAdsLeadPayload,
    MetaFieldData,
    MetaLeadDetail,
    OlxZapLeadPayload,
)
from src.utils.text import fold_accents

logger = logging.getLogger(__name__)

# Form field name mapping. Rules are checked in order and the first rule with a
# fragment contained in the lower-cased field name wins, so "first_name",
# "last_name" and even "full_name_backup" all land on `name`. Unmatched fields
# pass through under their lower-cased name.
META_FIELD_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("name", ("full_name", "name")),
    ("email", ("email",)),
    ("phone", ("phone",)),
    ("city", ("city",)),
    ("state", ("state",)),
    ("zipCode", ("zip", "postal")),
)

GOOGLE_FIELD_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("name", ("full_name", "name")),
    ("email", ("email",)),
    ("phone", ("phone",)),
    ("city", ("city",)),
    ("state", ("state",)),
    ("zipCode", ("zip", "cep")),
    ("street", ("street",)),
)

OLX_ZAP_REQUIRED_FIELDS = ("originLeadId", "name", "timestamp")
OLX_ZAP_CONTACT_FIELDS = {"name", "email", "ddd", "phone", "phoneNumber"}

CRM_STAGE_AD_FORMS = "lead_novo"
CRM_STAGE_PORTAL = "new"


def map_form_fields(
    pairs: Iterable[tuple[Optional[str], Optional[str]]],
    rules: tuple[tuple[str, tuple[str, ...]], ...],
) -> dict:
    """Map (field name, value) pairs onto canonical keys. Later duplicates overwrite."""
    fields: dict = {}
    for raw_name, value in pairs:
        key = (raw_name or "").lower()
        if not key:
            continue
        value = value or ""
        for target, fragments in rules:
            if any(fragment in key for fragment in fragments):
                fields[target] = value
                break
        else:
            fields[key] = value
    return fields


def extract_meta_form_fields(field_data: Iterable[MetaFieldData]) -> dict:
    """Meta lead-form answers ({name, values: [...]}) -> normalized fields."""
    return map_form_fields(
        (
            (field.name or field.field_key, field.values[0] if field.values else "")
            for field in field_data
        ),
        META_FIELD_RULES,
    )


def extract_google_form_fields(columns: Iterable[GoogleAdsColumn]) -> dict:
    """Google Ads user_column_data -> normalized fields."""
    return map_form_fields(
        (
            (column.column_id, column.string_value or column.phone_number_value or "")
            for column in columns
        ),
        GOOGLE_FIELD_RULES,
    )


def _parse_platform_time(value) -> Optional[datetime]:
    """Platform timestamps arrive as ISO strings ("...+0000") or unix seconds."""
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        parsed = date_parser.isoparse(str(value))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    except (ValueError, OverflowError):
        logger.debug("Unparseable platform timestamp: %r", value)
        return None


def _id_str(value) -> Optional[str]:
    return str(value) if value else None


# --- Meta ------------------------------------------------------------------------


def meta_source(platform: Optional[str]) -> str:
    return "instagram" if platform == "instagram" else "facebook"


def build_meta_staging_lead(
    detail: MetaLeadDetail,
    account_id: uuid.UUID,
    integration_id: Optional[uuid.UUID],
    platform: Optional[str],
) -> MetaAdsLead:
    """Graph API lead detail -> pending MetaAdsLead."""
    platform = platform or detail.platform or "facebook"
    form_fields = extract_meta_form_fields(detail.field_data)
    return MetaAdsLead(
        id=uuid.uuid4(),
        account_id=account_id,
        integration_id=integration_id,
        origin_lead_id=detail.id,
        name=form_fields.get("name") or None,
        email=form_fields.get("email") or None,
        phone=form_fields.get("phone") or None,
        normalized_fields=form_fields,
        raw_payload=detail.model_dump(mode="json"),
        status=STATUS_PENDING,
        platform=platform,
        form_id=detail.form_id,
        campaign_id=detail.campaign_id,
        ad_id=detail.ad_id,
        adset_id=detail.adgroup_id,
        created_time=detail.created_time or datetime.now(timezone.utc).isoformat(),
        utm_source=meta_source(platform),
        utm_medium="social",
    )


def crm_lead_from_meta(staging: MetaAdsLead) -> CrmLead:
    form_fields = staging.normalized_fields or {}
    raw = staging.raw_payload or {}
    return CrmLead(
        id=uuid.uuid4(),
        account_id=staging.account_id,
        name=form_fields.get("name") or f"Lead {staging.platform}",
        email=form_fields.get("email") or None,
        phone=form_fields.get("phone") or None,
        city=form_fields.get("city") or None,
        state=form_fields.get("state") or None,
        zip_code=form_fields.get("zipCode") or None,
        source=meta_source(staging.platform),
        medium="social",
        campaign=staging.campaign_id,
        stage=CRM_STAGE_AD_FORMS,
        status="new",
        extra_data={
            "leadgen_id": staging.origin_lead_id,
            "platform": staging.platform,
            "form_id": staging.form_id,
            "campaign_id": staging.campaign_id,
            "ad_id": staging.ad_id,
            "adset_id": staging.adset_id,
            "form_fields": form_fields,
            "meta_ads_lead_id": str(staging.id),
            "is_organic": raw.get("is_organic"),
        },
        created_at=_parse_platform_time(staging.created_time) or datetime.now(timezone.utc),
    )


# --- Grupo OLX / ZAP ------------------------------------------------------------------


def missing_olx_zap_fields(payload: OlxZapLeadPayload) -> list[str]:
    """Required fields that are absent or blank, in declaration order."""
    return [name for name in OLX_ZAP_REQUIRED_FIELDS if not getattr(payload, name)]


def olx_zap_phone(payload: OlxZapLeadPayload) -> Optional[str]:
    """Full phone: phoneNumber when sent, else DDD + local number."""
    if payload.phoneNumber:
        return payload.phoneNumber
    combined = f"{payload.ddd or ''}{payload.phone or ''}"
    return combined or None


def olx_zap_score(temperature: Optional[str]) -> int:
    """Portal temperature hint -> initial lead score."""
    folded = fold_accents(temperature)
    if folded == "alta":
        return 90
    if folded == "media":
        return 60
    return 30


def olx_zap_normalized_fields(payload: OlxZapLeadPayload) -> dict:
    """Contact fields under canonical keys; everything else lower-cased."""
    fields = {
        key.lower(): value
        for key, value in payload.model_dump(mode="json", exclude_none=True).items()
        if key not in OLX_ZAP_CONTACT_FIELDS
    }
    fields.update(
        name=payload.name,
        email=payload.email,
        phone=olx_zap_phone(payload),
    )
    return fields


def build_olx_zap_staging_lead(
    payload: OlxZapLeadPayload,
    account_id: uuid.UUID,
    integration_id: Optional[uuid.UUID],
    property_id: Optional[uuid.UUID] = None,
) -> OlxZapLead:
    return OlxZapLead(
        id=uuid.uuid4(),
        account_id=account_id,
        integration_id=integration_id,
        origin_lead_id=payload.originLeadId,
        name=payload.name,
        email=payload.email or None,
        phone=payload.phone or None,
        normalized_fields=olx_zap_normalized_fields(payload),
        raw_payload=payload.model_dump(mode="json", exclude_none=True),
        status=STATUS_PENDING,
        property_id=property_id,
        lead_origin=payload.leadOrigin,
        origin_timestamp=payload.timestamp,
        origin_listing_id=payload.originListingId,
        client_listing_id=payload.clientListingId,
        ddd=payload.ddd,
        phone_number=payload.phoneNumber,
        message=payload.message,
        temperature=payload.temperature,
        transaction_type=payload.transactionType,
    )


def crm_lead_from_olx_zap(staging: OlxZapLead) -> CrmLead:
    source_details = " - ".join(
        part for part in (staging.lead_origin, staging.origin_listing_id) if part
    )
    fields = staging.normalized_fields or {}
    return CrmLead(
        id=uuid.uuid4(),
        account_id=staging.account_id,
        name=staging.name,
        email=staging.email,
        phone=fields.get("phone") or staging.phone_number,
        status="ativo",
        stage=CRM_STAGE_PORTAL,
        source="Grupo OLX",
        source_details=source_details or None,
        medium="portal",
        property_preferences={
            "tipo_interesse": "compra" if staging.transaction_type == "SELL" else "locacao",
            "mensagem": staging.message,
            "imovel_interesse_id": staging.client_listing_id,
        },
        score=olx_zap_score(staging.temperature),
        temperature=staging.temperature.lower() if staging.temperature else None,
        property_id=staging.property_id,
        extra_data={
            "olx_zap_lead_id": str(staging.id),
            "origin_lead_id": staging.origin_lead_id,
            "origin_listing_id": staging.origin_listing_id,
            "client_listing_id": staging.client_listing_id,
            "property_id": str(staging.property_id) if staging.property_id else None,
        },
        last_contact=datetime.now(timezone.utc),
    )


# --- Google Ads ---------------------------------------------------------------------


def google_ads_origin_id(payload: GoogleAdsLeadPayload) -> Optional[str]:
    """Idempotency key: lead_id, falling back to the click id."""
    return payload.lead_id or payload.gclid or None


def build_google_ads_staging_lead(
    payload: GoogleAdsLeadPayload,
    account_id: uuid.UUID,
    integration_id: Optional[uuid.UUID],
) -> GoogleAdsLead:
    form_fields = extract_google_form_fields(payload.user_column_data)
    return GoogleAdsLead(
        id=uuid.uuid4(),
        account_id=account_id,
        integration_id=integration_id,
        origin_lead_id=google_ads_origin_id(payload),
        name=form_fields.get("name") or None,
        email=form_fields.get("email") or None,
        phone=form_fields.get("phone") or None,
        normalized_fields=form_fields,
        raw_payload=payload.model_dump(mode="json"),
        status=STATUS_PENDING,
        gclid=payload.gclid,
        campaign_id=_id_str(payload.campaign_id),
        ad_group_id=_id_str(payload.ad_group_id),
        creative_id=_id_str(payload.creative_id),
        form_id=_id_str(payload.form_id),
        is_test=payload.is_test,
    )


def crm_lead_from_google_ads(staging: GoogleAdsLead) -> CrmLead:
    form_fields = staging.normalized_fields or {}
    return CrmLead(
        id=uuid.uuid4(),
        account_id=staging.account_id,
        name=form_fields.get("name") or "Lead Google Ads",
        email=form_fields.get("email") or None,
        phone=form_fields.get("phone") or None,
        city=form_fields.get("city") or None,
        state=form_fields.get("state") or None,
        zip_code=form_fields.get("zipCode") or None,
        source="google_ads",
        medium="cpc",
        stage=CRM_STAGE_AD_FORMS,
        status="new",
        extra_data={
            "gclid": staging.gclid,
            "campaign_id": staging.campaign_id,
            "ad_group_id": staging.ad_group_id,
            "creative_id": staging.creative_id,
            "form_fields": form_fields,
            "google_ads_lead_id": str(staging.id),
        },
    )


CRM_LEAD_BUILDERS: dict[type, Callable] = {
    MetaAdsLead: crm_lead_from_meta,
    OlxZapLead: crm_lead_from_olx_zap,
    GoogleAdsLead: crm_lead_from_google_ads,
}
