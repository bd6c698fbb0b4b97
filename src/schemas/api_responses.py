"""
API response and request schemas for the webhook receivers and the
integration management endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


# --- Webhook acknowledgements ---------------------------------------------------


class MetaWebhookResponse(BaseModel):
    success: bool = True
    leads_processed: int = 0
    processing_time_ms: int = 0


class OlxZapWebhookResponse(BaseModel):
    """Body returned to Grupo OLX. Any 2xx stops their retry schedule."""
    success: bool
    message: str
    olxZapLeadId: Optional[str] = None
    leadId: Optional[str] = None
    propertyId: Optional[str] = None


class GoogleAdsWebhookResponse(BaseModel):
    success: bool = True
    lead_id: Optional[str] = None
    google_ads_lead_id: Optional[str] = None
    duplicate: bool = False
    processing_time_ms: int = 0


class WebhookErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: Optional[str] = None
    stack: Optional[str] = None


class ReceiverHealthResponse(BaseModel):
    service: str
    status: str
    version: str
    timestamp: str


# --- Integration management --------------------------------------------------------


class IntegrationUpdate(BaseModel):
    """PUT body - only fields that are present are written."""
    account_id: Optional[str] = None
    is_active: Optional[bool] = None
    app_id: Optional[str] = None
    app_secret: Optional[str] = None
    access_token: Optional[str] = None
    page_id: Optional[str] = None
    form_id: Optional[str] = None
    verify_token: Optional[str] = None
    webhook_secret: Optional[str] = None
    client_api_key: Optional[str] = None
    settings: Optional[dict] = None


class IntegrationDetail(BaseModel):
    id: str
    account_id: str
    platform: str
    is_active: bool
    app_id: Optional[str] = None
    app_secret: Optional[str] = None  # masked
    access_token: Optional[str] = None  # masked
    page_id: Optional[str] = None
    form_id: Optional[str] = None
    verify_token: Optional[str] = None
    webhook_secret: Optional[str] = None  # masked
    client_api_key: Optional[str] = None  # masked
    webhook_url: Optional[str] = None
    total_leads_received: int = 0
    last_sync_at: Optional[datetime] = None
    last_lead_received_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IntegrationStats(BaseModel):
    total_leads: int = 0
    leads_today: int = 0
    leads_this_week: int = 0
    leads_this_month: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_temperature: Optional[dict[str, int]] = None
    by_transaction_type: Optional[dict[str, int]] = None


class IntegrationResponse(BaseModel):
    integration: Optional[IntegrationDetail] = None
    stats: Optional[IntegrationStats] = None


class ExternalLeadSummary(BaseModel):
    id: str
    origin_lead_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str
    processing_error: Optional[str] = None
    lead_id: Optional[str] = None
    property_id: Optional[str] = None
    details: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ExternalLeadListResponse(BaseModel):
    leads: list[ExternalLeadSummary]
    pagination: Pagination


class ReprocessResponse(BaseModel):
    success: bool
    external_lead_id: str
    lead_id: Optional[str] = None
    status: str
    message: Optional[str] = None


class WebhookLogSummary(BaseModel):
    id: str
    platform: str
    method: str
    response_status: int
    processing_time_ms: Optional[int] = None
    processed: bool = False
    error_message: Optional[str] = None
    origin_lead_id: Optional[str] = None
    external_lead_id: Optional[str] = None
    correlation_id: Optional[str] = None
    created_at: datetime
