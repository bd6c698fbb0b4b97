"""
External lead staging tables - one per ad platform.

Every inbound platform lead is written here first (status=pending), then a
CRM lead is created from it and linked back (status=processed). If the CRM
insert fails the staging row is kept with status=error so the raw payload is
never lost and can be reprocessed.

(account_id, origin_lead_id) is unique per table: a platform lead is ingested
at most once per account. A unique-constraint violation on insert means a
concurrent redelivery already won the race.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, declared_attr

from src.database import Base

STATUS_PENDING = "pending"
STATUS_PROCESSED = "processed"
STATUS_ERROR = "error"
EXTERNAL_LEAD_STATUSES = (STATUS_PENDING, STATUS_PROCESSED, STATUS_ERROR)


class ExternalLeadMixin:
    """Columns shared by every platform staging table."""

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    integration_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("integrations.id", ondelete="SET NULL")
    )

    # Idempotency key (platform-assigned lead id)
    origin_lead_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Normalized contact data
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    normalized_fields: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)

    # Verbatim platform payload, kept for audit and replay
    raw_payload: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Processing state
    status: Mapped[str] = mapped_column(String(20), default=STATUS_PENDING, nullable=False)
    processing_error: Mapped[Optional[str]] = mapped_column(Text)
    lead_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leads.id", ondelete="SET NULL")
    )
    property_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("properties.id", ondelete="SET NULL")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    @declared_attr.directive
    def __table_args__(cls):
        table = cls.__tablename__
        return (
            UniqueConstraint("account_id", "origin_lead_id", name=f"uq_{table}_account_origin"),
            Index(f"ix_{table}_status", "status"),
            Index(f"ix_{table}_created_at", "created_at"),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.origin_lead_id} status={self.status}>"


class MetaAdsLead(ExternalLeadMixin, Base):
    """Facebook / Instagram lead-form submission."""

    __tablename__ = "meta_ads_leads"

    platform: Mapped[str] = mapped_column(String(20), default="facebook")  # facebook, instagram
    form_id: Mapped[Optional[str]] = mapped_column(String(100))
    campaign_id: Mapped[Optional[str]] = mapped_column(String(100))
    ad_id: Mapped[Optional[str]] = mapped_column(String(100))
    adset_id: Mapped[Optional[str]] = mapped_column(String(100))
    created_time: Mapped[Optional[str]] = mapped_column(String(50))
    utm_source: Mapped[Optional[str]] = mapped_column(String(50))
    utm_medium: Mapped[Optional[str]] = mapped_column(String(50))


class OlxZapLead(ExternalLeadMixin, Base):
    """Grupo OLX (ZAP Imoveis, Viva Real) portal lead."""

    __tablename__ = "olx_zap_leads"

    lead_origin: Mapped[Optional[str]] = mapped_column(String(100))
    origin_timestamp: Mapped[Optional[str]] = mapped_column(String(50))
    origin_listing_id: Mapped[Optional[str]] = mapped_column(String(100))
    client_listing_id: Mapped[Optional[str]] = mapped_column(String(255))
    ddd: Mapped[Optional[str]] = mapped_column(String(5))
    phone_number: Mapped[Optional[str]] = mapped_column(String(50))
    message: Mapped[Optional[str]] = mapped_column(Text)
    temperature: Mapped[Optional[str]] = mapped_column(String(20))  # Alta, Média, Baixa
    transaction_type: Mapped[Optional[str]] = mapped_column(String(10))  # SELL, RENT


class GoogleAdsLead(ExternalLeadMixin, Base):
    """Google Ads lead-form extension submission."""

    __tablename__ = "google_ads_leads"

    gclid: Mapped[Optional[str]] = mapped_column(String(255))
    campaign_id: Mapped[Optional[str]] = mapped_column(String(100))
    ad_group_id: Mapped[Optional[str]] = mapped_column(String(100))
    creative_id: Mapped[Optional[str]] = mapped_column(String(100))
    form_id: Mapped[Optional[str]] = mapped_column(String(100))
    is_test: Mapped[bool] = mapped_column(Boolean, default=False)
