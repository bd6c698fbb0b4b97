"""
Integration model - per-account, per-platform ad integration settings.
Holds credentials (encrypted at rest when ENCRYPTION_KEY is set), the
activation flag, and running ingestion counters.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base

PLATFORM_META_ADS = "meta_ads"
PLATFORM_OLX_ZAP = "olx_zap"
PLATFORM_GOOGLE_ADS = "google_ads"
PLATFORMS = (PLATFORM_META_ADS, PLATFORM_OLX_ZAP, PLATFORM_GOOGLE_ADS)


class Integration(Base):
    __tablename__ = "integrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(30), nullable=False)  # meta_ads, olx_zap, google_ads
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Meta app credentials
    app_id: Mapped[Optional[str]] = mapped_column(String(100))
    app_secret: Mapped[Optional[str]] = mapped_column(Text)
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    page_id: Mapped[Optional[str]] = mapped_column(String(100))
    form_id: Mapped[Optional[str]] = mapped_column(String(100))

    # Webhook wiring
    verify_token: Mapped[Optional[str]] = mapped_column(String(255))
    webhook_secret: Mapped[Optional[str]] = mapped_column(Text)
    client_api_key: Mapped[Optional[str]] = mapped_column(Text)
    webhook_url: Mapped[Optional[str]] = mapped_column(String(500))

    # Counters
    total_leads_received: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_lead_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    settings: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("account_id", "platform", name="uq_integrations_account_platform"),
    )

    def __repr__(self) -> str:
        return f"<Integration {self.platform} account={str(self.account_id)[:8]} active={self.is_active}>"
