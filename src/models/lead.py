"""
CRM lead model - the canonical sales lead shared by every channel.
Ingestion creates it from an external staging row; the rest of the CRM moves
it through the pipeline (lead_novo / new → ... → won / lost).
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.database import Base


class CrmLead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Contact info
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(50))
    zip_code: Mapped[Optional[str]] = mapped_column(String(20))

    # Origin
    source: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # facebook, instagram, google_ads, Grupo OLX, manual
    source_details: Mapped[Optional[str]] = mapped_column(Text)
    medium: Mapped[Optional[str]] = mapped_column(String(50))  # social, cpc, portal
    campaign: Mapped[Optional[str]] = mapped_column(String(255))

    # Pipeline
    stage: Mapped[str] = mapped_column(String(30), default="lead_novo", nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="new", nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=50)
    temperature: Mapped[Optional[str]] = mapped_column(String(20))  # alta, média, baixa

    # Real-estate interest
    property_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("properties.id", ondelete="SET NULL")
    )
    property_preferences: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Platform context (external lead linkage, campaign/ad/form ids)
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, default=dict)

    last_contact: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_leads_account_id", "account_id"),
        Index("ix_leads_source", "source"),
        Index("ix_leads_stage", "stage"),
        Index("ix_leads_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CrmLead {self.id} source={self.source} stage={self.stage}>"
