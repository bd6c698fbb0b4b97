"""
Webhook audit trail - exactly one row per inbound webhook request, whatever
the outcome (success, duplicate, validation/auth failure, persistence error).
Enables debugging, replay, and compliance auditing.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB

from src.database import Base


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    platform = Column(String(30), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    integration_id = Column(
        UUID(as_uuid=True), ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True
    )

    # Request
    method = Column(String(10), nullable=False)
    path = Column(String(255), nullable=True)
    headers = Column(JSONB, nullable=True)
    body = Column(JSONB, nullable=True)
    query_params = Column(JSONB, nullable=True)
    payload_hash = Column(String(64), nullable=True, index=True)
    client_ip = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    # Response
    response_status = Column(Integer, nullable=False, index=True)
    response_body = Column(JSONB, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    processed = Column(Boolean, nullable=False, default=False, server_default="false")

    # Failure details
    error_message = Column(Text, nullable=True)
    error_stack = Column(Text, nullable=True)

    # Association
    external_lead_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    origin_lead_id = Column(String(255), nullable=True, index=True)
    correlation_id = Column(String(64), nullable=True, index=True)
