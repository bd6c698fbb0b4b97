"""Initial schema: integrations, platform lead staging tables, CRM leads, properties, webhook logs

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

STAGING_TABLES = ("meta_ads_leads", "olx_zap_leads", "google_ads_leads")


def _staging_columns() -> list:
    """Columns shared by every platform staging table."""
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "integration_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("origin_lead_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("normalized_fields", postgresql.JSONB, nullable=True),
        sa.Column("raw_payload", postgresql.JSONB, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("processing_error", sa.Text, nullable=True),
        sa.Column(
            "lead_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column(
            "property_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("properties.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "integrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("app_id", sa.String(100), nullable=True),
        sa.Column("app_secret", sa.Text, nullable=True),
        sa.Column("access_token", sa.Text, nullable=True),
        sa.Column("page_id", sa.String(100), nullable=True),
        sa.Column("form_id", sa.String(100), nullable=True),
        sa.Column("verify_token", sa.String(255), nullable=True),
        sa.Column("webhook_secret", sa.Text, nullable=True),
        sa.Column("client_api_key", sa.Text, nullable=True),
        sa.Column("webhook_url", sa.String(500), nullable=True),
        sa.Column("total_leads_received", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_lead_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("settings", postgresql.JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("account_id", "platform", name="uq_integrations_account_platform"),
    )
    op.create_index("ix_integrations_account_id", "integrations", ["account_id"])

    op.create_table(
        "properties",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("listing_code", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_properties_account_id", "properties", ["account_id"])

    op.create_table(
        "leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(50), nullable=True),
        sa.Column("zip_code", sa.String(20), nullable=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("source_details", sa.Text, nullable=True),
        sa.Column("medium", sa.String(50), nullable=True),
        sa.Column("campaign", sa.String(255), nullable=True),
        sa.Column("stage", sa.String(30), nullable=False, server_default="lead_novo"),
        sa.Column("status", sa.String(30), nullable=False, server_default="new"),
        sa.Column("score", sa.Integer, nullable=True, server_default="50"),
        sa.Column("temperature", sa.String(20), nullable=True),
        sa.Column(
            "property_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("properties.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("property_preferences", postgresql.JSONB, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        sa.Column("last_contact", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_leads_account_id", "leads", ["account_id"])
    op.create_index("ix_leads_source", "leads", ["source"])
    op.create_index("ix_leads_stage", "leads", ["stage"])
    op.create_index("ix_leads_created_at", "leads", ["created_at"])

    op.create_table(
        "meta_ads_leads",
        *_staging_columns(),
        sa.Column("platform", sa.String(20), nullable=True, server_default="facebook"),
        sa.Column("form_id", sa.String(100), nullable=True),
        sa.Column("campaign_id", sa.String(100), nullable=True),
        sa.Column("ad_id", sa.String(100), nullable=True),
        sa.Column("adset_id", sa.String(100), nullable=True),
        sa.Column("created_time", sa.String(50), nullable=True),
        sa.Column("utm_source", sa.String(50), nullable=True),
        sa.Column("utm_medium", sa.String(50), nullable=True),
    )

    op.create_table(
        "olx_zap_leads",
        *_staging_columns(),
        sa.Column("lead_origin", sa.String(100), nullable=True),
        sa.Column("origin_timestamp", sa.String(50), nullable=True),
        sa.Column("origin_listing_id", sa.String(100), nullable=True),
        sa.Column("client_listing_id", sa.String(255), nullable=True),
        sa.Column("ddd", sa.String(5), nullable=True),
        sa.Column("phone_number", sa.String(50), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("temperature", sa.String(20), nullable=True),
        sa.Column("transaction_type", sa.String(10), nullable=True),
    )

    op.create_table(
        "google_ads_leads",
        *_staging_columns(),
        sa.Column("gclid", sa.String(255), nullable=True),
        sa.Column("campaign_id", sa.String(100), nullable=True),
        sa.Column("ad_group_id", sa.String(100), nullable=True),
        sa.Column("creative_id", sa.String(100), nullable=True),
        sa.Column("form_id", sa.String(100), nullable=True),
        sa.Column("is_test", sa.Boolean, nullable=True, server_default="false"),
    )

    # One ingestion per platform lead per account
    for table in STAGING_TABLES:
        op.create_unique_constraint(
            f"uq_{table}_account_origin", table, ["account_id", "origin_lead_id"],
        )
        op.create_index(f"ix_{table}_status", table, ["status"])
        op.create_index(f"ix_{table}_created_at", table, ["created_at"])

    op.create_table(
        "webhook_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "integration_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("path", sa.String(255), nullable=True),
        sa.Column("headers", postgresql.JSONB, nullable=True),
        sa.Column("body", postgresql.JSONB, nullable=True),
        sa.Column("query_params", postgresql.JSONB, nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("response_status", sa.Integer, nullable=False),
        sa.Column("response_body", postgresql.JSONB, nullable=True),
        sa.Column("processing_time_ms", sa.Integer, nullable=True),
        sa.Column("processed", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_stack", sa.Text, nullable=True),
        sa.Column("external_lead_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("origin_lead_id", sa.String(255), nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_webhook_logs_created_at", "webhook_logs", ["created_at"])
    op.create_index("ix_webhook_logs_platform", "webhook_logs", ["platform"])
    op.create_index("ix_webhook_logs_account_id", "webhook_logs", ["account_id"])
    op.create_index("ix_webhook_logs_payload_hash", "webhook_logs", ["payload_hash"])
    op.create_index("ix_webhook_logs_response_status", "webhook_logs", ["response_status"])
    op.create_index("ix_webhook_logs_external_lead_id", "webhook_logs", ["external_lead_id"])
    op.create_index("ix_webhook_logs_origin_lead_id", "webhook_logs", ["origin_lead_id"])
    op.create_index("ix_webhook_logs_correlation_id", "webhook_logs", ["correlation_id"])


def downgrade() -> None:
    op.drop_table("webhook_logs")
    for table in reversed(STAGING_TABLES):
        op.drop_table(table)
    op.drop_table("leads")
    op.drop_table("properties")
    op.drop_table("integrations")
