"""
Tests for src/services/integration_registry.py - account resolution,
integration lookup/auto-provisioning, and lead counters.
"""
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from src.models.integration import Integration, PLATFORM_META_ADS, PLATFORM_OLX_ZAP
from src.services.integration_registry import (
    build_webhook_url,
    get_integration,
    get_or_provision_integration,
    integration_secret,
    record_leads_received,
    resolve_account_id,
)
from tests.conftest import DEFAULT_ACCOUNT_ID


async def _total(db, integration_id) -> int:
    result = await db.execute(
        select(Integration.total_leads_received).where(Integration.id == integration_id)
    )
    return result.scalar()


class TestResolveAccountId:
    def test_default_account(self):
        assert resolve_account_id() == DEFAULT_ACCOUNT_ID

    def test_explicit_account(self):
        account = uuid.uuid4()
        assert resolve_account_id(str(account)) == account

    def test_malformed_account(self):
        with pytest.raises(ValueError):
            resolve_account_id("not-a-uuid")


class TestBuildWebhookUrl:
    def test_uses_base_url(self):
        assert build_webhook_url(PLATFORM_OLX_ZAP) == "http://localhost:8000/webhooks/olx-zap-leads"


class TestGetIntegration:
    @pytest.mark.asyncio
    async def test_active_only(self, db, meta_integration):
        meta_integration.is_active = False
        await db.commit()

        assert await get_integration(db, DEFAULT_ACCOUNT_ID, PLATFORM_META_ADS) is not None
        assert await get_integration(db, DEFAULT_ACCOUNT_ID, PLATFORM_META_ADS, active_only=True) is None

    @pytest.mark.asyncio
    async def test_integration_secret_plaintext_passthrough(self, meta_integration):
        assert integration_secret(meta_integration, "app_secret") == "meta-app-secret"
        assert integration_secret(None, "app_secret") is None


class TestGetOrProvisionIntegration:
    @pytest.mark.asyncio
    async def test_provisions_inactive_by_default(self, db):
        integration = await get_or_provision_integration(db, DEFAULT_ACCOUNT_ID, PLATFORM_OLX_ZAP)
        assert integration.is_active is False
        assert integration.webhook_url.endswith("/webhooks/olx-zap-leads")

    @pytest.mark.asyncio
    async def test_provisions_active_when_asked(self, db):
        integration = await get_or_provision_integration(
            db, DEFAULT_ACCOUNT_ID, PLATFORM_OLX_ZAP, active=True,
        )
        assert integration.is_active is True

    @pytest.mark.asyncio
    async def test_returns_existing(self, db, meta_integration):
        integration = await get_or_provision_integration(db, DEFAULT_ACCOUNT_ID, PLATFORM_META_ADS)
        assert integration.id == meta_integration.id


class TestRecordLeadsReceived:
    @pytest.mark.asyncio
    async def test_increments_and_stamps(self, db, meta_integration):
        await record_leads_received(db, meta_integration, 2)
        await record_leads_received(db, meta_integration, 1)
        await db.commit()

        assert await _total(db, meta_integration.id) == 3
        row = (await db.execute(select(Integration).where(Integration.id == meta_integration.id))).scalar_one()
        assert row.last_sync_at is not None
        assert row.last_lead_received_at is not None

    @pytest.mark.asyncio
    async def test_zero_count_is_noop(self, db, meta_integration):
        await record_leads_received(db, meta_integration, 0)
        await record_leads_received(db, None, 5)
        assert await _total(db, meta_integration.id) == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_read_then_write(self, db, meta_integration):
        """When the atomic UPDATE fails the counter is still bumped."""
        error = OperationalError("UPDATE integrations", {}, Exception("rpc unavailable"))
        with patch.object(db, "execute", side_effect=error):
            await record_leads_received(db, meta_integration, 1)
        await db.commit()

        assert await _total(db, meta_integration.id) == 1

    @pytest.mark.asyncio
    async def test_both_paths_failing_is_swallowed(self, db, meta_integration):
        error = OperationalError("UPDATE integrations", {}, Exception("db down"))
        with (
            patch.object(db, "execute", side_effect=error),
            patch.object(db, "get", side_effect=error),
        ):
            await record_leads_received(db, meta_integration, 1)
