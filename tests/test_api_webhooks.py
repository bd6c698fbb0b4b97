"""
Webhook endpoint tests - Meta Lead Ads, Grupo OLX/ZAP and Google Ads receivers.
Exercises the full request path: verification, idempotency, persistence, audit.
"""
import hashlib
import hmac
import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from src.config import get_settings
from src.models.external_lead import (
    GoogleAdsLead,
    MetaAdsLead,
    OlxZapLead,
    STATUS_ERROR,
    STATUS_PROCESSED,
)
from src.models.integration import Integration, PLATFORM_OLX_ZAP
from src.models.lead import CrmLead
from src.models.property import Property
from src.models.webhook_log import WebhookLog
from src.schemas.webhook_payloads import MetaLeadDetail
from src.services.meta_graph import LeadFetchError
from tests.conftest import (
    DEFAULT_ACCOUNT_ID,
    GOOGLE_WEBHOOK_SECRET,
    META_APP_SECRET,
    META_VERIFY_TOKEN,
)

META_URL = "/webhooks/meta-ads-leads"
OLX_URL = "/webhooks/olx-zap-leads"
GOOGLE_URL = "/webhooks/google-ads-leads"


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar()


async def _logs(db) -> list:
    result = await db.execute(select(WebhookLog).order_by(WebhookLog.created_at))
    return list(result.scalars().all())


async def _total_received(db, platform) -> int:
    result = await db.execute(
        select(Integration.total_leads_received).where(Integration.platform == platform)
    )
    return result.scalar()


def _strict_off():
    return get_settings().model_copy(update={"strict_auth": False})


# --- Meta -----------------------------------------------------------------------


def _meta_body(*leadgen_ids, platform="facebook") -> bytes:
    changes = [
        {
            "field": "leadgen",
            "value": {
                "leadgen_id": leadgen_id,
                "page_id": "page-1",
                "form_id": "form-1",
                "created_time": 1790000000,
                "platform": platform,
            },
        }
        for leadgen_id in leadgen_ids
    ]
    return json.dumps({"object": "page", "entry": [{"id": "page-1", "time": 1790000000, "changes": changes}]}).encode()


def _meta_headers(body: bytes, secret: str = META_APP_SECRET) -> dict:
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return {"Content-Type": "application/json", "X-Hub-Signature-256": f"sha256={signature}"}


def _meta_detail(leadgen_id: str) -> MetaLeadDetail:
    return MetaLeadDetail.model_validate({
        "id": leadgen_id,
        "created_time": "2026-10-01T12:30:00+0000",
        "form_id": "form-1",
        "campaign_id": "camp-1",
        "field_data": [
            {"name": "full_name", "values": [f"Lead {leadgen_id}"]},
            {"name": "email", "values": [f"{leadgen_id}@example.com"]},
        ],
    })


async def _fetch_ok(leadgen_id, access_token):
    return _meta_detail(leadgen_id)


class TestMetaHandshake:
    @pytest.mark.asyncio
    async def test_echoes_challenge(self, client, meta_integration):
        response = await client.get(META_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": META_VERIFY_TOKEN,
            "hub.challenge": "1158201444",
        })
        assert response.status_code == 200
        assert response.text == "1158201444"

    @pytest.mark.asyncio
    async def test_wrong_token_forbidden(self, client, meta_integration):
        response = await client.get(META_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": "guess",
            "hub.challenge": "1158201444",
        })
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_mode_forbidden(self, client, meta_integration):
        response = await client.get(META_URL, params={
            "hub.mode": "unsubscribe",
            "hub.verify_token": META_VERIFY_TOKEN,
            "hub.challenge": "1",
        })
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_no_integration_forbidden(self, client):
        response = await client.get(META_URL, params={
            "hub.mode": "subscribe",
            "hub.verify_token": META_VERIFY_TOKEN,
            "hub.challenge": "1",
        })
        assert response.status_code == 403


class TestMetaWebhook:
    @pytest.mark.asyncio
    async def test_ingests_lead(self, client, db, meta_integration):
        body = _meta_body("L1", platform="instagram")
        with patch("src.api.webhooks.fetch_lead_details", new_callable=AsyncMock, side_effect=_fetch_ok) as mock_fetch:
            response = await client.post(META_URL, content=body, headers=_meta_headers(body))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["leads_processed"] == 1
        assert mock_fetch.call_args.args == ("L1", "EAAB-test-token")

        staging = (await db.execute(select(MetaAdsLead))).scalar_one()
        assert staging.status == STATUS_PROCESSED
        assert staging.platform == "instagram"
        lead = (await db.execute(select(CrmLead))).scalar_one()
        assert lead.id == staging.lead_id
        assert lead.name == "Lead L1"
        assert lead.source == "instagram"
        assert await _total_received(db, "meta_ads") == 1

        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].response_status == 200
        assert logs[0].processed is True
        assert logs[0].external_lead_id == staging.id
        assert logs[0].origin_lead_id == "L1"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, db, meta_integration):
        response = await client.post(META_URL, content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].body == {"raw": "{not json"}

    @pytest.mark.asyncio
    async def test_no_active_integration(self, client, db):
        body = _meta_body("L1")
        response = await client.post(META_URL, content=body, headers=_meta_headers(body))
        assert response.status_code == 404
        assert await _count(db, MetaAdsLead) == 0

    @pytest.mark.asyncio
    async def test_invalid_signature_writes_nothing_but_the_log(self, client, db, meta_integration):
        body = _meta_body("L1")
        with patch("src.api.webhooks.fetch_lead_details", new_callable=AsyncMock) as mock_fetch:
            response = await client.post(META_URL, content=body, headers=_meta_headers(body, "wrong-secret"))

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid signature"
        mock_fetch.assert_not_called()
        assert await _count(db, MetaAdsLead) == 0
        assert await _count(db, CrmLead) == 0
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].response_status == 401

    @pytest.mark.asyncio
    async def test_partial_batch_failure(self, client, db, meta_integration):
        """A failed lead fetch does not abort the rest of the delivery."""
        async def _fetch(leadgen_id, access_token):
            if leadgen_id == "L1":
                raise LeadFetchError(leadgen_id, "Graph API returned HTTP 500", 500)
            return _meta_detail(leadgen_id)

        body = _meta_body("L1", "L2")
        with patch("src.api.webhooks.fetch_lead_details", new_callable=AsyncMock, side_effect=_fetch):
            response = await client.post(META_URL, content=body, headers=_meta_headers(body))

        assert response.status_code == 200
        assert response.json()["leads_processed"] == 1
        assert await _count(db, CrmLead) == 1
        staging = (await db.execute(select(MetaAdsLead))).scalar_one()
        assert staging.origin_lead_id == "L2"
        assert await _total_received(db, "meta_ads") == 1

        log = (await _logs(db))[0]
        assert log.response_body["failed"] == 1
        assert len(log.response_body["lead_ids"]) == 1

    @pytest.mark.asyncio
    async def test_redelivery_is_skipped(self, client, db, meta_integration):
        body = _meta_body("L1")
        with patch("src.api.webhooks.fetch_lead_details", new_callable=AsyncMock, side_effect=_fetch_ok) as mock_fetch:
            first = await client.post(META_URL, content=body, headers=_meta_headers(body))
            second = await client.post(META_URL, content=body, headers=_meta_headers(body))

        assert first.json()["leads_processed"] == 1
        assert second.status_code == 200
        assert second.json()["leads_processed"] == 0
        assert mock_fetch.call_count == 1
        assert await _count(db, MetaAdsLead) == 1
        assert await _count(db, CrmLead) == 1
        assert await _total_received(db, "meta_ads") == 1
        logs = await _logs(db)
        assert len(logs) == 2
        assert logs[1].response_body["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_crm_failure_counts_as_failed(self, client, db, meta_integration):
        body = _meta_body("L1")
        with (
            patch("src.api.webhooks.fetch_lead_details", new_callable=AsyncMock, side_effect=_fetch_ok),
            patch("src.api.webhooks.crm_lead_from_meta", side_effect=RuntimeError("leads insert failed")),
        ):
            response = await client.post(META_URL, content=body, headers=_meta_headers(body))

        assert response.status_code == 200
        assert response.json()["leads_processed"] == 0
        staging = (await db.execute(select(MetaAdsLead))).scalar_one()
        assert staging.status == STATUS_ERROR
        assert await _total_received(db, "meta_ads") == 0


# --- Grupo OLX / ZAP --------------------------------------------------------------


class TestOlxZapHealthcheck:
    @pytest.mark.asyncio
    async def test_healthcheck(self, client, db):
        response = await client.get(OLX_URL)
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "OLX/ZAP Webhook Receiver"
        assert data["status"] == "active"
        assert data["version"] == "1.0.0"
        assert data["timestamp"]
        assert await _count(db, WebhookLog) == 0


class TestOlxZapWebhook:
    @pytest.mark.asyncio
    async def test_ingests_lead(self, client, db, olx_headers, olx_payload):
        response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Lead received successfully"
        assert data["propertyId"] is None

        staging = (await db.execute(select(OlxZapLead))).scalar_one()
        assert str(staging.id) == data["olxZapLeadId"]
        assert str(staging.lead_id) == data["leadId"]
        assert staging.status == STATUS_PROCESSED
        lead = await db.get(CrmLead, staging.lead_id)
        assert lead.score == 90
        assert lead.source == "Grupo OLX"

        integration = (await db.execute(select(Integration))).scalar_one()
        assert integration.platform == PLATFORM_OLX_ZAP
        assert integration.is_active is True

    @pytest.mark.asyncio
    async def test_wrong_user_agent_rejected(self, client, db, olx_payload):
        response = await client.post(OLX_URL, json=olx_payload, headers={"User-Agent": "curl/8.0"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized", "message": "Invalid user-agent"}
        assert await _count(db, OlxZapLead) == 0
        assert len(await _logs(db)) == 1

    @pytest.mark.asyncio
    async def test_strict_auth_off_bypasses_origin_check(self, client, db, olx_payload):
        with patch("src.api.webhooks.get_settings", return_value=_strict_off()):
            response = await client.post(OLX_URL, json=olx_payload, headers={"User-Agent": "curl/8.0"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_shared_secret(self, client, db, olx_headers, olx_payload):
        settings = get_settings().model_copy(update={"olx_zap_secret_key": "s3cret"})
        with patch("src.api.webhooks.get_settings", return_value=settings):
            bad = await client.post(
                OLX_URL, json=olx_payload,
                headers={**olx_headers, "Authorization": "Bearer nope"},
            )
            good = await client.post(OLX_URL + "?secret_key=s3cret", json=olx_payload, headers=olx_headers)

        assert bad.status_code == 401
        assert bad.json()["message"] == "Invalid secret key"
        assert good.status_code == 200
        logs = await _logs(db)
        assert logs[0].headers["authorization"] == "[redacted]"

    @pytest.mark.asyncio
    async def test_missing_required_field(self, client, db, olx_headers, olx_payload):
        del olx_payload["name"]
        response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "Missing required fields: name"
        assert await _count(db, OlxZapLead) == 0
        assert await _count(db, CrmLead) == 0
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].response_status == 400

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, db, olx_headers):
        response = await client.post(OLX_URL, content=b"[1, 2", headers=olx_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"

    @pytest.mark.asyncio
    async def test_redelivery_returns_original_lead(self, client, db, olx_headers, olx_payload):
        first = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)
        second = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert second.status_code == 200
        assert second.json()["message"] == "Lead already processed"
        assert second.json()["leadId"] == first.json()["leadId"]
        assert second.json()["olxZapLeadId"] == first.json()["olxZapLeadId"]
        assert await _count(db, OlxZapLead) == 1
        assert await _count(db, CrmLead) == 1
        assert len(await _logs(db)) == 2

    @pytest.mark.asyncio
    async def test_counter_counts_distinct_leads(self, client, db, olx_headers, olx_payload):
        for i in range(3):
            await client.post(OLX_URL, json={**olx_payload, "originLeadId": f"olx-{i}"}, headers=olx_headers)
        await client.post(OLX_URL, json={**olx_payload, "originLeadId": "olx-0"}, headers=olx_headers)

        assert await _total_received(db, PLATFORM_OLX_ZAP) == 3
        assert await _count(db, CrmLead) == 3

    @pytest.mark.asyncio
    async def test_disabled_integration(self, client, db, olx_headers, olx_payload):
        db.add(Integration(
            id=uuid.uuid4(),
            account_id=DEFAULT_ACCOUNT_ID,
            platform=PLATFORM_OLX_ZAP,
            is_active=False,
            total_leads_received=0,
            settings={},
        ))
        await db.commit()

        response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "Integration is disabled"
        assert await _count(db, OlxZapLead) == 0

    @pytest.mark.asyncio
    async def test_links_matching_property(self, client, db, olx_headers, olx_payload):
        prop = Property(id=uuid.uuid4(), account_id=DEFAULT_ACCOUNT_ID, title="Apartamento AP0042 - Moema")
        db.add(prop)
        await db.commit()

        response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.json()["propertyId"] == str(prop.id)
        lead = (await db.execute(select(CrmLead))).scalar_one()
        assert lead.property_id == prop.id

    @pytest.mark.asyncio
    async def test_crm_failure_keeps_staging_row(self, client, db, olx_headers, olx_payload):
        with patch("src.api.webhooks.crm_lead_from_olx_zap", side_effect=RuntimeError("leads insert failed")):
            response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to create CRM lead"
        staging = (await db.execute(select(OlxZapLead))).scalar_one()
        assert staging.status == STATUS_ERROR
        assert "leads insert failed" in staging.processing_error
        assert await _count(db, CrmLead) == 0
        assert await _total_received(db, PLATFORM_OLX_ZAP) == 0

        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].response_status == 500
        assert logs[0].external_lead_id == staging.id
        assert logs[0].error_stack

    @pytest.mark.asyncio
    async def test_unexpected_error_hides_details(self, client, db, olx_headers, olx_payload):
        with patch(
            "src.api.webhooks.find_property_for_listing",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].error_message == "boom"

    @pytest.mark.asyncio
    async def test_unexpected_error_details_when_not_strict(self, client, db, olx_headers, olx_payload):
        with (
            patch("src.api.webhooks.get_settings", return_value=_strict_off()),
            patch(
                "src.api.webhooks.find_property_for_listing",
                new_callable=AsyncMock,
                side_effect=RuntimeError("boom"),
            ),
        ):
            response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        data = response.json()
        assert data["message"] == "boom"
        assert "RuntimeError" in data["stack"]

    @pytest.mark.asyncio
    async def test_failed_property_lookup_still_ingests(
        self, client, db, olx_headers, olx_payload, abort_transaction_on,
    ):
        aborter = abort_transaction_on("FROM properties")

        response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert aborter.failures == 1
        assert response.status_code == 200
        assert response.json()["propertyId"] is None
        staging = (await db.execute(select(OlxZapLead))).scalar_one()
        assert staging.status == STATUS_PROCESSED
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].response_status == 200

    @pytest.mark.asyncio
    async def test_failed_statement_is_still_audited(
        self, client, db, olx_headers, olx_payload, abort_transaction_on,
    ):
        abort_transaction_on("FROM olx_zap_leads")

        response = await client.post(OLX_URL, json=olx_payload, headers=olx_headers)

        assert response.status_code == 500
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].response_status == 500
        assert "current transaction is aborted" in logs[0].error_message
        # The integration provisioned by this request was rolled back with it
        assert logs[0].integration_id is None
        assert await _count(db, Integration) == 0
        assert await _count(db, OlxZapLead) == 0

    @pytest.mark.asyncio
    async def test_query_secret_is_redacted_in_audit(self, client, db, olx_headers, olx_payload):
        with patch(
            "src.api.webhooks.get_settings",
            return_value=get_settings().model_copy(update={"olx_zap_secret_key": "super-shared-secret"}),
        ):
            response = await client.post(
                f"{OLX_URL}?secret_key=super-shared-secret&source=zap",
                json=olx_payload,
                headers=olx_headers,
            )

        assert response.status_code == 200
        log = (await _logs(db))[0]
        assert log.query_params == {"secret_key": "[redacted]", "source": "zap"}
        assert "super-shared-secret" not in json.dumps(log.query_params)

    @pytest.mark.asyncio
    async def test_audit_request_context(self, client, db, olx_headers, olx_payload):
        response = await client.post(
            OLX_URL,
            json=olx_payload,
            headers={**olx_headers, "X-Forwarded-For": "203.0.113.9, 10.0.0.1", "X-Correlation-ID": "corr-olx-1"},
        )

        assert response.headers["X-Correlation-ID"] == "corr-olx-1"
        log = (await _logs(db))[0]
        assert log.client_ip == "203.0.113.9"
        assert log.user_agent == "olx-group-api/2.1"
        assert log.correlation_id == "corr-olx-1"
        assert log.origin_lead_id == "olx-lead-0001"
        assert log.account_id == DEFAULT_ACCOUNT_ID
        assert log.body["originLeadId"] == "olx-lead-0001"
        assert log.payload_hash is not None
        assert log.processing_time_ms >= 0


# --- Google Ads -------------------------------------------------------------------


def _google_body(**overrides) -> bytes:
    data = {
        "lead_id": "gads-lead-1",
        "gclid": "Cj0KCQ-test",
        "campaign_id": 123456,
        "form_id": 42,
        "user_column_data": [
            {"column_id": "FULL_NAME", "string_value": "Ana Souza"},
            {"column_id": "PHONE_NUMBER", "phone_number_value": "+5511988887777"},
        ],
    }
    data.update(overrides)
    return json.dumps(data).encode()


def _google_headers(body: bytes, secret: str = GOOGLE_WEBHOOK_SECRET) -> dict:
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return {"Content-Type": "application/json", "X-Google-Ads-Signature": signature}


class TestGoogleAdsWebhook:
    @pytest.mark.asyncio
    async def test_ingests_lead(self, client, db, google_integration):
        body = _google_body()
        response = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["duplicate"] is False
        staging = (await db.execute(select(GoogleAdsLead))).scalar_one()
        assert data["google_ads_lead_id"] == str(staging.id)
        assert data["lead_id"] == str(staging.lead_id)
        assert staging.campaign_id == "123456"
        lead = await db.get(CrmLead, staging.lead_id)
        assert lead.name == "Ana Souza"
        assert lead.phone == "+5511988887777"
        assert await _total_received(db, "google_ads") == 1

    @pytest.mark.asyncio
    async def test_redelivery_is_duplicate(self, client, db, google_integration):
        body = _google_body()
        first = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body))
        second = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body))

        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert second.json()["lead_id"] == first.json()["lead_id"]
        assert await _count(db, GoogleAdsLead) == 1
        assert await _total_received(db, "google_ads") == 1

    @pytest.mark.asyncio
    async def test_gclid_only_lead(self, client, db, google_integration):
        body = _google_body(lead_id=None)
        response = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body))

        assert response.status_code == 200
        staging = (await db.execute(select(GoogleAdsLead))).scalar_one()
        assert staging.origin_lead_id == "Cj0KCQ-test"

    @pytest.mark.asyncio
    async def test_no_integration(self, client, db):
        body = _google_body()
        response = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_signature(self, client, db, google_integration):
        body = _google_body()
        response = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body, "wrong"))
        assert response.status_code == 401
        assert await _count(db, GoogleAdsLead) == 0

    @pytest.mark.asyncio
    async def test_missing_identifiers(self, client, db, google_integration):
        body = _google_body(lead_id=None, gclid=None)
        response = await client.post(GOOGLE_URL, content=body, headers=_google_headers(body))
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    @pytest.mark.asyncio
    async def test_wrong_content_type(self, client, db, google_integration):
        body = _google_body()
        response = await client.post(
            GOOGLE_URL, content=body,
            headers={**_google_headers(body), "Content-Type": "text/plain"},
        )
        assert response.status_code == 400
        assert len(await _logs(db)) == 1
