"""
Simulate an inbound lead against a running instance.

Usage:
    python scripts/simulate_lead.py
    python scripts/simulate_lead.py --source meta --leadgen-id 123456 --app-secret s3cret
    python scripts/simulate_lead.py --source google_ads --name "Ana Souza"
    python scripts/simulate_lead.py --source olx_zap --origin-lead-id abc-123 --listing-id AP0042
"""
import argparse
import asyncio
import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"


def _sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


async def simulate_olx_zap(name: str, phone: str, origin_lead_id: str, listing_id: str, secret: str):
    """Send a Grupo OLX lead (their user-agent, optional bearer secret)."""
    payload = {
        "leadOrigin": "ZAP",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "originLeadId": origin_lead_id,
        "originListingId": "2501234567",
        "clientListingId": listing_id,
        "name": name,
        "email": f"{name.split()[0].lower()}@example.com",
        "ddd": phone[:2],
        "phone": phone[2:],
        "phoneNumber": phone,
        "message": "Olá, tenho interesse neste imóvel.",
        "temperature": "Alta",
        "transactionType": "SELL",
    }
    headers = {"User-Agent": "olx-group-api/1.0"}
    if secret:
        headers["Authorization"] = f"Bearer {secret}"
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/webhooks/olx-zap-leads", json=payload, headers=headers)
        logger.info("OLX/ZAP response: %s %s", resp.status_code, resp.json())
        return resp


async def simulate_meta(leadgen_id: str, platform: str, app_secret: str):
    """Send a Meta leadgen notification. The server then fetches the lead from the Graph API."""
    payload = {
        "object": "page",
        "entry": [
            {
                "id": "PAGE_ID",
                "time": int(datetime.now(timezone.utc).timestamp()),
                "changes": [
                    {
                        "field": "leadgen",
                        "value": {
                            "leadgen_id": leadgen_id,
                            "page_id": "PAGE_ID",
                            "form_id": "FORM_ID",
                            "platform": platform,
                        },
                    }
                ],
            }
        ],
    }
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if app_secret:
        headers["X-Hub-Signature-256"] = f"sha256={_sign(body, app_secret)}"
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/webhooks/meta-ads-leads", content=body, headers=headers)
        logger.info("Meta response: %s %s", resp.status_code, resp.json())
        return resp


async def simulate_google_ads(name: str, phone: str, webhook_secret: str):
    """Send a Google Ads lead-form submission."""
    payload = {
        "lead_id": f"TeSter-{uuid.uuid4().hex[:12]}",
        "gclid": f"gclid-{uuid.uuid4().hex[:8]}",
        "campaign_id": 123456789,
        "form_id": 987654,
        "is_test": True,
        "user_column_data": [
            {"column_id": "FULL_NAME", "string_value": name},
            {"column_id": "EMAIL", "string_value": f"{name.split()[0].lower()}@example.com"},
            {"column_id": "PHONE_NUMBER", "string_value": phone},
            {"column_id": "CITY", "string_value": "São Paulo"},
            {"column_id": "POSTAL_CODE", "string_value": "01310-100"},
        ],
    }
    body = json.dumps(payload).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if webhook_secret:
        headers["X-Google-Ads-Signature"] = _sign(body, webhook_secret)
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(f"{BASE_URL}/webhooks/google-ads-leads", content=body, headers=headers)
        logger.info("Google Ads response: %s %s", resp.status_code, resp.json())
        return resp


async def main():
    global BASE_URL
    parser = argparse.ArgumentParser(description="Simulate inbound ad-platform leads")
    parser.add_argument("--source", default="olx_zap", choices=["olx_zap", "meta", "google_ads"])
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--name", default="Maria Oliveira")
    parser.add_argument("--phone", default="11987654321")
    parser.add_argument("--origin-lead-id", default=None, help="OLX/ZAP lead id (random if omitted)")
    parser.add_argument("--listing-id", default="AP0042", help="OLX/ZAP clientListingId")
    parser.add_argument("--secret", default="", help="OLX/ZAP shared secret")
    parser.add_argument("--leadgen-id", default="1234567890", help="Meta leadgen id")
    parser.add_argument("--platform", default="facebook", choices=["facebook", "instagram"])
    parser.add_argument("--app-secret", default="", help="Meta app secret used to sign the body")
    parser.add_argument("--webhook-secret", default="", help="Google Ads webhook secret")
    args = parser.parse_args()
    BASE_URL = args.base_url.rstrip("/")

    logger.info("Simulating %s lead against %s...", args.source, BASE_URL)

    if args.source == "olx_zap":
        origin_lead_id = args.origin_lead_id or str(uuid.uuid4())
        await simulate_olx_zap(args.name, args.phone, origin_lead_id, args.listing_id, args.secret)
    elif args.source == "meta":
        await simulate_meta(args.leadgen_id, args.platform, args.app_secret)
    elif args.source == "google_ads":
        await simulate_google_ads(args.name, args.phone, args.webhook_secret)


if __name__ == "__main__":
    asyncio.run(main())
