"""
Meta Graph API client - fetches the filled lead form for a leadgen id.

The webhook notification only carries ids; the answers live behind
GET /{version}/{leadgen_id}?access_token=...
All calls have a bounded timeout (META_GRAPH_TIMEOUT_SECONDS).
"""
import logging

import httpx
from pydantic import ValidationError

from src.config import get_settings
from src.schemas.webhook_payloads import MetaLeadDetail

logger = logging.getLogger(__name__)


class LeadFetchError(Exception):
    """Lead details could not be retrieved (network error, non-2xx, bad body)."""

    def __init__(self, leadgen_id: str, message: str, status_code: int = None):
        super().__init__(message)
        self.leadgen_id = leadgen_id
        self.status_code = status_code


async def fetch_lead_details(leadgen_id: str, access_token: str) -> MetaLeadDetail:
    """Fetch one lead from the Graph API. Raises LeadFetchError on any failure."""
    if not access_token:
        raise LeadFetchError(leadgen_id, "Integration has no access token configured")

    settings = get_settings()
    url = f"{settings.meta_graph_api_url.rstrip('/')}/{settings.meta_graph_api_version}/{leadgen_id}"

    try:
        async with httpx.AsyncClient(timeout=settings.meta_graph_timeout_seconds) as client:
            response = await client.get(url, params={"access_token": access_token})
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        logger.warning(
            "Graph API returned %d for leadgen %s: %s",
            status, leadgen_id, e.response.text[:300],
        )
        raise LeadFetchError(leadgen_id, f"Graph API returned HTTP {status}", status) from e
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Graph API request failed for leadgen %s: %s", leadgen_id, str(e))
        raise LeadFetchError(leadgen_id, f"Graph API request failed: {e}") from e

    if not isinstance(data, dict):
        raise LeadFetchError(leadgen_id, "Graph API returned a non-object body")
    data.setdefault("id", leadgen_id)
    try:
        return MetaLeadDetail.model_validate(data)
    except ValidationError as e:
        raise LeadFetchError(leadgen_id, f"Unexpected Graph API lead shape: {e}") from e
