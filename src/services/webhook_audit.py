"""
Webhook audit trail - one WebhookLog row per inbound request.

Handlers create a WebhookAudit when the request arrives, enrich it as they
learn more (account, integration, origin lead id), and finish every code
path through respond(), which writes the row and builds the JSONResponse.
Audit failures are logged and swallowed: auditing never fails a delivery.
"""
import json
import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.integration import Integration
from src.models.webhook_log import WebhookLog
from src.utils.logging import get_correlation_id
from src.utils.metrics import Timer
from src.utils.webhook_signatures import compute_payload_hash

logger = logging.getLogger(__name__)

REDACTED_HEADERS = {"authorization", "cookie", "x-api-key"}
REDACTED_QUERY_PARAMS = {"secret_key", "access_token", "hub.verify_token"}
MAX_RAW_BODY_CHARS = 10000


def get_client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def redact_headers(request: Request) -> dict:
    return {
        key: ("[redacted]" if key.lower() in REDACTED_HEADERS else value)
        for key, value in request.headers.items()
    }


def redact_query_params(request: Request) -> dict:
    return {
        key: ("[redacted]" if key.lower() in REDACTED_QUERY_PARAMS else value)
        for key, value in request.query_params.items()
    }


def parse_body_for_log(raw_body: bytes) -> Optional[Any]:
    """Parsed JSON when possible, otherwise the raw text under {"raw": ...}."""
    if not raw_body:
        return None
    try:
        return json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return {"raw": raw_body.decode("utf-8", errors="replace")[:MAX_RAW_BODY_CHARS]}


class WebhookAudit:
    """Collects request context and writes the audit row when the handler responds."""

    def __init__(self, request: Request, db: AsyncSession, platform: str, raw_body: bytes = b""):
        self.request = request
        self.db = db
        self.platform = platform
        self.raw_body = raw_body
        self.timer = Timer().start()
        self.account_id: Optional[uuid.UUID] = None
        self.integration_id: Optional[uuid.UUID] = None
        self.origin_lead_id: Optional[str] = None
        self.log: Optional[WebhookLog] = None

    async def discard_transaction(self) -> None:
        """
        Roll back the request transaction after an unexpected failure.

        A failed statement leaves a Postgres transaction aborted, and every
        later statement (the audit insert included) fails until a rollback.
        Integrations provisioned in this request are gone afterwards, so the
        audit row drops its link to them.
        """
        try:
            await self.db.rollback()
            if self.integration_id is not None:
                if await self.db.get(Integration, self.integration_id) is None:
                    self.integration_id = None
        except SQLAlchemyError as e:
            logger.error("Failed to roll back %s webhook transaction: %s", self.platform, str(e))

    async def respond(
        self,
        status_code: int,
        content: dict,
        *,
        log_body: Optional[dict] = None,
        external_lead_id: Optional[uuid.UUID] = None,
        processed: bool = False,
        error: Optional[BaseException] = None,
        error_message: Optional[str] = None,
    ) -> JSONResponse:
        """
        Write the audit row and return the response.

        log_body overrides what is stored as response_body (e.g. to add
        lead ids that are not sent back to the platform).
        """
        elapsed_ms = self.timer.stop()
        if "processing_time_ms" in content:
            content["processing_time_ms"] = elapsed_ms

        stack = None
        if error is not None:
            error_message = error_message or str(error)
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))

        await self.write(
            status_code,
            log_body if log_body is not None else content,
            elapsed_ms,
            external_lead_id=external_lead_id,
            processed=processed,
            error_message=error_message,
            error_stack=stack,
        )
        return JSONResponse(status_code=status_code, content=content)

    async def write(
        self,
        status_code: int,
        response_body: Optional[dict],
        elapsed_ms: int,
        *,
        external_lead_id: Optional[uuid.UUID] = None,
        processed: bool = False,
        error_message: Optional[str] = None,
        error_stack: Optional[str] = None,
    ) -> Optional[WebhookLog]:
        request = self.request
        try:
            entry = WebhookLog(
                id=uuid.uuid4(),
                platform=self.platform,
                account_id=self.account_id,
                integration_id=self.integration_id,
                method=request.method,
                path=request.url.path,
                headers=redact_headers(request),
                body=parse_body_for_log(self.raw_body),
                query_params=redact_query_params(request) or None,
                payload_hash=compute_payload_hash(self.raw_body) if self.raw_body else None,
                client_ip=get_client_ip(request),
                user_agent=request.headers.get("user-agent"),
                response_status=status_code,
                response_body=response_body,
                processing_time_ms=elapsed_ms,
                processed=processed,
                error_message=error_message,
                error_stack=error_stack,
                external_lead_id=external_lead_id,
                origin_lead_id=self.origin_lead_id,
                correlation_id=get_correlation_id(),
            )
            async with self.db.begin_nested():
                self.db.add(entry)
                await self.db.flush()
        except Exception as e:
            logger.error(
                "Failed to write %s webhook log (status %d): %s",
                self.platform, status_code, str(e),
                extra={"platform": self.platform, "status_code": status_code},
            )
            return None

        self.log = entry
        logger.info(
            "%s webhook answered %d in %dms",
            self.platform, status_code, elapsed_ms,
            extra={
                "platform": self.platform,
                "status_code": status_code,
                "origin_lead_id": self.origin_lead_id,
            },
        )
        return entry
