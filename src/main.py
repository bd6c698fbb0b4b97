"""
Moby CRM lead ingestion - webhook receivers for Meta Lead Ads, Grupo OLX/ZAP
and Google Ads lead forms.
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from src.config import get_settings
from src.api.health import APP_VERSION
from src.api.router import api_router
from src.database import dispose_engine
from src.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("moby_ingest")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Lead ingestion starting up (env=%s)", settings.app_env)

    # Security warnings
    if not settings.strict_auth:
        logger.warning(
            "STRICT_AUTH is disabled - OLX/ZAP origin checks are bypassed and "
            "500 responses include stack traces. Never run production like this."
        )
    if not settings.olx_zap_secret_key:
        logger.warning("OLX_ZAP_SECRET_KEY not set - OLX/ZAP deliveries are checked by user-agent only.")
    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY not set - integration secrets will be stored unencrypted. "
            "Generate a Fernet key for production."
        )

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    yield

    await dispose_engine()
    logger.info("Lead ingestion shutdown complete")


def _cors_origins(settings) -> list[str]:
    origins = ["http://localhost:3000", settings.app_base_url]
    origins.extend(o.strip() for o in settings.allowed_origins.split(",") if o.strip())
    return origins


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Moby Lead Ingestion",
        description="Ad-platform lead webhooks for Moby CRM",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    # CORS - allow the CRM dashboard origin
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
