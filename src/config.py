"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Tenancy - webhooks are single-tenant until per-integration routing lands
    default_account_id: str = "6200796e-5629-4669-a4e1-3d8b027830fa"

    # Security posture. False bypasses the OLX/Zap origin check and exposes
    # exception details in 500 responses - never disable in production.
    strict_auth: bool = True

    # Grupo OLX / ZAP
    olx_zap_secret_key: str = ""
    olx_zap_user_agent_token: str = "olx-group-api"

    # Meta Graph API (lead enrichment)
    meta_graph_api_url: str = "https://graph.facebook.com"
    meta_graph_api_version: str = "v18.0"
    meta_graph_timeout_seconds: float = 10.0

    # Encryption for integration secrets at rest
    encryption_key: str = ""

    # Sentry
    sentry_dsn: str = ""

    # Dashboard
    allowed_origins: str = ""  # Comma-separated CORS origins

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
