"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.integration import Integration
from src.models.lead import CrmLead
from src.models.property import Property
from src.models.external_lead import MetaAdsLead, OlxZapLead, GoogleAdsLead
from src.models.webhook_log import WebhookLog

__all__ = [
    "Integration",
    "CrmLead",
    "Property",
    "MetaAdsLead",
    "OlxZapLead",
    "GoogleAdsLead",
    "WebhookLog",
]
