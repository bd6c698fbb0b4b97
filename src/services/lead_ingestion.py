"""
Lead persistence for inbound platform leads.

Each lead is written in three steps:
1. insert the staging row (status=pending)
2. insert the CRM lead built from the staging row
3. link the staging row to the CRM lead (status=processed)

Steps run in SAVEPOINTs of the request session. If step 2 fails, only its
savepoint is rolled back: the staging row stays, marked status=error with
the failure message, so the raw payload can be reprocessed later. A failed
step 1 stops the sequence before any CRM write.

A unique-constraint violation in step 1 means a concurrent redelivery of the
same (account_id, origin_lead_id) got there first; that is reported as a
duplicate, not an error.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.external_lead import (
    GoogleAdsLead,
    MetaAdsLead,
    OlxZapLead,
    STATUS_ERROR,
    STATUS_PROCESSED,
)
from src.models.lead import CrmLead

logger = logging.getLogger(__name__)

StagingLead = Union[MetaAdsLead, OlxZapLead, GoogleAdsLead]
CrmLeadBuilder = Callable[[StagingLead], CrmLead]

MAX_ERROR_LENGTH = 2000


class IngestionError(Exception):
    """Base class for lead persistence failures."""

    def __init__(self, message: str, external_lead_id: Optional[uuid.UUID] = None):
        super().__init__(message)
        self.external_lead_id = external_lead_id


class StagingInsertError(IngestionError):
    """Step 1 failed: no staging row, nothing else attempted."""


class CrmLeadCreateError(IngestionError):
    """Step 2 or 3 failed: staging row kept with status=error."""


@dataclass
class IngestionResult:
    external_lead_id: uuid.UUID
    lead_id: Optional[uuid.UUID]
    property_id: Optional[uuid.UUID] = None
    duplicate: bool = False


async def find_existing_external_lead(
    db: AsyncSession,
    model: type,
    account_id: uuid.UUID,
    origin_lead_id: str,
) -> Optional[StagingLead]:
    """Staging row already holding this platform lead id for the account, if any."""
    result = await db.execute(
        select(model)
        .where(model.account_id == account_id, model.origin_lead_id == origin_lead_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


def _result_for(staging: StagingLead, duplicate: bool) -> IngestionResult:
    return IngestionResult(
        external_lead_id=staging.id,
        lead_id=staging.lead_id,
        property_id=staging.property_id,
        duplicate=duplicate,
    )


async def insert_staging_lead(db: AsyncSession, staging: StagingLead) -> IngestionResult:
    """Step 1. Returns a duplicate result when the unique constraint fires."""
    model = type(staging)
    account_id = staging.account_id
    origin_lead_id = staging.origin_lead_id
    try:
        async with db.begin_nested():
            db.add(staging)
            await db.flush()
    except IntegrityError as e:
        existing = await find_existing_external_lead(db, model, account_id, origin_lead_id)
        if existing is not None:
            logger.info(
                "Concurrent redelivery of %s lead %s, treating as duplicate",
                model.__tablename__, origin_lead_id,
                extra={"origin_lead_id": origin_lead_id},
            )
            return _result_for(existing, duplicate=True)
        raise StagingInsertError(f"Failed to store external lead: {e.orig}") from e
    except SQLAlchemyError as e:
        raise StagingInsertError(f"Failed to store external lead: {e}") from e

    return _result_for(staging, duplicate=False)


async def mark_external_lead_error(
    db: AsyncSession,
    staging: StagingLead,
    message: str,
) -> None:
    staging.status = STATUS_ERROR
    staging.processing_error = message[:MAX_ERROR_LENGTH]
    staging.updated_at = datetime.now(timezone.utc)
    await db.flush()


async def create_crm_lead(
    db: AsyncSession,
    staging: StagingLead,
    build_crm_lead: CrmLeadBuilder,
) -> IngestionResult:
    """
    Steps 2 and 3 for a staging row that is already stored.
    Raises CrmLeadCreateError after marking the row status=error.
    """
    external_lead_id = staging.id
    origin_lead_id = staging.origin_lead_id
    try:
        async with db.begin_nested():
            crm_lead = build_crm_lead(staging)
            db.add(crm_lead)
            await db.flush()
            lead_id = crm_lead.id

            staging.lead_id = lead_id
            staging.status = STATUS_PROCESSED
            staging.processing_error = None
            staging.processed_at = datetime.now(timezone.utc)
            await db.flush()
    except Exception as e:
        logger.error(
            "CRM lead creation failed for %s %s: %s",
            type(staging).__tablename__, origin_lead_id, str(e),
            exc_info=True,
            extra={"origin_lead_id": origin_lead_id, "external_lead_id": str(external_lead_id)},
        )
        await mark_external_lead_error(db, staging, f"Failed to create CRM lead: {e}")
        raise CrmLeadCreateError(f"Failed to create CRM lead: {e}", external_lead_id) from e

    logger.info(
        "CRM lead %s created from %s %s",
        str(lead_id)[:8], type(staging).__tablename__, origin_lead_id,
        extra={
            "origin_lead_id": origin_lead_id,
            "lead_id": str(lead_id),
            "external_lead_id": str(external_lead_id),
        },
    )
    return IngestionResult(
        external_lead_id=external_lead_id,
        lead_id=lead_id,
        property_id=staging.property_id,
    )


async def ingest_external_lead(
    db: AsyncSession,
    staging: StagingLead,
    build_crm_lead: CrmLeadBuilder,
) -> IngestionResult:
    """Run all three steps for a new platform lead."""
    inserted = await insert_staging_lead(db, staging)
    if inserted.duplicate:
        return inserted
    return await create_crm_lead(db, staging, build_crm_lead)
