"""
Listing cross-reference for portal leads.

Grupo OLX sends the advertiser's own listing reference (clientListingId).
It is matched against the account's property inventory by exact id, exact
listing code, or a title substring. Matching is advisory: any miss or error
returns None and ingestion carries on.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.property import Property

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 5


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


async def find_property_for_listing(
    db: AsyncSession,
    account_id: uuid.UUID,
    client_listing_id: Optional[str],
) -> Optional[uuid.UUID]:
    """Resolve a listing reference to a property id, or None."""
    reference = (client_listing_id or "").strip()
    if not reference:
        return None

    conditions = [
        Property.listing_code == reference,
        Property.title.icontains(reference, autoescape=True),
    ]
    reference_uuid = _as_uuid(reference)
    if reference_uuid is not None:
        conditions.append(Property.id == reference_uuid)

    # Savepoint keeps a failed lookup from aborting the request transaction
    try:
        async with db.begin_nested():
            result = await db.execute(
                select(Property)
                .where(Property.account_id == account_id, or_(*conditions))
                .limit(MAX_CANDIDATES)
            )
            candidates = list(result.scalars().all())
    except SQLAlchemyError as e:
        logger.warning("Property lookup failed for listing %s: %s", reference, str(e))
        return None

    if not candidates:
        logger.info("No property matches listing %s", reference)
        return None
    if len(candidates) == 1:
        return candidates[0].id

    # Several title matches: only an exact id or code is unambiguous
    for prop in candidates:
        if prop.id == reference_uuid or prop.listing_code == reference:
            return prop.id
    logger.warning(
        "Listing %s matches %d properties, leaving lead unlinked",
        reference, len(candidates),
    )
    return None
