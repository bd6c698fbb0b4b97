"""
Tests for src/services/property_matcher.py - OLX/ZAP listing cross-reference.
"""
import uuid

import pytest

from src.models.property import Property
from src.services.property_matcher import find_property_for_listing
from tests.conftest import DEFAULT_ACCOUNT_ID


async def _add_property(db, title, listing_code=None, account_id=DEFAULT_ACCOUNT_ID):
    prop = Property(id=uuid.uuid4(), account_id=account_id, title=title, listing_code=listing_code)
    db.add(prop)
    await db.flush()
    return prop


class TestFindPropertyForListing:
    @pytest.mark.asyncio
    async def test_empty_reference(self, db):
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, None) is None
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "  ") is None

    @pytest.mark.asyncio
    async def test_title_substring_case_insensitive(self, db):
        prop = await _add_property(db, "Apartamento AP0042 - Vila Mariana")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "ap0042") == prop.id

    @pytest.mark.asyncio
    async def test_listing_code(self, db):
        prop = await _add_property(db, "Casa térrea", listing_code="CA0107")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "CA0107") == prop.id

    @pytest.mark.asyncio
    async def test_exact_id(self, db):
        prop = await _add_property(db, "Studio mobiliado")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, str(prop.id)) == prop.id

    @pytest.mark.asyncio
    async def test_no_match(self, db):
        await _add_property(db, "Studio mobiliado")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "XYZ999") is None

    @pytest.mark.asyncio
    async def test_other_account_ignored(self, db):
        await _add_property(db, "Apartamento AP0042", account_id=uuid.uuid4())
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "AP0042") is None

    @pytest.mark.asyncio
    async def test_ambiguous_title_match_left_unlinked(self, db):
        await _add_property(db, "Apartamento 42 A")
        await _add_property(db, "Apartamento 42 B")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "Apartamento 42") is None

    @pytest.mark.asyncio
    async def test_ambiguous_prefers_exact_code(self, db):
        exact = await _add_property(db, "Cobertura", listing_code="CO1")
        await _add_property(db, "Cobertura CO1 duplex")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "CO1") == exact.id

    @pytest.mark.asyncio
    async def test_wildcards_are_escaped(self, db):
        await _add_property(db, "Apartamento Centro")
        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "%") is None

    @pytest.mark.asyncio
    async def test_database_error_returns_none_and_keeps_transaction_usable(self, db, abort_transaction_on):
        prop = await _add_property(db, "Apartamento AP0042")
        aborter = abort_transaction_on("FROM properties")

        assert await find_property_for_listing(db, DEFAULT_ACCOUNT_ID, "AP0042") is None
        assert aborter.failures == 1

        # The failed lookup must not poison the statements that follow it
        assert await db.get(Property, prop.id, populate_existing=True) is not None
