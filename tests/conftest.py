"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import uuid
import httpx
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from src.config import get_settings
from src.database import Base, get_db
from src.models.integration import (
    Integration,
    PLATFORM_GOOGLE_ADS,
    PLATFORM_META_ADS,
)

DEFAULT_ACCOUNT_ID = uuid.UUID(get_settings().default_account_id)
META_APP_SECRET = "meta-app-secret"
META_ACCESS_TOKEN = "EAAB-test-token"
META_VERIFY_TOKEN = "verify-me-please"
GOOGLE_WEBHOOK_SECRET = "google-webhook-secret"


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests, with SAVEPOINT support."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


class AbortedTransaction:
    """
    Fails the first statement containing `fragment`, then every statement
    after it until a rollback, the way Postgres aborts a transaction.
    SQLite never does this on its own.
    """

    def __init__(self, fragment: str):
        self.fragment = fragment
        self.armed = True
        self.aborted = False
        self.failures = 0

    def before_cursor_execute(self, conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("ROLLBACK"):
            self.aborted = False
            return
        if self.aborted or (self.armed and self.fragment in statement):
            self.armed = False
            self.aborted = True
            self.failures += 1
            raise OperationalError(statement, parameters, Exception("current transaction is aborted"))

    def transaction_ended(self, conn):
        self.aborted = False


@pytest.fixture
def abort_transaction_on(db):
    """Install an AbortedTransaction on the test engine for a statement fragment."""
    sync_engine = db.bind.sync_engine

    def install(fragment: str) -> AbortedTransaction:
        aborter = AbortedTransaction(fragment)
        event.listen(sync_engine, "before_cursor_execute", aborter.before_cursor_execute)
        event.listen(sync_engine, "commit", aborter.transaction_ended)
        event.listen(sync_engine, "rollback", aborter.transaction_ended)
        return aborter

    return install


@pytest.fixture
def app(db):
    """FastAPI app whose get_db dependency yields the test session."""
    from src.main import create_app

    application = create_app()

    async def _override_get_db():
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    application.dependency_overrides[get_db] = _override_get_db
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
async def meta_integration(db):
    integration = Integration(
        id=uuid.uuid4(),
        account_id=DEFAULT_ACCOUNT_ID,
        platform=PLATFORM_META_ADS,
        is_active=True,
        app_secret=META_APP_SECRET,
        access_token=META_ACCESS_TOKEN,
        verify_token=META_VERIFY_TOKEN,
        total_leads_received=0,
        settings={},
    )
    db.add(integration)
    await db.commit()
    return integration


@pytest.fixture
async def google_integration(db):
    integration = Integration(
        id=uuid.uuid4(),
        account_id=DEFAULT_ACCOUNT_ID,
        platform=PLATFORM_GOOGLE_ADS,
        is_active=True,
        webhook_secret=GOOGLE_WEBHOOK_SECRET,
        total_leads_received=0,
        settings={},
    )
    db.add(integration)
    await db.commit()
    return integration


@pytest.fixture
def olx_headers():
    """Headers Grupo OLX sends (no shared secret configured in tests)."""
    return {"User-Agent": "olx-group-api/2.1", "Content-Type": "application/json"}


@pytest.fixture
def olx_payload():
    return {
        "leadOrigin": "ZAP",
        "timestamp": "2026-10-01T12:00:00.000Z",
        "originLeadId": "olx-lead-0001",
        "originListingId": "2501234567",
        "clientListingId": "AP0042",
        "name": "Maria Oliveira",
        "email": "maria@example.com",
        "ddd": "11",
        "phone": "987654321",
        "phoneNumber": "11987654321",
        "message": "Tenho interesse no apartamento.",
        "temperature": "Alta",
        "transactionType": "SELL",
    }
