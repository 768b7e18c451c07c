"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all Airtable calls.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

import formsync.models  # noqa: F401  registers every table on Base.metadata
from formsync.database import Base
from formsync.models.form import Form
from formsync.models.webhook_registration import WebhookRegistration
from formsync.schemas.airtable_payloads import WebhookPayloadPage


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def engine():
    """In-memory SQLite engine shared by every session in a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory handed to code that opens its own sessions."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """In-memory SQLite database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def registration(db):
    """A committed webhook registration at cursor 1."""
    reg = WebhookRegistration(
        webhook_id="achTEST0000000001",
        notification_url="https://formsync.test/webhooks/airtable",
        base_id="appTEST",
        cursor_for_next_payload=1,
    )
    db.add(reg)
    await db.commit()
    return reg


@pytest.fixture
async def form(db):
    """A committed form for table tbl1 mapping fldA -> q1 and fldB -> q2."""
    f = Form(
        airtable_base_id="appTEST",
        airtable_table_id="tbl1",
        title="Intake",
        questions=[
            {"questionKey": "q1", "airtableFieldId": "fldA", "label": "Name", "type": "shortText"},
            {"questionKey": "q2", "airtableFieldId": "fldB", "label": "Notes", "type": "longText"},
        ],
    )
    db.add(f)
    await db.commit()
    return f


@pytest.fixture
def airtable_client():
    """Stand-in for AirtableWebhookClient; tests set list_payloads behaviour."""
    client = MagicMock()
    client.base_id = "appTEST"
    client.list_payloads = AsyncMock(return_value=WebhookPayloadPage(cursor=1))
    client.create_webhook = AsyncMock()
    client.refresh_webhook = AsyncMock()
    return client
