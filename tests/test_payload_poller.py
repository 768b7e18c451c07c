"""
Tests for formsync/workers/payload_poller.py - catch-up ingestion and webhook refresh.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from formsync.integrations.airtable import AirtableApiError
from formsync.models.webhook_registration import WebhookRegistration
from formsync.schemas.airtable_payloads import WebhookPayloadPage, WebhookRefreshResponse
from formsync.services.registration_store import get_cursor
from formsync.workers import payload_poller
from formsync.workers.payload_poller import _needs_refresh, poll_cycle

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(hours=24)


@pytest.fixture(autouse=True)
def poller_settings():
    settings = MagicMock()
    settings.webhook_refresh_window_hours = 24
    with patch.object(payload_poller, "get_settings", return_value=settings):
        yield settings


async def _add(db, webhook_id, **kwargs) -> WebhookRegistration:
    reg = WebhookRegistration(
        webhook_id=webhook_id,
        notification_url="https://formsync.test/webhooks/airtable",
        base_id="appTEST",
        **kwargs,
    )
    db.add(reg)
    await db.commit()
    return reg


# ---------------------------------------------------------------------------
# Refresh window
# ---------------------------------------------------------------------------


class TestNeedsRefresh:
    def test_inside_window(self):
        reg = WebhookRegistration(webhook_id="a", expiration_time=NOW + timedelta(hours=3))
        assert _needs_refresh(reg, NOW, WINDOW) is True

    def test_outside_window(self):
        reg = WebhookRegistration(webhook_id="a", expiration_time=NOW + timedelta(days=5))
        assert _needs_refresh(reg, NOW, WINDOW) is False

    def test_already_expired(self):
        reg = WebhookRegistration(webhook_id="a", expiration_time=NOW - timedelta(hours=1))
        assert _needs_refresh(reg, NOW, WINDOW) is True

    def test_naive_treated_as_utc(self):
        naive = (NOW + timedelta(hours=3)).replace(tzinfo=None)
        reg = WebhookRegistration(webhook_id="a", expiration_time=naive)
        assert _needs_refresh(reg, NOW, WINDOW) is True

    def test_unknown_expiration(self):
        reg = WebhookRegistration(webhook_id="a", expiration_time=None)
        assert _needs_refresh(reg, NOW, WINDOW) is False


# ---------------------------------------------------------------------------
# poll_cycle
# ---------------------------------------------------------------------------


class TestPollCycle:
    async def test_drains_active_registrations(self, db, session_factory, form, airtable_client):
        reg = await _add(db, "achPOLL", cursor_for_next_payload=3)
        await _add(db, "achGONE", deleted=True)
        airtable_client.list_payloads = AsyncMock(return_value=WebhookPayloadPage(
            cursor=4,
            payloads=[{"changedTablesById": {"tbl1": {"createdRecordsById": {
                "rec1": {"cellValuesByFieldId": {"fldA": "hello"}},
            }}}}],
        ))

        stats = await poll_cycle(client=airtable_client, session_factory=session_factory, now=NOW)

        assert stats == {"registrations": 1, "refreshed": 0, "records_applied": 1, "errors": 0}
        airtable_client.list_payloads.assert_awaited_once()
        assert await get_cursor(db, reg.id) == 4

    async def test_refreshes_expiring_webhook(self, db, session_factory, airtable_client):
        reg = await _add(db, "achEXP", expiration_time=NOW + timedelta(hours=2))
        new_expiry = NOW + timedelta(days=7)
        airtable_client.refresh_webhook = AsyncMock(return_value=WebhookRefreshResponse(expiration_time=new_expiry))

        stats = await poll_cycle(client=airtable_client, session_factory=session_factory, now=NOW)

        assert stats["refreshed"] == 1
        airtable_client.refresh_webhook.assert_awaited_once_with("achEXP", base_id="appTEST")
        async with session_factory() as fresh:
            loaded = await fresh.get(WebhookRegistration, reg.id)
            assert loaded.expiration_time.replace(tzinfo=timezone.utc) == new_expiry

    async def test_refresh_failure_still_drains(self, db, session_factory, airtable_client):
        await _add(db, "achEXP", expiration_time=NOW + timedelta(hours=2))
        airtable_client.refresh_webhook = AsyncMock(side_effect=AirtableApiError("gone", status_code=404))

        stats = await poll_cycle(client=airtable_client, session_factory=session_factory, now=NOW)

        assert stats["refreshed"] == 0
        assert stats["errors"] == 0
        airtable_client.list_payloads.assert_awaited_once()

    async def test_one_failure_does_not_stop_others(self, db, session_factory, airtable_client):
        await _add(db, "achA")
        await _add(db, "achB")

        with patch.object(payload_poller, "ingest_payloads", new_callable=AsyncMock) as mock_ingest:
            mock_ingest.side_effect = [RuntimeError("boom"), MagicMock(records_applied=2)]
            stats = await poll_cycle(client=airtable_client, session_factory=session_factory, now=NOW)

        assert stats["errors"] == 1
        assert stats["records_applied"] == 2
        assert mock_ingest.await_count == 2

    async def test_no_registrations(self, session_factory, airtable_client):
        stats = await poll_cycle(client=airtable_client, session_factory=session_factory, now=NOW)
        assert stats == {"registrations": 0, "refreshed": 0, "records_applied": 0, "errors": 0}
        airtable_client.list_payloads.assert_not_awaited()
