"""
Tests for formsync/workers/ingestion_tasks.py and formsync/services/ping_audit.py.
"""
import asyncio
import uuid
from collections import Counter
from unittest.mock import AsyncMock, MagicMock, patch

from formsync.models.webhook_ping import WebhookPing
from formsync.services.ingestion import STOP_DRAINED, STOP_FETCH_FAILED, IngestionSummary
from formsync.services.ping_audit import (
    STATUS_COMPLETED,
    STATUS_DISPATCHED,
    STATUS_FAILED,
    STATUS_RECEIVED,
    AuditThrottle,
    complete_ping,
    mark_ping,
    record_ping,
)
from formsync.utils.logging import set_correlation_id
from formsync.workers import ingestion_tasks
from formsync.workers.ingestion_tasks import (
    dispatch_ingestion,
    run_ingestion,
    running_tasks,
    shutdown_ingestion_tasks,
)


def _summary(stop_reason=STOP_DRAINED, created=0, failed=0) -> IngestionSummary:
    return IngestionSummary(
        webhook_id="achTEST",
        pages=1,
        outcomes=Counter({"created": created}),
        failed_records=failed,
        stop_reason=stop_reason,
    )


async def _make_ping(session_factory) -> WebhookPing:
    async with session_factory() as db:
        ping = await record_ping(db, "a" * 64, "valid", "achTEST")
        mark_ping(ping, STATUS_DISPATCHED)
        await db.commit()
        return ping


async def _load_ping(session_factory, ping_id) -> WebhookPing:
    async with session_factory() as db:
        return await db.get(WebhookPing, ping_id)


# ---------------------------------------------------------------------------
# Ping audit
# ---------------------------------------------------------------------------


class TestPingAudit:
    async def test_record_ping(self, db):
        set_correlation_id("cid-123")
        ping = await record_ping(db, "b" * 64, "skipped", "achTEST")
        assert ping.id is not None
        assert ping.processing_status == STATUS_RECEIVED
        assert ping.correlation_id == "cid-123"
        assert ping.verification == "skipped"

    async def test_mark_terminal_sets_processed_at(self, db):
        ping = await record_ping(db, "b" * 64, "valid")
        mark_ping(ping, STATUS_DISPATCHED)
        assert ping.processed_at is None
        mark_ping(ping, STATUS_COMPLETED, records_applied=3)
        assert ping.processed_at is not None
        assert ping.records_applied == 3

    async def test_complete_ping(self, db, session_factory):
        ping = await _make_ping(session_factory)
        await complete_ping(db, ping.id, STATUS_FAILED, "fetch_failed")
        await db.commit()

        loaded = await _load_ping(session_factory, ping.id)
        assert loaded.processing_status == STATUS_FAILED
        assert loaded.error_message == "fetch_failed"

    async def test_complete_missing_ping(self, db):
        await complete_ping(db, uuid.uuid4())


class TestAuditThrottle:
    def _throttle(self):
        clock = MagicMock(return_value=1000.0)
        return AuditThrottle(window=60.0, clock=clock), clock

    def test_caps_within_window(self):
        throttle, _ = self._throttle()
        assert [throttle.allow(2) for _ in range(3)] == [True, True, False]

    def test_window_slides(self):
        throttle, clock = self._throttle()
        assert throttle.allow(1) is True
        clock.return_value = 1059.0
        assert throttle.allow(1) is False
        clock.return_value = 1060.0
        assert throttle.allow(1) is True

    def test_zero_limit_never_allows(self):
        throttle, _ = self._throttle()
        assert throttle.allow(0) is False


# ---------------------------------------------------------------------------
# run_ingestion
# ---------------------------------------------------------------------------


class TestRunIngestion:
    async def test_success_completes_ping(self, session_factory):
        ping = await _make_ping(session_factory)
        registration_id = MagicMock()
        client = MagicMock()

        with (
            patch.object(ingestion_tasks, "async_session_factory", session_factory),
            patch.object(ingestion_tasks, "ingest_payloads", new_callable=AsyncMock, return_value=_summary(created=2)) as mock_ingest,
        ):
            summary = await run_ingestion(registration_id, ping_id=ping.id, client=client)

        mock_ingest.assert_awaited_once_with(registration_id, client=client)
        assert summary.records_applied == 2
        loaded = await _load_ping(session_factory, ping.id)
        assert loaded.processing_status == STATUS_COMPLETED
        assert loaded.records_applied == 2
        assert loaded.processed_at is not None

    async def test_partial_failure_marks_failed(self, session_factory):
        ping = await _make_ping(session_factory)
        with (
            patch.object(ingestion_tasks, "async_session_factory", session_factory),
            patch.object(ingestion_tasks, "ingest_payloads", new_callable=AsyncMock,
                         return_value=_summary(stop_reason=STOP_FETCH_FAILED)),
        ):
            await run_ingestion(MagicMock(), ping_id=ping.id, client=MagicMock())

        loaded = await _load_ping(session_factory, ping.id)
        assert loaded.processing_status == STATUS_FAILED
        assert loaded.error_message == STOP_FETCH_FAILED

    async def test_failed_records_reported(self, session_factory):
        ping = await _make_ping(session_factory)
        with (
            patch.object(ingestion_tasks, "async_session_factory", session_factory),
            patch.object(ingestion_tasks, "ingest_payloads", new_callable=AsyncMock,
                         return_value=_summary(created=1, failed=2)),
        ):
            await run_ingestion(MagicMock(), ping_id=ping.id, client=MagicMock())

        loaded = await _load_ping(session_factory, ping.id)
        assert loaded.processing_status == STATUS_FAILED
        assert "2 record(s) failed" in loaded.error_message
        assert loaded.records_applied == 1

    async def test_crash_is_logged_not_raised(self, session_factory, caplog):
        ping = await _make_ping(session_factory)
        with (
            patch.object(ingestion_tasks, "async_session_factory", session_factory),
            patch.object(ingestion_tasks, "ingest_payloads", new_callable=AsyncMock,
                         side_effect=RuntimeError("database gone")),
        ):
            result = await run_ingestion(MagicMock(), ping_id=ping.id, client=MagicMock())

        assert result is None
        assert "crashed" in caplog.text
        loaded = await _load_ping(session_factory, ping.id)
        assert loaded.processing_status == STATUS_FAILED
        assert "database gone" in loaded.error_message

    async def test_without_ping(self):
        with patch.object(ingestion_tasks, "ingest_payloads", new_callable=AsyncMock, return_value=_summary()):
            summary = await run_ingestion(MagicMock(), client=MagicMock())
        assert summary.stop_reason == STOP_DRAINED


# ---------------------------------------------------------------------------
# dispatch / shutdown
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_returns_immediately_and_tracks_task(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_run(registration_id, ping_id=None, client=None):
            started.set()
            await release.wait()

        with patch.object(ingestion_tasks, "run_ingestion", side_effect=slow_run):
            task = dispatch_ingestion(MagicMock())
            await started.wait()
            assert running_tasks() >= 1
            assert not task.done()
            release.set()
            await task

        await asyncio.sleep(0)
        assert task not in ingestion_tasks._running

    async def test_correlation_id_inherited(self):
        seen = {}

        async def capture(registration_id, ping_id=None, client=None):
            from formsync.utils.logging import get_correlation_id
            seen["cid"] = get_correlation_id()

        set_correlation_id("ping-cid")
        with patch.object(ingestion_tasks, "run_ingestion", side_effect=capture):
            await dispatch_ingestion(MagicMock())
        assert seen["cid"] == "ping-cid"


class TestShutdown:
    async def test_noop_when_idle(self):
        await shutdown_ingestion_tasks(timeout=0.1)

    async def test_cancels_stragglers(self):
        async def forever(registration_id, ping_id=None, client=None):
            await asyncio.sleep(3600)

        with patch.object(ingestion_tasks, "run_ingestion", side_effect=forever):
            task = dispatch_ingestion(MagicMock())
        await asyncio.sleep(0)

        await shutdown_ingestion_tasks(timeout=0.05)

        assert task.cancelled()
