"""
Detached ingestion runs - one asyncio task per accepted ping.
CRITICAL: the ping endpoint returns BEFORE these run. Never await them from a request.

A run's outcome is visible only in logs and on its webhook_pings row.
Tasks are held in a module-level set so they are not garbage collected mid-flight
and so the app lifespan can wait for them on shutdown.
"""
import asyncio
import logging
import uuid
from typing import Optional

from formsync.database import async_session_factory
from formsync.integrations.airtable import AirtableWebhookClient, build_airtable_client
from formsync.services.ingestion import IngestionSummary, ingest_payloads
from formsync.services.ping_audit import STATUS_COMPLETED, STATUS_FAILED, complete_ping

logger = logging.getLogger(__name__)

_running: set[asyncio.Task] = set()


async def _finish_ping(
    ping_id: Optional[uuid.UUID],
    status: str,
    error_message: Optional[str] = None,
    records_applied: Optional[int] = None,
) -> None:
    if ping_id is None:
        return
    try:
        async with async_session_factory() as db:
            await complete_ping(db, ping_id, status, error_message, records_applied)
            await db.commit()
    except Exception as e:
        logger.warning("Failed to complete ping %s: %s", ping_id, str(e))


async def run_ingestion(
    registration_id: uuid.UUID,
    ping_id: Optional[uuid.UUID] = None,
    client: Optional[AirtableWebhookClient] = None,
) -> Optional[IngestionSummary]:
    """Task body. Logs anything that escapes the orchestrator instead of raising."""
    try:
        summary = await ingest_payloads(registration_id, client=client or build_airtable_client())
    except asyncio.CancelledError:
        await _finish_ping(ping_id, STATUS_FAILED, "cancelled")
        raise
    except Exception as e:
        logger.error("Ingestion run for registration %s crashed: %s", registration_id, str(e), exc_info=True)
        await _finish_ping(ping_id, STATUS_FAILED, str(e)[:500])
        return None

    if summary.ok:
        await _finish_ping(ping_id, STATUS_COMPLETED, records_applied=summary.records_applied)
    else:
        error = summary.stop_reason
        if summary.failed_records:
            error = f"{error}; {summary.failed_records} record(s) failed"
        await _finish_ping(ping_id, STATUS_FAILED, error, records_applied=summary.records_applied)
    return summary


def dispatch_ingestion(
    registration_id: uuid.UUID,
    ping_id: Optional[uuid.UUID] = None,
    client: Optional[AirtableWebhookClient] = None,
) -> asyncio.Task:
    """Schedule an ingestion run and return immediately. Must be called inside a running loop."""
    task = asyncio.create_task(
        run_ingestion(registration_id, ping_id=ping_id, client=client),
        name=f"ingestion-{registration_id}",
    )
    _running.add(task)
    task.add_done_callback(_running.discard)
    logger.debug("Ingestion dispatched for registration %s (%d running)", registration_id, len(_running))
    return task


def running_tasks() -> int:
    return len(_running)


async def shutdown_ingestion_tasks(timeout: float = 10.0) -> None:
    """Give in-flight runs *timeout* seconds, then cancel the rest."""
    if not _running:
        return
    tasks = list(_running)
    logger.info("Waiting for %d ingestion run(s) to finish...", len(tasks))
    done, pending = await asyncio.wait(tasks, timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning("Cancelled %d unfinished ingestion run(s)", len(pending))
