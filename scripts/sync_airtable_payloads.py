"""
Drain pending Airtable payloads without waiting for a ping.

Runs the same ingestion as a webhook ping, in the foreground, from the stored cursor.
Useful after downtime or after fixing a form's field mapping.

Usage:
    python -m scripts.sync_airtable_payloads                       # active registration
    python -m scripts.sync_airtable_payloads --webhook achXXXXXXXX
    python -m scripts.sync_airtable_payloads --max-pages 200
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def sync(webhook_id: Optional[str] = None, max_pages: Optional[int] = None) -> int:
    from formsync.database import async_session_factory
    from formsync.integrations.airtable import build_airtable_client
    from formsync.services.ingestion import ingest_active_registration, ingest_payloads
    from formsync.services.registration_store import get_registration_by_webhook_id

    client = build_airtable_client()

    if webhook_id:
        async with async_session_factory() as db:
            registration = await get_registration_by_webhook_id(db, webhook_id)
        if registration is None:
            logger.error("No registration for webhook %s", webhook_id)
            return 1
        summary = await ingest_payloads(registration.id, client=client, max_pages=max_pages)
    else:
        summary = await ingest_active_registration(client=client, max_pages=max_pages)

    logger.info("\n=== Sync Summary ===")
    logger.info("  Webhook: %s", summary.webhook_id or "-")
    logger.info("  Stopped: %s", summary.stop_reason)
    logger.info("  Pages: %d", summary.pages)
    logger.info("  Cursor: %s -> %s", summary.start_cursor, summary.end_cursor)
    logger.info("  Records seen: %d", summary.records_seen)
    for outcome, count in sorted(summary.outcomes.items()):
        logger.info("    %s: %d", outcome, count)
    logger.info("  Failed records: %d", summary.failed_records)
    return 0 if summary.ok else 1


def main():
    parser = argparse.ArgumentParser(
        description="Fetch and apply pending Airtable webhook payloads",
    )
    parser.add_argument(
        "--webhook", dest="webhook_id", default=None,
        help="Webhook ID to sync (default: the active registration)",
    )
    parser.add_argument(
        "--max-pages", type=int, default=None,
        help="Page cap for this run (default: INGESTION_MAX_PAGES)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(sync(webhook_id=args.webhook_id, max_pages=args.max_pages)))


if __name__ == "__main__":
    main()
