"""
Register an Airtable webhook for this deployment and persist it.

Creates a tableData webhook on AIRTABLE_BASE_ID notifying WEBHOOK_PUBLIC_URL (or --url),
optionally scoped to one table, then stores the registration with its MAC secret sealed.
Airtable only returns the MAC secret once, so the registration is always saved.

Usage:
    python -m scripts.create_airtable_webhook                      # scope: AIRTABLE_TABLE_ID
    python -m scripts.create_airtable_webhook --table tblXXXXXXXX
    python -m scripts.create_airtable_webhook --url https://example.com/webhooks/airtable
"""
import argparse
import asyncio
import logging
import sys
from typing import Optional

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def create(table_id: Optional[str] = None, notification_url: Optional[str] = None) -> int:
    from formsync.config import get_settings
    from formsync.database import async_session_factory
    from formsync.integrations.airtable import AirtableApiError, build_airtable_client
    from formsync.services.registration_store import upsert_registration_from_create_response

    settings = get_settings()
    notification_url = notification_url or settings.webhook_public_url
    if not notification_url:
        logger.error("No notification URL: set WEBHOOK_PUBLIC_URL or pass --url")
        return 1
    if not settings.airtable_base_id:
        logger.error("AIRTABLE_BASE_ID is not set")
        return 1

    client = build_airtable_client(settings)
    try:
        created = await client.create_webhook(
            notification_url, table_id=table_id or settings.airtable_table_id or None,
        )
    except AirtableApiError as e:
        logger.error("Airtable rejected the webhook: %s", str(e))
        return 1

    async with async_session_factory() as db:
        registration = await upsert_registration_from_create_response(
            db, created, notification_url, base_id=settings.airtable_base_id,
        )
        await db.commit()

    logger.info("Webhook %s registered", registration.webhook_id)
    logger.info("  Notification URL: %s", notification_url)
    logger.info("  Expires: %s", created.expiration_time or "unknown")
    logger.info("  MAC secret stored: %s", "yes" if created.mac_secret_base64 else "no")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Create an Airtable webhook and save its registration",
    )
    parser.add_argument(
        "--table", dest="table_id", default=None,
        help="Limit notifications to one table (default: AIRTABLE_TABLE_ID)",
    )
    parser.add_argument(
        "--url", dest="notification_url", default=None,
        help="Notification URL (default: WEBHOOK_PUBLIC_URL)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(create(table_id=args.table_id, notification_url=args.notification_url)))


if __name__ == "__main__":
    main()
