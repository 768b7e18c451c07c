"""
Payload poller worker - catch-up ingestion and webhook refresh.
Runs every PAYLOAD_POLL_INTERVAL_SECONDS (0 disables it).

Pings are only hints. Anything Airtable queued while the service was down, or whose
ping was lost, is picked up here because ingestion always resumes from the stored cursor.
Airtable webhooks expire after 7 days unless refreshed, so registrations expiring within
WEBHOOK_REFRESH_WINDOW_HOURS are refreshed first.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from formsync.config import get_settings
from formsync.database import SessionFactory, async_session_factory
from formsync.integrations.airtable import AirtableApiError, AirtableWebhookClient, build_airtable_client
from formsync.models.webhook_registration import WebhookRegistration
from formsync.services.ingestion import ingest_payloads
from formsync.services.registration_store import list_active_registrations, record_expiration
from formsync.utils.logging import generate_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)


def _needs_refresh(
    registration: WebhookRegistration,
    now: datetime,
    window: timedelta,
) -> bool:
    expires = registration.expiration_time
    if expires is None:
        return False
    if expires.tzinfo is None:
        # SQLite hands back naive datetimes; stored values are UTC
        expires = expires.replace(tzinfo=timezone.utc)
    return expires - now <= window


async def _refresh(
    client: AirtableWebhookClient,
    session_factory: SessionFactory,
    registration: WebhookRegistration,
) -> bool:
    try:
        refreshed = await client.refresh_webhook(registration.webhook_id, base_id=registration.base_id)
    except AirtableApiError as e:
        logger.error(
            "Webhook refresh failed for %s: %s", registration.webhook_id, str(e),
            extra={"webhook_id": registration.webhook_id},
        )
        return False

    async with session_factory() as db:
        await record_expiration(db, registration.id, refreshed.expiration_time)
        await db.commit()
    logger.info(
        "Webhook %s refreshed, now expires %s", registration.webhook_id, refreshed.expiration_time,
        extra={"webhook_id": registration.webhook_id},
    )
    return True


async def poll_cycle(
    client: Optional[AirtableWebhookClient] = None,
    session_factory: Optional[SessionFactory] = None,
    now: Optional[datetime] = None,
) -> dict:
    """One pass over every active registration: refresh if due, then drain payloads."""
    settings = get_settings()
    session_factory = session_factory or async_session_factory
    client = client or build_airtable_client(settings)
    now = now or datetime.now(timezone.utc)
    window = timedelta(hours=settings.webhook_refresh_window_hours)

    async with session_factory() as db:
        registrations = await list_active_registrations(db)

    stats = {"registrations": len(registrations), "refreshed": 0, "records_applied": 0, "errors": 0}
    for registration in registrations:
        try:
            if _needs_refresh(registration, now, window):
                if await _refresh(client, session_factory, registration):
                    stats["refreshed"] += 1

            summary = await ingest_payloads(
                registration.id, client=client, session_factory=session_factory,
            )
            stats["records_applied"] += summary.records_applied
        except Exception as e:
            stats["errors"] += 1
            logger.error(
                "Poll failed for webhook %s: %s", registration.webhook_id, str(e),
                extra={"webhook_id": registration.webhook_id},
            )

    return stats


async def run_payload_poller():
    """Main loop - catch up on every active registration."""
    interval = get_settings().payload_poll_interval_seconds
    logger.info("Payload poller started (poll every %ds)", interval)

    while True:
        await asyncio.sleep(interval)
        set_correlation_id(generate_correlation_id())
        try:
            stats = await poll_cycle()
            if stats["registrations"]:
                logger.info(
                    "Payload poll: %d registration(s), %d refreshed, %d record(s) applied, %d error(s)",
                    stats["registrations"], stats["refreshed"],
                    stats["records_applied"], stats["errors"],
                )
        except Exception as e:
            logger.error("Payload poller error: %s", str(e))
