"""
Airtable webhook management - create, list, deactivate and manually sync registrations.
All routes require X-Admin-Key (see admin_auth). The MAC secret is never returned.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from formsync.api.admin_auth import require_admin_key
from formsync.config import get_settings
from formsync.database import get_db
from formsync.integrations.airtable import (
    AirtableApiError,
    AirtableWebhookClient,
    build_airtable_client,
)
from formsync.models.webhook_registration import WebhookRegistration
from formsync.schemas.api_responses import (
    CreateWebhookRequest,
    CreateWebhookResponse,
    RegistrationSummary,
    SyncDispatchResponse,
)
from formsync.services.registration_store import (
    deactivate_registration,
    get_registration_by_webhook_id,
    list_registrations,
    upsert_registration_from_create_response,
)
from formsync.workers.ingestion_tasks import dispatch_ingestion

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/airtable",
    tags=["airtable"],
    dependencies=[Depends(require_admin_key)],
)


def get_airtable_client() -> AirtableWebhookClient:
    """FastAPI dependency; overridden in tests."""
    return build_airtable_client()


def _summarize(registration: WebhookRegistration) -> RegistrationSummary:
    return RegistrationSummary(
        webhook_id=registration.webhook_id,
        notification_url=registration.notification_url,
        base_id=registration.base_id,
        cursor_for_next_payload=registration.cursor_for_next_payload,
        notifications_enabled=registration.notifications_enabled,
        hook_enabled=registration.hook_enabled,
        deleted=registration.deleted,
        expiration_time=registration.expiration_time,
        last_payload_fetch_time=registration.last_payload_fetch_time,
    )


@router.post("/webhooks", response_model=CreateWebhookResponse)
async def create_airtable_webhook(
    payload: Optional[CreateWebhookRequest] = None,
    db: AsyncSession = Depends(get_db),
    client: AirtableWebhookClient = Depends(get_airtable_client),
):
    """Register a webhook with Airtable pointing at WEBHOOK_PUBLIC_URL and persist it."""
    settings = get_settings()
    notification_url = settings.webhook_public_url
    if not notification_url:
        raise HTTPException(status_code=503, detail="WEBHOOK_PUBLIC_URL not configured")

    table_id = (payload.table_id if payload else None) or settings.airtable_table_id or None
    try:
        created = await client.create_webhook(notification_url, table_id=table_id)
    except AirtableApiError as e:
        logger.error("Airtable webhook creation failed: %s", str(e))
        raise HTTPException(status_code=502, detail="Airtable webhook creation failed")

    await upsert_registration_from_create_response(
        db, created, notification_url, base_id=client.base_id or None,
    )
    return CreateWebhookResponse(
        webhook_id=created.id,
        expiration_time=created.expiration_time,
        saved=True,
    )


@router.get("/webhooks", response_model=list[RegistrationSummary])
async def list_airtable_webhooks(
    include_deleted: bool = False,
    db: AsyncSession = Depends(get_db),
):
    registrations = await list_registrations(db, include_deleted=include_deleted)
    return [_summarize(r) for r in registrations]


@router.post("/webhooks/{webhook_id}/deactivate", response_model=RegistrationSummary)
async def deactivate_airtable_webhook(
    webhook_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Stop ingesting for a webhook. The Airtable side is left alone; it expires on its own."""
    registration = await deactivate_registration(db, webhook_id)
    if registration is None:
        raise HTTPException(status_code=404, detail="Webhook registration not found")
    return _summarize(registration)


@router.post("/webhooks/{webhook_id}/sync", response_model=SyncDispatchResponse)
async def sync_airtable_webhook(
    webhook_id: str,
    db: AsyncSession = Depends(get_db),
    client: AirtableWebhookClient = Depends(get_airtable_client),
):
    """Drain pending payloads now, without waiting for a ping."""
    registration = await get_registration_by_webhook_id(db, webhook_id)
    if registration is None or registration.deleted:
        raise HTTPException(status_code=404, detail="Webhook registration not found")

    dispatch_ingestion(registration.id, client=client)
    return SyncDispatchResponse(webhook_id=webhook_id, status="dispatched")
