"""
Airtable notification endpoint.

Airtable pings carry no change data, only "something changed". Handling, in order:
1. Resolve the active registration (by WEBHOOK_PUBLIC_URL, else any non-deleted one)
2. Verify X-Airtable-Content-MAC over the raw body (a stored secret that cannot be
   opened rejects the ping)
3. Audit trail (webhook_pings table, rate-capped for pings that fail to authenticate)
4. Dispatch a detached ingestion run

CRITICAL: always 200 {"status": "ok"}. Airtable disables webhooks whose notifications
keep failing, so a rejected or broken ping must never look like an error to it.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Request

from formsync.config import get_settings
from formsync.database import async_session_factory
from formsync.schemas.api_responses import PingAck
from formsync.services.ping_audit import (
    STATUS_DISPATCHED,
    STATUS_IGNORED,
    STATUS_REJECTED,
    AuditThrottle,
    mark_ping,
    record_ping,
)
from formsync.services.registration_store import get_active_registration, load_mac_secret
from formsync.utils.encryption import MacSecretUnreadable
from formsync.utils.webhook_signatures import (
    MAC_HEADER,
    VERIFICATION_MISMATCH,
    VERIFICATION_UNREADABLE,
    check_ping_signature,
    compute_payload_hash,
)
from formsync.workers.ingestion_tasks import dispatch_ingestion

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

PING_ACK = {"status": "ok"}

_unauthenticated_audits = AuditThrottle()


async def _accept_ping(body: bytes, signature: Optional[str]) -> Optional[tuple[uuid.UUID, uuid.UUID]]:
    """
    Verify and audit a ping. Returns (registration_id, ping_id) when ingestion
    should run, None when the ping is dropped.
    """
    settings = get_settings()
    payload_hash = compute_payload_hash(body)
    audit_limit = settings.unauthenticated_ping_audits_per_minute

    async with async_session_factory() as db:
        registration = await get_active_registration(db, settings.webhook_public_url or None)
        if registration is None:
            logger.warning("Airtable ping received but no webhook registration exists")
            if _unauthenticated_audits.allow(audit_limit):
                ping = await record_ping(db, payload_hash, "none")
                mark_ping(ping, STATUS_IGNORED, "No webhook registration")
                await db.commit()
            return None

        log_extra = {"webhook_id": registration.webhook_id}
        try:
            secret = await load_mac_secret(db, registration.id)
        except MacSecretUnreadable as e:
            logger.error(
                "MAC secret for webhook %s cannot be opened: %s", registration.webhook_id, str(e),
                extra=log_extra,
            )
            verification = VERIFICATION_UNREADABLE
        else:
            verification = check_ping_signature(secret, signature, body)

        if verification in (VERIFICATION_MISMATCH, VERIFICATION_UNREADABLE):
            logger.warning(
                "Airtable ping rejected (%s) for webhook %s", verification, registration.webhook_id,
                extra=log_extra,
            )
            if _unauthenticated_audits.allow(audit_limit):
                reason = "MAC mismatch" if verification == VERIFICATION_MISMATCH else "MAC secret unreadable"
                ping = await record_ping(db, payload_hash, verification, registration.webhook_id)
                mark_ping(ping, STATUS_REJECTED, reason)
                await db.commit()
            return None

        ping = await record_ping(db, payload_hash, verification, registration.webhook_id)
        mark_ping(ping, STATUS_DISPATCHED)
        await db.commit()
        return registration.id, ping.id


@router.post("/airtable", response_model=PingAck)
async def airtable_ping(request: Request):
    """
    Airtable webhook notification. The raw body is read unparsed so the MAC is computed
    over exactly the bytes Airtable signed.
    """
    body = await request.body()
    signature = request.headers.get(MAC_HEADER)

    try:
        accepted = await _accept_ping(body, signature)
    except Exception as e:
        logger.error("Airtable ping handling failed: %s", str(e), exc_info=True)
        return PING_ACK

    if accepted is not None:
        registration_id, ping_id = accepted
        try:
            dispatch_ingestion(registration_id, ping_id=ping_id)
        except Exception as e:
            logger.error("Failed to dispatch ingestion for ping %s: %s", ping_id, str(e))

    return PING_ACK
