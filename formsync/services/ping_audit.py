"""
Ping audit trail - a webhook_pings row per inbound Airtable notification.
Rows are written on arrival and completed by the detached ingestion run. Pings that
never authenticate are capped by AuditThrottle.
"""
import logging
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from formsync.models.webhook_ping import WebhookPing
from formsync.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

STATUS_RECEIVED = "received"
STATUS_DISPATCHED = "dispatched"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REJECTED = "rejected"
STATUS_IGNORED = "ignored"

WINDOW_SECONDS = 60.0


async def record_ping(
    db: AsyncSession,
    payload_hash: str,
    verification: str,
    webhook_id: Optional[str] = None,
) -> WebhookPing:
    """Record a ping before anything else happens to it."""
    ping = WebhookPing(
        webhook_id=webhook_id,
        payload_hash=payload_hash,
        verification=verification,
        processing_status=STATUS_RECEIVED,
        correlation_id=get_correlation_id(),
    )
    db.add(ping)
    await db.flush()
    return ping


def mark_ping(
    ping: WebhookPing,
    status: str,
    error_message: Optional[str] = None,
    records_applied: Optional[int] = None,
) -> None:
    """Update a ping row already attached to the caller's session."""
    ping.processing_status = status
    ping.error_message = error_message
    if records_applied is not None:
        ping.records_applied = records_applied
    if status not in (STATUS_RECEIVED, STATUS_DISPATCHED):
        ping.processed_at = datetime.now(timezone.utc)


async def complete_ping(
    db: AsyncSession,
    ping_id: uuid.UUID,
    status: str = STATUS_COMPLETED,
    error_message: Optional[str] = None,
    records_applied: Optional[int] = None,
) -> None:
    """Close out a ping from outside the request that recorded it."""
    ping = await db.get(WebhookPing, ping_id)
    if ping is None:
        logger.warning("Ping %s vanished before completion", ping_id)
        return
    mark_ping(ping, status, error_message, records_applied)
    await db.flush()


class AuditThrottle:
    """
    Sliding-window cap on audit rows for pings that never authenticated.

    Anyone can POST to the notification endpoint, so rejected and ignored pings are only
    written while fewer than *limit* were written in the last WINDOW_SECONDS. The rest are
    logged. Per process; each worker keeps its own window.
    """

    def __init__(self, window: float = WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self._clock = clock
        self._written: deque[float] = deque()

    def allow(self, limit: int) -> bool:
        if limit <= 0:
            return False
        now = self._clock()
        while self._written and now - self._written[0] >= self.window:
            self._written.popleft()
        if len(self._written) >= limit:
            return False
        self._written.append(now)
        return True
