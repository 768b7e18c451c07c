"""
Webhook registration store - the per-webhook cursor and lifecycle flags.

The registration row is the only state shared between overlapping ingestion runs.
Cursor writes go through a single UPDATE that only ever moves the stored value forward,
so two runs racing on different cursors can never regress it. No locks are taken.
Nothing here commits; callers own the transaction.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from formsync.models.webhook_registration import WebhookRegistration
from formsync.schemas.airtable_payloads import WebhookCreateResponse
from formsync.utils.encryption import open_mac_secret, seal_mac_secret

logger = logging.getLogger(__name__)


async def get_active_registration(
    db: AsyncSession,
    notification_url: Optional[str],
) -> Optional[WebhookRegistration]:
    """
    Registration for our notification endpoint, else any non-deleted registration.
    The MAC secret is not loaded; use load_mac_secret() for that.
    """
    if notification_url:
        result = await db.execute(
            select(WebhookRegistration)
            .where(
                WebhookRegistration.notification_url == notification_url,
                WebhookRegistration.deleted == False,
                WebhookRegistration.hook_enabled == True,
            )
            .order_by(WebhookRegistration.created_at.desc())
            .limit(1)
        )
        registration = result.scalar_one_or_none()
        if registration is not None:
            return registration

    result = await db.execute(
        select(WebhookRegistration)
        .where(WebhookRegistration.deleted == False)
        .order_by(WebhookRegistration.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_registration(
    db: AsyncSession,
    registration_id: uuid.UUID,
) -> Optional[WebhookRegistration]:
    return await db.get(WebhookRegistration, registration_id)


async def get_registration_by_webhook_id(
    db: AsyncSession,
    webhook_id: str,
) -> Optional[WebhookRegistration]:
    result = await db.execute(
        select(WebhookRegistration).where(WebhookRegistration.webhook_id == webhook_id)
    )
    return result.scalar_one_or_none()


async def list_registrations(
    db: AsyncSession,
    include_deleted: bool = False,
) -> list[WebhookRegistration]:
    stmt = select(WebhookRegistration).order_by(WebhookRegistration.created_at.desc())
    if not include_deleted:
        stmt = stmt.where(WebhookRegistration.deleted == False)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_active_registrations(db: AsyncSession) -> list[WebhookRegistration]:
    """Registrations the catch-up poller should drain: not deleted, hook enabled."""
    result = await db.execute(
        select(WebhookRegistration)
        .where(
            WebhookRegistration.deleted == False,
            WebhookRegistration.hook_enabled == True,
        )
        .order_by(WebhookRegistration.created_at)
    )
    return list(result.scalars().all())


async def load_mac_secret(
    db: AsyncSession,
    registration_id: uuid.UUID,
) -> Optional[bytes]:
    """
    Explicitly read and open the deferred MAC secret column.
    None means no secret is stored; an unusable one raises MacSecretUnreadable.
    """
    result = await db.execute(
        select(WebhookRegistration.mac_secret_encrypted).where(
            WebhookRegistration.id == registration_id
        )
    )
    return open_mac_secret(result.scalar_one_or_none())


async def get_cursor(db: AsyncSession, registration_id: uuid.UUID) -> Optional[int]:
    """Read the stored cursor straight from the database, bypassing the identity map."""
    result = await db.execute(
        select(WebhookRegistration.cursor_for_next_payload).where(
            WebhookRegistration.id == registration_id
        )
    )
    return result.scalar_one_or_none()


async def advance_cursor(
    db: AsyncSession,
    registration_id: uuid.UUID,
    next_cursor: Optional[int],
    fetched_at: Optional[datetime] = None,
) -> Optional[int]:
    """
    Record a successful payload fetch.

    The fetch timestamp is always written. The cursor is written only when *next_cursor*
    is ahead of the stored value. Returns the cursor stored afterwards.
    """
    values: dict = {"last_payload_fetch_time": fetched_at or datetime.now(timezone.utc)}
    if next_cursor is not None:
        column = WebhookRegistration.cursor_for_next_payload
        values["cursor_for_next_payload"] = case(
            (column < next_cursor, next_cursor),
            else_=column,
        )

    await db.execute(
        update(WebhookRegistration)
        .where(WebhookRegistration.id == registration_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return await get_cursor(db, registration_id)


async def upsert_registration_from_create_response(
    db: AsyncSession,
    data: Union[WebhookCreateResponse, dict],
    notification_url: str,
    base_id: Optional[str] = None,
) -> WebhookRegistration:
    """
    Insert or update the registration described by Airtable's create-webhook response.
    The MAC secret is sealed before it is stored.
    """
    if isinstance(data, dict):
        if not data.get("id"):
            raise ValueError("Invalid create response: missing id")
        data = WebhookCreateResponse.model_validate(data)

    sealed = seal_mac_secret(data.mac_secret_base64)
    registration = await get_registration_by_webhook_id(db, data.id)

    if registration is None:
        registration = WebhookRegistration(
            webhook_id=data.id,
            mac_secret_encrypted=sealed,
            notification_url=notification_url,
            base_id=base_id,
            expiration_time=data.expiration_time,
        )
        db.add(registration)
        logger.info("Webhook registration created", extra={"webhook_id": data.id})
    else:
        registration.mac_secret_encrypted = sealed
        registration.notification_url = notification_url
        registration.base_id = base_id or registration.base_id
        registration.expiration_time = data.expiration_time
        logger.info("Webhook registration updated", extra={"webhook_id": data.id})

    await db.flush()
    return registration


async def deactivate_registration(
    db: AsyncSession,
    webhook_id: str,
) -> Optional[WebhookRegistration]:
    """Soft-delete a registration. Rows are never removed."""
    registration = await get_registration_by_webhook_id(db, webhook_id)
    if registration is None:
        return None
    registration.deleted = True
    await db.flush()
    logger.info("Webhook registration deactivated", extra={"webhook_id": webhook_id})
    return registration


async def record_expiration(
    db: AsyncSession,
    registration_id: uuid.UUID,
    expiration_time: Optional[datetime],
) -> None:
    await db.execute(
        update(WebhookRegistration)
        .where(WebhookRegistration.id == registration_id)
        .values(expiration_time=expiration_time)
        .execution_options(synchronize_session=False)
    )
