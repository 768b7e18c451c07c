"""
Ingestion orchestrator - drains pending Airtable payloads for one webhook registration.

Per page:
1. Fetch payloads from the stored cursor (bounded timeout, see AirtableWebhookClient)
2. Persist the next cursor and fetch time BEFORE touching the page contents
3. Normalize -> map -> upsert every changed record, each in its own transaction
4. Continue while Airtable reports mightHaveMore, up to ingestion_max_pages

Failure semantics:
- Fetch failure: logged, loop stops, cursor untouched (the next ping retries)
- Record failure: logged, rolled back, sibling records and the saved cursor unaffected
- Page cap reached: logged as an error, cursor left at the last persisted value
Nothing raises out of ingest_payloads() for a fetch or record failure.
"""
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from formsync.config import get_settings
from formsync.database import SessionFactory, async_session_factory
from formsync.integrations.airtable import AirtableApiError, AirtableWebhookClient
from formsync.services.field_mapper import FieldMapper
from formsync.services.record_normalizer import ChangedRecord, extract_changed_records
from formsync.services.registration_store import (
    advance_cursor,
    get_active_registration,
    get_registration,
)
from formsync.services.response_upsert import (
    OUTCOME_CREATED,
    OUTCOME_SKIPPED,
    OUTCOME_TOMBSTONED,
    OUTCOME_UPDATED,
    apply_change,
)

logger = logging.getLogger(__name__)

STOP_DRAINED = "drained"
STOP_FETCH_FAILED = "fetch_failed"
STOP_PAGE_CAP = "page_cap"
STOP_CURSOR_NOT_SAVED = "cursor_not_saved"
STOP_NO_REGISTRATION = "no_registration"

APPLIED_OUTCOMES = (OUTCOME_CREATED, OUTCOME_UPDATED, OUTCOME_TOMBSTONED)


@dataclass
class IngestionSummary:
    webhook_id: Optional[str] = None
    pages: int = 0
    records_seen: int = 0
    outcomes: Counter = field(default_factory=Counter)
    failed_records: int = 0
    stop_reason: Optional[str] = None
    start_cursor: Optional[int] = None
    end_cursor: Optional[int] = None

    @property
    def records_applied(self) -> int:
        return sum(self.outcomes[outcome] for outcome in APPLIED_OUTCOMES)

    @property
    def ok(self) -> bool:
        return self.stop_reason == STOP_DRAINED and self.failed_records == 0


async def _persist_cursor(
    session_factory: SessionFactory,
    registration_id: uuid.UUID,
    next_cursor: Optional[int],
) -> Optional[int]:
    async with session_factory() as db:
        stored = await advance_cursor(db, registration_id, next_cursor)
        await db.commit()
    return stored


async def _apply_record(db: AsyncSession, mapper: FieldMapper, record: ChangedRecord) -> str:
    mapping = await mapper.mapping_for_table(db, record.table_id)

    if record.deleted:
        if record.table_id and mapping is None:
            # Known table, not one of ours
            return OUTCOME_SKIPPED
        return await apply_change(
            db,
            form_id=mapping.form_id if mapping else None,
            airtable_record_id=record.id,
            answers={},
            deleted=True,
        )

    if mapping is None:
        return OUTCOME_SKIPPED

    return await apply_change(
        db,
        form_id=mapping.form_id,
        airtable_record_id=record.id,
        answers=mapper.map(mapping, record.fields),
        deleted=False,
    )


async def _apply_record_isolated(
    db: AsyncSession,
    mapper: FieldMapper,
    record: ChangedRecord,
    summary: IngestionSummary,
) -> None:
    """Apply and commit one record. Failures roll back this record only."""
    log_extra = {"record_id": record.id, "table_id": record.table_id, "webhook_id": summary.webhook_id}
    try:
        try:
            outcome = await _apply_record(db, mapper, record)
            await db.commit()
        except IntegrityError:
            # Another run created the same (form, record) row first; merge into it instead
            await db.rollback()
            logger.info("Response for %s created concurrently, retrying as merge", record.id, extra=log_extra)
            outcome = await _apply_record(db, mapper, record)
            await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        summary.failed_records += 1
        logger.error("Failed to store record %s: %s", record.id, str(e), extra=log_extra)
        return
    except Exception as e:
        await db.rollback()
        summary.failed_records += 1
        logger.error("Failed to apply record %s: %s", record.id, str(e), exc_info=True, extra=log_extra)
        return

    summary.outcomes[outcome] += 1


async def ingest_payloads(
    registration_id: uuid.UUID,
    *,
    client: AirtableWebhookClient,
    session_factory: Optional[SessionFactory] = None,
    max_pages: Optional[int] = None,
    keep_blank: Optional[bool] = None,
) -> IngestionSummary:
    """
    Fetch and apply every pending payload page for a registration.

    session_factory defaults to the application's; tests pass their own.
    keep_blank defaults to EMPTY_VALUE_CLEARS_ANSWER.
    """
    settings = get_settings()
    session_factory = session_factory or async_session_factory
    if max_pages is None:
        max_pages = settings.ingestion_max_pages
    if keep_blank is None:
        keep_blank = settings.empty_value_clears_answer

    summary = IngestionSummary()

    async with session_factory() as db:
        registration = await get_registration(db, registration_id)
        if registration is None or registration.deleted:
            logger.info("No active registration %s; nothing to ingest", registration_id)
            summary.stop_reason = STOP_NO_REGISTRATION
            return summary
        webhook_id = registration.webhook_id
        base_id = registration.base_id
        cursor = registration.cursor_for_next_payload or 1

    summary.webhook_id = webhook_id
    summary.start_cursor = cursor
    summary.end_cursor = cursor
    mapper = FieldMapper(keep_blank=keep_blank)

    while True:
        if summary.pages >= max_pages:
            logger.error(
                "Ingestion for webhook %s hit the %d page cap; cursor left at %s",
                webhook_id, max_pages, cursor,
                extra={"webhook_id": webhook_id, "cursor": cursor},
            )
            summary.stop_reason = STOP_PAGE_CAP
            break

        try:
            page = await client.list_payloads(webhook_id, cursor, base_id=base_id)
        except AirtableApiError as e:
            logger.warning(
                "Payload fetch failed for webhook %s at cursor %s: %s",
                webhook_id, cursor, str(e),
                extra={"webhook_id": webhook_id, "cursor": cursor},
            )
            summary.stop_reason = STOP_FETCH_FAILED
            break

        summary.pages += 1

        try:
            stored = await _persist_cursor(session_factory, registration_id, page.cursor)
        except SQLAlchemyError as e:
            logger.error(
                "Could not save cursor %s for webhook %s, page not processed: %s",
                page.cursor, webhook_id, str(e),
                extra={"webhook_id": webhook_id, "cursor": page.cursor},
            )
            summary.stop_reason = STOP_CURSOR_NOT_SAVED
            break

        if stored is not None:
            cursor = stored
        summary.end_cursor = cursor

        async with session_factory() as db:
            for payload in page.payloads:
                for record in extract_changed_records(payload):
                    summary.records_seen += 1
                    await _apply_record_isolated(db, mapper, record, summary)

        if not page.might_have_more:
            summary.stop_reason = STOP_DRAINED
            break

    logger.info(
        "Ingestion for webhook %s finished (%s): pages=%d records=%d applied=%d failed=%d cursor %s -> %s",
        webhook_id, summary.stop_reason, summary.pages, summary.records_seen,
        summary.records_applied, summary.failed_records,
        summary.start_cursor, summary.end_cursor,
        extra={"webhook_id": webhook_id, "cursor": summary.end_cursor},
    )
    return summary


async def resolve_registration_id(
    session_factory: Optional[SessionFactory] = None,
    notification_url: Optional[str] = None,
) -> Optional[uuid.UUID]:
    """Active registration for our notification URL, else any non-deleted one."""
    session_factory = session_factory or async_session_factory
    if notification_url is None:
        notification_url = get_settings().webhook_public_url or None
    async with session_factory() as db:
        registration = await get_active_registration(db, notification_url)
        return registration.id if registration else None


async def ingest_active_registration(
    *,
    client: AirtableWebhookClient,
    session_factory: Optional[SessionFactory] = None,
    notification_url: Optional[str] = None,
    **kwargs,
) -> IngestionSummary:
    registration_id = await resolve_registration_id(session_factory, notification_url)
    if registration_id is None:
        logger.info("No webhook registration found; nothing to ingest")
        return IngestionSummary(stop_reason=STOP_NO_REGISTRATION)
    return await ingest_payloads(
        registration_id, client=client, session_factory=session_factory, **kwargs
    )
