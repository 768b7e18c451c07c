"""
Response upserter - applies one normalized, mapped change to the form_responses table.

Applying the same change twice leaves the row as a single application would. Changes to
different records need no coordination. Two concurrent edits to the same record are
last-write-wins. The caller owns the transaction; this module only flushes.
"""
import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formsync.models.form_response import FormResponse
from formsync.services.field_mapper import is_blank

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_TOMBSTONED = "tombstoned"
OUTCOME_SKIPPED = "skipped"
OUTCOME_NOT_FOUND = "not_found"


def merge_answers(existing: Optional[dict], incoming: dict[str, Any]) -> dict[str, Any]:
    """
    Merge incoming answers key by key into a copy of *existing*.
    A blank incoming value removes the key. Keys not in *incoming* are kept.
    """
    merged = dict(existing or {})
    for key, value in incoming.items():
        if is_blank(value):
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


async def find_responses(
    db: AsyncSession,
    airtable_record_id: str,
    form_id: Optional[uuid.UUID] = None,
) -> list[FormResponse]:
    stmt = select(FormResponse).where(FormResponse.airtable_record_id == airtable_record_id)
    if form_id is not None:
        stmt = stmt.where(FormResponse.form_id == form_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_response(
    db: AsyncSession,
    form_id: uuid.UUID,
    airtable_record_id: str,
) -> Optional[FormResponse]:
    responses = await find_responses(db, airtable_record_id, form_id)
    return responses[0] if responses else None


async def apply_change(
    db: AsyncSession,
    *,
    form_id: Optional[uuid.UUID],
    airtable_record_id: str,
    answers: dict[str, Any],
    deleted: bool,
) -> str:
    """
    Create, merge into or tombstone the response for one Airtable record.

    Returns one of the OUTCOME_* constants. A deletion with form_id=None tombstones the
    record under every form; a missing row is OUTCOME_NOT_FOUND, not an error.
    """
    log_extra = {"record_id": airtable_record_id, "form_id": str(form_id) if form_id else None}

    if deleted:
        responses = await find_responses(db, airtable_record_id, form_id)
        if not responses:
            logger.debug("Delete for unknown record %s ignored", airtable_record_id, extra=log_extra)
            return OUTCOME_NOT_FOUND
        changed = False
        for response in responses:
            if not response.deleted_in_airtable:
                response.deleted_in_airtable = True
                changed = True
        if not changed:
            return OUTCOME_UNCHANGED
        await db.flush()
        logger.info("Response tombstoned: %s", airtable_record_id, extra=log_extra)
        return OUTCOME_TOMBSTONED

    if form_id is None:
        logger.info(
            "Skipping create for %s: owning form could not be resolved",
            airtable_record_id, extra=log_extra,
        )
        return OUTCOME_SKIPPED

    response = await find_response(db, form_id, airtable_record_id)

    if response is None:
        initial = merge_answers({}, answers)
        if not initial:
            logger.debug("No answers for new record %s; nothing stored", airtable_record_id, extra=log_extra)
            return OUTCOME_SKIPPED
        db.add(FormResponse(
            form_id=form_id,
            airtable_record_id=airtable_record_id,
            answers=initial,
            deleted_in_airtable=False,
        ))
        await db.flush()
        logger.info("Response created: %s", airtable_record_id, extra=log_extra)
        return OUTCOME_CREATED

    merged = merge_answers(response.answers, answers)
    if merged == (response.answers or {}) and not response.deleted_in_airtable:
        return OUTCOME_UNCHANGED

    # Reassign rather than mutate: plain JSON columns do not track in-place changes
    response.answers = merged
    response.deleted_in_airtable = False
    await db.flush()
    logger.info("Response updated: %s", airtable_record_id, extra=log_extra)
    return OUTCOME_UPDATED
