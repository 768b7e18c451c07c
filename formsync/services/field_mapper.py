"""
Field mapper - translates Airtable field IDs into form question keys.

A changed record belongs to whichever Form was generated from its table. Fields that
were never selected into the form have no question and are ignored. Mapping results
are cached per ingestion run so one page of changes costs one form lookup per table.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formsync.models.form import Form

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormMapping:
    """A form and its reverse lookup from Airtable field ID to question key."""
    form_id: uuid.UUID
    field_index: dict[str, str] = field(default_factory=dict)


def build_field_index(questions: Optional[list]) -> dict[str, str]:
    """Reverse lookup {airtableFieldId: questionKey} from a form's question list."""
    index: dict[str, str] = {}
    for question in questions or []:
        if not isinstance(question, dict):
            continue
        field_id = question.get("airtableFieldId")
        question_key = question.get("questionKey")
        if field_id and question_key:
            index[field_id] = question_key
    return index


def is_blank(value: Any) -> bool:
    """None and empty/whitespace-only strings carry no answer."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def map_fields(
    fields: dict[str, Any],
    field_index: dict[str, str],
    keep_blank: bool = False,
) -> dict[str, Any]:
    """
    Map Airtable cell values to {questionKey: value}.

    Unknown field IDs are dropped. Blank values are dropped unless keep_blank is set,
    in which case they survive so the upserter can treat them as an explicit clear.
    """
    answers: dict[str, Any] = {}
    for field_id, value in (fields or {}).items():
        question_key = field_index.get(field_id)
        if question_key is None:
            continue
        if is_blank(value) and not keep_blank:
            continue
        answers[question_key] = value
    return answers


async def find_form_for_table(db: AsyncSession, table_id: str) -> Optional[Form]:
    """The form generated from *table_id*, oldest first when several exist."""
    result = await db.execute(
        select(Form)
        .where(Form.airtable_table_id == table_id)
        .order_by(Form.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


class FieldMapper:
    """Resolves table IDs to form mappings, caching each table for the mapper's lifetime."""

    def __init__(self, keep_blank: bool = False):
        self.keep_blank = keep_blank
        self._cache: dict[str, Optional[FormMapping]] = {}

    async def mapping_for_table(
        self,
        db: AsyncSession,
        table_id: Optional[str],
    ) -> Optional[FormMapping]:
        if not table_id:
            return None
        if table_id in self._cache:
            return self._cache[table_id]

        form = await find_form_for_table(db, table_id)
        if form is None:
            logger.info(
                "No form for Airtable table %s; its changes are ignored",
                table_id,
                extra={"table_id": table_id},
            )
            mapping = None
        else:
            mapping = FormMapping(form_id=form.id, field_index=build_field_index(form.questions))
        self._cache[table_id] = mapping
        return mapping

    def map(self, mapping: FormMapping, fields: dict[str, Any]) -> dict[str, Any]:
        return map_fields(fields, mapping.field_index, keep_blank=self.keep_blank)
