"""
Form response read API - what the ingestion pipeline has stored for a form.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formsync.api.admin_auth import require_admin_key
from formsync.database import get_db
from formsync.models.form import Form
from formsync.models.form_response import FormResponse
from formsync.schemas.api_responses import ResponseListResponse, ResponseSummary

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/forms",
    tags=["responses"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("/{form_id}/responses", response_model=ResponseListResponse)
async def list_form_responses(
    form_id: uuid.UUID,
    include_deleted: bool = False,
    db: AsyncSession = Depends(get_db),
):
    """Responses newest first. Rows deleted in Airtable are hidden unless include_deleted."""
    form = await db.get(Form, form_id)
    if form is None:
        raise HTTPException(status_code=404, detail="Form not found")

    stmt = (
        select(FormResponse)
        .where(FormResponse.form_id == form_id)
        .order_by(FormResponse.created_at.desc())
    )
    if not include_deleted:
        stmt = stmt.where(FormResponse.deleted_in_airtable == False)

    result = await db.execute(stmt)
    return ResponseListResponse(
        responses=[
            ResponseSummary(
                id=str(r.id),
                airtable_record_id=r.airtable_record_id,
                deleted_in_airtable=r.deleted_in_airtable,
                created_at=r.created_at,
                answers=r.answers or {},
            )
            for r in result.scalars().all()
        ]
    )
