"""
Form response model - one submission, kept in sync with its Airtable row.
answers is keyed by question key, never by Airtable field ID.
A row deleted in Airtable is tombstoned (deleted_in_airtable=True), never removed.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from formsync.database import Base


class FormResponse(Base):
    __tablename__ = "form_responses"
    __table_args__ = (
        UniqueConstraint("form_id", "airtable_record_id", name="uq_form_responses_form_record"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    form_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("forms.id"), nullable=False, index=True
    )
    airtable_record_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    answers: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    deleted_in_airtable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<FormResponse {self.airtable_record_id} deleted={self.deleted_in_airtable}>"
