"""
Form model - a form generated from an Airtable table.
Owned by form CRUD; the ingestion pipeline only reads the question list to map
Airtable field IDs back to question keys.

questions JSONB shape:
    [{"questionKey": "q1", "airtableFieldId": "fldXXX", "label": "...",
      "type": "shortText", "required": false}, ...]
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, DateTime
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from formsync.database import Base


class Form(Base):
    __tablename__ = "forms"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[Optional[str]] = mapped_column(String(64))  # Airtable user ID
    airtable_base_id: Mapped[str] = mapped_column(String(64), nullable=False)
    airtable_table_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    questions: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Form {str(self.id)[:8]} table={self.airtable_table_id}>"
