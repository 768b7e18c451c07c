"""
Webhook registration model - one Airtable webhook subscription.
Holds the payload cursor and lifecycle flags. Rows are never deleted, only soft-deleted.
The MAC secret column is deferred: it is loaded only when a ping has to be verified.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from formsync.database import Base


class WebhookRegistration(Base):
    __tablename__ = "webhook_registrations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    webhook_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )  # Airtable-assigned, e.g. achXXXXXXXXXXXXXX
    mac_secret_encrypted: Mapped[Optional[str]] = mapped_column(Text, deferred=True)
    notification_url: Mapped[str] = mapped_column(Text, nullable=False)
    base_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Payload cursor - starts at 1, only ever moves forward
    cursor_for_next_payload: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default="1"
    )

    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    hook_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    expiration_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_payload_fetch_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<WebhookRegistration {self.webhook_id} cursor={self.cursor_for_next_payload}>"
