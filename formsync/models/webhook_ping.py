"""
Webhook ping audit trail - every Airtable notification is recorded on arrival.
The detached ingestion run completes the row with its outcome.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, Integer
from sqlalchemy.dialects.postgresql import UUID
from formsync.database import Base


class WebhookPing(Base):
    __tablename__ = "webhook_pings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    webhook_id = Column(String(64), nullable=True, index=True)
    payload_hash = Column(String(64), nullable=False, index=True)
    verification = Column(String(20), nullable=False)  # valid, skipped, mismatch, unreadable, none
    processing_status = Column(
        String(20), nullable=False, default="received", server_default="received"
    )  # received, dispatched, completed, failed, rejected, ignored
    records_applied = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
