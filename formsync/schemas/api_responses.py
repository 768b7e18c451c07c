"""
API request/response schemas for the webhook, management and response endpoints.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class PingAck(BaseModel):
    """Body returned to Airtable for every ping. Always sent with HTTP 200."""
    status: str


class CreateWebhookRequest(BaseModel):
    table_id: Optional[str] = None


class CreateWebhookResponse(BaseModel):
    webhook_id: str
    expiration_time: Optional[datetime] = None
    saved: bool = True


class RegistrationSummary(BaseModel):
    webhook_id: str
    notification_url: str
    base_id: Optional[str] = None
    cursor_for_next_payload: int
    notifications_enabled: bool
    hook_enabled: bool
    deleted: bool
    expiration_time: Optional[datetime] = None
    last_payload_fetch_time: Optional[datetime] = None


class SyncDispatchResponse(BaseModel):
    webhook_id: str
    status: str


class ResponseSummary(BaseModel):
    id: str
    airtable_record_id: str
    deleted_in_airtable: bool
    created_at: Optional[datetime] = None
    answers: dict[str, Any]


class ResponseListResponse(BaseModel):
    responses: list[ResponseSummary]
