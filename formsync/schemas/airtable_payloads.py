"""
Airtable webhook API response schemas.
Only the fields the ingestion pipeline consumes are modelled; everything else is ignored.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class WebhookPayloadPage(BaseModel):
    """GET /bases/{baseId}/webhooks/{webhookId}/payloads response."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cursor: Optional[int] = None  # next cursor; absent means "stay where you are"
    payloads: list[Any] = Field(default_factory=list)
    might_have_more: bool = Field(default=False, alias="mightHaveMore")


class WebhookCreateResponse(BaseModel):
    """POST /bases/{baseId}/webhooks response."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    mac_secret_base64: Optional[str] = Field(default=None, alias="macSecretBase64")
    expiration_time: Optional[datetime] = Field(default=None, alias="expirationTime")


class WebhookRefreshResponse(BaseModel):
    """POST /bases/{baseId}/webhooks/{webhookId}/refresh response."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    expiration_time: Optional[datetime] = Field(default=None, alias="expirationTime")
