"""
Airtable webhooks API client.

Auth: Bearer personal access token.
Docs: https://airtable.com/developers/web/api/webhooks-overview
Every call carries a bounded timeout (AIRTABLE_FETCH_TIMEOUT_SECONDS, 20s by default).

The client is constructed explicitly and passed to whoever needs it, so tests can hand
the ingestion pipeline a double instead of patching module globals.
"""
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from formsync.schemas.airtable_payloads import (
    WebhookCreateResponse,
    WebhookPayloadPage,
    WebhookRefreshResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.airtable.com/v0"
DEFAULT_TIMEOUT = 20.0


class AirtableApiError(RuntimeError):
    """Transport failure, timeout, non-2xx status or unreadable body from Airtable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AirtableWebhookClient:
    """Airtable webhooks API: list payloads, create and refresh webhooks."""

    def __init__(
        self,
        token: str,
        base_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_id = base_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and return the decoded JSON body."""
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self._headers,
                    json=json,
                    params=params,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise AirtableApiError(f"Airtable {method} {path} returned {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise AirtableApiError(f"Airtable {method} {path} failed: {e!r}") from e
        except ValueError as e:
            raise AirtableApiError(f"Airtable {method} {path} returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise AirtableApiError(f"Airtable {method} {path} returned {type(data).__name__}, expected object")
        return data

    def _webhooks_path(self, base_id: Optional[str] = None) -> str:
        return f"/bases/{base_id or self.base_id}/webhooks"

    async def list_payloads(
        self,
        webhook_id: str,
        cursor: int,
        base_id: Optional[str] = None,
    ) -> WebhookPayloadPage:
        """Fetch one page of change payloads starting at *cursor*."""
        path = f"{self._webhooks_path(base_id)}/{webhook_id}/payloads"
        data = await self._request("GET", path, params={"cursor": max(1, int(cursor))})
        try:
            page = WebhookPayloadPage.model_validate(data)
        except ValidationError as e:
            raise AirtableApiError(f"Unexpected payloads response for webhook {webhook_id}: {e}") from e

        logger.debug(
            "Fetched %d payloads for webhook %s (cursor %s -> %s, more=%s)",
            len(page.payloads), webhook_id, cursor, page.cursor, page.might_have_more,
        )
        return page

    async def create_webhook(
        self,
        notification_url: str,
        table_id: Optional[str] = None,
        base_id: Optional[str] = None,
    ) -> WebhookCreateResponse:
        """Register a tableData webhook, optionally scoped to one table."""
        filters: dict[str, Any] = {"dataTypes": ["tableData"]}
        if table_id:
            filters["recordChangeScope"] = table_id
        body = {
            "notificationUrl": notification_url,
            "specification": {"options": {"filters": filters}},
        }
        data = await self._request("POST", self._webhooks_path(base_id), json=body)
        try:
            created = WebhookCreateResponse.model_validate(data)
        except ValidationError as e:
            raise AirtableApiError(f"Unexpected create-webhook response: {e}") from e

        logger.info("Airtable webhook created: %s", created.id)
        return created

    async def refresh_webhook(
        self,
        webhook_id: str,
        base_id: Optional[str] = None,
    ) -> WebhookRefreshResponse:
        """Extend a webhook's expiration (Airtable webhooks lapse after 7 days)."""
        path = f"{self._webhooks_path(base_id)}/{webhook_id}/refresh"
        data = await self._request("POST", path)
        try:
            return WebhookRefreshResponse.model_validate(data)
        except ValidationError as e:
            raise AirtableApiError(f"Unexpected refresh response for webhook {webhook_id}: {e}") from e


def build_airtable_client(settings=None) -> AirtableWebhookClient:
    """Construct the client from application settings."""
    if settings is None:
        from formsync.config import get_settings
        settings = get_settings()
    return AirtableWebhookClient(
        token=settings.airtable_pat,
        base_id=settings.airtable_base_id,
        base_url=settings.airtable_api_base_url,
        timeout=settings.airtable_fetch_timeout_seconds,
    )
