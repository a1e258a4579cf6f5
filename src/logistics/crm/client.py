"""HubSpot CRM REST client.

Thin async wrapper over the /crm/v3 and /crm/v4 endpoints used by the sync
orchestrator. Key design decisions:
- One shared httpx.AsyncClient per process, closed at shutdown
- Rate limits (429), 5xx responses and transport errors are retried with
  tenacity exponential backoff; other 4xx responses are not
- A 409 on contact create is surfaced as HubSpotConflictError carrying the
  existing record id parsed from HubSpot's message, so callers can treat
  create-or-conflict as an upsert
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.logistics.crm.schemas import ObjectKind, PropertyDefinition

logger = structlog.get_logger(__name__)

_EXISTING_ID = re.compile(r"Existing ID:\s*(\d+)", re.IGNORECASE)


class HubSpotAPIError(Exception):
    """Non-success response from HubSpot."""

    def __init__(self, status_code: int, message: str, body: Any = None) -> None:
        self.status_code = status_code
        self.message = message
        self.body = body
        super().__init__(f"HubSpot API error {status_code}: {message}")


class HubSpotRetryableError(HubSpotAPIError):
    """429 or 5xx; safe to retry."""


class HubSpotConflictError(HubSpotAPIError):
    """409 Conflict; existing_id is set when HubSpot named the existing record."""

    def __init__(self, status_code: int, message: str, body: Any = None) -> None:
        super().__init__(status_code, message, body)
        match = _EXISTING_ID.search(message or "")
        self.existing_id: str | None = match.group(1) if match else None


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, None
    if isinstance(body, dict):
        return str(body.get("message") or response.reason_phrase), body
    return response.reason_phrase, body


class HubSpotClient:
    """Async HubSpot client authenticated with a private app token.

    Args:
        token: Private app access token.
        base_url: API root, normally https://api.hubapi.com.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception_type((HubSpotRetryableError, httpx.TransportError)),
        reraise=True,
    )
    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        response = await self._client.request(method, path, json=json)

        if response.status_code == 429 or response.status_code >= 500:
            message, body = _error_message(response)
            logger.warning(
                "hubspot.retryable_error",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise HubSpotRetryableError(response.status_code, message, body)
        if response.status_code == 409:
            message, body = _error_message(response)
            raise HubSpotConflictError(response.status_code, message, body)
        if response.status_code >= 400:
            message, body = _error_message(response)
            raise HubSpotAPIError(response.status_code, message, body)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # ── Schema ──────────────────────────────────────────────────────────────

    async def get_properties(self, kind: ObjectKind) -> list[PropertyDefinition]:
        """All property definitions for an object kind."""
        data = await self._request("GET", f"/crm/v3/properties/{kind.value}")
        return [PropertyDefinition.from_api(p) for p in data.get("results", [])]

    # ── Contacts ────────────────────────────────────────────────────────────

    async def create_contact(self, properties: dict[str, Any]) -> str:
        """Create a contact and return its id.

        Raises:
            HubSpotConflictError: A contact with this email already exists.
        """
        data = await self._request(
            "POST", "/crm/v3/objects/contacts", json={"properties": properties}
        )
        return str(data["id"])

    async def get_contact(self, contact_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/crm/v3/objects/contacts/{contact_id}")

    # ── Deals ───────────────────────────────────────────────────────────────

    async def create_deal(self, properties: dict[str, Any]) -> str:
        data = await self._request(
            "POST", "/crm/v3/objects/deals", json={"properties": properties}
        )
        return str(data["id"])

    async def update_deal(self, deal_id: str, properties: dict[str, Any]) -> str:
        data = await self._request(
            "PATCH", f"/crm/v3/objects/deals/{deal_id}", json={"properties": properties}
        )
        return str(data.get("id", deal_id))

    async def get_deal(self, deal_id: str, properties: list[str] | None = None) -> dict[str, Any]:
        """Fetch a deal's current properties straight from HubSpot."""
        path = f"/crm/v3/objects/deals/{deal_id}"
        if properties:
            path += "?properties=" + ",".join(properties)
        return await self._request("GET", path)

    async def associate_deal_with_contact(self, deal_id: str, contact_id: str) -> None:
        """Default (unlabeled) deal-to-contact association."""
        await self._request(
            "PUT",
            f"/crm/v4/objects/deals/{deal_id}/associations/default/contacts/{contact_id}",
        )
