"""GoHighLevel (LeadConnector) ContactSource adapter.

Contacts are listed with cursor pagination (``startAfter`` /
``startAfterId`` taken from the previous page's ``meta``) and written
through the upsert endpoint, which matches on email within a location.

Custom fields are flattened onto the contact by custom-field id, so an
integration's field mapping points HireOS fields at those ids.

An expired access token (HTTP 401) is refreshed once per request with
the stored refresh token; the new tokens are written back onto the
credentials object so the caller can persist them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from src.hireos.crm.field_mapping import GHL_DEFAULT_FIELD_NAMES, FieldMapper
from src.hireos.crm.schemas import CandidateField, ExternalContact, GHLCredentials
from src.hireos.crm.sources.base import (
    ContactSourceAuthError,
    ContactSourceError,
)
from src.hireos.crm.sources.transport import (
    check_response,
    raise_if_rate_limited,
    rate_limit_retrying,
)

logger = structlog.get_logger(__name__)

GHL_API_BASE = "https://services.leadconnectorhq.com"
GHL_TOKEN_URL = f"{GHL_API_BASE}/oauth/token"
GHL_API_VERSION = "2021-07-28"
GHL_PAGE_SIZE = 100

# Top-level attributes accepted by the upsert endpoint
_STANDARD_FIELDS = frozenset(
    {
        "firstName",
        "lastName",
        "name",
        "email",
        "phone",
        "address1",
        "city",
        "state",
        "country",
        "postalCode",
        "companyName",
        "source",
        "tags",
    }
)


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def flatten_contact(raw: dict[str, Any]) -> dict[str, Any]:
    """Flat field view of a GHL contact: standard attributes plus custom fields by id."""
    fields: dict[str, Any] = {
        key: value
        for key, value in raw.items()
        if key not in ("customFields", "customField") and not isinstance(value, dict)
    }

    if not fields.get("contactName"):
        full_name = " ".join(
            part for part in (raw.get("firstName"), raw.get("lastName")) if part
        )
        if full_name:
            fields["contactName"] = full_name

    for custom in raw.get("customFields") or raw.get("customField") or []:
        if isinstance(custom, dict) and custom.get("id"):
            fields[custom["id"]] = custom.get("value", custom.get("field_value"))

    return fields


class GHLContactSource:
    """ContactSource over one GoHighLevel location.

    Args:
        client_id: OAuth client id used for token refresh.
        client_secret: OAuth client secret used for token refresh.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt when rate limited.
        max_retry_wait: Upper bound on a single rate-limit wait.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    provider_id = "ghl"
    default_field_names = GHL_DEFAULT_FIELD_NAMES
    credentials_model = GHLCredentials

    def __init__(
        self,
        *,
        client_id: str = "",
        client_secret: str = "",
        timeout: float = 30.0,
        max_retries: int = 3,
        max_retry_wait: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._max_retries = max_retries
        self._max_retry_wait = max_retry_wait
        self._transport = transport

    # ── HTTP plumbing ───────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=GHL_API_BASE,
            headers={"Version": GHL_API_VERSION, "Accept": "application/json"},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        client: httpx.AsyncClient,
        credentials: GHLCredentials,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        async for attempt in rate_limit_retrying(self._max_retries, self._max_retry_wait):
            with attempt:
                response = await client.request(
                    method,
                    url,
                    headers={"Authorization": f"Bearer {credentials.access_token}"},
                    **kwargs,
                )
                raise_if_rate_limited(self.provider_id, response)
        return response

    async def _request(
        self,
        client: httpx.AsyncClient,
        credentials: GHLCredentials,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        response = await self._send(client, credentials, method, url, **kwargs)
        if response.status_code == 401 and credentials.refresh_token:
            await self._refresh_token(client, credentials)
            response = await self._send(client, credentials, method, url, **kwargs)
        return response

    async def _refresh_token(self, client: httpx.AsyncClient, credentials: GHLCredentials) -> None:
        """Exchange the refresh token for a new access token, in place."""
        if not self._client_id or not self._client_secret:
            raise ContactSourceAuthError("GHL token expired and no OAuth client is configured")

        response = await client.post(
            GHL_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
            },
        )
        if response.status_code in (400, 401):
            raise ContactSourceAuthError("GHL refresh token rejected; reconnect the integration")
        check_response(self.provider_id, response)

        tokens = response.json()
        credentials.access_token = tokens["access_token"]
        credentials.refresh_token = tokens.get("refresh_token", credentials.refresh_token)
        logger.info("ghl.token_refreshed", location_id=credentials.location_id)

    # ── Reads ───────────────────────────────────────────────────────────

    async def fetch_contacts(
        self, limit: int, credentials: GHLCredentials
    ) -> list[ExternalContact]:
        """Fetch up to ``limit`` contacts, following the meta cursor."""
        contacts: list[ExternalContact] = []
        if limit <= 0:
            return contacts

        cursor: dict[str, Any] = {}
        async with self._client() as client:
            while len(contacts) < limit:
                params: dict[str, Any] = {
                    "limit": min(limit - len(contacts), GHL_PAGE_SIZE),
                    **cursor,
                }
                if credentials.location_id:
                    params["locationId"] = credentials.location_id

                response = await self._request(client, credentials, "GET", "/contacts/", params=params)
                check_response(self.provider_id, response)
                data = response.json()

                page = data.get("contacts", [])
                for raw in page[: limit - len(contacts)]:
                    contacts.append(self._to_contact(raw))

                meta = data.get("meta") or {}
                if not page or not meta.get("nextPageUrl") or not meta.get("startAfterId"):
                    break
                cursor = {
                    "startAfter": meta.get("startAfter"),
                    "startAfterId": meta.get("startAfterId"),
                }

        logger.info(
            "ghl.contacts_fetched",
            location_id=credentials.location_id,
            count=len(contacts),
        )
        return contacts

    @staticmethod
    def _to_contact(raw: dict[str, Any]) -> ExternalContact:
        return ExternalContact(
            id=str(raw["id"]),
            fields=flatten_contact(raw),
            last_modified=_parse_timestamp(raw.get("dateUpdated")),
            metadata={"date_added": raw.get("dateAdded")},
        )

    # ── Writes ──────────────────────────────────────────────────────────

    def _upsert_payload(
        self, data: dict[str, Any], credentials: GHLCredentials
    ) -> dict[str, Any]:
        mapper = FieldMapper(credentials.field_mappings, self.default_field_names)
        name_field = mapper.field_name(CandidateField.NAME)

        payload: dict[str, Any] = {"source": "HireOS"}
        if credentials.location_id:
            payload["locationId"] = credentials.location_id

        custom_fields: list[dict[str, Any]] = []
        for key, value in data.items():
            if value is None or value == "":
                continue
            if key == name_field and key not in _STANDARD_FIELDS:
                first, _, last = str(value).strip().partition(" ")
                payload["firstName"] = first
                if last:
                    payload["lastName"] = last.strip()
            elif key in _STANDARD_FIELDS:
                payload[key] = value
            else:
                custom_fields.append({"id": key, "field_value": value})

        if custom_fields:
            payload["customFields"] = custom_fields
        return payload

    async def create_or_update_contact(
        self,
        data: dict[str, Any],
        credentials: GHLCredentials,
        *,
        updated_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Upsert a contact by email.

        Non-standard keys in ``data`` are sent as custom fields by id. When
        GHL rejects a payload naming one of those fields, the field is
        dropped and the write retried once.

        Raises:
            ContactSourceError: If the payload carries no email.
            ContactSourceAuthError: If the token is invalid and cannot be refreshed.
            ContactSourceRequestError: If GHL refuses the write.
        """
        payload = self._upsert_payload(data, credentials)
        if not payload.get("email"):
            raise ContactSourceError("GHL upsert requires an email value")

        async with self._client() as client:
            response = await self._request(
                client, credentials, "POST", "/contacts/upsert", json=payload
            )
            if response.status_code in (400, 422):
                retry_payload = self._without_rejected_field(payload, response)
                if retry_payload is not None:
                    response = await self._request(
                        client, credentials, "POST", "/contacts/upsert", json=retry_payload
                    )
            check_response(self.provider_id, response)

        body = response.json()
        contact = body.get("contact") or body
        logger.info(
            "ghl.contact_written",
            contact_id=contact.get("id"),
            action="created" if body.get("new") else "updated",
        )
        return contact

    def _without_rejected_field(
        self, payload: dict[str, Any], response: httpx.Response
    ) -> dict[str, Any] | None:
        """Payload minus the custom field the error message names, if any."""
        message = response.text
        for custom in payload.get("customFields", []):
            if custom["id"] in message:
                logger.warning(
                    "ghl.field_rejected",
                    field=custom["id"],
                    status_code=response.status_code,
                )
                remaining = [c for c in payload["customFields"] if c is not custom]
                retry_payload = {k: v for k, v in payload.items() if k != "customFields"}
                if remaining:
                    retry_payload["customFields"] = remaining
                return retry_payload
        return None


