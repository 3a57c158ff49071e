"""Airtable ContactSource adapter.

Reads records page by page through the REST list endpoint (offset
pagination, 100 records per page) and upserts by email using a
filterByFormula search. Writes recover from Airtable's 422 field
rejections by dropping the offending field, falling back to a minimal
Name + Email record when a retry is still refused.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from src.hireos.crm.field_mapping import TABULAR_DEFAULT_FIELD_NAMES, FieldMapper
from src.hireos.crm.schemas import AirtableCredentials, CandidateField, ExternalContact
from src.hireos.crm.sources.base import ContactSourceError, FieldRejectedError
from src.hireos.crm.sources.transport import (
    check_response,
    raise_if_rate_limited,
    rate_limit_retrying,
)

logger = structlog.get_logger(__name__)

AIRTABLE_API_BASE = "https://api.airtable.com/v0"
AIRTABLE_PAGE_SIZE = 100

UNKNOWN_FIELD_NAME = "UNKNOWN_FIELD_NAME"
INVALID_MULTIPLE_CHOICE_OPTIONS = "INVALID_MULTIPLE_CHOICE_OPTIONS"

_UNKNOWN_FIELD_RE = re.compile(r'[Uu]nknown field name:?\s*"([^"]+)"')


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AirtableContactSource:
    """ContactSource over one Airtable table.

    Args:
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt when rate limited.
        max_retry_wait: Upper bound on a single rate-limit wait.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    provider_id = "airtable"
    default_field_names = TABULAR_DEFAULT_FIELD_NAMES
    credentials_model = AirtableCredentials

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        max_retry_wait: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._max_retries = max_retries
        self._max_retry_wait = max_retry_wait
        self._transport = transport

    # ── HTTP plumbing ───────────────────────────────────────────────────

    def _client(self, credentials: AirtableCredentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=AIRTABLE_API_BASE,
            headers={
                "Authorization": f"Bearer {credentials.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _table_path(credentials: AirtableCredentials) -> str:
        return f"/{credentials.base_id}/{quote(credentials.table_name, safe='')}"

    async def _send(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        async for attempt in rate_limit_retrying(self._max_retries, self._max_retry_wait):
            with attempt:
                response = await client.request(method, url, **kwargs)
                raise_if_rate_limited(self.provider_id, response)
        return response

    # ── Reads ───────────────────────────────────────────────────────────

    async def fetch_contacts(
        self, limit: int, credentials: AirtableCredentials
    ) -> list[ExternalContact]:
        """Fetch up to ``limit`` records, following ``offset`` until exhausted."""
        contacts: list[ExternalContact] = []
        if limit <= 0:
            return contacts

        offset: str | None = None
        async with self._client(credentials) as client:
            while len(contacts) < limit:
                params: dict[str, Any] = {
                    "pageSize": min(limit - len(contacts), AIRTABLE_PAGE_SIZE),
                }
                if offset:
                    params["offset"] = offset

                response = await self._send(
                    client, "GET", self._table_path(credentials), params=params
                )
                check_response(self.provider_id, response)
                data = response.json()

                for record in data.get("records", [])[: limit - len(contacts)]:
                    contacts.append(self._to_contact(record))

                offset = data.get("offset")
                if not offset:
                    break

        logger.info(
            "airtable.contacts_fetched",
            base_id=credentials.base_id,
            table=credentials.table_name,
            count=len(contacts),
        )
        return contacts

    @staticmethod
    def _to_contact(record: dict[str, Any]) -> ExternalContact:
        return ExternalContact(
            id=record["id"],
            fields=record.get("fields") or {},
            last_modified=_parse_timestamp(record.get("lastModifiedTime")),
            metadata={"created_time": record.get("createdTime")},
        )

    async def _find_by_email(
        self,
        client: httpx.AsyncClient,
        credentials: AirtableCredentials,
        email_field: str,
        email: str,
    ) -> dict[str, Any] | None:
        escaped = email.replace("\\", "\\\\").replace('"', '\\"')
        response = await self._send(
            client,
            "GET",
            self._table_path(credentials),
            params={
                "filterByFormula": f'LOWER({{{email_field}}}) = LOWER("{escaped}")',
                "maxRecords": 1,
            },
        )
        check_response(self.provider_id, response)
        records = response.json().get("records", [])
        return records[0] if records else None

    # ── Writes ──────────────────────────────────────────────────────────

    async def create_or_update_contact(
        self,
        data: dict[str, Any],
        credentials: AirtableCredentials,
        *,
        updated_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Upsert a record keyed by email.

        When the Airtable record was modified after ``updated_at`` the
        write is skipped and the existing record returned.

        Args:
            data: Airtable field name -> value.
            credentials: Table credentials and field mapping.
            updated_at: Last-modified time of the HireOS side of the record.

        Returns:
            The Airtable record after the write.

        Raises:
            ContactSourceError: If the payload carries no email.
            ContactSourceRequestError: If Airtable refuses the write.
        """
        mapper = FieldMapper(credentials.field_mappings, self.default_field_names)
        email_field = mapper.field_name(CandidateField.EMAIL)
        name_field = mapper.field_name(CandidateField.NAME)
        status_field = mapper.field_name(CandidateField.STATUS)

        email = data.get(email_field)
        if not email:
            raise ContactSourceError("Airtable upsert requires an email value")

        fields = {key: value for key, value in data.items() if value is not None and value != ""}

        async with self._client(credentials) as client:
            existing = await self._find_by_email(client, credentials, email_field, str(email))

            if existing is not None:
                provider_modified = _parse_timestamp(
                    existing.get("lastModifiedTime") or existing.get("createdTime")
                )
                if (
                    updated_at is not None
                    and provider_modified is not None
                    and provider_modified > _as_utc(updated_at)
                ):
                    logger.info(
                        "airtable.write_skipped_newer_remote",
                        record_id=existing["id"],
                    )
                    return existing
                method, url = "PATCH", f"{self._table_path(credentials)}/{existing['id']}"
            else:
                method, url = "POST", self._table_path(credentials)

            async def write(payload: dict[str, Any]) -> dict[str, Any]:
                return await self._write(client, method, url, payload)

            record = await self._write_with_recovery(
                write, fields, minimal_keys=(name_field, email_field), status_field=status_field
            )

        logger.info(
            "airtable.contact_written",
            record_id=record.get("id"),
            action="updated" if method == "PATCH" else "created",
        )
        return record

    async def _write(
        self, client: httpx.AsyncClient, method: str, url: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        response = await self._send(client, method, url, json={"fields": fields})
        if response.status_code == 422:
            self._raise_field_rejection(response)
        check_response(self.provider_id, response)
        return response.json()

    def _raise_field_rejection(self, response: httpx.Response) -> None:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            return
        if not isinstance(error, dict):
            return
        error_type = error.get("type", "")
        message = error.get("message", "")
        if error_type == UNKNOWN_FIELD_NAME:
            match = _UNKNOWN_FIELD_RE.search(message)
            raise FieldRejectedError(
                field_name=match.group(1) if match else None,
                reason=UNKNOWN_FIELD_NAME,
                message=message,
            )
        if error_type == INVALID_MULTIPLE_CHOICE_OPTIONS:
            raise FieldRejectedError(
                field_name=None,
                reason=INVALID_MULTIPLE_CHOICE_OPTIONS,
                message=message,
            )

    async def _write_with_recovery(
        self,
        write: Callable[[dict[str, Any]], Awaitable[dict[str, Any]]],
        fields: dict[str, Any],
        *,
        minimal_keys: tuple[str, str],
        status_field: str,
    ) -> dict[str, Any]:
        try:
            return await write(fields)
        except FieldRejectedError as exc:
            if exc.reason == UNKNOWN_FIELD_NAME:
                retry_fields = {k: v for k, v in fields.items() if k != exc.field_name}
                logger.warning(
                    "airtable.field_rejected",
                    field=exc.field_name,
                    reason=exc.reason,
                )
                try:
                    return await write(retry_fields)
                except FieldRejectedError:
                    minimal = {k: fields[k] for k in minimal_keys if k in fields}
                    logger.warning("airtable.minimal_write_fallback", fields=list(minimal))
                    return await write(minimal)

            if exc.reason == INVALID_MULTIPLE_CHOICE_OPTIONS and status_field in fields:
                logger.warning(
                    "airtable.field_rejected",
                    field=status_field,
                    reason=exc.reason,
                )
                return await write({k: v for k, v in fields.items() if k != status_field})
            raise
