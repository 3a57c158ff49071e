"""Google Sheets ContactSource adapter.

The first row of the sheet holds column headers; every following row is
one contact with id ``row_<n>`` (1-based sheet row number). Writes find
the row whose email column matches and rewrite it, or append a new row.

All Google API calls are wrapped in asyncio.to_thread() because the
googleapiclient client is synchronous. Rate-limit and transient errors
are retried by ``execute(num_retries=...)``; the OAuth access token is
refreshed by google-auth when a refresh token and client are configured.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.hireos.crm.field_mapping import TABULAR_DEFAULT_FIELD_NAMES, FieldMapper
from src.hireos.crm.schemas import CandidateField, ExternalContact, GoogleSheetsCredentials
from src.hireos.crm.sources.base import (
    ContactSourceAuthError,
    ContactSourceError,
    ContactSourceRequestError,
)

logger = structlog.get_logger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Rows scanned when looking up an existing contact by email
SHEETS_MAX_SCAN_ROWS = 5000

ROW_ID_PREFIX = "row_"


def _cell(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return "" if value is None else str(value)


class GoogleSheetsContactSource:
    """ContactSource over one sheet of a Google spreadsheet.

    Args:
        client_id: Google OAuth client id used for token refresh.
        client_secret: Google OAuth client secret used for token refresh.
        num_retries: Retries googleapiclient applies to 429/5xx responses.
        service_factory: Builds a Sheets API resource from google-auth
            credentials. Defaults to googleapiclient discovery.
    """

    provider_id = "google-sheets"
    default_field_names = TABULAR_DEFAULT_FIELD_NAMES
    credentials_model = GoogleSheetsCredentials

    def __init__(
        self,
        *,
        client_id: str = "",
        client_secret: str = "",
        num_retries: int = 3,
        service_factory: Callable[[Credentials], Any] | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._num_retries = num_retries
        self._service_factory = service_factory or self._build_service

    @staticmethod
    def _build_service(google_credentials: Credentials) -> Any:
        return build("sheets", "v4", credentials=google_credentials, cache_discovery=False)

    def _google_credentials(self, credentials: GoogleSheetsCredentials) -> Credentials:
        return Credentials(
            token=credentials.access_token,
            refresh_token=credentials.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id or None,
            client_secret=self._client_secret or None,
            scopes=SHEETS_SCOPES,
        )

    # ── API helpers ─────────────────────────────────────────────────────

    async def _execute(self, request_fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(request_fn)
        except HttpError as exc:
            status = exc.resp.status if exc.resp is not None else 0
            if status in (401, 403):
                raise ContactSourceAuthError(
                    f"Google Sheets rejected credentials: {exc.reason}"
                ) from exc
            raise ContactSourceRequestError(
                provider=self.provider_id,
                status_code=int(status),
                message=str(exc.reason),
            ) from exc

    async def _get_values(self, service: Any, spreadsheet_id: str, range_: str) -> list[list[Any]]:
        def _get() -> dict[str, Any]:
            return (
                service.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=range_)
                .execute(num_retries=self._num_retries)
            )

        result = await self._execute(_get)
        return result.get("values", [])

    async def _headers(self, service: Any, credentials: GoogleSheetsCredentials) -> list[str]:
        rows = await self._get_values(
            service, credentials.spreadsheet_id, f"{credentials.sheet_name}!1:1"
        )
        headers = [str(h).strip() for h in rows[0]] if rows else []
        if not any(headers):
            raise ContactSourceError(
                f"No headers found in sheet {credentials.sheet_name!r}"
            )
        return headers

    @staticmethod
    def _sync_tokens(google_credentials: Credentials, credentials: GoogleSheetsCredentials) -> None:
        # google-auth refreshes in place; carry the new token back for persistence
        if google_credentials.token and google_credentials.token != credentials.access_token:
            credentials.access_token = google_credentials.token
            logger.info("google_sheets.token_refreshed")

    # ── Reads ───────────────────────────────────────────────────────────

    async def fetch_contacts(
        self, limit: int, credentials: GoogleSheetsCredentials
    ) -> list[ExternalContact]:
        """Read data rows 2..limit+1 keyed by the header row."""
        if limit <= 0:
            return []

        google_credentials = self._google_credentials(credentials)
        service = self._service_factory(google_credentials)
        headers = await self._headers(service, credentials)
        rows = await self._get_values(
            service,
            credentials.spreadsheet_id,
            f"{credentials.sheet_name}!2:{limit + 1}",
        )
        self._sync_tokens(google_credentials, credentials)

        contacts: list[ExternalContact] = []
        for index, row in enumerate(rows[:limit]):
            row_number = index + 2
            fields = {
                header: row[col] if col < len(row) else ""
                for col, header in enumerate(headers)
                if header
            }
            if not any(str(v).strip() for v in fields.values()):
                continue
            contacts.append(
                ExternalContact(
                    id=f"{ROW_ID_PREFIX}{row_number}",
                    fields=fields,
                    metadata={"row_number": row_number},
                )
            )

        logger.info(
            "google_sheets.contacts_fetched",
            spreadsheet_id=credentials.spreadsheet_id,
            sheet=credentials.sheet_name,
            count=len(contacts),
        )
        return contacts

    # ── Writes ──────────────────────────────────────────────────────────

    async def create_or_update_contact(
        self,
        data: dict[str, Any],
        credentials: GoogleSheetsCredentials,
        *,
        updated_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Rewrite the row whose email matches, or append a new one.

        Keys of ``data`` are column headers (matched case-insensitively).
        Keys with no matching column are dropped. Columns absent from
        ``data`` keep their current cell values on update.

        Returns:
            ``{"row_number": n, "action": "created" | "updated"}``.
        """
        mapper = FieldMapper(credentials.field_mappings, self.default_field_names)
        email_header = mapper.field_name(CandidateField.EMAIL).lower()

        google_credentials = self._google_credentials(credentials)
        service = self._service_factory(google_credentials)
        headers = await self._headers(service, credentials)
        lowered = [h.lower() for h in headers]

        values_by_col: dict[int, str] = {}
        dropped: list[str] = []
        for key, value in data.items():
            if key.lower() in lowered:
                values_by_col[lowered.index(key.lower())] = _cell(value)
            else:
                dropped.append(key)
        if dropped:
            logger.warning("google_sheets.unknown_columns_dropped", columns=dropped)

        if email_header not in lowered:
            raise ContactSourceError(f"Sheet has no {email_header!r} column")
        email_col = lowered.index(email_header)
        email = values_by_col.get(email_col, "").strip().lower()
        if not email:
            raise ContactSourceError("Google Sheets upsert requires an email value")

        existing_rows = await self._get_values(
            service,
            credentials.spreadsheet_id,
            f"{credentials.sheet_name}!2:{SHEETS_MAX_SCAN_ROWS + 1}",
        )
        row_number: int | None = None
        current: list[Any] = []
        for index, row in enumerate(existing_rows):
            if email_col < len(row) and str(row[email_col]).strip().lower() == email:
                row_number = index + 2
                current = list(row)
                break

        row_values = [_cell(current[col]) if col < len(current) else "" for col in range(len(headers))]
        for col, value in values_by_col.items():
            row_values[col] = value

        spreadsheet_id = credentials.spreadsheet_id
        sheet = credentials.sheet_name

        if row_number is not None:
            def _update() -> dict[str, Any]:
                return (
                    service.spreadsheets()
                    .values()
                    .update(
                        spreadsheetId=spreadsheet_id,
                        range=f"{sheet}!{row_number}:{row_number}",
                        valueInputOption="RAW",
                        body={"values": [row_values]},
                    )
                    .execute(num_retries=self._num_retries)
                )

            await self._execute(_update)
            action = "updated"
        else:
            def _append() -> dict[str, Any]:
                return (
                    service.spreadsheets()
                    .values()
                    .append(
                        spreadsheetId=spreadsheet_id,
                        range=sheet,
                        valueInputOption="RAW",
                        insertDataOption="INSERT_ROWS",
                        body={"values": [row_values]},
                    )
                    .execute(num_retries=self._num_retries)
                )

            await self._execute(_append)
            row_number = len(existing_rows) + 2
            action = "created"

        self._sync_tokens(google_credentials, credentials)
        logger.info("google_sheets.contact_written", row_number=row_number, action=action)
        return {"row_number": row_number, "action": action}
