"""ContactSource capability interface and the errors adapters raise.

A ContactSource is any object exposing the read/write capabilities below;
adapters do not share a base class. Provider quirks (pagination,
authentication, rate limiting, field rejection) stay inside each adapter.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from src.hireos.crm.schemas import ExternalContact, ProviderCredentials


# ── Errors ──────────────────────────────────────────────────────────────────


class ContactSourceError(RuntimeError):
    """Base error for provider contact operations."""


class ContactSourceAuthError(ContactSourceError):
    """Credentials are missing, invalid, or could not be refreshed."""


class ContactSourceRequestError(ContactSourceError):
    """A provider request failed with a non-recoverable HTTP status."""

    def __init__(self, *, provider: str, status_code: int, message: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"{provider} API error ({status_code}): {message}")


class RateLimitedError(ContactSourceError):
    """HTTP 429 from a provider. ``retry_after`` is in seconds when known."""

    def __init__(self, *, provider: str, retry_after: float | None = None) -> None:
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(f"{provider} rate limited (retry after {retry_after}s)")


class FieldRejectedError(ContactSourceError):
    """The provider refused one field of a write (unknown name or invalid choice)."""

    def __init__(self, *, field_name: str | None, reason: str, message: str = "") -> None:
        self.field_name = field_name
        self.reason = reason
        super().__init__(message or f"Field {field_name!r} rejected: {reason}")


# ── Capability Interface ────────────────────────────────────────────────────


@runtime_checkable
class ContactSource(Protocol):
    """Read/write capabilities of one external contact store.

    Attributes:
        provider_id: Integration id (``airtable``, ``google-sheets``, ``ghl``).
        default_field_names: Provider names for HireOS fields with no mapping entry.
        credentials_model: Pydantic model used to parse stored credentials.
    """

    provider_id: str
    default_field_names: dict[str, str]
    credentials_model: type[ProviderCredentials]

    async def fetch_contacts(
        self, limit: int, credentials: Any
    ) -> list[ExternalContact]:
        """Fetch up to ``limit`` contacts, paging until exhausted or the limit is hit."""
        ...

    async def create_or_update_contact(
        self,
        data: dict[str, Any],
        credentials: Any,
        *,
        updated_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Write provider-native fields, matching the provider record by email."""
        ...
