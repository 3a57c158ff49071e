"""SourceRegistry -- resolves integration ids to ContactSource adapters."""

from __future__ import annotations

from typing import Any

from src.hireos.config import Settings
from src.hireos.crm.schemas import ProviderCredentials
from src.hireos.crm.sources.airtable import AirtableContactSource
from src.hireos.crm.sources.base import ContactSource
from src.hireos.crm.sources.ghl import GHLContactSource
from src.hireos.crm.sources.google_sheets import GoogleSheetsContactSource


class UnknownProviderError(KeyError):
    """No adapter is registered for the requested integration id."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(provider_id)

    def __str__(self) -> str:
        return f"Unsupported CRM provider: {self.provider_id}"


class SourceRegistry:
    """Maps integration ids (``airtable``, ``google-sheets``, ``ghl``) to adapters."""

    def __init__(self, sources: list[ContactSource] | None = None) -> None:
        self._sources: dict[str, ContactSource] = {}
        for source in sources or []:
            self.register(source)

    def register(self, source: ContactSource) -> None:
        self._sources[source.provider_id] = source

    def get(self, provider_id: str) -> ContactSource:
        try:
            return self._sources[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def provider_ids(self) -> list[str]:
        return sorted(self._sources)

    def parse_credentials(self, provider_id: str, raw: dict[str, Any]) -> ProviderCredentials:
        """Validate a stored credential blob with the provider's credentials model.

        Raises:
            UnknownProviderError: If ``provider_id`` has no adapter.
            pydantic.ValidationError: If required credential keys are missing.
        """
        return self.get(provider_id).credentials_model.model_validate(raw)

    def fetch_limit(self, provider_id: str, settings: Settings) -> int:
        """Configured per-run contact window for a provider."""
        limits = {
            AirtableContactSource.provider_id: settings.AIRTABLE_FETCH_LIMIT,
            GoogleSheetsContactSource.provider_id: settings.GOOGLE_SHEETS_FETCH_LIMIT,
            GHLContactSource.provider_id: settings.GHL_FETCH_LIMIT,
        }
        return limits.get(provider_id, settings.AIRTABLE_FETCH_LIMIT)


def build_registry(settings: Settings) -> SourceRegistry:
    """Registry with the three production adapters configured from settings."""
    return SourceRegistry(
        [
            AirtableContactSource(
                timeout=settings.PROVIDER_HTTP_TIMEOUT,
                max_retries=settings.PROVIDER_MAX_RETRIES,
                max_retry_wait=settings.PROVIDER_RETRY_MAX_WAIT,
            ),
            GoogleSheetsContactSource(
                client_id=settings.GOOGLE_CLIENT_ID,
                client_secret=settings.GOOGLE_CLIENT_SECRET,
                num_retries=settings.PROVIDER_MAX_RETRIES,
            ),
            GHLContactSource(
                client_id=settings.GHL_CLIENT_ID,
                client_secret=settings.GHL_CLIENT_SECRET,
                timeout=settings.PROVIDER_HTTP_TIMEOUT,
                max_retries=settings.PROVIDER_MAX_RETRIES,
                max_retry_wait=settings.PROVIDER_RETRY_MAX_WAIT,
            ),
        ]
    )
