"""ContactSource adapters for external contact stores.

- AirtableContactSource: Airtable tables (REST, offset pagination)
- GoogleSheetsContactSource: Google Sheets (header row + data rows)
- GHLContactSource: GoHighLevel contacts (cursor pagination, OAuth refresh)
"""

from src.hireos.crm.sources.airtable import AirtableContactSource
from src.hireos.crm.sources.base import (
    ContactSource,
    ContactSourceAuthError,
    ContactSourceError,
    ContactSourceRequestError,
    FieldRejectedError,
    RateLimitedError,
)
from src.hireos.crm.sources.ghl import GHLContactSource
from src.hireos.crm.sources.google_sheets import GoogleSheetsContactSource
from src.hireos.crm.sources.registry import SourceRegistry, UnknownProviderError, build_registry

__all__ = [
    "AirtableContactSource",
    "ContactSource",
    "ContactSourceAuthError",
    "ContactSourceError",
    "ContactSourceRequestError",
    "FieldRejectedError",
    "GHLContactSource",
    "GoogleSheetsContactSource",
    "RateLimitedError",
    "SourceRegistry",
    "UnknownProviderError",
    "build_registry",
]
