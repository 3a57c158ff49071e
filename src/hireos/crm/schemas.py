"""Pydantic schemas for candidate/CRM reconciliation.

Defines:
- CandidateField: Internal (HireOS) field names used as field-mapping keys
- ExternalContact: Generic provider record handed out by every ContactSource
- Provider credentials: Airtable, Google Sheets, GoHighLevel
- SyncAction, SyncDetail, ContactDecision, SyncResult: Run output
- SyncOptions, JobAssignment: Execute-mode inputs
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Enums ───────────────────────────────────────────────────────────────────


class CandidateField(str, Enum):
    """HireOS field names, as used for keys in a per-integration field mapping."""

    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    LOCATION = "location"
    EXPECTED_SALARY = "expectedSalary"
    EXPERIENCE_YEARS = "experienceYears"
    SKILLS = "skills"
    STATUS = "status"
    JOB_TITLE = "jobTitle"


class SyncAction(str, Enum):
    """Outcome recorded for one external contact."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


# ── External Contacts ───────────────────────────────────────────────────────


class ExternalContact(BaseModel):
    """One record fetched from a ContactSource.

    ``id`` is provider-native and stable across calls. ``fields`` is the
    provider's own key/value view of the record (Airtable field names,
    spreadsheet column headers, CRM attribute names). ``last_modified`` is
    only set when the provider reports it.
    """

    id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    last_modified: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Credentials ─────────────────────────────────────────────────────────────


class ProviderCredentials(BaseModel):
    """Base for provider credential blobs.

    Accepts the camelCase keys stored on platform integrations
    (``apiKey``, ``fieldMappings``...) as well as snake_case names.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    field_mappings: dict[str, str] = Field(default_factory=dict)


class AirtableCredentials(ProviderCredentials):
    """API key plus base/table identifiers."""

    api_key: str
    base_id: str
    table_name: str = "Candidates"


class GoogleSheetsCredentials(ProviderCredentials):
    """OAuth tokens plus spreadsheet identifier."""

    access_token: str
    refresh_token: str | None = None
    spreadsheet_id: str
    sheet_name: str = "Sheet1"


class GHLCredentials(ProviderCredentials):
    """GoHighLevel OAuth tokens (or a static API key as access_token)."""

    access_token: str
    refresh_token: str | None = None
    location_id: str | None = None


# ── Sync Output ─────────────────────────────────────────────────────────────


class SyncDetail(BaseModel):
    """Audit-log entry for one external contact."""

    contact_id: str
    external_name: str
    candidate_name: str = "N/A"
    action: SyncAction
    reason: str


class ContactDecision(BaseModel):
    """Immutable outcome of processing one external contact.

    ``matched`` marks contacts that resolved to an existing candidate,
    regardless of what happened afterwards. ``error`` carries the message
    surfaced in the run-level error banner.
    """

    model_config = ConfigDict(frozen=True)

    detail: SyncDetail
    matched: bool = False
    error: str | None = None


class SyncResult(BaseModel):
    """Summary of one reconciliation run.

    Built fresh per run by folding ContactDecisions in source order;
    never persisted.
    """

    success: bool = False
    total_external_contacts: int = 0
    total_candidates: int = 0
    matched: int = 0
    updated: int = 0
    created: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    details: list[SyncDetail] = Field(default_factory=list)

    def record(self, decision: ContactDecision) -> SyncResult:
        """Return a new SyncResult with ``decision`` folded in."""
        action = decision.detail.action
        return self.model_copy(
            update={
                "matched": self.matched + int(decision.matched),
                "updated": self.updated + int(action == SyncAction.UPDATED),
                "created": self.created + int(action == SyncAction.CREATED),
                "skipped": self.skipped + int(action == SyncAction.SKIPPED),
                "errors": [*self.errors, decision.error] if decision.error else self.errors,
                "details": [*self.details, decision.detail],
            }
        )

    @classmethod
    def failed(cls, message: str) -> SyncResult:
        """Run-level failure: zero counts and a single error string."""
        return cls(success=False, errors=[message])


# ── Execute Inputs ──────────────────────────────────────────────────────────


class SyncOptions(BaseModel):
    """Execute-mode options.

    ``selected_contact_ids`` of None means "create every eligible unmatched
    contact"; an empty list means "create none".
    """

    selected_contact_ids: list[str] | None = None
    skip_new_candidates: bool = False
    job_id: int | None = None
    assign_default_job: bool = True


class JobAssignment(BaseModel):
    """Second-pass creation request: one external contact to one job."""

    contact_id: str
    job_id: int | None = None
