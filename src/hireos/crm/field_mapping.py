"""Field mapping between HireOS candidate fields and provider field names.

Defines:
- TABULAR_DEFAULT_FIELD_NAMES: Column/field names assumed for Airtable tables
  and Google Sheets when an integration has no mapping entry for a field.
- GHL_DEFAULT_FIELD_NAMES: Attribute names of a flattened GoHighLevel contact.
- CANDIDATE_STATUS_LABELS: Human-readable status labels written to providers.
- field_name() / field_value(): Resolve a HireOS field against one contact.
- FieldMapper: The same lookups bound to one integration's mapping table,
  plus candidate -> provider field conversion for outbound writes.
"""

from __future__ import annotations

from typing import Any

from src.hireos.candidates.schemas import CandidateRead
from src.hireos.crm.schemas import CandidateField, ExternalContact


# ── Default Field Names ────────────────────────────────────────────────────

TABULAR_DEFAULT_FIELD_NAMES: dict[str, str] = {
    CandidateField.NAME.value: "Name",
    CandidateField.EMAIL.value: "Email",
    CandidateField.PHONE.value: "Phone",
    CandidateField.LOCATION.value: "Location",
    CandidateField.EXPECTED_SALARY.value: "Expected Salary",
    CandidateField.EXPERIENCE_YEARS.value: "Experience Years",
    CandidateField.SKILLS.value: "Skills",
    CandidateField.STATUS.value: "Status",
    CandidateField.JOB_TITLE.value: "Job Title",
}

# Custom fields are flattened by id; point mappings at the custom field id
GHL_DEFAULT_FIELD_NAMES: dict[str, str] = {
    CandidateField.NAME.value: "contactName",
    CandidateField.EMAIL.value: "email",
    CandidateField.PHONE.value: "phone",
    CandidateField.LOCATION.value: "city",
    CandidateField.EXPECTED_SALARY.value: "expectedSalary",
    CandidateField.EXPERIENCE_YEARS.value: "experienceYears",
    CandidateField.SKILLS.value: "skills",
    CandidateField.STATUS.value: "status",
    CandidateField.JOB_TITLE.value: "jobTitle",
}

CANDIDATE_STATUS_LABELS: dict[str, str] = {
    "new": "New Application",
    "assessment_sent": "Assessment Sent",
    "assessment_completed": "Assessment Completed",
    "interview_scheduled": "Interview Scheduled",
    "interview_completed": "Interview Completed",
    "offer_sent": "Offer Sent",
    "talent_pool": "Talent Pool",
    "rejected": "Rejected",
    "hired": "Hired",
}


def _key(field: CandidateField | str) -> str:
    return field.value if isinstance(field, CandidateField) else field


# ── Lookup Functions ───────────────────────────────────────────────────────


def field_name(
    field: CandidateField | str,
    mapping: dict[str, str] | None = None,
    defaults: dict[str, str] | None = None,
) -> str:
    """Resolve the provider field name for a HireOS field.

    A non-empty mapping entry wins; otherwise the documented default name
    is used; a field with no default maps to its own HireOS name.
    """
    key = _key(field)
    if mapping and mapping.get(key):
        return mapping[key]
    if defaults is None:
        defaults = TABULAR_DEFAULT_FIELD_NAMES
    return defaults.get(key, key)


def field_value(
    contact: ExternalContact,
    field: CandidateField | str,
    mapping: dict[str, str] | None = None,
    defaults: dict[str, str] | None = None,
) -> Any:
    """Read a HireOS field from an external contact.

    Looks the resolved name up exactly first, then scans the contact's keys
    case-insensitively. Returns None when the field is absent.
    """
    name = field_name(field, mapping, defaults)
    fields = contact.fields

    if name in fields:
        return fields[name]

    lowered = name.lower()
    for key, value in fields.items():
        if key.lower() == lowered:
            return value

    return None


# ── FieldMapper ────────────────────────────────────────────────────────────


class FieldMapper:
    """Field lookups bound to one integration's mapping and one provider's defaults.

    Args:
        mapping: Per-integration ``{hireos_field: provider_field}`` table.
        defaults: Provider default names used when the mapping has no entry.
    """

    def __init__(
        self,
        mapping: dict[str, str] | None = None,
        defaults: dict[str, str] | None = None,
    ) -> None:
        self._mapping = dict(mapping or {})
        self._defaults = dict(defaults if defaults is not None else TABULAR_DEFAULT_FIELD_NAMES)

    def field_name(self, field: CandidateField | str) -> str:
        """Provider field name for ``field``."""
        return field_name(field, self._mapping, self._defaults)

    def field_value(self, contact: ExternalContact, field: CandidateField | str) -> Any:
        """Raw provider value for ``field``, or None when absent."""
        return field_value(contact, field, self._mapping, self._defaults)

    def text_value(self, contact: ExternalContact, field: CandidateField | str) -> str | None:
        """Stripped string value for ``field``; blank values count as absent."""
        value = self.field_value(contact, field)
        if value is None:
            return None
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        text = str(value).strip()
        return text or None

    def to_provider_fields(
        self,
        candidate: CandidateRead,
        job_title: str | None = None,
    ) -> dict[str, Any]:
        """Convert a candidate into provider-native fields for an outbound write.

        Only fields with a value are included. Status is written as its
        human-readable label and skipped when it has none.
        """
        values: dict[CandidateField, Any] = {
            CandidateField.NAME: candidate.name,
            CandidateField.EMAIL: candidate.email,
            CandidateField.PHONE: candidate.phone,
            CandidateField.LOCATION: candidate.location,
            CandidateField.EXPECTED_SALARY: candidate.expected_salary,
            CandidateField.EXPERIENCE_YEARS: candidate.experience_years,
            CandidateField.SKILLS: ", ".join(candidate.skills) if candidate.skills else None,
            CandidateField.STATUS: CANDIDATE_STATUS_LABELS.get(candidate.status),
            CandidateField.JOB_TITLE: job_title,
        }

        fields: dict[str, Any] = {}
        for field, value in values.items():
            if value is None or value == "":
                continue
            fields[self.field_name(field)] = value
        return fields
