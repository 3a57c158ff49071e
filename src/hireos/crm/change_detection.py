"""Change detection between an external contact and its matched candidate.

An absent external value never counts as a change: it means "no opinion",
not "clear this field". Skills compare order-insensitively.
"""

from __future__ import annotations

import re
from typing import Any

from src.hireos.candidates.schemas import CandidateRead, CandidateUpdate
from src.hireos.crm.field_mapping import FieldMapper
from src.hireos.crm.matching import normalize_email, normalize_name
from src.hireos.crm.schemas import CandidateField, ExternalContact

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ── Value Coercion ─────────────────────────────────────────────────────────


def coerce_int(value: Any) -> int | None:
    """Integer view of a provider value, or None when it isn't numeric.

    Strings are read up to the first non-digit (``"5 years"`` -> 5).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT.match(str(value))
    if match is None:
        return None
    return int(match.group(1))


def parse_skills(value: Any) -> list[str]:
    """Skills as a list: comma-separated strings are split, blanks dropped."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


def skills_key(skills: list[str] | None) -> str:
    """Order-insensitive comparison key for a skills list."""
    return ",".join(sorted(skills or []))


# ── ChangeDetector ─────────────────────────────────────────────────────────


class ChangeDetector:
    """Decides whether a matched contact differs materially from its candidate."""

    def diff(
        self,
        contact: ExternalContact,
        candidate: CandidateRead,
        mapper: FieldMapper,
    ) -> CandidateUpdate:
        """Build a partial update holding only the fields that actually differ."""
        changes: dict[str, Any] = {}

        name = mapper.text_value(contact, CandidateField.NAME)
        if name and normalize_name(name) != normalize_name(candidate.name):
            changes["name"] = name

        email = mapper.text_value(contact, CandidateField.EMAIL)
        if email and normalize_email(email) != normalize_email(candidate.email):
            changes["email"] = email

        phone = mapper.text_value(contact, CandidateField.PHONE)
        if phone and phone != candidate.phone:
            changes["phone"] = phone

        location = mapper.text_value(contact, CandidateField.LOCATION)
        if location and location != candidate.location:
            changes["location"] = location

        salary = mapper.text_value(contact, CandidateField.EXPECTED_SALARY)
        if salary and salary != candidate.expected_salary:
            changes["expected_salary"] = salary

        experience = coerce_int(mapper.field_value(contact, CandidateField.EXPERIENCE_YEARS))
        if experience is not None and experience != candidate.experience_years:
            changes["experience_years"] = experience

        skills = parse_skills(mapper.field_value(contact, CandidateField.SKILLS))
        if skills and skills_key(skills) != skills_key(candidate.skills):
            changes["skills"] = skills

        return CandidateUpdate(**changes)

    def has_changes(
        self,
        contact: ExternalContact,
        candidate: CandidateRead,
        mapper: FieldMapper,
    ) -> bool:
        """True when any mapped field differs from the stored candidate."""
        return bool(self.diff(contact, candidate, mapper).changed_fields())
