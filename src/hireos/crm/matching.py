"""Matching external contacts to internal candidates.

Strategy, first hit wins:
1. Exact email match (case-insensitive).
2. Normalized-name match, when email produced nothing and name fallback
   is enabled.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from src.hireos.candidates.schemas import CandidateRead
from src.hireos.crm.field_mapping import FieldMapper
from src.hireos.crm.schemas import CandidateField, ExternalContact

logger = structlog.get_logger(__name__)


def normalize_name(name: str | None) -> str:
    """Canonical form of a person's name for equality checks.

    Lowercases, collapses every whitespace run (tabs and non-breaking
    spaces included), then upper-cases the first character of each token:
    ``"JOHN  q. smith"`` -> ``"John Q. Smith"``.
    """
    if not name:
        return ""
    return " ".join(token[:1].upper() + token[1:] for token in name.lower().split())


def normalize_email(email: str | None) -> str:
    """Lowercased, stripped email; empty string when missing."""
    return (email or "").strip().lower()


class Matcher:
    """Finds at most one internal candidate for an external contact.

    Args:
        name_fallback: When False, matching is email-or-nothing.
    """

    def __init__(self, name_fallback: bool = True) -> None:
        self._name_fallback = name_fallback

    def match(
        self,
        contact: ExternalContact,
        candidates: Sequence[CandidateRead],
        mapper: FieldMapper,
    ) -> CandidateRead | None:
        """Match a contact using the integration's field mapping."""
        return self.match_fields(
            mapper.text_value(contact, CandidateField.NAME),
            mapper.text_value(contact, CandidateField.EMAIL),
            candidates,
            contact_id=contact.id,
        )

    def match_fields(
        self,
        name: str | None,
        email: str | None,
        candidates: Sequence[CandidateRead],
        contact_id: str | None = None,
    ) -> CandidateRead | None:
        """Match already-extracted name/email against the candidate set."""
        wanted_email = normalize_email(email)
        if wanted_email:
            for candidate in candidates:
                if candidate.email and normalize_email(candidate.email) == wanted_email:
                    return candidate

        if not self._name_fallback or not name:
            return None

        wanted_name = normalize_name(name)
        if not wanted_name:
            return None

        for candidate in candidates:
            if normalize_name(candidate.name) == wanted_name:
                if wanted_email and normalize_email(candidate.email) != wanted_email:
                    logger.warning(
                        "reconcile.name_match_email_mismatch",
                        contact_id=contact_id,
                        candidate_id=candidate.id,
                    )
                return candidate

        return None
