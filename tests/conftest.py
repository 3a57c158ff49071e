"""Shared fixtures for reconciliation tests.

Provides:
- InMemoryCandidateStore: CandidateStore backed by a dict, with failure hooks
- FakeContactSource: ContactSource returning canned contacts, recording writes
- store / source / credentials fixtures
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from src.hireos.candidates.schemas import (
    CandidateCreate,
    CandidateFilter,
    CandidateRead,
    CandidateUpdate,
    JobRead,
)
from src.hireos.crm.field_mapping import TABULAR_DEFAULT_FIELD_NAMES
from src.hireos.crm.schemas import ExternalContact, ProviderCredentials
from src.hireos.crm.store import CandidateStore


class InMemoryCandidateStore(CandidateStore):
    """CandidateStore over a dict. ``fail_update_ids`` / ``fail_create_emails`` force errors."""

    def __init__(self) -> None:
        self.candidates: dict[int, CandidateRead] = {}
        self.jobs: list[JobRead] = []
        self.created: list[CandidateCreate] = []
        self.updates: list[tuple[int, CandidateUpdate]] = []
        self.list_calls = 0
        self.fail_update_ids: set[int] = set()
        self.fail_create_emails: set[str] = set()
        self.fail_list: Exception | None = None
        self._next_id = 1

    def add(self, **fields: Any) -> CandidateRead:
        """Seed a candidate directly (not recorded as a create)."""
        fields.setdefault("id", self._next_id)
        fields.setdefault("updated_at", datetime(2026, 1, 1, tzinfo=timezone.utc))
        candidate = CandidateRead(**fields)
        self.candidates[candidate.id] = candidate
        self._next_id = max(self._next_id, candidate.id + 1)
        return candidate

    def add_job(self, job_id: int, title: str, status: str = "active") -> JobRead:
        job = JobRead(id=job_id, title=title, status=status)
        self.jobs.append(job)
        return job

    async def list_candidates(self, filters: CandidateFilter | None = None) -> list[CandidateRead]:
        self.list_calls += 1
        if self.fail_list is not None:
            raise self.fail_list
        return list(self.candidates.values())

    async def create_candidate(self, data: CandidateCreate) -> CandidateRead:
        if data.email in self.fail_create_emails:
            raise RuntimeError("insert rejected")
        self.created.append(data)
        fields = data.model_dump()
        fields["skills"] = fields["skills"] or []
        return self.add(**fields)

    async def update_candidate(self, candidate_id: int, data: CandidateUpdate) -> CandidateRead:
        if candidate_id in self.fail_update_ids:
            raise RuntimeError("write refused")
        self.updates.append((candidate_id, data))
        current = self.candidates[candidate_id]
        updated = current.model_copy(update=data.model_dump(exclude_none=True))
        self.candidates[candidate_id] = updated
        return updated

    async def list_jobs(self, status: str | None = None) -> list[JobRead]:
        return [job for job in self.jobs if status is None or job.status == status]


class FakeContactSource:
    """ContactSource with canned contacts and tabular default field names."""

    provider_id = "fake"
    default_field_names = TABULAR_DEFAULT_FIELD_NAMES
    credentials_model = ProviderCredentials

    def __init__(self, contacts: list[ExternalContact] | None = None) -> None:
        self.contacts = list(contacts or [])
        self.fetch_error: Exception | None = None
        self.fetch_limits: list[int] = []
        self.writes: list[tuple[dict[str, Any], datetime | None]] = []

    async def fetch_contacts(self, limit: int, credentials: Any) -> list[ExternalContact]:
        self.fetch_limits.append(limit)
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.contacts[:limit]

    async def create_or_update_contact(
        self,
        data: dict[str, Any],
        credentials: Any,
        *,
        updated_at: datetime | None = None,
    ) -> dict[str, Any]:
        self.writes.append((data, updated_at))
        return {"id": "ext-1", "fields": data}


@pytest.fixture
def store() -> InMemoryCandidateStore:
    return InMemoryCandidateStore()


@pytest.fixture
def source() -> FakeContactSource:
    return FakeContactSource()


@pytest.fixture
def credentials() -> ProviderCredentials:
    return ProviderCredentials()
