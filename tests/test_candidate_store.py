"""Tests for CandidateRepository and the RepositoryCandidateStore adapter.

The repository runs against a mocked AsyncSession handed out by a
session_factory async generator; no database required.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.hireos.candidates.models import CandidateModel, JobModel
from src.hireos.candidates.repository import CandidateRepository
from src.hireos.candidates.schemas import (
    CandidateCreate,
    CandidateFilter,
    CandidateRead,
    CandidateUpdate,
    JobRead,
)
from src.hireos.crm.store import CandidateStore, RepositoryCandidateStore


# ── Helpers ──────────────────────────────────────────────────────────────────


def _session_factory(session):
    async def factory():
        yield session

    return factory


def _session(**scalars_all) -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.get = AsyncMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = scalars_all.get("rows", [])
    session.execute = AsyncMock(return_value=result)
    return session


def _candidate_model(**overrides) -> CandidateModel:
    fields = {
        "id": 1,
        "name": "Jane Doe",
        "email": "jane@x.com",
        "phone": "555-1",
        "skills": ["python"],
        "status": "new",
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return CandidateModel(**fields)


# ── CandidateRepository ──────────────────────────────────────────────────────


class TestCandidateRepository:
    async def test_list_candidates_converts_models(self):
        session = _session(rows=[_candidate_model(), _candidate_model(id=2, skills=None)])
        repo = CandidateRepository(session_factory=_session_factory(session))

        candidates = await repo.list_candidates(CandidateFilter(status="new"))

        assert [c.id for c in candidates] == [1, 2]
        assert candidates[0].skills == ["python"]
        assert candidates[1].skills == []
        session.execute.assert_awaited_once()

    async def test_create_candidate(self):
        session = _session()

        async def assign_id(model):
            model.id = 42

        session.refresh.side_effect = assign_id
        repo = CandidateRepository(session_factory=_session_factory(session))

        created = await repo.create_candidate(
            CandidateCreate(name="New Person", email="new@x.com", skills=["go"], job_id=3)
        )

        assert created.id == 42
        assert created.job_id == 3
        added = session.add.call_args.args[0]
        assert isinstance(added, CandidateModel)
        assert added.email == "new@x.com"
        session.commit.assert_awaited_once()

    async def test_update_candidate_writes_only_set_fields(self):
        model = _candidate_model()
        session = _session()
        session.get.return_value = model
        repo = CandidateRepository(session_factory=_session_factory(session))

        updated = await repo.update_candidate(1, CandidateUpdate(phone="555-9"))

        assert updated.phone == "555-9"
        assert updated.name == "Jane Doe"
        assert model.updated_at is not None
        session.commit.assert_awaited_once()

    async def test_update_missing_candidate(self):
        session = _session()
        session.get.return_value = None
        repo = CandidateRepository(session_factory=_session_factory(session))

        with pytest.raises(ValueError, match="Candidate not found"):
            await repo.update_candidate(99, CandidateUpdate(phone="1"))
        session.commit.assert_not_awaited()

    async def test_list_jobs(self):
        session = _session(rows=[JobModel(id=7, title="Backend Engineer", status="active")])
        repo = CandidateRepository(session_factory=_session_factory(session))

        jobs = await repo.list_jobs("active")

        assert jobs == [JobRead(id=7, title="Backend Engineer", status="active")]


# ── RepositoryCandidateStore ─────────────────────────────────────────────────


class TestRepositoryCandidateStore:
    def test_is_abstract(self):
        with pytest.raises(TypeError):
            CandidateStore()

    async def test_delegates_to_repository(self):
        candidate = CandidateRead(id=1, name="Jane", email="jane@x.com")
        repo = AsyncMock(spec=CandidateRepository)
        repo.list_candidates.return_value = [candidate]
        repo.create_candidate.return_value = candidate
        repo.update_candidate.return_value = candidate
        repo.list_jobs.return_value = []
        store = RepositoryCandidateStore(repo)

        assert await store.list_candidates() == [candidate]
        await store.create_candidate(CandidateCreate(name="Jane", email="jane@x.com"))
        await store.update_candidate(1, CandidateUpdate(phone="1"))
        assert await store.list_jobs("active") == []

        repo.list_candidates.assert_awaited_once_with(None)
        repo.update_candidate.assert_awaited_once_with(1, CandidateUpdate(phone="1"))
        repo.list_jobs.assert_awaited_once_with("active")
