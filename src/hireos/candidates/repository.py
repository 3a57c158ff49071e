"""Candidate repository -- async CRUD for candidates and jobs.

Uses the session_factory callable pattern: every method pulls a fresh
AsyncSession from the factory, so the repository itself holds no
connection state between calls.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.hireos.candidates.models import CandidateModel, JobModel
from src.hireos.candidates.schemas import (
    CandidateCreate,
    CandidateFilter,
    CandidateRead,
    CandidateUpdate,
    JobRead,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_candidate(model: CandidateModel) -> CandidateRead:
    """Convert CandidateModel to CandidateRead schema."""
    return CandidateRead(
        id=model.id,
        name=model.name,
        email=model.email,
        phone=model.phone,
        location=model.location,
        expected_salary=model.expected_salary,
        experience_years=model.experience_years,
        skills=list(model.skills or []),
        status=model.status,
        job_id=model.job_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_job(model: JobModel) -> JobRead:
    """Convert JobModel to JobRead schema."""
    return JobRead(
        id=model.id,
        title=model.title,
        status=model.status,
        created_at=model.created_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class CandidateRepository:
    """Async CRUD operations for candidates and jobs.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Candidates ──────────────────────────────────────────────────────────

    async def list_candidates(
        self, filters: CandidateFilter | None = None
    ) -> list[CandidateRead]:
        """List candidates, optionally narrowed by status or job.

        Args:
            filters: Optional CandidateFilter.

        Returns:
            Candidates ordered by id.
        """
        async for session in self._session_factory():
            stmt = select(CandidateModel).order_by(CandidateModel.id)
            if filters is not None:
                if filters.status is not None:
                    stmt = stmt.where(CandidateModel.status == filters.status)
                if filters.job_id is not None:
                    stmt = stmt.where(CandidateModel.job_id == filters.job_id)
            result = await session.execute(stmt)
            return [_model_to_candidate(m) for m in result.scalars().all()]

    async def create_candidate(self, data: CandidateCreate) -> CandidateRead:
        """Insert a new candidate.

        Args:
            data: CandidateCreate schema.

        Returns:
            CandidateRead with all persisted fields.
        """
        async for session in self._session_factory():
            model = CandidateModel(
                name=data.name,
                email=data.email,
                phone=data.phone,
                location=data.location,
                expected_salary=data.expected_salary,
                experience_years=data.experience_years,
                skills=data.skills,
                status=data.status,
                job_id=data.job_id,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info("candidates.created", candidate_id=model.id)
            return _model_to_candidate(model)

    async def update_candidate(
        self, candidate_id: int, data: CandidateUpdate
    ) -> CandidateRead:
        """Apply a partial update to a candidate.

        Args:
            candidate_id: Candidate primary key.
            data: CandidateUpdate; None fields are left untouched.

        Returns:
            Updated CandidateRead.

        Raises:
            ValueError: If the candidate does not exist.
        """
        async for session in self._session_factory():
            model = await session.get(CandidateModel, candidate_id)
            if model is None:
                raise ValueError(f"Candidate not found: id={candidate_id}")

            for key, value in data.model_dump(exclude_none=True).items():
                setattr(model, key, value)

            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "candidates.updated",
                candidate_id=candidate_id,
                fields=data.changed_fields(),
            )
            return _model_to_candidate(model)

    # ── Jobs ────────────────────────────────────────────────────────────────

    async def list_jobs(self, status: str | None = None) -> list[JobRead]:
        """List jobs, oldest first, optionally filtered by status."""
        async for session in self._session_factory():
            stmt = select(JobModel).order_by(JobModel.id)
            if status is not None:
                stmt = stmt.where(JobModel.status == status)
            result = await session.execute(stmt)
            return [_model_to_job(m) for m in result.scalars().all()]
