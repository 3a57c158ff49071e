"""CandidateStore -- the internal persistence seam used by reconciliation.

The reconciliation engine only reads and writes candidates through this
interface. RepositoryCandidateStore is the production implementation
backed by CandidateRepository.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from src.hireos.candidates.repository import CandidateRepository
from src.hireos.candidates.schemas import (
    CandidateCreate,
    CandidateFilter,
    CandidateRead,
    CandidateUpdate,
    JobRead,
)

logger = structlog.get_logger(__name__)


class CandidateStore(ABC):
    """Abstract interface for internal candidate persistence.

    Methods:
        list_candidates: List candidates matching an optional filter.
        create_candidate: Insert a candidate, return the stored record.
        update_candidate: Apply a partial update, return the stored record.
        list_jobs: List jobs, optionally by status (for default assignment).
    """

    @abstractmethod
    async def list_candidates(self, filters: CandidateFilter | None = None) -> list[CandidateRead]:
        """List candidates matching filter criteria."""
        ...

    @abstractmethod
    async def create_candidate(self, data: CandidateCreate) -> CandidateRead:
        """Create a candidate."""
        ...

    @abstractmethod
    async def update_candidate(self, candidate_id: int, data: CandidateUpdate) -> CandidateRead:
        """Update candidate fields by ID."""
        ...

    @abstractmethod
    async def list_jobs(self, status: str | None = None) -> list[JobRead]:
        """List jobs, oldest first."""
        ...


class RepositoryCandidateStore(CandidateStore):
    """CandidateStore backed by CandidateRepository.

    Args:
        repository: CandidateRepository instance for database operations.
    """

    def __init__(self, repository: CandidateRepository) -> None:
        self._repo = repository

    async def list_candidates(self, filters: CandidateFilter | None = None) -> list[CandidateRead]:
        return await self._repo.list_candidates(filters)

    async def create_candidate(self, data: CandidateCreate) -> CandidateRead:
        return await self._repo.create_candidate(data)

    async def update_candidate(self, candidate_id: int, data: CandidateUpdate) -> CandidateRead:
        return await self._repo.update_candidate(candidate_id, data)

    async def list_jobs(self, status: str | None = None) -> list[JobRead]:
        return await self._repo.list_jobs(status)
