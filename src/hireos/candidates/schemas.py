"""Pydantic schemas for candidates and jobs.

- CandidateStatus: Pipeline stages a candidate moves through
- CandidateCreate / CandidateUpdate / CandidateRead / CandidateFilter
- JobRead
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class CandidateStatus(str, Enum):
    """Hiring pipeline stage."""

    NEW = "new"
    ASSESSMENT_SENT = "assessment_sent"
    ASSESSMENT_COMPLETED = "assessment_completed"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    OFFER_SENT = "offer_sent"
    TALENT_POOL = "talent_pool"
    REJECTED = "rejected"
    HIRED = "hired"


class CandidateCreate(BaseModel):
    """Schema for creating a candidate. Email is the only hard requirement."""

    name: str
    email: str = Field(min_length=1)
    phone: str | None = None
    location: str | None = None
    expected_salary: str | None = None
    experience_years: int | None = None
    skills: list[str] | None = None
    status: str = CandidateStatus.NEW.value
    job_id: int | None = None


class CandidateUpdate(BaseModel):
    """Partial candidate update -- only non-None fields are written."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    location: str | None = None
    expected_salary: str | None = None
    experience_years: int | None = None
    skills: list[str] | None = None
    status: str | None = None
    job_id: int | None = None

    def changed_fields(self) -> list[str]:
        """Names of the fields this update would write."""
        return list(self.model_dump(exclude_none=True).keys())


class CandidateRead(BaseModel):
    """Schema for reading a candidate (includes all persisted fields)."""

    id: int
    name: str
    email: str
    phone: str | None = None
    location: str | None = None
    expected_salary: str | None = None
    experience_years: int | None = None
    skills: list[str] = Field(default_factory=list)
    status: str = CandidateStatus.NEW.value
    job_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CandidateFilter(BaseModel):
    """Optional filters for listing candidates."""

    status: str | None = None
    job_id: int | None = None


class JobRead(BaseModel):
    """Schema for reading a job."""

    id: int
    title: str
    status: str = "active"
    created_at: datetime | None = None
