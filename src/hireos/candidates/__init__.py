"""Candidate management module -- persistence models, schemas, and repository.

Provides SQLAlchemy models (Candidate, Job), Pydantic schemas for
candidate reads/writes, and CandidateRepository for async CRUD.
"""
