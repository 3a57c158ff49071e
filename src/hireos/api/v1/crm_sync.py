"""REST API endpoints for candidate/CRM reconciliation.

Credentials are resolved from the stored platform integration for the
provider; callers only name the provider and pass run options. Tokens
refreshed by an adapter during a run are written back to the integration.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError

from src.hireos.crm.schemas import JobAssignment, ProviderCredentials, SyncOptions, SyncResult
from src.hireos.crm.service import (
    ReconciliationService,
    ReconciliationTimeoutError,
    rotated_tokens,
)
from src.hireos.crm.sources.registry import UnknownProviderError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/crm-sync", tags=["crm-sync"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class ExecuteRequest(BaseModel):
    """Request body for an execute run.

    Omit ``selected_contact_ids`` to create every eligible new contact;
    send an empty list to create none.
    """

    selected_contact_ids: list[str] | None = None
    skip_new_candidates: bool = False
    job_id: int | None = None


class CreateCandidatesRequest(BaseModel):
    """Request body for creating deferred contacts with job assignments."""

    assignments: list[JobAssignment] = Field(default_factory=list)


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_service(request: Request) -> ReconciliationService:
    """Retrieve ReconciliationService from app.state, 503 if not available."""
    service = getattr(request.app.state, "reconciliation_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRM sync not initialized",
        )
    return service


def _get_integration_repository(request: Request) -> Any:
    """Retrieve IntegrationRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "integration_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Integrations not initialized",
        )
    return repo


async def _resolve_credentials(
    request: Request, provider_id: str
) -> tuple[ProviderCredentials, dict[str, Any]]:
    """Load and parse the stored credentials for ``provider_id``.

    Returns:
        Parsed credentials plus the raw stored blob.
    """
    service = _get_service(request)
    repo = _get_integration_repository(request)

    integration = await repo.get_integration(provider_id)
    if integration is None or not integration.is_connected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{provider_id} integration not connected",
        )

    try:
        credentials = service.credentials(provider_id, integration.credentials)
    except UnknownProviderError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{provider_id} credentials incomplete: {exc.error_count()} invalid field(s)",
        ) from exc
    return credentials, integration.credentials


async def _persist_refreshed_tokens(
    request: Request,
    provider_id: str,
    credentials: ProviderCredentials,
    stored: dict[str, Any],
) -> None:
    """Write rotated OAuth tokens back to the integration.

    Called after every run, including ones that failed or timed out; the
    provider has already invalidated the previous refresh token by then.
    """
    refreshed = rotated_tokens(credentials, stored)
    if not refreshed:
        return
    repo = _get_integration_repository(request)
    await repo.save_credentials(provider_id, {**stored, **refreshed})
    logger.info("crm_sync.tokens_persisted", provider=provider_id, keys=sorted(refreshed))


def _check_provider(request: Request, provider_id: str) -> None:
    registry = getattr(request.app.state, "source_registry", None)
    if registry is not None and provider_id not in registry.provider_ids():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unsupported CRM provider: {provider_id}",
        )


async def _run(run: Any) -> SyncResult:
    try:
        return await run
    except UnknownProviderError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ReconciliationTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(request: Request) -> dict[str, list[str]]:
    """List provider ids with a registered ContactSource."""
    registry = getattr(request.app.state, "source_registry", None)
    return {"providers": registry.provider_ids() if registry is not None else []}


@router.post("/{provider_id}/preview", response_model=SyncResult)
async def preview_sync(provider_id: str, request: Request) -> SyncResult:
    """Dry run: report what execute would do, without writing."""
    _check_provider(request, provider_id)
    credentials, stored = await _resolve_credentials(request, provider_id)
    service = _get_service(request)
    try:
        return await _run(service.preview(provider_id, credentials))
    finally:
        await _persist_refreshed_tokens(request, provider_id, credentials, stored)


@router.post("/{provider_id}/execute", response_model=SyncResult)
async def execute_sync(
    provider_id: str,
    request: Request,
    body: ExecuteRequest | None = None,
) -> SyncResult:
    """Apply reconciliation: update changed candidates, create selected new ones."""
    _check_provider(request, provider_id)
    body = body or ExecuteRequest()
    credentials, stored = await _resolve_credentials(request, provider_id)
    service = _get_service(request)
    options = SyncOptions(
        selected_contact_ids=body.selected_contact_ids,
        skip_new_candidates=body.skip_new_candidates,
        job_id=body.job_id,
    )
    try:
        return await _run(service.execute(provider_id, credentials, options))
    finally:
        await _persist_refreshed_tokens(request, provider_id, credentials, stored)


@router.post("/{provider_id}/create-candidates", response_model=SyncResult)
async def create_candidates(
    provider_id: str,
    body: CreateCandidatesRequest,
    request: Request,
) -> SyncResult:
    """Create deferred contacts, each assigned to its chosen job."""
    _check_provider(request, provider_id)
    credentials, stored = await _resolve_credentials(request, provider_id)
    service = _get_service(request)
    try:
        return await _run(
            service.create_candidates(provider_id, credentials, body.assignments)
        )
    finally:
        await _persist_refreshed_tokens(request, provider_id, credentials, stored)
