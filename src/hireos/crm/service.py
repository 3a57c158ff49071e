"""ReconciliationService -- provider-id entry points around the planner.

Resolves an integration id to its ContactSource, parses the stored
credential blob, applies the per-provider fetch window and wraps each
run in the optional wall-clock budget.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any, TypeVar

import structlog
from pydantic.alias_generators import to_camel

from src.hireos.candidates.schemas import CandidateRead
from src.hireos.config import Settings
from src.hireos.crm.matching import Matcher
from src.hireos.crm.planner import ReconciliationPlanner
from src.hireos.crm.schemas import JobAssignment, ProviderCredentials, SyncOptions, SyncResult
from src.hireos.crm.sources.registry import SourceRegistry
from src.hireos.crm.store import CandidateStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ReconciliationTimeoutError(TimeoutError):
    """A reconciliation run exceeded its wall-clock budget; its partial result is discarded."""

    def __init__(self, provider_id: str, timeout: float) -> None:
        self.provider_id = provider_id
        self.timeout = timeout
        super().__init__(f"{provider_id} reconciliation exceeded {timeout:g}s")


def rotated_tokens(credentials: ProviderCredentials, stored: dict[str, Any]) -> dict[str, Any]:
    """OAuth tokens an adapter replaced during a run, keyed in the stored blob's style.

    Adapters refresh tokens in place on the parsed credentials. Each
    changed token is returned under the key the stored blob already uses
    (``access_token`` or ``accessToken``). Empty when nothing rotated.
    """
    rotated: dict[str, Any] = {}
    for name in ("access_token", "refresh_token"):
        value = getattr(credentials, name, None)
        key = name if name in stored else to_camel(name)
        if value and stored.get(key) != value:
            rotated[key] = value
    return rotated


class ReconciliationService:
    """Runs reconciliation for a provider id.

    Args:
        store: Internal candidate persistence.
        registry: Provider id -> ContactSource lookup.
        settings: Fetch windows, timeout and matching configuration.
    """

    def __init__(
        self,
        store: CandidateStore,
        registry: SourceRegistry,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._planner = ReconciliationPlanner(
            store,
            matcher=Matcher(name_fallback=settings.SYNC_NAME_FALLBACK),
        )

    def credentials(
        self, provider_id: str, credentials: ProviderCredentials | dict[str, Any]
    ) -> ProviderCredentials:
        """Parse a raw credential blob with the provider's model (models pass through)."""
        if isinstance(credentials, ProviderCredentials):
            return credentials
        return self._registry.parse_credentials(provider_id, credentials)

    async def preview(
        self,
        provider_id: str,
        credentials: ProviderCredentials | dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> SyncResult:
        """Dry-run reconciliation for ``provider_id``."""
        source = self._registry.get(provider_id)
        parsed = self.credentials(provider_id, credentials)
        return await self._with_timeout(
            provider_id,
            self._planner.preview(
                source, parsed, limit=self._registry.fetch_limit(provider_id, self._settings)
            ),
            timeout,
        )

    async def execute(
        self,
        provider_id: str,
        credentials: ProviderCredentials | dict[str, Any],
        options: SyncOptions | None = None,
        *,
        timeout: float | None = None,
    ) -> SyncResult:
        """Apply reconciliation for ``provider_id``."""
        source = self._registry.get(provider_id)
        parsed = self.credentials(provider_id, credentials)
        return await self._with_timeout(
            provider_id,
            self._planner.execute(
                source,
                parsed,
                options,
                limit=self._registry.fetch_limit(provider_id, self._settings),
            ),
            timeout,
        )

    async def create_candidates(
        self,
        provider_id: str,
        credentials: ProviderCredentials | dict[str, Any],
        assignments: list[JobAssignment],
        *,
        timeout: float | None = None,
    ) -> SyncResult:
        """Create previously deferred contacts, each with its chosen job."""
        source = self._registry.get(provider_id)
        parsed = self.credentials(provider_id, credentials)
        return await self._with_timeout(
            provider_id,
            self._planner.create_with_job_assignments(
                source,
                parsed,
                assignments,
                limit=self._registry.fetch_limit(provider_id, self._settings),
            ),
            timeout,
        )

    async def push_candidate(
        self,
        provider_id: str,
        credentials: ProviderCredentials | dict[str, Any],
        candidate: CandidateRead,
        job_title: str | None = None,
    ) -> dict[str, Any]:
        """Write one candidate to the provider."""
        source = self._registry.get(provider_id)
        parsed = self.credentials(provider_id, credentials)
        return await self._planner.push_candidate(source, candidate, parsed, job_title=job_title)

    async def _with_timeout(
        self,
        provider_id: str,
        run: Awaitable[T],
        timeout: float | None,
    ) -> T:
        budget = self._settings.SYNC_RUN_TIMEOUT_SECONDS if timeout is None else timeout
        if not budget or budget <= 0:
            return await run
        try:
            return await asyncio.wait_for(run, timeout=budget)
        except asyncio.TimeoutError as exc:
            logger.error("reconcile.run_timed_out", provider=provider_id, timeout=budget)
            raise ReconciliationTimeoutError(provider_id, budget) from exc
