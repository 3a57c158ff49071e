"""Integration repository -- lookup and credential persistence for platforms."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.hireos.integrations.models import PlatformIntegrationModel

logger = structlog.get_logger(__name__)


class IntegrationRead(BaseModel):
    """A stored platform integration."""

    platform_id: str
    status: str
    credentials: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_connected(self) -> bool:
        return self.status == "connected"


class IntegrationRepository:
    """Reads and writes platform integrations.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_integration(self, platform_id: str) -> IntegrationRead | None:
        """Get the integration for a platform, or None if never connected."""
        async for session in self._session_factory():
            stmt = select(PlatformIntegrationModel).where(
                PlatformIntegrationModel.platform_id == platform_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return IntegrationRead(
                platform_id=model.platform_id,
                status=model.status,
                credentials=dict(model.credentials or {}),
            )

    async def save_credentials(
        self, platform_id: str, credentials: dict[str, Any]
    ) -> None:
        """Persist refreshed credentials (e.g. a rotated OAuth access token).

        Raises:
            ValueError: If the platform has no stored integration.
        """
        async for session in self._session_factory():
            stmt = select(PlatformIntegrationModel).where(
                PlatformIntegrationModel.platform_id == platform_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(f"Integration not found: {platform_id}")

            model.credentials = credentials
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            logger.info("integrations.credentials_saved", platform_id=platform_id)
