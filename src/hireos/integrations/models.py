"""Platform integration persistence model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.hireos.core.database import Base


class PlatformIntegrationModel(Base):
    """A connected external platform (Airtable, Google Sheets, GoHighLevel).

    ``credentials`` holds the provider-specific blob (API key + base/table,
    OAuth tokens + spreadsheet id) including any per-field mapping table.
    """

    __tablename__ = "platform_integrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="connected")
    credentials: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
