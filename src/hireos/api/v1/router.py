"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.hireos.api.v1 import crm_sync, health

router = APIRouter()

router.include_router(health.router)
router.include_router(crm_sync.router)
