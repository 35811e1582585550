"""API router aggregating all v1 routes."""

from __future__ import annotations

from fastapi import APIRouter

from .calendars import router as calendars_router
from .team import router as team_router

router = APIRouter()

router.include_router(calendars_router)
router.include_router(team_router)
