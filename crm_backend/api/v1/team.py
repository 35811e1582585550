"""Team member API routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from crm_backend.core.dependencies import get_team_repository
from crm_backend.domains.team.repository import TeamRepository
from crm_backend.domains.team.schemas import (
    TeamListResponse,
    TeamMemberCreate,
    TeamMemberCreatedResponse,
)
from crm_backend.utils.errors import SupabaseStorageError, TeamMemberConflictError

router = APIRouter(prefix="/team", tags=["team"])
logger = logging.getLogger(__name__)


@router.get("", response_model=TeamListResponse)
async def list_team(
    repository: TeamRepository = Depends(get_team_repository),
) -> TeamListResponse:
    """List active team members with their calendar connection status."""
    try:
        return TeamListResponse(team=repository.list_members())
    except SupabaseStorageError as exc:
        logger.error("Failed to load team: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load team",
        ) from exc


@router.post(
    "",
    response_model=TeamMemberCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_team_member(
    payload: TeamMemberCreate,
    repository: TeamRepository = Depends(get_team_repository),
) -> TeamMemberCreatedResponse:
    """Add a team member."""
    try:
        return TeamMemberCreatedResponse(member=repository.create_member(payload))
    except TeamMemberConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    except SupabaseStorageError as exc:
        logger.error("Failed to add team member: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to add team member",
        ) from exc
