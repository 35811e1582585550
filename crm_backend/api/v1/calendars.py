"""Team calendar API routes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import RedirectResponse

from crm_backend.core.dependencies import get_calendar_service
from crm_backend.domains.calendars.providers.google import build_app_redirect_url
from crm_backend.domains.calendars.schemas import (
    ConnectionStatus,
    ConnectionUpdate,
    TeamEventsResponse,
)
from crm_backend.domains.calendars.service import CalendarService, parse_range_bound
from crm_backend.utils.errors import (
    CalendarServiceError,
    GoogleOAuthError,
    SupabaseStorageError,
)

router = APIRouter(prefix="/calendar", tags=["calendar"])
logger = logging.getLogger(__name__)


def _redirect_to_calendar(**params: str) -> RedirectResponse:
    return RedirectResponse(
        build_app_redirect_url(params), status_code=status.HTTP_303_SEE_OTHER
    )


@router.get("/auth", include_in_schema=False)
async def start_authorization(
    team_member_id: Optional[str] = None,
    team_member_id_camel: Optional[str] = Query(None, alias="teamMemberId"),
    service: CalendarService = Depends(get_calendar_service),
) -> RedirectResponse:
    """Send the browser to Google's consent screen for a team member.

    Accepts ``teamMemberId`` as well, the name the calendar UI sends.
    """
    team_member_id = team_member_id or team_member_id_camel
    if not team_member_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="team_member_id required"
        )
    if not service.google_client.is_configured:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Google Calendar not configured",
        )
    return RedirectResponse(service.authorization_url(team_member_id))


@router.get("/callback", include_in_schema=False)
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    service: CalendarService = Depends(get_calendar_service),
) -> RedirectResponse:
    """Handle Google's OAuth redirect and store the team member's connection."""
    if error:
        logger.warning("Google OAuth consent returned error=%s", error)
        return _redirect_to_calendar(error=error)

    team_member_id = state
    if not code or not team_member_id:
        return _redirect_to_calendar(error="missing_params")

    try:
        await service.complete_authorization(team_member_id, code)
    except GoogleOAuthError as exc:
        logger.error(
            "Google OAuth flow failed for team member %s: %s", team_member_id, exc
        )
        return _redirect_to_calendar(error=exc.error_code)
    except SupabaseStorageError as exc:
        logger.error(
            "Failed to persist calendar connection for team member %s: %s",
            team_member_id,
            exc,
        )
        return _redirect_to_calendar(error="storage_error")
    except Exception:  # pragma: no cover - unexpected runtime issues
        logger.exception(
            "Unexpected error during Google OAuth callback for team member %s",
            team_member_id,
        )
        return _redirect_to_calendar(error="connection_failed")

    return _redirect_to_calendar(connected="true")


@router.get("/events", response_model=TeamEventsResponse)
async def list_events(
    start: Optional[str] = None,
    end: Optional[str] = None,
    team_member_ids: Optional[str] = None,
    team_member_ids_camel: Optional[str] = Query(None, alias="teamMemberIds"),
    service: CalendarService = Depends(get_calendar_service),
) -> TeamEventsResponse:
    """List the merged, start-ordered events of every connected team member.

    ``team_member_ids`` (or ``teamMemberIds``) is a comma-separated filter.
    """
    team_member_ids = team_member_ids or team_member_ids_camel
    if not start or not end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start and end dates required",
        )
    member_ids = [
        member_id.strip()
        for member_id in (team_member_ids or "").split(",")
        if member_id.strip()
    ]

    try:
        window_start = parse_range_bound(start, "start")
        window_end = parse_range_bound(end, "end")
        return await service.events_for_range(window_start, window_end, member_ids)
    except CalendarServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except SupabaseStorageError as exc:
        logger.error("Failed to load calendar connections: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load connections",
        ) from exc


@router.patch("/connections/{connection_id}", response_model=ConnectionStatus)
async def update_connection(
    connection_id: str,
    payload: ConnectionUpdate,
    service: CalendarService = Depends(get_calendar_service),
) -> ConnectionStatus:
    """Enable or disable syncing for a connected calendar."""
    try:
        connection = service.set_sync_enabled(connection_id, payload.sync_enabled)
    except CalendarServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except SupabaseStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    return ConnectionStatus(**connection.model_dump())


@router.delete("/connections/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connection(
    connection_id: str,
    service: CalendarService = Depends(get_calendar_service),
) -> Response:
    """Disconnect a calendar."""
    try:
        service.disconnect(connection_id)
    except CalendarServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except SupabaseStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
