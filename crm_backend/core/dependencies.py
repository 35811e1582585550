"""FastAPI dependencies shared by the API routers."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from crm_backend.core.config import get_settings
from crm_backend.domains.calendars.providers.google import GoogleCalendarClient
from crm_backend.domains.calendars.repository import CalendarConnectionRepository
from crm_backend.domains.calendars.service import CalendarService
from crm_backend.domains.team.repository import TeamRepository


@lru_cache
def get_calendar_service() -> CalendarService:
    """
    Process-wide calendar service.

    A single instance is shared so that concurrent requests for the same
    connection serialize their token refreshes.
    """
    settings = get_settings()
    return CalendarService(
        repository=CalendarConnectionRepository(),
        google_client=GoogleCalendarClient.from_settings(settings),
        refresh_leeway=timedelta(seconds=settings.token_refresh_leeway_seconds),
    )


def get_team_repository() -> TeamRepository:
    return TeamRepository()
