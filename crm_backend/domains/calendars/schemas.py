"""Calendar domain schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TeamMemberSummary(BaseModel):
    """Team member fields embedded in a connection row."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    color: Optional[str] = None


# Calendar connection schemas
class CalendarConnection(BaseModel):
    """One OAuth grant linking a team member to a Google calendar."""

    model_config = ConfigDict(extra="ignore")

    id: str
    team_member_id: str
    google_calendar_id: str = "primary"
    google_email: Optional[str] = None
    access_token: str = ""
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    sync_enabled: bool = True
    last_synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    team_member: Optional[TeamMemberSummary] = None


class ConnectionStatus(BaseModel):
    """Public view of a connection. Tokens are never exposed."""

    id: str
    google_email: Optional[str] = None
    sync_enabled: bool = True
    last_synced_at: Optional[datetime] = None
    sync_error: Optional[str] = None


class ConnectionUpdate(BaseModel):
    sync_enabled: bool


# Calendar event schemas
class EventAttendee(BaseModel):
    email: str
    display_name: Optional[str] = None
    response_status: Optional[str] = None


class CalendarEvent(BaseModel):
    """Google event projected onto a team member's timeline."""

    id: str
    google_event_id: str
    connection_id: str
    team_member_id: str
    team_member_name: str
    team_member_color: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    all_day: bool = False
    timezone: Optional[str] = None
    attendees: Optional[List[EventAttendee]] = None
    organizer_email: Optional[str] = None
    status: Optional[str] = None
    hangout_link: Optional[str] = None


class TeamEventsResponse(BaseModel):
    events: List[CalendarEvent] = Field(default_factory=list)
    message: Optional[str] = None
