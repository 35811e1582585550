"""Team member schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from crm_backend.domains.calendars.schemas import ConnectionStatus

DEFAULT_MEMBER_COLOR = "#8b5cf6"


class TeamMemberCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    color: Optional[str] = None


class TeamMemberResponse(BaseModel):
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None
    color: str = DEFAULT_MEMBER_COLOR
    role: Optional[str] = None


class TeamMemberWithConnection(TeamMemberResponse):
    is_connected: bool = False
    connection: Optional[ConnectionStatus] = None


class TeamListResponse(BaseModel):
    team: List[TeamMemberWithConnection] = Field(default_factory=list)


class TeamMemberCreatedResponse(BaseModel):
    member: TeamMemberResponse
