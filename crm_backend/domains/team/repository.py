"""Repository for team member database operations."""

from __future__ import annotations

from typing import Any, Dict, List

from postgrest import APIError

from crm_backend.db.session import get_service_client
from crm_backend.domains.calendars.schemas import ConnectionStatus
from crm_backend.domains.team.schemas import (
    DEFAULT_MEMBER_COLOR,
    TeamMemberCreate,
    TeamMemberResponse,
    TeamMemberWithConnection,
)
from crm_backend.utils.errors import SupabaseStorageError, TeamMemberConflictError

TEAM_TABLE = "crm_team_members"
UNIQUE_VIOLATION = "23505"
MEMBER_SELECT = (
    "*, calendar_connections:crm_calendar_connections("
    "id, google_email, sync_enabled, last_synced_at, sync_error)"
)


class TeamRepository:
    """Repository for team member rows."""

    def list_members(self) -> List[TeamMemberWithConnection]:
        """List active team members, ordered by name, with calendar status."""
        client = get_service_client()
        try:
            result = (
                client.table(TEAM_TABLE)
                .select(MEMBER_SELECT)
                .eq("is_active", True)
                .order("name")
                .execute()
            )
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        return [_member_with_connection(row) for row in (result.data or [])]

    def create_member(self, payload: TeamMemberCreate) -> TeamMemberResponse:
        """Add a team member."""
        client = get_service_client()
        data = {
            "name": payload.name,
            "email": payload.email,
            "color": payload.color or DEFAULT_MEMBER_COLOR,
        }
        try:
            result = client.table(TEAM_TABLE).insert(data).execute()
        except APIError as exc:
            if exc.code == UNIQUE_VIOLATION:
                raise TeamMemberConflictError(
                    "Team member with this email already exists"
                ) from exc
            raise SupabaseStorageError(exc.message) from exc
        if not result.data:
            raise SupabaseStorageError("Supabase did not return team member data.")
        return TeamMemberResponse(**result.data[0])


def _member_with_connection(row: Dict[str, Any]) -> TeamMemberWithConnection:
    connections = row.get("calendar_connections") or []
    member = {key: value for key, value in row.items() if key != "calendar_connections"}
    if not member.get("color"):
        member["color"] = DEFAULT_MEMBER_COLOR
    return TeamMemberWithConnection(
        **member,
        is_connected=bool(connections),
        connection=ConnectionStatus(**connections[0]) if connections else None,
    )
