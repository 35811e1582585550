"""Repository for calendar connection database operations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from postgrest import APIError

from crm_backend.db.session import get_service_client
from crm_backend.domains.calendars.schemas import CalendarConnection
from crm_backend.utils.errors import SupabaseStorageError

CONNECTIONS_TABLE = "crm_calendar_connections"
CONNECTION_SELECT = "*, team_member:crm_team_members(id, name, email, color)"


def _without_none(data: Dict[str, Any]) -> Dict[str, Any]:
    """Remove None values from dict."""
    return {key: value for key, value in data.items() if value is not None}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _isoformat(value: datetime | str | None) -> str | None:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class CalendarConnectionRepository:
    """Repository for calendar connection rows."""

    def list_connections(
        self,
        *,
        team_member_ids: Iterable[str] | None = None,
        enabled_only: bool = True,
    ) -> List[CalendarConnection]:
        """
        List calendar connections with their team member embedded.

        Args:
            team_member_ids: Optional team member filter. Empty or None means all members.
            enabled_only: If True (default), only connections with sync enabled.
        """
        client = get_service_client()
        member_ids = [member_id for member_id in (team_member_ids or []) if member_id]
        try:
            query = client.table(CONNECTIONS_TABLE).select(CONNECTION_SELECT)
            if enabled_only:
                query = query.eq("sync_enabled", True)
            if member_ids:
                query = query.in_("team_member_id", member_ids)
            result = query.execute()
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        return [CalendarConnection(**row) for row in (result.data or [])]

    def get_connection(self, connection_id: str) -> CalendarConnection | None:
        """Get a single connection by ID."""
        client = get_service_client()
        try:
            result = (
                client.table(CONNECTIONS_TABLE)
                .select(CONNECTION_SELECT)
                .eq("id", connection_id)
                .limit(1)
                .execute()
            )
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        if not result.data:
            return None
        return CalendarConnection(**result.data[0])

    def upsert_connection(
        self,
        team_member_id: str,
        data: Dict[str, Any],
    ) -> CalendarConnection:
        """
        Create or replace the connection for (team member, calendar).

        Re-authorizing the same calendar updates the existing row instead of
        adding a second one.
        """
        client = get_service_client()
        payload = {
            "team_member_id": team_member_id,
            "google_calendar_id": "primary",
            **data,
            "updated_at": _now_iso(),
        }
        payload["token_expires_at"] = _isoformat(payload.get("token_expires_at"))
        try:
            result = (
                client.table(CONNECTIONS_TABLE)
                .upsert(payload, on_conflict="team_member_id,google_calendar_id")
                .execute()
            )
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        if not result.data:
            raise SupabaseStorageError(
                "Supabase did not return calendar connection data."
            )
        return CalendarConnection(**result.data[0])

    def update_tokens(
        self,
        connection_id: str,
        *,
        access_token: str,
        token_expires_at: datetime | None,
        refresh_token: str | None = None,
    ) -> CalendarConnection:
        """Replace the access token and its expiry in a single write."""
        client = get_service_client()
        payload = _without_none(
            {
                "access_token": access_token,
                "token_expires_at": _isoformat(token_expires_at),
                "refresh_token": refresh_token,
                "updated_at": _now_iso(),
            }
        )
        try:
            result = (
                client.table(CONNECTIONS_TABLE)
                .update(payload)
                .eq("id", connection_id)
                .execute()
            )
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        if not result.data:
            raise SupabaseStorageError(
                "Calendar connection tokens could not be updated or connection not found."
            )
        return CalendarConnection(**result.data[0])

    def record_sync_error(self, connection_id: str, message: str) -> None:
        """Store the last sync failure on the connection."""
        self._update(connection_id, {"sync_error": message, "updated_at": _now_iso()})

    def mark_synced(self, connection_id: str) -> None:
        """Stamp a successful sync and clear any previous error."""
        now = _now_iso()
        self._update(
            connection_id,
            {"sync_error": None, "last_synced_at": now, "updated_at": now},
        )

    def set_sync_enabled(self, connection_id: str, enabled: bool) -> CalendarConnection:
        """Enable or disable syncing for a connection."""
        rows = self._update(
            connection_id, {"sync_enabled": enabled, "updated_at": _now_iso()}
        )
        if not rows:
            raise SupabaseStorageError("Calendar connection not found or update failed.")
        return CalendarConnection(**rows[0])

    def delete_connection(self, connection_id: str) -> bool:
        """Delete a connection. Returns False when nothing was removed."""
        client = get_service_client()
        try:
            response = (
                client.table(CONNECTIONS_TABLE)
                .delete()
                .eq("id", connection_id)
                .execute()
            )
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        return bool(response.data)

    def _update(self, connection_id: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
        # Payload may intentionally contain None to clear a column
        client = get_service_client()
        try:
            result = (
                client.table(CONNECTIONS_TABLE)
                .update(payload)
                .eq("id", connection_id)
                .execute()
            )
        except APIError as exc:
            raise SupabaseStorageError(exc.message) from exc
        return result.data or []
