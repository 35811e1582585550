"""Service for team calendar business logic."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Tuple

from crm_backend.domains.calendars.providers.google import GoogleCalendarClient
from crm_backend.domains.calendars.repository import CalendarConnectionRepository
from crm_backend.domains.calendars.schemas import (
    CalendarConnection,
    CalendarEvent,
    EventAttendee,
    TeamEventsResponse,
)
from crm_backend.domains.team.schemas import DEFAULT_MEMBER_COLOR
from crm_backend.utils.errors import (
    CalendarAuthError,
    CalendarNotFoundError,
    CalendarServiceError,
    CalendarValidationError,
    SupabaseStorageError,
)

TOKEN_REFRESH_LEEWAY = timedelta(minutes=5)
UNTITLED_EVENT = "(No title)"
UNKNOWN_MEMBER_NAME = "Unknown"
PRIMARY_CALENDAR_ID = "primary"

logger = logging.getLogger(__name__)


class CalendarService:
    """Token lifecycle, event fetching and cross-member aggregation."""

    def __init__(
        self,
        repository: CalendarConnectionRepository | None = None,
        google_client: GoogleCalendarClient | None = None,
        *,
        refresh_leeway: timedelta = TOKEN_REFRESH_LEEWAY,
    ) -> None:
        self.repository = repository or CalendarConnectionRepository()
        self.google_client = google_client or GoogleCalendarClient.from_settings()
        self.refresh_leeway = refresh_leeway
        self._refresh_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Latest (access_token, expires_at) minted by this instance, per connection
        self._minted: Dict[str, Tuple[str, datetime | None]] = {}

    # Token refresher
    async def ensure_valid_token(self, connection: CalendarConnection) -> str:
        """
        Return an access token for the connection that is good for at least
        the refresh leeway, refreshing it with Google if needed.

        Refreshes are single-flight per connection: concurrent callers wait for
        the first refresh and reuse its token instead of refreshing again.

        Raises:
            CalendarAuthError: The token is stale and there is no usable refresh token.
            CalendarProviderError: Google rejected the refresh or could not be reached.
            SupabaseStorageError: The rotated token could not be persisted.
        """
        if self._is_fresh(connection.access_token, connection.token_expires_at):
            return connection.access_token

        async with self._refresh_locks[connection.id]:
            minted = self._minted.get(connection.id)
            if minted and self._is_fresh(*minted):
                self._apply_tokens(connection, *minted)
                return minted[0]
            if self._is_fresh(connection.access_token, connection.token_expires_at):
                return connection.access_token

            if not connection.refresh_token:
                raise CalendarAuthError("reauthorization required")

            tokens = await self.google_client.refresh_access_token(connection.refresh_token)
            expires_at = tokens.expires_at()
            self.repository.update_tokens(
                connection.id,
                access_token=tokens.access_token,
                token_expires_at=expires_at,
                refresh_token=tokens.refresh_token,
            )
            self._minted[connection.id] = (tokens.access_token, expires_at)
            self._apply_tokens(connection, tokens.access_token, expires_at)
            if tokens.refresh_token:
                connection.refresh_token = tokens.refresh_token
            logger.info(
                "Refreshed Google token connection_id=%s expires_at=%s",
                connection.id,
                expires_at.isoformat() if expires_at else None,
            )
            return tokens.access_token

    def _is_fresh(self, access_token: str | None, expires_at: datetime | None) -> bool:
        if not access_token:
            return False
        if expires_at is None:
            return True
        return datetime.now(timezone.utc) + self.refresh_leeway < _as_utc(expires_at)

    @staticmethod
    def _apply_tokens(
        connection: CalendarConnection, access_token: str, expires_at: datetime | None
    ) -> None:
        connection.access_token = access_token
        connection.token_expires_at = expires_at

    # Event fetcher
    async def fetch_events(
        self,
        access_token: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> List[Dict[str, Any]]:
        """Fetch raw Google events for one calendar overlapping [start, end)."""
        return await self.google_client.list_events(
            access_token=access_token,
            calendar_id=calendar_id,
            time_min=_rfc3339(start),
            time_max=_rfc3339(end),
        )

    # Aggregator
    async def list_team_events(
        self,
        connections: Iterable[CalendarConnection],
        start: datetime,
        end: datetime,
        team_member_ids: Iterable[str] | None = None,
    ) -> List[CalendarEvent]:
        """
        Fetch events from every enabled connection concurrently and merge them
        into one timeline sorted by start time.

        A connection that fails contributes no events and gets its error
        recorded; it never fails the whole request.
        """
        member_filter = {member_id for member_id in (team_member_ids or []) if member_id}
        selected = [
            connection
            for connection in connections
            if connection.sync_enabled
            and (not member_filter or connection.team_member_id in member_filter)
        ]
        if not selected:
            return []

        results = await asyncio.gather(
            *[self._events_for_connection(connection, start, end) for connection in selected]
        )

        events = [event for connection_events in results for event in connection_events]
        events.sort(key=_event_sort_key)
        logger.info(
            "Aggregated team events connections=%d events=%d", len(selected), len(events)
        )
        return events

    async def events_for_range(
        self,
        start: datetime,
        end: datetime,
        team_member_ids: Iterable[str] | None = None,
    ) -> TeamEventsResponse:
        """Load enabled connections from the store and aggregate their events."""
        if end < start:
            raise CalendarValidationError("end must be on or after start.")
        member_ids = [member_id for member_id in (team_member_ids or []) if member_id]
        connections = self.repository.list_connections(
            team_member_ids=member_ids or None, enabled_only=True
        )
        if not connections:
            return TeamEventsResponse(events=[], message="No calendars connected")
        events = await self.list_team_events(connections, start, end, member_ids or None)
        return TeamEventsResponse(events=events)

    async def _events_for_connection(
        self,
        connection: CalendarConnection,
        start: datetime,
        end: datetime,
    ) -> List[CalendarEvent]:
        try:
            access_token = await self.ensure_valid_token(connection)
            items = await self.fetch_events(
                access_token, connection.google_calendar_id, start, end
            )
            events = [_build_event(item, connection) for item in items if item.get("id")]
        except (CalendarServiceError, SupabaseStorageError) as exc:
            logger.warning(
                "Calendar sync failed connection_id=%s email=%s: %s",
                connection.id,
                connection.google_email,
                exc,
            )
            self._record_error(connection, str(exc) or type(exc).__name__)
            return []
        except Exception as exc:
            # Malformed provider data only fails this connection
            logger.exception(
                "Unexpected calendar sync failure connection_id=%s", connection.id
            )
            self._record_error(connection, f"{type(exc).__name__}: {exc}")
            return []

        try:
            self.repository.mark_synced(connection.id)
        except SupabaseStorageError as exc:
            logger.warning(
                "Could not mark connection synced connection_id=%s: %s", connection.id, exc
            )
        connection.sync_error = None
        return events

    def _record_error(self, connection: CalendarConnection, message: str) -> None:
        connection.sync_error = message
        try:
            self.repository.record_sync_error(connection.id, message)
        except SupabaseStorageError:
            logger.exception(
                "Could not record sync error connection_id=%s", connection.id
            )

    # OAuth flow
    def authorization_url(self, team_member_id: str) -> str:
        """Consent screen URL; the team member travels in the OAuth state."""
        if not team_member_id:
            raise CalendarValidationError("team_member_id required")
        return self.google_client.authorization_url(team_member_id)

    async def complete_authorization(
        self, team_member_id: str, code: str
    ) -> CalendarConnection:
        """
        Exchange the callback code and upsert the team member's connection.

        The connection is only written once the token exchange and the
        identity lookup have both succeeded.

        Raises:
            GoogleOAuthError: Token exchange or profile lookup failed.
            SupabaseStorageError: The connection could not be saved.
        """
        if not team_member_id or not code:
            raise CalendarValidationError("code and state are required")

        tokens = await self.google_client.exchange_code(code)
        profile = await self.google_client.fetch_profile(tokens.access_token)
        if not tokens.refresh_token:
            logger.warning(
                "Google did not issue a refresh token team_member_id=%s", team_member_id
            )

        data = {
            "google_calendar_id": PRIMARY_CALENDAR_ID,
            "google_email": profile.email,
            "access_token": tokens.access_token,
            "token_expires_at": tokens.expires_at(),
            "sync_enabled": True,
            "sync_error": None,
            "last_synced_at": None,
        }
        # Keep the stored refresh token when Google does not issue a new one
        if tokens.refresh_token:
            data["refresh_token"] = tokens.refresh_token

        connection = self.repository.upsert_connection(team_member_id, data)
        self._minted.pop(connection.id, None)
        logger.info(
            "Connected Google calendar team_member_id=%s connection_id=%s",
            team_member_id,
            connection.id,
        )
        return connection

    # Connection management
    def set_sync_enabled(self, connection_id: str, enabled: bool) -> CalendarConnection:
        """Turn syncing on or off for a connection."""
        connection = self.repository.get_connection(connection_id)
        if connection is None:
            raise CalendarNotFoundError(f"Calendar connection {connection_id} not found.")
        if enabled and not connection.access_token:
            raise CalendarValidationError(
                "Connection has no access token; reconnect the calendar instead."
            )
        return self.repository.set_sync_enabled(connection_id, enabled)

    def disconnect(self, connection_id: str) -> None:
        """Remove a connection; the team member can authorize again later."""
        if not self.repository.delete_connection(connection_id):
            raise CalendarNotFoundError(f"Calendar connection {connection_id} not found.")
        self._minted.pop(connection_id, None)
        logger.info("Disconnected Google calendar connection_id=%s", connection_id)


# Helper functions
def parse_range_bound(value: str, field_name: str) -> datetime:
    """Parse a query-string bound (ISO date or datetime) into an aware UTC datetime."""
    if not value or not value.strip():
        raise CalendarValidationError(f"{field_name} is required")
    normalized = value.strip().replace("Z", "+00:00").replace(" ", "+")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(normalized), time.min)
        except ValueError as exc:
            raise CalendarValidationError(
                f"{field_name} must be an ISO 8601 date or datetime"
            ) from exc
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _rfc3339(value: datetime) -> str:
    return _as_utc(value).isoformat().replace("+00:00", "Z")


def _parse_event_start(value: str | None) -> datetime:
    """Parse a Google dateTime or bare date; bare dates sort as midnight UTC."""
    if not value:
        return datetime.max.replace(tzinfo=timezone.utc)
    try:
        return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        pass
    try:
        return datetime.combine(date.fromisoformat(value), time.min, timezone.utc)
    except ValueError:
        return datetime.max.replace(tzinfo=timezone.utc)


def _event_sort_key(event: CalendarEvent) -> Tuple[datetime, str]:
    return (_parse_event_start(event.start_time), event.id)


def _build_attendees(raw: Any) -> List[EventAttendee] | None:
    if not isinstance(raw, list):
        return None
    attendees = [
        EventAttendee(
            email=item["email"],
            display_name=item.get("displayName"),
            response_status=item.get("responseStatus"),
        )
        for item in raw
        if isinstance(item, dict) and item.get("email")
    ]
    return attendees


def _build_event(item: Dict[str, Any], connection: CalendarConnection) -> CalendarEvent:
    """Project a Google event onto the connection's team member."""
    start = item.get("start") or {}
    end = item.get("end") or {}
    member = connection.team_member
    return CalendarEvent(
        id=f"{connection.id}_{item['id']}",
        google_event_id=item["id"],
        connection_id=connection.id,
        team_member_id=connection.team_member_id,
        team_member_name=(member.name if member and member.name else UNKNOWN_MEMBER_NAME),
        team_member_color=(member.color if member and member.color else DEFAULT_MEMBER_COLOR),
        title=item.get("summary") or UNTITLED_EVENT,
        description=item.get("description"),
        location=item.get("location"),
        start_time=start.get("dateTime") or start.get("date"),
        end_time=end.get("dateTime") or end.get("date"),
        all_day=not start.get("dateTime") and bool(start.get("date")),
        timezone=start.get("timeZone"),
        attendees=_build_attendees(item.get("attendees")),
        organizer_email=(item.get("organizer") or {}).get("email"),
        status=item.get("status"),
        hangout_link=item.get("hangoutLink"),
    )
