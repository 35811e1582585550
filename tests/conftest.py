"""Pytest fixtures for backend tests."""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient

# Set required env vars for tests
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

from crm_backend.core.dependencies import get_calendar_service  # noqa: E402
from crm_backend.domains.calendars.providers.google import (  # noqa: E402
    API_BASE_URL,
    TOKEN_ENDPOINT,
    USERINFO_ENDPOINT,
    GoogleCalendarClient,
)
from crm_backend.domains.calendars.schemas import (  # noqa: E402
    CalendarConnection,
    TeamMemberSummary,
)
from crm_backend.domains.calendars.service import CalendarService  # noqa: E402
from crm_backend.main import app  # noqa: E402

WEEK_START = datetime(2025, 3, 3, tzinfo=timezone.utc)
WEEK_END = WEEK_START + timedelta(days=7)


def make_connection(
    connection_id: str,
    team_member_id: str,
    *,
    name: str | None = None,
    color: str | None = "#22c55e",
    access_token: str | None = None,
    refresh_token: str | None = "refresh-token",
    expires_at: datetime | None = None,
    expires_in: timedelta | None = timedelta(hours=1),
    sync_enabled: bool = True,
) -> CalendarConnection:
    """Build a connection row; by default its token is valid for another hour."""
    if expires_at is None and expires_in is not None:
        expires_at = datetime.now(timezone.utc) + expires_in
    return CalendarConnection(
        id=connection_id,
        team_member_id=team_member_id,
        google_email=f"{team_member_id}@example.com",
        access_token=access_token if access_token is not None else f"token-{connection_id}",
        refresh_token=refresh_token,
        token_expires_at=expires_at,
        sync_enabled=sync_enabled,
        team_member=TeamMemberSummary(
            id=team_member_id,
            name=name or team_member_id.title(),
            email=f"{team_member_id}@example.com",
            color=color,
        ),
    )


def google_event(
    event_id: str,
    start: str,
    end: str | None = None,
    *,
    summary: str | None = "Meeting",
    all_day: bool = False,
    **extra: Any,
) -> Dict[str, Any]:
    """Build a Google Calendar API event payload."""
    key = "date" if all_day else "dateTime"
    event: Dict[str, Any] = {"id": event_id, "start": {key: start}}
    if end is not None:
        event["end"] = {key: end}
    if summary is not None:
        event["summary"] = summary
    event.update(extra)
    return event


class FakeConnectionRepository:
    """In-memory stand-in for CalendarConnectionRepository."""

    def __init__(self, connections: List[CalendarConnection] | None = None) -> None:
        self.rows: Dict[str, CalendarConnection] = {
            connection.id: connection.model_copy(deep=True)
            for connection in (connections or [])
        }
        self.token_updates: List[Dict[str, Any]] = []
        self.synced: List[str] = []
        self.fail_token_writes = False
        self._next_id = 1

    def list_connections(self, *, team_member_ids=None, enabled_only=True):
        member_ids = set(team_member_ids or [])
        return [
            row.model_copy(deep=True)
            for row in self.rows.values()
            if (not enabled_only or row.sync_enabled)
            and (not member_ids or row.team_member_id in member_ids)
        ]

    def get_connection(self, connection_id):
        row = self.rows.get(connection_id)
        return row.model_copy(deep=True) if row else None

    def upsert_connection(self, team_member_id, data):
        calendar_id = data.get("google_calendar_id", "primary")
        existing = next(
            (
                row
                for row in self.rows.values()
                if row.team_member_id == team_member_id
                and row.google_calendar_id == calendar_id
            ),
            None,
        )
        if existing is None:
            connection_id = f"conn-{self._next_id}"
            self._next_id += 1
            existing = CalendarConnection(id=connection_id, team_member_id=team_member_id)
            self.rows[connection_id] = existing
        for key, value in data.items():
            setattr(existing, key, value)
        return existing.model_copy(deep=True)

    def update_tokens(self, connection_id, *, access_token, token_expires_at, refresh_token=None):
        from crm_backend.utils.errors import SupabaseStorageError

        if self.fail_token_writes:
            raise SupabaseStorageError("database unavailable")
        self.token_updates.append(
            {
                "connection_id": connection_id,
                "access_token": access_token,
                "token_expires_at": token_expires_at,
                "refresh_token": refresh_token,
            }
        )
        row = self.rows[connection_id]
        row.access_token = access_token
        row.token_expires_at = token_expires_at
        if refresh_token:
            row.refresh_token = refresh_token
        return row.model_copy(deep=True)

    def record_sync_error(self, connection_id, message):
        self.rows[connection_id].sync_error = message

    def mark_synced(self, connection_id):
        self.synced.append(connection_id)
        row = self.rows[connection_id]
        row.sync_error = None
        row.last_synced_at = datetime.now(timezone.utc)

    def set_sync_enabled(self, connection_id, enabled):
        row = self.rows[connection_id]
        row.sync_enabled = enabled
        return row.model_copy(deep=True)

    def delete_connection(self, connection_id):
        return self.rows.pop(connection_id, None) is not None


class FakeGoogle:
    """Scriptable Google OAuth + Calendar endpoints for httpx.MockTransport.

    - ``events[access_token]`` is a list of event payloads, or an
      ``httpx.Response`` to return as-is, or an exception to raise.
    - ``refresh_responses[refresh_token]`` overrides the refresh grant reply.
    - ``code_responses[code]`` overrides the authorization-code reply.
    - ``delays[access_token]`` sleeps before answering the events request.
    """

    def __init__(self) -> None:
        self.events: Dict[str, Any] = {}
        self.refresh_responses: Dict[str, httpx.Response] = {}
        self.code_responses: Dict[str, httpx.Response] = {}
        self.profile_response: Optional[httpx.Response] = None
        self.delays: Dict[str, float] = {}
        self.refresh_delay = 0.0
        self.requests: List[httpx.Request] = []
        self.refresh_calls = 0

    def calls_to(self, url_prefix: str) -> List[httpx.Request]:
        return [request for request in self.requests if str(request.url).startswith(url_prefix)]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == TOKEN_ENDPOINT:
            form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
            if form.get("grant_type") == "refresh_token":
                self.refresh_calls += 1
                if self.refresh_delay:
                    await asyncio.sleep(self.refresh_delay)
                refresh_token = form["refresh_token"]
                if refresh_token in self.refresh_responses:
                    return self.refresh_responses[refresh_token]
                return httpx.Response(
                    200,
                    json={
                        "access_token": f"fresh-{refresh_token}-{self.refresh_calls}",
                        "expires_in": 3600,
                        "token_type": "Bearer",
                    },
                )
            code = form.get("code", "")
            if code in self.code_responses:
                return self.code_responses[code]
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{code}",
                    "refresh_token": f"refresh-{code}",
                    "expires_in": 3599,
                    "token_type": "Bearer",
                },
            )
        if url == USERINFO_ENDPOINT:
            if self.profile_response is not None:
                return self.profile_response
            return httpx.Response(200, json={"id": "g-123", "email": "rep@example.com"})
        if url.startswith(API_BASE_URL):
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if token in self.delays:
                await asyncio.sleep(self.delays[token])
            configured = self.events.get(token, [])
            if isinstance(configured, Exception):
                raise configured
            if isinstance(configured, httpx.Response):
                return configured
            return httpx.Response(200, content=json.dumps({"items": configured}))
        return httpx.Response(500, json={"error": {"message": f"unexpected request {url}"}})


def build_google_client(fake: FakeGoogle, *, timeout: float = 10.0) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://testserver/api/v1/calendar/callback",
        scopes=["https://www.googleapis.com/auth/calendar.readonly"],
        timeout=timeout,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)),
    )


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def fake_repository() -> FakeConnectionRepository:
    return FakeConnectionRepository()


@pytest.fixture
def calendar_service(fake_repository, fake_google) -> CalendarService:
    return CalendarService(
        repository=fake_repository,
        google_client=build_google_client(fake_google),
    )


@pytest.fixture
def test_client(calendar_service):
    """FastAPI test client wired to the in-memory store and fake Google."""
    app.dependency_overrides[get_calendar_service] = lambda: calendar_service
    yield TestClient(app)
    app.dependency_overrides.clear()
