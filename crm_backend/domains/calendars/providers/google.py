"""Google Calendar provider implementation."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from crm_backend.core.config import Settings, get_settings
from crm_backend.utils.errors import (
    CalendarAuthError,
    CalendarProviderError,
    GoogleOAuthError,
)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://www.googleapis.com/oauth2/v2/userinfo"
API_BASE_URL = "https://www.googleapis.com/calendar/v3"

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_EVENT_RESULTS = 250

# Callback error codes surfaced on the calendar page
EXCHANGE_FAILED = "token_exchange_failed"
PROFILE_FAILED = "profile_failed"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoogleTokens:
    """Google OAuth tokens."""

    access_token: str
    refresh_token: str | None
    expires_in: int | None
    scope: str
    token_type: str

    def expires_at(self, issued_at: datetime | None = None) -> datetime | None:
        """Calculate expiration time."""
        if self.expires_in is None:
            return None
        base = issued_at or datetime.now(timezone.utc)
        return base + timedelta(seconds=int(self.expires_in))

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "GoogleTokens":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            scope=data.get("scope", ""),
            token_type=data.get("token_type", ""),
        )


@dataclass(frozen=True)
class GoogleProfile:
    """Google user profile."""

    id: str | None
    email: str
    name: str | None
    picture: str | None


def build_authorization_url(
    state: str,
    *,
    client_id: str,
    redirect_uri: str,
    scopes: List[str],
) -> str:
    """Build the Google consent screen URL.

    Offline access with a forced consent prompt makes Google issue a refresh
    token on every authorization, not only the first one.
    """
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{AUTHORIZATION_ENDPOINT}?{urlencode(params)}"


def build_app_redirect_url(
    params: Dict[str, str], settings: Settings | None = None
) -> str:
    """Build the calendar page URL the OAuth callback sends the browser back to."""
    settings = settings or get_settings()
    base = settings.calendar_page_url
    query = urlencode(params)
    if "?" in base:
        return f"{base}&{query}"
    return f"{base}?{query}"


def _encode_path_segment(segment: str) -> str:
    """Encode a URL path segment."""
    return quote(segment, safe="")


def _safe_json(response: httpx.Response) -> Any:
    """Safely parse JSON from response."""
    try:
        return response.json()
    except ValueError:
        return response.text


class GoogleCalendarClient:
    """Async client for the Google OAuth and Calendar REST endpoints.

    Every request honours ``timeout``. When ``http_client`` is given it is
    reused for all requests (tests pass one backed by ``httpx.MockTransport``);
    otherwise a short-lived ``httpx.AsyncClient`` is opened per request.
    """

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str,
        scopes: List[str] | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_results: int = MAX_EVENT_RESULTS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes or [])
        self.timeout = timeout
        self.max_results = max_results
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GoogleCalendarClient":
        settings = settings or get_settings()
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_oauth_redirect_uri_resolved,
            scopes=settings.google_oauth_scopes,
            timeout=settings.google_request_timeout_seconds,
            max_results=settings.google_max_event_results,
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: str) -> str:
        if not self.client_id:
            raise GoogleOAuthError("Google Calendar not configured")
        return build_authorization_url(
            state,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
        )

    async def _send(
        self,
        method: str,
        url: str,
        *,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        access_token: str | None = None,
    ) -> httpx.Response:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            async with self._client() as client:
                return await client.request(
                    method,
                    url,
                    data=data,
                    params=params,
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as exc:
            raise CalendarProviderError(
                f"Google request timed out after {self.timeout:.0f}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise CalendarProviderError(
                f"Google request failed: {type(exc).__name__}"
            ) from exc

    async def exchange_code(self, code: str) -> GoogleTokens:
        """Exchange an authorization code for an access/refresh token pair."""
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }
        try:
            response = await self._send("POST", TOKEN_ENDPOINT, data=payload)
        except CalendarProviderError as exc:
            raise GoogleOAuthError(str(exc), error_code=EXCHANGE_FAILED) from exc
        if response.status_code != httpx.codes.OK:
            raise GoogleOAuthError(
                f"Token exchange failed with status {response.status_code}: {response.text}",
                error_code=EXCHANGE_FAILED,
            )
        data = _safe_json(response)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise GoogleOAuthError(
                "Token exchange response did not include an access token.",
                error_code=EXCHANGE_FAILED,
            )
        return GoogleTokens.from_response(data)

    async def refresh_access_token(self, refresh_token: str) -> GoogleTokens:
        """Refresh an access token with the refresh-token grant. Never retried."""
        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        response = await self._send("POST", TOKEN_ENDPOINT, data=payload)
        if response.status_code != httpx.codes.OK:
            body = _safe_json(response)
            if isinstance(body, dict) and body.get("error") == "invalid_grant":
                # Refresh token revoked or expired, the user has to reconnect
                raise CalendarAuthError("reauthorization required")
            raise CalendarProviderError(
                f"Token refresh failed with status {response.status_code}: {response.text}",
                provider_status=response.status_code,
                payload=body,
            )
        data = _safe_json(response)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise CalendarProviderError(
                "Token refresh response did not include an access token.",
                provider_status=response.status_code,
                payload=data,
            )
        return GoogleTokens.from_response(data)

    async def fetch_profile(self, access_token: str) -> GoogleProfile:
        """Fetch the Google account identity behind an access token."""
        try:
            response = await self._send(
                "GET", USERINFO_ENDPOINT, access_token=access_token
            )
        except CalendarProviderError as exc:
            raise GoogleOAuthError(str(exc), error_code=PROFILE_FAILED) from exc
        if response.status_code != httpx.codes.OK:
            raise GoogleOAuthError(
                f"Failed to load Google profile: {response.status_code} {response.text}",
                error_code=PROFILE_FAILED,
            )
        data = _safe_json(response)
        email = data.get("email") if isinstance(data, dict) else None
        if not email:
            raise GoogleOAuthError(
                "Google did not return an email address.", error_code=PROFILE_FAILED
            )
        return GoogleProfile(
            id=data.get("id") or data.get("sub"),
            email=email,
            name=data.get("name"),
            picture=data.get("picture"),
        )

    async def list_events(
        self,
        *,
        access_token: str,
        calendar_id: str,
        time_min: str,
        time_max: str,
    ) -> List[Dict[str, Any]]:
        """List events overlapping [time_min, time_max).

        Recurring events come back as individual occurrences, ordered by start
        time. Only the first page (``max_results`` items) is read.
        """
        url = f"{API_BASE_URL}/calendars/{_encode_path_segment(calendar_id)}/events"
        params: Dict[str, Any] = {
            "timeMin": time_min,
            "timeMax": time_max,
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": self.max_results,
        }
        response = await self._send(
            "GET", url, params=params, access_token=access_token
        )
        if response.status_code >= 300:
            raise CalendarProviderError(
                f"Google Calendar API request failed with status {response.status_code}",
                provider_status=response.status_code,
                payload=_safe_json(response),
            )
        data = _safe_json(response)
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return []
        if data.get("nextPageToken"):
            logger.info(
                "Calendar %s has more than %d events in window; extra pages skipped",
                calendar_id,
                self.max_results,
            )
        return [item for item in items if isinstance(item, dict)]
