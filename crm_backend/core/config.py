"""Application configuration using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root (two levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Backend base URL (used to construct the OAuth redirect URI)
    backend_url: str = "http://localhost:8000"

    # CRM web app (calendar UI) that OAuth callbacks redirect back to
    app_url: str = "http://localhost:3000"
    calendar_page_path: str = "/calendar"

    # Supabase configuration
    supabase_url: str
    supabase_service_role_key: str

    # Google OAuth configuration
    google_client_id: str | None = None
    google_client_secret: str | None = None
    # Full redirect URI override (if set, takes precedence over constructed URI)
    google_oauth_redirect_uri: str | None = None
    google_oauth_redirect_path: str = "/api/v1/calendar/callback"
    google_oauth_scopes: list[str] = [
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/calendar.events.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
        "https://www.googleapis.com/auth/userinfo.profile",
    ]

    # Google Calendar request tuning
    google_request_timeout_seconds: float = 10.0
    google_max_event_results: int = 250
    token_refresh_leeway_seconds: int = 300

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def google_oauth_redirect_uri_resolved(self) -> str:
        """Get the Google OAuth redirect URI.

        Priority:
        1. If google_oauth_redirect_uri is set, use it (full override)
        2. Otherwise, construct from backend_url + google_oauth_redirect_path
        """
        if self.google_oauth_redirect_uri:
            return self.google_oauth_redirect_uri
        base = self.backend_url.rstrip("/")
        path = self.google_oauth_redirect_path.lstrip("/")
        return f"{base}/{path}"

    @property
    def calendar_page_url(self) -> str:
        """Absolute URL of the calendar page in the CRM web app."""
        base = self.app_url.rstrip("/")
        path = self.calendar_page_path.lstrip("/")
        return f"{base}/{path}"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
