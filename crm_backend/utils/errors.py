"""Centralized exception classes for the application."""

from __future__ import annotations

from typing import Any

from fastapi import status


# Supabase errors
class SupabaseStorageError(RuntimeError):
    """Raised when Supabase data operations fail."""


# Google OAuth errors
class GoogleOAuthError(RuntimeError):
    """Raised when the Google OAuth authorization flow fails.

    ``error_code`` is the short code shown to the user on the calendar page.
    """

    def __init__(self, message: str, *, error_code: str = "connection_failed") -> None:
        super().__init__(message)
        self.error_code = error_code


# Calendar service errors
class CalendarServiceError(RuntimeError):
    """Base error for team calendar issues."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class CalendarValidationError(CalendarServiceError):
    """Raised when required request parameters are missing or invalid."""

    status_code = status.HTTP_400_BAD_REQUEST


class CalendarAuthError(CalendarServiceError):
    """Raised when a connection has no usable credential and must be re-authorized."""

    status_code = status.HTTP_401_UNAUTHORIZED


class CalendarNotFoundError(CalendarServiceError):
    """Raised when a calendar connection cannot be located."""

    status_code = status.HTTP_404_NOT_FOUND


class CalendarProviderError(CalendarServiceError):
    """Raised when Google returns a non-success response or cannot be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        provider_status: int | None = None,
        payload: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_status = provider_status
        self.payload = payload


# Team errors
class TeamMemberConflictError(RuntimeError):
    """Raised when a team member with the same email already exists."""
