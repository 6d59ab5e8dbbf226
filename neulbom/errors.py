"""Failure types surfaced to the person using the app."""
from __future__ import annotations

from typing import Optional


class NeulbomError(Exception):
    """Base class for every failure reported back to the initiating action."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(NeulbomError):
    """A required credential or endpoint is missing."""

    status_code = 503


class InputError(NeulbomError):
    """Form input rejected before any network call is made."""

    status_code = 400


class AuthenticationRequired(NeulbomError):
    status_code = 401


class PermissionDenied(NeulbomError):
    status_code = 403


class NotFound(NeulbomError):
    status_code = 404


class RemoteError(NeulbomError):
    """The backend rejected a request or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        action: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.action = action
        self.status_code = status_code if status_code and status_code >= 400 else 502


class ComposeError(NeulbomError):
    status_code = 502


class PhotoReadError(NeulbomError):
    status_code = 400


class PhotoUploadError(NeulbomError):
    status_code = 502


def user_message(exc: BaseException, fallback: str) -> str:
    """Return the error's own message when it has one, else ``fallback``."""

    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message
    return fallback
