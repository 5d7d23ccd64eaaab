"""Failure kinds surfaced to callers of the stores, gate and summary composer."""
from __future__ import annotations

from typing import Any, Optional


class FestivalError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.kind, "detail": self.message}
        if self.details is not None:
            body["errors"] = self.details
        return body


class ValidationError(FestivalError):
    """Malformed or out-of-range input; never sent to the store."""

    kind = "validation_error"
    status_code = 422


class StoreUnavailable(FestivalError):
    """Backing persistence could not be reached."""

    kind = "store_unavailable"
    status_code = 503


class NotFound(FestivalError):
    kind = "not_found"
    status_code = 404


class AuthError(FestivalError):
    """Bad or missing credentials."""

    kind = "auth_error"
    status_code = 401


class Forbidden(FestivalError):
    kind = "forbidden"
    status_code = 403


class GenerationFailed(FestivalError):
    """Summary collaborator errored or answered with an unexpected shape."""

    kind = "generation_failed"
    status_code = 502
