"""Typed failures surfaced by the triage, voting and analysis layers."""
from typing import Any, Dict, Optional


class CivicPulseError(Exception):
    """Base class; carries the HTTP status and a stable machine-readable code."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


class InvalidInput(CivicPulseError):
    """Malformed text, category, status or vote count."""

    status_code = 400
    error_code = "invalid_input"


class AuthenticationRequired(CivicPulseError):
    """The caller has no identity; the client is expected to start a login flow."""

    status_code = 401
    error_code = "authentication_required"


class PermissionDenied(CivicPulseError):
    status_code = 403
    error_code = "permission_denied"


class NotFound(CivicPulseError):
    status_code = 404
    error_code = "not_found"


class ConstraintViolation(CivicPulseError):
    """The store rejected a write, e.g. a duplicate (issue, voter) vote row."""

    status_code = 409
    error_code = "constraint_violation"


class UpstreamUnavailable(CivicPulseError):
    """A hosted inference or mapping call failed, timed out or returned a bad shape.

    Always recoverable: AI callers swap in the heuristic result instead of surfacing this.
    """

    status_code = 503
    error_code = "upstream_unavailable"
