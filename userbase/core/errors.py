"""
Error taxonomy for the userbase service.

Every store, chain, or transport failure is converted into one of these at the
service boundary. The exception handler registered in ``userbase.main`` turns
them into ``{"error": ..., "details": ...}`` JSON bodies.
"""
from typing import Any, Dict, Optional


class UserbaseError(Exception):
    status_code = 500
    default_error = "Internal server error"

    def __init__(
        self,
        error: Optional[str] = None,
        details: Optional[str] = None,
        **extra: Any,
    ):
        self.error = error or self.default_error
        self.details = details
        self.extra: Dict[str, Any] = extra
        super().__init__(self.error)

    def to_dict(self, include_details: bool = True) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error}
        if include_details and self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ValidationError(UserbaseError):
    status_code = 400
    default_error = "Invalid request"


class AuthError(UserbaseError):
    status_code = 401
    default_error = "Unauthorized"


class NoActiveChallenge(AuthError):
    # A missing challenge is a client sequencing problem, not a credential one
    status_code = 400
    default_error = "No active challenge found"


class ChallengeExpired(AuthError):
    default_error = "Challenge expired"


class InvalidSession(AuthError):
    default_error = "Unauthorized"


class SessionExpired(AuthError):
    default_error = "Session expired"


class AuthorizationError(UserbaseError):
    status_code = 403
    default_error = "Forbidden"


class NotFoundError(UserbaseError):
    status_code = 404
    default_error = "Not found"


class ConflictError(UserbaseError):
    status_code = 409
    default_error = "Conflict"


class DependencyError(UserbaseError):
    status_code = 500
    default_error = "Dependency failure"


class UpstreamError(DependencyError):
    status_code = 502
    default_error = "Upstream service failure"


class CapacityError(UserbaseError):
    status_code = 503
    default_error = "Service temporarily unavailable, please try again"


class ConfigurationError(UserbaseError):
    status_code = 500
    default_error = "Service is not configured"
