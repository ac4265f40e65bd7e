"""Error handling utilities."""

from typing import Any, Optional


class MajiTaskError(Exception):
    """Base exception for MajiTask task sync."""

    code = "INTERNAL"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        """Error envelope sent over the wire."""
        payload = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class NotFoundError(MajiTaskError):
    """Entity absent or not owned by the caller."""
    code = "NOT_FOUND"


class TaskValidationError(MajiTaskError):
    """Input violates task or comment constraints."""
    code = "VALIDATION"


class ConflictError(MajiTaskError):
    """Uniqueness violation on create."""
    code = "CONFLICT"


class RateLimitedError(MajiTaskError):
    """Caller exceeded an API quota."""
    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details)
        self.retry_after = retry_after

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


class TransportError(MajiTaskError):
    """Network failure, timeout or 5xx from the remote store."""
    code = "TRANSPORT"


class InternalError(MajiTaskError):
    """Unexpected storage-tier failure."""
    code = "INTERNAL"


class SupabaseError(InternalError):
    """Supabase operation error."""
    pass


class AuthenticationError(MajiTaskError):
    """Missing or invalid bearer credential."""
    code = "UNAUTHORIZED"


_STATUS_BY_CODE = {
    NotFoundError.code: 404,
    TaskValidationError.code: 400,
    ConflictError.code: 409,
    RateLimitedError.code: 429,
    TransportError.code: 502,
    AuthenticationError.code: 401,
    InternalError.code: 500,
}


def status_code_for(error: MajiTaskError) -> int:
    """HTTP status for a typed error."""
    return _STATUS_BY_CODE.get(error.code, 500)


def _parse_retry_after(headers: Optional[dict], payload: dict) -> Optional[int]:
    raw = None
    if headers:
        for key, value in headers.items():
            if key.lower() == "retry-after":
                raw = value
                break
    if raw is None:
        raw = payload.get("retryAfter")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def error_from_response(status_code: int, payload: Any, headers: Optional[dict] = None) -> MajiTaskError:
    """
    Rebuild a typed error from a non-2xx response.

    The server-supplied message wins over a generic one; every 5xx is treated
    as a transport failure so the repository can fall back to local storage.
    """
    if not isinstance(payload, dict):
        payload = {}
    message = payload.get("error") or payload.get("message") or f"HTTP {status_code}"
    details = payload.get("details")
    code = payload.get("code")

    if status_code == 429 or code == RateLimitedError.code:
        return RateLimitedError(message, retry_after=_parse_retry_after(headers, payload), details=details)
    if status_code >= 500:
        return TransportError(message, details)
    if status_code == 404 or code == NotFoundError.code:
        return NotFoundError(message, details)
    if status_code == 409 or code == ConflictError.code:
        return ConflictError(message, details)
    if status_code == 401 or code == AuthenticationError.code:
        return AuthenticationError(message, details)
    if status_code in (400, 422) or code == TaskValidationError.code:
        return TaskValidationError(message, details)
    return InternalError(message, details)
