from __future__ import annotations

from typing import Any


class PortalError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationFailed(PortalError, ValueError):
    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None, **extra: Any) -> None:
        if fields:
            extra["fields"] = fields
        super().__init__(message, **extra)


class AuthenticationRequired(PortalError):
    status_code = 401

    def __init__(self, message: str = "Authentication required", **extra: Any) -> None:
        super().__init__(message, **extra)


class AccessDenied(PortalError, PermissionError):
    status_code = 403

    def __init__(self, message: str = "Access denied", **extra: Any) -> None:
        super().__init__(message, **extra)


class NotFound(PortalError, LookupError):
    status_code = 404


class RateLimited(PortalError):
    status_code = 429

    def __init__(self, message: str, retry_after_ms: int) -> None:
        super().__init__(message, retry_after_ms=retry_after_ms)
        self.retry_after_ms = retry_after_ms

    @property
    def retry_after_seconds(self) -> int:
        return max(1, -(-self.retry_after_ms // 1000))


class UpstreamFailure(PortalError):
    status_code = 502
