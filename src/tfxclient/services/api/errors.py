from __future__ import annotations

from typing import Any

from tfxclient.config.const import SESSION_EXPIRED_MESSAGE


class ApiError(RuntimeError):
    """Raised when the mobile API returns an error response."""

    def __init__(self, status: int, message: str, *, error_code: str | None = None, payload: Any | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.error_code = error_code
        self.payload = payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r}, error_code={self.error_code!r})"


class SessionExpiredError(ApiError):
    """Every renewal path failed; credentials were cleared and the user sent to login."""

    def __init__(self, message: str = SESSION_EXPIRED_MESSAGE):
        super().__init__(401, message)


class TransportError(RuntimeError):
    """No HTTP response was received (DNS, connect, read failures)."""

    def __init__(self, message: str, *, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


__all__ = ["ApiError", "SessionExpiredError", "TransportError"]
