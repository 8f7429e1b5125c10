"""Engine error taxonomy.

Only ConfigError escapes BatchOrchestrator.run_batch; everything else is
recorded as data on the per-test result.
"""

from __future__ import annotations

from typing import Optional


class EngineError(Exception):
    """Base exception for the test engine."""

    retryable: bool = False


class ConfigError(EngineError, ValueError):
    """Raised when options, tests or settings are malformed."""


class NetworkError(EngineError):
    """No response was received (refused, DNS, reset)."""

    retryable = True

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class TimeoutError(NetworkError):
    """The per-request timeout elapsed before a response arrived."""


class HttpError(EngineError):
    """A response was received with a non-2xx status."""

    def __init__(self, status: int, reason: str = ""):
        self.status = status
        self.reason = reason
        super().__init__(f"HTTP {status} {reason}".rstrip())

    @classmethod
    def for_status(cls, status: int, reason: str = "") -> Optional["HttpError"]:
        if status >= 500:
            return HttpServerError(status, reason)
        if status >= 400:
            return HttpClientError(status, reason)
        if not 200 <= status < 300:
            return HttpError(status, reason)
        return None


class HttpServerError(HttpError):
    retryable = True


class HttpClientError(HttpError):
    retryable = False


class AuthError(EngineError):
    """Credential resolution or token fetch failed."""


class ValidationError(EngineError):
    """A malformed assertion (bad regex, bad JSONPath)."""


class CancellationError(EngineError):
    """The batch was aborted externally."""
