"""Custom exception classes for crossware."""

from typing import Any, Dict, List, Optional


class CrosswareBaseError(Exception):
    """Base class for all custom exceptions in crossware."""

    pass


class ConfigurationError(CrosswareBaseError):
    """Raised when loading or validating the configuration file fails."""

    pass


class InvalidRequestURLError(CrosswareBaseError, ValueError):
    """Raised when a request URL is not absolute (no scheme or host)."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Request URL must be absolute, got '{url}'")


class AdapterError(CrosswareBaseError):
    """
    Raised when an adapter cannot translate a native request into
    the canonical message model.
    """

    def __init__(
        self,
        message: str,
        adapter_name: Optional[str] = None,
        orig_exc: Optional[Exception] = None,
    ):
        self.adapter_name = adapter_name
        self.orig_exc = orig_exc

        full_msg = "Adapter error"
        if adapter_name:
            full_msg += f" (adapter: {adapter_name})"
        full_msg += f": {message}"
        if orig_exc:
            full_msg += f" (original error: {type(orig_exc).__name__})"
        super().__init__(full_msg)


# ── Errors that map onto HTTP replies ────────────────────────────────────


class HandlerError(CrosswareBaseError):
    """Base class for handler errors that carry an HTTP status and a code."""

    def __init__(self, message: str, code: str, status_code: int):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
        }


class ValidationError(HandlerError):
    """Request data failed validation.

    ``errors`` is a list of ``{"path": [...], "message": str}`` items.
    """

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        super().__init__("Validation failed", "VALIDATION_ERROR", 400)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class AuthenticationError(HandlerError):
    """Raised when credentials are missing or invalid (maps to HTTP 401)."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, "AUTHENTICATION_ERROR", 401)


class RateLimitError(HandlerError):
    """Raised when a client exceeded its request budget (maps to HTTP 429)."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__("Rate limit exceeded", "RATE_LIMIT_ERROR", 429)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class RequestTimeoutError(HandlerError):
    """Raised when request processing exceeded its time budget (HTTP 408).

    ``duration`` is the exceeded budget in milliseconds.
    """

    def __init__(self, duration: int):
        self.duration = duration
        super().__init__("Request timeout", "TIMEOUT_ERROR", 408)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["duration"] = self.duration
        return data
