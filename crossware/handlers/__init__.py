"""Built-in handlers that plug into the engine's handler contract."""

from crossware.handlers.error_handler import ErrorHandler
from crossware.handlers.request_id import RequestIdHandler
from crossware.handlers.timeout import TimeoutHandler

__all__ = [
    "ErrorHandler",
    "RequestIdHandler",
    "TimeoutHandler",
]
