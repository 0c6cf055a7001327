"""crossware: framework-neutral HTTP handler pipelines."""

from crossware.adapters.base import Adapter, create_adapter, has_output, to_handler
from crossware.constants import PACKAGE_VERSION
from crossware.context import Context, RequestMeta, create_context
from crossware.engine import (
    CONTINUE,
    Continue,
    FunctionHandler,
    Handler,
    NextFunction,
    Outcome,
    Pipeline,
    RunResult,
    Stop,
    create_handler,
    create_pipeline,
    pipe,
    wrap_handler,
)
from crossware.errors import (
    AdapterError,
    AuthenticationError,
    ConfigurationError,
    CrosswareBaseError,
    HandlerError,
    InvalidRequestURLError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)
from crossware.messages import CanonicalReply, CanonicalRequest, ReplyBuilder

__version__ = PACKAGE_VERSION

__all__ = [
    "CONTINUE",
    "Adapter",
    "AdapterError",
    "AuthenticationError",
    "CanonicalReply",
    "CanonicalRequest",
    "ConfigurationError",
    "Context",
    "Continue",
    "CrosswareBaseError",
    "FunctionHandler",
    "Handler",
    "HandlerError",
    "InvalidRequestURLError",
    "NextFunction",
    "Outcome",
    "Pipeline",
    "RateLimitError",
    "ReplyBuilder",
    "RequestMeta",
    "RequestTimeoutError",
    "RunResult",
    "Stop",
    "ValidationError",
    "create_adapter",
    "create_context",
    "create_handler",
    "create_pipeline",
    "has_output",
    "pipe",
    "to_handler",
    "wrap_handler",
]
