"""Shared constants for crossware."""

PACKAGE_NAME = "crossware"
PACKAGE_VERSION = "0.1.0"

# Request metadata derivation (checked in order, first hit wins)
REQUEST_ID_HEADERS = ("x-request-id", "x-correlation-id", "request-id")
CLIENT_IP_HEADERS = (
    "cf-connecting-ip",  # Cloudflare
    "x-real-ip",  # nginx
    "x-forwarded-for",  # standard proxy chain
    "x-client-ip",  # Apache
    "true-client-ip",  # Akamai
)

# Methods whose body adapters never forward
BODYLESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Reply content types written by ReplyBuilder
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"

# Headers the host transport recomputes itself
TRANSPORT_MANAGED_HEADERS = frozenset({"content-length"})

DEFAULT_REDIRECT_STATUS = 302

# Built-in handler defaults
DEFAULT_REQUEST_ID_HEADER = "X-Request-ID"
DEFAULT_TIMEOUT = "30s"
DEFAULT_TIMEOUT_STATUS = 408
DEFAULT_TIMEOUT_MESSAGE = "Request timeout"

# Logging defaults
DEFAULT_LOG_LEVEL = "INFO"
SENSITIVE_HEADERS = ("authorization", "cookie", "set-cookie", "x-api-key")

# ``request.state`` attribute where an upstream component that consumed the
# request stream leaves its parsed body for the Starlette adapter
PARSED_BODY_STATE_KEY = "parsed_body"
