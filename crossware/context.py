"""Per-request context and metadata derivation.

A :class:`Context` is created fresh for every pipeline run and bundles the
read-only :class:`~crossware.messages.CanonicalRequest`, the mutable
:class:`~crossware.messages.ReplyBuilder`, a free-form ``state`` dict for
handlers to talk to each other, and :class:`RequestMeta`.
"""

from __future__ import annotations

import ipaddress
import logging
import time
import uuid
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlsplit

from starlette.datastructures import URL, Headers

from crossware.constants import CLIENT_IP_HEADERS, REQUEST_ID_HEADERS
from crossware.errors import InvalidRequestURLError
from crossware.messages import CanonicalRequest, ReplyBuilder

logger = logging.getLogger(__name__)


def generate_request_id() -> str:
    return str(uuid.uuid4())


def parse_request_url(url: str) -> URL:
    """Parse *url*, raising :class:`InvalidRequestURLError` unless absolute."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise InvalidRequestURLError(url)
    return URL(url)


def extract_request_id(headers: Headers) -> Optional[str]:
    """Return the first correlation id found in *headers*, if any."""
    for name in REQUEST_ID_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def is_valid_ip(candidate: str) -> bool:
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def extract_client_ip(headers: Headers) -> Optional[str]:
    """Return the first syntactically valid client address from proxy headers.

    Multi-value headers such as ``X-Forwarded-For`` contribute only their
    first entry.  Headers whose candidate does not parse as IPv4/IPv6 are
    skipped and the next header in priority order is tried.
    """
    for name in CLIENT_IP_HEADERS:
        value = headers.get(name)
        if not value:
            continue
        candidate = value.split(",")[0].strip()
        if candidate and is_valid_ip(candidate):
            return candidate
    return None


class RequestMeta:
    """Metadata derived once from the request at context creation.

    Everything is read-only except :attr:`id`, which a correlation-id
    handler may overwrite after creation.
    """

    __slots__ = ("id", "_start_time", "_t0", "_url", "_method", "_ip")

    def __init__(
        self,
        id: str,
        url: URL,
        method: str,
        ip: Optional[str] = None,
        start_time: Optional[float] = None,
    ) -> None:
        self.id = id
        self._url = url
        self._method = method
        self._ip = ip
        self._start_time = time.time() if start_time is None else start_time
        self._t0 = time.monotonic()

    def __repr__(self) -> str:
        return (
            f"RequestMeta(id={self.id!r}, method={self._method!r}, "
            f"url={str(self._url)!r}, ip={self._ip!r})"
        )

    @property
    def start_time(self) -> float:
        """Wall-clock creation time (seconds since the epoch)."""
        return self._start_time

    @property
    def url(self) -> URL:
        return self._url

    @property
    def method(self) -> str:
        return self._method

    @property
    def ip(self) -> Optional[str]:
        return self._ip

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the context was created."""
        return (time.monotonic() - self._t0) * 1000.0

    @classmethod
    def from_request(cls, request: CanonicalRequest) -> RequestMeta:
        url = parse_request_url(request.url)
        return cls(
            id=extract_request_id(request.headers) or generate_request_id(),
            url=url,
            method=request.method.upper(),
            ip=extract_client_ip(request.headers),
        )


class Context:
    """Per-request bundle threaded through every handler.

    Attributes:
        request: The inbound request (read-only).
        response: Reply builder shared by all handlers of this run.
        state: Mutable dict for inter-handler communication.
        meta: Derived request metadata.
    """

    __slots__ = ("_request", "response", "state", "_meta")

    def __init__(
        self,
        request: CanonicalRequest,
        initial_state: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._meta = RequestMeta.from_request(request)
        self._request = request
        self.response = ReplyBuilder()
        self.state: Dict[str, Any] = dict(initial_state or {})

    def __repr__(self) -> str:
        return f"Context(meta={self._meta!r}, state_keys={sorted(self.state)!r})"

    @property
    def request(self) -> CanonicalRequest:
        return self._request

    @property
    def meta(self) -> RequestMeta:
        return self._meta


def create_context(
    request: CanonicalRequest,
    initial_state: Optional[Mapping[str, Any]] = None,
) -> Context:
    """Create the context for one pipeline run.

    Raises :class:`~crossware.errors.InvalidRequestURLError` when the
    request URL is not absolute.
    """
    ctx = Context(request, initial_state)
    logger.debug(
        "[%s] Context created for %s %s (ip=%s)",
        ctx.meta.id,
        ctx.meta.method,
        ctx.meta.url.path,
        ctx.meta.ip,
    )
    return ctx
