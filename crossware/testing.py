"""Helpers for unit-testing handlers and pipelines without a host framework.

Usage::

    result = await run_handler(my_handler, url="http://localhost/users", method="POST", body={"a": 1})
    assert result.status == 201
    assert result.json == {"id": 1}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlencode

from starlette.datastructures import Headers

from crossware.constants import JSON_CONTENT_TYPE
from crossware.engine.chain import Pipeline
from crossware.messages import CanonicalReply, CanonicalRequest, HeadersLike, to_headers

DEFAULT_TEST_URL = "http://localhost/"

RequestBody = Union[bytes, str, Mapping[str, Any], list, None]


def mock_request(
    url: str = DEFAULT_TEST_URL,
    method: str = "GET",
    headers: HeadersLike = None,
    body: RequestBody = None,
    query: Optional[Mapping[str, Any]] = None,
) -> CanonicalRequest:
    """Build a :class:`CanonicalRequest` for tests.

    Dict and list bodies are JSON-encoded and get a JSON Content-Type unless
    *headers* already sets one.  *query* is url-encoded onto *url*.
    """
    if query:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{urlencode(query, doseq=True)}"

    header_map = to_headers(headers)
    raw_body: Optional[bytes] = None
    if isinstance(body, (Mapping, list)):
        raw_body = json.dumps(body).encode("utf-8")
        if "content-type" not in header_map:
            header_map = Headers(raw=list(header_map.raw) + [(b"content-type", JSON_CONTENT_TYPE.encode("latin-1"))])
    elif isinstance(body, str):
        raw_body = body.encode("utf-8")
    elif body is not None:
        raw_body = bytes(body)

    return CanonicalRequest(url=url, method=method, headers=header_map, body=raw_body)


def mock_get(url: str = DEFAULT_TEST_URL, **kwargs: Any) -> CanonicalRequest:
    return mock_request(url, method="GET", **kwargs)


def mock_post(url: str = DEFAULT_TEST_URL, body: RequestBody = None, **kwargs: Any) -> CanonicalRequest:
    return mock_request(url, method="POST", body=body, **kwargs)


@dataclass
class HandlerResult:
    """Outcome of :func:`run_handler` / :func:`run_pipeline`."""

    reply: CanonicalReply
    short_circuited: bool

    @property
    def status(self) -> int:
        return self.reply.status

    @property
    def headers(self) -> Headers:
        return self.reply.headers

    @property
    def text(self) -> str:
        return self.reply.text()

    @property
    def json(self) -> Any:
        return self.reply.json() if self.reply.body else None


async def run_pipeline(
    pipeline: Pipeline,
    initial_state: Optional[Mapping[str, Any]] = None,
    **request_options: Any,
) -> HandlerResult:
    """Run *pipeline* against ``mock_request(**request_options)``."""
    result = await pipeline.execute(mock_request(**request_options), initial_state)
    return HandlerResult(reply=result.reply, short_circuited=result.short_circuited)


async def run_handler(handler: Any, **request_options: Any) -> HandlerResult:
    """Run a single handler (object or async function) in a fresh pipeline."""
    return await run_pipeline(Pipeline((handler,)), **request_options)
