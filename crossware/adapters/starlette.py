"""Starlette integration.

Two entry points:

* :func:`to_starlette`: a ``Middleware`` entry for ``Starlette(middleware=[...])``.
  The pipeline runs before the routes; when its reply carries no output
  (see :func:`~crossware.adapters.base.has_output`) the request continues
  to the matched route, otherwise the pipeline's reply is returned.
* :func:`starlette_endpoint`: a route endpoint that always returns the
  pipeline's reply.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from crossware.adapters.base import (
    ReplySlot,
    RunFunction,
    create_adapter,
    encode_parsed_body,
    has_output,
    method_has_body,
    reply_headers,
    reply_payload,
    resolve_pass_through,
)
from crossware.config.schema import AdapterSettings
from crossware.constants import PARSED_BODY_STATE_KEY
from crossware.engine.chain import Pipeline
from crossware.errors import AdapterError
from crossware.messages import CanonicalReply, CanonicalRequest, to_headers

logger = logging.getLogger(__name__)


async def to_canonical_request(request: Request) -> CanonicalRequest:
    """Translate a Starlette request.

    When an outer component already drained the receive stream, the body
    is rebuilt from the parsed value it stored as
    ``request.state.parsed_body``.
    """
    body: Optional[bytes] = None
    if method_has_body(request.method):
        try:
            body = await request.body()
        except (ClientDisconnect, RuntimeError) as exc:
            parsed = getattr(request.state, PARSED_BODY_STATE_KEY, None)
            if parsed is None:
                raise AdapterError(
                    "Request body was consumed and no parsed body is available", "starlette", exc
                ) from exc
            body = encode_parsed_body(parsed, request.headers.get("content-type", ""))
    return CanonicalRequest(
        url=str(request.url),
        method=request.method,
        headers=to_headers(request.headers),
        body=body or None,
    )


def build_response(reply: CanonicalReply) -> Response:
    """Render *reply* as a Starlette ``Response``.

    JSON bodies go through ``JSONResponse``; the reply's own headers
    (Content-Type included) replace the defaults Starlette adds.
    """
    kind, payload = reply_payload(reply)
    if kind == "json":
        response: Response = JSONResponse(payload, status_code=reply.status)
    else:
        response = Response(payload, status_code=reply.status)
    del response.headers["content-type"]
    for name, value in reply_headers(reply):
        response.headers.append(name, value)
    return response


def to_native_reply(reply: CanonicalReply, slot: ReplySlot) -> None:
    slot.value = build_response(reply)


def _create_endpoint(run: RunFunction) -> Any:
    async def crossware_endpoint(request: Request) -> Response:
        slot = ReplySlot()
        await run(request, slot)
        return slot.value

    return crossware_endpoint


starlette_adapter = create_adapter(
    name="starlette",
    to_canonical_request=to_canonical_request,
    to_native_reply=to_native_reply,
    create_native_handler=_create_endpoint,
)


def starlette_endpoint(pipeline: Pipeline) -> Any:
    """Route endpoint that answers every request with the pipeline's reply."""
    return starlette_adapter(pipeline)


class PipelineDispatchMiddleware(BaseHTTPMiddleware):
    """Run a pipeline in front of the Starlette routes.

    Parameters
    ----------
    app:
        The wrapped ASGI application (supplied by Starlette).
    pipeline:
        The pipeline to run for every HTTP request.
    pass_through:
        Continue to the routes when the pipeline produced no output.
    """

    def __init__(self, app: ASGIApp, pipeline: Pipeline, pass_through: bool = True) -> None:
        super().__init__(app)
        self.pipeline = pipeline
        self.pass_through = pass_through

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        canonical = await starlette_adapter.translate_request(request)
        reply = await self.pipeline.run(canonical)
        if self.pass_through and not has_output(reply):
            logger.debug("No pipeline output for %s %s; passing through.", request.method, request.url.path)
            return await call_next(request)
        return build_response(reply)


def to_starlette(
    pipeline: Pipeline,
    pass_through: Optional[bool] = None,
    *,
    settings: Optional[AdapterSettings] = None,
) -> Middleware:
    """Return a ``Middleware`` entry running *pipeline* before the routes::

        app = Starlette(routes=routes, middleware=[to_starlette(pipeline, settings=config.adapter)])

    *pass_through* defaults to ``settings.pass_through`` and then to *True*.
    """
    return Middleware(
        PipelineDispatchMiddleware,
        pipeline=pipeline,
        pass_through=resolve_pass_through(pass_through, settings, True),
    )
