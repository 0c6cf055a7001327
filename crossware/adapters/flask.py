"""Flask integration.

The pipeline runs as an async ``before_request`` hook (requires the
``flask[async]`` extra).  Returning a response from that hook ends the
request, so by default every request is answered by the pipeline; pass
``pass_through=True`` to let requests without pipeline output reach the
Flask views.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from flask import Flask, Response, current_app, jsonify, request

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
from crossware.engine.chain import Pipeline
from crossware.messages import CanonicalReply, CanonicalRequest, to_headers

logger = logging.getLogger(__name__)


def to_canonical_request(flask_request: Any) -> CanonicalRequest:
    body: Optional[bytes] = None
    if method_has_body(flask_request.method):
        body = flask_request.get_data(cache=True)
        if not body and flask_request.form:
            body = encode_parsed_body(flask_request.form, flask_request.content_type or "")
    return CanonicalRequest(
        url=flask_request.url,
        method=flask_request.method,
        headers=to_headers(list(flask_request.headers.items())),
        body=body or None,
    )


def build_flask_response(reply: CanonicalReply) -> Response:
    kind, payload = reply_payload(reply)
    if kind == "json":
        response = jsonify(payload)
        response.status_code = reply.status
    else:
        response = current_app.response_class(payload, status=reply.status)
    response.headers.pop("Content-Type", None)
    for name, value in reply_headers(reply):
        response.headers.add(name, value)
    return response


def to_native_reply(reply: CanonicalReply, slot: ReplySlot) -> None:
    slot.value = build_flask_response(reply)


def _create_view(run: RunFunction) -> Callable[..., Any]:
    async def crossware_view(*args: Any, **kwargs: Any) -> Response:
        slot = ReplySlot()
        await run(request._get_current_object(), slot)
        return slot.value

    return crossware_view


flask_adapter = create_adapter(
    name="flask",
    to_canonical_request=to_canonical_request,
    to_native_reply=to_native_reply,
    create_native_handler=_create_view,
)


def flask_view(pipeline: Pipeline) -> Callable[..., Any]:
    """View function answering every request with the pipeline's reply::

        app.add_url_rule("/api/<path:rest>", "api", flask_view(pipeline))
    """
    return flask_adapter(pipeline)


def to_flask(
    pipeline: Pipeline,
    pass_through: Optional[bool] = None,
    *,
    settings: Optional[AdapterSettings] = None,
) -> Callable[[], Any]:
    """Return an async ``before_request`` hook running *pipeline*.

    *pass_through* defaults to ``settings.pass_through`` and then to *False*.
    """
    pass_through = resolve_pass_through(pass_through, settings, False)

    async def crossware_before_request() -> Optional[Response]:
        canonical = await flask_adapter.translate_request(request._get_current_object())
        reply = await pipeline.run(canonical)
        if pass_through and not has_output(reply):
            logger.debug("No pipeline output for %s %s; passing through.", request.method, request.path)
            return None
        return build_flask_response(reply)

    return crossware_before_request


def install_flask(
    app: Flask,
    pipeline: Pipeline,
    pass_through: Optional[bool] = None,
    *,
    settings: Optional[AdapterSettings] = None,
) -> Flask:
    app.before_request(to_flask(pipeline, pass_through=pass_through, settings=settings))
    return app
