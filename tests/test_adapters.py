"""Tests for the adapter protocol and the ASGI / Starlette integrations."""

from __future__ import annotations

import io
import json
from unittest.mock import AsyncMock

import pytest
from starlette.applications import Starlette
from starlette.datastructures import FormData, Headers, UploadFile
from starlette.middleware import Middleware
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from crossware import (
    CONTINUE,
    AdapterError,
    CanonicalReply,
    CanonicalRequest,
    Stop,
    create_adapter,
    has_output,
    pipe,
    to_handler,
)
from crossware.adapters.asgi import PipelineMiddleware, read_body, replay_receive, to_asgi
from crossware.adapters.base import ReplySlot, encode_parsed_body, reply_payload
from crossware.adapters.starlette import build_response, starlette_endpoint, to_starlette
from crossware.constants import PARSED_BODY_STATE_KEY
from crossware.engine import create_handler
from crossware.messages import to_headers


async def _noop(ctx, call_next):
    await call_next()
    return CONTINUE


async def _json_ok(ctx, call_next):
    ctx.response.json({"ok": True})
    return CONTINUE


async def _echo(ctx, call_next):
    ctx.response.json(
        {
            "method": ctx.request.method,
            "url": ctx.request.url,
            "body": ctx.request.text(),
            "tags": ctx.request.headers.getlist("x-tag"),
        }
    )
    return CONTINUE


async def _downstream(request):
    return PlainTextResponse(f"downstream:{(await request.body()).decode()}")


# ════════════════════════════════════════════════════════════════════════
#  Protocol helpers
# ════════════════════════════════════════════════════════════════════════


class TestHasOutput:
    def test_default_reply_is_noop(self) -> None:
        assert not has_output(CanonicalReply())

    def test_status_content_type_or_location(self) -> None:
        assert has_output(CanonicalReply(status=204))
        assert has_output(CanonicalReply(headers=to_headers({"Content-Type": "text/plain"})))
        assert has_output(CanonicalReply(headers=to_headers({"Location": "/x"})))

    def test_other_headers_do_not_count(self) -> None:
        assert not has_output(CanonicalReply(headers=to_headers({"X-Request-ID": "1"})))


class TestEncodeParsedBody:
    def test_json(self) -> None:
        assert encode_parsed_body({"a": 1}, "application/json") == b'{"a":1}'

    def test_form_keeps_repeated_keys(self) -> None:
        form = FormData([("a", "1"), ("a", "2"), ("b", "x y")])
        assert encode_parsed_body(form, "application/x-www-form-urlencoded") == b"a=1&a=2&b=x+y"

    def test_str_and_bytes(self) -> None:
        assert encode_parsed_body("héllo", "text/plain") == "héllo".encode("utf-8")
        assert encode_parsed_body(b"raw", "application/octet-stream") == b"raw"
        assert encode_parsed_body(None, "application/json") is None

    def test_multipart_rebuilt_with_boundary(self) -> None:
        upload = UploadFile(io.BytesIO(b"file-bytes"), filename="f.txt", headers=Headers({"content-type": "text/plain"}))
        form = FormData([("a", "1"), ("upload", upload)])
        body = encode_parsed_body(form, "multipart/form-data; boundary=XyZ")
        assert body == (
            b'--XyZ\r\nContent-Disposition: form-data; name="a"\r\n\r\n1\r\n'
            b'--XyZ\r\nContent-Disposition: form-data; name="upload"; filename="f.txt"\r\n'
            b"Content-Type: text/plain\r\n\r\nfile-bytes\r\n"
            b"--XyZ--\r\n"
        )

    def test_multipart_without_boundary(self) -> None:
        with pytest.raises(AdapterError, match="boundary"):
            encode_parsed_body({"a": "1"}, "multipart/form-data")

    def test_unsupported(self) -> None:
        with pytest.raises(AdapterError):
            encode_parsed_body(object(), "application/octet-stream")


class TestReplyPayload:
    def test_kinds(self) -> None:
        json_reply = CanonicalReply(headers=to_headers({"content-type": "application/json"}), body=b"[1]")
        assert reply_payload(json_reply) == ("json", [1])
        text_reply = CanonicalReply(headers=to_headers({"content-type": "text/plain"}), body=b"hi")
        assert reply_payload(text_reply) == ("text", "hi")
        assert reply_payload(CanonicalReply(body=b"\x00")) == ("bytes", b"\x00")

    def test_non_utf8_text_kept_as_bytes(self) -> None:
        reply = CanonicalReply(headers=to_headers({"content-type": "text/plain; charset=latin-1"}), body=b"caf\xe9")
        assert reply_payload(reply) == ("bytes", b"caf\xe9")
        quoted = CanonicalReply(headers=to_headers({"content-type": 'text/html; charset="UTF8"'}), body=b"<b>")
        assert reply_payload(quoted) == ("text", "<b>")

    def test_unknown_charset_kept_as_bytes(self) -> None:
        reply = CanonicalReply(headers=to_headers({"content-type": "text/plain; charset=klingon"}), body=b"qapla")
        assert reply_payload(reply) == ("bytes", b"qapla")

    def test_latin1_reply_sent_verbatim(self) -> None:
        async def latin(ctx, call_next):
            ctx.response.set_header("Content-Type", "text/plain; charset=latin-1")
            ctx.response.body = b"caf\xe9"
            return CONTINUE

        client = TestClient(Starlette(routes=[Route("/", starlette_endpoint(pipe(latin)))]))
        response = client.get("/")
        assert response.status_code == 200
        assert response.content == b"caf\xe9"
        assert response.headers["content-type"] == "text/plain; charset=latin-1"


class TestCreateAdapter:
    @pytest.mark.asyncio
    async def test_composes_translation_pipeline_and_reply(self) -> None:
        written = []

        def to_request(native):
            return CanonicalRequest(url=native["url"], method=native["method"])

        async def to_reply(reply, target):
            target.append(reply)

        def create_native(run):
            async def native_handler(native, target):
                await run(native, target)

            return native_handler

        adapter = create_adapter(
            name="dict",
            to_canonical_request=to_request,
            to_native_reply=to_reply,
            create_native_handler=create_native,
        )
        handler = adapter(pipe(_json_ok))
        await handler({"url": "http://localhost/", "method": "get"}, written)

        assert len(written) == 1
        assert written[0].json() == {"ok": True}
        assert adapter.name == "dict"

    @pytest.mark.asyncio
    async def test_translation_failure_wrapped(self) -> None:
        def to_request(native):
            raise KeyError("url")

        adapter = create_adapter(
            name="broken",
            to_canonical_request=to_request,
            to_native_reply=AsyncMock(),
            create_native_handler=lambda run: run,
        )
        with pytest.raises(AdapterError) as exc_info:
            await adapter(pipe(_json_ok))({}, None)
        assert exc_info.value.adapter_name == "broken"
        assert isinstance(exc_info.value.orig_exc, KeyError)

    @pytest.mark.asyncio
    async def test_to_handler(self) -> None:
        handle = to_handler(pipe(_json_ok))
        reply = await handle(CanonicalRequest(url="http://localhost/"))
        assert reply.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_reply_slot(self) -> None:
        slot = ReplySlot()
        assert slot.value is None


# ════════════════════════════════════════════════════════════════════════
#  Starlette
# ════════════════════════════════════════════════════════════════════════


def _starlette_app(pipeline, pass_through=True) -> Starlette:
    return Starlette(
        routes=[Route("/", _downstream, methods=["GET", "POST"])],
        middleware=[to_starlette(pipeline, pass_through=pass_through)],
    )


class TestStarletteMiddleware:
    def test_noop_pipeline_passes_through(self) -> None:
        client = TestClient(_starlette_app(pipe(_noop)))
        response = client.post("/", content=b"payload")
        assert response.status_code == 200
        assert response.text == "downstream:payload"

    def test_json_reply_finalized(self) -> None:
        client = TestClient(_starlette_app(pipe(_json_ok)))
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert response.headers["content-type"] == "application/json; charset=utf-8"

    def test_end_to_end_post_processing(self) -> None:
        async def a(ctx, call_next):
            await call_next()
            ctx.response.append_header("X-Post", "1")
            return CONTINUE

        async def b(ctx, call_next):
            ctx.response.set_status(201).json({"ok": True})
            return CONTINUE

        response = TestClient(_starlette_app(pipe(a, b))).get("/")
        assert response.status_code == 201
        assert response.content == b'{"ok":true}'
        assert response.headers["x-post"] == "1"

    def test_pass_through_disabled(self) -> None:
        response = TestClient(_starlette_app(pipe(_noop), pass_through=False)).get("/")
        assert response.status_code == 200
        assert response.content == b""

    def test_redirect(self) -> None:
        async def go(ctx, call_next):
            ctx.response.redirect("/login")
            return CONTINUE

        client = TestClient(_starlette_app(pipe(go)), follow_redirects=False)
        response = client.get("/")
        assert response.status_code == 302
        assert response.headers["location"] == "/login"

    def test_repeated_reply_headers_preserved(self) -> None:
        async def cookies(ctx, call_next):
            ctx.response.append_header("Set-Cookie", "a=1").append_header("Set-Cookie", "b=2")
            return Stop(ctx.response.text("ok").build())

        response = TestClient(_starlette_app(pipe(cookies))).get("/")
        assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]
        assert response.text == "ok"

    def test_request_translation(self) -> None:
        client = TestClient(_starlette_app(pipe(_echo)))
        response = client.post(
            "/?q=1", content=b"hello", headers=[("X-Tag", "a"), ("X-Tag", "b")]
        )
        data = response.json()
        assert data["method"] == "POST"
        assert data["url"] == "http://testserver/?q=1"
        assert data["body"] == "hello"
        assert data["tags"] == ["a", "b"]

    def test_get_body_not_forwarded(self) -> None:
        async def check(ctx, call_next):
            ctx.response.json({"body": ctx.request.body is None})
            return CONTINUE

        response = TestClient(_starlette_app(pipe(check))).get("/")
        assert response.json() == {"body": True}

    def test_errors_propagate(self) -> None:
        async def broken(ctx, call_next):
            raise RuntimeError("handler failed")

        with pytest.raises(RuntimeError, match="handler failed"):
            TestClient(_starlette_app(pipe(broken))).get("/")


class _BodyConsumingMiddleware:
    """Outer ASGI app that drains the body and leaves only its parsed form."""

    def __init__(self, app, store_parsed=True) -> None:
        self.app = app
        self.store_parsed = store_parsed

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        raw = await read_body(receive)
        if self.store_parsed:
            scope.setdefault("state", {})[PARSED_BODY_STATE_KEY] = json.loads(raw)

        async def drained():
            return {"type": "http.disconnect"}

        await self.app(scope, drained, send)


class TestStarletteConsumedBody:
    def _app(self, store_parsed=True) -> Starlette:
        return Starlette(
            routes=[Route("/", _downstream, methods=["POST"])],
            middleware=[
                Middleware(_BodyConsumingMiddleware, store_parsed=store_parsed),
                to_starlette(pipe(_echo)),
            ],
        )

    def test_parsed_body_from_state(self) -> None:
        response = TestClient(self._app()).post("/", json={"a": 1, "b": [2, 3]})
        assert response.status_code == 200
        assert json.loads(response.json()["body"]) == {"a": 1, "b": [2, 3]}

    def test_consumed_without_parsed_body(self) -> None:
        with pytest.raises(AdapterError, match="no parsed body"):
            TestClient(self._app(store_parsed=False)).post("/", json={"a": 1})


class TestStarletteEndpoint:
    def test_endpoint_always_finalizes(self) -> None:
        app = Starlette(routes=[Route("/items", starlette_endpoint(pipe(_noop)))])
        response = TestClient(app).get("/items")
        assert response.status_code == 200
        assert response.content == b""

    def test_endpoint_json(self) -> None:
        app = Starlette(routes=[Route("/items", starlette_endpoint(pipe(_json_ok)))])
        assert TestClient(app).get("/items").json() == {"ok": True}

    def test_build_response_skips_content_length(self) -> None:
        reply = CanonicalReply(
            headers=to_headers({"content-type": "text/plain", "content-length": "999"}),
            body=b"four",
        )
        response = build_response(reply)
        assert response.headers["content-length"] == "4"
        assert response.headers["content-type"] == "text/plain"


# ════════════════════════════════════════════════════════════════════════
#  Pure ASGI
# ════════════════════════════════════════════════════════════════════════


class TestAsgiMiddleware:
    def test_wraps_downstream_app(self) -> None:
        downstream = Starlette(routes=[Route("/", _downstream, methods=["POST"])])
        client = TestClient(to_asgi(pipe(_noop), app=downstream))
        response = client.post("/", content=b"replayed")
        assert response.text == "downstream:replayed"

    def test_output_short_circuits_downstream(self) -> None:
        downstream = AsyncMock()
        client = TestClient(PipelineMiddleware(downstream, pipe(_json_ok)))
        response = client.get("/")
        assert response.json() == {"ok": True}
        downstream.assert_not_awaited()

    def test_endpoint_mode(self) -> None:
        client = TestClient(to_asgi(pipe(_echo)))
        response = client.put("/things/1", content=b"data")
        assert response.json()["method"] == "PUT"
        assert response.json()["url"] == "http://testserver/things/1"
        assert response.json()["body"] == "data"

    def test_lifespan_drives_hooks(self) -> None:
        events = []
        handler = create_handler(
            "hooks",
            _noop,
            on_start=lambda: events.append("start"),
            on_stop=lambda: events.append("stop"),
        )
        with TestClient(to_asgi(pipe(handler))) as client:
            assert events == ["start"]
            client.get("/")
        assert events == ["start", "stop"]

    @pytest.mark.asyncio
    async def test_replay_receive(self) -> None:
        upstream = AsyncMock(return_value={"type": "http.disconnect"})
        receive = replay_receive(b"body", upstream)
        assert await receive() == {"type": "http.request", "body": b"body", "more_body": False}
        assert await receive() == {"type": "http.disconnect"}

    @pytest.mark.asyncio
    async def test_disconnect_before_body(self) -> None:
        receive = AsyncMock(return_value={"type": "http.disconnect"})
        scope = {
            "type": "http",
            "method": "POST",
            "path": "/",
            "headers": [(b"host", b"example.com")],
            "query_string": b"",
            "scheme": "http",
        }
        with pytest.raises(AdapterError):
            await to_asgi(pipe(_noop))(scope, receive, AsyncMock())

    @pytest.mark.asyncio
    async def test_chunked_body_joined(self) -> None:
        messages = iter(
            [
                {"type": "http.request", "body": b"he", "more_body": True},
                {"type": "http.request", "body": b"llo", "more_body": False},
            ]
        )
        sent = []

        async def receive():
            return next(messages)

        async def send(message):
            sent.append(message)

        scope = {
            "type": "http",
            "method": "POST",
            "path": "/",
            "headers": [(b"host", b"example.com")],
            "query_string": b"",
            "scheme": "http",
        }
        await to_asgi(pipe(_echo))(scope, receive, send)
        body = b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
        assert json.loads(body)["body"] == "hello"
        assert sent[0]["status"] == 200
