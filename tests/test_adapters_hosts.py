"""Tests for the aiohttp and Flask integrations against real in-process hosts."""

from __future__ import annotations

import asyncio
import io
import threading

import pytest
from aiohttp import FormData, web
from aiohttp.test_utils import TestClient as AiohttpClient
from aiohttp.test_utils import TestServer as AiohttpServer
from flask import Flask

from crossware import CONTINUE, create_handler, pipe
from crossware.adapters.aiohttp import aiohttp_handler, build_web_response, to_aiohttp
from crossware.adapters.flask import flask_view, install_flask, to_canonical_request
from crossware.messages import CanonicalReply, to_headers


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
            "path": ctx.meta.url.path,
            "body": ctx.request.text(),
            "ip": ctx.meta.ip,
        }
    )
    return CONTINUE


async def _post_process(ctx, call_next):
    await call_next()
    ctx.response.append_header("X-Post", "1")
    return CONTINUE


async def _created(ctx, call_next):
    ctx.response.set_status(201).json({"ok": True})
    return CONTINUE


# ════════════════════════════════════════════════════════════════════════
#  aiohttp
# ════════════════════════════════════════════════════════════════════════


async def _aiohttp_downstream(request: web.Request) -> web.Response:
    body = await request.text()
    return web.Response(text=f"downstream:{body}")


def _aiohttp_app(pipeline, pass_through=True) -> web.Application:
    app = web.Application(middlewares=[to_aiohttp(pipeline, pass_through=pass_through)])
    app.router.add_route("*", "/", _aiohttp_downstream)
    return app


class TestAiohttpMiddleware:
    @pytest.mark.asyncio
    async def test_noop_passes_through_with_body(self) -> None:
        async with AiohttpClient(AiohttpServer(_aiohttp_app(pipe(_noop)))) as client:
            resp = await client.post("/", data=b"payload")
            assert resp.status == 200
            assert await resp.text() == "downstream:payload"

    @pytest.mark.asyncio
    async def test_json_reply_finalized(self) -> None:
        async with AiohttpClient(AiohttpServer(_aiohttp_app(pipe(_json_ok)))) as client:
            resp = await client.get("/")
            assert resp.status == 200
            assert await resp.json() == {"ok": True}
            assert resp.headers["Content-Type"] == "application/json; charset=utf-8"

    @pytest.mark.asyncio
    async def test_end_to_end_post_processing(self) -> None:
        async with AiohttpClient(AiohttpServer(_aiohttp_app(pipe(_post_process, _created)))) as client:
            resp = await client.get("/")
            assert resp.status == 201
            assert await resp.read() == b'{"ok":true}'
            assert resp.headers["X-Post"] == "1"

    @pytest.mark.asyncio
    async def test_request_translation(self) -> None:
        async with AiohttpClient(AiohttpServer(_aiohttp_app(pipe(_echo)))) as client:
            resp = await client.patch(
                "/", data=b"patch-body", headers={"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}
            )
            data = await resp.json()
            assert data == {"method": "PATCH", "path": "/", "body": "patch-body", "ip": "203.0.113.5"}

    @pytest.mark.asyncio
    async def test_errors_become_500(self) -> None:
        async def broken(ctx, call_next):
            raise RuntimeError("boom")

        async with AiohttpClient(AiohttpServer(_aiohttp_app(pipe(broken)))) as client:
            resp = await client.get("/")
            assert resp.status == 500

    @pytest.mark.asyncio
    async def test_route_handler(self) -> None:
        app = web.Application()
        app.router.add_get("/items", aiohttp_handler(pipe(_noop)))
        async with AiohttpClient(AiohttpServer(app)) as client:
            resp = await client.get("/items")
            assert resp.status == 200
            assert await resp.read() == b""

    @pytest.mark.asyncio
    async def test_form_parsed_upstream_is_rebuilt(self) -> None:
        @web.middleware
        async def parse_form_first(request, handler):
            form = await request.post()
            assert form["a"] == "1"
            return await handler(request)

        app = web.Application(middlewares=[parse_form_first, to_aiohttp(pipe(_echo))])
        app.router.add_route("*", "/", _aiohttp_downstream)
        data = FormData()
        data.add_field("a", "1")
        data.add_field("upload", io.BytesIO(b"file-bytes"), filename="f.txt", content_type="text/plain")

        async with AiohttpClient(AiohttpServer(app)) as client:
            resp = await client.post("/", data=data)
            body = (await resp.json())["body"]

        assert 'Content-Disposition: form-data; name="a"\r\n\r\n1\r\n' in body
        assert 'name="upload"; filename="f.txt"\r\nContent-Type: text/plain\r\n\r\nfile-bytes\r\n' in body
        assert body.endswith("--\r\n")

    def test_build_web_response_text(self) -> None:
        reply = CanonicalReply(
            status=418,
            headers=to_headers([("content-type", "text/plain; charset=utf-8"), ("x-a", "1"), ("x-a", "2")]),
            body=b"teapot",
        )
        response = build_web_response(reply)
        assert response.status == 418
        assert response.text == "teapot"
        assert response.headers.getall("X-A") == ["1", "2"]
        assert response.headers.getall("Content-Type") == ["text/plain; charset=utf-8"]


# ════════════════════════════════════════════════════════════════════════
#  Flask
# ════════════════════════════════════════════════════════════════════════


def _flask_app(pipeline, pass_through=False) -> Flask:
    app = Flask(__name__)

    @app.route("/", methods=["GET", "POST"])
    def index():
        return "downstream"

    install_flask(app, pipeline, pass_through=pass_through)
    return app


class TestFlaskHook:
    def test_finalizes_by_default(self) -> None:
        client = _flask_app(pipe(_noop)).test_client()
        response = client.get("/")
        assert response.status_code == 200
        assert response.data == b""

    def test_pass_through_enabled(self) -> None:
        client = _flask_app(pipe(_noop), pass_through=True).test_client()
        assert client.get("/").data == b"downstream"

    def test_json_reply(self) -> None:
        client = _flask_app(pipe(_post_process, _created)).test_client()
        response = client.get("/")
        assert response.status_code == 201
        assert response.get_json() == {"ok": True}
        assert response.headers["X-Post"] == "1"
        assert response.headers.getlist("Content-Type") == ["application/json; charset=utf-8"]

    def test_request_translation(self) -> None:
        client = _flask_app(pipe(_echo)).test_client()
        response = client.post("/", data=b"flask-body", headers={"X-Real-IP": "192.0.2.4"})
        assert response.get_json() == {
            "method": "POST",
            "path": "/",
            "body": "flask-body",
            "ip": "192.0.2.4",
        }

    def test_errors_propagate(self) -> None:
        async def broken(ctx, call_next):
            raise RuntimeError("flask boom")

        app = _flask_app(pipe(broken))
        app.config["TESTING"] = True
        with pytest.raises(RuntimeError, match="flask boom"):
            app.test_client().get("/")

    def test_view(self) -> None:
        app = Flask(__name__)
        app.add_url_rule("/items", "items", flask_view(pipe(_json_ok)))
        assert app.test_client().get("/items").get_json() == {"ok": True}

    def test_parsed_form_fallback(self) -> None:
        app = Flask(__name__)
        with app.test_request_context(
            "/", method="POST", data={"a": "1", "b": "x y"}
        ) as ctx:
            assert ctx.request.form["a"] == "1"
            canonical = to_canonical_request(ctx.request)
        assert canonical.body == b"a=1&b=x+y"
        assert canonical.url == "http://localhost/"

    def test_concurrent_first_requests_share_start(self) -> None:
        starts = []
        entered = threading.Event()

        async def slow_start() -> None:
            starts.append(1)
            entered.set()
            await asyncio.sleep(0.3)

        app = _flask_app(pipe(create_handler("slow-start", _json_ok, on_start=slow_start)))
        statuses = []

        def first_request() -> None:
            statuses.append(app.test_client().get("/").status_code)

        threads = [threading.Thread(target=first_request)]
        threads[0].start()
        assert entered.wait(5)
        threads.append(threading.Thread(target=first_request))
        threads[1].start()
        for thread in threads:
            thread.join(5)

        assert statuses == [200, 200]
        assert starts == [1]
