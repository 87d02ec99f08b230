"""Tests for the outbound proxy client."""

import asyncio

import aiohttp.test_utils
from aiohttp import web
from multidict import CIMultiDict

from constants import CacheStatus
from fake_backend import FakeBackend
from src.lb.cache import EdgeCache
from src.lb.proxy import (
    PRIVATE_CACHE_CONTROL,
    ProxyClient,
    has_session_cookie,
    is_auth_path,
    rewrite_cookie_redirect,
)
from src.lb.types import RequestContext


class TestRequestBuilding:
    """Forwarded URL and headers for app backends."""

    def test_url_and_forwarding_headers(self):
        ctx = RequestContext.build(
            "https://jsr.test/@std/path?tab=docs",
            headers={
                "Host": "jsr.test",
                "Accept": "text/html",
                "Accept-Encoding": "gzip, br",
                "Connection": "keep-alive, X-Drop-Me",
                "X-Drop-Me": "1",
                "Keep-Alive": "timeout=5",
                "X-Forwarded-For": "10.0.0.1",
            },
            client_ip="203.0.113.9",
        )
        url, headers = ProxyClient().build_backend_request(ctx, "http://frontend:8000/")

        assert url == "http://frontend:8000/@std/path?tab=docs"
        assert headers["Host"] == "frontend:8000"
        assert headers["Accept"] == "text/html"
        assert headers["X-Forwarded-For"] == "10.0.0.1, 203.0.113.9"
        assert headers["X-Forwarded-Proto"] == "https"
        assert headers["X-Forwarded-Host"] == "jsr.test"
        for dropped in ("Accept-Encoding", "Connection", "X-Drop-Me", "Keep-Alive"):
            assert dropped not in headers

    def test_path_rewrite_keeps_encoding(self):
        ctx = RequestContext.build("https://api.jsr.test/scopes/a%20b?x=1")
        url, _ = ProxyClient().build_backend_request(ctx, "http://api", lambda p: f"/api{p}")
        assert url == "http://api/api/scopes/a%20b?x=1"

    def test_private_detection(self):
        client = ProxyClient()
        anon = RequestContext.build("https://jsr.test/")
        bearer = RequestContext.build("https://jsr.test/", headers={"Authorization": "Bearer x"})
        cookie = RequestContext.build("https://jsr.test/", headers={"Cookie": "theme=dark; token=abc"})
        assert client.is_private_request(anon, "/") is False
        assert client.is_private_request(bearer, "/") is True
        assert client.is_private_request(cookie, "/") is True
        assert client.is_private_request(anon, "/login/github") is True
        assert client.is_private_request(anon, "/logout") is True


class TestHelpers:
    def test_auth_paths(self):
        assert is_auth_path("/login") is True
        assert is_auth_path("/login/callback") is True
        assert is_auth_path("/logout") is True
        assert is_auth_path("/loginx") is False

    def test_session_cookie(self):
        headers = CIMultiDict({"Cookie": "a=1; token=xyz"})
        assert has_session_cookie(headers, "token") is True
        assert has_session_cookie(CIMultiDict({"Cookie": "tokenx=1"}), "token") is False
        assert has_session_cookie(CIMultiDict(), "token") is False


class TestCookieRedirect:
    """3xx responses carrying Set-Cookie."""

    def test_rewritten_to_html(self):
        headers = CIMultiDict([
            ("Location", "https://jsr.test/account?a=1&b=2"),
            ("Set-Cookie", "token=abc; Path=/; SameSite=Lax"),
            ("Set-Cookie", "state=; Max-Age=0"),
        ])
        outcome = rewrite_cookie_redirect(302, headers)

        assert outcome is not None
        assert outcome.status == 200
        assert outcome.headers["Content-Type"].startswith("text/html")
        assert outcome.headers.getall("Set-Cookie") == [
            "token=abc; Path=/; SameSite=Lax",
            "state=; Max-Age=0",
        ]
        assert "Location" not in outcome.headers
        body = outcome.body.decode()
        assert 'content="0;url=https://jsr.test/account?a=1&amp;b=2"' in body
        assert 'window.location.replace("https://jsr.test/account?a=1&b=2")' in body

    def test_plain_redirect_unchanged(self):
        assert rewrite_cookie_redirect(302, CIMultiDict({"Location": "/"})) is None

    def test_cookie_without_location_unchanged(self):
        assert rewrite_cookie_redirect(302, CIMultiDict({"Set-Cookie": "a=b"})) is None

    def test_non_redirect_unchanged(self):
        headers = CIMultiDict({"Location": "/", "Set-Cookie": "a=b"})
        assert rewrite_cookie_redirect(200, headers) is None


class TestProxyToBackend:
    """Round trips through a real aiohttp backend."""

    def test_anonymous_get_is_cached(self):
        backend = FakeBackend()

        async def _run():
            async with aiohttp.test_utils.TestServer(backend.app()) as ts:
                client = ProxyClient(cache=EdgeCache())
                ctx = RequestContext.build("https://jsr.test/@std")
                try:
                    first = await client.proxy_to_backend(ctx, backend.url(ts))
                    second = await client.proxy_to_backend(ctx, backend.url(ts))
                finally:
                    await client.stop()
                return first, second

        first, second = asyncio.run(_run())

        assert first.cache_status is CacheStatus.MISS
        assert second.cache_status is CacheStatus.HIT
        assert second.body == b"GET /@std"
        assert len(backend.requests) == 1

    def test_negotiated_response_not_replayed(self):
        backend = FakeBackend()

        def _negotiate(request):
            body = "html" if request.headers.get("Accept", "").startswith("text/html") else "json"
            return web.Response(
                text=body,
                headers={"Vary": "Accept", "Cache-Control": "public, max-age=60"},
            )

        backend.routes["//path"] = _negotiate

        async def _run():
            async with aiohttp.test_utils.TestServer(backend.app()) as ts:
                client = ProxyClient(cache=EdgeCache())
                try:
                    html = await client.proxy_to_backend(
                        RequestContext.build("https://jsr.test//path", headers={"Accept": "text/html"}),
                        backend.url(ts),
                    )
                    json_ = await client.proxy_to_backend(
                        RequestContext.build(
                            "https://jsr.test//path", headers={"Accept": "application/json"}
                        ),
                        backend.url(ts),
                    )
                finally:
                    await client.stop()
                return html, json_

        html, json_ = asyncio.run(_run())

        assert html.body == b"html"
        assert json_.body == b"json"
        assert json_.cache_status is CacheStatus.MISS
        assert len(backend.requests) == 2

    def test_session_cookie_bypasses_cache(self):
        backend = FakeBackend()

        async def _run():
            async with aiohttp.test_utils.TestServer(backend.app()) as ts:
                client = ProxyClient(cache=EdgeCache())
                ctx = RequestContext.build(
                    "https://jsr.test/account",
                    headers={"Cookie": "token=secret"},
                )
                try:
                    outcomes = [await client.proxy_to_backend(ctx, backend.url(ts)) for _ in range(2)]
                finally:
                    await client.stop()
                return outcomes

        outcomes = asyncio.run(_run())

        assert len(backend.requests) == 2
        for outcome in outcomes:
            assert outcome.cache_status is CacheStatus.BYPASS
            assert outcome.headers["Cache-Control"] == PRIVATE_CACHE_CONTROL
        assert backend.requests[0].headers["Cookie"] == "token=secret"

    def test_post_forwards_body_and_bypasses_cache(self):
        backend = FakeBackend()

        async def _run():
            async with aiohttp.test_utils.TestServer(backend.app()) as ts:
                client = ProxyClient(cache=EdgeCache())
                ctx = RequestContext.build(
                    "https://api.jsr.test/scopes",
                    method="POST",
                    headers={"Content-Type": "application/json"},
                    body=b'{"scope": "std"}',
                )
                try:
                    return await client.proxy_to_backend(ctx, backend.url(ts), lambda p: f"/api{p}")
                finally:
                    await client.stop()

        outcome = asyncio.run(_run())

        assert outcome.cache_status is CacheStatus.BYPASS
        assert backend.requests[0].method == "POST"
        assert backend.requests[0].path == "/api/scopes"
        assert backend.requests[0].body == b'{"scope": "std"}'

    def test_redirect_with_cookie_is_rewritten(self):
        backend = FakeBackend()

        def _login_callback(request):
            return web.Response(
                status=302,
                headers={"Location": "/", "Set-Cookie": "token=abc; Path=/"},
            )

        backend.routes["/login/callback"] = _login_callback

        async def _run():
            async with aiohttp.test_utils.TestServer(backend.app()) as ts:
                client = ProxyClient(cache=EdgeCache())
                ctx = RequestContext.build("https://jsr.test/login/callback?code=1")
                try:
                    return await client.proxy_to_backend(ctx, backend.url(ts))
                finally:
                    await client.stop()

        outcome = asyncio.run(_run())

        assert outcome.status == 200
        assert outcome.headers["Set-Cookie"] == "token=abc; Path=/"
        assert outcome.headers["Cache-Control"] == PRIVATE_CACHE_CONTROL
        assert b"window.location.replace" in outcome.body

    def test_plain_redirect_passes_through(self):
        backend = FakeBackend()
        backend.routes["/old"] = lambda request: web.Response(status=301, headers={"Location": "/new"})

        async def _run():
            async with aiohttp.test_utils.TestServer(backend.app()) as ts:
                client = ProxyClient()
                try:
                    return await client.proxy_to_backend(
                        RequestContext.build("https://jsr.test/old"), backend.url(ts)
                    )
                finally:
                    await client.stop()

        outcome = asyncio.run(_run())

        assert outcome.status == 301
        assert outcome.headers["Location"] == "/new"
        assert backend.paths() == ["/old"]

    def test_unreachable_backend_is_502(self):
        async def _run():
            client = ProxyClient(timeout=5)
            try:
                return await client.proxy_to_backend(
                    RequestContext.build("https://jsr.test/"), "http://127.0.0.1:1"
                )
            finally:
                await client.stop()

        outcome = asyncio.run(_run())

        assert outcome.status == 502
        assert outcome.body == b"Bad Gateway"


class TestProxyToObjectStorage:
    """Bucket reads."""

    def test_only_conditional_headers_forwarded(self):
        storage = FakeBackend()

        async def _run():
            async with aiohttp.test_utils.TestServer(storage.app()) as ts:
                client = ProxyClient()
                ctx = RequestContext.build(
                    "https://jsr.test/@std/path/1.0.0/mod.ts",
                    method="POST",
                    headers={
                        "If-None-Match": '"abc"',
                        "Authorization": "Bearer x",
                        "Cookie": "token=1",
                    },
                )
                try:
                    return await client.proxy_to_object_storage(ctx, storage.url(ts), "modules")
                finally:
                    await client.stop()

        outcome = asyncio.run(_run())

        seen = storage.requests[0]
        assert outcome.status == 200
        assert seen.method == "GET"
        assert seen.path == "/modules/@std/path/1.0.0/mod.ts"
        assert seen.headers["If-None-Match"] == '"abc"'
        assert "Authorization" not in seen.headers
        assert "Cookie" not in seen.headers

    def test_range_request_bypasses_cache(self):
        storage = FakeBackend()

        async def _run():
            async with aiohttp.test_utils.TestServer(storage.app()) as ts:
                client = ProxyClient(cache=EdgeCache())
                ctx = RequestContext.build(
                    "https://npm.jsr.test/@jsr/std__path",
                    headers={"Range": "bytes=0-10"},
                )
                try:
                    return [
                        await client.proxy_to_object_storage(ctx, storage.url(ts), "npm")
                        for _ in range(2)
                    ]
                finally:
                    await client.stop()

        outcomes = asyncio.run(_run())

        assert [o.cache_status for o in outcomes] == [CacheStatus.BYPASS, CacheStatus.BYPASS]
        assert len(storage.requests) == 2
        assert storage.requests[0].headers["Range"] == "bytes=0-10"

    def test_head_stays_head(self):
        storage = FakeBackend()

        async def _run():
            async with aiohttp.test_utils.TestServer(storage.app()) as ts:
                client = ProxyClient()
                ctx = RequestContext.build("https://jsr.test/@std/path/meta.json", method="HEAD")
                try:
                    return await client.proxy_to_object_storage(ctx, storage.url(ts), "modules")
                finally:
                    await client.stop()

        outcome = asyncio.run(_run())

        assert outcome.status == 200
        assert storage.requests[0].method == "HEAD"
