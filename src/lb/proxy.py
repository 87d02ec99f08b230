"""Outbound proxying to app backends and object storage."""

from __future__ import annotations

import asyncio
import html
import json
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Tuple

import aiohttp
from aiohttp import web
from multidict import CIMultiDict
from yarl import URL

from common.logging_utils import Timer, extra_context, is_debug_enabled, safe_url
from constants import CacheStatus, Constants

from .cache import EdgeCache, cache_key
from .types import RequestContext

logger = logging.getLogger(__name__)

PathRewrite = Callable[[str], str]

HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Forwarded to object storage; everything else is dropped.
STORAGE_REQUEST_HEADERS = ("If-None-Match", "If-Modified-Since", "Range")

PRIVATE_CACHE_CONTROL = "private, no-store"


def is_auth_path(path: str) -> bool:
    """Login and logout routes set session cookies and are never cached."""
    return path == "/login" or path.startswith("/login/") or path == "/logout"


def has_session_cookie(headers: Mapping[str, str], cookie_name: str) -> bool:
    for header in headers.getall("Cookie", []):
        for part in header.split(";"):
            name, sep, _ = part.strip().partition("=")
            if sep and name == cookie_name:
                return True
    return False


@dataclass
class ProxyOutcome:
    """Result of one backend call."""

    status: int
    headers: CIMultiDict
    body: bytes
    cache_status: CacheStatus
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_response(self) -> web.Response:
        return web.Response(status=self.status, headers=self.headers, body=self.body)


def bad_gateway(cache_status: CacheStatus, duration_ms: float = 0.0) -> ProxyOutcome:
    return ProxyOutcome(
        status=502,
        headers=CIMultiDict({"Content-Type": "text/plain"}),
        body=b"Bad Gateway",
        cache_status=cache_status,
        duration_ms=duration_ms,
    )


def rewrite_cookie_redirect(status: int, headers: CIMultiDict) -> Optional[ProxyOutcome]:
    """Turn a 3xx carrying Set-Cookie into a 200 HTML redirect.

    Browsers can drop a SameSite=Lax cookie set on a redirect that is part
    of a cross-site chain (OAuth login). An HTML redirect keeps the cookie.
    Returns None when the response does not need rewriting.
    """
    if not 300 <= status < 400:
        return None
    location = headers.get("Location")
    if not location or "Set-Cookie" not in headers:
        return None

    attr = html.escape(location, quote=True)
    script = json.dumps(location).replace("<", "\\u003c")
    body = (
        "<!DOCTYPE html>\n"
        "<html><head><meta charset=\"utf-8\">"
        f"<meta http-equiv=\"refresh\" content=\"0;url={attr}\">"
        "<title>Redirecting</title></head>"
        f"<body><script>window.location.replace({script});</script>"
        f"<a href=\"{attr}\">Continue</a></body></html>\n"
    ).encode("utf-8")

    new_headers = CIMultiDict({"Content-Type": "text/html; charset=utf-8"})
    for cookie in headers.getall("Set-Cookie"):
        new_headers.add("Set-Cookie", cookie)
    return ProxyOutcome(
        status=200,
        headers=new_headers,
        body=body,
        cache_status=CacheStatus.BYPASS,
    )


class ProxyClient:
    """Fetches from app backends and object storage on behalf of the router.

    There are no retries: a failed backend call is reported as 502.
    """

    def __init__(
        self,
        cache: Optional[EdgeCache] = None,
        timeout: Optional[float] = None,
        session_cookie_name: str = "token",
    ):
        """Initialize the proxy client.

        Args:
            cache: Edge cache; None disables caching.
            timeout: Total backend timeout in seconds; None keeps aiohttp's default.
            session_cookie_name: Cookie that marks an authenticated request.
        """
        self._cache = cache
        self._timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None
        self._session_cookie_name = session_cookie_name
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def cache(self) -> Optional[EdgeCache]:
        return self._cache

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            kwargs = {}
            if self._timeout is not None:
                kwargs["timeout"] = self._timeout
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=100),
                # Cookies belong to the end user, never to the proxy.
                cookie_jar=aiohttp.DummyCookieJar(),
                **kwargs,
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            await self.start()
        assert self._session is not None
        return self._session

    def is_private_request(self, ctx: RequestContext, path: str) -> bool:
        """Authenticated requests and auth routes must not be shared via cache."""
        return (
            "Authorization" in ctx.headers
            or has_session_cookie(ctx.headers, self._session_cookie_name)
            or is_auth_path(path)
        )

    def build_backend_request(
        self,
        ctx: RequestContext,
        backend_url: str,
        path_rewrite: Optional[PathRewrite] = None,
    ) -> Tuple[str, CIMultiDict]:
        """Build the backend URL and forwarded headers for app-backend mode."""
        path = ctx.raw_path
        if path_rewrite:
            path = path_rewrite(path)
        url = backend_url.rstrip("/") + path
        if ctx.query_string:
            url = f"{url}?{ctx.query_string}"

        connection_tokens = {
            token.strip().lower()
            for value in ctx.headers.getall("Connection", [])
            for token in value.split(",")
        }
        headers = CIMultiDict()
        for key, value in ctx.headers.items():
            key_lower = key.lower()
            if key_lower in HOP_BY_HOP or key_lower in connection_tokens:
                continue
            # Host is replaced below; length and encoding are renegotiated.
            if key_lower in ("host", "content-length", "accept-encoding"):
                continue
            headers.add(key, value)

        headers["Host"] = urllib.parse.urlsplit(backend_url).netloc
        if ctx.client_ip:
            existing = ctx.headers.get("X-Forwarded-For")
            headers["X-Forwarded-For"] = f"{existing}, {ctx.client_ip}" if existing else ctx.client_ip
        headers["X-Forwarded-Proto"] = ctx.url.scheme
        headers["X-Forwarded-Host"] = ctx.url.raw_authority
        return url, headers

    async def proxy_to_backend(
        self,
        ctx: RequestContext,
        backend_url: str,
        path_rewrite: Optional[PathRewrite] = None,
    ) -> ProxyOutcome:
        """Proxy to a rendered-app or API backend.

        Args:
            ctx: Inbound request.
            backend_url: Base URL of the backend.
            path_rewrite: Optional rewrite of the raw request path.

        Returns:
            ProxyOutcome; 502 on network failure.
        """
        url, headers = self.build_backend_request(ctx, backend_url, path_rewrite)
        private = self.is_private_request(ctx, URL(url, encoded=True).path)
        cacheable = not private and ctx.method in ("GET", "HEAD") and "Range" not in ctx.headers

        outcome = await self._fetch(
            ctx.method,
            url,
            headers,
            ctx.body,
            cacheable=cacheable,
            allow_redirects=False,
        )
        rewritten = rewrite_cookie_redirect(outcome.status, outcome.headers)
        if rewritten is not None:
            rewritten.duration_ms = outcome.duration_ms
            outcome = rewritten
        if private:
            outcome.headers["Cache-Control"] = PRIVATE_CACHE_CONTROL
        return outcome

    async def proxy_to_object_storage(
        self,
        ctx: RequestContext,
        bucket_endpoint: Optional[str],
        bucket_name: str,
        path_rewrite: Optional[PathRewrite] = None,
    ) -> ProxyOutcome:
        """Read an object from a storage bucket.

        Only conditional and range headers are forwarded, and every method
        other than HEAD becomes GET.
        """
        path = ctx.raw_path
        if path_rewrite:
            path = path_rewrite(path)
        key = path[1:] if path.startswith("/") else path
        endpoint = (bucket_endpoint or Constants.DEFAULT_GCS_ENDPOINT).rstrip("/")
        url = f"{endpoint}/{bucket_name}/{key}"

        headers = CIMultiDict()
        for name in STORAGE_REQUEST_HEADERS:
            value = ctx.headers.get(name)
            if value:
                headers[name] = value

        method = "HEAD" if ctx.method == "HEAD" else "GET"
        return await self._fetch(
            method,
            url,
            headers,
            None,
            cacheable="Range" not in headers,
            allow_redirects=True,
        )

    async def _fetch(
        self,
        method: str,
        url: str,
        headers: CIMultiDict,
        body: Optional[bytes],
        cacheable: bool,
        allow_redirects: bool,
    ) -> ProxyOutcome:
        use_cache = cacheable and self._cache is not None
        key = cache_key(method, url)

        with Timer() as t:
            if use_cache:
                entry = self._cache.get(key)
                if entry is not None:
                    return ProxyOutcome(
                        status=entry.status,
                        headers=CIMultiDict(entry.headers),
                        body=entry.body,
                        cache_status=CacheStatus.HIT,
                        duration_ms=t.duration_ms(),
                    )
            cache_status = CacheStatus.MISS if use_cache else CacheStatus.BYPASS

            session = await self._get_session()
            try:
                async with session.request(
                    method,
                    URL(url, encoded=True),
                    headers=headers,
                    data=body,
                    allow_redirects=allow_redirects,
                ) as response:
                    response_body = await response.read()
                    status = response.status
                    response_headers = _response_headers(response.headers, method)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error("Backend request to %s failed: %s", safe_url(url), e)
                return bad_gateway(cache_status, t.duration_ms())

        if use_cache:
            self._cache.put(key, status, response_headers, response_body)

        if is_debug_enabled(logger):
            logger.debug(
                "Backend response",
                extra=extra_context(
                    event="http_response",
                    component="proxy",
                    action=method,
                    status_code=status,
                    duration_ms=t.duration_ms(),
                    cache=cache_status.value,
                    target=safe_url(url),
                ),
            )

        return ProxyOutcome(
            status=status,
            headers=response_headers,
            body=response_body,
            cache_status=cache_status,
            duration_ms=t.duration_ms(),
        )


def _response_headers(headers: Mapping[str, str], method: str) -> CIMultiDict:
    """Copy backend response headers that are valid to send on.

    The body has already been read and decoded, so length and encoding are
    recomputed, except on HEAD where there is no body to describe.
    """
    filtered = CIMultiDict()
    for key, value in headers.items():
        key_lower = key.lower()
        if key_lower in HOP_BY_HOP:
            continue
        if method != "HEAD" and key_lower in ("content-length", "content-encoding"):
            continue
        filtered.add(key, value)
    return filtered
