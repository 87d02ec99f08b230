"""Security, CORS and diagnostic response headers per backend."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from aiohttp import web

from constants import CacheStatus, Constants

from .types import Backend, RequestContext

STRICT_CSP = (
    "default-src 'none'; script-src 'none'; style-src 'none'; img-src 'none'; "
    "font-src 'none'; connect-src 'none'; frame-src 'none'; object-src 'none'; "
    "frame-ancestors 'none'; sandbox; form-action 'none';"
)

_STORAGE_SECURITY_HEADERS = MappingProxyType({
    "Content-Security-Policy": STRICT_CSP,
    "X-Robots-Tag": "noindex",
    "X-Content-Type-Options": "nosniff",
    "Cross-Origin-Resource-Policy": "cross-origin",
})

SECURITY_HEADERS: Mapping[Backend, Mapping[str, str]] = MappingProxyType({
    Backend.MODULES: _STORAGE_SECURITY_HEADERS,
    Backend.NPM: _STORAGE_SECURITY_HEADERS,
    Backend.API: MappingProxyType({
        "X-Robots-Tag": "noindex",
        "X-Content-Type-Options": "nosniff",
        "Cross-Origin-Resource-Policy": "cross-origin",
    }),
    # The frontend sets its own CSP.
    Backend.FRONTEND: MappingProxyType({
        "X-Content-Type-Options": "nosniff",
    }),
})


@dataclass(frozen=True)
class CorsConfig:
    """CORS allow-list for one backend."""

    allow_methods: Tuple[str, ...]
    allow_headers: Tuple[str, ...]
    allow_origin: str = "*"
    expose_headers: str = "*"
    max_age: int = 3600


CORS_CONFIG: Mapping[Backend, CorsConfig] = MappingProxyType({
    Backend.API: CorsConfig(
        allow_methods=("HEAD", "GET", "POST", "PUT", "PATCH", "DELETE"),
        allow_headers=("Authorization", "X-Cloud-Trace-Context", "Content-Type"),
    ),
    Backend.NPM: CorsConfig(
        allow_methods=("HEAD", "GET"),
        allow_headers=(
            "Authorization",
            "X-Cloud-Trace-Context",
            "npm-command",
            "npm-scope",
            "npm-session",
            "user-agent",
        ),
    ),
    Backend.MODULES: CorsConfig(
        allow_methods=("HEAD", "GET"),
        allow_headers=("Authorization", "X-Cloud-Trace-Context"),
    ),
})


def is_preflight(ctx: RequestContext) -> bool:
    """A CORS preflight is an OPTIONS request with Origin and Access-Control-Request-Method."""
    return (
        ctx.method == "OPTIONS"
        and "Origin" in ctx.headers
        and "Access-Control-Request-Method" in ctx.headers
    )


class HeaderPolicy:
    """Applies the header tables to responses.

    The tables default to the module constants and can be swapped per
    instance.
    """

    def __init__(
        self,
        security_headers: Mapping[Backend, Mapping[str, str]] = SECURITY_HEADERS,
        cors: Mapping[Backend, CorsConfig] = CORS_CONFIG,
        version: Optional[str] = None,
    ):
        self._security_headers = security_headers
        self._cors = cors
        self._version = version

    def apply_security_headers(self, response: web.StreamResponse, backend: Backend) -> None:
        for key, value in self._security_headers.get(backend, {}).items():
            response.headers[key] = value

    def apply_cors_headers(self, response: web.StreamResponse, backend: Backend) -> None:
        """Set CORS headers on an actual (non-preflight) response.

        ``Vary: Origin`` is appended to any existing ``Vary`` value.
        """
        config = self._cors.get(backend)
        if config is None:
            return
        response.headers["Access-Control-Allow-Origin"] = config.allow_origin
        response.headers["Access-Control-Expose-Headers"] = config.expose_headers
        response.headers["Vary"] = append_vary(response.headers.get("Vary"), "Origin")

    def build_preflight_response(self, backend: Backend) -> web.Response:
        config = self._cors.get(backend)
        if config is None:
            raise ValueError(f"No CORS configuration for backend {backend.value}")
        return web.Response(
            status=204,
            headers={
                "Access-Control-Allow-Origin": config.allow_origin,
                "Access-Control-Allow-Methods": ", ".join(config.allow_methods),
                "Access-Control-Allow-Headers": ", ".join(config.allow_headers),
                "Access-Control-Max-Age": str(config.max_age),
                "Vary": "Origin",
            },
        )

    def apply_debug_headers(
        self,
        response: web.StreamResponse,
        backend: Backend,
        cache_status: Optional[CacheStatus] = None,
        is_bot: Optional[bool] = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        """Attach operator diagnostics; not part of any client contract."""
        response.headers[Constants.HEADER_BACKEND] = backend.value
        if cache_status is not None:
            response.headers[Constants.HEADER_CACHE_STATUS] = cache_status.value
        if is_bot is not None:
            response.headers[Constants.HEADER_BOT_DETECTED] = "true" if is_bot else "false"
        if duration_ms is not None:
            response.headers[Constants.HEADER_DURATION] = f"{duration_ms:.0f}"
        if self._version:
            response.headers[Constants.HEADER_VERSION] = self._version


def append_vary(existing: Optional[str], token: str) -> str:
    """Add ``token`` to a Vary value unless it is already listed."""
    if not existing:
        return token
    tokens = {t.strip().lower() for t in existing.split(",")}
    if token.lower() in tokens or "*" in tokens:
        return existing
    return f"{existing}, {token}"
