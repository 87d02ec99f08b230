"""Top-level request dispatcher.

Every inbound request is routed to exactly one backend based only on the
request itself and the static configuration.
"""

from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web

from common.logging_utils import extra_context, is_debug_enabled

from .analytics import DownloadTracker, RegistryKind
from .bots import BotDetector
from .config import LBConfig
from .gate import can_access_module_file
from .headers import HeaderPolicy, is_preflight
from .proxy import ProxyClient, ProxyOutcome
from .regions import RegionSelector, pop_from_header
from .types import Backend, RequestContext

logger = logging.getLogger(__name__)

# Served by the API backend from the root domain, without the /api rewrite.
_ROOT_API_PATHS = frozenset({
    "/sitemap.xml",
    "/sitemap-scopes.xml",
    "/sitemap-packages.xml",
    "/login",
    "/logout",
})

_NPM_ROOT_PATHS = frozenset({"/", "/-/ping"})


def is_api_route(path: str) -> bool:
    """API-shaped paths on the root domain."""
    return path in _ROOT_API_PATHS or path.startswith("/api/") or path.startswith("/login/")


def api_prefix(path: str) -> str:
    return f"/api{path}"


def npm_object_path(path: str) -> str:
    if path in _NPM_ROOT_PATHS:
        return "/root.json"
    return path


class Router:
    """Dispatches requests to the api, frontend, modules and npm backends.

    Requests to the root domain are proxied to the frontend by default.
    GET/HEAD requests under ``/@`` are served from the modules bucket when
    the module-file gate allows it (see ``gate.can_access_module_file``).
    Known crawlers always get the frontend so they index rendered pages.
    """

    def __init__(
        self,
        config: LBConfig,
        proxy: ProxyClient,
        headers: Optional[HeaderPolicy] = None,
        bots: Optional[BotDetector] = None,
        regions: Optional[RegionSelector] = None,
        tracker: Optional[DownloadTracker] = None,
    ):
        self._config = config
        self._proxy = proxy
        self._headers = headers or HeaderPolicy(version=config.version)
        self._bots = bots or BotDetector(enabled=config.enable_bot_detection)
        self._regions = regions or RegionSelector()
        self._tracker = tracker or DownloadTracker()

    async def route(self, ctx: RequestContext) -> web.Response:
        """Route one request and return the final response."""
        hostname = ctx.hostname

        if hostname == self._config.api_domain:
            return await self.handle_api_request(ctx)
        if hostname == self._config.npm_domain:
            return await self.handle_npm_request(ctx)
        if hostname == self._config.root_domain:
            return await self.handle_root_request(ctx)

        return web.Response(
            status=404,
            text=f"Unknown hostname: {hostname}",
            content_type="text/plain",
        )

    async def handle_api_request(self, ctx: RequestContext, rewrite_path: bool = True) -> web.Response:
        if is_preflight(ctx):
            return self._headers.build_preflight_response(Backend.API)

        outcome = await self._proxy.proxy_to_backend(
            ctx,
            self._config.api_url,
            api_prefix if rewrite_path else None,
        )
        return self._finish(ctx, outcome, Backend.API)

    async def handle_npm_request(self, ctx: RequestContext) -> web.Response:
        if is_preflight(ctx):
            return self._headers.build_preflight_response(Backend.NPM)

        outcome = await self._proxy.proxy_to_object_storage(
            ctx,
            self._config.gcs_endpoint,
            self._config.npm_bucket,
            npm_object_path,
        )
        response = self._finish(ctx, outcome, Backend.NPM)
        self._maybe_track(ctx, outcome, RegistryKind.NPM)
        return response

    async def handle_root_request(self, ctx: RequestContext) -> web.Response:
        path = ctx.path

        if is_api_route(path):
            return await self.handle_api_request(ctx, rewrite_path=False)
        if self._bots.is_bot(ctx.headers):
            return await self.handle_frontend_request(ctx, is_bot=True)
        if path.startswith("/@") and can_access_module_file(ctx.method, ctx.headers):
            return await self.handle_module_file_request(ctx)
        return await self.handle_frontend_request(ctx, is_bot=False)

    async def handle_frontend_request(self, ctx: RequestContext, is_bot: bool) -> web.Response:
        pop = pop_from_header(self._config.pop_header, ctx.headers.get(self._config.pop_header))
        backend_url = self._regions.backend_url(
            pop, self._config.frontend_urls, self._config.frontend_url
        )
        outcome = await self._proxy.proxy_to_backend(ctx, backend_url)
        return self._finish(ctx, outcome, Backend.FRONTEND, is_bot=is_bot)

    async def handle_module_file_request(self, ctx: RequestContext) -> web.Response:
        outcome = await self._proxy.proxy_to_object_storage(
            ctx,
            self._config.gcs_endpoint,
            self._config.modules_bucket,
        )
        response = self._finish(ctx, outcome, Backend.MODULES)
        self._maybe_track(ctx, outcome, RegistryKind.JSR)
        return response

    def _finish(
        self,
        ctx: RequestContext,
        outcome: ProxyOutcome,
        backend: Backend,
        is_bot: Optional[bool] = None,
    ) -> web.Response:
        response = outcome.to_response()
        self._headers.apply_security_headers(response, backend)
        self._headers.apply_cors_headers(response, backend)
        self._headers.apply_debug_headers(
            response,
            backend,
            cache_status=outcome.cache_status,
            is_bot=is_bot,
            duration_ms=outcome.duration_ms,
        )
        if is_debug_enabled(logger):
            logger.debug(
                "Routed request",
                extra=extra_context(
                    event="route",
                    component="router",
                    action=ctx.method,
                    target=ctx.path,
                    backend=backend.value,
                    status_code=outcome.status,
                    cache=outcome.cache_status.value,
                ),
            )
        return response

    def _maybe_track(self, ctx: RequestContext, outcome: ProxyOutcome, kind: RegistryKind) -> None:
        if ctx.method not in ("GET", "HEAD"):
            return
        if outcome.ok or outcome.status == 304:
            self._tracker.track_download(ctx.path, kind)
