"""Load balancer HTTP server using aiohttp."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Optional, Sequence

from aiohttp import web

from constants import Constants

from .analytics import AnalyticsSink, DownloadTracker, HttpAnalyticsSink
from .cache import EdgeCache
from .config import LBConfig
from .local import BucketBootstrapper
from .proxy import ProxyClient
from .router import Router
from .types import RequestContext

logger = logging.getLogger(__name__)


class LBServer:
    """Edge router in front of the registry's frontend, API and buckets."""

    def __init__(
        self,
        config: LBConfig,
        create_buckets: Sequence[str] = (),
    ):
        """Initialize the server.

        Args:
            config: Routing and server configuration.
            create_buckets: Buckets to create in the storage emulator at
                startup (local development only).
        """
        self._config = config
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None

        self._cache = (
            EdgeCache(
                default_ttl=config.cache_default_ttl,
                max_ttl=config.cache_max_ttl,
                max_bytes=config.cache_max_bytes,
            )
            if config.enable_cache
            else None
        )
        self._proxy = ProxyClient(
            cache=self._cache,
            timeout=config.timeout,
            session_cookie_name=config.session_cookie_name,
        )
        sink = HttpAnalyticsSink(config.analytics_url) if config.analytics_url else AnalyticsSink()
        self._tracker = DownloadTracker(sink)
        self._router = Router(config, self._proxy, tracker=self._tracker)
        self._bootstrapper = (
            BucketBootstrapper(config.gcs_endpoint, create_buckets) if create_buckets else None
        )

    @property
    def router(self) -> Router:
        return self._router

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application(client_max_size=0)  # bodies are forwarded whole, no cap
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        await self._proxy.start()
        await self._tracker.sink.start()
        if self._bootstrapper:
            self._bootstrapper.start()
        logger.info("Load balancer starting on %s:%s", self._config.host, self._config.port)

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._bootstrapper:
            await self._bootstrapper.stop()
        await self._tracker.sink.close()
        await self._proxy.stop()
        logger.info("Load balancer stopped")

    async def _handle_request(self, request: web.Request) -> web.Response:
        """Route a request; any unexpected error becomes a 500."""
        try:
            if self._is_health_request(request):
                return self._health_check()
            ctx = await RequestContext.from_request(request, self._config.client_ip_header)
            return await self._router.route(ctx)
        except web.HTTPException:
            raise
        except Exception:  # pylint: disable=broad-except
            logger.exception("LB error handling %s %s", request.method, request.path)
            return web.Response(
                status=500,
                text="Internal Server Error",
                content_type="text/plain",
            )

    def _is_health_request(self, request: web.Request) -> bool:
        hostname = (request.url.host or "").lower()
        return (
            request.path == Constants.HEALTH_PATH
            and hostname == self._config.health_host
            and hostname not in self._config.routable_hosts()
        )

    def _health_check(self) -> web.Response:
        return web.json_response({
            "status": "ok",
            "version": self._config.version,
            "cache": self._cache.stats() if self._cache else None,
        })

    async def start(self) -> None:
        """Start the server."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app, handler_cancellation=True)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

        logger.info(
            "Load balancer listening on http://%s:%s",
            self._config.host, self._config.port,
        )
        logger.info("Root domain: %s", self._config.root_domain)
        logger.info("API domain: %s -> %s", self._config.api_domain, self._config.api_url)
        logger.info("npm domain: %s -> bucket %s", self._config.npm_domain, self._config.npm_bucket)
        logger.info("Edge cache: %s", "enabled" if self._cache else "disabled")

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None


def run_lb_server_sync(config: LBConfig, create_buckets: Sequence[str] = ()) -> None:
    """Run the server until SIGTERM or SIGINT.

    Args:
        config: Server configuration.
        create_buckets: Buckets to create in the storage emulator.
    """
    server = LBServer(config, create_buckets=create_buckets)
    loop = asyncio.new_event_loop()

    async def run():
        await server.start()
        stop_event = asyncio.Event()
        running_loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            running_loop.add_signal_handler(sig, stop_event.set)
        await stop_event.wait()
        logger.info("Shutdown signal received, stopping...")
        await server.stop()

    try:
        loop.run_until_complete(run())
    except KeyboardInterrupt:
        # Fallback for platforms where signal handlers don't work (Windows)
        loop.run_until_complete(server.stop())
    finally:
        loop.close()
        logger.info("Load balancer shutdown complete")
