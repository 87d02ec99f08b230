"""Shared types for the load balancer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from aiohttp import web
from multidict import CIMultiDict, CIMultiDictProxy
from yarl import URL


class Backend(Enum):
    """The routable destinations."""

    API = "api"
    FRONTEND = "frontend"
    MODULES = "modules"
    NPM = "npm"


@dataclass(frozen=True)
class RequestContext:
    """Per-request view of an inbound request.

    Holds only what routing and proxying need; never shared across requests.
    """

    method: str
    url: URL
    headers: CIMultiDictProxy
    body: Optional[bytes] = None
    client_ip: Optional[str] = None

    @property
    def hostname(self) -> str:
        return (self.url.host or "").lower()

    @property
    def path(self) -> str:
        """Decoded path, used for matching."""
        return self.url.path

    @property
    def raw_path(self) -> str:
        """Percent-encoded path, forwarded to backends unchanged."""
        return self.url.raw_path

    @property
    def query_string(self) -> str:
        return self.url.raw_query_string

    @classmethod
    async def from_request(
        cls,
        request: web.Request,
        client_ip_header: Optional[str] = None,
    ) -> "RequestContext":
        """Build a context from an aiohttp request, reading any body."""
        body = await request.read() if request.body_exists else None
        client_ip = None
        if client_ip_header:
            client_ip = request.headers.get(client_ip_header)
        if not client_ip:
            client_ip = request.remote
        return cls(
            method=request.method.upper(),
            url=request.url,
            headers=request.headers,
            body=body,
            client_ip=client_ip,
        )

    @classmethod
    def build(
        cls,
        url: str,
        method: str = "GET",
        headers: Optional[dict] = None,
        body: Optional[bytes] = None,
        client_ip: Optional[str] = None,
    ) -> "RequestContext":
        """Construct a context directly, e.g. from tests or tooling."""
        return cls(
            method=method.upper(),
            url=URL(url),
            headers=CIMultiDictProxy(CIMultiDict(headers or {})),
            body=body,
            client_ip=client_ip,
        )
