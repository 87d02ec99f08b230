"""Download-count analytics.

Successful module metadata and npm tarball responses are turned into
download events and handed to a sink. Submission is fire-and-forget: the
request path never waits on, or fails because of, the sink.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import aiohttp

from common.logging_utils import extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)


class RegistryKind(Enum):
    """Which view of the registry served the download."""

    JSR = "jsr"
    NPM = "npm"


# /@{scope}/{package}/{version}_meta.json
_JSR_META_PATTERN = re.compile(r"^/@+([^/@]+)/([^/]+)/([^/]+)_meta\.json$")
# /~/{n}/@jsr/{scope}__{package}/{version}.tgz
_NPM_TARBALL_PATTERN = re.compile(r"^/~/\d+/@jsr/([^_/]+)__([^/]+)/([^/]+)\.tgz$")

_PATTERNS = {
    RegistryKind.JSR: _JSR_META_PATTERN,
    RegistryKind.NPM: _NPM_TARBALL_PATTERN,
}


@dataclass(frozen=True)
class DownloadEvent:
    """One counted download."""

    registry_kind: RegistryKind
    scope: str
    package_name: str
    version: str

    @property
    def key(self) -> str:
        """Aggregation key."""
        return f"{self.scope}/{self.package_name}"

    def to_data_point(self) -> Dict[str, List[str]]:
        return {
            "blobs": [self.registry_kind.value, self.scope, self.package_name, self.version],
            "indexes": [self.key],
        }


def extract_download(path: str, registry_kind: RegistryKind) -> Optional[DownloadEvent]:
    """Match ``path`` against the download pattern for ``registry_kind``.

    Returns None when the path is not a download.
    """
    match = _PATTERNS[registry_kind].match(path)
    if not match:
        return None
    scope, package_name, version = match.groups()
    return DownloadEvent(registry_kind, scope, package_name, version)


class AnalyticsSink:
    """Destination for download events. The base sink only logs them."""

    def submit(self, event: DownloadEvent) -> None:
        logger.info(
            "tracked download: %s",
            event.to_data_point()["blobs"],
        )

    async def start(self) -> None:
        """Acquire resources, if any."""

    async def close(self) -> None:
        """Release resources, if any."""


class HttpAnalyticsSink(AnalyticsSink):
    """POSTs each event as JSON to an analytics endpoint from a background task."""

    def __init__(self, url: str, timeout: float = 10):
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        """Wait for in-flight submissions, then close the session."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._session:
            await self._session.close()
            self._session = None

    def submit(self, event: DownloadEvent) -> None:
        task = asyncio.get_running_loop().create_task(self._post(event.to_data_point()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, payload: Dict[str, Any]) -> None:
        if self._session is None:
            await self.start()
        assert self._session is not None
        try:
            async with self._session.post(self._url, json=payload) as response:
                if response.status >= 400:
                    logger.warning(
                        "Analytics sink %s rejected event with status %s",
                        safe_url(self._url), response.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Analytics sink %s unavailable: %s", safe_url(self._url), e)


class DownloadTracker:
    """Extracts download events from response paths and submits them."""

    def __init__(self, sink: Optional[AnalyticsSink] = None):
        self._sink = sink or AnalyticsSink()

    @property
    def sink(self) -> AnalyticsSink:
        return self._sink

    def track_download(self, path: str, registry_kind: RegistryKind) -> Optional[DownloadEvent]:
        """Submit a download event for ``path`` if it is a download path.

        Never raises; sink errors are logged.

        Returns:
            The submitted event, or None if nothing was tracked.
        """
        event = extract_download(path, registry_kind)
        if event is None:
            return None
        if is_debug_enabled(logger):
            logger.debug(
                "Tracked download",
                extra=extra_context(
                    event="download",
                    component="analytics",
                    action="track",
                    target=path,
                    registry=registry_kind.value,
                ),
            )
        try:
            self._sink.submit(event)
        except Exception:  # pylint: disable=broad-except
            logger.warning("Analytics submission failed for %s", event.key, exc_info=True)
        return event
