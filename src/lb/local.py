"""Local development helpers.

When running against a storage emulator, the buckets the router reads from
must exist before anything can be published. ``BucketBootstrapper`` keeps
asking the emulator to create them until every one is there.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Iterable, List, Optional

from common.http_client import safe_post_json
from constants import Constants

logger = logging.getLogger(__name__)


def create_bucket(endpoint: str, name: str) -> bool:
    """Ask the emulator to create ``name``; an existing bucket counts as success."""
    status, _ = safe_post_json(
        f"{endpoint.rstrip('/')}/storage/v1/b",
        {"name": name},
        context="gcs",
    )
    return 200 <= status < 300 or status == 409


class BucketBootstrapper:
    """Periodically creates buckets in the background until all succeed."""

    def __init__(
        self,
        endpoint: str,
        buckets: Iterable[str],
        interval: float = Constants.BUCKET_CREATE_INTERVAL_SEC,
    ):
        self._endpoint = endpoint
        self._buckets: List[str] = list(dict.fromkeys(buckets))
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self.ready: Optional[asyncio.Event] = None

    def start(self) -> None:
        if self._task is None:
            # Created here so it belongs to the running loop.
            self.ready = asyncio.Event()
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def create_all(self) -> bool:
        """One attempt at every bucket; True when all exist."""
        all_created = True
        for bucket in self._buckets:
            created = await asyncio.to_thread(create_bucket, self._endpoint, bucket)
            all_created = all_created and created
        return all_created

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if await self.create_all():
                logger.info("All buckets ready.")
                self.ready.set()
                return
