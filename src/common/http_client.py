"""Synchronous HTTP helpers for tooling that runs outside the request path.

The router itself only talks to backends through aiohttp; this module wraps
``requests`` for blocking maintenance calls such as the local storage
emulator bootstrap. Errors are returned to the caller rather than raised so a
failed attempt can simply be retried on the next tick.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional, Tuple

import requests

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)


def safe_post_json(
    url: str,
    payload: Any,
    *,
    context: str,
    timeout: Optional[float] = None,
) -> Tuple[int, str]:
    """POST ``payload`` as JSON and return ``(status_code, text)``.

    Connection errors and timeouts yield status 0 and the error message.

    Args:
        url: Target URL.
        payload: JSON-serializable request body.
        context: Human-readable source tag for logs (e.g., "gcs").
        timeout: Seconds before giving up; defaults to Constants.REQUEST_TIMEOUT.

    Returns:
        Tuple of (status_code, response_text).
    """
    safe_target = safe_url(url)
    effective_timeout = timeout if timeout is not None else Constants.REQUEST_TIMEOUT
    with Timer() as t:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action="POST",
                    target=safe_target,
                    context=context,
                ),
            )
        try:
            res = requests.post(
                url,
                data=json.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=effective_timeout,
            )
        except requests.Timeout:
            logger.warning(
                "%s request timed out after %s seconds", context, effective_timeout
            )
            return 0, "timeout"
        except requests.RequestException as exc:  # includes ConnectionError
            logger.warning("%s connection error: %s", context, exc)
            return 0, str(exc)

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="POST",
                    outcome="success" if res.ok else "http_error",
                    status_code=res.status_code,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                    context=context,
                ),
            )
        return res.status_code, res.text
