"""Access gate for user-published module files.

Untrusted package files live under the ``/@`` prefix of the root domain.
Navigation requests for them must go through the frontend, which renders
them sandboxed; only ``fetch``-style loads (import maps, tooling) and
same-origin image/video embeds may read the bucket directly. Cross-site
``<img>``/``<video>`` loads are refused to prevent hotlinking.

WARNING: loosening any rule here can let a browser load an uploaded file as
a same-origin document.
"""

from __future__ import annotations

from typing import Mapping

_ALLOWED_METHODS = frozenset({"GET", "HEAD"})
_EMBED_DESTINATIONS = frozenset({"image", "video"})


def can_access_module_file(method: str, headers: Mapping[str, str]) -> bool:
    """Return True if the request may be served from the modules bucket.

    Args:
        method: HTTP method of the request.
        headers: Case-insensitive request headers.
    """
    if method.upper() not in _ALLOWED_METHODS:
        return False

    accept = headers.get("Accept")
    if accept is not None and accept.startswith("text/html"):
        return False

    dest = headers.get("Sec-Fetch-Dest")
    if not dest or dest == "empty":
        return True

    return dest in _EMBED_DESTINATIONS and headers.get("Sec-Fetch-Site") == "same-origin"
