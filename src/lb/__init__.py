"""Edge load balancer for the package registry.

Routes requests for the registry's public hostnames to the rendered
frontend, the API service, the module-file bucket or the npm bucket, and
applies the security, CORS and caching policy for each.
"""

from .types import Backend, RequestContext
from .config import ConfigError, LBConfig
from .gate import can_access_module_file
from .bots import BotDetector
from .regions import RegionSelector
from .headers import HeaderPolicy, is_preflight
from .analytics import DownloadEvent, DownloadTracker, RegistryKind
from .cache import EdgeCache
from .proxy import ProxyClient, ProxyOutcome
from .router import Router
from .server import LBServer

__all__ = [
    "Backend",
    "RequestContext",
    "ConfigError",
    "LBConfig",
    "can_access_module_file",
    "BotDetector",
    "RegionSelector",
    "HeaderPolicy",
    "is_preflight",
    "DownloadEvent",
    "DownloadTracker",
    "RegistryKind",
    "EdgeCache",
    "ProxyClient",
    "ProxyOutcome",
    "Router",
    "LBServer",
]
