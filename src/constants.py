"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    CONFIG_ERROR = 1
    BIND_REFUSED = 2


class CacheStatus(Enum):
    """Edge cache outcome reported in the diagnostic headers."""

    HIT = "HIT"
    MISS = "MISS"
    BYPASS = "BYPASS"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "LB_LOG_LEVEL"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for maintenance HTTP calls

    DEFAULT_GCS_ENDPOINT = "https://storage.googleapis.com"
    DEFAULT_REGION = "us-central1"

    # Diagnostic response headers
    HEADER_BACKEND = "X-JSR-Backend"
    HEADER_CACHE_STATUS = "X-JSR-Cache-Status"
    HEADER_BOT_DETECTED = "X-JSR-Bot-Detected"
    HEADER_VERSION = "X-JSR-Worker-Version"
    HEADER_DURATION = "X-JSR-Backend-Duration"

    HEALTH_PATH = "/_lb/health"
    BUCKET_CREATE_INTERVAL_SEC = 5
