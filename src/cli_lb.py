"""CLI entry point for the load balancer server.

Builds the configuration from defaults, an optional YAML file, the
environment and CLI flags (in increasing precedence), then runs the server.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import sys
from typing import Any, List

from common.logging_utils import configure_logging
from constants import Constants, ExitCodes
from lb.config import ConfigError, LBConfig
from lb.server import run_lb_server_sync

logger = logging.getLogger(__name__)


def _is_local_bind_host(host: str) -> bool:
    """Return True if host is a loopback/local bind target."""
    if not host:
        return False
    host_lower = host.strip().lower()
    if host_lower in ("localhost",):
        return True
    try:
        return ipaddress.ip_address(host_lower).is_loopback
    except ValueError:
        # Non-IP hostnames are treated as non-local unless explicitly allowed.
        return False


def _enforce_local_binding(host: str, allow_external: bool) -> None:
    """Enforce local-only binding unless explicitly allowed."""
    if _is_local_bind_host(host):
        return
    if not allow_external:
        sys.stderr.write(
            "ERROR: Non-local bindings require --allow-external.\n"
        )
        sys.exit(ExitCodes.BIND_REFUSED.value)
    logger.warning("Binding load balancer to non-local address (%s).", host)


def _setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()

    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
        file_handler.setFormatter(formatter)
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def build_config(args: Any, environ=None) -> LBConfig:
    """Layer CLI flags over the file and environment configuration.

    Raises:
        ConfigError: if any source holds an invalid value.
    """
    config = LBConfig.load(getattr(args, "CONFIG", None), environ)
    return config.with_overrides(
        host=getattr(args, "HOST", None),
        port=getattr(args, "PORT", None),
        api_url=getattr(args, "API_URL", None),
        frontend_url=getattr(args, "FRONTEND_URL", None),
        gcs_endpoint=getattr(args, "GCS_ENDPOINT", None),
        root_domain=getattr(args, "ROOT_DOMAIN", None),
        api_domain=getattr(args, "API_DOMAIN", None),
        npm_domain=getattr(args, "NPM_DOMAIN", None),
        enable_cache=False if getattr(args, "NO_CACHE", False) else None,
        allow_external=True if getattr(args, "ALLOW_EXTERNAL", False) else None,
    )


def buckets_to_create(args: Any, config: LBConfig) -> List[str]:
    if not getattr(args, "CREATE_BUCKETS", False):
        return []
    return [config.modules_bucket, config.npm_bucket, *getattr(args, "EXTRA_BUCKETS", [])]


def run_lb_server(args: Any) -> None:
    """Entry point for the server command.

    Args:
        args: Parsed CLI arguments namespace.
    """
    _setup_logging(args)

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(ExitCodes.CONFIG_ERROR.value)

    _enforce_local_binding(config.host, config.allow_external)

    run_lb_server_sync(config, create_buckets=buckets_to_create(args, config))
