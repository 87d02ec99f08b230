"""Routing configuration for the load balancer.

The configuration is read once at startup and never mutated afterwards;
overrides build a new instance with ``dataclasses.replace``.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import yaml

from constants import Constants


class ConfigError(ValueError):
    """Raised when the configuration cannot be loaded or is invalid."""


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# Environment variable -> LBConfig field
ENV_FIELDS = {
    "REGISTRY_API_URL": "api_url",
    "REGISTRY_FRONTEND_URL": "frontend_url",
    "REGISTRY_FRONTEND_URLS": "frontend_urls",
    "GCS_ENDPOINT": "gcs_endpoint",
    "MODULES_BUCKET": "modules_bucket",
    "NPM_BUCKET": "npm_bucket",
    "ROOT_DOMAIN": "root_domain",
    "API_DOMAIN": "api_domain",
    "NPM_DOMAIN": "npm_domain",
    "ENABLE_CACHE": "enable_cache",
    "ENABLE_BOT_DETECTION": "enable_bot_detection",
    "DOWNLOADS_ANALYTICS_URL": "analytics_url",
    "LB_VERSION": "version",
    "LB_SESSION_COOKIE": "session_cookie_name",
    "LB_CLIENT_IP_HEADER": "client_ip_header",
    "LB_POP_HEADER": "pop_header",
    "LB_CACHE_DEFAULT_TTL": "cache_default_ttl",
    "LB_CACHE_MAX_TTL": "cache_max_ttl",
    "LB_CACHE_MAX_BYTES": "cache_max_bytes",
    "LB_BACKEND_TIMEOUT": "timeout",
    "LB_HOST": "host",
    "LB_PORT": "port",
    "LB_HEALTH_HOST": "health_host",
}


@dataclass(frozen=True)
class LBConfig:
    """Static, process-wide configuration of the router and its server."""

    api_url: str = "http://localhost:8001"
    frontend_url: str = "http://localhost:8000"
    frontend_urls: Mapping[str, str] = field(default_factory=dict)
    gcs_endpoint: str = Constants.DEFAULT_GCS_ENDPOINT
    modules_bucket: str = "modules"
    npm_bucket: str = "npm"
    root_domain: str = "jsr.test"
    api_domain: str = "api.jsr.test"
    npm_domain: str = "npm.jsr.test"
    enable_cache: bool = True
    enable_bot_detection: bool = True
    analytics_url: Optional[str] = None
    version: str = "dev"
    session_cookie_name: str = "token"
    client_ip_header: str = "CF-Connecting-IP"
    pop_header: str = "CF-Ray"
    cache_default_ttl: int = 60
    cache_max_ttl: int = 31536000
    cache_max_bytes: int = 100 * 1024 * 1024
    timeout: Optional[float] = None
    host: str = "127.0.0.1"
    port: int = 8080
    allow_external: bool = False
    health_host: str = "localhost"

    def __post_init__(self) -> None:
        # Frozen: normalize through object.__setattr__.
        object.__setattr__(self, "frontend_urls", MappingProxyType(dict(self.frontend_urls)))
        for name in ("root_domain", "api_domain", "npm_domain", "health_host"):
            object.__setattr__(self, name, getattr(self, name).lower())
        for name in ("api_url", "frontend_url", "gcs_endpoint"):
            object.__setattr__(self, name, getattr(self, name).rstrip("/"))

    def with_overrides(self, **overrides: Any) -> "LBConfig":
        """Return a copy with the non-None ``overrides`` applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(values) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        coerced = {k: _coerce(k, v) for k, v in values.items()}
        return dataclasses.replace(self, **coerced)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["LBConfig"] = None,
    ) -> "LBConfig":
        """Load configuration from environment variables.

        Args:
            environ: Mapping to read from; defaults to ``os.environ``.
            base: Configuration to layer the environment on top of.

        Returns:
            LBConfig instance.
        """
        environ = os.environ if environ is None else environ
        base = base or cls()
        overrides = {
            field_name: environ[env_name]
            for env_name, field_name in ENV_FIELDS.items()
            if environ.get(env_name, "") != ""
        }
        return base.with_overrides(**overrides)

    @classmethod
    def from_file(cls, path: str, base: Optional["LBConfig"] = None) -> "LBConfig":
        """Load configuration from a YAML file.

        The file may hold the keys at the top level or under an ``lb`` section.
        """
        base = base or cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return base
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        section = data.get("lb", data)
        if not isinstance(section, dict):
            raise ConfigError(f"'lb' section in {path} must be a mapping")
        return base.with_overrides(**section)

    @classmethod
    def load(
        cls,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "LBConfig":
        """Defaults, then the YAML file, then the environment."""
        config = cls()
        if config_path:
            config = cls.from_file(config_path, base=config)
        return cls.from_env(environ, base=config)

    def routable_hosts(self) -> frozenset:
        return frozenset({self.root_domain, self.api_domain, self.npm_domain})


def _coerce(name: str, value: Any) -> Any:
    """Convert raw file/env values to the field's type."""
    if name in ("enable_cache", "enable_bot_detection", "allow_external"):
        return _to_bool(name, value)
    if name in ("port", "cache_default_ttl", "cache_max_ttl", "cache_max_bytes"):
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if name == "timeout":
        try:
            return float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"timeout must be a number, got {value!r}") from e
    if name == "frontend_urls":
        return _to_region_map(value)
    return value if not isinstance(value, (int, float)) else str(value)


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _to_region_map(value: Any) -> Dict[str, str]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigError(f"REGISTRY_FRONTEND_URLS is not valid JSON: {e}") from e
    if not isinstance(value, Mapping):
        raise ConfigError("frontend_urls must map region names to URLs")
    return {str(region): str(url).rstrip("/") for region, url in value.items()}
