"""Tests for the load balancer CLI helpers."""

import pytest

from src.args import parse_args
from src.cli_lb import (
    _enforce_local_binding,
    _is_local_bind_host,
    buckets_to_create,
    build_config,
    run_lb_server,
)


def test_is_local_bind_host_loopback():
    """Loopback hosts should be treated as local."""
    assert _is_local_bind_host("127.0.0.1") is True
    assert _is_local_bind_host("localhost") is True
    assert _is_local_bind_host("::1") is True


def test_is_local_bind_host_external():
    """Non-local hosts should be treated as external."""
    assert _is_local_bind_host("0.0.0.0") is False
    assert _is_local_bind_host("192.168.1.10") is False
    assert _is_local_bind_host("lb.internal") is False
    assert _is_local_bind_host("") is False


def test_enforce_local_binding_rejects_external():
    """External bindings must be explicitly allowed."""
    with pytest.raises(SystemExit) as exc:
        _enforce_local_binding("0.0.0.0", False)
    assert exc.value.code == 2


def test_enforce_local_binding_allows_with_flag():
    """External bindings are allowed only when flag is set."""
    _enforce_local_binding("0.0.0.0", True)


class TestBuildConfig:
    """Flag, environment and file precedence."""

    def test_flags_override_environment(self):
        args = parse_args(["--root-domain", "cli.test", "--port", "9090", "--no-cache"])
        config = build_config(args, {"ROOT_DOMAIN": "env.test", "API_DOMAIN": "api.env.test"})
        assert config.root_domain == "cli.test"
        assert config.api_domain == "api.env.test"
        assert config.port == 9090
        assert config.enable_cache is False

    def test_defaults_without_flags(self):
        config = build_config(parse_args([]), {})
        assert config.host == "127.0.0.1"
        assert config.enable_cache is True
        assert config.allow_external is False

    def test_config_file(self, tmp_path):
        path = tmp_path / "lb.yaml"
        path.write_text("lb:\n  npm_bucket: file-npm\n  api_url: http://file-api\n", encoding="utf-8")
        args = parse_args(["-c", str(path), "--api-url", "http://cli-api"])
        config = build_config(args, {})
        assert config.npm_bucket == "file-npm"
        assert config.api_url == "http://cli-api"

    def test_allow_external(self):
        config = build_config(parse_args(["--host", "0.0.0.0", "--allow-external"]), {})
        assert config.host == "0.0.0.0"
        assert config.allow_external is True


class TestBucketsToCreate:
    def test_disabled_by_default(self):
        args = parse_args([])
        assert buckets_to_create(args, build_config(args, {})) == []

    def test_configured_and_extra_buckets(self):
        args = parse_args(["--create-buckets", "--bucket", "publishing", "--bucket", "docs"])
        config = build_config(args, {"MODULES_BUCKET": "m", "NPM_BUCKET": "n"})
        assert buckets_to_create(args, config) == ["m", "n", "publishing", "docs"]


def test_invalid_config_exits(tmp_path, monkeypatch):
    path = tmp_path / "lb.yaml"
    path.write_text("lb:\n  port: eighty\n", encoding="utf-8")
    monkeypatch.delenv("LB_PORT", raising=False)
    monkeypatch.setenv("LB_LOG_LEVEL", "ERROR")
    with pytest.raises(SystemExit) as exc:
        run_lb_server(parse_args(["-c", str(path), "--loglevel", "ERROR"]))
    assert exc.value.code == 1
