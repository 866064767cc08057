"""
tests/test_config.py — Configuration Loader Tests
===================================================
"""

from __future__ import annotations

import pytest

from modboard.config import (
    DEFAULT_PORT,
    DEFAULT_SESSION_TTL_SECONDS,
    ConfigError,
    load_config,
)

STRONG_SECRET = "s" * 48

_OPTIONAL = (
    "DISCORD_CALLBACK_URL", "SESSION_STORE_URL", "DASHBOARD_URL", "AUTH_FAILURE_URL",
    "CORS_ALLOW_ORIGINS", "PORT", "DASHBOARD_API_PORT", "SESSION_TTL_SECONDS",
    "COOKIE_SECURE", "CSRF_ENABLED", "QUERY_TIMEOUT_SECONDS", "ENVIRONMENT", "NODE_ENV",
)


@pytest.fixture
def env(monkeypatch, tmp_path):
    """A clean, valid environment; returns a path for an optional YAML file."""
    for name in _OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DISCORD_CLIENT_ID", "client")
    monkeypatch.setenv("DISCORD_CLIENT_SECRET", "client-secret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/modboard")
    monkeypatch.setenv("SESSION_SECRET", STRONG_SECRET)
    return tmp_path / "config.yaml"


class TestRequired:
    def test_lists_every_missing_variable(self, env, monkeypatch):
        monkeypatch.delenv("DISCORD_CLIENT_ID")
        monkeypatch.setenv("DATABASE_URL", "  ")
        with pytest.raises(ConfigError, match="DISCORD_CLIENT_ID, DATABASE_URL"):
            load_config(env)

    @pytest.mark.parametrize("secret", ["change-me", "your-secret-key-change-this", "secret"])
    def test_weak_secret(self, env, monkeypatch, secret):
        monkeypatch.setenv("SESSION_SECRET", secret)
        with pytest.raises(ConfigError, match="weak default"):
            load_config(env)

    def test_short_secret(self, env, monkeypatch):
        monkeypatch.setenv("SESSION_SECRET", "x" * 31)
        with pytest.raises(ConfigError, match="too short"):
            load_config(env)


class TestDefaults:
    def test_defaults(self, env):
        cfg = load_config(env)
        assert cfg.port == DEFAULT_PORT
        assert cfg.session_ttl_seconds == DEFAULT_SESSION_TTL_SECONDS
        assert cfg.session_store_url == "postgresql://db/modboard"
        assert cfg.dashboard_url == "http://localhost:5173"
        assert cfg.auth_failure_url == "/"
        assert cfg.environment == "development"
        assert cfg.cookie_secure is False
        assert cfg.csrf_enabled is True
        assert cfg.cors_origins == ("http://localhost:5173", "http://localhost:3000")

    def test_production_defaults_to_secure_cookie(self, env, monkeypatch):
        monkeypatch.setenv("NODE_ENV", "production")
        cfg = load_config(env)
        assert cfg.is_production
        assert cfg.cookie_secure is True

    def test_cors_merges_without_duplicates(self, env, monkeypatch):
        monkeypatch.setenv("DASHBOARD_URL", "https://dash.example.com/")
        monkeypatch.setenv(
            "CORS_ALLOW_ORIGINS", "https://a.example.com, http://localhost:3000,"
        )
        cfg = load_config(env)
        assert cfg.cors_origins == (
            "https://dash.example.com",
            "http://localhost:5173",
            "http://localhost:3000",
            "https://a.example.com",
        )

    def test_port_fallback(self, env, monkeypatch):
        monkeypatch.setenv("DASHBOARD_API_PORT", "4000")
        assert load_config(env).port == 4000


class TestYaml:
    def test_soft_settings(self, env):
        env.write_text(
            "session_ttl_seconds: 60\n"
            "query_timeout_seconds: 2.5\n"
            "csrf_enabled: false\n"
            "extra_cors_origins:\n  - https://b.example.com\n",
            encoding="utf-8",
        )
        cfg = load_config(env)
        assert cfg.session_ttl_seconds == 60
        assert cfg.query_timeout_seconds == 2.5
        assert cfg.csrf_enabled is False
        assert cfg.cors_origins[-1] == "https://b.example.com"

    def test_env_beats_yaml(self, env, monkeypatch):
        env.write_text("session_ttl_seconds: 60\n", encoding="utf-8")
        monkeypatch.setenv("SESSION_TTL_SECONDS", "120")
        assert load_config(env).session_ttl_seconds == 120

    def test_non_mapping_rejected(self, env):
        env.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(env)
