"""
modboard.config — Environment + YAML Configuration Loader
==========================================================

Secrets and connection strings come from the environment (``.env`` is
loaded by the entry point).  Soft settings may additionally be tuned in an
optional ``config.yaml``.

Usage::

    from modboard.config import load_config

    cfg = load_config()              # raises ConfigError if anything is missing
    print(cfg.dashboard_url)         # "http://localhost:5173"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

REQUIRED_ENV_VARS = (
    "DISCORD_CLIENT_ID",
    "DISCORD_CLIENT_SECRET",
    "DATABASE_URL",
    "SESSION_SECRET",
)

DEFAULT_CALLBACK_URL = "http://localhost:3001/auth/discord/callback"
DEFAULT_DASHBOARD_URL = "http://localhost:5173"
DEFAULT_CORS_ORIGINS = ("http://localhost:5173", "http://localhost:3000")
DEFAULT_PORT = 3001
DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0

_WEAK_SECRETS = frozenset({
    "your-secret-key-change-this",
    "change-me",
    "changeme",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

_TRUTHY = frozenset({"1", "true", "yes", "on"})


class ConfigError(RuntimeError):
    """Mandatory configuration is missing or unusable."""


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DashboardConfig:
    """Immutable configuration for the dashboard API process."""

    # Identity provider
    discord_client_id: str
    discord_client_secret: str
    discord_callback_url: str

    # Stores
    database_url: str
    session_store_url: str

    # Sessions
    session_secret: str
    session_ttl_seconds: int
    cookie_secure: bool

    # HTTP surface
    dashboard_url: str
    auth_failure_url: str
    cors_origins: tuple[str, ...]
    port: int
    environment: str

    # Behaviour
    csrf_enabled: bool = True
    query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _as_bool(value: object, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _validate_secret(secret: str) -> str:
    """Reject known weak defaults and short secrets."""
    if secret in _WEAK_SECRETS:
        raise ConfigError(
            f"SESSION_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise ConfigError(
            f"SESSION_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


def _cors_origins(dashboard_url: str, extra: list[str]) -> tuple[str, ...]:
    """Dashboard URL, local dev servers, then ``CORS_ALLOW_ORIGINS``; no duplicates."""
    raw = _env("CORS_ALLOW_ORIGINS")
    from_env = [o.strip() for o in raw.split(",") if o.strip()] if raw else []

    origins: list[str] = []
    for origin in [dashboard_url, *DEFAULT_CORS_ORIGINS, *from_env, *extra]:
        origin = origin.rstrip("/")
        if origin and origin not in origins:
            origins.append(origin)
    return tuple(origins)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> DashboardConfig:
    """Build a :class:`DashboardConfig` from the environment and *path*.

    Parameters
    ----------
    path:
        Optional YAML file with soft settings (``session_ttl_seconds``,
        ``query_timeout_seconds``, ``csrf_enabled``, ``extra_cors_origins``).
        A missing file is fine.

    Raises
    ------
    ConfigError
        If any of :data:`REQUIRED_ENV_VARS` is unset, or the session secret
        is weak.
    """
    missing = [name for name in REQUIRED_ENV_VARS if not _env(name)]
    if missing:
        raise ConfigError(
            "Missing required environment variables: " + ", ".join(missing)
        )

    soft = _read_yaml(Path(path))
    environment = _env("ENVIRONMENT") or _env("NODE_ENV") or "development"
    dashboard_url = _env("DASHBOARD_URL") or DEFAULT_DASHBOARD_URL
    database_url = _env("DATABASE_URL")

    ttl = _env("SESSION_TTL_SECONDS") or soft.get("session_ttl_seconds")
    timeout = _env("QUERY_TIMEOUT_SECONDS") or soft.get("query_timeout_seconds")
    port = _env("PORT") or _env("DASHBOARD_API_PORT")

    return DashboardConfig(
        discord_client_id=_env("DISCORD_CLIENT_ID"),
        discord_client_secret=_env("DISCORD_CLIENT_SECRET"),
        discord_callback_url=_env("DISCORD_CALLBACK_URL") or DEFAULT_CALLBACK_URL,
        database_url=database_url,
        session_store_url=_env("SESSION_STORE_URL") or database_url,
        session_secret=_validate_secret(_env("SESSION_SECRET")),
        session_ttl_seconds=int(ttl) if ttl else DEFAULT_SESSION_TTL_SECONDS,
        cookie_secure=_as_bool(_env("COOKIE_SECURE"), environment == "production"),
        dashboard_url=dashboard_url,
        auth_failure_url=_env("AUTH_FAILURE_URL") or "/",
        cors_origins=_cors_origins(dashboard_url, list(soft.get("extra_cors_origins") or [])),
        port=int(port) if port else DEFAULT_PORT,
        environment=environment,
        csrf_enabled=_as_bool(_env("CSRF_ENABLED") or soft.get("csrf_enabled"), True),
        query_timeout_seconds=float(timeout) if timeout else DEFAULT_QUERY_TIMEOUT_SECONDS,
    )
