from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from handball.auth.errors import ConfigError

logger = logging.getLogger(__name__)

SCOPES = "openid email username"
STAGES = ("prod", "test")


@dataclass(frozen=True)
class ProviderConfig:
    """Identity provider settings. Loaded once, never mutated."""

    issuer_url: str
    redirect_url: str
    client_id: str
    client_secret: str
    scopes: str = SCOPES


@dataclass(frozen=True)
class ServiceSettings:
    stage: str
    http_timeout_seconds: float
    session_secret: Optional[str]  # Enables signed session cookies when set
    strict_redirects: bool  # Restrict post-login redirects to relative paths
    frontend_index: str
    log_level: str


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _require(name: str) -> str:
    value = _env(name)
    if value is None:
        raise ConfigError(f"{name} is required")
    return value


def _require_url(name: str, value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"{name} must be an absolute http(s) URL, got {value!r}")
    return value


def _parse_bool(value: Optional[str]) -> bool:
    return (value or "").lower() in ("1", "true", "yes", "on")


@lru_cache(maxsize=1)
def load_provider_config() -> ProviderConfig:
    """
    Load the OIDC provider configuration from environment variables.

    ORIGIN, AUTH_ISSUER, AUTH_CLIENT_ID and AUTH_CLIENT_SECRET are all required;
    the redirect URL is derived as `{ORIGIN}/login/finalize`.

    Raises:
        ConfigError: a variable is missing or a URL is malformed
    """
    origin = _require_url("ORIGIN", _require("ORIGIN"))
    issuer_url = _require_url("AUTH_ISSUER", _require("AUTH_ISSUER"))
    client_id = _require("AUTH_CLIENT_ID")
    client_secret = _require("AUTH_CLIENT_SECRET")

    redirect_url = _require_url("ORIGIN", f"{origin.rstrip('/')}/login/finalize")
    return ProviderConfig(
        issuer_url=issuer_url,
        redirect_url=redirect_url,
        client_id=client_id,
        client_secret=client_secret,
    )


@lru_cache(maxsize=1)
def load_service_settings() -> ServiceSettings:
    stage = (_env("STAGE") or "").lower()
    if stage not in STAGES:
        if stage:
            logger.warning("Unknown STAGE %r, falling back to prod", stage)
        stage = "prod"

    raw_timeout = _env("AUTH_HTTP_TIMEOUT_SECONDS") or "10"
    try:
        timeout = float(raw_timeout)
    except ValueError as e:
        raise ConfigError(f"AUTH_HTTP_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}") from e
    if timeout < 1:
        timeout = 1.0

    return ServiceSettings(
        stage=stage,
        http_timeout_seconds=timeout,
        session_secret=_env("AUTH_SESSION_SECRET"),
        strict_redirects=_parse_bool(_env("AUTH_STRICT_REDIRECTS")),
        frontend_index=_env("FRONTEND_INDEX") or "dist/index.html",
        log_level=(_env("LOG_LEVEL") or "info").lower(),
    )
