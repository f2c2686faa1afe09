"""
Error taxonomy for the login flow.

Startup errors (ConfigError, DiscoveryError) are fatal: the server must not start.
Exchange errors all collapse to 401 for the caller; `kind` only shows up in logs.
"""
from __future__ import annotations


class ConfigError(ValueError):
    """Missing or malformed environment configuration."""


class DiscoveryError(RuntimeError):
    """The provider's discovery document or signing keys could not be loaded."""


class ExchangeError(RuntimeError):
    kind = "exchange"


class ExchangeNetworkError(ExchangeError):
    kind = "network"


class ExchangeProviderError(ExchangeNetworkError):
    """The token endpoint answered with an OAuth2 error (e.g. invalid_grant)."""

    def __init__(self, message: str, *, error: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.error = error
        self.status_code = status_code


class ExchangeDecodeError(ExchangeError):
    kind = "decode"


class MissingIdTokenError(ExchangeDecodeError):
    """Token response carried no id_token."""


class ExchangeValidationError(ExchangeError):
    kind = "validation"


class InternalAuthFault(RuntimeError):
    """A postcondition of the exchange step did not hold."""


class NotAuthenticated(Exception):
    """No session cookie on the request."""
