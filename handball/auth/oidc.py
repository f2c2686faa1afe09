from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import jwt  # PyJWT
import requests

from handball.auth.config import ProviderConfig
from handball.auth.errors import (
    DiscoveryError,
    ExchangeDecodeError,
    ExchangeNetworkError,
    ExchangeProviderError,
    ExchangeValidationError,
    MissingIdTokenError,
)
from handball.auth.models import DiscoveredClient, ExchangedToken, IdentityClaims, IdentityToken

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
DEFAULT_TIMEOUT_SECONDS = 10.0
REQUIRED_CLAIMS = ["sub", "iss", "aud", "exp", "iat"]


def _same_issuer(a: str, b: str) -> bool:
    return a.rstrip("/") == b.rstrip("/")


def _get_json(url: str, *, timeout: float, what: str) -> Dict[str, Any]:
    try:
        r = requests.get(url, timeout=timeout, headers={"Accept": "application/json"})
        r.raise_for_status()
        data = r.json()
    except requests.RequestException as e:
        raise DiscoveryError(f"Failed to fetch {what} from {url}: {e}") from e
    except ValueError as e:
        raise DiscoveryError(f"Invalid {what} at {url}: not JSON") from e
    if not isinstance(data, dict):
        raise DiscoveryError(f"Invalid {what} at {url}: expected a JSON object")
    return data


def _signing_algorithms(disc: Dict[str, Any]) -> Tuple[str, ...]:
    # Never accept unsigned or symmetric tokens, whatever the provider advertises.
    advertised = disc.get("id_token_signing_alg_values_supported")
    if not isinstance(advertised, list):
        advertised = ["RS256"]
    algs = tuple(str(a) for a in advertised if a and str(a) != "none" and not str(a).startswith("HS"))
    return algs or ("RS256",)


class OIDCClient:
    """
    Relying-party client bound to one discovered provider.

    Built once at startup with `discover()` and then shared read-only by every
    request handler.
    """

    def __init__(self, discovered: DiscoveredClient, *, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.discovered = discovered
        self.timeout = timeout

    @property
    def config(self) -> ProviderConfig:
        return self.discovered.config

    @classmethod
    def discover(cls, config: ProviderConfig, *, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> "OIDCClient":
        """
        Fetch the discovery document and JWKS for `config.issuer_url`.

        Raises:
            DiscoveryError: network failure, malformed metadata or issuer mismatch
        """
        url = config.issuer_url.rstrip("/") + DISCOVERY_PATH
        disc = _get_json(url, timeout=timeout, what="OIDC discovery document")

        fields = {}
        for name in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri"):
            value = str(disc.get(name) or "").strip()
            if not value:
                raise DiscoveryError(f"OIDC discovery missing {name}")
            fields[name] = value

        if not _same_issuer(fields["issuer"], config.issuer_url):
            raise DiscoveryError(
                f"OIDC issuer mismatch: configured {config.issuer_url!r}, provider reports {fields['issuer']!r}"
            )

        jwks = _get_json(fields["jwks_uri"], timeout=timeout, what="JWKS")
        keys = jwks.get("keys")
        if not isinstance(keys, list) or not keys:
            raise DiscoveryError("JWKS has no keys")
        signing_keys = tuple(k for k in keys if isinstance(k, dict) and k.get("use", "sig") == "sig")
        if not signing_keys:
            raise DiscoveryError("JWKS has no signing keys")

        discovered = DiscoveredClient(
            config=config,
            issuer=fields["issuer"],
            authorization_endpoint=fields["authorization_endpoint"],
            token_endpoint=fields["token_endpoint"],
            jwks_uri=fields["jwks_uri"],
            signing_keys=signing_keys,
            signing_algorithms=_signing_algorithms(disc),
        )
        logger.info(
            "Discovered OIDC provider issuer=%s keys=%d algorithms=%s",
            discovered.issuer,
            len(signing_keys),
            ",".join(discovered.signing_algorithms),
        )
        return cls(discovered, timeout=timeout)

    def authorization_url(self, extra_params: Optional[Iterable[Tuple[str, str]]] = None) -> str:
        """Provider login URL with the configured scope plus any extra query parameters."""
        cfg = self.config
        parts = urlsplit(self.discovered.authorization_endpoint)
        params: List[Tuple[str, str]] = parse_qsl(parts.query, keep_blank_values=True)
        params += [
            ("response_type", "code"),
            ("client_id", cfg.client_id),
            ("redirect_uri", cfg.redirect_url),
            ("scope", cfg.scopes),
        ]
        if extra_params:
            params += list(extra_params)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))

    def exchange_code(self, code: str) -> ExchangedToken:
        """
        Exchange an authorization code for tokens and validate the id token.

        Raises:
            ExchangeNetworkError: transport failure or provider error response
            ExchangeDecodeError: malformed token response (MissingIdTokenError if no id_token)
            ExchangeValidationError: signature or standard-claims check failed
        """
        cfg = self.config
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": cfg.redirect_url,
        }
        try:
            r = requests.post(
                self.discovered.token_endpoint,
                data=payload,
                auth=(cfg.client_id, cfg.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExchangeNetworkError(f"Token request failed: {type(e).__name__}") from e

        if r.status_code >= 400:
            error = None
            try:
                body = r.json()
                if isinstance(body, dict):
                    error = str(body.get("error") or "") or None
            except ValueError:
                pass
            # Avoid leaking provider detail; status and error code are enough.
            raise ExchangeProviderError(
                f"Token exchange failed (status={r.status_code}, error={error})",
                error=error,
                status_code=r.status_code,
            )

        try:
            data = r.json()
        except ValueError as e:
            raise ExchangeDecodeError("Token response is not JSON") from e
        if not isinstance(data, dict):
            raise ExchangeDecodeError("Token response is not a JSON object")

        access_token = str(data.get("access_token") or "")
        if not access_token:
            raise ExchangeDecodeError("Token response missing access_token")
        raw_id_token = str(data.get("id_token") or "").strip()
        if not raw_id_token:
            raise MissingIdTokenError("Token response missing id_token")

        id_token = IdentityToken(raw=raw_id_token)
        id_token.claims = self.validate_id_token(raw_id_token)

        expires_in = data.get("expires_in")
        return ExchangedToken(
            access_token=access_token,
            token_type=str(data.get("token_type") or "Bearer"),
            id_token=id_token,
            expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
        )

    def _select_key(self, kid: str) -> Dict[str, Any]:
        keys: Sequence[Dict[str, Any]] = self.discovered.signing_keys
        if kid:
            for k in keys:
                if str(k.get("kid") or "") == kid:
                    return k
            raise ExchangeValidationError(f"Unknown signing key (kid={kid})")
        if len(keys) == 1:
            return keys[0]
        raise ExchangeValidationError("ID token missing kid and provider has several keys")

    def validate_id_token(self, id_token: str) -> IdentityClaims:
        """
        Verify the id token signature against the discovered keys, then issuer,
        audience, expiry and issued-at.
        """
        try:
            hdr = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError as e:
            raise ExchangeDecodeError(f"Cannot decode token: {e}") from e

        alg = str(hdr.get("alg") or "")
        if alg not in self.discovered.signing_algorithms:
            raise ExchangeValidationError(f"Unsupported signing algorithm: {alg or 'missing'}")

        jwk = self._select_key(str(hdr.get("kid") or ""))
        if jwk.get("alg") and jwk.get("alg") != alg:
            raise ExchangeValidationError("Signing key algorithm does not match token header")
        try:
            key = jwt.PyJWK(jwk, algorithm=alg).key
        except (jwt.PyJWKError, jwt.InvalidKeyError) as e:
            raise ExchangeValidationError(f"Unusable signing key: {e}") from e

        client_id = self.config.client_id
        try:
            claims = jwt.decode(
                id_token,
                key=key,
                algorithms=[alg],
                audience=client_id,
                issuer=self.discovered.issuer,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.InvalidTokenError as e:
            raise ExchangeValidationError(f"Invalid token: {e}") from e

        aud = claims.get("aud")
        if isinstance(aud, list) and len(aud) > 1 and claims.get("azp") != client_id:
            raise ExchangeValidationError("Invalid token: azp does not match client_id")

        return IdentityClaims.from_payload(claims)
