from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from handball.auth.config import ProviderConfig


@dataclass(frozen=True)
class DiscoveredClient:
    """Provider metadata fetched at startup."""

    config: ProviderConfig
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    signing_keys: Tuple[Dict[str, Any], ...]
    signing_algorithms: Tuple[str, ...] = ("RS256",)


@dataclass(frozen=True)
class IdentityClaims:
    sub: str
    iss: str
    aud: List[str]
    exp: int
    iat: int
    email: Optional[str] = None
    username: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "IdentityClaims":
        aud = payload.get("aud")
        audiences = [str(a) for a in aud] if isinstance(aud, list) else [str(aud)]
        email = payload.get("email")
        username = payload.get("preferred_username") or payload.get("username")
        return cls(
            sub=str(payload["sub"]),
            iss=str(payload["iss"]),
            aud=audiences,
            exp=int(payload["exp"]),
            iat=int(payload["iat"]),
            email=str(email) if email else None,
            username=str(username) if username else None,
            raw=dict(payload),
        )


@dataclass
class IdentityToken:
    raw: str = field(repr=False)
    claims: Optional[IdentityClaims] = None

    @property
    def decoded(self) -> bool:
        return self.claims is not None


@dataclass
class ExchangedToken:
    """Token endpoint result. Lives only for the duration of one callback."""

    access_token: str = field(repr=False)
    token_type: str
    id_token: Optional[IdentityToken]
    expires_in: Optional[int] = None


@dataclass(frozen=True)
class CallbackParams:
    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def outcome(self) -> str:
        """success|provider_error|malformed"""
        if self.code is not None:
            return "success"
        if self.error is not None and self.error_description is not None:
            return "provider_error"
        return "malformed"


@dataclass(frozen=True)
class AuthUser:
    """Authenticated user marker. Identity fields are only known for signed sessions."""

    subject: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
