"""
Pytest config.

Pins the repo root on sys.path so `import handball` works when a global `pytest`
entrypoint is used without installing the project, and provides a fake OIDC
provider that signs real RS256 identity tokens.
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

import jwt  # noqa: E402
import requests  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from handball.api.server import create_app  # noqa: E402
from handball.auth.config import ProviderConfig, ServiceSettings, load_provider_config, load_service_settings  # noqa: E402
from handball.auth.oidc import OIDCClient  # noqa: E402

ORIGIN = "https://handball.example.com"
ISSUER = "https://idp.example.com"
CLIENT_ID = "handball-client"
CLIENT_SECRET = "handball-secret"
KID = "test-key-1"

_ENV_VARS = (
    "ORIGIN",
    "AUTH_ISSUER",
    "AUTH_CLIENT_ID",
    "AUTH_CLIENT_SECRET",
    "STAGE",
    "AUTH_HTTP_TIMEOUT_SECONDS",
    "AUTH_SESSION_SECRET",
    "AUTH_STRICT_REDIRECTS",
    "FRONTEND_INDEX",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from an empty auth environment and fresh config caches."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_provider_config.cache_clear()
    load_service_settings.cache_clear()
    yield
    load_provider_config.cache_clear()
    load_service_settings.cache_clear()


@pytest.fixture
def auth_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ORIGIN", ORIGIN)
    monkeypatch.setenv("AUTH_ISSUER", ISSUER)
    monkeypatch.setenv("AUTH_CLIENT_ID", CLIENT_ID)
    monkeypatch.setenv("AUTH_CLIENT_SECRET", CLIENT_SECRET)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, *, is_json: bool = True) -> None:
        self.status_code = status_code
        self._payload = payload
        self._is_json = is_json

    def json(self) -> Any:
        if not self._is_json:
            raise ValueError("Expecting value")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_jwk(private_key: rsa.RSAPrivateKey, kid: str = KID) -> Dict[str, Any]:
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return jwk


class FakeProvider:
    """Stands in for `requests.get` / `requests.post` against an OIDC provider."""

    def __init__(self, private_key: rsa.RSAPrivateKey) -> None:
        self.private_key = private_key
        self.discovery: Dict[str, Any] = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "jwks_uri": f"{ISSUER}/jwks",
            "id_token_signing_alg_values_supported": ["RS256"],
        }
        self.jwks: Dict[str, Any] = {"keys": [public_jwk(private_key)]}
        self.get_error: Optional[Exception] = None
        self.token_error: Optional[Exception] = None
        self.token_response: Tuple[int, Any] = (200, {})
        self.token_is_json = True
        self.posts: List[Dict[str, Any]] = []
        self.issue_tokens()

    def get(self, url: str, **_kwargs: Any) -> FakeResponse:
        if self.get_error is not None:
            raise self.get_error
        if url == f"{ISSUER}/.well-known/openid-configuration":
            return FakeResponse(200, self.discovery)
        if url == f"{ISSUER}/jwks":
            return FakeResponse(200, self.jwks)
        return FakeResponse(404, {"error": "not_found"})

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.posts.append({"url": url, **kwargs})
        if self.token_error is not None:
            raise self.token_error
        status, payload = self.token_response
        return FakeResponse(status, payload, is_json=self.token_is_json)

    def claims(self, **overrides: Any) -> Dict[str, Any]:
        now = int(time.time())
        claims: Dict[str, Any] = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "user-123",
            "iat": now,
            "exp": now + 300,
            "email": "player@example.com",
            "preferred_username": "player",
        }
        claims.update(overrides)
        return {k: v for k, v in claims.items() if v is not None}

    def id_token(self, *, key: Any = None, algorithm: str = "RS256", kid: Optional[str] = KID, **overrides: Any) -> str:
        headers = {"kid": kid} if kid else {}
        return jwt.encode(self.claims(**overrides), key or self.private_key, algorithm=algorithm, headers=headers)

    def issue_tokens(self, **overrides: Any) -> None:
        self.token_response = (
            200,
            {"access_token": "access-abc", "token_type": "Bearer", "expires_in": 300, "id_token": self.id_token(**overrides)},
        )


@pytest.fixture
def provider(monkeypatch: pytest.MonkeyPatch, signing_key: rsa.RSAPrivateKey) -> FakeProvider:
    fake = FakeProvider(signing_key)
    monkeypatch.setattr("handball.auth.oidc.requests.get", fake.get)
    monkeypatch.setattr("handball.auth.oidc.requests.post", fake.post)
    return fake


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig(
        issuer_url=ISSUER,
        redirect_url=f"{ORIGIN}/login/finalize",
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
    )


@pytest.fixture
def oidc_client(provider: FakeProvider, provider_config: ProviderConfig) -> OIDCClient:
    return OIDCClient.discover(provider_config, timeout=5)


def make_settings(tmp_path: Path, **overrides: Any) -> ServiceSettings:
    values: Dict[str, Any] = {
        "stage": "test",
        "http_timeout_seconds": 5.0,
        "session_secret": None,
        "strict_redirects": False,
        "frontend_index": str(tmp_path / "index.html"),
        "log_level": "info",
    }
    values.update(overrides)
    return ServiceSettings(**values)


@pytest.fixture
def settings(tmp_path: Path) -> ServiceSettings:
    index = tmp_path / "index.html"
    index.write_text("<html><body>handball</body></html>", encoding="utf-8")
    return make_settings(tmp_path)


@pytest.fixture
def client(oidc_client: OIDCClient, settings: ServiceSettings) -> TestClient:
    return TestClient(create_app(oidc_client=oidc_client, settings=settings))
