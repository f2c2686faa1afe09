from __future__ import annotations

import json
from typing import Mapping, Optional

from fastapi import Response
from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from handball.auth.models import AuthUser

SESSION_COOKIE_NAME = "HANDBALL"
SESSION_MAX_AGE_SECONDS = 20
SESSION_SALT = "handball-session-v1"


class SessionCodec:
    """
    Issues and recognises the `HANDBALL` session cookie.

    Without a secret the cookie value is empty and its presence alone marks the
    request as authenticated. With a secret the value is a signed, timestamped
    token and `has_session` also checks the signature and age.
    """

    def __init__(self, secret: Optional[str] = None, *, max_age: int = SESSION_MAX_AGE_SECONDS) -> None:
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key=secret, salt=SESSION_SALT) if secret else None

    @property
    def signed(self) -> bool:
        return self._serializer is not None

    def encode(self, user: Optional[AuthUser]) -> str:
        if self._serializer is None:
            return ""
        user = user or AuthUser()
        # Keep cookie small and non-sensitive (no tokens).
        raw = json.dumps(
            {"sub": user.subject, "email": user.email, "username": user.username},
            separators=(",", ":"),
            sort_keys=True,
        )
        return self._serializer.dumps(raw)

    def decode(self, value: Optional[str]) -> Optional[AuthUser]:
        if self._serializer is None:
            return AuthUser() if value is not None else None
        if not value:
            return None
        try:
            data = json.loads(self._serializer.loads(value, max_age=self.max_age))
        except (BadSignature, BadTimeSignature, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return AuthUser(
            subject=str(data["sub"]) if data.get("sub") else None,
            email=str(data["email"]) if data.get("email") else None,
            username=str(data["username"]) if data.get("username") else None,
        )

    def cookie_kwargs(self, value: str) -> dict:
        return {
            "key": SESSION_COOKIE_NAME,
            "value": value,
            "max_age": self.max_age,
            "httponly": True,
            "samesite": "lax",
            "path": "/",
        }

    def issue(self, response: Response, user: Optional[AuthUser] = None) -> None:
        # All attributes go out in a single Set-Cookie header.
        response.set_cookie(**self.cookie_kwargs(self.encode(user)))

    def user_from_cookies(self, cookies: Mapping[str, str]) -> Optional[AuthUser]:
        return self.decode(cookies.get(SESSION_COOKIE_NAME))

    def has_session(self, cookies: Mapping[str, str]) -> bool:
        return self.user_from_cookies(cookies) is not None
