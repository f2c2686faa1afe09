from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from handball.auth.errors import NotAuthenticated
from handball.auth.models import AuthUser
from handball.auth.oidc import OIDCClient
from handball.auth.session import SessionCodec

logger = logging.getLogger(__name__)


def get_oidc_client(request: Request) -> OIDCClient:
    """The provider client discovered at startup."""
    return request.app.state.oidc_client


def get_session_codec(request: Request) -> SessionCodec:
    return request.app.state.session_codec


def authenticate_request(request: Request) -> Optional[AuthUser]:
    """Return an AuthUser if the request carries a session cookie."""
    user = get_session_codec(request).user_from_cookies(request.cookies)
    if user is None:
        logger.debug("no session cookie found")
    return user


def optional_user(request: Request) -> Optional[AuthUser]:
    return authenticate_request(request)


def require_user(request: Request) -> AuthUser:
    """
    Guard for protected routes.

    Raises NotAuthenticated, which the application turns into a 401.
    """
    user = authenticate_request(request)
    if user is None:
        raise NotAuthenticated()
    return user
