"""
Login flow: redirect to the provider, then finalize the callback.

Callback states, all resolved within a single request:

    Received -> ProviderError          302 to the error page, no cookie
             -> Malformed              401
             -> Exchanging -> Rejected 401, reason logged only
                           -> Validated -> Complete   cookie + 302 to `state`
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Response
from fastapi.responses import JSONResponse, RedirectResponse

from handball.auth.errors import ExchangeError, InternalAuthFault, MissingIdTokenError
from handball.auth.models import AuthUser, CallbackParams, ExchangedToken
from handball.auth.oidc import OIDCClient
from handball.auth.session import SessionCodec
from handball.auth.util import DEFAULT_REDIRECT, invitation_params, sanitize_next_path

logger = logging.getLogger(__name__)

PROVIDER_ERROR_PAGE = "/error/email_not_verified"


def _unauthorized() -> JSONResponse:
    # No WWW-Authenticate: browsers would pop a basic-auth dialog.
    return JSONResponse(status_code=401, content={"detail": "Unauthorized"})


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def login_redirect(
    client: OIDCClient,
    *,
    invitation: Optional[str] = None,
    organization: Optional[str] = None,
) -> RedirectResponse:
    """Redirect to the provider, carrying invitation/organization when both are given."""
    url = client.authorization_url(invitation_params(invitation, organization))
    return _redirect(url)


def _user_from_token(token: ExchangedToken) -> AuthUser:
    if token.id_token is None or not token.id_token.decoded:
        raise InternalAuthFault("id token must be decoded at this point")
    claims = token.id_token.claims
    return AuthUser(subject=claims.sub, email=claims.email, username=claims.username)


def finalize_login(
    client: OIDCClient,
    codec: SessionCodec,
    params: CallbackParams,
    *,
    strict_redirects: bool = False,
) -> Response:
    """
    Handle the provider redirect back to `/login/finalize`.

    Raises:
        InternalAuthFault: the exchange returned without a decoded id token
    """
    outcome = params.outcome
    if outcome == "provider_error":
        logger.info("Provider reported login error: %s", params.error)
        return _redirect(PROVIDER_ERROR_PAGE)
    if outcome == "malformed":
        logger.info("Malformed login callback (no code, no error pair)")
        return _unauthorized()

    try:
        token = client.exchange_code(params.code)
    except MissingIdTokenError:
        logger.error("no id_token found in token response")
        return _unauthorized()
    except ExchangeError as e:
        logger.warning("Login rejected (%s): %s", e.kind, e)
        return _unauthorized()

    user = _user_from_token(token)

    target = params.state or DEFAULT_REDIRECT
    if strict_redirects:
        target = sanitize_next_path(target)
    resp = _redirect(target)
    codec.issue(resp, user)
    logger.info("Login complete for sub=%s", user.subject)
    return resp
