"""Authentication dependencies for API user scoping."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings
from services.capability_token import InvalidToken, SessionClaims, verify_session_token
from services.permissions import is_moderator


SESSION_COOKIE = "session"
CLEARED_SESSION_COOKIE = f"{SESSION_COOKIE}=\"\"; Max-Age=0; Path=/; HttpOnly; SameSite=lax"

auth_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    user_id: str
    email: str
    name: str = ""
    picture: str = ""
    hosted_domain: str = ""
    is_moderator: bool = False


def auth_context_from_claims(claims: SessionClaims, config: Settings) -> AuthContext:
    return AuthContext(
        user_id=claims.sub,
        email=claims.email,
        name=claims.name,
        picture=claims.picture,
        hosted_domain=claims.hosted_domain,
        is_moderator=is_moderator(claims.email, config.moderator_emails),
    )


async def get_optional_auth_context(
    request: Request,
    response: Response,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    config: Settings = Depends(get_settings),
) -> Optional[AuthContext]:
    """Resolve the signed-in user from the session cookie or a Bearer token, if any."""
    from_cookie = False
    if credentials and credentials.scheme.lower() == "bearer":
        token = credentials.credentials
    else:
        token = request.cookies.get(SESSION_COOKIE)
        from_cookie = True
    if not token:
        return None

    claims = verify_session_token(token, config=config)
    if isinstance(claims, InvalidToken):
        logger.info("Rejected session token: %s", claims.reason)
        if from_cookie:
            request.state.clear_session_cookie = True
            response.delete_cookie(SESSION_COOKIE, path="/")
        return None
    return auth_context_from_claims(claims, config)


def unauthenticated(request: Request, detail: Any = "Sign in required.") -> HTTPException:
    """401 that also expires a session cookie rejected earlier in this request."""
    headers = None
    if getattr(request.state, "clear_session_cookie", False):
        headers = {"Set-Cookie": CLEARED_SESSION_COOKIE}
    return HTTPException(status_code=401, detail=detail, headers=headers)


async def get_auth_context(
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> AuthContext:
    """Require a signed-in user."""
    if auth is None:
        raise unauthenticated(request)
    return auth


async def require_moderator(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_moderator:
        raise HTTPException(status_code=403, detail="Not authorized")
    return auth
