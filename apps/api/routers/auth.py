"""
Authentication router: Google OAuth sign-in, session cookie and current user.
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from routers.auth_scope import SESSION_COOKIE, AuthContext, get_optional_auth_context, unauthenticated
from services.capability_token import issue_session_token
from services.google_oauth import (
    DomainNotAllowedError,
    OAuthError,
    build_authorization_url,
    ensure_allowed_domain,
    fetch_google_identity,
)
from services.videos import upsert_user

router = APIRouter()
logger = logging.getLogger(__name__)

STATE_COOKIE = "oauth_state"
RETURN_TO_COOKIE = "return_to"


class CurrentUserResponse(BaseModel):
    authenticated: bool = True
    user_id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    hosted_domain: Optional[str] = None
    is_moderator: bool = False


def _safe_return_path(value: Optional[str]) -> str:
    path = (value or "").strip()
    if not path.startswith("/") or path.startswith("//"):
        return "/"
    return path


@router.get("/login")
async def login(
    return_to: Optional[str] = None,
    config: Settings = Depends(get_settings),
):
    """Start the Google sign-in redirect."""
    state = secrets.token_urlsafe(24)
    response = RedirectResponse(build_authorization_url(state, config), status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        state,
        path="/",
        httponly=True,
        secure=config.cookie_secure,
        samesite="lax",
        max_age=300,
    )
    if return_to:
        response.set_cookie(
            RETURN_TO_COOKIE,
            _safe_return_path(return_to),
            path="/",
            httponly=True,
            secure=config.cookie_secure,
            samesite="lax",
            max_age=300,
        )
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """Finish sign-in: verify state, enforce the allowed domain, upsert the user, set the session."""
    stored_state = request.cookies.get(STATE_COOKIE)
    if error:
        raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
    if not code or not state or not stored_state or not secrets.compare_digest(state, stored_state):
        raise HTTPException(status_code=403, detail="Invalid OAuth state")

    try:
        identity = await fetch_google_identity(code, config)
        ensure_allowed_domain(identity, config)
    except DomainNotAllowedError as exc:
        logger.info("Sign-in refused for %s (hd=%s)", identity.email, identity.hosted_domain)
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except OAuthError as exc:
        logger.warning("OAuth callback failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    await upsert_user(
        db,
        user_id=identity.sub,
        email=identity.email,
        name=identity.name,
        picture=identity.picture,
        hosted_domain=identity.hosted_domain,
    )
    session = issue_session_token(
        sub=identity.sub,
        email=identity.email,
        name=identity.name,
        picture=identity.picture,
        hosted_domain=identity.hosted_domain or "",
        config=config,
    )

    response = RedirectResponse(_safe_return_path(request.cookies.get(RETURN_TO_COOKIE)), status_code=302)
    response.delete_cookie(STATE_COOKIE, path="/")
    response.delete_cookie(RETURN_TO_COOKIE, path="/")
    response.set_cookie(
        SESSION_COOKIE,
        session.token,
        path="/",
        httponly=True,
        secure=config.cookie_secure,
        samesite="lax",
        max_age=max(int(config.JWT_EXPIRATION_HOURS or 24), 1) * 3600,
    )
    logger.info("Signed in user=%s", identity.sub)
    return response


@router.get("/logout")
async def logout():
    response = RedirectResponse("/", status_code=302)
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
):
    """Current session identity."""
    if auth is None:
        raise unauthenticated(request, detail={"authenticated": False})
    return CurrentUserResponse(
        user_id=auth.user_id,
        email=auth.email,
        name=auth.name,
        picture=auth.picture,
        hosted_domain=auth.hosted_domain,
        is_moderator=auth.is_moderator,
    )
