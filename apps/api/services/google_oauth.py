"""Google OAuth 2.0 authorization-code flow helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from config import Settings


GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"


class OAuthError(RuntimeError):
    """Token exchange or userinfo lookup failed."""


class DomainNotAllowedError(PermissionError):
    """Signed-in account is outside the configured organization domain."""


@dataclass(frozen=True)
class GoogleIdentity:
    sub: str
    email: str
    name: str
    picture: str
    hosted_domain: Optional[str]


def build_authorization_url(state: str, config: Settings) -> str:
    params = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": config.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": "openid email profile",
        "access_type": "online",
        "state": state,
        "hd": config.ALLOWED_DOMAIN,
        "prompt": "select_account",
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def ensure_allowed_domain(identity: GoogleIdentity, config: Settings) -> None:
    """Server-side domain check; the ``hd`` login hint alone is not enforcement."""
    allowed = (config.ALLOWED_DOMAIN or "").strip().lower()
    if not allowed or (identity.hosted_domain or "").strip().lower() != allowed:
        raise DomainNotAllowedError(
            f"Access restricted to @{config.ALLOWED_DOMAIN} accounts. You signed in as {identity.email}."
        )


async def fetch_google_identity(
    code: str,
    config: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GoogleIdentity:
    """Exchange an authorization code and load the signed-in account's profile."""
    async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
        try:
            token_response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": config.GOOGLE_CLIENT_ID,
                    "client_secret": config.GOOGLE_CLIENT_SECRET,
                    "redirect_uri": config.GOOGLE_REDIRECT_URI,
                    "grant_type": "authorization_code",
                },
            )
        except httpx.HTTPError as exc:
            raise OAuthError(f"Token exchange failed: {exc}") from exc
        if token_response.is_error:
            raise OAuthError(f"Token exchange failed: {token_response.text}")

        try:
            access_token = str(token_response.json().get("access_token") or "")
        except ValueError as exc:
            raise OAuthError("Token exchange failed: malformed response") from exc
        if not access_token:
            raise OAuthError("Token exchange failed: no access token returned")

        try:
            info_response = await client.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise OAuthError(f"Failed to fetch user info: {exc}") from exc
        if info_response.is_error:
            raise OAuthError("Failed to fetch user info")

    try:
        info = info_response.json()
    except ValueError as exc:
        raise OAuthError("Failed to fetch user info: malformed response") from exc
    sub = str(info.get("sub") or "").strip()
    email = str(info.get("email") or "").strip()
    if not sub or not email:
        raise OAuthError("Failed to fetch user info: missing subject or email")
    return GoogleIdentity(
        sub=sub,
        email=email,
        name=str(info.get("name") or email),
        picture=str(info.get("picture") or ""),
        hosted_domain=info.get("hd"),
    )
