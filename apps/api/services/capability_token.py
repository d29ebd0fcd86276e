"""Signed, expiring claim tokens for browser sessions and delegated upload keys.

Both token kinds are HS256 JWTs signed with the same ``JWT_SECRET``. Each carries
a ``purpose`` claim, and decoding yields exactly one of ``SessionClaims``,
``UploadKeyClaims`` or ``InvalidToken``. Callers must check for the variant they
expect, so a valid session token never works as an upload key and vice versa.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Union

from jose import JWTError, jwt

from config import Settings


SESSION_PURPOSE = "session"
UPLOAD_KEY_PURPOSE = "upload-key"


@dataclass(frozen=True)
class SessionClaims:
    sub: str
    email: str
    name: str
    picture: str
    hosted_domain: str
    expires_at: int


@dataclass(frozen=True)
class UploadKeyClaims:
    sub: str
    email: str
    course_id: str
    assignment_id: str
    expires_at: int


@dataclass(frozen=True)
class InvalidToken:
    """Decoding failed. ``reason`` is for logs only and never shown to callers."""

    reason: str


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: int


TokenClaims = Union[SessionClaims, UploadKeyClaims, InvalidToken]


def _now(now: Optional[int]) -> int:
    return int(time.time()) if now is None else int(now)


def issue_token(
    claims: Dict[str, Any],
    *,
    purpose: str,
    ttl: timedelta,
    config: Settings,
    now: Optional[int] = None,
) -> IssuedToken:
    """Sign ``claims`` with an expiry of ``now + ttl`` and the given purpose tag."""
    issued_at = _now(now)
    expires_at = issued_at + int(ttl.total_seconds())
    payload: Dict[str, Any] = dict(claims)
    payload.update({"purpose": purpose, "iat": issued_at, "exp": expires_at})
    token = jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    return IssuedToken(token=token, expires_at=expires_at)


def issue_session_token(
    *,
    sub: str,
    email: str,
    name: str,
    picture: str,
    hosted_domain: str,
    config: Settings,
    now: Optional[int] = None,
) -> IssuedToken:
    """Create a browser session token. The domain check happens before this call."""
    return issue_token(
        {"sub": sub, "email": email, "name": name, "picture": picture, "hd": hosted_domain},
        purpose=SESSION_PURPOSE,
        ttl=timedelta(hours=max(int(config.JWT_EXPIRATION_HOURS or 24), 1)),
        config=config,
        now=now,
    )


def issue_upload_key(
    *,
    sub: str,
    email: str,
    course_id: str,
    assignment_id: str,
    config: Settings,
    now: Optional[int] = None,
    ttl: Optional[timedelta] = None,
) -> IssuedToken:
    """Create an upload key scoped to one identity and one gallery."""
    if ttl is None:
        ttl = timedelta(hours=max(int(config.UPLOAD_KEY_EXPIRATION_HOURS or 24), 1))
    return issue_token(
        {"sub": sub, "email": email, "course_id": course_id, "assignment_id": assignment_id},
        purpose=UPLOAD_KEY_PURPOSE,
        ttl=ttl,
        config=config,
        now=now,
    )


def decode_token(token: str, *, config: Settings, now: Optional[int] = None) -> TokenClaims:
    """Check signature, expiry and purpose, and return the matching claim variant.

    A token is valid while ``now < exp``; at ``exp`` it is already expired.
    """
    if not token:
        return InvalidToken("malformed")
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return InvalidToken("signature")

    try:
        expires_at = int(payload.get("exp"))
    except (TypeError, ValueError):
        return InvalidToken("malformed")
    if _now(now) >= expires_at:
        return InvalidToken("expired")

    subject = str(payload.get("sub") or "").strip()
    email = str(payload.get("email") or "").strip()
    if not subject or not email:
        return InvalidToken("claims")

    purpose = payload.get("purpose")
    if purpose == SESSION_PURPOSE:
        return SessionClaims(
            sub=subject,
            email=email,
            name=str(payload.get("name") or ""),
            picture=str(payload.get("picture") or ""),
            hosted_domain=str(payload.get("hd") or ""),
            expires_at=expires_at,
        )
    if purpose == UPLOAD_KEY_PURPOSE:
        course_id = str(payload.get("course_id") or "").strip()
        assignment_id = str(payload.get("assignment_id") or "").strip()
        if not course_id or not assignment_id:
            return InvalidToken("claims")
        return UploadKeyClaims(
            sub=subject,
            email=email,
            course_id=course_id,
            assignment_id=assignment_id,
            expires_at=expires_at,
        )
    return InvalidToken("purpose")


def verify_session_token(
    token: str, *, config: Settings, now: Optional[int] = None
) -> Union[SessionClaims, InvalidToken]:
    claims = decode_token(token, config=config, now=now)
    if isinstance(claims, (SessionClaims, InvalidToken)):
        return claims
    return InvalidToken("purpose")


def verify_upload_key(
    token: str, *, config: Settings, now: Optional[int] = None
) -> Union[UploadKeyClaims, InvalidToken]:
    claims = decode_token(token, config=config, now=now)
    if isinstance(claims, (UploadKeyClaims, InvalidToken)):
        return claims
    return InvalidToken("purpose")
