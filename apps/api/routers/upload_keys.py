"""
Upload-key endpoints for external tools that have no browser session.

``POST /k/{key}`` speaks both upload styles: a request with a ``Tus-Resumable``
header starts a resumable upload, anything else is a single-shot upload of the
raw request body:

    curl -X POST -H "Content-Type: video/mp4" --data-binary @clip.mp4 \\
         https://gallery.example.edu/k/<key>
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from routers.api import validated_upload_length
from routers.errors import http_error_for
from routers.rate_limit import rate_limit
from services.capability_token import InvalidToken, UploadKeyClaims, verify_upload_key
from services.stream import StreamAPIError, StreamClient, get_stream_client
from services.tus import upload_created_headers
from services.uploads import (
    DirectUpload,
    GalleryCoordinate,
    ResumableUpload,
    UploadIntent,
    UploadRequestError,
    Uploader,
    initiate_upload,
)

router = APIRouter()
logger = logging.getLogger(__name__)

INVALID_KEY_DETAIL = "Invalid or expired upload key"


class DirectUploadResponse(BaseModel):
    ok: bool = True
    video_id: str


def _require_upload_key(key: str, config: Settings) -> UploadKeyClaims:
    claims = verify_upload_key(key, config=config)
    if isinstance(claims, InvalidToken):
        logger.info("Rejected upload key: %s", claims.reason)
        raise HTTPException(status_code=401, detail=INVALID_KEY_DETAIL)
    return claims


async def _read_direct_body(request: Request, config: Settings) -> bytes:
    """Read the raw upload body, refusing anything over DIRECT_UPLOAD_MAX_BYTES with 413."""
    limit = config.DIRECT_UPLOAD_MAX_BYTES
    too_large = HTTPException(
        status_code=413,
        detail=f"Upload too large; the single-shot limit is {limit} bytes. Use a TUS client for larger files.",
    )
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise too_large

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise too_large
    return bytes(body)


def _direct_content_type(request: Request) -> str:
    content_type = (request.headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    return content_type if content_type.startswith("video/") else "video/mp4"


async def _run_upload(
    claims: UploadKeyClaims,
    intent: UploadIntent,
    db: AsyncSession,
    stream: StreamClient,
):
    try:
        handle = await initiate_upload(
            db,
            stream,
            uploader=Uploader(user_id=claims.sub, email=claims.email),
            gallery=GalleryCoordinate.parse(claims.course_id, claims.assignment_id),
            intent=intent,
        )
    except (UploadRequestError, StreamAPIError) as exc:
        raise http_error_for(exc) from exc

    if handle.location:
        return Response(status_code=201, headers=upload_created_headers(handle.location))
    return DirectUploadResponse(video_id=handle.video_id)


@router.post("/k/{key}")
async def upload_with_key(
    key: str,
    request: Request,
    _rate_limit: None = Depends(rate_limit("upload_key_use", limit=60, window_seconds=3600)),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
    stream: StreamClient = Depends(get_stream_client),
):
    """Upload via upload key: TUS handshake or raw body, chosen by the Tus-Resumable header."""
    claims = _require_upload_key(key, config)

    intent: UploadIntent
    if request.headers.get("Tus-Resumable"):
        intent = ResumableUpload(upload_length=validated_upload_length(request.headers.get("Upload-Length")))
    else:
        payload = await _read_direct_body(request, config)
        intent = DirectUpload(payload=payload, content_type=_direct_content_type(request))
    return await _run_upload(claims, intent, db, stream)


@router.post("/k/{key}/upload", response_model=DirectUploadResponse)
async def direct_upload_with_key(
    key: str,
    request: Request,
    _rate_limit: None = Depends(rate_limit("upload_key_use", limit=60, window_seconds=3600)),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
    stream: StreamClient = Depends(get_stream_client),
):
    """Single-shot upload of the raw request body, for clients that cannot speak TUS."""
    claims = _require_upload_key(key, config)
    payload = await _read_direct_body(request, config)
    intent = DirectUpload(payload=payload, content_type=_direct_content_type(request))
    return await _run_upload(claims, intent, db, stream)


