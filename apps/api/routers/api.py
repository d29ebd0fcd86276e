"""
Session-authenticated JSON API: TUS upload initiation, delete, star, hide,
metadata edits and upload-key issuance.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.errors import http_error_for
from routers.rate_limit import rate_limit
from services.capability_token import issue_upload_key
from services.stream import StreamAPIError, StreamClient, get_stream_client
from services.tus import parse_upload_metadata, preflight_headers, upload_created_headers
from services.uploads import (
    GalleryCoordinate,
    ResumableUpload,
    UploadRequestError,
    Uploader,
    initiate_upload,
)
from services.videos import (
    VideoNotFoundError,
    VideoPermissionError,
    remove_video,
    toggle_hidden,
    toggle_star,
    update_video_metadata,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class VideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: Optional[str] = Field(default=None, alias="videoId")


class UpdateVideoRequest(VideoRequest):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    url: Optional[str] = Field(default=None, max_length=2000)


class CreateUploadKeyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[str] = Field(default=None, alias="courseId")
    assignment_id: Optional[str] = Field(default=None, alias="assignmentId")


class StarResponse(BaseModel):
    starred: bool
    star_count: int


class HideResponse(BaseModel):
    hidden: bool


class UploadKeyResponse(BaseModel):
    key: str
    url: str
    expires_in: str
    expires_at: int


def _require_video_id(request: VideoRequest) -> str:
    video_id = (request.video_id or "").strip()
    if not video_id:
        raise HTTPException(status_code=400, detail="Missing videoId")
    return video_id


def validated_upload_length(value: Optional[str]) -> str:
    length = (value or "0").strip()
    if not length.isdigit():
        raise HTTPException(status_code=400, detail="Invalid Upload-Length header")
    return length


def public_origin(request: Request, config: Settings) -> str:
    if config.PUBLIC_BASE_URL:
        return config.PUBLIC_BASE_URL.rstrip("/")
    return str(request.base_url).rstrip("/")


@router.post("/tus-upload", status_code=201)
async def create_tus_upload(
    request: Request,
    _rate_limit: None = Depends(rate_limit("tus_upload", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    stream: StreamClient = Depends(get_stream_client),
):
    """
    Start a resumable upload for the signed-in user. The gallery comes from the
    TUS ``Upload-Metadata`` header; the client then uploads straight to the
    returned Location.
    """
    meta = parse_upload_metadata(request.headers.get("Upload-Metadata", ""))
    upload_length = validated_upload_length(request.headers.get("Upload-Length"))
    try:
        gallery = GalleryCoordinate.parse(meta.get("courseId"), meta.get("assignmentId"))
        handle = await initiate_upload(
            db,
            stream,
            uploader=Uploader(user_id=auth.user_id, email=auth.email),
            gallery=gallery,
            intent=ResumableUpload(upload_length=upload_length),
        )
    except UploadRequestError as exc:
        raise HTTPException(
            status_code=400,
            detail="Missing courseId or assignmentId in Upload-Metadata",
        ) from exc
    except StreamAPIError as exc:
        raise http_error_for(exc) from exc

    return Response(status_code=201, headers=upload_created_headers(handle.location or ""))


@router.options("/tus-upload")
async def tus_upload_preflight():
    return Response(status_code=204, headers=preflight_headers())


@router.post("/delete-video")
async def delete_video(
    request: VideoRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    stream: StreamClient = Depends(get_stream_client),
):
    """Delete a clip. Only its uploader may do this."""
    video_id = _require_video_id(request)
    try:
        await remove_video(
            db,
            stream,
            user_id=auth.user_id,
            video_id=video_id,
            show_hidden=auth.is_moderator,
        )
    except (VideoNotFoundError, VideoPermissionError) as exc:
        raise http_error_for(exc) from exc
    return {"ok": True}


@router.post("/star", response_model=StarResponse)
async def star_video(
    request: VideoRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Toggle the caller's star on someone else's clip."""
    video_id = _require_video_id(request)
    try:
        result = await toggle_star(
            db,
            user_id=auth.user_id,
            video_id=video_id,
            show_hidden=auth.is_moderator,
        )
    except (VideoNotFoundError, VideoPermissionError) as exc:
        raise http_error_for(exc) from exc
    return StarResponse(starred=result.starred, star_count=result.star_count)


@router.post("/hide-video", response_model=HideResponse)
async def hide_video(
    request: VideoRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Toggle the hidden flag on a clip. Moderators only."""
    if not auth.is_moderator:
        raise HTTPException(status_code=403, detail="Not authorized")
    video_id = _require_video_id(request)
    try:
        hidden = await toggle_hidden(db, video_id=video_id)
    except VideoNotFoundError as exc:
        raise http_error_for(exc) from exc
    logger.info("video_hidden_toggle moderator=%s video=%s hidden=%s", auth.email, video_id, hidden)
    return HideResponse(hidden=hidden)


@router.post("/update-video")
async def update_video(
    request: UpdateVideoRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Edit title, description or link of the caller's own clip."""
    video_id = _require_video_id(request)
    try:
        await update_video_metadata(
            db,
            user_id=auth.user_id,
            video_id=video_id,
            title=request.title,
            description=request.description,
            url=request.url,
            show_hidden=auth.is_moderator,
        )
    except (VideoNotFoundError, VideoPermissionError) as exc:
        raise http_error_for(exc) from exc
    return {"ok": True}


@router.post("/create-upload-key", response_model=UploadKeyResponse)
async def create_upload_key(
    request: CreateUploadKeyRequest,
    http_request: Request,
    _rate_limit: None = Depends(rate_limit("upload_key_create", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    config: Settings = Depends(get_settings),
):
    """
    Issue an upload key: a signed URL an external tool (OBS, Unity, curl, any TUS
    client) can upload to as the caller, for one gallery, until it expires.
    """
    try:
        gallery = GalleryCoordinate.parse(request.course_id, request.assignment_id)
    except UploadRequestError as exc:
        raise http_error_for(exc) from exc

    issued = issue_upload_key(
        sub=auth.user_id,
        email=auth.email,
        course_id=gallery.course_id,
        assignment_id=gallery.assignment_id,
        config=config,
    )
    hours = max(int(config.UPLOAD_KEY_EXPIRATION_HOURS or 24), 1)
    return UploadKeyResponse(
        key=issued.token,
        url=f"{public_origin(http_request, config)}/k/{issued.token}",
        expires_in=f"{hours}h",
        expires_at=issued.expires_at,
    )
