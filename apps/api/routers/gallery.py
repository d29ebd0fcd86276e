"""
Gallery reads for the signed-in viewer: assignment galleries, single clips and
the moderation summary.
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings, get_settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_moderator
from services.gallery import (
    GalleryRow,
    format_duration,
    gallery_summaries,
    load_gallery,
    load_video,
    stream_embed_url,
    stream_thumbnail_url,
)
from services.permissions import can_mutate, can_star
from services.stream import StreamClient, get_stream_client

router = APIRouter()


class VideoResponse(BaseModel):
    id: str
    course_id: str
    assignment_id: str
    title: str
    description: str
    url: str
    duration: Optional[float] = None
    duration_display: Optional[str] = None
    processing: bool
    thumbnail_pct: float
    thumbnail_url: Optional[str] = None
    embed_url: Optional[str] = None
    hidden: bool
    created_at: Optional[str] = None
    user_id: str
    user_name: str
    user_picture: Optional[str] = None
    star_count: int
    starred: bool
    is_owner: bool
    can_star: bool


class GalleryResponse(BaseModel):
    course_id: str
    assignment_id: str
    clip_count: int
    has_own_clip: bool
    videos: List[VideoResponse]


class AssignmentSummary(BaseModel):
    assignment_id: str
    total_clips: int
    total_stars: int
    hidden_clips: int


class CourseSummary(BaseModel):
    course_id: str
    assignments: List[AssignmentSummary]


class ModerationSummaryResponse(BaseModel):
    courses: List[CourseSummary]


def _serialize_video(row: GalleryRow, auth: AuthContext, config: Settings) -> VideoResponse:
    subdomain = config.STREAM_CUSTOMER_SUBDOMAIN
    return VideoResponse(
        id=row.id,
        course_id=row.course_id,
        assignment_id=row.assignment_id,
        title=row.title,
        description=row.description,
        url=row.url,
        duration=row.duration,
        duration_display=format_duration(row.duration) if row.duration is not None else None,
        processing=row.duration is None,
        thumbnail_pct=row.thumbnail_pct,
        thumbnail_url=stream_thumbnail_url(subdomain, row),
        embed_url=stream_embed_url(subdomain, row),
        hidden=row.hidden,
        created_at=row.created_at.isoformat() if row.created_at else None,
        user_id=row.user_id,
        user_name=row.user_name,
        user_picture=row.user_picture,
        star_count=row.star_count,
        starred=row.starred,
        is_owner=can_mutate(auth.user_id, row),
        can_star=can_star(auth.user_id, row),
    )


@router.get("/galleries/{course_id}/{assignment_id}", response_model=GalleryResponse)
async def get_gallery(
    course_id: str,
    assignment_id: str,
    auth: AuthContext = Depends(get_auth_context),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
    stream: StreamClient = Depends(get_stream_client),
):
    """Clips in one assignment gallery, newest first."""
    rows = await load_gallery(
        db,
        stream,
        course_id=course_id,
        assignment_id=assignment_id,
        viewer_id=auth.user_id,
        viewer_email=auth.email,
        moderator_emails=config.moderator_emails,
        backfill_limit=config.DURATION_BACKFILL_LIMIT,
    )
    videos = [_serialize_video(row, auth, config) for row in rows]
    return GalleryResponse(
        course_id=course_id,
        assignment_id=assignment_id,
        clip_count=len(videos),
        has_own_clip=any(video.is_owner for video in videos),
        videos=videos,
    )


@router.get("/videos/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: str,
    auth: AuthContext = Depends(get_auth_context),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
    stream: StreamClient = Depends(get_stream_client),
):
    """One clip, for shareable links."""
    row = await load_video(
        db,
        stream,
        video_id=video_id,
        viewer_id=auth.user_id,
        viewer_email=auth.email,
        moderator_emails=config.moderator_emails,
    )
    if row is None:
        raise HTTPException(status_code=404, detail="Video not found")
    return _serialize_video(row, auth, config)


@router.get("/moderation/summary", response_model=ModerationSummaryResponse)
async def get_moderation_summary(
    _auth: AuthContext = Depends(require_moderator),
    db: AsyncSession = Depends(get_db),
):
    """Per-assignment clip, star and hidden counts across every course."""
    courses: Dict[str, List[AssignmentSummary]] = {}
    for summary in await gallery_summaries(db):
        courses.setdefault(summary.course_id, []).append(
            AssignmentSummary(
                assignment_id=summary.assignment_id,
                total_clips=summary.total_clips,
                total_stars=summary.total_stars,
                hidden_clips=summary.hidden_clips,
            )
        )
    return ModerationSummaryResponse(
        courses=[
            CourseSummary(course_id=course_id, assignments=assignments)
            for course_id, assignments in courses.items()
        ]
    )
