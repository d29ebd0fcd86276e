"""Gallery reads: clip listings, single clips, moderation summaries, duration backfill."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import AbstractSet, Dict, List, Optional, Sequence

from sqlalchemy import case, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.star import Star
from models.user import User
from models.video import Video
from services.permissions import visible_rows
from services.stream import StreamAPIError, StreamClient, VideoStatus

logger = logging.getLogger(__name__)


@dataclass
class GalleryRow:
    """A video joined with its owner's display fields and star state for one viewer."""

    id: str
    user_id: str
    course_id: str
    assignment_id: str
    title: str
    description: str
    url: str
    duration: Optional[float]
    thumbnail_pct: float
    hidden: bool
    created_at: Optional[datetime]
    user_name: str
    user_picture: Optional[str]
    user_email: str
    star_count: int
    starred: bool


@dataclass(frozen=True)
class GallerySummary:
    course_id: str
    assignment_id: str
    total_clips: int
    total_stars: int
    hidden_clips: int


def format_duration(seconds: float) -> str:
    """Render seconds as ``m:ss``."""
    total = max(float(seconds), 0.0)
    minutes = int(total // 60)
    secs = int(total % 60)
    return f"{minutes}:{secs:02d}"


def _gallery_select(viewer_id: str):
    star_count = (
        select(func.count())
        .select_from(Star)
        .where(Star.video_id == Video.id)
        .correlate(Video)
        .scalar_subquery()
    )
    viewer_starred = (
        select(Star.user_id)
        .where(Star.video_id == Video.id, Star.user_id == viewer_id)
        .correlate(Video)
        .exists()
    )
    return select(
        Video,
        User.name,
        User.picture,
        User.email,
        star_count.label("star_count"),
        viewer_starred.label("starred"),
    ).join(User, Video.user_id == User.id)


def _to_row(record) -> GalleryRow:
    video, user_name, user_picture, user_email, star_count, starred = record
    return GalleryRow(
        id=video.id,
        user_id=video.user_id,
        course_id=video.course_id,
        assignment_id=video.assignment_id,
        title=video.title or "",
        description=video.description or "",
        url=video.url or "",
        duration=video.duration,
        thumbnail_pct=video.thumbnail_pct if video.thumbnail_pct is not None else 0.5,
        hidden=bool(video.hidden),
        created_at=video.created_at,
        user_name=user_name or "",
        user_picture=user_picture,
        user_email=user_email or "",
        star_count=int(star_count or 0),
        starred=bool(starred),
    )


async def list_gallery_rows(
    db: AsyncSession,
    *,
    course_id: str,
    assignment_id: str,
    viewer_id: str,
) -> List[GalleryRow]:
    """All clips of one gallery, newest first, hidden ones included."""
    result = await db.execute(
        _gallery_select(viewer_id)
        .where(Video.course_id == course_id, Video.assignment_id == assignment_id)
        .order_by(Video.created_at.desc())
    )
    return [_to_row(record) for record in result.all()]


async def get_gallery_row(db: AsyncSession, *, video_id: str, viewer_id: str) -> Optional[GalleryRow]:
    result = await db.execute(_gallery_select(viewer_id).where(Video.id == video_id))
    record = result.first()
    return _to_row(record) if record is not None else None


async def _fetch_status(stream: StreamClient, video_id: str) -> Optional[VideoStatus]:
    try:
        return await stream.get_video_status(video_id)
    except StreamAPIError as exc:
        logger.warning("Duration backfill skipped for video %s: %s", video_id, exc.message)
        return None


async def backfill_durations(
    db: AsyncSession,
    stream: StreamClient,
    rows: Sequence[GalleryRow],
    *,
    limit: int,
) -> Dict[str, float]:
    """Ask the provider about at most ``limit`` still-processing clips and store ready durations.

    Rows are updated in place. Anything beyond ``limit`` waits for a later request.
    """
    pending = [row for row in rows if row.duration is None][: max(int(limit), 0)]
    if not pending:
        return {}

    statuses = await asyncio.gather(*(_fetch_status(stream, row.id) for row in pending))
    updates: Dict[str, float] = {}
    for row, status in zip(pending, statuses):
        if status is None or not status.ready or status.duration is None:
            continue
        row.duration = status.duration
        updates[row.id] = status.duration

    if updates:
        result = await db.execute(select(Video).where(Video.id.in_(list(updates))))
        for video in result.scalars().all():
            video.duration = updates[video.id]
        await db.commit()
        logger.info("duration_backfill updated=%s", len(updates))
    return updates


async def load_gallery(
    db: AsyncSession,
    stream: StreamClient,
    *,
    course_id: str,
    assignment_id: str,
    viewer_id: str,
    viewer_email: Optional[str],
    moderator_emails: AbstractSet[str],
    backfill_limit: int,
) -> List[GalleryRow]:
    rows = await list_gallery_rows(
        db,
        course_id=course_id,
        assignment_id=assignment_id,
        viewer_id=viewer_id,
    )
    rows = visible_rows(viewer_email, rows, moderator_emails)
    await backfill_durations(db, stream, rows, limit=backfill_limit)
    return rows


async def load_video(
    db: AsyncSession,
    stream: StreamClient,
    *,
    video_id: str,
    viewer_id: str,
    viewer_email: Optional[str],
    moderator_emails: AbstractSet[str],
) -> Optional[GalleryRow]:
    """One clip for the viewer, or None when it is missing or hidden from them."""
    row = await get_gallery_row(db, video_id=video_id, viewer_id=viewer_id)
    if row is None:
        return None
    visible = visible_rows(viewer_email, [row], moderator_emails)
    if not visible:
        return None
    await backfill_durations(db, stream, visible, limit=1)
    return visible[0]


async def gallery_summaries(db: AsyncSession) -> List[GallerySummary]:
    """Per-gallery clip, star and hidden counts across all courses."""
    star_counts = (
        select(Star.video_id, func.count().label("star_count"))
        .group_by(Star.video_id)
        .subquery()
    )
    result = await db.execute(
        select(
            Video.course_id,
            Video.assignment_id,
            func.count(Video.id),
            func.coalesce(func.sum(star_counts.c.star_count), 0),
            func.coalesce(func.sum(case((Video.hidden.is_(True), 1), else_=0)), 0),
        )
        .outerjoin(star_counts, star_counts.c.video_id == Video.id)
        .group_by(Video.course_id, Video.assignment_id)
        .order_by(Video.course_id, Video.assignment_id)
    )
    return [
        GallerySummary(
            course_id=course_id,
            assignment_id=assignment_id,
            total_clips=int(total_clips or 0),
            total_stars=int(total_stars or 0),
            hidden_clips=int(hidden_clips or 0),
        )
        for course_id, assignment_id, total_clips, total_stars, hidden_clips in result.all()
    ]


def stream_thumbnail_url(subdomain: str, row: GalleryRow) -> Optional[str]:
    if not subdomain or row.duration is None:
        return None
    offset = row.thumbnail_pct * row.duration
    return (
        f"https://customer-{subdomain}.cloudflarestream.com/{row.id}/thumbnails/thumbnail.jpg"
        f"?height=270&time={offset:.1f}s"
    )


def stream_embed_url(subdomain: str, row: GalleryRow) -> Optional[str]:
    if not subdomain or row.duration is None:
        return None
    return f"https://customer-{subdomain}.cloudflarestream.com/{row.id}/iframe"
