"""Video, star and identity persistence.

Mutations here commit their own transaction. Ownership and visibility are
checked with the rules in ``services.permissions`` before anything is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.star import Star
from models.user import User
from models.video import Video
from services.permissions import can_mutate, can_star
from services.stream import StreamClient

logger = logging.getLogger(__name__)


class VideoNotFoundError(LookupError):
    """Video does not exist or is hidden from this viewer."""


class VideoPermissionError(PermissionError):
    """Viewer is not allowed to perform this change."""


@dataclass(frozen=True)
class StarToggle:
    starred: bool
    star_count: int


async def upsert_user(
    db: AsyncSession,
    *,
    user_id: str,
    email: str,
    name: str,
    picture: Optional[str],
    hosted_domain: Optional[str],
) -> User:
    """Create or refresh the identity row on every successful sign-in."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            id=user_id,
            email=email,
            name=name,
            picture=picture,
            hosted_domain=hosted_domain,
        )
        db.add(user)
    else:
        user.email = email
        user.name = name
        user.picture = picture
        user.hosted_domain = hosted_domain
    await db.commit()
    return user


async def get_video(db: AsyncSession, video_id: str) -> Optional[Video]:
    result = await db.execute(select(Video).where(Video.id == video_id))
    return result.scalar_one_or_none()


async def get_visible_video(
    db: AsyncSession,
    video_id: str,
    *,
    user_id: str,
    show_hidden: bool,
) -> Video:
    """Load a video the viewer may act on. Hidden clips stay reachable by their owner."""
    video = await get_video(db, video_id)
    if video is None:
        raise VideoNotFoundError("Video not found")
    if video.hidden and not show_hidden and video.user_id != user_id:
        raise VideoNotFoundError("Video not found")
    return video


async def find_owned_videos(
    db: AsyncSession,
    *,
    user_id: str,
    course_id: str,
    assignment_id: str,
) -> List[Video]:
    result = await db.execute(
        select(Video).where(
            Video.user_id == user_id,
            Video.course_id == course_id,
            Video.assignment_id == assignment_id,
        )
    )
    return list(result.scalars().all())


async def delete_video_row(db: AsyncSession, video_id: str) -> None:
    """Delete a video and its stars. Does not commit."""
    await db.execute(delete(Star).where(Star.video_id == video_id))
    await db.execute(delete(Video).where(Video.id == video_id))


async def remove_video(
    db: AsyncSession,
    stream: StreamClient,
    *,
    user_id: str,
    video_id: str,
    show_hidden: bool = False,
) -> None:
    """Owner-initiated delete: advisory remote delete, then the local row."""
    video = await get_visible_video(db, video_id, user_id=user_id, show_hidden=show_hidden)
    if not can_mutate(user_id, video):
        raise VideoPermissionError("Not your video")

    await stream.delete_video(video_id)
    await delete_video_row(db, video_id)
    await db.commit()
    logger.info("video_deleted user=%s video=%s", user_id, video_id)


async def count_stars(db: AsyncSession, video_id: str) -> int:
    result = await db.execute(select(func.count()).select_from(Star).where(Star.video_id == video_id))
    return int(result.scalar_one() or 0)


async def _star_exists(db: AsyncSession, user_id: str, video_id: str) -> bool:
    result = await db.execute(
        select(Star.user_id).where(Star.user_id == user_id, Star.video_id == video_id)
    )
    return result.first() is not None


async def toggle_star(
    db: AsyncSession,
    *,
    user_id: str,
    video_id: str,
    show_hidden: bool = False,
) -> StarToggle:
    """Flip the viewer's star on a clip. Owners cannot star their own clip."""
    video = await get_visible_video(db, video_id, user_id=user_id, show_hidden=show_hidden)
    if not can_star(user_id, video):
        raise VideoPermissionError("Cannot star your own video")

    if await _star_exists(db, user_id, video_id):
        await db.execute(delete(Star).where(Star.user_id == user_id, Star.video_id == video_id))
        await db.commit()
        starred = False
    else:
        db.add(Star(user_id=user_id, video_id=video_id))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # Only a concurrent insert of this same star counts as success.
            if not await _star_exists(db, user_id, video_id):
                raise
            logger.info("star_insert_race user=%s video=%s", user_id, video_id)
        starred = True

    return StarToggle(starred=starred, star_count=await count_stars(db, video_id))


async def toggle_hidden(db: AsyncSession, *, video_id: str) -> bool:
    """Flip the moderation flag. Callers check moderator rights first."""
    video = await get_video(db, video_id)
    if video is None:
        raise VideoNotFoundError("Video not found")
    video.hidden = not bool(video.hidden)
    await db.commit()
    return bool(video.hidden)


async def update_video_metadata(
    db: AsyncSession,
    *,
    user_id: str,
    video_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    url: Optional[str] = None,
    show_hidden: bool = False,
) -> Video:
    """Owner edit of title, description and link. Omitted fields are left as they are."""
    video = await get_visible_video(db, video_id, user_id=user_id, show_hidden=show_hidden)
    if not can_mutate(user_id, video):
        raise VideoPermissionError("Not your video")

    if title is not None:
        video.title = title.strip()
    if description is not None:
        video.description = description.strip()
    if url is not None:
        video.url = url.strip()
    await db.commit()
    return video
