"""Upload orchestration: one clip per identity per gallery, replaced on re-upload.

Every upload entry point (browser TUS handshake, upload-key TUS handshake,
upload-key single-shot body) ends up in ``initiate_upload``:

1. find the uploader's existing clips in the gallery;
2. delete each one from Stream (advisory) and from the database;
3. open a new upload on Stream;
4. insert the new row in processing state (null duration);
5. hand back the Stream video id and, for TUS, the Location to upload to.

Steps 2 and 4 are separate transactions. A crash between them leaves the
uploader with no clip in the gallery, never two. Two concurrent uploads for the
same (identity, gallery) can both pass step 1 and leave two rows; the next
upload for that pair removes every matching row, so the extra one is cleaned up
then. Rows whose bytes never arrive stay in processing until the owner
re-uploads or deletes them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from models.video import Video
from services.stream import StreamClient
from services.videos import delete_video_row, find_owned_videos

logger = logging.getLogger(__name__)


class UploadRequestError(ValueError):
    """Upload request is missing something it needs; nothing was changed."""


@dataclass(frozen=True)
class GalleryCoordinate:
    course_id: str
    assignment_id: str

    @classmethod
    def parse(cls, course_id: Optional[str], assignment_id: Optional[str]) -> "GalleryCoordinate":
        course = str(course_id or "").strip()
        assignment = str(assignment_id or "").strip()
        if not course or not assignment:
            raise UploadRequestError("Missing courseId or assignmentId")
        return cls(course_id=course, assignment_id=assignment)


@dataclass(frozen=True)
class Uploader:
    user_id: str
    email: str


@dataclass(frozen=True)
class ResumableUpload:
    """TUS handshake; the client streams the bytes to Stream afterwards."""

    upload_length: str = "0"


@dataclass(frozen=True)
class DirectUpload:
    """Whole file in the request body, forwarded to Stream in one request."""

    payload: bytes
    content_type: str = "video/mp4"


UploadIntent = Union[ResumableUpload, DirectUpload]


@dataclass(frozen=True)
class UploadHandle:
    video_id: str
    location: Optional[str] = None


async def replace_existing_clips(
    db: AsyncSession,
    stream: StreamClient,
    *,
    uploader: Uploader,
    gallery: GalleryCoordinate,
) -> List[str]:
    """Remove the uploader's current clips in this gallery and return their ids."""
    existing = await find_owned_videos(
        db,
        user_id=uploader.user_id,
        course_id=gallery.course_id,
        assignment_id=gallery.assignment_id,
    )
    if not existing:
        return []

    replaced = [video.id for video in existing]
    for video_id in replaced:
        await stream.delete_video(video_id)
        await delete_video_row(db, video_id)
    await db.commit()
    logger.info(
        "upload_replace user=%s course=%s assignment=%s replaced=%s",
        uploader.user_id,
        gallery.course_id,
        gallery.assignment_id,
        ",".join(replaced),
    )
    return replaced


async def initiate_upload(
    db: AsyncSession,
    stream: StreamClient,
    *,
    uploader: Uploader,
    gallery: GalleryCoordinate,
    intent: UploadIntent,
) -> UploadHandle:
    """Replace the uploader's clip in ``gallery`` with a new processing clip.

    Raises ``UploadRequestError`` before touching anything when the request is
    incomplete, and lets ``StreamAPIError`` propagate when Stream cannot open
    the upload; in that case no new row is written.
    """
    if isinstance(intent, DirectUpload) and not intent.payload:
        raise UploadRequestError("Empty request body; POST the video file as the request body")

    await replace_existing_clips(db, stream, uploader=uploader, gallery=gallery)

    if isinstance(intent, DirectUpload):
        video_id = await stream.create_direct_upload(
            intent.payload,
            intent.content_type or "video/mp4",
            uploader.email,
        )
        location = None
    else:
        session = await stream.create_upload_session(uploader.email, intent.upload_length)
        video_id = session.video_id
        location = session.location

    db.add(
        Video(
            id=video_id,
            user_id=uploader.user_id,
            course_id=gallery.course_id,
            assignment_id=gallery.assignment_id,
            title="",
            description="",
            url="",
            duration=None,
        )
    )
    await db.commit()
    logger.info(
        "upload_initiated user=%s course=%s assignment=%s video=%s mode=%s",
        uploader.user_id,
        gallery.course_id,
        gallery.assignment_id,
        video_id,
        "direct" if location is None else "tus",
    )
    return UploadHandle(video_id=video_id, location=location)
