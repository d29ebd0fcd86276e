import pytest
from sqlalchemy import func, select

from conftest import create_user
from models.star import Star
from models.video import Video
from services.stream import StreamAPIError
from services.uploads import (
    DirectUpload,
    GalleryCoordinate,
    ResumableUpload,
    UploadRequestError,
    Uploader,
    initiate_upload,
)


UPLOADER = Uploader(user_id="alice", email="alice@ucsc.edu")
GALLERY = GalleryCoordinate(course_id="CMPM120", assignment_id="A1")


async def _videos(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(Video).order_by(Video.created_at))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_first_upload_creates_processing_row(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")

    async with session_maker() as session:
        handle = await initiate_upload(
            session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=ResumableUpload("2048")
        )

    assert handle.video_id == "vid001"
    assert handle.location == "https://upload.videodelivery.net/tus/vid001"
    videos = await _videos(session_maker)
    assert len(videos) == 1
    assert videos[0].id == "vid001"
    assert videos[0].user_id == "alice"
    assert videos[0].duration is None
    assert videos[0].title == ""
    assert videos[0].hidden is False
    assert fake_stream.deleted == []


@pytest.mark.asyncio
async def test_repeated_uploads_leave_only_the_latest_clip(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    await create_user(session_maker, "bob", "bob@ucsc.edu")

    for _ in range(3):
        async with session_maker() as session:
            await initiate_upload(
                session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=ResumableUpload("10")
            )
        async with session_maker() as session:
            latest = fake_stream.created[-1]
            session.add(Star(user_id="bob", video_id=latest))
            await session.commit()

    videos = await _videos(session_maker)
    assert [video.id for video in videos] == ["vid003"]
    assert fake_stream.deleted == ["vid001", "vid002"]

    async with session_maker() as session:
        stars = (await session.execute(select(Star.video_id))).scalars().all()
    assert stars == ["vid003"]


@pytest.mark.asyncio
async def test_upload_replaces_every_duplicate_row(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    async with session_maker() as session:
        for video_id in ("dup1", "dup2"):
            session.add(Video(id=video_id, user_id="alice", course_id="CMPM120", assignment_id="A1"))
        await session.commit()

    async with session_maker() as session:
        handle = await initiate_upload(
            session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=ResumableUpload("10")
        )

    assert sorted(fake_stream.deleted) == ["dup1", "dup2"]
    assert [video.id for video in await _videos(session_maker)] == [handle.video_id]


@pytest.mark.asyncio
async def test_other_galleries_and_users_are_untouched(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    await create_user(session_maker, "bob", "bob@ucsc.edu")
    async with session_maker() as session:
        session.add(Video(id="alice-a2", user_id="alice", course_id="CMPM120", assignment_id="A2"))
        session.add(Video(id="bob-a1", user_id="bob", course_id="CMPM120", assignment_id="A1"))
        await session.commit()

    async with session_maker() as session:
        await initiate_upload(session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=ResumableUpload("10"))

    ids = sorted(video.id for video in await _videos(session_maker))
    assert ids == ["alice-a2", "bob-a1", "vid001"]
    assert fake_stream.deleted == []


@pytest.mark.asyncio
async def test_provider_failure_writes_no_row(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    fake_stream.fail_create = "Failed to create TUS upload: quota exceeded"

    async with session_maker() as session:
        with pytest.raises(StreamAPIError):
            await initiate_upload(
                session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=ResumableUpload("10")
            )

    assert await _videos(session_maker) == []


@pytest.mark.asyncio
async def test_provider_failure_after_replacement_leaves_no_clip(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    async with session_maker() as session:
        session.add(Video(id="old1", user_id="alice", course_id="CMPM120", assignment_id="A1"))
        await session.commit()
    fake_stream.fail_create = "Failed to create TUS upload: quota exceeded"

    async with session_maker() as session:
        with pytest.raises(StreamAPIError):
            await initiate_upload(
                session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=ResumableUpload("10")
            )

    # The old clip is gone for good; the uploader has to retry.
    assert fake_stream.deleted == ["old1"]
    assert fake_stream.created == []
    assert await _videos(session_maker) == []


@pytest.mark.asyncio
async def test_direct_upload_records_provider_id(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")

    async with session_maker() as session:
        handle = await initiate_upload(
            session,
            fake_stream,
            uploader=UPLOADER,
            gallery=GALLERY,
            intent=DirectUpload(payload=b"video-bytes", content_type="video/webm"),
        )

    assert handle.location is None
    assert fake_stream.direct_uploads == [
        {"video_id": handle.video_id, "size": 11, "content_type": "video/webm", "creator": "alice@ucsc.edu"}
    ]


@pytest.mark.asyncio
async def test_empty_direct_upload_is_rejected_before_side_effects(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    async with session_maker() as session:
        session.add(Video(id="keep-me", user_id="alice", course_id="CMPM120", assignment_id="A1"))
        await session.commit()

    async with session_maker() as session:
        with pytest.raises(UploadRequestError):
            await initiate_upload(
                session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=DirectUpload(payload=b"")
            )

    assert [video.id for video in await _videos(session_maker)] == ["keep-me"]
    assert fake_stream.created == []
    assert fake_stream.deleted == []


def test_gallery_coordinate_requires_both_parts():
    with pytest.raises(UploadRequestError):
        GalleryCoordinate.parse("CMPM120", "")
    with pytest.raises(UploadRequestError):
        GalleryCoordinate.parse(None, "A1")
    assert GalleryCoordinate.parse(" CMPM120 ", "A1") == GalleryCoordinate("CMPM120", "A1")


@pytest.mark.asyncio
async def test_row_count_stays_at_one_per_identity(session_maker, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    for _ in range(5):
        async with session_maker() as session:
            await initiate_upload(
                session, fake_stream, uploader=UPLOADER, gallery=GALLERY, intent=DirectUpload(b"x")
            )

    async with session_maker() as session:
        count = (
            await session.execute(
                select(func.count()).select_from(Video).where(Video.user_id == "alice")
            )
        ).scalar_one()
    assert count == 1
