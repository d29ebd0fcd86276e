import pytest
from sqlalchemy import select

from config import get_settings
from conftest import build_test_settings, create_user, session_headers
from main import app
from models.video import Video
from services.capability_token import issue_upload_key


def _key(config, **overrides):
    values = {
        "sub": "alice",
        "email": "alice@ucsc.edu",
        "course_id": "CMPM120",
        "assignment_id": "A1",
        "config": config,
    }
    values.update(overrides)
    return issue_upload_key(**values).token


async def _video_ids(session_maker):
    async with session_maker() as session:
        return list((await session.execute(select(Video.id))).scalars().all())


@pytest.mark.asyncio
async def test_tus_handshake_with_upload_key(api_client, session_maker, test_settings, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    key = _key(test_settings)

    response = await api_client.post(
        f"/k/{key}",
        headers={"Tus-Resumable": "1.0.0", "Upload-Length": "5000000"},
    )

    assert response.status_code == 201
    assert response.headers["Location"] == "https://upload.videodelivery.net/tus/vid001"
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert await _video_ids(session_maker) == ["vid001"]


@pytest.mark.asyncio
async def test_raw_body_upload_with_upload_key(api_client, session_maker, test_settings, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    key = _key(test_settings)

    response = await api_client.post(
        f"/k/{key}",
        content=b"\x00\x00\x00\x18ftypisom",
        headers={"Content-Type": "video/quicktime"},
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True, "video_id": "vid001"}
    assert fake_stream.direct_uploads[0]["content_type"] == "video/quicktime"
    assert fake_stream.direct_uploads[0]["creator"] == "alice@ucsc.edu"


@pytest.mark.asyncio
async def test_direct_upload_route_defaults_content_type(api_client, session_maker, test_settings, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    key = _key(test_settings)

    response = await api_client.post(
        f"/k/{key}/upload",
        content=b"raw-bytes",
        headers={"Content-Type": "application/octet-stream"},
    )

    assert response.status_code == 200
    assert fake_stream.direct_uploads[0]["content_type"] == "video/mp4"


@pytest.mark.asyncio
async def test_empty_body_is_rejected(api_client, session_maker, test_settings, fake_stream):
    key = _key(test_settings)

    response = await api_client.post(f"/k/{key}", content=b"")

    assert response.status_code == 400
    assert "Empty request body" in response.json()["detail"]
    assert fake_stream.created == []


@pytest.mark.asyncio
async def test_session_token_is_not_an_upload_key(api_client, test_settings, fake_stream):
    session_token = session_headers(test_settings, "alice", "alice@ucsc.edu")["Authorization"].split(" ", 1)[1]

    response = await api_client.post(f"/k/{session_token}", content=b"data")

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired upload key"
    assert fake_stream.created == []


@pytest.mark.asyncio
async def test_expired_upload_key_is_rejected(api_client, test_settings, fake_stream):
    key = _key(test_settings, now=1_000_000)

    response = await api_client.post(f"/k/{key}", content=b"data")

    assert response.status_code == 401
    assert fake_stream.created == []


@pytest.mark.asyncio
async def test_reusing_a_key_keeps_one_clip(api_client, session_maker, test_settings, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    key = _key(test_settings)

    for _ in range(3):
        response = await api_client.post(f"/k/{key}", content=b"clip-bytes")
        assert response.status_code == 200

    assert await _video_ids(session_maker) == ["vid003"]
    assert fake_stream.deleted == ["vid001", "vid002"]


@pytest.mark.asyncio
async def test_key_upload_replaces_browser_upload(api_client, session_maker, test_settings, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    async with session_maker() as session:
        session.add(Video(id="browser1", user_id="alice", course_id="CMPM120", assignment_id="A1"))
        await session.commit()

    response = await api_client.post(f"/k/{_key(test_settings)}", content=b"clip-bytes")

    assert response.status_code == 200
    assert fake_stream.deleted == ["browser1"]
    assert await _video_ids(session_maker) == ["vid001"]


@pytest.mark.asyncio
async def test_preflight_allows_any_origin(api_client):
    response = await api_client.options(
        "/k/some-key",
        headers={
            "Origin": "https://itch.io",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "tus-resumable, upload-length",
        },
    )

    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "Tus-Resumable" in response.headers["Access-Control-Allow-Headers"]
    assert "Location" in response.headers["Access-Control-Expose-Headers"]

    direct = await api_client.options("/k/some-key/upload", headers={"Origin": "https://itch.io"})
    assert direct.status_code == 204
    assert direct.headers["Access-Control-Allow-Headers"] == "Content-Type"


@pytest.mark.asyncio
async def test_oversized_raw_body_is_rejected_before_upload(api_client, session_maker, test_settings, fake_stream):
    await create_user(session_maker, "alice", "alice@ucsc.edu")
    async with session_maker() as session:
        session.add(Video(id="existing", user_id="alice", course_id="CMPM120", assignment_id="A1"))
        await session.commit()
    app.dependency_overrides[get_settings] = lambda: build_test_settings(DIRECT_UPLOAD_MAX_BYTES=16)
    key = _key(test_settings)

    declared = await api_client.post(f"/k/{key}", content=b"x" * 17, headers={"Content-Type": "video/mp4"})
    legacy = await api_client.post(f"/k/{key}/upload", content=b"x" * 32)
    at_limit = await api_client.post(f"/k/{key}/upload", content=b"x" * 16)

    assert declared.status_code == 413
    assert legacy.status_code == 413
    assert at_limit.status_code == 200
    assert fake_stream.deleted == ["existing"]
    assert len(fake_stream.direct_uploads) == 1


@pytest.mark.asyncio
async def test_streamed_body_without_length_is_capped(api_client, test_settings, fake_stream):
    app.dependency_overrides[get_settings] = lambda: build_test_settings(DIRECT_UPLOAD_MAX_BYTES=16)
    key = _key(test_settings)

    async def chunks():
        for _ in range(4):
            yield b"x" * 8

    response = await api_client.post(f"/k/{key}", content=chunks())

    assert response.status_code == 413
    assert fake_stream.created == []
