from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import Settings, get_settings
from database import Base, get_db
from main import app
from models.user import User
from routers import rate_limit
from services.capability_token import issue_session_token
from services.stream import StreamAPIError, UploadSession, VideoStatus, get_stream_client


TEST_SECRET = "test-secret-for-clip-gallery-0123456789"


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


class FakeStreamClient:
    """In-memory stand-in for ``StreamClient`` that records every call."""

    def __init__(self):
        self.created: List[str] = []
        self.deleted: List[str] = []
        self.direct_uploads: List[Dict[str, object]] = []
        self.status_requests: List[str] = []
        self.statuses: Dict[str, VideoStatus] = {}
        self.fail_create: Optional[str] = None
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        video_id = f"vid{self._counter:03d}"
        self.created.append(video_id)
        return video_id

    async def create_upload_session(self, creator_email: str, upload_length: str) -> UploadSession:
        if self.fail_create:
            raise StreamAPIError(self.fail_create, status_code=500)
        video_id = self._next_id()
        return UploadSession(location=f"https://upload.videodelivery.net/tus/{video_id}", video_id=video_id)

    async def create_direct_upload(self, payload: bytes, content_type: str, creator_email: str) -> str:
        if self.fail_create:
            raise StreamAPIError(f"Stream upload failed: {self.fail_create}", status_code=400)
        video_id = self._next_id()
        self.direct_uploads.append(
            {"video_id": video_id, "size": len(payload), "content_type": content_type, "creator": creator_email}
        )
        return video_id

    async def delete_video(self, video_id: str) -> bool:
        self.deleted.append(video_id)
        return True

    async def get_video_status(self, video_id: str) -> VideoStatus:
        self.status_requests.append(video_id)
        return self.statuses.get(video_id, VideoStatus(ready=False))


def build_test_settings(**overrides) -> Settings:
    values = {
        "JWT_SECRET": TEST_SECRET,
        "ALLOWED_DOMAIN": "ucsc.edu",
        "MODERATOR_EMAILS": "mod@ucsc.edu",
        "STREAM_ACCOUNT_ID": "acct123",
        "STREAM_API_TOKEN": "stream-token",
        "STREAM_CUSTOMER_SUBDOMAIN": "abc123",
        "PUBLIC_BASE_URL": "https://gallery.example.edu",
        "GOOGLE_CLIENT_ID": "client-id",
        "GOOGLE_CLIENT_SECRET": "client-secret",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return build_test_settings()


@pytest.fixture
def fake_stream() -> FakeStreamClient:
    return FakeStreamClient()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "clips.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker, fake_stream, test_settings):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    async def override_get_stream_client():
        yield fake_stream

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stream_client] = override_get_stream_client
    app.dependency_overrides[get_settings] = lambda: test_settings
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_stream_client, None)
    app.dependency_overrides.pop(get_settings, None)


async def create_user(session_maker, user_id: str, email: str, name: Optional[str] = None) -> User:
    async with session_maker() as session:
        user = User(id=user_id, email=email, name=name or user_id.title(), hosted_domain="ucsc.edu")
        session.add(user)
        await session.commit()
        return user


def session_headers(config: Settings, user_id: str, email: str, name: str = "") -> Dict[str, str]:
    issued = issue_session_token(
        sub=user_id,
        email=email,
        name=name or user_id,
        picture="",
        hosted_domain="ucsc.edu",
        config=config,
    )
    return {"Authorization": f"Bearer {issued.token}"}
