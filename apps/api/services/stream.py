"""Cloudflare Stream API client.

Everything this service says to the video hosting provider goes through
``StreamClient``. Responses are decoded once here into typed results; provider
failures raise ``StreamAPIError`` carrying the provider's own message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional
from urllib.parse import urlsplit

import httpx
from fastapi import Depends

from config import Settings, get_settings
from services.tus import TUS_VERSION, encode_upload_metadata

logger = logging.getLogger(__name__)


class StreamAPIError(RuntimeError):
    """Raised when the provider is unreachable or returns an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class UploadSession:
    location: str
    video_id: str


@dataclass(frozen=True)
class VideoStatus:
    ready: bool
    duration: Optional[float] = None


@dataclass(frozen=True)
class StreamEnvelope:
    success: bool
    result: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def error_message(self, default: str = "Unknown Stream error") -> str:
        return ", ".join(self.errors) or default


def _decode_envelope(response: httpx.Response) -> StreamEnvelope:
    try:
        data = response.json()
    except ValueError as exc:
        raise StreamAPIError(
            f"Malformed Stream response: {response.text}",
            status_code=response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise StreamAPIError(f"Malformed Stream response: {response.text}", status_code=response.status_code)

    result = data.get("result")
    errors = []
    for item in data.get("errors") or []:
        if isinstance(item, dict) and item.get("message"):
            errors.append(str(item["message"]))
    return StreamEnvelope(
        success=bool(data.get("success")),
        result=result if isinstance(result, dict) else {},
        errors=errors,
    )


def video_id_from_location(location: str) -> str:
    """Last path segment of an upload Location URL, without the query string."""
    path = urlsplit(location).path
    return path.rstrip("/").rsplit("/", 1)[-1]


def _expiry_timestamp(seconds: int) -> str:
    expiry = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    return expiry.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class StreamClient:
    """Async client for the Stream REST API of one account."""

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.stream_account_url
        self.client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {config.STREAM_API_TOKEN}"},
            timeout=config.STREAM_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "StreamClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def create_upload_session(self, creator_email: str, upload_length: str) -> UploadSession:
        """Open a resumable (TUS) upload channel the browser streams bytes to directly."""
        metadata = encode_upload_metadata(
            [
                ("maxDurationSeconds", str(self.config.STREAM_MAX_DURATION_SECONDS)),
                ("expiry", _expiry_timestamp(self.config.STREAM_UPLOAD_EXPIRY_SECONDS)),
                ("allowedorigins", ",".join(self.config.STREAM_ALLOWED_ORIGINS)),
            ]
        )
        try:
            response = await self.client.post(
                self.base_url,
                params={"direct_user": "true"},
                headers={
                    "Tus-Resumable": TUS_VERSION,
                    "Upload-Length": str(upload_length or "0"),
                    "Upload-Metadata": metadata,
                    "Upload-Creator": creator_email,
                },
            )
        except httpx.HTTPError as exc:
            raise StreamAPIError(f"Failed to create TUS upload: {exc}") from exc

        location = response.headers.get("Location")
        if not location:
            raise StreamAPIError(
                f"Failed to create TUS upload: {response.text}",
                status_code=response.status_code,
            )

        video_id = response.headers.get("stream-media-id") or video_id_from_location(location)
        if not video_id:
            raise StreamAPIError(
                f"Failed to create TUS upload: no video id in Location {location}",
                status_code=response.status_code,
            )
        return UploadSession(location=location, video_id=video_id)

    async def create_direct_upload(self, payload: bytes, content_type: str, creator_email: str) -> str:
        """Upload a whole file in one multipart request and return the new video id."""
        try:
            response = await self.client.post(
                self.base_url,
                files={"file": ("upload.mp4", payload, content_type or "video/mp4")},
                data={
                    "maxDurationSeconds": str(self.config.STREAM_MAX_DURATION_SECONDS),
                    "creator": creator_email,
                },
            )
        except httpx.HTTPError as exc:
            raise StreamAPIError(f"Stream upload failed: {exc}") from exc

        envelope = _decode_envelope(response)
        video_id = str(envelope.result.get("uid") or "")
        if not envelope.success or not video_id:
            raise StreamAPIError(
                f"Stream upload failed: {envelope.error_message()}",
                status_code=response.status_code,
            )
        return video_id

    async def delete_video(self, video_id: str) -> bool:
        """Advisory delete. Never raises; the return value only says whether it worked."""
        try:
            response = await self.client.delete(f"{self.base_url}/{video_id}")
        except httpx.HTTPError as exc:
            logger.warning("Stream delete failed for video %s: %s", video_id, exc)
            return False
        if response.is_error:
            logger.warning(
                "Stream delete for video %s returned %s: %s",
                video_id,
                response.status_code,
                response.text[:500],
            )
            return False
        return True

    async def get_video_status(self, video_id: str) -> VideoStatus:
        try:
            response = await self.client.get(f"{self.base_url}/{video_id}")
        except httpx.HTTPError as exc:
            raise StreamAPIError(f"Stream status check failed: {exc}") from exc

        envelope = _decode_envelope(response)
        if not envelope.success:
            raise StreamAPIError(
                f"Stream status check failed: {envelope.error_message()}",
                status_code=response.status_code,
            )
        duration = envelope.result.get("duration")
        try:
            duration = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None
        # Stream reports duration -1 while the upload is still being processed.
        if duration is not None and duration <= 0:
            duration = None
        ready = bool(envelope.result.get("readyToStream")) and duration is not None
        return VideoStatus(ready=ready, duration=duration if ready else None)


async def get_stream_client(
    config: Settings = Depends(get_settings),
) -> AsyncGenerator[StreamClient, None]:
    """Request-scoped Stream client dependency."""
    async with StreamClient(config) as client:
        yield client
