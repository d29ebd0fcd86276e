"""Map service exceptions onto HTTP errors."""

import logging

from fastapi import HTTPException

from services.stream import StreamAPIError
from services.uploads import UploadRequestError
from services.videos import VideoNotFoundError, VideoPermissionError

logger = logging.getLogger(__name__)


def http_error_for(exc: Exception) -> HTTPException:
    if isinstance(exc, UploadRequestError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, VideoNotFoundError):
        return HTTPException(status_code=404, detail=str(exc) or "Video not found")
    if isinstance(exc, VideoPermissionError):
        return HTTPException(status_code=403, detail=str(exc) or "Not authorized")
    if isinstance(exc, StreamAPIError):
        logger.warning("Stream API failure (status=%s): %s", exc.status_code, exc.message)
        return HTTPException(status_code=502, detail=exc.message)
    logger.exception("Unmapped service error %s: %s", type(exc).__name__, exc)
    return HTTPException(status_code=500, detail="Internal error")
