"""Routers package."""

from . import (
    health,
    auth,
    api,
    gallery,
    upload_keys,
)
