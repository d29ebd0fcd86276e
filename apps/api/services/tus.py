"""TUS resumable-upload header helpers."""

from __future__ import annotations

import base64
import binascii
from typing import Dict, Iterable, Tuple


TUS_VERSION = "1.0.0"

TUS_ALLOW_HEADERS = "Content-Type, Upload-Length, Upload-Metadata, Tus-Resumable"
TUS_EXPOSE_HEADERS = "Location, Tus-Resumable"


def encode_upload_metadata(pairs: Iterable[Tuple[str, str]]) -> str:
    """Encode ``Upload-Metadata``: comma-separated ``key base64(value)`` pairs."""
    encoded = []
    for key, value in pairs:
        b64 = base64.b64encode(str(value).encode("utf-8")).decode("ascii")
        encoded.append(f"{key} {b64}")
    return ",".join(encoded)


def parse_upload_metadata(header: str) -> Dict[str, str]:
    """Decode an ``Upload-Metadata`` header. Keys without a value map to ''."""
    meta: Dict[str, str] = {}
    for pair in (header or "").split(","):
        parts = pair.strip().split()
        if not parts:
            continue
        key = parts[0]
        if len(parts) < 2:
            meta[key] = ""
            continue
        try:
            meta[key] = base64.b64decode(parts[1], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            meta[key] = ""
    return meta


def upload_created_headers(location: str) -> Dict[str, str]:
    """Headers for the 201 reply that hands the client its upload Location."""
    return {
        "Tus-Resumable": TUS_VERSION,
        "Location": location,
        "Access-Control-Expose-Headers": TUS_EXPOSE_HEADERS,
        "Access-Control-Allow-Origin": "*",
    }


def preflight_headers(allow_headers: str = TUS_ALLOW_HEADERS, *, expose: bool = True) -> Dict[str, str]:
    headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": allow_headers,
        "Access-Control-Max-Age": "86400",
    }
    if expose:
        headers["Access-Control-Expose-Headers"] = TUS_EXPOSE_HEADERS
    return headers
