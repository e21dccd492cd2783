"""Shared helpers — hashing, timestamps, header-safe text."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path

ASCII_HEADER_LIMIT = 200


def sha256_file(path: Path) -> str:
    """Return the hex SHA-256 digest of *path*."""
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def utcnow_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def ascii_sanitize(text: str | None, limit: int = ASCII_HEADER_LIMIT) -> str:
    """Drop non-ASCII characters and truncate, for transport metadata fields."""
    if not text:
        return ""
    return text.encode("ascii", "ignore").decode("ascii")[:limit]
