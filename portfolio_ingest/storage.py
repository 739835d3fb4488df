"""Object storage access behind a small protocol so the uploader can be tested offline."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_LIST_PAGE_SIZE = 1000

MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(extension: str) -> str:
    return MIME_TYPES.get(extension.lower(), DEFAULT_CONTENT_TYPE)


class ObjectStore(Protocol):
    def list_paths(self, prefix: str) -> set[str]:
        """Return every object path stored under ``prefix`` (recursively)."""

    def upload(self, path: str, data: bytes, content_type: str, *, upsert: bool) -> None:
        """Store ``data`` at ``path``; raise on any failure."""

    def public_url(self, path: str) -> str:
        """Return the URL clients use to fetch ``path``."""


class SupabaseObjectStore:
    """``ObjectStore`` backed by a Supabase Storage bucket."""

    def __init__(self, client: Any, bucket: str):
        self._client = client
        self.bucket = bucket

    def _bucket(self) -> Any:
        return self._client.storage.from_(self.bucket)

    def list_paths(self, prefix: str) -> set[str]:
        found: set[str] = set()
        pending = [prefix.strip("/")]
        while pending:
            folder = pending.pop()
            offset = 0
            while True:
                entries = self._bucket().list(
                    folder, {"limit": _LIST_PAGE_SIZE, "offset": offset}
                ) or []
                for entry in entries:
                    name = entry.get("name")
                    if not name:
                        continue
                    full_path = f"{folder}/{name}" if folder else name
                    # Folders come back without an object id.
                    if entry.get("id") is None:
                        pending.append(full_path)
                    else:
                        found.add(full_path)
                if len(entries) < _LIST_PAGE_SIZE:
                    break
                offset += _LIST_PAGE_SIZE
        logger.debug("storage_list bucket=%s prefix=%s objects=%d", self.bucket, prefix, len(found))
        return found

    def upload(self, path: str, data: bytes, content_type: str, *, upsert: bool) -> None:
        self._bucket().upload(
            path,
            data,
            {"content-type": content_type, "upsert": "true" if upsert else "false"},
        )

    def public_url(self, path: str) -> str:
        return str(self._bucket().get_public_url(path)).rstrip("?")


def ensure_bucket(client: Any, bucket: str, *, public: bool = True) -> bool:
    """Create ``bucket`` if it does not exist. Returns True when it was created."""
    existing = {
        getattr(item, "name", None) for item in client.storage.list_buckets()
    }
    if bucket in existing:
        logger.info("Bucket '%s' already exists", bucket)
        return False
    logger.info("Creating bucket '%s' (public=%s)", bucket, public)
    client.storage.create_bucket(bucket, options={"public": public})
    return True
