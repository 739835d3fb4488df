"""Project document persistence.

Documents are written as whole rows, upserted on ``id``. The builder has
already merged the stored snapshot, so a write never needs to patch nested
arrays in place.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol, Sequence

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .batching import chunked
from .errors import ConfigurationError, DocumentWriteError
from .models import ProjectDocument

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {"408", "429", "500", "502", "503", "504"}
_TRANSIENT_MARKERS = ("timed out", "timeout", "connection reset", "temporarily unavailable")


class DocumentStore(Protocol):
    def fetch_existing(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        ...

    def clear(self) -> int:
        ...

    def upsert(self, rows: Sequence[dict[str, Any]]) -> int:
        ...


def _should_retry(exception: BaseException) -> bool:
    message = str(exception).lower()
    if any(f"status={code}" in message or f"'code': '{code}'" in message for code in TRANSIENT_STATUS_CODES):
        return True
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class SupabaseDocumentStore:
    """``DocumentStore`` over a Supabase table keyed by ``id``."""

    def __init__(
        self,
        client: Any,
        table: str,
        *,
        chunk_size: int = 50,
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._client = client
        self.table = table
        self.chunk_size = chunk_size
        self._retryer = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=base_delay, max=10),
            retry=retry_if_exception(_should_retry),
            reraise=True,
        )

    def fetch_existing(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        rows: dict[str, dict[str, Any]] = {}
        for chunk in chunked(ids, self.chunk_size):
            response = self._retryer(
                lambda: self._client.table(self.table).select("*").in_("id", chunk).execute()
            )
            for row in getattr(response, "data", None) or []:
                rows[str(row["id"])] = row
        return rows

    def clear(self) -> int:
        response = self._client.table(self.table).delete().neq("id", "").execute()
        deleted = len(getattr(response, "data", None) or [])
        logger.warning("documents_cleared table=%s rows=%d", self.table, deleted)
        return deleted

    def upsert(self, rows: Sequence[dict[str, Any]]) -> int:
        written = 0
        for chunk in chunked(rows, self.chunk_size):
            try:
                self._retryer(self._upsert_chunk, chunk)
            except Exception as exc:  # propagated to the caller with the failing chunk
                raise DocumentWriteError(chunk, exc) from exc
            written += len(chunk)
        return written

    def _upsert_chunk(self, chunk: list[dict[str, Any]]) -> None:
        response = self._client.table(self.table).upsert(chunk, on_conflict="id").execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"upsert into {self.table} failed: {error}")


def load_existing(store: DocumentStore, ids: Sequence[str]) -> dict[str, ProjectDocument]:
    """Snapshot stored documents; rows that no longer parse are ignored with a warning."""
    documents: dict[str, ProjectDocument] = {}
    for project_id, row in store.fetch_existing(ids).items():
        try:
            documents[project_id] = ProjectDocument.from_row(row)
        except ValueError as exc:
            logger.warning("existing_document_unreadable project=%s error=%s", project_id, exc)
    return documents


def write_documents(
    store: DocumentStore | None, documents: Iterable[ProjectDocument], *, dry_run: bool
) -> int:
    rows = [document.to_row() for document in documents]
    if dry_run:
        logger.info("write_skipped dry_run=true documents=%d", len(rows))
        return 0
    if store is None:
        raise ConfigurationError("a document store is required unless dry_run is enabled")
    written = store.upsert(rows) if rows else 0
    logger.info("write_summary documents=%d", written)
    return written
