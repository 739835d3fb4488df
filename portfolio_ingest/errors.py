"""Exception types and recorded issues for the ingestion pipeline.

Fatal conditions are raised as exceptions. Everything else is captured as an
``Issue`` and carried into the run summary so the operator can act on it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Sequence


class IngestError(RuntimeError):
    """Base class for pipeline failures."""


class ConfigurationError(IngestError):
    """Missing or invalid runtime configuration."""


class MetadataFileError(IngestError):
    """The metadata CSV is missing or cannot be read."""


class ScanRootError(IngestError):
    """The asset root directory is missing or unreadable."""


class UploadFailure(IngestError):
    """A single file could not be uploaded after all retry attempts."""

    def __init__(self, storage_path: str, attempts: int, original_exception: Exception):
        self.storage_path = storage_path
        self.attempts = attempts
        self.original_exception = original_exception
        super().__init__(
            f"upload of {storage_path} failed after {attempts} attempt(s): {original_exception}"
        )


class DocumentWriteError(IngestError):
    """A chunk of project documents could not be written."""

    def __init__(self, chunk: Sequence[dict[str, Any]], original_exception: Exception):
        self.chunk = list(chunk)
        self.original_exception = original_exception
        ids = ", ".join(str(row.get("id")) for row in self.chunk)
        super().__init__(f"failed to write documents [{ids}]: {original_exception}")


@dataclass(frozen=True, slots=True)
class Issue:
    """A warning or error with enough context to locate its source."""

    stage: str
    message: str
    row: int | None = None
    project_id: str | None = None
    path: str | None = None

    def context(self) -> str:
        parts = []
        if self.row is not None:
            parts.append(f"row={self.row}")
        if self.project_id:
            parts.append(f"project={self.project_id}")
        if self.path:
            parts.append(f"path={self.path}")
        return " ".join(parts)

    def format(self) -> str:
        context = self.context()
        prefix = f"[{self.stage}]"
        return f"{prefix} {self.message} ({context})" if context else f"{prefix} {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}
