"""Pydantic models for metadata rows, scanned files and project documents."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal
from uuid import UUID, uuid5

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ASSET_NAMESPACE = UUID("5d7f6c1e-3b0a-4f51-9b8e-2f4a6c0e9d13")
_KEY_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")

PROJECT_STATUSES = ("planning", "in-progress", "completed", "on-hold")
LIST_DELIMITER = ";"

ProjectStatus = Literal["planning", "in-progress", "completed", "on-hold"]
FileKind = Literal["image", "document", "skip"]


def split_multi_value(value: object) -> tuple[str, ...]:
    """Split a ``;`` separated cell, trimming segments and dropping empties."""
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item).strip() for item in value if str(item).strip())
    return tuple(part.strip() for part in str(value).split(LIST_DELIMITER) if part.strip())


def asset_id(storage_path: str) -> str:
    """Stable identifier for a media/document entry, derived from its storage path."""
    return str(uuid5(_ASSET_NAMESPACE, storage_path))


def storage_segment(value: str) -> str:
    """Replace characters object storage rejects in a key segment with ``_``."""
    return _KEY_UNSAFE.sub("_", value)


class MetadataRow(BaseModel):
    """Single CSV row. Required columns are checked by the parser before this model."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    number: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    status: ProjectStatus
    subcategory: str | None = None
    component_name: str | None = Field(default=None, alias="componentName")
    is_featured: bool = Field(default=False, alias="isFeatured")
    project_managers: tuple[str, ...] = Field(default=(), alias="projectManagers")
    summary: str | None = None
    description: str | None = None
    scope: str | None = None
    zip_code: str | None = Field(default=None, alias="location.zipCode")
    neighborhood: str | None = Field(default=None, alias="location.neighborhood")
    duration: str | None = Field(default=None, alias="timeline.duration")
    tags: tuple[str, ...] = ()

    @field_validator("category", "subcategory", mode="before")
    @classmethod
    def _lower(cls, value: object) -> object:
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: object) -> object:
        cleaned = str(value or "").strip().lower()
        if cleaned not in PROJECT_STATUSES:
            raise ValueError(
                f"invalid status {value!r}; expected one of {', '.join(PROJECT_STATUSES)}"
            )
        return cleaned

    @field_validator("is_featured", mode="before")
    @classmethod
    def _parse_flag(cls, value: object) -> bool:
        if isinstance(value, bool):
            return value
        return str(value or "").strip().lower() in {"true", "1", "yes"}

    @field_validator("project_managers", "tags", mode="before")
    @classmethod
    def _parse_list(cls, value: object) -> tuple[str, ...]:
        return split_multi_value(value)

    @field_validator(
        "component_name",
        "summary",
        "description",
        "scope",
        "zip_code",
        "neighborhood",
        "duration",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    zip_code: str | None = None
    neighborhood: str | None = None


class Timeline(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: str | None = None


class ProjectManager(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class ComponentRecord(BaseModel):
    """A component parsed from one metadata row. Display fields are overrides only."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: str
    subcategory: str | None = None
    name: str | None = None
    summary: str | None = None
    description: str | None = None
    scope: str | None = None
    thumbnail: str | None = None
    row: int


class ProjectRecord(BaseModel):
    """A project grouped from every valid row sharing its number."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str
    subcategory: str | None = None
    status: ProjectStatus
    summary: str | None = None
    description: str | None = None
    scope: str | None = None
    location: Location = Location()
    timeline: Timeline = Timeline()
    tags: tuple[str, ...] = ()
    project_managers: tuple[ProjectManager, ...] = ()
    is_featured: bool = False
    components: tuple[ComponentRecord, ...]
    rows: tuple[int, ...] = ()


class DiscoveredFile(BaseModel):
    """One physical file found by the scanner."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    project_slug: str
    project_display_name: str
    category: str
    subcategory: str | None = None
    stage: str
    kind: FileKind
    filename: str
    local_path: Path
    relative_path: str
    size: int
    extension: str

    @property
    def storage_path(self) -> str:
        """``projects/{slug}/{category}[/{subcategory}]/{photos|documents}/{stage}/{filename}``."""
        segments = ["projects", self.project_slug, self.category]
        if self.subcategory:
            segments.append(self.subcategory)
        segments.append("photos" if self.kind == "image" else "documents")
        segments.append(self.stage)
        segments.append(self.filename)
        return "/".join(storage_segment(segment) for segment in segments)


class UploadedFile(BaseModel):
    """A remote object that exists after the upload stage."""

    model_config = ConfigDict(frozen=True)

    local_path: Path
    storage_path: str
    url: str
    size: int
    content_type: str
    newly_uploaded: bool


class MediaEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    storage_path: str
    category: str
    order: int
    size: int


class DocumentEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    storage_path: str
    category: str
    type: str
    name: str
    size: int


class ComponentDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    category: str
    subcategory: str | None = None
    name: str | None = None
    summary: str | None = None
    description: str | None = None
    scope: str | None = None
    thumbnail: str | None = None
    media: list[MediaEntry] = Field(default_factory=list)
    documents: list[DocumentEntry] = Field(default_factory=list)


class ProjectDocument(BaseModel):
    """Composite record written to the document table, one row per project."""

    model_config = ConfigDict(extra="ignore")

    id: str
    slug: str
    name: str
    category: str
    subcategory: str | None = None
    status: str | None = None
    summary: str | None = None
    description: str | None = None
    scope: str | None = None
    location: Location = Location()
    timeline: Timeline = Timeline()
    tags: list[str] = Field(default_factory=list)
    project_managers: list[ProjectManager] = Field(default_factory=list)
    is_featured: bool = False
    thumbnail: str | None = None
    components: list[ComponentDocument] = Field(default_factory=list)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProjectDocument":
        return cls.model_validate(row)
