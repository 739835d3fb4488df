"""Merge parsed project records with upload results into project documents."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable, Mapping

from .errors import Issue
from .models import (
    ComponentDocument,
    ComponentRecord,
    DiscoveredFile,
    DocumentEntry,
    MediaEntry,
    ProjectDocument,
    ProjectRecord,
    asset_id,
)
from .scanner import slugify
from .uploader import UploadReport

logger = logging.getLogger(__name__)

BUILD_STAGE = "build"
VALIDATE_STAGE = "validate"
THUMBNAIL_STAGE = "after"

DOCUMENT_TYPE_NAMES: dict[str, str] = {
    "plans": "Floor Plan",
    "rendering": "3D Rendering",
    "contracts": "Contract",
    "invoices": "Invoice",
    "permits": "Permit",
    "specifications": "Specification",
}
DEFAULT_DOCUMENT_TYPE = "Document"


@dataclass(slots=True)
class BuildResult:
    documents: list[ProjectDocument] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DisplayFields:
    name: str
    summary: str | None
    description: str | None
    scope: str | None
    thumbnail: str | None


def resolve_display(
    project: ProjectRecord | ProjectDocument,
    component: ComponentRecord | ComponentDocument,
    *,
    project_thumbnail: str | None = None,
) -> DisplayFields:
    """Component overrides with fallback to the parent project's values."""
    if project_thumbnail is None and isinstance(project, ProjectDocument):
        project_thumbnail = project.thumbnail
    return DisplayFields(
        name=component.name or project.name,
        summary=component.summary if component.summary is not None else project.summary,
        description=(
            component.description if component.description is not None else project.description
        ),
        scope=component.scope if component.scope is not None else project.scope,
        thumbnail=component.thumbnail or project_thumbnail,
    )


def validate_document(document: ProjectDocument) -> list[str]:
    """Return the invariant violations of ``document``; empty when valid."""
    problems: list[str] = []
    for name in ("id", "name", "category"):
        if not str(getattr(document, name) or "").strip():
            problems.append(f"{name} must not be empty")
    if not document.components:
        problems.append("project has no components")

    duplicates = [
        component_id
        for component_id, count in Counter(c.id for c in document.components).items()
        if count > 1
    ]
    if duplicates:
        problems.append("duplicate component id(s): " + ", ".join(sorted(duplicates)))

    for component in document.components:
        if not component.id or not component.category:
            problems.append("component with empty id or category")
        paths = [entry.storage_path for entry in component.media]
        paths += [entry.storage_path for entry in component.documents]
        if len(paths) != len(set(paths)):
            problems.append(f"component {component.id} references a storage path twice")
    return problems


def _match_component(record: ProjectRecord, file: DiscoveredFile) -> ComponentRecord | None:
    for component in record.components:
        if component.category == file.category and component.subcategory == file.subcategory:
            return component
    if file.subcategory is None:
        for component in record.components:
            if component.category == file.category:
                return component
    return None


def build_documents(
    records: Iterable[ProjectRecord],
    files: Iterable[DiscoveredFile],
    report: UploadReport,
    *,
    existing: Mapping[str, ProjectDocument] | None = None,
    scanned_categories: Iterable[str] | None = None,
) -> BuildResult:
    """Build one document per record; ``validate_documents`` decides what is written.

    Files are attached in relative-path order so repeated runs over the same
    tree produce the same ``order`` values. Components whose category was not
    scanned this run keep the media and documents already stored for them.
    """
    result = BuildResult()
    existing = existing or {}
    scanned = {category.lower() for category in scanned_categories} if scanned_categories else None
    record_list = list(records)
    record_ids = {record.id for record in record_list}

    by_project: dict[str, list[DiscoveredFile]] = {}
    for file in sorted(files, key=lambda item: item.relative_path):
        if file.project_id not in record_ids:
            result.warnings.append(
                Issue(
                    BUILD_STAGE,
                    "file belongs to a project missing from the metadata; excluded",
                    project_id=file.project_id,
                    path=file.relative_path,
                )
            )
            continue
        by_project.setdefault(file.project_id, []).append(file)

    for record in record_list:
        document = _build_project(
            record, by_project.get(record.id, []), report, existing.get(record.id), scanned, result
        )
        result.documents.append(document)

    logger.info(
        "build_summary documents=%d warnings=%d", len(result.documents), len(result.warnings)
    )
    return result


def validate_documents(
    documents: Iterable[ProjectDocument],
) -> tuple[list[ProjectDocument], list[Issue]]:
    """Split documents into the writable set and one error per invalid document."""
    valid: list[ProjectDocument] = []
    errors: list[Issue] = []
    for document in documents:
        problems = validate_document(document)
        if problems:
            logger.error("document_invalid project=%s problems=%s", document.id, problems)
            errors.append(Issue(VALIDATE_STAGE, "; ".join(problems), project_id=document.id))
            continue
        valid.append(document)
    return valid, errors


def _build_project(
    record: ProjectRecord,
    files: list[DiscoveredFile],
    report: UploadReport,
    previous: ProjectDocument | None,
    scanned: set[str] | None,
    result: BuildResult,
) -> ProjectDocument:
    previous_components = {c.id: c for c in previous.components} if previous else {}
    attached: dict[str, list[DiscoveredFile]] = {c.id: [] for c in record.components}

    for file in files:
        component = _match_component(record, file)
        if component is None:
            result.warnings.append(
                Issue(
                    BUILD_STAGE,
                    f"no component for category={file.category} subcategory={file.subcategory or '-'}; "
                    "file excluded",
                    project_id=record.id,
                    path=file.relative_path,
                )
            )
            continue
        if report.result_for(file) is None:
            continue
        attached[component.id].append(file)

    components = []
    for component in record.components:
        prior = previous_components.get(component.id)
        keep_prior = scanned is not None and component.category not in scanned and prior is not None
        if keep_prior:
            media = list(prior.media)
            documents = list(prior.documents)
        else:
            media, documents = _entries(attached[component.id], report)
        components.append(
            ComponentDocument(
                id=component.id,
                category=component.category,
                subcategory=component.subcategory,
                name=component.name,
                summary=component.summary,
                description=component.description,
                scope=component.scope,
                thumbnail=_thumbnail(media) or (prior.thumbnail if prior else None),
                media=media,
                documents=documents,
            )
        )

    all_media = [entry for component in components for entry in component.media]
    slug = files[0].project_slug if files else None
    if slug is None:
        slug = previous.slug if previous else f"{record.id}-{slugify(record.name)}"

    return ProjectDocument(
        id=record.id,
        slug=slug,
        name=record.name,
        category=record.category,
        subcategory=record.subcategory,
        status=record.status,
        summary=record.summary,
        description=record.description,
        scope=record.scope,
        location=record.location,
        timeline=record.timeline,
        tags=list(record.tags),
        project_managers=list(record.project_managers),
        is_featured=record.is_featured,
        thumbnail=_thumbnail(all_media) or (previous.thumbnail if previous else None),
        components=components,
    )


def _entries(
    files: list[DiscoveredFile], report: UploadReport
) -> tuple[list[MediaEntry], list[DocumentEntry]]:
    media: list[MediaEntry] = []
    documents: list[DocumentEntry] = []
    for file in files:
        uploaded = report.result_for(file)
        if uploaded is None:
            continue
        if file.kind == "image":
            media.append(
                MediaEntry(
                    id=asset_id(uploaded.storage_path),
                    url=uploaded.url,
                    storage_path=uploaded.storage_path,
                    category=file.stage,
                    order=len(media) + 1,
                    size=uploaded.size,
                )
            )
        else:
            documents.append(
                DocumentEntry(
                    id=asset_id(uploaded.storage_path),
                    url=uploaded.url,
                    storage_path=uploaded.storage_path,
                    category=file.stage,
                    type=DOCUMENT_TYPE_NAMES.get(file.stage, DEFAULT_DOCUMENT_TYPE),
                    name=PurePosixPath(file.filename).stem,
                    size=uploaded.size,
                )
            )
    return media, documents


def _thumbnail(media: list[MediaEntry]) -> str | None:
    for entry in media:
        if entry.category == THUMBNAIL_STAGE:
            return entry.url
    return media[0].url if media else None
