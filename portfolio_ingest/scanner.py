"""Filesystem scanner for the local asset tree.

Layout::

    {root}/{category}/[{subcategory}/]{number} - {Display Name}[ - {hint}]/{stage folder}/{file}

Stage folders look like ``"187 - After Photos - Kitchen"``; the middle segment
selects the stage. Only the designated subcategory category (``adu-addition``
by default) carries the extra subcategory directory.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from .errors import Issue, ScanRootError
from .models import DiscoveredFile, FileKind
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

STAGE = "scan"
FOLDER_DELIMITER = " - "
OTHER_STAGE = "other"

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".heic", ".webp"})
DOCUMENT_EXTENSIONS = frozenset({".pdf"})
SKIP_FILES = frozenset({".DS_Store", "Thumbs.db", ".gitkeep", "desktop.ini"})

IMAGE_STAGE_MAPPINGS: dict[str, str] = {
    "after photos": "after",
    "after images": "after",
    "after": "after",
    "completed": "after",
    "final": "after",
    "before photos": "before",
    "before images": "before",
    "before": "before",
    "existing": "before",
    "original": "before",
    "during construction": "progress",
    "construction": "progress",
    "in progress": "progress",
    "progress": "progress",
    "in-progress": "progress",
    "wip": "progress",
    "work in progress": "progress",
    "3d rendering": "rendering",
    "3d remodeling": "rendering",
    "rendering": "rendering",
    "renderings": "rendering",
    "3d": "rendering",
    "mockup": "rendering",
    "mockups": "rendering",
    "materials": "materials",
    "samples": "materials",
    "finishes": "materials",
}

DOCUMENT_STAGE_MAPPINGS: dict[str, str] = {
    "plans": "plans",
    "blueprints": "plans",
    "floor plans": "plans",
    "floorplans": "plans",
    "architectural plans": "plans",
    "3d rendering": "rendering",
    "3d remodeling": "rendering",
    "rendering": "rendering",
    "renderings": "rendering",
    "3d": "rendering",
    "contracts": "contracts",
    "contract": "contracts",
    "agreement": "contracts",
    "agreements": "contracts",
    "invoices": "invoices",
    "invoice": "invoices",
    "bills": "invoices",
    "permits": "permits",
    "permit": "permits",
    "specifications": "specifications",
    "specs": "specifications",
    "spec": "specifications",
}

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class ProjectFolder:
    id: str
    slug: str
    display_name: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class ProjectLocation:
    folder: ProjectFolder
    path: Path
    category: str
    subcategory: str | None = None


@dataclass(slots=True)
class ScanStats:
    category_dirs: int = 0
    projects: int = 0
    images: int = 0
    documents: int = 0
    skipped: int = 0
    total_bytes: int = 0


@dataclass(slots=True)
class ScanResult:
    files: list[DiscoveredFile] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)


def slugify(value: str) -> str:
    return _SLUG_PATTERN.sub("-", value.lower()).strip("-")


def parse_project_folder(name: str) -> ProjectFolder | None:
    """Parse ``"{number} - {Display Name}[ - {hint}]"``; ``None`` when it doesn't match."""
    parts = [part.strip() for part in name.split(FOLDER_DELIMITER)]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    project_id, display_name = parts[0], parts[1]
    hint = parts[2].lower() if len(parts) > 2 and parts[2] else None
    return ProjectFolder(
        id=project_id,
        slug=f"{project_id}-{slugify(display_name)}",
        display_name=display_name,
        hint=hint,
    )


def classify_extension(extension: str) -> FileKind:
    lowered = extension.lower()
    if lowered in IMAGE_EXTENSIONS:
        return "image"
    if lowered in DOCUMENT_EXTENSIONS:
        return "document"
    return "skip"


def classify_stage(folder_name: str | None, kind: FileKind) -> str:
    """Map a stage folder's middle segment onto a normalized stage, else ``other``."""
    if not folder_name:
        return OTHER_STAGE
    parts = [part.strip() for part in folder_name.split(FOLDER_DELIMITER)]
    label = (parts[1] if len(parts) > 1 else parts[0]).lower()
    table = DOCUMENT_STAGE_MAPPINGS if kind == "document" else IMAGE_STAGE_MAPPINGS
    return table.get(label, OTHER_STAGE)


def is_ignored(name: str) -> bool:
    return name.startswith(".") or name in SKIP_FILES


def _subdirs(path: Path) -> list[Path]:
    return sorted(
        (child for child in path.iterdir() if child.is_dir() and not is_ignored(child.name)),
        key=lambda child: child.name,
    )


def _category_dirs(
    root: Path, categories: Sequence[str] | None, errors: list[Issue]
) -> list[Path]:
    if not root.is_dir():
        raise ScanRootError(f"asset root not found or not a directory: {root}")
    try:
        category_dirs = _subdirs(root)
    except OSError as exc:
        raise ScanRootError(f"unable to read asset root {root}: {exc}") from exc

    if not categories:
        return category_dirs
    by_name = {path.name.lower(): path for path in category_dirs}
    selected = []
    for category in categories:
        path = by_name.get(category.lower())
        if path is None:
            errors.append(
                Issue(STAGE, f"category folder not found: {category}", path=str(root / category))
            )
            continue
        selected.append(path)
    return selected


def iter_project_dirs(
    category_dirs: Iterable[Path], settings: Settings, warnings: list[Issue]
) -> Iterator[ProjectLocation]:
    """Yield every well-formed project folder below the given category folders."""
    for category_dir in category_dirs:
        category = category_dir.name.lower()
        if category == settings.SUBCATEGORY_CATEGORY:
            levels = []
            for path in _subdirs(category_dir):
                if parse_project_folder(path.name) is not None:
                    logger.warning("skipping_project_folder path=%s reason=missing_subcategory", path)
                    warnings.append(
                        Issue(
                            STAGE,
                            f"project folder directly under '{category}' needs a subcategory folder: "
                            f"{path.name}",
                            path=str(path),
                        )
                    )
                    continue
                levels.append((path, path.name.lower()))
        else:
            levels = [(category_dir, None)]

        for directory, subcategory in levels:
            for project_dir in _subdirs(directory):
                folder = parse_project_folder(project_dir.name)
                if folder is None:
                    logger.warning("skipping_project_folder path=%s reason=name_format", project_dir)
                    warnings.append(
                        Issue(
                            STAGE,
                            f"project folder name does not match '<number> - <name>': {project_dir.name}",
                            path=str(project_dir),
                        )
                    )
                    continue
                yield ProjectLocation(folder, project_dir, category, subcategory)


def list_projects(
    root: Path, *, settings: Settings | None = None
) -> tuple[list[ProjectLocation], list[Issue]]:
    """Project folders only, without touching files; feeds the inventory command."""
    settings = settings or get_settings()
    warnings: list[Issue] = []
    category_dirs = _category_dirs(root, None, warnings)
    return list(iter_project_dirs(category_dirs, settings, warnings)), warnings


def scan_assets(
    root: Path,
    *,
    categories: Sequence[str] | None = None,
    project_ids: Iterable[str] | None = None,
    settings: Settings | None = None,
) -> ScanResult:
    """Walk ``root`` and return every image/document file with its classification.

    A missing root raises ``ScanRootError``. A requested category without a
    folder is recorded as an error; malformed project folders are warnings.
    """
    settings = settings or get_settings()
    result = ScanResult()
    wanted_projects = set(project_ids) if project_ids else None

    category_dirs = _category_dirs(root, categories, result.errors)
    result.stats.category_dirs = len(category_dirs)
    for location in iter_project_dirs(category_dirs, settings, result.warnings):
        if wanted_projects is not None and location.folder.id not in wanted_projects:
            continue
        result.stats.projects += 1
        _scan_project(root, location, settings, result)

    logger.info(
        "scan_summary categories=%d projects=%d images=%d documents=%d skipped=%d bytes=%d",
        result.stats.category_dirs,
        result.stats.projects,
        result.stats.images,
        result.stats.documents,
        result.stats.skipped,
        result.stats.total_bytes,
    )
    return result


def _scan_project(root: Path, location: ProjectLocation, settings: Settings, result: ScanResult) -> None:
    folder = location.folder
    project_dir = location.path
    for path in sorted(project_dir.rglob("*")):
        relative = path.relative_to(project_dir)
        if not path.is_file() or any(is_ignored(part) for part in relative.parts):
            continue
        kind = classify_extension(path.suffix)
        if kind == "skip":
            result.stats.skipped += 1
            logger.debug("skipping_file path=%s reason=extension", path)
            continue

        stage_folder = relative.parts[0] if len(relative.parts) > 1 else None
        size = path.stat().st_size
        discovered = DiscoveredFile(
            project_id=folder.id,
            project_slug=folder.slug,
            project_display_name=folder.display_name,
            category=location.category,
            subcategory=location.subcategory,
            stage=classify_stage(stage_folder, kind),
            kind=kind,
            filename=path.name,
            local_path=path.resolve(),
            relative_path=path.relative_to(root).as_posix(),
            size=size,
            extension=path.suffix.lower(),
        )
        if size > settings.max_file_size_bytes:
            result.warnings.append(
                Issue(
                    STAGE,
                    f"file exceeds {settings.MAX_FILE_SIZE_MB} MB ({size} bytes)",
                    project_id=folder.id,
                    path=discovered.relative_path,
                )
            )
        if kind == "image":
            result.stats.images += 1
        else:
            result.stats.documents += 1
        result.stats.total_bytes += size
        result.files.append(discovered)
