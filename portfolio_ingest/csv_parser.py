"""Metadata CSV parsing and grouping into project/component records.

Each CSV row describes one component of a project. Rows are validated one by
one; an invalid row is reported and dropped while the rest of the file is still
parsed. Valid rows are grouped by project ``number`` in first-appearance order
and the first row of each group supplies the project-level fields.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd
from pydantic import ValidationError

from .errors import Issue, MetadataFileError
from .models import (
    ComponentRecord,
    Location,
    MetadataRow,
    ProjectManager,
    ProjectRecord,
    Timeline,
)

logger = logging.getLogger(__name__)

STAGE = "parse"
REQUIRED_COLUMNS = ("number", "name", "category", "status")
CONSISTENCY_FIELDS = ("name", "status", "summary", "description")
SUBCATEGORY_EXPECTED = {"outdoor", "outdoor-living"}


@dataclass(slots=True)
class ParseStats:
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    projects: int = 0
    components: int = 0


@dataclass(slots=True)
class ParseResult:
    records: list[ProjectRecord] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)

    @property
    def success(self) -> bool:
        return not self.errors


def component_id(project_id: str, category: str, subcategory: str | None, occurrence: int) -> str:
    """Build ``{project}-{category}[-{subcategory}][-{n}]``; ``n`` starts at 2."""
    parts = [project_id, category]
    if subcategory:
        parts.append(subcategory)
    if occurrence > 1:
        parts.append(str(occurrence))
    return "-".join(parts)


def parse_metadata_csv(path: Path) -> ParseResult:
    """Read and parse the metadata CSV. Raises only when the file cannot be read."""
    if not path.is_file():
        raise MetadataFileError(f"metadata file not found: {path}")
    try:
        frame = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    except pd.errors.EmptyDataError:
        result = ParseResult()
        result.warnings.append(Issue(STAGE, "metadata file is empty", path=str(path)))
        return result
    except (OSError, UnicodeDecodeError, pd.errors.ParserError) as exc:
        raise MetadataFileError(f"unable to read metadata file {path}: {exc}") from exc
    return parse_metadata_frame(frame.fillna(""))


def parse_metadata_frame(frame: pd.DataFrame) -> ParseResult:
    result = ParseResult()
    frame = frame.rename(columns=lambda column: str(column).strip())

    if frame.empty:
        result.warnings.append(Issue(STAGE, "metadata file has no data rows"))
        return result

    missing_columns = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
    if missing_columns:
        result.errors.append(
            Issue(STAGE, "metadata file is missing required column(s): " + ", ".join(missing_columns))
        )
        result.stats.total_rows = len(frame)
        result.stats.invalid_rows = len(frame)
        return result

    groups: dict[str, list[tuple[int, MetadataRow]]] = {}
    for row_number, raw in enumerate(frame.to_dict(orient="records"), start=1):
        result.stats.total_rows += 1
        row = _validate_row(row_number, raw, result)
        if row is None:
            result.stats.invalid_rows += 1
            continue
        result.stats.valid_rows += 1
        groups.setdefault(row.number, []).append((row_number, row))

    for project_id, rows in groups.items():
        _check_consistency(project_id, rows, result)
        result.records.append(_build_project(project_id, rows))

    result.stats.projects = len(result.records)
    result.stats.components = sum(len(record.components) for record in result.records)
    logger.info(
        "parse_summary rows=%d valid=%d invalid=%d projects=%d components=%d",
        result.stats.total_rows,
        result.stats.valid_rows,
        result.stats.invalid_rows,
        result.stats.projects,
        result.stats.components,
    )
    return result


def _validate_row(row_number: int, raw: dict[str, object], result: ParseResult) -> MetadataRow | None:
    cleaned = {str(key).strip(): str(value).strip() for key, value in raw.items()}
    project_id = cleaned.get("number") or None

    missing = [column for column in REQUIRED_COLUMNS if not cleaned.get(column)]
    if missing:
        result.errors.append(
            Issue(
                STAGE,
                "missing required field(s): " + ", ".join(missing),
                row=row_number,
                project_id=project_id,
            )
        )
        return None

    try:
        row = MetadataRow.model_validate(cleaned)
    except ValidationError as exc:
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            result.errors.append(
                Issue(STAGE, f"{location}: {error['msg']}", row=row_number, project_id=project_id)
            )
        return None

    if row.summary is None:
        result.warnings.append(
            Issue(STAGE, "missing optional field: summary", row=row_number, project_id=row.number)
        )
    if row.description is None:
        result.warnings.append(
            Issue(STAGE, "missing optional field: description", row=row_number, project_id=row.number)
        )
    if row.category in SUBCATEGORY_EXPECTED and not row.subcategory:
        result.warnings.append(
            Issue(
                STAGE,
                f"category '{row.category}' usually carries a subcategory",
                row=row_number,
                project_id=row.number,
            )
        )
    return row


def _check_consistency(
    project_id: str, rows: list[tuple[int, MetadataRow]], result: ParseResult
) -> None:
    first_number, first = rows[0]
    for row_number, row in rows[1:]:
        for name in CONSISTENCY_FIELDS:
            expected = getattr(first, name)
            actual = getattr(row, name)
            if actual is not None and actual != expected:
                result.warnings.append(
                    Issue(
                        STAGE,
                        f"{name} differs from row {first_number} ({actual!r} != {expected!r}); "
                        f"keeping row {first_number}",
                        row=row_number,
                        project_id=project_id,
                    )
                )


def _override(value: str | None, project_value: str | None) -> str | None:
    return value if value is not None and value != project_value else None


def _build_project(project_id: str, rows: list[tuple[int, MetadataRow]]) -> ProjectRecord:
    _, first = rows[0]
    seen: Counter[tuple[str, str | None]] = Counter()
    components = []
    for row_number, row in rows:
        key = (row.category, row.subcategory)
        seen[key] += 1
        components.append(
            ComponentRecord(
                id=component_id(project_id, row.category, row.subcategory, seen[key]),
                category=row.category,
                subcategory=row.subcategory,
                name=row.component_name,
                summary=_override(row.summary, first.summary),
                description=_override(row.description, first.description),
                scope=_override(row.scope, first.scope),
                row=row_number,
            )
        )

    return ProjectRecord(
        id=project_id,
        name=first.name,
        category=first.category,
        subcategory=first.subcategory,
        status=first.status,
        summary=first.summary,
        description=first.description,
        scope=first.scope,
        location=Location(zip_code=first.zip_code, neighborhood=first.neighborhood),
        timeline=Timeline(duration=first.duration),
        tags=first.tags,
        project_managers=tuple(ProjectManager(name=name) for name in first.project_managers),
        is_featured=first.is_featured,
        components=tuple(components),
        rows=tuple(number for number, _ in rows),
    )
