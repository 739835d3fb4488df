"""Idempotent, bounded-concurrency uploads of scanned files to object storage.

Projects are handled one at a time. For each project the uploader lists the
remote objects under ``projects/{slug}`` once, skips paths that already exist
(unless ``force``), and uploads the rest in batches of ``batch_size``. A batch
is fully awaited before the next one starts. Each upload is retried with
exponential backoff; a file that exhausts its attempts is reported as an error
without affecting the other files.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .batching import chunked
from .errors import ConfigurationError, Issue, UploadFailure
from .models import DiscoveredFile, UploadedFile
from .settings import Settings
from .storage import ObjectStore, content_type_for

logger = logging.getLogger(__name__)

STAGE = "upload"
DRY_RUN_URL_PREFIX = "[DRY RUN] "


@dataclass(frozen=True, slots=True)
class UploadOptions:
    force: bool = False
    dry_run: bool = False
    batch_size: int = 10
    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> "UploadOptions":
        values: dict[str, object] = {
            "batch_size": settings.UPLOAD_BATCH_SIZE,
            "max_attempts": settings.MAX_RETRY_ATTEMPTS,
            "base_delay": settings.RETRY_BASE_DELAY_SECONDS,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]


@dataclass(slots=True)
class UploadReport:
    uploaded: list[UploadedFile] = field(default_factory=list)
    skipped: list[UploadedFile] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    failed: list[DiscoveredFile] = field(default_factory=list)
    results: dict[Path, UploadedFile] = field(default_factory=dict)

    @property
    def bytes_transferred(self) -> int:
        return sum(item.size for item in self.uploaded)

    def result_for(self, file: DiscoveredFile) -> UploadedFile | None:
        return self.results.get(file.local_path)


def upload_files(
    files: Iterable[DiscoveredFile],
    options: UploadOptions,
    *,
    store: ObjectStore | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> UploadReport:
    """Upload ``files`` project by project and return per-file outcomes."""
    if store is None and not options.dry_run:
        raise ConfigurationError("an object store is required unless dry_run is enabled")

    report = UploadReport()
    if store is None:
        report.warnings.append(
            Issue(STAGE, "dry run without storage access; treating every file as new")
        )

    projects: dict[str, list[DiscoveredFile]] = {}
    for file in files:
        projects.setdefault(file.project_slug, []).append(file)

    claimed: dict[str, DiscoveredFile] = {}
    with ThreadPoolExecutor(max_workers=options.batch_size, thread_name_prefix="upload") as pool:
        for slug, project_files in projects.items():
            _upload_project(slug, project_files, options, store, sleep, pool, claimed, report)

    logger.info(
        "upload_summary uploaded=%d skipped=%d failed=%d bytes=%d dry_run=%s",
        len(report.uploaded),
        len(report.skipped),
        len(report.failed),
        report.bytes_transferred,
        options.dry_run,
    )
    return report


def _upload_project(
    slug: str,
    files: list[DiscoveredFile],
    options: UploadOptions,
    store: ObjectStore | None,
    sleep: Callable[[float], None],
    pool: ThreadPoolExecutor,
    claimed: dict[str, DiscoveredFile],
    report: UploadReport,
) -> None:
    project_id = files[0].project_id
    ordered = [file for file in files if file.kind == "image"]
    ordered += [file for file in files if file.kind == "document"]

    try:
        existing = _existing_paths(slug, options, store, sleep)
    except Exception as exc:
        logger.error("storage_list_failed project=%s error=%s", project_id, exc)
        report.errors.append(
            Issue(STAGE, f"unable to list existing objects: {exc}", project_id=project_id)
        )
        report.failed.extend(ordered)
        return

    pending: list[DiscoveredFile] = []
    for file in ordered:
        path = file.storage_path
        first = claimed.get(path)
        if first is not None:
            logger.error("storage_path_collision path=%s first=%s", path, first.relative_path)
            report.errors.append(
                Issue(
                    STAGE,
                    f"storage path {path} already claimed by {first.relative_path}; not uploaded",
                    project_id=project_id,
                    path=file.relative_path,
                )
            )
            report.failed.append(file)
            continue
        claimed[path] = file
        if path in existing and not options.force:
            reference = _reference(file, store, newly_uploaded=False)
            report.skipped.append(reference)
            report.results[file.local_path] = reference
            continue
        pending.append(file)

    logger.info(
        "upload_project project=%s files=%d existing=%d pending=%d",
        project_id,
        len(ordered),
        len(ordered) - len(pending),
        len(pending),
    )

    for batch in chunked(pending, options.batch_size):
        futures = [pool.submit(_upload_one, file, options, store, sleep) for file in batch]
        for file, future in zip(batch, futures):
            try:
                uploaded = future.result()
            except UploadFailure as exc:
                logger.error("upload_failed path=%s attempts=%d", file.storage_path, exc.attempts)
                report.errors.append(
                    Issue(STAGE, str(exc), project_id=project_id, path=file.relative_path)
                )
                report.failed.append(file)
                continue
            report.uploaded.append(uploaded)
            report.results[file.local_path] = uploaded


def _existing_paths(
    slug: str,
    options: UploadOptions,
    store: ObjectStore | None,
    sleep: Callable[[float], None],
) -> set[str]:
    if store is None:
        return set()
    retryer = _retrying(options, sleep)
    return retryer(store.list_paths, f"projects/{slug}")


def _retrying(options: UploadOptions, sleep: Callable[[float], None]) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(options.max_attempts),
        wait=wait_exponential(multiplier=options.base_delay),
        retry=retry_if_exception_type(Exception),
        sleep=sleep,
        reraise=True,
    )


def _reference(file: DiscoveredFile, store: ObjectStore | None, *, newly_uploaded: bool) -> UploadedFile:
    path = file.storage_path
    url = store.public_url(path) if store is not None else f"{DRY_RUN_URL_PREFIX}{path}"
    return UploadedFile(
        local_path=file.local_path,
        storage_path=path,
        url=url,
        size=file.size,
        content_type=content_type_for(file.extension),
        newly_uploaded=newly_uploaded,
    )


def _upload_one(
    file: DiscoveredFile,
    options: UploadOptions,
    store: ObjectStore | None,
    sleep: Callable[[float], None],
) -> UploadedFile:
    path = file.storage_path
    content_type = content_type_for(file.extension)

    if options.dry_run or store is None:
        logger.debug("dry_run_upload path=%s bytes=%d", path, file.size)
        return UploadedFile(
            local_path=file.local_path,
            storage_path=path,
            url=f"{DRY_RUN_URL_PREFIX}{path}",
            size=file.size,
            content_type=content_type,
            newly_uploaded=True,
        )

    try:
        data = file.local_path.read_bytes()
    except OSError as exc:
        raise UploadFailure(path, 0, exc) from exc

    attempts = 0

    def _attempt() -> None:
        nonlocal attempts
        attempts += 1
        if attempts > 1:
            logger.warning("upload_retry path=%s attempt=%d", path, attempts)
        store.upload(path, data, content_type, upsert=options.force)

    try:
        _retrying(options, sleep)(_attempt)
    except Exception as exc:
        raise UploadFailure(path, attempts, exc) from exc

    logger.debug("uploaded path=%s bytes=%d attempts=%d", path, len(data), attempts)
    return _reference(file, store, newly_uploaded=True)
