"""Pipeline orchestration.

Stages run strictly in order, each one finishing before the next starts::

    scan -> parse -> upload -> build -> validate -> write -> report

Fatal problems (unreadable metadata, missing asset root) stop the run early.
Everything else is recorded in the run summary, and the summary is produced
and written even when the run fails.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .builder import build_documents, validate_documents
from .csv_parser import ParseResult, parse_metadata_csv
from .errors import IngestError
from .logging_setup import stage_extra
from .models import DiscoveredFile, ProjectDocument, ProjectRecord
from .scanner import ScanResult, scan_assets
from .settings import Settings, get_settings
from .storage import ObjectStore
from .summary import RunSummary, SummaryBuilder
from .uploader import UploadOptions, UploadReport, upload_files
from .writer import DocumentStore, load_existing, write_documents

logger = logging.getLogger(__name__)

DOCUMENTS_FILENAME = "projects.json"


@dataclass(frozen=True, slots=True)
class RunOptions:
    assets_root: Path
    metadata_csv: Path
    dry_run: bool = False
    force: bool = False
    skip_existing: bool = False
    clear: bool = False
    allow_invalid_rows: bool = False
    project_ids: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    batch_size: int | None = None
    output_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.force and self.skip_existing:
            raise ValueError("force and skip_existing cannot be combined")
        if self.batch_size is not None and self.batch_size <= 0:
            raise ValueError("batch_size must be positive")


@dataclass(slots=True)
class RunResult:
    summary: RunSummary
    documents: list[ProjectDocument] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return self.summary.exit_code


class IngestRun:
    """One execution of the pipeline against injected storage handles."""

    def __init__(
        self,
        options: RunOptions,
        *,
        settings: Settings | None = None,
        object_store: ObjectStore | None = None,
        document_store: DocumentStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
        run_id: str | None = None,
    ):
        self.options = options
        self.settings = settings or get_settings()
        self.object_store = object_store
        self.document_store = document_store
        self.sleep = sleep
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.summary = SummaryBuilder(run_id=self.run_id, dry_run=options.dry_run)
        self.documents: list[ProjectDocument] = []

    def _log(self, stage: str, message: str, *args: object, level: int = logging.INFO) -> None:
        logger.log(level, message, *args, extra=stage_extra(self.run_id, stage))

    def execute(self) -> RunResult:
        stage = "scan"
        try:
            scan = self._scan()
            stage = "parse"
            records = self._parse()
            if records is None:
                return self._finish()

            stage = "upload"
            wanted = {record.id for record in records}
            files = [file for file in scan.files if file.project_id in wanted]
            report = self._upload(files)

            stage = "build"
            built = self._build(records, scan.files, report)

            stage = "validate"
            valid = self._validate(built)

            stage = "write"
            self._write(valid)
        except IngestError as exc:
            self._log(stage, "run_aborted error=%s", exc, level=logging.ERROR)
            self.summary.error(stage, str(exc))
        except Exception as exc:
            logger.exception("Unexpected failure during %s stage", stage)
            self.summary.error(stage, f"unexpected failure: {exc}")
            self._finish()
            raise
        return self._finish()

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def _scan(self) -> ScanResult:
        options = self.options
        self._log("scan", "stage_start root=%s", options.assets_root)
        scan = scan_assets(
            options.assets_root,
            categories=options.categories or None,
            project_ids=options.project_ids or None,
            settings=self.settings,
        )
        self.summary.scanned = len(scan.files)
        self.summary.add_warnings(scan.warnings)
        self.summary.add_errors(scan.errors)
        self.summary.stage_done("scan")
        return scan

    def _parse(self) -> list[ProjectRecord] | None:
        self._log("parse", "stage_start metadata=%s", self.options.metadata_csv)
        parsed: ParseResult = parse_metadata_csv(self.options.metadata_csv)
        self.summary.add_warnings(parsed.warnings)
        self.summary.add_errors(parsed.errors)
        self.summary.stage_done("parse")

        if parsed.errors and not self.options.allow_invalid_rows:
            self._log(
                "parse",
                "stopping before upload: %d invalid row(s); pass --allow-invalid-rows to continue",
                len(parsed.errors),
                level=logging.ERROR,
            )
            return None

        records = parsed.records
        if self.options.project_ids:
            known = {record.id for record in records}
            for project_id in self.options.project_ids:
                if project_id not in known:
                    self.summary.error(
                        "parse", "project not found in metadata", project_id=project_id
                    )
            wanted = set(self.options.project_ids)
            records = [record for record in records if record.id in wanted]
            if not records:
                self._log("parse", "no projects left after filtering", level=logging.ERROR)
                return None
        return records

    def _upload(self, files: list[DiscoveredFile]) -> UploadReport:
        options = self.options
        if self.settings.is_production and not options.dry_run:
            self._confirm_delay("upload", "uploading to PRODUCTION storage")

        upload_options = UploadOptions.from_settings(
            self.settings,
            force=options.force,
            dry_run=options.dry_run,
            batch_size=options.batch_size,
        )
        self._log(
            "upload",
            "stage_start files=%d batch_size=%d force=%s dry_run=%s",
            len(files),
            upload_options.batch_size,
            upload_options.force,
            upload_options.dry_run,
        )
        report = upload_files(files, upload_options, store=self.object_store, sleep=self.sleep)
        self.summary.uploaded = len(report.uploaded)
        self.summary.skipped = len(report.skipped)
        self.summary.failed = len(report.failed)
        self.summary.bytes_transferred = report.bytes_transferred
        self.summary.add_warnings(report.warnings)
        self.summary.add_errors(report.errors)
        self.summary.stage_done("upload")
        return report

    def _build(
        self,
        records: list[ProjectRecord],
        files: list[DiscoveredFile],
        report: UploadReport,
    ) -> list[ProjectDocument]:
        existing: dict[str, ProjectDocument] = {}
        if self.document_store is not None:
            try:
                existing = load_existing(self.document_store, [record.id for record in records])
            except Exception as exc:
                if self.options.categories:
                    raise IngestError(
                        f"unable to read stored documents for a category-scoped run: {exc}"
                    ) from exc
                self.summary.warning("build", f"unable to read stored documents: {exc}")

        result = build_documents(
            records,
            files,
            report,
            existing=existing,
            scanned_categories=self.options.categories or None,
        )
        self.summary.add_warnings(result.warnings)
        self.summary.stage_done("build")
        self._log("build", "stage_done documents=%d existing=%d", len(result.documents), len(existing))
        return result.documents

    def _validate(self, documents: list[ProjectDocument]) -> list[ProjectDocument]:
        valid, errors = validate_documents(documents)
        self.summary.add_errors(errors)
        self.summary.projects_built = len(valid)
        self.documents = valid
        self.summary.stage_done("validate")
        return valid

    def _write(self, documents: list[ProjectDocument]) -> None:
        options = self.options
        if options.clear:
            self._clear()

        try:
            written = write_documents(self.document_store, documents, dry_run=options.dry_run)
        except IngestError as exc:
            self.summary.error("write", str(exc))
            return
        self.summary.projects_written = written
        self.summary.stage_done("write")

    def _clear(self) -> None:
        if self.options.dry_run:
            self._log("write", "dry_run: would clear every stored project document", level=logging.WARNING)
            return
        if self.document_store is None:
            self.summary.error("write", "clear requested without a document store")
            return
        if self.settings.is_production:
            self._confirm_delay("write", "clearing ALL project documents in PRODUCTION")
        try:
            cleared = self.document_store.clear()
        except Exception as exc:
            self.summary.error("write", f"clear failed: {exc}")
            return
        self._log("write", "documents_cleared count=%d", cleared, level=logging.WARNING)

    def _confirm_delay(self, stage: str, action: str) -> None:
        delay = self.settings.PROD_CONFIRM_DELAY_SECONDS
        self._log(
            stage,
            "%s; continuing in %.0fs (Ctrl+C to abort)",
            action,
            delay,
            level=logging.WARNING,
        )
        self.sleep(delay)

    # ------------------------------------------------------------------
    # report
    # ------------------------------------------------------------------

    def _finish(self) -> RunResult:
        self.summary.stage_done("report")
        summary = self.summary.freeze()
        if self.options.output_dir is not None:
            self._write_outputs(summary, self.options.output_dir)
        summary.log()
        return RunResult(summary=summary, documents=list(self.documents))

    def _write_outputs(self, summary: RunSummary, directory: Path) -> None:
        try:
            summary_path = summary.write_json(directory)
            documents_path = directory / DOCUMENTS_FILENAME
            documents_path.write_text(
                json.dumps([document.to_row() for document in self.documents], indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error("report_write_failed dir=%s error=%s", directory, exc)
            return
        self._log("report", "report_written summary=%s documents=%s", summary_path, documents_path)


def run_pipeline(
    options: RunOptions,
    *,
    settings: Settings | None = None,
    object_store: ObjectStore | None = None,
    document_store: DocumentStore | None = None,
    sleep: Callable[[float], None] = time.sleep,
    run_id: str | None = None,
) -> RunResult:
    """Run every stage and return the frozen summary plus the validated documents."""
    return IngestRun(
        options,
        settings=settings,
        object_store=object_store,
        document_store=document_store,
        sleep=sleep,
        run_id=run_id,
    ).execute()
