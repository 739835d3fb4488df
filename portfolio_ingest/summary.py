"""Run summary: collected incrementally, frozen at the end of the run."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

import typer

from .errors import Issue

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "run_summary.json"


@dataclass(frozen=True, slots=True)
class RunSummary:
    run_id: str
    dry_run: bool
    scanned: int
    uploaded: int
    skipped: int
    failed: int
    bytes_transferred: int
    projects_built: int
    projects_written: int
    elapsed_seconds: float
    stages_completed: tuple[str, ...]
    warnings: tuple[Issue, ...]
    errors: tuple[Issue, ...]

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "success": self.success,
            "counts": {
                "scanned": self.scanned,
                "uploaded": self.uploaded,
                "skipped": self.skipped,
                "failed": self.failed,
                "bytes_transferred": self.bytes_transferred,
                "projects_built": self.projects_built,
                "projects_written": self.projects_written,
            },
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "stages_completed": list(self.stages_completed),
            "warnings": [issue.to_dict() for issue in self.warnings],
            "errors": [issue.to_dict() for issue in self.errors],
        }

    def write_json(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / SUMMARY_FILENAME
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return path

    def log(self) -> None:
        logger.info(
            "run_summary run_id=%s dry_run=%s scanned=%d uploaded=%d skipped=%d failed=%d "
            "bytes=%d built=%d written=%d warnings=%d errors=%d elapsed=%.2fs",
            self.run_id,
            self.dry_run,
            self.scanned,
            self.uploaded,
            self.skipped,
            self.failed,
            self.bytes_transferred,
            self.projects_built,
            self.projects_written,
            len(self.warnings),
            len(self.errors),
            self.elapsed_seconds,
        )


@dataclass(slots=True)
class SummaryBuilder:
    run_id: str
    dry_run: bool = False
    clock: Callable[[], float] = time.monotonic
    scanned: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    bytes_transferred: int = 0
    projects_built: int = 0
    projects_written: int = 0
    stages_completed: list[str] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)
    errors: list[Issue] = field(default_factory=list)
    started_at: float = field(init=False)

    def __post_init__(self) -> None:
        self.started_at = self.clock()

    def add_warnings(self, issues: Iterable[Issue]) -> None:
        self.warnings.extend(issues)

    def add_errors(self, issues: Iterable[Issue]) -> None:
        self.errors.extend(issues)

    def error(self, stage: str, message: str, **context: Any) -> None:
        self.errors.append(Issue(stage, message, **context))

    def warning(self, stage: str, message: str, **context: Any) -> None:
        self.warnings.append(Issue(stage, message, **context))

    def stage_done(self, stage: str) -> None:
        self.stages_completed.append(stage)

    def freeze(self) -> RunSummary:
        return RunSummary(
            run_id=self.run_id,
            dry_run=self.dry_run,
            scanned=self.scanned,
            uploaded=self.uploaded,
            skipped=self.skipped,
            failed=self.failed,
            bytes_transferred=self.bytes_transferred,
            projects_built=self.projects_built,
            projects_written=self.projects_written,
            elapsed_seconds=max(self.clock() - self.started_at, 0.0),
            stages_completed=tuple(self.stages_completed),
            warnings=tuple(self.warnings),
            errors=tuple(self.errors),
        )


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} GB"


def print_summary(summary: RunSummary) -> None:
    """Echo every warning and error with its context, then the totals."""
    typer.echo("")
    typer.echo("=" * 60)
    typer.echo(f"Ingest summary (run {summary.run_id}){' [DRY RUN]' if summary.dry_run else ''}")
    typer.echo("=" * 60)

    if summary.warnings:
        typer.echo(f"\nWarnings ({len(summary.warnings)}):")
        for issue in summary.warnings:
            typer.echo(f"  - {issue.format()}")
    if summary.errors:
        typer.echo(f"\nErrors ({len(summary.errors)}):")
        for issue in summary.errors:
            typer.echo(f"  - {issue.format()}")

    typer.echo("")
    typer.echo(f"  Files scanned:      {summary.scanned}")
    typer.echo(f"  Uploaded:           {summary.uploaded}")
    typer.echo(f"  Already present:    {summary.skipped}")
    typer.echo(f"  Failed:             {summary.failed}")
    typer.echo(f"  Bytes transferred:  {_format_bytes(summary.bytes_transferred)}")
    typer.echo(f"  Projects built:     {summary.projects_built}")
    typer.echo(f"  Projects written:   {summary.projects_written}")
    typer.echo(f"  Warnings / errors:  {len(summary.warnings)} / {len(summary.errors)}")
    typer.echo(f"  Elapsed:            {summary.elapsed_seconds:.2f}s")
    typer.echo(f"\n{'SUCCESS' if summary.success else 'FAILED'}")
