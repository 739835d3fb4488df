"""Command line entry point: ``portfolio-ingest run|inventory|ensure-bucket``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from .errors import ConfigurationError, IngestError
from .logging_setup import configure_logging
from .orchestrator import RunOptions, run_pipeline
from .scanner import list_projects
from .settings import Settings, get_settings, normalize_mode
from .storage import SupabaseObjectStore, ensure_bucket
from .summary import print_summary
from .supabase_client import create_supabase_client
from .writer import SupabaseDocumentStore

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Upload project photos/documents and write project records")


def _split_csv(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _load_settings(env: Optional[str], verbose: bool) -> Settings:
    try:
        settings = get_settings()
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid configuration: {exc}") from exc
    if env:
        settings = settings.model_copy(update={"SUPABASE_MODE": normalize_mode(env)})
    configure_logging("DEBUG" if verbose else settings.LOG_LEVEL)
    return settings


def _build_stores(
    settings: Settings, *, dry_run: bool
) -> tuple[SupabaseObjectStore | None, SupabaseDocumentStore | None]:
    """Supabase-backed stores; dry runs without credentials work fully offline."""
    try:
        client = create_supabase_client(settings)
    except ConfigurationError:
        if dry_run:
            logger.warning("No Supabase credentials; dry run will not compare against remote state")
            return None, None
        raise
    object_store = SupabaseObjectStore(client, settings.STORAGE_BUCKET)
    document_store = SupabaseDocumentStore(
        client,
        settings.PROJECTS_TABLE,
        chunk_size=settings.WRITE_CHUNK_SIZE,
        max_attempts=settings.MAX_RETRY_ATTEMPTS,
    )
    return object_store, document_store


@app.command()
def run(
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute everything, write nothing"),
    force: bool = typer.Option(False, "--force", help="Re-upload files already in storage"),
    project: Optional[str] = typer.Option(
        None, "--project", help="Comma-separated project numbers to process"
    ),
    clear: bool = typer.Option(
        False, "--clear", help="Delete ALL stored project documents before writing"
    ),
    skip_existing: bool = typer.Option(
        False, "--skip-existing", help="Skip files already in storage (default behaviour)"
    ),
    category: Optional[str] = typer.Option(
        None, "--category", help="Comma-separated category folders to scan"
    ),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", min=1, help="Concurrent uploads per batch"
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", help="Directory for run_summary.json and projects.json"
    ),
    allow_invalid_rows: bool = typer.Option(
        False, "--allow-invalid-rows", help="Continue past metadata rows that fail validation"
    ),
    assets_root: Optional[Path] = typer.Option(None, "--assets-root", help="Asset tree root"),
    metadata: Optional[Path] = typer.Option(None, "--metadata", help="Metadata CSV path"),
    env: Optional[str] = typer.Option(None, "--env", help="Target environment (dev/prod)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Scan, upload, build and write project documents."""
    try:
        settings = _load_settings(env, verbose)
        try:
            options = RunOptions(
                assets_root=assets_root or settings.ASSETS_ROOT,
                metadata_csv=metadata or settings.metadata_csv_path,
                dry_run=dry_run,
                force=force,
                skip_existing=skip_existing,
                clear=clear,
                allow_invalid_rows=allow_invalid_rows,
                project_ids=_split_csv(project),
                categories=_split_csv(category),
                batch_size=batch_size,
                output_dir=output,
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc

        object_store, document_store = _build_stores(settings, dry_run=dry_run)
        result = run_pipeline(
            options,
            settings=settings,
            object_store=object_store,
            document_store=document_store,
        )
    except typer.BadParameter as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=2) from exc
    except ConfigurationError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=1) from exc
    except Exception as exc:
        logger.exception("Ingest run failed")
        typer.echo(f"❌ Ingest failed: {exc}")
        raise typer.Exit(code=1) from exc

    print_summary(result.summary)
    raise typer.Exit(code=result.exit_code)


def _project_sort_key(number: str) -> tuple[int, int, str]:
    return (0, int(number), number) if number.isdigit() else (1, 0, number)


@app.command()
def inventory(
    assets_root: Optional[Path] = typer.Option(None, "--assets-root", help="Asset tree root"),
) -> None:
    """Print project number, name and category as TSV for seeding the metadata sheet."""
    settings = _load_settings(None, False)
    root = assets_root or settings.ASSETS_ROOT
    try:
        projects, warnings = list_projects(root, settings=settings)
    except IngestError as exc:
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=1) from exc

    typer.echo("number\tname\tcategory")
    for location in sorted(projects, key=lambda item: _project_sort_key(item.folder.id)):
        category = location.category
        if location.subcategory:
            category = f"{category} ({location.subcategory})"
        typer.echo(f"{location.folder.id}\t{location.folder.display_name}\t{category}")
    for issue in warnings:
        typer.echo(f"# warning: {issue.format()}", err=True)


@app.command("ensure-bucket")
def ensure_bucket_command(
    env: Optional[str] = typer.Option(None, "--env", help="Target environment (dev/prod)"),
    private: bool = typer.Option(False, "--private", help="Create the bucket as private"),
) -> None:
    """Create the configured storage bucket if it does not exist."""
    settings = _load_settings(env, False)
    try:
        client = create_supabase_client(settings)
        created = ensure_bucket(client, settings.STORAGE_BUCKET, public=not private)
    except Exception as exc:
        logger.exception("ensure-bucket failed")
        typer.echo(f"❌ {exc}")
        raise typer.Exit(code=1) from exc
    if created:
        typer.echo(f"Created bucket: {settings.STORAGE_BUCKET}")
    else:
        typer.echo(f"Bucket already present: {settings.STORAGE_BUCKET}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
