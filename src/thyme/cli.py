"""Command-line entrypoint for scanning the library and generating thumbnails."""

from __future__ import annotations

from pathlib import Path
from typing import NoReturn, Optional

import typer

from thyme.config import THUMBNAIL_BACKENDS, Settings, load_settings
from thyme.db_helpers import sqlite_path_from_target
from thyme.errors import PipelineError
from thyme.pipeline import LibraryPipeline, open_store
from utils.logging import get_logger

LOGGER = get_logger(__name__)

app = typer.Typer(help="Browse-ready indexing for a personal photo library.", no_args_is_help=True)


def _load(settings_path: Optional[Path], db: Optional[str]) -> Settings:
    settings = load_settings(settings_path)
    if db:
        settings.databases.library_url = db
    return settings


def _fail(exc: PipelineError) -> NoReturn:
    typer.secho(f"error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


SettingsOption = typer.Option(None, "--settings", help="Path to settings.yaml; defaults to config/settings.yaml.")
DatabaseOption = typer.Option(None, "--db", help="Library database URL or path; overrides databases.library_url.")


@app.command("scan")
def scan(
    roots: list[Path] = typer.Argument(..., exists=True, readable=True, help="Directories to import."),
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DatabaseOption,
) -> None:
    """Import photo metadata and rebuild set ordering."""

    settings = _load(settings_path, db)
    try:
        report = LibraryPipeline(settings=settings).sync(roots)
    except PipelineError as exc:
        _fail(exc)

    typer.echo(
        f"{report.scan.created_photos} new photos in {report.scan.created_sets} new sets, "
        f"{report.scan.skipped} skipped; {report.link.sets} sets linked"
    )


@app.command("thumbs")
def thumbs(
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", file_okay=False, help="Thumbnails directory; defaults to thumbnails.root."
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Concurrent derivation workers."),
    backend: Optional[str] = typer.Option(None, "--backend", help="Derivation backend: pillow or vips."),
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DatabaseOption,
) -> None:
    """Generate big and small thumbnails for every photo in the library."""

    settings = _load(settings_path, db)
    if backend is not None:
        if backend not in THUMBNAIL_BACKENDS:
            raise typer.BadParameter(f"expected one of {sorted(THUMBNAIL_BACKENDS)}", param_hint="--backend")
        settings.thumbnails.backend = backend

    try:
        report = LibraryPipeline(settings=settings).generate_thumbnails(output, workers=workers)
    except PipelineError as exc:
        _fail(exc)

    typer.echo(f"{report.processed} photos processed, {report.failed} with failures")


@app.command("init")
def init(
    settings_path: Optional[Path] = SettingsOption,
    db: Optional[str] = DatabaseOption,
) -> None:
    """Create the library database schema and the thumbnails directory."""

    settings = _load(settings_path, db)
    target = settings.databases.library_url
    try:
        store = open_store(target)
        LibraryPipeline(settings=settings, store=store).thumbnail_cache()
    except PipelineError as exc:
        _fail(exc)

    LOGGER.info(
        "init_complete",
        extra={"database": str(sqlite_path_from_target(target) or target), "thumbnails": settings.thumbnails.root},
    )


def main() -> None:
    """Entrypoint used by the ``thyme`` console script."""

    app()


if __name__ == "__main__":
    main()


__all__ = ["app", "main"]
