"""CLI entry point for the library catalog."""

import os
from pathlib import Path, PurePosixPath

import click
from loguru import logger

from .catalog_db import CatalogDB
from .config import CatalogConfig
from .errors import CatalogError
from .models import BookFileType, OrganizationMode
from .ops.move import FileMover
from .ops.verify import print_summary, verify_file_hashes
from .runner import ScanRunner

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_env_file(env_file: Path) -> None:
    """Load a shell-style .env file into os.environ (without overriding)."""
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        # Skip bash variable expansions like ${VAR:-default}
        if "${" in value:
            continue
        # Don't override existing env vars (CLI > env > file)
        if key not in os.environ:
            os.environ[key] = value


def _parse_formats(value: str | None) -> list[BookFileType]:
    if not value:
        return []
    try:
        return [BookFileType(v.strip().lower()) for v in value.split(",") if v.strip()]
    except ValueError as e:
        raise click.UsageError(f"Unknown format in '{value}': {e}") from e


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "--db-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Catalog database file (overrides DB_PATH).",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    db_path: Path | None,
    config_file: str | None,
) -> None:
    """Scan, reconcile, and organize book, comic, and audiobook libraries."""
    # Load .env into environment before CatalogConfig reads env vars
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")

    # Pass CLI flags as kwargs to avoid env pollution
    config_kwargs: dict[str, object] = {"verbose": verbose}
    if verbose:
        config_kwargs["log_level"] = "DEBUG"
    if db_path is not None:
        config_kwargs["db_path"] = db_path

    config = CatalogConfig(**config_kwargs)  # type: ignore[arg-type]
    config.setup_logging()
    ctx.obj = config


def _db(config: CatalogConfig) -> CatalogDB:
    return CatalogDB(config.db_path)


@main.command("add-library")
@click.argument("name")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option(
    "--mode",
    type=click.Choice([m.value for m in OrganizationMode]),
    default=None,
    help="Grouping mode (default from ORGANIZATION_MODE).",
)
@click.option("--pattern", default="", help="File naming pattern for moves.")
@click.option("--formats", default=None, help="Comma-separated allowed formats.")
@click.option("--priority", default=None, help="Comma-separated primary-format priority.")
@click.option("--watch", is_flag=True, help="Mark the library as watched.")
@click.pass_obj
def add_library(
    config: CatalogConfig,
    name: str,
    paths: tuple[Path, ...],
    mode: str | None,
    pattern: str,
    formats: str | None,
    priority: str | None,
    watch: bool,
) -> None:
    """Register a library with one or more root PATHS."""
    db = _db(config)
    try:
        library = db.add_library(
            name,
            [p.resolve() for p in paths],
            organization_mode=OrganizationMode(mode) if mode else config.organization_mode,
            file_naming_pattern=pattern,
            format_priority=_parse_formats(priority),
            allowed_formats=_parse_formats(formats),
            watch=watch,
        )
    except CatalogError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Library {library.id} '{library.name}' with {len(library.paths)} roots")


@main.command()
@click.argument("library_id", type=int)
@click.pass_obj
def scan(config: CatalogConfig, library_id: int) -> None:
    """Initial scan of a library."""
    runner = ScanRunner(config)
    try:
        result = runner.process_library(library_id)
    except CatalogError as e:
        raise click.ClickException(str(e)) from e
    click.echo(
        f"Discovered {result.discovered} entries: {result.books_created} books created, "
        f"{result.failed} failed"
    )


@main.command()
@click.argument("library_id", type=int)
@click.pass_obj
def rescan(config: CatalogConfig, library_id: int) -> None:
    """Reconcile a library with what is on disk now."""
    runner = ScanRunner(config)
    try:
        result = runner.rescan_library(library_id)
    except CatalogError as e:
        raise click.ClickException(str(e)) from e
    click.echo(
        f"Discovered {result.discovered} entries: {result.books_created} created, "
        f"{result.files_attached} attached, {result.books_deleted} books and "
        f"{result.files_deleted} files removed, {result.failed} failed"
    )


@main.command()
@click.argument("book_ids", nargs=-1, required=True, type=int)
@click.option(
    "--target-path-id",
    type=int,
    default=None,
    help="Move into this library root instead of the current one.",
)
@click.pass_obj
def move(config: CatalogConfig, book_ids: tuple[int, ...], target_path_id: int | None) -> None:
    """Move books' files to match the library naming pattern."""
    mover = FileMover(_db(config), config)
    results = mover.move_books(book_ids, target_library_path_id=target_path_id)
    for book_id, result in results.items():
        if result.moved:
            click.echo(f"Book {book_id}: {PurePosixPath(result.new_sub_path, result.new_file_name)}")
        else:
            click.echo(f"Book {book_id}: not moved")


@main.command()
@click.argument("library_id", type=int)
@click.option("--dry-run", is_flag=True, help="Report mismatches without updating hashes.")
@click.option("--overwrite-initial", is_flag=True, help="Also reset initial hashes.")
@click.pass_obj
def verify(
    config: CatalogConfig,
    library_id: int,
    dry_run: bool,
    overwrite_initial: bool,
) -> None:
    """Re-fingerprint a library's files and record changes."""
    db = _db(config)
    try:
        summary = verify_file_hashes(
            db,
            library_id,
            dry_run=dry_run or config.dry_run,
            overwrite_initial=overwrite_initial,
        )
    except CatalogError as e:
        raise click.ClickException(str(e)) from e
    print_summary(summary)
