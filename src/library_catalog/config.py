"""Catalog configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import OrganizationMode


class CatalogConfig(BaseSettings):
    """All catalog configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Directories --
    db_path: Path = Path("/var/lib/library-catalog/catalog.db")
    cache_dir: Path = Path("/var/lib/library-catalog/cache")
    log_dir: Path = Path("/var/log/library-catalog")

    # -- Behavior --
    dry_run: bool = False
    verbose: bool = False
    log_level: str = "INFO"

    # -- Grouping --
    organization_mode: OrganizationMode = OrganizationMode.AUTO_DETECT
    folder_match_threshold: float = 0.6
    cluster_threshold: float = 0.7
    fileless_match_threshold: float = 0.85
    directory_match_threshold: float = 0.85

    # -- Moves --
    file_naming_pattern: str = "{authors}/<{series}/><{seriesIndex}. >{title}"
    event_drain_ms: int = 300  # watcher drain heuristic, not a guarantee

    # -- Parallel fingerprinting --
    fingerprint_workers: int = 4

    @property
    def images_dir(self) -> Path:
        """Root of per-book cover/thumbnail caches."""
        return self.cache_dir / "images"

    def book_cache_dir(self, book_id: int) -> Path:
        return self.images_dir / str(book_id)

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (
            self.db_path.parent,
            self.cache_dir,
            self.log_dir,
        ):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the catalog."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "catalog.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
