"""Library synchronization and thumbnail derivation orchestration."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from thyme.config import Settings, load_settings
from thyme.errors import PipelineError
from thyme.extractor import decode
from thyme.linker import Linker, LinkReport
from thyme.scanner import Decoder, Scanner, ScanReport
from thyme.store import LibraryStore
from thyme.thumbnailing import (
    Deriver,
    PillowDeriver,
    SizeClass,
    SizeSpec,
    ThumbnailCache,
    VipsThumbnailDeriver,
)
from thyme.workers import DerivationPool, PoolReport
from utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class SyncReport:
    scan: ScanReport
    link: LinkReport


def open_store(target: str | Path) -> LibraryStore:
    """Open the library store, turning connection failures into :class:`PipelineError`."""

    try:
        return LibraryStore(target)
    except (SQLAlchemyError, OSError) as exc:
        LOGGER.error("library_store_unavailable", extra={"target": str(target), "error": str(exc)})
        raise PipelineError(f"library database {target} is unavailable: {exc}") from exc


def build_deriver(settings: Settings) -> Deriver:
    """Return the derivation backend named by ``thumbnails.backend``."""

    cfg = settings.thumbnails
    if cfg.backend == "vips":
        return VipsThumbnailDeriver(binary=cfg.vips_binary, interpolator=cfg.interpolator)
    if cfg.backend == "pillow":
        return PillowDeriver()
    raise PipelineError(f"unknown thumbnail backend {cfg.backend!r}")


def build_size_specs(settings: Settings) -> dict[SizeClass, SizeSpec]:
    cfg = settings.thumbnails
    return {
        SizeClass.BIG: SizeSpec(max_dimension=cfg.big_size, crop=False),
        SizeClass.SMALL: SizeSpec(max_dimension=cfg.small_size, crop=True),
    }


class LibraryPipeline:
    """Run the scan/link pass and the thumbnail pass against one library store."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: LibraryStore | None = None,
        decoder: Decoder = decode,
        deriver: Deriver | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Optional pre-loaded Settings instance. When omitted,
                configuration is loaded from ``config/settings.yaml``.
            store: Store-access object; opened from ``databases.library_url``
                when omitted.
            decoder: Metadata extractor used by the scanner.
            deriver: Thumbnail backend; chosen from ``thumbnails.backend`` when omitted.
        """

        self._settings = settings or load_settings()
        self._store = store or open_store(self._settings.databases.library_url)
        self._decoder = decoder
        self._deriver = deriver
        self._logger = get_logger(__name__, extra={"component": "pipeline"})

    @property
    def store(self) -> LibraryStore:
        return self._store

    def sync(self, roots: Sequence[Path]) -> SyncReport:
        """Ingest ``roots`` and then rebuild chains and set aggregates.

        A :class:`thyme.linker.LinkError` from either linker phase propagates
        unchanged; store errors during the scan become :class:`PipelineError`.
        """

        library_cfg = self._settings.library
        scanner = Scanner(
            self._store,
            decoder=self._decoder,
            content_types=library_cfg.content_types,
            commit_interval=library_cfg.commit_interval,
        )
        try:
            scan_report = scanner.scan(roots)
        except SQLAlchemyError as exc:
            self._logger.error("sync_scan_failed", extra={"error": str(exc)})
            raise PipelineError(f"scanning failed: {exc}") from exc

        link_report = Linker(self._store).run()
        self._logger.info(
            "sync_complete",
            extra={
                "created_photos": scan_report.created_photos,
                "skipped": scan_report.skipped,
                "links": link_report.links,
                "sets": link_report.sets,
            },
        )
        return SyncReport(scan=scan_report, link=link_report)

    def thumbnail_cache(self, output_root: Path | None = None) -> ThumbnailCache:
        """Create the artifacts directory and return a cache rooted there."""

        cfg = self._settings.thumbnails
        root = (output_root or Path(cfg.root)).expanduser().resolve()
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._logger.error("thumbnail_root_error", extra={"root": str(root), "error": str(exc)})
            raise PipelineError(f"cannot create thumbnails directory {root}: {exc}") from exc

        deriver = self._deriver or build_deriver(self._settings)
        return ThumbnailCache(root, deriver, specs=build_size_specs(self._settings), quality=cfg.quality)

    def generate_thumbnails(
        self,
        output_root: Path | None = None,
        *,
        workers: int | None = None,
        show_progress: bool = True,
    ) -> PoolReport:
        """Ensure big and small thumbnails for every photo in the library."""

        cache = self.thumbnail_cache(output_root)
        worker_count = workers or self._settings.thumbnails.workers

        try:
            total = self._store.count_photos()
        except SQLAlchemyError as exc:
            raise PipelineError(f"cannot count photos: {exc}") from exc

        self._logger.info(
            "thumbnails_start",
            extra={"root": str(cache.root), "photos": total, "workers": worker_count},
        )
        pool = DerivationPool(cache, workers=worker_count, show_progress=show_progress)
        try:
            report = pool.run(self._store.iter_thumbnail_paths(), total=total)
        except SQLAlchemyError as exc:
            raise PipelineError(f"reading photo paths failed: {exc}") from exc

        self._logger.info("thumbnails_complete", extra={"processed": report.processed, "failed": report.failed})
        return report


__all__ = [
    "LibraryPipeline",
    "PipelineError",
    "SyncReport",
    "build_deriver",
    "build_size_specs",
    "open_store",
]
