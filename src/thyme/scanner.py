"""Filesystem scanner that ingests photo metadata into the library store."""

from __future__ import annotations

import mimetypes
import os
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import IntegrityError

from thyme.config import DEFAULT_CONTENT_TYPES
from thyme.extractor import ExtractionError, PhotoMetadata, decode
from thyme.store import LibraryStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "scanner"})

Decoder = Callable[[Path], PhotoMetadata]


@dataclass(frozen=True)
class FileInfo:
    """Lightweight file metadata for scanning results."""

    path: Path
    size_bytes: int
    mtime: float


@dataclass
class ScanReport:
    """Counters for one scanner pass."""

    seen: int = 0
    created_sets: int = 0
    created_photos: int = 0
    skipped: int = 0


def is_photo(path: Path, content_types: Iterable[str] = DEFAULT_CONTENT_TYPES) -> bool:
    """Return whether ``path`` names a supported raster photo by its content type."""

    content_type, _ = mimetypes.guess_type(path.name)
    return content_type is not None and content_type in set(content_types)


def set_name_for(path: Path) -> str:
    """Natural key of the set owning ``path``: its parent directory's name."""

    return path.parent.name


def scan_roots(roots: Sequence[Path], content_types: Iterable[str] | None = None) -> Iterator[FileInfo]:
    """Recursively scan library roots and yield photo file descriptors.

    Args:
        roots: Directories to scan. A root may also be a single photo file.
        content_types: Eligible content types; defaults to :data:`DEFAULT_CONTENT_TYPES`.

    Yields:
        FileInfo instances for each regular file with an eligible content type,
        in sorted path order per root.
    """

    allowed = frozenset(content_types or DEFAULT_CONTENT_TYPES)

    for root in roots:
        if not root.exists():
            LOGGER.warning("scan_root_missing", extra={"root": str(root)})
            continue

        candidates = [root] if root.is_file() else sorted(root.rglob("*"))
        for path in candidates:
            try:
                if not path.is_file() or not is_photo(path, allowed):
                    continue
                stat = path.stat()
            except OSError as exc:
                LOGGER.warning("scan_path_unreadable", extra={"path": str(path), "error": str(exc)})
                continue

            yield FileInfo(path=path, size_bytes=stat.st_size, mtime=stat.st_mtime)


class Scanner:
    """Walk library roots and upsert each photo and its set.

    Existing photos are never updated: the first ingestion of a path wins, so
    re-scanning an unchanged tree leaves the store untouched. Chain links and
    set aggregates are left to :class:`thyme.linker.Linker`.
    """

    def __init__(
        self,
        store: LibraryStore,
        *,
        decoder: Decoder = decode,
        content_types: Iterable[str] | None = None,
        commit_interval: int = 500,
    ) -> None:
        self._store = store
        self._decoder = decoder
        self._content_types = frozenset(content_types or DEFAULT_CONTENT_TYPES)
        self._commit_interval = max(1, int(commit_interval))

    def scan(self, roots: Sequence[Path]) -> ScanReport:
        """Ingest every eligible file under ``roots`` and return pass counters."""

        report = ScanReport()
        LOGGER.info("scan_start", extra={"roots": [str(root) for root in roots]})

        with self._store.session() as session:
            for file_info in scan_roots(roots, self._content_types):
                report.seen += 1
                path = Path(os.path.abspath(file_info.path))

                try:
                    metadata = self._decoder(path)
                except ExtractionError as exc:
                    report.skipped += 1
                    LOGGER.warning("photo_skipped", extra={"path": str(path), "error": str(exc)})
                    continue

                try:
                    with session.begin_nested():
                        photo_set, set_created = self._store.get_or_create_set(session, set_name_for(path))
                        photo, photo_created = self._store.insert_photo_if_absent(
                            session,
                            set_id=photo_set.id,
                            path=str(path),
                            size=file_info.size_bytes,
                            metadata=metadata,
                        )
                except IntegrityError as exc:
                    report.skipped += 1
                    LOGGER.warning("photo_store_conflict", extra={"path": str(path), "error": str(exc.orig)})
                    continue

                if set_created:
                    report.created_sets += 1
                    LOGGER.info("set_created", extra={"set_id": photo_set.id, "set_name": photo_set.name})
                if photo_created:
                    report.created_photos += 1
                    LOGGER.info("photo_created", extra={"photo_id": photo.id, "path": photo.path})

                if report.seen % self._commit_interval == 0:
                    session.commit()

        LOGGER.info(
            "scan_complete",
            extra={
                "seen": report.seen,
                "created_sets": report.created_sets,
                "created_photos": report.created_photos,
                "skipped": report.skipped,
            },
        )
        return report


__all__ = ["Decoder", "FileInfo", "ScanReport", "Scanner", "is_photo", "scan_roots", "set_name_for"]
