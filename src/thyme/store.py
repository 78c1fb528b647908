"""Store-access object shared by the scanner, linker, and thumbnail run."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from thyme.db import Photo, PhotoSet, dispose_engine, get_engine
from thyme.extractor import PhotoMetadata
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "store"})


@dataclass(frozen=True)
class ChainEntry:
    """Minimal projection of a photo used to rebuild sibling chains."""

    id: int
    set_id: int
    taken_at: str | None


class LibraryStore:
    """Persist sets and photos via SQLAlchemy.

    The store owns the engine and hands out short-lived sessions through
    :meth:`session`; callers never keep connections open between operations.
    """

    def __init__(self, target: str | Path) -> None:
        self._target = target
        self._engine: Engine = get_engine(target)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on any error."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        dispose_engine(self._target)

    # --- ingestion -------------------------------------------------------------

    def get_or_create_set(self, session: Session, name: str) -> tuple[PhotoSet, bool]:
        """Return the set named ``name``, creating it when missing."""

        existing = session.execute(select(PhotoSet).where(PhotoSet.name == name)).scalar_one_or_none()
        if existing is not None:
            return existing, False

        photo_set = PhotoSet(name=name)
        session.add(photo_set)
        session.flush()
        return photo_set, True

    def insert_photo_if_absent(
        self,
        session: Session,
        *,
        set_id: int,
        path: str,
        size: int,
        metadata: PhotoMetadata,
    ) -> tuple[Photo, bool]:
        """Insert a photo row keyed by ``path``; an existing row is returned untouched."""

        existing = session.execute(select(Photo).where(Photo.path == path)).scalar_one_or_none()
        if existing is not None:
            return existing, False

        capture = metadata.capture
        photo = Photo(
            set_id=set_id,
            path=path,
            size=size,
            width=metadata.width,
            height=metadata.height,
            aperture=capture.aperture,
            camera=capture.camera,
            exposure_comp=capture.exposure_comp,
            exposure_time=capture.exposure_time,
            flash=capture.flash,
            focal_length=capture.focal_length,
            focal_length_35=capture.focal_length_35,
            iso=capture.iso,
            lat=capture.lat,
            lens=capture.lens,
            lng=capture.lng,
            taken_at=capture.taken_at,
        )
        session.add(photo)
        session.flush()
        return photo, True

    # --- linking ---------------------------------------------------------------

    def photos_in_chain_order(self, session: Session) -> list[ChainEntry]:
        """Return every photo ordered by set, capture time (undated last), then id."""

        rows = session.execute(
            select(Photo.id, Photo.set_id, Photo.taken_at).order_by(
                Photo.set_id,
                Photo.taken_at.is_(None),
                Photo.taken_at,
                Photo.id,
            )
        )
        return [ChainEntry(id=row.id, set_id=row.set_id, taken_at=row.taken_at) for row in rows]

    def clear_links(self, session: Session) -> None:
        session.execute(
            update(Photo)
            .where((Photo.prev_photo_id.is_not(None)) | (Photo.next_photo_id.is_not(None)))
            .values(prev_photo_id=None, next_photo_id=None)
        )

    def link_siblings(self, session: Session, previous_id: int, next_id: int) -> None:
        session.execute(update(Photo).where(Photo.id == previous_id).values(next_photo_id=next_id))
        session.execute(update(Photo).where(Photo.id == next_id).values(prev_photo_id=previous_id))

    def set_ids(self, session: Session) -> list[int]:
        return list(session.execute(select(PhotoSet.id).order_by(PhotoSet.id)).scalars())

    def update_set_aggregates(
        self,
        session: Session,
        set_id: int,
        *,
        photos_count: int,
        taken_at: str | None,
        thumb_photo_id: int | None,
    ) -> None:
        session.execute(
            update(PhotoSet)
            .where(PhotoSet.id == set_id)
            .values(photos_count=photos_count, taken_at=taken_at, thumb_photo_id=thumb_photo_id)
        )

    # --- thumbnail input -------------------------------------------------------

    def count_photos(self) -> int:
        with self.session() as session:
            return int(session.execute(select(func.count()).select_from(Photo)).scalar_one())

    def iter_thumbnail_paths(self, batch_size: int = 500) -> Iterator[str]:
        """Stream photo paths, most recently captured sets first, oldest photo first within a set."""

        stmt = (
            select(Photo.path)
            .join(PhotoSet, Photo.set_id == PhotoSet.id)
            .order_by(
                PhotoSet.taken_at.is_(None),
                PhotoSet.taken_at.desc(),
                PhotoSet.id,
                Photo.taken_at.is_(None),
                Photo.taken_at,
                Photo.id,
            )
            .execution_options(yield_per=batch_size)
        )
        with self.session() as session:
            for path in session.execute(stmt).scalars():
                yield path


__all__ = ["ChainEntry", "LibraryStore"]
