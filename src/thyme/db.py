"""SQLAlchemy schema definitions and engine management for the library store."""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Any

from sqlalchemy import Float, ForeignKey, Integer, String, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from thyme.db_helpers import normalize_database_url
from utils.logging import get_logger

LOGGER = get_logger(__name__)

TIMESTAMP_LENGTH = 19  # "YYYY-MM-DD HH:MM:SS"


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class PhotoSet(Base):
    """A named group of photos, keyed by the directory that holds them.

    ``photos_count``, ``taken_at`` and ``thumb_photo_id`` are derived columns
    written only by the linker.
    """

    __tablename__ = "sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # No FOREIGN KEY here: sets -> photos -> sets would be a table cycle.
    thumb_photo_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)
    name: Mapped[str] = mapped_column(String(4096), nullable=False, unique=True)
    photos_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    taken_at: Mapped[str | None] = mapped_column(String(TIMESTAMP_LENGTH), nullable=True)

    def __repr__(self) -> str:
        return f"PhotoSet(id={self.id!r}, name={self.name!r})"


class Photo(Base):
    """One ingested image file and its capture metadata."""

    __tablename__ = "photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    set_id: Mapped[int] = mapped_column(Integer, ForeignKey("sets.id"), nullable=False, index=True)
    prev_photo_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("photos.id"), nullable=True, unique=True
    )
    next_photo_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("photos.id"), nullable=True, unique=True
    )
    path: Mapped[str] = mapped_column(String(4096), nullable=False, unique=True)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    aperture: Mapped[float | None] = mapped_column(Float, nullable=True)
    camera: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    exposure_comp: Mapped[float | None] = mapped_column(Float, nullable=True)
    exposure_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    flash: Mapped[str | None] = mapped_column(String(51), nullable=True)
    focal_length: Mapped[float | None] = mapped_column(Float, nullable=True)
    focal_length_35: Mapped[int | None] = mapped_column(Integer, nullable=True)
    iso: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lens: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    taken_at: Mapped[str | None] = mapped_column(String(TIMESTAMP_LENGTH), nullable=True)

    def __repr__(self) -> str:
        return f"Photo(id={self.id!r}, set_id={self.set_id!r}, path={self.path!r})"


_ENGINE_CACHE: dict[str, Engine] = {}
_ENGINE_LOCK = Lock()


def _ensure_parent_directory(path: Path) -> None:
    """Ensure the parent directory for a database file exists."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error("db_parent_directory_error", extra={"path": str(path), "error": str(exc)})
        raise


def get_engine(target: str | Path) -> Engine:
    """Return a cached SQLAlchemy engine for the provided target, creating schema if needed."""

    normalized = normalize_database_url(target)
    engine = _ENGINE_CACHE.get(normalized)
    if engine is not None:
        return engine

    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.get(normalized)
        if engine is not None:
            return engine

        sa_url = make_url(normalized)
        is_sqlite = sa_url.drivername.startswith("sqlite")

        engine_kwargs: dict[str, object] = {}
        if is_sqlite:
            if sa_url.database and sa_url.database not in {":memory:"}:
                _ensure_parent_directory(Path(sa_url.database))
            engine_kwargs["connect_args"] = {"timeout": 30.0}
        else:
            engine_kwargs["pool_pre_ping"] = True

        engine = create_engine(normalized, **engine_kwargs)

        if is_sqlite:

            @event.listens_for(engine, "connect")
            def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
                """Configure SQLite for a single writer with concurrent readers."""

                # Hand transaction control to SQLAlchemy so SAVEPOINTs nest
                # inside a real BEGIN instead of pysqlite's implicit one.
                dbapi_connection.isolation_level = None
                cursor = dbapi_connection.cursor()
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA busy_timeout = 30000")
                finally:
                    cursor.close()

            @event.listens_for(engine, "begin")
            def _begin_sqlite_transaction(conn: Any) -> None:
                conn.exec_driver_sql("BEGIN")

        try:
            Base.metadata.create_all(engine)
        except OperationalError as exc:
            # Another process may create the tables between SQLite's existence
            # check and the CREATE TABLE statement.
            if "already exists" in str(exc).lower():
                LOGGER.info("db_create_all_table_exists_race", extra={"target": normalized, "error": str(exc)})
            else:
                engine.dispose()
                raise

        _ENGINE_CACHE[normalized] = engine
        return engine


def dispose_engine(target: str | Path) -> None:
    """Dispose and forget the cached engine for ``target`` if one exists."""

    normalized = normalize_database_url(target)
    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.pop(normalized, None)
    if engine is not None:
        engine.dispose()


__all__ = [
    "Base",
    "Photo",
    "PhotoSet",
    "TIMESTAMP_LENGTH",
    "get_engine",
    "dispose_engine",
]
