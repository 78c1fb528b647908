"""Helpers for normalizing library database targets."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine.url import make_url


def normalize_database_url(target: str | Path) -> str:
    """Normalize database URL or path inputs to absolute URLs."""

    if isinstance(target, Path):
        return f"sqlite:///{target.expanduser().resolve()}"

    raw = str(target).strip()
    if not raw:
        raise ValueError("database target cannot be empty")

    if "://" not in raw:
        return f"sqlite:///{Path(raw).expanduser().resolve()}"

    url = make_url(raw)
    if url.drivername.startswith("sqlite"):
        database = url.database or ""
        if database not in {":memory:", ""}:
            db_path = Path(database).expanduser()
            if not db_path.is_absolute():
                db_path = (Path.cwd() / db_path).resolve()
            url = url.set(database=str(db_path))
        return url.render_as_string(hide_password=False)

    return raw


def sqlite_path_from_target(target: str | Path) -> Path | None:
    """Return the database file for a SQLite target, or ``None`` for other backends."""

    url = make_url(normalize_database_url(target))
    if not url.drivername.startswith("sqlite"):
        return None

    database = url.database or ""
    if database in {"", ":memory:"}:
        return None
    return Path(database)


__all__ = ["normalize_database_url", "sqlite_path_from_target"]
