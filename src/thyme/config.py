"""Configuration loader and typed settings for the Thyme photo library."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONTENT_TYPES: tuple[str, ...] = ("image/jpeg", "image/png", "image/tiff", "image/webp")
THUMBNAIL_BACKENDS: frozenset[str] = frozenset({"pillow", "vips"})


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover - defensive fallback
        return module_path.parent


def _build_default_settings_paths() -> list[Path]:
    """Return candidate settings paths ordered by preference."""

    cwd_candidate = (Path.cwd() / "config" / "settings.yaml").resolve()
    repo_candidate = (_project_root() / "config" / "settings.yaml").resolve()

    candidates: list[Path] = []
    seen: set[Path] = set()
    for candidate in (cwd_candidate, repo_candidate):
        if candidate in seen:
            continue
        seen.add(candidate)
        candidates.append(candidate)
    return candidates


_DEFAULT_SETTINGS_PATHS = _build_default_settings_paths()


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Determine which settings file to load, honoring overrides."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv("THYME_SETTINGS")
    if env_override:
        return Path(env_override).expanduser().resolve()

    for candidate in _DEFAULT_SETTINGS_PATHS:
        if candidate.exists():
            return candidate
    return _DEFAULT_SETTINGS_PATHS[0]


@dataclass
class DatabaseConfig:
    """Connection target for the library store."""

    library_url: str = "sqlite:///data/thyme.db"


@dataclass
class LibraryConfig:
    """Scanner eligibility and batching."""

    content_types: list[str] = field(default_factory=lambda: list(DEFAULT_CONTENT_TYPES))
    commit_interval: int = 500


@dataclass
class ThumbnailConfig:
    """Thumbnail artifact location, size classes, and derivation backend."""

    root: str = "public/thumbs"
    big_size: int = 1000
    small_size: int = 200
    quality: int = 97
    workers: int = 4
    backend: str = "pillow"
    vips_binary: str = "vipsthumbnail"
    interpolator: str = "bicubic"


@dataclass
class Settings:
    """Top-level application settings."""

    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)
    thumbnails: ThumbnailConfig = field(default_factory=ThumbnailConfig)


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _positive_int(value: Any) -> int | None:
    # bool is an int subclass; YAML ``yes`` must not become 1.
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return None


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load application settings from a YAML file, falling back to defaults.

    Missing files, non-mapping documents, and individual values of the wrong
    type are ignored so a partial settings file only overrides what it names.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    if not path.exists() or not path.is_file():
        return settings

    with path.open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}

    if not isinstance(raw, dict):
        return settings

    databases_raw = _as_dict(raw.get("databases"))
    if isinstance(databases_raw.get("library_url"), str) and databases_raw["library_url"].strip():
        settings.databases.library_url = databases_raw["library_url"].strip()

    library_raw = _as_dict(raw.get("library"))
    library_cfg = settings.library
    content_types = library_raw.get("content_types")
    if isinstance(content_types, list):
        parsed = [str(item).strip().lower() for item in content_types if str(item).strip()]
        if parsed:
            library_cfg.content_types = parsed
    commit_interval = _positive_int(library_raw.get("commit_interval"))
    if commit_interval is not None:
        library_cfg.commit_interval = commit_interval

    thumbs_raw = _as_dict(raw.get("thumbnails"))
    thumbs_cfg = settings.thumbnails
    if isinstance(thumbs_raw.get("root"), str) and thumbs_raw["root"].strip():
        thumbs_cfg.root = thumbs_raw["root"].strip()
    for key in ("big_size", "small_size", "workers"):
        value = _positive_int(thumbs_raw.get(key))
        if value is not None:
            setattr(thumbs_cfg, key, value)
    quality = _positive_int(thumbs_raw.get("quality"))
    if quality is not None and quality <= 100:
        thumbs_cfg.quality = quality
    backend = thumbs_raw.get("backend")
    if isinstance(backend, str) and backend.strip().lower() in THUMBNAIL_BACKENDS:
        thumbs_cfg.backend = backend.strip().lower()
    if isinstance(thumbs_raw.get("vips_binary"), str) and thumbs_raw["vips_binary"].strip():
        thumbs_cfg.vips_binary = thumbs_raw["vips_binary"].strip()
    if isinstance(thumbs_raw.get("interpolator"), str) and thumbs_raw["interpolator"].strip():
        thumbs_cfg.interpolator = thumbs_raw["interpolator"].strip()

    return settings


__all__ = [
    "DEFAULT_CONTENT_TYPES",
    "THUMBNAIL_BACKENDS",
    "DatabaseConfig",
    "LibraryConfig",
    "ThumbnailConfig",
    "Settings",
    "load_settings",
]
