"""Content-addressed thumbnail cache and derivation backends."""

from __future__ import annotations

import hashlib
import os
import subprocess
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageOps
from PIL.Image import Resampling

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "thumbnailing"})

DEFAULT_QUALITY = 97


class SizeClass(str, Enum):
    BIG = "big"
    SMALL = "small"


@dataclass(frozen=True)
class SizeSpec:
    """Target long edge in pixels and whether to center-crop to a square."""

    max_dimension: int
    crop: bool = False


DEFAULT_SIZE_SPECS: dict[SizeClass, SizeSpec] = {
    SizeClass.BIG: SizeSpec(max_dimension=1000, crop=False),
    SizeClass.SMALL: SizeSpec(max_dimension=200, crop=True),
}


class DerivationError(RuntimeError):
    """Raised when a thumbnail could not be produced."""


class Deriver(Protocol):
    """Resize capability used by :class:`ThumbnailCache`."""

    def derive(
        self,
        source: Path,
        target: Path,
        max_dimension: int,
        *,
        crop: bool,
        rotate: bool,
        quality: int,
    ) -> None:
        """Write a resized JPEG of ``source`` to ``target`` or raise :class:`DerivationError`."""


def artifact_basename(photo_path: str, size_class: SizeClass | str) -> str:
    """Return the artifact file name for a photo path and size class.

    The name depends only on the stored path string, so any reader holding a
    photo's path can locate its thumbnails without touching the database.
    """

    identifier = hashlib.md5(photo_path.encode("utf-8")).hexdigest()
    return f"{identifier}_{SizeClass(size_class).value}.jpg"


class PillowDeriver:
    """In-process derivation with Pillow."""

    def derive(
        self,
        source: Path,
        target: Path,
        max_dimension: int,
        *,
        crop: bool,
        rotate: bool,
        quality: int = DEFAULT_QUALITY,
    ) -> None:
        safe_side = max(1, int(max_dimension))
        try:
            with Image.open(source) as image:
                if rotate:
                    image = ImageOps.exif_transpose(image)
                if image.mode != "RGB":
                    image = image.convert("RGB")

                if crop:
                    resized = ImageOps.fit(image, (safe_side, safe_side), method=Resampling.BICUBIC)
                else:
                    resized = image.copy()
                    resized.thumbnail((safe_side, safe_side), resample=Resampling.BICUBIC)

                # No exif= argument: derived files carry no metadata.
                resized.save(target, format="JPEG", quality=int(quality), subsampling=0, optimize=True)
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise DerivationError(f"{type(exc).__name__}: {exc}") from exc


class VipsThumbnailDeriver:
    """Derivation through the external ``vipsthumbnail`` command."""

    def __init__(self, binary: str = "vipsthumbnail", interpolator: str = "bicubic") -> None:
        self._binary = binary
        self._interpolator = interpolator

    def build_command(
        self,
        source: Path,
        target: Path,
        max_dimension: int,
        *,
        crop: bool,
        rotate: bool,
        quality: int,
    ) -> list[str]:
        cmd = [self._binary, str(source)]
        if rotate:
            cmd.append("--rotate")
        cmd += [
            "--size",
            str(int(max_dimension)),
            "--interpolator",
            self._interpolator,
            "--output",
            f"{target.resolve()}[Q={int(quality)},no_subsample,strip]",
        ]
        if crop:
            cmd.append("--crop")
        return cmd

    def derive(
        self,
        source: Path,
        target: Path,
        max_dimension: int,
        *,
        crop: bool,
        rotate: bool,
        quality: int = DEFAULT_QUALITY,
    ) -> None:
        cmd = self.build_command(source, target, max_dimension, crop=crop, rotate=rotate, quality=quality)
        try:
            result = subprocess.run(cmd, text=True, capture_output=True)
        except OSError as exc:
            raise DerivationError(f"cannot run {self._binary}: {exc}") from exc

        if result.returncode != 0:
            stderr = result.stderr.strip() or "no error output"
            raise DerivationError(f"{self._binary} exited with status {result.returncode}: {stderr}")


@dataclass
class ThumbnailOutcome:
    """Per-photo result of :meth:`ThumbnailCache.ensure_all`."""

    photo_path: str
    artifacts: dict[SizeClass, Path] = field(default_factory=dict)
    errors: dict[SizeClass, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


class ThumbnailCache:
    """File-system cache of derived thumbnails keyed by (photo path, size class).

    An artifact's presence at its expected path is the cache entry: existing
    files are never regenerated, and nothing is recorded anywhere else. New
    artifacts are written to a temporary sibling and renamed into place so a
    partially written file is never visible under the final name.
    """

    def __init__(
        self,
        root: Path,
        deriver: Deriver,
        *,
        specs: dict[SizeClass, SizeSpec] | None = None,
        quality: int = DEFAULT_QUALITY,
    ) -> None:
        self._root = root
        self._deriver = deriver
        self._specs = dict(specs or DEFAULT_SIZE_SPECS)
        self._quality = quality

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, photo_path: str, size_class: SizeClass | str) -> Path:
        return self._root / artifact_basename(photo_path, size_class)

    def ensure(self, photo_path: str, size_class: SizeClass | str, source: Path | None = None) -> Path:
        """Return the artifact path, deriving it first if it does not exist yet.

        Args:
            photo_path: Stored path of the photo; keys the artifact name.
            size_class: Which size class to produce.
            source: Image to derive from. Defaults to ``photo_path`` itself.

        Raises:
            DerivationError: The backend failed or produced no file.
        """

        size_class = SizeClass(size_class)
        target = self.path_for(photo_path, size_class)
        if target.exists():
            return target

        spec = self._specs[size_class]
        staging = target.with_name(f".{target.stem}.{uuid.uuid4().hex}.tmp.jpg")
        try:
            self._deriver.derive(
                source or Path(photo_path),
                staging,
                spec.max_dimension,
                crop=spec.crop,
                rotate=True,
                quality=self._quality,
            )
            if not staging.is_file():
                raise DerivationError(f"derivation produced no output for {photo_path}")
            os.replace(staging, target)
        except OSError as exc:
            raise DerivationError(f"cannot store {target.name}: {exc}") from exc
        finally:
            staging.unlink(missing_ok=True)

        LOGGER.debug("thumbnail_created", extra={"path": photo_path, "size_class": size_class.value})
        return target

    def ensure_all(self, photo_path: str) -> ThumbnailOutcome:
        """Ensure both size classes, deriving the small one from the big one when possible."""

        outcome = ThumbnailOutcome(photo_path=photo_path)
        small_source: Path | None = None

        try:
            big = self.ensure(photo_path, SizeClass.BIG)
        except DerivationError as exc:
            outcome.errors[SizeClass.BIG] = str(exc)
            LOGGER.error(
                "thumbnail_failed",
                extra={"path": photo_path, "size_class": SizeClass.BIG.value, "error": str(exc)},
            )
        else:
            outcome.artifacts[SizeClass.BIG] = big
            small_source = big

        try:
            outcome.artifacts[SizeClass.SMALL] = self.ensure(photo_path, SizeClass.SMALL, source=small_source)
        except DerivationError as exc:
            outcome.errors[SizeClass.SMALL] = str(exc)
            LOGGER.error(
                "thumbnail_failed",
                extra={"path": photo_path, "size_class": SizeClass.SMALL.value, "error": str(exc)},
            )

        return outcome


__all__ = [
    "DEFAULT_SIZE_SPECS",
    "DerivationError",
    "Deriver",
    "PillowDeriver",
    "SizeClass",
    "SizeSpec",
    "ThumbnailCache",
    "ThumbnailOutcome",
    "VipsThumbnailDeriver",
    "artifact_basename",
]
