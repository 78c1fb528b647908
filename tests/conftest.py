"""Shared fixtures: on-disk libraries and generated JPEG files."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path

import pytest
from PIL import Image

from thyme.extractor import CaptureMetadata, PhotoMetadata
from thyme.store import LibraryStore


def make_jpeg(
    path: Path,
    size: tuple[int, int] = (64, 48),
    color: str = "steelblue",
    exif: Mapping[int, object] | None = None,
) -> Path:
    """Write a small JPEG, optionally carrying base-IFD EXIF tags."""

    path.parent.mkdir(parents=True, exist_ok=True)
    image = Image.new("RGB", size, color=color)
    if exif:
        block = Image.Exif()
        for tag, value in exif.items():
            block[tag] = value
        image.save(path, format="JPEG", exif=block)
    else:
        image.save(path, format="JPEG")
    return path


def decoder_with(timestamps: Mapping[str, str | None], size: tuple[int, int] = (64, 48)):
    """Return a decoder that assigns capture times by file name."""

    def _decode(path: Path) -> PhotoMetadata:
        return PhotoMetadata(
            width=size[0],
            height=size[1],
            capture=CaptureMetadata(taken_at=timestamps.get(path.name)),
        )

    return _decode


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[LibraryStore]:
    library = LibraryStore(tmp_path / "data" / "library.db")
    yield library
    library.dispose()
