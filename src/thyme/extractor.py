"""Raster dimensions and EXIF capture metadata extraction built on Pillow."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from PIL import ExifTags, Image

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "extractor"})

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

# Orientation values that transpose the image (90 or 270 degree rotations).
_TRANSPOSED_ORIENTATIONS = frozenset({5, 6, 7, 8})

_OFFSET_TIME_ORIGINAL = 0x9011

_FLASH_DESCRIPTIONS: dict[int, str] = {
    0x00: "No Flash",
    0x01: "Fired",
    0x05: "Fired, Return not detected",
    0x07: "Fired, Return detected",
    0x08: "On, Did not fire",
    0x09: "On, Fired",
    0x0D: "On, Return not detected",
    0x0F: "On, Return detected",
    0x10: "Off, Did not fire",
    0x14: "Off, Did not fire, Return not detected",
    0x18: "Auto, Did not fire",
    0x19: "Auto, Fired",
    0x1D: "Auto, Fired, Return not detected",
    0x1F: "Auto, Fired, Return detected",
    0x20: "No flash function",
    0x30: "Off, No flash function",
    0x41: "Fired, Red-eye reduction",
    0x45: "Fired, Red-eye reduction, Return not detected",
    0x47: "Fired, Red-eye reduction, Return detected",
    0x49: "On, Red-eye reduction",
    0x4D: "On, Red-eye reduction, Return not detected",
    0x4F: "On, Red-eye reduction, Return detected",
    0x50: "Off, Red-eye reduction",
    0x58: "Auto, Did not fire, Red-eye reduction",
    0x59: "Auto, Fired, Red-eye reduction",
    0x5D: "Auto, Fired, Red-eye reduction, Return not detected",
    0x5F: "Auto, Fired, Red-eye reduction, Return detected",
}


class ExtractionError(RuntimeError):
    """Raised when a file cannot be opened or decoded as a raster image."""


@dataclass(frozen=True)
class CaptureMetadata:
    """Optional capture attributes read from EXIF."""

    taken_at: str | None = None
    lat: float | None = None
    lng: float | None = None
    camera: str | None = None
    lens: str | None = None
    aperture: float | None = None
    exposure_time: float | None = None
    iso: int | None = None
    exposure_comp: float | None = None
    focal_length: float | None = None
    focal_length_35: int | None = None
    flash: str | None = None


@dataclass(frozen=True)
class PhotoMetadata:
    """Displayed dimensions plus capture metadata for one image file."""

    width: int
    height: int
    capture: CaptureMetadata = field(default_factory=CaptureMetadata)


def _clean_string(value: object) -> str | None:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return None
    text = value.replace("\x00", "").strip()
    return text or None


def _to_float(value: object) -> float | None:
    if isinstance(value, (tuple, list)):
        if not value:
            return None
        value = value[0]
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _to_int(value: object) -> int | None:
    number = _to_float(value)
    if number is None:
        return None
    return int(round(number))


def _join_names(first: object, second: object) -> str | None:
    parts = [part for part in (_clean_string(first), _clean_string(second)) if part]
    if not parts:
        return None
    return " ".join(parts)


def parse_exif_datetime(raw: object, offset: object = None) -> str | None:
    """Normalize an EXIF ``YYYY:MM:DD HH:MM:SS`` value to ``YYYY-MM-DD HH:MM:SS``.

    When an EXIF offset such as ``+02:00`` is supplied the timestamp is
    converted to UTC; otherwise the camera's wall-clock time is kept.
    """

    text = _clean_string(raw)
    if not text:
        return None

    try:
        moment = datetime.strptime(text[:19], _EXIF_DATETIME_FORMAT)
    except ValueError:
        return None

    offset_text = _clean_string(offset)
    if offset_text:
        try:
            aware = datetime.strptime(f"{text[:19]}{offset_text.replace(':', '')}", _EXIF_DATETIME_FORMAT + "%z")
            moment = aware.astimezone(timezone.utc).replace(tzinfo=None)
        except ValueError:
            pass

    return moment.strftime(TIMESTAMP_FORMAT)


def _to_degrees(value: object) -> float | None:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return None
    if len(value) < 3:
        return None
    d_val, m_val, s_val = _to_float(value[0]), _to_float(value[1]), _to_float(value[2])
    if d_val is None or m_val is None or s_val is None:
        return None
    return d_val + (m_val / 60.0) + (s_val / 3600.0)


def _gps_coordinates(gps: Mapping[int, object]) -> tuple[float | None, float | None]:
    latitude = _to_degrees(gps.get(ExifTags.GPS.GPSLatitude))
    longitude = _to_degrees(gps.get(ExifTags.GPS.GPSLongitude))
    if latitude is None or longitude is None:
        return None, None

    lat_ref = _clean_string(gps.get(ExifTags.GPS.GPSLatitudeRef))
    lng_ref = _clean_string(gps.get(ExifTags.GPS.GPSLongitudeRef))
    if lat_ref and lat_ref.upper() == "S":
        latitude = -latitude
    if lng_ref and lng_ref.upper() == "W":
        longitude = -longitude
    return round(latitude, 6), round(longitude, 6)


def describe_flash(value: object) -> str | None:
    """Return a human-readable description of an EXIF flash code."""

    code = _to_int(value)
    if code is None:
        return None
    description = _FLASH_DESCRIPTIONS.get(code)
    if description is not None:
        return description
    return "Fired" if code & 0x1 else "Did not fire"


def _read_capture(exif: Image.Exif) -> tuple[CaptureMetadata, int | None]:
    base: Mapping[int, object] = dict(exif)
    details = exif.get_ifd(ExifTags.IFD.Exif)
    gps = exif.get_ifd(ExifTags.IFD.GPSInfo)

    raw_taken_at = details.get(ExifTags.Base.DateTimeOriginal) or base.get(ExifTags.Base.DateTime)
    lat, lng = _gps_coordinates(gps) if gps else (None, None)

    capture = CaptureMetadata(
        taken_at=parse_exif_datetime(raw_taken_at, details.get(_OFFSET_TIME_ORIGINAL)),
        lat=lat,
        lng=lng,
        camera=_join_names(base.get(ExifTags.Base.Make), base.get(ExifTags.Base.Model)),
        lens=_join_names(details.get(ExifTags.Base.LensMake), details.get(ExifTags.Base.LensModel)),
        aperture=_to_float(details.get(ExifTags.Base.FNumber)),
        exposure_time=_to_float(details.get(ExifTags.Base.ExposureTime)),
        iso=_to_int(details.get(ExifTags.Base.ISOSpeedRatings)),
        exposure_comp=_to_float(details.get(ExifTags.Base.ExposureBiasValue)),
        focal_length=_to_float(details.get(ExifTags.Base.FocalLength)),
        focal_length_35=_to_int(details.get(ExifTags.Base.FocalLengthIn35mmFilm)),
        flash=describe_flash(details.get(ExifTags.Base.Flash)),
    )
    return capture, _to_int(base.get(ExifTags.Base.Orientation))


def decode(path: Path) -> PhotoMetadata:
    """Read displayed dimensions and capture metadata for ``path``.

    Only the image header is decoded. A file without usable EXIF still yields
    its dimensions with an empty :class:`CaptureMetadata`.

    Raises:
        ExtractionError: The file cannot be opened or is not a raster image.
    """

    try:
        with Image.open(path) as image:
            width, height = image.size
            try:
                capture, orientation = _read_capture(image.getexif())
            except Exception as exc:  # noqa: BLE001 - corrupt EXIF only loses capture fields
                LOGGER.warning("exif_unreadable", extra={"path": str(path), "error": str(exc)})
                capture, orientation = CaptureMetadata(), None
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        raise ExtractionError(f"cannot decode {path}: {exc}") from exc

    if orientation in _TRANSPOSED_ORIENTATIONS:
        width, height = height, width

    return PhotoMetadata(width=width, height=height, capture=capture)


__all__ = [
    "CaptureMetadata",
    "ExtractionError",
    "PhotoMetadata",
    "TIMESTAMP_FORMAT",
    "decode",
    "describe_flash",
    "parse_exif_datetime",
]
