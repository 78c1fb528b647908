"""Tests for rebuilding sibling chains and set aggregates."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from conftest import decoder_with, make_jpeg
from thyme.db import Photo, PhotoSet
from thyme.linker import LinkError, Linker, compute_set_aggregates, compute_sibling_pairs
from thyme.scanner import Scanner
from thyme.store import ChainEntry, LibraryStore

T1 = "2019-07-01 09:00:00"
T2 = "2019-07-01 12:30:00"
T3 = "2019-07-02 08:15:00"


def _ingest(store: LibraryStore, root: Path, timestamps: dict[str, str | None]) -> None:
    Scanner(store, decoder=decoder_with(timestamps)).scan([root])


def _photos_by_name(store: LibraryStore) -> dict[str, Photo]:
    with store.session() as session:
        return {Path(photo.path).name: photo for photo in session.execute(select(Photo)).scalars()}


def _set(store: LibraryStore, name: str) -> PhotoSet:
    with store.session() as session:
        return session.execute(select(PhotoSet).where(PhotoSet.name == name)).scalar_one()


def _walk(store: LibraryStore, start: Photo) -> list[str]:
    by_id = {photo.id: photo for photo in _photos_by_name(store).values()}
    names: list[str] = []
    current: Photo | None = by_id[start.id]
    while current is not None:
        names.append(Path(current.path).name)
        current = by_id.get(current.next_photo_id) if current.next_photo_id else None
    return names


def test_compute_sibling_pairs_never_cross_sets() -> None:
    entries = [
        ChainEntry(id=3, set_id=1, taken_at=T1),
        ChainEntry(id=1, set_id=1, taken_at=T2),
        ChainEntry(id=2, set_id=2, taken_at=T1),
        ChainEntry(id=4, set_id=2, taken_at=None),
    ]

    assert compute_sibling_pairs(entries) == [(3, 1), (2, 4)]


def test_compute_set_aggregates_handles_empty_and_undated_sets() -> None:
    entries = [
        ChainEntry(id=5, set_id=1, taken_at=None),
        ChainEntry(id=7, set_id=1, taken_at=None),
        ChainEntry(id=2, set_id=3, taken_at=T2),
        ChainEntry(id=9, set_id=3, taken_at=None),
    ]

    by_set = {aggregate.set_id: aggregate for aggregate in compute_set_aggregates([1, 2, 3], entries)}

    assert (by_set[1].photos_count, by_set[1].taken_at, by_set[1].thumb_photo_id) == (2, None, 5)
    assert (by_set[2].photos_count, by_set[2].taken_at, by_set[2].thumb_photo_id) == (0, None, None)
    assert (by_set[3].photos_count, by_set[3].taken_at, by_set[3].thumb_photo_id) == (2, T2, 2)


def test_vacation_set_is_chained_by_capture_time(store: LibraryStore, tmp_path: Path) -> None:
    root = tmp_path / "library"
    for name in ("b.jpg", "c.jpg", "a.jpg"):
        make_jpeg(root / "vacation" / name)
    _ingest(store, root, {"a.jpg": T3, "b.jpg": T1, "c.jpg": T2})

    report = Linker(store).run()

    photos = _photos_by_name(store)
    first, middle, last = photos["b.jpg"], photos["c.jpg"], photos["a.jpg"]
    assert report.links == 2
    assert report.sets == 1
    assert first.prev_photo_id is None
    assert first.next_photo_id == middle.id
    assert middle.prev_photo_id == first.id
    assert middle.next_photo_id == last.id
    assert last.prev_photo_id == middle.id
    assert last.next_photo_id is None

    vacation = _set(store, "vacation")
    assert vacation.photos_count == 3
    assert vacation.taken_at == T1
    assert vacation.thumb_photo_id == first.id


def test_single_photo_set_has_no_links(store: LibraryStore, tmp_path: Path) -> None:
    root = tmp_path / "library"
    make_jpeg(root / "solo" / "only.jpg")
    _ingest(store, root, {"only.jpg": T1})

    Linker(store).run()

    photo = _photos_by_name(store)["only.jpg"]
    assert photo.prev_photo_id is None
    assert photo.next_photo_id is None
    solo = _set(store, "solo")
    assert (solo.photos_count, solo.taken_at, solo.thumb_photo_id) == (1, T1, photo.id)


def test_undated_photos_sort_last(store: LibraryStore, tmp_path: Path) -> None:
    root = tmp_path / "library"
    for name in ("x.jpg", "y.jpg", "z.jpg"):
        make_jpeg(root / "mixed" / name)
    _ingest(store, root, {"x.jpg": None, "y.jpg": T2, "z.jpg": T1})

    Linker(store).run()

    photos = _photos_by_name(store)
    assert _walk(store, photos["z.jpg"]) == ["z.jpg", "y.jpg", "x.jpg"]
    mixed = _set(store, "mixed")
    assert mixed.taken_at == T1
    assert mixed.thumb_photo_id == photos["z.jpg"].id


def test_chains_are_per_set(store: LibraryStore, tmp_path: Path) -> None:
    root = tmp_path / "library"
    for path in ("one/a.jpg", "one/b.jpg", "two/c.jpg", "two/d.jpg"):
        make_jpeg(root / path)
    _ingest(store, root, {"a.jpg": T1, "b.jpg": T2, "c.jpg": T1, "d.jpg": T3})

    report = Linker(store).run()

    photos = _photos_by_name(store)
    assert report.links == 2
    assert _walk(store, photos["a.jpg"]) == ["a.jpg", "b.jpg"]
    assert _walk(store, photos["c.jpg"]) == ["c.jpg", "d.jpg"]
    by_id = {photo.id: photo for photo in photos.values()}
    for photo in photos.values():
        for neighbour_id in (photo.prev_photo_id, photo.next_photo_id):
            if neighbour_id is not None:
                assert by_id[neighbour_id].set_id == photo.set_id


def test_relinking_after_new_photos_rebuilds_chain(store: LibraryStore, tmp_path: Path) -> None:
    root = tmp_path / "library"
    timestamps = {"a.jpg": T1, "c.jpg": T3, "b.jpg": T2}
    make_jpeg(root / "vacation" / "a.jpg")
    make_jpeg(root / "vacation" / "c.jpg")
    _ingest(store, root, timestamps)
    Linker(store).run()

    make_jpeg(root / "vacation" / "b.jpg")
    _ingest(store, root, timestamps)
    Linker(store).run()

    photos = _photos_by_name(store)
    assert _walk(store, photos["a.jpg"]) == ["a.jpg", "b.jpg", "c.jpg"]
    assert photos["c.jpg"].prev_photo_id == photos["b.jpg"].id
    assert _set(store, "vacation").photos_count == 3


def test_failed_relink_keeps_previous_links(store: LibraryStore, tmp_path: Path, monkeypatch) -> None:
    root = tmp_path / "library"
    make_jpeg(root / "vacation" / "a.jpg")
    make_jpeg(root / "vacation" / "c.jpg")
    timestamps = {"a.jpg": T1, "b.jpg": T2, "c.jpg": T3}
    _ingest(store, root, timestamps)
    Linker(store).run()
    before = {name: (photo.prev_photo_id, photo.next_photo_id) for name, photo in _photos_by_name(store).items()}

    make_jpeg(root / "vacation" / "b.jpg")
    _ingest(store, root, timestamps)

    calls = {"count": 0}
    original = LibraryStore.link_siblings

    def _flaky(self, session, previous_id, next_id):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("UPDATE photos", {}, Exception("disk I/O error"))
        return original(self, session, previous_id, next_id)

    monkeypatch.setattr(LibraryStore, "link_siblings", _flaky)

    with pytest.raises(LinkError):
        Linker(store).relink_siblings()

    photos = _photos_by_name(store)
    assert {name: (photos[name].prev_photo_id, photos[name].next_photo_id) for name in before} == before
    assert photos["b.jpg"].prev_photo_id is None
    assert photos["b.jpg"].next_photo_id is None


def test_failed_set_update_raises_link_error(store: LibraryStore, tmp_path: Path, monkeypatch) -> None:
    root = tmp_path / "library"
    make_jpeg(root / "vacation" / "a.jpg")
    _ingest(store, root, {"a.jpg": T1})

    def _broken(self, session, set_id, **values):
        raise OperationalError("UPDATE sets", {}, Exception("database is locked"))

    monkeypatch.setattr(LibraryStore, "update_set_aggregates", _broken)

    with pytest.raises(LinkError):
        Linker(store).update_sets()

    assert _set(store, "vacation").photos_count is None


def test_identical_timestamps_are_ordered_by_id(store: LibraryStore, tmp_path: Path) -> None:
    root = tmp_path / "library"
    timestamps = {"a.jpg": T2, "b.jpg": T2, "c.jpg": T2}
    for name in ("c.jpg", "a.jpg", "b.jpg"):
        _ingest(store, make_jpeg(root / "burst" / name), timestamps)

    Linker(store).run()

    photos = _photos_by_name(store)
    assert [photos[name].id for name in ("c.jpg", "a.jpg", "b.jpg")] == [1, 2, 3]
    ordered = sorted(photos.values(), key=lambda photo: photo.id)
    links = [(photo.id, photo.prev_photo_id, photo.next_photo_id) for photo in ordered]
    assert links == [(1, None, 2), (2, 1, 3), (3, 2, None)]
    burst = _set(store, "burst")
    assert (burst.photos_count, burst.taken_at, burst.thumb_photo_id) == (3, T2, 1)


def test_compute_helpers_break_timestamp_ties_by_chain_position() -> None:
    entries = [
        ChainEntry(id=4, set_id=1, taken_at=T1),
        ChainEntry(id=6, set_id=1, taken_at=T1),
        ChainEntry(id=9, set_id=1, taken_at=T1),
    ]

    assert compute_sibling_pairs(entries) == [(4, 6), (6, 9)]
    assert compute_set_aggregates([1], entries)[0].thumb_photo_id == 4
