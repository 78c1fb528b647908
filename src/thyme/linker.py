"""Whole-library recomputation of sibling chains and set aggregates."""

from __future__ import annotations

from dataclasses import dataclass
from itertools import groupby
from operator import attrgetter

from sqlalchemy.exc import SQLAlchemyError

from thyme.errors import PipelineError
from thyme.store import ChainEntry, LibraryStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "linker"})


class LinkError(PipelineError):
    """A linker phase failed and its transaction was rolled back."""


@dataclass(frozen=True)
class SetAggregate:
    """Derived columns for one set."""

    set_id: int
    photos_count: int
    taken_at: str | None
    thumb_photo_id: int | None


@dataclass
class LinkReport:
    links: int = 0
    sets: int = 0


def compute_sibling_pairs(entries: list[ChainEntry]) -> list[tuple[int, int]]:
    """Return ``(previous_id, next_id)`` pairs for consecutive photos of the same set.

    ``entries`` must already be in chain order; the walk restarts at every set
    boundary so no link ever crosses sets.
    """

    pairs: list[tuple[int, int]] = []
    for _, members in groupby(entries, key=attrgetter("set_id")):
        ordered = list(members)
        pairs.extend((first.id, second.id) for first, second in zip(ordered, ordered[1:]))
    return pairs


def compute_set_aggregates(set_ids: list[int], entries: list[ChainEntry]) -> list[SetAggregate]:
    """Derive count, earliest capture time, and cover photo for every set.

    The cover is the first photo in chain order: the earliest dated photo,
    ties broken by id, or the lowest id when no photo in the set is dated.
    Sets without photos get a zero count and no cover.
    """

    by_set: dict[int, list[ChainEntry]] = {
        set_id: list(members) for set_id, members in groupby(entries, key=attrgetter("set_id"))
    }

    aggregates: list[SetAggregate] = []
    for set_id in set_ids:
        members = by_set.get(set_id, [])
        dated = [entry.taken_at for entry in members if entry.taken_at is not None]
        aggregates.append(
            SetAggregate(
                set_id=set_id,
                photos_count=len(members),
                taken_at=min(dated) if dated else None,
                thumb_photo_id=members[0].id if members else None,
            )
        )
    return aggregates


class Linker:
    """Rebuild per-set sibling chains and aggregates from current store contents.

    Both phases run as a single transaction each. A failure rolls that phase
    back entirely and is raised as :class:`LinkError`; a half-linked library is
    never committed.
    """

    def __init__(self, store: LibraryStore) -> None:
        self._store = store

    def run(self) -> LinkReport:
        report = LinkReport()
        report.links = self.relink_siblings()
        report.sets = self.update_sets()
        return report

    def relink_siblings(self) -> int:
        """Phase A: clear and rewrite every prev/next link. Returns the link count."""

        try:
            with self._store.session() as session:
                entries = self._store.photos_in_chain_order(session)
                pairs = compute_sibling_pairs(entries)

                self._store.clear_links(session)
                for previous_id, next_id in pairs:
                    self._store.link_siblings(session, previous_id, next_id)
                    LOGGER.debug("photo_linked", extra={"photo_id": previous_id, "next_photo_id": next_id})
        except SQLAlchemyError as exc:
            LOGGER.error("relink_siblings_failed", extra={"error": str(exc)})
            raise LinkError(f"relinking photo siblings failed: {exc}") from exc

        LOGGER.info("relink_siblings_complete", extra={"photos": len(entries), "links": len(pairs)})
        return len(pairs)

    def update_sets(self) -> int:
        """Phase B: recompute count, capture time, and cover for every set."""

        try:
            with self._store.session() as session:
                entries = self._store.photos_in_chain_order(session)
                aggregates = compute_set_aggregates(self._store.set_ids(session), entries)

                for aggregate in aggregates:
                    self._store.update_set_aggregates(
                        session,
                        aggregate.set_id,
                        photos_count=aggregate.photos_count,
                        taken_at=aggregate.taken_at,
                        thumb_photo_id=aggregate.thumb_photo_id,
                    )
                    LOGGER.debug(
                        "set_updated",
                        extra={
                            "set_id": aggregate.set_id,
                            "photos_count": aggregate.photos_count,
                            "taken_at": aggregate.taken_at,
                            "thumb_photo_id": aggregate.thumb_photo_id,
                        },
                    )
        except SQLAlchemyError as exc:
            LOGGER.error("update_sets_failed", extra={"error": str(exc)})
            raise LinkError(f"updating set aggregates failed: {exc}") from exc

        LOGGER.info("update_sets_complete", extra={"sets": len(aggregates)})
        return len(aggregates)


__all__ = ["LinkError", "LinkReport", "Linker", "SetAggregate", "compute_set_aggregates", "compute_sibling_pairs"]
