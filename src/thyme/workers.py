"""Bounded thread pool that drains photo paths into the thumbnail cache."""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from thyme.thumbnailing import ThumbnailCache
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "workers"})

DEFAULT_WORKERS = 4

_STOP = object()


@dataclass
class PoolReport:
    """Outcome of one pool run."""

    processed: int = 0
    failed_paths: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_paths)


class DerivationPool:
    """Run :meth:`ThumbnailCache.ensure_all` for a stream of photo paths.

    ``workers`` threads pull from a queue holding at most ``workers`` pending
    paths, so the producer blocks instead of buffering the whole library.
    Every photo advances the progress bar exactly once whatever its outcome,
    and one photo's failure never stops the others.
    """

    def __init__(self, cache: ThumbnailCache, workers: int = DEFAULT_WORKERS, *, show_progress: bool = True) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._cache = cache
        self._workers = workers
        self._show_progress = show_progress

    def run(self, paths: Iterable[str], total: int | None = None) -> PoolReport:
        """Process every path and return once all workers have finished."""

        report = PoolReport()
        lock = threading.Lock()
        work: queue.Queue[object] = queue.Queue(maxsize=self._workers)

        with logging_redirect_tqdm(), tqdm(
            total=total, unit="photo", desc="thumbnails", disable=not self._show_progress
        ) as bar:

            def _worker() -> None:
                while True:
                    item = work.get()
                    try:
                        if item is _STOP:
                            return
                        photo_path = str(item)
                        failed = False
                        try:
                            failed = not self._cache.ensure_all(photo_path).ok
                        except Exception as exc:  # noqa: BLE001 - isolate one photo from the batch
                            failed = True
                            LOGGER.exception("thumbnail_worker_error", extra={"path": photo_path, "error": str(exc)})
                        with lock:
                            report.processed += 1
                            if failed:
                                report.failed_paths.append(photo_path)
                            bar.update(1)
                    finally:
                        work.task_done()

            with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="thumbnail-worker") as executor:
                futures = [executor.submit(_worker) for _ in range(self._workers)]
                try:
                    for path in paths:
                        work.put(path)
                finally:
                    # Every worker gets a stop marker, so the executor exit drains the queue.
                    for _ in futures:
                        work.put(_STOP)

            for future in futures:
                future.result()

        LOGGER.info(
            "thumbnail_pool_complete",
            extra={"processed": report.processed, "failed": report.failed, "workers": self._workers},
        )
        return report


__all__ = ["DEFAULT_WORKERS", "DerivationPool", "PoolReport"]
