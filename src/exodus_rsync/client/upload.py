"""Deduplicating upload of SyncItems to the blob store.

This module provides:
- BlobStoreLike: The blob store operations the coordinator needs
- UploadCoordinator: Decides upload vs. skip for each item, in order
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from exodus_rsync.client.types import (
    AlreadyPresent,
    CancelScope,
    SyncItem,
    Uploaded,
    UploadOutcome,
)

logger = logging.getLogger(__name__)


class BlobStoreLike(Protocol):
    def exists(self, key: str, scope: CancelScope | None = None) -> bool: ...

    def upload(
        self, key: str, src_path: str, scope: CancelScope | None = None
    ) -> str: ...


class UploadCoordinator:
    """Ensures every item's blob exists remotely, uploading only when needed.

    Outcomes are reported in the same order as the input items, exactly one
    per item. A key is written at most once per pass: an item sharing a key
    with an earlier item is reported as AlreadyPresent without another
    remote call. The first failure aborts the pass.

    With workers > 1, distinct keys are checked and uploaded concurrently
    by a thread pool; results are still reported in input order. A failing
    item cancels the uploads still in flight and the queued ones never
    reach the store.
    """

    def __init__(
        self,
        store: BlobStoreLike,
        workers: int = 1,
        scope: CancelScope | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Blob store of the target environment.
            workers: Number of concurrent upload threads (1 = sequential).
            scope: Cancellation scope checked between items.
        """
        self._store = store
        self._workers = max(1, workers)
        self._scope = scope or CancelScope()

    def _ensure_one(self, item: SyncItem, scope: CancelScope) -> bool:
        """Upload item's blob if missing; return True if it was uploaded."""
        scope.check()
        if self._store.exists(item.key, scope):
            return False
        self._store.upload(item.key, item.src_path, scope)
        return True

    def iter_outcomes(self, items: Iterable[SyncItem]) -> Iterator[UploadOutcome]:
        """Yield the upload outcome of each item, in input order.

        Args:
            items: Items to ensure are uploaded.

        Yields:
            Uploaded or AlreadyPresent, one per item.

        Raises:
            TransportError: If an existence check fails.
            UploadError: If an upload fails.
            OSError: If a local file can't be read.
        """
        if self._workers == 1:
            yield from self._iter_sequential(items)
        else:
            yield from self._iter_concurrent(items)

    def _iter_sequential(self, items: Iterable[SyncItem]) -> Iterator[UploadOutcome]:
        handled: set[str] = set()
        for item in items:
            if item.key in handled:
                logger.debug(f"Blob {item.key} already handled in this run")
                yield AlreadyPresent(item)
                continue

            uploaded = self._ensure_one(item, self._scope)
            handled.add(item.key)
            yield Uploaded(item) if uploaded else AlreadyPresent(item)

    def _iter_concurrent(self, items: Iterable[SyncItem]) -> Iterator[UploadOutcome]:
        # Cancelled on the first failure or when iteration stops early
        abort = self._scope.child()
        errors: list[BaseException] = []
        lock = threading.Lock()

        def task(item: SyncItem) -> bool:
            try:
                return self._ensure_one(item, abort)
            except BaseException as e:
                with lock:
                    errors.append(e)
                abort.cancel()
                raise

        executor = ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="exodus-upload"
        )
        try:
            by_key: dict[str, Future[bool]] = {}
            ordered: list[tuple[SyncItem, Future[bool], bool]] = []
            for item in items:
                first = item.key not in by_key
                if first:
                    by_key[item.key] = executor.submit(task, item)
                ordered.append((item, by_key[item.key], first))

            for item, future, first in ordered:
                error: BaseException | None = None
                try:
                    uploaded = future.result()
                except BaseException as e:
                    # Items stopped by the abort report the failure behind it
                    with lock:
                        error = errors[0] if errors else e
                if error is not None:
                    raise error
                if first and uploaded:
                    yield Uploaded(item)
                else:
                    yield AlreadyPresent(item)
        finally:
            abort.cancel()
            executor.shutdown(wait=True, cancel_futures=True)

    def ensure_uploaded(
        self,
        items: Iterable[SyncItem],
        on_uploaded: Callable[[SyncItem], None],
        on_present: Callable[[SyncItem], None],
    ) -> None:
        """Ensure all items are uploaded, reporting each outcome to a callback.

        Exactly one of on_uploaded / on_present is called per item, in input
        order. An exception from a callback aborts the pass.

        Args:
            items: Items to ensure are uploaded.
            on_uploaded: Called for an item whose blob was written.
            on_present: Called for an item whose blob already existed.
        """
        for outcome in self.iter_outcomes(items):
            if isinstance(outcome, Uploaded):
                on_uploaded(outcome.item)
            else:
                on_present(outcome.item)
