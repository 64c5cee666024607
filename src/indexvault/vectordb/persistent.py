"""Write-through wrapper keeping an in-memory index and its file in step.

Every mutating call holds one exclusive lock for the whole
mutate-then-persist sequence, so at most one mutation per instance is in
flight and the rest queue behind it. Read-only calls go straight to the
wrapped handle without the lock: whether a read may overlap a write is up to
the engine.

Persistence is best effort, not atomic. If the mutation succeeds in memory
but the file cannot be rewritten, the call raises
:class:`~indexvault.errors.PersistenceDivergenceError` and the in-memory index
keeps the change. Nothing is retried automatically; call :meth:`PersistentIndex.save`
to retry or :meth:`PersistentIndex.reload` to drop the change.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from indexvault.errors import (
    BatchOperationError,
    EngineError,
    IndexIOError,
    IndexVaultError,
    InvalidInputError,
    PersistenceDivergenceError,
)
from indexvault.models import IOFlag
from indexvault.vectordb.batch import BatchOrchestrator
from indexvault.vectordb.io import read_index, write_index

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    import numpy as np

    from indexvault.models import IndexStats, MetricType
    from indexvault.settings import Settings
    from indexvault.vectordb.handle import IndexHandle
    from indexvault.vectordb.selectors import Selector

logger = structlog.get_logger()

T = TypeVar("T")


class PersistentIndex:
    """An index handle whose every mutation is written through to ``path``."""

    def __init__(
        self,
        handle: IndexHandle,
        path: str | Path,
        *,
        flags: IOFlag = IOFlag.NONE,
        settings: Settings | None = None,
    ) -> None:
        """Wrap an already-open ``handle``; prefer :meth:`open` for open-or-create."""
        if str(path) == "":
            message = "filename is empty"
            raise InvalidInputError(message)
        self._handle = handle
        self._path = Path(path)
        self._flags = flags
        self._settings = settings
        self._lock = threading.Lock()

    @classmethod
    def open(
        cls,
        path: str | Path,
        factory: Callable[[], IndexHandle],
        *,
        flags: IOFlag = IOFlag.NONE,
        settings: Settings | None = None,
    ) -> PersistentIndex:
        """Load the index at ``path``, or build one with ``factory`` if the file is missing.

        A freshly built index is not written until its first mutation.
        """
        target = Path(path)
        if target.exists():
            handle = read_index(target, flags)
            logger.info("persistent_index_loaded", path=str(target), ntotal=handle.ntotal)
        else:
            handle = _build_with(factory)
            logger.info("persistent_index_created", path=str(target), d=handle.d)
        return cls(handle, target, flags=flags, settings=settings)

    def __enter__(self) -> PersistentIndex:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def path(self) -> Path:
        """File the index is persisted to."""
        return self._path

    @property
    def flags(self) -> IOFlag:
        """IO flags used whenever the file is read back."""
        return self._flags

    @property
    def handle(self) -> IndexHandle:
        """The wrapped in-memory handle; mutating it directly bypasses persistence."""
        return self._handle

    @property
    def d(self) -> int:
        return self._handle.d

    @property
    def ntotal(self) -> int:
        return self._handle.ntotal

    @property
    def is_trained(self) -> bool:
        return self._handle.is_trained

    @property
    def metric_type(self) -> MetricType:
        return self._handle.metric_type

    def stats(self) -> IndexStats:
        """Return a snapshot of the in-memory handle's attributes."""
        return self._handle.stats()

    def search(self, queries: Any, k: int) -> tuple[np.ndarray, np.ndarray]:
        """Search the in-memory index without taking the lock."""
        return self._handle.search(queries, k)

    def search_batch(self, queries: Any, k: int, batch_size: int = 0) -> tuple[list[np.ndarray], list[np.ndarray]]:
        """Chunked search over the in-memory index without taking the lock."""
        return self._orchestrator().search_batch(queries, k, batch_size)

    def train(self, vectors: Any) -> None:
        """Train the index and persist it."""
        self._write_through("train", lambda: self._handle.train(vectors))

    def add(self, vectors: Any) -> None:
        """Add vectors and persist the index."""
        self._write_through("add", lambda: self._handle.add(vectors))

    def add_with_ids(self, vectors: Any, ids: Any) -> None:
        """Add vectors under explicit IDs and persist the index."""
        self._write_through("add_with_ids", lambda: self._handle.add_with_ids(vectors, ids))

    def add_batch(self, vectors: Any, batch_size: int = 0) -> None:
        """Add vectors in chunks, then persist once.

        When a chunk fails after earlier chunks were committed, the committed
        rows are persisted before the :class:`BatchOperationError` is re-raised,
        so the file keeps matching memory.
        """
        with self._lock:
            try:
                self._orchestrator().add_batch(vectors, batch_size)
            except BatchOperationError as exc:
                if exc.committed > 0:
                    self._persist("add_batch")
                raise
            self._persist("add_batch")

    def remove_ids(self, selector: Selector) -> int:
        """Remove the vectors matched by ``selector``, persist, and return the count.

        On a persistence failure the raised error's ``removed`` attribute holds
        the number of vectors already removed from memory.
        """
        with self._lock:
            removed = self._handle.remove_ids(selector)
            self._persist("remove_ids", removed=removed)
            return removed

    def reset(self) -> None:
        """Remove every vector and persist the empty index."""
        self._write_through("reset", self._handle.reset)

    def save(self) -> None:
        """Write the in-memory index to :attr:`path`, e.g. to retry after a divergence."""
        with self._lock:
            write_index(self._handle, self._path)
            logger.info("persistent_index_saved", path=str(self._path), ntotal=self._handle.ntotal)

    def reload(self) -> None:
        """Replace the in-memory index with the contents of :attr:`path`."""
        with self._lock:
            fresh = read_index(self._path, self._flags)
            previous, self._handle = self._handle, fresh
            previous.close()
            logger.info("persistent_index_reloaded", path=str(self._path), ntotal=fresh.ntotal)

    def close(self) -> None:
        """Release the wrapped handle. Pending changes are already on disk or reported."""
        with self._lock:
            self._handle.close()

    def _write_through(self, operation: str, mutation: Callable[[], T]) -> T:
        with self._lock:
            result = mutation()
            self._persist(operation)
            return result

    def _persist(self, operation: str, removed: int | None = None) -> None:
        """Rewrite the file; the caller must hold the lock."""
        try:
            write_index(self._handle, self._path)
        except IndexIOError as exc:
            logger.warning(
                "persistence_diverged",
                operation=operation,
                path=str(self._path),
                error=str(exc),
            )
            raise PersistenceDivergenceError(operation, str(self._path), exc, removed=removed) from exc
        logger.debug("persistent_index_written", operation=operation, path=str(self._path))

    def _orchestrator(self) -> BatchOrchestrator:
        if self._settings is None:
            return BatchOrchestrator(self._handle)
        return BatchOrchestrator.from_settings(self._handle, self._settings)


def _build_with(factory: Callable[[], IndexHandle]) -> IndexHandle:
    try:
        return factory()
    except IndexVaultError:
        raise
    except Exception as exc:
        raise EngineError("factory", exc) from exc
