"""Chunked add and search over a single index handle.

Chunking only bounds the size of each engine call; it never changes the
observable result. ``results[i]`` always belongs to ``queries[i]`` whatever the
batch size, and chunks run sequentially on the calling thread.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from indexvault.errors import BatchOperationError, EmptyIndexError, IndexNotTrainedError
from indexvault.vectordb.vectors import as_ids, as_matrix, validate_k

if TYPE_CHECKING:
    from collections.abc import Iterator

    from indexvault.settings import Settings
    from indexvault.vectordb.protocols import VectorIndex

logger = structlog.get_logger()

DEFAULT_ADD_BATCH_SIZE = 1000
DEFAULT_SEARCH_BATCH_SIZE = 100


class BatchOrchestrator:
    """Split large add/search workloads against ``handle`` into bounded chunks.

    The orchestrator takes no locks. Concurrent calls against the same handle
    are only as safe as the engine makes them.
    """

    def __init__(
        self,
        handle: VectorIndex,
        *,
        add_batch_size: int = DEFAULT_ADD_BATCH_SIZE,
        search_batch_size: int = DEFAULT_SEARCH_BATCH_SIZE,
    ) -> None:
        """Wrap ``handle`` with the batch sizes used when callers pass none."""
        self._handle = handle
        self.add_batch_size = add_batch_size if add_batch_size > 0 else DEFAULT_ADD_BATCH_SIZE
        self.search_batch_size = search_batch_size if search_batch_size > 0 else DEFAULT_SEARCH_BATCH_SIZE

    @classmethod
    def from_settings(cls, handle: VectorIndex, settings: Settings) -> BatchOrchestrator:
        """Build an orchestrator using the configured default batch sizes."""
        return cls(
            handle,
            add_batch_size=settings.add_batch_size,
            search_batch_size=settings.search_batch_size,
        )

    @property
    def handle(self) -> VectorIndex:
        """The wrapped index handle."""
        return self._handle

    def add_batch(self, vectors: Any, batch_size: int = 0) -> None:
        """Add ``vectors`` in chunks of ``batch_size`` rows.

        A failing chunk raises :class:`BatchOperationError` naming its row
        range. Rows from earlier chunks stay in the index.
        """
        matrix = as_matrix(vectors, self._handle.d)
        self._require_trained("add batch operation")
        for start, stop in _chunks(matrix.shape[0], batch_size, self.add_batch_size):
            logger.debug("add_batch_chunk", start=start, stop=stop)
            try:
                self._handle.add(matrix[start:stop])
            except RuntimeError as exc:
                raise BatchOperationError("add batch", start, stop, exc) from exc

    def add_with_ids_batch(self, vectors: Any, ids: Any, batch_size: int = 0) -> None:
        """Add ``vectors`` under ``ids`` in chunks, with the :meth:`add_batch` contract."""
        matrix = as_matrix(vectors, self._handle.d)
        id_array = as_ids(ids, matrix.shape[0])
        self._require_trained("add_with_ids batch operation")
        for start, stop in _chunks(matrix.shape[0], batch_size, self.add_batch_size):
            logger.debug("add_with_ids_batch_chunk", start=start, stop=stop)
            try:
                self._handle.add_with_ids(matrix[start:stop], id_array[start:stop])
            except RuntimeError as exc:
                raise BatchOperationError("add_with_ids batch", start, stop, exc) from exc

    def search_batch(
        self,
        queries: Any,
        k: int,
        batch_size: int = 0,
    ) -> tuple[list[np.ndarray], list[np.ndarray]]:
        """Search ``queries`` in chunks and return per-query distance and label rows.

        An input without queries returns two empty lists.
        """
        k = validate_k(k)
        if np.asarray(queries).size == 0:
            return [], []
        matrix = as_matrix(queries, self._handle.d)
        self._require_trained("search batch operation")
        total = matrix.shape[0]
        distances: list[np.ndarray] = []
        labels: list[np.ndarray] = []
        for start, stop in _chunks(total, batch_size, self.search_batch_size):
            logger.debug("search_batch_chunk", start=start, stop=stop, k=k)
            try:
                chunk_distances, chunk_labels = self._handle.search(matrix[start:stop], k)
            except RuntimeError as exc:
                raise BatchOperationError("search batch", start, stop, exc) from exc
            distances.extend(np.asarray(chunk_distances).reshape(stop - start, k))
            labels.extend(np.asarray(chunk_labels).reshape(stop - start, k))
        return distances, labels

    def compute_distances_batch(self, queries: Any, batch_size: int = 0) -> np.ndarray:
        """Return a ``(num_queries, ntotal)`` matrix of distances to every indexed vector.

        Row ``i`` lists the distances for ``queries[i]`` nearest first, as the
        engine ranks them.
        """
        matrix = as_matrix(queries, self._handle.d)
        ntotal = self._handle.ntotal
        if ntotal == 0:
            message = "index is empty"
            raise EmptyIndexError(message)
        distances, _ = self.search_batch(matrix, ntotal, batch_size)
        return np.vstack(distances).astype("float32", copy=False)

    def _require_trained(self, operation: str) -> None:
        if not self._handle.is_trained:
            message = f"{operation}: index not trained"
            raise IndexNotTrainedError(message)


def _chunks(total: int, batch_size: int, default: int) -> Iterator[tuple[int, int]]:
    """Yield half-open ``[start, stop)`` row ranges covering ``total`` rows in order.

    A non-positive ``batch_size`` falls back to ``default``; sizes above
    ``total`` collapse to a single chunk.
    """
    batch_size = min(batch_size if batch_size > 0 else default, total)
    for start in range(0, total, batch_size):
        yield start, min(start + batch_size, total)
