"""Owned handle around a single FAISS index instance."""

from __future__ import annotations

import contextlib
import weakref
from typing import TYPE_CHECKING, Any

import faiss
import numpy as np
import structlog

from indexvault.errors import EngineError, IndexClosedError, IndexNotTrainedError, InvalidSelectorError
from indexvault.models import IndexStats, MetricType
from indexvault.vectordb.vectors import as_ids, as_matrix, validate_k, validate_radius

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import TracebackType

    from indexvault.vectordb.selectors import Selector

logger = structlog.get_logger()


@contextlib.contextmanager
def engine_errors(operation: str) -> Iterator[None]:
    """Translate engine exceptions raised inside the block into :class:`EngineError`."""
    try:
        yield
    except RuntimeError as exc:
        if isinstance(exc, EngineError):
            raise
        raise EngineError(operation, exc) from exc


def _release_leaked_index(index: faiss.Index, description: str) -> None:
    """Drop the last reference to an index whose handle was never closed."""
    logger.warning("index_handle_leaked", description=description, ntotal=int(index.ntotal))


class IndexHandle:
    """Owns one engine-side index and exposes its primitive operations.

    The handle has exactly one owner, who releases it with :meth:`close` or by
    using the handle as a context manager. A ``weakref.finalize`` hook frees
    the engine object if the owner forgets, but its timing is up to the
    garbage collector, so close the handle explicitly before reopening the
    same file.
    """

    def __init__(self, index: faiss.Index, description: str = "") -> None:
        """Take ownership of ``index``."""
        self._index: faiss.Index | None = index
        self.description = description
        self._finalizer = weakref.finalize(self, _release_leaked_index, index, description)

    def __enter__(self) -> IndexHandle:
        """Return the handle for use in a ``with`` block."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Release the engine index when leaving the ``with`` block."""
        self.close()

    def __repr__(self) -> str:
        if self._index is None:
            return f"{type(self).__name__}(closed)"
        return f"{type(self).__name__}(d={self.d}, ntotal={self.ntotal}, metric={self.metric_type.name})"

    @property
    def engine_index(self) -> faiss.Index:
        """Return the wrapped engine index."""
        return self._require()

    @property
    def closed(self) -> bool:
        """``True`` once :meth:`close` has released the engine index."""
        return self._index is None

    @property
    def d(self) -> int:
        """Dimension of the indexed vectors."""
        return int(self._require().d)

    @property
    def ntotal(self) -> int:
        """Number of vectors currently indexed."""
        return int(self._require().ntotal)

    @property
    def is_trained(self) -> bool:
        """``True`` when the index is trained or needs no training."""
        return bool(self._require().is_trained)

    @property
    def metric_type(self) -> MetricType:
        """Distance metric fixed at creation."""
        return MetricType(int(self._require().metric_type))

    def stats(self) -> IndexStats:
        """Return a snapshot of the handle's observable attributes."""
        return IndexStats(
            d=self.d,
            ntotal=self.ntotal,
            is_trained=self.is_trained,
            metric_type=self.metric_type,
            description=self.description,
        )

    def train(self, vectors: Any) -> None:
        """Train the index on a representative sample."""
        matrix = as_matrix(vectors, self.d)
        with engine_errors("train operation"):
            self._require().train(matrix)

    def add(self, vectors: Any) -> None:
        """Append vectors with sequential IDs starting at :attr:`ntotal`."""
        matrix = as_matrix(vectors, self.d)
        self._require_trained("add operation")
        with engine_errors("add operation"):
            self._require().add(matrix)

    def add_with_ids(self, vectors: Any, ids: Any) -> None:
        """Append vectors under caller-chosen IDs."""
        matrix = as_matrix(vectors, self.d)
        self._require_trained("add_with_ids operation")
        id_array = as_ids(ids, matrix.shape[0])
        with engine_errors("add_with_ids operation"):
            self._require().add_with_ids(matrix, id_array)

    def search(self, queries: Any, k: int) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(distances, labels)``, each of shape ``(n_queries, k)``.

        Slots without a neighbour hold label ``-1``.
        """
        matrix = as_matrix(queries, self.d)
        k = validate_k(k)
        self._require_trained("search operation")
        with engine_errors("search operation"):
            distances, labels = self._require().search(matrix, k)
        return distances, labels

    def range_search(self, queries: Any, radius: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(lims, distances, labels)`` for every vector within ``radius``.

        Results for query ``i`` live in ``distances[lims[i]:lims[i + 1]]``.
        """
        matrix = as_matrix(queries, self.d)
        radius = validate_radius(radius)
        self._require_trained("range_search operation")
        with engine_errors("range_search operation"):
            lims, distances, labels = self._require().range_search(matrix, radius)
        return lims, distances, labels

    def remove_ids(self, selector: Selector) -> int:
        """Remove every vector whose ID ``selector`` matches and return the count."""
        if selector is None:
            message = "remove_ids requires a selector"
            raise InvalidSelectorError(message)
        with engine_errors("remove_ids operation"):
            engine_selector = selector.to_engine(self)
            removed = int(self._require().remove_ids(engine_selector))
        logger.debug("remove_ids", removed=removed, ntotal=self.ntotal)
        return removed

    def reset(self) -> None:
        """Remove all vectors from the index."""
        with engine_errors("reset operation"):
            self._require().reset()

    def stored_ids(self) -> np.ndarray:
        """Return the IDs currently held by the index, in ascending order."""
        index = self._require()
        with engine_errors("stored_ids"):
            id_map = getattr(index, "id_map", None)
            if id_map is not None:
                return np.sort(faiss.vector_to_array(id_map).astype("int64"))
            ivf = faiss.try_extract_index_ivf(index)
            if ivf is not None:
                return np.sort(_inverted_list_ids(ivf))
        return np.arange(index.ntotal, dtype="int64")

    def close(self) -> None:
        """Release the engine index; further calls are no-ops."""
        if self._index is None:
            return
        self._finalizer.detach()
        self._index = None

    def _require(self) -> faiss.Index:
        if self._index is None:
            message = "index handle is closed"
            raise IndexClosedError(message)
        return self._index

    def _require_trained(self, operation: str) -> None:
        if not self.is_trained:
            message = f"{operation}: index not trained"
            raise IndexNotTrainedError(message)


def _inverted_list_ids(ivf: faiss.IndexIVF) -> np.ndarray:
    """Collect the IDs stored across every inverted list of ``ivf``."""
    invlists = faiss.downcast_InvertedLists(ivf.invlists)
    chunks: list[np.ndarray] = []
    for list_no in range(ivf.nlist):
        size = invlists.list_size(list_no)
        if size == 0:
            continue
        list_ids = np.zeros(size, dtype="int64")
        ids_ptr = invlists.get_ids(list_no)
        try:
            faiss.memcpy(faiss.swig_ptr(list_ids), ids_ptr, list_ids.nbytes)
        finally:
            invlists.release_ids(list_no, ids_ptr)
        chunks.append(list_ids)
    if not chunks:
        return np.empty(0, dtype="int64")
    return np.concatenate(chunks).astype("int64")
