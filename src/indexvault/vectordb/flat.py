"""Exhaustive-search index handle and builder."""

from __future__ import annotations

from typing import Any

import faiss
import numpy as np

from indexvault.errors import EmptyIndexError, InvalidDimensionError, InvalidInputError, InvalidVectorsError
from indexvault.models import MetricType
from indexvault.vectordb.handle import IndexHandle, engine_errors
from indexvault.vectordb.vectors import as_matrix, normalize_vectors

_FLOAT32_BYTES = 4
_FLAT_OVERHEAD_BYTES = 1024


class FlatIndexHandle(IndexHandle):
    """Handle over an ``IndexFlat``: full vectors stored, exhaustive search.

    IDs are storage positions, so they are ``0..ntotal-1`` and shift down
    after a removal.
    """

    @classmethod
    def create(cls, d: int, metric: MetricType | int | str = MetricType.L2) -> FlatIndexHandle:
        """Create an empty flat index of dimension ``d``."""
        if d <= 0:
            message = f"dimension must be positive, got {d}"
            raise InvalidDimensionError(message)
        metric_type = MetricType.parse(metric)
        with engine_errors("IndexFlat creation"):
            index = faiss.IndexFlat(d, int(metric_type))
        return cls(index, description="Flat")

    def get_vector(self, id_: int) -> np.ndarray:
        """Return a copy of the vector stored at ``id_``."""
        self._check_id(id_)
        with engine_errors("reconstruct"):
            return np.asarray(self.engine_index.reconstruct(int(id_)), dtype="float32")

    def get_vectors(self, ids: list[int]) -> np.ndarray:
        """Return copies of the vectors stored at ``ids`` as an ``(len(ids), d)`` matrix."""
        if len(ids) == 0:
            message = "empty IDs slice"
            raise InvalidInputError(message)
        for id_ in ids:
            self._check_id(id_)
        with engine_errors("reconstruct_batch"):
            return np.asarray(
                self.engine_index.reconstruct_batch(np.asarray(ids, dtype="int64")),
                dtype="float32",
            )

    def get_vector_range(self, start: int, end: int) -> np.ndarray:
        """Return copies of the vectors in ``[start, end)``; ``end`` is clamped to ``ntotal``."""
        if start < 0 or end < 0:
            message = f"negative range values: start={start}, end={end}"
            raise InvalidInputError(message)
        if start >= end:
            message = f"invalid range: start={start} >= end={end}"
            raise InvalidInputError(message)
        ntotal = self.ntotal
        if start >= ntotal:
            message = f"start index {start} >= ntotal {ntotal}"
            raise InvalidInputError(message)
        end = min(end, ntotal)
        with engine_errors("reconstruct_n"):
            return np.asarray(self.engine_index.reconstruct_n(start, end - start), dtype="float32")

    def compute_distances(self, query: Any) -> np.ndarray:
        """Return the distance from ``query`` to every stored vector, in storage order."""
        matrix = as_matrix(query, self.d)
        if matrix.shape[0] != 1:
            message = f"expected a single query vector, received {matrix.shape[0]}"
            raise InvalidVectorsError(message)
        ntotal = self._require_vectors()
        distances, labels = self.search(matrix, ntotal)
        ordered = np.empty(ntotal, dtype="float32")
        ordered[labels[0]] = distances[0]
        return ordered

    def compute_l2_norms(self) -> np.ndarray:
        """Return the L2 norm of every stored vector."""
        ntotal = self._require_vectors()
        vectors = self.get_vector_range(0, ntotal)
        return np.linalg.norm(vectors, axis=1).astype("float32")

    def normalize_stored_vectors(self) -> None:
        """Rescale every stored vector to unit length, keeping IDs and order."""
        ntotal = self._require_vectors()
        normalized = normalize_vectors(self.get_vector_range(0, ntotal), self.d)
        self.reset()
        self.add(normalized)

    def memory_usage(self) -> int:
        """Estimated bytes held by the stored vectors."""
        return self.ntotal * self.d * _FLOAT32_BYTES + _FLAT_OVERHEAD_BYTES

    def _require_vectors(self) -> int:
        ntotal = self.ntotal
        if ntotal == 0:
            message = "index is empty"
            raise EmptyIndexError(message)
        return ntotal

    def _check_id(self, id_: int) -> None:
        ntotal = self.ntotal
        if id_ < 0 or id_ >= ntotal:
            message = f"invalid vector ID: {id_} (valid range: 0-{ntotal - 1})"
            raise InvalidInputError(message)


class FlatIndexBuilder:
    """Collects vectors and settings, then builds a populated flat index."""

    def __init__(self, d: int) -> None:
        """Start an empty builder for vectors of dimension ``d``."""
        self._d = d
        self._metric = MetricType.L2
        self._normalize = False
        self._rows: list[np.ndarray] = []

    def set_metric(self, metric: MetricType | int | str) -> FlatIndexBuilder:
        """Choose the distance metric of the built index."""
        self._metric = MetricType.parse(metric)
        return self

    def set_normalize(self, normalize: bool) -> FlatIndexBuilder:
        """Scale vectors to unit length before adding them."""
        self._normalize = normalize
        return self

    def add_vectors(self, vectors: Any) -> FlatIndexBuilder:
        """Queue one vector or a batch of vectors."""
        self._rows.append(as_matrix(vectors, self._d))
        return self

    def clear(self) -> FlatIndexBuilder:
        """Drop every queued vector."""
        self._rows.clear()
        return self

    @property
    def count(self) -> int:
        """Number of queued vectors."""
        return sum(rows.shape[0] for rows in self._rows)

    def build(self) -> FlatIndexHandle:
        """Create the index and add the queued vectors."""
        handle = FlatIndexHandle.create(self._d, self._metric)
        if not self._rows:
            return handle
        vectors = np.vstack(self._rows)
        if self._normalize:
            vectors = normalize_vectors(vectors, self._d)
        try:
            handle.add(vectors)
        except Exception:
            handle.close()
            raise
        return handle
