"""Validation and reshaping helpers for vector buffers."""

from __future__ import annotations

from typing import Any

import numpy as np

from indexvault.errors import (
    EmptyVectorsError,
    InvalidDimensionError,
    InvalidKError,
    InvalidRadiusError,
    InvalidVectorsError,
)

_MATRIX_NDIM = 2


def as_matrix(vectors: Any, d: int) -> np.ndarray:
    """Return ``vectors`` as a contiguous ``(n, d)`` float32 matrix.

    Accepts either a flat buffer of ``n * d`` values or a 2-D array whose
    second axis is ``d``.
    """
    if d <= 0:
        message = f"dimension must be positive, received {d}"
        raise InvalidDimensionError(message)
    array = np.asarray(vectors, dtype="float32")
    if array.size == 0:
        message = "vector buffer is empty"
        raise EmptyVectorsError(message)
    if array.ndim == 1:
        if array.size % d != 0:
            message = f"vectors length {array.size} is not divisible by dimension {d}"
            raise InvalidVectorsError(message)
        array = array.reshape(-1, d)
    elif array.ndim == _MATRIX_NDIM:
        if array.shape[1] != d:
            message = f"vector dimension mismatch: expected {d}, received {array.shape[1]}"
            raise InvalidVectorsError(message)
    else:
        message = f"expected a flat buffer or 2d matrix, received shape {array.shape}"
        raise InvalidVectorsError(message)
    return np.ascontiguousarray(array)


def as_ids(ids: Any, expected: int) -> np.ndarray:
    """Return ``ids`` as an int64 array holding exactly ``expected`` entries."""
    array = np.ascontiguousarray(np.asarray(ids, dtype="int64").reshape(-1))
    if array.size != expected:
        message = f"number of IDs ({array.size}) doesn't match number of vectors ({expected})"
        raise InvalidVectorsError(message)
    return array


def validate_k(k: int) -> int:
    """Ensure ``k`` is a positive integer."""
    try:
        valid = not isinstance(k, bool) and int(k) == k and k > 0
    except (TypeError, ValueError) as exc:
        message = f"k must be a positive integer, received {k!r}"
        raise InvalidKError(message) from exc
    if not valid:
        message = f"k must be a positive integer, received {k}"
        raise InvalidKError(message)
    return int(k)


def validate_radius(radius: float) -> float:
    """Ensure a range-search radius is non-negative."""
    try:
        value = float(radius)
    except (TypeError, ValueError) as exc:
        message = f"radius must be a number, received {radius!r}"
        raise InvalidRadiusError(message) from exc
    if value < 0:
        message = f"radius must be non-negative, received {radius}"
        raise InvalidRadiusError(message)
    return value


def normalize_vectors(vectors: Any, d: int) -> np.ndarray:
    """Return a copy of ``vectors`` scaled to unit L2 length; zero rows stay zero."""
    matrix = as_matrix(vectors, d).copy()
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    nonzero = norms[:, 0] > 0
    matrix[nonzero] /= norms[nonzero]
    return matrix


def vector_slice(vectors: Any, d: int, start: int, count: int) -> np.ndarray | None:
    """Return rows ``[start, start + count)`` of ``vectors``, clamped to the end.

    Returns ``None`` when the requested window is empty or starts past the end.
    """
    if start < 0 or count <= 0:
        return None
    matrix = as_matrix(vectors, d)
    if start >= matrix.shape[0]:
        return None
    return matrix[start : start + count]
