"""Tests for the IndexHandle wrapper."""

from __future__ import annotations

import gc

import faiss
import numpy as np
import pytest

from indexvault.errors import (
    EngineError,
    IndexClosedError,
    IndexNotTrainedError,
    InvalidKError,
    InvalidSelectorError,
    InvalidVectorsError,
)
from indexvault.models import IndexStats, MetricType
from indexvault.vectordb.factory import create_index
from indexvault.vectordb.handle import IndexHandle
from indexvault.vectordb.selectors import BatchSelector, RangeSelector


def _vectors(n: int, d: int, seed: int = 0) -> np.ndarray:
    return np.random.default_rng(seed).random((n, d), dtype="float32")


def test_handle_reports_engine_attributes() -> None:
    """Dimension, count, training state and metric mirror the engine index."""
    with IndexHandle(faiss.IndexFlatIP(8), description="Flat") as handle:
        assert handle.d == 8
        assert handle.ntotal == 0
        assert handle.is_trained
        assert handle.metric_type is MetricType.INNER_PRODUCT

        handle.add(_vectors(5, 8))

        assert handle.stats() == IndexStats(
            d=8,
            ntotal=5,
            is_trained=True,
            metric_type=MetricType.INNER_PRODUCT,
            description="Flat",
        )


def test_add_accepts_flat_buffer() -> None:
    """Flat buffers of ``n * d`` values are added as ``n`` vectors."""
    handle = create_index(4)
    handle.add([1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12])

    assert handle.ntotal == 3
    handle.close()


def test_add_rejects_misaligned_buffer_without_touching_index() -> None:
    """Validation happens before the engine call and leaves the index untouched."""
    handle = create_index(4)

    with pytest.raises(InvalidVectorsError):
        handle.add([1.0, 2.0, 3.0])

    assert handle.ntotal == 0
    handle.close()


def test_search_returns_nearest_neighbours() -> None:
    """Search returns per-query distances and labels sorted nearest first."""
    handle = create_index(2)
    handle.add(np.array([[0.0, 0.0], [10.0, 10.0], [1.0, 1.0]], dtype="float32"))

    distances, labels = handle.search(np.array([[0.9, 0.9]], dtype="float32"), k=2)

    assert distances.shape == (1, 2)
    assert labels.tolist() == [[2, 0]]
    assert distances[0, 0] <= distances[0, 1]
    handle.close()


def test_search_pads_missing_neighbours_with_minus_one() -> None:
    """Asking for more neighbours than stored yields ``-1`` labels."""
    handle = create_index(2)
    handle.add(np.array([[0.0, 0.0]], dtype="float32"))

    _, labels = handle.search(np.array([[0.0, 0.0]], dtype="float32"), k=3)

    assert labels.tolist() == [[0, -1, -1]]
    handle.close()


def test_search_rejects_invalid_k() -> None:
    """A non-positive k raises before the engine is called."""
    handle = create_index(2)
    handle.add(np.array([[1.0, 0.0]], dtype="float32"))

    with pytest.raises(InvalidKError, match="k must be a positive integer"):
        handle.search(np.array([[1.0, 0.0]], dtype="float32"), k=0)
    handle.close()


def test_range_search_returns_neighbours_within_radius() -> None:
    """Range search returns the vectors within the squared-L2 radius."""
    handle = create_index(2)
    handle.add(np.array([[0.0, 0.0], [0.5, 0.0], [5.0, 5.0]], dtype="float32"))

    lims, _, labels = handle.range_search(np.array([[0.0, 0.0]], dtype="float32"), radius=1.0)

    assert sorted(labels[lims[0] : lims[1]].tolist()) == [0, 1]
    handle.close()


def test_untrained_index_rejects_add_and_search() -> None:
    """IVF indexes must be trained before add or search."""
    handle = create_index(4, "IVF2,Flat")
    assert not handle.is_trained

    with pytest.raises(IndexNotTrainedError, match="add operation"):
        handle.add(_vectors(3, 4))
    with pytest.raises(IndexNotTrainedError, match="search operation"):
        handle.search(_vectors(1, 4), k=1)

    handle.train(_vectors(200, 4))
    handle.add(_vectors(3, 4, seed=1))

    assert handle.is_trained
    assert handle.ntotal == 3
    handle.close()


def test_engine_failures_are_wrapped_with_operation_context() -> None:
    """Engine ``RuntimeError``s surface as ``EngineError`` naming the operation."""
    handle = create_index(4)

    with pytest.raises(EngineError, match="add_with_ids operation") as excinfo:
        handle.add_with_ids(_vectors(2, 4), [7, 8])

    assert excinfo.value.operation == "add_with_ids operation"
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert handle.ntotal == 0
    handle.close()


def test_remove_ids_range_removes_exact_ids() -> None:
    """``RangeSelector(5, 10)`` on a 20-vector index removes exactly five vectors."""
    handle = create_index(4)
    vectors = _vectors(20, 4)
    handle.add(vectors)

    removed = handle.remove_ids(RangeSelector(5, 10))

    assert removed == 5
    assert handle.ntotal == 15
    remaining = handle.engine_index.reconstruct_n(0, 15)
    np.testing.assert_array_equal(remaining, np.vstack([vectors[:5], vectors[10:]]))
    handle.close()


def test_remove_ids_without_matches_returns_zero() -> None:
    """A selector that matches nothing removes nothing and is not an error."""
    handle = create_index(4)
    handle.add(_vectors(20, 4))

    assert handle.remove_ids(BatchSelector([100, 200])) == 0
    assert handle.ntotal == 20
    handle.close()


def test_remove_ids_requires_selector() -> None:
    """Passing no selector is a validation error."""
    handle = create_index(4)

    with pytest.raises(InvalidSelectorError):
        handle.remove_ids(None)  # type: ignore[arg-type]
    handle.close()


def test_reset_clears_vectors() -> None:
    """Reset drops every stored vector."""
    handle = create_index(4)
    handle.add(_vectors(6, 4))

    handle.reset()

    assert handle.ntotal == 0
    handle.close()


def test_stored_ids_follow_id_map() -> None:
    """ID-mapped indexes report the caller-chosen IDs."""
    handle = create_index(4, "IDMap,Flat")
    handle.add_with_ids(_vectors(3, 4), [30, 10, 20])

    assert handle.stored_ids().tolist() == [10, 20, 30]
    handle.close()


def test_stored_ids_of_ivf_index_skip_removed_ids() -> None:
    """IVF indexes report the IDs actually present in their inverted lists."""
    handle = create_index(4, "IVF4,Flat")
    handle.train(_vectors(400, 4))
    handle.add(_vectors(20, 4, seed=3))

    handle.remove_ids(RangeSelector(0, 5))

    assert handle.stored_ids().tolist() == list(range(5, 20))
    handle.close()


def test_close_releases_engine_index_and_is_idempotent() -> None:
    """A closed handle rejects further use; closing twice is harmless."""
    handle = create_index(4)
    handle.close()
    handle.close()

    assert handle.closed
    assert "closed" in repr(handle)
    with pytest.raises(IndexClosedError):
        _ = handle.ntotal
    with pytest.raises(IndexClosedError):
        handle.add(_vectors(1, 4))


def test_close_detaches_finalizer() -> None:
    """Explicit close disarms the leak backstop."""
    handle = create_index(4)
    finalizer = handle._finalizer

    handle.close()

    assert not finalizer.alive


def test_finalizer_releases_forgotten_handle() -> None:
    """A handle dropped without close is released by the finalizer backstop."""
    handle = create_index(4)
    finalizer = handle._finalizer
    assert finalizer.alive

    del handle
    gc.collect()

    assert not finalizer.alive


def test_remove_ids_accepts_numpy_integer_range() -> None:
    """Range bounds given as numpy integers remove the same IDs as Python ints."""
    handle = create_index(4)
    handle.add(_vectors(20, 4))

    removed = handle.remove_ids(RangeSelector(np.int64(5), np.int64(10)))

    assert removed == 5
    assert handle.ntotal == 15
    handle.close()
