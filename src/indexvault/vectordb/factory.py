"""Factory helpers for index handles."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import faiss

from indexvault.errors import InvalidDimensionError
from indexvault.models import IndexKind, MetricType
from indexvault.vectordb.flat import FlatIndexHandle
from indexvault.vectordb.handle import IndexHandle, engine_errors
from indexvault.vectordb.ivf import IVFFlatIndexHandle

if TYPE_CHECKING:
    from collections.abc import Callable

DEFAULT_NLIST = 100
DEFAULT_PQ_M = 8
DEFAULT_PQ_NBITS = 8
DEFAULT_HNSW_M = 16


def create_index(
    d: int,
    description: str = "Flat",
    metric: MetricType | int | str = MetricType.L2,
) -> IndexHandle:
    """Build an index from a factory description such as ``"IVF100,Flat"`` or ``"HNSW32"``."""
    if d <= 0:
        message = f"dimension must be positive, got {d}"
        raise InvalidDimensionError(message)
    description = description or "Flat"
    metric_type = MetricType.parse(metric)
    with engine_errors("index factory"):
        index = faiss.index_factory(d, description, int(metric_type))
    if isinstance(index, faiss.IndexFlat):
        return FlatIndexHandle(index, description=description)
    if isinstance(index, faiss.IndexIVFFlat):
        return IVFFlatIndexHandle(index, description=description)
    return IndexHandle(index, description=description)


def create_flat_index(d: int, metric: MetricType | int | str = MetricType.L2) -> FlatIndexHandle:
    """Build an empty exhaustive-search index."""
    return FlatIndexHandle.create(d, metric)


def create_ivf_flat_index(
    d: int,
    nlist: int = DEFAULT_NLIST,
    metric: MetricType | int | str = MetricType.L2,
) -> IVFFlatIndexHandle:
    """Build an untrained IVF index with flat storage."""
    return IVFFlatIndexHandle.create(d, nlist, metric)


def index_factory(
    d: int,
    description: str = "Flat",
    metric: MetricType | int | str = MetricType.L2,
) -> Callable[[], IndexHandle]:
    """Return a zero-argument callable building a fresh index, for open-or-create callers."""

    def build() -> IndexHandle:
        return create_index(d, description, metric)

    return build


def index_description(kind: IndexKind | str, **params: Any) -> str:
    """Render the factory description for ``kind`` using ``params`` or defaults.

    Unknown kinds are returned unchanged so raw descriptions pass through.
    """
    try:
        resolved = IndexKind(kind)
    except ValueError:
        return str(kind)
    if resolved is IndexKind.FLAT:
        return "Flat"
    if resolved is IndexKind.IVF_FLAT:
        return f"IVF{_int_param(params, 'nlist', DEFAULT_NLIST)},Flat"
    if resolved is IndexKind.IVF_PQ:
        nlist = _int_param(params, "nlist", DEFAULT_NLIST)
        m = _int_param(params, "m", DEFAULT_PQ_M)
        nbits = _int_param(params, "nbits", DEFAULT_PQ_NBITS)
        return f"IVF{nlist},PQ{m}x{nbits}"
    if resolved is IndexKind.HNSW:
        return f"HNSW{_int_param(params, 'M', DEFAULT_HNSW_M)}"
    return resolved.value


def default_metric_type(kind: IndexKind | str) -> MetricType:
    """Return the metric used when none is requested; every family defaults to L2."""
    _ = kind
    return MetricType.L2


def estimate_memory_usage(kind: IndexKind | str, d: int, n: int, **params: Any) -> int:
    """Estimate the bytes needed to hold ``n`` vectors of dimension ``d``."""
    raw_bytes = n * d * 4
    try:
        resolved = IndexKind(kind)
    except ValueError:
        return raw_bytes
    if resolved is IndexKind.IVF_PQ:
        return n * _int_param(params, "m", DEFAULT_PQ_M)
    if resolved is IndexKind.HNSW:
        return n * (d * 4 + _int_param(params, "M", DEFAULT_HNSW_M) * 8)
    return raw_bytes


def _int_param(params: dict[str, Any], key: str, default: int) -> int:
    value = params.get(key, default)
    return value if isinstance(value, int) and not isinstance(value, bool) else default
