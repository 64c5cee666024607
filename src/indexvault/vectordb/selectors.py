"""Predicate algebra over vector IDs, used to drive removals.

Every selector answers ``id in selector`` and can vectorise that test over an
array of IDs with :meth:`Selector.mask`. Ranges and explicit ID sets map
directly onto engine selectors. Composite selectors (``&``, ``|``, ``~``) are
combinators over the predicates and are resolved against the IDs an index
actually stores when they are handed to the engine.
"""

from __future__ import annotations

import abc
import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import faiss
import numpy as np

from indexvault.errors import InvalidSelectorError

if TYPE_CHECKING:
    from indexvault.vectordb.handle import IndexHandle


class Selector(abc.ABC):
    """Immutable predicate over vector IDs."""

    @abc.abstractmethod
    def mask(self, ids: np.ndarray) -> np.ndarray:
        """Return a boolean array flagging the members of ``ids``."""

    @abc.abstractmethod
    def to_engine(self, handle: IndexHandle | None = None) -> faiss.IDSelector:
        """Build the engine selector used by ``remove_ids``."""

    def __contains__(self, id_: object) -> bool:
        if not isinstance(id_, (int, np.integer)):
            return False
        return bool(self.mask(np.asarray([id_], dtype="int64"))[0])

    def __and__(self, other: object) -> CompositeSelector:
        if not isinstance(other, Selector):
            return NotImplemented
        return and_(self, other)

    def __or__(self, other: object) -> CompositeSelector:
        if not isinstance(other, Selector):
            return NotImplemented
        return or_(self, other)

    def __invert__(self) -> CompositeSelector:
        return not_(self)


@dataclass(frozen=True)
class RangeSelector(Selector):
    """Half-open ID range ``[min_id, max_id)``."""

    min_id: int
    max_id: int

    def __post_init__(self) -> None:
        for name in ("min_id", "max_id"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                message = f"range bound {name} must be an integer, received {value!r}"
                raise InvalidSelectorError(message)
            object.__setattr__(self, name, int(value))
        if self.min_id < 0 or self.max_id < 0:
            message = f"invalid range: min={self.min_id}, max={self.max_id} (must be non-negative)"
            raise InvalidSelectorError(message)
        if self.min_id >= self.max_id:
            message = f"invalid range: min={self.min_id} >= max={self.max_id}"
            raise InvalidSelectorError(message)

    def mask(self, ids: np.ndarray) -> np.ndarray:
        array = np.asarray(ids, dtype="int64")
        return (array >= self.min_id) & (array < self.max_id)

    def to_engine(self, handle: IndexHandle | None = None) -> faiss.IDSelector:
        _ = handle
        return faiss.IDSelectorRange(self.min_id, self.max_id)


@dataclass(frozen=True)
class BatchSelector(Selector):
    """Explicit set of IDs, kept sorted ascending and free of duplicates."""

    ids: tuple[int, ...]
    max_id: int | None = None
    _array: np.ndarray = field(init=False, repr=False, compare=False)

    def __init__(self, ids: Iterable[int], max_id: int | None = None) -> None:
        """Validate ``ids`` and store them deduplicated.

        ``max_id``, when given, rejects any ID greater than or equal to it.
        """
        raw = [int(value) for value in ids]
        if not raw:
            message = "empty IDs slice"
            raise InvalidSelectorError(message)
        clean = remove_duplicate_ids(raw)
        validate_ids(clean, max_id)
        object.__setattr__(self, "ids", tuple(clean))
        object.__setattr__(self, "max_id", max_id)
        object.__setattr__(self, "_array", np.asarray(clean, dtype="int64"))

    def __len__(self) -> int:
        return len(self.ids)

    def mask(self, ids: np.ndarray) -> np.ndarray:
        return np.isin(np.asarray(ids, dtype="int64"), self._array)

    def to_engine(self, handle: IndexHandle | None = None) -> faiss.IDSelector:
        _ = handle
        return _batch_engine_selector(self._array)


class SelectorOp(str, enum.Enum):
    """Boolean combinators available to composite selectors."""

    AND = "and"
    OR = "or"
    NOT = "not"


@dataclass(frozen=True)
class CompositeSelector(Selector):
    """Boolean combination of other selectors."""

    op: SelectorOp
    operands: tuple[Selector, ...]

    def __post_init__(self) -> None:
        if not self.operands:
            message = f"{self.op.value} selector requires at least one operand"
            raise InvalidSelectorError(message)
        if self.op is SelectorOp.NOT and len(self.operands) != 1:
            message = f"not selector takes exactly one operand, received {len(self.operands)}"
            raise InvalidSelectorError(message)
        for position, operand in enumerate(self.operands):
            if not isinstance(operand, Selector):
                message = f"selector at index {position} is not a Selector: {operand!r}"
                raise InvalidSelectorError(message)

    def mask(self, ids: np.ndarray) -> np.ndarray:
        array = np.asarray(ids, dtype="int64")
        masks = [operand.mask(array) for operand in self.operands]
        if self.op is SelectorOp.NOT:
            return ~masks[0]
        if self.op is SelectorOp.AND:
            return np.logical_and.reduce(masks)
        return np.logical_or.reduce(masks)

    def to_engine(self, handle: IndexHandle | None = None) -> faiss.IDSelector:
        """Resolve the predicate against the IDs stored in ``handle``."""
        if handle is None:
            message = "composite selectors must be resolved against an index"
            raise InvalidSelectorError(message)
        stored = handle.stored_ids()
        return _batch_engine_selector(stored[self.mask(stored)])


def and_(*selectors: Selector) -> CompositeSelector:
    """Match IDs matched by every selector."""
    return CompositeSelector(SelectorOp.AND, tuple(selectors))


def or_(*selectors: Selector) -> CompositeSelector:
    """Match IDs matched by any selector."""
    return CompositeSelector(SelectorOp.OR, tuple(selectors))


def not_(selector: Selector) -> CompositeSelector:
    """Match the stored IDs that ``selector`` does not match."""
    return CompositeSelector(SelectorOp.NOT, (selector,))


def validate_ids(ids: Iterable[int], max_id: int | None = None) -> None:
    """Reject empty input, negative IDs, and IDs at or above ``max_id``."""
    values = list(ids)
    if not values:
        message = "empty IDs slice"
        raise InvalidSelectorError(message)
    for position, value in enumerate(values):
        if value < 0:
            message = f"negative ID at index {position}: {value}"
            raise InvalidSelectorError(message)
        if max_id is not None and value >= max_id:
            message = f"ID at index {position} ({value}) >= max_id ({max_id})"
            raise InvalidSelectorError(message)


def remove_duplicate_ids(ids: Iterable[int]) -> list[int]:
    """Return ``ids`` sorted ascending with duplicates dropped."""
    ordered = sorted(ids)
    result: list[int] = []
    for value in ordered:
        if not result or value != result[-1]:
            result.append(value)
    return result


def create_batch_selector(ids: Iterable[int], max_id: int | None = None) -> BatchSelector:
    """Build an explicit-set selector after deduplication and validation."""
    return BatchSelector(ids, max_id=max_id)


def create_range_selector(start: int, end: int, max_id: int | None = None) -> RangeSelector:
    """Build a range selector, clamping ``end`` to ``max_id`` when given."""
    if start < 0 or end < 0:
        message = f"negative range values: start={start}, end={end}"
        raise InvalidSelectorError(message)
    if start >= end:
        message = f"invalid range: start={start} >= end={end}"
        raise InvalidSelectorError(message)
    if max_id is not None:
        if start >= max_id:
            message = f"range start ({start}) >= max_id ({max_id})"
            raise InvalidSelectorError(message)
        end = min(end, max_id)
    return RangeSelector(start, end)


class SelectorBuilder:
    """Accumulates IDs, then validates them once in :meth:`build`."""

    def __init__(self) -> None:
        """Start with no IDs and no upper bound."""
        self._ids: list[int] = []
        self._max_id: int | None = None

    def set_max_id(self, max_id: int | None) -> SelectorBuilder:
        """Reject IDs greater than or equal to ``max_id`` at build time."""
        self._max_id = max_id
        return self

    def add_id(self, id_: int) -> SelectorBuilder:
        """Queue a single ID."""
        self._ids.append(int(id_))
        return self

    def add_ids(self, *ids: int) -> SelectorBuilder:
        """Queue several IDs."""
        self._ids.extend(int(value) for value in ids)
        return self

    def add_range(self, start: int, end: int) -> SelectorBuilder:
        """Queue every ID in ``[start, end)``."""
        self._ids.extend(range(int(start), int(end)))
        return self

    def clear(self) -> SelectorBuilder:
        """Drop every queued ID."""
        self._ids.clear()
        return self

    @property
    def count(self) -> int:
        """Number of queued IDs, duplicates included."""
        return len(self._ids)

    @property
    def ids(self) -> list[int]:
        """Copy of the queued IDs in insertion order."""
        return list(self._ids)

    def build(self) -> BatchSelector:
        """Validate the queued IDs and return the selector."""
        if not self._ids:
            message = "no IDs added to selector"
            raise InvalidSelectorError(message)
        return create_batch_selector(self._ids, self._max_id)


def _batch_engine_selector(ids: np.ndarray) -> faiss.IDSelector:
    array = np.ascontiguousarray(ids, dtype="int64")
    if array.size == 0:
        return faiss.IDSelectorRange(0, 0)
    return faiss.IDSelectorBatch(array.size, faiss.swig_ptr(array))
