"""FIFO queue over a contiguous buffer, built for bulk slice transfers.

The live elements always occupy one contiguous run ``[front, front + length)``
of the backing store, so the whole queue can be handed out as a single view
(useful for byte streams). Space freed at the head is reclaimed by compaction,
shifting the live run back to offset 0, never by wrapping around. ``_reserve``
chooses between compaction and doubling so that every element is moved O(1)
times on average, whatever the mix of pushes and pops.

The backing store is picked once per queue through ``QueueConfig.strategy``:
``"safe"`` uses a bounds-checked list, ``"fast"`` a NumPy array moved in
blocks. Both produce the same lengths, capacities and element sequences for
the same operations.
"""

import itertools
import logging
import operator
import sys
from collections.abc import Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

import numpy as np

from queue_storage import QueueView, make_storage

logger = logging.getLogger(__name__)

STRATEGIES = ("safe", "fast")
SHRINK_MODES = ("opportunistic", "aggressive", "disabled")

_SIZED = (Sequence, np.ndarray)
_SLICEABLE = (list, tuple, bytes, bytearray, memoryview, np.ndarray, QueueView)


class SliceQueueError(Exception):
    """Base class for every error raised by SliceQueue."""


class CapacityExceeded(SliceQueueError, OverflowError):
    """A push would take the queue past ``max_capacity``.

    ``pushed`` counts the elements the failing call committed before it
    stopped. ``rejected`` holds the element pulled from a lazy iterable that
    did not fit, since it can no longer be given back to the iterator.
    """

    def __init__(self, message, pushed=0, rejected=None):
        super().__init__(message)
        self.pushed = pushed
        self.rejected = rejected


class Empty(SliceQueueError, IndexError):
    pass


class InsufficientElements(SliceQueueError, IndexError):
    def __init__(self, requested, available):
        super().__init__(
            f"requested {requested} elements but only {available} are queued"
        )
        self.requested = requested
        self.available = available


class IndexOutOfBounds(SliceQueueError, IndexError):
    pass


class AllocationFailure(SliceQueueError, MemoryError):
    pass


class BorrowError(SliceQueueError, RuntimeError):
    pass


class CapabilityDisabled(SliceQueueError, RuntimeError):
    pass


@dataclass(frozen=True)
class QueueConfig:
    """Options fixed when a queue is built.

    Attributes
    ----------
    strategy:
        ``"safe"`` for the bounds-checked list store, ``"fast"`` for the
        NumPy block-transfer store.
    expose_buffer:
        Enables ``buffer()`` and ``borrow_mut()``.
    shrink_mode:
        What pops do with unused capacity. ``"opportunistic"`` halves the
        store once it is less than a quarter full, ``"aggressive"`` shrinks
        it to the live length after every pop (not amortized O(1)), and
        ``"disabled"`` never shrinks.
    min_capacity:
        Smallest store allocated when an empty queue first grows.
    """

    strategy: str = "safe"
    expose_buffer: bool = False
    shrink_mode: str = "opportunistic"
    min_capacity: int = 4

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ValueError(f"strategy must be one of {STRATEGIES}, got {self.strategy!r}")
        if self.shrink_mode not in SHRINK_MODES:
            raise ValueError(
                f"shrink_mode must be one of {SHRINK_MODES}, got {self.shrink_mode!r}"
            )
        if not isinstance(self.min_capacity, int) or self.min_capacity < 1:
            raise ValueError("min_capacity must be a positive integer")


DEFAULT_CONFIG = QueueConfig()


def _check_count(n):
    try:
        n = operator.index(n)
    except TypeError:
        raise ValueError("n must be a non-negative integer") from None
    if n < 0:
        raise ValueError("n must be a non-negative integer")
    return n


def _prefix(values, n):
    """First ``n`` elements of a sized sequence, which may not support slicing."""
    if n == len(values):
        return values
    if isinstance(values, _SLICEABLE):
        return values[:n]
    return list(itertools.islice(values, n))


def _check_limit(limit):
    if limit is not None and (not isinstance(limit, int) or limit < 1):
        raise ValueError("max_capacity must be None or a positive integer")


class SliceQueue:
    """FIFO queue whose live elements stay contiguous in memory.

    Args:
        capacity: Slots to allocate up front
        max_capacity: Optional bound on the number of queued elements
        dtype: Element dtype for the ``"fast"`` strategy (default ``object``);
            kept only as metadata by the ``"safe"`` strategy
        config: QueueConfig, defaults to DEFAULT_CONFIG
    """

    def __init__(
        self,
        capacity: int = 0,
        max_capacity: Optional[int] = None,
        dtype=None,
        config: Optional[QueueConfig] = None,
    ):
        if not isinstance(capacity, int) or capacity < 0:
            raise ValueError("capacity must be a non-negative integer")
        _check_limit(max_capacity)
        self._config = DEFAULT_CONFIG if config is None else config
        self._store = make_storage(self._config.strategy, capacity, dtype)
        self._front = 0
        self._length = 0
        self._max_capacity = max_capacity
        self._borrowed = False

    @classmethod
    def from_iterable(cls, values, max_capacity=None, dtype=None, config=None):
        queue = cls(max_capacity=max_capacity, dtype=dtype, config=config)
        queue.push_many(values)
        return queue

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def strategy(self) -> str:
        return self._config.strategy

    @property
    def dtype(self):
        return self._store.dtype

    @property
    def max_capacity(self) -> Optional[int]:
        return self._max_capacity

    @max_capacity.setter
    def max_capacity(self, limit: Optional[int]) -> None:
        """Change the bound. It may not drop below the current length."""
        _check_limit(limit)
        if limit is not None and limit < self._length:
            raise ValueError(
                f"max_capacity {limit} is below the current length {self._length}"
            )
        self._max_capacity = limit

    def capacity(self) -> int:
        return self._store.capacity

    def is_empty(self) -> bool:
        return self._length == 0

    def remaining(self) -> int:
        """Elements that can still be pushed before ``max_capacity`` is hit."""
        if self._max_capacity is None:
            return sys.maxsize
        return max(0, self._max_capacity - self._length)

    def reserved(self) -> int:
        """Elements that can be pushed without compacting or reallocating."""
        return self._store.capacity - self._front - self._length

    def __len__(self):
        return self._length

    def __bool__(self):
        return self._length > 0

    # ------------------------------------------------------------------
    # Buffer policy
    # ------------------------------------------------------------------

    def _guard(self):
        if self._borrowed:
            raise BorrowError("queue is exclusively borrowed by borrow_mut()")

    def _at_limit(self, extra=1):
        return self._max_capacity is not None and self._length + extra > self._max_capacity

    def _reserve(self, additional):
        capacity = self._store.capacity
        if self._front + self._length + additional <= capacity:
            return
        needed = self._length + additional
        # Shifting costs one move per live element; with front >= length
        # every move is paid for by an earlier pop.
        if needed <= capacity and self._front >= self._length:
            self._compact()
            return
        self._reallocate(max(2 * capacity, needed, self._config.min_capacity))

    def _compact(self):
        logger.debug("compacting %d elements from offset %d", self._length, self._front)
        self._store.shift(self._front, self._length)
        self._front = 0

    def _reallocate(self, new_capacity):
        try:
            store = self._store.allocate(new_capacity)
        except MemoryError as exc:
            raise AllocationFailure(f"could not allocate {new_capacity} slots") from exc
        logger.debug(
            "reallocating %d -> %d slots (%d live)",
            self._store.capacity, new_capacity, self._length,
        )
        self._store.relocate(store, self._front, self._length)
        self._store = store
        self._front = 0

    def _after_pop(self):
        if self._length == 0:
            self._front = 0
        mode = self._config.shrink_mode
        capacity = self._store.capacity
        if mode == "aggressive":
            target = self._length if capacity > self._length else None
        elif mode == "opportunistic" and 4 < self._length <= capacity // 4:
            target = 2 * self._length
        else:
            target = None
        if target is None:
            return
        try:
            self._reallocate(target)
        except AllocationFailure:
            # the elements are already handed out; keep the larger store
            logger.warning("could not shrink store to %d slots", target, exc_info=True)

    def reserve(self, n: int) -> int:
        """Make room for ``n`` more pushes, clamped to ``remaining()``.

        Returns the number of slots actually reserved.
        """
        self._guard()
        n = _check_count(n)
        n = min(n, self.remaining())
        self._reserve(n)
        return n

    def shrink_to_fit(self) -> None:
        self._guard()
        if self._store.capacity != self._length:
            self._reallocate(self._length)

    # ------------------------------------------------------------------
    # Push engine
    # ------------------------------------------------------------------

    def push(self, value) -> None:
        self._guard()
        if self._at_limit():
            raise CapacityExceeded(f"queue is full ({self._max_capacity} elements)")
        self._reserve(1)
        self._store.put(self._front + self._length, value)
        self._length += 1

    def _push_block(self, values):
        count = len(values)
        accepted = min(count, self.remaining())
        if accepted:
            block = _prefix(values, accepted)
            # a view of this queue would go stale when _reserve moves the store
            block = self._store.detach(block)
            self._reserve(accepted)
            self._store.write(self._front + self._length, block)
            self._length += accepted
        if accepted < count:
            raise CapacityExceeded(
                f"only {accepted} of {count} elements fit below max_capacity "
                f"{self._max_capacity}",
                pushed=accepted,
            )

    def push_many(self, values) -> None:
        """Append every element of ``values``, in order.

        Sized sequences are written in one block. Other iterables are pulled
        lazily, one element at a time. If ``max_capacity`` is reached part way
        through, the elements already appended stay queued and
        CapacityExceeded reports how many there were.
        """
        self._guard()
        if isinstance(values, _SIZED):
            self._push_block(values)
            return
        pushed = 0
        for value in values:
            if self._at_limit():
                raise CapacityExceeded(
                    f"queue filled up after {pushed} elements",
                    pushed=pushed,
                    rejected=value,
                )
            self._reserve(1)
            self._store.put(self._front + self._length, value)
            self._length += 1
            pushed += 1

    def push_from(self, values) -> None:
        """Copy the elements of a sized sequence onto the tail.

        ``values`` itself is never modified. Overflow behaves like push_many.
        """
        self._guard()
        if not isinstance(values, _SIZED):
            raise TypeError(f"push_from needs a sized sequence, got {type(values).__name__}")
        self._push_block(values)

    def push_in_place(self, n: int, fill) -> int:
        """Let ``fill`` write up to ``n`` new elements directly into the store.

        ``fill`` receives a writable view of ``n`` fresh slots at the tail and
        returns how many of them it filled. Only that many are committed. If
        ``fill`` raises, nothing is committed and the error propagates.
        """
        self._guard()
        n = _check_count(n)
        if self._at_limit(n):
            raise CapacityExceeded(
                f"{self._length} + {n} elements exceed max_capacity {self._max_capacity}"
            )
        self._reserve(n)
        start = self._front + self._length
        view = self._store.view(start, start + n, writable=True)
        try:
            filled = fill(view)
        except Exception:
            self._store.clear(start, n)
            raise
        finally:
            self._store.seal(view)
        if not isinstance(filled, int) or not 0 <= filled <= n:
            self._store.clear(start, n)
            raise ValueError(f"fill must return a count between 0 and {n}, got {filled!r}")
        self._store.clear(start + filled, n - filled)
        self._length += filled
        return filled

    def write(self, data) -> int:
        """Stream-style push: copy as much of ``data`` as fits, return the count."""
        self._guard()
        accepted = min(len(data), self.remaining())
        if accepted:
            self._push_block(_prefix(data, accepted))
        return accepted

    # ------------------------------------------------------------------
    # Pop engine
    # ------------------------------------------------------------------

    def pop(self):
        self._guard()
        if self._length == 0:
            raise Empty("pop from empty queue")
        value = self._store.get(self._front)
        self._store.clear(self._front, 1)
        self._front += 1
        self._length -= 1
        self._after_pop()
        return value

    def pop_many(self, n: int):
        """Remove the first ``n`` elements and return them as an owned sequence.

        The safe strategy returns a list, the fast one a NumPy array.
        """
        self._guard()
        n = _check_count(n)
        if n > self._length:
            raise InsufficientElements(n, self._length)
        values = self._store.take(self._front, n)
        self._front += n
        self._length -= n
        self._after_pop()
        return values

    def pop_into(self, dest) -> int:
        """Move ``min(len(self), len(dest))`` elements into ``dest[0:k]``.

        Returns ``k``. A short queue is not an error; the count tells the
        caller how much of ``dest`` was filled.
        """
        self._guard()
        count = min(self._length, len(dest))
        if count:
            self._store.move_into(self._front, count, dest)
            self._front += count
            self._length -= count
            self._after_pop()
        return count

    readinto = pop_into

    def discard(self, n: int) -> None:
        self._guard()
        n = _check_count(n)
        if n > self._length:
            raise InsufficientElements(n, self._length)
        self._store.clear(self._front, n)
        self._front += n
        self._length -= n
        self._after_pop()

    def clear(self) -> None:
        self._guard()
        self._store.clear(self._front, self._length)
        self._front = 0
        self._length = 0

    # ------------------------------------------------------------------
    # Peek / indexed view
    # ------------------------------------------------------------------

    def peek(self):
        self._guard()
        if self._length == 0:
            raise Empty("peek into empty queue")
        return self._store.get(self._front)

    def peek_many(self, n: int):
        self._guard()
        n = _check_count(n)
        if n > self._length:
            raise InsufficientElements(n, self._length)
        return self._store.view(self._front, self._front + n)

    def peek_all(self):
        return self.peek_many(self._length)

    def _resolve_index(self, index):
        i = operator.index(index)
        if i < 0:
            i += self._length
        if i < 0 or i >= self._length:
            raise IndexOutOfBounds(
                f"index {index} out of range for queue of length {self._length}"
            )
        return i

    def _resolve_range(self, bounds):
        if bounds.step not in (None, 1):
            raise ValueError("queue ranges must be contiguous (step 1)")
        lo = 0 if bounds.start is None else operator.index(bounds.start)
        hi = self._length if bounds.stop is None else operator.index(bounds.stop)
        if lo < 0:
            lo += self._length
        if hi < 0:
            hi += self._length
        if not 0 <= lo <= hi <= self._length:
            raise IndexOutOfBounds(
                f"range [{bounds.start}:{bounds.stop}] out of range for queue "
                f"of length {self._length}"
            )
        return lo, hi

    def __getitem__(self, index):
        self._guard()
        if isinstance(index, slice):
            lo, hi = self._resolve_range(index)
            return self._store.view(self._front + lo, self._front + hi)
        return self._store.get(self._front + self._resolve_index(index))

    def __setitem__(self, index, value):
        self._guard()
        if isinstance(index, slice):
            raise TypeError("SliceQueue only assigns single items; use borrow_mut() for ranges")
        self._store.put(self._front + self._resolve_index(index), value)

    def _require_buffer(self):
        if not self._config.expose_buffer:
            raise CapabilityDisabled("whole-buffer access needs QueueConfig(expose_buffer=True)")

    def buffer(self):
        """Read-only view of the whole live region."""
        self._require_buffer()
        self._guard()
        return self._store.view(self._front, self._front + self._length)

    @contextmanager
    def borrow_mut(self):
        """Exclusive, writable view of the whole live region.

        While the block is open every other view or mutation raises
        BorrowError. The view turns read-only when the block exits.
        """
        self._require_buffer()
        self._guard()
        view = self._store.view(self._front, self._front + self._length, writable=True)
        self._borrowed = True
        try:
            yield view
        finally:
            self._borrowed = False
            self._store.seal(view)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def tolist(self) -> list:
        self._guard()
        return self._store.snapshot(self._front, self._length)

    def copy(self) -> "SliceQueue":
        """Return an independent queue with the same contents, limit and config."""
        self._guard()
        clone = SliceQueue(self._store.capacity, self._max_capacity, self.dtype, self._config)
        if self._length:
            clone._store.write(0, self._store.snapshot(self._front, self._length))
        clone._length = self._length
        return clone

    def __iter__(self):
        self._guard()
        for i in range(self._length):
            yield self._store.get(self._front + i)

    def __eq__(self, other):
        if not isinstance(other, SliceQueue):
            return NotImplemented
        return self.tolist() == other.tolist()

    __hash__ = None

    def __repr__(self):
        contents = self._store.snapshot(self._front, self._length)
        return (
            f"SliceQueue({contents!r}, max_capacity={self._max_capacity}, "
            f"strategy={self.strategy!r})"
        )


__all__ = [
    "AllocationFailure",
    "BorrowError",
    "CapabilityDisabled",
    "CapacityExceeded",
    "DEFAULT_CONFIG",
    "Empty",
    "IndexOutOfBounds",
    "InsufficientElements",
    "QueueConfig",
    "QueueView",
    "SHRINK_MODES",
    "STRATEGIES",
    "SliceQueue",
    "SliceQueueError",
]
