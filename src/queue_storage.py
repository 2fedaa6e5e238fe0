"""Backing stores for SliceQueue.

Two interchangeable strategies expose the same slot-level interface:

- ListStorage: a Python list. Every slot access is bounds-checked and every
  transfer moves one element at a time.
- BlockStorage: a NumPy array of a fixed dtype. Transfers are block slice
  copies. Dtypes that hold Python objects are not trivially relocatable, so
  vacated slots are reset to None after each move and no element is kept
  alive from two places.

A store knows nothing about the queue's front or length; SliceQueue owns the
growth and compaction policy and only asks the store to move elements.
"""

from collections.abc import Sequence

import numpy as np


class QueueView(Sequence):
    """Zero-copy window ``[start, stop)`` over a list store.

    The window is bound to the store it was cut from and sees the store as it
    is now, so a view should be read before the queue is mutated again.
    """

    __slots__ = ("_data", "_start", "_stop", "_writable")

    def __init__(self, data, start, stop, writable=False):
        self._data = data
        self._start = start
        self._stop = stop
        self._writable = writable

    @property
    def readonly(self):
        return not self._writable

    def seal(self):
        self._writable = False

    def _position(self, index):
        if index < 0:
            index += len(self)
        if index < 0 or index >= len(self):
            raise IndexError("QueueView index out of range")
        return self._start + index

    def __len__(self):
        return self._stop - self._start

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._data[self._start + i] for i in range(*index.indices(len(self)))]
        return self._data[self._position(index)]

    def __setitem__(self, index, value):
        if not self._writable:
            raise TypeError("QueueView is read-only")
        if isinstance(index, slice):
            positions = range(*index.indices(len(self)))
            values = list(value)
            if len(values) != len(positions):
                raise ValueError("QueueView slice assignment cannot change its length")
            for i, item in zip(positions, values):
                self._data[self._start + i] = item
            return
        self._data[self._position(index)] = value

    def __eq__(self, other):
        if not isinstance(other, (Sequence, np.ndarray)):
            return NotImplemented
        return len(self) == len(other) and all(a == b for a, b in zip(self, other))

    __hash__ = None

    def tolist(self):
        return self._data[self._start:self._stop]

    def __repr__(self):
        return f"QueueView({self.tolist()!r})"


class ListStorage:
    kind = "safe"
    relocatable = False

    def __init__(self, capacity=0, dtype=None):
        if not isinstance(capacity, int) or capacity < 0:
            raise ValueError("capacity must be a non-negative integer")
        self._capacity = capacity
        self._data = [None] * capacity
        self.dtype = dtype

    @property
    def capacity(self):
        return self._capacity

    def _check(self, start, count):
        if start < 0 or count < 0 or start + count > self._capacity:
            raise IndexError(
                f"ListStorage: slots [{start}, {start + count}) out of range "
                f"for capacity {self._capacity}"
            )

    def allocate(self, capacity):
        return ListStorage(capacity, self.dtype)

    def get(self, index):
        self._check(index, 1)
        return self._data[index]

    def put(self, index, value):
        self._check(index, 1)
        self._data[index] = value

    def write(self, index, values):
        count = len(values)
        self._check(index, count)
        for i in range(count):
            self._data[index + i] = values[i]

    def relocate(self, dest, start, count):
        self._check(start, count)
        for i in range(count):
            dest.put(i, self._data[start + i])
            self._data[start + i] = None

    def shift(self, start, count):
        self._check(start, count)
        for i in range(count):
            self._data[i] = self._data[start + i]
        for i in range(max(start, count), start + count):
            self._data[i] = None

    def take(self, start, count):
        self._check(start, count)
        out = []
        for i in range(start, start + count):
            out.append(self._data[i])
            self._data[i] = None
        return out

    def move_into(self, start, count, dest):
        self._check(start, count)
        # dest may reject a value part way; slots are only cleared once all landed
        for i in range(count):
            dest[i] = self._data[start + i]
        for i in range(start, start + count):
            self._data[i] = None

    def clear(self, start, count):
        self._check(start, count)
        for i in range(start, start + count):
            self._data[i] = None

    def view(self, start, stop, writable=False):
        self._check(start, stop - start)
        return QueueView(self._data, start, stop, writable)

    def seal(self, view):
        view.seal()

    def detach(self, values):
        if isinstance(values, QueueView) and values._data is self._data:
            return values.tolist()
        return values

    def snapshot(self, start, count):
        self._check(start, count)
        return self._data[start:start + count]


def _as_block(values):
    # bytes would otherwise become a single 'S' scalar
    if isinstance(values, (bytes, bytearray)):
        return np.frombuffer(values, dtype=np.uint8)
    if isinstance(values, memoryview):
        return np.asarray(values)
    return values


def _check_fits(block, target):
    # bytearray and memoryview refuse out-of-range integers; numpy would wrap them
    if block.size == 0 or np.can_cast(block.dtype, target.dtype):
        return
    if block.dtype.kind in "iu" and target.dtype.kind in "iu":
        info = np.iinfo(target.dtype)
        if block.min() < info.min or block.max() > info.max:
            raise ValueError(f"value out of range for a {target.dtype} destination")


class BlockStorage:
    kind = "fast"

    def __init__(self, capacity=0, dtype=object):
        if not isinstance(capacity, int) or capacity < 0:
            raise ValueError("capacity must be a non-negative integer")
        self.dtype = np.dtype(dtype)
        self.relocatable = not self.dtype.hasobject
        self._data = np.empty(capacity, dtype=self.dtype)

    @property
    def capacity(self):
        return self._data.shape[0]

    def allocate(self, capacity):
        return BlockStorage(capacity, self.dtype)

    def _release(self, start, stop):
        if not self.relocatable and stop > start:
            self._data[start:stop] = None

    def get(self, index):
        return self._data[index]

    def put(self, index, value):
        self._data[index] = value

    def write(self, index, values):
        count = len(values)
        if self.relocatable:
            self._data[index:index + count] = _as_block(values)
            return
        # object slots: assign one by one so nested sequences stay single elements
        for i in range(count):
            self._data[index + i] = values[i]

    def relocate(self, dest, start, count):
        dest._data[:count] = self._data[start:start + count]
        self._release(start, start + count)

    def shift(self, start, count):
        # numpy copes with the overlapping source and destination
        self._data[:count] = self._data[start:start + count]
        self._release(max(start, count), start + count)

    def take(self, start, count):
        out = self._data[start:start + count].copy()
        self._release(start, start + count)
        return out

    def move_into(self, start, count, dest):
        block = self._data[start:start + count]
        if isinstance(dest, np.ndarray):
            dest[:count] = block
        elif isinstance(dest, (bytearray, memoryview)) and self.relocatable:
            target = _as_block(dest)
            _check_fits(block, target)
            target[:count] = block
        else:
            for i, value in enumerate(block.tolist()):
                dest[i] = value
        self._release(start, start + count)

    def clear(self, start, count):
        self._release(start, start + count)

    def view(self, start, stop, writable=False):
        window = self._data[start:stop]
        if not writable:
            window.flags.writeable = False
        return window

    def seal(self, view):
        view.flags.writeable = False

    def detach(self, values):
        if isinstance(values, np.ndarray) and np.may_share_memory(values, self._data):
            return values.copy()
        return values

    def snapshot(self, start, count):
        return self._data[start:start + count].tolist()


def make_storage(strategy, capacity=0, dtype=None):
    if strategy == "safe":
        return ListStorage(capacity, dtype)
    if strategy == "fast":
        return BlockStorage(capacity, object if dtype is None else dtype)
    raise ValueError(f"unknown storage strategy {strategy!r}")
