"""Sparse array of double values stored as parallel index/value lists."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import NamedTuple


def format_entry(i: int, x: float) -> str:
    """Render a sparse entry as ``"i:x"``.

    The value is printed with at most six decimal places and without
    trailing zeros.

    Args:
        i (int): Index of the entry.
        x (float): Value of the entry.

    Returns:
        str: The formatted entry, e.g. ``"3:0.25"`` or ``"7:1"``.

    Examples:
        >>> format_entry(3, 0.25)
        '3:0.25'
        >>> format_entry(7, 1.0)
        '7:1'
    """
    text = f"{x:.6f}".rstrip("0").rstrip(".")
    if text in {"-0", ""}:
        text = "0"
    return f"{i}:{text}"


class SparseEntry(NamedTuple):
    """A transient ``(index, value)`` pair produced when iterating a SparseArray.

    Attributes:
        i (int): Index of the entry.
        x (float): Value of the entry.
    """

    i: int
    x: float

    def __str__(self) -> str:
        """Return the entry as ``"i:x"``."""
        return format_entry(self.i, self.x)


class SparseArray:
    """Sparse array of double values.

    Index and value are kept in two parallel lists. Entries are unordered
    unless ``sort()`` has been called. Lookups scan linearly, which suits the
    short arrays and iteration-heavy access this container is used for.

    Examples:
        >>> arr = SparseArray()
        >>> arr.set(4, 2.5)
        True
        >>> arr.append(9, 1.0)
        >>> arr.get(4), arr.get(5)
        (2.5, 0.0)
        >>> str(arr)
        '[4:2.5, 9:1]'
    """

    __slots__ = ("_index", "_value")

    def __init__(self, entries: Iterable[SparseEntry | tuple[int, float]] = ()) -> None:
        """Initialize the array from ``(index, value)`` pairs in the given order.

        Zero values are dropped, as in `append`.

        Args:
            entries (Iterable[SparseEntry | tuple[int, float]]): Initial entries.
        """
        self._index: list[int] = []
        self._value: list[float] = []
        for i, x in entries:
            self.append(i, x)

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[SparseEntry]:
        return self.stream()

    def __str__(self) -> str:
        return "[" + ", ".join(format_entry(i, x) for i, x in zip(self._index, self._value, strict=True)) + "]"

    def __repr__(self) -> str:
        return f"SparseArray({list(self.stream())!r})"

    def size(self) -> int:
        """Return the number of nonzero entries."""
        return len(self._index)

    def is_empty(self) -> bool:
        """Return True if the array holds no entries."""
        return not self._index

    def stream(self) -> Iterator[SparseEntry]:
        """Yield entries in the current internal order, starting from position 0.

        Yields:
            SparseEntry: Each stored ``(index, value)`` pair.
        """
        for k in range(len(self._index)):
            yield SparseEntry(self._index[k], self._value[k])

    def sort(self) -> None:
        """Sort the entries such that the indices are in ascending order."""
        pairs = sorted(zip(self._index, self._value, strict=True), key=lambda pair: pair[0])
        self._index = [i for i, _ in pairs]
        self._value = [x for _, x in pairs]

    def get(self, i: int) -> float:
        """Return the value at index ``i``.

        Args:
            i (int): The index of the entry.

        Returns:
            float: The stored value, or 0.0 if the index is not present.
        """
        for k, index in enumerate(self._index):
            if index == i:
                return self._value[k]
        return 0.0

    def set(self, i: int, x: float) -> bool:
        """Set or add an entry.

        A zero value removes the entry for ``i``.

        Args:
            i (int): The index of the entry.
            x (float): The value of the entry.

        Returns:
            bool: True if a new entry was added, False if an existing entry was
                updated or removed (or nothing changed).
        """
        if x == 0.0:
            self.remove(i)
            return False

        for k, index in enumerate(self._index):
            if index == i:
                self._value[k] = float(x)
                return False

        self._index.append(int(i))
        self._value.append(float(x))
        return True

    def append(self, i: int, x: float) -> None:
        """Append an entry without checking whether ``i`` is already present.

        Intended for building an array in increasing index order. Zero values
        are dropped.

        Args:
            i (int): The index of the entry.
            x (float): The value of the entry.
        """
        if x != 0.0:
            self._index.append(int(i))
            self._value.append(float(x))

    def remove(self, i: int) -> None:
        """Remove the entry at index ``i``, keeping the order of the others.

        Args:
            i (int): The index of the entry.
        """
        for k, index in enumerate(self._index):
            if index == i:
                del self._index[k]
                del self._value[k]
                return
