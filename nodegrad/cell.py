from contextlib import contextmanager
from typing import Any, Iterator, Optional

import numpy as np


class BorrowError(RuntimeError):
    """
    Raised when a buffer is borrowed in a way that breaks the single-writer rule.

    A buffer may have many shared borrows or exactly one mutable borrow
    outstanding, never both. Hitting this error means the graph was wired
    so that a node reads and writes the same buffer in overlapping scopes.
    """


class RefCell:
    """
    Interior-mutable slot holding a tensor (or ``None``) with runtime borrow checks.

    Graph nodes are shared by every child that consumes them, so their value
    and gradient buffers are read by many nodes and written by exactly one.
    ``RefCell`` makes that discipline explicit: :meth:`borrow` hands out a
    read-only view, :meth:`borrow_mut` hands out the array itself, and any
    overlap between a mutable borrow and another borrow raises
    :class:`BorrowError`.

    Parameters
    ----------
    value : numpy.ndarray or None
        Initial content of the cell.

    Examples
    --------
    >>> cell = RefCell(np.zeros(3, dtype=np.float32))
    >>> with cell.borrow_mut() as buf:
    ...     buf[:] = 1.0
    >>> with cell.borrow() as a, cell.borrow() as b:
    ...     float(a.sum() + b.sum())
    6.0
    """
    def __init__(self, value: Optional[np.ndarray] = None) -> None:
        self._value = value
        self._readers = 0
        self._writer = False

    @contextmanager
    def borrow(self) -> Iterator[Any]:
        """
        Borrow the content for reading.

        Yields
        ------
        numpy.ndarray or None
            A non-writeable view of the stored array (or ``None``).

        Raises
        ------
        BorrowError
            If the cell is currently mutably borrowed.
        """
        if self._writer:
            raise BorrowError("already mutably borrowed")
        self._readers += 1
        try:
            value = self._value
            if isinstance(value, np.ndarray):
                value = value.view()
                value.flags.writeable = False
            yield value
        finally:
            self._readers -= 1

    @contextmanager
    def borrow_mut(self) -> Iterator[Any]:
        """
        Borrow the content for writing.

        Raises
        ------
        BorrowError
            If any shared or mutable borrow is outstanding.
        """
        if self._writer:
            raise BorrowError("already mutably borrowed")
        if self._readers:
            raise BorrowError("already borrowed")
        self._writer = True
        try:
            yield self._value
        finally:
            self._writer = False

    def replace(self, value: Optional[np.ndarray]) -> None:
        """Swap the stored content. Requires the cell to be unborrowed."""
        if self._writer or self._readers:
            raise BorrowError("cannot replace a borrowed value")
        self._value = value

    def get(self) -> Optional[np.ndarray]:
        """Return the stored content without registering a borrow."""
        return self._value

    @property
    def is_borrowed(self) -> bool:
        return self._writer or self._readers > 0

    def __repr__(self) -> str:
        state = "mut" if self._writer else f"shared={self._readers}"
        return f"RefCell({self._value!r}, {state})"
