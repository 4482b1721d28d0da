from typing import Any, Sequence, Tuple

import numpy as np

DTYPE = np.float32
"""numpy.dtype: Element type of every tensor value and gradient buffer."""

Shape = Tuple[int, ...]


class ShapeError(ValueError):
    """
    Raised when an operation is built on operands whose shapes cannot be combined.

    This is a graph-construction error: it is raised by node constructors
    before any buffer is allocated, and it is never retried.
    """


def as_tensor(x: Any) -> np.ndarray:
    """
    Convert array-like input into a contiguous ``float32`` array.

    Parameters
    ----------
    x : Any
        Python scalar, nested sequence or ``numpy.ndarray``.

    Returns
    -------
    numpy.ndarray
        A fresh C-contiguous ``float32`` array (never a view of ``x``).
    """
    return np.array(x, dtype=DTYPE, order="C", copy=True)


def zeros(shape: Sequence[int]) -> np.ndarray:
    """Return a zero-filled ``float32`` tensor of the given shape."""
    return np.zeros(tuple(shape), dtype=DTYPE)


def broadcast_shape(left: Sequence[int], right: Sequence[int]) -> Shape:
    """
    Shape obtained by NumPy-style broadcasting of ``left`` against ``right``.

    Shapes are aligned on their trailing axis; missing leading axes count as 1,
    and each aligned pair must be equal or contain a 1.

    Raises
    ------
    ShapeError
        If the two shapes are not broadcast-compatible.

    Examples
    --------
    >>> broadcast_shape((3, 1), (4,))
    (3, 4)
    >>> broadcast_shape((2, 3), (3, 2))
    Traceback (most recent call last):
        ...
    nodegrad.tensor.ShapeError: cannot broadcast shapes (2, 3) and (3, 2)
    """
    left, right = tuple(left), tuple(right)
    try:
        return tuple(np.broadcast_shapes(left, right))
    except ValueError:
        raise ShapeError(f"cannot broadcast shapes {left} and {right}") from None


def cobroadcasted_zeros(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    """Zero tensor shaped like the broadcast of ``left`` and ``right``."""
    return zeros(broadcast_shape(left.shape, right.shape))


def reduce(gradient: np.ndarray, shape: Sequence[int]) -> np.ndarray:
    """
    Reduce a broadcast-shaped gradient back down to ``shape``.

    This is the adjoint of broadcasting: every axis that broadcasting
    replicated is summed out again.

    Parameters
    ----------
    gradient : numpy.ndarray
        Gradient with the broadcast (output) shape.
    shape : sequence of int
        Native (pre-broadcast) shape of the operand.

    Returns
    -------
    numpy.ndarray
        Array of exactly ``shape``. When no axis needs reducing, ``gradient``
        itself is returned (no copy).

    Notes
    -----
    - Leading axes that ``shape`` does not have are summed away first.
    - Then every axis where ``shape`` is 1 and ``gradient`` is larger is
      summed with ``keepdims=True``.
    """
    shape = tuple(shape)
    if gradient.shape == shape:
        return gradient

    lead = gradient.ndim - len(shape)
    if lead > 0:
        gradient = gradient.sum(axis=tuple(range(lead)))
    axes = tuple(
        i for i, (g, t) in enumerate(zip(gradient.shape, shape))
        if t == 1 and g != 1
    )
    if axes:
        gradient = gradient.sum(axis=axes, keepdims=True)

    return gradient.reshape(shape)
