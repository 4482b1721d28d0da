import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import numpy as np

from nodegrad.cell import RefCell
from nodegrad.tensor import Shape, as_tensor, reduce, zeros

logger = logging.getLogger(__name__)


class NoGradError(RuntimeError):
    """Raised when the gradient of a node in no-grad state is accessed."""


# ---------------------------------------------------------------------------
# Capability contracts
# ---------------------------------------------------------------------------

class Data(ABC):
    """A node that exposes a forward value."""

    @property
    @abstractmethod
    def shape(self) -> Shape:
        ...

    @abstractmethod
    def data(self):
        """Context manager yielding a read-only view of the value."""

    @abstractmethod
    def data_mut(self):
        """Context manager yielding the value buffer for in-place writes."""


class Cache(ABC):
    """Memoization flag for one forward pass."""

    @abstractmethod
    def was_computed(self) -> bool:
        ...

    @abstractmethod
    def reset_computation(self) -> None:
        ...


class Forward(Data, Cache):
    """A data node that can (re)compute its value."""

    @abstractmethod
    def forward(self) -> None:
        """Compute the value unless it was already computed in this pass."""


class Gradient(ABC):
    """A node that owns a gradient accumulator."""

    @property
    @abstractmethod
    def shape(self) -> Shape:
        ...

    @property
    @abstractmethod
    def requires_grad(self) -> bool:
        """Whether the gradient buffer is currently allocated."""

    @abstractmethod
    def gradient(self):
        """
        Context manager yielding a read-only view of the gradient.

        Raises
        ------
        NoGradError
            If the node is in no-grad state.
        """

    @abstractmethod
    def gradient_mut(self):
        """Context manager yielding the gradient buffer for in-place writes."""


class Overwrite(ABC):
    """Per-node flag deciding whether the next push replaces or adds."""

    @abstractmethod
    def can_overwrite(self) -> bool:
        ...

    @abstractmethod
    def set_overwrite(self, state: bool) -> None:
        ...


class Backward(Gradient, Overwrite):
    """A gradient node that propagates its gradient to its parents."""

    @abstractmethod
    def backward(self) -> None:
        """Push this node's gradient contributions into its parents."""

    @abstractmethod
    def no_grad(self) -> None:
        """Drop the gradient buffer."""

    @abstractmethod
    def with_grad(self) -> None:
        """Restore a zeroed gradient buffer, reusing the dropped one if any."""


# ---------------------------------------------------------------------------
# Shared node shells
# ---------------------------------------------------------------------------

class ForwardNode(Forward):
    """
    Shell shared by every forward operation.

    Holds the cached output buffer and the ``computed`` flag. Subclasses only
    provide :meth:`_compute`, which fills ``out`` from the parents' values.

    Parameters
    ----------
    shape : tuple of int
        Output shape, resolved by the subclass at construction time.
    """
    def __init__(self, shape: Sequence[int]) -> None:
        self._shape = tuple(shape)
        self._data = RefCell(zeros(self._shape))
        self._computed = False
        logger.debug("built %s with shape %s", type(self).__name__, self._shape)

    @property
    def shape(self) -> Shape:
        return self._shape

    def data(self):
        return self._data.borrow()

    def data_mut(self):
        return self._data.borrow_mut()

    def was_computed(self) -> bool:
        return self._computed

    def reset_computation(self) -> None:
        self._computed = False

    def forward(self) -> None:
        if self._computed:
            return

        self._computed = True
        with self._data.borrow_mut() as out:
            self._compute(out)

    @abstractmethod
    def _compute(self, out: np.ndarray) -> None:
        ...

    def __repr__(self) -> str:
        data_str = np.array2string(self._data.get(), separator=", ")
        return f"{type(self).__name__}({data_str}, computed={self._computed})"


class BackwardNode(Backward):
    """
    Shell shared by every backward operation.

    Holds the gradient buffer (``None`` while in no-grad state), the shape it
    is restored with, and the overwrite flag. Subclasses only provide
    :meth:`backward`.

    Notes
    -----
    The overwrite flag starts as ``True``: the first contribution pushed into
    a fresh buffer replaces its content.
    """
    def __init__(self, shape: Sequence[int]) -> None:
        self._shape = tuple(shape)
        self._gradient = RefCell(zeros(self._shape))
        self._retained: Optional[np.ndarray] = None
        self._overwrite = True
        logger.debug("built %s with shape %s", type(self).__name__, self._shape)

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def requires_grad(self) -> bool:
        return self._gradient.get() is not None

    def gradient(self):
        return self._expect(self._gradient.borrow())

    def gradient_mut(self):
        return self._expect(self._gradient.borrow_mut())

    @contextmanager
    def _expect(self, borrowed) -> Iterator[np.ndarray]:
        with borrowed as gradient:
            if gradient is None:
                raise NoGradError(f"{type(self).__name__} is in no-grad state")
            yield gradient

    def can_overwrite(self) -> bool:
        return self._overwrite

    def set_overwrite(self, state: bool) -> None:
        self._overwrite = state

    def no_grad(self) -> None:
        gradient = self._gradient.get()
        self._gradient.replace(None)
        if gradient is not None:
            self._retained = gradient

    def with_grad(self) -> None:
        # Reuse the dropped array so Params taken before no_grad stay live.
        gradient = self._gradient.get()
        if gradient is None:
            gradient = self._retained if self._retained is not None else zeros(self._shape)
        self._gradient.replace(gradient)
        self._retained = None
        gradient.fill(0.0)

    def __repr__(self) -> str:
        gradient = self._gradient.get()
        grad_str = "None" if gradient is None else np.array2string(gradient, separator=", ")
        return f"{type(self).__name__}({grad_str}, overwrite={self._overwrite})"


# ---------------------------------------------------------------------------
# Leaves
# ---------------------------------------------------------------------------

class Input(ForwardNode):
    """
    Data leaf holding a user-supplied tensor.

    Its value is never recomputed, so it always reports itself as computed.
    """
    def __init__(self, value: Any) -> None:
        value = as_tensor(value)
        super().__init__(value.shape)
        self._data.replace(value)
        self._computed = True

    def reset_computation(self) -> None:
        pass

    def _compute(self, out: np.ndarray) -> None:
        pass

    def buffer(self) -> np.ndarray:
        """The value array itself, for consumers that update it in place."""
        return self._data.get()


class InputBackward(BackwardNode):
    """Gradient leaf: the accumulator of a trainable tensor."""

    def backward(self) -> None:
        pass

    def buffer(self) -> np.ndarray:
        """The gradient array itself (``None`` in no-grad state)."""
        return self._gradient.get()


# ---------------------------------------------------------------------------
# Gradient push
# ---------------------------------------------------------------------------

def push_gradient(target: Backward, gradient: np.ndarray) -> None:
    """
    Reduce ``gradient`` to ``target``'s shape and push it into its buffer.

    The first push after the target's overwrite flag was raised replaces the
    buffer content and lowers the flag; every later push adds. A target in
    no-grad state is left untouched.

    Parameters
    ----------
    target : Backward
        Parent gradient node receiving the contribution.
    gradient : numpy.ndarray
        Contribution shaped like the consuming operation's output.
    """
    if not target.requires_grad:
        return

    reduced = reduce(gradient, target.shape)
    with target.gradient_mut() as buf:
        if target.can_overwrite():
            buf[...] = reduced
            target.set_overwrite(False)
        else:
            buf += reduced


def push_mat_mat_gradient(target: Backward, fst: np.ndarray, snd: np.ndarray) -> None:
    """
    Push the matrix product ``fst @ snd`` into ``target``'s gradient.

    Same overwrite-or-accumulate rule as :func:`push_gradient`. When
    overwriting, the product is written straight into the buffer.
    """
    if not target.requires_grad:
        return

    with target.gradient_mut() as buf:
        if target.can_overwrite():
            np.matmul(fst, snd, out=buf)
            target.set_overwrite(False)
        else:
            buf += fst @ snd
