import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from nodegrad.matmul import (
    MatrixMatrixMulT,
    MatrixMatrixMulTBackward,
    MatrixMatrixMulTBackwardLeft,
    MatrixMatrixMulTBackwardRight,
)
from nodegrad.multiplication import (
    Multiplication,
    MultiplicationBackward,
    MultiplicationBackwardUnary,
)
from nodegrad.node import Backward, Forward, Input, InputBackward
from nodegrad.optim import Param
from nodegrad.tensor import Shape

logger = logging.getLogger(__name__)

History = Dict[int, Tuple[Forward, Optional[Backward]]]
"""Ordered map ``id(forward node) -> (forward node, backward node or None)``.

Insertion order is topological: every node comes after all of its parents.
"""


class Var:
    """
    Handle on a non-differentiable node of the computation graph.

    A ``Var`` owns its node and the history of every node it was computed
    from. Applying an operation creates the operation's node(s) eagerly with
    their final shape, but values are only computed by :meth:`forward`.

    Parameters
    ----------
    node : Forward
        The data node this handle points at.
    history : dict, optional
        Ancestors of ``node`` (see :data:`History`). Defaults to ``node`` alone.

    Examples
    --------
    >>> x = leaf([[1., 2.], [3., 4.]])
    >>> y = x * x
    >>> y.forward()
    >>> y.data
    array([[ 1.,  4.],
           [ 9., 16.]], dtype=float32)
    """
    def __init__(self, node: Forward, history: Optional[History] = None) -> None:
        self.node = node
        self.grad_node: Optional[Backward] = None
        self.history = history if history is not None else {id(node): (node, None)}

    @property
    def requires_grad(self) -> bool:
        return self.grad_node is not None

    @property
    def shape(self) -> Shape:
        return self.node.shape

    @property
    def data(self) -> np.ndarray:
        """numpy.ndarray: Copy of the node's current value."""
        with self.node.data() as d:
            return d.copy()

    def forward(self) -> None:
        """
        Run one forward pass over the history.

        Every cached node is reset first, then evaluated parents-first; a node
        shared by several paths is computed once.
        """
        nodes = [node for node, _ in self.history.values()]
        for node in nodes:
            node.reset_computation()
        for node in nodes:
            node.forward()
        logger.debug("forward pass over %d nodes", len(nodes))

    def __mul__(self, other: Union["Var", Any]) -> "Var":
        """Elementwise multiplication with NumPy-style broadcasting."""
        return _binary(
            self,
            _ensure_var(other),
            Multiplication,
            MultiplicationBackward,
            lambda left_grad, right_data: MultiplicationBackwardUnary(left_grad, right_data),
            lambda left_data, right_grad: MultiplicationBackwardUnary(right_grad, left_data),
        )

    def __rmul__(self, other: Any) -> "Var":
        return _ensure_var(other) * self

    def mm_mul_t(self, other: Union["Var", Any]) -> "Var":
        """Matrix product of ``self`` with the transpose of ``other``."""
        return _binary(
            self,
            _ensure_var(other),
            MatrixMatrixMulT,
            MatrixMatrixMulTBackward,
            MatrixMatrixMulTBackwardLeft,
            MatrixMatrixMulTBackwardRight,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.node!r})"


class VarDiff(Var):
    """
    Handle on a differentiable node: a data node paired with its gradient node.

    Parameters
    ----------
    node : Forward
        The data node.
    grad_node : Backward
        The gradient node paired with ``node``.
    history : dict, optional
        Ancestors of the pair (see :data:`History`).
    """
    def __init__(
        self,
        node: Forward,
        grad_node: Backward,
        history: Optional[History] = None,
    ) -> None:
        super().__init__(node, history if history is not None else {id(node): (node, grad_node)})
        self.grad_node = grad_node

    @property
    def grad(self) -> np.ndarray:
        """numpy.ndarray: Copy of the accumulated gradient."""
        with self.grad_node.gradient() as g:
            return g.copy()

    def backward(self, seed: Any = 1.0) -> None:
        """
        Backpropagate from this node.

        Every gradient node in the history is set to overwrite mode, the seed
        is written into this node's gradient, and each operation then pushes
        its contributions to its parents in reverse topological order. The
        gradients left in the history are those of this pass only.

        Parameters
        ----------
        seed : float or array-like, default=1.0
            Upstream gradient of this node, broadcast to its shape. The
            default is the gradient of ``sum(self)``.

        Raises
        ------
        NoGradError
            If this node is in no-grad state.
        """
        grad_nodes = [g for _, g in self.history.values() if g is not None]
        for g in grad_nodes:
            g.set_overwrite(True)

        with self.grad_node.gradient_mut() as root:
            root[...] = seed

        count = 0
        for g in reversed(grad_nodes):
            if isinstance(g, InputBackward) or not g.requires_grad:
                continue
            g.backward()
            count += 1
        logger.debug("backward pass over %d nodes", count)

    def no_grad(self) -> None:
        """Drop the gradient buffer of every node in the history."""
        for _, g in self.history.values():
            if g is not None:
                g.no_grad()

    def with_grad(self) -> None:
        """Restore zeroed gradient buffers for every node in the history."""
        for _, g in self.history.values():
            if g is not None:
                g.with_grad()

    def parameters(self) -> List[Param]:
        """
        Trainable leaves this node depends on.

        Returns
        -------
        list of Param
            One entry per differentiable leaf with an allocated gradient,
            in history order. The arrays are the leaves' own buffers, so an
            optimizer holding them updates the graph in place.
        """
        params = []
        for node, g in self.history.values():
            if isinstance(g, InputBackward) and g.requires_grad:
                params.append(Param(node.buffer(), g.buffer()))
        return params


def leaf(value: Any, requires_grad: bool = False) -> Var:
    """
    Create a graph leaf from array-like data.

    Parameters
    ----------
    value : Any
        Array-like input, converted to ``float32``.
    requires_grad : bool, default=False
        If True, returns a :class:`VarDiff` whose gradient accumulator is a
        fresh :class:`InputBackward`.
    """
    node = Input(value)
    if requires_grad:
        return VarDiff(node, InputBackward(node.shape))
    return Var(node)


def _ensure_var(x: Union[Var, Any]) -> Var:
    if isinstance(x, Var):
        return x
    return leaf(x)


def _binary(
    lhs: Var,
    rhs: Var,
    forward_cls: Callable[..., Forward],
    both_cls: Callable[..., Backward],
    left_cls: Callable[..., Backward],
    right_cls: Callable[..., Backward],
) -> Var:
    """
    Build the forward node of a binary operation and pick its backward variant.

    The variant depends only on which operands are differentiable, so it is
    fixed here, at construction time.
    """
    node = forward_cls(lhs.node, rhs.node)
    history = {**lhs.history, **rhs.history}

    if lhs.requires_grad and rhs.requires_grad:
        grad_node = both_cls(lhs.node, lhs.grad_node, rhs.node, rhs.grad_node)
    elif lhs.requires_grad:
        grad_node = left_cls(lhs.grad_node, rhs.node)
    elif rhs.requires_grad:
        grad_node = right_cls(lhs.node, rhs.grad_node)
    else:
        history[id(node)] = (node, None)
        return Var(node, history)

    history[id(node)] = (node, grad_node)
    return VarDiff(node, grad_node, history)
