import numpy as np

from nodegrad.node import Backward, BackwardNode, Data, ForwardNode, push_gradient
from nodegrad.tensor import broadcast_shape, zeros


class Multiplication(ForwardNode):
    """
    Elementwise product of two data nodes with NumPy-style broadcasting.

    Parameters
    ----------
    left, right : Data
        Operands. Their shapes must be broadcast-compatible; the output shape
        is their broadcast shape.

    Raises
    ------
    ShapeError
        If the operand shapes cannot be broadcast together.

    Examples
    --------
    >>> a, b = Input([[1.], [2.]]), Input([3., 4., 5.])
    >>> m = Multiplication(a, b)
    >>> m.shape
    (2, 3)
    """
    def __init__(self, left: Data, right: Data) -> None:
        super().__init__(broadcast_shape(left.shape, right.shape))
        self.left = left
        self.right = right

    def _compute(self, out: np.ndarray) -> None:
        with self.left.data() as l, self.right.data() as r:
            np.multiply(l, r, out=out)


class MultiplicationBackward(BackwardNode):
    """
    Backward of :class:`Multiplication` when both operands are differentiable.

    Gradients
    ---------
    - ``dL/dleft  = reduce(grad * right, left.shape)``
    - ``dL/dright = reduce(grad * left, right.shape)``

    Both products are written into a single scratch buffer allocated once at
    construction.
    """
    def __init__(
        self,
        left_data: Data,
        left_grad: Backward,
        right_data: Data,
        right_grad: Backward,
    ) -> None:
        super().__init__(broadcast_shape(left_grad.shape, right_grad.shape))
        self._buffer = zeros(self.shape)
        self.left_data = left_data
        self.left_grad = left_grad
        self.right_data = right_data
        self.right_grad = right_grad

    def backward(self) -> None:
        buffer = self._buffer
        with self.gradient() as gradient:
            with self.right_data.data() as r:
                np.multiply(gradient, r, out=buffer)
            push_gradient(self.left_grad, buffer)

            with self.left_data.data() as l:
                np.multiply(gradient, l, out=buffer)
            push_gradient(self.right_grad, buffer)


class MultiplicationBackwardUnary(BackwardNode):
    """
    Backward of :class:`Multiplication` when only one operand is differentiable.

    ``dL/ddiff = reduce(grad * no_diff, diff.shape)``; the constant operand
    gets no contribution, which saves one product per pass.

    Parameters
    ----------
    diff_operand : Backward
        Gradient node of the differentiable operand.
    no_diff_operand : Data
        Data node of the constant operand.
    """
    def __init__(self, diff_operand: Backward, no_diff_operand: Data) -> None:
        super().__init__(broadcast_shape(diff_operand.shape, no_diff_operand.shape))
        self._buffer = zeros(self.shape)
        self.diff_operand = diff_operand
        self.no_diff_operand = no_diff_operand

    def backward(self) -> None:
        with self.gradient() as gradient, self.no_diff_operand.data() as v:
            np.multiply(gradient, v, out=self._buffer)
        push_gradient(self.diff_operand, self._buffer)
