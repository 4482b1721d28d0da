from typing import Sequence

import numpy as np

from nodegrad.node import Backward, BackwardNode, Data, ForwardNode, push_mat_mat_gradient
from nodegrad.tensor import Shape, ShapeError


def mm_mul_t_shape(left: Sequence[int], right: Sequence[int]) -> Shape:
    """
    Output shape of ``left @ right.T`` for two matrices.

    Raises
    ------
    ShapeError
        If either operand is not rank 2 or their column counts differ.
    """
    left, right = tuple(left), tuple(right)
    if len(left) != 2 or len(right) != 2:
        raise ShapeError(f"matrix-matrix product needs rank-2 operands, got {left} and {right}")
    if left[1] != right[1]:
        raise ShapeError(f"cannot multiply {left} by the transpose of {right}")
    return left[0], right[0]


class MatrixMatrixMulT(ForwardNode):
    """
    Matrix product of ``left`` with the transpose of ``right``.

    For ``left`` of shape ``(m, k)`` and ``right`` of shape ``(n, k)`` the
    output has shape ``(m, n)``. The transpose is a view, never a copy.

    Notes
    -----
    Every forward overwrites the output buffer; the previous content is
    discarded, never accumulated into.
    """
    def __init__(self, left: Data, right: Data) -> None:
        super().__init__(mm_mul_t_shape(left.shape, right.shape))
        self.left = left
        self.right = right

    def _compute(self, out: np.ndarray) -> None:
        with self.left.data() as l, self.right.data() as r:
            np.matmul(l, r.T, out=out)


class MatrixMatrixMulTBackward(BackwardNode):
    """
    Backward of :class:`MatrixMatrixMulT` when both operands are differentiable.

    Gradients
    ---------
    - ``dL/dleft  = grad @ right``
    - ``dL/dright = grad.T @ left``
    """
    def __init__(
        self,
        left_data: Data,
        left_grad: Backward,
        right_data: Data,
        right_grad: Backward,
    ) -> None:
        super().__init__(mm_mul_t_shape(left_grad.shape, right_grad.shape))
        self.left_data = left_data
        self.left_grad = left_grad
        self.right_data = right_data
        self.right_grad = right_grad

    def backward(self) -> None:
        with self.gradient() as gradient:
            with self.right_data.data() as r:
                push_mat_mat_gradient(self.left_grad, gradient, r)
            with self.left_data.data() as l:
                push_mat_mat_gradient(self.right_grad, gradient.T, l)


class MatrixMatrixMulTBackwardLeft(BackwardNode):
    """Backward of :class:`MatrixMatrixMulT` when only ``left`` is differentiable."""

    def __init__(self, left_grad: Backward, right_data: Data) -> None:
        super().__init__(mm_mul_t_shape(left_grad.shape, right_data.shape))
        self.left_grad = left_grad
        self.right_data = right_data

    def backward(self) -> None:
        with self.gradient() as gradient, self.right_data.data() as r:
            push_mat_mat_gradient(self.left_grad, gradient, r)


class MatrixMatrixMulTBackwardRight(BackwardNode):
    """Backward of :class:`MatrixMatrixMulT` when only ``right`` is differentiable."""

    def __init__(self, left_data: Data, right_grad: Backward) -> None:
        super().__init__(mm_mul_t_shape(left_data.shape, right_grad.shape))
        self.left_data = left_data
        self.right_grad = right_grad

    def backward(self) -> None:
        with self.gradient() as gradient, self.left_data.data() as l:
            push_mat_mat_gradient(self.right_grad, gradient.T, l)
