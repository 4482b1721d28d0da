import numpy as np
import pytest

from nodegrad.cell import BorrowError
from nodegrad.multiplication import Multiplication, MultiplicationBackward
from nodegrad.node import (
    Input,
    InputBackward,
    NoGradError,
    push_gradient,
    push_mat_mat_gradient,
)
from tests.utils import assert_close


def test_first_push_overwrites_then_accumulates():
    parent = InputBackward((2,))
    with parent.gradient_mut() as g:
        g[...] = 100.0  # stale content from an earlier pass

    push_gradient(parent, np.array([1.0, 2.0], dtype=np.float32))
    assert parent.can_overwrite() is False
    with parent.gradient() as g:
        assert_close(g, [1.0, 2.0])

    push_gradient(parent, np.array([10.0, 20.0], dtype=np.float32))
    with parent.gradient() as g:
        assert_close(g, [11.0, 22.0])


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_two_children_sum_regardless_of_order(order):
    contributions = [
        np.array([[1.0, 2.0, 3.0]], dtype=np.float32),
        np.array([[4.0, 5.0, 6.0]], dtype=np.float32),
    ]
    parent = InputBackward((1, 3))
    for i in order:
        push_gradient(parent, contributions[i])

    with parent.gradient() as g:
        assert_close(g, [[5.0, 7.0, 9.0]])


def test_push_reduces_to_parent_shape():
    parent = InputBackward((3, 1))
    push_gradient(parent, np.ones((2, 3, 4), dtype=np.float32))
    with parent.gradient() as g:
        assert_close(g, np.full((3, 1), 8.0))


def test_push_into_no_grad_parent_is_noop():
    parent = InputBackward((2,))
    parent.no_grad()
    push_gradient(parent, np.ones(2, dtype=np.float32))
    push_mat_mat_gradient(parent, np.ones((2, 2)), np.ones((2, 2)))
    assert parent.requires_grad is False
    assert parent.can_overwrite() is True


def test_mat_mat_push_overwrites_then_accumulates():
    parent = InputBackward((2, 2))
    a = np.eye(2, dtype=np.float32)
    b = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)

    with parent.gradient_mut() as g:
        g[...] = -7.0
    push_mat_mat_gradient(parent, a, b)
    with parent.gradient() as g:
        assert_close(g, b)

    push_mat_mat_gradient(parent, a, b)
    with parent.gradient() as g:
        assert_close(g, 2 * b)


def test_gradient_on_no_grad_node_fails():
    left, right = Input([1.0, 2.0]), Input([3.0, 4.0])
    node = MultiplicationBackward(left, InputBackward((2,)), right, InputBackward((2,)))
    node.no_grad()

    assert node.requires_grad is False
    with pytest.raises(NoGradError):
        with node.gradient():
            pass
    with pytest.raises(NoGradError):
        with node.gradient_mut():
            pass


def test_no_grad_then_with_grad_restores_zero_buffer():
    node = MultiplicationBackward(
        Input(np.ones((2, 1))), InputBackward((2, 1)),
        Input(np.ones((3,))), InputBackward((3,)),
    )
    with node.gradient_mut() as g:
        g[...] = 5.0

    node.no_grad()
    node.with_grad()

    with node.gradient() as g:
        assert g.shape == (2, 3)
        assert_close(g, np.zeros((2, 3)))


def test_forward_is_memoized_until_reset():
    left = Input([2.0])
    right = Input([3.0])
    node = Multiplication(left, right)
    assert node.was_computed() is False

    node.forward()
    assert node.was_computed() is True
    with node.data() as d:
        assert_close(d, [6.0])

    with left.data_mut() as l:
        l[...] = 5.0
    node.forward()
    with node.data() as d:
        assert_close(d, [6.0])

    node.reset_computation()
    node.forward()
    with node.data() as d:
        assert_close(d, [15.0])


def test_input_is_always_computed():
    x = Input([1.0, 2.0])
    x.reset_computation()
    assert x.was_computed() is True
    assert x.shape == (2,)
    assert x.buffer().dtype == np.float32


def test_forward_while_value_is_borrowed_fails():
    node = Multiplication(Input([1.0]), Input([2.0]))
    with node.data():
        with pytest.raises(BorrowError):
            node.forward()


def test_with_grad_reuses_dropped_buffer():
    node = InputBackward((2,))
    before = node.buffer()

    node.no_grad()
    node.no_grad()
    node.with_grad()

    assert node.buffer() is before
    with node.gradient() as g:
        assert_close(g, np.zeros((2,)))
