import numpy as np
import pytest

from nodegrad.tensor import ShapeError, broadcast_shape, cobroadcasted_zeros, reduce
from tests.utils import make_broadcastable_shapes


@pytest.mark.parametrize(
    "left, right, expected",
    [
        ((3,), (3,), (3,)),
        ((3, 1), (4,), (3, 4)),
        ((1,), (2, 5), (2, 5)),
        ((2, 1, 4), (3, 1), (2, 3, 4)),
        ((), (2, 2), (2, 2)),
    ],
)
def test_broadcast_shape(left, right, expected):
    assert broadcast_shape(left, right) == expected
    assert broadcast_shape(right, left) == expected


@pytest.mark.parametrize("left, right", [((2, 3), (3, 2)), ((4,), (5,)), ((2, 3, 4), (3, 5))])
def test_broadcast_shape_rejects_incompatible(left, right):
    with pytest.raises(ShapeError):
        broadcast_shape(left, right)


def test_cobroadcasted_zeros_shape_and_dtype():
    z = cobroadcasted_zeros(np.ones((3, 1)), np.ones((1, 4)))
    assert z.shape == (3, 4)
    assert z.dtype == np.float32
    assert not z.any()


def test_reduce_sums_over_broadcast_axes():
    g = np.ones((2, 3, 4), dtype=np.float32)

    assert reduce(g, (3, 4)).shape == (3, 4)
    np.testing.assert_array_equal(reduce(g, (3, 4)), np.full((3, 4), 2.0))
    np.testing.assert_array_equal(reduce(g, (3, 1)), np.full((3, 1), 8.0))
    np.testing.assert_array_equal(reduce(g, (1, 1, 4)), np.full((1, 1, 4), 6.0))
    np.testing.assert_array_equal(reduce(g, (1,)), np.array([24.0]))


def test_reduce_same_shape_is_identity():
    g = np.arange(6, dtype=np.float32).reshape(2, 3)
    assert reduce(g, (2, 3)) is g


def test_reduce_constant_matches_replication_factor(rng):
    for _ in range(10):
        p_shape, other = make_broadcastable_shapes(rng)
        b_shape = broadcast_shape(p_shape, other)
        x = np.full(p_shape, 1.5)

        factor = int(np.prod(b_shape)) // int(np.prod(p_shape))
        out = reduce(np.broadcast_to(x, b_shape), p_shape)

        assert out.shape == p_shape
        assert np.allclose(out, x * factor)


def test_reduce_is_adjoint_of_broadcast(rng):
    for _ in range(20):
        p_shape, other = make_broadcastable_shapes(rng)
        b_shape = broadcast_shape(p_shape, other)
        x = rng.normal(size=p_shape)
        g = rng.normal(size=b_shape)

        lhs = np.sum(g * np.broadcast_to(x, b_shape))
        rhs = np.sum(reduce(g, p_shape) * x)

        assert np.isclose(lhs, rhs, rtol=1e-10, atol=1e-10)
