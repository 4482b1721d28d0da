import numpy as np
import torch

from nodegrad.variable import Var, leaf

ATOL = 1e-6
RTOL = 1e-5

def make_var(x_np: np.ndarray, requires_grad: bool = True) -> Var:
    return leaf(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = np.asarray(a)
    b = np.asarray(b)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"

def assert_grad_close(v: Var, tt: torch.Tensor, atol=ATOL, rtol=RTOL):
    assert v.requires_grad, "Var is not differentiable"
    assert tt.grad is not None, "Torch grad is None"
    assert_close(v.grad, tt.grad.detach().cpu().numpy(), atol=atol, rtol=rtol)

def make_broadcastable_shapes(rng, min_nd=1, max_nd=5, min_size=1, max_size=6):
    a_nd = int(rng.integers(min_nd, max_nd + 1))
    b_nd = int(rng.integers(min_nd, max_nd + 1))
    nd = max(a_nd, b_nd)

    a = []
    b = []
    for _ in range(nd):
        s = int(rng.integers(min_size, max_size + 1))
        r = float(rng.random())
        if r < 0.33:
            a.append(1); b.append(s)
        elif r < 0.66:
            a.append(s); b.append(1)
        else:
            a.append(s); b.append(s)

    a = tuple(a[nd - a_nd :])
    b = tuple(b[nd - b_nd :])
    return a, b
