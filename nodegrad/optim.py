import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from nodegrad.penalty import Penalty

logger = logging.getLogger(__name__)


class Param:
    """
    A trainable tensor as seen by an optimizer.

    Parameters
    ----------
    data : numpy.ndarray
        The parameter's value buffer. Updated in place.
    grad : numpy.ndarray
        The parameter's gradient buffer. Read by :meth:`Optimizer.step`,
        zeroed in place by :meth:`Optimizer.zero_grad`.

    Notes
    -----
    Both arrays are the graph's own buffers, obtained once and kept for the
    parameter's lifetime; optimizers must never rebind them.
    """
    __slots__ = ("data", "grad")

    def __init__(self, data: np.ndarray, grad: np.ndarray) -> None:
        if data.shape != grad.shape:
            raise ValueError(f"value shape {data.shape} does not match gradient shape {grad.shape}")
        self.data = data
        self.grad = grad

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    def __repr__(self) -> str:
        return f"Param(shape={self.data.shape})"


def _check_lr(lr: float) -> float:
    if not lr > 0.0:
        raise ValueError(f"Invalid learning rate: {lr}")
    return float(lr)


class Optimizer:
    """
    Base class for all optimizers.

    An optimizer updates a collection of parameters in place based on their
    gradients. Subclasses implement :meth:`_step_param` and the state
    serialization helpers.

    Parameters
    ----------
    params : Iterable[Param]
        Parameters to optimize, kept in the given order.
    num_workers : int or None, default=None
        If greater than 1, :meth:`step` and :meth:`zero_grad` update the
        parameters on a thread pool of that size. Every parameter's value,
        gradient and state are disjoint, so no locking is needed.

    Notes
    -----
    - Per-parameter state lives in ``self.state``, a list aligned with
      ``self.params``, allocated at construction.
    - :meth:`state_dict` mirrors the layout of ``torch.optim.Optimizer``:
      hyperparameters plus one state entry per parameter.
    """
    def __init__(self, params: Iterable[Param], num_workers: Optional[int] = None) -> None:
        self.params = list(params)
        self.num_workers = num_workers
        self.state: List[Any] = [self._init_param_state(p) for p in self.params]
        logger.debug("%s over %d parameters", type(self).__name__, len(self.params))

    def _for_each(self, fn: Callable[..., None], *iterables: Iterable[Any]) -> None:
        if self.num_workers is None or self.num_workers <= 1:
            for args in zip(*iterables):
                fn(*args)
            return

        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            # list() re-raises the first exception from a worker.
            list(executor.map(fn, *iterables))

    def zero_grad(self) -> None:
        """
        Reset gradients of all parameters to zero, in place.

        Running state (moments, step counters) is left untouched.
        """
        self._for_each(lambda p: p.grad.fill(0.0), self.params)

    def step(self) -> None:
        """Perform a single optimization step over every parameter."""
        self._for_each(self._step_param, self.params, self.state)

    def _init_param_state(self, p: Param) -> Any:
        """Allocate the per-parameter state for ``p``."""
        return None

    def _step_param(self, p: Param, state: Any) -> None:
        raise NotImplementedError

    def state_dict(self) -> Dict[str, Any]:
        """
        Return the optimizer state as a Python dictionary.

        Returns
        -------
        dict
            Dictionary containing:
            - ``"hyperparams"``: optimizer hyperparameters (subclass-defined)
            - ``"state"``: per-parameter state entries aligned with ``self.params``
        """
        return {
            "hyperparams": self._get_hyperparams(),
            "state": [self._serialize_param_state(s) for s in self.state],
        }

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        """
        Load optimizer state from a dictionary produced by :meth:`state_dict`.

        Notes
        -----
        - Assumes ``self.params`` correspond to the same parameters as when
          the state was saved (order matters).
        - Hyperparameters are restored first, then per-parameter buffers.
        """
        entries = state_dict["state"]
        if len(entries) != len(self.params):
            raise ValueError(
                f"state_dict holds {len(entries)} parameter states, optimizer has {len(self.params)}"
            )
        self._set_hyperparams(state_dict["hyperparams"])
        self.state = [self._deserialize_param_state(s) for s in entries]

    def _get_hyperparams(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _serialize_param_state(self, state: Any) -> Any:
        return None

    def _deserialize_param_state(self, state: Any) -> Any:
        return None


class SGD(Optimizer):
    """
    Stochastic Gradient Descent.

    ``data -= lr * (grad + penalty.penalise(grad))``

    Parameters
    ----------
    params : Iterable[Param]
        Parameters to optimize.
    lr : float, default=0.01
        Learning rate.
    penalty : Penalty or None, default=None
        Regularization added to the gradient (see :mod:`nodegrad.penalty`).
    num_workers : int or None, default=None
        See :class:`Optimizer`.
    """
    def __init__(
        self,
        params: Iterable[Param],
        lr: float = 0.01,
        penalty: Optional[Penalty] = None,
        num_workers: Optional[int] = None,
    ) -> None:
        self.lr = _check_lr(lr)
        self.penalty = penalty
        super().__init__(params, num_workers=num_workers)

    def _step_param(self, p: Param, state: Any) -> None:
        d_p = p.grad
        if self.penalty is not None:
            d_p = d_p + self.penalty.penalise(d_p)
        p.data -= self.lr * d_p

    def _get_hyperparams(self) -> Dict[str, Any]:
        return {"lr": self.lr, "penalty": self.penalty}

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        self.lr = hyperparams["lr"]
        self.penalty = hyperparams["penalty"]


class AdamState:
    """Running state of one Adam parameter."""

    __slots__ = ("step", "exp_avg", "exp_avg_sq")

    def __init__(self, step: int, exp_avg: np.ndarray, exp_avg_sq: np.ndarray) -> None:
        self.step = step
        self.exp_avg = exp_avg
        self.exp_avg_sq = exp_avg_sq


class Adam(Optimizer):
    """
    Adam optimizer with a pluggable gradient penalty.

    Parameters
    ----------
    params : Iterable[Param]
        Parameters to optimize.
    lr : float, default=0.001
        Learning rate.
    betas : tuple[float, float], default=(0.9, 0.999)
        Coefficients used for computing running averages of gradient and its square.
    penalty : Penalty or None, default=None
        Regularization term added to the raw gradient before the moment
        updates. ``None`` means no penalty.
    eps : float, default=1e-8
        Term added to the denominator for numerical stability.
    num_workers : int or None, default=None
        See :class:`Optimizer`.

    Notes
    -----
    - State per parameter: ``step``, ``exp_avg`` (m), ``exp_avg_sq`` (v),
      zero-initialized when the optimizer is built.
    - With ``g' = g + penalty.penalise(g)`` and ``t`` the parameter's step:

          m = beta1 * m + (1 - beta1) * g'
          v = beta2 * v + (1 - beta2) * g'**2
          data -= lr / (1 - beta1**t) * m / (sqrt(v) / sqrt(1 - beta2**t) + eps)
    """
    def __init__(
        self,
        params: Iterable[Param],
        lr: float = 0.001,
        betas: Tuple[float, float] = (0.9, 0.999),
        penalty: Optional[Penalty] = None,
        eps: float = 1e-8,
        num_workers: Optional[int] = None,
    ) -> None:
        beta1, beta2 = betas
        if not 0.0 <= beta1 < 1.0:
            raise ValueError(f"Invalid beta parameter at index 0: {beta1}")
        if not 0.0 <= beta2 < 1.0:
            raise ValueError(f"Invalid beta parameter at index 1: {beta2}")
        if not eps > 0.0:
            raise ValueError(f"Invalid epsilon value: {eps}")
        self.lr = _check_lr(lr)
        self.betas = (float(beta1), float(beta2))
        self.penalty = penalty
        self.eps = float(eps)
        super().__init__(params, num_workers=num_workers)

    def _init_param_state(self, p: Param) -> AdamState:
        return AdamState(0, np.zeros_like(p.grad), np.zeros_like(p.grad))

    def _step_param(self, p: Param, state: AdamState) -> None:
        beta1, beta2 = self.betas

        state.step += 1
        bias_correction1 = 1 - beta1 ** state.step
        bias_correction2 = 1 - beta2 ** state.step

        d_p = p.grad
        if self.penalty is not None:
            d_p = d_p + self.penalty.penalise(d_p)

        exp_avg, exp_avg_sq = state.exp_avg, state.exp_avg_sq
        exp_avg *= beta1
        exp_avg += (1 - beta1) * d_p             # m_t
        exp_avg_sq *= beta2
        exp_avg_sq += (1 - beta2) * d_p * d_p    # v_t

        denom = np.sqrt(exp_avg_sq) / math.sqrt(bias_correction2) + self.eps
        p.data -= (self.lr / bias_correction1) * exp_avg / denom

    def _get_hyperparams(self) -> Dict[str, Any]:
        return {
            "lr": self.lr,
            "betas": self.betas,
            "penalty": self.penalty,
            "eps": self.eps,
        }

    def _set_hyperparams(self, hyperparams: Dict[str, Any]) -> None:
        self.lr = hyperparams["lr"]
        self.betas = tuple(hyperparams["betas"])
        self.penalty = hyperparams["penalty"]
        self.eps = hyperparams["eps"]

    def _serialize_param_state(self, s: AdamState) -> Dict[str, Any]:
        return {
            "step": s.step,
            "exp_avg": s.exp_avg.copy(),
            "exp_avg_sq": s.exp_avg_sq.copy(),
        }

    def _deserialize_param_state(self, s: Dict[str, Any]) -> AdamState:
        return AdamState(s["step"], s["exp_avg"].copy(), s["exp_avg_sq"].copy())
