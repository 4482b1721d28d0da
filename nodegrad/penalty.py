import numpy as np


class Penalty:
    """
    Base class for regularization penalties plugged into an optimizer.

    A penalty is a stateless strategy: :meth:`penalise` maps a gradient
    (array or scalar) to the additive term the optimizer adds to it before
    updating its running statistics.
    """
    def penalise(self, gradient):
        raise NotImplementedError

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({args})"


def _check_coefficient(name: str, value: float) -> float:
    value = float(value)
    if value < 0.0:
        raise ValueError(f"Invalid {name}: {value}")
    return value


class L1(Penalty):
    """
    L1 penalty: ``penalise(g) = lambda_ * sign(g)``.

    Parameters
    ----------
    lambda_ : float
        Non-negative regularization strength.
    """
    def __init__(self, lambda_: float) -> None:
        self.lambda_ = _check_coefficient("lambda_", lambda_)

    def penalise(self, gradient):
        return self.lambda_ * np.sign(gradient)


class L2(Penalty):
    """
    L2 penalty: ``penalise(g) = 2 * lambda_ * g``.

    Parameters
    ----------
    lambda_ : float
        Non-negative regularization strength.
    """
    def __init__(self, lambda_: float) -> None:
        self.lambda_ = _check_coefficient("lambda_", lambda_)

    def penalise(self, gradient):
        return 2.0 * self.lambda_ * gradient


class ElasticNet(Penalty):
    """Sum of an :class:`L1` and an :class:`L2` penalty."""

    def __init__(self, lambda_l1: float, lambda_l2: float) -> None:
        self.lambda_l1 = _check_coefficient("lambda_l1", lambda_l1)
        self.lambda_l2 = _check_coefficient("lambda_l2", lambda_l2)

    def penalise(self, gradient):
        return self.lambda_l1 * np.sign(gradient) + 2.0 * self.lambda_l2 * gradient
