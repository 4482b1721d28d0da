from nodegrad.cell import BorrowError, RefCell
from nodegrad.node import Input, InputBackward, NoGradError, push_gradient, push_mat_mat_gradient
from nodegrad.optim import SGD, Adam, Param
from nodegrad.penalty import L1, L2, ElasticNet, Penalty
from nodegrad.tensor import ShapeError, broadcast_shape, reduce
from nodegrad.variable import Var, VarDiff, leaf

__all__ = [
    "Adam",
    "BorrowError",
    "ElasticNet",
    "Input",
    "InputBackward",
    "L1",
    "L2",
    "NoGradError",
    "Param",
    "Penalty",
    "RefCell",
    "SGD",
    "ShapeError",
    "Var",
    "VarDiff",
    "broadcast_shape",
    "leaf",
    "push_gradient",
    "push_mat_mat_gradient",
    "reduce",
]
