"""ScalarGrad: reverse-mode autodiff over scalar values, plus a small MLP layer."""

from .engine import (
    Value,
    add,
    backward,
    constant,
    div,
    draw_graph,
    exp,
    log,
    maximum,
    minimum,
    mul,
    negate,
    relu,
    reset_gradient,
    sub,
    subtract,
    topological_sort,
    update,
)
from .nn import (
    Module,
    Neuron,
    Layer,
    Network,
    softmax,
    cross_entropy_loss,
    one_hot_encode,
    SGD,
)

__version__ = "0.1.0"

__all__ = [
    "Value",
    "constant",
    "add",
    "sub",
    "mul",
    "div",
    "maximum",
    "minimum",
    "log",
    "exp",
    "relu",
    "negate",
    "subtract",
    "update",
    "reset_gradient",
    "topological_sort",
    "backward",
    "draw_graph",
    "Module",
    "Neuron",
    "Layer",
    "Network",
    "softmax",
    "cross_entropy_loss",
    "one_hot_encode",
    "SGD",
]
