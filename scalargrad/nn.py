"""
Neural Network Module
=====================

Feed-forward building blocks composed purely from engine operations.

This module provides:
- Module: Base class for all neural network components
- Neuron: Weighted sum plus bias, optionally through ReLU
- Layer: A collection of neurons sharing one input
- Network: A stack of layers, the last one linear
- softmax, cross_entropy_loss, one_hot_encode: classification helpers
- SGD: Plain gradient descent with optional L2 penalty

Parameters are persistent leaf Values. Every forward pass builds a fresh
graph on top of them, and that graph is dropped along with the outputs.
"""

from __future__ import annotations
import functools
import logging
import random
from typing import List, Optional, Sequence, Union

from .engine import Value, add, constant, maximum, minimum, negate, update


logger = logging.getLogger(__name__)

Input = Sequence[Union[Value, float]]


class Module:
    """
    Base class for all neural network modules.

    Provides:
    - parameters(): collect all trainable Value objects
    - zero_grad(): reset gradients before the next backward pass
    """

    def parameters(self) -> List[Value]:
        """
        Return all trainable parameters in this module.

        Override this in subclasses to return the module's parameters.
        """
        return []

    def zero_grad(self) -> None:
        """
        Reset gradients of all parameters to zero.

        The engine never does this on its own; skipping it makes
        successive backward passes accumulate into the same gradients.
        """
        for p in self.parameters():
            p.grad = 0.0

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class Neuron(Module):
    """
    A single artificial neuron.

    Computes: output = relu(sum(w_i * x_i) + b), or the raw sum when
    nonlin is False.

    Attributes:
        w: List of weight Values
        b: Bias Value, always initialised to 0
        nonlin: Whether to apply ReLU

    Example:
        >>> n = Neuron(1, nonlin=False, weights=[2.0])
        >>> n([Value(3.0)]).data
        6.0
    """

    def __init__(
        self,
        nin: int,
        nonlin: bool = True,
        weights: Optional[Sequence[float]] = None
    ) -> None:
        """
        Initialize a neuron.

        Args:
            nin: Number of inputs to this neuron.
            nonlin: Whether to apply ReLU to the output.
            weights: Initial weights. Defaults to He-scaled uniform draws.

        Raises:
            ValueError: If nin is not positive or weights has the wrong
                length.
        """
        if nin < 1:
            raise ValueError(f"Neuron needs at least one input, got {nin}")

        if weights is None:
            # He initialization: keeps ReLU activations from shrinking
            scale = (2.0 / nin) ** 0.5
            weights = [random.uniform(-1, 1) * scale for _ in range(nin)]
        elif len(weights) != nin:
            raise ValueError(
                f"Expected {nin} initial weights, got {len(weights)}"
            )

        self.w: List[Value] = [
            Value(wi, label=f'w{i}') for i, wi in enumerate(weights)
        ]
        self.b: Value = Value(0.0, label='b')
        self.nonlin: bool = nonlin

    @property
    def nin(self) -> int:
        return len(self.w)

    def __call__(self, x: Input) -> Value:
        """
        Forward pass: compute neuron output.

        Args:
            x: List of inputs (Values or floats).

        Returns:
            Single Value representing neuron output.

        Raises:
            ValueError: If input length doesn't match weight count.
        """
        if len(x) != len(self.w):
            raise ValueError(
                f"Expected {len(self.w)} inputs, got {len(x)}"
            )

        act = sum((wi * xi for wi, xi in zip(self.w, x)), start=self.b)
        return act.relu() if self.nonlin else act

    def parameters(self) -> List[Value]:
        """Return bias followed by weights."""
        return [self.b] + self.w

    def __repr__(self) -> str:
        act = 'ReLU' if self.nonlin else 'Linear'
        return f"Neuron({len(self.w)}, {act})"


class Layer(Module):
    """
    A fully connected layer of neurons.

    Every neuron receives the same input, so a layer with `nout` neurons
    maps an input of size `nin` to an output of size `nout`.

    Attributes:
        neurons: List of Neuron objects
    """

    def __init__(self, nin: int, nout: int, nonlin: bool = True) -> None:
        """
        Initialize a layer.

        Args:
            nin: Number of inputs per neuron.
            nout: Number of neurons (outputs).
            nonlin: Whether neurons apply ReLU.

        Raises:
            ValueError: If nout is not positive.
        """
        if nout < 1:
            raise ValueError(f"Layer needs at least one neuron, got {nout}")
        self.neurons: List[Neuron] = [
            Neuron(nin, nonlin=nonlin) for _ in range(nout)
        ]

    @classmethod
    def from_neurons(cls, neurons: Sequence[Neuron]) -> Layer:
        """
        Build a layer from existing neurons.

        Raises:
            ValueError: If neurons is empty or the neurons disagree on
                their input width.
        """
        if not neurons:
            raise ValueError("Layer needs at least one neuron")
        widths = {n.nin for n in neurons}
        if len(widths) != 1:
            raise ValueError(
                f"Neurons in a layer must share an input width, got {sorted(widths)}"
            )
        layer = cls.__new__(cls)
        layer.neurons = list(neurons)
        return layer

    @property
    def nin(self) -> int:
        return self.neurons[0].nin

    @property
    def nout(self) -> int:
        return len(self.neurons)

    def __call__(self, x: Input) -> List[Value]:
        return [n(x) for n in self.neurons]

    def parameters(self) -> List[Value]:
        return [p for n in self.neurons for p in n.parameters()]

    def __repr__(self) -> str:
        return f"Layer({self.nin} -> {self.nout})"


class Network(Module):
    """
    Multi-layer perceptron: a stack of fully connected layers.

    Architecture:
        Input -> Hidden1 (ReLU) -> ... -> HiddenN (ReLU) -> Output (linear)

    The output layer is linear so its raw scores can go straight into
    softmax() and cross_entropy_loss().

    Attributes:
        layers: List of Layer objects

    Example:
        >>> # 2 inputs -> 50 hidden -> 2 output scores
        >>> model = Network([2, 50, 2])
        >>> scores = model([Value(0.5), Value(-1.0)])
        >>> len(scores)
        2
    """

    def __init__(self, dims: Sequence[int]) -> None:
        """
        Initialize a network.

        Args:
            dims: Layer widths, input first. [2, 50, 2] builds a 2 -> 50
                ReLU layer followed by a linear 50 -> 2 layer.

        Raises:
            ValueError: If fewer than two widths are given or any width is
                not positive.
        """
        if len(dims) < 2:
            raise ValueError(
                f"Network needs an input and an output width, got {list(dims)}"
            )
        if any(d < 1 for d in dims):
            raise ValueError(f"Layer widths must be positive, got {list(dims)}")

        logger.debug("building network with dims %s", list(dims))
        last = len(dims) - 2
        self.layers: List[Layer] = [
            Layer(dims[i], dims[i + 1], nonlin=(i != last))
            for i in range(len(dims) - 1)
        ]

    @classmethod
    def from_layers(cls, layers: Sequence[Layer]) -> Network:
        """
        Build a network from existing layers.

        Raises:
            ValueError: If layers is empty or a layer's input width does
                not match the previous layer's output width.
        """
        if not layers:
            raise ValueError("Network needs at least one layer")
        for i, (prev, nxt) in enumerate(zip(layers, layers[1:])):
            if prev.nout != nxt.nin:
                raise ValueError(
                    f"Layer {i + 1} expects {nxt.nin} inputs but layer {i} "
                    f"produces {prev.nout}"
                )
        net = cls.__new__(cls)
        net.layers = list(layers)
        return net

    @property
    def dims(self) -> List[int]:
        return [self.layers[0].nin] + [layer.nout for layer in self.layers]

    def __call__(self, x: Input) -> List[Value]:
        """
        Forward pass through all layers.

        Args:
            x: Input values.

        Returns:
            One Value per output unit.
        """
        for layer in self.layers:
            x = layer(x)
        return x

    def parameters(self) -> List[Value]:
        """Return all parameters, layer by layer."""
        return [p for layer in self.layers for p in layer.parameters()]

    def __repr__(self) -> str:
        layer_strs = [str(layer) for layer in self.layers]
        return f"Network([{', '.join(layer_strs)}])"


# =============================================================================
# Activation and Loss Functions
# =============================================================================

def softmax(values: Sequence[Value]) -> List[Value]:
    """
    Softmax over a list of scores.

    softmax(x_i) = exp(x_i - m) / sum_j exp(x_j - m), m = max_j x_j

    Subtracting the maximum keeps exp() from overflowing without changing
    the result. Everything is built from engine operations, so gradients
    flow through the shared max and the shared normaliser.

    Raises:
        ValueError: If values is empty.
    """
    if not values:
        raise ValueError("softmax of an empty sequence")

    m = functools.reduce(maximum, values)
    exps = [(v - m).exp() for v in values]
    total = functools.reduce(add, exps)
    return [e / total for e in exps]


def cross_entropy_loss(
    y: Sequence[Value],
    y_hat: Sequence[Value],
    eps: float = 1e-15
) -> Value:
    """
    Cross-entropy between a target distribution and a prediction.

    CE = -sum(y_i * log(clip(y_hat_i, eps, 1 - eps)))

    Clipping keeps log() away from 0. It is done with min/max nodes, so an
    unclipped prediction still receives its gradient.

    Args:
        y: Target distribution, typically from one_hot_encode().
        y_hat: Predicted probabilities, typically from softmax().
        eps: Clipping margin.

    Returns:
        Scalar Value representing the loss.

    Raises:
        ValueError: If the sequences are empty or differ in length.
    """
    if len(y) != len(y_hat):
        raise ValueError(
            f"Target has {len(y)} entries but prediction has {len(y_hat)}"
        )
    if not y:
        raise ValueError("cross_entropy_loss of empty sequences")

    lo, hi = constant(eps), constant(1.0 - eps)
    terms = [
        yi * maximum(minimum(pi, hi), lo).log()
        for yi, pi in zip(y, y_hat)
    ]
    return negate(functools.reduce(add, terms))


def one_hot_encode(label: int, size: int) -> List[Value]:
    """
    Leaf vector of `size` zeros with a 1 at `label`.

    Raises:
        ValueError: If label is outside [0, size).
    """
    if not 0 <= label < size:
        raise ValueError(f"Label {label} out of range for size {size}")
    return [constant(1.0 if i == label else 0.0) for i in range(size)]


# =============================================================================
# Optimizers
# =============================================================================

class SGD:
    """
    Stochastic Gradient Descent optimizer.

    Updates parameters: p = p - lr * (p.grad / batch_size + weight_decay * p)

    Gradients of a mini-batch are accumulated by running one backward pass
    per sample without zeroing in between; batch_size turns that sum into
    a mean.

    Attributes:
        params: List of parameters to optimize.
        lr: Learning rate.
        weight_decay: L2 penalty coefficient.
        batch_size: Number of backward passes summed into each gradient.
    """

    def __init__(
        self,
        params: List[Value],
        lr: float = 0.01,
        weight_decay: float = 0.0,
        batch_size: int = 1
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.params = params
        self.lr = lr
        self.weight_decay = weight_decay
        self.batch_size = batch_size

    def step(self) -> None:
        """
        Perform one optimization step.

        Call this after backward(), then zero_grad() before the next batch.
        """
        for p in self.params:
            g = p.grad / self.batch_size + self.weight_decay * p.data
            update(p, self.lr * g)

    def zero_grad(self) -> None:
        """Reset all gradients to zero."""
        for p in self.params:
            p.grad = 0.0
