"""
ScalarGrad Engine: Reverse-Mode Autodiff over Scalars
=====================================================

Every arithmetic operation on a Value eagerly computes its result and
records how it was produced. The recorded operands form a directed acyclic
graph, and backward() walks that graph once, consumers before producers,
adding each node's local derivative into its operands.

A node used by several consumers (a "diamond") receives the sum of all
their contributions, which is what makes weight sharing and normalisation
sums such as softmax differentiate correctly.
"""

from __future__ import annotations
import itertools
import logging
import numpy as np
from typing import Callable, List, Set, Tuple, Union


logger = logging.getLogger(__name__)

# Type alias for numeric inputs
Numeric = Union[int, float, np.floating, np.integer]

# Process-wide source of node ids, never reused
_ids = itertools.count()


def _divide(x: float, y: float) -> float:
    """IEEE division: x / 0 gives +-inf or nan instead of raising."""
    with np.errstate(divide='ignore', invalid='ignore'):
        return float(np.divide(x, y))


class Value:
    """
    A scalar node in the computation graph.

    A Value is both the node and the handle to it: binding the same Value
    to several names, or feeding it into several operations, shares the one
    node. That sharing is how diamonds arise.

    Attributes:
        data: The scalar value stored in this node.
        grad: Accumulated derivative of the last backward root with respect
            to this node. Never reset implicitly.
        label: Optional name for debugging and visualization.

    Example:
        >>> a = Value(2.0, label='a')
        >>> b = Value(3.0, label='b')
        >>> c = a * b + a
        >>> c.backward()
        >>> a.grad  # dc/da = b + 1
        4.0
        >>> b.grad  # dc/db = a
        2.0
    """

    __slots__ = ('data', 'grad', '_backward', '_prev', '_op', '_id', 'label')

    def __init__(
        self,
        data: Numeric,
        _children: Tuple[Value, ...] = (),
        _op: str = '',
        label: str = ''
    ) -> None:
        """
        Initialize a Value node.

        Args:
            data: The scalar value to store.
            _children: Operands in order, (left, right) or (operand,)
                (internal use).
            _op: Name of the operation that produced this node
                (internal use, '' for a leaf).
            label: Optional name for debugging.

        Raises:
            TypeError: If data is not a numeric type.
        """
        if not isinstance(data, (int, float, np.floating, np.integer)):
            raise TypeError(
                f"Value data must be numeric, got {type(data).__name__}"
            )

        self.data: float = float(data)
        self.grad: float = 0.0
        self._backward: Callable[[], None] = lambda: None
        self._prev: Tuple[Value, ...] = tuple(_children)
        self._op: str = _op
        self._id: int = next(_ids)
        self.label: str = label

    def __repr__(self) -> str:
        """String representation showing data and gradient."""
        if self.label:
            return f"Value({self.label}={self.data:.4f}, grad={self.grad:.4f})"
        return f"Value(data={self.data:.4f}, grad={self.grad:.4f})"

    @property
    def id(self) -> int:
        """Unique, strictly increasing node id."""
        return self._id

    @property
    def op(self) -> str:
        """Operation that produced this node, '' for a leaf."""
        return self._op

    @property
    def operands(self) -> Tuple[Value, ...]:
        return self._prev

    @property
    def is_leaf(self) -> bool:
        return not self._prev

    # =========================================================================
    # Arithmetic Operations
    # =========================================================================

    def __add__(self, other: Union[Value, Numeric]) -> Value:
        """
        Addition: out = self + other

        Local derivatives:
            d(out)/d(self) = 1
            d(out)/d(other) = 1
        """
        other = _as_value(other)
        out = Value(self.data + other.data, (self, other), 'add')

        def _backward() -> None:
            self.grad += out.grad
            other.grad += out.grad

        out._backward = _backward
        return out

    def __radd__(self, other: Numeric) -> Value:
        """Handle numeric + Value."""
        return _as_value(other) + self

    def __sub__(self, other: Union[Value, Numeric]) -> Value:
        """
        Subtraction: out = self - other

        Local derivatives:
            d(out)/d(self) = 1
            d(out)/d(other) = -1
        """
        other = _as_value(other)
        out = Value(self.data - other.data, (self, other), 'sub')

        def _backward() -> None:
            self.grad += out.grad
            other.grad += -out.grad

        out._backward = _backward
        return out

    def __rsub__(self, other: Numeric) -> Value:
        """Handle numeric - Value."""
        return _as_value(other) - self

    def __mul__(self, other: Union[Value, Numeric]) -> Value:
        """
        Multiplication: out = self * other

        Local derivatives:
            d(out)/d(self) = other.data
            d(out)/d(other) = self.data
        """
        other = _as_value(other)
        out = Value(self.data * other.data, (self, other), 'mul')

        def _backward() -> None:
            self.grad += other.data * out.grad
            other.grad += self.data * out.grad

        out._backward = _backward
        return out

    def __rmul__(self, other: Numeric) -> Value:
        """Handle numeric * Value."""
        return _as_value(other) * self

    def __truediv__(self, other: Union[Value, Numeric]) -> Value:
        """
        Division: out = self / other

        Local derivatives:
            d(out)/d(self) = 1 / other.data
            d(out)/d(other) = -self.data / other.data^2

        Dividing by zero is not guarded: the result and both gradients
        follow IEEE semantics (inf or nan).
        """
        other = _as_value(other)
        out = Value(_divide(self.data, other.data), (self, other), 'div')

        def _backward() -> None:
            self.grad += _divide(out.grad, other.data)
            other.grad += -_divide(self.data, other.data * other.data) * out.grad

        out._backward = _backward
        return out

    def __rtruediv__(self, other: Numeric) -> Value:
        """Handle numeric / Value."""
        return _as_value(other) / self

    def __neg__(self) -> Value:
        """Negation: -self, built as self * -1."""
        return self * Value(-1.0)

    # =========================================================================
    # Comparison Operations
    # =========================================================================

    def max(self, other: Union[Value, Numeric]) -> Value:
        """
        Maximum: out = max(self, other)

        The gradient goes to the larger operand only. On a tie the left
        operand (self) wins, both for the forward value and the gradient.
        If either operand is nan the result is nan and both operands get a
        nan gradient, whichever side the nan is on.
        """
        other = _as_value(other)
        return self._select(
            other, self.data >= other.data, other.data > self.data, 'max'
        )

    def min(self, other: Union[Value, Numeric]) -> Value:
        """
        Minimum: out = min(self, other)

        Mirror of max(); on a tie the left operand (self) wins, and a nan on
        either side makes the result nan.
        """
        other = _as_value(other)
        return self._select(
            other, self.data <= other.data, other.data < self.data, 'min'
        )

    def _select(
        self, other: Value, left_wins: bool, right_wins: bool, op: str
    ) -> Value:
        """Shared body of max() and min(), given the comparison outcome."""
        if np.isnan(self.data) or np.isnan(other.data):
            out = Value(float('nan'), (self, other), op)

            def _backward() -> None:
                self.grad += float('nan')
                other.grad += float('nan')

            out._backward = _backward
            return out

        out = Value(self.data if left_wins else other.data, (self, other), op)

        def _backward() -> None:
            if left_wins:
                self.grad += out.grad
            elif right_wins:
                other.grad += out.grad

        out._backward = _backward
        return out

    # =========================================================================
    # Unary Operations
    # =========================================================================

    def exp(self) -> Value:
        """
        Exponential: out = e^self

        Local derivative:
            d(e^x)/dx = e^x, which is out.data

        Overflow yields inf rather than raising.
        """
        with np.errstate(over='ignore'):
            e = float(np.exp(self.data))
        out = Value(e, (self,), 'exp')

        def _backward() -> None:
            self.grad += out.grad * out.data

        out._backward = _backward
        return out

    def log(self) -> Value:
        """
        Natural logarithm: out = ln(self)

        Local derivative:
            d(ln(x))/dx = 1/x

        log(0) is -inf and log of a negative number is nan; neither raises.
        """
        with np.errstate(divide='ignore', invalid='ignore'):
            out = Value(float(np.log(self.data)), (self,), 'log')

        def _backward() -> None:
            self.grad += _divide(out.grad, self.data)

        out._backward = _backward
        return out

    def relu(self) -> Value:
        """
        Rectified Linear Unit: out = max(self, 0)

        Built as a max node against a zero leaf, so it routes gradients by
        the max rule: an input of exactly 0 ties and still receives the
        gradient.
        """
        return self.max(Value(0.0))

    # =========================================================================
    # Backpropagation
    # =========================================================================

    def backward(self) -> None:
        """
        Compute d(self)/d(node) for every node reachable from self.

        See backward() at module level.
        """
        backward(self)

    def zero_grad(self) -> None:
        """Reset this node's gradient to zero."""
        self.grad = 0.0

    def item(self) -> float:
        """Return the scalar value (PyTorch compatibility)."""
        return self.data


def _as_value(x: Union[Value, Numeric]) -> Value:
    return x if isinstance(x, Value) else Value(x)


# =============================================================================
# Functional API
# =============================================================================

def constant(x: Numeric, label: str = '') -> Value:
    """Create a leaf Value holding x, with a zero gradient."""
    return Value(x, label=label)


def add(a: Value, b: Value) -> Value:
    return a + b


def sub(a: Value, b: Value) -> Value:
    return a - b


def mul(a: Value, b: Value) -> Value:
    return a * b


def div(a: Value, b: Value) -> Value:
    return a / b


def maximum(a: Value, b: Value) -> Value:
    """max(a, b) with the left operand winning ties."""
    return a.max(b)


def minimum(a: Value, b: Value) -> Value:
    """min(a, b) with the left operand winning ties."""
    return a.min(b)


def log(a: Value) -> Value:
    return a.log()


def exp(a: Value) -> Value:
    return a.exp()


def relu(a: Value) -> Value:
    return a.relu()


def negate(a: Value) -> Value:
    """-a, expressed as a * -1."""
    return mul(a, constant(-1.0))


def subtract(a: Value, b: Value) -> Value:
    """
    a - b expressed as a + b * -1.

    Unlike the sub primitive this adds no new gradient rule; it produces
    an add node over a mul node.
    """
    return add(a, mul(b, constant(-1.0)))


# =============================================================================
# Mutation (optimizer side)
# =============================================================================

def update(handle: Value, delta: float) -> None:
    """
    Subtract delta from a leaf's data in place (one SGD step).

    Raises:
        ValueError: If handle is not a leaf. Intermediate nodes are
            recomputed on every forward pass, so writing to them would be
            silently lost.
    """
    if not handle.is_leaf:
        raise ValueError(
            f"update() only applies to leaf values, got a '{handle.op}' node"
        )
    handle.data -= delta


def reset_gradient(handle: Value) -> None:
    handle.grad = 0.0


# =============================================================================
# Graph Traversal
# =============================================================================

def topological_sort(root: Value) -> List[Value]:
    """
    List every node reachable from root exactly once, consumers first.

    The root is first and every node comes after all of the nodes that
    consume it, which is the order backward() must apply local rules in.

    The traversal is an iterative depth-first search: a node is emitted only
    once all of its operands have been emitted, and the emitted list is then
    reversed. Nodes are deduplicated by id, so a node reachable along
    several paths appears once.

    Args:
        root: The root node of the computation graph.

    Returns:
        List of Values, root first.

    Example:
        >>> a = Value(1.0)
        >>> b = Value(2.0)
        >>> c = a + b
        >>> d = c * a
        >>> order = topological_sort(d)
        >>> order[0] is d, order.index(c) < order.index(a)
        (True, True)
    """
    order: List[Value] = []
    visited: Set[int] = set()
    stack: List[Tuple[Value, bool]] = [(root, False)]

    while stack:
        node, finished = stack.pop()
        if finished:
            order.append(node)
            continue
        if node._id in visited:
            continue
        visited.add(node._id)
        stack.append((node, True))
        for child in node._prev:
            if child._id not in visited:
                stack.append((child, False))

    order.reverse()
    return order


def backward(root: Value) -> None:
    """
    Reverse-mode differentiation from root.

    The algorithm:
    1. Set root.grad to 1.0 (d(root)/d(root) = 1)
    2. Order the reachable graph consumers-first with topological_sort()
    3. Apply each node's local rule once, adding into its operands

    Gradients are accumulated, never overwritten, so a node with several
    consumers ends up with the sum over all paths. Leaves that already held
    a gradient keep it: call reset_gradient() or Module.zero_grad() between
    passes unless accumulation is intended.

    Example:
        >>> x = Value(3.0)
        >>> s = x * x + x
        >>> backward(s)
        >>> x.grad  # 2x + 1
        7.0
    """
    order = topological_sort(root)
    logger.debug("backward over %d nodes", len(order))

    root.grad = 1.0
    for node in order:
        node._backward()


# =============================================================================
# Debugging
# =============================================================================

def draw_graph(root: Value, format: str = 'text') -> str:
    """
    Render the computation graph under root.

    Args:
        root: Root node of the graph to visualize.
        format: 'text' for one line per node, 'dot' for Graphviz DOT.

    Returns:
        String representation of the graph.

    Raises:
        ValueError: For an unknown format.
    """
    nodes = topological_sort(root)

    def name(node: Value) -> str:
        return node.label or f'v{node.id}'

    def quoted(text: str) -> str:
        return text.replace('\\', '\\\\').replace('"', '\\"')

    if format == 'dot':
        lines = ['digraph G {', '  rankdir=LR;']
        for node in nodes:
            nid = node.id
            lines.append(
                f'  n{nid} [label="{quoted(name(node))}\\n'
                f'data={node.data:.4f}\\n'
                f'grad={node.grad:.4f}", shape=box];'
            )
            if node.op:
                lines.append(f'  op{nid} [label="{node.op}", shape=circle];')
                lines.append(f'  op{nid} -> n{nid};')
                for child in node.operands:
                    lines.append(f'  n{child.id} -> op{nid};')
        lines.append('}')
        return '\n'.join(lines)

    if format != 'text':
        raise ValueError(f"Unknown graph format: {format!r}")

    lines = ['Computation Graph:', '=' * 50]
    for node in nodes:
        op_str = ''
        if node.op:
            args = ', '.join(name(child) for child in node.operands)
            op_str = f' = {node.op}({args})'
        lines.append(
            f'{name(node):>10}: data={node.data:>10.4f}, '
            f'grad={node.grad:>10.4f}{op_str}'
        )
    return '\n'.join(lines)
