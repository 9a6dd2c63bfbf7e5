"""
Unit Tests: Scalar Engine
=========================

Forward values, local gradient rules, gradient accumulation over shared
nodes, traversal order and IEEE edge cases. Gradients are also checked
against PyTorch when it is installed.

Run with: pytest tests/test_engine.py -v
"""

import math
import pytest

from scalargrad import (
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


# Try to import PyTorch for comparison tests
try:
    import torch
    TORCH_AVAILABLE = True
except ImportError:
    TORCH_AVAILABLE = False


# =============================================================================
# Test Configuration
# =============================================================================

TOLERANCE = 1e-6  # Acceptable difference between our grads and PyTorch's


def assert_close(actual: float, expected: float, tol: float = TOLERANCE) -> None:
    """Assert two values are approximately equal."""
    diff = abs(actual - expected)
    assert diff < tol, f"Values differ: {actual} vs {expected} (diff={diff})"


# =============================================================================
# Forward Values
# =============================================================================

class TestValueBasics:
    """Test node construction and forward values."""

    def test_value_creation(self) -> None:
        v = Value(3.14)
        assert v.data == 3.14
        assert v.grad == 0.0
        assert v.is_leaf
        assert v.op == ''

    def test_constant_is_leaf(self) -> None:
        c = constant(2.5)
        assert c.data == 2.5
        assert c.grad == 0.0
        assert c.operands == ()

    def test_value_with_label(self) -> None:
        v = Value(2.0, label='x')
        assert v.label == 'x'
        assert 'x' in repr(v)

    def test_ids_strictly_increase(self) -> None:
        a = Value(1.0)
        b = Value(1.0)
        c = a + b
        assert a.id < b.id < c.id

    def test_arithmetic(self) -> None:
        a = Value(6.0)
        b = Value(2.0)
        assert add(a, b).data == 8.0
        assert sub(a, b).data == 4.0
        assert mul(a, b).data == 12.0
        assert div(a, b).data == 3.0

    def test_operators_match_functions(self) -> None:
        a = Value(6.0)
        b = Value(2.0)
        assert (a + b).op == 'add'
        assert (a - b).op == 'sub'
        assert (a * b).op == 'mul'
        assert (a / b).op == 'div'

    def test_operands_are_ordered(self) -> None:
        a = Value(1.0)
        b = Value(2.0)
        c = a - b
        assert c.operands[0] is a
        assert c.operands[1] is b

    def test_reflected_operators(self) -> None:
        a = Value(2.0)
        assert (3 + a).data == 5.0
        assert (3 - a).data == 1.0
        assert (3 * a).data == 6.0
        assert (3 / a).data == 1.5

    def test_negation(self) -> None:
        a = Value(5.0)
        assert (-a).data == -5.0
        assert negate(a).data == -5.0
        assert negate(a).op == 'mul'

    def test_subtract_is_derived(self) -> None:
        a = Value(5.0)
        b = Value(3.0)
        c = subtract(a, b)
        assert c.data == 2.0
        assert c.op == 'add'
        assert c.operands[1].op == 'mul'

    def test_max_min(self) -> None:
        a = Value(1.0)
        b = Value(4.0)
        assert maximum(a, b).data == 4.0
        assert minimum(a, b).data == 1.0
        assert a.max(b).data == 4.0
        assert a.min(b).data == 1.0

    def test_relu_is_max_against_zero(self) -> None:
        a = Value(-3.0)
        r = relu(a)
        assert r.data == 0.0
        assert r.op == 'max'
        assert r.operands[0] is a
        assert r.operands[1].is_leaf
        assert r.operands[1].data == 0.0
        assert Value(3.0).relu().data == 3.0

    def test_exp(self) -> None:
        assert_close(exp(Value(2.0)).data, math.exp(2.0))

    def test_log_is_natural(self) -> None:
        assert_close(log(Value(2.0)).data, math.log(2.0))
        assert_close(Value(math.e).log().data, 1.0)

    def test_operands_are_not_mutated(self) -> None:
        a = Value(2.0)
        b = Value(3.0)
        _ = a * b + a / b
        assert a.data == 2.0
        assert b.data == 3.0


# =============================================================================
# Backward Pass
# =============================================================================

class TestBackwardBasics:
    """Test local gradient rules and accumulation."""

    def test_add_backward(self) -> None:
        a = Value(2.0)
        b = Value(-7.5)
        backward(add(a, b))
        assert a.grad == 1.0
        assert b.grad == 1.0

    def test_sub_backward(self) -> None:
        a = Value(5.0)
        b = Value(3.0)
        (a - b).backward()
        assert a.grad == 1.0
        assert b.grad == -1.0

    def test_mul_backward(self) -> None:
        a = Value(2.0)
        b = Value(3.0)
        backward(mul(a, b))
        assert a.grad == b.data
        assert b.grad == a.data

    def test_div_backward(self) -> None:
        a = Value(6.0)
        b = Value(2.0)
        (a / b).backward()
        assert a.grad == 0.5
        assert b.grad == -1.5  # -a / b^2

    def test_log_backward(self) -> None:
        x = Value(4.0)
        x.log().backward()
        assert x.grad == 0.25

    def test_exp_backward(self) -> None:
        x = Value(1.5)
        y = x.exp()
        y.backward()
        assert x.grad == y.data

    def test_max_backward(self) -> None:
        a = Value(1.0)
        b = Value(4.0)
        maximum(a, b).backward()
        assert a.grad == 0.0
        assert b.grad == 1.0

    def test_min_backward(self) -> None:
        a = Value(1.0)
        b = Value(4.0)
        minimum(a, b).backward()
        assert a.grad == 1.0
        assert b.grad == 0.0

    def test_max_tie_goes_left(self) -> None:
        a = Value(2.0)
        b = Value(2.0)
        maximum(a, b).backward()
        assert a.grad == 1.0
        assert b.grad == 0.0

        a = Value(2.0)
        b = Value(2.0)
        maximum(b, a).backward()
        assert b.grad == 1.0
        assert a.grad == 0.0

    def test_min_tie_goes_left(self) -> None:
        a = Value(2.0)
        b = Value(2.0)
        minimum(a, b).backward()
        assert a.grad == 1.0
        assert b.grad == 0.0

    def test_relu_backward(self) -> None:
        x = Value(2.0)
        x.relu().backward()
        assert x.grad == 1.0

        x = Value(-2.0)
        x.relu().backward()
        assert x.grad == 0.0

    def test_relu_at_zero_ties_left(self) -> None:
        x = Value(0.0)
        x.relu().backward()
        assert x.grad == 1.0

    def test_chain_rule(self) -> None:
        x = Value(2.0)
        y = x * x  # y = x^2
        z = y * y  # z = x^4
        z.backward()
        assert x.grad == 32.0  # 4x^3

    def test_diamond_graph(self) -> None:
        """s = x*x + x uses x three times: ds/dx = 2x + 1."""
        x = Value(3.0)
        s = add(mul(x, x), x)
        backward(s)
        assert x.grad == 2 * x.data + 1

    def test_shared_intermediate(self) -> None:
        """An intermediate node must collect all consumers before it propagates."""
        x = Value(0.7)
        a = x.exp()
        b = a * 2
        c = b + a  # c = 3 e^x, a feeds c directly and through b
        c.backward()
        assert_close(a.grad, 3.0)
        assert_close(x.grad, 3 * math.exp(0.7))

    def test_shared_subtree_used_by_many(self) -> None:
        x = Value(1.5)
        shared = (x * x).exp()
        total = shared
        for _ in range(4):
            total = total + shared * shared
        total.backward()
        # total = e + 4 e^2 with e = exp(x^2); d/dx = (e + 8 e^2) * 2x
        e = math.exp(1.5 ** 2)
        assert_close(x.grad, (e + 8 * e * e) * 3.0, tol=1e-3)

    def test_long_chain(self) -> None:
        a = Value(0.5)
        b = a
        for _ in range(10):
            b = b * a + a
        b.backward()

        # Finite differences
        def f(x: float) -> float:
            y = x
            for _ in range(10):
                y = y * x + x
            return y

        h = 1e-6
        expected = (f(0.5 + h) - f(0.5 - h)) / (2 * h)
        assert_close(a.grad, expected, tol=1e-4)

    def test_deep_chain_does_not_recurse(self) -> None:
        x = Value(1.0)
        y = x
        for _ in range(5000):
            y = y + 1
        y.backward()
        assert y.data == 5001.0
        assert x.grad == 1.0

    def test_gradients_accumulate_across_passes(self) -> None:
        x = Value(2.0)
        y = x * 3
        y.backward()
        y.backward()
        assert x.grad == 6.0

    def test_reset_gradient(self) -> None:
        x = Value(2.0)
        (x * 3).backward()
        reset_gradient(x)
        assert x.grad == 0.0
        (x * 3).backward()
        assert x.grad == 3.0

    def test_negate_backward(self) -> None:
        a = Value(4.0)
        backward(negate(a))
        assert a.grad == -1.0

    def test_subtract_backward(self) -> None:
        a = Value(5.0)
        b = Value(3.0)
        backward(subtract(a, b))
        assert a.grad == 1.0
        assert b.grad == -1.0

    def test_zero_grad_method(self) -> None:
        x = Value(2.0)
        (x * 3).backward()
        x.zero_grad()
        assert x.grad == 0.0


# =============================================================================
# Topological Walker
# =============================================================================

class TestTopologicalSort:
    """Test traversal order and deduplication."""

    @staticmethod
    def assert_consumers_first(order) -> None:
        position = {node.id: i for i, node in enumerate(order)}
        for node in order:
            for child in node.operands:
                assert position[node.id] < position[child.id]

    def test_root_comes_first(self) -> None:
        a = Value(1.0)
        b = Value(2.0)
        d = (a + b) * a
        order = topological_sort(d)
        assert order[0] is d

    def test_each_node_once(self) -> None:
        x = Value(2.0)
        s = x * x + x
        order = topological_sort(s)
        ids = [n.id for n in order]
        assert len(ids) == len(set(ids))
        assert len(order) == 3  # s, x*x, x

    def test_consumers_before_producers(self) -> None:
        x = Value(0.3)
        a = x.exp()
        b = a * 2
        c = b + a
        d = c * b - a.log()
        order = topological_sort(d)
        self.assert_consumers_first(order)
        assert {n.id for n in order} >= {x.id, a.id, b.id, c.id, d.id}

    def test_leaf_root(self) -> None:
        x = Value(1.0)
        assert topological_sort(x) == [x]

    def test_unreachable_nodes_untouched(self) -> None:
        x = Value(2.0)
        unrelated = Value(5.0)
        unrelated.grad = 0.25
        (x * x).backward()
        assert unrelated.grad == 0.25


# =============================================================================
# Mutation
# =============================================================================

class TestUpdate:
    """Test in-place parameter updates."""

    def test_update_leaf(self) -> None:
        w = Value(1.0)
        update(w, 0.25)
        assert w.data == 0.75

    def test_update_non_leaf_raises(self) -> None:
        y = Value(1.0) + Value(2.0)
        with pytest.raises(ValueError):
            update(y, 0.1)

    def test_update_leaves_grad_alone(self) -> None:
        w = Value(1.0)
        w.grad = 4.0
        update(w, 0.5)
        assert w.grad == 4.0


# =============================================================================
# Edge Cases
# =============================================================================

class TestEdgeCases:
    """Floating point edge cases propagate instead of raising."""

    def test_division_by_zero(self) -> None:
        a = Value(1.0)
        b = Value(0.0)
        c = a / b
        assert math.isinf(c.data) and c.data > 0
        c.backward()
        assert math.isinf(a.grad)
        assert math.isinf(b.grad) and b.grad < 0

    def test_zero_over_zero(self) -> None:
        c = Value(0.0) / Value(0.0)
        assert math.isnan(c.data)

    def test_log_zero(self) -> None:
        x = Value(0.0)
        y = x.log()
        assert math.isinf(y.data) and y.data < 0
        y.backward()
        assert math.isinf(x.grad)

    def test_log_negative(self) -> None:
        assert math.isnan(Value(-1.0).log().data)

    def test_exp_overflow(self) -> None:
        assert math.isinf(Value(1000.0).exp().data)

    def test_max_min_nan_on_either_side(self) -> None:
        nan = float('nan')
        for op in (maximum, minimum):
            assert math.isnan(op(Value(nan), Value(1.0)).data)
            assert math.isnan(op(Value(1.0), Value(nan)).data)

    def test_max_nan_gradient_is_nan_for_both(self) -> None:
        a = Value(float('nan'))
        b = Value(1.0)
        maximum(a, b).backward()
        assert math.isnan(a.grad)
        assert math.isnan(b.grad)

        a = Value(1.0)
        b = Value(float('nan'))
        minimum(a, b).backward()
        assert math.isnan(a.grad)
        assert math.isnan(b.grad)

    def test_relu_nan(self) -> None:
        x = Value(float('nan'))
        y = relu(x)
        assert math.isnan(y.data)
        y.backward()
        assert math.isnan(x.grad)

    def test_nan_propagates(self) -> None:
        x = Value(float('nan'))
        y = x * 2 + 1
        assert math.isnan(y.data)

    def test_small_divisor(self) -> None:
        c = Value(1.0) / Value(1e-10)
        assert_close(c.data, 1e10, tol=1e-3)

    def test_type_error_on_invalid_data(self) -> None:
        with pytest.raises(TypeError):
            Value("not a number")


# =============================================================================
# Graph Rendering
# =============================================================================

class TestDrawGraph:

    def test_text_lists_every_node(self) -> None:
        a = Value(2.0, label='a')
        b = Value(3.0, label='b')
        c = a * b
        c.label = 'c'
        text = draw_graph(c)
        assert 'c' in text and 'mul(a, b)' in text
        assert len(text.splitlines()) == 2 + 3

    def test_dot(self) -> None:
        a = Value(2.0, label='a')
        c = a.exp()
        dot = draw_graph(c, format='dot')
        assert dot.startswith('digraph G {')
        assert 'label="exp"' in dot
        assert dot.rstrip().endswith('}')

    def test_dot_escapes_quotes(self) -> None:
        a = Value(1.0, label='say "hi"')
        dot = draw_graph(a, format='dot')
        assert 'label="say \\"hi\\"\\n' in dot

    def test_unknown_format(self) -> None:
        with pytest.raises(ValueError):
            draw_graph(Value(1.0), format='svg')


# =============================================================================
# PyTorch Comparison Tests
# =============================================================================

@pytest.mark.skipif(not TORCH_AVAILABLE, reason="PyTorch not installed")
class TestPyTorchComparison:
    """Compare our gradients against PyTorch's gradients."""

    @staticmethod
    def leaf(x: float):
        return torch.tensor(x, dtype=torch.float64, requires_grad=True)

    def test_div_grad(self) -> None:
        a = Value(6.0)
        b = Value(2.5)
        (a / b).backward()

        a_t, b_t = self.leaf(6.0), self.leaf(2.5)
        (a_t / b_t).backward()

        assert_close(a.grad, a_t.grad.item())
        assert_close(b.grad, b_t.grad.item())

    def test_log_exp_grad(self) -> None:
        a = Value(1.2)
        c = (a.exp() + a).log()
        c.backward()

        a_t = self.leaf(1.2)
        c_t = torch.log(torch.exp(a_t) + a_t)
        c_t.backward()

        assert_close(c.data, c_t.item())
        assert_close(a.grad, a_t.grad.item())

    def test_max_min_grad(self) -> None:
        a = Value(0.5)
        b = Value(-1.5)
        c = maximum(a, b) * minimum(a, b)
        c.backward()

        a_t, b_t = self.leaf(0.5), self.leaf(-1.5)
        c_t = torch.maximum(a_t, b_t) * torch.minimum(a_t, b_t)
        c_t.backward()

        assert_close(a.grad, a_t.grad.item())
        assert_close(b.grad, b_t.grad.item())

    def test_neuron_like_expression(self) -> None:
        w1, w2, x1, x2, b = (Value(v) for v in (0.5, -0.3, 2.0, 3.0, 0.1))
        out = (w1 * x1 + w2 * x2 + b).relu()
        out.backward()

        w1_t, w2_t, x1_t, x2_t, b_t = (
            self.leaf(v) for v in (0.5, -0.3, 2.0, 3.0, 0.1)
        )
        out_t = torch.relu(w1_t * x1_t + w2_t * x2_t + b_t)
        out_t.backward()

        assert_close(out.data, out_t.item())
        assert_close(w1.grad, w1_t.grad.item())
        assert_close(w2.grad, w2_t.grad.item())
        assert_close(b.grad, b_t.grad.item())

    def test_repeated_variable(self) -> None:
        x = Value(3.0)
        y = x * x * x - x / (x + 1)
        y.backward()

        x_t = self.leaf(3.0)
        y_t = x_t * x_t * x_t - x_t / (x_t + 1)
        y_t.backward()

        assert_close(y.data, y_t.item())
        assert_close(x.grad, x_t.grad.item())


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
