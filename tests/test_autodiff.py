"""Tests for the differentiation engine."""

from __future__ import annotations

import numpy as np
import pytest

from nlpeval import cos, exp, ifelse, log, sin, sqrt, tanh
from nlpeval.core.autodiff import (
    compile_tape,
    edge_pushing_hessian,
    forward_pass,
    hessian_pattern,
    jacobian_pattern,
    local_partials,
)
from nlpeval.core.expressions import NaryProduct
from nlpeval.core.verification import gradient_check, numerical_gradient, verify_gradient


def dense_hessian(model, expr, x):
    """Full symmetric Hessian of a compiled expression."""
    x = np.asarray(x, dtype=np.float64)
    tape = compile_tape(model.graph, [expr.root])
    values = forward_pass(tape, x, model.parameters.values(), model.functions)
    partials = local_partials(tape, values, model.functions)
    entries = edge_pushing_hessian(
        tape, values, partials, {tape.roots[0]: 1.0}, model.functions
    )
    H = np.zeros((x.size, x.size))
    for (i, j), value in entries.items():
        assert i >= j
        H[i, j] = value
        H[j, i] = value
    return H


def fd_hessian(expr, x, eps=1e-6):
    """Hessian by central differences of the analytic gradient."""
    x = np.asarray(x, dtype=np.float64)
    rows = [
        numerical_gradient(lambda z, k=k: expr.gradient(z)[k], x, eps)
        for k in range(x.size)
    ]
    return np.array(rows)


EXPRESSIONS = {
    "product_plus_sin": lambda x, y: x * y + sin(x),
    "exp_over": lambda x, y: exp(x) / y,
    "power_log": lambda x, y: x**3 * log(y),
    "norm": lambda x, y: sqrt(x * x + y * y),
    "tanh_diff": lambda x, y: tanh(x - y) * cos(y),
    "variable_power": lambda x, y: x**y,
    "numeric_base": lambda x, y: 2.0 ** (x * y),
    "negation": lambda x, y: -(x / (1 + y**2)),
}


class TestGradients:
    """Reverse-mode gradients."""

    @pytest.mark.parametrize(
        "build, point, expected",
        [
            (lambda x, y: x * y + sin(x), [0.3, 2.0], [2.0 + np.cos(0.3), 0.3]),
            (lambda x, y: exp(x) / y, [1.0, 2.0], [np.e / 2, -np.e / 4]),
            (lambda x, y: x**3 * log(y), [2.0, np.e], [12.0, 8.0 / np.e]),
            (lambda x, y: sqrt(x * x + y * y), [3.0, 4.0], [0.6, 0.8]),
            (lambda x, y: x**y, [2.0, 3.0], [12.0, 8.0 * np.log(2.0)]),
        ],
    )
    def test_analytic(self, model, build, point, expected):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(build(x, y))
        np.testing.assert_allclose(expr.gradient(point), expected, rtol=1e-10)

    @pytest.mark.parametrize("name", sorted(EXPRESSIONS))
    def test_against_finite_differences(self, model, name):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(EXPRESSIONS[name](x, y))
        result = gradient_check(expr, n_samples=10, seed=0, low=0.5, high=2.0)
        assert result.all_passed, result.max_error

    def test_unused_variable_has_zero_gradient(self, model):
        x, y, z = (model.declare_variable(n) for n in "xyz")
        expr = model.build_expression(x * y)
        np.testing.assert_array_equal(expr.gradient([1.0, 2.0, 3.0]), [2.0, 1.0, 0.0])

    def test_shared_subexpression(self, model):
        x = model.declare_variable("x")
        s = sin(x)
        expr = model.build_expression(s * s + s)
        x0 = 0.7
        expected = 2 * np.sin(x0) * np.cos(x0) + np.cos(x0)
        np.testing.assert_allclose(expr.gradient([x0]), [expected])

    def test_repeated_factor_in_product(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(NaryProduct([x, x, y]))
        np.testing.assert_allclose(expr.gradient([3.0, 2.0]), [12.0, 9.0])

    def test_parameters_are_constants(self, model):
        x = model.declare_variable("x")
        p = model.declare_parameter(3.0)
        expr = model.build_expression(p * x**2)
        np.testing.assert_allclose(expr.gradient([2.0]), [12.0])
        p.set(0.5)
        np.testing.assert_allclose(expr.gradient([2.0]), [2.0])

    def test_abs_and_negation(self, model):
        from nlpeval import abs_

        x = model.declare_variable("x")
        expr = model.build_expression(abs_(-x))
        np.testing.assert_allclose(expr.gradient([2.0]), [1.0])
        np.testing.assert_allclose(expr.gradient([-2.0]), [-1.0])

    def test_verify_gradient(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(x * exp(y) - y**2)
        assert verify_gradient(expr, [0.4, 1.1])


class TestDomainErrors:
    """Domain errors become NaN or inf instead of exceptions."""

    def test_log_of_negative(self, model):
        x = model.declare_variable("x")
        expr = model.build_expression(log(x) + x)
        with np.errstate(all="ignore"):
            value, grad = expr.value_and_gradient([-1.0])
        assert np.isnan(value)
        assert grad.shape == (1,)

    def test_division_by_zero(self, model):
        x = model.declare_variable("x")
        expr = model.build_expression(1 / x)
        with np.errstate(all="ignore"):
            assert np.isinf(expr.value([0.0]))


class TestConditional:
    """Derivatives follow the active branch."""

    @pytest.mark.parametrize(
        "x0, value, slope",
        [(2.0, 2.0, 1.0), (0.5, 0.25, 1.0), (1.0, 1.0, 2.0)],
    )
    def test_branch_selection(self, model, x0, value, slope):
        x = model.declare_variable("x")
        expr = model.build_expression(ifelse(x <= 1, x**2, x))
        v, g = expr.value_and_gradient([x0])
        assert v == pytest.approx(value)
        np.testing.assert_allclose(g, [slope])

    def test_hessian_follows_branch(self, model):
        x = model.declare_variable("x")
        expr = model.build_expression(ifelse(x <= 1, x**2, x))
        np.testing.assert_allclose(dense_hessian(model, expr, [0.5]), [[2.0]])
        np.testing.assert_allclose(dense_hessian(model, expr, [2.0]), [[0.0]])

    def test_no_derivative_through_predicate(self, model):
        x, z = model.declare_variable("x"), model.declare_variable("z")
        expr = model.build_expression(ifelse(x * x <= 1, z, 2 * z))
        np.testing.assert_allclose(expr.gradient([0.5, 3.0]), [0.0, 1.0])
        np.testing.assert_allclose(expr.gradient([2.0, 3.0]), [0.0, 2.0])

    def test_predicate_not_on_subtape(self, model):
        x, z = model.declare_variable("x"), model.declare_variable("z")
        expr = model.build_expression(ifelse(x <= 1, z, 2 * z))
        tape = compile_tape(model.graph, [expr.root])
        on_subtape = {tape.node_ids[p] for p in tape.subtapes[0]}
        x_id = model.graph.variable(0)
        assert x_id not in on_subtape
        assert tape.dvars[tape.roots[0]] == frozenset({1})


class TestHessian:
    """Edge-pushing Hessians."""

    def test_zero_power_at_origin(self, model):
        x = model.declare_variable("x")
        expr = model.build_expression(x**0 + x**2)
        np.testing.assert_array_equal(dense_hessian(model, expr, [0.0]), [[2.0]])

    def test_zero_power_in_session(self, model):
        x = model.declare_variable("x")
        s = model.create_session(x**0 + x**2)
        s.initialize(["hessian"])
        np.testing.assert_array_equal(s.lagrangian_hessian_at([0.0]).toarray(), [[2.0]])

    def test_analytic(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(x**2 * y + exp(x * y))
        x0, y0 = 0.5, 1.5
        e = np.exp(x0 * y0)
        expected = np.array([
            [2 * y0 + y0 * y0 * e, 2 * x0 + e + x0 * y0 * e],
            [2 * x0 + e + x0 * y0 * e, x0 * x0 * e],
        ])
        np.testing.assert_allclose(dense_hessian(model, expr, [x0, y0]), expected, rtol=1e-10)

    @pytest.mark.parametrize("name", sorted(EXPRESSIONS))
    def test_against_finite_differences(self, model, name):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(EXPRESSIONS[name](x, y))
        point = [0.8, 1.3]
        np.testing.assert_allclose(
            dense_hessian(model, expr, point), fd_hessian(expr, point), rtol=1e-5, atol=1e-5
        )

    def test_square_of_same_node(self, model):
        x = model.declare_variable("x")
        expr = model.build_expression(x * x)
        np.testing.assert_allclose(dense_hessian(model, expr, [3.0]), [[2.0]])

    def test_repeated_factor_in_product(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(NaryProduct([x, x, y]))
        np.testing.assert_allclose(
            dense_hessian(model, expr, [3.0, 2.0]), [[4.0, 6.0], [6.0, 0.0]]
        )

    def test_three_way_product(self, model):
        x, y, z = (model.declare_variable(n) for n in "xyz")
        expr = model.build_expression(NaryProduct([x, y, z]))
        np.testing.assert_allclose(
            dense_hessian(model, expr, [1.0, 2.0, 3.0]),
            [[0.0, 3.0, 2.0], [3.0, 0.0, 1.0], [2.0, 1.0, 0.0]],
        )

    def test_linear_expression_has_no_entries(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(3 * x - y / 2 + 1)
        np.testing.assert_array_equal(dense_hessian(model, expr, [1.0, 1.0]), np.zeros((2, 2)))

    def test_deep_composition(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        expr = model.build_expression(sin(exp(x * y) + log(1 + x**2)) * y)
        point = [0.3, 0.7]
        np.testing.assert_allclose(
            dense_hessian(model, expr, point), fd_hessian(expr, point), rtol=1e-5, atol=1e-5
        )

    def test_user_function_with_hand_hessian(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        f = model.register_function(
            "f",
            2,
            lambda a, b: a * a * b,
            gradient=lambda a, b: [2 * a * b, a * a],
            hessian=lambda a, b: [[2 * b, 2 * a], [2 * a, 0.0]],
        )
        expr = model.build_expression(f(sin(x), y))
        point = [0.4, 1.7]
        np.testing.assert_allclose(
            dense_hessian(model, expr, point), fd_hessian(expr, point), rtol=1e-5, atol=1e-5
        )

    def test_univariate_autodiff_function(self, model):
        x = model.declare_variable("x")
        cube = model.register_function("cube", 1, lambda a: a**3, autodiff=True)
        expr = model.build_expression(cube(x))
        np.testing.assert_allclose(expr.gradient([2.0]), [12.0])
        np.testing.assert_allclose(dense_hessian(model, expr, [2.0]), [[12.0]])


class TestSparsity:
    """Structural patterns."""

    def test_jacobian_pattern(self, model):
        x, y, z = (model.declare_variable(n) for n in "xyz")
        a = model.build_expression(x * y)
        b = model.build_expression(z + 1)
        tape = compile_tape(model.graph, [a.root, b.root])
        assert jacobian_pattern(tape, tape.roots) == {(0, 0), (0, 1), (1, 2)}

    def test_hessian_pattern_skips_linear_parts(self, model):
        x, y, z, w = (model.declare_variable(n) for n in "xyzw")
        expr = model.build_expression(x * y + z**2 + 3 * w)
        tape = compile_tape(model.graph, [expr.root])
        assert hessian_pattern(tape, [0]) == {(1, 0), (2, 2)}

    def test_hessian_pattern_covers_both_branches(self, model):
        x, y, z = (model.declare_variable(n) for n in "xyz")
        expr = model.build_expression(ifelse(x <= 1, x * y, z**2))
        tape = compile_tape(model.graph, [expr.root])
        assert hessian_pattern(tape, [0]) == {(1, 0), (2, 2)}

    def test_hessian_pattern_ignores_predicate(self, model):
        x, z = model.declare_variable("x"), model.declare_variable("z")
        expr = model.build_expression(ifelse(x * x <= 1, z, 2 * z))
        tape = compile_tape(model.graph, [expr.root])
        assert hessian_pattern(tape, [0]) == set()
