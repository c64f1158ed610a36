"""Tests for finite-difference gradient checks."""

import numpy as np

from nlpeval import cos, exp, sin
from nlpeval.core.verification import gradient_check, numerical_gradient, verify_gradient


def test_numerical_gradient_of_callable():
    grad = numerical_gradient(lambda z: z[0] ** 2 + 3 * z[1], [2.0, -1.0])
    np.testing.assert_allclose(grad, [4.0, 3.0], rtol=1e-6)


def test_verify_gradient(model):
    x, y = model.declare_variable("x"), model.declare_variable("y")
    expr = model.build_expression(sin(x) * exp(y) + cos(x * y))
    assert verify_gradient(expr, [0.3, -0.8])


def test_gradient_check_passes(model):
    x, y, z = (model.declare_variable(n) for n in "xyz")
    expr = model.build_expression(x * y * z + sin(x + z) ** 2 - y / (1 + z**2))
    result = gradient_check(expr, n_samples=15, seed=42)
    assert result.all_passed
    assert result.n_samples == 15
    assert result.max_error < 1e-6


def test_gradient_check_is_reproducible(model):
    x = model.declare_variable("x")
    expr = model.build_expression(exp(x) * x)
    a = gradient_check(expr, n_samples=5, seed=7)
    b = gradient_check(expr, n_samples=5, seed=7)
    assert a.max_error == b.max_error


def test_gradient_check_catches_wrong_hand_gradient(model):
    x = model.declare_variable("x")
    bad = model.register_function("bad", 1, lambda a: a**2, gradient=lambda a: 3 * a)
    expr = model.build_expression(bad(x))
    result = gradient_check(expr, n_samples=10, seed=0, low=0.5, high=2.0)
    assert not result.all_passed
    assert len(result.failures) == 10
    assert result.max_error > 0.4
    assert not verify_gradient(expr, [1.0])
