"""Tests for second-order dual numbers."""

import numpy as np
import pytest

from nlpeval import exp, sin
from nlpeval.core.dual import Dual, curvature_of, tangent_of, value_of


class TestArithmetic:
    """Value, first and second derivative through arithmetic."""

    def test_variable_seed(self):
        d = Dual.variable(3.0)
        assert (d.value, d.tangent, d.curvature) == (3.0, 1.0, 0.0)

    def test_add_sub_constants(self):
        d = Dual.variable(3.0)
        r = 2.0 - (d + 1.0)
        assert (r.value, r.tangent, r.curvature) == (-2.0, -1.0, 0.0)

    def test_product(self):
        d = Dual.variable(3.0)
        r = d * d
        assert (r.value, r.tangent, r.curvature) == (9.0, 6.0, 2.0)

    def test_reciprocal(self):
        d = Dual.variable(2.0)
        r = 1.0 / d
        assert r.value == pytest.approx(0.5)
        assert r.tangent == pytest.approx(-0.25)
        assert r.curvature == pytest.approx(0.25)

    def test_quotient(self):
        d = Dual.variable(2.0)
        r = d / 4.0
        assert (r.value, r.tangent, r.curvature) == (0.5, 0.25, 0.0)

    def test_power_numeric_exponent(self):
        r = Dual.variable(2.0) ** 3
        assert (r.value, r.tangent, r.curvature) == (8.0, 12.0, 12.0)

    def test_power_of_negative_base(self):
        r = Dual.variable(-2.0) ** 2
        assert (r.value, r.tangent, r.curvature) == (4.0, -4.0, 2.0)

    def test_numeric_base(self):
        r = 2.0 ** Dual.variable(1.0)
        ln2 = np.log(2.0)
        assert r.value == pytest.approx(2.0)
        assert r.tangent == pytest.approx(2.0 * ln2)
        assert r.curvature == pytest.approx(2.0 * ln2 * ln2)

    def test_constant_dual_exponent_on_negative_base(self):
        # gradient code wraps non-seeded arguments as Dual(a)
        r = Dual.variable(-2.0) ** Dual(2.0)
        assert (r.value, r.tangent, r.curvature) == (4.0, -4.0, 2.0)

    def test_zero_power_at_zero(self):
        r = Dual.variable(0.0) ** 0
        assert (r.value, r.tangent, r.curvature) == (1.0, 0.0, 0.0)

    def test_base_and_exponent_both_seeded(self):
        # d/dt (t**t) = t**t (1 + ln t), d2 = t**t ((1 + ln t)**2 + 1/t)
        t = 2.0
        d = Dual.variable(t)
        r = d**d
        assert r.value == pytest.approx(4.0)
        assert r.tangent == pytest.approx(4.0 * (1 + np.log(t)))
        assert r.curvature == pytest.approx(4.0 * ((1 + np.log(t)) ** 2 + 1 / t))

    def test_abs(self):
        r = abs(Dual.variable(-2.0))
        assert (r.value, r.tangent) == (2.0, -1.0)

    def test_unsupported_operand(self):
        with pytest.raises(TypeError):
            Dual.variable(1.0) + "a"


class TestFunctions:
    """Chain rule through numpy ufuncs and package functions."""

    def test_numpy_sin(self):
        x = 0.7
        r = np.sin(Dual.variable(x))
        assert isinstance(r, Dual)
        assert r.tangent == pytest.approx(np.cos(x))
        assert r.curvature == pytest.approx(-np.sin(x))

    def test_package_exp_of_square(self):
        x = 0.5
        r = exp(Dual.variable(x) ** 2)
        f = np.exp(x * x)
        assert r.tangent == pytest.approx(2 * x * f)
        assert r.curvature == pytest.approx((2 + 4 * x * x) * f)

    def test_sin_of_product(self):
        x = 0.3
        d = Dual.variable(x)
        r = sin(3.0 * d)
        assert r.tangent == pytest.approx(3.0 * np.cos(3 * x))
        assert r.curvature == pytest.approx(-9.0 * np.sin(3 * x))

    def test_numpy_binary_ufuncs(self):
        d = Dual.variable(2.0)
        assert np.multiply(d, 3.0).tangent == 3.0
        assert np.power(d, 2.0).tangent == 4.0


class TestComparisonsAndHelpers:
    """Branching on duals and extracting results."""

    def test_comparisons_use_primal(self):
        d = Dual.variable(2.0)
        assert d < 3
        assert d >= 2.0
        assert not d > Dual(5.0)
        assert d == 2.0

    def test_unhashable(self):
        with pytest.raises(TypeError):
            hash(Dual(1.0))

    def test_helpers(self):
        d = Dual(1.0, 2.0, 3.0)
        assert (value_of(d), tangent_of(d), curvature_of(d)) == (1.0, 2.0, 3.0)
        assert (value_of(4.0), tangent_of(4.0), curvature_of(4.0)) == (4.0, 0.0, 0.0)
