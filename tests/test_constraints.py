"""Tests for the constraint system."""

import numpy as np
import pytest

from nlpeval import Constraint
from nlpeval.constraints import make_constraint
from nlpeval.core.errors import InvalidExpressionError
from nlpeval.core.expressions import BinaryOp, Comparison, Constant


class TestConstraintCreation:
    """Tests for creating constraints."""

    def test_le_from_comparison(self, model):
        x = model.declare_variable("x")
        c = Constraint.from_comparison(x <= 5)
        assert c.body is x
        assert (c.lower, c.upper) == (-np.inf, 5.0)

    def test_ge_from_comparison(self, model):
        x = model.declare_variable("x")
        c = Constraint.from_comparison(x >= 0)
        assert (c.lower, c.upper) == (0.0, np.inf)

    def test_eq_from_comparison(self, model):
        x = model.declare_variable("x")
        c = Constraint.from_comparison(x == 5)
        assert c.is_equality
        assert (c.lower, c.upper) == (5.0, 5.0)

    def test_reflected_comparison(self, model):
        # 5 >= x is evaluated by Python as x <= 5
        x = model.declare_variable("x")
        c = Constraint.from_comparison(5 >= x)
        assert c.body is x
        assert c.upper == 5.0

    def test_constant_on_left(self, model):
        x = model.declare_variable("x")
        c = Constraint.from_comparison(Comparison(Constant(2.0), x, ">="))
        assert c.body is x
        assert (c.lower, c.upper) == (-np.inf, 2.0)

    def test_expression_on_both_sides(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        c = Constraint.from_comparison(x * y >= x + 1)
        assert isinstance(c.body, BinaryOp)
        assert c.body.op == "-"
        assert (c.lower, c.upper) == (0.0, np.inf)
        assert model.value(c.body, [2.0, 3.0]) == pytest.approx(3.0)

    def test_strict_treated_as_non_strict(self, model):
        x = model.declare_variable("x")
        assert Constraint.from_comparison(x < 5).upper == 5.0
        assert Constraint.from_comparison(x > 1).lower == 1.0

    def test_none_bounds_become_infinite(self, model):
        x = model.declare_variable("x")
        c = Constraint(x, lower=None, upper=3.0)
        assert c.lower == -np.inf

    def test_crossed_bounds(self, model):
        x = model.declare_variable("x")
        with pytest.raises(ValueError, match="exceeds"):
            Constraint(x, lower=2.0, upper=1.0)

    def test_not_a_comparison(self, model):
        x = model.declare_variable("x")
        with pytest.raises(InvalidExpressionError):
            Constraint.from_comparison(x + 1)


class TestMakeConstraint:
    """Coercion used by Problem.subject_to."""

    def test_ranged_expression(self, model):
        x, y = model.declare_variable("x"), model.declare_variable("y")
        c = make_constraint(x + y, lb=1.0, ub=2.0, name="band")
        assert (c.lower, c.upper, c.name) == (1.0, 2.0, "band")

    def test_constraint_passthrough(self, model):
        x = model.declare_variable("x")
        c = Constraint(x, upper=1.0)
        assert make_constraint(c) is c

    def test_bounds_with_comparison(self, model):
        x = model.declare_variable("x")
        with pytest.raises(ValueError):
            make_constraint(x <= 1, lb=0.0)

    def test_expression_without_bounds(self, model):
        x = model.declare_variable("x")
        with pytest.raises(ValueError, match="lb and/or ub"):
            make_constraint(x * 2)

    def test_bad_type(self):
        with pytest.raises(InvalidExpressionError):
            make_constraint("x <= 1")


class TestConstraintEvaluation:
    """Tests for evaluating constraints."""

    def test_le_satisfied(self, model):
        x = model.declare_variable("x")
        c = Constraint.from_comparison(x <= 5)
        assert c.is_satisfied(model, [4.0])
        assert c.is_satisfied(model, [5.0])
        assert not c.is_satisfied(model, [6.0])

    def test_violation(self, model):
        x = model.declare_variable("x")
        c = Constraint(x**2, lower=1.0, upper=4.0)
        assert c.violation(model, [1.5]) == 0.0
        assert c.violation(model, [3.0]) == pytest.approx(5.0)
        assert c.violation(model, [0.5]) == pytest.approx(0.75)

    def test_default_point_is_start(self, model):
        x = model.declare_variable("x", start=2.0)
        c = Constraint.from_comparison(x >= 3)
        assert c.violation(model) == pytest.approx(1.0)

    def test_tolerance(self, model):
        x = model.declare_variable("x")
        c = Constraint.from_comparison(x == 1)
        assert c.is_satisfied(model, [1.0 + 1e-8])
        assert not c.is_satisfied(model, [1.0 + 1e-8], tol=1e-10)
