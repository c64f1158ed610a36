"""Transcendental and mathematical functions.

Every function accepts an Expression, a :class:`~nlpeval.core.dual.Dual`
or a plain number:

- expressions produce UnaryOp nodes for the expression graph,
- duals propagate derivatives (so the same functions can be used inside
  user-registered functions with ``autodiff=True``),
- numbers are evaluated directly with numpy.
"""

from __future__ import annotations

import numbers
from typing import Any

import numpy as np

from nlpeval.core.dual import Dual
from nlpeval.core.errors import InvalidExpressionError
from nlpeval.core.expressions import Conditional, Expression, UnaryOp, _ensure_expr
from nlpeval.core.operators import UNARY_RULES


def _apply(x: Any, op: str) -> Any:
    if isinstance(x, Expression):
        return UnaryOp(x, op)
    if isinstance(x, Dual):
        return x.apply_unary(op)
    if isinstance(x, numbers.Real):
        return UNARY_RULES[op].f(np.float64(x))
    raise InvalidExpressionError(
        f"Cannot apply {op}() to object of type {type(x).__name__}"
    )


def sin(x: Any) -> Any:
    """Sine function."""
    return _apply(x, "sin")


def cos(x: Any) -> Any:
    """Cosine function."""
    return _apply(x, "cos")


def tan(x: Any) -> Any:
    """Tangent function."""
    return _apply(x, "tan")


def asin(x: Any) -> Any:
    """Inverse sine (domain [-1, 1])."""
    return _apply(x, "asin")


def acos(x: Any) -> Any:
    """Inverse cosine (domain [-1, 1])."""
    return _apply(x, "acos")


def atan(x: Any) -> Any:
    """Inverse tangent."""
    return _apply(x, "atan")


def exp(x: Any) -> Any:
    """Exponential function (e^x)."""
    return _apply(x, "exp")


def log(x: Any) -> Any:
    """Natural logarithm.

    Non-positive arguments evaluate to NaN (or -inf at zero); the error is
    left for the calling solver to handle.
    """
    return _apply(x, "log")


def log10(x: Any) -> Any:
    """Base-10 logarithm."""
    return _apply(x, "log10")


def sqrt(x: Any) -> Any:
    """Square root (must be non-negative)."""
    return _apply(x, "sqrt")


def abs_(x: Any) -> Any:
    """Absolute value.

    Note: Named abs_ to avoid shadowing Python's built-in abs.
    """
    return _apply(x, "abs")


def sinh(x: Any) -> Any:
    """Hyperbolic sine."""
    return _apply(x, "sinh")


def cosh(x: Any) -> Any:
    """Hyperbolic cosine."""
    return _apply(x, "cosh")


def tanh(x: Any) -> Any:
    """Hyperbolic tangent."""
    return _apply(x, "tanh")


def ifelse(predicate: Any, then_branch: Any, else_branch: Any) -> Any:
    """Value-level conditional.

    With expression arguments this builds a :class:`Conditional` node whose
    derivative is the derivative of the active branch. At the switching
    point (e.g. ``x == 1`` for ``x <= 1``) the predicate holds and the
    ``then`` branch is used.

    With plain values (inside a user function body) the branch is picked
    immediately.

    Example:
        >>> f = ifelse(x <= 1, x**2, x)
    """
    if any(isinstance(a, Expression) for a in (predicate, then_branch, else_branch)):
        return Conditional(
            _ensure_expr(predicate),
            _ensure_expr(then_branch),
            _ensure_expr(else_branch),
        )
    return then_branch if predicate else else_branch
