"""Second-order dual numbers for differentiating user function bodies.

A :class:`Dual` carries a value together with its first and second
derivative along one direction. Running a user function on duals yields
a directional derivative (one pass per input gives the full gradient) and,
for univariate functions, the second derivative as well.

User functions work on duals as long as they use Python arithmetic, numpy
ufuncs (``np.sin``, ``np.exp``, ...) or the package's elementary functions.
The ``math`` module converts its arguments to float and is not supported.
"""

from __future__ import annotations

import numbers
from typing import Any

import numpy as np

from nlpeval.core.operators import UNARY_RULES, pow_base_partials

_UFUNC_TO_OP = {
    np.negative: "neg",
    np.sin: "sin",
    np.cos: "cos",
    np.tan: "tan",
    np.arcsin: "asin",
    np.arccos: "acos",
    np.arctan: "atan",
    np.exp: "exp",
    np.log: "log",
    np.log10: "log10",
    np.sqrt: "sqrt",
    np.absolute: "abs",
    np.sinh: "sinh",
    np.cosh: "cosh",
    np.tanh: "tanh",
}


class Dual:
    """Truncated Taylor number ``value + tangent*e + curvature*e**2/2``.

    Args:
        value: Primal value.
        tangent: First derivative along the seeded direction.
        curvature: Second derivative along the seeded direction.
    """

    __slots__ = ("value", "tangent", "curvature")

    def __init__(
        self, value: float, tangent: float = 0.0, curvature: float = 0.0
    ) -> None:
        self.value = np.float64(value)
        self.tangent = np.float64(tangent)
        self.curvature = np.float64(curvature)

    @classmethod
    def variable(cls, value: float) -> Dual:
        """Seed an independent input: unit tangent, zero curvature."""
        return cls(value, 1.0, 0.0)

    def apply_unary(self, op: str) -> Dual:
        """Chain rule through an elementary function."""
        rule = UNARY_RULES[op]
        x = self.value
        y = rule.f(x)
        d1 = rule.df(x, y)
        d2 = rule.d2f(x, y)
        return Dual(
            y,
            d1 * self.tangent,
            d2 * self.tangent * self.tangent + d1 * self.curvature,
        )

    # Arithmetic ----------------------------------------------------------

    def __add__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return Dual(
            self.value + other.value,
            self.tangent + other.tangent,
            self.curvature + other.curvature,
        )

    __radd__ = __add__

    def __sub__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return Dual(
            self.value - other.value,
            self.tangent - other.tangent,
            self.curvature - other.curvature,
        )

    def __rsub__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return other - self

    def __mul__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return Dual(
            self.value * other.value,
            self.tangent * other.value + self.value * other.tangent,
            self.curvature * other.value
            + 2.0 * self.tangent * other.tangent
            + self.value * other.curvature,
        )

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return self * other._reciprocal()

    def __rtruediv__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return other * self._reciprocal()

    def __pow__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return _power(self, other)

    def __rpow__(self, other: Any) -> Dual:
        other = _lift(other)
        if other is NotImplemented:
            return NotImplemented
        return _power(other, self)

    def __neg__(self) -> Dual:
        return Dual(-self.value, -self.tangent, -self.curvature)

    def __pos__(self) -> Dual:
        return self

    def __abs__(self) -> Dual:
        return self.apply_unary("abs")

    def _reciprocal(self) -> Dual:
        x = self.value
        y = 1.0 / x
        d1 = -y * y
        d2 = 2.0 * y * y * y
        return Dual(
            y,
            d1 * self.tangent,
            d2 * self.tangent * self.tangent + d1 * self.curvature,
        )

    # Comparisons act on the primal value so branching code keeps working.

    def __lt__(self, other: Any) -> bool:
        return self.value < _primal(other)

    def __le__(self, other: Any) -> bool:
        return self.value <= _primal(other)

    def __gt__(self, other: Any) -> bool:
        return self.value > _primal(other)

    def __ge__(self, other: Any) -> bool:
        return self.value >= _primal(other)

    def __eq__(self, other: Any) -> bool:  # type: ignore[override]
        return bool(self.value == _primal(other))

    def __ne__(self, other: Any) -> bool:  # type: ignore[override]
        return bool(self.value != _primal(other))

    __hash__ = None  # type: ignore[assignment]

    # numpy interoperability ---------------------------------------------

    def __array_ufunc__(self, ufunc: Any, method: str, *inputs: Any, **kwargs: Any):
        if method != "__call__" or kwargs:
            return NotImplemented
        if len(inputs) == 1 and ufunc in _UFUNC_TO_OP:
            return _lift(inputs[0]).apply_unary(_UFUNC_TO_OP[ufunc])
        if len(inputs) == 2:
            a, b = inputs
            if ufunc is np.add:
                return _lift(a) + b
            if ufunc is np.subtract:
                return _lift(a) - b
            if ufunc is np.multiply:
                return _lift(a) * b
            if ufunc is np.true_divide:
                return _lift(a) / b
            if ufunc is np.power:
                return _lift(a) ** b
        return NotImplemented

    def __repr__(self) -> str:
        return f"Dual({self.value}, {self.tangent}, {self.curvature})"


def _lift(value: Any) -> Dual:
    if isinstance(value, Dual):
        return value
    if isinstance(value, numbers.Real):
        return Dual(value)
    return NotImplemented  # type: ignore[return-value]


def _power(base: Dual, exponent: Dual) -> Dual:
    """``base ** exponent``; each side contributes only when it moves."""
    a, b = base.value, exponent.value
    y = np.power(a, b)
    tangent = np.float64(0.0)
    curvature = np.float64(0.0)
    if base.tangent != 0.0 or base.curvature != 0.0:
        d1, d2 = pow_base_partials(a, b)
        tangent = d1 * base.tangent
        curvature = d2 * base.tangent * base.tangent + d1 * base.curvature
    if exponent.tangent != 0.0 or exponent.curvature != 0.0:
        log_a = np.log(a)
        db = y * log_a
        tangent = tangent + db * exponent.tangent
        curvature = curvature + db * log_a * exponent.tangent**2 + db * exponent.curvature
        if base.tangent != 0.0:
            cross = np.power(a, b - 1.0) * (1.0 + b * log_a)
            curvature = curvature + 2.0 * cross * base.tangent * exponent.tangent
    return Dual(y, tangent, curvature)


def _primal(value: Any) -> Any:
    return value.value if isinstance(value, Dual) else value


def tangent_of(result: Any) -> float:
    """First derivative carried by a user function result.

    A plain number means the function did not depend on the seeded input.
    """
    if isinstance(result, Dual):
        return float(result.tangent)
    return 0.0


def curvature_of(result: Any) -> float:
    """Second derivative carried by a user function result."""
    if isinstance(result, Dual):
        return float(result.curvature)
    return 0.0


def value_of(result: Any) -> float:
    """Primal value of a user function result."""
    if isinstance(result, Dual):
        return float(result.value)
    return float(result)
