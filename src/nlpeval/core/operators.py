"""Elementary operators: values and first/second partial derivatives.

Each unary rule maps an operator name to ``(f, df, d2f)`` where the
derivative callables receive both the argument ``x`` and the already
computed value ``y = f(x)`` so they can reuse it (``exp``, ``tanh``).

Everything goes through numpy so domain problems produce NaN/inf with a
RuntimeWarning instead of raising.
"""

from __future__ import annotations

from typing import Callable, NamedTuple

import numpy as np

_LN10 = np.log(10.0)


class UnaryRule(NamedTuple):
    """Value and derivative callables for one unary operator."""

    f: Callable[[float], float]
    df: Callable[[float, float], float]
    d2f: Callable[[float, float], float]


UNARY_RULES: dict[str, UnaryRule] = {
    "neg": UnaryRule(
        np.negative,
        lambda x, y: -1.0,
        lambda x, y: 0.0,
    ),
    "sin": UnaryRule(
        np.sin,
        lambda x, y: np.cos(x),
        lambda x, y: -y,
    ),
    "cos": UnaryRule(
        np.cos,
        lambda x, y: -np.sin(x),
        lambda x, y: -y,
    ),
    "tan": UnaryRule(
        np.tan,
        lambda x, y: 1.0 + y * y,
        lambda x, y: 2.0 * y * (1.0 + y * y),
    ),
    "asin": UnaryRule(
        np.arcsin,
        lambda x, y: 1.0 / np.sqrt(1.0 - x * x),
        lambda x, y: x / (1.0 - x * x) ** 1.5,
    ),
    "acos": UnaryRule(
        np.arccos,
        lambda x, y: -1.0 / np.sqrt(1.0 - x * x),
        lambda x, y: -x / (1.0 - x * x) ** 1.5,
    ),
    "atan": UnaryRule(
        np.arctan,
        lambda x, y: 1.0 / (1.0 + x * x),
        lambda x, y: -2.0 * x / (1.0 + x * x) ** 2,
    ),
    "exp": UnaryRule(
        np.exp,
        lambda x, y: y,
        lambda x, y: y,
    ),
    "log": UnaryRule(
        np.log,
        lambda x, y: 1.0 / x,
        lambda x, y: -1.0 / (x * x),
    ),
    "log10": UnaryRule(
        np.log10,
        lambda x, y: 1.0 / (x * _LN10),
        lambda x, y: -1.0 / (x * x * _LN10),
    ),
    "sqrt": UnaryRule(
        np.sqrt,
        lambda x, y: 0.5 / y,
        lambda x, y: -0.25 / (y * x),
    ),
    "abs": UnaryRule(
        np.abs,
        lambda x, y: np.sign(x),
        lambda x, y: 0.0,
    ),
    "sinh": UnaryRule(
        np.sinh,
        lambda x, y: np.cosh(x),
        lambda x, y: y,
    ),
    "cosh": UnaryRule(
        np.cosh,
        lambda x, y: np.sinh(x),
        lambda x, y: y,
    ),
    "tanh": UnaryRule(
        np.tanh,
        lambda x, y: 1.0 - y * y,
        lambda x, y: -2.0 * y * (1.0 - y * y),
    ),
}

# Unary operators whose second derivative is identically zero.
LINEAR_UNARY = frozenset({"neg", "abs"})

BINARY_OPS = ("+", "-", "*", "/", "**")

COMPARISON_OPS: dict[str, Callable[[float, float], bool]] = {
    "<=": lambda a, b: a <= b,
    ">=": lambda a, b: a >= b,
    "==": lambda a, b: a == b,
    "<": lambda a, b: a < b,
    ">": lambda a, b: a > b,
}

NARY_OPS = ("sum", "prod")


def apply_unary(op: str, x: float) -> float:
    """Evaluate a unary operator."""
    return UNARY_RULES[op].f(x)


def apply_binary(op: str, a: float, b: float) -> float:
    """Evaluate a binary operator."""
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        return a * b
    if op == "/":
        return a / b
    if op == "**":
        return a**b
    raise KeyError(op)


def apply_nary(op: str, args: list[float]) -> float:
    """Evaluate an n-ary sum or product, left to right."""
    if op == "sum":
        total = np.float64(0.0)
        for a in args:
            total = total + a
        return total
    if op == "prod":
        total = np.float64(1.0)
        for a in args:
            total = total * a
        return total
    raise KeyError(op)


def apply_comparison(op: str, a: float, b: float) -> float:
    """Evaluate a comparison as 1.0 (true) or 0.0 (false)."""
    return np.float64(1.0) if COMPARISON_OPS[op](a, b) else np.float64(0.0)


# =============================================================================
# Local derivatives of binary operators
# =============================================================================


def binary_partials(op: str, a: float, b: float, y: float) -> tuple[float, float]:
    """First partials ``(d/da, d/db)`` of ``y = a op b``."""
    if op == "+":
        return 1.0, 1.0
    if op == "-":
        return 1.0, -1.0
    if op == "*":
        return b, a
    if op == "/":
        return 1.0 / b, -a / (b * b)
    if op == "**":
        return _pow_partial_base(a, b), y * np.log(a)
    raise KeyError(op)


def binary_second_partials(
    op: str, a: float, b: float, y: float
) -> tuple[float, float, float]:
    """Second partials ``(d2/da2, d2/dadb, d2/db2)`` of ``y = a op b``."""
    if op in ("+", "-"):
        return 0.0, 0.0, 0.0
    if op == "*":
        return 0.0, 1.0, 0.0
    if op == "/":
        return 0.0, -1.0 / (b * b), 2.0 * a / (b * b * b)
    if op == "**":
        log_a = np.log(a)
        d2a = _pow_second_base(a, b)
        dadb = a ** (b - 1.0) * (1.0 + b * log_a)
        return d2a, dadb, y * log_a * log_a
    raise KeyError(op)


def pow_base_partials(a: float, b: float) -> tuple[float, float]:
    """``(d/da, d2/da2)`` of ``a**b`` for an exponent that is not a variable.

    Avoids taking ``log(a)``, which would produce spurious NaN warnings for
    negative bases raised to integer powers.
    """
    return _pow_partial_base(a, b), _pow_second_base(a, b)


def _pow_partial_base(a: float, b: float) -> float:
    if b == 0.0:
        return 0.0
    if b == 1.0:
        return 1.0
    if b == 2.0:
        return 2.0 * a
    return b * a ** (b - 1.0)


def _pow_second_base(a: float, b: float) -> float:
    if b == 0.0 or b == 1.0:
        return 0.0
    if b == 2.0:
        return 2.0
    return b * (b - 1.0) * a ** (b - 2.0)

