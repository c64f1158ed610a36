"""Ranged constraints ``lower <= body(x) <= upper``.

The evaluator only ever sees constraint *bodies*; bounds belong to the
modeling layer and are handed to the solver separately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from nlpeval.core.errors import InvalidExpressionError
from nlpeval.core.expressions import Comparison, Constant, Expression

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from nlpeval.model import Model


@dataclass(eq=False)
class Constraint:
    """A ranged constraint on an expression body.

    Attributes:
        body: Constrained expression (front-end tree or compiled handle).
        lower: Lower bound (``-inf`` for none).
        upper: Upper bound (``inf`` for none).
        name: Optional constraint name.

    Example:
        >>> Constraint(x * y, lower=25.0)              # x*y >= 25
        >>> Constraint.from_comparison(x + y <= 10)     # (x + y) - 10 <= 0
    """

    body: Expression
    lower: float = -np.inf
    upper: float = np.inf
    name: str | None = None

    def __post_init__(self) -> None:
        self.lower = -np.inf if self.lower is None else float(self.lower)
        self.upper = np.inf if self.upper is None else float(self.upper)
        if self.lower > self.upper:
            raise ValueError(
                f"Constraint lower bound {self.lower} exceeds upper bound {self.upper}"
            )

    @classmethod
    def from_comparison(cls, comparison: Comparison, name: str | None = None) -> Constraint:
        """Turn ``lhs op rhs`` into a ranged constraint.

        A constant right-hand side becomes the bound. Otherwise the body is
        ``lhs - rhs`` bounded by zero. Strict inequalities are treated as
        non-strict.
        """
        if not isinstance(comparison, Comparison):
            raise InvalidExpressionError(
                f"Expected a comparison, got {type(comparison).__name__}",
                suggestion="write constraints as 'expr <= value' or pass lb/ub",
            )
        left, right = comparison.left, comparison.right
        if isinstance(right, Constant):
            body, bound = left, right.value
        elif isinstance(left, Constant):
            body, bound = right, left.value
            comparison = Comparison(right, left, _MIRRORED[comparison.op])
        else:
            body, bound = left - right, 0.0

        op = comparison.op
        if op in ("<=", "<"):
            return cls(body, upper=bound, name=name)
        if op in (">=", ">"):
            return cls(body, lower=bound, name=name)
        return cls(body, lower=bound, upper=bound, name=name)

    @property
    def is_equality(self) -> bool:
        return self.lower == self.upper

    def violation(self, model: Model, point: ArrayLike | None = None) -> float:
        """Distance of the body value from ``[lower, upper]`` (0 if satisfied)."""
        value = model.value(self.body, point)
        return float(max(self.lower - value, value - self.upper, 0.0))

    def is_satisfied(
        self, model: Model, point: ArrayLike | None = None, tol: float = 1e-6
    ) -> bool:
        return self.violation(model, point) <= tol

    def __repr__(self) -> str:
        label = f"'{self.name}', " if self.name else ""
        return f"Constraint({label}{self.lower} <= {self.body!r} <= {self.upper})"


_MIRRORED = {"<=": ">=", ">=": "<=", "<": ">", ">": "<", "==": "=="}


def make_constraint(
    item: Any,
    lb: float | None = None,
    ub: float | None = None,
    name: str | None = None,
) -> Constraint:
    """Coerce a comparison, a constraint or an expression with bounds."""
    if isinstance(item, Constraint):
        if lb is not None or ub is not None:
            raise ValueError("Bounds cannot be combined with a Constraint object")
        return item
    if isinstance(item, Comparison):
        if lb is not None or ub is not None:
            raise ValueError("Bounds cannot be combined with a comparison")
        return Constraint.from_comparison(item, name=name)
    if isinstance(item, Expression):
        if lb is None and ub is None:
            raise ValueError("An expression constraint needs lb and/or ub")
        return Constraint(item, lower=lb, upper=ub, name=name)
    raise InvalidExpressionError(
        f"Cannot use object of type {type(item).__name__} as a constraint"
    )
