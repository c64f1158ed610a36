"""Solver results.

A :class:`Solution` carries the termination status, the final point and
the evaluator work counters recorded while the solver ran.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np

from nlpeval.core.expressions import Variable

if TYPE_CHECKING:
    from numpy.typing import NDArray


class SolverStatus(Enum):
    """How a solve ended."""

    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    MAX_ITERATIONS = "max_iterations"
    FAILED = "failed"

    @classmethod
    def from_message(cls, success: bool, message: str) -> SolverStatus:
        """Classify a solver exit from its success flag and message text."""
        if success:
            return cls.OPTIMAL
        text = message.lower()
        if "iteration" in text and ("maximum" in text or "limit" in text):
            return cls.MAX_ITERATIONS
        if "infeasible" in text or "incompatible" in text:
            return cls.INFEASIBLE
        return cls.FAILED


@dataclass
class Solution:
    """Final state of a solve.

    ``x`` is ordered by variable index; ``values`` holds the same numbers
    keyed by variable name. ``evaluations`` is a snapshot of the session
    counters (forward passes, cache hits, gradient, Jacobian and Hessian
    passes) taken when the solver returned.

    Example:
        >>> sol = Problem(m).minimize((x - 1) ** 2).solve()
        >>> sol[x], sol["x"]
        (1.0, 1.0)
    """

    status: SolverStatus
    objective_value: float | None = None
    values: dict[str, float] = field(default_factory=dict)
    x: NDArray[np.floating] | None = None
    multipliers: list[float] | None = None
    iterations: int | None = None
    message: str = ""
    solve_time: float | None = None
    evaluations: dict[str, int] = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str, **extra: Any) -> Solution:
        return cls(status=SolverStatus.FAILED, message=message, **extra)

    @property
    def is_optimal(self) -> bool:
        return self.status is SolverStatus.OPTIMAL

    @property
    def has_point(self) -> bool:
        """Whether the solver returned a point worth inspecting."""
        return self.x is not None and self.status is not SolverStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value}
        data["objective_value"] = self.objective_value
        data["values"] = dict(self.values)
        data["x"] = None if self.x is None else self.x.tolist()
        data["multipliers"] = self.multipliers
        data["iterations"] = self.iterations
        data["message"] = self.message
        data["solve_time"] = self.solve_time
        data["evaluations"] = dict(self.evaluations)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def __getitem__(self, key: Variable | str) -> float:
        """Final value of a variable, looked up by handle or by name.

        Raises:
            KeyError: If the solution holds no value for ``key``.
        """
        if not isinstance(key, Variable):
            return self.values[key]
        if self.x is None or not 0 <= key.index < len(self.x):
            return self.values[key.name]
        return float(self.x[key.index])

    def get(self, key: Variable | str, default: float | None = None) -> float | None:
        try:
            return self[key]
        except KeyError:
            return default

    def __repr__(self) -> str:
        if self.objective_value is None:
            return f"Solution({self.status.value}: {self.message!r})"
        return (
            f"Solution({self.status.value}, objective={self.objective_value:.6g}, "
            f"{len(self.values)} variables)"
        )
