"""Problem: an objective with a sense plus ranged constraints over a model."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

import numpy as np

from nlpeval.constraints import Constraint, make_constraint
from nlpeval.core.errors import NoObjectiveError
from nlpeval.core.evaluator import Feature

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from nlpeval.core.evaluator import EvaluatorSession
    from nlpeval.core.expressions import Expression, Variable
    from nlpeval.model import Model
    from nlpeval.solution import Solution

logger = logging.getLogger(__name__)

_SOLVER_FEATURES = (Feature.VALUE, Feature.GRADIENT, Feature.JACOBIAN, Feature.HESSIAN)


class Problem:
    """An optimization problem over the variables of a model.

    Example:
        >>> m = Model()
        >>> x = m.declare_variable("x", lb=0)
        >>> y = m.declare_variable("y", lb=0)
        >>> prob = Problem(m).minimize(x**2 + y**2).subject_to(x + y >= 1)
        >>> solution = prob.solve()

    The evaluator session handed to the solver is cached and rebuilt only
    when the objective or the constraint set changes. Parameter updates go
    through the parameter store and never trigger a rebuild.
    """

    def __init__(self, model: Model, name: str | None = None) -> None:
        self.model = model
        self.name = name
        self._objective: Expression | None = None
        self._sense = "minimize"
        self._constraints: list[Constraint] = []
        self._revision = 0
        self._session: EvaluatorSession | None = None
        self._session_revision = -1

    def minimize(self, expr: Any) -> Problem:
        """Set the objective to minimize."""
        self._objective = expr
        self._sense = "minimize"
        self._revision += 1
        return self

    def maximize(self, expr: Any) -> Problem:
        """Set the objective to maximize."""
        self._objective = expr
        self._sense = "maximize"
        self._revision += 1
        return self

    def subject_to(
        self,
        constraint: Any,
        lb: float | None = None,
        ub: float | None = None,
        name: str | None = None,
    ) -> Problem:
        """Add a constraint.

        Accepts a comparison (``x * y >= 25``), a :class:`Constraint`, or an
        expression together with ``lb`` and/or ``ub``.
        """
        self._constraints.append(make_constraint(constraint, lb, ub, name))
        self._revision += 1
        return self

    @property
    def objective(self) -> Expression | None:
        return self._objective

    @property
    def sense(self) -> str:
        return self._sense

    @property
    def constraints(self) -> list[Constraint]:
        return list(self._constraints)

    @property
    def variables(self) -> list[Variable]:
        """All model variables, ordered by index."""
        return self.model.variables

    def get_bounds(self) -> list[tuple[float | None, float | None]]:
        """Variable bounds as ``(lb, ub)`` pairs, None where unbounded."""
        return [(v.lb, v.ub) for v in self.model.variables]

    def constraint_bounds(self) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Lower and upper bound vectors of the constraint rows."""
        lower = np.array([c.lower for c in self._constraints], dtype=np.float64)
        upper = np.array([c.upper for c in self._constraints], dtype=np.float64)
        return lower, upper

    def evaluator(self, features: Iterable[Feature | str] = _SOLVER_FEATURES) -> EvaluatorSession:
        """Initialized evaluator session over the objective and constraints."""
        requested = frozenset(Feature(f) for f in features)
        session = self._session
        if session is None or self._session_revision != self._revision:
            session = self.model.create_session(
                self._objective, [c.body for c in self._constraints]
            )
            self._session = session
            self._session_revision = self._revision
            logger.debug("Built evaluator session for %r", self)
            session.initialize(requested)
        elif not requested <= session.features:
            session.initialize(requested | session.features)
        return session

    def solve(self, method: str = "SLSQP", **kwargs: Any) -> Solution:
        """Solve with SciPy. See :func:`nlpeval.solvers.scipy_solver.solve_scipy`.

        Raises:
            NoObjectiveError: If no objective has been set.
        """
        if self._objective is None:
            raise NoObjectiveError()
        from nlpeval.solvers.scipy_solver import solve_scipy

        return solve_scipy(self, method=method, **kwargs)

    def __repr__(self) -> str:
        label = f"'{self.name}', " if self.name else ""
        if self._objective is None:
            return f"Problem({label}no objective, {len(self._constraints)} constraints)"
        return (
            f"Problem({label}{self._sense}, {self.model.num_variables} variables, "
            f"{len(self._constraints)} constraints)"
        )
