"""SciPy-based optimization solver.

Maps nlpeval problems to scipy.optimize.minimize. Every function value and
derivative the solver asks for goes through the problem's evaluator
session, so value, gradient and constraint queries at one iterate share a
single forward pass.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Callable

import numpy as np
from scipy import sparse
from scipy.optimize import BFGS, NonlinearConstraint, minimize

from nlpeval.core.errors import SolverError
from nlpeval.core.evaluator import Feature
from nlpeval.solution import Solution, SolverStatus

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from nlpeval.core.evaluator import EvaluatorSession
    from nlpeval.core.expressions import Variable
    from nlpeval.problem import Problem

logger = logging.getLogger(__name__)

_CONSTRAINED_METHODS = frozenset({"slsqp", "trust-constr", "cobyla", "cobyqa"})


def solve_scipy(
    problem: Problem,
    method: str = "SLSQP",
    x0: np.ndarray | None = None,
    tol: float | None = None,
    maxiter: int | None = None,
    **kwargs: Any,
) -> Solution:
    """Run ``scipy.optimize.minimize`` on a problem.

    ``trust-constr`` receives the exact Lagrangian Hessian when the session
    can produce one and falls back to BFGS updates otherwise. ``SLSQP``
    gets one dict constraint per finite bound side. Methods that cannot
    take general constraints (``L-BFGS-B``, ``BFGS``, ...) are accepted
    only for bound-constrained problems.

    Args:
        problem: Problem to solve.
        method: Name of the SciPy method.
        x0: Starting point. Defaults to :func:`_compute_initial_point`.
        tol: Forwarded to ``minimize``.
        maxiter: Iteration limit, passed through the method options.
        **kwargs: Further ``minimize`` arguments.

    Raises:
        SolverError: If the problem has constraints and the method cannot
            handle them.
    """
    variables = problem.variables
    if not variables:
        return Solution.failure("Problem has no variables")

    constraints = problem.constraints
    if constraints and method.lower() not in _CONSTRAINED_METHODS:
        raise SolverError(
            f"Method '{method}' does not handle general constraints; "
            "use SLSQP or trust-constr",
            solver_name="scipy",
        )
    exact_hessian = method.lower() == "trust-constr"
    session = problem.evaluator(_features(bool(constraints), exact_hessian))
    session.stats.reset()

    # minimize() always minimizes
    sign = -1.0 if problem.sense == "maximize" else 1.0

    hess: Any = None
    scipy_constraints: Any = ()
    if exact_hessian:
        hess = _objective_hessian(session, sign)
        if constraints:
            scipy_constraints = [_nonlinear_constraint(problem, session)]
    elif constraints:
        scipy_constraints = _dict_constraints(problem, session)

    options = {"maxiter": maxiter} if maxiter is not None else None
    start = x0 if x0 is not None else _compute_initial_point(variables)

    started = time.perf_counter()
    try:
        result = minimize(
            fun=lambda x: sign * session.value_at(x),
            x0=start,
            method=method,
            jac=lambda x: sign * session.gradient_at(x),
            hess=hess,
            bounds=_bounds(variables),
            constraints=scipy_constraints,
            tol=tol,
            options=options,
            **kwargs,
        )
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.debug("scipy.optimize.minimize(%s) raised %r", method, e)
        return Solution.failure(
            str(e),
            solve_time=time.perf_counter() - started,
            evaluations=asdict(session.stats),
        )
    elapsed = time.perf_counter() - started

    message = str(getattr(result, "message", ""))
    status = SolverStatus.from_message(bool(result.success), message)

    multipliers = None
    if exact_hessian and constraints and getattr(result, "v", None):
        multipliers = np.asarray(result.v[0], dtype=np.float64).ravel().tolist()

    logger.debug("%s finished in %.3fs: %s (%s)", method, elapsed, status.value, session.stats)
    x = np.asarray(result.x, dtype=np.float64)
    return Solution(
        status=status,
        objective_value=sign * float(result.fun),
        values={v.name: float(x[v.index]) for v in variables},
        x=x,
        multipliers=multipliers,
        iterations=getattr(result, "nit", None),
        message=message,
        solve_time=elapsed,
        evaluations=asdict(session.stats),
    )


def _features(constrained: bool, exact_hessian: bool) -> list[Feature]:
    features = [Feature.VALUE, Feature.GRADIENT]
    if constrained:
        features.append(Feature.JACOBIAN)
    if exact_hessian:
        features.append(Feature.HESSIAN)
    return features


def _bounds(variables: list[Variable]) -> list[tuple[float, float]] | None:
    """Variable bounds for ``minimize``, or None when every variable is free."""
    pairs = [
        (-np.inf if v.lb is None else v.lb, np.inf if v.ub is None else v.ub)
        for v in variables
    ]
    if all(lb == -np.inf and ub == np.inf for lb, ub in pairs):
        return None
    return pairs


def _objective_hessian(session: EvaluatorSession, sign: float) -> Any:
    if not session.hessian_available:
        return BFGS()
    return lambda x: _symmetric(session.lagrangian_hessian_at(x, sign))


def _symmetric(lower: sparse.coo_matrix) -> sparse.csr_matrix:
    """Full symmetric matrix from its lower triangle."""
    lower = lower.tocsr()
    return lower + lower.T - sparse.diags(lower.diagonal())


def _nonlinear_constraint(problem: Problem, session: EvaluatorSession) -> NonlinearConstraint:
    lower, upper = problem.constraint_bounds()
    if session.hessian_available:
        hess: Any = lambda x, v: _symmetric(  # noqa: E731
            session.lagrangian_hessian_at(x, 0.0, v)
        )
    else:
        hess = BFGS()
    return NonlinearConstraint(
        session.constraints_at,
        lower,
        upper,
        jac=lambda x: session.jacobian_at(x).tocsr(),
        hess=hess,
    )


def _dense_jacobian(session: EvaluatorSession) -> Callable[[np.ndarray], NDArray[np.floating]]:
    """Dense Jacobian, converted once per point."""
    last: dict[str, Any] = {}

    def jacobian(x: np.ndarray) -> NDArray[np.floating]:
        if "x" not in last or not np.array_equal(last["x"], x):
            last["x"] = np.array(x, dtype=np.float64)
            last["J"] = session.jacobian_at(x).toarray()
        return last["J"]

    return jacobian


def _dict_constraints(problem: Problem, session: EvaluatorSession) -> list[dict[str, Any]]:
    """One SciPy dict constraint per finite bound of each row."""
    jac = _dense_jacobian(session)
    scipy_constraints = []

    for k, c in enumerate(problem.constraints):
        if c.is_equality:
            # body(x) == b → SciPy eq: body(x) - b == 0
            scipy_constraints.append({
                "type": "eq",
                "fun": lambda x, k=k, b=c.lower: session.constraints_at(x)[k] - b,
                "jac": lambda x, k=k: jac(x)[k],
            })
            continue
        if np.isfinite(c.lower):
            # body(x) >= lb → SciPy ineq: body(x) - lb >= 0
            scipy_constraints.append({
                "type": "ineq",
                "fun": lambda x, k=k, b=c.lower: session.constraints_at(x)[k] - b,
                "jac": lambda x, k=k: jac(x)[k],
            })
        if np.isfinite(c.upper):
            # body(x) <= ub → SciPy ineq: ub - body(x) >= 0
            scipy_constraints.append({
                "type": "ineq",
                "fun": lambda x, k=k, b=c.upper: b - session.constraints_at(x)[k],
                "jac": lambda x, k=k: -jac(x)[k],
            })

    return scipy_constraints


def _compute_initial_point(variables: list[Variable]) -> np.ndarray:
    """Compute a reasonable initial point from start values and bounds.

    Strategy:
    - If a start value is set: use it
    - If both bounds exist: use midpoint
    - If only lower bound: use lb + 1
    - If only upper bound: use ub - 1
    - If unbounded: use 0
    """
    x0 = np.zeros(len(variables))

    for i, v in enumerate(variables):
        if v.start is not None:
            x0[i] = v.start
            continue

        lb = v.lb if v.lb is not None else -np.inf
        ub = v.ub if v.ub is not None else np.inf

        if np.isfinite(lb) and np.isfinite(ub):
            x0[i] = (lb + ub) / 2
        elif np.isfinite(lb):
            x0[i] = lb + 1.0
        elif np.isfinite(ub):
            x0[i] = ub - 1.0
        else:
            x0[i] = 0.0

    return x0
