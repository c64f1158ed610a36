"""Finite-difference checks for the differentiation engine.

Central differences are slow and inexact, but independent of the engine,
which makes them a good oracle for tests and for debugging user functions
registered with hand-written gradients.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpeval.core.compiler import CompiledExpression


def numerical_gradient(
    f: Callable[[NDArray[np.floating]], float],
    x: ArrayLike,
    eps: float = 1e-6,
) -> NDArray[np.floating]:
    """Compute gradient using central differences."""
    x = np.asarray(x, dtype=np.float64)
    grad = np.zeros(x.size)
    for i in range(x.size):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[i] += eps
        x_minus[i] -= eps
        grad[i] = (f(x_plus) - f(x_minus)) / (2 * eps)
    return grad


def verify_gradient(
    expr: CompiledExpression,
    x: ArrayLike,
    rtol: float = 1e-6,
    atol: float = 1e-6,
    eps: float = 1e-6,
) -> bool:
    """Check the analytic gradient of ``expr`` at one point."""
    analytic = expr.gradient(x)
    numeric = numerical_gradient(expr.value, x, eps)
    return bool(np.allclose(analytic, numeric, rtol=rtol, atol=atol))


@dataclass
class GradientCheckResult:
    """Outcome of :func:`gradient_check` over random sample points."""

    n_samples: int
    max_error: float
    failures: list[NDArray[np.floating]] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return not self.failures


def gradient_check(
    expr: CompiledExpression,
    n_samples: int = 20,
    seed: int | None = None,
    low: float = -2.0,
    high: float = 2.0,
    rtol: float = 1e-5,
    atol: float = 1e-6,
) -> GradientCheckResult:
    """Compare analytic and numerical gradients at uniformly sampled points.

    Args:
        expr: Expression to check.
        n_samples: Number of random points.
        seed: Seed for the random generator.
        low: Lower end of the sampling box (every coordinate).
        high: Upper end of the sampling box.
        rtol: Relative tolerance per gradient entry.
        atol: Absolute tolerance per gradient entry.
    """
    rng = np.random.default_rng(seed)
    n = expr.n_variables
    max_error = 0.0
    failures = []
    for _ in range(n_samples):
        x = rng.uniform(low, high, size=n)
        analytic = expr.gradient(x)
        numeric = numerical_gradient(expr.value, x)
        error = float(np.max(np.abs(analytic - numeric), initial=0.0))
        max_error = max(max_error, error)
        if not np.allclose(analytic, numeric, rtol=rtol, atol=atol):
            failures.append(x)
    return GradientCheckResult(n_samples, max_error, failures)
