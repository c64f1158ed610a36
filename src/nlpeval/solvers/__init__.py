"""Solver adapters that drive external optimizers through an evaluator session."""

from nlpeval.solvers.scipy_solver import solve_scipy

__all__ = ["solve_scipy"]
