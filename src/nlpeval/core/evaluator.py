"""Evaluator session: the object an external solver queries.

A session binds one (optional) objective and an ordered list of constraint
roots of a model. :meth:`EvaluatorSession.initialize` compiles a tape over
those roots and exactly the sparsity structures the requested features
need; the solver then queries values and derivatives at points of its
choosing::

    >>> session = model.create_session(objective, [g1, g2])
    >>> session.initialize(["gradient", "jacobian", "hessian"])
    >>> f = session.value_at(x)
    >>> g = session.gradient_at(x)      # reuses the forward pass above
    >>> J = session.jacobian_at(x)      # scipy.sparse.coo_matrix, m x n
    >>> H = session.lagrangian_hessian_at(x, 1.0, lam)  # lower triangle

The session remembers the last point it evaluated together with the
parameter store version at that time. Consecutive queries at the identical
point reuse the forward pass and every derivative already computed there;
any parameter write bumps the store version and forces a fresh pass.
Sparsity structures never change for the lifetime of a session.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Sequence

import numpy as np
from scipy import sparse

from nlpeval.config import EvaluatorConfig
from nlpeval.core.autodiff import (
    compile_tape,
    edge_pushing_hessian,
    forward_pass,
    hessian_pattern,
    jacobian_pattern,
    local_partials,
    reverse_sweep,
)
from nlpeval.core.errors import (
    DimensionMismatchError,
    FeatureNotAvailableError,
    HessianUnavailableError,
    UnresolvedReferenceError,
)

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpeval.core.autodiff import LocalPartials, Tape
    from nlpeval.core.compiler import CompiledExpression
    from nlpeval.model import Model

logger = logging.getLogger(__name__)


class Feature(str, Enum):
    """Capabilities a session can be initialized with."""

    VALUE = "value"
    GRADIENT = "gradient"
    JACOBIAN = "jacobian"
    HESSIAN = "hessian"
    EXPRESSION_TREE = "expression_tree"


_DERIVATIVE_FEATURES = frozenset({Feature.GRADIENT, Feature.JACOBIAN, Feature.HESSIAN})


class SessionState(Enum):
    """Lifecycle of a session."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    READY = "ready"  # a point is cached


@dataclass
class EvaluationStats:
    """Work counters, useful to check that caching and sharing kick in."""

    forward_passes: int = 0
    node_evaluations: int = 0
    gradient_passes: int = 0
    jacobian_passes: int = 0
    hessian_passes: int = 0
    cache_hits: int = 0

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, 0)


@dataclass
class _PointCache:
    point: NDArray[np.floating]
    parameter_version: int
    values: list[np.float64]
    partials: list[LocalPartials] | None = None
    objective: float | None = None
    gradient: NDArray[np.floating] | None = None
    constraints: NDArray[np.floating] | None = None
    jacobian: NDArray[np.floating] | None = None
    hessian: dict[tuple, NDArray[np.floating]] = field(default_factory=dict)


class EvaluatorSession:
    """Compiled, query-able view of an objective and its constraints.

    Args:
        model: Owning model.
        objective: Objective root, or None (the objective is then 0).
        constraints: Constraint roots; row ``k`` of the Jacobian belongs to
            ``constraints[k]``.
        config: Evaluator configuration. Defaults to the model's.
    """

    def __init__(
        self,
        model: Model,
        objective: CompiledExpression | None = None,
        constraints: Sequence[CompiledExpression] = (),
        config: EvaluatorConfig | None = None,
    ) -> None:
        self.model = model
        self.objective = objective
        self.constraints = list(constraints)
        self.config = config if config is not None else model.config
        self.stats = EvaluationStats()

        self._state = SessionState.UNINITIALIZED
        self._features: frozenset[Feature] = frozenset()
        self._n = model.num_variables
        self._tape: Tape | None = None
        self._objective_pos: int | None = None
        self._constraint_pos: list[int] = []
        self._jacobian_rows: list[list[int]] = []
        self._jacobian_structure: list[tuple[int, int]] = []
        self._hessian_structure: list[tuple[int, int]] = []
        self._hessian_disabled: str | None = None
        self._cache: _PointCache | None = None

    # Lifecycle -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def features(self) -> frozenset[Feature]:
        """Features the session was initialized with."""
        return self._features

    @property
    def num_variables(self) -> int:
        return self._n

    @property
    def num_constraints(self) -> int:
        return len(self.constraints)

    @property
    def hessian_available(self) -> bool:
        """Whether Hessian queries will succeed."""
        return Feature.HESSIAN in self._features and self._hessian_disabled is None

    def initialize(self, features: Iterable[Feature | str] = (Feature.VALUE,)) -> None:
        """Compile the tape and the structures the requested features need.

        May be called again to change the feature set. Derivative features
        imply ``value``.

        Raises:
            ValueError: For an unknown feature name.
        """
        requested = {Feature(f) for f in features}
        if requested & _DERIVATIVE_FEATURES:
            requested.add(Feature.VALUE)

        graph = self.model.graph
        self._n = self.model.num_variables
        roots = [c.root for c in self.constraints]
        if self.objective is not None:
            roots.insert(0, self.objective.root)
        tape = compile_tape(graph, roots)
        offset = 1 if self.objective is not None else 0
        self._tape = tape
        self._objective_pos = tape.roots[0] if self.objective is not None else None
        self._constraint_pos = tape.roots[offset:]

        self._jacobian_rows = []
        self._jacobian_structure = []
        if Feature.JACOBIAN in requested:
            pattern = jacobian_pattern(tape, self._constraint_pos)
            self._jacobian_rows = [[] for _ in self.constraints]
            for row, col in sorted(pattern):
                self._jacobian_rows[row].append(col)
            self._jacobian_structure = sorted(pattern)

        self._hessian_disabled = None
        self._hessian_structure = []
        if Feature.HESSIAN in requested:
            self._hessian_disabled = self._hessian_gate(roots)
            if self._hessian_disabled is not None:
                warnings.warn(
                    f"Hessian computation disabled for this session: "
                    f"{self._hessian_disabled}. Values and first derivatives "
                    f"remain available.",
                    UserWarning,
                    stacklevel=2,
                )
            else:
                pattern = hessian_pattern(tape, range(len(roots)))
                self._hessian_structure = sorted(pattern)

        self._features = frozenset(requested)
        self._cache = None
        self._state = SessionState.INITIALIZED
        logger.debug(
            "Initialized session: features=%s, %d tape nodes, %d Jacobian and "
            "%d Hessian nonzeros",
            sorted(f.value for f in requested),
            len(tape),
            len(self._jacobian_structure),
            len(self._hessian_structure),
        )

    def _hessian_gate(self, roots: Sequence[int]) -> str | None:
        """Why second derivatives are unavailable, or None if they are."""
        registry = self.model.functions
        missing = registry.multivariate_without_hessian()
        if missing:
            names = ", ".join(f"'{n}'" for n in missing)
            return f"multivariate function(s) {names} lack a Hessian"
        for name in sorted(self.model.graph.calls_in(roots)):
            if not registry.get(name).has_hessian:
                return f"function '{name}' does not provide second derivatives"
        return None

    def _require(self, feature: Feature) -> None:
        if self._state is SessionState.UNINITIALIZED:
            raise FeatureNotAvailableError(
                feature.value, "Session is not initialized. Call initialize() first."
            )
        if feature not in self._features:
            raise FeatureNotAvailableError(feature.value)

    def _require_hessian(self) -> None:
        self._require(Feature.HESSIAN)
        if self._hessian_disabled is not None:
            raise HessianUnavailableError(self._hessian_disabled)

    def invalidate_cache(self) -> None:
        """Drop the cached point; the next query recomputes everything."""
        self._cache = None
        if self._state is SessionState.READY:
            self._state = SessionState.INITIALIZED

    # Point evaluation ----------------------------------------------------

    def _as_point(self, x: ArrayLike) -> NDArray[np.floating]:
        point = np.asarray(x, dtype=np.float64).ravel()
        if point.size != self._n:
            raise DimensionMismatchError("point", self._n, point.size)
        return point

    def _evaluate(self, x: ArrayLike) -> _PointCache:
        """Forward pass at ``x``, or the cached one if nothing changed."""
        point = self._as_point(x)
        version = self.model.parameters.version
        cache = self._cache
        if (
            self.config.cache_last_point
            and cache is not None
            and cache.parameter_version == version
            and cache.point.tobytes() == point.tobytes()
        ):
            self.stats.cache_hits += 1
            return cache

        tape = self._tape
        values = forward_pass(
            tape, point, self.model.parameters.values(), self.model.functions
        )
        self.stats.forward_passes += 1
        self.stats.node_evaluations += len(tape)
        cache = _PointCache(point.copy(), version, values)
        self._cache = cache
        self._state = SessionState.READY
        return cache

    def _partials(self, cache: _PointCache) -> list[LocalPartials]:
        if cache.partials is None:
            cache.partials = local_partials(self._tape, cache.values, self.model.functions)
        return cache.partials

    def value_at(self, x: ArrayLike) -> float:
        """Objective value at ``x`` (0.0 without an objective)."""
        self._require(Feature.VALUE)
        cache = self._evaluate(x)
        if cache.objective is None:
            if self._objective_pos is None:
                cache.objective = 0.0
            else:
                cache.objective = float(cache.values[self._objective_pos])
        return cache.objective

    def constraints_at(self, x: ArrayLike) -> NDArray[np.floating]:
        """Constraint body values at ``x``, in constraint order."""
        self._require(Feature.VALUE)
        cache = self._evaluate(x)
        if cache.constraints is None:
            cache.constraints = np.array(
                [cache.values[p] for p in self._constraint_pos], dtype=np.float64
            )
        return cache.constraints.copy()

    def gradient_at(self, x: ArrayLike) -> NDArray[np.floating]:
        """Dense objective gradient at ``x``."""
        self._require(Feature.GRADIENT)
        cache = self._evaluate(x)
        if cache.gradient is None:
            if self._objective_pos is None:
                cache.gradient = np.zeros(self._n)
            else:
                cache.gradient = reverse_sweep(
                    self._tape,
                    self._partials(cache),
                    {self._objective_pos: 1.0},
                    self._n,
                    self._tape.subtapes[0],
                )
                self.stats.gradient_passes += 1
        return cache.gradient.copy()

    def jacobian_values(self, x: ArrayLike) -> NDArray[np.floating]:
        """Constraint Jacobian nonzeros, ordered like :meth:`jacobian_structure`."""
        self._require(Feature.JACOBIAN)
        cache = self._evaluate(x)
        if cache.jacobian is None:
            partials = self._partials(cache)
            offset = 1 if self._objective_pos is not None else 0
            out = np.empty(len(self._jacobian_structure))
            i = 0
            for row, (pos, cols) in enumerate(zip(self._constraint_pos, self._jacobian_rows)):
                if not cols:
                    continue
                grad = reverse_sweep(
                    self._tape, partials, {pos: 1.0}, self._n, self._tape.subtapes[row + offset]
                )
                out[i : i + len(cols)] = grad[cols]
                i += len(cols)
            cache.jacobian = out
            self.stats.jacobian_passes += 1
        return cache.jacobian.copy()

    def jacobian_at(self, x: ArrayLike) -> sparse.coo_matrix:
        """Constraint Jacobian as an ``m x n`` sparse matrix."""
        data = self.jacobian_values(x)
        rows = [r for r, _ in self._jacobian_structure]
        cols = [c for _, c in self._jacobian_structure]
        return sparse.coo_matrix(
            (data, (rows, cols)), shape=(self.num_constraints, self._n)
        )

    def hessian_values(
        self,
        x: ArrayLike,
        objective_weight: float = 1.0,
        constraint_multipliers: ArrayLike | None = None,
    ) -> NDArray[np.floating]:
        """Lagrangian Hessian nonzeros, ordered like :meth:`hessian_structure`.

        The Lagrangian is ``objective_weight * f(x) + sum(lam_k * g_k(x))``.

        Raises:
            HessianUnavailableError: If a registered function lacks second
                derivatives.
        """
        self._require_hessian()
        m = self.num_constraints
        if constraint_multipliers is None:
            lam = np.zeros(m)
        else:
            lam = np.asarray(constraint_multipliers, dtype=np.float64).ravel()
            if lam.size != m:
                raise DimensionMismatchError("constraint multipliers", m, lam.size)

        cache = self._evaluate(x)
        key = (float(objective_weight), tuple(lam.tolist()))
        result = cache.hessian.get(key)
        if result is None:
            seeds: dict[int, float] = {}
            if self._objective_pos is not None and objective_weight:
                seeds[self._objective_pos] = float(objective_weight)
            for pos, weight in zip(self._constraint_pos, lam):
                if weight:
                    seeds[pos] = seeds.get(pos, 0.0) + float(weight)
            entries = edge_pushing_hessian(
                self._tape,
                cache.values,
                self._partials(cache),
                seeds,
                self.model.functions,
            )
            result = np.array(
                [entries.get(e, 0.0) for e in self._hessian_structure], dtype=np.float64
            )
            cache.hessian[key] = result
            self.stats.hessian_passes += 1
        return result.copy()

    def lagrangian_hessian_at(
        self,
        x: ArrayLike,
        objective_weight: float = 1.0,
        constraint_multipliers: ArrayLike | None = None,
    ) -> sparse.coo_matrix:
        """Lower triangle of the Lagrangian Hessian as an ``n x n`` sparse matrix."""
        data = self.hessian_values(x, objective_weight, constraint_multipliers)
        rows = [r for r, _ in self._hessian_structure]
        cols = [c for _, c in self._hessian_structure]
        return sparse.coo_matrix((data, (rows, cols)), shape=(self._n, self._n))

    # Structure and introspection ----------------------------------------

    def jacobian_sparsity(self) -> set[tuple[int, int]]:
        """Structural ``(constraint, variable)`` nonzeros."""
        self._require(Feature.JACOBIAN)
        return set(self._jacobian_structure)

    def hessian_sparsity(self) -> set[tuple[int, int]]:
        """Structural lower-triangular ``(row, col)`` nonzeros, ``row >= col``."""
        self._require_hessian()
        return set(self._hessian_structure)

    def jacobian_structure(self) -> list[tuple[int, int]]:
        """Jacobian nonzeros in the order used by :meth:`jacobian_values`."""
        self._require(Feature.JACOBIAN)
        return list(self._jacobian_structure)

    def hessian_structure(self) -> list[tuple[int, int]]:
        """Hessian nonzeros in the order used by :meth:`hessian_values`."""
        self._require_hessian()
        return list(self._hessian_structure)

    def expression_tree_of(self, root: str | int) -> CompiledExpression:
        """Expression bound to ``"objective"`` or to a constraint index.

        No numeric work is done.
        """
        self._require(Feature.EXPRESSION_TREE)
        if root == "objective":
            if self.objective is None:
                raise UnresolvedReferenceError("root", root, "session has no objective")
            return self.objective
        if isinstance(root, int) and not isinstance(root, bool):
            if 0 <= root < len(self.constraints):
                return self.constraints[root]
            raise UnresolvedReferenceError(
                "root", root, f"session has {len(self.constraints)} constraints"
            )
        raise UnresolvedReferenceError("root", root, "use 'objective' or a constraint index")

    def __repr__(self) -> str:
        return (
            f"EvaluatorSession(state={self._state.value}, "
            f"objective={'yes' if self.objective is not None else 'no'}, "
            f"constraints={len(self.constraints)})"
        )
