"""Model: variables, parameters, user functions and the shared expression graph.

The model is the modeling layer's side of the evaluator contract. It hands
out variable and parameter handles, registers user functions and named
sub-expressions, builds front-end trees into its graph and creates
evaluator sessions over a chosen objective and constraint set.

Example:
    >>> m = Model()
    >>> x = m.declare_variable("x", start=1.0)
    >>> y = m.declare_variable("y", start=2.0)
    >>> p = m.declare_parameter(3.0, name="p")
    >>> f = m.build_expression(p * x + y**2)
    >>> session = m.create_session(f)
    >>> session.initialize(["gradient"])
    >>> session.gradient_at([1.0, 2.0])
    array([3., 4.])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

import numpy as np

from nlpeval.config import EvaluatorConfig
from nlpeval.core.compiler import CompiledExpression, GraphBuilder
from nlpeval.core.errors import DuplicateRegistrationError, UnresolvedReferenceError
from nlpeval.core.expressions import Expression, Variable
from nlpeval.core.graph import ExpressionGraph
from nlpeval.core.optimizer import simplify_expression
from nlpeval.core.parameters import Parameter, ParameterStore
from nlpeval.core.registry import FunctionRegistry, UserFunction

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpeval.core.evaluator import EvaluatorSession

logger = logging.getLogger(__name__)


class Model:
    """Container for everything an evaluator session needs.

    Args:
        config: Evaluator configuration. Defaults to
            :meth:`EvaluatorConfig.default`.
        name: Optional model name.
    """

    def __init__(self, config: EvaluatorConfig | None = None, name: str | None = None) -> None:
        self.config = config if config is not None else EvaluatorConfig.default()
        self.name = name
        self.graph = ExpressionGraph(self.config.share_subexpressions)
        self.parameters = ParameterStore()
        self.functions = FunctionRegistry()
        self._variables: list[Variable] = []
        self._named: dict[str, CompiledExpression] = {}
        self._builder = GraphBuilder(self)

    # Variables -----------------------------------------------------------

    def declare_variable(
        self,
        name: str | None = None,
        start: float | None = None,
        lb: float | None = None,
        ub: float | None = None,
    ) -> Variable:
        """Add a decision variable; its ``index`` is its position in the point."""
        var = Variable(len(self._variables), name=name, lb=lb, ub=ub, start=start, model=self)
        self._variables.append(var)
        return var

    @property
    def variables(self) -> list[Variable]:
        return list(self._variables)

    @property
    def num_variables(self) -> int:
        return len(self._variables)

    def variable(self, index: int) -> Variable:
        """Variable handle for a point index."""
        if not 0 <= index < len(self._variables):
            raise UnresolvedReferenceError("variable", index, "index is not declared")
        return self._variables[index]

    def start_point(self) -> NDArray[np.floating]:
        """Start values of all variables (0.0 where unset)."""
        return np.array(
            [0.0 if v.start is None else v.start for v in self._variables],
            dtype=np.float64,
        )

    # Parameters ----------------------------------------------------------

    def declare_parameter(self, initial_value: Any = 0.0, name: str | None = None) -> Parameter:
        """Add a parameter; its ``id`` is its cell in the parameter store."""
        pid = self.parameters.add(initial_value, name)
        return Parameter(self.parameters, pid)

    def _parameter_id(self, param: Parameter | int) -> int:
        if isinstance(param, Parameter):
            if param.store is not self.parameters:
                raise UnresolvedReferenceError(
                    "parameter", param.id, "declared on a different model"
                )
            return param.id
        return param

    def set_parameter(self, param: Parameter | int, value: Any) -> None:
        """Update a parameter. Cached session results become stale."""
        self.parameters.set(self._parameter_id(param), value)

    def get_parameter(self, param: Parameter | int) -> float:
        return self.parameters.get(self._parameter_id(param))

    # User functions ------------------------------------------------------

    def register_function(
        self,
        name: str,
        arity: int,
        evaluate: Callable[..., Any],
        gradient: Callable[..., Any] | None = None,
        hessian: Callable[..., Any] | None = None,
        autodiff: bool = False,
    ) -> UserFunction:
        """Register a user function. See :meth:`FunctionRegistry.register`.

        The returned entry is callable and builds call nodes::

            >>> f = m.register_function("f", 2, evaluate, autodiff=True)
            >>> expr = f(x, y) + 1
        """
        return self.functions.register(name, arity, evaluate, gradient, hessian, autodiff)

    # Expressions ---------------------------------------------------------

    def build_expression(self, ast: Any, name: str | None = None) -> CompiledExpression:
        """Intern a front-end tree into the graph.

        Raises:
            UnresolvedReferenceError: If the tree references something the
                model does not know about.
            ArityMismatchError: If a user function gets the wrong number of
                arguments.
        """
        if isinstance(ast, CompiledExpression) and ast.model is self and name is None:
            return ast
        if self.config.simplify and isinstance(ast, Expression):
            ast = simplify_expression(ast)
        root = self._builder.build(ast)
        return CompiledExpression(self, root, name)

    def register_named(self, name: str, ast: Any) -> CompiledExpression:
        """Build a shared sub-expression that other trees can reference by name.

        Raises:
            DuplicateRegistrationError: If ``name`` is already taken.
        """
        if name in self._named:
            raise DuplicateRegistrationError("named expression", name)
        body = self.build_expression(ast)
        handle = CompiledExpression(self, self.graph.named(name, body.root), name)
        self._named[name] = handle
        logger.debug("Registered named expression %r (node %d)", name, handle.root)
        return handle

    def named(self, name: str) -> CompiledExpression:
        """Look up a named expression."""
        try:
            return self._named[name]
        except KeyError:
            raise UnresolvedReferenceError(
                "named expression", name, "register it before referencing it"
            ) from None

    def value(self, expr: Any, point: ArrayLike | None = None) -> float:
        """Evaluate an expression at ``point`` (defaults to start values)."""
        return self.build_expression(expr).value(point)

    # Sessions ------------------------------------------------------------

    def create_session(
        self,
        objective_root: Any = None,
        constraint_roots: Iterable[Any] = (),
    ) -> EvaluatorSession:
        """Create an evaluator session over an objective and constraints.

        Roots may be compiled expressions or front-end trees.
        """
        from nlpeval.core.evaluator import EvaluatorSession

        objective = None if objective_root is None else self.build_expression(objective_root)
        constraints = [self.build_expression(c) for c in constraint_roots]
        return EvaluatorSession(self, objective, constraints, self.config)

    def __repr__(self) -> str:
        label = f"'{self.name}', " if self.name else ""
        return (
            f"Model({label}{self.num_variables} variables, "
            f"{len(self.parameters)} parameters, {len(self.graph)} nodes)"
        )
