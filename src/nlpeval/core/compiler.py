"""Expression compiler: front-end trees into the model's expression graph.

:class:`GraphBuilder` walks a front-end expression tree, checks every
reference against the owning model and interns the nodes into the model's
:class:`~nlpeval.core.graph.ExpressionGraph`. The result is wrapped in a
:class:`CompiledExpression`, a lightweight handle (model + root id) that can
be evaluated and differentiated directly, reused inside further
expressions, or bound to an evaluator session.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from nlpeval.core.autodiff import compile_tape, forward_pass, local_partials, reverse_sweep
from nlpeval.core.errors import (
    ArityMismatchError,
    DimensionMismatchError,
    InvalidExpressionError,
    UnresolvedReferenceError,
)
from nlpeval.core.expressions import (
    BinaryOp,
    Call,
    Comparison,
    Conditional,
    Constant,
    Expression,
    NamedRef,
    NaryProduct,
    NarySum,
    UnaryOp,
    Variable,
)
from nlpeval.core.graph import NodeKind
from nlpeval.core.parameters import Parameter

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from nlpeval.core.autodiff import Tape
    from nlpeval.model import Model


class GraphBuilder:
    """Interns front-end expression trees into a model's graph.

    The walk uses an explicit stack, so trees built in long Python loops
    (``x0 + x1 + ... + x9999``) do not hit the recursion limit. Python
    objects that appear several times in one tree are visited once.
    """

    def __init__(self, model: Model) -> None:
        self.model = model

    def build(self, ast: Any) -> int:
        """Intern ``ast`` and return its root node id.

        Raises:
            UnresolvedReferenceError: For a foreign or unknown variable,
                parameter, function or named expression.
            ArityMismatchError: For a call with the wrong argument count.
            InvalidExpressionError: For objects that are not expressions.
        """
        if not isinstance(ast, Expression):
            if isinstance(ast, (int, float, np.number)) and not isinstance(ast, bool):
                return self.model.graph.constant(float(ast))
            raise InvalidExpressionError(
                f"Cannot build an expression from {type(ast).__name__}"
            )

        memo: dict[int, int] = {}
        stack: list[tuple[Expression, bool]] = [(ast, False)]
        while stack:
            node, ready = stack.pop()
            key = id(node)
            if key in memo:
                continue
            if ready:
                memo[key] = self._intern(node, [memo[id(c)] for c in node.children()])
                continue
            stack.append((node, True))
            for child in reversed(node.children()):
                if id(child) not in memo:
                    stack.append((child, False))
        return memo[id(ast)]

    def _intern(self, node: Expression, child_ids: list[int]) -> int:
        model = self.model
        graph = model.graph

        if isinstance(node, CompiledExpression):
            if node.model is not model:
                raise UnresolvedReferenceError(
                    "expression", node.name or str(node), "built on a different model"
                )
            return node.root

        if isinstance(node, Constant):
            return graph.constant(node.value)

        if isinstance(node, Variable):
            if node.model is not None and node.model is not model:
                raise UnresolvedReferenceError(
                    "variable", node.name, "declared on a different model"
                )
            if not 0 <= node.index < model.num_variables:
                raise UnresolvedReferenceError(
                    "variable",
                    node.name,
                    f"index {node.index} is not declared "
                    f"(model has {model.num_variables} variables)",
                )
            return graph.variable(node.index)

        if isinstance(node, Parameter):
            if node.store is not model.parameters:
                raise UnresolvedReferenceError(
                    "parameter", node.id, "declared on a different model"
                )
            if node.id not in model.parameters:
                raise UnresolvedReferenceError("parameter", node.id, "unknown id")
            return graph.parameter(node.id)

        if isinstance(node, UnaryOp):
            return graph.unary(node.op, child_ids[0])

        if isinstance(node, BinaryOp):
            return graph.binary(node.op, child_ids[0], child_ids[1])

        if isinstance(node, NarySum):
            if not child_ids:
                return graph.constant(0.0)
            if len(child_ids) == 1:
                return child_ids[0]
            return graph.nary("sum", child_ids)

        if isinstance(node, NaryProduct):
            if not child_ids:
                return graph.constant(1.0)
            if len(child_ids) == 1:
                return child_ids[0]
            return graph.nary("prod", child_ids)

        if isinstance(node, Comparison):
            return graph.compare(node.op, child_ids[0], child_ids[1])

        if isinstance(node, Conditional):
            return graph.conditional(*child_ids)

        if isinstance(node, Call):
            entry = model.functions.get(node.name)
            if len(child_ids) != entry.arity:
                raise ArityMismatchError(node.name, entry.arity, len(child_ids))
            return graph.call(node.name, child_ids)

        if isinstance(node, NamedRef):
            return model.named(node.name).root

        raise InvalidExpressionError(
            f"Unsupported expression node: {type(node).__name__}"
        )


class CompiledExpression(Expression):
    """Handle to one root of a model's expression graph.

    Handles are cheap: they hold no buffers besides a lazily compiled tape
    for direct evaluation. They behave like any other expression, so
    ``model.build_expression(compiled + x)`` reuses the compiled sub-graph.

    Example:
        >>> m = Model()
        >>> x, y = m.declare_variable("x"), m.declare_variable("y")
        >>> f = m.build_expression(x**2 + y**2)
        >>> f.value([3.0, 4.0])
        25.0
        >>> f.gradient([3.0, 4.0])
        array([6., 8.])
    """

    __slots__ = ("model", "root", "name", "_tape")

    def __init__(self, model: Model, root: int, name: str | None = None) -> None:
        self.model = model
        self.root = root
        self.name = name
        self._tape: Tape | None = None

    @property
    def n_variables(self) -> int:
        """Number of decision variables of the owning model."""
        return self.model.num_variables

    @property
    def variables(self) -> list[Variable]:
        """Variables this expression depends on, ordered by index."""
        indices = sorted(self.model.graph.variables_of(self.root))
        return [self.model.variable(i) for i in indices]

    def get_variables(self) -> set[Variable]:
        return set(self.variables)

    @property
    def kind(self) -> NodeKind:
        """Kind of the root node."""
        return self.model.graph[self.root].kind

    def _get_tape(self) -> Tape:
        if self._tape is None:
            self._tape = compile_tape(self.model.graph, [self.root])
        return self._tape

    def _point(self, x: ArrayLike | None) -> NDArray[np.floating]:
        if x is None:
            return self.model.start_point()
        point = np.asarray(x, dtype=np.float64).ravel()
        if point.size != self.model.num_variables:
            raise DimensionMismatchError("point", self.model.num_variables, point.size)
        return point

    def value(self, x: ArrayLike | None = None) -> float:
        """Evaluate at point ``x`` (defaults to the variables' start values)."""
        tape = self._get_tape()
        values = forward_pass(
            tape, self._point(x), self.model.parameters.values(), self.model.functions
        )
        return float(values[tape.roots[0]])

    def gradient(self, x: ArrayLike | None = None) -> NDArray[np.floating]:
        """Gradient with respect to all model variables at point ``x``."""
        return self.value_and_gradient(x)[1]

    def value_and_gradient(
        self, x: ArrayLike | None = None
    ) -> tuple[float, NDArray[np.floating]]:
        """Compute both value and gradient from one forward pass."""
        tape = self._get_tape()
        registry = self.model.functions
        values = forward_pass(
            tape, self._point(x), self.model.parameters.values(), registry
        )
        partials = local_partials(tape, values, registry)
        root = tape.roots[0]
        grad = reverse_sweep(
            tape, partials, {root: 1.0}, self.model.num_variables, tape.subtapes[0]
        )
        return float(values[root]), grad

    def to_ast(self) -> Expression:
        """Rebuild a front-end tree equivalent to this expression."""
        return graph_to_ast(self.model, self.root)

    def __str__(self) -> str:
        model = self.model
        return model.graph.format(
            self.root,
            {v.index: v.name for v in model.variables},
            {pid: model.parameters.name(pid) for pid in range(len(model.parameters))},
        )

    def __repr__(self) -> str:
        label = f"'{self.name}', " if self.name else ""
        return f"CompiledExpression({label}root={self.root})"


def graph_to_ast(model: Model, node_id: int) -> Expression:
    """Reconstruct a front-end tree from a graph node.

    Shared graph nodes map to shared Python objects, and named expressions
    come back as :class:`NamedRef`.
    """
    graph = model.graph
    built: dict[int, Expression] = {}
    for i in graph.reachable([node_id]):
        node = graph[i]
        args = [built[c] for c in node.children]
        kind = node.kind
        if kind is NodeKind.CONSTANT:
            expr: Expression = Constant(node.value)
        elif kind is NodeKind.VARIABLE:
            expr = model.variable(node.index)
        elif kind is NodeKind.PARAMETER:
            expr = Parameter(model.parameters, node.index)
        elif kind is NodeKind.UNARY:
            expr = UnaryOp(args[0], node.op)
        elif kind is NodeKind.BINARY:
            expr = BinaryOp(args[0], args[1], node.op)
        elif kind is NodeKind.NARY:
            expr = NarySum(args) if node.op == "sum" else NaryProduct(args)
        elif kind is NodeKind.COMPARE:
            expr = Comparison(args[0], args[1], node.op)
        elif kind is NodeKind.CONDITIONAL:
            expr = Conditional(*args)
        elif kind is NodeKind.CALL:
            expr = Call(node.op, args)
        elif kind is NodeKind.NAMED:
            expr = NamedRef(node.op)
        else:
            raise ValueError(f"Unknown node kind: {kind}")
        built[i] = expr
    return built[node_id]
