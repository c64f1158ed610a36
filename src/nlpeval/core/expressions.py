"""Front-end expression trees.

Expressions are built with ordinary Python operators::

    >>> m = Model()
    >>> x = m.declare_variable("x")
    >>> y = m.declare_variable("y")
    >>> expr = x * y + sin(x) ** 2

The resulting tree is the AST handed to :meth:`Model.build_expression`,
which validates every reference and interns the nodes into the model's
expression graph. The tree itself is never evaluated directly.
"""

from __future__ import annotations

import numbers
from typing import TYPE_CHECKING, Any, Iterator, Sequence

from nlpeval.core.errors import InvalidExpressionError, UnknownOperatorError
from nlpeval.core.operators import (
    BINARY_OPS,
    COMPARISON_OPS,
    UNARY_RULES,
)

if TYPE_CHECKING:
    from nlpeval.model import Model


class Expression:
    """Base class for all expression nodes.

    Comparisons build :class:`Comparison` nodes instead of booleans, so
    expressions hash by identity.
    """

    __slots__ = ()

    # Make numpy scalars defer to our reflected operators.
    __array_ufunc__ = None

    def children(self) -> tuple[Expression, ...]:
        """Return the direct sub-expressions of this node."""
        return ()

    def walk(self) -> Iterator[Expression]:
        """Iterate over this node and all its descendants (pre-order)."""
        stack: list[Expression] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children()))

    def get_variables(self) -> set[Variable]:
        """Return all variables this expression depends on."""
        return {node for node in self.walk() if isinstance(node, Variable)}

    # Arithmetic ----------------------------------------------------------

    def __add__(self, other: Any) -> BinaryOp:
        return BinaryOp(self, _ensure_expr(other), "+")

    def __radd__(self, other: Any) -> BinaryOp:
        return BinaryOp(_ensure_expr(other), self, "+")

    def __sub__(self, other: Any) -> BinaryOp:
        return BinaryOp(self, _ensure_expr(other), "-")

    def __rsub__(self, other: Any) -> BinaryOp:
        return BinaryOp(_ensure_expr(other), self, "-")

    def __mul__(self, other: Any) -> BinaryOp:
        return BinaryOp(self, _ensure_expr(other), "*")

    def __rmul__(self, other: Any) -> BinaryOp:
        return BinaryOp(_ensure_expr(other), self, "*")

    def __truediv__(self, other: Any) -> BinaryOp:
        return BinaryOp(self, _ensure_expr(other), "/")

    def __rtruediv__(self, other: Any) -> BinaryOp:
        return BinaryOp(_ensure_expr(other), self, "/")

    def __pow__(self, other: Any) -> BinaryOp:
        return BinaryOp(self, _ensure_expr(other), "**")

    def __rpow__(self, other: Any) -> BinaryOp:
        return BinaryOp(_ensure_expr(other), self, "**")

    def __neg__(self) -> UnaryOp:
        return UnaryOp(self, "neg")

    def __pos__(self) -> Expression:
        return self

    # Comparisons ---------------------------------------------------------

    def __le__(self, other: Any) -> Comparison:
        return Comparison(self, _ensure_expr(other), "<=")

    def __ge__(self, other: Any) -> Comparison:
        return Comparison(self, _ensure_expr(other), ">=")

    def __lt__(self, other: Any) -> Comparison:
        return Comparison(self, _ensure_expr(other), "<")

    def __gt__(self, other: Any) -> Comparison:
        return Comparison(self, _ensure_expr(other), ">")

    def __eq__(self, other: Any) -> Comparison:  # type: ignore[override]
        return Comparison(self, _ensure_expr(other), "==")

    def __ne__(self, other: Any) -> bool:  # type: ignore[override]
        raise InvalidExpressionError(
            "'!=' is not supported in expressions",
            suggestion="use ifelse(a == b, 0, 1) for a value-level test",
        )

    __hash__ = object.__hash__


class Constant(Expression):
    """A fixed numeric value."""

    __slots__ = ("value",)

    def __init__(self, value: float) -> None:
        self.value = float(value)

    def __repr__(self) -> str:
        return f"Constant({self.value})"


class Variable(Expression):
    """Reference to a position in the solver's point vector.

    Handles are created by :meth:`Model.declare_variable`. The variable
    never owns its value; ``start`` is only the default point used for
    introspection and as a solver starting point.
    """

    __slots__ = ("index", "name", "lb", "ub", "start", "_model")

    def __init__(
        self,
        index: int,
        name: str | None = None,
        lb: float | None = None,
        ub: float | None = None,
        start: float | None = None,
        model: Model | None = None,
    ) -> None:
        self.index = int(index)
        self.name = name if name is not None else f"x[{index}]"
        self.lb = lb
        self.ub = ub
        self.start = start
        self._model = model

    @property
    def model(self) -> Model | None:
        """Model that declared this variable (None for bare references)."""
        return self._model

    def __repr__(self) -> str:
        return f"Variable('{self.name}', index={self.index})"


class UnaryOp(Expression):
    """Elementary function of one argument, e.g. ``sin(x)`` or ``-x``."""

    __slots__ = ("operand", "op")

    def __init__(self, operand: Expression, op: str) -> None:
        if op not in UNARY_RULES:
            raise UnknownOperatorError(op, "unary")
        self.operand = operand
        self.op = op

    def children(self) -> tuple[Expression, ...]:
        return (self.operand,)

    def __repr__(self) -> str:
        return f"UnaryOp({self.op}, {self.operand!r})"


class BinaryOp(Expression):
    """One of ``+ - * / **`` applied to two sub-expressions."""

    __slots__ = ("left", "right", "op")

    def __init__(self, left: Expression, right: Expression, op: str) -> None:
        if op not in BINARY_OPS:
            raise UnknownOperatorError(op, "binary")
        self.left = left
        self.right = right
        self.op = op

    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)

    def __repr__(self) -> str:
        return f"BinaryOp({self.left!r} {self.op} {self.right!r})"


class NarySum(Expression):
    """Sum of an ordered sequence of terms."""

    __slots__ = ("terms",)

    def __init__(self, terms: Sequence[Expression]) -> None:
        self.terms = tuple(_ensure_expr(t) for t in terms)

    def children(self) -> tuple[Expression, ...]:
        return self.terms

    def __repr__(self) -> str:
        return f"NarySum({len(self.terms)} terms)"


class NaryProduct(Expression):
    """Product of an ordered sequence of factors."""

    __slots__ = ("factors",)

    def __init__(self, factors: Sequence[Expression]) -> None:
        self.factors = tuple(_ensure_expr(f) for f in factors)

    def children(self) -> tuple[Expression, ...]:
        return self.factors

    def __repr__(self) -> str:
        return f"NaryProduct({len(self.factors)} factors)"


class Comparison(Expression):
    """Relational expression ``left op right``.

    Evaluates to 1.0 when true and 0.0 otherwise. Used as the predicate of
    :class:`Conditional` and as a constraint declaration.
    """

    __slots__ = ("left", "right", "op")

    def __init__(self, left: Expression, right: Expression, op: str) -> None:
        if op not in COMPARISON_OPS:
            raise UnknownOperatorError(op, "comparison")
        self.left = left
        self.right = right
        self.op = op

    def children(self) -> tuple[Expression, ...]:
        return (self.left, self.right)

    def __bool__(self) -> bool:
        raise InvalidExpressionError(
            "Comparisons between expressions have no truth value",
            suggestion="pass lb/ub to subject_to() for two-sided constraints",
        )

    def __repr__(self) -> str:
        return f"Comparison({self.left!r} {self.op} {self.right!r})"


class Conditional(Expression):
    """Value-level branch: ``then_branch`` if ``predicate`` holds, else
    ``else_branch``.

    No derivative flows through the predicate.
    """

    __slots__ = ("predicate", "then_branch", "else_branch")

    def __init__(
        self,
        predicate: Expression,
        then_branch: Expression,
        else_branch: Expression,
    ) -> None:
        self.predicate = predicate
        self.then_branch = then_branch
        self.else_branch = else_branch

    def children(self) -> tuple[Expression, ...]:
        return (self.predicate, self.then_branch, self.else_branch)

    def __repr__(self) -> str:
        return (
            f"Conditional({self.predicate!r}, {self.then_branch!r}, "
            f"{self.else_branch!r})"
        )


class Call(Expression):
    """Invocation of a registered user function by name."""

    __slots__ = ("name", "args")

    def __init__(self, name: str, args: Sequence[Any]) -> None:
        self.name = name
        self.args = tuple(_ensure_expr(a) for a in args)

    def children(self) -> tuple[Expression, ...]:
        return self.args

    def __repr__(self) -> str:
        args = ", ".join(repr(a) for a in self.args)
        return f"Call({self.name}, [{args}])"


class NamedRef(Expression):
    """Reference to a named expression registered on the model."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"NamedRef('{self.name}')"


def _ensure_expr(value: Any) -> Expression:
    """Convert a numeric value to a Constant, pass expressions through."""
    if isinstance(value, Expression):
        return value
    if isinstance(value, bool):
        return Constant(1.0 if value else 0.0)
    if isinstance(value, numbers.Real):
        return Constant(float(value))
    raise InvalidExpressionError(
        f"Cannot use object of type {type(value).__name__} in an expression",
        suggestion="use numbers, variables, parameters or expressions",
    )
