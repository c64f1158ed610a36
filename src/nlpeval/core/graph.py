"""Expression graph: an arena of interned nodes addressed by integer ids.

Every expression built on a model lives in one shared arena. A node only
refers to its children by id, and a child is always added before its
parent, so ids are a topological order and the graph is acyclic by
construction. Structurally identical sub-trees are interned to a single id,
which is how common sub-expressions end up evaluated once per point no
matter how many objectives or constraints reference them.

Nodes are immutable. Parameters are referenced by id only; their values
live in the :class:`~nlpeval.core.parameters.ParameterStore`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

import numpy as np


class NodeKind(Enum):
    """Closed set of node kinds."""

    CONSTANT = "constant"
    VARIABLE = "variable"
    PARAMETER = "parameter"
    UNARY = "unary"
    BINARY = "binary"
    NARY = "nary"
    COMPARE = "compare"
    CONDITIONAL = "conditional"
    CALL = "call"
    NAMED = "named"


LEAF_KINDS = frozenset({NodeKind.CONSTANT, NodeKind.VARIABLE, NodeKind.PARAMETER})


@dataclass(frozen=True)
class Node:
    """One vertex of the expression graph.

    Attributes:
        kind: Node kind.
        op: Operator name (unary/binary/nary/compare), function name (call)
            or expression name (named).
        children: Child node ids, in operand order.
        value: Constant value.
        index: Variable index or parameter id.
    """

    kind: NodeKind
    op: str | None = None
    children: tuple[int, ...] = ()
    value: float | None = None
    index: int | None = None

    def key(self) -> tuple:
        """Interning key. Constants are keyed on their exact bit pattern."""
        value = None if self.value is None else float(self.value).hex()
        return (self.kind, self.op, self.children, value, self.index)


_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, "**": 4}


class ExpressionGraph:
    """Arena holding every node of a model's expressions.

    Args:
        share_subexpressions: Intern interior nodes so identical sub-trees
            share one id. Leaves are always interned.
    """

    def __init__(self, share_subexpressions: bool = True) -> None:
        self.share_subexpressions = share_subexpressions
        self._nodes: list[Node] = []
        self._interned: dict[tuple, int] = {}
        self._variables: list[frozenset[int]] = []
        self._has_parameters: list[bool] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __getitem__(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def add(self, node: Node) -> int:
        """Insert a node (or find its interned twin) and return its id."""
        for child in node.children:
            if not 0 <= child < len(self._nodes):
                raise ValueError(f"Child id {child} does not exist in the graph")

        intern = self.share_subexpressions or node.kind in LEAF_KINDS
        if intern:
            key = node.key()
            existing = self._interned.get(key)
            if existing is not None:
                return existing

        node_id = len(self._nodes)
        self._nodes.append(node)

        if node.kind is NodeKind.VARIABLE:
            variables = frozenset((node.index,))
        else:
            variables = frozenset().union(*(self._variables[c] for c in node.children))
        self._variables.append(variables)
        self._has_parameters.append(
            node.kind is NodeKind.PARAMETER
            or any(self._has_parameters[c] for c in node.children)
        )

        if intern:
            self._interned[key] = node_id
        return node_id

    # Node constructors ---------------------------------------------------

    def constant(self, value: float) -> int:
        return self.add(Node(NodeKind.CONSTANT, value=np.float64(value)))

    def variable(self, index: int) -> int:
        return self.add(Node(NodeKind.VARIABLE, index=index))

    def parameter(self, pid: int) -> int:
        return self.add(Node(NodeKind.PARAMETER, index=pid))

    def unary(self, op: str, child: int) -> int:
        return self.add(Node(NodeKind.UNARY, op=op, children=(child,)))

    def binary(self, op: str, left: int, right: int) -> int:
        return self.add(Node(NodeKind.BINARY, op=op, children=(left, right)))

    def nary(self, op: str, children: Iterable[int]) -> int:
        return self.add(Node(NodeKind.NARY, op=op, children=tuple(children)))

    def compare(self, op: str, left: int, right: int) -> int:
        return self.add(Node(NodeKind.COMPARE, op=op, children=(left, right)))

    def conditional(self, predicate: int, then_branch: int, else_branch: int) -> int:
        return self.add(
            Node(NodeKind.CONDITIONAL, children=(predicate, then_branch, else_branch))
        )

    def call(self, name: str, args: Iterable[int]) -> int:
        return self.add(Node(NodeKind.CALL, op=name, children=tuple(args)))

    def named(self, name: str, target: int) -> int:
        return self.add(Node(NodeKind.NAMED, op=name, children=(target,)))

    # Structural queries --------------------------------------------------

    def variables_of(self, node_id: int) -> frozenset[int]:
        """Indices of all variables reachable from a node."""
        return self._variables[node_id]

    def depends_on_parameters(self, node_id: int) -> bool:
        """True if a parameter is reachable from a node."""
        return self._has_parameters[node_id]

    def reachable(self, roots: Iterable[int]) -> list[int]:
        """Ids reachable from the roots, in topological (ascending) order."""
        seen: set[int] = set()
        stack = list(roots)
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                continue
            seen.add(node_id)
            stack.extend(self._nodes[node_id].children)
        return sorted(seen)

    def calls_in(self, roots: Iterable[int]) -> set[str]:
        """Names of user functions called beneath the roots."""
        return {
            self._nodes[i].op
            for i in self.reachable(roots)
            if self._nodes[i].kind is NodeKind.CALL
        }

    # Printing ------------------------------------------------------------

    def format(
        self,
        node_id: int,
        variable_names: Mapping[int, str] | None = None,
        parameter_names: Mapping[int, str] | None = None,
    ) -> str:
        """Render a node as infix text.

        Named sub-expressions print as their name.
        """
        variable_names = variable_names or {}
        parameter_names = parameter_names or {}
        text: dict[int, tuple[str, int]] = {}

        # Children before parents, so one ascending pass renders everything.
        for i in self.reachable([node_id]):
            text[i] = self._format_node(i, text, variable_names, parameter_names)
        return text[node_id][0]

    def _format_node(
        self,
        i: int,
        text: dict[int, tuple[str, int]],
        variable_names: Mapping[int, str],
        parameter_names: Mapping[int, str],
    ) -> tuple[str, int]:
        """Return ``(text, precedence)`` for one node."""
        node = self._nodes[i]
        kind = node.kind

        def wrap(child: int, minimum: int) -> str:
            s, prec = text[child]
            return f"({s})" if prec < minimum else s

        if kind is NodeKind.CONSTANT:
            value = float(node.value)
            s = str(int(value)) if value.is_integer() and abs(value) < 1e16 else repr(value)
            return (s, 5) if value >= 0 else (f"({s})", 5)
        if kind is NodeKind.VARIABLE:
            return variable_names.get(node.index, f"x[{node.index}]"), 5
        if kind is NodeKind.PARAMETER:
            return parameter_names.get(node.index, f"p[{node.index}]"), 5
        if kind is NodeKind.UNARY:
            if node.op == "neg":
                return f"-{wrap(node.children[0], 3)}", 3
            return f"{node.op}({text[node.children[0]][0]})", 5
        if kind is NodeKind.BINARY:
            prec = _PRECEDENCE[node.op]
            left, right = node.children
            if node.op == "**":
                return f"{wrap(left, prec + 1)} ** {wrap(right, prec)}", prec
            right_min = prec + 1 if node.op in ("-", "/") else prec
            return f"{wrap(left, prec)} {node.op} {wrap(right, right_min)}", prec
        if kind is NodeKind.NARY:
            op, prec = ("+", 1) if node.op == "sum" else ("*", 2)
            return f" {op} ".join(wrap(c, prec) for c in node.children), prec
        if kind is NodeKind.COMPARE:
            left, right = node.children
            return f"{wrap(left, 1)} {node.op} {wrap(right, 1)}", 0
        if kind is NodeKind.CONDITIONAL:
            p, t, e = (text[c][0] for c in node.children)
            return f"ifelse({p}, {t}, {e})", 5
        if kind is NodeKind.CALL:
            args = ", ".join(text[c][0] for c in node.children)
            return f"{node.op}({args})", 5
        if kind is NodeKind.NAMED:
            return node.op, 5
        raise ValueError(f"Unknown node kind: {kind}")

    def __repr__(self) -> str:
        return f"ExpressionGraph({len(self)} nodes)"
