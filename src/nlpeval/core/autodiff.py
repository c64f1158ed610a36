"""Differentiation engine: forward values, reverse gradients, edge-pushing Hessians.

The engine works on a :class:`Tape`, a flattened view of the part of the
expression graph reachable from a set of roots. Positions on the tape are
in topological order (children before parents), so

- the forward pass is a single ascending loop,
- the reverse sweep is a single descending loop that pushes adjoints from
  each node to its children using the node's local partial derivatives,
- the Hessian is accumulated by the edge-pushing algorithm, a second
  descending sweep that combines first-order adjoints with each node's
  local second partials.

All arithmetic uses numpy float64, so domain errors (``log(-1)``, ``1/0``)
turn into NaN/inf and propagate to the caller rather than raising.

Sparsity patterns are computed structurally, once per tape, from the set of
variables each node can be differentiated with respect to.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

import numpy as np

from nlpeval.core.graph import NodeKind
from nlpeval.core.operators import (
    LINEAR_UNARY,
    UNARY_RULES,
    apply_binary,
    apply_comparison,
    apply_nary,
    binary_partials,
    binary_second_partials,
    pow_base_partials,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from nlpeval.core.graph import ExpressionGraph, Node
    from nlpeval.core.registry import FunctionRegistry

logger = logging.getLogger(__name__)

# Partials of one node: ((child_position, d_node/d_child), ...), one entry per
# distinct active child.
LocalPartials = tuple[tuple[int, float], ...]


@dataclass
class Tape:
    """Topologically ordered slice of an expression graph.

    Attributes:
        node_ids: Graph node id at each tape position.
        nodes: Node at each tape position.
        children: Child positions of each node.
        active: Per child, whether a derivative flows through it.
        dvars: Variables each position can be differentiated with respect to.
        roots: Tape position of each root, in the order given.
        subtapes: Per root, positions reachable through active edges
            (ascending).
    """

    node_ids: list[int] = field(default_factory=list)
    nodes: list[Node] = field(default_factory=list)
    children: list[tuple[int, ...]] = field(default_factory=list)
    active: list[tuple[bool, ...]] = field(default_factory=list)
    dvars: list[frozenset[int]] = field(default_factory=list)
    roots: list[int] = field(default_factory=list)
    subtapes: list[list[int]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)


def compile_tape(graph: ExpressionGraph, roots: Sequence[int]) -> Tape:
    """Build the tape for a set of graph roots."""
    tape = Tape()
    ids = graph.reachable(roots)
    position = {node_id: pos for pos, node_id in enumerate(ids)}

    for node_id in ids:
        node = graph[node_id]
        children = tuple(position[c] for c in node.children)

        if node.kind is NodeKind.VARIABLE:
            dvars = frozenset((node.index,))
        elif node.kind is NodeKind.COMPARE:
            dvars = frozenset()
        elif node.kind is NodeKind.CONDITIONAL:
            dvars = tape.dvars[children[1]] | tape.dvars[children[2]]
        else:
            dvars = frozenset().union(*(tape.dvars[c] for c in children))

        if node.kind is NodeKind.COMPARE:
            active = (False,) * len(children)
        elif node.kind is NodeKind.CONDITIONAL:
            active = (False,) + tuple(bool(tape.dvars[c]) for c in children[1:])
        else:
            active = tuple(bool(tape.dvars[c]) for c in children)

        tape.node_ids.append(node_id)
        tape.nodes.append(node)
        tape.children.append(children)
        tape.active.append(active)
        tape.dvars.append(dvars)

    tape.roots = [position[r] for r in roots]
    for root in tape.roots:
        seen = {root}
        stack = [root]
        while stack:
            pos = stack.pop()
            for child, is_active in zip(tape.children[pos], tape.active[pos]):
                if is_active and child not in seen:
                    seen.add(child)
                    stack.append(child)
        tape.subtapes.append(sorted(seen))

    logger.debug("Compiled tape: %d nodes, %d roots", len(tape), len(tape.roots))
    return tape


# =============================================================================
# Forward pass
# =============================================================================


def forward_pass(
    tape: Tape,
    x: NDArray[np.floating],
    parameters: NDArray[np.floating],
    registry: FunctionRegistry,
) -> list[np.float64]:
    """Value of every tape position at point ``x``."""
    values: list[np.float64] = []
    for node, children in zip(tape.nodes, tape.children):
        kind = node.kind
        if kind is NodeKind.CONSTANT:
            v = node.value
        elif kind is NodeKind.VARIABLE:
            v = x[node.index]
        elif kind is NodeKind.PARAMETER:
            v = parameters[node.index]
        elif kind is NodeKind.UNARY:
            v = UNARY_RULES[node.op].f(values[children[0]])
        elif kind is NodeKind.BINARY:
            v = apply_binary(node.op, values[children[0]], values[children[1]])
        elif kind is NodeKind.NARY:
            v = apply_nary(node.op, [values[c] for c in children])
        elif kind is NodeKind.COMPARE:
            v = apply_comparison(node.op, values[children[0]], values[children[1]])
        elif kind is NodeKind.CONDITIONAL:
            predicate, then_branch, else_branch = children
            v = values[then_branch] if values[predicate] else values[else_branch]
        elif kind is NodeKind.CALL:
            v = registry.get(node.op).value_at([values[c] for c in children])
        elif kind is NodeKind.NAMED:
            v = values[children[0]]
        else:
            raise ValueError(f"Unknown node kind: {kind}")
        values.append(v)
    return values


# =============================================================================
# First derivatives
# =============================================================================


def local_partials(
    tape: Tape,
    values: Sequence[float],
    registry: FunctionRegistry,
) -> list[LocalPartials]:
    """First partials of every node with respect to its active children."""
    result: list[LocalPartials] = []
    for pos, node in enumerate(tape.nodes):
        children = tape.children[pos]
        active = tape.active[pos]
        if not any(active):
            result.append(())
            continue

        per_operand = _operand_partials(node, children, active, values, pos, registry)
        acc: dict[int, float] = {}
        for operand, d in per_operand:
            if active[operand]:
                child = children[operand]
                acc[child] = acc.get(child, 0.0) + d
        result.append(tuple(acc.items()))
    return result


def _operand_partials(
    node: Node,
    children: tuple[int, ...],
    active: tuple[bool, ...],
    values: Sequence[float],
    pos: int,
    registry: FunctionRegistry,
) -> list[tuple[int, float]]:
    """``(operand_index, partial)`` pairs for one node."""
    kind = node.kind
    y = values[pos]

    if kind is NodeKind.UNARY:
        x = values[children[0]]
        return [(0, UNARY_RULES[node.op].df(x, y))]

    if kind is NodeKind.BINARY:
        a, b = values[children[0]], values[children[1]]
        if node.op == "**" and not active[1]:
            return [(0, pow_base_partials(a, b)[0])]
        if node.op == "**" and not active[0]:
            return [(1, y * np.log(a))]
        da, db = binary_partials(node.op, a, b, y)
        return [(0, da), (1, db)]

    if kind is NodeKind.NARY:
        if node.op == "sum":
            return [(k, 1.0) for k in range(len(children))]
        args = [values[c] for c in children]
        return list(enumerate(_products_of_others(args)))

    if kind is NodeKind.CONDITIONAL:
        predicate, _, _ = children
        return [(1, 1.0)] if values[predicate] else [(2, 1.0)]

    if kind is NodeKind.CALL:
        grad = registry.get(node.op).gradient_at([values[c] for c in children])
        return list(enumerate(grad))

    if kind is NodeKind.NAMED:
        return [(0, 1.0)]

    return []


def _products_of_others(args: Sequence[float]) -> list[float]:
    """For each k, the product of all args except ``args[k]``."""
    n = len(args)
    prefix = [np.float64(1.0)] * (n + 1)
    for k in range(n):
        prefix[k + 1] = prefix[k] * args[k]
    suffix = np.float64(1.0)
    out = [np.float64(0.0)] * n
    for k in range(n - 1, -1, -1):
        out[k] = prefix[k] * suffix
        suffix = suffix * args[k]
    return out


def reverse_sweep(
    tape: Tape,
    partials: Sequence[LocalPartials],
    seeds: Mapping[int, float],
    n: int,
    positions: Iterable[int] | None = None,
) -> NDArray[np.floating]:
    """Reverse-mode accumulation of ``sum(seed * d root / d x)``.

    Args:
        tape: Compiled tape.
        partials: Output of :func:`local_partials`.
        seeds: Adjoint seed per root position.
        n: Number of variables (length of the result).
        positions: Ascending positions to sweep. Defaults to the whole tape.

    Returns:
        Dense gradient of length ``n``.
    """
    if positions is None:
        positions = range(len(tape))
    adjoint: dict[int, float] = {}
    for pos, weight in seeds.items():
        adjoint[pos] = adjoint.get(pos, 0.0) + weight

    grad = np.zeros(n)
    for pos in reversed(list(positions)):
        a = adjoint.get(pos, 0.0)
        if not a:
            continue
        node = tape.nodes[pos]
        if node.kind is NodeKind.VARIABLE:
            grad[node.index] += a
            continue
        for child, d in partials[pos]:
            adjoint[child] = adjoint.get(child, 0.0) + a * d
    return grad


# =============================================================================
# Second derivatives
# =============================================================================


def _second_partials(
    tape: Tape,
    pos: int,
    values: Sequence[float],
    registry: FunctionRegistry,
) -> list[tuple[int, int, float]]:
    """Local second partials of one node as ``(child_pos, child_pos, value)``.

    Each unordered pair of distinct positions appears once. Two operands
    that are the same graph node fold into a diagonal entry counted twice.
    """
    node = tape.nodes[pos]
    children = tape.children[pos]
    active = tape.active[pos]
    kind = node.kind
    y = values[pos]
    operand: list[tuple[int, int, float]] = []

    if kind is NodeKind.UNARY:
        if active[0] and node.op not in LINEAR_UNARY:
            x = values[children[0]]
            operand.append((0, 0, UNARY_RULES[node.op].d2f(x, y)))

    elif kind is NodeKind.BINARY and node.op in ("*", "/", "**"):
        a, b = values[children[0]], values[children[1]]
        if node.op == "**" and not active[1]:
            operand.append((0, 0, pow_base_partials(a, b)[1]))
        elif node.op == "**" and not active[0]:
            log_a = np.log(a)
            operand.append((1, 1, y * log_a * log_a))
        else:
            d2a, dadb, d2b = binary_second_partials(node.op, a, b, y)
            operand.extend([(0, 0, d2a), (0, 1, dadb), (1, 1, d2b)])

    elif kind is NodeKind.NARY and node.op == "prod":
        args = [values[c] for c in children]
        for j in range(len(args)):
            for k in range(j + 1, len(args)):
                if active[j] and active[k]:
                    rest = np.float64(1.0)
                    for m, v in enumerate(args):
                        if m != j and m != k:
                            rest = rest * v
                    operand.append((j, k, rest))

    elif kind is NodeKind.CALL:
        hess = registry.get(node.op).hessian_at([values[c] for c in children])
        for j in range(len(children)):
            for k in range(j, len(children)):
                operand.append((j, k, hess[j, k]))

    result = []
    for j, k, s in operand:
        if not (active[j] and active[k]) or s == 0.0:
            continue
        pj, pk = children[j], children[k]
        if j != k and pj == pk:
            s = 2.0 * s
        result.append((pj, pk, s))
    return result


def _add_symmetric(w: dict[int, dict[int, float]], j: int, k: int, value: float) -> None:
    row = w.setdefault(j, {})
    row[k] = row.get(k, 0.0) + value
    if j != k:
        row = w.setdefault(k, {})
        row[j] = row.get(j, 0.0) + value


def edge_pushing_hessian(
    tape: Tape,
    values: Sequence[float],
    partials: Sequence[LocalPartials],
    seeds: Mapping[int, float],
    registry: FunctionRegistry,
) -> dict[tuple[int, int], float]:
    """Hessian of ``sum(seed * root)`` by edge pushing.

    ``w`` holds the symmetric second-order adjoints between live tape
    positions. Nodes are processed in descending order; each node pushes
    its edges down to its children, creates edges from its own second
    partials, then passes its first-order adjoint on.

    Returns:
        Lower-triangular entries ``(row, col) -> value`` over variable
        indices (``row >= col``).
    """
    adjoint: dict[int, float] = {}
    for pos, weight in seeds.items():
        adjoint[pos] = adjoint.get(pos, 0.0) + weight
    w: dict[int, dict[int, float]] = {}

    for pos in range(len(tape) - 1, -1, -1):
        if tape.nodes[pos].kind is NodeKind.VARIABLE:
            continue
        row = w.pop(pos, {})
        w_ii = row.pop(pos, 0.0)
        for p in row:
            del w[p][pos]
        node_partials = partials[pos]
        a = adjoint.get(pos, 0.0)
        if not node_partials or (not a and not row and not w_ii):
            continue

        # Pushing
        for p, w_ip in row.items():
            for child, d in node_partials:
                if child == p:
                    _add_symmetric(w, p, p, 2.0 * d * w_ip)
                else:
                    _add_symmetric(w, child, p, d * w_ip)
        if w_ii:
            for m, (cj, dj) in enumerate(node_partials):
                for ck, dk in node_partials[m:]:
                    _add_symmetric(w, cj, ck, dj * dk * w_ii)

        if a:
            # Creating
            for pj, pk, s in _second_partials(tape, pos, values, registry):
                _add_symmetric(w, pj, pk, a * s)
            # Adjoint
            for child, d in node_partials:
                adjoint[child] = adjoint.get(child, 0.0) + a * d

    hessian: dict[tuple[int, int], float] = {}
    for pos, row in w.items():
        if tape.nodes[pos].kind is not NodeKind.VARIABLE:
            continue
        i = tape.nodes[pos].index
        for other, value in row.items():
            j = tape.nodes[other].index
            if i >= j:
                hessian[(i, j)] = value
    return hessian


# =============================================================================
# Sparsity
# =============================================================================


def jacobian_pattern(tape: Tape, root_positions: Sequence[int]) -> set[tuple[int, int]]:
    """Structural ``(row, variable)`` entries, one row per root."""
    return {
        (row, var)
        for row, pos in enumerate(root_positions)
        for var in tape.dvars[pos]
    }


def _nonlinear_operand_pairs(node: Node, arity: int) -> list[tuple[int, int]]:
    kind = node.kind
    if kind is NodeKind.UNARY:
        return [] if node.op in LINEAR_UNARY else [(0, 0)]
    if kind is NodeKind.BINARY:
        if node.op == "*":
            return [(0, 1)]
        if node.op == "/":
            return [(0, 1), (1, 1)]
        if node.op == "**":
            return [(0, 0), (0, 1), (1, 1)]
        return []
    if kind is NodeKind.NARY and node.op == "prod":
        return [(j, k) for j in range(arity) for k in range(j + 1, arity)]
    if kind is NodeKind.CALL:
        return [(j, k) for j in range(arity) for k in range(j, arity)]
    return []


def hessian_pattern(tape: Tape, root_indices: Iterable[int]) -> set[tuple[int, int]]:
    """Structural lower-triangular entries of the Hessian of any weighted sum
    of the given roots.

    Both branches of a conditional are included, so the pattern holds at
    every point.
    """
    positions: set[int] = set()
    for k in root_indices:
        positions.update(tape.subtapes[k])

    pattern: set[tuple[int, int]] = set()
    for pos in positions:
        node = tape.nodes[pos]
        children = tape.children[pos]
        active = tape.active[pos]
        for j, k in _nonlinear_operand_pairs(node, len(children)):
            if not (active[j] and active[k]):
                continue
            for u in tape.dvars[children[j]]:
                for v in tape.dvars[children[k]]:
                    pattern.add((u, v) if u >= v else (v, u))
    return pattern
