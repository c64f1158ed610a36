"""Expression optimization passes.

Both passes are pure rewrites of front-end trees, applied once before the
tree is interned into the graph:

- :func:`flatten_expression` coalesces associative chains into n-ary nodes,
- :func:`simplify_expression` additionally folds constant sub-trees and
  removes neutral elements.

Neither pass changes the value of an expression at any point, including
the points where a conditional switches branches.
"""

from __future__ import annotations

import numpy as np

from nlpeval.core.expressions import (
    BinaryOp,
    Call,
    Comparison,
    Conditional,
    Constant,
    Expression,
    NaryProduct,
    NarySum,
    UnaryOp,
)
from nlpeval.core.operators import (
    UNARY_RULES,
    apply_binary,
    apply_comparison,
    apply_nary,
)


def flatten_expression(expr: Expression) -> Expression:
    """Flatten an expression tree by coalescing associative operations.

    Converts nested addition chains into NarySum nodes and nested multiplication
    chains into NaryProduct nodes. This reduces tree depth from O(N) to O(1)
    for loop-constructed sums/products. Two-term chains stay binary.

    Uses iterative traversal to handle deep trees without RecursionError.

    Args:
        expr: The expression to optimize.

    Returns:
        A new optimized expression (or the original if no changes needed).
    """
    return _rewrite(expr, _rebuild)


def simplify_expression(expr: Expression) -> Expression:
    """Flatten, fold constants and drop neutral elements.

    Constant folding only applies to sub-trees without variables,
    parameters, user function calls or named references, and only when the
    folded value is finite; otherwise the domain error is left to surface
    at evaluation time.

    Example:
        >>> simplify_expression((x + 0) * 1 + 2 * 3)
        BinaryOp(Variable('x', index=0) + Constant(6.0))
    """
    return _rewrite(expr, _simplify_node)


# =============================================================================
# Traversal
# =============================================================================


def _rewrite(expr: Expression, rule) -> Expression:
    """Post-order rewrite with an explicit stack.

    ``rule(node, new_operands)`` builds the replacement for ``node``. For
    associative nodes the operands are the gathered chain terms.
    """
    memo: dict[int, Expression] = {}
    operands: dict[int, list[Expression]] = {}
    stack: list[tuple[Expression, bool]] = [(expr, False)]

    while stack:
        node, ready = stack.pop()
        key = id(node)
        if key in memo:
            continue
        if ready:
            memo[key] = rule(node, [memo[id(c)] for c in operands.pop(key)])
            continue
        children = _operands(node)
        operands[key] = children
        stack.append((node, True))
        for child in reversed(children):
            if id(child) not in memo:
                stack.append((child, False))

    return memo[id(expr)]


def _associative_op(expr: Expression) -> str | None:
    if isinstance(expr, BinaryOp) and expr.op in ("+", "*"):
        return expr.op
    if isinstance(expr, NarySum):
        return "+"
    if isinstance(expr, NaryProduct):
        return "*"
    return None


def _operands(expr: Expression) -> list[Expression]:
    op = _associative_op(expr)
    if op is not None:
        return _gather_associative_terms(expr, op)
    return list(expr.children())


def _gather_associative_terms(expr: Expression, op: str) -> list[Expression]:
    """Iteratively gather inputs for an associative chain.

    Uses an explicit stack to avoid RecursionError on deep trees.
    Preserves Left-to-Right operand order.
    """
    terms: list[Expression] = []

    # Stack stores nodes to visit.
    # To yield L then R, we must push R then L.
    stack = [expr]

    while stack:
        node = stack.pop()

        if isinstance(node, BinaryOp) and node.op == op:
            stack.append(node.right)
            stack.append(node.left)
        elif isinstance(node, NarySum) and op == "+":
            stack.extend(reversed(node.terms))
        elif isinstance(node, NaryProduct) and op == "*":
            stack.extend(reversed(node.factors))
        else:
            terms.append(node)

    return terms


def _splice(terms: list[Expression], op: str) -> list[Expression]:
    """Inline rewritten terms that turned into chains of the same operator."""
    out: list[Expression] = []
    for term in terms:
        if _associative_op(term) == op:
            out.extend(_gather_associative_terms(term, op))
        else:
            out.append(term)
    return out


def _make_chain(terms: list[Expression], op: str) -> Expression:
    if len(terms) == 1:
        return terms[0]
    if len(terms) == 2:
        return BinaryOp(terms[0], terms[1], op)
    return NarySum(terms) if op == "+" else NaryProduct(terms)


def _rebuild(node: Expression, new: list[Expression]) -> Expression:
    """Same node kind over new operands. Unchanged nodes are returned as is."""
    op = _associative_op(node)
    if op is not None:
        terms = _splice(new, op)
        if isinstance(node, BinaryOp) and len(terms) == 2:
            if terms[0] is node.left and terms[1] is node.right:
                return node
        return _make_chain(terms, op)

    if all(a is b for a, b in zip(new, node.children())):
        return node
    if isinstance(node, UnaryOp):
        return UnaryOp(new[0], node.op)
    if isinstance(node, BinaryOp):
        return BinaryOp(new[0], new[1], node.op)
    if isinstance(node, Comparison):
        return Comparison(new[0], new[1], node.op)
    if isinstance(node, Conditional):
        return Conditional(new[0], new[1], new[2])
    if isinstance(node, Call):
        return Call(node.name, new)
    return node


# =============================================================================
# Simplification rules
# =============================================================================


def _is_const(expr: Expression, value: float | None = None) -> bool:
    if not isinstance(expr, Constant):
        return False
    return value is None or expr.value == value


def _fold(node: Expression, new: list[Expression]) -> Constant | None:
    """Evaluate a node whose operands are all constants."""
    if not new or not all(_is_const(c) for c in new):
        return None
    args = [np.float64(c.value) for c in new]  # type: ignore[attr-defined]

    with np.errstate(all="ignore"):
        if isinstance(node, UnaryOp):
            value = UNARY_RULES[node.op].f(args[0])
        elif isinstance(node, Comparison):
            value = apply_comparison(node.op, args[0], args[1])
        elif isinstance(node, Conditional):
            value = args[1] if args[0] else args[2]
        elif isinstance(node, NarySum) or (isinstance(node, BinaryOp) and node.op == "+"):
            value = apply_nary("sum", args)
        elif isinstance(node, NaryProduct) or (isinstance(node, BinaryOp) and node.op == "*"):
            value = apply_nary("prod", args)
        elif isinstance(node, BinaryOp):
            value = apply_binary(node.op, args[0], args[1])
        else:
            return None

    if not np.isfinite(value):
        return None
    return Constant(float(value))


def _merge_constants(terms: list[Expression], op: str) -> list[Expression]:
    """Combine the constant terms of a chain into one, kept at the first one's slot."""
    consts = [t.value for t in terms if isinstance(t, Constant)]
    if len(consts) < 2:
        return terms
    with np.errstate(all="ignore"):
        value = apply_nary("sum" if op == "+" else "prod", [np.float64(c) for c in consts])
    if not np.isfinite(value):
        return terms
    out: list[Expression] = []
    merged = False
    for t in terms:
        if not isinstance(t, Constant):
            out.append(t)
        elif not merged:
            out.append(Constant(float(value)))
            merged = True
    return out


def _simplify_node(node: Expression, new: list[Expression]) -> Expression:
    folded = _fold(node, new)
    if folded is not None:
        return folded

    if isinstance(node, Conditional) and _is_const(new[0]):
        return new[1] if new[0].value else new[2]  # type: ignore[attr-defined]

    op = _associative_op(node)
    if op is not None:
        neutral = 0.0 if op == "+" else 1.0
        terms = _merge_constants(_splice(new, op), op)
        terms = [t for t in terms if not _is_const(t, neutral)]
        if not terms:
            return Constant(neutral)
        return _rebuild(node, terms)

    if isinstance(node, BinaryOp):
        left, right = new
        if node.op == "-" and _is_const(right, 0.0):
            return left
        if node.op in ("/", "**") and _is_const(right, 1.0):
            return left

    return _rebuild(node, new)
