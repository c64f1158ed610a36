"""Core expression system and differentiation engine for nlpeval."""

from nlpeval.core.expressions import (
    Expression,
    Variable,
    Constant,
    UnaryOp,
    BinaryOp,
    NarySum,
    NaryProduct,
    Comparison,
    Conditional,
    Call,
    NamedRef,
)
from nlpeval.core.functions import (
    sin,
    cos,
    tan,
    asin,
    acos,
    atan,
    exp,
    log,
    log10,
    sqrt,
    abs_,
    tanh,
    sinh,
    cosh,
    ifelse,
)
from nlpeval.core.dual import Dual
from nlpeval.core.parameters import Parameter, ParameterStore
from nlpeval.core.graph import ExpressionGraph, Node, NodeKind
from nlpeval.core.registry import FunctionRegistry, UserFunction
from nlpeval.core.compiler import CompiledExpression, GraphBuilder, graph_to_ast
from nlpeval.core.optimizer import flatten_expression, simplify_expression
from nlpeval.core.evaluator import (
    EvaluationStats,
    EvaluatorSession,
    Feature,
    SessionState,
)
from nlpeval.core.verification import (
    numerical_gradient,
    verify_gradient,
    gradient_check,
    GradientCheckResult,
)

__all__ = [
    # Expressions
    "Expression",
    "Variable",
    "Constant",
    "UnaryOp",
    "BinaryOp",
    "NarySum",
    "NaryProduct",
    "Comparison",
    "Conditional",
    "Call",
    "NamedRef",
    # Functions
    "sin",
    "cos",
    "tan",
    "asin",
    "acos",
    "atan",
    "exp",
    "log",
    "log10",
    "sqrt",
    "abs_",
    "tanh",
    "sinh",
    "cosh",
    "ifelse",
    "Dual",
    # Parameters
    "Parameter",
    "ParameterStore",
    # Graph
    "ExpressionGraph",
    "Node",
    "NodeKind",
    "GraphBuilder",
    "CompiledExpression",
    "graph_to_ast",
    # User functions
    "FunctionRegistry",
    "UserFunction",
    # Simplifier
    "flatten_expression",
    "simplify_expression",
    # Evaluator
    "EvaluatorSession",
    "EvaluationStats",
    "Feature",
    "SessionState",
    # Verification
    "numerical_gradient",
    "verify_gradient",
    "gradient_check",
    "GradientCheckResult",
]
