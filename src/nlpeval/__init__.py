"""nlpeval: nonlinear expression evaluation with automatic differentiation."""

from nlpeval.core.expressions import Constant, Expression, NamedRef, Variable
from nlpeval.core.functions import (
    abs_, acos, asin, atan, cos, cosh, exp, ifelse, log, log10, sin, sinh, sqrt, tan, tanh,
)
from nlpeval.core.parameters import Parameter
from nlpeval.core.compiler import CompiledExpression
from nlpeval.core.evaluator import EvaluatorSession, Feature
from nlpeval.core.errors import (
    NLPEvalError,
    UnresolvedReferenceError,
    DuplicateRegistrationError,
    FeatureNotAvailableError,
    HessianUnavailableError,
    NoObjectiveError,
    SolverError,
)
from nlpeval.config import EvaluatorConfig
from nlpeval.model import Model
from nlpeval.constraints import Constraint
from nlpeval.problem import Problem
from nlpeval.solution import Solution, SolverStatus

__version__ = "0.1.0"

__all__ = [
    # Core
    "Expression",
    "Variable",
    "Constant",
    "NamedRef",
    "Parameter",
    "CompiledExpression",
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
    # Model and evaluator
    "Model",
    "EvaluatorConfig",
    "EvaluatorSession",
    "Feature",
    # Errors
    "NLPEvalError",
    "UnresolvedReferenceError",
    "DuplicateRegistrationError",
    "FeatureNotAvailableError",
    "HessianUnavailableError",
    "NoObjectiveError",
    "SolverError",
    # Problem definition
    "Constraint",
    "Problem",
    "Solution",
    "SolverStatus",
]
