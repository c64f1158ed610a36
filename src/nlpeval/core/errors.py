"""Exception hierarchy for nlpeval.

Every error raised by the package derives from :class:`NLPEvalError`. Most
errors also inherit from the closest builtin exception so that callers can
catch them with ordinary ``except ValueError`` style handlers.

Numeric failures (``log`` of a negative number, division by zero during a
trial step) are deliberately absent from this module: they surface as
NaN/inf values and are left to the calling solver.
"""

from __future__ import annotations

from typing import Any


class NLPEvalError(Exception):
    """Base class for all nlpeval errors."""


# =============================================================================
# Graph construction
# =============================================================================


class UnresolvedReferenceError(NLPEvalError, LookupError):
    """An expression references a variable, parameter, function or named
    expression that the model does not know about.

    Raised at build time and never retried.
    """

    def __init__(self, kind: str, reference: Any, reason: str | None = None) -> None:
        self.kind = kind
        self.reference = reference
        self.reason = reason

        message = f"Unresolved {kind} reference: {reference!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)

    def __str__(self) -> str:
        return str(self.args[0])


class DuplicateRegistrationError(NLPEvalError, ValueError):
    """A function or named expression was registered twice under one name."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind.capitalize()} '{name}' is already registered")


class RegistrationError(NLPEvalError, ValueError):
    """A user function registration is malformed."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Cannot register function '{name}': {reason}")


class ArityMismatchError(NLPEvalError, TypeError):
    """A user function was called with the wrong number of arguments."""

    def __init__(self, name: str, expected: int, got: int) -> None:
        self.name = name
        self.expected = expected
        self.got = got
        super().__init__(
            f"Function '{name}' takes {expected} argument(s), got {got}"
        )


class InvalidExpressionError(NLPEvalError, TypeError):
    """An object that cannot be part of an expression was used as one."""

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
    ) -> None:
        self.suggestion = suggestion
        if suggestion:
            message = f"{message}. Try: {suggestion}"
        super().__init__(message)


class UnknownOperatorError(InvalidExpressionError):
    """An operator name is not part of the elementary operator tables."""

    def __init__(self, op: str, kind: str = "unary") -> None:
        self.op = op
        self.kind = kind
        super().__init__(f"Unknown {kind} operator: '{op}'")


# =============================================================================
# Evaluator session
# =============================================================================


class FeatureNotAvailableError(NLPEvalError, RuntimeError):
    """A query needs a feature the session was not initialized with.

    This is a caller contract violation: request every feature you intend
    to query in :meth:`EvaluatorSession.initialize`.
    """

    def __init__(self, feature: str, message: str | None = None) -> None:
        self.feature = feature
        if message is None:
            message = (
                f"Feature '{feature}' was not requested when the session was "
                f"initialized"
            )
        super().__init__(message)


class HessianUnavailableError(FeatureNotAvailableError):
    """Second derivatives are disabled for the session.

    Raised lazily on the first Hessian query when a registered function
    cannot supply second derivatives. The session keeps serving values and
    first derivatives.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("hessian", f"Hessian computation is disabled: {reason}")


class DimensionMismatchError(NLPEvalError, ValueError):
    """A point or multiplier vector has the wrong length."""

    def __init__(self, what: str, expected: int, got: int) -> None:
        self.what = what
        self.expected = expected
        self.got = got
        super().__init__(
            f"Dimension mismatch for {what}: expected length {expected}, got {got}"
        )


class ParameterError(NLPEvalError, ValueError):
    """Invalid parameter value or parameter id."""

    def __init__(
        self,
        param_name: str,
        reason: str,
        expected: Any = None,
        got: Any = None,
    ) -> None:
        self.param_name = param_name
        self.reason = reason
        self.expected = expected
        self.got = got

        message = f"Parameter '{param_name}': {reason}"
        if expected is not None or got is not None:
            message += f" (expected {expected}, got {got})"
        super().__init__(message)


# =============================================================================
# Solver adapter
# =============================================================================


class SolverError(NLPEvalError):
    """The external solver failed."""

    def __init__(
        self,
        message: str,
        solver_name: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.solver_name = solver_name
        self.original_error = original_error

        if solver_name:
            message = f"[{solver_name}] {message}"
        if original_error is not None:
            message += f"\nOriginal error: {original_error}"
        super().__init__(message)


class NoObjectiveError(NLPEvalError, ValueError):
    """A problem was solved without an objective."""

    def __init__(self) -> None:
        super().__init__(
            "Problem has no objective. Call minimize() or maximize() first."
        )
