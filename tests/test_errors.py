"""Tests for the errors module."""

from __future__ import annotations

import pytest

from nlpeval.core.errors import (
    NLPEvalError,
    UnresolvedReferenceError,
    DuplicateRegistrationError,
    RegistrationError,
    ArityMismatchError,
    InvalidExpressionError,
    UnknownOperatorError,
    FeatureNotAvailableError,
    HessianUnavailableError,
    DimensionMismatchError,
    ParameterError,
    SolverError,
    NoObjectiveError,
)


class TestNLPEvalError:
    """Test base exception class."""

    def test_is_exception(self):
        """NLPEvalError is an Exception."""
        assert issubclass(NLPEvalError, Exception)

    def test_message(self):
        """Error message is preserved."""
        err = NLPEvalError("test message")
        assert str(err) == "test message"

    @pytest.mark.parametrize(
        "cls",
        [
            UnresolvedReferenceError,
            DuplicateRegistrationError,
            RegistrationError,
            ArityMismatchError,
            InvalidExpressionError,
            UnknownOperatorError,
            FeatureNotAvailableError,
            HessianUnavailableError,
            DimensionMismatchError,
            ParameterError,
            SolverError,
            NoObjectiveError,
        ],
    )
    def test_all_errors_derive_from_base(self, cls):
        assert issubclass(cls, NLPEvalError)


class TestBuiltinCompatibility:
    """Errors can be caught with the closest builtin exception."""

    def test_unresolved_is_lookup_error(self):
        with pytest.raises(LookupError):
            raise UnresolvedReferenceError("variable", "x")

    def test_duplicate_is_value_error(self):
        with pytest.raises(ValueError):
            raise DuplicateRegistrationError("function", "f")

    def test_arity_is_type_error(self):
        with pytest.raises(TypeError):
            raise ArityMismatchError("f", 2, 1)

    def test_invalid_expression_is_type_error(self):
        assert issubclass(InvalidExpressionError, TypeError)
        assert issubclass(UnknownOperatorError, InvalidExpressionError)

    def test_feature_errors_are_runtime_errors(self):
        assert issubclass(FeatureNotAvailableError, RuntimeError)
        assert issubclass(HessianUnavailableError, FeatureNotAvailableError)

    def test_value_errors(self):
        assert issubclass(DimensionMismatchError, ValueError)
        assert issubclass(ParameterError, ValueError)
        assert issubclass(RegistrationError, ValueError)


class TestMessages:
    """Error messages carry the offending names and values."""

    def test_unresolved_message(self):
        err = UnresolvedReferenceError("function", "f", "no function registered")
        assert str(err) == "Unresolved function reference: 'f' (no function registered)"
        assert err.kind == "function"
        assert err.reference == "f"

    def test_unresolved_without_reason(self):
        err = UnresolvedReferenceError("parameter", 3)
        assert str(err) == "Unresolved parameter reference: 3"

    def test_duplicate_message(self):
        err = DuplicateRegistrationError("function", "f")
        assert str(err) == "Function 'f' is already registered"
        assert err.name == "f"

    def test_registration_message(self):
        err = RegistrationError("f", "evaluate must be callable")
        assert str(err) == "Cannot register function 'f': evaluate must be callable"

    def test_arity_message(self):
        err = ArityMismatchError("f", 2, 3)
        assert str(err) == "Function 'f' takes 2 argument(s), got 3"
        assert (err.expected, err.got) == (2, 3)

    def test_invalid_expression_suggestion(self):
        err = InvalidExpressionError("Bad operand", suggestion="use a number")
        assert str(err) == "Bad operand. Try: use a number"
        assert err.suggestion == "use a number"

    def test_unknown_operator(self):
        err = UnknownOperatorError("foo", "binary")
        assert "Unknown binary operator: 'foo'" in str(err)
        assert err.op == "foo"

    def test_feature_default_message(self):
        err = FeatureNotAvailableError("gradient")
        assert err.feature == "gradient"
        assert "'gradient' was not requested" in str(err)

    def test_hessian_unavailable(self):
        err = HessianUnavailableError("function 'f' lacks a Hessian")
        assert err.feature == "hessian"
        assert err.reason == "function 'f' lacks a Hessian"
        assert "disabled" in str(err)

    def test_dimension_message(self):
        err = DimensionMismatchError("point", 3, 2)
        assert str(err) == "Dimension mismatch for point: expected length 3, got 2"

    def test_parameter_message(self):
        err = ParameterError("price", "parameters must be real scalars", "()", (2,))
        assert "Parameter 'price'" in str(err)
        assert "(expected (), got (2,))" in str(err)

    def test_solver_error(self):
        err = SolverError("failed", solver_name="scipy", original_error=ValueError("boom"))
        assert str(err) == "[scipy] failed\nOriginal error: boom"

    def test_no_objective(self):
        assert "minimize() or maximize()" in str(NoObjectiveError())
