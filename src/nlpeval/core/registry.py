"""Registry of user-supplied functions callable from expressions.

A user function is an ordinary Python callable registered under a name
together with its arity and derivative policy::

    >>> reg = FunctionRegistry()
    >>> reg.register("sq", 1, lambda a: a * a, gradient=lambda a: 2 * a)
    >>> reg.register("hyp", 2, lambda a, b: np.sqrt(a * a + b * b), autodiff=True)

Derivatives come from the hand-written callables when given. Otherwise,
with ``autodiff=True``, the function body is run on
:class:`~nlpeval.core.dual.Dual` numbers: one pass per input for the
gradient and, for univariate functions, one second-order pass for the
Hessian.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Sequence

import numpy as np

from nlpeval.core.dual import Dual, curvature_of, tangent_of, value_of
from nlpeval.core.errors import (
    ArityMismatchError,
    DuplicateRegistrationError,
    HessianUnavailableError,
    RegistrationError,
    UnresolvedReferenceError,
)
from nlpeval.core.expressions import Call

logger = logging.getLogger(__name__)


class UserFunction:
    """One registered function and its derivative policy.

    Args:
        name: Name used by :class:`~nlpeval.core.expressions.Call` nodes.
        arity: Number of scalar arguments.
        evaluate: ``evaluate(*args) -> float``.
        gradient: ``gradient(*args)``, a float for univariate functions and
            a sequence of ``arity`` floats otherwise.
        hessian: ``hessian(*args)``, a float for univariate functions and
            an ``arity x arity`` array-like otherwise.
        autodiff: Derive missing derivatives through ``evaluate``.
    """

    __slots__ = ("name", "arity", "evaluate", "gradient", "hessian", "autodiff")

    def __init__(
        self,
        name: str,
        arity: int,
        evaluate: Callable[..., Any],
        gradient: Callable[..., Any] | None = None,
        hessian: Callable[..., Any] | None = None,
        autodiff: bool = False,
    ) -> None:
        self.name = name
        self.arity = arity
        self.evaluate = evaluate
        self.gradient = gradient
        self.hessian = hessian
        self.autodiff = autodiff

    @property
    def has_hessian(self) -> bool:
        """Whether second derivatives can be computed."""
        return self.hessian is not None or (self.arity == 1 and self.autodiff)

    def __call__(self, *args: Any) -> Call:
        """Build a call node: ``f(x, y)`` inside an expression."""
        if len(args) != self.arity:
            raise ArityMismatchError(self.name, self.arity, len(args))
        return Call(self.name, args)

    def value_at(self, args: Sequence[float]) -> np.float64:
        return np.float64(value_of(self.evaluate(*args)))

    def gradient_at(self, args: Sequence[float]) -> np.ndarray:
        """Gradient with respect to every argument."""
        if self.gradient is not None:
            result = self.gradient(*args)
            if self.arity == 1 and np.ndim(result) == 0:
                return np.array([value_of(result)], dtype=np.float64)
            return np.asarray(result, dtype=np.float64).reshape(self.arity)

        grad = np.empty(self.arity, dtype=np.float64)
        for i in range(self.arity):
            seeded = [
                Dual.variable(a) if j == i else Dual(a) for j, a in enumerate(args)
            ]
            grad[i] = tangent_of(self.evaluate(*seeded))
        return grad

    def hessian_at(self, args: Sequence[float]) -> np.ndarray:
        """Dense ``arity x arity`` Hessian.

        Raises:
            HessianUnavailableError: If the function has no second
                derivatives.
        """
        if self.hessian is not None:
            result = self.hessian(*args)
            if self.arity == 1 and np.ndim(result) == 0:
                return np.array([[value_of(result)]], dtype=np.float64)
            return np.asarray(result, dtype=np.float64).reshape(self.arity, self.arity)

        if self.arity == 1 and self.autodiff:
            seed = Dual.variable(args[0])
            if self.gradient is not None:
                second = tangent_of(self.gradient(seed))
            else:
                second = curvature_of(self.evaluate(seed))
            return np.array([[second]], dtype=np.float64)

        raise HessianUnavailableError(
            f"function '{self.name}' does not provide second derivatives"
        )

    def __repr__(self) -> str:
        return f"UserFunction('{self.name}', arity={self.arity})"


class FunctionRegistry:
    """Catalog of user functions, keyed by name.

    Entries are immutable once registered.
    """

    def __init__(self) -> None:
        self._functions: dict[str, UserFunction] = {}

    def register(
        self,
        name: str,
        arity: int,
        evaluate: Callable[..., Any],
        gradient: Callable[..., Any] | None = None,
        hessian: Callable[..., Any] | None = None,
        autodiff: bool = False,
    ) -> UserFunction:
        """Register a function and return its entry.

        Raises:
            DuplicateRegistrationError: If ``name`` is already registered.
            RegistrationError: If the arity is not a positive integer, a
                callable is missing, or there is no way to differentiate.
        """
        if not isinstance(name, str) or not name:
            raise RegistrationError(str(name), "name must be a non-empty string")
        if name in self._functions:
            raise DuplicateRegistrationError("function", name)
        if isinstance(arity, bool) or not isinstance(arity, int) or arity < 1:
            raise RegistrationError(name, f"arity must be a positive integer, got {arity!r}")
        if not callable(evaluate):
            raise RegistrationError(name, "evaluate must be callable")
        for label, fn in (("gradient", gradient), ("hessian", hessian)):
            if fn is not None and not callable(fn):
                raise RegistrationError(name, f"{label} must be callable")
        if gradient is None and not autodiff:
            raise RegistrationError(
                name, "provide a gradient or register with autodiff=True"
            )

        entry = UserFunction(name, arity, evaluate, gradient, hessian, autodiff)
        self._functions[name] = entry
        logger.debug(
            "Registered function %r (arity=%d, hessian=%s)", name, arity, entry.has_hessian
        )
        return entry

    def get(self, name: str) -> UserFunction:
        """Look up a function by name.

        Raises:
            UnresolvedReferenceError: If no such function is registered.
        """
        try:
            return self._functions[name]
        except KeyError:
            raise UnresolvedReferenceError(
                "function", name, "no function registered under this name"
            ) from None

    def multivariate_without_hessian(self) -> list[str]:
        """Names of registered functions with arity > 1 and no Hessian."""
        return [
            f.name for f in self._functions.values() if f.arity > 1 and not f.has_hessian
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __iter__(self) -> Iterator[UserFunction]:
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)

    def __repr__(self) -> str:
        return f"FunctionRegistry({list(self._functions)})"
