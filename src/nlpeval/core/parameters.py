"""Parameters: mutable scalar cells referenced by expressions.

Parameters are constants that can change between evaluations without
rebuilding the expression graph. This enables fast re-solves for:
- Sensitivity analysis
- Rolling horizon optimization
- What-if scenarios

The graph only stores the parameter id; the value lives in the
:class:`ParameterStore`, whose ``version`` counter is bumped on every write
so evaluator sessions can tell that their cached results are stale.
"""

from __future__ import annotations

import numbers
from typing import Any

import numpy as np

from nlpeval.core.errors import ParameterError
from nlpeval.core.expressions import Expression


class ParameterStore:
    """Named scalar cells addressed by integer id.

    Example:
        >>> store = ParameterStore()
        >>> pid = store.add(100.0, name="price")
        >>> store.set(pid, 120.0)
        >>> store.get(pid)
        120.0
    """

    __slots__ = ("_values", "_names", "_version")

    def __init__(self) -> None:
        self._values: list[float] = []
        self._names: list[str] = []
        self._version = 0

    @property
    def version(self) -> int:
        """Counter incremented on every mutation."""
        return self._version

    def add(self, initial_value: Any = 0.0, name: str | None = None) -> int:
        """Create a new cell and return its id."""
        pid = len(self._values)
        if name is None:
            name = f"p[{pid}]"
        self._values.append(_as_scalar(name, initial_value))
        self._names.append(name)
        return pid

    def get(self, pid: int) -> float:
        """Current value of a cell."""
        self._check_id(pid)
        return self._values[pid]

    def set(self, pid: int, value: Any) -> None:
        """Update a cell. Invalidates cached evaluation results."""
        self._check_id(pid)
        self._values[pid] = _as_scalar(self._names[pid], value)
        self._version += 1

    def name(self, pid: int) -> str:
        """Name of a cell."""
        self._check_id(pid)
        return self._names[pid]

    def values(self) -> np.ndarray:
        """Snapshot of all values as an array."""
        return np.array(self._values, dtype=np.float64)

    def __contains__(self, pid: object) -> bool:
        return isinstance(pid, int) and 0 <= pid < len(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def _check_id(self, pid: int) -> None:
        if pid not in self:
            raise ParameterError(
                str(pid), "unknown parameter id", expected=f"0..{len(self) - 1}", got=pid
            )

    def __repr__(self) -> str:
        return f"ParameterStore({len(self)} parameters, version={self._version})"


class Parameter(Expression):
    """An updatable constant inside expressions.

    Unlike Constant, a Parameter's value can be changed between evaluations
    without rebuilding the graph. Handles are created by
    :meth:`Model.declare_parameter`.

    Example:
        >>> m = Model()
        >>> x = m.declare_variable("x")
        >>> price = m.declare_parameter(100.0, name="price")
        >>> revenue = m.build_expression(price * x - x**2)
        >>> price.set(120)  # next evaluation sees the new price
    """

    __slots__ = ("store", "id")

    def __init__(self, store: ParameterStore, pid: int) -> None:
        self.store = store
        self.id = pid

    @property
    def name(self) -> str:
        return self.store.name(self.id)

    @property
    def value(self) -> float:
        """Get the current parameter value."""
        return self.store.get(self.id)

    def set(self, value: Any) -> None:
        """Update the parameter value.

        Raises:
            ParameterError: If the value is not a real scalar.
        """
        self.store.set(self.id, value)

    def __repr__(self) -> str:
        return f"Parameter('{self.name}', value={self.value})"


def _as_scalar(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ParameterError(name, "boolean values are not allowed", got=value)
    if isinstance(value, numbers.Real):
        return float(value)
    arr = np.asarray(value)
    if arr.ndim == 0 and np.issubdtype(arr.dtype, np.number):
        return float(arr)
    raise ParameterError(
        name, "parameters must be real scalars", expected="()", got=arr.shape
    )
