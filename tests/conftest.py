"""Shared fixtures."""

from __future__ import annotations

import pytest

from nlpeval import Model


@pytest.fixture
def model():
    return Model()


@pytest.fixture
def hs071():
    """Hock-Schittkowski problem 71.

    min  x1*x4*(x1 + x2 + x3) + x3
    s.t. x1*x2*x3*x4 >= 25
         x1**2 + x2**2 + x3**2 + x4**2 == 40
         1 <= x <= 5
    """
    m = Model(name="hs071")
    starts = [1.0, 5.0, 5.0, 1.0]
    x1, x2, x3, x4 = (
        m.declare_variable(f"x{i + 1}", start=s, lb=1.0, ub=5.0)
        for i, s in enumerate(starts)
    )
    objective = m.build_expression(x1 * x4 * (x1 + x2 + x3) + x3)
    g1 = m.build_expression(x1 * x2 * x3 * x4)
    g2 = m.build_expression(x1**2 + x2**2 + x3**2 + x4**2)
    return m, (x1, x2, x3, x4), objective, g1, g2
