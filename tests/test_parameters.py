"""Tests for the parameter store and parameter handles."""

import numpy as np
import pytest

from nlpeval import Model
from nlpeval.core.errors import ParameterError, UnresolvedReferenceError
from nlpeval.core.expressions import Expression
from nlpeval.core.parameters import Parameter, ParameterStore


# =============================================================================
# Parameter Store Tests
# =============================================================================


class TestParameterStore:
    """Tests for the raw store."""

    def test_add_returns_sequential_ids(self):
        store = ParameterStore()
        assert store.add(1.0) == 0
        assert store.add(2.0) == 1
        assert len(store) == 2

    def test_default_name(self):
        store = ParameterStore()
        pid = store.add(1.0)
        assert store.name(pid) == "p[0]"

    def test_get_set(self):
        store = ParameterStore()
        pid = store.add(100.0, name="price")
        store.set(pid, 120)
        assert store.get(pid) == 120.0
        assert isinstance(store.get(pid), float)

    def test_version_bumps_on_every_set(self):
        store = ParameterStore()
        pid = store.add(1.0)
        assert store.version == 0
        store.set(pid, 1.0)
        store.set(pid, 2.0)
        assert store.version == 2

    def test_add_does_not_bump_version(self):
        store = ParameterStore()
        store.add(1.0)
        assert store.version == 0

    def test_values_snapshot(self):
        store = ParameterStore()
        store.add(1.0)
        store.add(2.0)
        values = store.values()
        np.testing.assert_array_equal(values, [1.0, 2.0])
        values[0] = 99.0
        assert store.get(0) == 1.0

    def test_contains(self):
        store = ParameterStore()
        store.add(1.0)
        assert 0 in store
        assert 1 not in store
        assert "0" not in store

    def test_unknown_id(self):
        store = ParameterStore()
        with pytest.raises(ParameterError):
            store.get(0)
        with pytest.raises(ParameterError):
            store.set(5, 1.0)


class TestScalarValidation:
    """Only real scalars are accepted."""

    @pytest.mark.parametrize("value", [3, 2.5, np.float64(1.5), np.int32(4), np.array(7.0)])
    def test_accepts_scalars(self, value):
        store = ParameterStore()
        pid = store.add(value)
        assert store.get(pid) == float(value)

    @pytest.mark.parametrize("value", [[1, 2], np.zeros(3), "abc", True])
    def test_rejects_non_scalars(self, value):
        store = ParameterStore()
        with pytest.raises(ParameterError):
            store.add(value)

    def test_rejected_set_keeps_old_value(self):
        store = ParameterStore()
        pid = store.add(1.0)
        with pytest.raises(ParameterError):
            store.set(pid, [1.0, 2.0])
        assert store.get(pid) == 1.0
        assert store.version == 0


# =============================================================================
# Parameter Handle Tests
# =============================================================================


class TestParameterHandle:
    """Tests for handles returned by Model.declare_parameter."""

    def test_declare(self, model):
        p = model.declare_parameter(100, name="price")
        assert isinstance(p, Parameter)
        assert isinstance(p, Expression)
        assert p.id == 0
        assert p.name == "price"
        assert p.value == 100.0

    def test_default_value(self, model):
        p = model.declare_parameter()
        assert p.value == 0.0

    def test_set_through_handle(self, model):
        p = model.declare_parameter(1.0)
        p.set(5.0)
        assert model.get_parameter(p) == 5.0

    def test_set_through_model_by_handle_and_id(self, model):
        p = model.declare_parameter(1.0)
        model.set_parameter(p, 2.0)
        assert p.value == 2.0
        model.set_parameter(p.id, 3.0)
        assert model.get_parameter(p.id) == 3.0

    def test_foreign_parameter_rejected(self, model):
        other = Model()
        p = other.declare_parameter(1.0)
        with pytest.raises(UnresolvedReferenceError):
            model.set_parameter(p, 2.0)

    def test_parameter_in_expression(self, model):
        x = model.declare_variable("x")
        p = model.declare_parameter(3.0, name="p")
        f = model.build_expression(p * x)
        assert f.value([2.0]) == pytest.approx(6.0)
        p.set(4.0)
        assert f.value([2.0]) == pytest.approx(8.0)

    def test_gradient_never_includes_parameters(self, model):
        x = model.declare_variable("x")
        p = model.declare_parameter(3.0)
        f = model.build_expression(p * x**2 + p)
        grad = f.gradient([2.0])
        assert grad.shape == (1,)
        assert grad[0] == pytest.approx(12.0)

    def test_mutation_does_not_touch_graph(self, model):
        x = model.declare_variable("x")
        p = model.declare_parameter(3.0)
        model.build_expression(p + x)
        n_nodes = len(model.graph)
        p.set(10.0)
        assert len(model.graph) == n_nodes

    def test_repr(self, model):
        p = model.declare_parameter(2.0, name="rate")
        assert repr(p) == "Parameter('rate', value=2.0)"
