"""
test_activations.py
~~~~~~~~~~~~~~~~~~~

Unit tests for the activation function catalog.
"""

import math
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fenix import activations
from fenix.activations import ACTIVATIONS, get_activation, list_activations
from fenix.exceptions import ValidationError


def numeric_slope(func, x, h=1e-6):
    return (func(x + h) - func(x - h)) / (2 * h)


@pytest.mark.unit
class TestActivationValues:
    """Test the values of the catalog functions."""

    def test_sigmoid(self):
        assert activations.sigmoid.func(0) == pytest.approx(0.5)
        assert 0 < activations.sigmoid.func(-5) < 0.5 < activations.sigmoid.func(5) < 1

    def test_sigmoid_does_not_overflow(self):
        assert activations.sigmoid.func(1e6) == pytest.approx(1.0)
        assert activations.sigmoid.func(-1e6) == pytest.approx(0.0)
        assert activations.sigmoid.func(-1e6) > 0

    def test_relu(self):
        assert activations.relu.func(-3) == 0
        assert activations.relu.func(2.5) == 2.5
        assert activations.relu.derivative(2.5) == 1
        assert activations.relu.derivative(-2.5) == 0

    def test_leaky_relu(self):
        assert activations.leaky_relu.func(-10) == pytest.approx(-0.1)
        assert activations.leaky_relu.func(4) == 4
        assert activations.leaky_relu.derivative(-10) == pytest.approx(0.01)

    def test_elu(self):
        assert activations.elu.func(2) == 2
        assert activations.elu.func(-1) == pytest.approx(math.exp(-1) - 1)
        assert activations.elu.func(0) == 0

    def test_tanh(self):
        assert activations.tanh.func(0) == 0
        assert -1 < activations.tanh.func(-3) < 0 < activations.tanh.func(3) < 1

    def test_swish_and_mish(self):
        assert activations.swish.func(0) == 0
        assert activations.mish.func(0) == 0
        assert activations.swish.func(10) == pytest.approx(10 * activations.sigmoid.func(10))

    def test_swish_and_mish_handle_large_inputs(self):
        assert activations.swish.func(-1000) == pytest.approx(0.0)
        assert activations.mish.func(1000) == pytest.approx(1000.0)
        assert activations.mish.func(-1000) == pytest.approx(0.0)
        assert math.isfinite(activations.mish.derivative(1000))
        assert math.isfinite(activations.swish.derivative(-1000))

    def test_trigonometric(self):
        assert activations.sin.func(math.pi / 2) == pytest.approx(1.0)
        assert activations.cos.func(0) == pytest.approx(1.0)
        assert activations.sin.func(1.0) == pytest.approx(activations.sin.func(1.0 + 2 * math.pi))

    def test_gaussian(self):
        assert activations.gaussian.func(0) == 1
        assert activations.gaussian.func(2) == pytest.approx(math.exp(-4))
        assert activations.gaussian.func(-2) == activations.gaussian.func(2)

    def test_step(self):
        assert activations.step.func(0) == 0
        assert activations.step.func(-1) == 0
        assert activations.step.func(0.1) == 1
        assert activations.step.derivative(0.1) == 0

    def test_linear(self):
        assert activations.linear.func(-7.5) == -7.5
        assert activations.linear.derivative(123) == 1


@pytest.mark.unit
class TestDerivativeConvention:
    """Derivatives agree with the slope of func at the documented argument."""

    @pytest.mark.parametrize('name', ['sigmoid', 'tanh'])
    def test_output_based_derivatives(self, name):
        fn = ACTIVATIONS[name]
        assert fn.takes_output is True
        for x in (-1.3, 0.0, 0.4, 2.0):
            y = fn.func(x)
            assert fn.derivative(y) == pytest.approx(numeric_slope(fn.func, x), abs=1e-6)

    def test_sigmoid_and_tanh_derivative_values(self):
        assert activations.sigmoid.derivative(0.5) == pytest.approx(0.25)
        assert activations.tanh.derivative(0.0) == pytest.approx(1.0)
        assert activations.tanh.derivative(0.5) == pytest.approx(0.75)

    @pytest.mark.parametrize(
        'name', ['leaky_relu', 'elu', 'swish', 'mish', 'sin', 'cos', 'gaussian', 'linear', 'relu']
    )
    def test_input_based_derivatives(self, name):
        fn = ACTIVATIONS[name]
        assert fn.takes_output is False
        for x in (-1.3, -0.4, 0.7, 2.0):
            assert fn.derivative(x) == pytest.approx(numeric_slope(fn.func, x), abs=1e-5)


@pytest.mark.unit
class TestCatalog:
    """Test catalog lookup."""

    def test_all_functions_have_required_interface(self):
        assert len(ACTIVATIONS) == 12
        for name, fn in ACTIVATIONS.items():
            assert fn.name == name
            assert callable(fn.func)
            assert callable(fn.derivative)

    def test_get_activation_returns_shared_entry(self):
        assert get_activation('sigmoid') is activations.sigmoid

    def test_get_activation_accepts_camel_case_alias(self):
        assert get_activation('leakyRelu') is activations.leaky_relu

    def test_get_activation_unknown_name(self):
        with pytest.raises(ValidationError) as exc_info:
            get_activation('softmax')
        assert 'softmax' in str(exc_info.value)
        assert 'sigmoid' in exc_info.value.context['available']

    def test_get_activation_rejects_non_string(self):
        with pytest.raises(ValidationError):
            get_activation(None)

    def test_activations_are_immutable(self):
        with pytest.raises(AttributeError):
            activations.relu.name = 'other'

    def test_list_activations(self):
        names = list_activations()
        assert names[0] == 'sigmoid'
        assert 'gaussian' in names
