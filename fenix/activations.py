"""
activations.py
~~~~~~~~~~~~~~

Catalog of scalar activation functions and their derivatives.

Each entry pairs ``func`` with ``derivative``. For ``sigmoid`` and ``tanh``
the derivative is expressed in terms of the activation output ``y``; every
other derivative takes the pre-activation value ``x``. The ``takes_output``
flag records which of the two a derivative expects, so a layer can always
hand it the right argument.
"""

import math
from dataclasses import dataclass
from typing import Callable, Dict, List

from fenix.exceptions import ValidationError

# Beyond this range exp() overflows a double
SIGMOID_CLAMP = 500.0
LEAKY_SLOPE = 0.01


@dataclass(frozen=True)
class ActivationFunction:
    """
    An activation function and its derivative.

    Attributes:
        func: Maps the weighted sum to the neuron output
        derivative: Slope of ``func``; see ``takes_output``
        name: Catalog name, written to exported models
        takes_output: True if ``derivative`` expects the output ``y``
            rather than the weighted sum ``x``
    """

    func: Callable[[float], float]
    derivative: Callable[[float], float]
    name: str
    takes_output: bool = False


def _sigmoid(x: float) -> float:
    x = max(-SIGMOID_CLAMP, min(SIGMOID_CLAMP, x))
    return 1.0 / (1.0 + math.exp(-x))


def _softplus(x: float) -> float:
    # log(1 + e^x) without overflow for large x
    return math.log1p(math.exp(-abs(x))) + max(x, 0.0)


def _swish_derivative(x: float) -> float:
    sig = _sigmoid(x)
    return sig + x * sig * (1.0 - sig)


def _mish_derivative(x: float) -> float:
    tsp = math.tanh(_softplus(x))
    sig = _sigmoid(x)
    return tsp + x * sig * (1.0 - tsp * tsp)


sigmoid = ActivationFunction(
    func=_sigmoid,
    derivative=lambda y: y * (1.0 - y),
    name='sigmoid',
    takes_output=True
)

relu = ActivationFunction(
    func=lambda x: max(0.0, x),
    derivative=lambda x: 1.0 if x > 0 else 0.0,
    name='relu'
)

leaky_relu = ActivationFunction(
    func=lambda x: x if x > 0 else LEAKY_SLOPE * x,
    derivative=lambda x: 1.0 if x > 0 else LEAKY_SLOPE,
    name='leaky_relu'
)

elu = ActivationFunction(
    func=lambda x: x if x >= 0 else math.exp(x) - 1.0,
    derivative=lambda x: 1.0 if x >= 0 else math.exp(x),
    name='elu'
)

tanh = ActivationFunction(
    func=math.tanh,
    derivative=lambda y: 1.0 - y * y,
    name='tanh',
    takes_output=True
)

swish = ActivationFunction(
    func=lambda x: x * _sigmoid(x),
    derivative=_swish_derivative,
    name='swish'
)

mish = ActivationFunction(
    func=lambda x: x * math.tanh(_softplus(x)),
    derivative=_mish_derivative,
    name='mish'
)

sin = ActivationFunction(
    func=math.sin,
    derivative=math.cos,
    name='sin'
)

cos = ActivationFunction(
    func=math.cos,
    derivative=lambda x: -math.sin(x),
    name='cos'
)

gaussian = ActivationFunction(
    func=lambda x: math.exp(-x * x),
    derivative=lambda x: -2.0 * x * math.exp(-x * x),
    name='gaussian'
)

# Not usable for gradient training: the derivative is zero everywhere
step = ActivationFunction(
    func=lambda x: 1.0 if x > 0 else 0.0,
    derivative=lambda x: 0.0,
    name='step'
)

linear = ActivationFunction(
    func=lambda x: x,
    derivative=lambda x: 1.0,
    name='linear'
)


ACTIVATIONS: Dict[str, ActivationFunction] = {
    fn.name: fn for fn in (
        sigmoid, relu, leaky_relu, elu, tanh, swish,
        mish, sin, cos, gaussian, step, linear
    )
}

# camelCase names accepted for compatibility
_ALIASES = {
    'leakyRelu': 'leaky_relu',
}


def get_activation(name: str) -> ActivationFunction:
    """
    Look up an activation function by name.

    Args:
        name: Catalog name such as ``'sigmoid'`` or ``'leaky_relu'``

    Returns:
        ActivationFunction: The shared catalog entry

    Raises:
        ValidationError: If the name is not in the catalog
    """
    if not isinstance(name, str):
        raise ValidationError(
            f"Activation name must be a string, got {type(name).__name__}"
        )

    key = _ALIASES.get(name, name)
    if key not in ACTIVATIONS:
        raise ValidationError(
            f"Unknown activation function '{name}'",
            context={'available': list_activations()}
        )
    return ACTIVATIONS[key]


def list_activations() -> List[str]:
    """Return the catalog names in definition order."""
    return list(ACTIVATIONS)
