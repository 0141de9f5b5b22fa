"""
neuron.py
~~~~~~~~~

A single neuron: weighted sum of inputs plus bias, passed through an
activation function.

The neuron caches its most recent input, weighted sum and output so that
``update_weights`` can apply the gradient step for the example that was
just forwarded.
"""

import math
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from fenix.exceptions import StateError, ValidationError
from fenix.validation import as_vector, is_finite_number, is_positive_int

BIAS_LIMIT = 0.1


class Neuron:
    """
    Fully-connected neuron with Xavier/Glorot initialised weights.

    Attributes:
        weights: Connection weights, one per input
        bias: Bias term
        last_inputs: Copy of the inputs seen by the last ``forward`` call
        last_weighted_sum: Weighted sum computed by the last ``forward`` call
        last_output: Output produced by the last ``forward`` call
    """

    def __init__(self, input_size: int, rng: Optional[np.random.Generator] = None):
        """
        Create a neuron with random weights and bias.

        Args:
            input_size: Number of input connections
            rng: Random generator used for initialisation
        """
        if not is_positive_int(input_size):
            raise ValidationError('Input size must be a positive integer')

        rng = rng if rng is not None else np.random.default_rng()

        self.weights = self._initialize_weights(int(input_size), rng)
        self.bias = self._initialize_bias(rng)
        self.last_inputs: Optional[np.ndarray] = None
        self.last_weighted_sum: Optional[float] = None
        self.last_output: Optional[float] = None

    @staticmethod
    def _initialize_weights(input_size: int, rng: np.random.Generator) -> np.ndarray:
        limit = math.sqrt(6.0 / (input_size + 1))
        return rng.uniform(-limit, limit, size=input_size)

    @staticmethod
    def _initialize_bias(rng: np.random.Generator) -> float:
        return float(rng.uniform(-BIAS_LIMIT, BIAS_LIMIT))

    @property
    def input_size(self) -> int:
        return len(self.weights)

    def forward(self, inputs: Sequence[float], activation_fn: Callable[[float], float]) -> float:
        """
        Propagate a signal through the neuron.

        Args:
            inputs: Input values, one per weight
            activation_fn: Scalar activation applied to the weighted sum

        Returns:
            float: The neuron output

        Raises:
            ValidationError: If ``inputs`` has the wrong length or holds
                non-finite values
        """
        vector = as_vector(inputs, 'Input')
        if len(vector) != len(self.weights):
            raise ValidationError(
                f"Input size ({len(vector)}) does not match "
                f"number of weights ({len(self.weights)})"
            )

        weighted_sum = self.bias + float(np.dot(vector, self.weights))
        output = float(activation_fn(weighted_sum))

        self.last_inputs = vector
        self.last_weighted_sum = weighted_sum
        self.last_output = output
        return output

    def update_weights(self, delta: float, learning_rate: float) -> None:
        """
        Apply one gradient step using the cached inputs.

        Args:
            delta: Error signal for this neuron
            learning_rate: Step size

        Raises:
            StateError: If ``forward`` has not been called yet
        """
        if self.last_inputs is None:
            raise StateError(
                'Cannot update weights: no last inputs data available'
            )

        step = learning_rate * delta
        self.weights += step * self.last_inputs
        self.bias += step

    def get_weights(self) -> Dict[str, Any]:
        """Return a copy of the weights and the bias."""
        return {
            'weights': self.weights.copy(),
            'bias': float(self.bias)
        }

    def set_weights(self, weights: Sequence[float], bias: float) -> None:
        """
        Replace weights and bias with copies of the given values.

        Raises:
            ValidationError: If the weight count differs from the input size
                or a value is not a finite number
        """
        vector = self.check_weights(weights, bias)
        # Assign in place so existing connection views stay live
        self.weights[:] = vector
        self.bias = float(bias)

    def check_weights(self, weights: Sequence[float], bias: float) -> np.ndarray:
        """Validate replacement weights without applying them."""
        try:
            vector = as_vector(weights, 'Weight')
        except ValidationError as e:
            raise ValidationError('Invalid weights format') from e

        if len(vector) != len(self.weights):
            raise ValidationError(
                f"Invalid weights format: expected {len(self.weights)} "
                f"weights, got {len(vector)}"
            )

        if not is_finite_number(bias):
            raise ValidationError('Bias must be a finite number')

        return vector

    def reset(self) -> None:
        """Forget the cached forward pass."""
        self.last_inputs = None
        self.last_weighted_sum = None
        self.last_output = None

    def get_info(self) -> Dict[str, Any]:
        return {
            'input_size': self.input_size,
            'weights_sum': float(np.sum(np.abs(self.weights))),
            'bias': float(self.bias),
            'last_output': self.last_output
        }
