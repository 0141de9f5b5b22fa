"""
layer.py
~~~~~~~~

Fully-connected layer: a group of neurons sharing one activation function.

The layer runs the forward pass for all of its neurons and the two
backward passes used by backpropagation:

- ``backward_output`` for the output layer, driven by target values
- ``backward_hidden`` for hidden layers, driven by the deltas and
  connection weights of the layer above
"""

import logging
import numbers
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from fenix.exceptions import StateError, ValidationError
from fenix.neuron import Neuron
from fenix.validation import (
    activation_name,
    as_vector,
    check_activation,
    is_finite_number,
    is_positive_int,
    is_sequence,
)

logger = logging.getLogger(__name__)


def _is_index(value: Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


class Layer:
    """
    A layer of neurons.

    Attributes:
        neurons: The layer's neurons, in output order
        activation_function: Object exposing ``func`` and ``derivative``
        outputs: Outputs of the last forward pass (empty before the first)
        weighted_sums: Pre-activation values of the last forward pass
        size: Number of neurons
        input_size: Length of the input vector
    """

    def __init__(
        self,
        neuron_count: int,
        input_size: int,
        activation_function: Any,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Create a layer of freshly initialised neurons.

        Args:
            neuron_count: Number of neurons in the layer
            input_size: Size of the input vector
            activation_function: Object with ``func`` and ``derivative``
            rng: Random generator used for weight initialisation

        Raises:
            ValidationError: If any argument is invalid
        """
        if not is_positive_int(neuron_count):
            raise ValidationError('Number of neurons must be a positive integer')

        if not is_positive_int(input_size):
            raise ValidationError('Input size must be a positive integer')

        check_activation(activation_function)

        self.neurons = [
            Neuron(int(input_size), rng) for _ in range(int(neuron_count))
        ]
        self.activation_function = activation_function
        self.outputs = np.empty(0)
        self.weighted_sums = np.empty(0)
        self.size = int(neuron_count)
        self.input_size = int(input_size)

    # ------------------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------------------

    def forward(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Propagate inputs through every neuron of the layer.

        Args:
            inputs: Input vector of length ``input_size``

        Returns:
            np.ndarray: A copy of the layer outputs

        Raises:
            ValidationError: If the input size does not match
        """
        vector = as_vector(inputs, 'Input')
        if len(vector) != self.input_size:
            raise ValidationError(
                f"Input size ({len(vector)}) does not match "
                f"expected size ({self.input_size})"
            )

        func = self.activation_function.func
        outputs = np.array([neuron.forward(vector, func) for neuron in self.neurons])

        self.outputs = outputs
        self.weighted_sums = np.array(
            [neuron.last_weighted_sum for neuron in self.neurons]
        )
        return outputs.copy()

    # ------------------------------------------------------------------
    # Backward passes
    # ------------------------------------------------------------------

    def backward_output(self, targets: Sequence[float], learning_rate: float) -> np.ndarray:
        """
        Backpropagation step for the output layer.

        Args:
            targets: Target values, one per neuron
            learning_rate: Step size

        Returns:
            np.ndarray: Delta of every neuron

        Raises:
            ValidationError: If the target size does not match
            StateError: If no forward pass has been run
        """
        if not is_sequence(targets) or len(targets) != self.size:
            given = len(targets) if is_sequence(targets) else None
            raise ValidationError(
                f"Target size ({given}) does not match "
                f"number of neurons ({self.size})"
            )
        target_vector = as_vector(targets, 'Target')
        self._check_forward_state()

        errors = target_vector - self.outputs
        return self._apply_deltas(errors, learning_rate)

    def backward_hidden(
        self,
        next_layer_deltas: Sequence[float],
        next_layer_weights: Sequence[Sequence[float]],
        learning_rate: float
    ) -> np.ndarray:
        """
        Backpropagation step for a hidden layer.

        The error of neuron ``i`` is ``sum_j deltas[j] * weights[j][i]``,
        where ``weights[j]`` is the weight vector of neuron ``j`` of the
        next layer.

        Args:
            next_layer_deltas: Deltas of the next layer
            next_layer_weights: Connection weights of the next layer, one
                row per next-layer neuron
            learning_rate: Step size

        Returns:
            np.ndarray: Delta of every neuron in this layer

        Raises:
            ValidationError: If the shapes do not line up
            StateError: If no forward pass has been run
        """
        if not is_sequence(next_layer_deltas) or not is_sequence(next_layer_weights):
            raise ValidationError('Deltas and weights must be sequences')

        if len(next_layer_deltas) != len(next_layer_weights):
            raise ValidationError(
                'Number of deltas must match number of weight vectors'
            )

        deltas = as_vector(next_layer_deltas, 'Delta')
        rows = []
        for row in next_layer_weights:
            row_vector = as_vector(row, 'Weight')
            if len(row_vector) != self.size:
                raise ValidationError(
                    f"Weight vector size ({len(row_vector)}) does not match "
                    f"number of neurons ({self.size})"
                )
            rows.append(row_vector)
        self._check_forward_state()

        weights = np.array(rows).reshape(len(rows), self.size)
        errors = deltas @ weights
        return self._apply_deltas(errors, learning_rate)

    def _check_forward_state(self) -> None:
        if len(self.outputs) != self.size or any(
            neuron.last_inputs is None for neuron in self.neurons
        ):
            raise StateError(
                'Cannot run backward pass: layer has no forward pass data'
            )

    def _derivative_inputs(self) -> np.ndarray:
        # Output-based derivatives (sigmoid, tanh) take y, the rest take x
        if getattr(self.activation_function, 'takes_output', False):
            return self.outputs
        return self.weighted_sums

    def _apply_deltas(self, errors: np.ndarray, learning_rate: float) -> np.ndarray:
        derivative = self.activation_function.derivative
        points = self._derivative_inputs()

        deltas = np.empty(self.size)
        for i, neuron in enumerate(self.neurons):
            deltas[i] = errors[i] * derivative(float(points[i]))
            neuron.update_weights(deltas[i], learning_rate)

        return deltas

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def get_weights(self) -> List[Dict[str, Any]]:
        """Return a snapshot of every neuron's weights and bias."""
        return [neuron.get_weights() for neuron in self.neurons]

    def get_connection_weights(self) -> List[np.ndarray]:
        """
        Return read-only views of the neurons' weight vectors.

        The views share memory with the neurons, so they reflect later
        updates without copying. Writing through them raises; use
        ``set_connection_weight`` to change a single weight.
        """
        views = []
        for neuron in self.neurons:
            view = neuron.weights.view()
            view.flags.writeable = False
            views.append(view)
        return views

    def set_connection_weight(self, neuron_index: int, weight_index: int, value: float) -> None:
        """
        Set one connection weight.

        Args:
            neuron_index: Neuron in this layer
            weight_index: Input connection of that neuron
            value: New weight

        Raises:
            ValidationError: On out-of-range indices or a non-finite value
        """
        if not _is_index(neuron_index) or not 0 <= neuron_index < self.size:
            raise ValidationError(f"Neuron index {neuron_index} out of range")

        if not _is_index(weight_index) or not 0 <= weight_index < self.input_size:
            raise ValidationError(f"Weight index {weight_index} out of range")

        if not is_finite_number(value):
            raise ValidationError('Weight must be a finite number')

        self.neurons[neuron_index].weights[weight_index] = float(value)

    def set_weights(self, weights_data: Sequence[Dict[str, Any]]) -> None:
        """
        Set weights and biases for all neurons.

        Every entry is validated before any neuron is changed.

        Args:
            weights_data: One ``{'weights': [...], 'bias': b}`` per neuron

        Raises:
            ValidationError: On a shape mismatch or malformed entry
        """
        if not is_sequence(weights_data) or len(weights_data) != self.size:
            raise ValidationError('Invalid weights data format')

        for neuron, data in zip(self.neurons, weights_data):
            if not isinstance(data, Mapping) or 'weights' not in data or 'bias' not in data:
                raise ValidationError('Invalid weights data format')
            neuron.check_weights(data['weights'], data['bias'])

        for neuron, data in zip(self.neurons, weights_data):
            neuron.set_weights(data['weights'], data['bias'])

        logger.debug(f"Set weights for {self.size} neuron(s)")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_info(self) -> Dict[str, Any]:
        return {
            'neuron_count': self.size,
            'input_size': self.input_size,
            'activation_function': activation_name(self.activation_function),
            'total_weights': self.size * self.input_size,
            'last_outputs': self.outputs.tolist()
        }

    def reset(self) -> None:
        """Clear cached outputs of the layer and its neurons."""
        self.outputs = np.empty(0)
        self.weighted_sums = np.empty(0)
        for neuron in self.neurons:
            neuron.reset()
