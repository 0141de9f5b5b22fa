"""
network.py
~~~~~~~~~~

Multilayer perceptron built from stacked fully-connected layers.

Training is online stochastic gradient descent: every epoch shuffles the
examples, and each example is forwarded and immediately backpropagated, so
later examples in an epoch see the weights already updated by earlier ones.

Usage:
    >>> from fenix import activations
    >>> net = (Network(seed=7)
    ...        .add_layer(4, activations.tanh, input_size=2)
    ...        .add_layer(1, activations.sigmoid))
    >>> data = [{'input': [0, 0], 'target': [0]}, {'input': [1, 0], 'target': [1]},
    ...         {'input': [0, 1], 'target': [1]}, {'input': [1, 1], 'target': [0]}]
    >>> net.train(data, epochs=2000)
    >>> net.predict([1, 0])
"""

import json
import logging
import math
import time
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from fenix.activations import get_activation
from fenix.exceptions import ValidationError
from fenix.layer import Layer
from fenix.validation import (
    activation_name,
    as_vector,
    check_activation,
    check_examples,
    is_finite_number,
    is_positive_int,
    is_seed,
    is_sequence,
)

logger = logging.getLogger(__name__)

DEFAULT_LEARNING_RATE = 0.1

Example = Mapping
EpochCallback = Callable[[Dict[str, Any]], None]


class NetworkEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


class Network:
    """
    A feed-forward neural network.

    Attributes:
        layers: Layers in forward order
        learning_rate: SGD step size
        training_history: Mean training error of every completed epoch
        is_compiled: Whether ``compile`` ran since the last ``add_layer``
        rng: Generator used for weight initialisation and shuffling
    """

    def __init__(
        self,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Create an empty network.

        Args:
            learning_rate: Initial SGD step size
            seed: Seed for a new random generator (ignored if ``rng`` given)
            rng: Generator to use for all randomness

        Raises:
            ValidationError: If ``seed`` is not a non-negative integer
        """
        if rng is None and seed is not None and not is_seed(seed):
            raise ValidationError('Seed must be a non-negative integer')

        self.layers: List[Layer] = []
        self.learning_rate = DEFAULT_LEARNING_RATE
        self.training_history: List[float] = []
        self.is_compiled = False
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.set_learning_rate(learning_rate)

    # ========================================================================
    # ARCHITECTURE
    # ========================================================================

    def add_layer(
        self,
        neuron_count: int,
        activation_function: Any,
        input_size: Optional[int] = None
    ) -> 'Network':
        """
        Append a fully-connected layer.

        Args:
            neuron_count: Number of neurons in the layer
            activation_function: Object with ``func`` and ``derivative``
            input_size: Input size; required for the first layer and
                ignored for every later one

        Returns:
            Network: self, for chaining

        Raises:
            ValidationError: If a parameter is invalid
        """
        if not is_positive_int(neuron_count):
            raise ValidationError('Number of neurons must be a positive integer')

        check_activation(activation_function, require_derivative=False)

        if not self.layers and not is_positive_int(input_size):
            raise ValidationError('Input size must be specified for the first layer')

        layer_input_size = self.layers[-1].size if self.layers else input_size
        layer = Layer(neuron_count, layer_input_size, activation_function, self.rng)

        self.layers.append(layer)
        self.is_compiled = False

        logger.debug(
            f"Added layer {len(self.layers)}: {neuron_count} neuron(s), "
            f"input size {layer_input_size}, "
            f"activation {activation_name(activation_function)}"
        )
        return self

    def compile(self) -> 'Network':
        """
        Mark the network ready for training.

        Raises:
            ValidationError: If the network has no layers
        """
        if not self.layers:
            raise ValidationError('Network must contain at least one layer')

        self.is_compiled = True
        return self

    # ========================================================================
    # INFERENCE
    # ========================================================================

    def predict(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Run a forward pass.

        Args:
            inputs: Input vector of length ``layers[0].input_size``

        Returns:
            np.ndarray: Output of the last layer (a fresh array)

        Raises:
            ValidationError: If the input is malformed or the network is empty
        """
        if not is_sequence(inputs):
            raise ValidationError('Input data must be a sequence')

        if not self.layers:
            raise ValidationError('Network contains no layers')

        expected = self.layers[0].input_size
        if len(inputs) != expected:
            raise ValidationError(
                f"Input size ({len(inputs)}) does not match "
                f"expected size ({expected})"
            )

        current = as_vector(inputs, 'Input')
        for layer in self.layers:
            current = layer.forward(current)

        return current

    def calculate_error(self, predicted: Sequence[float], actual: Sequence[float]) -> float:
        """
        Mean squared error between two vectors.

        Raises:
            ValidationError: If the lengths differ
        """
        if len(predicted) != len(actual):
            raise ValidationError(
                'Predicted and actual values must have the same length'
            )

        diff = np.asarray(predicted, dtype=float) - np.asarray(actual, dtype=float)
        return float(np.mean(diff ** 2))

    def evaluate(self, data: Sequence[Example]) -> float:
        """
        Mean error over a set of examples, without updating any weight.

        Args:
            data: Examples with ``input`` and ``target``

        Returns:
            float: Average of the per-example mean squared errors
        """
        check_examples(data, 'Evaluation')

        total_error = 0.0
        for example in data:
            output = self.predict(example['input'])
            total_error += self.calculate_error(output, example['target'])

        return total_error / len(data)

    # ========================================================================
    # TRAINING
    # ========================================================================

    def train(
        self,
        data: Sequence[Example],
        epochs: int = 2000,
        verbose: bool = False,
        validation_data: Optional[Sequence[Example]] = None,
        early_stopping_patience: Optional[int] = None,
        callback: Optional[EpochCallback] = None
    ) -> 'Network':
        """
        Train the network with online stochastic gradient descent.

        Args:
            data: Training examples, each ``{'input': [...], 'target': [...]}``
            epochs: Maximum number of epochs
            verbose: Log progress ten times per run
            validation_data: Examples used for early stopping
            early_stopping_patience: Stop after this many epochs without a
                validation improvement; needs ``validation_data``
            callback: Called after every epoch with a progress dict
                (``epoch``, ``total_epochs``, ``error``, ``validation_error``,
                ``elapsed_time``)

        Returns:
            Network: self, for chaining

        Raises:
            ValidationError: If the data, options or architecture are invalid.
                Nothing is changed when this is raised.
        """
        self.validate_training_args(
            data, epochs, validation_data, early_stopping_patience
        )

        if not self.is_compiled:
            self.compile()
        self.training_history = []

        use_early_stopping = (
            validation_data is not None and early_stopping_patience is not None
        )
        best_validation_error = math.inf
        patience_counter = 0
        log_every = max(1, epochs // 10)
        start_time = time.time()

        for epoch in range(epochs):
            epoch_error = self._train_epoch(data)
            self.training_history.append(epoch_error)

            validation_error = None
            stop = False
            if use_early_stopping:
                validation_error = self.evaluate(validation_data)

                if validation_error < best_validation_error:
                    best_validation_error = validation_error
                    patience_counter = 0
                else:
                    patience_counter += 1
                    stop = patience_counter >= early_stopping_patience

            if callback is not None:
                callback({
                    'epoch': epoch + 1,
                    'total_epochs': epochs,
                    'error': epoch_error,
                    'validation_error': validation_error,
                    'elapsed_time': time.time() - start_time
                })

            if stop:
                if verbose:
                    logger.info(f"Early stopping at epoch {epoch + 1}")
                break

            if verbose and (epoch + 1) % log_every == 0:
                logger.info(f"Epoch {epoch + 1}/{epochs}, Error: {epoch_error:.6f}")

        logger.debug(
            f"Training finished after {len(self.training_history)} epoch(s) "
            f"in {time.time() - start_time:.2f}s"
        )
        return self

    def validate_training_args(
        self,
        data: Any,
        epochs: Any,
        validation_data: Any,
        early_stopping_patience: Any
    ) -> None:
        """
        Check ``train`` arguments against the data and the architecture.

        Raises:
            ValidationError: On the first problem found
        """
        check_examples(data, 'Training')

        if not is_positive_int(epochs):
            raise ValidationError('Number of epochs must be a positive integer')

        if early_stopping_patience is not None and not is_positive_int(early_stopping_patience):
            raise ValidationError('Early stopping patience must be a positive integer')

        if not self.layers:
            raise ValidationError('Network must contain at least one layer')

        input_size = len(data[0]['input'])
        output_size = len(data[0]['target'])

        if self.layers[0].input_size != input_size:
            raise ValidationError(
                f"Network input size ({self.layers[0].input_size}) does not match "
                f"input data size ({input_size})"
            )

        if self.layers[-1].size != output_size:
            raise ValidationError(
                f"Output layer size ({self.layers[-1].size}) does not match "
                f"target data size ({output_size})"
            )

        if validation_data is not None:
            check_examples(validation_data, 'Validation')
            if (len(validation_data[0]['input']) != input_size
                    or len(validation_data[0]['target']) != output_size):
                raise ValidationError(
                    'Validation data shape does not match training data'
                )

    def _train_epoch(self, data: Sequence[Example]) -> float:
        total_error = 0.0

        for example in self._shuffle(list(data)):
            output = self.predict(example['input'])
            total_error += self.calculate_error(output, example['target'])
            self.backpropagate(example['target'])

        return total_error / len(data)

    def _shuffle(self, items: List[Any]) -> List[Any]:
        # Fisher-Yates, in place
        for i in range(len(items) - 1, 0, -1):
            j = int(self.rng.integers(0, i + 1))
            items[i], items[j] = items[j], items[i]
        return items

    def backpropagate(self, targets: Sequence[float]) -> None:
        """
        Backpropagate the error of the last forward pass.

        Updates the output layer first, then every hidden layer from the
        top down, each reading the already-updated weights of the layer
        above it.

        Args:
            targets: Target values for the last predicted input
        """
        deltas = self.layers[-1].backward_output(targets, self.learning_rate)

        for i in range(len(self.layers) - 2, -1, -1):
            next_weights = self.layers[i + 1].get_connection_weights()
            deltas = self.layers[i].backward_hidden(deltas, next_weights, self.learning_rate)

    # ========================================================================
    # STATE & INTROSPECTION
    # ========================================================================

    def set_learning_rate(self, rate: float) -> 'Network':
        """
        Set the SGD step size.

        Raises:
            ValidationError: Unless ``rate`` is a finite number above zero
        """
        if not is_finite_number(rate) or rate <= 0:
            raise ValidationError('Learning rate must be a positive number')

        self.learning_rate = float(rate)
        return self

    def get_info(self) -> Dict[str, Any]:
        """Summarise architecture and training state."""
        total_parameters = sum(
            layer.size * layer.input_size + layer.size for layer in self.layers
        )

        return {
            'layers': len(self.layers),
            'architecture': [layer.size for layer in self.layers],
            'input_size': self.layers[0].input_size if self.layers else 0,
            'output_size': self.layers[-1].size if self.layers else 0,
            'total_parameters': total_parameters,
            'learning_rate': self.learning_rate,
            'is_compiled': self.is_compiled,
            'trained_epochs': len(self.training_history),
            'last_error': self.training_history[-1] if self.training_history else None
        }

    def get_training_history(self) -> List[float]:
        return list(self.training_history)

    def reset(self) -> None:
        """Clear cached forward passes and the training history."""
        for layer in self.layers:
            layer.reset()
        self.training_history = []

    # ========================================================================
    # EXPORT / IMPORT
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Return the model document as plain Python data."""
        return {
            'architecture': [
                {
                    'neuronCount': layer.size,
                    'inputSize': layer.input_size,
                    'activationFunction': activation_name(layer.activation_function),
                    'weights': [
                        {'weights': w['weights'].tolist(), 'bias': w['bias']}
                        for w in layer.get_weights()
                    ]
                }
                for layer in self.layers
            ],
            'learningRate': self.learning_rate,
            'trainingHistory': list(self.training_history)
        }

    def export_model(self) -> str:
        """Serialise architecture, weights and history as JSON text."""
        return json.dumps(self.to_dict(), cls=NetworkEncoder, indent=2)

    @classmethod
    def import_model(
        cls,
        document: Union[str, Mapping],
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None
    ) -> 'Network':
        """
        Rebuild a network from an exported model.

        The whole document is checked before any layer is built: the
        ``inputSize`` chain, activation names, weight shapes, learning rate
        and history.

        Args:
            document: JSON text from ``export_model`` or the parsed mapping
            seed: Seed for the new network's generator
            rng: Generator for the new network

        Returns:
            Network: A network that predicts exactly like the exported one

        Raises:
            ValidationError: If the document is malformed
        """
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Model document is not valid JSON: {e}") from e

        if not isinstance(document, Mapping):
            raise ValidationError('Model document must be a JSON object')

        specs = document.get('architecture')
        if not is_sequence(specs) or len(specs) == 0:
            raise ValidationError('Model architecture must be a non-empty list')

        learning_rate = document.get('learningRate', DEFAULT_LEARNING_RATE)
        history = document.get('trainingHistory', [])
        if not is_sequence(history) or not all(is_finite_number(e) for e in history):
            raise ValidationError('Training history must be a list of numbers')

        activations = []
        previous_size = None
        for index, spec in enumerate(specs):
            if not isinstance(spec, Mapping):
                raise ValidationError(f"Layer {index} must be an object")

            neuron_count = spec.get('neuronCount')
            input_size = spec.get('inputSize')
            if not is_positive_int(neuron_count) or not is_positive_int(input_size):
                raise ValidationError(
                    f"Layer {index} needs positive integer neuronCount and inputSize"
                )

            if previous_size is not None and input_size != previous_size:
                raise ValidationError(
                    f"Layer {index} input size ({input_size}) does not match "
                    f"previous layer size ({previous_size})"
                )

            activations.append(get_activation(spec.get('activationFunction')))
            _check_layer_weights(index, spec.get('weights'), neuron_count, input_size)
            previous_size = neuron_count

        network = cls(learning_rate=learning_rate, seed=seed, rng=rng)
        for spec, activation in zip(specs, activations):
            network.add_layer(spec['neuronCount'], activation, spec['inputSize'])
            network.layers[-1].set_weights(spec['weights'])

        network.training_history = [float(e) for e in history]
        logger.info(
            f"Imported network with architecture "
            f"{network.get_info()['architecture']}"
        )
        return network


def _check_layer_weights(index: int, weights: Any, neuron_count: int, input_size: int) -> None:
    if not is_sequence(weights) or len(weights) != neuron_count:
        raise ValidationError(
            f"Layer {index} must have weights for {neuron_count} neuron(s)"
        )

    for entry in weights:
        if not isinstance(entry, Mapping) or not is_finite_number(entry.get('bias')):
            raise ValidationError(f"Layer {index} has a malformed neuron entry")

        vector = as_vector(entry.get('weights'), 'Weight')
        if len(vector) != input_size:
            raise ValidationError(
                f"Layer {index} neuron weights must have {input_size} values"
            )
