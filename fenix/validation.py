"""
validation.py
~~~~~~~~~~~~~

Argument checks shared by neurons, layers and networks.
"""

import math
import numbers
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np

from fenix.exceptions import ValidationError


def is_positive_int(value: Any) -> bool:
    """True for ints (numpy ints included) greater than zero, but not bools."""
    return (
        isinstance(value, numbers.Integral)
        and not isinstance(value, bool)
        and value > 0
    )


def is_seed(value: Any) -> bool:
    """True for values numpy accepts as a generator seed: ints >= 0, not bools."""
    return (
        isinstance(value, numbers.Integral)
        and not isinstance(value, bool)
        and value >= 0
    )


def is_finite_number(value: Any) -> bool:
    """True for real, finite numbers that are not bools."""
    return (
        isinstance(value, numbers.Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def is_sequence(value: Any) -> bool:
    """True for lists, tuples and numpy arrays; strings do not count."""
    if isinstance(value, np.ndarray):
        return True
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def as_vector(values: Any, name: str = 'Input') -> np.ndarray:
    """
    Convert a sequence of finite numbers to a fresh 1-D float array.

    Args:
        values: List, tuple or array of numbers
        name: Label used in error messages

    Returns:
        np.ndarray: A new float64 array (never a view of ``values``)

    Raises:
        ValidationError: If ``values`` is not a flat sequence of finite numbers
    """
    if not is_sequence(values):
        raise ValidationError(f"{name} data must be a sequence of numbers")

    if any(isinstance(v, bool) for v in values):
        raise ValidationError(f"All {name.lower()} values must be finite numbers")

    try:
        vector = np.array(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise ValidationError(
            f"All {name.lower()} values must be finite numbers"
        ) from e

    if vector.ndim != 1:
        raise ValidationError(f"{name} data must be one-dimensional")

    if not np.all(np.isfinite(vector)):
        raise ValidationError(f"All {name.lower()} values must be finite numbers")

    return vector


def check_activation(activation_function: Any, require_derivative: bool = True) -> None:
    """
    Verify that an object satisfies the activation function contract.

    Raises:
        ValidationError: If ``func`` (or ``derivative``) is not callable
    """
    func = getattr(activation_function, 'func', None)
    derivative = getattr(activation_function, 'derivative', None)

    if not callable(func):
        raise ValidationError(
            'Activation function must be an object with func method'
        )

    if require_derivative and not callable(derivative):
        raise ValidationError(
            'Activation function must contain func and derivative methods'
        )


def activation_name(activation_function: Any) -> str:
    """Return the activation's name, or 'unknown' when it has none."""
    return getattr(activation_function, 'name', None) or 'unknown'


def check_examples(data: Any, label: str = 'Training') -> None:
    """
    Validate a list of ``{'input': ..., 'target': ...}`` examples.

    Every example must carry both keys, every input must have the same
    length, and every target must have the same length.

    Raises:
        ValidationError: On any malformed example
    """
    if not is_sequence(data) or len(data) == 0:
        raise ValidationError(f"{label} data must be a non-empty sequence")

    input_size = None
    target_size = None

    for index, example in enumerate(data):
        if (not isinstance(example, Mapping)
                or example.get('input') is None
                or example.get('target') is None):
            raise ValidationError(
                'Each example must contain input and target fields',
                context={'index': index}
            )

        inputs = as_vector(example['input'], 'Input')
        targets = as_vector(example['target'], 'Target')

        if input_size is None:
            input_size, target_size = len(inputs), len(targets)

        if len(inputs) != input_size:
            raise ValidationError(
                'All input vectors must have the same size',
                context={'index': index}
            )

        if len(targets) != target_size:
            raise ValidationError(
                'All target vectors must have the same size',
                context={'index': index}
            )
