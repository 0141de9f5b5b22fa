"""
fenix package
~~~~~~~~~~~~~

Minimal multilayer-perceptron library.
Contains the neuron, layer and network engine, the activation catalog,
SQLite model persistence, and the training API server.
"""

from fenix import activations
from fenix.exceptions import FenixError, StateError, ValidationError
from fenix.layer import Layer
from fenix.network import Network
from fenix.neuron import Neuron

__version__ = "1.0.0"

__all__ = [
    'activations',
    'FenixError',
    'Layer',
    'Network',
    'Neuron',
    'StateError',
    'ValidationError',
]
