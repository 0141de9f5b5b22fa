"""
exceptions.py
~~~~~~~~~~~~~

Exception types raised by the Fenix network engine.
"""

from typing import Any, Dict, Optional


class FenixError(Exception):
    """Base exception for all Fenix errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class ValidationError(FenixError, ValueError):
    """
    Raised when arguments are malformed.

    Covers non-positive or non-integer counts, length mismatches, malformed
    activation objects, malformed training data and architecture/data
    incompatibility.
    """
    pass


class StateError(FenixError, RuntimeError):
    """Raised when an operation requires state that is not there yet."""
    pass
