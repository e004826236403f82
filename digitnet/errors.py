"""
errors.py
~~~~~~~~~

Exceptions raised by the matrix engine and the weight serializer.

Out-of-bounds matrix access raises the builtin ``IndexError``.
"""


class DimensionMismatchError(ValueError):
    """Raised when matrices have incompatible shapes for an operation."""


class PersistenceError(Exception):
    """Raised when network weights cannot be written or read back."""
