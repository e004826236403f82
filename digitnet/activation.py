"""
activation.py
~~~~~~~~~~~~~

Sigmoid activation and its first derivative.

The plain functions accept floats or numpy arrays. ``ActivationFunction``
maps them over a ``Matrix`` and returns a new matrix of the same shape.
"""

import numpy as np

from digitnet.matrix import Matrix


def sigmoid(x):
    """Logistic function ``1 / (1 + e^-x)``."""
    return 1.0 / (1.0 + np.exp(-np.clip(x, -500, 500)))


def sigmoid_derivative(x):
    """Derivative of the sigmoid, computed from the pre-activation ``x``."""
    s = sigmoid(x)
    return s * (1.0 - s)


def sigmoid_derivative_from_output(y):
    """Derivative of the sigmoid, computed from an activation ``y = sigmoid(x)``."""
    return y * (1.0 - y)


class ActivationFunction:
    """
    Sigmoid activation applied entry by entry to a matrix.

    Stateless, so one instance can be shared freely.
    """

    def activate(self, matrix: Matrix, derivative: bool = False) -> Matrix:
        """
        Apply the sigmoid, or its derivative, to every entry.

        Args:
            matrix: Pre-activation values
            derivative: Return sigmoid'(x) instead of sigmoid(x)

        Returns:
            Matrix: A new matrix with the same shape as ``matrix``
        """
        if derivative:
            return matrix.apply(sigmoid_derivative)
        return matrix.apply(sigmoid)

    def derivative_from_output(self, activated: Matrix) -> Matrix:
        """Derivative from an already activated matrix, skipping the exponentials."""
        return activated.apply(sigmoid_derivative_from_output)
