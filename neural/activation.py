"""
activation.py
~~~~~~~~~~~~~

Supported activation functions.

Each activation is paired with its derivative. The derivative takes the
*activated* value rather than the raw sum, so a neuron can pass its cached
output straight to it.
"""

import math
from enum import Enum
from typing import Callable, Dict, Tuple

ScalarFunction = Callable[[float], float]


def sigmoid(x: float) -> float:
    """Logistic function, clamped to avoid overflow in ``math.exp``."""
    if x < -45.0:
        return 0.0
    if x > 45.0:
        return 1.0
    return 1.0 / (1.0 + math.exp(-x))


def sigmoid_derivative(y: float) -> float:
    return y * (1.0 - y)


def tanh(x: float) -> float:
    """Hyperbolic tangent, saturated outside [-10, 10]."""
    if x < -10.0:
        return -1.0
    if x > 10.0:
        return 1.0
    return math.tanh(x)


def tanh_derivative(y: float) -> float:
    return (1.0 + y) * (1.0 - y)


class Activation(str, Enum):
    """Activation families a neuron can use."""

    SIGMOID = 'sigmoid'
    TANH = 'tanh'

    @property
    def functions(self) -> Tuple[ScalarFunction, ScalarFunction]:
        """The (function, derivative) pair for this activation."""
        return _FUNCTIONS[self]

    @classmethod
    def from_name(cls, name: str) -> 'Activation':
        """
        Resolve an activation from its name.

        Args:
            name: 'sigmoid' or 'tanh' (case-insensitive)

        Returns:
            The matching Activation member

        Raises:
            ValueError: If the name is not a supported activation
        """
        try:
            return cls(str(name).lower())
        except ValueError:
            supported = ', '.join(member.value for member in cls)
            raise ValueError(
                f"Unknown activation '{name}', expected one of: {supported}"
            ) from None


_FUNCTIONS: Dict[Activation, Tuple[ScalarFunction, ScalarFunction]] = {
    Activation.SIGMOID: (sigmoid, sigmoid_derivative),
    Activation.TANH: (tanh, tanh_derivative),
}

DEFAULT_ACTIVATION = Activation.TANH
