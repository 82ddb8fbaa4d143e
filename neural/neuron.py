"""
neuron.py
~~~~~~~~~

A single neuron: input weights, a bias weight, and an activation function.
"""

from typing import BinaryIO, Optional, Sequence

import numpy as np

from . import codec
from .activation import DEFAULT_ACTIVATION, Activation
from .exceptions import DimensionMismatchError, MalformedRecordError


class Neuron:
    """
    One computational unit of a Layer.

    The weight vector holds one weight per input plus a trailing bias
    weight, whose input is always 1. ``output`` and ``delta`` are only
    meaningful after ``update_output`` / ``update_delta`` have run for the
    current input.
    """

    def __init__(
        self,
        input_size: int,
        activation: Activation = DEFAULT_ACTIVATION,
        rng=None
    ):
        """
        Create a neuron with random weights in [-0.5, 0.5).

        Args:
            input_size: Number of inputs, not counting the bias
            activation: Activation function of this neuron
            rng: Source of randomness with numpy's ``uniform`` signature,
                defaults to the global ``numpy.random`` state
        """
        if input_size < 0:
            raise ValueError(f"input_size must be non-negative, got {input_size}")

        rng = np.random if rng is None else rng
        # One extra weight for the bias
        weights = rng.uniform(-0.5, 0.5, size=input_size + 1)
        self._init(np.asarray(weights, dtype=np.float64), activation)

    @classmethod
    def from_weights(
        cls,
        weights: Sequence[float],
        activation: Activation = DEFAULT_ACTIVATION
    ) -> 'Neuron':
        """
        Create a neuron with the given weights, the last one being the bias.

        The weights are copied, later changes to ``weights`` do not leak in.
        """
        weights = np.array(weights, dtype=np.float64)
        if weights.ndim != 1 or weights.size == 0:
            raise ValueError("A neuron needs at least a bias weight")

        neuron = cls.__new__(cls)
        neuron._init(weights, activation)
        return neuron

    def _init(self, weights: np.ndarray, activation: Activation) -> None:
        self.weights = weights
        self.activation = Activation(activation)
        self._function, self._derivative = self.activation.functions
        self.output = 0.0
        self.delta = 0.0

    @property
    def input_size(self) -> int:
        """Number of inputs, equal to the neuron count of the previous layer."""
        return len(self.weights) - 1

    def _check_inputs(self, inputs: np.ndarray) -> None:
        if len(inputs) + 1 != len(self.weights):
            raise DimensionMismatchError(
                f"Neuron expects {self.input_size} inputs, got {len(inputs)}"
            )

    def update_output(self, inputs: Sequence[float]) -> float:
        """
        Recompute ``output`` for the given inputs.

        Args:
            inputs: Input values, typically the previous layer's outputs

        Returns:
            The new output value

        Raises:
            DimensionMismatchError: If ``inputs`` has the wrong length
        """
        inputs = np.asarray(inputs, dtype=np.float64)
        self._check_inputs(inputs)

        total = self.weights[-1] + float(np.dot(inputs, self.weights[:-1]))
        self.output = self._function(total)
        return self.output

    def update_delta(self, delta_sum: float) -> float:
        """
        Recompute ``delta`` from the following layer's weighted deltas.

        For an output neuron ``delta_sum`` is simply expected - actual.
        Requires ``update_output`` to have run for the current input.
        """
        self.delta = self._derivative(self.output) * delta_sum
        return self.delta

    def weighted_delta(self, index: int) -> float:
        """
        Delta scaled by the weight of input ``index``.

        Indexes outside the input range (including the bias slot) return the
        bare delta.
        """
        if index < 0 or index >= self.input_size:
            return self.delta
        return self.delta * self.weights[index]

    def update_weights(self, inputs: Sequence[float], learning_rate: float) -> None:
        """
        Move every weight, the bias included, along the current delta.

        Requires ``update_delta`` to have run. ``inputs`` must be the same
        values the last forward pass used.
        """
        inputs = np.asarray(inputs, dtype=np.float64)
        self._check_inputs(inputs)

        step = learning_rate * self.delta
        self.weights[:-1] += step * inputs
        self.weights[-1] += step

    def write(self, stream: BinaryIO) -> None:
        """
        Serialize this neuron's weights into ``stream``.

        The size is written as text, the weights as a binary blob. The
        activation function is not stored.

        Raises:
            PersistenceIOError: If the stream rejects the write
        """
        codec.write_line(stream, 'NEURON')
        codec.write_line(stream, 'size', len(self.weights))
        codec.write_weights(stream, self.weights)

    @classmethod
    def read(
        cls,
        stream: BinaryIO,
        input_size: int,
        activation: Optional[Activation] = None
    ) -> 'Neuron':
        """
        Read a neuron previously written with ``write``.

        Args:
            stream: Binary stream positioned at a NEURON record
            input_size: Expected number of inputs
            activation: Activation the neuron was trained with

        Raises:
            MalformedRecordError: If the record is missing, malformed,
                truncated, or holds the wrong number of weights
        """
        codec.expect_keyword(stream, 'NEURON')
        size = codec.read_count(stream, 'size')
        if size != input_size + 1:
            raise MalformedRecordError(
                f"Neuron declares {size} weights, expected {input_size + 1}"
            )

        weights = codec.read_weights(stream, size)
        return cls.from_weights(weights, activation or DEFAULT_ACTIVATION)

    def __repr__(self) -> str:
        return (
            f"Neuron(input_size={self.input_size}, "
            f"activation={self.activation.value})"
        )
