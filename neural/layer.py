"""
layer.py
~~~~~~~~

An ordered group of neurons that share the same inputs.

Layers know nothing about their neighbours. The owning Network keeps them
in a list and drives the forward, backward, and weight update passes.
"""

import logging
from typing import BinaryIO, List, Sequence

import numpy as np

from . import codec
from .activation import DEFAULT_ACTIVATION, Activation
from .exceptions import DimensionMismatchError, MalformedRecordError
from .neuron import Neuron

logger = logging.getLogger(__name__)


class Layer:
    """A single layer of a Network."""

    def __init__(self, neurons: List[Neuron], input_size: int):
        """
        Assemble a layer from existing neurons.

        Args:
            neurons: Neurons in output order
            input_size: Number of inputs each neuron takes

        Raises:
            ValueError: If ``neurons`` is empty
            DimensionMismatchError: If a neuron takes a different number of
                inputs than ``input_size``
        """
        if not neurons:
            raise ValueError("A layer needs at least one neuron")

        for index, neuron in enumerate(neurons):
            if neuron.input_size != input_size:
                raise DimensionMismatchError(
                    f"Neuron {index} takes {neuron.input_size} inputs, "
                    f"layer takes {input_size}"
                )

        self.neurons = list(neurons)
        self.input_size = input_size
        self.output = np.zeros(len(self.neurons))

    @classmethod
    def random(
        cls,
        count: int,
        input_size: int,
        activation: Activation = DEFAULT_ACTIVATION,
        rng=None
    ) -> 'Layer':
        """Create ``count`` neurons with random weights."""
        if count < 1:
            raise ValueError(f"Layer size must be positive, got {count}")
        neurons = [Neuron(input_size, activation, rng) for _ in range(count)]
        return cls(neurons, input_size)

    @classmethod
    def from_weights(
        cls,
        weight_vectors: Sequence[Sequence[float]],
        input_size: int,
        activation: Activation = DEFAULT_ACTIVATION
    ) -> 'Layer':
        """
        Create a layer from pre-learned weights.

        Args:
            weight_vectors: One vector per neuron, each ending with the bias
            input_size: Number of inputs each neuron takes
            activation: Activation the weights were trained with
        """
        for index, weights in enumerate(weight_vectors):
            if len(weights) != input_size + 1:
                raise DimensionMismatchError(
                    f"Weight vector {index} has {len(weights)} entries, "
                    f"expected {input_size + 1}"
                )
        neurons = [Neuron.from_weights(w, activation) for w in weight_vectors]
        return cls(neurons, input_size)

    def __len__(self) -> int:
        return len(self.neurons)

    @property
    def weights(self) -> np.ndarray:
        """Copy of all weights, one row per neuron."""
        return np.array([neuron.weights for neuron in self.neurons])

    def update_outputs(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Run every neuron on ``inputs`` and cache the results in ``output``.

        Returns:
            The cached output vector, which is the next layer's input
        """
        inputs = np.asarray(inputs, dtype=np.float64)
        if len(inputs) != self.input_size:
            raise DimensionMismatchError(
                f"Layer expects {self.input_size} inputs, got {len(inputs)}"
            )

        self.output = np.array(
            [neuron.update_output(inputs) for neuron in self.neurons]
        )
        return self.output

    def update_deltas(self, summed_weighted_deltas: Sequence[float]) -> np.ndarray:
        """
        Compute the deltas of this layer.

        Args:
            summed_weighted_deltas: i-th element is the following layer's
                deltas summed and weighted by the input weight belonging to
                neuron i of this layer. For the output layer this is just
                expected - actual.

        Returns:
            The same kind of vector for the previous layer, one entry per
            input of this layer
        """
        if len(summed_weighted_deltas) != len(self.neurons):
            raise DimensionMismatchError(
                f"Layer has {len(self.neurons)} neurons, "
                f"got {len(summed_weighted_deltas)} deltas"
            )

        for neuron, delta_sum in zip(self.neurons, summed_weighted_deltas):
            neuron.update_delta(delta_sum)

        # Only read deltas once all of them are final
        previous = np.zeros(self.input_size)
        for neuron in self.neurons:
            previous += [neuron.weighted_delta(j) for j in range(self.input_size)]
        return previous

    def update_weights(self, inputs: Sequence[float], learning_rate: float) -> np.ndarray:
        """
        Adjust every neuron's weights using its current delta.

        Call after ``update_deltas``. The cached output is deliberately left
        alone: the following layer must be updated with the activations of
        the last forward pass, not with outputs of the new weights.

        Returns:
            This layer's pre-update output, the input of the next layer
        """
        for neuron in self.neurons:
            neuron.update_weights(inputs, learning_rate)
        return self.output

    def write(self, stream: BinaryIO) -> None:
        """Serialize the layer header followed by every neuron."""
        codec.write_line(stream, 'LAYER')
        codec.write_line(stream, 'inputs', self.input_size)
        codec.write_line(stream, 'neurons', len(self.neurons))
        for neuron in self.neurons:
            neuron.write(stream)

    @classmethod
    def read(
        cls,
        stream: BinaryIO,
        input_size: int,
        activation: Activation = DEFAULT_ACTIVATION
    ) -> 'Layer':
        """
        Read a layer previously written with ``write``.

        Args:
            stream: Binary stream positioned at a LAYER record
            input_size: Neuron count of the previous layer, or the network's
                input size for the first layer
            activation: Activation the layer was trained with

        Raises:
            MalformedRecordError: If the header or any neuron is malformed
        """
        codec.expect_keyword(stream, 'LAYER')

        inputs = codec.read_count(stream, 'inputs')
        if inputs != input_size:
            raise MalformedRecordError(
                f"Layer declares {inputs} inputs, expected {input_size}"
            )

        count = codec.read_count(stream, 'neurons')
        if count < 1:
            raise MalformedRecordError("Layer declares no neurons")

        neurons = []
        for index in range(count):
            try:
                neurons.append(Neuron.read(stream, input_size, activation))
            except MalformedRecordError as e:
                raise MalformedRecordError(f"Neuron {index}: {e}") from e

        logger.debug(f"Read layer with {count} neurons, {inputs} inputs")
        return cls(neurons, input_size)

    def __repr__(self) -> str:
        return f"Layer(neurons={len(self.neurons)}, input_size={self.input_size})"
