"""
network.py
~~~~~~~~~~

A feedforward neural network trained one example at a time with
backpropagation.

The network owns an ordered list of layers: zero or more hidden layers
followed by the output layer. Forward and weight update passes walk the
list front to back, the backward pass walks it back to front.

A Network is not thread-safe. Callers that share one instance between
threads or greenlets must serialize ``run`` and ``train_single`` calls.
"""

import time
import logging
from typing import (
    Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
)

import numpy as np

from . import codec
from .activation import DEFAULT_ACTIVATION, Activation
from .exceptions import DimensionMismatchError, MalformedRecordError
from .layer import Layer

logger = logging.getLogger(__name__)

Example = Tuple[Sequence[float], Sequence[float]]


class Network:
    """Multilayer perceptron built from Layers of Neurons."""

    def __init__(
        self,
        input_size: int,
        output_size: int,
        hidden_sizes: Sequence[int] = (),
        activation: Activation = DEFAULT_ACTIVATION,
        rng=None
    ):
        """
        Build a network with random weights.

        Args:
            input_size: Number of input values
            output_size: Number of output neurons
            hidden_sizes: Neuron count of each hidden layer, in order. May be
                empty, in which case the output layer reads the raw input.
            activation: Activation function used by every neuron
            rng: Source of randomness for the initial weights

        Raises:
            ValueError: If any size is not positive

        Example:
            >>> net = Network(2, 1, [2])
            >>> net.sizes
            [2, 2, 1]
        """
        if input_size < 1:
            raise ValueError(f"input_size must be positive, got {input_size}")
        if output_size < 1:
            raise ValueError(f"output_size must be positive, got {output_size}")
        if any(size < 1 for size in hidden_sizes):
            raise ValueError(
                f"Hidden layer sizes must be positive, got {list(hidden_sizes)}"
            )

        layers = []
        previous_size = input_size
        for size in list(hidden_sizes) + [output_size]:
            layers.append(Layer.random(size, previous_size, activation, rng))
            previous_size = size

        self._init(input_size, layers, Activation(activation))

    @classmethod
    def from_layers(
        cls,
        input_size: int,
        layers: List[Layer],
        activation: Activation = DEFAULT_ACTIVATION
    ) -> 'Network':
        """
        Assemble a network from existing layers, the last one being the
        output layer.

        Raises:
            ValueError: If ``layers`` is empty
            DimensionMismatchError: If a layer's input size does not match
                the neuron count of the layer before it
        """
        if not layers:
            raise ValueError("A network needs at least an output layer")

        expected = input_size
        for index, layer in enumerate(layers):
            if layer.input_size != expected:
                raise DimensionMismatchError(
                    f"Layer {index} takes {layer.input_size} inputs, "
                    f"previous layer provides {expected}"
                )
            expected = len(layer)

        network = cls.__new__(cls)
        network._init(input_size, list(layers), Activation(activation))
        return network

    def _init(self, input_size: int, layers: List[Layer], activation: Activation) -> None:
        self.input = np.zeros(input_size)
        self.layers = layers
        self.activation = activation

    @property
    def input_size(self) -> int:
        return len(self.input)

    @property
    def output_layer(self) -> Layer:
        return self.layers[-1]

    @property
    def hidden_layers(self) -> List[Layer]:
        return self.layers[:-1]

    @property
    def output_size(self) -> int:
        return len(self.output_layer)

    @property
    def sizes(self) -> List[int]:
        """Architecture as [input, hidden..., output] neuron counts."""
        return [self.input_size] + [len(layer) for layer in self.layers]

    @property
    def weights(self) -> List[np.ndarray]:
        """Copies of each layer's weights, one row per neuron."""
        return [layer.weights for layer in self.layers]

    def _set_input(self, inputs: Sequence[float]) -> None:
        inputs = np.array(inputs, dtype=np.float64)
        if inputs.shape != self.input.shape:
            raise DimensionMismatchError(
                f"Network expects {self.input_size} inputs, got {inputs.size}"
            )
        self.input = inputs

    def _feed_forward(self) -> np.ndarray:
        activations = self.input
        for layer in self.layers:
            activations = layer.update_outputs(activations)
        return activations

    def run(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Compute the network's output for ``inputs``.

        Returns:
            A copy of the output layer's output vector

        Raises:
            DimensionMismatchError: If ``inputs`` has the wrong length
        """
        self._set_input(inputs)
        return self._feed_forward().copy()

    def train_single(
        self,
        inputs: Sequence[float],
        expected_output: Sequence[float],
        learning_rate: float
    ) -> float:
        """
        Run one backpropagation step on a single example.

        Args:
            inputs: Input vector
            expected_output: Target output vector
            learning_rate: Step size of the weight update

        Returns:
            Mean squared error of the network *after* the update

        Raises:
            DimensionMismatchError: If either vector has the wrong length
        """
        expected = np.asarray(expected_output, dtype=np.float64)
        if len(expected) != self.output_size:
            raise DimensionMismatchError(
                f"Network has {self.output_size} outputs, "
                f"got {len(expected)} expected values"
            )
        self._set_input(inputs)

        output = self._feed_forward()

        deltas = expected - output
        for layer in reversed(self.layers):
            deltas = layer.update_deltas(deltas)

        # Every layer is updated with the activations of the forward pass
        # above, none are recomputed until all weights have moved
        layer_input = self.input
        for layer in self.layers:
            layer_input = layer.update_weights(layer_input, learning_rate)

        output = self._feed_forward()
        return float(np.mean((expected - output) ** 2))

    def train(
        self,
        examples: Iterable[Example],
        epochs: int,
        learning_rate: float,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None,
        yield_func: Optional[Callable[[], None]] = None
    ) -> List[float]:
        """
        Train on every example in order, ``epochs`` times.

        Args:
            examples: (input, expected_output) pairs
            epochs: Number of passes over ``examples``
            learning_rate: Step size of each weight update
            callback: Called after each epoch with a progress dict holding
                'epoch', 'total_epochs', 'mse' and 'elapsed_time'
            yield_func: Called after each example, lets cooperative
                schedulers run other tasks during long trainings

        Returns:
            Mean post-update MSE of each epoch
        """
        examples = list(examples)
        if not examples:
            raise ValueError("Training requires at least one example")
        if epochs < 1:
            raise ValueError(f"epochs must be positive, got {epochs}")

        history = []
        start = time.time()
        for epoch in range(1, epochs + 1):
            total = 0.0
            for inputs, expected in examples:
                total += self.train_single(inputs, expected, learning_rate)
                if yield_func:
                    yield_func()

            mse = total / len(examples)
            history.append(mse)
            logger.debug(f"Epoch {epoch}/{epochs}: mse={mse:.6f}")

            if callback:
                callback({
                    'epoch': epoch,
                    'total_epochs': epochs,
                    'mse': mse,
                    'elapsed_time': time.time() - start
                })

        return history

    def write(self, stream: BinaryIO) -> None:
        """
        Serialize the network header followed by every layer.

        Raises:
            PersistenceIOError: If the stream rejects a write
        """
        codec.write_line(stream, 'NETWORK')
        codec.write_line(stream, 'input_size', self.input_size)
        codec.write_line(stream, 'layers', len(self.layers))
        for layer in self.layers:
            layer.write(stream)

    @classmethod
    def read(
        cls,
        stream: BinaryIO,
        activation: Activation = DEFAULT_ACTIVATION
    ) -> 'Network':
        """
        Read a network previously written with ``write``.

        The format does not record the activation function; it must be the
        one the network was trained with.

        Raises:
            MalformedRecordError: If any part of the document is malformed
            PersistenceIOError: If the stream cannot be read
        """
        codec.expect_keyword(stream, 'NETWORK')

        input_size = codec.read_count(stream, 'input_size')
        if input_size < 1:
            raise MalformedRecordError("Network declares no inputs")

        layer_count = codec.read_count(stream, 'layers')
        if layer_count < 1:
            raise MalformedRecordError("Network declares no layers")

        layers = []
        previous_size = input_size
        for index in range(layer_count):
            try:
                layer = Layer.read(stream, previous_size, activation)
            except MalformedRecordError as e:
                raise MalformedRecordError(f"Layer {index}: {e}") from e
            layers.append(layer)
            previous_size = len(layer)

        return cls.from_layers(input_size, layers, activation)

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes}, activation={self.activation.value})"
