"""
test_network.py
~~~~~~~~~~~~~~~

Unit and integration tests for the network: construction, inference,
and backpropagation training.
"""

import numpy as np
import pytest

from neural.activation import Activation
from neural.exceptions import DimensionMismatchError
from neural.layer import Layer
from neural.network import Network


@pytest.mark.unit
class TestNetworkConstruction:

    def test_sizes(self, deep_network):
        assert deep_network.sizes == [4, 5, 6, 3]
        assert deep_network.input_size == 4
        assert deep_network.output_size == 3
        assert len(deep_network.hidden_layers) == 2

    def test_layer_chain_dimensions(self, deep_network):
        expected_inputs = deep_network.input_size
        for layer in deep_network.layers:
            assert layer.input_size == expected_inputs
            expected_inputs = len(layer)

    def test_zero_hidden_layers(self, rng):
        net = Network(2, 1, [], rng=rng)

        assert net.sizes == [2, 1]
        assert net.hidden_layers == []
        assert net.output_layer.input_size == 2
        assert net.run([0.5, -0.5]).shape == (1,)

    @pytest.mark.parametrize('input_size,output_size,hidden', [
        (0, 1, []),
        (2, 0, []),
        (2, 1, [3, 0]),
    ])
    def test_invalid_sizes(self, input_size, output_size, hidden):
        with pytest.raises(ValueError):
            Network(input_size, output_size, hidden)

    def test_activation_applies_to_all_neurons(self, rng):
        net = Network(2, 2, [3], activation=Activation.SIGMOID, rng=rng)
        assert all(
            neuron.activation is Activation.SIGMOID
            for layer in net.layers for neuron in layer.neurons
        )

    def test_from_layers_checks_chain(self, rng):
        first = Layer.random(3, 2, rng=rng)
        second = Layer.random(1, 4, rng=rng)

        with pytest.raises(DimensionMismatchError):
            Network.from_layers(2, [first, second])

    def test_from_layers_checks_input_size(self, rng):
        with pytest.raises(DimensionMismatchError):
            Network.from_layers(3, [Layer.random(1, 2, rng=rng)])

    def test_from_layers_needs_output_layer(self):
        with pytest.raises(ValueError):
            Network.from_layers(2, [])


@pytest.mark.unit
class TestNetworkRun:

    def test_run_is_deterministic(self, deep_network):
        x = [0.1, -0.2, 0.3, 0.9]
        first = deep_network.run(x)
        second = deep_network.run(x)
        np.testing.assert_array_equal(first, second)

    def test_run_does_not_change_weights(self, deep_network):
        before = deep_network.weights
        deep_network.run([1.0, 1.0, 1.0, 1.0])
        for old, new in zip(before, deep_network.weights):
            np.testing.assert_array_equal(old, new)

    def test_run_returns_copy(self, simple_network):
        output = simple_network.run([0.0, 0.5, 1.0])
        output[0] = 42.0
        assert simple_network.output_layer.output[0] != 42.0

    def test_run_output_range(self, deep_network):
        output = deep_network.run([5.0, -5.0, 2.0, 0.0])
        assert np.all(output > -1.0) and np.all(output < 1.0)

    def test_run_wrong_input_length(self, simple_network):
        with pytest.raises(DimensionMismatchError):
            simple_network.run([1.0, 2.0])

    def test_matches_hand_computation(self):
        hidden = Layer.from_weights([[0.5, 0.5, 0.0], [-0.5, 0.5, 0.1]], 2)
        output = Layer.from_weights([[1.0, -1.0, 0.2]], 2)
        net = Network.from_layers(2, [hidden, output])

        h = np.tanh([0.5 * 1.0 + 0.5 * 0.5, -0.5 * 1.0 + 0.5 * 0.5 + 0.1])
        expected = np.tanh(h[0] - h[1] + 0.2)

        assert net.run([1.0, 0.5])[0] == pytest.approx(expected)


@pytest.mark.unit
class TestTrainSingle:

    def test_returns_post_update_error(self, simple_network):
        x, y = [0.2, -0.4, 0.6], [0.5, -0.5]
        mse = simple_network.train_single(x, y, 0.1)

        output = simple_network.run(x)
        assert mse == pytest.approx(np.mean((np.array(y) - output) ** 2))

    def test_error_strictly_decreases(self, deep_network):
        x, y = [0.3, -0.2, 0.5, 0.1], [0.5, -0.3, 0.2]
        errors = [deep_network.train_single(x, y, 0.1) for _ in range(50)]

        assert all(later < earlier for earlier, later in zip(errors, errors[1:]))

    def test_updates_every_layer(self, deep_network):
        before = deep_network.weights
        deep_network.train_single([0.3, -0.2, 0.5, 0.1], [0.9, 0.9, 0.9], 0.5)
        for old, new in zip(before, deep_network.weights):
            assert not np.array_equal(old, new)

    def test_wrong_expected_length(self, simple_network):
        with pytest.raises(DimensionMismatchError):
            simple_network.train_single([0.0, 0.0, 0.0], [1.0], 0.1)

    def test_wrong_input_length(self, simple_network):
        with pytest.raises(DimensionMismatchError):
            simple_network.train_single([0.0], [1.0, 0.0], 0.1)

    def test_single_step_matches_gradient(self):
        """One step on a zero-hidden network is plain delta-rule descent."""
        net = Network.from_layers(
            2, [Layer.from_weights([[0.2, -0.3, 0.1]], 2, Activation.SIGMOID)],
            Activation.SIGMOID
        )
        x, target, rate = np.array([1.0, 2.0]), 1.0, 0.5

        y = 1.0 / (1.0 + np.exp(-(0.2 - 0.6 + 0.1)))
        delta = y * (1.0 - y) * (target - y)
        expected = np.array([0.2, -0.3, 0.1]) + rate * delta * np.array([1.0, 2.0, 1.0])

        net.train_single(x, [target], rate)

        np.testing.assert_allclose(net.weights[0][0], expected)


@pytest.mark.integration
class TestTraining:

    def test_train_reports_history(self, simple_network):
        examples = [([0.1, 0.2, 0.3], [0.5, -0.5]), ([0.3, 0.2, 0.1], [-0.5, 0.5])]
        updates = []

        history = simple_network.train(
            examples, epochs=5, learning_rate=0.1, callback=updates.append
        )

        assert len(history) == 5
        assert [u['epoch'] for u in updates] == [1, 2, 3, 4, 5]
        assert all(u['total_epochs'] == 5 for u in updates)
        assert updates[-1]['mse'] == history[-1]

    def test_train_calls_yield_func(self, simple_network):
        calls = []
        simple_network.train(
            [([0.0, 0.0, 0.0], [0.0, 0.0])] * 3, epochs=2, learning_rate=0.1,
            yield_func=lambda: calls.append(1)
        )
        assert len(calls) == 6

    def test_train_rejects_empty_examples(self, simple_network):
        with pytest.raises(ValueError):
            simple_network.train([], epochs=1, learning_rate=0.1)

    def test_xor(self, xor_examples):
        """
        A 2-2-1 network learns XOR.

        Two hidden units can end up in a local minimum for an unlucky
        start, so a few seeds are tried.
        """
        for seed in range(10):
            net = Network(2, 1, [2], rng=np.random.default_rng(seed))
            for _ in range(2000):
                for x, y in xor_examples:
                    net.train_single(x, y, 0.5)

            if all(abs(net.run(x)[0] - y[0]) < 0.2 for x, y in xor_examples):
                break
        else:
            pytest.fail("No seed learned XOR within 2000 epochs")

        assert net.run([0, 0])[0] == pytest.approx(0.0, abs=0.2)
        assert net.run([1, 1])[0] == pytest.approx(0.0, abs=0.2)
        assert net.run([1, 0])[0] == pytest.approx(1.0, abs=0.2)
        assert net.run([0, 1])[0] == pytest.approx(1.0, abs=0.2)
