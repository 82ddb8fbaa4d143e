"""
conftest.py
~~~~~~~~~~~

Shared fixtures for the test suite.
"""

import os
import tempfile

import numpy as np
import pytest

# The API server reloads its model store on import, keep it out of the repo
os.environ.setdefault('NEURAL_MODEL_DIR', tempfile.mkdtemp(prefix='neural-models-'))

from neural.network import Network


@pytest.fixture
def xor_examples():
    """The four XOR input/output pairs."""
    return [
        ([0.0, 0.0], [0.0]),
        ([0.0, 1.0], [1.0]),
        ([1.0, 0.0], [1.0]),
        ([1.0, 1.0], [0.0]),
    ]


@pytest.fixture
def rng():
    """Seeded random generator for reproducible weights."""
    return np.random.default_rng(1234)


@pytest.fixture
def simple_network(rng):
    """Create a 3-4-2 network for testing."""
    return Network(3, 2, [4], rng=rng)


@pytest.fixture
def deep_network(rng):
    """Create a network with two hidden layers."""
    return Network(4, 3, [5, 6], rng=rng)


@pytest.fixture
def trained_network(simple_network, rng):
    """A simple network with some training applied."""
    examples = [
        (rng.uniform(-1, 1, 3), [1.0, 0.0] if i % 2 else [0.0, 1.0])
        for i in range(10)
    ]
    simple_network.train(examples, epochs=3, learning_rate=0.1)
    return simple_network
