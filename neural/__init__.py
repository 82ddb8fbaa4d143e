"""
neural package
~~~~~~~~~~~~~~

Feedforward neural network (multilayer perceptron) built from individual
neurons. Contains the neuron/layer/network engine, the text and binary
weight format, SQLite model storage, and the API server.
"""

__version__ = "1.0.0"
