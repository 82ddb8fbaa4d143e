"""
exceptions.py
~~~~~~~~~~~~~

Error types raised by the network engine and its weight format.
"""


class NeuralNetworkError(Exception):
    """Base class for all errors raised by the neural package."""


class DimensionMismatchError(NeuralNetworkError, ValueError):
    """A vector or layer has the wrong length for the operation."""


class MalformedRecordError(NeuralNetworkError):
    """A serialized network could not be parsed."""


class PersistenceIOError(NeuralNetworkError, OSError):
    """The underlying stream could not be read from or written to."""
