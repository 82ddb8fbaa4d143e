"""
codec.py
~~~~~~~~

Low-level helpers for the network weight format.

The format mixes ASCII header lines with raw weight blobs::

    NETWORK
    input_size 2
    layers 1
    LAYER
    inputs 2
    neurons 1
    NEURON
    size 3
    data <3 little-endian float64 values>\\n

Header fields are separated by a single space and every line ends with
``\\n``. Weight blobs are read by length, never by line, since the raw
bytes may themselves contain newlines.
"""

from typing import BinaryIO

import numpy as np

from .exceptions import MalformedRecordError, PersistenceIOError

# Weights are always stored as little-endian IEEE-754 doubles
WEIGHT_DTYPE = np.dtype('<f8')

# Longest header line we accept before declaring the stream garbage
MAX_HEADER_LINE = 64

# Weight blobs are read at most this many bytes at a time
READ_CHUNK_SIZE = 64 * 1024

DATA_PREFIX = b'data '


def write_bytes(stream: BinaryIO, data: bytes) -> None:
    """
    Write ``data`` to ``stream``, checking that all of it was accepted.

    Raises:
        PersistenceIOError: If the stream refuses or truncates the write
    """
    try:
        written = stream.write(data)
    except (OSError, ValueError) as e:
        raise PersistenceIOError(f"Failed to write to stream: {e}") from e

    # Raw (unbuffered) streams may report short writes instead of raising
    if written is not None and written != len(data):
        raise PersistenceIOError(
            f"Short write: {written} of {len(data)} bytes written"
        )


def write_line(stream: BinaryIO, *fields) -> None:
    """Write space-separated fields followed by a newline."""
    line = ' '.join(str(field) for field in fields) + '\n'
    write_bytes(stream, line.encode('ascii'))


def write_weights(stream: BinaryIO, weights: np.ndarray) -> None:
    """Write a ``data`` record: prefix, raw doubles, terminating newline."""
    blob = np.asarray(weights, dtype=WEIGHT_DTYPE).tobytes()
    write_bytes(stream, DATA_PREFIX + blob + b'\n')


def read_exact(stream: BinaryIO, count: int, what: str) -> bytes:
    """
    Read exactly ``count`` bytes.

    Reads in bounded chunks, so a corrupt header declaring an enormous
    size runs into the end of the stream instead of a huge allocation.

    Raises:
        MalformedRecordError: If the stream ends early
        PersistenceIOError: If the stream cannot be read
    """
    chunks = []
    remaining = count
    while remaining > 0:
        try:
            chunk = stream.read(min(remaining, READ_CHUNK_SIZE))
        except (OSError, ValueError) as e:
            raise PersistenceIOError(f"Failed to read {what}: {e}") from e

        if not chunk:
            raise MalformedRecordError(
                f"Truncated {what}: expected {count} bytes, got {count - remaining}"
            )
        chunks.append(chunk)
        remaining -= len(chunk)

    return b''.join(chunks)


def read_line(stream: BinaryIO) -> str:
    """
    Read one ASCII header line and return it without its newline.

    Raises:
        MalformedRecordError: On end of stream, overlong or non-ASCII lines
        PersistenceIOError: If the stream cannot be read
    """
    try:
        raw = stream.readline(MAX_HEADER_LINE)
    except (OSError, ValueError) as e:
        raise PersistenceIOError(f"Failed to read header line: {e}") from e

    if not raw:
        raise MalformedRecordError("Premature end of stream")
    if not raw.endswith(b'\n'):
        raise MalformedRecordError(f"Unterminated header line: {raw!r}")

    try:
        return raw[:-1].decode('ascii')
    except UnicodeDecodeError as e:
        raise MalformedRecordError(f"Header line is not ASCII: {raw!r}") from e


def expect_keyword(stream: BinaryIO, keyword: str) -> None:
    """Consume a line consisting of exactly ``keyword``."""
    line = read_line(stream)
    if line != keyword:
        raise MalformedRecordError(f"Expected '{keyword}', found '{line}'")


def read_count(stream: BinaryIO, keyword: str) -> int:
    """
    Consume a ``<keyword> <int>`` line and return the integer.

    Raises:
        MalformedRecordError: If the keyword differs or the value is not a
            non-negative decimal integer
    """
    line = read_line(stream)
    fields = line.split(' ')
    if len(fields) != 2 or fields[0] != keyword:
        raise MalformedRecordError(f"Expected '{keyword} <int>', found '{line}'")

    value = fields[1]
    if not value.isdigit():
        raise MalformedRecordError(f"Invalid value for '{keyword}': '{value}'")
    return int(value)


def read_weights(stream: BinaryIO, size: int) -> np.ndarray:
    """
    Consume a ``data`` record holding ``size`` doubles.

    Returns:
        A writable float64 array in native byte order
    """
    prefix = read_exact(stream, len(DATA_PREFIX), 'data prefix')
    if prefix != DATA_PREFIX:
        raise MalformedRecordError(f"Expected 'data ', found {prefix!r}")

    blob = read_exact(stream, size * WEIGHT_DTYPE.itemsize, 'weight data')
    terminator = read_exact(stream, 1, 'record terminator')
    if terminator != b'\n':
        raise MalformedRecordError(
            f"Expected newline after weight data, found {terminator!r}"
        )

    return np.frombuffer(blob, dtype=WEIGHT_DTYPE).astype(np.float64)
