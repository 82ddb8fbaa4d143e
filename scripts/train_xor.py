#!/usr/bin/env python3
"""
Train a small network on XOR and save it in the weight format.

Usage:
    python scripts/train_xor.py [output_path]

The script will:
1. Train a 2-2-1 tanh network on the four XOR pairs
2. Save it to output_path (default: models/xor.nn)
3. Reload the saved file and verify it produces identical outputs
"""

import os
import sys
from typing import List, Tuple

import numpy as np

from neural.network import Network
from neural.model_persistence import save_network_file, load_network_file

XOR_EXAMPLES: List[Tuple[List[float], List[float]]] = [
    ([0.0, 0.0], [0.0]),
    ([0.0, 1.0], [1.0]),
    ([1.0, 0.0], [1.0]),
    ([1.0, 1.0], [0.0]),
]


def train_xor(epochs: int = 2000, learning_rate: float = 0.5) -> Network:
    """
    Train a fresh 2-2-1 network on XOR.

    Parameters:
    -----------
    epochs : int
        Passes over the four XOR pairs
    learning_rate : float
        Step size of each weight update

    Returns:
    --------
    Network
        The trained network
    """
    print(f"🧠 Training 2-2-1 network: {epochs} epochs, learning rate {learning_rate}")

    net = Network(2, 1, [2])
    history = net.train(XOR_EXAMPLES, epochs, learning_rate)

    print(f"✅ Training done, final MSE: {history[-1]:.6f}")
    for inputs, expected in XOR_EXAMPLES:
        output = net.run(inputs)[0]
        print(f"   {inputs} -> {output:+.4f} (expected {expected[0]:.0f})")

    return net


def verify_saved(net: Network, path: str) -> bool:
    """
    Reload ``path`` and compare its outputs with ``net``.

    Returns:
    --------
    bool
        True if every XOR input gives identical output
    """
    print(f"\n🔍 Verifying {path}...")

    loaded = load_network_file(path)
    if loaded is None:
        print("❌ Saved network could not be loaded")
        return False

    for inputs, _ in XOR_EXAMPLES:
        if not np.array_equal(net.run(inputs), loaded.run(inputs)):
            print(f"❌ Output mismatch for input {inputs}")
            return False

    print("✅ Verification passed! Outputs are identical.")
    return True


def main():
    """Train, save and verify."""
    print("=" * 60)
    print("XOR Training Demo")
    print("=" * 60)

    output_path = sys.argv[1] if len(sys.argv) > 1 else os.path.join('models', 'xor.nn')
    output_dir = os.path.dirname(output_path)
    if output_dir and not os.path.exists(output_dir):
        os.makedirs(output_dir)

    net = train_xor()

    print(f"\n💾 Saving network to: {output_path}")
    if not save_network_file(net, output_path):
        print("❌ Save failed")
        sys.exit(1)

    if not verify_saved(net, output_path):
        sys.exit(1)


if __name__ == '__main__':
    main()
