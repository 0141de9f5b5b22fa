#!/usr/bin/env python3
"""
Train a small network on the XOR problem.

Usage:
    python scripts/train_xor.py [--epochs 20000] [--seed 7] [--save xor_demo]

The script will:
1. Build a 2 -> 4 -> 1 network (tanh hidden layer, sigmoid output)
2. Print predictions before training
3. Train with online SGD, logging progress ten times
4. Print predictions after training
5. Optionally save the trained network to the model database
"""

import os
import sys
import argparse
import logging
from typing import Dict, List

# Make the fenix package importable when run from a checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fenix import Network, activations
from fenix.model_persistence import save_network

XOR_DATA: List[Dict[str, List[float]]] = [
    {'input': [0, 0], 'target': [0]},
    {'input': [0, 1], 'target': [1]},
    {'input': [1, 0], 'target': [1]},
    {'input': [1, 1], 'target': [0]},
]


def print_predictions(network: Network, title: str) -> int:
    """
    Print the network output for every XOR example.

    Returns:
    --------
    int
        Number of examples predicted within 0.1 of the target
    """
    print(f"\n{title}")
    correct = 0
    for example in XOR_DATA:
        prediction = float(network.predict(example['input'])[0])
        is_correct = abs(prediction - example['target'][0]) < 0.1
        correct += int(is_correct)
        mark = '✅' if is_correct else '❌'
        print(
            f"   {example['input']} -> {prediction:.4f} "
            f"(expected: {example['target'][0]}) {mark}"
        )
    return correct


def main():
    """Build, train and report on an XOR network."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--epochs', type=int, default=20000)
    parser.add_argument('--learning-rate', type=float, default=0.3)
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--save', metavar='NETWORK_ID', default=None,
                        help='save the trained network under this ID')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("=" * 60)
    print("Fenix - XOR")
    print("=" * 60)

    network = (
        Network(learning_rate=args.learning_rate, seed=args.seed)
        .add_layer(4, activations.tanh, input_size=2)
        .add_layer(1, activations.sigmoid)
    )
    print(f"\n🧠 Architecture: {network.get_info()}")

    print_predictions(network, "📊 Before training:")

    network.train(XOR_DATA, args.epochs, verbose=True)

    correct = print_predictions(network, "🎯 After training:")
    print(f"\n{correct}/{len(XOR_DATA)} correct, "
          f"final error {network.get_info()['last_error']:.6f}")

    if args.save:
        if save_network(network, args.save, trained=True,
                        final_error=network.get_info()['last_error']):
            print(f"💾 Saved as '{args.save}'")
        else:
            print(f"❌ Could not save '{args.save}'")
            sys.exit(1)


if __name__ == '__main__':
    main()
