#!/usr/bin/env python3
"""
Convert an MNIST NPZ archive to CSV rows.

The command-line trainer reads ``label,pixel_0,...,pixel_783`` rows from
standard input. This script writes one split of ``mnist.npz`` (keys
``train_images``/``train_labels``, ``val_*`` and ``test_*``) in that format.

Usage:
    python scripts/convert_mnist_to_csv.py data/mnist.npz data/mnist_test.csv
    python scripts/convert_mnist_to_csv.py data/mnist.npz data/mnist_train.csv --split train

Then:
    python -m digitnet -v < data/mnist_test.csv
"""

import argparse
import os
import sys

from digitnet.mnist_loader import load_npz, write_csv_rows


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Write one split of an MNIST .npz archive as CSV rows."
    )
    parser.add_argument("npz_path", help="Path to mnist.npz")
    parser.add_argument("csv_path", help="Output CSV file")
    parser.add_argument(
        "--split",
        choices=("train", "val", "test"),
        default="test",
        help="Which split to convert (default: test)",
    )
    return parser


def main() -> None:
    """Main conversion function."""
    args = build_parser().parse_args()

    if not os.path.exists(args.npz_path):
        print(f"❌ Error: archive not found: {args.npz_path}")
        sys.exit(1)

    try:
        print(f"📂 Loading {args.split} split from: {args.npz_path}")
        images, labels = load_npz(args.npz_path, args.split)

        print(f"💾 Writing CSV rows to: {args.csv_path}")
        with open(args.csv_path, "w", encoding="utf-8") as f:
            count = write_csv_rows(images, labels, f)

        print(f"✅ Wrote {count} rows")

    except (KeyError, ValueError, OSError) as e:
        print(f"\n❌ Error during conversion: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
