"""
cli.py
~~~~~~

Command-line driver: train a network on CSV rows from standard input and
report how many of those rows it then classifies correctly.

Usage:
    python -m digitnet [-v] [-d] [-l] < data/mnist_test.csv

Flags:
    -v  Verbose output (progress percentages and debug logging)
    -d  Dump network weights to the weights file after training
    -l  Load network weights from the weights file instead of training

If loading fails, the network is trained from scratch. Any other argument
prints this usage and exits with status 0.
"""

import argparse
import logging
import sys
import time
from typing import IO, Callable, List, Optional, Tuple

from digitnet import config
from digitnet.mnist_loader import parse_training_set
from digitnet.network import Network

logger = logging.getLogger(__name__)

FLAGS = ('-v', '-d', '-l')


class UsageError(Exception):
    """Raised instead of exiting when the arguments cannot be parsed."""


class _Parser(argparse.ArgumentParser):

    def error(self, message):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog='digitnet',
        usage='%(prog)s [-v] [-d] [-l] < data/mnist_test.csv',
        description='Train a 784-300-10 digit classifier on CSV rows read '
                    'from standard input.',
        add_help=False
    )
    parser.add_argument('-v', dest='verbose', action='store_true',
                        help='Enable verbose output.')
    parser.add_argument('-d', dest='dump_weights', action='store_true',
                        help='Dump network weights after training.')
    parser.add_argument('-l', dest='load_weights', action='store_true',
                        help='Load network weights from previous training.')
    return parser


class ProgressPrinter:
    """
    Rewrites one console line with ``title: count / total (pct%)``.

    When called with a match count, the line also shows
    ``, matches matches (pct%)`` out of the total.
    """

    def __init__(self, title: str, stream: IO[str], enabled: bool = True):
        self.title = title
        self.stream = stream
        self.enabled = enabled
        self._printed = False

    def __call__(self, count: int, total: int, matches: Optional[int] = None) -> None:
        if not self.enabled:
            return
        line = f"\r{self.title}: {count} / {total} ({percentage(count, total):.2f}%)"
        if matches is not None:
            line += f", {matches} matches ({percentage(matches, total):.2f}%)"
        self.stream.write(line)
        self.stream.flush()
        self._printed = True

    def end(self) -> None:
        if self._printed:
            self.stream.write('\n')
            self.stream.flush()


def percentage(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return count / total * 100.0


def time_function(func: Callable[[], object]) -> Tuple[object, float]:
    """Run ``func`` and return its result and the elapsed milliseconds."""
    start = time.perf_counter()
    result = func()
    return result, (time.perf_counter() - start) * 1000.0


def run(
    args: argparse.Namespace,
    stdin: IO[str],
    stdout: IO[str],
    weights_file: str = config.WEIGHTS_FILE
) -> int:
    network = Network(
        config.INPUT_SIZE,
        config.HIDDEN_SIZE,
        config.OUTPUT_SIZE,
        config.LEARNING_RATE
    )

    training_set, parse_ms = time_function(lambda: parse_training_set(stdin))

    def train() -> None:
        # A successful load skips training entirely
        if args.load_weights:
            if network.load_weights_from_file(weights_file):
                return
            logger.info("Falling back to full training of the network")

        progress = ProgressPrinter('Training Network', stdout, args.verbose)
        network.train(training_set, callback=progress)
        progress.end()

    _, train_ms = time_function(train)

    if args.dump_weights:
        network.dump_weights_to_file(weights_file)

    progress = ProgressPrinter('Counting Correct Predictions', stdout, args.verbose)
    matches, match_ms = time_function(
        lambda: network.evaluate(training_set, callback=progress)
    )
    progress.end()

    total = len(training_set)
    stdout.write(
        "Neural Network Stats:\n"
        f"  Matches: {matches} / {total} ({percentage(matches, total):.2f}%)\n"
        f"  Parsing time: {parse_ms:.0f}ms\n"
        f"  Training time: {train_ms:.0f}ms\n"
        f"  Matching time: {match_ms:.0f}ms\n"
    )
    return 0


def main(
    argv: Optional[List[str]] = None,
    stdin: Optional[IO[str]] = None,
    stdout: Optional[IO[str]] = None
) -> int:
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()

    # Flags are matched as whole tokens, so grouped forms like -vd are unknown.
    unknown = [arg for arg in argv if arg not in FLAGS]
    if not unknown:
        try:
            args, unknown = parser.parse_known_args(argv)
        except UsageError:
            unknown = ['?']

    # Unrecognized arguments print the usage and exit successfully.
    if unknown:
        parser.print_help(stdout)
        return 0

    config.configure_logging(logging.DEBUG if args.verbose else None)

    try:
        return run(args, stdin, stdout)
    except ValueError as e:
        logger.error(f"Unable to read training data: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
