"""
network.py
~~~~~~~~~~

Three-layer feed-forward network (input, hidden, output) with sigmoid
activations, trained one example at a time by stochastic gradient descent.

The two weight matrices are laid out row = current-layer neuron,
column = previous-layer neuron:

- ``input_weights``:  hidden_size x input_size
- ``hidden_weights``: output_size x hidden_size

There are no biases. Gradients are derived by hand; see ``Network.train``.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numpy as np

from digitnet import weights
from digitnet.activation import ActivationFunction
from digitnet.errors import PersistenceError
from digitnet.matrix import Matrix

logger = logging.getLogger(__name__)

#: Target value for every output neuron except the correct one.
LABEL_FLOOR = 0.01

ProgressCallback = Callable[[int, int], None]
MatchCallback = Callable[[int, int, int], None]


@dataclass(frozen=True)
class TrainingLabel:
    """
    One labelled example.

    Attributes:
        class_index: The correct class, ``0 <= class_index < output_size``
        label: Target column vector, 1.0 at ``class_index`` and 0.01 elsewhere
        input: Input column vector
    """
    class_index: int
    label: Matrix
    input: Matrix

    @classmethod
    def from_class_index(
        cls,
        class_index: int,
        input_vector: Matrix,
        output_size: int
    ) -> 'TrainingLabel':
        """
        Build a training label with a one-hot-ish target vector.

        Raises:
            ValueError: If ``class_index`` is outside ``[0, output_size)``
        """
        if not 0 <= class_index < output_size:
            raise ValueError(
                f"class_index must be in [0, {output_size}), got {class_index}"
            )

        label = Matrix.column_vector(
            1.0 if i == class_index else LABEL_FLOOR
            for i in range(output_size)
        )
        return cls(class_index, label, input_vector)


class Network:
    """
    Fully-connected input -> hidden -> output network.

    Example:
        >>> net = Network(784, 300, 10, learning_rate=0.3)
        >>> net.train(training_set)
        >>> digit = net.query(training_set[0].input)
    """

    def __init__(
        self,
        input_size: int,
        hidden_size: int,
        output_size: int,
        learning_rate: float,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Create a network with random weights in [-1, 1].

        Args:
            input_size: Number of input neurons
            hidden_size: Number of hidden neurons
            output_size: Number of output neurons (classes)
            learning_rate: Gradient descent step size
            rng: Optional generator used for the initial weights

        Raises:
            ValueError: If a size is not positive or the learning rate is
                not a positive number
        """
        for name, size in (('input_size', input_size),
                           ('hidden_size', hidden_size),
                           ('output_size', output_size)):
            if isinstance(size, bool) or not isinstance(size, int) or size < 1:
                raise ValueError(f"{name} must be a positive integer, got {size!r}")
        if isinstance(learning_rate, bool) or not isinstance(learning_rate, (int, float)) \
                or not learning_rate > 0:
            raise ValueError(f"learning_rate must be a positive number, got {learning_rate!r}")

        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size
        self.learning_rate = float(learning_rate)

        self.input_weights = Matrix.random_uniform(hidden_size, input_size, rng=rng)
        self.hidden_weights = Matrix.random_uniform(output_size, hidden_size, rng=rng)

        self._activator = ActivationFunction()

    @property
    def sizes(self) -> List[int]:
        return [self.input_size, self.hidden_size, self.output_size]

    @property
    def weight_shapes(self) -> List[tuple]:
        """Shapes of the weight matrices, in serialization order."""
        return [
            (self.hidden_size, self.input_size),
            (self.output_size, self.hidden_size)
        ]

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes}, learning_rate={self.learning_rate})"

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def feedforward(self, input_vector: Matrix) -> Matrix:
        """
        Run the forward pass.

        Args:
            input_vector: input_size x 1 column vector

        Returns:
            Matrix: output_size x 1 vector of output activations
        """
        hidden_output = self._activator.activate(self.input_weights @ input_vector)
        return self._activator.activate(self.hidden_weights @ hidden_output)

    def query(self, input_vector: Matrix) -> int:
        """
        Return the index of the most strongly activated output neuron.

        Ties go to the lowest index. Interpreting the index is up to the
        caller (for MNIST it is the digit).
        """
        output = self.feedforward(input_vector)

        result = 0
        best = output[0, 0]
        for i in range(1, self.output_size):
            if output[i, 0] > best:
                result = i
                best = output[i, 0]
        return result

    def evaluate(
        self,
        training_set: Sequence[TrainingLabel],
        callback: Optional[MatchCallback] = None
    ) -> int:
        """
        Count the examples the network classifies correctly.

        Args:
            training_set: Labelled examples
            callback: Called as ``callback(count, total, correct)`` after each
                example, with the number of correct predictions so far

        Returns:
            int: Number of examples where ``query(input) == class_index``
        """
        correct = 0
        total = len(training_set)

        for count, training_label in enumerate(training_set, start=1):
            if self.query(training_label.input) == training_label.class_index:
                correct += 1
            if callback is not None:
                callback(count, total, correct)

        logger.debug(f"Evaluated {total} examples: {correct} correct")
        return correct

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(
        self,
        training_set: Sequence[TrainingLabel],
        callback: Optional[ProgressCallback] = None
    ) -> int:
        """
        Run one epoch of stochastic gradient descent over ``training_set``.

        Examples are used in the order given and the weights are updated
        after every example, so the order affects the result. For each
        example, with sigmoid' the derivative of the sigmoid and (.) the
        Hadamard product::

            hidden_in  = input_weights . input
            hidden_out = sigmoid(hidden_in)
            out_in     = hidden_weights . hidden_out
            out        = sigmoid(out_in)

            output_error = label - out
            hidden_error = hidden_weights^T . output_error

            d_out    = (-output_error (.) sigmoid'(out_in)) . hidden_out^T
            d_hidden = (-hidden_error (.) sigmoid'(hidden_in)) . input^T

            hidden_weights -= learning_rate * d_out
            input_weights  -= learning_rate * d_hidden

        Args:
            training_set: Labelled examples
            callback: Called as ``callback(count, total)`` after each
                example; the natural place to report progress or yield

        Returns:
            int: Number of examples trained on
        """
        activator = self._activator
        total = len(training_set)
        logger.debug(f"Training {self!r} on {total} examples")

        for count, training_label in enumerate(training_set, start=1):
            hidden_input = self.input_weights @ training_label.input
            hidden_output = activator.activate(hidden_input)

            output_input = self.hidden_weights @ hidden_output
            output = activator.activate(output_input)

            output_errors = training_label.label - output
            # Uses hidden_weights before this example's update.
            hidden_errors = self.hidden_weights.T @ output_errors

            output_gradient = (
                (-output_errors * activator.activate(output_input, derivative=True))
                @ hidden_output.T
            )
            hidden_gradient = (
                (-hidden_errors * activator.activate(hidden_input, derivative=True))
                @ training_label.input.T
            )

            self.hidden_weights = self.hidden_weights - self.learning_rate * output_gradient
            self.input_weights = self.input_weights - self.learning_rate * hidden_gradient

            if callback is not None:
                callback(count, total)

        logger.debug(f"Finished training on {total} examples")
        return total

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def dump_weights_to_text(self) -> str:
        """Serialize both weight matrices (input weights first)."""
        return weights.dumps([self.input_weights, self.hidden_weights])

    def load_weights_from_text(self, text: str) -> bool:
        """
        Replace both weight matrices with the ones serialized in ``text``.

        Returns:
            bool: True on success. On failure the current weights are kept.
        """
        try:
            input_weights, hidden_weights = weights.loads(text, self.weight_shapes)
        except PersistenceError as e:
            logger.warning(f"Unable to parse weights: {e}")
            return False

        self.input_weights = input_weights
        self.hidden_weights = hidden_weights
        return True

    def dump_weights_to_file(self, path: str) -> bool:
        """
        Write both weight matrices to ``path``.

        Returns:
            bool: True if the file was written, False otherwise
        """
        try:
            weights.dump(path, [self.input_weights, self.hidden_weights])
        except PersistenceError as e:
            logger.warning(f"Unable to write weights to file: {e}")
            return False

        logger.info(f"Dumped weights for {self!r} to {path}")
        return True

    def load_weights_from_file(self, path: str) -> bool:
        """
        Load both weight matrices from a file written by ``dump_weights_to_file``.

        Either both matrices are replaced or neither is: a missing,
        truncated or corrupt file leaves the current weights in place.

        Returns:
            bool: True if the weights were loaded, False otherwise
        """
        try:
            input_weights, hidden_weights = weights.load(path, self.weight_shapes)
        except PersistenceError as e:
            logger.warning(f"Unable to load weights from file: {e}")
            return False

        self.input_weights = input_weights
        self.hidden_weights = hidden_weights
        logger.info(f"Loaded weights for {self!r} from {path}")
        return True
