"""
test_network.py
~~~~~~~~~~~~~~~

Tests for the three-layer network: inference, training and weight files.
"""

import os

import numpy as np
import pytest

from digitnet.activation import sigmoid
from digitnet.matrix import Matrix
from digitnet.network import LABEL_FLOOR, Network, TrainingLabel


def squared_error(net: Network, training_label: TrainingLabel) -> float:
    """Sum of squared differences between target and output."""
    errors = training_label.label - net.feedforward(training_label.input)
    return sum(value * value for value in errors.entries())


@pytest.fixture
def small_network():
    """A 2-2-2 network with fixed, non-random weights."""
    net = Network(2, 2, 2, learning_rate=0.1)
    net.input_weights = Matrix.from_rows([[0.1, 0.2], [0.3, 0.4]])
    net.hidden_weights = Matrix.from_rows([[0.5, -0.5], [0.25, 0.25]])
    return net


@pytest.fixture
def example():
    """Class 0 with input [0.5, 0.5]."""
    return TrainingLabel.from_class_index(0, Matrix.column_vector([0.5, 0.5]), 2)


@pytest.fixture
def mnist_network():
    """A seeded 784-30-10 network."""
    return Network(784, 30, 10, learning_rate=0.3, rng=np.random.default_rng(0))


@pytest.mark.unit
class TestTrainingLabel:
    """Test building labelled examples."""

    def test_one_hot_ish_label(self):
        """The correct class gets 1.0 and every other class 0.01."""
        input_vector = Matrix.column_vector([0.5] * 4)
        training_label = TrainingLabel.from_class_index(3, input_vector, 10)

        assert training_label.class_index == 3
        assert training_label.label.shape == (10, 1)
        assert training_label.label[3, 0] == 1.0
        for i in range(10):
            if i != 3:
                assert training_label.label[i, 0] == LABEL_FLOOR
        assert training_label.input is input_vector

    @pytest.mark.parametrize("class_index", [-1, 10, 11])
    def test_class_index_out_of_range(self, class_index):
        with pytest.raises(ValueError):
            TrainingLabel.from_class_index(class_index, Matrix.column_vector([0.5]), 10)

    def test_training_label_is_frozen(self, example):
        with pytest.raises(AttributeError):
            example.class_index = 1


@pytest.mark.unit
class TestConstruction:
    """Test network creation."""

    def test_weight_shapes(self):
        """Weights are hidden x input and output x hidden."""
        net = Network(5, 4, 3, learning_rate=0.2)

        assert net.sizes == [5, 4, 3]
        assert net.input_weights.shape == (4, 5)
        assert net.hidden_weights.shape == (3, 4)
        assert net.learning_rate == 0.2

    def test_initial_weights_in_range_and_non_zero(self, mnist_network):
        for weights in (mnist_network.input_weights, mnist_network.hidden_weights):
            values = weights.to_numpy()
            assert np.all(np.abs(values) <= 1.0)
            assert not np.any(values == 0.0)

    @pytest.mark.parametrize("sizes", [(0, 2, 2), (2, -1, 2), (2, 2, 0), (2.0, 2, 2)])
    def test_invalid_sizes(self, sizes):
        with pytest.raises(ValueError):
            Network(*sizes, learning_rate=0.1)

    @pytest.mark.parametrize("learning_rate", [0, -0.5, "fast", None])
    def test_invalid_learning_rate(self, learning_rate):
        with pytest.raises(ValueError):
            Network(2, 2, 2, learning_rate=learning_rate)


@pytest.mark.unit
class TestQuery:
    """Test forward inference."""

    def test_feedforward_matches_formula(self, small_network):
        """Output is sigmoid(W2 . sigmoid(W1 . x))."""
        x = np.array([[0.5], [0.5]])
        w1 = small_network.input_weights.to_numpy()
        w2 = small_network.hidden_weights.to_numpy()
        expected = sigmoid(w2 @ sigmoid(w1 @ x))

        output = small_network.feedforward(Matrix(2, 1, x))
        assert np.allclose(output.to_numpy(), expected)

    def test_query_returns_argmax(self, small_network):
        """The most strongly activated output wins."""
        output = small_network.feedforward(Matrix.column_vector([0.5, 0.5]))
        expected = int(np.argmax(output.to_numpy()))
        assert small_network.query(Matrix.column_vector([0.5, 0.5])) == expected

    def test_ties_go_to_lowest_index(self):
        """Identical outputs resolve to index 0."""
        net = Network(2, 2, 3, learning_rate=0.1)
        net.hidden_weights = Matrix.from_rows([[0.3, 0.3]] * 3)
        assert net.query(Matrix.column_vector([0.2, 0.9])) == 0

    def test_untrained_query_in_range(self, mnist_network):
        rng = np.random.default_rng(5)
        for _ in range(5):
            x = Matrix(784, 1, rng.uniform(0.01, 1.0, size=(784, 1)))
            assert 0 <= mnist_network.query(x) < 10

    def test_query_does_not_change_weights(self, small_network):
        before = (small_network.input_weights.copy(), small_network.hidden_weights.copy())
        small_network.query(Matrix.column_vector([0.5, 0.5]))
        assert small_network.input_weights == before[0]
        assert small_network.hidden_weights == before[1]

    def test_wrong_input_size_rejected(self, small_network):
        from digitnet.errors import DimensionMismatchError

        with pytest.raises(DimensionMismatchError):
            small_network.query(Matrix.column_vector([0.5, 0.5, 0.5]))


@pytest.mark.unit
class TestTrain:
    """Test one epoch of stochastic gradient descent."""

    def test_single_step_reduces_error(self, small_network, example):
        """One update on an example lowers its squared error."""
        before = squared_error(small_network, example)
        small_network.train([example])
        after = squared_error(small_network, example)

        assert after < before

    def test_update_matches_hand_computation(self, small_network, example):
        """The update follows the documented equations, signs included."""
        x = example.input.to_numpy()
        y = example.label.to_numpy()
        w1 = small_network.input_weights.to_numpy()
        w2 = small_network.hidden_weights.to_numpy()
        lr = small_network.learning_rate

        hidden_in = w1 @ x
        hidden_out = sigmoid(hidden_in)
        out_in = w2 @ hidden_out
        out = sigmoid(out_in)
        output_error = y - out
        hidden_error = w2.T @ output_error
        d_out = (-output_error * sigmoid(out_in) * (1 - sigmoid(out_in))) @ hidden_out.T
        d_hidden = (-hidden_error * sigmoid(hidden_in) * (1 - sigmoid(hidden_in))) @ x.T

        small_network.train([example])

        assert np.allclose(small_network.hidden_weights.to_numpy(), w2 - lr * d_out)
        assert np.allclose(small_network.input_weights.to_numpy(), w1 - lr * d_hidden)

    def test_order_matters(self, example):
        """Presenting the same examples in another order gives other weights."""
        other = TrainingLabel.from_class_index(1, Matrix.column_vector([0.9, 0.1]), 2)

        def fresh():
            net = Network(2, 2, 2, learning_rate=0.5)
            net.input_weights = Matrix.from_rows([[0.1, 0.2], [0.3, 0.4]])
            net.hidden_weights = Matrix.from_rows([[0.5, -0.5], [0.25, 0.25]])
            return net

        forward, backward = fresh(), fresh()
        forward.train([example, other])
        backward.train([other, example])

        assert forward.input_weights != backward.input_weights

    def test_callback_reports_each_example(self, small_network, example):
        calls = []
        count = small_network.train([example] * 3, callback=lambda n, total: calls.append((n, total)))

        assert count == 3
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_empty_training_set(self, small_network):
        before = small_network.input_weights.copy()
        assert small_network.train([]) == 0
        assert small_network.input_weights == before

    def test_repeated_epochs_learn_two_patterns(self):
        """Two distinct patterns become separable after repeated epochs."""
        net = Network(4, 3, 2, learning_rate=0.5, rng=np.random.default_rng(3))
        training_set = [
            TrainingLabel.from_class_index(0, Matrix.column_vector([0.99, 0.01, 0.99, 0.01]), 2),
            TrainingLabel.from_class_index(1, Matrix.column_vector([0.01, 0.99, 0.01, 0.99]), 2),
        ]

        for _ in range(500):
            net.train(training_set)

        assert net.evaluate(training_set) == 2


@pytest.mark.unit
class TestEvaluate:
    """Test counting correct predictions."""

    def test_counts_matches(self, small_network):
        x = Matrix.column_vector([0.5, 0.5])
        predicted = small_network.query(x)
        right = TrainingLabel.from_class_index(predicted, x, 2)
        wrong = TrainingLabel.from_class_index(1 - predicted, x, 2)

        assert small_network.evaluate([right, wrong, right]) == 2

    def test_evaluate_callback(self, small_network):
        x = Matrix.column_vector([0.5, 0.5])
        predicted = small_network.query(x)
        right = TrainingLabel.from_class_index(predicted, x, 2)
        wrong = TrainingLabel.from_class_index(1 - predicted, x, 2)

        calls = []
        small_network.evaluate(
            [wrong, right, right],
            callback=lambda n, total, correct: calls.append((n, total, correct))
        )
        assert calls == [(1, 3, 0), (2, 3, 1), (3, 3, 2)]


@pytest.mark.unit
class TestWeightFiles:
    """Test dumping and loading weights."""

    def test_round_trip_is_exact(self, mnist_network, tmp_path):
        """Loading dumped weights reproduces them bit for bit."""
        path = str(tmp_path / "weights.data")
        assert mnist_network.dump_weights_to_file(path) is True

        fresh = Network(784, 30, 10, learning_rate=0.3)
        assert fresh.load_weights_from_file(path) is True

        assert fresh.input_weights == mnist_network.input_weights
        assert fresh.hidden_weights == mnist_network.hidden_weights

        rng = np.random.default_rng(11)
        for _ in range(3):
            x = Matrix(784, 1, rng.uniform(0.01, 1.0, size=(784, 1)))
            assert fresh.query(x) == mnist_network.query(x)

    def test_file_layout(self, small_network, tmp_path):
        """Entries are space-terminated and the matrices are split by a newline."""
        path = tmp_path / "weights.data"
        small_network.dump_weights_to_file(str(path))

        assert path.read_text() == "0.1 0.2 0.3 0.4 \n0.5 -0.5 0.25 0.25 "

    def test_truncated_file_leaves_weights_untouched(self, mnist_network, tmp_path):
        """A truncated file is rejected and nothing is partially applied."""
        path = tmp_path / "weights.data"
        source = Network(784, 30, 10, learning_rate=0.3)
        source.dump_weights_to_file(str(path))
        text = path.read_text()
        path.write_text(text[:len(text) // 2])

        before = (mnist_network.input_weights.copy(), mnist_network.hidden_weights.copy())
        assert mnist_network.load_weights_from_file(str(path)) is False
        assert mnist_network.input_weights == before[0]
        assert mnist_network.hidden_weights == before[1]

    def test_missing_hidden_weights(self, small_network, tmp_path):
        """Input weights alone are not enough."""
        path = tmp_path / "weights.data"
        path.write_text("0.9 0.8 0.7 0.6 \n")

        before = small_network.input_weights.copy()
        assert small_network.load_weights_from_file(str(path)) is False
        assert small_network.input_weights == before

    def test_unparsable_token(self, small_network, tmp_path):
        path = tmp_path / "weights.data"
        path.write_text("0.1 0.2 abc 0.4 \n0.5 -0.5 0.25 0.25 ")

        before = small_network.hidden_weights.copy()
        assert small_network.load_weights_from_file(str(path)) is False
        assert small_network.hidden_weights == before

    def test_doubled_space_rejected(self, small_network, tmp_path):
        path = tmp_path / "weights.data"
        path.write_text("0.1  0.2 0.3 0.4 \n0.5 -0.5 0.25 0.25 0.9 ")

        before = (small_network.input_weights.copy(), small_network.hidden_weights.copy())
        assert small_network.load_weights_from_file(str(path)) is False
        assert small_network.input_weights == before[0]
        assert small_network.hidden_weights == before[1]

    def test_missing_file(self, small_network, tmp_path):
        assert small_network.load_weights_from_file(str(tmp_path / "absent.data")) is False

    def test_dump_to_unwritable_path(self, small_network, tmp_path):
        path = os.path.join(str(tmp_path), "no_such_dir", "weights.data")
        assert small_network.dump_weights_to_file(path) is False

    def test_load_replaces_weights(self, small_network, tmp_path):
        path = tmp_path / "weights.data"
        path.write_text("1.5 -2.0 0.125 3.0 \n-1.0 1.0 0.5 0.75 ")

        assert small_network.load_weights_from_file(str(path)) is True
        assert small_network.input_weights.to_list() == [[1.5, -2.0], [0.125, 3.0]]
        assert small_network.hidden_weights.to_list() == [[-1.0, 1.0], [0.5, 0.75]]

    def test_text_round_trip(self, small_network):
        other = Network(2, 2, 2, learning_rate=0.1)
        assert other.load_weights_from_text(small_network.dump_weights_to_text()) is True
        assert other.input_weights == small_network.input_weights
