"""
test_mnist_loader.py
~~~~~~~~~~~~~~~~~~~~

Unit tests for CSV row parsing and conversion.
"""

import io

import numpy as np
import pytest

from digitnet.mnist_loader import (
    load_csv,
    load_npz,
    normalize_pixel,
    parse_row,
    parse_training_set,
    pixels_to_input,
    write_csv_rows
)


def make_row(label, pixels):
    return ','.join(str(value) for value in [label] + list(pixels))


@pytest.mark.unit
class TestNormalizePixel:
    """Test pixel scaling."""

    def test_bounds(self):
        assert normalize_pixel(0) == pytest.approx(0.01)
        assert normalize_pixel(255) == pytest.approx(1.0)

    def test_formula(self):
        assert normalize_pixel(128) == pytest.approx(128 / 255 * 0.99 + 0.01)


@pytest.mark.unit
class TestParseRow:
    """Test parsing a single CSV row."""

    def test_mnist_row(self):
        """A 784-pixel row with label 3 parses into a training label."""
        pixels = [0] * 784
        pixels[100] = 255
        pixels[200] = 51
        training_label = parse_row(make_row(3, pixels))

        assert training_label.class_index == 3
        assert training_label.label[3, 0] == 1.0
        assert all(
            training_label.label[i, 0] == 0.01 for i in range(10) if i != 3
        )
        assert training_label.input.shape == (784, 1)
        assert training_label.input[0, 0] == pytest.approx(0.01)
        assert training_label.input[100, 0] == pytest.approx(1.0)
        assert training_label.input[200, 0] == pytest.approx(51 / 255 * 0.99 + 0.01)

    def test_custom_sizes(self):
        training_label = parse_row("1,0,255,0", input_size=3, output_size=2)
        assert training_label.class_index == 1
        assert training_label.label.to_list() == [[0.01], [1.0]]

    def test_trailing_newline_ignored(self):
        assert parse_row("0,10,20\n", input_size=2, output_size=2).class_index == 0

    @pytest.mark.parametrize("line", [
        "0,1",          # too few pixels
        "0,1,2,3",      # too many pixels
        "x,1,2",        # label not an integer
        "0,1,2.5",      # pixel not an integer
        "2,1,2",        # label out of range
        "-1,1,2",       # negative label
        "0,1,256",      # pixel above 255
        "0,-1,2",       # pixel below 0
    ])
    def test_malformed_rows(self, line):
        with pytest.raises(ValueError):
            parse_row(line, input_size=2, output_size=2)


@pytest.mark.unit
class TestPixelsToInput:
    """Test building input vectors from raw pixels."""

    def test_normalizes(self):
        vector = pixels_to_input([0, 255], input_size=2)
        assert vector.shape == (2, 1)
        assert vector[1, 0] == pytest.approx(1.0)

    @pytest.mark.parametrize("pixels", [[0], [0, 1.5], [0, True], [0, "1"], [0, 300]])
    def test_rejects_bad_pixels(self, pixels):
        with pytest.raises(ValueError):
            pixels_to_input(pixels, input_size=2)


@pytest.mark.unit
class TestParseTrainingSet:
    """Test parsing many rows."""

    def test_keeps_order_and_skips_blank_lines(self):
        lines = ["1,0,0\n", "\n", "0,255,255\n", "   \n"]
        training_set = parse_training_set(lines, input_size=2, output_size=2)

        assert [label.class_index for label in training_set] == [1, 0]

    def test_error_names_line_number(self):
        lines = ["1,0,0", "0,0,abc"]
        with pytest.raises(ValueError, match="Line 2"):
            parse_training_set(lines, input_size=2, output_size=2)

    def test_load_csv(self, tmp_path):
        path = tmp_path / "rows.csv"
        path.write_text("1,0,0\n0,10,20\n")

        training_set = load_csv(str(path), input_size=2, output_size=2)
        assert len(training_set) == 2


@pytest.mark.unit
class TestConversion:
    """Test writing archives as CSV rows."""

    def test_write_csv_rows_from_floats(self):
        images = np.array([[0.0, 1.0, 0.5], [0.2, 0.0, 1.0]], dtype=np.float32)
        stream = io.StringIO()

        assert write_csv_rows(images, [7, 2], stream) == 2
        assert stream.getvalue() == "7,0,255,128\n2,51,0,255\n"

    def test_write_csv_rows_from_integer_images(self):
        images = np.array([[[0, 12], [255, 3]]], dtype=np.uint8)
        stream = io.StringIO()

        write_csv_rows(images, np.array([4]), stream)
        assert stream.getvalue() == "4,0,12,255,3\n"

    def test_written_rows_parse_back(self):
        images = np.array([[0.0, 1.0]])
        stream = io.StringIO()
        write_csv_rows(images, [1], stream)

        training_label = parse_row(stream.getvalue(), input_size=2, output_size=2)
        assert training_label.class_index == 1
        assert training_label.input[1, 0] == pytest.approx(1.0)

    def test_label_count_mismatch(self):
        with pytest.raises(ValueError):
            write_csv_rows(np.zeros((2, 3)), [1], io.StringIO())

    def test_load_npz(self, tmp_path):
        path = str(tmp_path / "mnist.npz")
        np.savez_compressed(
            path,
            test_images=np.zeros((3, 4), dtype=np.float32),
            test_labels=np.array([1, 2, 3])
        )

        images, labels = load_npz(path, 'test')
        assert images.shape == (3, 4)
        assert list(labels) == [1, 2, 3]

    def test_load_npz_unknown_split(self, tmp_path):
        with pytest.raises(ValueError):
            load_npz(str(tmp_path / "mnist.npz"), 'validation')
