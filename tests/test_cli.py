"""
test_cli.py
~~~~~~~~~~~

Tests for the command-line driver.
"""

import io

import pytest

from digitnet import cli, config


def mnist_rows(count):
    """Rows with a bright pixel whose position depends on the label."""
    rows = []
    for n in range(count):
        label = n % 10
        pixels = [0] * config.INPUT_SIZE
        pixels[label * 70] = 255
        rows.append(','.join(str(v) for v in [label] + pixels))
    return '\n'.join(rows) + '\n'


@pytest.fixture
def small_config(monkeypatch):
    """Shrink the hidden layer so the driver runs quickly."""
    monkeypatch.setattr(config, 'HIDDEN_SIZE', 8)


@pytest.mark.unit
class TestArguments:
    """Test flag handling."""

    def test_flags_parsed(self):
        args, unknown = cli.build_parser().parse_known_args(['-v', '-d', '-l'])
        assert args.verbose and args.dump_weights and args.load_weights
        assert unknown == []

    @pytest.mark.parametrize("argv", [
        ['-x'], ['--help'], ['-h'], ['data.csv'], ['-v', '-q'], ['-vd'], ['-dl'], ['-v', '-ld']
    ])
    def test_unknown_argument_prints_usage_and_exits_zero(self, argv, tmp_path, monkeypatch):
        """Unrecognized arguments are not an error: usage goes to stdout, status 0."""
        monkeypatch.chdir(tmp_path)
        stdout = io.StringIO()
        status = cli.main(argv, stdin=io.StringIO(''), stdout=stdout)

        assert status == 0
        assert 'usage: digitnet [-v] [-d] [-l]' in stdout.getvalue()
        assert 'Neural Network Stats' not in stdout.getvalue()
        assert not (tmp_path / "weights.data").exists()

    def test_repeated_flag_is_accepted(self, small_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        stdout = io.StringIO()

        assert cli.main(['-d', '-d'], stdin=io.StringIO(mnist_rows(3)), stdout=stdout) == 0
        assert 'Neural Network Stats' in stdout.getvalue()
        assert (tmp_path / "weights.data").exists()


@pytest.mark.unit
class TestProgressPrinter:
    """Test progress output."""

    def test_rewrites_single_line(self):
        stream = io.StringIO()
        progress = cli.ProgressPrinter('Training Network', stream)
        progress(1, 4)
        progress(4, 4)
        progress.end()

        assert stream.getvalue() == (
            "\rTraining Network: 1 / 4 (25.00%)"
            "\rTraining Network: 4 / 4 (100.00%)\n"
        )

    def test_shows_running_matches(self):
        stream = io.StringIO()
        progress = cli.ProgressPrinter('Counting Correct Predictions', stream)
        progress(2, 4, 1)

        assert stream.getvalue() == (
            "\rCounting Correct Predictions: 2 / 4 (50.00%), 1 matches (25.00%)"
        )

    def test_disabled_prints_nothing(self):
        stream = io.StringIO()
        progress = cli.ProgressPrinter('Training Network', stream, enabled=False)
        progress(1, 1)
        progress.end()
        assert stream.getvalue() == ''

    def test_percentage_of_empty_total(self):
        assert cli.percentage(0, 0) == 0.0


@pytest.mark.integration
class TestRun:
    """Test full runs of the driver."""

    def test_trains_and_reports_stats(self, small_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        stdout = io.StringIO()

        status = cli.main([], stdin=io.StringIO(mnist_rows(20)), stdout=stdout)

        output = stdout.getvalue()
        assert status == 0
        assert output.startswith("Neural Network Stats:\n")
        assert "  Matches: " in output
        assert " / 20 (" in output
        assert "  Parsing time: " in output
        assert "  Training time: " in output
        assert "  Matching time: " in output
        assert not (tmp_path / "weights.data").exists()

    def test_dump_then_load(self, small_config, tmp_path):
        weights_file = str(tmp_path / "weights.data")
        args = cli.build_parser().parse_args(['-d'])

        cli.run(args, io.StringIO(mnist_rows(10)), io.StringIO(), weights_file=weights_file)
        with open(weights_file) as f:
            dumped = f.read()
        assert dumped.count('\n') == 1

        args = cli.build_parser().parse_args(['-l'])
        stdout = io.StringIO()
        assert cli.run(args, io.StringIO(mnist_rows(10)), stdout, weights_file=weights_file) == 0
        assert " / 10 (" in stdout.getvalue()

    def test_failed_load_falls_back_to_training(self, small_config, tmp_path):
        args = cli.build_parser().parse_args(['-l', '-v'])
        stdout = io.StringIO()

        status = cli.run(
            args,
            io.StringIO(mnist_rows(5)),
            stdout,
            weights_file=str(tmp_path / "missing.data")
        )

        assert status == 0
        assert "Training Network: 5 / 5 (100.00%)" in stdout.getvalue()
        assert "Counting Correct Predictions: 5 / 5" in stdout.getvalue()
        assert " matches (" in stdout.getvalue()

    def test_malformed_input_exits_non_zero(self, small_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        status = cli.main([], stdin=io.StringIO("not,a,row\n"), stdout=io.StringIO())
        assert status == 1
