"""Tests for window generation and length tables."""

from __future__ import annotations

import pytest

from arraylab.errors import (
    EmptyManifestError,
    FormatError,
    InvalidLengthError,
    InvalidWindowSizeError,
)
from arraylab.types import INTERVAL_FIELDS, Interval
from arraylab.windows import generate_windows, iter_windows, load_lengths


class TestGenerateWindows:
    def test_short_final_window(self):
        manifest = generate_windows({"chr1": 250000}, 100000)

        assert manifest.intervals() == [
            Interval("chr1", 0, 100000),
            Interval("chr1", 100000, 200000),
            Interval("chr1", 200000, 250000),
        ]
        assert manifest.fields == INTERVAL_FIELDS

    def test_exact_multiple(self):
        manifest = generate_windows({"chrM": 300}, 100)
        assert [len(i) for i in manifest.intervals()] == [100, 100, 100]

    def test_length_smaller_than_window(self):
        manifest = generate_windows({"chrM": 16569}, 100000)
        assert manifest.intervals() == [Interval("chrM", 0, 16569)]

    def test_sequences_in_input_order(self):
        manifest = generate_windows([("chr2", 150), ("chr1", 50)], 100)

        assert [i.sequence_name for i in manifest.intervals()] == ["chr2", "chr2", "chr1"]

    @pytest.mark.parametrize(
        "lengths,size",
        [
            ({"chr1": 1}, 1),
            ({"chr1": 999, "chr2": 1000, "chr3": 1001}, 100),
            ({"chr1": 248956422}, 5000000),
        ],
    )
    def test_contiguous_and_covering(self, lengths, size):
        intervals = generate_windows(lengths, size).intervals()

        for name, length in lengths.items():
            own = [i for i in intervals if i.sequence_name == name]
            assert sum(len(i) for i in own) == length
            assert own[0].start == 0
            assert own[-1].stop == length
            for left, right in zip(own, own[1:]):
                assert left.stop == right.start

    @pytest.mark.parametrize("size", [0, -5])
    def test_invalid_window_size(self, size):
        with pytest.raises(InvalidWindowSizeError):
            generate_windows({"chr1": 100}, size)

    @pytest.mark.parametrize("length", [0, -1])
    def test_invalid_length(self, length):
        with pytest.raises(InvalidLengthError):
            generate_windows({"chr1": 100, "chr2": length}, 10)

    def test_no_sequences(self):
        with pytest.raises(EmptyManifestError):
            generate_windows({}, 10)


class TestIterWindows:
    def test_lazy(self):
        windows = iter_windows("chr1", 10**12, 1000)
        assert next(windows) == Interval("chr1", 0, 1000)
        assert next(windows) == Interval("chr1", 1000, 2000)


class TestLoadLengths:
    def test_two_column(self, tmp_path):
        path = tmp_path / "genome.txt"
        path.write_text("chr1\t250000\n# skip\nchr2 1000\n")

        assert load_lengths(path) == [("chr1", 250000), ("chr2", 1000)]

    def test_fai(self, tmp_path):
        path = tmp_path / "ref.fa.fai"
        path.write_text("chr1\t248956422\t112\t70\t71\nchrM\t16569\t252513167\t70\t71\n")

        assert load_lengths(path) == [("chr1", 248956422), ("chrM", 16569)]

    def test_non_integer_length(self, tmp_path):
        path = tmp_path / "genome.txt"
        path.write_text("chr1\tlong\n")

        with pytest.raises(FormatError) as exc_info:
            load_lengths(path)
        assert exc_info.value.line_number == 1

    def test_duplicate_name(self, tmp_path):
        path = tmp_path / "genome.txt"
        path.write_text("chr1\t10\nchr1\t20\n")

        with pytest.raises(FormatError, match="Duplicate"):
            load_lengths(path)

    def test_empty(self, tmp_path):
        path = tmp_path / "genome.txt"
        path.write_text("")

        with pytest.raises(EmptyManifestError):
            load_lengths(path)
