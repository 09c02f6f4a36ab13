"""Tests for core data types."""

from __future__ import annotations

import dataclasses

import pytest

from arraylab.errors import FormatError
from arraylab.types import DispatchPlan, Interval, TaskState, WorkUnit


class TestWorkUnit:
    def test_lookup_by_name(self):
        unit = WorkUnit(("read1", "read2"), ("a_R1.fq", "a_R2.fq"))
        assert unit["read2"] == "a_R2.fq"

    def test_unknown_field(self):
        unit = WorkUnit(("read1",), ("a_R1.fq",))
        with pytest.raises(KeyError):
            unit["read2"]

    def test_mismatched_lengths(self):
        with pytest.raises(FormatError):
            WorkUnit(("a", "b"), ("1",))

    def test_immutable(self):
        unit = WorkUnit(("a",), ("1",))
        with pytest.raises(dataclasses.FrozenInstanceError):
            unit.values = ("2",)


class TestInterval:
    def test_region_one_based(self):
        assert Interval("chr1", 0, 100000).region() == "chr1:1-100000"

    def test_region_zero_based(self):
        assert Interval("chr1", 0, 100000).region(one_based=False) == "chr1:0-100000"

    def test_len(self):
        assert len(Interval("chr1", 200000, 250000)) == 50000

    @pytest.mark.parametrize("start,stop", [(-1, 10), (10, 10), (10, 5)])
    def test_invalid(self, start, stop):
        with pytest.raises(FormatError):
            Interval("chr1", start, stop)

    def test_work_unit_roundtrip(self):
        interval = Interval("chrX", 5, 10)
        unit = interval.to_work_unit()

        assert unit.as_dict() == {"chrom": "chrX", "start": "5", "stop": "10"}
        assert Interval.from_work_unit(unit) == interval

    def test_from_non_interval_unit(self):
        with pytest.raises(FormatError, match="Expected fields"):
            Interval.from_work_unit(WorkUnit(("a",), ("1",)))


class TestDispatchPlan:
    def test_one_based_range(self):
        plan = DispatchPlan(task_count=791, concurrency_limit=20, index_base=1)
        assert plan.array_range == "1-791%20"
        assert plan.directive() == "#SBATCH --array=1-791%20"

    def test_zero_based_range(self):
        plan = DispatchPlan(task_count=791, concurrency_limit=20, index_base=0)
        assert plan.first_index == 0
        assert plan.last_index == 790


class TestTaskState:
    def test_terminal_states(self):
        terminal = {s for s in TaskState if s.is_terminal}
        assert terminal == {
            TaskState.SUCCEEDED,
            TaskState.FAILED,
            TaskState.COMMAND_ERROR,
        }
