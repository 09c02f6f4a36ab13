"""
Core types for arraylab (PUBLIC).

This module defines the data structures shared by every component:
- WorkUnit: One task's named parameters
- Interval: A half-open genomic window
- DispatchPlan: Array size, throttle and index base for one submission
- TaskState: Lifecycle state of a single task invocation
- TaskResult: Outcome of running one task
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator

from arraylab.errors import FormatError

# Field schema shared by interval manifests (BED column order)
INTERVAL_FIELDS: tuple[str, ...] = ("chrom", "start", "stop")


@dataclass(frozen=True)
class WorkUnit:
    """
    An ordered tuple of named string fields describing one array task.

    Attributes:
        fields: Field names, in column order.
        values: Field values, aligned with ``fields``.

    Example:
        unit = WorkUnit(("read1", "read2"), ("a_R1.fq", "a_R2.fq"))
        unit["read2"]  # "a_R2.fq"
    """

    fields: tuple[str, ...]
    values: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.fields) != len(self.values):
            raise FormatError(
                f"WorkUnit has {len(self.values)} values for "
                f"{len(self.fields)} fields {list(self.fields)}"
            )

    def __getitem__(self, name: str) -> str:
        try:
            return self.values[self.fields.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def as_dict(self) -> dict[str, str]:
        """Return the unit as a ``{field: value}`` dict in column order."""
        return dict(zip(self.fields, self.values))

    @property
    def is_interval(self) -> bool:
        return self.fields == INTERVAL_FIELDS


@dataclass(frozen=True)
class Interval:
    """
    A half-open interval ``[start, stop)`` on a named sequence.

    Coordinates are 0-based internally, matching BED. ``region()`` renders
    the 1-based closed form most command-line genomics tools expect.
    """

    sequence_name: str
    start: int
    stop: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise FormatError(
                f"Interval start must be >= 0, got {self.start} "
                f"for {self.sequence_name}"
            )
        if self.stop <= self.start:
            raise FormatError(
                f"Interval stop must be greater than start, got "
                f"[{self.start}, {self.stop}) for {self.sequence_name}"
            )

    def __len__(self) -> int:
        return self.stop - self.start

    def region(self, one_based: bool = True) -> str:
        """
        Render as ``name:start-stop``.

        Args:
            one_based: If True (default), render 1-indexed closed
                coordinates (``start+1 .. stop``). Otherwise render the raw
                0-indexed half-open coordinates.

        Example:
            >>> Interval("chr1", 0, 100000).region()
            'chr1:1-100000'
        """
        start = self.start + 1 if one_based else self.start
        return f"{self.sequence_name}:{start}-{self.stop}"

    def to_work_unit(self) -> WorkUnit:
        return WorkUnit(
            INTERVAL_FIELDS,
            (self.sequence_name, str(self.start), str(self.stop)),
        )

    @classmethod
    def from_work_unit(cls, unit: WorkUnit) -> Interval:
        """
        Build an Interval from a ``chrom, start, stop`` WorkUnit.

        Raises:
            FormatError: If the unit is not interval-shaped or its
                coordinates are not integers.
        """
        if not unit.is_interval:
            raise FormatError(
                f"Expected fields {list(INTERVAL_FIELDS)}, got {list(unit.fields)}"
            )
        chrom, start, stop = unit.values
        try:
            start_pos, stop_pos = int(start), int(stop)
        except ValueError:
            raise FormatError(
                f"Interval coordinates must be integers, got {start!r}, {stop!r}"
            ) from None
        return cls(chrom, start_pos, stop_pos)


@dataclass(frozen=True)
class DispatchPlan:
    """
    Execution plan for one array submission.

    Attributes:
        task_count: Number of array tasks (>= 1).
        concurrency_limit: Maximum simultaneous tasks (>= 1). Advisory; the
            scheduler enforces it and may clamp it to ``task_count``.
        index_base: First task index, 0 or 1.
    """

    task_count: int
    concurrency_limit: int
    index_base: int

    @property
    def first_index(self) -> int:
        return self.index_base

    @property
    def last_index(self) -> int:
        return self.index_base + self.task_count - 1

    @property
    def array_range(self) -> str:
        """Range-and-throttle value, e.g. ``1-791%20``."""
        return f"{self.first_index}-{self.last_index}%{self.concurrency_limit}"

    def directive(self) -> str:
        """Render the sbatch array directive, e.g. ``#SBATCH --array=1-791%20``."""
        return f"#SBATCH --array={self.array_range}"


class TaskState(str, Enum):
    """Lifecycle state of a single task invocation."""

    PENDING = "pending"
    RESOLVING = "resolving"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    COMMAND_ERROR = "command_error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TaskState.SUCCEEDED,
            TaskState.FAILED,
            TaskState.COMMAND_ERROR,
        )


@dataclass(frozen=True)
class TaskResult:
    """
    Outcome of one Task Runner invocation.

    Attributes:
        index: The task index that was run.
        exit_code: Child exit status (negative for a signal on POSIX).
        stdout_path: File holding the child's stdout.
        stderr_path: File holding the child's stderr.
        array_id: Submission identifier the output is namespaced by.
        state: Terminal state (succeeded or failed).
        command: The fully substituted command line.
        started_at: When the child was launched.
        finished_at: When the child exited.
        duration_ms: Wall time in milliseconds.
    """

    index: int
    exit_code: int
    stdout_path: Path
    stderr_path: Path
    array_id: str = ""
    state: TaskState = TaskState.SUCCEEDED
    command: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == TaskState.SUCCEEDED
