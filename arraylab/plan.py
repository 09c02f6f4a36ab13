"""
Dispatch planning: array size, throttle, and sbatch script rendering.

Provides:
- plan(): Validate and build a DispatchPlan
- plan_for_manifest(): One task per manifest unit
- Shard / shard_plan(): Split plans larger than the cluster's MaxArraySize
- SlurmResources: Per-task resource requests
- render_sbatch_script(): Complete job script for one shard
- worker_command(): The ``arraylab run`` line each task executes

Everything here is pure formatting. Nothing calls sbatch.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from arraylab.errors import (
    ConfigurationError,
    EmptyPlanError,
    InvalidConcurrencyError,
)
from arraylab.manifest import Manifest
from arraylab.resolver import check_index_base
from arraylab.types import DispatchPlan

# Default maximum array size (SLURM's MaxArraySize default is 1001; many
# clusters raise it)
DEFAULT_MAX_ARRAY_SIZE = 10000

# Exported to every task so shard-relative task IDs map back to manifest indices
INDEX_OFFSET_VAR = "ARRAYLAB_INDEX_OFFSET"


def plan(task_count: int, concurrency_limit: int, index_base: int) -> DispatchPlan:
    """
    Build a DispatchPlan.

    ``concurrency_limit`` may exceed ``task_count``; the scheduler clamps it.

    Raises:
        EmptyPlanError: If ``task_count < 1``.
        InvalidConcurrencyError: If ``concurrency_limit < 1``.
        ValueError: If ``index_base`` is not 0 or 1.

    Example:
        >>> plan(791, 20, index_base=1).directive()
        '#SBATCH --array=1-791%20'
    """
    if task_count < 1:
        raise EmptyPlanError(f"Plan needs at least one task, got {task_count}")
    if concurrency_limit < 1:
        raise InvalidConcurrencyError(
            f"Concurrency limit must be >= 1, got {concurrency_limit}"
        )
    check_index_base(index_base)
    return DispatchPlan(
        task_count=task_count,
        concurrency_limit=concurrency_limit,
        index_base=index_base,
    )


def format_index_list(indices: Iterable[int], concurrency_limit: int | None = None) -> str:
    """
    Compress task indices into an --array value for resubmission.

    Example:
        >>> format_index_list([3, 4, 5, 9, 11, 12], concurrency_limit=2)
        '3-5,9,11-12%2'
    """
    ordered = sorted({int(i) for i in indices})
    if not ordered:
        raise EmptyPlanError("No indices to format")

    parts = []
    start = prev = ordered[0]
    for i in ordered[1:]:
        if i == prev + 1:
            prev = i
            continue
        parts.append(f"{start}-{prev}" if prev > start else str(start))
        start = prev = i
    parts.append(f"{start}-{prev}" if prev > start else str(start))

    value = ",".join(parts)
    if concurrency_limit is not None:
        value += f"%{concurrency_limit}"
    return value


def plan_for_manifest(
    manifest: Manifest, concurrency_limit: int, index_base: int
) -> DispatchPlan:
    """Plan one array task per manifest unit."""
    return plan(len(manifest), concurrency_limit, index_base)


# ---------------------------------------------------------------------------
# Sharding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Shard:
    """
    One array submission covering part of a larger plan.

    Attributes:
        plan: Shard-relative plan; its indices start at the parent's base.
        offset: Added to the scheduler's task ID to recover the manifest index.
    """

    plan: DispatchPlan
    offset: int

    @property
    def first_index(self) -> int:
        return self.plan.first_index + self.offset

    @property
    def last_index(self) -> int:
        return self.plan.last_index + self.offset


def shard_plan(
    dispatch_plan: DispatchPlan, max_array_size: int = DEFAULT_MAX_ARRAY_SIZE
) -> list[Shard]:
    """
    Split a plan into arrays whose task IDs stay below ``max_array_size``.

    SLURM accepts task IDs up to ``MaxArraySize - 1``, so a 1-based shard
    holds at most ``max_array_size - 1`` tasks. Each shard keeps the
    parent's concurrency limit and index base. A 1-based plan of 250 tasks
    with ``max_array_size=100`` yields shards of 99, 99 and 52 tasks with
    offsets 0, 99 and 198.

    Raises:
        ConfigurationError: If no task ID fits below ``max_array_size``.
    """
    capacity = max_array_size - dispatch_plan.index_base
    if capacity < 1:
        raise ConfigurationError(
            f"max_array_size={max_array_size} leaves no room for task IDs "
            f"starting at {dispatch_plan.index_base}"
        )

    shards = []
    start = 0
    while start < dispatch_plan.task_count:
        size = min(capacity, dispatch_plan.task_count - start)
        shards.append(
            Shard(
                plan=DispatchPlan(
                    task_count=size,
                    concurrency_limit=dispatch_plan.concurrency_limit,
                    index_base=dispatch_plan.index_base,
                ),
                offset=start,
            )
        )
        start += size
    return shards


# ---------------------------------------------------------------------------
# sbatch script generation
# ---------------------------------------------------------------------------


@dataclass
class SlurmResources:
    """
    Resource requests for every task in an array.

    Attributes:
        partition: SLURM partition/queue name.
        time: Maximum walltime (e.g., "1:00:00" for 1 hour).
        cpus: Number of CPUs per task.
        memory: Memory per task (e.g., "4G", "16GB").
        gpus: Number of GPUs per task (0 for CPU-only).
        modules: Shell modules to load before execution.
        conda_env: Conda environment to activate.
        setup: List of bash commands to run before each task.
        extra_sbatch: Additional sbatch directives as key-value pairs.
    """

    partition: str | None = None
    time: str = "1:00:00"
    cpus: int = 1
    memory: str = "4G"
    gpus: int = 0
    modules: list[str] = field(default_factory=list)
    conda_env: str | None = None
    setup: list[str] = field(default_factory=list)
    extra_sbatch: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SlurmResources:
        """Parse from a config dict (e.g., a TOML environment table).

        Handles convenience fields:
        - mail_user, mail_type are moved into extra_sbatch
        - String values for modules/setup are wrapped in a list
        - Unknown keys are ignored

        Args:
            d: Configuration dictionary.

        Returns:
            A SlurmResources instance.
        """
        d = dict(d)

        extra = dict(d.pop("extra_sbatch", {}))
        for key in ("mail_user", "mail_type", "account", "qos"):
            if key in d:
                extra[key] = d.pop(key)

        for list_field in ("modules", "setup"):
            if list_field in d and isinstance(d[list_field], str):
                d[list_field] = [d[list_field]]

        known = {
            "partition",
            "time",
            "cpus",
            "memory",
            "gpus",
            "modules",
            "conda_env",
            "setup",
        }
        filtered = {k: v for k, v in d.items() if k in known}
        return cls(**filtered, extra_sbatch=extra)


def render_sbatch_script(
    dispatch_plan: DispatchPlan,
    command: str,
    resources: SlurmResources | None = None,
    job_name: str = "arraylab",
    logs_dir: str | Path = "logs",
    offset: int = 0,
) -> str:
    """
    Generate sbatch script content for one array.

    Args:
        dispatch_plan: The (shard) plan to submit.
        command: Command each task runs.
        resources: Resource requests. Defaults to SlurmResources().
        job_name: Job name for SLURM.
        logs_dir: Directory for scheduler stdout/stderr logs.
        offset: Value exported as ARRAYLAB_INDEX_OFFSET.

    Returns:
        Complete sbatch script as string.
    """
    resources = resources or SlurmResources()
    lines = ["#!/bin/bash"]

    lines.append(f"#SBATCH --job-name={job_name}")
    if resources.partition:
        lines.append(f"#SBATCH --partition={resources.partition}")
    lines.append(f"#SBATCH --time={resources.time}")
    lines.append(f"#SBATCH --cpus-per-task={resources.cpus}")
    lines.append(f"#SBATCH --mem={resources.memory}")
    lines.append(dispatch_plan.directive())
    lines.append(f"#SBATCH --output={logs_dir}/%A_%a.out")
    lines.append(f"#SBATCH --error={logs_dir}/%A_%a.err")

    if resources.gpus > 0:
        lines.append(f"#SBATCH --gres=gpu:{resources.gpus}")

    for key, value in resources.extra_sbatch.items():
        # SLURM option names use hyphens
        slurm_key = key.replace("_", "-")
        lines.append(f"#SBATCH --{slurm_key}={value}")

    lines.append("")
    lines.append("# Offset for shard-relative task IDs")
    lines.append(f"export {INDEX_OFFSET_VAR}={offset}")
    lines.append("")

    for module in resources.modules:
        lines.append(f"module load {module}")
    if resources.conda_env:
        lines.append(f"conda activate {resources.conda_env}")
    for cmd in resources.setup:
        lines.append(cmd)
    if resources.modules or resources.conda_env or resources.setup:
        lines.append("")

    lines.append(command)
    return "\n".join(lines) + "\n"


def render_shard_scripts(
    dispatch_plan: DispatchPlan,
    command: str,
    resources: SlurmResources | None = None,
    job_name: str = "arraylab",
    logs_dir: str | Path = "logs",
    max_array_size: int = DEFAULT_MAX_ARRAY_SIZE,
) -> list[str]:
    """Render one script per shard; a single script when no split is needed."""
    shards = shard_plan(dispatch_plan, max_array_size)
    return [
        render_sbatch_script(
            shard.plan,
            command,
            resources=resources,
            job_name=job_name if len(shards) == 1 else f"{job_name}-{n}",
            logs_dir=logs_dir,
            offset=shard.offset,
        )
        for n, shard in enumerate(shards)
    ]


def worker_command(
    manifest: str | Path,
    template: str,
    out_dir: str | Path,
    index_base: int,
    fields: int | Sequence[str] | None = None,
    shell: bool = False,
    executable: str = "arraylab",
) -> str:
    """
    Render the ``arraylab run`` line executed by each array task.

    The task index is not embedded; ``arraylab run`` reads it from
    SLURM_ARRAY_TASK_ID and ARRAYLAB_INDEX_OFFSET at run time.
    """
    parts = [
        executable,
        "run",
        "--manifest",
        str(manifest),
        "--template",
        template,
        "--out-dir",
        str(out_dir),
        "--base",
        str(index_base),
    ]
    if fields is not None:
        parts += [
            "--fields",
            str(fields) if isinstance(fields, int) else ",".join(fields),
        ]
    if shell:
        parts.append("--shell")
    return " ".join(shlex.quote(p) for p in parts)
