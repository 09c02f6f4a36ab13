"""
arraylab: explicit manifests and bounded dispatch for scheduler job arrays.

An array submission is a Manifest of WorkUnits, addressed by task index
with an explicit index base, dispatched through a DispatchPlan, and run one
index at a time by the TaskRunner.

Example:
    import arraylab

    manifest = arraylab.generate_windows({"chr1": 250_000}, size=100_000)
    arraylab.write_manifest(manifest, "regions.bed")

    plan = arraylab.plan(len(manifest), concurrency_limit=20, index_base=1)
    print(plan.directive())  # #SBATCH --array=1-3%20

    # Inside array task 2:
    unit = arraylab.resolve(manifest, 2, index_base=1)
    env = arraylab.TaskEnv(array_id="4242", index=2, out_dir="out")
    result = arraylab.run(unit, "bcftools mpileup -r ${region} -f ref.fa in.bam", env)
    result.exit_code
"""

__version__ = "0.1.0"

from arraylab.config import ProjectConfig, array_id_from_env, task_index_from_env
from arraylab.errors import (
    ArrayLabError,
    CommandError,
    ConfigurationError,
    EmptyManifestError,
    EmptyPlanError,
    FormatError,
    IndexOutOfRangeError,
    InvalidConcurrencyError,
    InvalidLengthError,
    InvalidWindowSizeError,
    ManifestReadError,
    TemplateError,
)
from arraylab.manifest import Manifest, load_intervals, load_manifest, write_manifest
from arraylab.plan import (
    Shard,
    SlurmResources,
    format_index_list,
    plan,
    plan_for_manifest,
    render_sbatch_script,
    shard_plan,
)
from arraylab.resolver import resolve, resolve_from_source
from arraylab.runner import TaskEnv, TaskRunner, output_paths, run, run_task
from arraylab.types import (
    DispatchPlan,
    Interval,
    TaskResult,
    TaskState,
    WorkUnit,
)
from arraylab.windows import generate_windows, iter_windows, load_lengths

__all__ = [
    # Types
    "WorkUnit",
    "Interval",
    "Manifest",
    "DispatchPlan",
    "Shard",
    "TaskState",
    "TaskResult",
    # Manifest
    "load_manifest",
    "load_intervals",
    "write_manifest",
    # Windows
    "generate_windows",
    "iter_windows",
    "load_lengths",
    # Resolver
    "resolve",
    "resolve_from_source",
    # Planner
    "plan",
    "plan_for_manifest",
    "shard_plan",
    "format_index_list",
    "SlurmResources",
    "render_sbatch_script",
    # Runner
    "TaskEnv",
    "TaskRunner",
    "run",
    "run_task",
    "output_paths",
    # Config
    "ProjectConfig",
    "array_id_from_env",
    "task_index_from_env",
    # Errors
    "ArrayLabError",
    "ManifestReadError",
    "FormatError",
    "EmptyManifestError",
    "IndexOutOfRangeError",
    "InvalidWindowSizeError",
    "InvalidLengthError",
    "InvalidConcurrencyError",
    "EmptyPlanError",
    "TemplateError",
    "CommandError",
    "ConfigurationError",
]
