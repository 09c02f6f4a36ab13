"""
arraylab CLI: Command-line interface for array-job orchestration.

Provides commands for:
- resolve: Print the work unit for one task index
- window: Split sequence lengths into an interval manifest
- plan: Render the array directive or full sbatch scripts
- run: Run one task (inside an array job or by hand)
- status: Summarize the status records of an array

Errors are printed as a single stderr line:

    arraylab: error: <Kind>: <message>
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from arraylab.config import ProjectConfig, array_id_from_env, task_index_from_env
from arraylab.errors import ArrayLabError, ConfigurationError

DELIMITERS = {"auto": "auto", "tab": "\t", "whitespace": None}


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="arraylab",
        description="arraylab: manifests, windows and plans for scheduler job arrays",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Project config file (default: nearest .arraylab.toml)",
    )
    parser.add_argument(
        "--env",
        help="Environment profile for sbatch resources",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_manifest_args(p: argparse.ArgumentParser, required: bool = True) -> None:
        p.add_argument(
            "--manifest", "-m",
            type=Path,
            required=required,
            help="Manifest file (one work unit per line)",
        )
        p.add_argument(
            "--fields",
            help="Field count or comma-separated names (default: count of the first line)",
        )
        p.add_argument(
            "--delimiter",
            choices=sorted(DELIMITERS),
            default="auto",
            help="Column delimiter (default: auto)",
        )

    def add_base_arg(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--base",
            type=int,
            choices=(0, 1),
            help="Index of the first work unit (required unless [defaults] index_base is set)",
        )

    # resolve
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Print the work unit for a task index",
    )
    add_manifest_args(resolve_parser)
    add_base_arg(resolve_parser)
    resolve_parser.add_argument(
        "--index", "-i",
        type=int,
        required=True,
        help="Task index",
    )
    resolve_parser.add_argument(
        "--format",
        choices=("tsv", "json", "region"),
        default="tsv",
        help="Output format; 'region' needs an interval manifest (default: tsv)",
    )

    # window
    window_parser = subparsers.add_parser(
        "window",
        help="Split sequence lengths into fixed-size intervals",
    )
    window_parser.add_argument(
        "--lengths", "-l",
        type=Path,
        required=True,
        help="Sequence length table (name length) or .fai index",
    )
    window_parser.add_argument(
        "--size", "-s",
        type=int,
        help="Window size in bases (default: [defaults] window_size)",
    )
    window_parser.add_argument(
        "--out", "-o",
        type=Path,
        required=True,
        help="Output interval manifest (BED-like)",
    )

    # plan
    plan_parser = subparsers.add_parser(
        "plan",
        help="Render the array directive or sbatch scripts",
    )
    count_group = plan_parser.add_mutually_exclusive_group(required=True)
    count_group.add_argument(
        "--count", "-n",
        type=int,
        help="Number of array tasks",
    )
    count_group.add_argument(
        "--manifest", "-m",
        type=Path,
        help="Plan one task per manifest line",
    )
    plan_parser.add_argument(
        "--fields",
        help="Field count or comma-separated names of the manifest",
    )
    plan_parser.add_argument(
        "--delimiter",
        choices=sorted(DELIMITERS),
        default="auto",
        help="Column delimiter (default: auto)",
    )
    add_base_arg(plan_parser)
    plan_parser.add_argument(
        "--concurrency", "-k",
        type=int,
        help="Maximum simultaneous tasks (default: [defaults] concurrency)",
    )
    plan_parser.add_argument(
        "--max-array-size",
        type=int,
        help="Split into several arrays above this size",
    )
    plan_parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output the plan as JSON",
    )
    plan_parser.add_argument(
        "--script-dir",
        type=Path,
        help="Write complete sbatch scripts to this directory",
    )
    plan_parser.add_argument(
        "--command",
        dest="task_command",
        help="Command each task runs (default: 'arraylab run' for --template)",
    )
    plan_parser.add_argument(
        "--template", "-t",
        help="Command template passed to 'arraylab run' in each task",
    )
    plan_parser.add_argument(
        "--out-dir",
        type=Path,
        help="Task output directory passed to 'arraylab run'",
    )
    plan_parser.add_argument(
        "--shell",
        action="store_true",
        help="Tasks run their template through /bin/sh",
    )
    plan_parser.add_argument(
        "--job-name",
        default="arraylab",
        help="SLURM job name (default: arraylab)",
    )
    plan_parser.add_argument(
        "--logs-dir",
        default="logs",
        help="Directory for scheduler logs (default: logs)",
    )

    # run
    run_parser = subparsers.add_parser(
        "run",
        help="Run the command for one task index",
    )
    add_manifest_args(run_parser)
    add_base_arg(run_parser)
    run_parser.add_argument(
        "--index", "-i",
        type=int,
        help="Task index (default: SLURM_ARRAY_TASK_ID + ARRAYLAB_INDEX_OFFSET)",
    )
    run_parser.add_argument(
        "--template", "-t",
        required=True,
        help="Command template, e.g. 'bwa mem ref.fa ${read1} ${read2}' ($$ for a literal $)",
    )
    run_parser.add_argument(
        "--out-dir", "-o",
        type=Path,
        help="Directory for task stdout/stderr/status (default: [defaults] out_dir)",
    )
    run_parser.add_argument(
        "--array-id",
        help="Array id (default: ARRAYLAB_ARRAY_ID or SLURM_ARRAY_JOB_ID)",
    )
    run_parser.add_argument(
        "--cwd",
        type=Path,
        help="Working directory for the command",
    )
    run_parser.add_argument(
        "--shell",
        action="store_true",
        help="Run the template through /bin/sh (values are quoted)",
    )

    # status
    status_parser = subparsers.add_parser(
        "status",
        help="Summarize task status records",
    )
    status_parser.add_argument(
        "--out-dir", "-o",
        type=Path,
        help="Task output directory (default: [defaults] out_dir)",
    )
    status_parser.add_argument(
        "--array-id",
        help="Array id (default: ARRAYLAB_ARRAY_ID or SLURM_ARRAY_JOB_ID)",
    )
    status_parser.add_argument(
        "--count", "-n",
        type=int,
        help="Expected number of tasks, to report missing indices",
    )
    add_base_arg(status_parser)
    status_parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output records as JSON",
    )

    return parser


def log_level(verbose: bool) -> int:
    """
    Return the root log level.

    Quiet by default so stderr carries only warnings and the single
    ``arraylab: error:`` line.
    """
    return logging.DEBUG if verbose else logging.WARNING


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=log_level(args.verbose),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    handlers = {
        "resolve": handle_resolve,
        "window": handle_window,
        "plan": handle_plan,
        "run": handle_run,
        "status": handle_status,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        config = ProjectConfig.load(path=args.config)
        return handler(args, config)
    except ArrayLabError as e:
        print(f"arraylab: error: {e.kind}: {e}", file=sys.stderr)
        return 1


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _index_base(args: argparse.Namespace, config: ProjectConfig) -> int:
    if args.base is not None:
        return args.base
    if config.defaults.index_base is not None:
        return config.defaults.index_base
    raise ConfigurationError(
        "Index base is not set: pass --base 0|1 or set [defaults] index_base"
    )


def _fields(raw: str | None, manifest: Path, delimiter: str | None) -> int | list[str]:
    from arraylab.manifest import sniff_field_count

    if raw is None:
        return sniff_field_count(manifest, delimiter)
    if raw.isdigit():
        return int(raw)
    return [name.strip() for name in raw.split(",")]


def _load(args: argparse.Namespace):
    from arraylab.manifest import load_manifest

    delimiter = DELIMITERS[args.delimiter]
    fields = _fields(args.fields, args.manifest, delimiter)
    return load_manifest(args.manifest, fields, delimiter=delimiter)


def _pick(explicit, default):
    return explicit if explicit is not None else default


def _required(value, name: str, option: str):
    if value is None:
        raise ConfigurationError(f"{option} is required (or set [defaults] {name})")
    return value


def _array_id(args: argparse.Namespace) -> str:
    return args.array_id or array_id_from_env()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def handle_resolve(args: argparse.Namespace, config: ProjectConfig) -> int:
    """Handle the resolve command."""
    from arraylab.resolver import resolve
    from arraylab.types import Interval

    index_base = _index_base(args, config)
    unit = resolve(_load(args), args.index, index_base)

    if args.format == "json":
        print(json.dumps(unit.as_dict()))
    elif args.format == "region":
        print(Interval.from_work_unit(unit).region())
    else:
        print("\t".join(unit.values))
    return 0


def handle_window(args: argparse.Namespace, config: ProjectConfig) -> int:
    """Handle the window command."""
    from arraylab.manifest import write_manifest
    from arraylab.windows import generate_windows, load_lengths

    size = _required(_pick(args.size, config.defaults.window_size), "window_size", "--size")
    lengths = load_lengths(args.lengths)
    manifest = generate_windows(lengths, size)
    write_manifest(
        manifest,
        args.out,
        header=f"windows of {size} over {len(lengths)} sequences from {args.lengths}",
    )
    print(f"{len(manifest)} intervals written to {args.out}")
    return 0


def handle_plan(args: argparse.Namespace, config: ProjectConfig) -> int:
    """Handle the plan command."""
    from arraylab.plan import (
        plan,
        render_sbatch_script,
        shard_plan,
        worker_command,
    )

    index_base = _index_base(args, config)
    concurrency = _required(
        _pick(args.concurrency, config.defaults.concurrency), "concurrency", "--concurrency"
    )
    max_array_size = _pick(args.max_array_size, config.defaults.max_array_size)

    fingerprint = None
    if args.manifest is not None:
        manifest = _load(args)
        task_count = len(manifest)
        fingerprint = manifest.fingerprint
    else:
        task_count = args.count

    dispatch_plan = plan(task_count, concurrency, index_base)
    shards = shard_plan(dispatch_plan, max_array_size)

    if args.json_output:
        data = {
            "task_count": dispatch_plan.task_count,
            "concurrency_limit": dispatch_plan.concurrency_limit,
            "index_base": dispatch_plan.index_base,
            "array_range": dispatch_plan.array_range,
            "manifest_fingerprint": fingerprint,
            "shards": [
                {
                    "array_range": s.plan.array_range,
                    "offset": s.offset,
                    "first_index": s.first_index,
                    "last_index": s.last_index,
                }
                for s in shards
            ],
        }
        print(json.dumps(data, indent=2))
    else:
        for shard in shards:
            print(shard.plan.directive())

    if args.script_dir is None:
        return 0

    command = args.task_command
    if command is None:
        if args.manifest is None or args.template is None:
            raise ConfigurationError(
                "--script-dir needs --command, or --manifest with --template"
            )
        out_dir = _required(args.out_dir or config.defaults.out_dir, "out_dir", "--out-dir")
        command = worker_command(
            args.manifest.resolve(),
            args.template,
            Path(out_dir).resolve(),
            index_base,
            fields=_fields(args.fields, args.manifest, DELIMITERS[args.delimiter]),
            shell=args.shell,
        )

    profile = config.resolve(args.env)
    resources = profile.resources if profile is not None else None

    args.script_dir.mkdir(parents=True, exist_ok=True)
    for n, shard in enumerate(shards):
        job_name = args.job_name if len(shards) == 1 else f"{args.job_name}-{n}"
        script = render_sbatch_script(
            shard.plan,
            command,
            resources=resources,
            job_name=job_name,
            logs_dir=args.logs_dir,
            offset=shard.offset,
        )
        path = args.script_dir / f"{job_name}.sbatch"
        path.write_text(script)
        print(f"Wrote {path}", file=sys.stderr)
    return 0


def handle_run(args: argparse.Namespace, config: ProjectConfig) -> int:
    """Handle the run command. Exits with the task's exit code."""
    from arraylab.runner import TaskEnv, run_task

    index_base = _index_base(args, config)
    out_dir = _required(args.out_dir or config.defaults.out_dir, "out_dir", "--out-dir")
    index = args.index if args.index is not None else task_index_from_env()

    env = TaskEnv(
        array_id=_array_id(args),
        index=index,
        out_dir=Path(out_dir),
        cwd=args.cwd,
        shell=args.shell,
    )
    result = run_task(_load(args), index_base, args.template, env)
    # Signals come back negative; report them the way a shell would
    return result.exit_code if result.exit_code >= 0 else 128 - result.exit_code


def handle_status(args: argparse.Namespace, config: ProjectConfig) -> int:
    """Handle the status command. Exits 1 if any task is unsuccessful or missing."""
    from arraylab.plan import plan
    from arraylab.results import (
        collect_results,
        display_results,
        missing_indices,
        results_table,
    )

    out_dir = _required(args.out_dir or config.defaults.out_dir, "out_dir", "--out-dir")
    results = collect_results(out_dir, _array_id(args))

    missing = None
    if args.count is not None:
        dispatch_plan = plan(args.count, 1, _index_base(args, config))
        missing = missing_indices(results, dispatch_plan)

    if args.json_output:
        print(json.dumps({"results": results_table(results), "missing": missing}, indent=2))
    else:
        display_results(results, missing=missing)

    any_unsuccessful = any(not r.succeeded for r in results)
    return 1 if any_unsuccessful or missing else 0


if __name__ == "__main__":
    sys.exit(main())
