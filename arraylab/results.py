"""
Collect and display the status records of an array.

Each finished task writes ``{array_id}_{index}.json`` in its output
directory. This module gathers those records into TaskResults, tabulates
them (optionally as a pandas DataFrame) and prints a rich summary.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable

import pandas as pd
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from arraylab.errors import FormatError
from arraylab.plan import format_index_list
from arraylab.runner import check_array_id
from arraylab.schema import load_task_result
from arraylab.types import DispatchPlan, TaskResult, TaskState

logger = logging.getLogger(__name__)


def collect_results(out_dir: str | Path, array_id: str) -> list[TaskResult]:
    """
    Read every status record of ``array_id`` in ``out_dir``.

    Returns:
        TaskResults ordered by index. Empty if the directory is missing.

    Raises:
        FormatError: If a record is not valid JSON or lacks required fields.
    """
    out_dir = Path(out_dir)
    check_array_id(array_id)
    if not out_dir.is_dir():
        return []

    pattern = re.compile(rf"^{re.escape(array_id)}_(\d+)\.json$")
    results = []
    for path in out_dir.iterdir():
        if not pattern.match(path.name):
            continue
        try:
            with open(path) as f:
                results.append(load_task_result(json.load(f)))
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise FormatError(f"Unreadable status record: {e}", path=path) from e

    results.sort(key=lambda r: r.index)
    logger.debug(f"Collected {len(results)} status records for {array_id}")
    return results


def missing_indices(results: Iterable[TaskResult], dispatch_plan: DispatchPlan) -> list[int]:
    """Return indices of ``dispatch_plan`` that have no status record."""
    seen = {r.index for r in results}
    return [
        i
        for i in range(dispatch_plan.first_index, dispatch_plan.last_index + 1)
        if i not in seen
    ]


def results_table(
    results: Iterable[TaskResult], as_dataframe: bool = False
) -> list[dict[str, Any]] | pd.DataFrame:
    """
    Get results as a table.

    Args:
        results: Task results to tabulate.
        as_dataframe: If True, return a pandas DataFrame.

    Returns:
        List of dicts by default, or DataFrame if as_dataframe=True.
    """
    rows = [
        {
            "index": r.index,
            "array_id": r.array_id,
            "state": r.state.value,
            "exit_code": r.exit_code,
            "duration_ms": r.duration_ms,
            "started_at": r.started_at.isoformat() if r.started_at else None,
            "stdout_path": str(r.stdout_path),
            "stderr_path": str(r.stderr_path),
            "command": r.command,
        }
        for r in results
    ]
    if not as_dataframe:
        return rows
    return pd.DataFrame(
        rows,
        columns=[
            "index",
            "array_id",
            "state",
            "exit_code",
            "duration_ms",
            "started_at",
            "stdout_path",
            "stderr_path",
            "command",
        ],
    )


def display_results(
    results: list[TaskResult],
    console: Console | None = None,
    missing: list[int] | None = None,
    max_rows: int = 50,
) -> None:
    """
    Print a summary of task results and a table of unsuccessful tasks.

    Args:
        results: Collected task results.
        console: Optional rich Console instance.
        missing: Indices with no status record, if known.
        max_rows: Maximum failed tasks listed individually.
    """
    console = console or Console()
    df = results_table(results, as_dataframe=True)

    if df.empty and not missing:
        console.print("[yellow]No status records found.[/yellow]")
        return

    counts = df["state"].value_counts()
    summary = Table(title="Array Summary", show_header=True, header_style="bold")
    summary.add_column("State", style="cyan")
    summary.add_column("Tasks", justify="right")
    summary.add_row("Recorded", str(len(df)))
    summary.add_row(
        "Succeeded", f"[green]{counts.get(TaskState.SUCCEEDED.value, 0)}[/green]"
    )
    summary.add_row("Failed", f"[red]{counts.get(TaskState.FAILED.value, 0)}[/red]")
    summary.add_row(
        "Could not start", f"[red]{counts.get(TaskState.COMMAND_ERROR.value, 0)}[/red]"
    )
    if missing is not None:
        summary.add_row("Missing", f"[yellow]{len(missing)}[/yellow]")

    succeeded = df[df["state"] == TaskState.SUCCEEDED.value]
    if not succeeded.empty:
        summary.add_row("", "")
        summary.add_row("Mean duration", f"{succeeded['duration_ms'].mean() / 1000:.1f}s")
        summary.add_row("Max duration", f"{succeeded['duration_ms'].max() / 1000:.1f}s")
    console.print(summary)

    unsuccessful = df[df["state"] != TaskState.SUCCEEDED.value]
    if not unsuccessful.empty:
        table = Table(title="Unsuccessful Tasks", show_header=True)
        table.add_column("Index", justify="right", style="cyan")
        table.add_column("State")
        table.add_column("Exit", justify="right", style="red")
        table.add_column("stderr")
        for _, row in unsuccessful.head(max_rows).iterrows():
            table.add_row(
                str(row["index"]), row["state"], str(row["exit_code"]), row["stderr_path"]
            )
        console.print()
        console.print(table)
        if len(unsuccessful) > max_rows:
            console.print(f"... and {len(unsuccessful) - max_rows} more")

    rerun = sorted(set(unsuccessful["index"].tolist()) | set(missing or []))
    if rerun:
        console.print()
        console.print(
            Panel(
                f"--array={format_index_list(rerun)}",
                title="[bold]Resubmit[/bold]",
                border_style="yellow",
            )
        )
