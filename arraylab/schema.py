"""
Status record serialization and schema versioning.

Each finished task leaves a small JSON status record next to its logs.
Loaders tolerate missing fields so records written by older versions stay
readable.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from arraylab.types import TaskResult, TaskState

# Current schema version
SCHEMA_VERSION = "0.1"


def dump_task_result(result: TaskResult) -> dict[str, Any]:
    """Convert a TaskResult to a JSON-serializable dict."""
    return {
        "schema_version": SCHEMA_VERSION,
        "array_id": result.array_id,
        "index": result.index,
        "state": result.state.value,
        "exit_code": result.exit_code,
        "command": result.command,
        "stdout_path": str(result.stdout_path),
        "stderr_path": str(result.stderr_path),
        "started_at": result.started_at.isoformat() if result.started_at else None,
        "finished_at": result.finished_at.isoformat() if result.finished_at else None,
        "duration_ms": result.duration_ms,
    }


def _parse_time(value: Any) -> datetime | None:
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return None


def load_task_result(data: dict[str, Any]) -> TaskResult:
    """
    Load a TaskResult from a dict, tolerating missing optional fields.

    ``index`` and ``exit_code`` are required; a record without them is
    unusable.

    Raises:
        KeyError: If a required field is missing.
    """
    exit_code = int(data["exit_code"])
    state = data.get("state")
    if state is None:
        state = TaskState.SUCCEEDED if exit_code == 0 else TaskState.FAILED
    return TaskResult(
        index=int(data["index"]),
        exit_code=exit_code,
        stdout_path=Path(data.get("stdout_path", "")),
        stderr_path=Path(data.get("stderr_path", "")),
        array_id=data.get("array_id", ""),
        state=TaskState(state),
        command=data.get("command", ""),
        started_at=_parse_time(data.get("started_at")),
        finished_at=_parse_time(data.get("finished_at")),
        duration_ms=int(data.get("duration_ms", 0)),
    )
