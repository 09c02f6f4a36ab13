"""
Task runner: execute one array task's command.

For a single task index the runner:
1. Resolves the WorkUnit (when given a manifest)
2. Substitutes the unit's fields into the command template
3. Runs the command with stdout/stderr captured to per-task files
4. Writes a JSON status record atomically next to the logs
5. Returns a TaskResult

A command that exits non-zero is reported through TaskResult, not raised:
one sample failing an aligner must not stop the others from reporting.
Only a command that cannot be started raises CommandError.

Output files are named ``{array_id}_{index}.out|.err|.json``. The index
never contains an underscore, so the name maps back to exactly one
``(array_id, index)`` pair and concurrent tasks never share a file.

Template syntax is ``string.Template``: ``${read1}``, ``${index}``,
``${array_id}`` and, for interval units, ``${region}``. Write ``$$`` for
a literal dollar sign.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import string
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping

from arraylab.errors import CommandError, ConfigurationError, TemplateError
from arraylab.manifest import Manifest
from arraylab.resolver import resolve
from arraylab.schema import dump_task_result
from arraylab.types import Interval, TaskResult, TaskState, WorkUnit

logger = logging.getLogger(__name__)

# Exit code recorded when the command could not be started
COMMAND_ERROR_EXIT_CODE = 127

_TRANSITIONS: dict[TaskState, tuple[TaskState, ...]] = {
    TaskState.PENDING: (TaskState.RESOLVING, TaskState.RUNNING),
    TaskState.RESOLVING: (TaskState.RUNNING,),
    TaskState.RUNNING: (
        TaskState.SUCCEEDED,
        TaskState.FAILED,
        TaskState.COMMAND_ERROR,
    ),
}


@dataclass(frozen=True)
class TaskEnv:
    """
    Everything about a task invocation that is not the work unit itself.

    Attributes:
        array_id: Identifier of the array submission (namespaces outputs).
        index: The task index being run.
        out_dir: Directory for stdout/stderr/status files.
        cwd: Working directory for the child. Defaults to the current one.
        variables: Extra environment variables for the child.
        shell: Run the command through ``/bin/sh -c``.
    """

    array_id: str
    index: int
    out_dir: Path
    cwd: Path | None = None
    variables: Mapping[str, str] = field(default_factory=dict)
    shell: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "out_dir", Path(self.out_dir))
        check_array_id(self.array_id)
        if self.index < 0:
            raise ConfigurationError(f"Task index must be >= 0, got {self.index}")


def check_array_id(array_id: str) -> str:
    """
    Validate an array id for use in file names.

    Raises:
        ConfigurationError: If empty or containing a path separator.
    """
    if not array_id or array_id.strip() != array_id:
        raise ConfigurationError(f"Invalid array id {array_id!r}")
    if "/" in array_id or "\\" in array_id or array_id in (".", ".."):
        raise ConfigurationError(f"Array id {array_id!r} contains a path separator")
    return array_id


def output_paths(out_dir: str | Path, array_id: str, index: int) -> tuple[Path, Path]:
    """Return the ``(stdout, stderr)`` paths for one task."""
    stem = Path(out_dir) / f"{check_array_id(array_id)}_{index}"
    return stem.with_name(stem.name + ".out"), stem.with_name(stem.name + ".err")


def status_path(out_dir: str | Path, array_id: str, index: int) -> Path:
    """Return the status record path for one task."""
    return Path(out_dir) / f"{check_array_id(array_id)}_{index}.json"


# ---------------------------------------------------------------------------
# Template rendering
# ---------------------------------------------------------------------------


def template_mapping(work_unit: WorkUnit, env: TaskEnv) -> dict[str, str]:
    """Return the placeholder values available to a command template."""
    mapping = work_unit.as_dict()
    mapping["index"] = str(env.index)
    mapping["array_id"] = env.array_id
    if work_unit.is_interval:
        mapping["region"] = Interval.from_work_unit(work_unit).region()
    return mapping


def _substitute(template: str, mapping: Mapping[str, str]) -> str:
    try:
        return string.Template(template).substitute(mapping)
    except KeyError as e:
        available = ", ".join(sorted(mapping))
        raise TemplateError(
            f"Unresolved placeholder ${{{e.args[0]}}} in {template!r} "
            f"(available: {available})"
        ) from None
    except ValueError as e:
        raise TemplateError(f"Invalid template {template!r}: {e}") from None


def render_command(
    template: str, mapping: Mapping[str, str], shell: bool = False
) -> str | list[str]:
    """
    Substitute ``mapping`` into ``template``.

    Without ``shell`` the template is split into arguments first, so a
    value containing spaces stays one argument. With ``shell`` every value
    is quoted and a single command string is returned.

    Raises:
        TemplateError: On an unknown or malformed placeholder, or
            unbalanced quotes.
    """
    if shell:
        quoted = {k: shlex.quote(v) for k, v in mapping.items()}
        return _substitute(template, quoted)

    try:
        tokens = shlex.split(template)
    except ValueError as e:
        raise TemplateError(f"Cannot split template {template!r}: {e}") from None
    if not tokens:
        raise TemplateError("Command template is empty")
    return [_substitute(token, mapping) for token in tokens]


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def _write_status(path: Path, result: TaskResult) -> None:
    """Write the status record atomically via temp file + rename."""
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(dump_task_result(result), f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


class TaskRunner:
    """
    One task invocation and its state.

    States move ``pending -> resolving -> running`` and end in
    ``succeeded``, ``failed`` or ``command_error``. A runner is used once;
    retries belong to the scheduler.

    Example:
        runner = TaskRunner("bwa mem ref.fa ${read1} ${read2}", env)
        result = runner.run_index(manifest, index_base=1)
        runner.state  # TaskState.SUCCEEDED or TaskState.FAILED
    """

    def __init__(self, command_template: str, env: TaskEnv) -> None:
        self._template = command_template
        self._env = env
        self._state = TaskState.PENDING
        self._result: TaskResult | None = None

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def result(self) -> TaskResult | None:
        return self._result

    def _advance(self, new_state: TaskState) -> None:
        allowed = _TRANSITIONS.get(self._state, ())
        if new_state not in allowed:
            raise RuntimeError(
                f"Task {self._env.index}: cannot move from "
                f"{self._state.value} to {new_state.value}"
            )
        logger.debug(f"Task {self._env.index}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def run_index(self, manifest: Manifest, index_base: int) -> TaskResult:
        """Resolve this runner's index in ``manifest`` and run it."""
        self._advance(TaskState.RESOLVING)
        work_unit = resolve(manifest, self._env.index, index_base)
        return self.run(work_unit)

    def run(self, work_unit: WorkUnit) -> TaskResult:
        """
        Run the command for ``work_unit``.

        Returns:
            TaskResult with the child's exit code.

        Raises:
            TemplateError: If the template cannot be rendered. Nothing runs.
            CommandError: If the child could not be started, its log files
                could not be opened, or the status record could not be written.
        """
        env = self._env
        command = render_command(
            self._template, template_mapping(work_unit, env), shell=env.shell
        )
        command_str = command if isinstance(command, str) else shlex.join(command)

        stdout_path, stderr_path = output_paths(env.out_dir, env.array_id, env.index)
        child_env = {
            **os.environ,
            **env.variables,
            "ARRAYLAB_ARRAY_ID": env.array_id,
            "ARRAYLAB_TASK_INDEX": str(env.index),
        }

        self._advance(TaskState.RUNNING)
        logger.info(f"Task {env.index} ({env.array_id}) running: {command_str}")
        started_at = datetime.now()

        try:
            env.out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # No directory means no log files and no status record either
            self._advance(TaskState.COMMAND_ERROR)
            raise CommandError(
                f"Cannot create output directory: {e}", path=env.out_dir, index=env.index
            ) from e

        start_error: OSError | None = None
        try:
            with open(stdout_path, "w") as out, open(stderr_path, "w") as err:
                try:
                    completed = subprocess.run(
                        command,
                        stdout=out,
                        stderr=err,
                        cwd=env.cwd,
                        env=child_env,
                        shell=env.shell,
                    )
                except OSError as e:
                    err.write(f"arraylab: could not start command: {e}\n")
                    start_error = e
        except OSError as e:
            # Log files could not be opened; the command never ran
            start_error = e

        finished_at = datetime.now()
        duration_ms = int((finished_at - started_at).total_seconds() * 1000)

        if start_error is not None:
            self._advance(TaskState.COMMAND_ERROR)
            exit_code = COMMAND_ERROR_EXIT_CODE
        else:
            exit_code = completed.returncode
            self._advance(TaskState.SUCCEEDED if exit_code == 0 else TaskState.FAILED)

        self._result = TaskResult(
            index=env.index,
            exit_code=exit_code,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            array_id=env.array_id,
            state=self._state,
            command=command_str,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
        )
        record_path = status_path(env.out_dir, env.array_id, env.index)
        try:
            _write_status(record_path, self._result)
        except OSError as e:
            raise CommandError(
                f"Cannot write status record: {e}", path=record_path, index=env.index
            ) from e

        if start_error is not None:
            logger.debug(f"Task {env.index} could not start: {start_error}")
            raise CommandError(
                f"Could not start {command_str!r}: {start_error}", index=env.index
            ) from start_error

        if self._result.succeeded:
            logger.info(f"Task {env.index} succeeded in {duration_ms}ms")
        else:
            logger.warning(
                f"Task {env.index} failed with exit code {exit_code} "
                f"(stderr: {stderr_path})"
            )
        return self._result


def run(work_unit: WorkUnit, command_template: str, env: TaskEnv) -> TaskResult:
    """Run one work unit. See TaskRunner.run."""
    return TaskRunner(command_template, env).run(work_unit)


def run_task(
    manifest: Manifest,
    index_base: int,
    command_template: str,
    env: TaskEnv,
) -> TaskResult:
    """Resolve ``env.index`` in ``manifest`` and run it."""
    return TaskRunner(command_template, env).run_index(manifest, index_base)
