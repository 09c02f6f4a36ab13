"""
Configuration for arraylab: project file and scheduler environment.

This module provides:

- find_config_file: Walk up directories to locate .arraylab.toml
- deep_merge: Recursively merge two dicts (override wins for leaf values)
- Defaults: Typed ``[defaults]`` table
- EnvironmentProfile: A named environment profile (slurm resources)
- ProjectConfig: Main config object with load/resolve interface
- array_id_from_env / task_index_from_env: Scheduler-supplied identity

Configuration is loaded from `.arraylab.toml` with optional
`.arraylab.local.toml` overrides deep-merged on top.

Example ``.arraylab.toml``::

    [project]
    default_env = "cluster"

    [defaults]
    index_base = 1
    concurrency = 20

    [environments.cluster]
    type = "slurm"
    partition = "short"
    time = "4:00:00"
    modules = ["samtools/1.17"]
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from arraylab.errors import ConfigurationError
from arraylab.plan import DEFAULT_MAX_ARRAY_SIZE, INDEX_OFFSET_VAR, SlurmResources

CONFIG_FILENAME = ".arraylab.toml"
LOCAL_CONFIG_FILENAME = ".arraylab.local.toml"

# Checked in order; the first one set wins
ARRAY_ID_VARS = ("ARRAYLAB_ARRAY_ID", "SLURM_ARRAY_JOB_ID")
TASK_ID_VAR = "SLURM_ARRAY_TASK_ID"


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """
    Walk up from *start_dir* to find `.arraylab.toml`.

    Args:
        start_dir: Directory to start searching from. Defaults to ``Path.cwd()``.

    Returns:
        Path to the config file, or ``None`` if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate

        parent = current.parent
        if parent == current:
            # Reached filesystem root
            return None
        current = parent


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts. *override* wins for leaf values.

    Neither input is mutated; a new dict is returned.
    """
    merged: dict[str, Any] = {}

    for key in base.keys() | override.keys():
        if key in base and key in override:
            base_val = base[key]
            over_val = override[key]
            if isinstance(base_val, dict) and isinstance(over_val, dict):
                merged[key] = deep_merge(base_val, over_val)
            else:
                merged[key] = over_val
        elif key in base:
            merged[key] = base[key]
        else:
            merged[key] = override[key]

    return merged


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML: {e}", path=path) from e


def _optional_int(d: dict[str, Any], key: str) -> int | None:
    value = d.get(key)
    # TOML booleans are Python bools, which are ints
    if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
        raise ConfigurationError(f"[defaults] {key} must be an integer, got {value!r}")
    return value


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Defaults:
    """
    Typed ``[defaults]`` table.

    ``index_base`` stays ``None`` unless set; commands that need it then
    require an explicit ``--base``.
    """

    index_base: int | None = None
    concurrency: int | None = None
    window_size: int | None = None
    max_array_size: int = DEFAULT_MAX_ARRAY_SIZE
    out_dir: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Defaults:
        """
        Parse the ``[defaults]`` table.

        Raises:
            ConfigurationError: If a value has the wrong type, or index_base
                is not 0 or 1.
        """
        index_base = _optional_int(d, "index_base")
        if index_base is not None and index_base not in (0, 1):
            raise ConfigurationError(
                f"[defaults] index_base must be 0 or 1, got {index_base!r}"
            )
        max_array_size = _optional_int(d, "max_array_size")
        out_dir = d.get("out_dir")
        if out_dir is not None and not isinstance(out_dir, str):
            raise ConfigurationError(
                f"[defaults] out_dir must be a string, got {out_dir!r}"
            )
        return cls(
            index_base=index_base,
            concurrency=_optional_int(d, "concurrency"),
            window_size=_optional_int(d, "window_size"),
            max_array_size=(
                DEFAULT_MAX_ARRAY_SIZE if max_array_size is None else max_array_size
            ),
            out_dir=out_dir,
        )


@dataclass(frozen=True)
class EnvironmentProfile:
    """
    A named environment profile from ``[environments.NAME]``.

    Attributes:
        name: Profile name (the TOML key under ``[environments]``).
        type: Backend type identifier (only ``"slurm"`` renders scripts).
        config: All remaining key/value pairs from the profile section.
    """

    name: str
    type: str
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def resources(self) -> SlurmResources:
        return SlurmResources.from_dict(self.config)


@dataclass
class ProjectConfig:
    """
    Project configuration loaded from ``.arraylab.toml``.

    Typical usage::

        config = ProjectConfig.load()
        resources = config.resolve("cluster").resources
    """

    defaults: Defaults = field(default_factory=Defaults)
    environments: dict[str, EnvironmentProfile] = field(default_factory=dict)
    default_env: str | None = None
    path: Path | None = None

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        start_dir: Path | None = None,
    ) -> ProjectConfig:
        """
        Find and load project configuration.

        With an explicit *path*, that file must exist. Otherwise walks up
        from *start_dir* (default: cwd); when no file is found an empty
        configuration is returned.

        Raises:
            ConfigurationError: If *path* is missing or a file is not valid TOML.
        """
        if path is not None:
            if not path.is_file():
                raise ConfigurationError("Config file not found", path=path)
            config_path: Path | None = path
        else:
            config_path = find_config_file(start_dir)
        if config_path is None:
            return cls()

        data = _load_toml(config_path)
        local_path = config_path.parent / LOCAL_CONFIG_FILENAME
        if local_path.is_file():
            data = deep_merge(data, _load_toml(local_path))

        config = cls.from_dict(data)
        config.path = config_path
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        """Create a ProjectConfig from a parsed (and merged) TOML dict."""
        environments: dict[str, EnvironmentProfile] = {}
        for env_name, env_raw in data.get("environments", {}).items():
            env_raw = dict(env_raw)
            env_type = env_raw.pop("type", "slurm")
            environments[env_name] = EnvironmentProfile(
                name=env_name, type=env_type, config=env_raw
            )

        return cls(
            defaults=Defaults.from_dict(data.get("defaults", {})),
            environments=environments,
            default_env=data.get("project", {}).get("default_env"),
        )

    def resolve(self, env_name: str | None = None) -> EnvironmentProfile | None:
        """
        Return the named profile, the default profile, or ``None``.

        Raises:
            ConfigurationError: If *env_name* (or default_env) is unknown.
        """
        env_name = env_name or self.default_env
        if env_name is None:
            return None
        if env_name not in self.environments:
            available = ", ".join(sorted(self.environments)) or "(none)"
            raise ConfigurationError(
                f"Unknown environment {env_name!r}. "
                f"Available environments: {available}"
            )
        return self.environments[env_name]

    def list_environments(self) -> list[str]:
        return sorted(self.environments)


# ---------------------------------------------------------------------------
# Scheduler environment
# ---------------------------------------------------------------------------


def array_id_from_env(environ: Mapping[str, str] | None = None) -> str:
    """
    Return the identifier of the current array submission.

    Reads ARRAYLAB_ARRAY_ID, then SLURM_ARRAY_JOB_ID. There is no default:
    two unrelated submissions sharing an ID would overwrite each other's
    output.

    Raises:
        ConfigurationError: If neither variable is set.
    """
    environ = os.environ if environ is None else environ
    for var in ARRAY_ID_VARS:
        value = environ.get(var, "").strip()
        if value:
            return value
    raise ConfigurationError(
        f"No array id in environment (set one of {', '.join(ARRAY_ID_VARS)})"
    )


def task_index_from_env(environ: Mapping[str, str] | None = None) -> int:
    """
    Return this task's manifest index.

    Computed as SLURM_ARRAY_TASK_ID plus ARRAYLAB_INDEX_OFFSET (default 0),
    the offset being set by sharded submissions.

    Raises:
        ConfigurationError: If the task ID is missing or not an integer.
    """
    environ = os.environ if environ is None else environ
    raw = environ.get(TASK_ID_VAR)
    if raw is None:
        raise ConfigurationError(
            f"{TASK_ID_VAR} not set - not running in an array task"
        )
    raw_offset = environ.get(INDEX_OFFSET_VAR, "0")
    try:
        return int(raw) + int(raw_offset)
    except ValueError:
        raise ConfigurationError(
            f"Non-integer task id {TASK_ID_VAR}={raw!r} "
            f"{INDEX_OFFSET_VAR}={raw_offset!r}"
        ) from None
