"""
Manifest loading, construction and serialization.

A Manifest is the explicit, versioned list of per-task parameters that an
array submission works through. It replaces the shell idiom of recomputing
a ``FILES=(*.fastq)`` glob in every task: the list is fixed once, written
to disk, and every task resolves its own line by index.

Manifest file format:
- One WorkUnit per line, tab- or whitespace-delimited
- Lines starting with ``#`` and blank lines are skipped and do not consume
  an index
- Every data line has the same number of columns

Interval tables are manifests with the fields ``chrom, start, stop`` and
0-based half-open coordinates (the BED convention).
"""

from __future__ import annotations

import functools
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

from arraylab._canonical import fingerprint as _fingerprint
from arraylab.errors import (
    ConfigurationError,
    EmptyManifestError,
    FormatError,
    ManifestReadError,
)
from arraylab.types import INTERVAL_FIELDS, Interval, WorkUnit

logger = logging.getLogger(__name__)

# Placeholder names the task runner provides itself
RESERVED_FIELDS = frozenset({"index", "array_id", "region"})

AUTO = "auto"


def default_field_names(count: int) -> tuple[str, ...]:
    """Return ``("col1", ..., "colN")``."""
    return tuple(f"col{i}" for i in range(1, count + 1))


def _validate_fields(fields: Sequence[str]) -> tuple[str, ...]:
    names = tuple(fields)
    if not names:
        raise ConfigurationError("A manifest needs at least one field")
    for name in names:
        if not name.isidentifier():
            raise ConfigurationError(
                f"Field name {name!r} is not a valid identifier"
            )
        if name in RESERVED_FIELDS:
            raise ConfigurationError(
                f"Field name {name!r} is reserved "
                f"(reserved: {', '.join(sorted(RESERVED_FIELDS))})"
            )
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate field names in {list(names)}")
    return names


class Manifest:
    """
    An ordered, immutable sequence of WorkUnits sharing one field schema.

    Positional access through ``manifest[i]`` is 0-indexed like any Python
    sequence. ``at(index, index_base)`` addresses units the way a scheduler
    does, with an explicit 0 or 1 base.

    Example:
        manifest = load_manifest("samples.tsv", ["read1", "read2"])
        manifest.at(1, index_base=1)  # first data line
        manifest[0]                   # same unit
    """

    def __init__(
        self,
        units: Iterable[WorkUnit],
        fields: Sequence[str] | None = None,
        source: str | Path | None = None,
        line_numbers: Sequence[int] | None = None,
    ) -> None:
        """
        Build a manifest, checking that every unit shares one schema.

        Args:
            units: The work units, in task order.
            fields: Expected field names. Defaults to the first unit's.
            source: Path the manifest was read from, if any.
            line_numbers: 1-indexed source line of each unit.

        Raises:
            EmptyManifestError: If ``units`` is empty.
            FormatError: If a unit's fields differ from the schema.
        """
        self._units = tuple(units)
        self._source = str(source) if source is not None else None

        if not self._units:
            raise EmptyManifestError("Manifest has no data lines", path=source)

        schema = tuple(fields) if fields is not None else self._units[0].fields
        self._fields = _validate_fields(schema)

        if line_numbers is None:
            self._line_numbers = tuple(range(1, len(self._units) + 1))
        else:
            self._line_numbers = tuple(line_numbers)
            if len(self._line_numbers) != len(self._units):
                raise ValueError("line_numbers must align with units")

        for unit, line_number in zip(self._units, self._line_numbers):
            if unit.fields != self._fields:
                raise FormatError(
                    f"Unit fields {list(unit.fields)} do not match manifest "
                    f"fields {list(self._fields)}",
                    path=self._source,
                    line_number=line_number,
                )

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[WorkUnit]:
        return iter(self._units)

    def __getitem__(self, position: int) -> WorkUnit:
        return self._units[position]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self._fields == other._fields and self._units == other._units

    def __hash__(self) -> int:
        return hash((self._fields, self._units))

    def __repr__(self) -> str:
        source = f", source={self._source!r}" if self._source else ""
        return f"Manifest(fields={list(self._fields)}, units={len(self)}{source})"

    @property
    def fields(self) -> tuple[str, ...]:
        return self._fields

    @property
    def source(self) -> str | None:
        return self._source

    def line_number(self, position: int) -> int:
        """Return the 1-indexed source line of the unit at ``position``."""
        return self._line_numbers[position]

    def at(self, index: int, index_base: int) -> WorkUnit:
        """Look up a unit by scheduler-style index. See ``resolver.resolve``."""
        from arraylab.resolver import resolve

        return resolve(self, index, index_base)

    @functools.cached_property
    def fingerprint(self) -> str:
        """Content fingerprint of the schema and rows (16 hex chars)."""
        return _fingerprint(
            {"fields": self._fields, "rows": [u.values for u in self._units]}
        )

    def intervals(self) -> list[Interval]:
        """
        Return the units as Intervals.

        Raises:
            FormatError: If this is not an interval manifest.
        """
        return [Interval.from_work_unit(unit) for unit in self._units]

    def to_manifest_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot of the manifest."""
        return {
            "type": "Manifest",
            "fields": list(self._fields),
            "rows": [list(unit.values) for unit in self._units],
            "source": self._source,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_manifest_dict(cls, manifest: dict[str, Any]) -> Manifest:
        """
        Reconstruct a Manifest from ``to_manifest_dict()`` output.

        Raises:
            ValueError: If the dict is not a Manifest snapshot.
            FormatError: If the stored fingerprint does not match the rows.
        """
        if manifest.get("type") != "Manifest":
            raise ValueError(f"Expected Manifest dict, got: {manifest.get('type')}")
        fields = tuple(manifest["fields"])
        units = [WorkUnit(fields, tuple(str(v) for v in row)) for row in manifest["rows"]]
        result = cls(units, fields=fields, source=manifest.get("source"))
        expected = manifest.get("fingerprint")
        if expected is not None and expected != result.fingerprint:
            raise FormatError(
                f"Manifest fingerprint mismatch: stored {expected}, "
                f"computed {result.fingerprint}",
                path=result.source,
            )
        return result

    @classmethod
    def from_intervals(cls, intervals: Iterable[Interval]) -> Manifest:
        return cls(
            (interval.to_work_unit() for interval in intervals),
            fields=INTERVAL_FIELDS,
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _split(line: str, delimiter: str | None) -> list[str]:
    if delimiter is None:
        return line.split()
    return line.split(delimiter)


def iter_data_lines(path: str | Path) -> Iterator[tuple[int, str]]:
    """
    Yield ``(line_number, line)`` for each data line of a delimited file.

    Blank lines and ``#`` comments are skipped; line numbers are 1-indexed
    positions in the file.

    Raises:
        ManifestReadError: If the file cannot be opened or decoded.
    """
    try:
        with open(path, encoding="utf-8") as f:
            for line_number, raw in enumerate(f, start=1):
                line = raw.rstrip("\r\n")
                if not line.strip() or line.startswith("#"):
                    continue
                yield line_number, line
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestReadError(f"Cannot read file: {e}", path=path) from e


def _parse_manifest(
    path: Path,
    fields: int | tuple[str, ...],
    delimiter: str | None,
) -> Manifest:
    names = default_field_names(fields) if isinstance(fields, int) else fields
    names = _validate_fields(names)

    units: list[WorkUnit] = []
    line_numbers: list[int] = []
    effective = delimiter

    for line_number, line in iter_data_lines(path):
        if effective == AUTO:
            effective = "\t" if "\t" in line else None
        values = _split(line, effective)
        if len(values) != len(names):
            raise FormatError(
                f"Expected {len(names)} fields, got {len(values)}",
                path=path,
                line_number=line_number,
            )
        units.append(WorkUnit(names, tuple(values)))
        line_numbers.append(line_number)

    if not units:
        raise EmptyManifestError("Manifest has no data lines", path=path)

    logger.debug(f"Loaded {len(units)} work units from {path}")
    return Manifest(units, fields=names, source=path, line_numbers=line_numbers)


def sniff_field_count(path: str | Path, delimiter: str | None = AUTO) -> int:
    """
    Return the column count of the first data line.

    Raises:
        ManifestReadError: If the file is unreadable.
        EmptyManifestError: If there are no data lines.
    """
    for _, line in iter_data_lines(path):
        if delimiter == AUTO:
            delimiter = "\t" if "\t" in line else None
        return len(_split(line, delimiter))
    raise EmptyManifestError("Manifest has no data lines", path=path)


@functools.lru_cache(maxsize=32)
def _load_cached(
    path: str,
    mtime_ns: int,
    size: int,
    fields: int | tuple[str, ...],
    delimiter: str | None,
) -> Manifest:
    # mtime_ns and size are part of the cache key only
    return _parse_manifest(Path(path), fields, delimiter)


def load_manifest(
    path: str | Path,
    fields: int | Sequence[str],
    delimiter: str | None = AUTO,
) -> Manifest:
    """
    Load a delimited manifest file.

    Repeated loads of an unchanged file are served from an in-process
    cache, so a driver resolving many indices reads the file once.

    Args:
        path: Path to the manifest.
        fields: Expected field count (names become ``col1..colN``) or the
            field names themselves.
        delimiter: ``"\\t"`` for tabs, ``None`` for any whitespace run, or
            ``"auto"`` to pick tabs if the first data line has one.

    Returns:
        The loaded Manifest.

    Raises:
        ManifestReadError: If the file is unreadable.
        FormatError: If a data line has the wrong column count.
        EmptyManifestError: If there are no data lines.
        ConfigurationError: If the field names are invalid.
    """
    path = Path(path)
    if isinstance(fields, int):
        if fields < 1:
            raise ConfigurationError(f"Field count must be >= 1, got {fields}")
        key: int | tuple[str, ...] = fields
    else:
        key = tuple(fields)

    try:
        stat = path.stat()
    except OSError as e:
        raise ManifestReadError(f"Cannot read file: {e}", path=path) from e

    return _load_cached(
        str(path.resolve()), stat.st_mtime_ns, stat.st_size, key, delimiter
    )


def load_intervals(path: str | Path, delimiter: str | None = AUTO) -> Manifest:
    """
    Load a BED-like ``chrom start stop`` table.

    Raises:
        FormatError: If a coordinate is not an integer or the interval is
            empty or negative. The error names the offending line.
    """
    manifest = load_manifest(path, INTERVAL_FIELDS, delimiter=delimiter)
    for position, unit in enumerate(manifest):
        try:
            Interval.from_work_unit(unit)
        except FormatError as e:
            raise FormatError(
                e.message, path=path, line_number=manifest.line_number(position)
            ) from None
    return manifest


def clear_cache() -> None:
    """Drop all cached manifests."""
    _load_cached.cache_clear()


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def write_manifest(
    manifest: Manifest,
    path: str | Path,
    header: str | None = None,
) -> Path:
    """
    Write a manifest as a tab-delimited file.

    The file is written to a temporary name in the target directory and
    renamed into place, so concurrent readers never see a partial file.

    Args:
        manifest: The manifest to write.
        path: Destination path.
        header: Optional comment written as the first line (``#`` is added).

    Returns:
        The destination path.

    Raises:
        FormatError: If a value contains a tab or newline.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    lines = []
    if header is not None:
        lines.append(f"# {header}")
    for position, unit in enumerate(manifest):
        for value in unit.values:
            if "\t" in value or "\n" in value or "\r" in value:
                raise FormatError(
                    f"Value {value!r} contains a tab or newline",
                    index=position,
                )
        lines.append("\t".join(unit.values))

    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise

    logger.info(f"Wrote {len(manifest)} work units to {path}")
    return path
