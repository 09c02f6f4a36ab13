"""
Index resolution: map a task index to its WorkUnit.

Resolution is pure and O(1). ``index_base`` is always explicit: the same
manifest is addressed 1-based by one submission and 0-based by another,
and guessing silently shifts every task onto its neighbour's data.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from arraylab.errors import IndexOutOfRangeError
from arraylab.manifest import AUTO, Manifest, load_manifest
from arraylab.types import WorkUnit

VALID_INDEX_BASES = (0, 1)


def check_index_base(index_base: int) -> int:
    if isinstance(index_base, bool) or index_base not in VALID_INDEX_BASES:
        raise ValueError(f"index_base must be 0 or 1, got {index_base!r}")
    return index_base


def resolve(manifest: Manifest, index: int, index_base: int) -> WorkUnit:
    """
    Return the WorkUnit addressed by ``index``.

    Args:
        manifest: The manifest to resolve against.
        index: Scheduler task index.
        index_base: 0 or 1, the index of the first unit.

    Returns:
        The unit at position ``index - index_base``.

    Raises:
        IndexOutOfRangeError: If ``index`` is outside
            ``[index_base, index_base + len(manifest))``.
        ValueError: If ``index_base`` is not 0 or 1.
    """
    check_index_base(index_base)
    last = index_base + len(manifest) - 1
    if index < index_base or index > last:
        raise IndexOutOfRangeError(
            f"Index {index} out of range [{index_base}, {last}] "
            f"({len(manifest)} units, base {index_base})",
            path=manifest.source,
            index=index,
        )
    return manifest[index - index_base]


def resolve_from_source(
    path: str | Path,
    index: int,
    index_base: int,
    fields: int | Sequence[str],
    delimiter: str | None = AUTO,
) -> WorkUnit:
    """
    Resolve ``index`` given only the manifest path.

    Stateless from the caller's point of view; within one process an
    unchanged file is parsed once and reused.
    """
    return resolve(load_manifest(path, fields, delimiter=delimiter), index, index_base)
