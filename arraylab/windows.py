"""
Window generation: partition sequences into fixed-size intervals.

Used when no interval manifest exists yet, typically to split a reference
genome into regions that array tasks process independently.

Example:
    manifest = generate_windows({"chr1": 250_000}, size=100_000)
    [i.region() for i in manifest.intervals()]
    # ['chr1:1-100000', 'chr1:100001-200000', 'chr1:200001-250000']
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, Mapping

from arraylab.errors import (
    EmptyManifestError,
    FormatError,
    InvalidLengthError,
    InvalidWindowSizeError,
)
from arraylab.manifest import Manifest, iter_data_lines
from arraylab.types import Interval

logger = logging.getLogger(__name__)


def _check_size(size: int) -> None:
    if isinstance(size, bool) or not isinstance(size, int):
        raise InvalidWindowSizeError(f"Window size must be an integer, got {size!r}")
    if size <= 0:
        raise InvalidWindowSizeError(f"Window size must be > 0, got {size}")


def iter_windows(name: str, length: int, size: int) -> Iterator[Interval]:
    """
    Yield consecutive ``[k*size, min((k+1)*size, length))`` intervals.

    The last interval is shorter when ``length`` is not a multiple of
    ``size``.

    Raises:
        InvalidWindowSizeError: If ``size <= 0``.
        InvalidLengthError: If ``length <= 0``.
    """
    _check_size(size)
    if length <= 0:
        raise InvalidLengthError(f"Sequence {name!r} has length {length}")

    for start in range(0, length, size):
        yield Interval(name, start, min(start + size, length))


def generate_windows(
    lengths: Mapping[str, int] | Iterable[tuple[str, int]],
    size: int,
) -> Manifest:
    """
    Build an interval manifest covering every sequence in input order.

    All lengths are validated before any interval is produced.

    Args:
        lengths: ``{name: length}`` or ordered ``(name, length)`` pairs.
        size: Window size in bases (> 0).

    Returns:
        A Manifest with fields ``chrom, start, stop``.

    Raises:
        InvalidWindowSizeError: If ``size <= 0``.
        InvalidLengthError: If any length is ``<= 0``.
        EmptyManifestError: If ``lengths`` is empty.
    """
    _check_size(size)
    pairs = list(lengths.items()) if isinstance(lengths, Mapping) else list(lengths)

    for name, length in pairs:
        if length <= 0:
            raise InvalidLengthError(f"Sequence {name!r} has length {length}")
    if not pairs:
        raise EmptyManifestError("No sequences to window")

    intervals = [
        interval for name, length in pairs for interval in iter_windows(name, length, size)
    ]
    logger.debug(
        f"Generated {len(intervals)} windows of size {size} over {len(pairs)} sequences"
    )
    return Manifest.from_intervals(intervals)


def load_lengths(path: str | Path) -> list[tuple[str, int]]:
    """
    Read a sequence-length table.

    Accepts two-column ``name length`` files and FASTA indexes (``.fai``),
    of which only the first two columns are used.

    Returns:
        ``(name, length)`` pairs in file order.

    Raises:
        ManifestReadError: If the file cannot be read.
        FormatError: If a line is short, a length is not an integer, or a
            name repeats.
        EmptyManifestError: If the table has no data lines.
    """
    pairs: list[tuple[str, int]] = []
    seen: set[str] = set()

    for line_number, line in iter_data_lines(path):
        columns = line.split()
        if len(columns) < 2:
            raise FormatError(
                f"Expected at least 2 columns, got {len(columns)}",
                path=path,
                line_number=line_number,
            )
        name, raw_length = columns[0], columns[1]
        try:
            length = int(raw_length)
        except ValueError:
            raise FormatError(
                f"Length {raw_length!r} is not an integer",
                path=path,
                line_number=line_number,
            ) from None
        if name in seen:
            raise FormatError(
                f"Duplicate sequence name {name!r}",
                path=path,
                line_number=line_number,
            )
        seen.add(name)
        pairs.append((name, length))

    if not pairs:
        raise EmptyManifestError("Length table has no data lines", path=path)
    return pairs
