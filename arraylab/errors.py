"""
Error taxonomy for arraylab.

Every error raised by arraylab derives from ArrayLabError and carries a
``kind`` string. The CLI prints ``kind`` on stderr so wrapper scripts can
tell a malformed manifest from a missing environment variable without
parsing the message.

Each subclass also inherits the closest builtin exception, so code that
already handles ``OSError`` or ``ValueError`` keeps working.
"""

from __future__ import annotations

from pathlib import Path


class ArrayLabError(Exception):
    """
    Base class for all arraylab errors.

    Attributes:
        kind: Stable, machine-readable error kind.
        path: Manifest or table path involved, if any.
        index: Task index involved, if any.
        line_number: 1-indexed source line involved, if any.
    """

    kind = "ArrayLabError"

    def __init__(
        self,
        message: str,
        *,
        path: str | Path | None = None,
        index: int | None = None,
        line_number: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None
        self.index = index
        self.line_number = line_number

    def __str__(self) -> str:
        location = ""
        if self.path is not None:
            location = self.path
            if self.line_number is not None:
                location += f":{self.line_number}"
            location += ": "
        return f"{location}{self.message}"


class ManifestReadError(ArrayLabError, OSError):
    """Raised when a manifest or length table cannot be read."""

    kind = "IOError"


class FormatError(ArrayLabError, ValueError):
    """Raised when a line has the wrong shape or an unparsable value."""

    kind = "FormatError"


class EmptyManifestError(ArrayLabError, ValueError):
    """Raised when a manifest has no data lines."""

    kind = "EmptyManifestError"


class IndexOutOfRangeError(ArrayLabError, IndexError):
    """Raised when a task index falls outside the manifest."""

    kind = "IndexOutOfRangeError"


class InvalidWindowSizeError(ArrayLabError, ValueError):
    kind = "InvalidWindowSizeError"


class InvalidLengthError(ArrayLabError, ValueError):
    kind = "InvalidLengthError"


class InvalidConcurrencyError(ArrayLabError, ValueError):
    kind = "InvalidConcurrencyError"


class EmptyPlanError(ArrayLabError, ValueError):
    kind = "EmptyPlanError"


class TemplateError(ArrayLabError, ValueError):
    """Raised when a command template references an unknown placeholder."""

    kind = "TemplateError"


class CommandError(ArrayLabError, RuntimeError):
    """
    Raised when a child process could not be started.

    A command that starts and exits non-zero is not an error; it is
    reported through TaskResult.exit_code.
    """

    kind = "CommandError"


class ConfigurationError(ArrayLabError, ValueError):
    """Raised for missing or invalid configuration and environment input."""

    kind = "ConfigurationError"
