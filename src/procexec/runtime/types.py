"""Value types shared by the runtime components.

- ProcessAttributes: immutable snapshot of a launch configuration
- ProcessOutput: captured output bytes with decoding helpers
- ProcessResult: exit value and optional captured output
"""

from __future__ import annotations

import locale
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

from ..errors import OutputNotReadError

__all__ = [
    "ProcessAttributes",
    "ProcessOutput",
    "ProcessResult",
]


def _freeze_environment(environment: Mapping[str, str | None] | None) -> Mapping[str, str | None]:
    return MappingProxyType(dict(environment or {}))


@dataclass(frozen=True)
class ProcessAttributes:
    """Immutable launch configuration snapshot.

    Used for error message context and exit value validation only.

    Attributes:
        command: Command line (first element is the executable)
        directory: Working directory (None = inherit)
        environment: Environment overlay; a None value removes the variable
        allowed_exit_values: Accepted exit values (None = any value)
    """

    command: tuple[str, ...]
    directory: Path | None = None
    environment: Mapping[str, str | None] = field(default_factory=dict)
    allowed_exit_values: frozenset[int] | None = None

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError("Command has not been set.")
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "environment", _freeze_environment(self.environment))
        if self.allowed_exit_values is not None:
            object.__setattr__(self, "allowed_exit_values", frozenset(self.allowed_exit_values))


class ProcessOutput(BaseModel):
    """Bytes written by the process to its output stream."""

    model_config = ConfigDict(frozen=True)

    data: bytes = b""

    def string(self, encoding: str | None = None) -> str:
        """Decode the output.

        Args:
            encoding: Charset to use (None = the platform's preferred encoding)
        """
        if encoding is None:
            encoding = locale.getpreferredencoding(False)
        return self.data.decode(encoding, errors="replace")

    def utf8(self) -> str:
        return self.string("utf-8")

    def lines(self, encoding: str | None = None) -> list[str]:
        """Decode the output and split it into lines (without line endings)."""
        return self.string(encoding).splitlines()

    def __len__(self) -> int:
        return len(self.data)


class ProcessResult(BaseModel):
    """Outcome of a finished process.

    Attributes:
        exit_value: Exit value of the process (negative if killed by a signal)
        captured: Captured output, or None if output was not read
    """

    model_config = ConfigDict(frozen=True)

    exit_value: int
    captured: ProcessOutput | None = None

    @property
    def has_output(self) -> bool:
        return self.captured is not None

    @property
    def output(self) -> ProcessOutput:
        """Captured output.

        Raises:
            OutputNotReadError: If the process was launched without output capture
        """
        if self.captured is None:
            raise OutputNotReadError(
                "Process output was not read. To enable output reading please call "
                "ProcessExecutor.read_output(True) before starting the process."
            )
        return self.captured

    def output_bytes(self) -> bytes:
        return self.output.data

    def output_string(self, encoding: str | None = None) -> str:
        return self.output.string(encoding)

    def output_utf8(self) -> str:
        return self.output.utf8()
