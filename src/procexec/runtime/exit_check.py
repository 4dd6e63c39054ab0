"""Exit value validation and error message assembly."""

from __future__ import annotations

from ..errors import InvalidExitValueError
from .types import ProcessAttributes, ProcessOutput, ProcessResult

__all__ = [
    "MAX_OUTPUT_SIZE_IN_ERROR_MESSAGE",
    "check_exit",
    "add_exception_message_suffix",
    "format_exit_values",
    "format_seconds",
]

# Captured output up to this many characters is included in error messages;
# longer output is cut to its first and last half of this size
MAX_OUTPUT_SIZE_IN_ERROR_MESSAGE = 5000


def format_exit_values(values: frozenset[int] | None) -> str:
    if values is None:
        return "any"
    return "[" + ", ".join(str(v) for v in sorted(values)) + "]"


def format_seconds(seconds: float) -> str:
    if seconds == 1:
        return "1 second"
    return f"{seconds:g} seconds"


def check_exit(attributes: ProcessAttributes, result: ProcessResult) -> None:
    """Validate the exit value of ``result`` against the allowed exit values.

    Args:
        attributes: Launch configuration snapshot
        result: Result to validate

    Raises:
        InvalidExitValueError: If the exit value is not allowed
    """
    allowed = attributes.allowed_exit_values
    if allowed is None or result.exit_value in allowed:
        return

    parts = [
        f"Unexpected exit value: {result.exit_value}",
        f", allowed exit values: {format_exit_values(allowed)}",
    ]
    add_exception_message_suffix(attributes, parts, result.captured)
    raise InvalidExitValueError("".join(parts), result)


def add_exception_message_suffix(
    attributes: ProcessAttributes,
    parts: list[str],
    output: ProcessOutput | None = None,
) -> None:
    """Append command, directory, environment and output context to ``parts``.

    Directory and environment are only included when they differ from the
    inherited defaults.
    """
    parts.append(f", executed command {list(attributes.command)}")
    if attributes.directory is not None:
        parts.append(f" in directory {attributes.directory}")
    if attributes.environment:
        parts.append(f" with environment {dict(attributes.environment)}")

    if output is None:
        return

    length = len(output.data)
    text = output.string()
    if len(text) <= MAX_OUTPUT_SIZE_IN_ERROR_MESSAGE:
        parts.append(f", output was {length} bytes:\n{text.strip()}")
    else:
        half = MAX_OUTPUT_SIZE_IN_ERROR_MESSAGE // 2
        parts.append(f", output was {length} bytes (truncated):\n")
        parts.append(text[:half])
        parts.append("\n...\n")
        parts.append(text[-half:])
