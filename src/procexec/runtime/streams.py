"""Byte sinks used as stream pump targets.

- NullSink: discards everything (default target for stdout/stderr)
- TeeSink: writes to two sinks
- LineSink: splits the byte stream into lines
- LoggerSink: writes each line to a logging.Logger
- TextSink: adapts a text stream (str writes) to bytes
"""

from __future__ import annotations

import codecs
import io
import locale
import logging
from abc import ABC, abstractmethod
from typing import IO, Any

__all__ = [
    "NullSink",
    "TeeSink",
    "LineSink",
    "LoggerSink",
    "TextSink",
    "NULL_SINK",
    "as_binary_sink",
]

CR = 0x0D
LF = 0x0A


class NullSink(io.RawIOBase):
    """Sink that discards all data."""

    def writable(self) -> bool:
        return True

    def write(self, b: Any) -> int:
        return len(b)

    def close(self) -> None:
        # Shared instance, never actually closed
        pass

    def __repr__(self) -> str:
        return "NullSink()"


NULL_SINK = NullSink()


class TeeSink:
    """Sink writing every chunk to both ``left`` and ``right``.

    Not an io.IOBase: being garbage collected must never close the wrapped
    streams, which usually belong to the caller.
    """

    def __init__(self, left: IO[bytes], right: IO[bytes]) -> None:
        self.left = left
        self.right = right
        self.closed = False

    def writable(self) -> bool:
        return True

    def write(self, b: Any) -> int:
        self.left.write(b)
        self.right.write(b)
        return len(b)

    def flush(self) -> None:
        self.left.flush()
        self.right.flush()

    def close(self) -> None:
        """Flush and close both wrapped streams."""
        if self.closed:
            return
        self.closed = True
        try:
            self.flush()
        finally:
            try:
                self.left.close()
            finally:
                self.right.close()

    def __repr__(self) -> str:
        return f"TeeSink({self.left!r}, {self.right!r})"


class LineSink(io.RawIOBase, ABC):
    """Sink that splits the byte stream into lines.

    A new line starts on CR, or on LF not preceded by CR or LF, so CRLF
    endings and blank lines between them do not produce extra lines.
    Incomplete trailing data is processed on flush() and close().
    """

    def __init__(self, encoding: str | None = None) -> None:
        super().__init__()
        self._buffer = bytearray()
        self._last_byte = 0
        self.encoding = encoding

    def writable(self) -> bool:
        return True

    def write(self, b: Any) -> int:
        data = bytes(b)
        for byte in data:
            if byte == CR or byte == LF:
                if byte == CR or self._last_byte not in (CR, LF):
                    self._process_buffer()
            else:
                self._buffer.append(byte)
            self._last_byte = byte
        return len(data)

    def flush(self) -> None:
        if self._buffer:
            self._process_buffer()

    def close(self) -> None:
        if not self.closed:
            self.flush()
        super().close()

    def _process_buffer(self) -> None:
        encoding = self.encoding or locale.getpreferredencoding(False)
        line = self._buffer.decode(encoding, errors="replace")
        self._buffer.clear()
        self.process_line(line)

    @abstractmethod
    def process_line(self, line: str) -> None:
        """Handle one complete line (without its line ending)."""


class LoggerSink(LineSink):
    """Write each line of the stream to a logger.

    Example:
        executor.redirect_output(LoggerSink(logging.getLogger("child"), logging.INFO))
    """

    def __init__(
        self,
        logger: logging.Logger,
        level: int = logging.INFO,
        encoding: str | None = None,
    ) -> None:
        super().__init__(encoding)
        self.logger = logger
        self.level = level

    def process_line(self, line: str) -> None:
        self.logger.log(self.level, line)

    def __repr__(self) -> str:
        return f"LoggerSink({self.logger.name!r}, {logging.getLevelName(self.level)})"


class TextSink(io.RawIOBase):
    """Decode bytes incrementally and write them to a text stream."""

    def __init__(self, stream: IO[str], encoding: str | None = None) -> None:
        super().__init__()
        self.stream = stream
        self._decoder = codecs.getincrementaldecoder(
            encoding or locale.getpreferredencoding(False)
        )(errors="replace")

    def writable(self) -> bool:
        return True

    def write(self, b: Any) -> int:
        self.stream.write(self._decoder.decode(bytes(b)))
        return len(b)

    def flush(self) -> None:
        self.stream.flush()

    def close(self) -> None:
        if not self.closed:
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self.stream.write(tail)
        super().close()

    def __repr__(self) -> str:
        return f"TextSink({self.stream!r})"


def as_binary_sink(stream: Any) -> Any:
    """Return a sink accepting bytes for ``stream``.

    Text streams are unwrapped to their binary buffer when they have one
    (sys.stdout), otherwise adapted with TextSink (io.StringIO).
    """
    if stream is None or not isinstance(stream, io.TextIOBase):
        return stream
    buffer = getattr(stream, "buffer", None)
    if buffer is not None:
        return buffer
    return TextSink(stream)
