"""Stream pumps relaying the standard streams of a child process.

This module provides:
- StreamPump: copies a source to a sink on a daemon thread
- InputStreamPump: feeds the child's stdin from a source that may never end
- ExecuteStreamHandler: interface for attaching to a started process
- PumpStreamHandler: owns the stdout, stderr and stdin pumps of one launch

Key design points:
- Pumping errors are logged and swallowed; they happen routinely when the
  child exits while data is in flight
- stop() is cooperative: a flag is checked between reads, and where the
  source has a selectable file descriptor (POSIX) reads only happen once
  data is ready, so a stop request is honoured within one poll interval
  instead of leaving the thread blocked in read()
- Data that is already readable when stop is requested is still drained
- Windows pipes cannot be polled; there a pump blocked in read() only ends
  when the source reaches EOF (i.e. when the child has been destroyed)
"""

from __future__ import annotations

import io
import logging
import selectors
import sys
import threading
from abc import ABC, abstractmethod
from typing import IO, Any

from .streams import NULL_SINK, TeeSink, as_binary_sink
from .tasks import bind_task_context

__all__ = [
    "StreamPump",
    "InputStreamPump",
    "ExecuteStreamHandler",
    "PumpStreamHandler",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_CHUNK_SIZE = 1024
DEFAULT_POLL_INTERVAL = 0.1  # seconds between stop checks while no data is ready


def _open_selector(source: Any) -> selectors.BaseSelector | None:
    """Register ``source`` for readiness polling if the platform allows it."""
    if IS_WINDOWS:
        return None
    try:
        fd = source.fileno()
    except (AttributeError, OSError, ValueError):
        # io.UnsupportedOperation is both an OSError and a ValueError
        return None

    selector = selectors.DefaultSelector()
    try:
        selector.register(fd, selectors.EVENT_READ)
    except (OSError, ValueError):
        selector.close()
        return None
    return selector


class StreamPump:
    """Copy all data from ``source`` to ``sink`` on a dedicated thread.

    Attributes:
        source: Readable binary stream
        sink: Writable binary stream
        close_when_exhausted: Close the sink once the pump finishes
        flush_immediately: Flush the sink after every chunk
    """

    def __init__(
        self,
        source: IO[bytes],
        sink: IO[bytes],
        close_when_exhausted: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        flush_immediately: bool = False,
        name: str = "StreamPump",
    ) -> None:
        self.source = source
        self.sink = sink
        self.close_when_exhausted = close_when_exhausted
        self.chunk_size = chunk_size if chunk_size > 0 else DEFAULT_CHUNK_SIZE
        self.flush_immediately = flush_immediately
        self.name = name
        self.poll_interval = DEFAULT_POLL_INTERVAL
        # Without readiness polling an output pump keeps reading until EOF
        self.drain_on_stop = True

        self._stop_requested = threading.Event()
        self._finished = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"

    @property
    def is_finished(self) -> bool:
        return self._finished.is_set()

    @property
    def is_started(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        """Start pumping on a new daemon thread."""
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f"{self!r} already started")
            self._thread = threading.Thread(
                target=bind_task_context(self.run),
                name=self.name,
                daemon=True,
            )
            self._thread.start()

    def run(self) -> None:
        """Pump until the source is exhausted or stop is requested."""
        logger.debug(f"{self!r} started")
        self._finished.clear()
        selector = _open_selector(self.source)
        try:
            while True:
                chunk = self._read_chunk(selector)
                if not chunk:
                    break
                self.sink.write(chunk)
                if self.flush_immediately:
                    self.sink.flush()
        except Exception as e:
            # Happens routinely when the process exits while data is in flight
            logger.debug(f"{self!r} stopped pumping: {e!r}")
        finally:
            if selector is not None:
                selector.close()
            logger.debug(f"{self!r} finished")
            if self.close_when_exhausted:
                try:
                    self.sink.close()
                except Exception as e:
                    logger.error(f"Got exception while closing exhausted output stream: {e!r}")
            self._finished.set()

    def _read_chunk(self, selector: selectors.BaseSelector | None) -> bytes | None:
        if selector is None:
            if self._stop_requested.is_set() and not self.drain_on_stop:
                return None
            return self._read()

        while True:
            if selector.select(timeout=self.poll_interval):
                return self._read()
            if self._stop_requested.is_set():
                return None

    def _read(self) -> bytes:
        read1 = getattr(self.source, "read1", None)
        if read1 is not None:
            return read1(self.chunk_size)
        return self.source.read(self.chunk_size)

    def request_stop(self) -> None:
        """Ask the pump to stop without waiting for it."""
        self._stop_requested.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the pump thread to end.

        Returns:
            Whether the pump has finished (always True if it was never started)
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def stop(self) -> None:
        """Request a stop and block until the pump thread has terminated.

        Safe to call before start() and more than once.
        """
        self.request_stop()
        self.join()


class InputStreamPump(StreamPump):
    """Pump feeding the child's stdin.

    The source may be a live stream that never reaches EOF (a terminal, a
    pipe kept open by another writer); stop() still returns because reads
    are polled. The child's stdin is flushed after every chunk and closed
    once the source is exhausted so the child sees EOF.
    """

    def __init__(self, source: IO[bytes], sink: IO[bytes], name: str = "InputStreamPump") -> None:
        super().__init__(
            source,
            sink,
            close_when_exhausted=True,
            flush_immediately=True,
            name=name,
        )
        self.drain_on_stop = False


class ExecuteStreamHandler(ABC):
    """Attaches to the streams of a started process and relays them."""

    @abstractmethod
    def set_process_input_stream(self, stream: IO[bytes] | None) -> None:
        """Attach the child's stdin (None if stdin is not piped)."""

    @abstractmethod
    def set_process_output_stream(self, stream: IO[bytes]) -> None:
        """Attach the child's stdout."""

    @abstractmethod
    def set_process_error_stream(self, stream: IO[bytes]) -> None:
        """Attach the child's stderr (not called when stderr is merged)."""

    @property
    def wants_input(self) -> bool:
        """Whether the child's stdin should be piped."""
        return False

    @abstractmethod
    def start(self) -> None:
        """Start relaying."""

    @abstractmethod
    def stop(self) -> None:
        """Stop relaying and wait until all relays have ended."""

    def flush(self) -> None:
        """Flush the targets of the relays."""


class PumpStreamHandler(ExecuteStreamHandler):
    """Relay stdout, stderr and stdin of a process through StreamPumps.

    Example:
        handler = PumpStreamHandler(out=sys.stdout, err=sys.stderr)
        handler.set_process_output_stream(process.stdout)
        handler.set_process_error_stream(process.stderr)
        handler.start()
        ...
        handler.stop()

    Attributes:
        out: Sink for the child's stdout (None = do not pump)
        err: Sink for the child's stderr (None = do not pump)
        input: Source for the child's stdin (None = no input)
    """

    def __init__(
        self,
        out: Any = NULL_SINK,
        err: Any = NULL_SINK,
        input: Any = None,
    ) -> None:
        self.out = as_binary_sink(out)
        self.err = as_binary_sink(err)
        self.input = input

        self.output_pump: StreamPump | None = None
        self.error_pump: StreamPump | None = None
        self.input_pump: StreamPump | None = None

    def __repr__(self) -> str:
        return f"PumpStreamHandler(out={self.out!r}, err={self.err!r}, input={self.input!r})"

    @property
    def wants_input(self) -> bool:
        return self.input is not None

    def set_process_output_stream(self, stream: IO[bytes]) -> None:
        if self.out is not None:
            self.output_pump = self._create_pump(stream, self.out, "stdout")

    def set_process_error_stream(self, stream: IO[bytes]) -> None:
        if self.err is not None:
            self.error_pump = self._create_pump(stream, self.err, "stderr")

    def set_process_input_stream(self, stream: IO[bytes] | None) -> None:
        if stream is None:
            return
        if self.input is not None:
            source = self.input
            if isinstance(source, io.TextIOBase):
                buffer = getattr(source, "buffer", None)
                source = buffer if buffer is not None else io.BytesIO(source.read().encode())
            self.input_pump = InputStreamPump(source, stream, name=f"InputStreamPump-{id(self):x}")
        else:
            try:
                stream.close()
            except OSError as e:
                logger.info(f"Got exception while closing process input stream: {e!r}")

    def _create_pump(self, source: IO[bytes], sink: IO[bytes], label: str) -> StreamPump:
        return StreamPump(source, sink, name=f"StreamPump-{label}-{id(self):x}")

    def start(self) -> None:
        for pump in (self.output_pump, self.error_pump, self.input_pump):
            if pump is not None:
                pump.start()

    def stop(self) -> None:
        """Stop all pumps and flush the sinks.

        The input pump is stopped first so a live input source cannot keep
        the handler alive after the process has exited. Output pumps drain
        whatever the process left in its pipes before ending.
        """
        if self.input_pump is not None:
            logger.debug(f"Joining input pump {self.input_pump!r}...")
            self.input_pump.stop()
            self.input_pump = None

        if self.output_pump is not None:
            logger.debug(f"Joining output pump {self.output_pump!r}...")
            self.output_pump.stop()
            self.output_pump = None

        if self.error_pump is not None:
            logger.debug(f"Joining error pump {self.error_pump!r}...")
            self.error_pump.stop()
            self.error_pump = None

        self.flush()

    def flush(self) -> None:
        if self.out is not None:
            try:
                self.out.flush()
            except Exception as e:
                logger.error(f"Got exception while flushing the output stream: {e!r}")

        if self.err is not None and self.err is not self.out:
            try:
                self.err.flush()
            except Exception as e:
                logger.error(f"Got exception while flushing the error stream: {e!r}")

    def copy(self) -> PumpStreamHandler:
        """Unattached handler relaying to the same sinks and input."""
        return PumpStreamHandler(self.out, self.err, self.input)

    def redirect_output_also_to(self, stream: Any) -> PumpStreamHandler:
        """Return a copy that additionally writes the child's stdout to ``stream``."""
        if stream is None:
            raise ValueError("Output stream must be provided.")
        stream = as_binary_sink(stream)
        if self.out is not None and self.out is not NULL_SINK:
            stream = TeeSink(self.out, stream)
        return PumpStreamHandler(stream, self.err, self.input)

    def redirect_error_also_to(self, stream: Any) -> PumpStreamHandler:
        """Return a copy that additionally writes the child's stderr to ``stream``."""
        if stream is None:
            raise ValueError("Error stream must be provided.")
        stream = as_binary_sink(stream)
        if self.err is not None and self.err is not NULL_SINK:
            stream = TeeSink(self.err, stream)
        return PumpStreamHandler(self.out, stream, self.input)
