from __future__ import annotations

import contextlib
import errno
import os
import select
from typing import TYPE_CHECKING, Any, Protocol

from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .pipes import PipeId, PipeSet

__all__ = [
    "CHUNK_SIZE",
    "ReadableStream",
    "WritableStream",
    "PipeReader",
    "SpoolReader",
    "ProcessOutputStream",
    "PipeWriter",
    "TerminalWriter",
    "DiscardSink",
    "CallbackSink",
    "BufferSink",
    "as_sink",
    "as_source",
    "copy",
]

CHUNK_SIZE = 1024

# ^D, end-of-file for a terminal in canonical mode
TERMINAL_EOF = b"\x04"


class ReadableStream(Protocol):
    def read(self, size: int) -> bytes: ...
    def at_end(self) -> bool: ...
    def close(self) -> None: ...


class WritableStream(Protocol):
    def write(self, data: bytes) -> int: ...
    def close(self) -> None: ...


class _Liveness(Protocol):
    def is_running(self) -> bool: ...


class PipeReader:
    """Reads one endpoint of a :class:`PipeSet`.

    The endpoint is non-blocking, so :meth:`read` returns ``b""`` both when
    nothing is available yet and when the stream has ended. Use
    :meth:`at_end` to tell the two apart.
    """

    def __init__(self, pipes: PipeSet, pipe_id: PipeId) -> None:
        self.pipes = pipes
        self.pipe_id = pipe_id
        self._eof = False

    @property
    def closed(self) -> bool:
        return not self.pipes.is_open(self.pipe_id)

    def at_end(self) -> bool:
        return self._eof or self.closed

    def read(self, size: int) -> bytes:
        if self.at_end():
            return b""

        try:
            data = os.read(self.pipes.fileno(self.pipe_id), size)
        except BlockingIOError:
            return b""
        except OSError as e:
            # a terminal master reports EIO once every slave handle is closed
            if e.errno != errno.EIO:
                raise
            data = b""

        if not data:
            self._eof = True
        return data

    def close(self) -> None:
        self.pipes.close_endpoint(self.pipe_id)


class SpoolReader(PipeReader):
    """Reads a spool file that the child is still appending to.

    The cursor is moved back to the last consumed offset before every read.
    An empty read only means the child has not written more yet.
    """

    def __init__(self, pipes: PipeSet, pipe_id: PipeId) -> None:
        super().__init__(pipes, pipe_id)
        self.offset = 0

    def read(self, size: int) -> bytes:
        if self.closed:
            return b""

        fd = self.pipes.fileno(self.pipe_id)
        os.lseek(fd, self.offset, os.SEEK_SET)
        data = os.read(fd, size)
        self.offset += len(data)
        self._eof = not data
        return data


class ProcessOutputStream:
    """Output stream that only ends once its process has stopped."""

    def __init__(self, stream: ReadableStream, process: _Liveness) -> None:
        self.stream = stream
        self.process = process

    def at_end(self) -> bool:
        return self.stream.at_end() and not self.process.is_running()

    def read(self, size: int) -> bytes:
        return self.stream.read(size)

    def close(self) -> None:
        self.stream.close()


class PipeWriter:
    def __init__(self, pipes: PipeSet, pipe_id: PipeId) -> None:
        self.pipes = pipes
        self.pipe_id = pipe_id

    @property
    def closed(self) -> bool:
        return not self.pipes.is_open(self.pipe_id)

    def write(self, data: bytes) -> int:
        fd = self.pipes.fileno(self.pipe_id)
        view = memoryview(data)
        written = 0
        while written < len(view):
            written += os.write(fd, view[written:])
        return written

    def close(self) -> None:
        self.pipes.close_endpoint(self.pipe_id)


class TerminalWriter(PipeWriter):
    """Writes to a pseudo-terminal master.

    The master shares its non-blocking flag with the reading side, so a full
    terminal buffer is waited out with ``select`` instead of failing.
    """

    def write(self, data: bytes) -> int:
        fd = self.pipes.fileno(self.pipe_id)
        view = memoryview(data)
        written = 0
        while written < len(view):
            try:
                written += os.write(fd, view[written:])
            except BlockingIOError:
                select.select([], [fd], [])
        return written

    def close(self) -> None:
        if not self.closed:
            with contextlib.suppress(OSError):
                os.write(self.pipes.fileno(self.pipe_id), TERMINAL_EOF)
        super().close()


class DiscardSink:
    def write(self, data: bytes) -> int:
        return len(data)

    def close(self) -> None:
        pass


class CallbackSink:
    def __init__(self, callback: Callable[[bytes], Any]) -> None:
        self.callback = callback

    def write(self, data: bytes) -> int:
        self.callback(data)
        return len(data)

    def close(self) -> None:
        pass


class BufferSink:
    def __init__(self) -> None:
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        self._buffer += data
        return len(data)

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self._buffer)

    def __bytes__(self) -> bytes:
        return self.getvalue()

    def __str__(self) -> str:
        return self._buffer.decode(errors="replace")


def as_sink(target: Any, name: str) -> WritableStream:
    if target is None:
        return DiscardSink()
    if hasattr(target, "write"):
        return target
    if callable(target):
        return CallbackSink(target)
    msg = f"Invalid stream provided for redirecting process {name}."
    raise ConfigurationError(msg)


def as_source(target: Any) -> Any:
    if not hasattr(target, "read"):
        msg = "Invalid stream provided for redirecting process input."
        raise ConfigurationError(msg)
    return target


def copy(source: Any, sink: WritableStream, chunk_size: int = CHUNK_SIZE) -> int:
    """Copy a file-like source into ``sink`` until the source is exhausted."""
    total = 0
    while chunk := source.read(chunk_size):
        sink.write(chunk)
        total += len(chunk)
    return total
