from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from .process import spawn
from .streams import CHUNK_SIZE, as_sink, as_source, copy

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .pipes import Command, StrPath
    from .process import Process
    from .streams import ReadableStream, WritableStream

__all__ = [
    "IDLE_INTERVAL",
    "StreamPump",
    "exec_and_wait",
    "feed_stdin",
]

logger = logging.getLogger(__name__)

# sleep between drain passes that moved no data
IDLE_INTERVAL = 0.01


class StreamPump:
    """Forward a running process's stdout and stderr into sinks.

    A child that fills a pipe buffer blocks until someone reads it, so the
    pump keeps draining both streams while it waits for the child to exit.
    Everything runs on the calling thread: sinks are never called
    concurrently, chunks of each stream arrive in order, and within one pass
    stdout is drained before stderr.
    """

    def __init__(
        self,
        process: Process,
        *,
        stdout: Any = None,
        stderr: Any = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.process = process
        self.chunk_size = chunk_size
        self.routes: list[tuple[ReadableStream, WritableStream]] = [
            (process.get_output_stream(), as_sink(stdout, "output")),
            (process.get_error_stream(), as_sink(stderr, "errors")),
        ]

    def _pump(self, stream: ReadableStream, sink: WritableStream) -> bool:
        moved = False
        while chunk := stream.read(self.chunk_size):
            sink.write(chunk)
            moved = True
        return moved

    def drain(self) -> bool:
        """Forward whatever is available right now. Returns whether any was."""
        moved = False
        for stream, sink in self.routes:
            if self._pump(stream, sink):
                moved = True
        return moved

    def at_end(self) -> bool:
        return all(stream.at_end() for stream, _ in self.routes)

    def run(self) -> int:
        while self.process.is_running() or not self.at_end():
            if not self.drain():
                time.sleep(IDLE_INTERVAL)

        # data written between the last check and the exit
        self.drain()

        exit_code = self.process.wait()
        assert exit_code is not None
        return exit_code


def feed_stdin(process: Process, source: Any) -> None:
    """Write all of ``source`` to the process, then close its stdin."""
    stdin = process.get_input_stream()
    try:
        copy(source, stdin)
    except BrokenPipeError:
        logger.debug("Process #%s closed its input early", process.get_id())
    finally:
        stdin.close()


def exec_and_wait(
    command: Command,
    *,
    cwd: StrPath | None = None,
    env: Mapping[str, str] | None = None,
    pty: bool = False,
    stdin: Any = None,
    stdout: Any = None,
    stderr: Any = None,
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """Run ``command`` to completion and return its exit code.

    ``stdin`` is a readable file-like object fed to the child before its
    output is drained. ``stdout`` and ``stderr`` each take a writable stream
    or a callable invoked with every chunk; output is discarded by default.
    The process input is closed once fed (or straight away without
    ``stdin``), so children that read until EOF cannot hang.
    """
    source = as_source(stdin) if stdin is not None else None
    out = as_sink(stdout, "output")
    err = as_sink(stderr, "errors")

    with spawn(command, cwd=cwd, env=env, pty=pty) as process:
        if source is not None:
            feed_stdin(process, source)
        else:
            process.get_input_stream().close()

        pump = StreamPump(process, stdout=out, stderr=err, chunk_size=chunk_size)
        return pump.run()
