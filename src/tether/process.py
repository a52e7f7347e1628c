from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

from . import compat
from .errors import NotRunning, SignalFailed, StillRunning, TerminationFailed
from .pipes import PipeId, open_process
from .streams import (
    PipeReader,
    PipeWriter,
    ProcessOutputStream,
    SpoolReader,
    TerminalWriter,
)

if TYPE_CHECKING:
    import subprocess
    from collections.abc import Mapping
    from types import TracebackType

    from typing_extensions import Self

    from .pipes import Command, PipeSet, StrPath

__all__ = [
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
    "WINDOWS_SIGNAL_EXIT_CODE",
    "Process",
    "ProcessStatus",
    "Signal",
    "State",
    "StatusPoller",
    "spawn",
]

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

# Windows has no signal delivery; every signal terminates with this code
WINDOWS_SIGNAL_EXIT_CODE = 255

# longest sleep between polls during a timed wait
POLL_INTERVAL = 0.1


class State(Enum):
    CREATED = 0
    RUNNING = 1
    EXITED = 2
    CLEANED = 3


class Signal(IntEnum):
    INTERRUPT = 2
    TERMINATE = 15
    KILL = 9


@dataclass(frozen=True)
class ProcessStatus:
    pid: int
    running: bool
    exit_code: int | None


class StatusPoller:
    def __init__(self, popen: subprocess.Popen[bytes]) -> None:
        self.popen = popen

    def query(self) -> ProcessStatus:
        """Ask the OS whether the process is still alive, without blocking."""
        exit_code = self.popen.poll()
        return ProcessStatus(
            pid=self.popen.pid,
            running=exit_code is None,
            exit_code=exit_code,
        )


class Process:
    """A single spawned child process and the OS resources attached to it.

    The process moves through :class:`State` in one direction only. The
    exit code is recorded the first time the OS reports it and never
    changes afterwards. :meth:`wait` (or :meth:`close`) releases the pipes
    and reaps the child; releasing more than once is a no-op.
    """

    def __init__(
        self,
        popen: subprocess.Popen[bytes],
        pipes: PipeSet,
        command: Command | None = None,
    ) -> None:
        self._state = State.CREATED
        self._exit_code: int | None = None
        self._pid = popen.pid
        self._popen: subprocess.Popen[bytes] | None = popen
        self._poller: StatusPoller | None = StatusPoller(popen)
        self._pipes: PipeSet | None = pipes
        self._streams: dict[PipeId, Any] = {}
        self.command = command

    @property
    def state(self) -> State:
        return self._state

    def _advance(self, state: State) -> None:
        if state.value > self._state.value:
            self._state = state

    def _record_exit(self, exit_code: int | None) -> None:
        if self._exit_code is None and exit_code is not None:
            self._exit_code = exit_code
            logger.debug("Process #%d exited with code %d", self._pid, exit_code)

    def is_running(self) -> bool:
        if self._poller is None:
            return False

        status = self._poller.query()
        if status.running:
            self._advance(State.RUNNING)
        else:
            self._record_exit(status.exit_code)
            self._advance(State.EXITED)
        return status.running

    def get_id(self) -> int | None:
        if self._popen is None:
            return None
        return self._popen.pid

    def get_exit_code(self) -> int | None:
        if self.is_running():
            raise StillRunning(self._pid)
        return self._exit_code

    def _stream(self, pipe_id: PipeId) -> Any:
        if self._pipes is None:
            raise NotRunning(self._pid)
        if pipe_id not in self._streams:
            self._streams[pipe_id] = self._wrap(self._pipes, pipe_id)
        return self._streams[pipe_id]

    def _wrap(self, pipes: PipeSet, pipe_id: PipeId) -> Any:
        if pipe_id is PipeId.STDIN:
            if pipes.terminal:
                return TerminalWriter(pipes, pipe_id)
            return PipeWriter(pipes, pipe_id)
        if pipes.spooled:
            return ProcessOutputStream(SpoolReader(pipes, pipe_id), self)
        return PipeReader(pipes, pipe_id)

    def get_input_stream(self) -> PipeWriter:
        return self._stream(PipeId.STDIN)

    def get_output_stream(self) -> PipeReader | ProcessOutputStream:
        return self._stream(PipeId.STDOUT)

    def get_error_stream(self) -> PipeReader | ProcessOutputStream:
        return self._stream(PipeId.STDERR)

    def signal(self, kind: Signal) -> Self:
        """Deliver ``kind`` to the process and return immediately.

        Windows cannot deliver POSIX signals, so there every kind terminates
        the process outright with :data:`WINDOWS_SIGNAL_EXIT_CODE`.
        """
        if not self.is_running():
            return self

        if compat.is_windows_like():
            signum = WINDOWS_SIGNAL_EXIT_CODE
        else:
            signum = int(kind)

        try:
            os.kill(self._pid, signum)
        except OSError as e:
            if not self.is_running():
                return self
            raise SignalFailed(self._pid, signum) from e

        logger.debug("Sent %s to process #%d", kind.name, self._pid)
        return self

    def interrupt(self) -> Self:
        return self.signal(Signal.INTERRUPT)

    def terminate(self) -> Self:
        return self.signal(Signal.TERMINATE)

    def kill(self) -> Self:
        return self.signal(Signal.KILL)

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the process to exit, then release its resources.

        Without a timeout this blocks until the OS reports the exit. With a
        timeout the process is polled until it exits or the time runs out;
        in the latter case ``None`` is returned and nothing is released.
        """
        if timeout is None:
            if self.is_running():
                assert self._popen is not None
                self._record_exit(self._popen.wait())
                self._advance(State.EXITED)
            self.cleanup()
            return self._exit_code

        if not self.is_running():
            self.cleanup()
            return self._exit_code

        period = timeout if timeout < 1 else POLL_INTERVAL
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            time.sleep(period)
            if not self.is_running():
                self.cleanup()
                return self._exit_code

        return None

    def cleanup(self) -> None:
        if self._state is State.CLEANED:
            return

        popen, pipes, streams = self._popen, self._pipes, self._streams
        assert popen is not None
        assert pipes is not None

        try:
            try:
                for stream in streams.values():
                    stream.close()
            finally:
                pipes.close()

            was_running = self.is_running()
            try:
                exit_code: int | None = popen.wait()
            except OSError as e:
                logger.debug("Unable to reap process #%d: %s", self._pid, e)
                exit_code = None

            if exit_code is None and was_running:
                raise TerminationFailed(self._pid)

            self._record_exit(exit_code)
        finally:
            self._popen = None
            self._poller = None
            self._pipes = None
            self._streams = {}
            self._state = State.CLEANED
            pipes.remove_spool_files()

        logger.debug("Process #%d cleaned up", self._pid)

    def close(self) -> None:
        """Kill the process if it is still running and release everything."""
        if self._state is State.CLEANED:
            return
        try:
            if self.is_running():
                self.kill()
        finally:
            self.cleanup()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_state", State.CLEANED) is State.CLEANED:
            return
        try:
            self.close()
        except Exception:
            logger.warning("Failed to clean up process #%s", self._pid, exc_info=True)

    def __repr__(self) -> str:
        return f"<Process #{self._pid} {self._state.name.lower()}>"


def spawn(
    command: Command,
    *,
    cwd: StrPath | None = None,
    env: Mapping[str, str] | None = None,
    pty: bool = False,
) -> Process:
    popen, pipes = open_process(command, cwd=cwd, env=env, pty=pty)
    logger.debug("Spawned process #%d: %s", popen.pid, command)
    return Process(popen, pipes, command)
