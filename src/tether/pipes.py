from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING

from typing_extensions import TypeAlias

from . import compat
from .errors import ConfigurationError, SpawnFailed

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

__all__ = [
    "Command",
    "PipeId",
    "PipeSet",
    "Wiring",
    "open_process",
    "pipe_wiring",
    "spool_wiring",
]

logger = logging.getLogger(__name__)

Command: TypeAlias = "str | Sequence[str]"
StrPath: TypeAlias = "str | os.PathLike[str]"


class PipeId(IntEnum):
    STDIN = 0
    STDOUT = 1
    STDERR = 2


class PipeSet:
    """The parent's ends of a child's three standard streams.

    Each endpoint is either an open descriptor or ``None``. Closing goes
    through this object so that no descriptor is ever closed twice.
    """

    def __init__(
        self,
        endpoints: Mapping[PipeId, int | None],
        *,
        spool_files: Iterable[str] = (),
        terminal: bool = False,
    ) -> None:
        self._fds: dict[PipeId, int | None] = {p: endpoints.get(p) for p in PipeId}
        self.spool_files = list(spool_files)
        self.terminal = terminal

    @property
    def spooled(self) -> bool:
        return bool(self.spool_files)

    def is_open(self, pipe_id: PipeId) -> bool:
        return self._fds[pipe_id] is not None

    def fileno(self, pipe_id: PipeId) -> int:
        fd = self._fds[pipe_id]
        if fd is None:
            msg = f"I/O operation on closed {pipe_id.name.lower()} pipe"
            raise ValueError(msg)
        return fd

    def close_endpoint(self, pipe_id: PipeId) -> None:
        fd, self._fds[pipe_id] = self._fds[pipe_id], None
        if fd is not None:
            os.close(fd)

    def close(self) -> None:
        errors: list[OSError] = []
        for pipe_id in PipeId:
            try:
                self.close_endpoint(pipe_id)
            except OSError as e:
                errors.append(e)
        if errors:
            raise errors[0]

    def remove_spool_files(self) -> None:
        while self.spool_files:
            path = self.spool_files.pop()
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Unable to remove spool file %s: %s", path, e)


@dataclass
class Wiring:
    """Descriptors prepared for one spawn, split by which side keeps them."""

    parent: dict[PipeId, int | None] = field(default_factory=dict)
    child: dict[PipeId, int] = field(default_factory=dict)
    spool_files: list[str] = field(default_factory=list)
    terminal: bool = False

    def close_child(self) -> None:
        # a terminal hands the same slave descriptor to all three streams
        fds = set(self.child.values())
        self.child.clear()
        for fd in fds:
            os.close(fd)

    def release(self) -> None:
        self.close_child()
        pipes = self.pipe_set()
        self.parent.clear()
        pipes.close()
        pipes.remove_spool_files()

    def pipe_set(self) -> PipeSet:
        return PipeSet(self.parent, spool_files=self.spool_files, terminal=self.terminal)

    def launch(
        self,
        command: Command,
        *,
        cwd: StrPath | None = None,
        env: Mapping[str, str] | None = None,
    ) -> tuple[subprocess.Popen[bytes], PipeSet]:
        try:
            process = subprocess.Popen(  # noqa: S603
                command,
                shell=isinstance(command, str),
                cwd=cwd,
                env=env,
                stdin=self.child[PipeId.STDIN],
                stdout=self.child[PipeId.STDOUT],
                stderr=self.child[PipeId.STDERR],
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            self.release()
            msg = f"Unable to spawn process: {e}"
            raise SpawnFailed(msg) from e

        self.close_child()
        return process, self.pipe_set()


def _stdin_pipe(wiring: Wiring) -> None:
    read_fd, write_fd = os.pipe()
    wiring.child[PipeId.STDIN] = read_fd
    wiring.parent[PipeId.STDIN] = write_fd


def pipe_wiring() -> Wiring:
    wiring = Wiring()
    try:
        _stdin_pipe(wiring)
        for pipe_id in (PipeId.STDOUT, PipeId.STDERR):
            read_fd, write_fd = os.pipe()
            wiring.parent[pipe_id] = read_fd
            wiring.child[pipe_id] = write_fd
            os.set_blocking(read_fd, False)
    except OSError as e:
        wiring.release()
        msg = f"Unable to create process pipes: {e}"
        raise SpawnFailed(msg) from e
    return wiring


def spool_wiring() -> Wiring:
    """Back stdout and stderr with temporary files instead of pipes.

    Reading a child's pipe while it is still writing can hang forever on
    Windows, so the child writes into a spool file and the parent reads the
    same file through a second, independently positioned descriptor.
    """
    wiring = Wiring()
    try:
        _stdin_pipe(wiring)
        for pipe_id in (PipeId.STDOUT, PipeId.STDERR):
            write_fd, path = tempfile.mkstemp(prefix=f"tether-{pipe_id.name.lower()}-")
            wiring.spool_files.append(path)
            wiring.child[pipe_id] = write_fd
            wiring.parent[pipe_id] = os.open(
                path, os.O_RDONLY | getattr(os, "O_BINARY", 0)
            )
    except OSError as e:
        wiring.release()
        msg = f"Unable to create process spool files: {e}"
        raise SpawnFailed(msg) from e
    return wiring


def open_process(
    command: Command,
    *,
    cwd: StrPath | None = None,
    env: Mapping[str, str] | None = None,
    pty: bool = False,
) -> tuple[subprocess.Popen[bytes], PipeSet]:
    if pty:
        if not compat.is_posix_like():
            msg = "PTY shells are not enabled on your OS."
            raise ConfigurationError(msg)

        from .pty import terminal_wiring

        wiring = terminal_wiring()
    elif compat.is_windows_like():
        wiring = spool_wiring()
    else:
        wiring = pipe_wiring()

    return wiring.launch(command, cwd=cwd, env=env)
