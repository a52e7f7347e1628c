from __future__ import annotations

import os
import pty

from .errors import SpawnFailed
from .pipes import PipeId, Wiring

__all__ = ["terminal_wiring"]


def terminal_wiring() -> Wiring:
    """Wire all three standard streams of the child to a pseudo-terminal.

    The parent keeps the master side twice: once as stdout and once, as a
    duplicate, as stdin. The terminal merges stderr into stdout, so the
    stderr endpoint starts out closed.
    """
    wiring = Wiring(terminal=True)
    try:
        master_fd, slave_fd = pty.openpty()
        wiring.parent[PipeId.STDOUT] = master_fd
        wiring.parent[PipeId.STDERR] = None
        wiring.child.update(
            {PipeId.STDIN: slave_fd, PipeId.STDOUT: slave_fd, PipeId.STDERR: slave_fd}
        )
        wiring.parent[PipeId.STDIN] = os.dup(master_fd)
        os.set_blocking(master_fd, False)
    except OSError as e:
        wiring.release()
        msg = f"Unable to open a pseudo-terminal: {e}"
        raise SpawnFailed(msg) from e
    return wiring
