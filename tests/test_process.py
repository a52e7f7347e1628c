import gc
import logging
import os
import signal
from collections.abc import Callable, Iterator

import pytest

from tether import compat
from tether.errors import (
    NotRunning,
    SignalFailed,
    SpawnFailed,
    StillRunning,
    TerminationFailed,
)
from tether.process import WINDOWS_SIGNAL_EXIT_CODE, Process, Signal, State, spawn

posix_only = pytest.mark.skipif(os.name != "posix", reason="requires POSIX signals")

Python = Callable[[str], list[str]]

SLEEPER = "import time; time.sleep(30)"


@pytest.fixture
def sleeper(python: Python) -> Iterator[Process]:
    process = spawn(python(SLEEPER))
    yield process
    process.close()


def test_wait_returns_exit_code(python: Python) -> None:
    process = spawn(python("import sys; sys.exit(3)"))

    assert process.wait() == 3
    assert process.state is State.CLEANED
    assert not process.is_running()
    assert process.get_exit_code() == 3
    assert process.get_exit_code() == 3


@posix_only
def test_wait_lets_child_write_after_wait_begins() -> None:
    process = spawn(["sh", "-c", "sleep 0.3; echo hi; exit 0"])

    assert process.wait() == 0
    assert process.state is State.CLEANED


def test_wait_and_cleanup_are_idempotent(python: Python) -> None:
    process = spawn(python("pass"))

    assert process.wait() == 0
    assert process.wait() == 0
    process.cleanup()
    process.close()

    assert process.state is State.CLEANED
    assert process.get_exit_code() == 0


def test_state_moves_forward(sleeper: Process) -> None:
    assert sleeper.state is State.CREATED
    assert sleeper.is_running()
    assert sleeper.state is State.RUNNING

    sleeper.kill()
    sleeper.wait()
    assert sleeper.state is State.CLEANED


def test_get_id(sleeper: Process) -> None:
    pid = sleeper.get_id()
    assert isinstance(pid, int)
    assert repr(sleeper) == f"<Process #{pid} created>"

    sleeper.close()
    assert sleeper.get_id() is None


def test_exit_code_while_running(sleeper: Process) -> None:
    with pytest.raises(StillRunning, match="is still running"):
        sleeper.get_exit_code()


def test_streams_are_memoized(sleeper: Process) -> None:
    assert sleeper.get_input_stream() is sleeper.get_input_stream()
    assert sleeper.get_output_stream() is sleeper.get_output_stream()
    assert sleeper.get_error_stream() is not sleeper.get_output_stream()


def test_streams_unavailable_after_cleanup(python: Python) -> None:
    process = spawn(python("pass"))
    stdout = process.get_output_stream()
    process.wait()

    assert stdout.at_end()
    with pytest.raises(NotRunning, match="has exited"):
        process.get_output_stream()


def test_timed_wait_gives_up(sleeper: Process) -> None:
    assert sleeper.wait(0.2) is None
    assert sleeper.state is State.RUNNING
    assert sleeper.get_id() is not None
    assert sleeper.get_output_stream().read(10) == b""


def test_timed_wait_sees_exit(python: Python) -> None:
    process = spawn(python("import sys; sys.exit(4)"))

    assert process.wait(10) == 4
    assert process.state is State.CLEANED


@posix_only
@pytest.mark.parametrize(
    ("method", "signum"),
    [
        ("interrupt", signal.SIGINT),
        ("terminate", signal.SIGTERM),
        ("kill", signal.SIGKILL),
    ],
)
def test_signals(sleeper: Process, method: str, signum: int) -> None:
    assert getattr(sleeper, method)() is sleeper
    assert sleeper.wait(10) == -signum
    assert sleeper.state is State.CLEANED


def test_signal_kinds() -> None:
    assert Signal.INTERRUPT == 2
    assert Signal.TERMINATE == 15
    assert Signal.KILL == 9


def test_signal_after_exit_is_noop(
    python: Python, monkeypatch: pytest.MonkeyPatch
) -> None:
    process = spawn(python("pass"))
    process.wait()

    def fail(*args: object) -> None:
        pytest.fail("no signal may be sent")

    monkeypatch.setattr(os, "kill", fail)
    assert process.terminate() is process


@posix_only
def test_windows_signals_terminate_with_sentinel(
    sleeper: Process, monkeypatch: pytest.MonkeyPatch
) -> None:
    pid = sleeper.get_id()
    real_kill = os.kill
    sent: list[tuple[int, int]] = []

    def kill(pid: int, signum: int) -> None:
        sent.append((pid, signum))
        real_kill(pid, signal.SIGKILL)

    monkeypatch.setattr(compat, "is_windows_like", lambda: True)
    monkeypatch.setattr(os, "kill", kill)

    sleeper.interrupt()
    sleeper.wait()

    assert sent == [(pid, WINDOWS_SIGNAL_EXIT_CODE)]


def test_signal_failed(sleeper: Process, monkeypatch: pytest.MonkeyPatch) -> None:
    def kill(pid: int, signum: int) -> None:
        raise PermissionError(1, "Operation not permitted")

    with monkeypatch.context() as m:
        m.setattr(os, "kill", kill)
        with pytest.raises(SignalFailed, match="Unable to send signal"):
            sleeper.terminate()

    assert sleeper.is_running()


def test_spawn_failed(tmp_path) -> None:
    with pytest.raises(SpawnFailed):
        spawn([str(tmp_path / "missing")])


@pytest.mark.skipif(not os.path.isdir("/proc/self/fd"), reason="requires procfs")
def test_spawn_failed_leaks_nothing(tmp_path) -> None:
    before = set(os.listdir("/proc/self/fd"))
    with pytest.raises(SpawnFailed):
        spawn([str(tmp_path / "missing")])
    assert set(os.listdir("/proc/self/fd")) == before


def test_spawn_cwd_and_env(python: Python, tmp_path) -> None:
    process = spawn(
        python(
            "import os, sys; "
            "sys.exit(0 if os.getcwd() == sys.argv[1] "
            "and os.environ['TETHER_TEST'] == 'yes' else 1)"
        )
        + [str(tmp_path.resolve())],
        cwd=tmp_path,
        env={**os.environ, "TETHER_TEST": "yes"},
    )
    assert process.wait() == 0


@posix_only
def test_context_manager_kills(python: Python) -> None:
    with spawn(python(SLEEPER)) as process:
        assert process.is_running()

    assert process.state is State.CLEANED
    assert process.get_exit_code() == -signal.SIGKILL


def test_close_releases_when_kill_fails(
    python: Python, monkeypatch: pytest.MonkeyPatch
) -> None:
    process = spawn(python("import time; time.sleep(0.3)"))
    assert process.is_running()

    def kill(pid: int, signum: int) -> None:
        raise PermissionError(1, "Operation not permitted")

    with monkeypatch.context() as m:
        m.setattr(os, "kill", kill)
        with pytest.raises(SignalFailed):
            process.close()

    assert process.state is State.CLEANED
    assert process.get_id() is None
    assert process.get_exit_code() == 0


@posix_only
def test_finalizer_kills_abandoned_process(python: Python) -> None:
    process = spawn(python(SLEEPER))
    pid = process.get_id()
    assert pid is not None

    del process
    gc.collect()

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_finalizer_never_raises(
    sleeper: Process,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    def cleanup() -> None:
        raise TerminationFailed(sleeper.get_id())

    with monkeypatch.context() as m:
        m.setattr(sleeper, "cleanup", cleanup)
        with caplog.at_level(logging.WARNING, logger="tether.process"):
            sleeper.__del__()

    assert "Failed to clean up process" in caplog.text


@posix_only
def test_termination_failed(sleeper: Process, monkeypatch: pytest.MonkeyPatch) -> None:
    popen = sleeper._popen
    assert popen is not None

    def wait(timeout: float | None = None) -> int:
        raise ChildProcessError(10, "No child processes")

    with monkeypatch.context() as m:
        m.setattr(popen, "wait", wait)
        with pytest.raises(TerminationFailed, match="Unable to terminate"):
            sleeper.cleanup()

    assert sleeper.state is State.CLEANED
    sleeper.cleanup()

    popen.kill()
    popen.wait()
