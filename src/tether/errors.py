from __future__ import annotations

__all__ = [
    "TetherError",
    "ConfigurationError",
    "SpawnFailed",
    "SignalFailed",
    "NotRunning",
    "StillRunning",
    "TerminationFailed",
]


class TetherError(Exception):
    pass


class ConfigurationError(TetherError):
    pass


class SpawnFailed(TetherError):
    pass


class SignalFailed(TetherError):
    def __init__(self, pid: int | None, signum: int) -> None:
        self.pid = pid
        self.signum = signum
        super().__init__(f"Unable to send signal {signum} to process #{pid}")


class NotRunning(TetherError):
    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        super().__init__(f"Process #{pid} has exited.")


class StillRunning(TetherError):
    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        super().__init__(f"Process #{pid} is still running.")


class TerminationFailed(TetherError):
    def __init__(self, pid: int | None) -> None:
        self.pid = pid
        super().__init__(f"Unable to terminate process #{pid}")
