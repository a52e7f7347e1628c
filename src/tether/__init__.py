from .errors import (
    ConfigurationError,
    NotRunning,
    SignalFailed,
    SpawnFailed,
    StillRunning,
    TerminationFailed,
    TetherError,
)
from .process import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    WINDOWS_SIGNAL_EXIT_CODE,
    Process,
    Signal,
    State,
    spawn,
)
from .pump import StreamPump, exec_and_wait
from .streams import BufferSink, CallbackSink, DiscardSink

__all__ = [
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "WINDOWS_SIGNAL_EXIT_CODE",
    "BufferSink",
    "CallbackSink",
    "ConfigurationError",
    "DiscardSink",
    "NotRunning",
    "Process",
    "Signal",
    "SignalFailed",
    "SpawnFailed",
    "State",
    "StillRunning",
    "StreamPump",
    "TerminationFailed",
    "TetherError",
    "exec_and_wait",
    "spawn",
]
