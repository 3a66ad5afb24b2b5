"""Single-threaded tick loop and the queues that feed it."""

from .buffers import ContentBuffer
from .channels import DEFAULT_CHANNEL_CAPACITY, Channel
from .events import (
    ConnectFailed,
    LocalCommandFailed,
    LocalCommandFinished,
    LoopEvent,
    PassphraseNeeded,
    TerminalConnected,
)
from .multiplexer import StreamMultiplexer
from .timers import Scheduler, TimerHandle

__all__ = [
    "Channel",
    "ConnectFailed",
    "ContentBuffer",
    "DEFAULT_CHANNEL_CAPACITY",
    "LocalCommandFailed",
    "LocalCommandFinished",
    "LoopEvent",
    "PassphraseNeeded",
    "Scheduler",
    "StreamMultiplexer",
    "TerminalConnected",
    "TimerHandle",
]
