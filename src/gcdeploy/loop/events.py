"""Control events posted to the loop by background workers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from gcdeploy.models import ConnectionEndpoint

if TYPE_CHECKING:
    from gcdeploy.local.runner import LocalCommandHandle
    from gcdeploy.remote.session import RemoteTerminalSession


@dataclass(frozen=True)
class LocalCommandFinished:
    command: str
    returncode: int = 0
    handle: LocalCommandHandle | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class LocalCommandFailed:
    command: str
    error: str
    returncode: int | None = None
    handle: LocalCommandHandle | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class PassphraseNeeded:
    key_path: str


@dataclass(frozen=True)
class TerminalConnected:
    session: RemoteTerminalSession
    endpoint: ConnectionEndpoint


@dataclass(frozen=True)
class ConnectFailed:
    error: str


LoopEvent = Union[
    LocalCommandFinished,
    LocalCommandFailed,
    PassphraseNeeded,
    TerminalConnected,
    ConnectFailed,
]
