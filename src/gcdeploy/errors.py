"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    LOOKUP_ERROR = 5
    SSH_ERROR = 6
    VALIDATION_ERROR = 7
    LOCAL_COMMAND_ERROR = 8


@dataclass
class GcDeployError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


class ConfigError(GcDeployError):
    """Configuration could not be located, parsed or validated."""


class PassphraseRequiredError(GcDeployError):
    """The private key is encrypted and no passphrase was supplied."""


class InvalidKeyError(GcDeployError):
    """The private key is unreadable, malformed or the passphrase is wrong."""


class InstanceLookupError(GcDeployError):
    """The instance could not be resolved to a reachable address."""


class ConnectError(GcDeployError):
    """Dialing, authenticating or opening the remote shell failed."""


class RemoteWriteError(GcDeployError):
    """Bytes could not be fully delivered to the remote terminal."""


class LocalCommandBusyError(GcDeployError):
    """A local command is already in flight."""


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
