"""Private key loading with a distinct passphrase-required signal."""

from __future__ import annotations

import logging as py_logging
from dataclasses import dataclass
from pathlib import Path

import paramiko

from gcdeploy.errors import ExitCode, InvalidKeyError, PassphraseRequiredError

logger = py_logging.getLogger(__name__)

DEFAULT_KEY_NAME = "google_compute_engine"

# OpenSSH tries key types in roughly this order; each class rejects foreign key
# material with SSHException before it looks at encryption.
_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


@dataclass(frozen=True)
class AuthHandle:
    key: paramiko.PKey
    key_path: str

    @property
    def key_type(self) -> str:
        return self.key.get_name()


def default_private_key_path() -> str:
    try:
        return str(Path("~/.ssh").expanduser() / DEFAULT_KEY_NAME)
    except RuntimeError:
        return f"~/.ssh/{DEFAULT_KEY_NAME}"


def resolve_key_path(key_path: str | Path | None) -> str:
    raw = str(key_path or "").strip()
    if not raw:
        return default_private_key_path()
    try:
        return str(Path(raw).expanduser())
    except RuntimeError:
        return raw


def _parse(path: str, passphrase: str | None) -> tuple[paramiko.PKey | None, bool, Exception | None]:
    encrypted = False
    last_error: Exception | None = None
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key_file(path, password=passphrase), encrypted, None
        except paramiko.PasswordRequiredException as exc:
            encrypted = True
            last_error = exc
        except (paramiko.SSHException, ValueError, TypeError) as exc:
            last_error = exc
        except OSError as exc:
            raise InvalidKeyError(
                f"failed to read private key file: {path}: {exc}",
                code=ExitCode.SSH_ERROR,
                hint="Check the file permissions of ssh_key_path.",
            ) from exc
    return None, encrypted, last_error


def load_auth(key_path: str | Path | None, passphrase: str = "") -> AuthHandle:
    """Turn a private key file into an auth handle.

    An encrypted key with an empty passphrase raises PassphraseRequiredError so
    the caller can prompt and call again. Every other failure, including a
    wrong passphrase, raises InvalidKeyError with the parser error chained.
    """
    path = resolve_key_path(key_path)
    if not Path(path).is_file():
        raise InvalidKeyError(
            f"failed to read private key file: {path}",
            code=ExitCode.SSH_ERROR,
            hint="Set ssh_key_path in .gcd.toml or run `gcloud compute config-ssh`.",
        )

    key, encrypted, error = _parse(path, None)
    if key is not None:
        logger.debug("Loaded unencrypted private key path=%s type=%s", path, key.get_name())
        return AuthHandle(key=key, key_path=path)

    if not encrypted:
        raise InvalidKeyError(
            f"failed to parse private key: {error}",
            code=ExitCode.SSH_ERROR,
            hint="Check that the file is an OpenSSH or PEM private key.",
        ) from error

    if passphrase == "":
        logger.info("Private key is encrypted; passphrase required path=%s", path)
        raise PassphraseRequiredError(
            "passphrase required for SSH key",
            code=ExitCode.SSH_ERROR,
            hint=f"Enter the passphrase for {path}.",
        )

    key, _, error = _parse(path, passphrase)
    if key is None:
        logger.warning("Private key passphrase rejected path=%s", path)
        raise InvalidKeyError(
            f"failed to parse private key with passphrase: {error}",
            code=ExitCode.SSH_ERROR,
            hint="Check the passphrase and retry.",
        ) from error
    logger.debug("Loaded encrypted private key path=%s type=%s", path, key.get_name())
    return AuthHandle(key=key, key_path=path)


def passphrase_required(key_path: str | Path | None) -> bool:
    try:
        load_auth(key_path, "")
    except PassphraseRequiredError:
        return True
    except InvalidKeyError:
        return False
    return False
