"""Project config discovery and validation for `.gcd.toml`."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from gcdeploy.errors import ConfigError, ExitCode
from gcdeploy.models import DeploymentStep, InstanceDescriptor

logger = py_logging.getLogger(__name__)

CONFIG_FILE_NAME = ".gcd.toml"
DEFAULT_REMOTE_SETTLE_SECONDS = 2.0
DEFAULT_TICK_INTERVAL_MS = 50

_VALID_TARGETS = {"local", "remote"}
_REQUIRED_INSTANCE_FIELDS = ("name", "project_id", "zone")


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    instance: InstanceDescriptor
    command: str = ""
    deployment: tuple[DeploymentStep, ...] = ()
    credentials_path: str = ""
    ssh_key_path: str = ""
    remote_settle_seconds: float = Field(default=DEFAULT_REMOTE_SETTLE_SECONDS, ge=0)
    tick_interval_ms: int = Field(default=DEFAULT_TICK_INTERVAL_MS, ge=10, le=1000)
    source_path: Path | None = None

    @property
    def has_plan(self) -> bool:
        return bool(self.deployment)


def find_config(start: str | Path | None = None) -> Path:
    directory = Path(start).expanduser().resolve() if start is not None else Path.cwd()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILE_NAME
        if candidate.is_file():
            logger.debug("Found config file: %s", candidate)
            return candidate
    raise ConfigError(
        f"{CONFIG_FILE_NAME} not found in current directory or parent directories",
        code=ExitCode.CONFIG_ERROR,
        hint=f"Create {CONFIG_FILE_NAME} with an [instance] table.",
    )


def _fail(message: str, *, hint: str = "") -> ConfigError:
    logger.error("Config validation failed: %s", message)
    return ConfigError(message, code=ExitCode.CONFIG_ERROR, hint=hint)


def _validate_raw(raw: dict[str, object]) -> None:
    instance = raw.get("instance")
    if not isinstance(instance, dict):
        raise _fail(f"[instance] table is required in {CONFIG_FILE_NAME}")
    for field in _REQUIRED_INSTANCE_FIELDS:
        value = instance.get(field)
        if not isinstance(value, str) or not value.strip():
            raise _fail(f"instance.{field} is required in {CONFIG_FILE_NAME}")

    command = raw.get("command", "")
    if not isinstance(command, str):
        raise _fail(f"command must be a string in {CONFIG_FILE_NAME}")
    deployment = raw.get("deployment", [])
    if not isinstance(deployment, list):
        raise _fail(
            f"deployment must be an array of tables in {CONFIG_FILE_NAME}",
            hint="Declare steps with [[deployment]].",
        )
    if not command.strip() and not deployment:
        raise _fail(f"either command or deployment is required in {CONFIG_FILE_NAME}")

    for index, step in enumerate(deployment):
        if not isinstance(step, dict):
            raise _fail(f"deployment[{index}] must be a table in {CONFIG_FILE_NAME}")
        step_command = step.get("command")
        if not isinstance(step_command, str) or not step_command.strip():
            raise _fail(f"deployment[{index}].command is required in {CONFIG_FILE_NAME}")
        if step.get("target") not in _VALID_TARGETS:
            raise _fail(
                f"deployment[{index}].target must be 'local' or 'remote' in {CONFIG_FILE_NAME}"
            )


def parse_config(raw: dict[str, object], *, source_path: Path | None = None) -> AppConfig:
    _validate_raw(raw)
    payload = dict(raw)
    payload["deployment"] = tuple(raw.get("deployment", []))  # type: ignore[arg-type]
    payload["source_path"] = source_path
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", str(exc))
        raise _fail(
            f"invalid value for {location or 'config'} in {CONFIG_FILE_NAME}: {detail}"
        ) from exc


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = Path(path).expanduser() if path is not None else find_config()
    if not resolved.is_file():
        raise _fail(f"config file not found: {resolved}")
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise _fail(f"failed to parse {resolved}: {exc}") from exc
    except OSError as exc:
        raise _fail(f"failed to read {resolved}: {exc}") from exc
    config = parse_config(raw, source_path=resolved)
    logger.debug(
        "Loaded config path=%s instance=%s steps=%s",
        resolved,
        config.instance.name,
        len(config.deployment),
    )
    return config
