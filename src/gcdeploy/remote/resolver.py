"""Instance to SSH endpoint resolution through the gcloud CLI."""

from __future__ import annotations

import getpass
import json
import logging as py_logging
import os
import subprocess
from typing import Protocol

from gcdeploy.errors import ExitCode, InstanceLookupError
from gcdeploy.models import ConnectionEndpoint, InstanceDescriptor

logger = py_logging.getLogger(__name__)

DEFAULT_LOOKUP_TIMEOUT_SECONDS = 60


class SubprocessRunner(Protocol):
    def __call__(
        self,
        args: list[str],
        *,
        capture_output: bool = False,
        text: bool = False,
        check: bool = False,
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]: ...


def default_login_user() -> str:
    try:
        username = getpass.getuser()
    except (KeyError, OSError):
        username = ""
    if username:
        return username
    return os.environ.get("USER", "").strip() or "user"


def build_describe_command(instance: InstanceDescriptor) -> list[str]:
    return [
        "gcloud",
        "compute",
        "instances",
        "describe",
        instance.name,
        "--zone",
        instance.zone,
        "--project",
        instance.project_id,
        "--format",
        "json",
    ]


def _lookup_env(credentials_path: str) -> dict[str, str] | None:
    if not credentials_path.strip():
        return None
    env = dict(os.environ)
    env["CLOUDSDK_AUTH_CREDENTIAL_FILE_OVERRIDE"] = os.path.expanduser(credentials_path.strip())
    return env


def parse_instance_payload(
    payload: str,
    instance: InstanceDescriptor,
    *,
    login_user: str = "",
) -> ConnectionEndpoint:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise InstanceLookupError(
            "failed to parse gcloud output",
            code=ExitCode.LOOKUP_ERROR,
            hint=str(exc),
        ) from exc
    if not isinstance(data, dict):
        raise InstanceLookupError(
            "failed to parse gcloud output",
            code=ExitCode.LOOKUP_ERROR,
            hint="Expected a JSON object from `gcloud compute instances describe`.",
        )

    internal_ip = ""
    external_ip = ""
    interfaces = data.get("networkInterfaces") or []
    if not isinstance(interfaces, list):
        interfaces = []
    for interface in interfaces:
        if not isinstance(interface, dict):
            continue
        if not internal_ip:
            internal_ip = str(interface.get("networkIP") or "")
        for access in interface.get("accessConfigs") or []:
            nat_ip = str(access.get("natIP") or "") if isinstance(access, dict) else ""
            if nat_ip:
                external_ip = nat_ip
                break
        if external_ip:
            break

    if not external_ip:
        raise InstanceLookupError(
            f"instance {instance.name} does not have an external IP address",
            code=ExitCode.LOOKUP_ERROR,
            hint="Attach an external IP or run from inside the VPC.",
        )

    return ConnectionEndpoint(
        address=external_ip,
        login_user=login_user or default_login_user(),
        name=str(data.get("name") or instance.name),
        status=str(data.get("status") or ""),
        internal_address=internal_ip,
    )


class GcloudResolver:
    def __init__(
        self,
        *,
        credentials_path: str = "",
        runner: SubprocessRunner = subprocess.run,
        timeout_seconds: float = DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        login_user: str = "",
    ) -> None:
        self.credentials_path = credentials_path
        self.timeout_seconds = timeout_seconds
        self.login_user = login_user
        self._runner = runner

    def resolve(self, instance: InstanceDescriptor) -> ConnectionEndpoint:
        command = build_describe_command(instance)
        logger.debug("Resolving instance via gcloud: %s", command)
        try:
            result = self._runner(
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
                env=_lookup_env(self.credentials_path),
            )
        except FileNotFoundError as exc:
            raise InstanceLookupError(
                "failed to run gcloud command",
                code=ExitCode.LOOKUP_ERROR,
                hint="Install the Google Cloud CLI and run `gcloud auth login`.",
            ) from exc
        except OSError as exc:
            raise InstanceLookupError(
                f"failed to run gcloud command: {exc}",
                code=ExitCode.LOOKUP_ERROR,
                hint="Check that gcloud is executable by the current user.",
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise InstanceLookupError(
                f"gcloud command timed out after {self.timeout_seconds}s",
                code=ExitCode.LOOKUP_ERROR,
                hint="Check network access to the Compute Engine API.",
            ) from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.error("gcloud describe failed instance=%s stderr=%s", instance.name, stderr)
            raise InstanceLookupError(
                f"gcloud command failed: {stderr or 'exit status ' + str(result.returncode)}",
                code=ExitCode.LOOKUP_ERROR,
                hint="Verify instance name, zone and project_id.",
            )

        endpoint = parse_instance_payload(result.stdout or "", instance, login_user=self.login_user)
        logger.info(
            "Resolved instance name=%s address=%s user=%s status=%s",
            endpoint.name,
            endpoint.address,
            endpoint.login_user,
            endpoint.status,
        )
        return endpoint
