"""Shared domain models for instances, endpoints and deployment plans."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Target(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class InstanceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    project_id: str
    zone: str

    @field_validator("name", "project_id", "zone")
    @classmethod
    def _strip(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be empty")
        return stripped


class DeploymentStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str = Field(min_length=1)
    target: Target

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


@dataclass(frozen=True)
class ConnectionEndpoint:
    address: str
    login_user: str
    name: str = ""
    status: str = ""
    internal_address: str = ""
