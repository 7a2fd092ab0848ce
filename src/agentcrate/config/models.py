# src/agentcrate/config/models.py
"""
Configuration models for agentcrate.

Two documents are modeled:

    ProjectConfig  - ``agentcrate.toml`` in the project directory
    ├── WorkspaceConfig - how the project directory reaches the container
    ├── NetworkConfig   - managed network toggle
    └── AgentConfig     - default environment and command for agents

    UserSettings   - ``settings.toml`` in the user config directory

Example ``agentcrate.toml``:
    project = "demo"
    image = "node:20-bookworm"

    [workspace]
    mode = "bind"            # bind | snapshot
    remote_path = "/workspace"
    ignore = ["node_modules", ".venv"]

    mounts = ["~/.gitconfig:/home/agent/.gitconfig:ro"]

    [network]
    enabled = true

    [agent]
    command = ["claude"]
    env = { EDITOR = "vim" }
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..engine.naming import normalize_project_name
from ..exceptions import InvalidArgumentsError


class WorkspaceMode(str, Enum):
    """How the project directory is made available inside the container."""

    BIND = "bind"  # Live bind mount of the project directory
    SNAPSHOT = "snapshot"  # One-time copy into a managed volume


class WorkspaceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: WorkspaceMode = Field(default=WorkspaceMode.BIND, description="bind or snapshot")
    remote_path: str = Field(default="/workspace", description="Workspace path inside the container")
    ignore: list[str] = Field(
        default_factory=lambda: [".git"],
        description="Glob patterns excluded from snapshot copies",
    )

    @field_validator("remote_path")
    @classmethod
    def validate_remote_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"remote_path must be absolute, got {v!r}")
        return v


class NetworkConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Join containers to the managed network")


class AgentConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    env: dict[str, str] = Field(default_factory=dict)
    command: list[str] = Field(default_factory=list)


class BindMount(BaseModel):
    """A parsed ``host:container[:ro|rw]`` mount entry."""

    host: str
    container: str
    read_only: bool = False

    @classmethod
    def parse(cls, spec: str) -> "BindMount":
        parts = spec.split(":")
        mode = "rw"
        if len(parts) == 3:
            mode = parts[2]
        elif len(parts) != 2:
            raise InvalidArgumentsError(f"invalid mount {spec!r}: expected host:container[:ro|rw]")
        host, container = parts[0], parts[1]
        if not host or not container.startswith("/"):
            raise InvalidArgumentsError(f"invalid mount {spec!r}: container path must be absolute")
        if mode not in ("ro", "rw"):
            raise InvalidArgumentsError(f"invalid mount {spec!r}: mode must be ro or rw")
        return cls(host=host, container=container, read_only=mode == "ro")

    def to_bind(self, root: Path | None = None) -> str:
        """Docker bind string with the host path expanded and made absolute."""
        host = Path(os.path.expanduser(self.host))
        if not host.is_absolute():
            host = (root or Path.cwd()) / host
        suffix = ":ro" if self.read_only else ":rw"
        return f"{host.resolve()}:{self.container}{suffix}"


class ProjectConfig(BaseModel):
    """
    Resolved project configuration.

    Attributes:
        root: Directory containing the configuration file (not serialized)
    """

    model_config = ConfigDict(extra="forbid")

    project: str = Field(description="Project name; lowercased and validated")
    image: str | None = Field(default=None, description="Base image reference")
    version: str = Field(default="latest", description="Tag of the managed project image")
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    mounts: list[str] = Field(default_factory=list, description="Allowed host bind mounts")
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    labels: dict[str, str] = Field(default_factory=dict, description="Extra container labels")
    root: Path | None = Field(default=None, exclude=True)

    @field_validator("project")
    @classmethod
    def validate_project(cls, v: str) -> str:
        try:
            return normalize_project_name(v)
        except InvalidArgumentsError as e:
            raise ValueError(str(e)) from e

    @field_validator("mounts")
    @classmethod
    def validate_mounts(cls, v: list[str]) -> list[str]:
        for spec in v:
            try:
                BindMount.parse(spec)
            except InvalidArgumentsError as e:
                raise ValueError(str(e)) from e
        return v

    @property
    def workspace_root(self) -> Path:
        return self.root or Path.cwd()

    def bind_mounts(self) -> list[str]:
        """Configured mounts as docker bind strings."""
        return [BindMount.parse(spec).to_bind(self.root) for spec in self.mounts]


class UserSettings(BaseModel):
    """User-level settings shared by every project."""

    model_config = ConfigDict(extra="ignore")

    default_image: str | None = Field(default=None, description="Fallback image reference")
    logging: dict[str, Any] = Field(default_factory=dict, description="Logging overrides")
