# src/agentcrate/cli/context.py
"""
Per-invocation state shared by command handlers.

The project configuration and the daemon client are loaded lazily, so
commands that need neither (``init``, argument errors) never touch the
filesystem or the daemon.
"""

import logging
import sys
from argparse import Namespace
from pathlib import Path
from typing import TextIO

from ..config import ProjectConfig, UserSettings, load_project_config
from ..engine.cancel import Cancellation
from ..engine.client import DaemonClient, connect
from ..lifecycle import LifecycleCoordinator
from ..prune import PruneEngine
from ..resolver import Identifier, Resolver
from ..stream.attach import AttachEngine, StreamIO
from .output import OutputFormatter

logger = logging.getLogger(__name__)

_UNSET = object()


class CommandContext:
    """
    Everything a handler needs besides its parsed arguments.

    Args:
        args: Parsed root arguments (``config``, ``host``)
        settings: Loaded user settings
        cancellation: Invocation cancellation handle
        formatter: Output formatter bound to stdout/stderr
        io: Binary host streams for attach, exec, logs and cp
        client: Pre-built daemon client (tests pass one around a mock)
        project: Pre-loaded project (None for "no project"); loaded lazily when omitted
        stdin: Text stdin for confirmation prompts
    """

    def __init__(
        self,
        args: Namespace,
        settings: UserSettings | None = None,
        cancellation: Cancellation | None = None,
        formatter: OutputFormatter | None = None,
        io: StreamIO | None = None,
        client: DaemonClient | None = None,
        project: ProjectConfig | None | object = _UNSET,
        stdin: TextIO | None = None,
    ):
        self.args = args
        self.settings = settings or UserSettings()
        self.cancellation = cancellation or Cancellation()
        self.formatter = formatter or OutputFormatter()
        self._io = io
        self._client = client
        self._project = project
        self.stdin = stdin or sys.stdin

    @property
    def io(self) -> StreamIO:
        if self._io is None:
            self._io = StreamIO.from_sys()
        return self._io

    @property
    def project(self) -> ProjectConfig | None:
        """The current project, or None outside a project directory."""
        if self._project is _UNSET:
            config_path = getattr(self.args, "config", None)
            self._project = load_project_config(path=Path(config_path) if config_path else None)
        return self._project  # type: ignore[return-value]

    @property
    def project_name(self) -> str | None:
        return self.project.project if self.project else None

    @property
    def client(self) -> DaemonClient:
        if self._client is None:
            self._client = connect(self.cancellation, docker_host=getattr(self.args, "host", None))
        return self._client

    def resolver(self) -> Resolver:
        return Resolver(self.project_name)

    def resolver_for(self, agent: str | None) -> Resolver:
        """A resolver that loads the project only when ``--agent`` needs it."""
        return self.resolver() if agent else Resolver(None)

    def targets(self, args: Namespace, allow_empty: bool = False) -> list[Identifier]:
        """Resolve ``--agent`` and the positional ``containers`` of a verb."""
        agent = getattr(args, "agent", None)
        return self.resolver_for(agent).resolve(
            agent, getattr(args, "containers", None), allow_empty=allow_empty
        )

    def attach_engine(self) -> AttachEngine:
        return AttachEngine(self.client, self.cancellation, io=self.io)

    def coordinator(self) -> LifecycleCoordinator:
        return LifecycleCoordinator(
            self.client,
            project=self.project,
            settings=self.settings,
            cancellation=self.cancellation,
            out=self.formatter.stdout,
            attach=self.attach_engine,
        )

    def prune_engine(self, project: str | None = None) -> PruneEngine:
        return PruneEngine(self.client, self.cancellation, project=project)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
