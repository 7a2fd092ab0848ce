# src/agentcrate/__init__.py
"""
agentcrate - run AI coding agents inside isolated containers.

A command-line orchestrator over a local Docker daemon: it creates
containers bound to a project, manages their lifecycle and connects the
caller's terminal to them. All state lives in the daemon, tagged with
``dev.agentcrate.*`` labels; nothing without those labels is touched.
"""

from importlib.metadata import PackageNotFoundError, version

from .engine import Cancellation, DaemonClient, connect
from .exceptions import (
    AgentCrateError,
    AlreadyInStateError,
    BatchError,
    CancelledError,
    ConfigError,
    ConflictError,
    ContainerExitedNonZeroError,
    DaemonError,
    DaemonUnavailableError,
    ExitWaitFailedError,
    InvalidArgumentsError,
    NotFoundError,
    NotRunningError,
    ProjectRequiredError,
    StreamFailureError,
)
from .lifecycle import LifecycleCoordinator, RunOptions
from .prune import PruneEngine, PruneReport
from .resolver import Identifier, IdentifierKind, Resolver

try:
    __version__ = version("agentcrate")
except PackageNotFoundError:
    __version__ = "0.0.0"


__all__ = [
    "__version__",
    "AgentCrateError",
    "AlreadyInStateError",
    "BatchError",
    "Cancellation",
    "CancelledError",
    "ConfigError",
    "ConflictError",
    "ContainerExitedNonZeroError",
    "DaemonClient",
    "DaemonError",
    "DaemonUnavailableError",
    "ExitWaitFailedError",
    "Identifier",
    "IdentifierKind",
    "InvalidArgumentsError",
    "LifecycleCoordinator",
    "NotFoundError",
    "NotRunningError",
    "ProjectRequiredError",
    "PruneEngine",
    "PruneReport",
    "Resolver",
    "RunOptions",
    "StreamFailureError",
    "connect",
]
