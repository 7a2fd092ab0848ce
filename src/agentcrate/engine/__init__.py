# src/agentcrate/engine/__init__.py
"""
Daemon-facing core of agentcrate.

Components:
    naming: Canonical names, volume names, image references and labels
    client: Label-scoped adapter over the docker-py low-level API
    errors: Classification of SDK exceptions into agentcrate error kinds
    cancel: Per-invocation cancellation handle and signal routing
    hijack: Raw bidirectional connections returned by attach/exec
"""

from .cancel import Cancellation, install_signal_handlers
from .client import (
    ContainerSummary,
    CreateOptions,
    CreateResult,
    DaemonClient,
    ExecOptions,
    LogStream,
    WaitHandle,
    connect,
)
from .errors import classify
from .hijack import HijackedConnection

__all__ = [
    "Cancellation",
    "ContainerSummary",
    "CreateOptions",
    "CreateResult",
    "DaemonClient",
    "ExecOptions",
    "HijackedConnection",
    "LogStream",
    "WaitHandle",
    "classify",
    "connect",
    "install_signal_handlers",
]
