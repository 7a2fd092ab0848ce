# src/agentcrate/exceptions.py
"""
Custom exceptions for agentcrate.

Every failure the core surfaces belongs to a closed set of kinds so the
command layer can map it to an exit code and a short user-facing summary
without inspecting message strings.

Exception Hierarchy:
    AgentCrateError (base)
    ├── InvalidArgumentsError - bad operand shape, --agent + positional
    ├── ProjectRequiredError - --agent used without a configured project
    ├── ConfigError - project/user configuration missing or invalid
    ├── NotFoundError - container/volume/image/network missing
    ├── NotRunningError - attach/exec target is not running
    ├── AlreadyInStateError - pause of paused, unpause of not-paused
    ├── ConflictError - duplicate canonical names, name already in use
    ├── DaemonUnavailableError - transport failure reaching the daemon
    ├── DaemonError - any other daemon-side failure
    ├── ContainerExitedNonZeroError - attached process exited with code != 0
    ├── ExitWaitFailedError - daemon reported an error on the wait channel
    ├── StreamFailureError - unrecoverable hijacked-stream I/O error
    ├── CancelledError - invocation cancelled by signal or parent
    └── BatchError - aggregate of per-target failures
"""

from typing import Any


# Process exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_DAEMON = 125
EXIT_CANCELLED = 130


class AgentCrateError(Exception):
    """
    Base class for all agentcrate errors.

    Attributes:
        message: Short human-readable summary (printed after ``Error:``)
        details: Optional dictionary with additional context
        next_steps: Up to three remediation suggestions
        exit_code: Process exit code for this kind of failure
    """

    exit_code: int = EXIT_ERROR
    default_next_steps: tuple[str, ...] = ()

    def __init__(
        self,
        message: str = "An unspecified error occurred.",
        details: dict[str, Any] | None = None,
        next_steps: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        steps = next_steps if next_steps is not None else list(self.default_next_steps)
        self.next_steps = steps[:3]

    def __str__(self) -> str:
        return self.message

    @property
    def kind(self) -> str:
        """Name of the error kind without the ``Error`` suffix."""
        name = self.__class__.__name__
        return name[: -len("Error")] if name.endswith("Error") else name

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "next_steps": self.next_steps,
            "exit_code": self.exit_code,
        }


class InvalidArgumentsError(AgentCrateError):
    """Raised for malformed operands or mutually exclusive flags."""

    def __init__(self, message: str = "Invalid arguments.", **kwargs):
        super().__init__(message, **kwargs)


class ProjectRequiredError(AgentCrateError):
    """Raised when --agent is used but no project is configured."""

    exit_code = EXIT_CONFIG
    default_next_steps = (
        "Run 'agentcrate init' to create an agentcrate.toml in this directory",
        "Or pass the full container name instead of --agent",
    )

    def __init__(self, message: str = "A project configuration is required for --agent.", **kwargs):
        super().__init__(message, **kwargs)


class ConfigError(AgentCrateError):
    """Raised when the project or user configuration cannot be loaded."""

    exit_code = EXIT_CONFIG

    def __init__(self, message: str = "Configuration error.", path: str | None = None, **kwargs):
        self.path = path
        super().__init__(message, **kwargs)
        if path:
            self.details.setdefault("path", path)


class NotFoundError(AgentCrateError):
    """
    Raised when a container, volume, image or network does not exist.

    Attributes:
        resource_type: "container", "volume", "image" or "network"
        name: The identifier that was looked up
    """

    def __init__(self, resource_type: str = "resource", name: str = "", message: str | None = None, **kwargs):
        self.resource_type = resource_type
        self.name = name
        if message is None:
            message = f"{resource_type} {name!r} not found" if name else f"{resource_type} not found"
        if resource_type == "container" and "next_steps" not in kwargs:
            kwargs["next_steps"] = [
                "List managed containers: agentcrate ps --all",
                "Check the agent name or pass the full container name",
            ]
        super().__init__(message, **kwargs)


class NotRunningError(AgentCrateError):
    """Raised when an attach or exec target is not in the running state."""

    def __init__(self, name: str = "", message: str | None = None, **kwargs):
        self.name = name
        if "next_steps" not in kwargs:
            kwargs["next_steps"] = [f"Start it first: agentcrate start {name}".rstrip()]
        super().__init__(message or f"container {name!r} is not running", **kwargs)


class AlreadyInStateError(AgentCrateError):
    """Raised for pause of a paused container or unpause of a running one."""

    def __init__(self, message: str = "Container is already in the requested state.", **kwargs):
        super().__init__(message, **kwargs)


class ConflictError(AgentCrateError):
    """Raised when two resources claim the same canonical name."""

    def __init__(self, message: str = "Conflicting resources.", **kwargs):
        super().__init__(message, **kwargs)


class DaemonUnavailableError(AgentCrateError):
    """Raised on transport-level failures contacting the container daemon."""

    exit_code = EXIT_DAEMON
    default_next_steps = (
        "Ensure the Docker daemon is running",
        "Check DOCKER_HOST or that /var/run/docker.sock is accessible",
        "Verify your user is allowed to talk to the daemon",
    )

    def __init__(self, message: str = "Cannot connect to the Docker daemon", **kwargs):
        super().__init__(message, **kwargs)


class DaemonError(AgentCrateError):
    """Raised for daemon-side errors that have no more specific kind."""

    exit_code = EXIT_DAEMON

    def __init__(self, message: str = "Docker daemon error.", status_code: int | None = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class ContainerExitedNonZeroError(AgentCrateError):
    """Raised when the attached container or exec process exits non-zero."""

    def __init__(self, code: int, message: str | None = None, **kwargs):
        self.code = code
        super().__init__(message or f"container exited with status {code}", **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["code"] = self.code
        return result


class ExitWaitFailedError(AgentCrateError):
    """Raised when the daemon reports an error through the wait channel."""

    exit_code = EXIT_DAEMON

    def __init__(self, message: str = "waiting for container exit failed", **kwargs):
        super().__init__(message, **kwargs)


class StreamFailureError(AgentCrateError):
    """Raised on an unrecoverable I/O error on the hijacked connection."""

    exit_code = EXIT_DAEMON

    def __init__(self, message: str = "stream to container failed", **kwargs):
        super().__init__(message, **kwargs)


class CancelledError(AgentCrateError):
    """Raised when the invocation is cancelled (SIGINT, SIGTERM, parent)."""

    exit_code = EXIT_CANCELLED

    def __init__(self, message: str = "cancelled", **kwargs):
        super().__init__(message, **kwargs)


class BatchError(AgentCrateError):
    """
    Aggregate failure for multi-target verbs.

    Attributes:
        failures: Ordered list of ``(target, error)`` pairs
    """

    def __init__(self, failures: list[tuple[str, AgentCrateError]], verb: str = "operation"):
        self.failures = failures
        count = len(failures)
        message = f"{verb} failed for {count} target{'s' if count != 1 else ''}"
        super().__init__(message, details={t: str(e) for t, e in failures})

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        codes = {e.exit_code for _, e in self.failures}
        if codes == {EXIT_CANCELLED}:
            return EXIT_CANCELLED
        return EXIT_ERROR
