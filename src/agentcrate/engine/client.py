# src/agentcrate/engine/client.py
"""
Daemon client adapter built on the docker-py SDK.

``DaemonClient`` wraps the low-level ``docker.APIClient`` (``client.api``)
and adds the three things the rest of agentcrate relies on:

    - Label scoping: every enumeration goes through ``managed_filters()``,
      so foreign daemon resources are never listed, let alone modified.
    - Error classification: every SDK exception is translated by
      ``engine.errors.classify`` into an ``AgentCrateError`` kind.
    - Cancellation: every call checks the invocation's ``Cancellation``
      before it blocks; long-lived calls (wait, attach, logs) return
      handles that the caller can close from another thread.

Usage:
    >>> client = DaemonClient()
    >>> summary = client.find_container("agentcrate.demo.ralph")
    >>> client.start_container(summary.id)
    >>> handle = client.wait_container(summary.id)
    >>> handle.result()
    0

Requirements:
    - docker-py package (pip install docker)
    - Docker daemon reachable through DOCKER_HOST or the default socket
"""

import logging
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

import docker
import docker.errors
import requests.exceptions
from docker.types import Mount

from ..exceptions import (
    AgentCrateError,
    ConflictError,
    DaemonError,
    DaemonUnavailableError,
    ExitWaitFailedError,
    InvalidArgumentsError,
    NotFoundError,
)
from . import naming
from .cancel import Cancellation
from .errors import classify
from .hijack import HijackedConnection

logger = logging.getLogger(__name__)

# Exceptions the SDK can raise from any call
SDK_ERRORS = (
    docker.errors.DockerException,
    requests.exceptions.RequestException,
    OSError,
)

DEFAULT_STOP_TIMEOUT = 10

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(s|m|h)$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}


@dataclass
class ContainerSummary:
    """
    One row of a label-scoped container listing.

    Attributes:
        id: Full container ID
        name: Container name without the leading slash
        image: Image reference the container was created from
        state: Daemon state ("created", "running", "paused", "exited", ...)
        status: Human-readable status ("Up 3 minutes", "Exited (0) ...")
        created: Creation time as a UNIX timestamp
        labels: Container labels
        size_rw: Writable layer size in bytes, when requested
    """

    id: str
    name: str
    image: str = ""
    state: str = ""
    status: str = ""
    created: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    size_rw: int | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ContainerSummary":
        names = data.get("Names") or []
        name = names[0].lstrip("/") if names else ""
        return cls(
            id=data.get("Id", ""),
            name=name,
            image=data.get("Image", ""),
            state=data.get("State", ""),
            status=data.get("Status", ""),
            created=int(data.get("Created") or 0),
            labels=data.get("Labels") or {},
            size_rw=data.get("SizeRw"),
        )

    @property
    def short_id(self) -> str:
        return self.id[:12]

    @property
    def project(self) -> str:
        """Project from labels; labels win over the cosmetic name."""
        if naming.LABEL_PROJECT in self.labels:
            return self.labels[naming.LABEL_PROJECT]
        parsed = naming.parse_container_name(self.name)
        return parsed[0] if parsed else ""

    @property
    def agent(self) -> str:
        if naming.LABEL_AGENT in self.labels:
            return self.labels[naming.LABEL_AGENT]
        parsed = naming.parse_container_name(self.name)
        return parsed[1] if parsed else ""

    @property
    def running(self) -> bool:
        return self.state == "running"

    @property
    def managed(self) -> bool:
        return naming.is_managed(self.labels)


@dataclass
class CreateOptions:
    """
    Container create request.

    ``labels`` are user labels; the caller merges managed labels in with
    ``naming.merge_labels`` before the request reaches the daemon.
    """

    image: str
    name: str | None = None
    command: list[str] | None = None
    entrypoint: list[str] | None = None
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    working_dir: str | None = None
    user: str | None = None
    tty: bool = False
    stdin_open: bool = False
    detach: bool = False
    auto_remove: bool = False
    binds: list[str] = field(default_factory=list)
    mounts: list[Mount] = field(default_factory=list)
    ports: list[str] = field(default_factory=list)
    network: str | None = None
    hostname: str | None = None


@dataclass
class CreateResult:
    id: str
    warnings: list[str] = field(default_factory=list)


@dataclass
class ExecOptions:
    """Exec session request inside a running container."""

    command: list[str]
    env: dict[str, str] = field(default_factory=dict)
    workdir: str | None = None
    user: str = ""
    tty: bool = False
    interactive: bool = False
    privileged: bool = False
    detach: bool = False


class WaitHandle:
    """
    Subscription to a container's exit condition.

    The daemon call runs on a daemon thread. It ends with either an exit
    status (``status_code``) or a daemon-side failure (``error``), never
    both; then ``done`` is set and the done-callbacks run.
    """

    def __init__(self, container_id: str):
        self.container_id = container_id
        self.status_code: int | None = None
        self.error: AgentCrateError | None = None
        self.done = threading.Event()
        self._callbacks: list[Callable[["WaitHandle"], None]] = []
        self._lock = threading.Lock()

    def _set_status(self, code: int) -> None:
        self.status_code = code
        self._finish()

    def _set_error(self, error: AgentCrateError) -> None:
        self.error = error
        self._finish()

    def _finish(self) -> None:
        with self._lock:
            self.done.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

    def add_done_callback(self, callback: Callable[["WaitHandle"], None]) -> None:
        """Run ``callback(handle)`` once the wait completes (immediately if it has)."""
        with self._lock:
            if not self.done.is_set():
                self._callbacks.append(callback)
                return
        callback(self)

    def result(self, timeout: float | None = None) -> int | None:
        """
        Exit status of the container.

        Returns:
            The status code, or None if ``timeout`` elapsed first

        Raises:
            ExitWaitFailedError: If the daemon reported a wait error
            AgentCrateError: If the wait call itself failed
        """
        if not self.done.wait(timeout):
            return None
        if self.error is not None:
            raise self.error
        return self.status_code


class LogStream:
    """
    Streaming logs response.

    Non-TTY containers produce the framed multiplexed format; read it with
    ``read()`` and a frame demuxer. TTY containers produce raw bytes; read
    them with ``iter_raw()``.
    """

    def __init__(self, response, tty: bool):
        self.tty = tty
        self._response = response
        self._closed = False

    def read(self, size: int = 4096) -> bytes:
        if self._closed:
            return b""
        try:
            return self._response.raw.read(size) or b""
        except (OSError, ValueError, AttributeError, requests.exceptions.RequestException):
            if self._closed:
                return b""
            raise

    def iter_raw(self) -> Iterator[bytes]:
        # chunk_size=None yields each HTTP chunk as the daemon flushes it
        for chunk in self._response.iter_content(chunk_size=None):
            if self._closed:
                return
            yield chunk

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._response.close()


def parse_port_mappings(specs: list[str]) -> tuple[list[tuple[str, str]], dict[str, Any]]:
    """
    Parse ``[ip:][host:]container[/proto]`` port specs.

    Returns:
        (exposed ports as (port, proto) tuples, port bindings for the host config)

    Raises:
        InvalidArgumentsError: For a malformed spec
    """
    exposed: list[tuple[str, str]] = []
    bindings: dict[str, Any] = {}
    for spec in specs:
        container_part, _, proto = spec.partition("/")
        proto = proto or "tcp"
        parts = container_part.split(":")
        if len(parts) == 1:
            ip, host, port = None, None, parts[0]
        elif len(parts) == 2:
            ip, host, port = None, parts[0], parts[1]
        elif len(parts) == 3:
            ip, host, port = parts
        else:
            raise InvalidArgumentsError(f"invalid port mapping {spec!r}")
        if not port.isdigit() or (host and not host.isdigit()) or proto not in ("tcp", "udp", "sctp"):
            raise InvalidArgumentsError(f"invalid port mapping {spec!r}")

        key = f"{port}/{proto}"
        exposed.append((port, proto))
        host_port = int(host) if host else None
        bindings[key] = (ip, host_port) if ip else host_port
    return exposed, bindings


def to_unix_timestamp(value: str | None, now: float | None = None) -> int | None:
    """
    Convert a ``since``/``until`` value to a UNIX timestamp.

    Accepts UNIX seconds ("1700000000"), relative durations ("10m", "2h",
    "30s") and ISO-8601 timestamps ("2024-01-02T03:04:05Z").
    """
    if value is None or value == "":
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    match = _DURATION_RE.match(value)
    if match:
        now = time.time() if now is None else now
        return int(now - float(match.group(1)) * _DURATION_UNITS[match.group(2)])
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidArgumentsError(f"invalid timestamp {value!r}: use seconds, a duration like 10m, or RFC 3339")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


class DaemonClient:
    """
    Label-aware facade over the docker-py low-level API.

    Attributes:
        cancellation: Default cancellation handle for calls that pass none
    """

    def __init__(
        self,
        client: Any | None = None,
        docker_host: str | None = None,
        cancellation: Cancellation | None = None,
    ):
        """
        Initialize the adapter.

        Args:
            client: An existing ``docker.DockerClient`` (tests pass a mock)
            docker_host: Optional daemon URL overriding DOCKER_HOST
            cancellation: Default cancellation handle

        Raises:
            DaemonUnavailableError: If the daemon cannot be reached
        """
        self._docker_host = docker_host
        self.cancellation = cancellation or Cancellation()
        self._client = client if client is not None else self._connect()

    def _connect(self) -> Any:
        try:
            if self._docker_host:
                client = docker.DockerClient(base_url=self._docker_host)
                logger.debug(f"Connected to Docker at {self._docker_host}")
            else:
                client = docker.from_env()
                logger.debug("Connected to local Docker daemon")
        except SDK_ERRORS as e:
            raise classify(e) from e
        return client

    @property
    def api(self) -> Any:
        """The low-level ``docker.APIClient``."""
        return self._client.api

    def close(self) -> None:
        try:
            self._client.close()
        except SDK_ERRORS as e:
            logger.debug(f"Closing docker client: {e}")

    def _call(
        self,
        fn: Callable[..., Any],
        *args,
        resource_type: str = "container",
        target: str = "",
        cancel: Cancellation | None = None,
        **kwargs,
    ) -> Any:
        """Check cancellation, invoke ``fn`` and classify SDK errors."""
        (cancel or self.cancellation).raise_if_cancelled()
        try:
            return fn(*args, **kwargs)
        except SDK_ERRORS as e:
            error = classify(e, resource_type, target)
            logger.debug(f"{getattr(fn, '__name__', 'call')}({target}) failed: {error.kind}: {error}")
            raise error from e

    def ping(self, cancel: Cancellation | None = None) -> bool:
        return bool(self._call(self.api.ping, cancel=cancel))

    # ------------------------------------------------------------------
    # Label scoping
    # ------------------------------------------------------------------

    @staticmethod
    def managed_filters(
        project: str | None = None,
        agent: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """
        Compose a daemon filter set scoped to managed resources.

        Args:
            project: Restrict to one project
            agent: Restrict to one agent
            **extra: Further filters (``status``, ``name``, ``dangling``...)

        Returns:
            Filter dict accepted by the docker-py list calls
        """
        label_filters = [f"{naming.LABEL_MANAGED}={naming.MANAGED_VALUE}"]
        if project:
            label_filters.append(f"{naming.LABEL_PROJECT}={project}")
        if agent:
            label_filters.append(f"{naming.LABEL_AGENT}={agent}")
        extra_labels = extra.pop("label", None)
        if extra_labels:
            label_filters.extend([extra_labels] if isinstance(extra_labels, str) else extra_labels)
        filters: dict[str, Any] = {"label": label_filters}
        filters.update({k: v for k, v in extra.items() if v is not None})
        return filters

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def list_containers(
        self,
        project: str | None = None,
        agent: str | None = None,
        all: bool = True,
        size: bool = False,
        cancel: Cancellation | None = None,
        **filters: Any,
    ) -> list[ContainerSummary]:
        """List managed containers, optionally scoped to a project/agent."""
        rows = self._call(
            self.api.containers,
            all=all,
            size=size,
            filters=self.managed_filters(project, agent, **filters),
            cancel=cancel,
        )
        return [ContainerSummary.from_api(row) for row in rows or []]

    def find_container(self, identifier: str, cancel: Cancellation | None = None) -> ContainerSummary:
        """
        Find a managed container by canonical name or ID prefix.

        Raises:
            NotFoundError: If no managed container matches
            ConflictError: If the identifier matches several containers
        """
        name = identifier.lstrip("/")
        if not name:
            raise NotFoundError("container", identifier)

        by_name = [
            c for c in self.list_containers(name=name, cancel=cancel)
            if c.name == name
        ]
        if len(by_name) > 1:
            raise ConflictError(
                f"{len(by_name)} managed containers are named {name!r}",
                details={"ids": [c.short_id for c in by_name]},
            )
        if by_name:
            return by_name[0]

        if naming.is_container_id(name):
            by_id = [
                c for c in self.list_containers(id=name, cancel=cancel)
                if c.id.startswith(name)
            ]
            if len(by_id) > 1:
                raise ConflictError(
                    f"ID prefix {name!r} is ambiguous",
                    details={"matches": [c.name for c in by_id]},
                    next_steps=["Use a longer ID prefix or the container name"],
                )
            if by_id:
                return by_id[0]

        raise NotFoundError("container", identifier)

    def inspect_container(self, container_id: str, cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(self.api.inspect_container, container_id, target=container_id, cancel=cancel)

    def create_container(self, options: CreateOptions, cancel: Cancellation | None = None) -> CreateResult:
        """
        Create a container.

        Raises:
            NotFoundError: If the image does not exist locally
            ConflictError: If the name is already in use
        """
        exposed, bindings = parse_port_mappings(options.ports)
        host_config = self._call(
            self.api.create_host_config,
            binds=options.binds or None,
            mounts=options.mounts or None,
            port_bindings=bindings or None,
            auto_remove=options.auto_remove,
            network_mode=options.network or None,
        )
        response = self._call(
            self.api.create_container,
            image=options.image,
            command=options.command or None,
            entrypoint=options.entrypoint or None,
            name=options.name or None,
            environment=options.env or None,
            labels=options.labels or None,
            working_dir=options.working_dir or None,
            user=options.user or None,
            hostname=options.hostname or None,
            tty=options.tty,
            stdin_open=options.stdin_open,
            detach=options.detach,
            ports=exposed or None,
            host_config=host_config,
            resource_type="image",
            target=options.image,
            cancel=cancel,
        )
        warnings = response.get("Warnings") or []
        return CreateResult(id=response["Id"], warnings=list(warnings))

    def start_container(
        self,
        container_id: str,
        ensure_network: bool = False,
        network: str = naming.NETWORK_NAME,
        cancel: Cancellation | None = None,
    ) -> None:
        """
        Start a container, optionally joining it to the managed network first.

        Starting an already running container is a no-op (daemon 304).
        """
        if ensure_network:
            network_id = self.ensure_network(network, cancel=cancel)
            self.connect_network(network_id, container_id, network_name=network, cancel=cancel)
        self._call(self.api.start, container_id, target=container_id, cancel=cancel)

    def stop_container(self, container_id: str, timeout: int = DEFAULT_STOP_TIMEOUT, cancel: Cancellation | None = None) -> None:
        self._call(self.api.stop, container_id, timeout=timeout, target=container_id, cancel=cancel)

    def restart_container(self, container_id: str, timeout: int = DEFAULT_STOP_TIMEOUT, cancel: Cancellation | None = None) -> None:
        self._call(self.api.restart, container_id, timeout=timeout, target=container_id, cancel=cancel)

    def kill_container(self, container_id: str, signal: str = "SIGKILL", cancel: Cancellation | None = None) -> None:
        self._call(self.api.kill, container_id, signal=signal, target=container_id, cancel=cancel)

    def pause_container(self, container_id: str, cancel: Cancellation | None = None) -> None:
        self._call(self.api.pause, container_id, target=container_id, cancel=cancel)

    def unpause_container(self, container_id: str, cancel: Cancellation | None = None) -> None:
        self._call(self.api.unpause, container_id, target=container_id, cancel=cancel)

    def rename_container(self, container_id: str, new_name: str, cancel: Cancellation | None = None) -> None:
        self._call(self.api.rename, container_id, new_name, target=container_id, cancel=cancel)

    def remove_container(
        self,
        container_id: str,
        force: bool = False,
        volumes: bool = False,
        cancel: Cancellation | None = None,
    ) -> None:
        self._call(
            self.api.remove_container, container_id, v=volumes, force=force,
            target=container_id, cancel=cancel,
        )

    def wait_container(
        self,
        container_id: str,
        condition: str = "not-running",
        cancel: Cancellation | None = None,
    ) -> WaitHandle:
        """
        Subscribe to the container's exit condition.

        Returns immediately; the daemon call runs on a background thread.
        The handle reports ``ExitWaitFailedError`` through ``error`` when
        the daemon reports a wait error.
        """
        (cancel or self.cancellation).raise_if_cancelled()
        handle = WaitHandle(container_id)

        def _wait() -> None:
            try:
                result = self.api.wait(container_id, condition=condition)
            except SDK_ERRORS as e:
                error = classify(e, "container", container_id)
                if not isinstance(error, (DaemonUnavailableError, NotFoundError)):
                    error = ExitWaitFailedError(f"waiting for {container_id[:12]} failed: {error}")
                handle._set_error(error)
                return
            wait_error = (result or {}).get("Error") or {}
            message = wait_error.get("Message") if isinstance(wait_error, dict) else None
            if message:
                handle._set_error(ExitWaitFailedError(message))
            else:
                handle._set_status(int((result or {}).get("StatusCode", -1)))

        thread = threading.Thread(target=_wait, name=f"wait-{container_id[:12]}", daemon=True)
        thread.start()
        return handle

    def attach_container(
        self,
        container_id: str,
        stdin: bool = True,
        stdout: bool = True,
        stderr: bool = True,
        logs: bool = False,
        cancel: Cancellation | None = None,
    ) -> HijackedConnection:
        """Open a hijacked attach connection to the container's main process."""
        params = {
            "stdin": int(stdin),
            "stdout": int(stdout),
            "stderr": int(stderr),
            "stream": 1,
            "logs": int(logs),
        }
        sock = self._call(self.api.attach_socket, container_id, params=params, target=container_id, cancel=cancel)
        return HijackedConnection(sock, description=f"container {container_id[:12]}")

    def resize_container(self, container_id: str, height: int, width: int, cancel: Cancellation | None = None) -> None:
        self._call(self.api.resize, container_id, height=height, width=width, target=container_id, cancel=cancel)

    def top(self, container_id: str, ps_args: str | None = None, cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(self.api.top, container_id, ps_args=ps_args, target=container_id, cancel=cancel)

    def stats(self, container_id: str, cancel: Cancellation | None = None) -> dict[str, Any]:
        """
        One resource-usage sample.

        Without ``one_shot`` the daemon reads twice, so ``precpu_stats`` is
        filled and CPU usage can be computed from a single call.
        """
        return self._call(self.api.stats, container_id, stream=False, target=container_id, cancel=cancel) or {}

    def update_container(self, container_id: str, body: dict[str, Any], cancel: Cancellation | None = None) -> list[str]:
        """
        Change the resource limits of a created or running container.

        docker-py's ``update_container`` has no NanoCpus or PidsLimit
        arguments, so the request body is posted as is.

        Returns:
            Warnings reported by the daemon
        """

        def _post():
            url = self.api._url("/containers/{0}/update", container_id)
            return self.api._result(self.api._post_json(url, data=body), True)

        result = self._call(_post, target=container_id, cancel=cancel) or {}
        return list(result.get("Warnings") or [])

    def logs(
        self,
        container_id: str,
        tty: bool = False,
        follow: bool = False,
        timestamps: bool = False,
        since: str | None = None,
        until: str | None = None,
        tail: str = "all",
        details: bool = False,
        cancel: Cancellation | None = None,
    ) -> LogStream:
        """
        Open a streaming logs response.

        docker-py's ``logs()`` merges stdout and stderr for non-TTY
        containers, so the request is issued directly and the framed body
        is handed back undecoded.
        """
        params: dict[str, Any] = {
            "stdout": 1,
            "stderr": 1,
            "follow": int(follow),
            "timestamps": int(timestamps),
            "details": int(details),
            "tail": tail or "all",
        }
        since_ts = to_unix_timestamp(since)
        until_ts = to_unix_timestamp(until)
        if since_ts is not None:
            params["since"] = since_ts
        if until_ts is not None:
            params["until"] = until_ts

        def _open():
            url = self.api._url("/containers/{0}/logs", container_id)
            response = self.api._get(url, params=params, stream=True)
            self.api._raise_for_status(response)
            return response

        response = self._call(_open, target=container_id, cancel=cancel)
        return LogStream(response, tty=tty)

    def get_archive(self, container_id: str, path: str, cancel: Cancellation | None = None) -> tuple[Iterator[bytes], dict[str, Any]]:
        return self._call(self.api.get_archive, container_id, path, target=f"{container_id}:{path}", cancel=cancel)

    def put_archive(self, container_id: str, path: str, data: bytes, cancel: Cancellation | None = None) -> None:
        ok = self._call(self.api.put_archive, container_id, path, data, target=f"{container_id}:{path}", cancel=cancel)
        if not ok:
            raise DaemonError(f"copying into {container_id[:12]}:{path} failed")

    # ------------------------------------------------------------------
    # Exec
    # ------------------------------------------------------------------

    def exec_create(self, container_id: str, options: ExecOptions, cancel: Cancellation | None = None) -> str:
        """Create an exec session and return its ID."""
        response = self._call(
            self.api.exec_create,
            container_id,
            options.command,
            stdout=True,
            stderr=True,
            stdin=options.interactive,
            tty=options.tty,
            privileged=options.privileged,
            user=options.user or "",
            environment=options.env or None,
            workdir=options.workdir or None,
            target=container_id,
            cancel=cancel,
        )
        return response["Id"]

    def exec_start_detached(self, exec_id: str, tty: bool = False, cancel: Cancellation | None = None) -> None:
        self._call(self.api.exec_start, exec_id, detach=True, tty=tty, target=exec_id, cancel=cancel)

    def exec_attach(self, exec_id: str, tty: bool = False, cancel: Cancellation | None = None) -> HijackedConnection:
        """Start an exec session and return its hijacked connection."""
        sock = self._call(self.api.exec_start, exec_id, tty=tty, socket=True, target=exec_id, cancel=cancel)
        return HijackedConnection(sock, description=f"exec {exec_id[:12]}")

    def exec_resize(self, exec_id: str, height: int, width: int, cancel: Cancellation | None = None) -> None:
        self._call(self.api.exec_resize, exec_id, height=height, width=width, target=exec_id, cancel=cancel)

    def exec_inspect(self, exec_id: str, cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(self.api.exec_inspect, exec_id, target=exec_id, cancel=cancel)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def list_volumes(
        self,
        project: str | None = None,
        agent: str | None = None,
        cancel: Cancellation | None = None,
        **filters: Any,
    ) -> list[dict[str, Any]]:
        response = self._call(
            self.api.volumes,
            filters=self.managed_filters(project, agent, **filters),
            resource_type="volume",
            cancel=cancel,
        )
        return (response or {}).get("Volumes") or []

    def inspect_volume(self, name: str, cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(self.api.inspect_volume, name, resource_type="volume", target=name, cancel=cancel)

    def create_volume(self, name: str, labels: dict[str, str], cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(
            self.api.create_volume, name, labels=labels,
            resource_type="volume", target=name, cancel=cancel,
        )

    def ensure_volume(self, name: str, labels: dict[str, str], cancel: Cancellation | None = None) -> bool:
        """
        Create a labeled volume unless it already exists.

        Returns:
            True if the volume was created, False if it already existed
        """
        try:
            existing = self.inspect_volume(name, cancel=cancel)
        except NotFoundError:
            self.create_volume(name, labels, cancel=cancel)
            logger.debug(f"Created volume {name}")
            return True
        if not naming.is_managed(existing.get("Labels")):
            logger.warning(f"Volume {name} exists but is not managed by {naming.PROGRAM}; reusing it")
        return False

    def remove_volume(self, name: str, force: bool = False, cancel: Cancellation | None = None) -> None:
        self._call(self.api.remove_volume, name, force=force, resource_type="volume", target=name, cancel=cancel)

    def volume_usage(self, cancel: Cancellation | None = None) -> dict[str, int]:
        """Size in bytes of every volume the daemon reports usage for."""
        data = self._call(self.api.df, resource_type="volume", cancel=cancel)
        usage = {}
        for volume in (data or {}).get("Volumes") or []:
            size = (volume.get("UsageData") or {}).get("Size", -1)
            if size is not None and size >= 0:
                usage[volume.get("Name", "")] = size
        return usage

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def list_images(
        self,
        project: str | None = None,
        dangling: bool | None = None,
        cancel: Cancellation | None = None,
    ) -> list[dict[str, Any]]:
        extra: dict[str, Any] = {}
        if dangling is not None:
            extra["dangling"] = "true" if dangling else "false"
        return self._call(
            self.api.images,
            filters=self.managed_filters(project, **extra),
            resource_type="image",
            cancel=cancel,
        ) or []

    def inspect_image(self, ref: str, cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(self.api.inspect_image, ref, resource_type="image", target=ref, cancel=cancel)

    def remove_image(
        self,
        ref: str,
        force: bool = False,
        prune_children: bool = True,
        cancel: Cancellation | None = None,
    ) -> list[dict[str, Any]]:
        return self._call(
            self.api.remove_image, ref, force=force, noprune=not prune_children,
            resource_type="image", target=ref, cancel=cancel,
        ) or []

    def find_project_image(self, project: str, cancel: Cancellation | None = None) -> str | None:
        """Return the managed ``:latest`` image reference of a project, if built."""
        wanted = naming.image_ref(project)
        for image in self.list_images(project=project, cancel=cancel):
            if wanted in (image.get("RepoTags") or []):
                return wanted
        return None

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def list_networks(self, cancel: Cancellation | None = None) -> list[dict[str, Any]]:
        return self._call(
            self.api.networks, filters=self.managed_filters(),
            resource_type="network", cancel=cancel,
        ) or []

    def inspect_network(self, name: str, cancel: Cancellation | None = None) -> dict[str, Any]:
        return self._call(self.api.inspect_network, name, resource_type="network", target=name, cancel=cancel)

    def remove_network(self, name: str, cancel: Cancellation | None = None) -> None:
        self._call(self.api.remove_network, name, resource_type="network", target=name, cancel=cancel)

    def ensure_network(self, name: str = naming.NETWORK_NAME, cancel: Cancellation | None = None) -> str:
        """
        Inspect the managed network and create it if absent.

        Returns:
            The network ID
        """
        try:
            return self.inspect_network(name, cancel=cancel)["Id"]
        except NotFoundError:
            pass

        try:
            created = self._call(
                self.api.create_network,
                name,
                driver="bridge",
                labels=naming.labels(""),
                resource_type="network",
                target=name,
                cancel=cancel,
            )
        except ConflictError:
            # Created concurrently by another invocation
            return self.inspect_network(name, cancel=cancel)["Id"]
        logger.info(f"Created network {name}")
        return created["Id"]

    def connect_network(
        self,
        network_id: str,
        container_id: str,
        network_name: str = naming.NETWORK_NAME,
        cancel: Cancellation | None = None,
    ) -> None:
        """Join ``container_id`` to the network unless it is already a member."""
        info = self.inspect_container(container_id, cancel=cancel)
        networks = ((info.get("NetworkSettings") or {}).get("Networks")) or {}
        if network_name in networks or any(
            (n or {}).get("NetworkID") == network_id for n in networks.values()
        ):
            return
        try:
            self._call(
                self.api.connect_container_to_network,
                container_id,
                network_id,
                resource_type="network",
                target=network_name,
                cancel=cancel,
            )
        except (ConflictError, DaemonError) as e:
            if "already exists" not in str(e).lower():
                raise
        logger.debug(f"Connected {container_id[:12]} to {network_name}")


def connect(cancellation: Cancellation | None = None, docker_host: str | None = None) -> DaemonClient:
    """Create a ``DaemonClient`` for the current environment."""
    return DaemonClient(docker_host=docker_host, cancellation=cancellation)
