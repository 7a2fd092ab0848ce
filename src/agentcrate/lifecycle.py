# src/agentcrate/lifecycle.py
"""
Lifecycle coordinator: every verb that mutates containers.

The coordinator combines container operations with the ownership rules
for the resources around them:

    - run/create inject the managed label map, ensure the agent's named
      volumes and resolve the image (explicit, ``@`` project image,
      project default, user default, built project image).
    - start joins the managed network, creating it on first use.
    - rm removes the agent's managed volumes along with the container,
      never a volume whose labels do not match.
    - down stops a whole project and optionally removes its images
      (and, with --all, its volumes).

Multi-target verbs process targets sequentially in input order. Each
target's result line is printed as soon as it succeeds; failures are
collected and raised together as a BatchError at the end.

Usage:
    >>> coordinator = LifecycleCoordinator(client, project=project)
    >>> coordinator.stop(resolver.resolve(agent, names), timeout=10)
"""

import logging
import re
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TextIO

from docker.errors import DockerException
from docker.types import Mount
from docker.utils import parse_bytes

from .archive import tar_directory
from .config.models import ProjectConfig, UserSettings, WorkspaceMode
from .engine import naming
from .engine.cancel import Cancellation
from .engine.client import DEFAULT_STOP_TIMEOUT, ContainerSummary, CreateOptions, CreateResult, DaemonClient
from .exceptions import (
    AgentCrateError,
    BatchError,
    CancelledError,
    InvalidArgumentsError,
    NotFoundError,
    ProjectRequiredError,
)
from .logging_config import log_display
from .resolver import Identifier, IdentifierKind

logger = logging.getLogger(__name__)

DEFAULT_KILL_SIGNAL = "SIGKILL"

# Mount points of the managed volumes inside agent containers
CONFIG_MOUNT = "/home/agent/.claude"
HISTORY_MOUNT = "/commandhistory"

_SIGNAL_RE = re.compile(r"^(SIG)?[A-Z][A-Z0-9+-]*$|^\d+$")


@dataclass
class RunOptions:
    """
    Inputs of ``run`` and ``create``.

    ``image`` may be None (resolved from configuration) or ``@`` (the
    project's managed image).
    """

    image: str | None = None
    command: list[str] = field(default_factory=list)
    agent: str | None = None
    name: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    volumes: list[str] = field(default_factory=list)
    ports: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    workdir: str | None = None
    user: str | None = None
    entrypoint: list[str] | None = None
    tty: bool = False
    interactive: bool = False
    detach: bool = False
    auto_remove: bool = False
    workspace_mode: WorkspaceMode | None = None


@dataclass
class PreparedContainer:
    """Result of create: the container plus the volumes created for it."""

    id: str
    name: str
    warnings: list[str] = field(default_factory=list)
    created_volumes: list[str] = field(default_factory=list)


_RESTART_POLICIES = ("no", "always", "unless-stopped", "on-failure")


def parse_restart_policy(value: str) -> dict[str, Any]:
    """Parse ``no``, ``always``, ``unless-stopped`` or ``on-failure[:N]``."""
    name, _, retries = value.partition(":")
    if name not in _RESTART_POLICIES:
        raise InvalidArgumentsError(f"invalid restart policy {value!r}")
    policy: dict[str, Any] = {"Name": name}
    if retries:
        if name != "on-failure" or not retries.isdigit():
            raise InvalidArgumentsError(f"invalid restart policy {value!r}")
        policy["MaximumRetryCount"] = int(retries)
    return policy


def _memory_bytes(value: str, flag: str, allow_unlimited: bool = False) -> int:
    if allow_unlimited and value.strip() == "-1":
        return -1
    try:
        return parse_bytes(value)
    except DockerException as e:
        raise InvalidArgumentsError(f"invalid {flag} value {value!r}") from e


@dataclass
class UpdateOptions:
    """
    Inputs of ``update``. Unset fields are left unchanged on the container.

    Memory values take docker's size suffixes (``512m``, ``1g``).
    """

    cpus: float | None = None
    cpu_shares: int | None = None
    cpu_period: int | None = None
    cpu_quota: int | None = None
    cpuset_cpus: str | None = None
    cpuset_mems: str | None = None
    memory: str | None = None
    memory_reservation: str | None = None
    memory_swap: str | None = None
    pids_limit: int | None = None
    blkio_weight: int | None = None
    restart: str | None = None

    def to_body(self) -> dict[str, Any]:
        """
        Build the daemon's update request body.

        Raises:
            InvalidArgumentsError: No field set, or a value is out of range
        """
        body: dict[str, Any] = {}
        if self.cpus is not None:
            if self.cpus <= 0:
                raise InvalidArgumentsError("--cpus must be greater than 0")
            body["NanoCpus"] = int(self.cpus * 1e9)
        if self.cpu_shares is not None:
            body["CpuShares"] = self.cpu_shares
        if self.cpu_period is not None:
            body["CpuPeriod"] = self.cpu_period
        if self.cpu_quota is not None:
            body["CpuQuota"] = self.cpu_quota
        if self.cpuset_cpus:
            body["CpusetCpus"] = self.cpuset_cpus
        if self.cpuset_mems:
            body["CpusetMems"] = self.cpuset_mems
        if self.memory:
            body["Memory"] = _memory_bytes(self.memory, "--memory")
        if self.memory_reservation:
            body["MemoryReservation"] = _memory_bytes(self.memory_reservation, "--memory-reservation")
        if self.memory_swap:
            body["MemorySwap"] = _memory_bytes(self.memory_swap, "--memory-swap", allow_unlimited=True)
        if self.pids_limit is not None:
            body["PidsLimit"] = self.pids_limit
        if self.blkio_weight is not None:
            if self.blkio_weight != 0 and not 10 <= self.blkio_weight <= 1000:
                raise InvalidArgumentsError("--blkio-weight must be between 10 and 1000, or 0")
            body["BlkioWeight"] = self.blkio_weight
        if self.restart:
            body["RestartPolicy"] = parse_restart_policy(self.restart)
        if not body:
            raise InvalidArgumentsError(
                "update needs at least one flag",
                next_steps=["Pass a limit such as --memory 512m or --cpus 1.5"],
            )
        return body


def normalize_signal(value: str | None) -> str:
    """Accept ``KILL``, ``SIGKILL`` or ``9``; return the form the daemon expects."""
    if not value:
        return DEFAULT_KILL_SIGNAL
    signal_name = value.strip().upper()
    if not _SIGNAL_RE.match(signal_name):
        raise InvalidArgumentsError(f"invalid signal {value!r}")
    if signal_name.isdigit():
        return signal_name
    return signal_name if signal_name.startswith("SIG") else f"SIG{signal_name}"


class LifecycleCoordinator:
    """
    Owns every mutating container verb.

    Args:
        client: Daemon client for the invocation
        project: Current project configuration, or None outside a project
        settings: User settings (default image fallback)
        cancellation: Invocation cancellation handle
        out: Where result lines (IDs, names, exit codes) are printed
        attach: Factory for the attach engine, used by run/start --attach
    """

    def __init__(
        self,
        client: DaemonClient,
        project: ProjectConfig | None = None,
        settings: UserSettings | None = None,
        cancellation: Cancellation | None = None,
        out: TextIO | None = None,
        attach: Callable[[], "object"] | None = None,
    ):
        self.client = client
        self.project = project
        self.settings = settings or UserSettings()
        self.cancellation = cancellation or client.cancellation
        self.out = out or sys.stdout
        self._attach_factory = attach

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def project_name(self) -> str:
        return self.project.project if self.project else ""

    @property
    def network_enabled(self) -> bool:
        return self.project.network.enabled if self.project else True

    def _emit(self, line: str) -> None:
        self.out.write(f"{line}\n")
        self.out.flush()

    def _attach_engine(self):
        if self._attach_factory is not None:
            return self._attach_factory()
        from .stream.attach import AttachEngine

        return AttachEngine(self.client, self.cancellation)

    def find(self, identifier: Identifier) -> ContainerSummary:
        """
        Look up a managed container.

        Agent identifiers fall back to a label lookup, so a container that
        was renamed is still found by its project/agent labels.
        """
        try:
            return self.client.find_container(identifier.reference, cancel=self.cancellation)
        except NotFoundError:
            if identifier.kind is not IdentifierKind.AGENT:
                raise
            matches = self.client.list_containers(
                project=identifier.project or None,
                agent=identifier.value,
                cancel=self.cancellation,
            )
            if len(matches) == 1:
                return matches[0]
            raise

    def _batch(
        self,
        verb: str,
        identifiers: list[Identifier],
        action: Callable[[Identifier], str | None],
    ) -> list[str]:
        """
        Run ``action`` for each target in order, collecting failures.

        A cancellation stops the batch; the remaining targets are not
        attempted.

        Raises:
            BatchError: If any target failed
        """
        results: list[str] = []
        failures: list[tuple[str, AgentCrateError]] = []
        for identifier in identifiers:
            try:
                self.cancellation.raise_if_cancelled()
                line = action(identifier)
            except CancelledError as e:
                failures.append((str(identifier), e))
                break
            except AgentCrateError as e:
                logger.debug(f"{verb} {identifier}: {e.kind}: {e}")
                failures.append((str(identifier), e))
                continue
            if line is not None:
                results.append(line)
                self._emit(line)

        if failures:
            if len(identifiers) == 1:
                raise failures[0][1]
            raise BatchError(failures, verb)
        return results

    # ------------------------------------------------------------------
    # Image resolution
    # ------------------------------------------------------------------

    def resolve_image(self, explicit: str | None = None) -> str:
        """
        Choose the image for a new container.

        Order: explicit reference, ``@`` (project image), project default,
        user default, the project's built ``:latest`` image.

        Raises:
            InvalidArgumentsError: If nothing resolves
            ProjectRequiredError: ``@`` outside a project
            NotFoundError: ``@`` but the project image was never built
        """
        if explicit and explicit != "@":
            return explicit

        if explicit == "@":
            if not self.project:
                raise ProjectRequiredError("'@' refers to the project image but no project is configured")
            ref = self.client.find_project_image(self.project.project, cancel=self.cancellation)
            if ref is None:
                raise NotFoundError(
                    "image",
                    naming.image_ref(self.project.project),
                    next_steps=["Build the project image first, or pass an explicit image"],
                )
            return ref

        if self.project and self.project.image:
            return self.project.image
        if self.settings.default_image:
            return self.settings.default_image
        if self.project:
            ref = self.client.find_project_image(self.project.project, cancel=self.cancellation)
            if ref:
                return ref

        raise InvalidArgumentsError(
            "no image specified",
            next_steps=[
                "Pass an image: agentcrate run IMAGE",
                "Or set 'image' in agentcrate.toml",
                "Or set 'default_image' in the user settings",
            ],
        )

    # ------------------------------------------------------------------
    # create / run
    # ------------------------------------------------------------------

    def _container_identity(self, options: RunOptions) -> tuple[str, str | None]:
        """Return (container name, agent) for a new container."""
        if options.name and options.agent:
            raise InvalidArgumentsError("--name and --agent are mutually exclusive")
        if options.name:
            return naming.validate_resource_name(options.name.lstrip("/"), "container name"), None
        agent = options.agent or naming.generate_agent_name()
        naming.validate_agent_name(agent)
        return naming.container_name(self.project_name, agent), agent

    def _volume_mounts(
        self,
        container: str,
        agent: str | None,
        mode: WorkspaceMode,
    ) -> tuple[list[Mount], list[str], bool]:
        """
        Ensure the managed volumes of a new container.

        Returns:
            (mounts, names of volumes created now, whether the workspace
            volume is new and needs a snapshot copy)
        """
        mounts: list[Mount] = []
        created: list[str] = []
        snapshot_needed = False

        purposes = [(naming.VolumePurpose.CONFIG, CONFIG_MOUNT), (naming.VolumePurpose.HISTORY, HISTORY_MOUNT)]
        if self.project and mode is WorkspaceMode.SNAPSHOT:
            purposes.insert(0, (naming.VolumePurpose.WORKSPACE, self.project.workspace.remote_path))

        try:
            for purpose, target in purposes:
                name = naming.volume_name(container, purpose.value)
                labels = naming.labels(self.project_name, agent)
                labels[naming.LABEL_PURPOSE] = purpose.value
                if self.client.ensure_volume(name, labels, cancel=self.cancellation):
                    created.append(name)
                    if purpose is naming.VolumePurpose.WORKSPACE:
                        snapshot_needed = True
                mounts.append(Mount(target=target, source=name, type="volume"))
        except AgentCrateError:
            self._discard_volumes(created)
            raise
        return mounts, created, snapshot_needed

    def _discard_volumes(self, names: list[str]) -> None:
        for name in names:
            try:
                self.client.remove_volume(name, cancel=Cancellation())
            except AgentCrateError as e:
                logger.warning(f"Failed to clean up volume {name}: {e}")

    def create(self, options: RunOptions) -> PreparedContainer:
        """
        Create a managed container without starting it.

        Raises:
            InvalidArgumentsError: Bad name, agent, ports or mounts
            NotFoundError: Image missing locally
            ConflictError: Name already in use
        """
        name, agent = self._container_identity(options)
        image = self.resolve_image(options.image)
        mode = options.workspace_mode or (self.project.workspace.mode if self.project else WorkspaceMode.BIND)

        managed = naming.labels(self.project_name, agent)
        managed[naming.LABEL_IMAGE] = image
        managed[naming.LABEL_CREATED] = datetime.now(timezone.utc).isoformat()
        user_labels = dict(self.project.labels) if self.project else {}
        user_labels.update(options.labels)

        binds = list(options.volumes)
        env: dict[str, str] = {}
        command = list(options.command)
        workdir = options.workdir
        if self.project:
            env.update(self.project.agent.env)
            binds.extend(self.project.bind_mounts())
            command = command or list(self.project.agent.command)
            workdir = workdir or self.project.workspace.remote_path
            managed[naming.LABEL_WORKDIR] = str(self.project.workspace_root)
            if mode is WorkspaceMode.BIND:
                binds.insert(0, f"{self.project.workspace_root}:{self.project.workspace.remote_path}")
        env.update(options.env)

        mounts, created_volumes, snapshot_needed = self._volume_mounts(name, agent, mode)

        request = CreateOptions(
            image=image,
            name=name,
            command=command or None,
            entrypoint=options.entrypoint,
            env=env,
            labels=naming.merge_labels(user_labels, managed),
            working_dir=workdir,
            user=options.user,
            tty=options.tty,
            stdin_open=options.interactive,
            detach=options.detach,
            auto_remove=options.auto_remove,
            binds=binds,
            mounts=mounts,
            ports=list(options.ports),
        )
        try:
            result: CreateResult = self.client.create_container(request, cancel=self.cancellation)
            for warning in result.warnings:
                log_display(logger, logging.WARNING, f"WARNING: {warning}")
            if snapshot_needed and self.project:
                self._snapshot_workspace(result.id)
        except AgentCrateError:
            self._discard_volumes(created_volumes)
            raise

        logger.debug(f"Created {name} ({result.id[:12]}) from {image}")
        return PreparedContainer(result.id, name, result.warnings, created_volumes)

    def _snapshot_workspace(self, container_id: str) -> None:
        """Copy the project directory into the (new) workspace volume."""
        assert self.project is not None
        data = tar_directory(self.project.workspace_root, self.project.workspace.ignore)
        self.client.put_archive(
            container_id, self.project.workspace.remote_path, data, cancel=self.cancellation
        )
        log_display(
            logger,
            logging.INFO,
            f"Copied {self.project.workspace_root} into {self.project.workspace.remote_path}",
        )

    def run(self, options: RunOptions) -> int:
        """
        Create and start a container, then attach unless detached.

        Returns:
            0 on success (the container's exit code is raised as
            ContainerExitedNonZeroError when non-zero)
        """
        prepared = self.create(options)
        start = lambda: self.client.start_container(  # noqa: E731
            prepared.id, ensure_network=self.network_enabled, cancel=self.cancellation
        )
        if options.detach:
            start()
            self._emit(prepared.id[:12])
            return 0
        return self._attach_engine().attach_container(
            prepared.id, interactive=options.interactive, start=start
        )

    # ------------------------------------------------------------------
    # start / stop / restart / pause / unpause / kill / rename
    # ------------------------------------------------------------------

    def start(self, identifiers: list[Identifier], attach: bool = False, interactive: bool = False) -> int:
        """
        Start containers, joining each to the managed network.

        With ``attach`` exactly one target is allowed and the call blocks
        until the container exits.
        """
        if attach and len(identifiers) != 1:
            raise InvalidArgumentsError("--attach requires exactly one container")

        if attach:
            summary = self.find(identifiers[0])
            return self._attach_engine().attach_container(
                summary.id,
                interactive=interactive,
                start=lambda: self.client.start_container(
                    summary.id, ensure_network=self.network_enabled, cancel=self.cancellation
                ),
            )

        def _start(identifier: Identifier) -> str:
            summary = self.find(identifier)
            self.client.start_container(summary.id, ensure_network=self.network_enabled, cancel=self.cancellation)
            return str(identifier)

        self._batch("start", identifiers, _start)
        return 0

    def stop(self, identifiers: list[Identifier], timeout: int = DEFAULT_STOP_TIMEOUT, ignore_missing: bool = False) -> None:
        """Stop containers; already stopped is success, missing is an error unless ignored."""

        def _stop(identifier: Identifier) -> str | None:
            try:
                summary = self.find(identifier)
                self.client.stop_container(summary.id, timeout=timeout, cancel=self.cancellation)
            except NotFoundError:
                if ignore_missing:
                    logger.debug(f"{identifier} not found; ignored")
                    return None
                raise
            return str(identifier)

        self._batch("stop", identifiers, _stop)

    def restart(self, identifiers: list[Identifier], timeout: int = DEFAULT_STOP_TIMEOUT) -> None:
        def _restart(identifier: Identifier) -> str:
            summary = self.find(identifier)
            self.client.restart_container(summary.id, timeout=timeout, cancel=self.cancellation)
            return str(identifier)

        self._batch("restart", identifiers, _restart)

    def pause(self, identifiers: list[Identifier]) -> None:
        def _pause(identifier: Identifier) -> str:
            self.client.pause_container(self.find(identifier).id, cancel=self.cancellation)
            return str(identifier)

        self._batch("pause", identifiers, _pause)

    def unpause(self, identifiers: list[Identifier]) -> None:
        def _unpause(identifier: Identifier) -> str:
            self.client.unpause_container(self.find(identifier).id, cancel=self.cancellation)
            return str(identifier)

        self._batch("unpause", identifiers, _unpause)

    def kill(self, identifiers: list[Identifier], signal: str | None = None) -> None:
        sig = normalize_signal(signal)

        def _kill(identifier: Identifier) -> str:
            self.client.kill_container(self.find(identifier).id, signal=sig, cancel=self.cancellation)
            return str(identifier)

        self._batch("kill", identifiers, _kill)

    def rename(self, identifier: Identifier, new_name: str) -> None:
        summary = self.find(identifier)
        self.client.rename_container(summary.id, new_name, cancel=self.cancellation)
        self._emit(new_name)

    def update(self, identifiers: list[Identifier], options: UpdateOptions) -> None:
        """Apply new resource limits; daemon warnings are shown per container."""
        body = options.to_body()

        def _update(identifier: Identifier) -> str:
            summary = self.find(identifier)
            for warning in self.client.update_container(summary.id, body, cancel=self.cancellation):
                log_display(logger, logging.WARNING, f"{identifier}: {warning}")
            return str(identifier)

        self._batch("update", identifiers, _update)

    # ------------------------------------------------------------------
    # remove
    # ------------------------------------------------------------------

    def remove(self, identifiers: list[Identifier], force: bool = False, volumes: bool = True) -> None:
        """
        Remove containers and, unless ``volumes`` is False, their managed volumes.

        ``force`` kills a running container before removal.
        """

        def _remove(identifier: Identifier) -> str:
            summary = self.find(identifier)
            self.client.remove_container(summary.id, force=force, cancel=self.cancellation)
            if volumes:
                self.remove_agent_volumes(summary)
            return str(identifier)

        self._batch("rm", identifiers, _remove)

    def remove_agent_volumes(self, summary: ContainerSummary) -> list[str]:
        """
        Remove the managed volumes owned by a container.

        Volumes are found by label first, then by their canonical names. A
        volume is only removed when its labels mark it managed and match
        the container's project and agent.

        Returns:
            Names of the removed volumes
        """
        project = summary.project
        agent = summary.agent
        candidates: dict[str, dict] = {}

        if agent:
            for volume in self.client.list_volumes(project=project or None, agent=agent, cancel=self.cancellation):
                candidates[volume["Name"]] = volume

        for name in naming.agent_volume_names(summary.name):
            if name in candidates:
                continue
            try:
                candidates[name] = self.client.inspect_volume(name, cancel=self.cancellation)
            except NotFoundError:
                continue

        removed = []
        for name, volume in candidates.items():
            volume_labels = volume.get("Labels") or {}
            if not naming.is_managed(volume_labels):
                logger.debug(f"Keeping volume {name}: not managed")
                continue
            if volume_labels.get(naming.LABEL_PROJECT, "") != project or volume_labels.get(naming.LABEL_AGENT, "") != agent:
                logger.debug(f"Keeping volume {name}: labels belong to another container")
                continue
            try:
                self.client.remove_volume(name, cancel=self.cancellation)
            except NotFoundError:
                continue
            except CancelledError:
                raise
            except AgentCrateError as e:
                log_display(logger, logging.WARNING, f"Could not remove volume {name}: {e}")
                continue
            removed.append(name)
            logger.debug(f"Removed volume {name}")
        return removed

    # ------------------------------------------------------------------
    # wait / down
    # ------------------------------------------------------------------

    def wait(self, identifiers: list[Identifier]) -> list[int]:
        """Block until each target stops; print exit codes in input order."""
        codes: list[int] = []

        def _wait(identifier: Identifier) -> str:
            summary = self.find(identifier)
            handle = self.client.wait_container(summary.id, condition="not-running", cancel=self.cancellation)
            while not handle.done.wait(0.2):
                self.cancellation.raise_if_cancelled()
            code = handle.result(timeout=0)
            codes.append(code or 0)
            return str(code)

        self._batch("wait", identifiers, _wait)
        return codes

    def down(self, clean: bool = False, remove_all: bool = False) -> dict[str, int]:
        """
        Stop every container of the current project.

        With ``clean`` the containers and the project's images are removed
        too; ``clean`` with ``remove_all`` also removes the project's
        volumes. Volumes are never removed otherwise.

        Returns:
            Counts of stopped/removed resources
        """
        if not self.project:
            raise ProjectRequiredError("'down' needs a project configuration")
        if remove_all and not clean:
            raise InvalidArgumentsError("--all requires --clean")

        project = self.project.project
        counts = {"stopped": 0, "containers": 0, "images": 0, "volumes": 0}
        failures: list[tuple[str, AgentCrateError]] = []

        containers = self.client.list_containers(project=project, cancel=self.cancellation)
        for summary in containers:
            try:
                self.cancellation.raise_if_cancelled()
                if summary.state in ("running", "paused", "restarting"):
                    self.client.stop_container(summary.id, cancel=self.cancellation)
                    counts["stopped"] += 1
                    self._emit(summary.name)
                if clean:
                    self.client.remove_container(summary.id, force=True, cancel=self.cancellation)
                    counts["containers"] += 1
            except CancelledError as e:
                failures.append((summary.name, e))
                break
            except AgentCrateError as e:
                failures.append((summary.name, e))

        if clean and not failures:
            for image in self.client.list_images(project=project, cancel=self.cancellation):
                try:
                    self.client.remove_image(image["Id"], force=True, cancel=self.cancellation)
                    counts["images"] += 1
                except NotFoundError:
                    continue
                except AgentCrateError as e:
                    failures.append((image["Id"][:19], e))

        if clean and remove_all and not failures:
            for volume in self.client.list_volumes(project=project, cancel=self.cancellation):
                try:
                    self.client.remove_volume(volume["Name"], cancel=self.cancellation)
                    counts["volumes"] += 1
                except NotFoundError:
                    continue
                except AgentCrateError as e:
                    failures.append((volume["Name"], e))

        log_display(
            logger,
            logging.INFO,
            f"Project {project}: stopped {counts['stopped']} container(s)"
            + (f", removed {counts['containers']} container(s), {counts['images']} image(s)" if clean else "")
            + (f", {counts['volumes']} volume(s)" if clean and remove_all else ""),
        )
        if failures:
            raise BatchError(failures, "down")
        return counts
