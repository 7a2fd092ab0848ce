# src/agentcrate/prune.py
"""
Prune engine: label-scoped cleanup of managed resources.

Modes:
    dangling (default)  exited managed containers and untagged managed images
    all (--all)         every managed container that is not running, every
                        managed image, every managed volume and the managed
                        network when nothing is attached to it

Destruction order is containers, images, volumes, network. A failure on
one resource is logged and the batch continues. Nothing without the
managed label is ever enumerated, so nothing foreign is ever removed.
"""

import logging
import select
from dataclasses import dataclass, field
from typing import Any, TextIO

from .engine import naming
from .engine.cancel import Cancellation
from .engine.client import DaemonClient
from .exceptions import AgentCrateError, CancelledError, NotFoundError
from .logging_config import log_display

logger = logging.getLogger(__name__)

# Tag the daemon reports for an untagged image
SENTINEL_TAG = "<none>:<none>"

# Container states left alone by --all
ACTIVE_STATES = ("running", "paused", "restarting")


@dataclass
class PruneReport:
    """What a prune run removed."""

    containers: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    networks: list[str] = field(default_factory=list)
    reclaimed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return len(self.containers) + len(self.images) + len(self.volumes) + len(self.networks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "containers": self.containers,
            "images": self.images,
            "volumes": self.volumes,
            "networks": self.networks,
            "removed": self.removed,
            "reclaimed_bytes": self.reclaimed,
            "failures": [{"resource": r, "error": e} for r, e in self.failures],
        }


# Interval between cancellation checks while waiting for an answer
CONFIRM_POLL_INTERVAL = 0.1


def confirm(
    prompt: str,
    stdin: TextIO,
    stderr: TextIO,
    cancellation: Cancellation | None = None,
) -> bool:
    """
    Ask a yes/no question on one line; EOF counts as no.

    Accepts ``y`` and ``yes`` in any case. With a ``cancellation``, a
    SIGINT while waiting raises CancelledError instead of reading on.
    """
    stderr.write(f"{prompt} [y/N] ")
    stderr.flush()
    if cancellation is not None:
        try:
            _wait_for_input(stdin, cancellation)
        except CancelledError:
            stderr.write("\n")
            raise
    answer = stdin.readline()
    if not answer:
        stderr.write("\n")
        return False
    return answer.strip().lower() in ("y", "yes")


def _wait_for_input(stdin: TextIO, cancellation: Cancellation) -> None:
    # Signal handlers only set the cancellation and readline() is restarted
    # after EINTR, so poll instead of blocking in the read.
    try:
        fd = stdin.fileno()
    except (AttributeError, OSError, ValueError):
        cancellation.raise_if_cancelled()
        return
    while True:
        cancellation.raise_if_cancelled()
        ready, _, _ = select.select([fd], [], [], CONFIRM_POLL_INTERVAL)
        if ready:
            cancellation.raise_if_cancelled()
            return


def is_dangling(image: dict[str, Any]) -> bool:
    tags = [t for t in (image.get("RepoTags") or []) if t != SENTINEL_TAG]
    return not tags


class PruneEngine:
    """
    Enumerate and remove managed resources.

    Args:
        client: Daemon client for the invocation
        cancellation: Stops the batch between resources
        project: Restrict the prune to one project
    """

    def __init__(
        self,
        client: DaemonClient,
        cancellation: Cancellation | None = None,
        project: str | None = None,
    ):
        self.client = client
        self.cancellation = cancellation or client.cancellation
        self.project = project or None

    def plan(self, all_: bool = False) -> dict[str, list[dict[str, Any]]]:
        """
        Enumerate what a prune would remove, without removing anything.

        Returns:
            Mapping of resource kind to the daemon rows selected
        """
        cancel = self.cancellation
        if all_:
            containers = [
                c for c in self.client.list_containers(project=self.project, size=True, cancel=cancel)
                if c.state not in ACTIVE_STATES
            ]
            images = self.client.list_images(project=self.project, cancel=cancel)
            volumes = self.client.list_volumes(project=self.project, cancel=cancel)
        else:
            containers = self.client.list_containers(
                project=self.project, size=True, status="exited", cancel=cancel
            )
            images = [
                i for i in self.client.list_images(project=self.project, dangling=True, cancel=cancel)
                if is_dangling(i)
            ]
            volumes = []

        return {
            "containers": [
                {"Id": c.id, "Name": c.name, "Size": c.size_rw or 0} for c in containers
            ],
            "images": [
                {"Id": i["Id"], "Name": ", ".join(i.get("RepoTags") or []) or i["Id"][:19], "Size": i.get("Size") or 0}
                for i in images
            ],
            "volumes": [{"Id": v["Name"], "Name": v["Name"], "Size": 0} for v in volumes],
        }

    def prune(self, all_: bool = False) -> PruneReport:
        """
        Remove the resources selected by ``plan``.

        Raises:
            CancelledError: If cancelled; resources removed so far stay removed
        """
        report = PruneReport()
        plan = self.plan(all_)

        volume_sizes: dict[str, int] = {}
        if plan["volumes"]:
            try:
                volume_sizes = self.client.volume_usage(cancel=self.cancellation)
            except CancelledError:
                raise
            except AgentCrateError as e:
                logger.debug(f"Volume usage unavailable: {e}")

        for row in plan["containers"]:
            if self._remove(
                report, row["Name"],
                lambda: self.client.remove_container(row["Id"], cancel=self.cancellation),
            ):
                report.containers.append(row["Name"])
                report.reclaimed += row["Size"]

        for row in plan["images"]:
            if self._remove(
                report, row["Name"],
                lambda: self.client.remove_image(row["Id"], cancel=self.cancellation),
            ):
                report.images.append(row["Id"])
                report.reclaimed += row["Size"]

        for row in plan["volumes"]:
            if self._remove(
                report, row["Name"],
                lambda: self.client.remove_volume(row["Name"], cancel=self.cancellation),
            ):
                report.volumes.append(row["Name"])
                report.reclaimed += volume_sizes.get(row["Name"], 0)

        if all_ and not self.project:
            self._prune_network(report)

        logger.debug(f"Prune removed {report.removed} resource(s), {report.reclaimed} bytes")
        return report

    def _remove(self, report: PruneReport, name: str, action) -> bool:
        self.cancellation.raise_if_cancelled()
        try:
            action()
        except NotFoundError:
            # Gone already, e.g. auto-removed
            logger.debug(f"{name} disappeared before removal")
            return False
        except CancelledError:
            raise
        except AgentCrateError as e:
            log_display(logger, logging.WARNING, f"Failed to remove {name}: {e}")
            report.failures.append((name, str(e)))
            return False
        logger.debug(f"Removed {name}")
        return True

    def _prune_network(self, report: PruneReport) -> None:
        """Remove the managed network when no container is attached."""
        try:
            info = self.client.inspect_network(naming.NETWORK_NAME, cancel=self.cancellation)
        except NotFoundError:
            return
        if not naming.is_managed(info.get("Labels")):
            logger.debug(f"Network {naming.NETWORK_NAME} is not managed; keeping it")
            return
        if info.get("Containers"):
            logger.debug(f"Network {naming.NETWORK_NAME} has attached containers; keeping it")
            return
        if self._remove(
            report, naming.NETWORK_NAME,
            lambda: self.client.remove_network(naming.NETWORK_NAME, cancel=self.cancellation),
        ):
            report.networks.append(naming.NETWORK_NAME)
