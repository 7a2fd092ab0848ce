# src/agentcrate/cli/resources.py
"""
Image, volume and network commands.

Every listing goes through the label-scoped client calls, and every
removal inspects the resource first and refuses anything without the
managed label.
"""

import argparse
import logging
from argparse import Namespace
from datetime import datetime
from typing import Any, Callable

from ..engine import naming
from ..exceptions import AgentCrateError, BatchError, CancelledError, ConflictError, InvalidArgumentsError
from .context import CommandContext
from .output import human_age, human_size

logger = logging.getLogger(__name__)


def _each(ctx: CommandContext, verb: str, names: list[str], action: Callable[[str], str | None]) -> None:
    """Apply ``action`` to each name in order; print results, collect failures."""
    failures: list[tuple[str, AgentCrateError]] = []
    for name in names:
        try:
            ctx.cancellation.raise_if_cancelled()
            line = action(name)
        except CancelledError as e:
            failures.append((name, e))
            break
        except AgentCrateError as e:
            failures.append((name, e))
            continue
        if line:
            ctx.formatter.line(line)
    if failures:
        if len(names) == 1:
            raise failures[0][1]
        raise BatchError(failures, verb)


def _require_managed(kind: str, name: str, resource_labels: dict[str, str] | None) -> None:
    if not naming.is_managed(resource_labels):
        raise InvalidArgumentsError(
            f"{kind} {name!r} is not managed by {naming.PROGRAM}; refusing to remove it",
        )


def _created_timestamp(value: Any) -> float | None:
    """Images report epoch seconds, volumes and networks RFC 3339 strings."""
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


# =============================================================================
# IMAGES
# =============================================================================

def cmd_image_list(args: Namespace, ctx: CommandContext) -> int:
    images = ctx.client.list_images(
        project=args.project,
        dangling=None if args.all else False,
        cancel=ctx.cancellation,
    )
    formatter = ctx.formatter

    if args.quiet:
        for image in images:
            formatter.line(image["Id"].split(":", 1)[-1][:12])
        return 0

    rows = []
    for image in images:
        labels = image.get("Labels") or {}
        tags = [t for t in (image.get("RepoTags") or []) if t != "<none>:<none>"] or ["<none>:<none>"]
        for tag in tags:
            rows.append({
                "tag": tag,
                "id": image["Id"],
                "project": labels.get(naming.LABEL_PROJECT, ""),
                "version": labels.get(naming.LABEL_VERSION, ""),
                "created": image.get("Created"),
                "size": image.get("Size"),
            })

    if args.format == "json":
        formatter.json(rows)
        return 0

    formatter.table(
        ["IMAGE", "PROJECT", "VERSION", "ID", "CREATED", "SIZE"],
        [
            [r["tag"], r["project"], r["version"], r["id"].split(":", 1)[-1][:12],
             human_age(_created_timestamp(r["created"])), human_size(r["size"])]
            for r in rows
        ],
    )
    return 0


def cmd_image_rm(args: Namespace, ctx: CommandContext) -> int:
    def _remove(ref: str) -> str:
        info = ctx.client.inspect_image(ref, cancel=ctx.cancellation)
        _require_managed("image", ref, (info.get("Config") or {}).get("Labels"))
        ctx.client.remove_image(
            ref, force=args.force, prune_children=not args.no_prune, cancel=ctx.cancellation
        )
        return ref

    _each(ctx, "image rm", args.images, _remove)
    return 0


# =============================================================================
# VOLUMES
# =============================================================================

def cmd_volume_list(args: Namespace, ctx: CommandContext) -> int:
    volumes = ctx.client.list_volumes(project=args.project, cancel=ctx.cancellation)
    formatter = ctx.formatter

    if args.quiet:
        for volume in volumes:
            formatter.line(volume["Name"])
        return 0

    if args.format == "json":
        formatter.json(volumes)
        return 0

    rows = []
    for volume in volumes:
        labels = volume.get("Labels") or {}
        rows.append([
            volume["Name"],
            labels.get(naming.LABEL_PROJECT, ""),
            labels.get(naming.LABEL_AGENT, ""),
            labels.get(naming.LABEL_PURPOSE, ""),
            human_age(_created_timestamp(volume.get("CreatedAt"))),
        ])
    formatter.table(["NAME", "PROJECT", "AGENT", "PURPOSE", "CREATED"], rows)
    return 0


def cmd_volume_rm(args: Namespace, ctx: CommandContext) -> int:
    def _remove(name: str) -> str:
        info = ctx.client.inspect_volume(name, cancel=ctx.cancellation)
        _require_managed("volume", name, info.get("Labels"))
        ctx.client.remove_volume(name, force=args.force, cancel=ctx.cancellation)
        return name

    _each(ctx, "volume rm", args.volumes, _remove)
    return 0


# =============================================================================
# NETWORKS
# =============================================================================

def cmd_network_list(args: Namespace, ctx: CommandContext) -> int:
    networks = ctx.client.list_networks(cancel=ctx.cancellation)
    if args.format == "json":
        ctx.formatter.json(networks)
        return 0
    ctx.formatter.table(
        ["NAME", "ID", "DRIVER", "CREATED"],
        [
            [n.get("Name", ""), n.get("Id", "")[:12], n.get("Driver", ""),
             human_age(_created_timestamp(n.get("Created")))]
            for n in networks
        ],
    )
    return 0


def cmd_network_rm(args: Namespace, ctx: CommandContext) -> int:
    def _remove(name: str) -> str:
        info = ctx.client.inspect_network(name, cancel=ctx.cancellation)
        _require_managed("network", name, info.get("Labels"))
        attached = info.get("Containers") or {}
        if attached:
            raise ConflictError(
                f"network {name!r} has {len(attached)} attached container(s)",
                details={"containers": sorted(c.get("Name", cid[:12]) for cid, c in attached.items())},
                next_steps=["Stop the project's containers first: agentcrate down"],
            )
        ctx.client.remove_network(name, cancel=ctx.cancellation)
        return name

    _each(ctx, "network rm", args.networks or [naming.NETWORK_NAME], _remove)
    return 0


# =============================================================================
# REGISTRATION
# =============================================================================

def _add_list_flags(parser: argparse.ArgumentParser, quiet_help: str | None = None) -> None:
    if quiet_help:
        parser.add_argument("-q", "--quiet", action="store_true", help=quiet_help)
    parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")


def register(root_parsers) -> None:
    """Add the ``image``, ``volume`` and ``network`` command groups."""
    image = root_parsers.add_parser("image", help="Manage project images")
    image_parsers = image.add_subparsers(dest="image_command", metavar="COMMAND")

    image_list = image_parsers.add_parser("list", aliases=["ls"], help="List managed images")
    image_list.add_argument("-a", "--all", action="store_true", help="Include untagged images")
    image_list.add_argument("-p", "--project", help="Filter by project name", default=None)
    _add_list_flags(image_list, "Only display image IDs")
    image_list.set_defaults(handler=cmd_image_list)

    image_rm = image_parsers.add_parser("rm", aliases=["remove"], help="Remove managed images")
    image_rm.add_argument("-f", "--force", action="store_true", help="Force removal")
    image_rm.add_argument("--no-prune", action="store_true", help="Do not delete untagged parents")
    image_rm.add_argument("images", nargs="+", metavar="IMAGE")
    image_rm.set_defaults(handler=cmd_image_rm)

    volume = root_parsers.add_parser("volume", help="Manage agent volumes")
    volume_parsers = volume.add_subparsers(dest="volume_command", metavar="COMMAND")

    volume_list = volume_parsers.add_parser("list", aliases=["ls"], help="List managed volumes")
    volume_list.add_argument("-p", "--project", help="Filter by project name", default=None)
    _add_list_flags(volume_list, "Only display volume names")
    volume_list.set_defaults(handler=cmd_volume_list)

    volume_rm = volume_parsers.add_parser("rm", aliases=["remove"], help="Remove managed volumes")
    volume_rm.add_argument("-f", "--force", action="store_true", help="Force removal")
    volume_rm.add_argument("volumes", nargs="+", metavar="VOLUME")
    volume_rm.set_defaults(handler=cmd_volume_rm)

    network = root_parsers.add_parser("network", help="Manage the agent network")
    network_parsers = network.add_subparsers(dest="network_command", metavar="COMMAND")

    network_list = network_parsers.add_parser("list", aliases=["ls"], help="List managed networks")
    _add_list_flags(network_list)
    network_list.set_defaults(handler=cmd_network_list)

    network_rm = network_parsers.add_parser("rm", aliases=["remove"], help="Remove the managed network")
    network_rm.add_argument("networks", nargs="*", metavar="NETWORK", help=f"Default: {naming.NETWORK_NAME}")
    network_rm.set_defaults(handler=cmd_network_rm)
