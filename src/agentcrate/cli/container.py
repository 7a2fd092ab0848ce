# src/agentcrate/cli/container.py
"""
Container commands.

Available as ``agentcrate container <verb>``; run, start, stop, ps,
exec, logs, attach and rm are also top-level aliases that share the
exact same flags.
"""

import argparse
import logging
import os
import shlex
import time
from argparse import Namespace
from pathlib import Path
from typing import Callable

from .. import archive
from ..config import WorkspaceMode
from ..engine.client import DEFAULT_STOP_TIMEOUT, ContainerSummary, ExecOptions
from ..exceptions import AgentCrateError, BatchError, CancelledError, InvalidArgumentsError
from ..lifecycle import DEFAULT_KILL_SIGNAL, RunOptions, UpdateOptions
from ..logging_config import log_display
from ..resolver import Identifier
from ..stats import STATS_HEADERS, STATS_INTERVAL, StatsRow, StatsSampler
from .context import CommandContext
from .output import human_age, human_size, truncate

logger = logging.getLogger(__name__)

# Top-level alias -> container verb
ALIASES = {
    "run": "run",
    "start": "start",
    "stop": "stop",
    "ps": "list",
    "exec": "exec",
    "logs": "logs",
    "attach": "attach",
    "rm": "rm",
}


# =============================================================================
# SHARED ARGUMENT HELPERS
# =============================================================================

def _add_agent(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--agent",
        help="Agent name under the current project (instead of a container name)",
        default=None
    )


def _add_targets(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("containers", nargs="*", metavar="CONTAINER", help="Container names or ID prefixes")


def parse_env(entries: list[str] | None) -> dict[str, str]:
    """
    Parse ``-e`` values.

    ``KEY=VALUE`` sets a value; a bare ``KEY`` copies it from the host
    environment and is skipped when unset there.
    """
    env: dict[str, str] = {}
    for entry in entries or []:
        key, sep, value = entry.partition("=")
        if not key:
            raise InvalidArgumentsError(f"invalid environment variable {entry!r}")
        if sep:
            env[key] = value
        elif key in os.environ:
            env[key] = os.environ[key]
    return env


def parse_labels(entries: list[str] | None) -> dict[str, str]:
    labels: dict[str, str] = {}
    for entry in entries or []:
        key, _, value = entry.partition("=")
        if not key:
            raise InvalidArgumentsError(f"invalid label {entry!r}")
        labels[key] = value
    return labels


def _shift_agent_operand(args: Namespace, attr: str, rest: str) -> None:
    """
    With --agent, the first positional belongs to the command, not a container.

    ``exec --agent w ls -la`` parses ``ls`` as the container; move it back
    in front of the command vector.
    """
    if args.agent and getattr(args, attr):
        setattr(args, rest, [getattr(args, attr)] + list(getattr(args, rest) or []))
        setattr(args, attr, None)


def _single_target(ctx: CommandContext, args: Namespace) -> Identifier:
    containers = [args.container] if args.container else []
    return ctx.resolver_for(args.agent).resolve_one(args.agent, containers)


# =============================================================================
# CREATE / RUN
# =============================================================================

def _configure_create(parser: argparse.ArgumentParser, detach: bool = False) -> None:
    parser.add_argument("--agent", help="Agent name (default: a generated name)", default=None)
    parser.add_argument("--name", help="Explicit container name (no agent)", default=None)
    parser.add_argument("-e", "--env", action="append", help="Set environment variable KEY=VALUE", default=[])
    parser.add_argument("-v", "--volume", action="append", help="Bind mount host:container[:ro]", default=[])
    parser.add_argument("-p", "--publish", action="append", help="Publish port [ip:][host:]container[/proto]", default=[])
    parser.add_argument("-l", "--label", action="append", help="Set label KEY=VALUE", default=[])
    parser.add_argument("-w", "--workdir", help="Working directory inside the container", default=None)
    parser.add_argument("-u", "--user", help="User inside the container", default=None)
    parser.add_argument("--entrypoint", help="Override the image entrypoint", default=None)
    parser.add_argument("-t", "--tty", action="store_true", help="Allocate a pseudo-TTY")
    parser.add_argument("-i", "--interactive", action="store_true", help="Keep STDIN open")
    parser.add_argument("--rm", dest="auto_remove", action="store_true", help="Remove the container when it exits")
    parser.add_argument(
        "--workspace-mode",
        choices=[m.value for m in WorkspaceMode],
        help="Override the project workspace mode",
        default=None
    )
    if detach:
        parser.add_argument("-d", "--detach", action="store_true", help="Run in the background and print the ID")
    parser.add_argument("image", nargs="?", help="Image reference; '@' means the project image")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    parser.set_defaults(trailing="command")


def _run_options(args: Namespace) -> RunOptions:
    command = list(args.command or [])
    image = args.image
    if image is None and command:
        # run [OPTIONS] -- IMAGE COMMAND...
        image = command.pop(0)
    return RunOptions(
        image=image,
        command=command,
        agent=args.agent,
        name=args.name,
        env=parse_env(args.env),
        volumes=list(args.volume),
        ports=list(args.publish),
        labels=parse_labels(args.label),
        workdir=args.workdir,
        user=args.user,
        entrypoint=shlex.split(args.entrypoint) if args.entrypoint else None,
        tty=args.tty,
        interactive=args.interactive,
        detach=getattr(args, "detach", False),
        auto_remove=args.auto_remove,
        workspace_mode=WorkspaceMode(args.workspace_mode) if args.workspace_mode else None,
    )


def cmd_create(args: Namespace, ctx: CommandContext) -> int:
    prepared = ctx.coordinator().create(_run_options(args))
    ctx.formatter.line(prepared.id)
    return 0


def cmd_run(args: Namespace, ctx: CommandContext) -> int:
    return ctx.coordinator().run(_run_options(args))


# =============================================================================
# BATCH VERBS
# =============================================================================

def _configure_start(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument("-a", "--attach", action="store_true", help="Attach to the container's output")
    parser.add_argument("-i", "--interactive", action="store_true", help="Attach the container's STDIN")


def cmd_start(args: Namespace, ctx: CommandContext) -> int:
    return ctx.coordinator().start(ctx.targets(args), attach=args.attach, interactive=args.interactive)


def _configure_stop(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument(
        "-t", "--time", type=int, default=DEFAULT_STOP_TIMEOUT,
        help=f"Seconds to wait before killing (default: {DEFAULT_STOP_TIMEOUT})"
    )
    parser.add_argument("--ignore-missing", action="store_true", help="Succeed when a container does not exist")


def cmd_stop(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().stop(ctx.targets(args), timeout=args.time, ignore_missing=args.ignore_missing)
    return 0


def _configure_restart(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument(
        "-t", "--time", type=int, default=DEFAULT_STOP_TIMEOUT,
        help=f"Seconds to wait before killing (default: {DEFAULT_STOP_TIMEOUT})"
    )


def cmd_restart(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().restart(ctx.targets(args), timeout=args.time)
    return 0


def cmd_pause(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().pause(ctx.targets(args))
    return 0


def cmd_unpause(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().unpause(ctx.targets(args))
    return 0


def _configure_kill(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument("-s", "--signal", default=DEFAULT_KILL_SIGNAL, help=f"Signal to send (default: {DEFAULT_KILL_SIGNAL})")


def cmd_kill(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().kill(ctx.targets(args), signal=args.signal)
    return 0


def _configure_rename(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("operands", nargs="+", metavar="NAME", help="CONTAINER NEW_NAME, or NEW_NAME with --agent")


def cmd_rename(args: Namespace, ctx: CommandContext) -> int:
    target, new_name = ctx.resolver_for(args.agent).resolve_rename(args.agent, args.operands)
    ctx.coordinator().rename(target, new_name)
    return 0


def _configure_rm(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument("-f", "--force", action="store_true", help="Kill a running container before removing it")
    parser.add_argument(
        "-v", "--volumes", dest="volumes", action="store_true", default=True,
        help="Remove the container's managed volumes (default)"
    )
    parser.add_argument("--no-volumes", dest="volumes", action="store_false", help="Keep the managed volumes")


def cmd_rm(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().remove(ctx.targets(args), force=args.force, volumes=args.volumes)
    return 0


def cmd_wait(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().wait(ctx.targets(args))
    return 0


# =============================================================================
# STREAMING VERBS
# =============================================================================

def _configure_attach(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("--no-stdin", action="store_true", help="Do not attach STDIN")
    parser.add_argument("container", nargs="?", help="Container name or ID prefix")


def cmd_attach(args: Namespace, ctx: CommandContext) -> int:
    target = _single_target(ctx, args)
    summary = ctx.coordinator().find(target)
    return ctx.attach_engine().attach_container(summary.id, interactive=not args.no_stdin)


def _configure_exec(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("-i", "--interactive", action="store_true", help="Keep STDIN open")
    parser.add_argument("-t", "--tty", action="store_true", help="Allocate a pseudo-TTY")
    parser.add_argument("-d", "--detach", action="store_true", help="Run in the background and print the exec ID")
    parser.add_argument("-e", "--env", action="append", help="Set environment variable KEY=VALUE", default=[])
    parser.add_argument("-w", "--workdir", help="Working directory inside the container", default=None)
    parser.add_argument("-u", "--user", help="User inside the container", default=None)
    parser.add_argument("--privileged", action="store_true", help="Give extended privileges to the command")
    parser.add_argument("container", nargs="?", help="Container name or ID prefix")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")
    parser.set_defaults(trailing="command")


def cmd_exec(args: Namespace, ctx: CommandContext) -> int:
    _shift_agent_operand(args, "container", "command")
    if not args.command:
        raise InvalidArgumentsError(
            "exec needs a command",
            next_steps=["Example: agentcrate exec --agent NAME -- sh -c 'ls'"],
        )
    target = _single_target(ctx, args)
    summary = ctx.coordinator().find(target)
    options = ExecOptions(
        command=list(args.command),
        env=parse_env(args.env),
        workdir=args.workdir,
        user=args.user or "",
        tty=args.tty,
        interactive=args.interactive,
        privileged=args.privileged,
        detach=args.detach,
    )
    ctx.attach_engine().exec(summary.id, options)
    return 0


def _configure_logs(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("-f", "--follow", action="store_true", help="Follow log output")
    parser.add_argument("-t", "--timestamps", action="store_true", help="Show timestamps")
    parser.add_argument("--since", help="Show logs since a timestamp or relative time (e.g. 10m)", default=None)
    parser.add_argument("--until", help="Show logs before a timestamp or relative time", default=None)
    parser.add_argument("-n", "--tail", default="all", help="Number of lines from the end (default: all)")
    parser.add_argument("--details", action="store_true", help="Show extra details")
    parser.add_argument("container", nargs="?", help="Container name or ID prefix")


def cmd_logs(args: Namespace, ctx: CommandContext) -> int:
    target = _single_target(ctx, args)
    summary = ctx.coordinator().find(target)
    info = ctx.client.inspect_container(summary.id, cancel=ctx.cancellation)
    ctx.attach_engine().follow_logs(
        summary.id,
        tty=bool((info.get("Config") or {}).get("Tty")),
        follow=args.follow,
        timestamps=args.timestamps,
        since=args.since,
        until=args.until,
        tail=args.tail,
        details=args.details,
    )
    return 0


# =============================================================================
# INFORMATIONAL VERBS
# =============================================================================

def _configure_list(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-a", "--all", action="store_true", help="Show all containers (default shows running)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only display container IDs")
    parser.add_argument("-p", "--project", help="Filter by project name", default=None)
    parser.add_argument("--format", choices=["table", "json"], default="table", help="Output format")


def cmd_list(args: Namespace, ctx: CommandContext) -> int:
    containers = ctx.client.list_containers(
        project=args.project, all=args.all, cancel=ctx.cancellation
    )
    formatter = ctx.formatter

    if args.quiet:
        for c in containers:
            formatter.line(c.short_id)
        return 0

    if args.format == "json":
        formatter.json([
            {
                "id": c.id,
                "name": c.name,
                "status": c.status,
                "state": c.state,
                "project": c.project,
                "agent": c.agent,
                "image": c.image,
                "created": c.created,
            }
            for c in containers
        ])
        return 0

    if not containers:
        if args.all:
            formatter.notice("No agentcrate containers found.")
        else:
            formatter.notice("No running agentcrate containers found. Use -a to show all containers.")
        return 0

    formatter.table(
        ["NAME", "STATUS", "PROJECT", "AGENT", "IMAGE", "CREATED"],
        [[c.name, c.status, c.project, c.agent, truncate(c.image), human_age(c.created)] for c in containers],
    )
    return 0


def cmd_inspect(args: Namespace, ctx: CommandContext) -> int:
    coordinator = ctx.coordinator()
    results = []
    failures: list[tuple[str, AgentCrateError]] = []
    for target in ctx.targets(args):
        try:
            summary = coordinator.find(target)
            results.append(ctx.client.inspect_container(summary.id, cancel=ctx.cancellation))
        except AgentCrateError as e:
            failures.append((str(target), e))
    ctx.formatter.json(results)
    if failures:
        if len(failures) == 1 and not results:
            raise failures[0][1]
        raise BatchError(failures, "inspect")
    return 0


def _configure_top(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("container", nargs="?", help="Container name or ID prefix")
    parser.add_argument("ps_args", nargs=argparse.REMAINDER, help="Options passed to ps")
    parser.set_defaults(trailing="ps_args")


def cmd_top(args: Namespace, ctx: CommandContext) -> int:
    _shift_agent_operand(args, "container", "ps_args")
    target = _single_target(ctx, args)
    summary = ctx.coordinator().find(target)
    ps_args = " ".join(args.ps_args) if args.ps_args else None
    result = ctx.client.top(summary.id, ps_args=ps_args, cancel=ctx.cancellation)
    ctx.formatter.table(result.get("Titles") or [], result.get("Processes") or [])
    return 0


# =============================================================================
# RESOURCES
# =============================================================================

def _configure_stats(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument("--no-stream", action="store_true", help="Print one sample and exit")
    parser.add_argument("--no-trunc", action="store_true", help="Do not truncate container IDs")


def _stats_cells(row: StatsRow, no_trunc: bool) -> list[str]:
    return [
        row.id if no_trunc else row.id[:12],
        row.name,
        f"{row.cpu:.2f}%",
        f"{human_size(row.memory)} / {human_size(row.memory_limit)}",
        f"{row.memory_percent:.2f}%",
        f"{human_size(row.net_rx)} / {human_size(row.net_tx)}",
        f"{human_size(row.block_read)} / {human_size(row.block_write)}",
        str(row.pids),
    ]


def cmd_stats(args: Namespace, ctx: CommandContext) -> int:
    """
    Show resource usage; every running managed container when none is named.

    Without ``--no-stream`` the table is redrawn every second until the
    invocation is cancelled. A container whose sample fails is dropped
    from later rounds and reported at the end.
    """
    formatter = ctx.formatter
    targets = ctx.targets(args, allow_empty=True)
    failures: list[tuple[str, AgentCrateError]] = []

    if targets:
        coordinator = ctx.coordinator()
        containers: list[ContainerSummary] = []
        for target in targets:
            try:
                containers.append(coordinator.find(target))
            except CancelledError:
                raise
            except AgentCrateError as e:
                failures.append((str(target), e))
    else:
        containers = ctx.client.list_containers(all=False, cancel=ctx.cancellation)
        if not containers:
            formatter.notice("No running agentcrate containers found.")
            return 0

    sampler = StatsSampler(ctx.client, ctx.cancellation)
    while containers:
        started = time.monotonic()
        rows, round_failures = sampler.sample(containers)
        failures.extend(round_failures)
        if not args.no_stream:
            formatter.clear_screen()
        formatter.table(STATS_HEADERS, [_stats_cells(row, args.no_trunc) for row in rows])
        if args.no_stream:
            break

        failed = {name for name, _ in round_failures}
        for name, error in round_failures:
            formatter.notice(f"Error: {name}: {error.message}")
        containers = [c for c in containers if c.name not in failed]
        if ctx.cancellation.wait(max(STATS_INTERVAL - (time.monotonic() - started), 0)):
            ctx.cancellation.raise_if_cancelled()

    if failures:
        if len(failures) == 1 and len(targets) == 1:
            raise failures[0][1]
        raise BatchError(failures, "stats")
    return 0


def _configure_update(parser: argparse.ArgumentParser) -> None:
    _add_targets(parser)
    parser.add_argument("--cpus", type=float, default=None, help="Number of CPUs")
    parser.add_argument("-c", "--cpu-shares", type=int, default=None, help="CPU shares (relative weight)")
    parser.add_argument("--cpu-period", type=int, default=None, help="Limit the CPU CFS period")
    parser.add_argument("--cpu-quota", type=int, default=None, help="Limit the CPU CFS quota")
    parser.add_argument("--cpuset-cpus", default=None, help="CPUs in which to allow execution (0-3, 0,1)")
    parser.add_argument("--cpuset-mems", default=None, help="Memory nodes in which to allow execution (0-3, 0,1)")
    parser.add_argument("-m", "--memory", default=None, help="Memory limit (e.g. 512m, 1g)")
    parser.add_argument("--memory-reservation", default=None, help="Memory soft limit")
    parser.add_argument("--memory-swap", default=None, help="Memory plus swap limit; -1 for unlimited swap")
    parser.add_argument("--pids-limit", type=int, default=None, help="Process limit (-1 for unlimited)")
    parser.add_argument("--blkio-weight", type=int, default=None, help="Block IO weight, 10 to 1000 (0 disables)")
    parser.add_argument(
        "--restart", default=None,
        help="Restart policy: no, always, unless-stopped or on-failure[:N]"
    )


def cmd_update(args: Namespace, ctx: CommandContext) -> int:
    options = UpdateOptions(
        cpus=args.cpus,
        cpu_shares=args.cpu_shares,
        cpu_period=args.cpu_period,
        cpu_quota=args.cpu_quota,
        cpuset_cpus=args.cpuset_cpus,
        cpuset_mems=args.cpuset_mems,
        memory=args.memory,
        memory_reservation=args.memory_reservation,
        memory_swap=args.memory_swap,
        pids_limit=args.pids_limit,
        blkio_weight=args.blkio_weight,
        restart=args.restart,
    )
    ctx.coordinator().update(ctx.targets(args), options)
    return 0


# =============================================================================
# COPY
# =============================================================================

def _configure_cp(parser: argparse.ArgumentParser) -> None:
    _add_agent(parser)
    parser.add_argument("source", help="CONTAINER:PATH, :PATH (agent container), host path or '-'")
    parser.add_argument("destination", help="CONTAINER:PATH, :PATH (agent container), host path or '-'")


def cmd_cp(args: Namespace, ctx: CommandContext) -> int:
    """
    Copy files between the host and a container.

    ``-`` as the source reads a tar archive from stdin; as the destination
    it writes the tar archive to stdout.
    """
    src, dst = ctx.resolver_for(args.agent).resolve_copy(args.agent, args.source, args.destination)

    if src.is_container:
        summary = ctx.client.find_container(src.container, cancel=ctx.cancellation)
        chunks, stat = ctx.client.get_archive(summary.id, src.path, cancel=ctx.cancellation)
        if dst.is_stdio:
            archive.copy_stream(chunks, ctx.io.stdout)
        else:
            archive.extract_to_host(chunks, Path(dst.path))
            log_display(logger, logging.INFO, f"Copied {summary.name}:{src.path} to {dst.path}")
        return 0

    summary = ctx.client.find_container(dst.container, cancel=ctx.cancellation)
    if src.is_stdio:
        ctx.client.put_archive(summary.id, dst.path, ctx.io.stdin.read(), cancel=ctx.cancellation)
        return 0

    source = Path(src.path)
    directory, arcname = archive.upload_target(dst.path, source.name)
    data = archive.tar_path(source, arcname)
    ctx.client.put_archive(summary.id, directory, data, cancel=ctx.cancellation)
    log_display(logger, logging.INFO, f"Copied {src.path} to {summary.name}:{dst.path}")
    return 0


# =============================================================================
# REGISTRATION
# =============================================================================

Handler = Callable[[Namespace, CommandContext], int]

VERBS: dict[str, tuple[Callable[[argparse.ArgumentParser], None], Handler, str]] = {
    "create": (_configure_create, cmd_create, "Create a container without starting it"),
    "run": (lambda p: _configure_create(p, detach=True), cmd_run, "Create and start a container"),
    "start": (_configure_start, cmd_start, "Start one or more containers"),
    "stop": (_configure_stop, cmd_stop, "Stop one or more containers"),
    "restart": (_configure_restart, cmd_restart, "Restart one or more containers"),
    "pause": (_add_targets, cmd_pause, "Pause one or more containers"),
    "unpause": (_add_targets, cmd_unpause, "Unpause one or more containers"),
    "kill": (_configure_kill, cmd_kill, "Send a signal to one or more containers"),
    "rename": (_configure_rename, cmd_rename, "Rename a container"),
    "rm": (_configure_rm, cmd_rm, "Remove containers and their managed volumes"),
    "wait": (_add_targets, cmd_wait, "Wait for containers to stop and print their exit codes"),
    "attach": (_configure_attach, cmd_attach, "Attach to a running container"),
    "exec": (_configure_exec, cmd_exec, "Run a command in a running container"),
    "logs": (_configure_logs, cmd_logs, "Fetch the logs of a container"),
    "list": (_configure_list, cmd_list, "List managed containers"),
    "inspect": (_add_targets, cmd_inspect, "Show low-level information on containers"),
    "top": (_configure_top, cmd_top, "Display the processes of a container"),
    "cp": (_configure_cp, cmd_cp, "Copy files between a container and the host"),
    "stats": (_configure_stats, cmd_stats, "Display resource usage statistics"),
    "update": (_configure_update, cmd_update, "Update resource limits of one or more containers"),
}

VERB_ALIASES = {"list": ["ls", "ps"], "rm": ["remove"]}


def register(container_parsers, root_parsers) -> None:
    """Add the ``container`` verbs and their top-level aliases."""
    for verb, (configure, handler, help_text) in VERBS.items():
        parser = container_parsers.add_parser(verb, aliases=VERB_ALIASES.get(verb, []), help=help_text)
        configure(parser)
        parser.set_defaults(handler=handler)

    for alias, verb in ALIASES.items():
        configure, handler, help_text = VERBS[verb]
        parser = root_parsers.add_parser(alias, help=f"{help_text} (alias of 'container {verb}')")
        configure(parser)
        parser.set_defaults(handler=handler)
