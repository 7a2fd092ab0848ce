# src/agentcrate/cli/project.py
"""
Project-level commands: init, down and prune.

These are top-level only; they have no ``container`` counterpart.
"""

import logging
from argparse import Namespace
from pathlib import Path

from ..config import default_project_name, write_project_config
from ..exceptions import EXIT_ERROR, EXIT_OK, InvalidArgumentsError
from ..logging_config import log_display
from ..prune import confirm
from .context import CommandContext
from .output import human_size

logger = logging.getLogger(__name__)


def cmd_init(args: Namespace, ctx: CommandContext) -> int:
    """Write a starter agentcrate.toml."""
    directory = Path(args.directory).resolve()
    if not directory.is_dir():
        raise InvalidArgumentsError(f"{directory} is not a directory")
    project = args.name or default_project_name(directory)
    path = write_project_config(directory, project, image=args.image, force=args.force)
    ctx.formatter.line(str(path))
    log_display(logger, logging.INFO, f"Initialized project {project.lower()!r}")
    return EXIT_OK


def cmd_down(args: Namespace, ctx: CommandContext) -> int:
    ctx.coordinator().down(clean=args.clean, remove_all=args.all)
    return EXIT_OK


def cmd_prune(args: Namespace, ctx: CommandContext) -> int:
    """
    Remove unused managed resources.

    ``--all`` asks for confirmation on stdin unless ``--force`` is given;
    EOF counts as no.
    """
    engine = ctx.prune_engine(project=args.project)
    formatter = ctx.formatter

    if args.all and not args.force:
        plan = engine.plan(all_=True)
        network = "" if args.project else " and the agent network if unused"
        formatter.notice(
            f"This will remove {len(plan['containers'])} container(s), {len(plan['images'])} image(s), "
            f"{len(plan['volumes'])} volume(s){network}."
        )
        answer = confirm(
            "Are you sure you want to continue?", ctx.stdin, formatter.stderr, ctx.cancellation
        )
        if not answer:
            formatter.notice("Aborted.")
            return EXIT_OK

    report = engine.prune(all_=args.all)

    if args.format == "json":
        formatter.json(report.to_dict())
    else:
        for name in report.containers + report.images + report.volumes + report.networks:
            formatter.line(name)
        formatter.line(f"Removed {report.removed} resource(s), reclaimed {human_size(report.reclaimed)}")

    return EXIT_ERROR if report.failures else EXIT_OK


def register(root_parsers) -> None:
    init = root_parsers.add_parser("init", help="Create agentcrate.toml in a directory")
    init.add_argument("directory", nargs="?", default=".", help="Project directory (default: current)")
    init.add_argument("--name", help="Project name (default: derived from the directory)", default=None)
    init.add_argument("--image", help="Base image reference", default=None)
    init.add_argument("-f", "--force", action="store_true", help="Overwrite an existing file")
    init.set_defaults(handler=cmd_init)

    down = root_parsers.add_parser("down", help="Stop every container of the current project")
    down.add_argument("--clean", action="store_true", help="Also remove the containers and project images")
    down.add_argument("--all", action="store_true", help="With --clean, also remove the project's volumes")
    down.set_defaults(handler=cmd_down)

    prune = root_parsers.add_parser("prune", help="Remove unused managed resources")
    mode = prune.add_mutually_exclusive_group()
    mode.add_argument(
        "--dangling", dest="all", action="store_false",
        help="Exited containers and untagged images only (default)"
    )
    mode.add_argument(
        "-a", "--all", dest="all", action="store_true",
        help="Every stopped container, image, volume and the unused network"
    )
    prune.add_argument("-f", "--force", action="store_true", help="Do not ask for confirmation")
    prune.add_argument("-p", "--project", help="Only prune one project's resources", default=None)
    prune.add_argument("--format", choices=["table", "json"], default="table", help="Output format")
    prune.set_defaults(handler=cmd_prune, all=False)
