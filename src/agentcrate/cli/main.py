# src/agentcrate/cli/main.py
"""
Main CLI entry point for agentcrate.

Handlers stay shallow: validate operand shape, bind flags into options,
call the coordinator or an engine, and let the error taxonomy decide the
exit code. This module owns the last step: it renders ``Error: ...`` and
the ``Next Steps:`` block on stderr and maps the error kind to the
process exit code.

Usage:
    agentcrate run --agent a alpine echo hi
    agentcrate container stop --agent a
    agentcrate prune --all
"""

import argparse
import logging
import sys
from typing import List, Optional

from .. import __version__
from ..config import load_user_settings
from ..engine.cancel import Cancellation, install_signal_handlers
from ..exceptions import EXIT_CANCELLED, EXIT_ERROR, AgentCrateError, BatchError
from ..logging_config import configure_logging, get_log_file_path
from . import container, project, resources
from .context import CommandContext
from .output import OutputFormatter

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the agentcrate CLI."""
    parser = argparse.ArgumentParser(
        prog="agentcrate",
        description="Run AI coding agents in isolated containers"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        help="Show debug logging on stderr",
        action="store_true"
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to the project configuration file (default: search for agentcrate.toml)",
        default=None
    )
    parser.add_argument(
        "-H", "--host",
        help="Docker daemon URL (default: DOCKER_HOST or the local socket)",
        default=None
    )
    parser.add_argument(
        "--no-color",
        help="Disable colored output",
        action="store_true"
    )

    subparsers = parser.add_subparsers(dest="group", metavar="COMMAND", help="Available commands")

    container_parser = subparsers.add_parser("container", help="Manage agent containers")
    container_parsers = container_parser.add_subparsers(dest="container_command", metavar="COMMAND")

    container.register(container_parsers, subparsers)
    resources.register(subparsers)
    project.register(subparsers)

    return parser


def parse_args(parser: argparse.ArgumentParser, argv: List[str]) -> argparse.Namespace:
    """
    Parse ``argv``, treating everything after the first ``--`` as a command vector.

    ``exec --agent w -- sh -c 'exit 42'`` would otherwise bind ``sh`` to the
    optional container operand. A ``--`` that comes after the command has
    begun (``run alpine echo -- x``) belongs to the command and is kept.
    """
    trailing: Optional[List[str]] = None
    if "--" in argv:
        index = argv.index("--")
        argv, trailing = argv[:index], argv[index + 1:]

    args = parser.parse_args(argv)

    if trailing is not None:
        target = getattr(args, "trailing", None)
        if target is None:
            parser.error("unexpected arguments after '--'")
        command = list(getattr(args, target) or [])
        if command:
            trailing = ["--"] + trailing
        setattr(args, target, command + trailing)
    return args


def render_error(formatter: OutputFormatter, error: AgentCrateError) -> None:
    formatter.error(error)
    if isinstance(error, BatchError):
        for target, failure in error.failures:
            formatter.notice(f"  {target}: {failure.message}")


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the agentcrate CLI.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    parser = create_parser()
    argv = list(sys.argv[1:] if args is None else args)
    parsed = parse_args(parser, argv)

    formatter = OutputFormatter(use_color=not parsed.no_color)
    handler = getattr(parsed, "handler", None)
    if handler is None:
        # A command group without a verb, or no command at all
        parser.print_help(sys.stderr)
        return EXIT_ERROR if parsed.group else 0

    cancellation = Cancellation()
    ctx: Optional[CommandContext] = None
    try:
        settings = load_user_settings()
        configure_logging(config=settings.logging, verbose=parsed.verbose)
        logger.debug(f"agentcrate {__version__}: {' '.join(argv)}")

        ctx = CommandContext(parsed, settings=settings, cancellation=cancellation, formatter=formatter)
        with install_signal_handlers(cancellation):
            return handler(parsed, ctx) or 0
    except AgentCrateError as e:
        logger.debug(f"{e.kind}: {e.to_dict()}")
        render_error(formatter, e)
        return e.exit_code
    except KeyboardInterrupt:
        formatter.notice("Error: cancelled")
        return EXIT_CANCELLED
    finally:
        if ctx is not None:
            ctx.close()
        log_file = get_log_file_path()
        if log_file:
            logger.debug(f"Log file: {log_file}")


if __name__ == "__main__":
    sys.exit(main())
