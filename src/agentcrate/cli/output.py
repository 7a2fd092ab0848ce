# src/agentcrate/cli/output.py
"""
Output formatting for CLI commands.

Data (IDs, names, tables, JSON) goes to stdout; diagnostics go to stderr
through the formatter so they never mix with data a script may parse.
"""

import json
import sys
import time
from typing import Any, Sequence, TextIO

from ..exceptions import AgentCrateError

MAX_IMAGE_WIDTH = 40


class OutputFormatter:
    """Formats CLI output in various styles."""

    def __init__(
        self,
        use_color: bool = True,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.use_color = use_color and self.stderr.isatty()

    def _color(self, text: str, color: str) -> str:
        """Apply ANSI color to text."""
        if not self.use_color:
            return text

        colors = {
            'green': '\033[92m',
            'red': '\033[91m',
            'yellow': '\033[93m',
            'bold': '\033[1m',
            'reset': '\033[0m'
        }
        return f"{colors.get(color, '')}{text}{colors['reset']}"

    def header(self, text: str) -> str:
        return self._color(text, 'bold')

    def warning(self, text: str) -> str:
        return self._color(text, 'yellow')

    # ------------------------------------------------------------------
    # stdout
    # ------------------------------------------------------------------

    def line(self, text: str = "") -> None:
        self.stdout.write(f"{text}\n")
        self.stdout.flush()

    def json(self, data: Any) -> None:
        self.line(json.dumps(data, indent=2, default=str))

    def clear_screen(self) -> None:
        """Move to the top-left and clear, when stdout is a terminal."""
        if self.stdout.isatty():
            self.stdout.write("\033[H\033[2J")

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        """Print an aligned table with two spaces between columns."""
        cells = [[str(h) for h in headers]] + [["" if c is None else str(c) for c in row] for row in rows]
        widths = [max(len(row[i]) for row in cells) for i in range(len(headers))]
        for row in cells:
            padded = [cell.ljust(widths[i]) for i, cell in enumerate(row[:-1])] + [row[-1]]
            self.line("  ".join(padded).rstrip())

    # ------------------------------------------------------------------
    # stderr
    # ------------------------------------------------------------------

    def notice(self, text: str) -> None:
        self.stderr.write(f"{text}\n")
        self.stderr.flush()

    def error(self, error: AgentCrateError) -> None:
        """Render ``Error: <message>`` plus the Next Steps block."""
        self.stderr.write(self._color(f"Error: {error.message}", 'red') + "\n")
        if error.next_steps:
            self.stderr.write(f"\n{self.header('Next Steps:')}\n")
            for i, step in enumerate(error.next_steps, 1):
                self.stderr.write(f"  {i}. {step}\n")
        self.stderr.flush()


def human_size(size: int | float | None) -> str:
    """Format a byte count the way the docker CLI does (decimal units)."""
    if size is None or size < 0:
        return "N/A"
    value = float(size)
    for unit in ("B", "kB", "MB", "GB"):
        if value < 1000:
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.3g}{unit}"
        value /= 1000
    return f"{value:.3g}TB"


def human_age(timestamp: int | float | None, now: float | None = None) -> str:
    """Relative creation time ("3 minutes ago")."""
    if not timestamp:
        return ""
    seconds = max(0, (time.time() if now is None else now) - timestamp)
    if seconds < 60:
        return "Less than a minute ago"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = int(seconds // size)
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return ""


def truncate(text: str, width: int = MAX_IMAGE_WIDTH) -> str:
    if len(text) <= width:
        return text
    return text[: width - 3] + "..."
