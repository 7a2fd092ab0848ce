# src/agentcrate/logging_config.py
"""
Logging setup for the agentcrate CLI.

One process-wide configuration, applied once per invocation by the CLI
entry point:

- Console logging on stderr, gated by ``DisplayFilter``. In the default
  quiet mode only records logged through ``log_display()`` reach the
  console; ``-v`` passes everything.
- File logging under ``~/.local/share/agentcrate/logs``, one timestamped
  file per run or a single rotating file.
- Per-component levels, mostly to quiet the docker SDK and urllib3.
- Interactive mode: while a TTY attach owns the screen the console only
  shows warnings and errors, so status chatter does not land in the
  middle of a remote shell.

Settings come from the ``[logging]`` table of the user settings file.

Usage:
    from agentcrate.logging_config import configure_logging, log_display

    configure_logging(config=settings.logging, verbose=args.verbose)

    logger = logging.getLogger(__name__)
    log_display(logger, logging.INFO, "Created network %s", name)
"""

import logging
import os
import sys
from contextlib import contextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "DEBUG",
    "console_format": "%(message)s",
    "verbose_format": "%(levelname)s %(name)s: %(message)s",
    "file_enabled": True,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/agentcrate/logs",
    "file_mode": "per_run",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-30s - %(message)s (%(filename)s:%(lineno)d)",
    "rotation_max_bytes": 10 * 1024 * 1024,  # 10 MB
    "rotation_backup_count": 5,
    "display_min_level": "INFO",
    "components": {
        "agentcrate": "DEBUG",
        "docker": "WARNING",
        "urllib3": "WARNING",
    },
}


def _level(value: str | int, default: int) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    return level if isinstance(level, int) else default


class DisplayFilter(logging.Filter):
    """Controls which log records pass through to the console handler.

    Behavior matrix::

        +----------------------+--------------+-----------------+
        | mode                 | display=True | display=False/  |
        |                      |              | absent          |
        +----------------------+--------------+-----------------+
        | verbose (-v)         | PASS         | PASS            |
        | quiet (default)      | PASS*        | BLOCK           |
        | interactive          | WARNING+     | WARNING+        |
        +----------------------+--------------+-----------------+

        * subject to display_min_level

    Interactive mode wins over both other modes.
    """

    def __init__(
        self,
        console_globally_enabled: bool = False,
        display_min_level: int = logging.INFO,
    ) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level
        self.interactive = False

    def filter(self, record: logging.LogRecord) -> bool:
        if self.interactive:
            return record.levelno >= logging.WARNING

        if self.console_globally_enabled:
            return True

        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level

        return False


class UnifiedLoggingManager:
    """
    Singleton owning the root logger's handlers.

    Ensures logging is only configured once per process and provides the
    runtime toggles the CLI needs (verbosity, interactive mode).
    """

    _instance: Optional["UnifiedLoggingManager"] = None
    _configured: bool = False
    _log_file_path: Path | None = None
    _console_handler: logging.Handler | None = None
    _file_handler: logging.Handler | None = None
    _display_filter: DisplayFilter | None = None

    def __new__(cls) -> "UnifiedLoggingManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def get_instance(cls) -> "UnifiedLoggingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Path | None:
        return cls._log_file_path

    def configure(
        self,
        app_name: str = "agentcrate",
        config: dict[str, Any] | None = None,
        verbose: bool = False,
        stream=None,
        force_reconfigure: bool = False,
    ) -> Path | None:
        """
        Configure logging for one CLI invocation.

        Args:
            app_name: Used in the log file name
            config: The ``[logging]`` table of the user settings
            verbose: Pass every console record at DEBUG
            stream: Console stream (defaults to sys.stderr)
            force_reconfigure: Reconfigure even if already configured

        Returns:
            Path to the log file, or None when file logging is off
        """
        if self._configured and not force_reconfigure:
            return self._log_file_path

        log_config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}
        console_globally_enabled = bool(log_config.get("console_enabled")) or verbose

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        root_logger.setLevel(logging.DEBUG)

        self._display_filter = DisplayFilter(
            console_globally_enabled=console_globally_enabled,
            display_min_level=_level(log_config.get("display_min_level", "INFO"), logging.INFO),
        )
        self._console_handler = logging.StreamHandler(stream or sys.stderr)
        self._console_handler.setLevel(
            logging.DEBUG if verbose else _level(log_config.get("console_level"), logging.DEBUG)
        )
        fmt_key = "verbose_format" if verbose else "console_format"
        self._console_handler.setFormatter(logging.Formatter(log_config[fmt_key]))
        self._console_handler.addFilter(self._display_filter)
        root_logger.addHandler(self._console_handler)

        self._file_handler = None
        self._log_file_path = None
        if log_config.get("file_enabled", True):
            self._file_handler, self._log_file_path = self._create_file_handler(log_config, app_name)
            if self._file_handler:
                root_logger.addHandler(self._file_handler)

        for component_name, level_str in log_config.get("components", {}).items():
            level = _level(level_str, -1)
            if level >= 0:
                logging.getLogger(component_name).setLevel(level)

        UnifiedLoggingManager._configured = True
        UnifiedLoggingManager._log_file_path = self._log_file_path

        if self._log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {self._log_file_path}")
        return self._log_file_path

    def _create_file_handler(
        self, config: dict[str, Any], app_name: str
    ) -> tuple[logging.Handler | None, Path | None]:
        """Create the file handler (``per_run`` or rotating ``single`` mode)."""
        log_dir = Path(os.path.expanduser(config["file_directory"]))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"Warning: Cannot create log directory {log_dir}: {e}\n")
            return None, None

        if config.get("file_mode", "per_run") == "single":
            try:
                filename = config.get("file_single_name", "{app}.log").format(app=app_name)
            except (KeyError, ValueError):
                filename = f"{app_name}.log"
            log_file_path = log_dir / filename
            try:
                handler: logging.Handler = RotatingFileHandler(
                    log_file_path,
                    maxBytes=config.get("rotation_max_bytes", 10 * 1024 * 1024),
                    backupCount=config.get("rotation_backup_count", 5),
                    encoding="utf-8",
                )
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None
        else:
            timestamp = datetime.now()
            try:
                filename = config["file_name_pattern"].format(app=app_name, timestamp=timestamp)
            except (KeyError, ValueError):
                filename = f"{app_name}_{timestamp.strftime('%Y%m%d_%H%M%S')}.log"
            log_file_path = log_dir / filename
            try:
                handler = logging.FileHandler(log_file_path, encoding="utf-8")
            except OSError as e:
                sys.stderr.write(f"Warning: Cannot create log file {log_file_path}: {e}\n")
                return None, None

        handler.setLevel(_level(config.get("file_level", "DEBUG"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config["file_format"]))
        return handler, log_file_path

    def set_interactive(self, enabled: bool) -> bool:
        """
        Toggle interactive mode.

        Returns:
            The previous state, so callers can restore it
        """
        if self._display_filter is None:
            return False
        previous = self._display_filter.interactive
        self._display_filter.interactive = enabled
        return previous

    def is_interactive(self) -> bool:
        return bool(self._display_filter and self._display_filter.interactive)


def configure_logging(
    app_name: str = "agentcrate",
    config: dict[str, Any] | None = None,
    verbose: bool = False,
    stream=None,
    force_reconfigure: bool = False,
) -> Path | None:
    """Configure logging for the process; see ``UnifiedLoggingManager.configure``."""
    return UnifiedLoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        verbose=verbose,
        stream=stream,
        force_reconfigure=force_reconfigure,
    )


def log_display(
    logger: logging.Logger,
    level: int,
    msg: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """Log a message that also appears on the console in quiet mode.

    Wrapper around ``logger.log()`` that sets ``extra={"display": True}``.
    The ``display_min_level`` setting still applies.
    """
    extra = kwargs.pop("extra", None) or {}
    extra["display"] = True
    kwargs["extra"] = extra
    logger.log(level, msg, *args, **kwargs)


def set_interactive(enabled: bool) -> bool:
    """Toggle interactive mode; returns the previous state."""
    return UnifiedLoggingManager.get_instance().set_interactive(enabled)


@contextmanager
def interactive_mode() -> Iterator[None]:
    """Suppress informational console output for the duration of the block."""
    previous = set_interactive(True)
    try:
        yield
    finally:
        set_interactive(previous)


def get_log_file_path() -> Path | None:
    return UnifiedLoggingManager.get_log_file_path()
