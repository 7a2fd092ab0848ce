# tests/test_logging_config.py
"""
Tests for the agentcrate.logging_config module.

Tests the UnifiedLoggingManager singleton, the display filter, file
handlers and interactive mode.
"""

import io
import logging
from pathlib import Path

import pytest

from agentcrate.logging_config import (
    DEFAULT_LOGGING_CONFIG,
    DisplayFilter,
    UnifiedLoggingManager,
    configure_logging,
    get_log_file_path,
    interactive_mode,
    log_display,
    set_interactive,
)


@pytest.fixture
def reset_logging_manager():
    """Reset the logging manager singleton between tests."""

    def _reset():
        UnifiedLoggingManager._instance = None
        UnifiedLoggingManager._configured = False
        UnifiedLoggingManager._log_file_path = None
        UnifiedLoggingManager._console_handler = None
        UnifiedLoggingManager._file_handler = None
        UnifiedLoggingManager._display_filter = None

        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()

    _reset()
    yield
    _reset()


@pytest.fixture
def log_config(tmp_path):
    return {"file_directory": str(tmp_path / "logs")}


def make_record(level: int = logging.INFO, display: bool = False) -> logging.LogRecord:
    record = logging.LogRecord("agentcrate.test", level, __file__, 1, "msg", None, None)
    if display:
        record.display = True
    return record


class TestDisplayFilter:
    """Tests for the console filter matrix."""

    def test_quiet_blocks_plain_records(self):
        assert not DisplayFilter().filter(make_record())

    def test_quiet_passes_display_records(self):
        assert DisplayFilter().filter(make_record(display=True))

    def test_display_min_level(self):
        display_filter = DisplayFilter(display_min_level=logging.WARNING)
        assert not display_filter.filter(make_record(logging.INFO, display=True))
        assert display_filter.filter(make_record(logging.ERROR, display=True))

    def test_verbose_passes_everything(self):
        assert DisplayFilter(console_globally_enabled=True).filter(make_record(logging.DEBUG))

    def test_interactive_only_warnings(self):
        display_filter = DisplayFilter(console_globally_enabled=True)
        display_filter.interactive = True
        assert not display_filter.filter(make_record(logging.INFO, display=True))
        assert display_filter.filter(make_record(logging.WARNING))


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_per_run_file(self, reset_logging_manager, log_config):
        path = configure_logging(config=log_config, stream=io.StringIO())
        assert path is not None
        assert path.parent == Path(log_config["file_directory"])
        assert path.name.startswith("agentcrate_")
        assert get_log_file_path() == path

    def test_single_file_mode(self, reset_logging_manager, log_config):
        log_config["file_mode"] = "single"
        path = configure_logging(config=log_config, stream=io.StringIO())
        assert path.name == "agentcrate.log"

    def test_file_disabled(self, reset_logging_manager):
        assert configure_logging(config={"file_enabled": False}, stream=io.StringIO()) is None

    def test_configured_once(self, reset_logging_manager, log_config):
        first = configure_logging(config=log_config, stream=io.StringIO())
        second = configure_logging(config={"file_enabled": False}, stream=io.StringIO())
        assert first == second
        assert UnifiedLoggingManager.is_configured()

    def test_force_reconfigure(self, reset_logging_manager, log_config):
        configure_logging(config=log_config, stream=io.StringIO())
        assert configure_logging(config={"file_enabled": False}, force_reconfigure=True) is None

    def test_component_levels(self, reset_logging_manager, log_config):
        configure_logging(config=log_config, stream=io.StringIO())
        assert logging.getLogger("docker").level == logging.WARNING
        assert logging.getLogger("agentcrate").level == logging.DEBUG

    def test_quiet_console(self, reset_logging_manager, log_config):
        stream = io.StringIO()
        configure_logging(config=log_config, stream=stream)
        logger = logging.getLogger("agentcrate.test")
        logger.info("hidden")
        log_display(logger, logging.INFO, "Created network %s", "agentcrate-net")
        assert stream.getvalue() == "Created network agentcrate-net\n"

    def test_verbose_console(self, reset_logging_manager, log_config):
        stream = io.StringIO()
        configure_logging(config=log_config, verbose=True, stream=stream)
        logging.getLogger("agentcrate.test").debug("details")
        assert "DEBUG agentcrate.test: details" in stream.getvalue()

    def test_file_receives_debug(self, reset_logging_manager, log_config):
        path = configure_logging(config=log_config, stream=io.StringIO())
        logging.getLogger("agentcrate.test").debug("to the file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "to the file" in path.read_text()

    def test_defaults_unchanged(self, reset_logging_manager, log_config):
        configure_logging(config=log_config, stream=io.StringIO())
        assert DEFAULT_LOGGING_CONFIG["file_directory"] == "~/.local/share/agentcrate/logs"


class TestInteractiveMode:

    def test_unconfigured_is_noop(self, reset_logging_manager):
        assert set_interactive(True) is False

    def test_context_manager_restores(self, reset_logging_manager, log_config):
        stream = io.StringIO()
        configure_logging(config=log_config, stream=stream)
        logger = logging.getLogger("agentcrate.test")
        with interactive_mode():
            assert UnifiedLoggingManager.get_instance().is_interactive()
            log_display(logger, logging.INFO, "suppressed")
            log_display(logger, logging.WARNING, "shown")
        assert not UnifiedLoggingManager.get_instance().is_interactive()
        assert stream.getvalue() == "shown\n"
