# tests/stream/test_terminal.py
"""
Tests for raw-mode guards and terminal resize forwarding.

termios and tty are patched; no real terminal is touched.
"""

import io
import signal
import threading
import time
from unittest.mock import patch

import pytest

from agentcrate.exceptions import StreamFailureError
from agentcrate.stream import terminal
from agentcrate.stream.terminal import RawTerminal, ResizeWatcher, is_terminal, terminal_size


@pytest.fixture
def fake_termios():
    """Patch termios/tty so RawTerminal works on any fd."""
    with patch.object(terminal.termios, "tcgetattr", return_value=["saved"]) as get, \
            patch.object(terminal.termios, "tcsetattr") as set_, \
            patch.object(terminal.tty, "setraw") as setraw:
        yield get, set_, setraw


class TestDetection:

    def test_bytes_io_is_not_terminal(self):
        assert not is_terminal(io.BytesIO())

    def test_object_without_fileno(self):
        assert not is_terminal(object())

    def test_size_of_non_terminal(self, tmp_path):
        with open(tmp_path / "f", "wb") as handle:
            assert terminal_size(handle.fileno()) is None


class TestRawTerminal:
    """Tests for the raw-mode guard."""

    def test_enter_and_restore(self, fake_termios):
        get, set_, setraw = fake_termios
        with RawTerminal(7) as guard:
            assert guard.active
            setraw.assert_called_once_with(7)
        set_.assert_called_once_with(7, terminal.termios.TCSADRAIN, ["saved"])
        assert not guard.active

    def test_restored_on_exception(self, fake_termios):
        _, set_, _ = fake_termios
        with pytest.raises(RuntimeError):
            with RawTerminal(7):
                raise RuntimeError("boom")
        set_.assert_called_once()

    def test_restore_is_idempotent(self, fake_termios):
        _, set_, _ = fake_termios
        guard = RawTerminal(7)
        with guard:
            guard.restore()
        set_.assert_called_once()

    def test_second_guard_fails(self, fake_termios):
        """The host terminal is single-writer."""
        with RawTerminal(7):
            with pytest.raises(StreamFailureError, match="already attached"):
                with RawTerminal(8):
                    pass
        # Released again afterwards
        with RawTerminal(8):
            pass

    def test_setraw_failure(self):
        with patch.object(terminal.termios, "tcgetattr", side_effect=terminal.termios.error("not a tty")):
            with pytest.raises(StreamFailureError, match="raw mode"):
                with RawTerminal(7):
                    pass
        # Lock was released
        with patch.object(terminal.termios, "tcgetattr", return_value=[]), \
                patch.object(terminal.tty, "setraw"), \
                patch.object(terminal.termios, "tcsetattr"):
            with RawTerminal(7):
                pass


class TestResizeWatcher:
    """Tests for size propagation."""

    def test_initial_bump_then_size(self):
        sizes = []
        with patch.object(terminal, "terminal_size", return_value=(24, 80)):
            watcher = ResizeWatcher(lambda h, w: sizes.append((h, w)), fd=0, interval=0.01)
            watcher.start()
            watcher.stop()
        assert sizes[:2] == [(25, 81), (24, 80)]

    def test_sigwinch_on_main_thread(self):
        sizes = []
        current = {"size": (24, 80)}
        with patch.object(terminal, "terminal_size", side_effect=lambda fd: current["size"]):
            with ResizeWatcher(lambda h, w: sizes.append((h, w)), fd=0) as watcher:
                assert watcher.uses_signal
                current["size"] = (30, 100)
                signal.raise_signal(signal.SIGWINCH)
                deadline = time.monotonic() + 5
                while (30, 100) not in sizes and time.monotonic() < deadline:
                    time.sleep(0.01)
        assert sizes[-1] == (30, 100)

    def test_polls_off_main_thread(self):
        sizes = []
        current = {"size": (24, 80)}
        result = {}

        def _run():
            with patch.object(terminal, "terminal_size", side_effect=lambda fd: current["size"]):
                watcher = ResizeWatcher(lambda h, w: sizes.append((h, w)), fd=0, interval=0.01)
                watcher.start()
                result["signal"] = watcher.uses_signal
                current["size"] = (40, 120)
                deadline = time.monotonic() + 5
                while (40, 120) not in sizes and time.monotonic() < deadline:
                    time.sleep(0.01)
                watcher.stop()

        thread = threading.Thread(target=_run)
        thread.start()
        thread.join(timeout=10)
        assert result["signal"] is False
        assert (40, 120) in sizes

    def test_resize_errors_are_swallowed(self):
        def _fail(h, w):
            raise RuntimeError("container gone")

        with patch.object(terminal, "terminal_size", return_value=(24, 80)):
            watcher = ResizeWatcher(_fail, fd=0)
            watcher.start()
            watcher.stop()

    def test_no_size_no_initial_resize(self):
        sizes = []
        with patch.object(terminal, "terminal_size", return_value=None):
            with ResizeWatcher(lambda h, w: sizes.append((h, w)), fd=0, interval=0.01):
                pass
        assert sizes == []
