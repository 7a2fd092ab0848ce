# src/agentcrate/stream/terminal.py
"""
Host terminal handling for TTY sessions.

Two pieces:
    RawTerminal: context manager that switches a terminal to raw mode and
        restores the captured attributes on every exit path. The host
        terminal is a single-writer resource; a second concurrent guard
        fails instead of stacking modes.
    ResizeWatcher: forwards the host terminal size to the container, once
        at start and then on every window change. SIGWINCH is used when
        running on the main thread, otherwise the size is polled.
"""

import logging
import os
import signal
import termios
import threading
import tty
from typing import Callable

from ..exceptions import StreamFailureError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25


def is_terminal(stream) -> bool:
    """True when ``stream`` is backed by a terminal file descriptor."""
    try:
        return os.isatty(stream.fileno())
    except (AttributeError, OSError, ValueError):
        return False


def terminal_size(fd: int) -> tuple[int, int] | None:
    """Return ``(height, width)`` of the terminal on ``fd``, or None."""
    try:
        size = os.get_terminal_size(fd)
    except OSError:
        return None
    if size.lines <= 0 or size.columns <= 0:
        return None
    return size.lines, size.columns


class RawTerminal:
    """
    Raw-mode guard for one terminal file descriptor.

    Usage:
        >>> with RawTerminal(sys.stdin.fileno()):
        ...     copy_streams()
    """

    _owner_lock = threading.Lock()

    def __init__(self, fd: int):
        self.fd = fd
        self._saved: list | None = None

    @property
    def active(self) -> bool:
        return self._saved is not None

    def __enter__(self) -> "RawTerminal":
        if not RawTerminal._owner_lock.acquire(blocking=False):
            raise StreamFailureError("the terminal is already attached to another session")
        try:
            self._saved = termios.tcgetattr(self.fd)
            tty.setraw(self.fd)
        except (termios.error, OSError) as e:
            self._saved = None
            RawTerminal._owner_lock.release()
            raise StreamFailureError(f"cannot switch terminal to raw mode: {e}") from e
        logger.debug(f"Terminal fd {self.fd} switched to raw mode")
        return self

    def restore(self) -> None:
        """Restore the captured attributes. Safe to call more than once."""
        if self._saved is None:
            return
        saved, self._saved = self._saved, None
        try:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, saved)
        except (termios.error, OSError) as e:
            logger.warning(f"Failed to restore terminal state: {e}")
        finally:
            RawTerminal._owner_lock.release()
        logger.debug(f"Terminal fd {self.fd} restored")

    def __exit__(self, exc_type, exc, tb) -> None:
        self.restore()


class ResizeWatcher:
    """
    Propagate host terminal size changes to a container or exec session.

    Args:
        resize: Callback receiving ``(height, width)``
        fd: Terminal file descriptor to measure
        interval: Poll interval when SIGWINCH cannot be used
    """

    def __init__(
        self,
        resize: Callable[[int, int], None],
        fd: int,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self._resize = resize
        self._fd = fd
        self._interval = interval
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self._previous_handler = None
        self._uses_signal = False
        self._last: tuple[int, int] | None = None

    @property
    def uses_signal(self) -> bool:
        return self._uses_signal

    def start(self) -> None:
        """Send the initial size, then begin watching."""
        size = terminal_size(self._fd)
        if size is not None:
            height, width = size
            # Bump then restore so programs that ignore an unchanged size
            # still receive SIGWINCH inside the container
            self._send(height + 1, width + 1)
            self._send(height, width)
            self._last = size

        if hasattr(signal, "SIGWINCH") and threading.current_thread() is threading.main_thread():
            self._previous_handler = signal.signal(signal.SIGWINCH, self._on_sigwinch)
            self._uses_signal = True

        self._thread = threading.Thread(target=self._loop, name="resize-watcher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        self._wake.set()
        if self._uses_signal:
            signal.signal(signal.SIGWINCH, self._previous_handler or signal.SIG_DFL)
            self._uses_signal = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._thread = None

    def _on_sigwinch(self, signum, frame) -> None:
        self._wake.set()

    def _loop(self) -> None:
        while not self._stopped.is_set():
            self._wake.wait(None if self._uses_signal else self._interval)
            self._wake.clear()
            if self._stopped.is_set():
                return
            size = terminal_size(self._fd)
            if size is not None and size != self._last:
                self._last = size
                self._send(*size)

    def _send(self, height: int, width: int) -> None:
        try:
            self._resize(height, width)
        except Exception as e:
            logger.debug(f"Resize to {height}x{width} failed: {e}")

    def __enter__(self) -> "ResizeWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
