# src/agentcrate/engine/cancel.py
"""
Cancellation handles for a single CLI invocation.

A ``Cancellation`` is created once per invocation and passed to every
daemon call and stream session. SIGINT and SIGTERM trigger it. Blocking
work cannot always be interrupted (the docker SDK has no per-call
cancellation), so sessions register ``on_cancel`` callbacks that close
the resources they block on.

Usage:
    >>> cancel = Cancellation()
    >>> with install_signal_handlers(cancel):
    ...     run_command(cancel)
"""

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Callable, Iterator

from ..exceptions import CancelledError

logger = logging.getLogger(__name__)


class Cancellation:
    """
    Thread-safe, one-shot cancellation handle.

    Attributes:
        reason: Why the handle was triggered (e.g. "SIGINT"), or None
    """

    def __init__(self):
        self._event = threading.Event()
        # Reentrant: the signal handler may fire while the main thread holds it
        self._lock = threading.RLock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Trigger the handle and run callbacks once, in registration order."""
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        logger.debug(f"Cancellation triggered: {reason}")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback; runs immediately if already cancelled.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                if not self._event.is_set():
                    return _remove
                # A signal handler cancelled while we were registering
                if callback not in self._callbacks:
                    return lambda: None
                self._callbacks.remove(callback)

        callback()
        return lambda: None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout elapses."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(f"cancelled ({self.reason})" if self.reason else "cancelled")


_HANDLED_SIGNALS = ("SIGINT", "SIGTERM")


@contextmanager
def install_signal_handlers(cancellation: Cancellation) -> Iterator[Cancellation]:
    """
    Route SIGINT/SIGTERM to ``cancellation`` for the duration of the block.

    Only the main thread may install signal handlers; elsewhere this is a
    no-op and the caller relies on explicit cancellation.
    """
    if threading.current_thread() is not threading.main_thread():
        yield cancellation
        return

    previous: dict[int, object] = {}

    def _handler(signum, frame):
        cancellation.cancel(signal.Signals(signum).name)

    for name in _HANDLED_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        previous[signum] = signal.signal(signum, _handler)

    try:
        yield cancellation
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
