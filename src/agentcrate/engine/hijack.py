# src/agentcrate/engine/hijack.py
"""
Hijacked connections returned by attach and exec-start.

When the daemon upgrades an attach/exec HTTP request it hands back the raw
socket. docker-py exposes it either as a ``socket.socket`` or wrapped in
a ``socket.SocketIO`` (with the real socket on ``_sock``). This module
normalizes both shapes behind read/write/close_write/close.
"""

import logging
import socket
import threading

from docker.utils import socket as docker_socket

from ..exceptions import StreamFailureError

logger = logging.getLogger(__name__)


class HijackedConnection:
    """
    Bidirectional byte stream to a container's stdio.

    ``close()`` may be called from any thread; it shuts the socket down
    first so that a reader blocked in another thread wakes up with EOF.
    """

    def __init__(self, sock, description: str = ""):
        self._sock = sock
        self._raw = getattr(sock, "_sock", sock)
        self._description = description
        self._lock = threading.Lock()
        self._closed = False
        self._write_closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int = 4096) -> bytes:
        """
        Read up to ``size`` bytes; returns b"" on EOF or after close().

        Raises:
            StreamFailureError: On an I/O error while the connection is open
        """
        if self._closed:
            return b""
        try:
            data = docker_socket.read(self._sock, size)
        except (OSError, ValueError) as e:
            if self._closed:
                return b""
            raise StreamFailureError(
                f"reading from {self._description or 'container'} failed: {e}"
            ) from e
        return data or b""

    def write(self, data: bytes) -> None:
        if self._closed or self._write_closed:
            raise StreamFailureError("write to a closed connection")
        try:
            self._raw.sendall(data)
        except OSError as e:
            if self._closed:
                return
            raise StreamFailureError(
                f"writing to {self._description or 'container'} failed: {e}"
            ) from e

    def close_write(self) -> None:
        """Half-close: signal EOF on the container's stdin."""
        with self._lock:
            if self._closed or self._write_closed:
                return
            self._write_closed = True
        try:
            self._raw.shutdown(socket.SHUT_WR)
        except OSError as e:
            logger.debug(f"close_write on hijacked connection: {e}")

    def close(self) -> None:
        """Close both directions. Idempotent and thread-safe."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._raw.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for obj in (self._sock, self._raw):
            try:
                obj.close()
            except OSError as e:
                logger.debug(f"closing hijacked connection: {e}")
        response = getattr(self._sock, "_response", None)
        if response is not None:
            response.close()

    def __enter__(self) -> "HijackedConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
