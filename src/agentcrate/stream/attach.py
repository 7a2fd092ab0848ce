# src/agentcrate/stream/attach.py
"""
Attach/stream engine.

Connects the caller's standard streams to a container's main process
(attach), to a transient process inside it (exec), or to its log stream
(logs). Each session runs a small fixed set of daemon threads that report
into one queue; the calling thread owns the terminal and decides the
outcome from the first event it receives.

Session threads:
    output  hijacked connection -> host stdout/stderr (raw copy when the
            target has a TTY, frame demultiplexing otherwise)
    stdin   host stdin -> hijacked connection, close-write on EOF; never
            joined, since a read on host stdin can block forever
    wait    the daemon's exit-condition subscription (attach only)
    resize  terminal size propagation (terminal mode only)

Termination:
    - output EOF: the wait result is drained for a bounded time so the
      exit status is still reported.
    - wait fired: remaining output is drained for a bounded time.
    - output error: StreamFailureError.
    - cancellation: the hijacked connection is closed, the container is
      left running and CancelledError is raised.

A non-zero exit status raises ContainerExitedNonZeroError.

Usage:
    >>> engine = AttachEngine(client, cancellation)
    >>> engine.attach_container(container_id, interactive=True)
"""

import logging
import queue
import sys
import threading
from contextlib import ExitStack
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable

import requests.exceptions

from ..engine.cancel import Cancellation
from ..engine.client import DaemonClient, ExecOptions, WaitHandle
from ..engine.hijack import HijackedConnection
from ..exceptions import (
    AgentCrateError,
    CancelledError,
    ContainerExitedNonZeroError,
    NotFoundError,
    NotRunningError,
    StreamFailureError,
)
from ..logging_config import interactive_mode
from .demux import FrameDemuxer
from .terminal import DEFAULT_POLL_INTERVAL, RawTerminal, ResizeWatcher, is_terminal

logger = logging.getLogger(__name__)

# Bounded wait for the exit status (or trailing output) once one side ends
DRAIN_TIMEOUT = 2.0

_OUTPUT = "output"
_WAIT = "wait"
_CANCEL = "cancel"


@dataclass
class StreamIO:
    """The host side of a session."""

    stdin: BinaryIO
    stdout: BinaryIO
    stderr: BinaryIO

    @classmethod
    def from_sys(cls) -> "StreamIO":
        return cls(sys.stdin.buffer, sys.stdout.buffer, sys.stderr.buffer)


@dataclass
class SessionMode:
    """
    How a session copies bytes.

    Attributes:
        raw: Target allocated a TTY, so the stream is not framed
        terminal: Host terminal switched to raw mode with resize forwarding
        interactive: Host stdin is forwarded
    """

    raw: bool
    terminal: bool
    interactive: bool


class AttachEngine:
    """
    Runs attach, exec and logs sessions against a ``DaemonClient``.

    Args:
        client: Daemon client shared with the rest of the invocation
        cancellation: Invocation cancellation handle
        io: Host streams (defaults to the process' stdio)
        drain_timeout: Bounded wait used when one side of a session ends
        resize_interval: Poll interval when SIGWINCH is unavailable
    """

    def __init__(
        self,
        client: DaemonClient,
        cancellation: Cancellation | None = None,
        io: StreamIO | None = None,
        drain_timeout: float = DRAIN_TIMEOUT,
        resize_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.client = client
        self.cancellation = cancellation or client.cancellation
        self.io = io or StreamIO.from_sys()
        self.drain_timeout = drain_timeout
        self.resize_interval = resize_interval

    def session_mode(self, target_tty: bool, interactive: bool) -> SessionMode:
        """
        Pick the copy mode.

        Terminal mode needs a TTY on the target, the interactive flag and a
        terminal on host stdin. A TTY target without the other two still
        produces an unframed stream, copied raw without touching the host
        terminal.
        """
        terminal = target_tty and interactive and is_terminal(self.io.stdin)
        return SessionMode(raw=target_tty, terminal=terminal, interactive=interactive)

    # ------------------------------------------------------------------
    # Container attach
    # ------------------------------------------------------------------

    def attach_container(
        self,
        container_id: str,
        interactive: bool = True,
        start: Callable[[], None] | None = None,
    ) -> int:
        """
        Attach to a container's main process and block until it ends.

        Args:
            container_id: Target container
            interactive: Forward host stdin
            start: When given, the container is started after the attach
                connection is open, so no early output is lost

        Returns:
            0 when the container exited successfully

        Raises:
            NotRunningError: Target is not running and no start callback was given
            ContainerExitedNonZeroError: Target exited with a non-zero status
            ExitWaitFailedError: Daemon reported a wait error
            CancelledError: Invocation was cancelled
        """
        info = self.client.inspect_container(container_id, cancel=self.cancellation)
        state = info.get("State") or {}
        if start is None and not state.get("Running"):
            raise NotRunningError(info.get("Name", container_id).lstrip("/"))

        config = info.get("Config") or {}
        interactive = interactive and bool(config.get("OpenStdin"))
        mode = self.session_mode(bool(config.get("Tty")), interactive)

        with self._host_terminal(mode):
            conn = self.client.attach_container(
                container_id, stdin=mode.interactive, cancel=self.cancellation
            )
            condition = "next-exit" if start is not None else "not-running"
            try:
                wait = self.client.wait_container(container_id, condition=condition, cancel=self.cancellation)
                if start is not None:
                    start()
            except AgentCrateError:
                conn.close()
                raise

            code = self._run_session(
                conn,
                mode,
                resize=lambda h, w: self.client.resize_container(container_id, h, w),
                wait=wait,
                fallback_status=lambda: self._inspect_exit_code(container_id),
            )
        if code:
            raise ContainerExitedNonZeroError(code)
        return code

    def _inspect_exit_code(self, container_id: str) -> int:
        try:
            info = self.client.inspect_container(container_id, cancel=self.cancellation)
        except NotFoundError:
            # Auto-removed before the status could be read
            logger.debug(f"{container_id[:12]} is gone; assuming a clean exit")
            return 0
        state = info.get("State") or {}
        if state.get("Running"):
            # Detached from a still-running container
            return 0
        return int(state.get("ExitCode") or 0)

    # ------------------------------------------------------------------
    # Exec
    # ------------------------------------------------------------------

    def exec(self, container_id: str, options: ExecOptions) -> str | None:
        """
        Run a process inside a running container.

        In detached mode the session is started and its ID returned (and
        printed to stdout); otherwise the call blocks until the process
        ends.

        Raises:
            NotRunningError: Target container is not running
            ContainerExitedNonZeroError: The process exited non-zero
        """
        info = self.client.inspect_container(container_id, cancel=self.cancellation)
        if not (info.get("State") or {}).get("Running"):
            raise NotRunningError(info.get("Name", container_id).lstrip("/"))

        exec_options = options
        if options.detach:
            exec_options = replace(options, interactive=False)
        exec_id = self.client.exec_create(container_id, exec_options, cancel=self.cancellation)

        if options.detach:
            self.client.exec_start_detached(exec_id, tty=options.tty, cancel=self.cancellation)
            self.io.stdout.write(f"{exec_id}\n".encode())
            self.io.stdout.flush()
            return exec_id

        mode = self.session_mode(options.tty, options.interactive)
        with self._host_terminal(mode):
            conn = self.client.exec_attach(exec_id, tty=options.tty, cancel=self.cancellation)
            self._run_session(
                conn,
                mode,
                resize=lambda h, w: self.client.exec_resize(exec_id, h, w),
                wait=None,
            )

        status = self.client.exec_inspect(exec_id, cancel=self.cancellation)
        code = status.get("ExitCode")
        if code:
            raise ContainerExitedNonZeroError(int(code))
        return None

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def follow_logs(
        self,
        container_id: str,
        tty: bool = False,
        follow: bool = False,
        timestamps: bool = False,
        since: str | None = None,
        until: str | None = None,
        tail: str = "all",
        details: bool = False,
    ) -> None:
        """
        Copy a container's logs to host stdout/stderr.

        Ends when the daemon closes the stream or on cancellation.
        """
        stream = self.client.logs(
            container_id,
            tty=tty,
            follow=follow,
            timestamps=timestamps,
            since=since,
            until=until,
            tail=tail,
            details=details,
            cancel=self.cancellation,
        )
        unregister = self.cancellation.on_cancel(stream.close)
        try:
            if stream.tty:
                for chunk in stream.iter_raw():
                    self.io.stdout.write(chunk)
                    self.io.stdout.flush()
            else:
                FrameDemuxer(stream, self.io.stdout, self.io.stderr).run()
        except (StreamFailureError, OSError, ValueError, requests.exceptions.RequestException) as e:
            self.cancellation.raise_if_cancelled()
            if isinstance(e, StreamFailureError):
                raise
            raise StreamFailureError(f"reading logs failed: {e}") from e
        finally:
            unregister()
            stream.close()
        self.cancellation.raise_if_cancelled()

    # ------------------------------------------------------------------
    # Session core
    # ------------------------------------------------------------------

    def _run_session(
        self,
        conn: HijackedConnection,
        mode: SessionMode,
        resize: Callable[[int, int], None],
        wait: WaitHandle | None,
        fallback_status: Callable[[], int] | None = None,
    ) -> int:
        """
        Copy streams until the session ends; return the exit status.

        ``wait`` is None for exec sessions, whose end is the stream closing.
        """
        events: "queue.Queue[tuple[str, BaseException | None]]" = queue.Queue()
        output_done = threading.Event()

        def _copy_output() -> None:
            error: BaseException | None = None
            try:
                if mode.raw:
                    self._copy_raw(conn)
                else:
                    FrameDemuxer(conn, self.io.stdout, self.io.stderr).run()
            except (StreamFailureError, OSError, ValueError) as e:
                error = e
            finally:
                output_done.set()
                events.put((_OUTPUT, error))

        def _on_cancel() -> None:
            events.put((_CANCEL, None))
            conn.close()

        unregister = self.cancellation.on_cancel(_on_cancel)
        if wait is not None:
            wait.add_done_callback(lambda _handle: events.put((_WAIT, None)))

        with ExitStack() as stack:
            stack.callback(unregister)
            stack.callback(conn.close)
            if mode.terminal:
                stack.enter_context(
                    ResizeWatcher(resize, self.io.stdin.fileno(), interval=self.resize_interval)
                )

            threading.Thread(target=_copy_output, name="attach-output", daemon=True).start()
            if mode.interactive:
                threading.Thread(
                    target=self._copy_stdin, args=(conn,), name="attach-stdin", daemon=True
                ).start()

            kind, error = events.get()

            if kind == _CANCEL:
                raise CancelledError(f"cancelled ({self.cancellation.reason})")

            if kind == _OUTPUT:
                if self.cancellation.cancelled:
                    self.cancellation.raise_if_cancelled()
                if error is not None:
                    if isinstance(error, StreamFailureError):
                        raise error
                    raise StreamFailureError(f"stream to container failed: {error}") from error
                if wait is None:
                    return 0
                return self._exit_status(wait, self.drain_timeout, fallback_status)

            # Wait fired first; let trailing output through before closing
            output_done.wait(self.drain_timeout)
            if wait is None:
                return 0
            return self._exit_status(wait, 0, fallback_status)

    def _exit_status(
        self,
        wait: WaitHandle,
        timeout: float,
        fallback_status: Callable[[], int] | None,
    ) -> int:
        try:
            code = wait.result(timeout=timeout)
        except NotFoundError:
            # Auto-removed before the wait request reached the daemon
            logger.debug(f"{wait.container_id[:12]} was removed before its exit status was read")
            code = None
        if code is None:
            logger.debug("Stream ended before the exit status arrived")
            return fallback_status() if fallback_status else 0
        return code

    def _host_terminal(self, mode: SessionMode) -> ExitStack:
        """Raw mode for the host terminal, entered before any connection is hijacked."""
        with ExitStack() as stack:
            if mode.terminal:
                stack.enter_context(interactive_mode())
                stack.enter_context(RawTerminal(self.io.stdin.fileno()))
            return stack.pop_all()

    def _copy_raw(self, conn: HijackedConnection) -> None:
        while True:
            data = conn.read(4096)
            if not data:
                return
            self.io.stdout.write(data)
            self.io.stdout.flush()

    def _copy_stdin(self, conn: HijackedConnection) -> None:
        read = getattr(self.io.stdin, "read1", self.io.stdin.read)
        try:
            while True:
                data = read(4096)
                if not data:
                    conn.close_write()
                    return
                conn.write(data)
        except (StreamFailureError, OSError, ValueError) as e:
            logger.debug(f"stdin copy stopped: {e}")
