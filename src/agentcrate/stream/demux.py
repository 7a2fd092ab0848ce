# src/agentcrate/stream/demux.py
"""
Demultiplexer for the daemon's framed stdout/stderr stream.

When a container runs without a TTY the daemon interleaves stdout and
stderr on one connection using 8-byte frame headers:

    +--------+-----------+----------------------+
    | stream | 3 x 0x00  | payload length (BE32) |
    +--------+-----------+----------------------+
    | payload ...                                |

Stream ids: 0 stdin (written to stdout), 1 stdout, 2 stderr, 3 system
error (the payload is an error message from the daemon).

The reader is a two-state machine: read exactly one header, then copy
exactly ``length`` payload bytes in bounded chunks, then repeat. A clean
EOF is only legal between frames.

Usage:
    >>> demuxer = FrameDemuxer(connection, sys.stdout.buffer, sys.stderr.buffer)
    >>> demuxer.run()
"""

import logging
import struct
from enum import Enum
from typing import BinaryIO, Iterator, Protocol

from ..exceptions import StreamFailureError

logger = logging.getLogger(__name__)

STDIN = 0
STDOUT = 1
STDERR = 2
SYSTEMERR = 3

HEADER = struct.Struct(">BxxxL")
HEADER_SIZE = HEADER.size

# Largest slice of a payload copied per read
COPY_CHUNK = 32 * 1024


class Reader(Protocol):
    def read(self, size: int = ...) -> bytes: ...


class _State(Enum):
    HEADER = "header"
    PAYLOAD = "payload"


def read_full(reader: Reader, size: int) -> bytes:
    """
    Read exactly ``size`` bytes.

    Returns:
        ``size`` bytes, or b"" if the reader was already at EOF

    Raises:
        StreamFailureError: If EOF arrives after a partial read
    """
    buf = bytearray()
    while len(buf) < size:
        chunk = reader.read(size - len(buf))
        if not chunk:
            if not buf:
                return b""
            raise StreamFailureError(
                f"unexpected EOF: read {len(buf)} of {size} bytes",
            )
        buf.extend(chunk)
    return bytes(buf)


def encode_frame(stream: int, payload: bytes) -> bytes:
    """Build one frame; used by tests and by tooling that replays logs."""
    return HEADER.pack(stream, len(payload)) + payload


def iter_frames(reader: Reader, chunk_size: int = COPY_CHUNK) -> Iterator[tuple[int, bytes]]:
    """
    Yield ``(stream, chunk)`` pairs until EOF.

    Large payloads are yielded in several chunks of at most ``chunk_size``
    bytes, all tagged with the same stream id.

    Raises:
        StreamFailureError: On a truncated frame or an unknown stream id
    """
    state = _State.HEADER
    stream = STDOUT
    remaining = 0

    while True:
        if state is _State.HEADER:
            header = read_full(reader, HEADER_SIZE)
            if not header:
                return
            stream, remaining = HEADER.unpack(header)
            if stream not in (STDIN, STDOUT, STDERR, SYSTEMERR):
                raise StreamFailureError(f"unrecognized stream id {stream} in frame header")
            if remaining:
                state = _State.PAYLOAD
            continue

        chunk = read_full(reader, min(remaining, chunk_size))
        if not chunk:
            raise StreamFailureError(f"unexpected EOF: {remaining} payload bytes missing")
        remaining -= len(chunk)
        if remaining == 0:
            state = _State.HEADER
        yield stream, chunk


class FrameDemuxer:
    """
    Copy a framed stream to separate stdout and stderr writers.

    Attributes:
        written: Bytes written per destination ("stdout", "stderr")
    """

    def __init__(self, reader: Reader, stdout: BinaryIO, stderr: BinaryIO, chunk_size: int = COPY_CHUNK):
        self._reader = reader
        self._stdout = stdout
        self._stderr = stderr
        self._chunk_size = chunk_size
        self.written = {"stdout": 0, "stderr": 0}

    def run(self) -> None:
        """
        Copy until EOF.

        Raises:
            StreamFailureError: On malformed framing or a system-error frame
        """
        system_error = bytearray()
        for stream, chunk in iter_frames(self._reader, self._chunk_size):
            if stream == SYSTEMERR:
                system_error.extend(chunk)
                continue
            if system_error:
                break
            if stream == STDERR:
                self._write(self._stderr, chunk, "stderr")
            else:
                self._write(self._stdout, chunk, "stdout")

        if system_error:
            message = system_error.decode("utf-8", errors="replace").strip()
            raise StreamFailureError(f"daemon reported an error: {message}")

    def _write(self, target: BinaryIO, data: bytes, key: str) -> None:
        target.write(data)
        target.flush()
        self.written[key] += len(data)
