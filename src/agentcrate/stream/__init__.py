# src/agentcrate/stream/__init__.py
"""
Attach/stream engine: terminal handling, stream demultiplexing and the
session runner for attach, exec and logs.
"""

from .attach import AttachEngine, SessionMode, StreamIO
from .demux import FrameDemuxer, iter_frames, read_full
from .terminal import RawTerminal, ResizeWatcher, is_terminal, terminal_size

__all__ = [
    "AttachEngine",
    "FrameDemuxer",
    "RawTerminal",
    "ResizeWatcher",
    "SessionMode",
    "StreamIO",
    "is_terminal",
    "iter_frames",
    "read_full",
    "terminal_size",
]
