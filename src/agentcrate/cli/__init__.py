# src/agentcrate/cli/__init__.py
"""
Command-line interface.

Command groups:
    container  create, run, start, stop, restart, pause, unpause, kill,
               rename, rm, wait, attach, exec, logs, list, inspect, top, cp
    image      list, rm
    volume     list, rm
    network    list, rm
    init, down, prune (top-level only)
"""

from .main import create_parser, main

__all__ = ["create_parser", "main"]
