# src/agentcrate/stats.py
"""
Resource usage rows for ``container stats``.

A daemon stats sample carries cumulative counters. CPU usage is the
delta between ``cpu_stats`` and ``precpu_stats`` scaled by the number of
online CPUs; memory usage excludes the inactive page cache. Both follow
what ``docker stats`` reports.

Usage:
    >>> sampler = StatsSampler(client, cancellation)
    >>> rows, failures = sampler.sample(containers)
"""

import logging
from dataclasses import dataclass
from typing import Any

from .engine.cancel import Cancellation
from .engine.client import ContainerSummary, DaemonClient
from .exceptions import AgentCrateError, CancelledError

logger = logging.getLogger(__name__)

STATS_HEADERS = ["CONTAINER ID", "NAME", "CPU %", "MEM USAGE / LIMIT", "MEM %", "NET I/O", "BLOCK I/O", "PIDS"]

# Seconds between redraws when streaming
STATS_INTERVAL = 1.0


def cpu_percent(sample: dict[str, Any]) -> float:
    cpu = sample.get("cpu_stats") or {}
    previous = sample.get("precpu_stats") or {}
    usage = cpu.get("cpu_usage") or {}
    cpu_delta = usage.get("total_usage", 0) - (previous.get("cpu_usage") or {}).get("total_usage", 0)
    system_delta = (cpu.get("system_cpu_usage") or 0) - (previous.get("system_cpu_usage") or 0)
    online = cpu.get("online_cpus") or len(usage.get("percpu_usage") or []) or 1
    if system_delta > 0 and cpu_delta > 0:
        return cpu_delta / system_delta * online * 100.0
    return 0.0


def memory_usage(sample: dict[str, Any]) -> tuple[int, int]:
    """Return ``(usage, limit)`` in bytes."""
    memory = sample.get("memory_stats") or {}
    usage = memory.get("usage") or 0
    detail = memory.get("stats") or {}
    # cgroup v1 names it total_inactive_file, v2 inactive_file
    cache = detail.get("total_inactive_file", detail.get("inactive_file", 0))
    if cache < usage:
        usage -= cache
    return usage, memory.get("limit") or 0


def network_io(sample: dict[str, Any]) -> tuple[int, int]:
    """Return ``(received, transmitted)`` bytes over every interface."""
    rx = tx = 0
    for interface in (sample.get("networks") or {}).values():
        rx += interface.get("rx_bytes") or 0
        tx += interface.get("tx_bytes") or 0
    return rx, tx


def block_io(sample: dict[str, Any]) -> tuple[int, int]:
    """Return ``(read, written)`` bytes."""
    read = written = 0
    entries = (sample.get("blkio_stats") or {}).get("io_service_bytes_recursive") or []
    for entry in entries:
        op = (entry.get("op") or "").lower()
        if op == "read":
            read += entry.get("value") or 0
        elif op == "write":
            written += entry.get("value") or 0
    return read, written


@dataclass
class StatsRow:
    """Usage of one container at one point in time."""

    id: str
    name: str
    cpu: float = 0.0
    memory: int = 0
    memory_limit: int = 0
    net_rx: int = 0
    net_tx: int = 0
    block_read: int = 0
    block_write: int = 0
    pids: int = 0

    @classmethod
    def from_sample(cls, container_id: str, name: str, sample: dict[str, Any]) -> "StatsRow":
        memory, limit = memory_usage(sample)
        rx, tx = network_io(sample)
        read, written = block_io(sample)
        return cls(
            id=container_id,
            name=name,
            cpu=cpu_percent(sample),
            memory=memory,
            memory_limit=limit,
            net_rx=rx,
            net_tx=tx,
            block_read=read,
            block_write=written,
            pids=(sample.get("pids_stats") or {}).get("current") or 0,
        )

    @property
    def memory_percent(self) -> float:
        if self.memory_limit <= 0:
            return 0.0
        return self.memory / self.memory_limit * 100.0


class StatsSampler:
    """
    Collect one row per container.

    A failure on one container (typically, it stopped) is returned with
    the rows instead of raised; cancellation is raised.
    """

    def __init__(self, client: DaemonClient, cancellation: Cancellation | None = None):
        self.client = client
        self.cancellation = cancellation or client.cancellation

    def sample(
        self, containers: list[ContainerSummary]
    ) -> tuple[list[StatsRow], list[tuple[str, AgentCrateError]]]:
        rows: list[StatsRow] = []
        failures: list[tuple[str, AgentCrateError]] = []
        for summary in containers:
            self.cancellation.raise_if_cancelled()
            try:
                data = self.client.stats(summary.id, cancel=self.cancellation)
            except CancelledError:
                raise
            except AgentCrateError as e:
                logger.debug(f"stats {summary.name}: {e.kind}: {e}")
                failures.append((summary.name, e))
                continue
            rows.append(StatsRow.from_sample(summary.id, summary.name, data))
        return rows, failures
