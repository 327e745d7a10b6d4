"""Raw sample collection.

A collector is a set of named probes. Each probe is a blocking callable with
a neutral default. collect() runs every probe concurrently in the default
executor, bounds each one with probe_timeout, and substitutes the default for
any probe that fails or times out.
"""

import asyncio
import os
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import psutil
import structlog

from smart_metrics.config import Config
from smart_metrics.sample import ProcessEntry, RawSample

log = structlog.get_logger()

PROCESS_ATTRS = ["pid", "name", "nice", "cpu_percent", "memory_percent", "uids"]

# Exceptions a probe may raise while reading host state
PROBE_ERRORS = (OSError, ValueError, IndexError, psutil.Error)


def get_core_count() -> int:
    """Get number of CPU cores."""
    return os.cpu_count() or 1


@dataclass(frozen=True)
class Probe:
    """A named blocking read with the value used when it fails."""

    name: str
    read: Callable[[], Any]
    default: Any = None


def default_priority(pid: int, niceness: int) -> int:
    """Kernel-style priority for a normal-class process (20 + nice)."""
    return 20 + niceness


def list_processes(
    priority_of: Callable[[int, int], int] = default_priority,
) -> tuple[ProcessEntry, ...]:
    """Enumerate processes with CPU/memory share, niceness and ownership.

    psutil caches Process objects across calls, so cpu_percent is meaningful
    from the second collection onward (the first reports 0.0).
    """
    entries = []
    for proc in psutil.process_iter(PROCESS_ATTRS):
        try:
            info = proc.info
            pid = info["pid"]
            niceness = info["nice"] if info["nice"] is not None else 0
            uids = info["uids"]
            entries.append(
                ProcessEntry(
                    pid=pid,
                    command=info["name"] or f"pid_{pid}",
                    priority=priority_of(pid, niceness),
                    niceness=niceness,
                    cpu_percent=info["cpu_percent"] or 0.0,
                    mem_percent=info["memory_percent"] or 0.0,
                    privileged=uids is not None and uids.real == 0,
                )
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return tuple(entries)


class SampleCollector:
    """Base class for platform collectors.

    Subclasses provide probes() and build_sample(); the concurrency,
    timeouts and fallbacks live here.
    """

    platform = "unknown"

    def __init__(self, config: Config) -> None:
        self.config = config

    def probes(self) -> list[Probe]:
        """Return the probes run for every sample."""
        raise NotImplementedError

    def build_sample(
        self,
        timestamp: float,
        results: dict[str, Any],
        degraded: frozenset[str],
    ) -> RawSample:
        """Assemble probe results into a RawSample."""
        raise NotImplementedError

    async def _run_probe(self, probe: Probe) -> tuple[Any, bool]:
        """Run one probe; returns (value, degraded)."""
        loop = asyncio.get_running_loop()
        timeout = self.config.collector.probe_timeout
        try:
            value = await asyncio.wait_for(loop.run_in_executor(None, probe.read), timeout)
            return value, False
        except asyncio.TimeoutError:
            log.warning("probe_timed_out", probe=probe.name, timeout=timeout)
        except PROBE_ERRORS as e:
            log.warning("probe_failed", probe=probe.name, error=str(e))
        return probe.default, True

    async def collect(self) -> RawSample:
        """Run all probes concurrently and join them into one sample.

        Cancellation propagates; partial results are discarded.
        """
        start = time.monotonic()
        probes = self.probes()
        outcomes = await asyncio.gather(*(self._run_probe(p) for p in probes))

        results: dict[str, Any] = {}
        degraded: set[str] = set()
        for probe, (value, failed) in zip(probes, outcomes):
            results[probe.name] = value
            if failed:
                degraded.add(probe.name)

        sample = self.build_sample(start, results, frozenset(degraded))
        log.debug(
            "sample_collected",
            platform=self.platform,
            processes=len(sample.processes),
            degraded=sorted(degraded),
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )
        return sample


def create_collector(config: Config) -> SampleCollector:
    """Pick the collector for the running platform."""
    if sys.platform.startswith("linux"):
        from smart_metrics.linux import LinuxCollector

        return LinuxCollector(config)
    if sys.platform == "darwin":
        from smart_metrics.darwin import DarwinCollector

        return DarwinCollector(config)
    raise RuntimeError(f"Unsupported platform: {sys.platform}")
