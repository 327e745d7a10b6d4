"""macOS raw sample collector (psutil + sysctl).

macOS has no procfs, so pressure-stall, buddy allocator, NUMA and fault
counters are never available here and stay at their neutral defaults. Memory
compression and power state are left as None.
"""

from typing import Any

import psutil

from smart_metrics import sysctl
from smart_metrics.collector import Probe, SampleCollector, get_core_count, list_processes
from smart_metrics.sample import (
    CpuTimes,
    FrequencyReading,
    MemoryCounters,
    RawSample,
    VmCounters,
)

# psutil reports CPU time in seconds; the engine works on integer ticks
TICKS_PER_SECOND = 100


def to_ticks(times: Any) -> CpuTimes:
    """Convert a psutil scputimes tuple into CpuTimes."""
    return CpuTimes(
        user=int(times.user * TICKS_PER_SECOND),
        nice=int(getattr(times, "nice", 0.0) * TICKS_PER_SECOND),
        system=int(times.system * TICKS_PER_SECOND),
        idle=int(times.idle * TICKS_PER_SECOND),
    )


def read_cpu_times() -> tuple[CpuTimes, tuple[CpuTimes, ...]]:
    """Aggregate and per-core CPU ticks."""
    aggregate = to_ticks(psutil.cpu_times())
    per_core = tuple(to_ticks(t) for t in psutil.cpu_times(percpu=True))
    return aggregate, per_core


def read_memory() -> MemoryCounters:
    """Memory and swap counters in bytes.

    Inactive pages are the closest macOS equivalent of the reclaimable page
    cache.
    """
    vm = psutil.virtual_memory()
    swap = psutil.swap_memory()
    return MemoryCounters(
        total=vm.total,
        free=vm.free,
        available=vm.available,
        cached=getattr(vm, "inactive", 0),
        swap_total=swap.total,
        swap_free=swap.free,
    )


def read_vm() -> VmCounters:
    """Cumulative swap traffic; sin/sout are already bytes on macOS."""
    swap = psutil.swap_memory()
    return VmCounters(swapped_in_bytes=swap.sin, swapped_out_bytes=swap.sout)


def read_frequency() -> FrequencyReading | None:
    """CPU frequency from sysctl, falling back to psutil.

    Apple Silicon does not publish hw.cpufrequency, so the fallback is the
    common path there.
    """
    if sysctl.available():
        current = sysctl.sysctl_int("hw.cpufrequency")
        maximum = sysctl.sysctl_int("hw.cpufrequency_max")
        if current and maximum:
            return FrequencyReading(current_hz=float(current), max_hz=float(maximum))

    freq = psutil.cpu_freq()
    if freq is None or not freq.current:
        return None
    # psutil reports MHz
    return FrequencyReading(
        current_hz=freq.current * 1e6,
        max_hz=(freq.max or freq.current) * 1e6,
    )


def read_load_average() -> float:
    """1-minute load average."""
    return psutil.getloadavg()[0]


class DarwinCollector(SampleCollector):
    """Collects raw samples through psutil and sysctl."""

    platform = "darwin"

    def probes(self) -> list[Probe]:
        return [
            Probe("cpu_times", read_cpu_times, (CpuTimes(), ())),
            Probe("processes", list_processes, ()),
            Probe("memory", read_memory, MemoryCounters()),
            Probe("vm", read_vm, VmCounters()),
            Probe("frequency", read_frequency, None),
            Probe("load_average", read_load_average, None),
        ]

    def build_sample(
        self,
        timestamp: float,
        results: dict[str, Any],
        degraded: frozenset[str],
    ) -> RawSample:
        """Assemble probe results into a RawSample."""
        aggregate, per_core = results["cpu_times"]
        return RawSample(
            timestamp=timestamp,
            cpu=aggregate,
            per_core=per_core,
            processes=results["processes"],
            memory=results["memory"],
            vm=results["vm"],
            frequency=results["frequency"],
            load_average_1m=results["load_average"],
            core_count=len(per_core) or get_core_count(),
            platform=self.platform,
            degraded=degraded,
        )
