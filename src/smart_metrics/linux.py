"""Linux raw sample collector (procfs and sysfs).

Parsers take file text and return sample pieces so they can be tested
without a live /proc.
"""

import os
from pathlib import Path
from typing import Any

from smart_metrics.collector import Probe, SampleCollector, get_core_count, list_processes
from smart_metrics.config import Config
from smart_metrics.sample import (
    CompressionCounters,
    CpuTimes,
    FrequencyReading,
    MemoryCounters,
    MemoryPressureStall,
    PowerState,
    PressureStall,
    RawSample,
    VmCounters,
)

# /proc/meminfo key -> MemoryCounters field (values in kB)
MEMINFO_FIELDS = {
    "MemTotal": "total",
    "MemFree": "free",
    "MemAvailable": "available",
    "Buffers": "buffers",
    "Cached": "cached",
    "Slab": "slab",
    "SwapTotal": "swap_total",
    "SwapFree": "swap_free",
    "SwapCached": "swap_cached",
    "Dirty": "dirty",
    "Writeback": "writeback",
}

# Page counts, not kB
HUGEPAGE_FIELDS = {
    "HugePages_Total": "hugepages_total",
    "HugePages_Free": "hugepages_free",
}

CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")


def parse_proc_stat(text: str) -> tuple[CpuTimes, tuple[CpuTimes, ...]]:
    """Parse /proc/stat into aggregate and per-core tick counters.

    guest/guest_nice are already included in user/nice and are ignored.
    """
    aggregate = CpuTimes()
    cores: list[CpuTimes] = []
    for line in text.splitlines():
        if not line.startswith("cpu"):
            continue
        label, *values = line.split()
        ticks = [int(v) for v in values[: len(CPU_FIELDS)]]
        ticks += [0] * (len(CPU_FIELDS) - len(ticks))
        times = CpuTimes(**dict(zip(CPU_FIELDS, ticks)))
        if label == "cpu":
            aggregate = times
        else:
            cores.append(times)
    return aggregate, tuple(cores)


def parse_meminfo(text: str) -> MemoryCounters:
    """Parse /proc/meminfo into byte counters."""
    values: dict[str, int] = {}
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if not parts:
            continue
        if key in MEMINFO_FIELDS:
            values[MEMINFO_FIELDS[key]] = int(parts[0]) * 1024
        elif key in HUGEPAGE_FIELDS:
            values[HUGEPAGE_FIELDS[key]] = int(parts[0])
    return MemoryCounters(**values)


def parse_vmstat(text: str, page_size: int = 4096) -> VmCounters:
    """Parse /proc/vmstat event counters.

    Swap counters are pages and are converted to bytes. Direct reclaim
    stalls are summed across zones (allocstall_*), or taken from the single
    allocstall counter on older kernels. Page allocations are summed across
    zones (pgalloc_*); pgalloc_fail, where present, counts failures.
    """
    raw: dict[str, int] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) == 2:
            raw[parts[0]] = int(parts[1])

    stalls = sum(v for k, v in raw.items() if k.startswith("allocstall"))
    allocated = sum(
        v for k, v in raw.items() if k.startswith("pgalloc_") and k != "pgalloc_fail"
    )
    return VmCounters(
        page_faults=raw.get("pgfault", 0),
        major_faults=raw.get("pgmajfault", 0),
        swapped_in_bytes=raw.get("pswpin", 0) * page_size,
        swapped_out_bytes=raw.get("pswpout", 0) * page_size,
        alloc_stalls=stalls,
        numa_hit=raw.get("numa_hit", 0),
        numa_miss=raw.get("numa_miss", 0),
        numa_foreign=raw.get("numa_foreign", 0),
        pages_allocated=allocated,
        alloc_failures=raw.get("pgalloc_fail", 0),
        compact_scanned=raw.get("compact_migrate_scanned", 0),
        compact_success=raw.get("compact_success", 0),
    )


def _parse_stall_line(fields: list[str]) -> PressureStall:
    values = dict(f.split("=", 1) for f in fields if "=" in f)
    return PressureStall(
        avg10=float(values.get("avg10", 0)),
        avg60=float(values.get("avg60", 0)),
        avg300=float(values.get("avg300", 0)),
        total=int(values.get("total", 0)),
    )


def parse_pressure(text: str) -> MemoryPressureStall | None:
    """Parse /proc/pressure/memory; None if there is no "some" line."""
    some = full = None
    for line in text.splitlines():
        if not line.strip():
            continue
        kind, *fields = line.split()
        if kind == "some":
            some = _parse_stall_line(fields)
        elif kind == "full":
            full = _parse_stall_line(fields)
    if some is None:
        return None
    return MemoryPressureStall(some=some, full=full)


def parse_buddyinfo(text: str) -> dict[int, tuple[int, ...]]:
    """Parse /proc/buddyinfo into free block counts per order, summed per node.

    Lines look like: "Node 0, zone   Normal   1046   527  128 ...".
    """
    nodes: dict[int, list[int]] = {}
    for line in text.splitlines():
        head, _, counts_text = line.partition("zone")
        if not head.startswith("Node"):
            continue
        node = int(head.split()[1].rstrip(","))
        counts = [int(c) for c in counts_text.split()[1:]]
        totals = nodes.setdefault(node, [0] * len(counts))
        if len(counts) > len(totals):
            totals.extend([0] * (len(counts) - len(totals)))
        for order, count in enumerate(counts):
            totals[order] += count
    return {node: tuple(counts) for node, counts in nodes.items()}


def parse_loadavg(text: str) -> float:
    """Return the 1-minute load average from /proc/loadavg."""
    return float(text.split()[0])


def parse_pid_stat(text: str) -> tuple[int, int]:
    """Return (priority, nice) from /proc/<pid>/stat.

    The command field may contain spaces and parentheses, so fields are
    counted from the last closing parenthesis.
    """
    rest = text[text.rindex(")") + 2 :].split()
    # rest[0] is field 3 (state); priority is field 18, nice field 19
    return int(rest[15]), int(rest[16])


def read_temperature(sysfs_root: Path) -> float | None:
    """First non-zero thermal zone reading in degrees Celsius."""
    for zone in sorted(sysfs_root.glob("class/thermal/thermal_zone*/temp")):
        try:
            millidegrees = int(zone.read_text().strip())
        except (OSError, ValueError):
            continue
        if millidegrees > 0:
            return millidegrees / 1000.0
    return None


def read_frequency(sysfs_root: Path) -> FrequencyReading | None:
    """Average current and maximum frequency across cores (cpufreq reports kHz)."""
    current: list[int] = []
    maximum: list[int] = []
    for cpufreq in sorted(sysfs_root.glob("devices/system/cpu/cpu[0-9]*/cpufreq")):
        try:
            cur = int((cpufreq / "scaling_cur_freq").read_text().strip())
            top = int((cpufreq / "cpuinfo_max_freq").read_text().strip())
        except (OSError, ValueError):
            continue
        current.append(cur)
        maximum.append(top)
    if not current:
        return None
    return FrequencyReading(
        current_hz=sum(current) / len(current) * 1000.0,
        max_hz=sum(maximum) / len(maximum) * 1000.0,
    )


def _cpu_index(path: Path) -> int:
    return int(path.name[3:])


def _zram_sizes(device: Path) -> tuple[int, int]:
    """(original, compressed) bytes; mm_stat on current kernels, split files on old ones."""
    mm_stat = device / "mm_stat"
    if mm_stat.exists():
        fields = mm_stat.read_text().split()
        return int(fields[0]), int(fields[1])
    original = int((device / "orig_data_size").read_text().strip())
    compressed = int((device / "compr_data_size").read_text().strip())
    return original, compressed


def read_compression(sysfs_root: Path) -> CompressionCounters | None:
    """zswap state and zram usage; None when neither is present."""
    zswap_enabled = None
    zswap = sysfs_root / "module" / "zswap" / "parameters" / "enabled"
    if zswap.exists():
        zswap_enabled = zswap.read_text().strip() in ("Y", "1")

    devices = 0
    original = compressed = 0
    for device in sorted(sysfs_root.glob("block/zram*")):
        try:
            dev_original, dev_compressed = _zram_sizes(device)
        except (OSError, ValueError, IndexError):
            continue
        devices += 1
        original += dev_original
        compressed += dev_compressed

    if zswap_enabled is None and devices == 0:
        return None
    return CompressionCounters(
        zswap_enabled=zswap_enabled,
        zram_devices=devices,
        zram_original_bytes=original,
        zram_compressed_bytes=compressed,
    )


def read_power_state(sysfs_root: Path) -> PowerState:
    """Whether cpufreq is active, with each core's scaling governor in core order."""
    cpu_root = sysfs_root / "devices" / "system" / "cpu"
    governors = []
    for cpu in sorted(cpu_root.glob("cpu[0-9]*"), key=_cpu_index):
        governor = cpu / "cpufreq" / "scaling_governor"
        try:
            governors.append(governor.read_text().strip())
        except OSError:
            continue
    scaling = bool(governors) or (cpu_root / "cpufreq").is_dir()
    return PowerState(frequency_scaling=scaling, governors=tuple(governors))


class LinuxCollector(SampleCollector):
    """Collects raw samples from procfs and sysfs."""

    platform = "linux"

    def __init__(self, config: Config) -> None:
        super().__init__(config)
        self.proc = Path(config.collector.procfs_root)
        self.sys = Path(config.collector.sysfs_root)
        self.page_size = os.sysconf("SC_PAGE_SIZE") if hasattr(os, "sysconf") else 4096

    def _read(self, *parts: str) -> str:
        return self.proc.joinpath(*parts).read_text()

    def _priority(self, pid: int, niceness: int) -> int:
        try:
            priority, _ = parse_pid_stat(self._read(str(pid), "stat"))
            return priority
        except (OSError, ValueError, IndexError):
            return 20 + niceness

    def _pressure(self) -> MemoryPressureStall | None:
        path = self.proc / "pressure" / "memory"
        if not path.exists():
            return None
        return parse_pressure(path.read_text())

    def probes(self) -> list[Probe]:
        """Independent reads, each safe to run on its own thread."""
        return [
            Probe("cpu_times", lambda: parse_proc_stat(self._read("stat")), (CpuTimes(), ())),
            Probe("processes", lambda: list_processes(self._priority), ()),
            Probe("memory", lambda: parse_meminfo(self._read("meminfo")), MemoryCounters()),
            Probe("vm", lambda: parse_vmstat(self._read("vmstat"), self.page_size), VmCounters()),
            Probe("pressure", self._pressure, None),
            Probe("fragmentation", lambda: parse_buddyinfo(self._read("buddyinfo")), {}),
            Probe("temperature", lambda: read_temperature(self.sys), None),
            Probe("frequency", lambda: read_frequency(self.sys), None),
            Probe("load_average", lambda: parse_loadavg(self._read("loadavg")), None),
            Probe("compression", lambda: read_compression(self.sys), None),
            Probe("power", lambda: read_power_state(self.sys), None),
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
            pressure=results["pressure"],
            fragmentation=results["fragmentation"],
            temperature_c=results["temperature"],
            frequency=results["frequency"],
            load_average_1m=results["load_average"],
            compression=results["compression"],
            power=results["power"],
            core_count=len(per_core) or get_core_count(),
            platform=self.platform,
            degraded=degraded,
        )
