"""Raw sample shape consumed by the engine.

A RawSample is one point-in-time reading of host counters, captured by a
platform collector and never mutated afterwards. Zero counters and None
readings mean "no signal", never an error.
"""

from dataclasses import dataclass, field, fields

# Buddy allocator orders reported by /proc/buddyinfo (0-10)
BUDDY_ORDERS = 11


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative CPU tick counters for one core or the aggregate."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    @property
    def total(self) -> int:
        """Sum of every counter."""
        return sum(getattr(self, f.name) for f in fields(self))

    @property
    def idle_total(self) -> int:
        """Ticks spent idle or waiting on I/O."""
        return self.idle + self.iowait

    def delta(self, previous: "CpuTimes") -> "CpuTimes":
        """Ticks elapsed since previous.

        Counters that went backwards (counter reset, hotplug) contribute 0.
        """
        return CpuTimes(
            **{
                f.name: max(0, getattr(self, f.name) - getattr(previous, f.name))
                for f in fields(self)
            }
        )

    def usage_percent(self) -> float:
        """Busy share of these ticks: (total - idle - iowait) / total x 100."""
        total = self.total
        if total <= 0:
            return 0.0
        return (total - self.idle_total) / total * 100.0


@dataclass(frozen=True)
class ProcessEntry:
    """One process as seen by the collector."""

    pid: int
    command: str
    priority: int = 20  # Kernel priority: <0 realtime, 20 default, >20 niced down
    niceness: int = 0
    cpu_percent: float = 0.0
    mem_percent: float = 0.0
    privileged: bool = False  # Owned by root or a system account


@dataclass(frozen=True)
class MemoryCounters:
    """Memory and swap counters in bytes."""

    total: int = 0
    free: int = 0
    available: int | None = None  # None when the kernel gives no estimate
    buffers: int = 0
    cached: int = 0
    slab: int = 0
    swap_total: int = 0
    swap_free: int = 0
    swap_cached: int = 0
    dirty: int = 0
    writeback: int = 0
    hugepages_total: int = 0  # Pages, not bytes
    hugepages_free: int = 0

    @property
    def effective_available(self) -> int:
        """Available memory, falling back to free when the kernel has no estimate."""
        return self.free if self.available is None else self.available

    @property
    def swap_used(self) -> int:
        return max(0, self.swap_total - self.swap_free)


@dataclass(frozen=True)
class VmCounters:
    """Cumulative virtual memory event counters."""

    page_faults: int = 0
    major_faults: int = 0
    swapped_in_bytes: int = 0
    swapped_out_bytes: int = 0
    alloc_stalls: int = 0  # Direct reclaim stalls
    numa_hit: int = 0
    numa_miss: int = 0
    numa_foreign: int = 0
    pages_allocated: int = 0  # pgalloc_* summed over zones
    alloc_failures: int = 0
    compact_scanned: int = 0  # compact_migrate_scanned
    compact_success: int = 0


@dataclass(frozen=True)
class PressureStall:
    """One line of a pressure-stall file (percentages, total in microseconds)."""

    avg10: float = 0.0
    avg60: float = 0.0
    avg300: float = 0.0
    total: int = 0


@dataclass(frozen=True)
class MemoryPressureStall:
    """Memory pressure-stall averages."""

    some: PressureStall = field(default_factory=PressureStall)
    full: PressureStall | None = None


@dataclass(frozen=True)
class FrequencyReading:
    """Average current and maximum CPU frequency in Hz."""

    current_hz: float
    max_hz: float


@dataclass(frozen=True)
class CompressionCounters:
    """In-kernel memory compression state (zswap and zram devices)."""

    zswap_enabled: bool | None = None  # None when the zswap module is absent
    zram_devices: int = 0
    zram_original_bytes: int = 0
    zram_compressed_bytes: int = 0


@dataclass(frozen=True)
class PowerState:
    """CPU frequency scaling support and the governor of each core."""

    frequency_scaling: bool = False
    governors: tuple[str, ...] = ()


@dataclass(frozen=True)
class RawSample:
    """A single point-in-time OS reading.

    fragmentation maps NUMA node id to free block counts per buddy order.
    degraded lists collector probes that fell back to their neutral default.
    """

    timestamp: float  # time.monotonic() when captured
    cpu: CpuTimes = field(default_factory=CpuTimes)
    per_core: tuple[CpuTimes, ...] = ()
    processes: tuple[ProcessEntry, ...] = ()
    memory: MemoryCounters = field(default_factory=MemoryCounters)
    vm: VmCounters = field(default_factory=VmCounters)
    pressure: MemoryPressureStall | None = None
    fragmentation: dict[int, tuple[int, ...]] = field(default_factory=dict)
    temperature_c: float | None = None
    frequency: FrequencyReading | None = None
    load_average_1m: float | None = None
    compression: CompressionCounters | None = None
    power: PowerState | None = None
    core_count: int = 1
    platform: str = "unknown"
    degraded: frozenset[str] = frozenset()
