"""Memory pressure calculation.

Combines used memory, swap, fault, cache, slab and pressure-stall signals
into a 0-100 pressure score, and derives OOM risk, fragmentation, NUMA
balance, swap activity, compression, allocation and efficiency figures
from the same sample.
"""

from collections import deque
from dataclasses import dataclass

import structlog

from smart_metrics.config import MemoryConfig
from smart_metrics.sample import (
    BUDDY_ORDERS,
    CompressionCounters,
    MemoryCounters,
    RawSample,
    VmCounters,
)

log = structlog.get_logger()


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _percent(part: float, whole: float) -> float:
    return part / whole * 100.0 if whole > 0 else 0.0


@dataclass(frozen=True)
class PressureBreakdown:
    """Per-factor pressure scores, each 0-100."""

    basic: float  # used / total
    swap: float  # swap used / swap total
    fault: float  # major / total page faults
    cache: float  # page cache starvation
    kernel: float  # slab growth
    system: float  # pressure-stall some avg60

    def composite(self, config: MemoryConfig) -> float:
        """Weighted sum of the factors, clamped to [0, 100]."""
        return _clamp(
            self.basic * config.basic_weight
            + self.swap * config.swap_weight
            + self.fault * config.fault_weight
            + self.cache * config.cache_weight
            + self.kernel * config.kernel_weight
            + self.system * config.system_weight
        )

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "basic": self.basic,
            "swap": self.swap,
            "fault": self.fault,
            "cache": self.cache,
            "kernel": self.kernel,
            "system": self.system,
        }


@dataclass(frozen=True)
class SwapActivity:
    """Swap usage and the instantaneous swap-in/out rates (bytes/sec)."""

    usage_percent: float
    cache_efficiency: float  # swap cached / swap used
    in_rate: float | None  # None until two samples are known
    out_rate: float | None
    exhaustion_eta: float | None  # Seconds until swap is full at out_rate

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "usage_percent": self.usage_percent,
            "cache_efficiency": self.cache_efficiency,
            "in_rate": self.in_rate,
            "out_rate": self.out_rate,
            "exhaustion_eta": self.exhaustion_eta,
        }


@dataclass(frozen=True)
class CacheAnalysis:
    """Breakdown of cache usage as percent of total memory."""

    total_cache_percent: float  # page cache + buffers + slab
    page_cache_percent: float
    buffer_cache_percent: float
    slab_cache_percent: float
    hit_rate: float | None  # minor / total page faults
    reclaim_stalls: int
    dirty_efficiency: float  # 100 - (dirty + writeback) / page cache

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "total_cache_percent": self.total_cache_percent,
            "page_cache_percent": self.page_cache_percent,
            "buffer_cache_percent": self.buffer_cache_percent,
            "slab_cache_percent": self.slab_cache_percent,
            "hit_rate": self.hit_rate,
            "reclaim_stalls": self.reclaim_stalls,
            "dirty_efficiency": self.dirty_efficiency,
        }


@dataclass(frozen=True)
class Fragmentation:
    """Free-block distribution across buddy allocator orders."""

    index: float  # Mean over nodes of sum(free blocks x order)
    large_free_fraction: float  # Blocks at order >= large_order / all free blocks
    fragmentation_percent: float  # (1 - large_free_fraction) x 100
    free_blocks_by_order: tuple[int, ...]

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "index": self.index,
            "large_free_fraction": self.large_free_fraction,
            "fragmentation_percent": self.fragmentation_percent,
            "free_blocks_by_order": list(self.free_blocks_by_order),
        }


NO_FRAGMENTATION = Fragmentation(
    index=0.0,
    large_free_fraction=0.0,
    fragmentation_percent=0.0,
    free_blocks_by_order=(0,) * BUDDY_ORDERS,
)


@dataclass(frozen=True)
class MemoryEfficiency:
    """Sweet-spot efficiency scores, each 0-100."""

    cache: float
    utilization: float
    swap: float
    overall: float

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "cache": self.cache,
            "utilization": self.utilization,
            "swap": self.swap,
            "overall": self.overall,
        }


@dataclass(frozen=True)
class Compression:
    """zswap and zram usage."""

    zswap_enabled: bool | None
    zram_devices: int
    compression_ratio: float | None  # original / compressed bytes across zram devices
    space_saved_bytes: int

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "zswap_enabled": self.zswap_enabled,
            "zram_devices": self.zram_devices,
            "compression_ratio": self.compression_ratio,
            "space_saved_bytes": self.space_saved_bytes,
        }


@dataclass(frozen=True)
class AllocationPatterns:
    """Page allocator success and compaction activity (cumulative counters)."""

    success_rate: float
    failures: int
    compaction_scanned: int
    compaction_success: int

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "success_rate": self.success_rate,
            "failures": self.failures,
            "compaction_scanned": self.compaction_scanned,
            "compaction_success": self.compaction_success,
        }


@dataclass(frozen=True)
class MemoryPressure:
    """Memory pressure for one poll cycle."""

    pressure_score: float
    breakdown: PressureBreakdown
    used_percent: float
    total_bytes: int
    available_bytes: int
    swap: SwapActivity
    cache: CacheAnalysis
    fragmentation: Fragmentation
    hugepage_availability: float | None
    numa_balance: float
    numa_foreign: int
    oom_risk: float
    efficiency: MemoryEfficiency
    compression: Compression | None
    allocation: AllocationPatterns | None
    unavailable: frozenset[str]

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "pressure_score": self.pressure_score,
            "breakdown": self.breakdown.to_dict(),
            "used_percent": self.used_percent,
            "total_bytes": self.total_bytes,
            "available_bytes": self.available_bytes,
            "swap": self.swap.to_dict(),
            "cache": self.cache.to_dict(),
            "fragmentation": self.fragmentation.to_dict(),
            "hugepage_availability": self.hugepage_availability,
            "numa_balance": self.numa_balance,
            "numa_foreign": self.numa_foreign,
            "oom_risk": self.oom_risk,
            "efficiency": self.efficiency.to_dict(),
            "compression": self.compression.to_dict() if self.compression else None,
            "allocation": self.allocation.to_dict() if self.allocation else None,
            "unavailable": sorted(self.unavailable),
        }


def sweet_spot(value: float, band: tuple[float, float], over_penalty: float) -> float:
    """Full score inside band, linear falloff below it, penalty per point above it."""
    low, high = band
    if low <= value <= high:
        return 100.0
    if value < low:
        return _clamp(value / low * 100.0)
    return _clamp(100.0 - (value - high) * over_penalty)


def pressure_breakdown(
    memory: MemoryCounters,
    vm: VmCounters,
    system_pressure: float,
    config: MemoryConfig,
) -> PressureBreakdown:
    """Compute the six pressure factors from memory counters."""
    total = memory.total
    used = max(0, total - memory.effective_available)

    cache_ratio = (memory.cached + memory.buffers) / total if total > 0 else 1.0
    cache = 0.0
    if cache_ratio < config.cache_floor_ratio:
        cache = _clamp((config.cache_floor_ratio - cache_ratio) * config.cache_scale)

    slab_pct = _percent(memory.slab, total)
    kernel = 0.0
    if slab_pct > config.slab_threshold_pct:
        kernel = _clamp((slab_pct - config.slab_threshold_pct) * config.slab_scale)

    return PressureBreakdown(
        basic=_clamp(_percent(used, total)),
        swap=_clamp(_percent(memory.swap_used, memory.swap_total)),
        fault=_clamp(_percent(vm.major_faults, vm.page_faults)),
        cache=cache,
        kernel=kernel,
        system=_clamp(system_pressure),
    )


def oom_risk(
    memory: MemoryCounters,
    full_avg60: float,
    config: MemoryConfig,
) -> float:
    """Additive 0-100 estimate of imminent OOM kills.

    Only the most severe availability tier and swap tier apply.
    """
    total = memory.total
    if total <= 0:
        return 0.0
    risk = 0.0

    available_pct = _percent(memory.effective_available, total)
    for threshold, points in sorted(config.oom_available_tiers):
        if available_pct < threshold:
            risk += points
            break

    if memory.swap_total > 0:
        swap_pct = _percent(memory.swap_used, memory.swap_total)
        for threshold, points in sorted(config.oom_swap_tiers, reverse=True):
            if swap_pct > threshold:
                risk += points
                break
    else:
        risk += config.oom_no_swap_points

    risk += full_avg60 * config.oom_stall_factor

    if _percent(memory.slab, total) > config.oom_slab_pct:
        risk += config.oom_slab_points

    return _clamp(risk)


def fragmentation(buddy: dict[int, tuple[int, ...]], large_order: int = 3) -> Fragmentation | None:
    """Summarize buddy allocator free lists; None when there are no free blocks."""
    by_order = [0] * BUDDY_ORDERS
    node_indices: list[float] = []
    for counts in buddy.values():
        node_indices.append(sum(count * order for order, count in enumerate(counts)))
        for order, count in enumerate(counts[:BUDDY_ORDERS]):
            by_order[order] += count

    total_blocks = sum(by_order)
    if not node_indices or total_blocks <= 0:
        return None

    large_fraction = sum(by_order[large_order:]) / total_blocks
    return Fragmentation(
        index=sum(node_indices) / len(node_indices),
        large_free_fraction=large_fraction,
        fragmentation_percent=(1.0 - large_fraction) * 100.0,
        free_blocks_by_order=tuple(by_order),
    )


def memory_efficiency(memory: MemoryCounters, config: MemoryConfig) -> MemoryEfficiency:
    """Score cache, utilization and swap against their sweet spots."""
    total = memory.total
    cache_pct = _percent(memory.cached + memory.buffers, total)
    used_pct = _percent(max(0, total - memory.effective_available), total)

    cache = sweet_spot(cache_pct, config.cache_band, config.cache_over_penalty)
    utilization = sweet_spot(used_pct, config.utilization_band, config.utilization_over_penalty)
    if memory.swap_total > 0:
        swap = _clamp(100.0 - _percent(memory.swap_used, memory.swap_total))
    else:
        swap = 100.0

    return MemoryEfficiency(
        cache=cache,
        utilization=utilization,
        swap=swap,
        overall=(
            cache * config.cache_efficiency_weight
            + utilization * config.utilization_efficiency_weight
            + swap * config.swap_efficiency_weight
        ),
    )


def cache_analysis(memory: MemoryCounters, vm: VmCounters) -> CacheAnalysis:
    """Break cache usage down by kind."""
    total = memory.total
    hit_rate = None
    if vm.page_faults > 0:
        hit_rate = _percent(vm.page_faults - vm.major_faults, vm.page_faults)

    dirty_efficiency = 100.0
    if memory.cached > 0:
        dirty_ratio = _percent(memory.dirty + memory.writeback, memory.cached)
        dirty_efficiency = max(0.0, 100.0 - dirty_ratio)

    return CacheAnalysis(
        total_cache_percent=_percent(memory.cached + memory.buffers + memory.slab, total),
        page_cache_percent=_percent(memory.cached, total),
        buffer_cache_percent=_percent(memory.buffers, total),
        slab_cache_percent=_percent(memory.slab, total),
        hit_rate=hit_rate,
        reclaim_stalls=vm.alloc_stalls,
        dirty_efficiency=dirty_efficiency,
    )


def numa_balance(vm: VmCounters) -> float | None:
    """Local allocation hit rate; None on systems without NUMA counters."""
    accesses = vm.numa_hit + vm.numa_miss
    if accesses <= 0:
        return None
    return vm.numa_hit / accesses * 100.0


def compression_stats(counters: CompressionCounters | None) -> Compression | None:
    """Summarize compressed memory; None when the host has neither zswap nor zram."""
    if counters is None:
        return None
    ratio = None
    if counters.zram_compressed_bytes > 0:
        ratio = counters.zram_original_bytes / counters.zram_compressed_bytes
    return Compression(
        zswap_enabled=counters.zswap_enabled,
        zram_devices=counters.zram_devices,
        compression_ratio=ratio,
        space_saved_bytes=max(0, counters.zram_original_bytes - counters.zram_compressed_bytes),
    )


def allocation_patterns(vm: VmCounters) -> AllocationPatterns | None:
    """Allocation success rate; None when the kernel exposes no pgalloc counters."""
    attempts = vm.pages_allocated + vm.alloc_failures
    if attempts <= 0:
        return None
    return AllocationPatterns(
        success_rate=_percent(vm.pages_allocated, attempts),
        failures=vm.alloc_failures,
        compaction_scanned=vm.compact_scanned,
        compaction_success=vm.compact_success,
    )


class SwapTracker:
    """Rolling swap-in/out counters for rate computation."""

    def __init__(self, max_samples: int = 10) -> None:
        self._samples: deque[tuple[float, int, int]] = deque(maxlen=max_samples)

    def __len__(self) -> int:
        return len(self._samples)

    def update(
        self,
        timestamp: float,
        memory: MemoryCounters,
        vm: VmCounters,
        record: bool = True,
    ) -> SwapActivity:
        """Record counters and return activity between the last two samples.

        With record=False (vm counters unavailable) the history is left
        untouched and no rates are reported.
        """
        if record:
            self._samples.append((timestamp, vm.swapped_in_bytes, vm.swapped_out_bytes))

        in_rate = out_rate = None
        if record and len(self._samples) >= 2:
            (t_prev, in_prev, out_prev), (t_now, in_now, out_now) = list(self._samples)[-2:]
            elapsed = t_now - t_prev
            if elapsed > 0:
                in_rate = max(0, in_now - in_prev) / elapsed
                out_rate = max(0, out_now - out_prev) / elapsed

        eta = None
        if out_rate:
            eta = memory.swap_free / out_rate

        swap_used = memory.swap_used
        return SwapActivity(
            usage_percent=_clamp(_percent(swap_used, memory.swap_total)),
            cache_efficiency=_percent(memory.swap_cached, swap_used),
            in_rate=in_rate,
            out_rate=out_rate,
            exhaustion_eta=eta,
        )


class MemoryEngine:
    """Computes memory pressure; keeps swap history between samples."""

    def __init__(self, config: MemoryConfig) -> None:
        self.config = config
        self.swap_tracker = SwapTracker(config.swap_history_size)

    def evaluate(self, sample: RawSample) -> MemoryPressure:
        """Score one sample."""
        cfg = self.config
        memory = sample.memory
        vm = sample.vm
        unavailable: set[str] = set()

        if memory.total <= 0:
            unavailable.add("memory")
        if memory.swap_total <= 0:
            unavailable.add("swap")
        if vm.page_faults <= 0:
            unavailable.add("faults")
        vm_ok = "vm" not in sample.degraded
        if not vm_ok:
            unavailable.add("swap_rates")

        system_pressure = 0.0
        full_avg60 = 0.0
        if sample.pressure is None:
            unavailable.add("pressure_stall")
        else:
            system_pressure = sample.pressure.some.avg60
            if sample.pressure.full is not None:
                full_avg60 = sample.pressure.full.avg60

        breakdown = pressure_breakdown(memory, vm, system_pressure, cfg)

        frag = fragmentation(sample.fragmentation, cfg.large_order)
        if frag is None:
            frag = NO_FRAGMENTATION
            unavailable.add("fragmentation")

        hugepages = None
        if memory.hugepages_total > 0:
            hugepages = _percent(memory.hugepages_free, memory.hugepages_total)
        else:
            unavailable.add("hugepages")

        balance = numa_balance(vm)
        if balance is None:
            # Single-node systems are perfectly balanced
            balance = 100.0
            unavailable.add("numa")

        compression = compression_stats(sample.compression)
        if compression is None:
            unavailable.add("compression")
        allocation = allocation_patterns(vm)
        if allocation is None:
            unavailable.add("allocation")

        if unavailable:
            log.debug("memory_signals_unavailable", signals=sorted(unavailable))

        return MemoryPressure(
            pressure_score=breakdown.composite(cfg),
            breakdown=breakdown,
            used_percent=breakdown.basic,
            total_bytes=memory.total,
            available_bytes=memory.effective_available,
            swap=self.swap_tracker.update(sample.timestamp, memory, vm, record=vm_ok),
            cache=cache_analysis(memory, vm),
            fragmentation=frag,
            hugepage_availability=hugepages,
            numa_balance=balance,
            numa_foreign=vm.numa_foreign,
            oom_risk=oom_risk(memory, full_avg60, cfg),
            efficiency=memory_efficiency(memory, cfg),
            compression=compression,
            allocation=allocation,
            unavailable=frozenset(unavailable),
        )
