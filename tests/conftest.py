"""Shared test fixtures for smart-metrics."""

from pathlib import Path

import pytest

from smart_metrics.config import Config
from smart_metrics.sample import (
    CompressionCounters,
    CpuTimes,
    FrequencyReading,
    MemoryCounters,
    MemoryPressureStall,
    PowerState,
    ProcessEntry,
    RawSample,
    VmCounters,
)

GIB = 1024**3


@pytest.fixture
def config() -> Config:
    """Default configuration."""
    return Config()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect config and state paths into tmp_path."""
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    return tmp_path


def make_process(
    pid: int = 100,
    command: str = "test_cmd",
    cpu_percent: float = 10.0,
    priority: int = 20,
    niceness: int = 0,
    mem_percent: float = 1.0,
    privileged: bool = False,
) -> ProcessEntry:
    """Create a ProcessEntry for testing (normal priority by default)."""
    return ProcessEntry(
        pid=pid,
        command=command,
        priority=priority,
        niceness=niceness,
        cpu_percent=cpu_percent,
        mem_percent=mem_percent,
        privileged=privileged,
    )


def make_memory(
    total: int = 16 * GIB,
    available: int | None = None,
    used_fraction: float = 0.5,
    cached: int = 2 * GIB,
    buffers: int = 0,
    slab: int = 0,
    swap_total: int = 0,
    swap_free: int | None = None,
    **kwargs,
) -> MemoryCounters:
    """Create MemoryCounters for testing.

    available defaults to total x (1 - used_fraction); swap_free defaults to
    swap_total (no swap in use).
    """
    if available is None:
        available = int(total * (1.0 - used_fraction))
    return MemoryCounters(
        total=total,
        free=available,
        available=available,
        buffers=buffers,
        cached=cached,
        slab=slab,
        swap_total=swap_total,
        swap_free=swap_total if swap_free is None else swap_free,
        **kwargs,
    )


def make_raw_sample(
    timestamp: float = 1000.0,
    busy: int = 0,
    idle: int = 0,
    cores: list[tuple[int, int]] | None = None,
    processes: tuple[ProcessEntry, ...] = (),
    memory: MemoryCounters | None = None,
    vm: VmCounters | None = None,
    pressure: MemoryPressureStall | None = None,
    fragmentation: dict[int, tuple[int, ...]] | None = None,
    temperature_c: float | None = None,
    frequency: FrequencyReading | None = None,
    load_average_1m: float | None = None,
    compression: CompressionCounters | None = None,
    power: PowerState | None = None,
    core_count: int = 1,
    platform: str = "test",
    degraded: frozenset[str] = frozenset(),
) -> RawSample:
    """Create a RawSample for testing.

    busy/idle are cumulative user/idle ticks for the aggregate CPU. cores is
    a list of (busy, idle) pairs, one per core.
    """
    per_core = tuple(CpuTimes(user=b, idle=i) for b, i in (cores or []))
    return RawSample(
        timestamp=timestamp,
        cpu=CpuTimes(user=busy, idle=idle),
        per_core=per_core,
        processes=processes,
        memory=memory if memory is not None else make_memory(),
        vm=vm if vm is not None else VmCounters(),
        pressure=pressure,
        fragmentation=fragmentation or {},
        temperature_c=temperature_c,
        frequency=frequency,
        load_average_1m=load_average_1m,
        compression=compression,
        power=power,
        core_count=len(per_core) or core_count,
        platform=platform,
        degraded=degraded,
    )
