"""CPU smart-usage calculation.

Raw usage comes from tick deltas between two consecutive samples. Weighted
usage scales each process's CPU share by its importance weight, then
frequency scaling and thermal throttling corrections are applied.
"""

import statistics
from dataclasses import dataclass

import structlog

from smart_metrics.config import CpuConfig
from smart_metrics.sample import FrequencyReading, RawSample
from smart_metrics.weights import WeightTable

log = structlog.get_logger()


@dataclass(frozen=True)
class WeightedProcess:
    """A process with its importance weight for this sample."""

    pid: int
    command: str
    category: str | None
    weight: float
    cpu_percent: float

    @property
    def weighted_cpu(self) -> float:
        return self.cpu_percent * self.weight

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "pid": self.pid,
            "command": self.command,
            "category": self.category,
            "weight": self.weight,
            "cpu_percent": self.cpu_percent,
        }


@dataclass(frozen=True)
class CpuUsage:
    """Smart CPU usage for one poll cycle.

    weighted_score is the capped weighted sum before corrections and may
    exceed 100; corrected_percent is the clamped headline figure.
    """

    raw_percent: float
    weighted_score: float
    frequency_factor: float
    thermal_factor: float
    frequency_corrected: float
    thermal_corrected: float
    corrected_percent: float
    efficiency_ratio: float  # weighted / raw
    efficiency_score: float
    scheduler_pressure: float
    per_core: tuple[float, ...]
    temperature_c: float | None
    current_hz: float | None
    max_hz: float | None
    frequency_scaling: bool
    governors: tuple[str, ...]  # Per core, in core order
    top_processes: tuple[WeightedProcess, ...]
    unavailable: frozenset[str]

    @property
    def throttling_active(self) -> bool:
        return self.thermal_factor < 1.0

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "raw_percent": self.raw_percent,
            "weighted_score": self.weighted_score,
            "frequency_factor": self.frequency_factor,
            "thermal_factor": self.thermal_factor,
            "frequency_corrected": self.frequency_corrected,
            "thermal_corrected": self.thermal_corrected,
            "corrected_percent": self.corrected_percent,
            "efficiency_ratio": self.efficiency_ratio,
            "efficiency_score": self.efficiency_score,
            "scheduler_pressure": self.scheduler_pressure,
            "per_core": list(self.per_core),
            "temperature_c": self.temperature_c,
            "current_hz": self.current_hz,
            "max_hz": self.max_hz,
            "frequency_scaling": self.frequency_scaling,
            "governors": list(self.governors),
            "throttling_active": self.throttling_active,
            "top_processes": [p.to_dict() for p in self.top_processes],
            "unavailable": sorted(self.unavailable),
        }


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def frequency_factor(reading: FrequencyReading | None) -> float | None:
    """current / max frequency clamped to (0, 1]; None without a usable reading."""
    if reading is None or reading.current_hz <= 0 or reading.max_hz <= 0:
        return None
    return min(1.0, reading.current_hz / reading.max_hz)


def thermal_factor(
    temperature_c: float | None,
    threshold: float = 80.0,
    step: float = 0.01,
    floor: float = 0.5,
) -> float:
    """1.0 up to threshold, then minus step per degree, never below floor."""
    if temperature_c is None or temperature_c <= threshold:
        return 1.0
    return max(floor, 1.0 - (temperature_c - threshold) * step)


def per_core_usage(current: RawSample, previous: RawSample) -> tuple[float, ...]:
    """Busy percent per core from tick deltas; empty if the core set changed."""
    if not current.per_core or len(current.per_core) != len(previous.per_core):
        return ()
    return tuple(
        now.delta(before).usage_percent()
        for now, before in zip(current.per_core, previous.per_core)
    )


class CpuEngine:
    """Computes smart CPU usage from consecutive raw samples."""

    def __init__(self, config: CpuConfig, weights: WeightTable) -> None:
        self.config = config
        self.weights = weights

    def evaluate(self, current: RawSample, previous: RawSample | None) -> CpuUsage:
        """Score current against previous.

        Without a previous sample there is no tick delta; raw usage is then
        reported as 0 and flagged unavailable.
        """
        cfg = self.config
        unavailable: set[str] = set()

        # Raw aggregate usage from tick deltas
        if previous is None:
            raw = 0.0
            cores: tuple[float, ...] = ()
            unavailable.add("cpu_usage")
        else:
            delta = current.cpu.delta(previous.cpu)
            if delta.total <= 0:
                unavailable.add("cpu_usage")
            raw = _clamp(delta.usage_percent())
            cores = per_core_usage(current, previous)

        # Weighted usage over the concurrent process list
        weighted_processes: list[WeightedProcess] = []
        for proc in current.processes:
            classified = self.weights.weigh(proc)
            weighted_processes.append(
                WeightedProcess(
                    pid=proc.pid,
                    command=proc.command,
                    category=classified.category,
                    weight=classified.weight,
                    cpu_percent=max(0.0, proc.cpu_percent),
                )
            )
        if not weighted_processes:
            unavailable.add("processes")
        weighted_sum = sum(p.weighted_cpu for p in weighted_processes)
        weighted = min(weighted_sum, raw * cfg.ceiling_multiplier)

        # Frequency and thermal corrections
        freq = frequency_factor(current.frequency)
        if freq is None:
            freq = 1.0
            unavailable.add("frequency")
        if current.temperature_c is None:
            unavailable.add("thermal")
        thermal = thermal_factor(
            current.temperature_c,
            threshold=cfg.throttle_temp_c,
            step=cfg.throttle_step,
            floor=cfg.throttle_floor,
        )
        corrected = _clamp(weighted * freq * thermal)

        efficiency = self._efficiency(weighted_processes, cores)

        # Scheduler pressure: run-queue contention proxy
        if current.load_average_1m is None:
            scheduler_pressure = 0.0
            unavailable.add("load_average")
        else:
            scheduler_pressure = _clamp(
                current.load_average_1m / max(1, current.core_count) * 100.0
            )

        power = current.power
        if power is None:
            unavailable.add("power_state")

        top = sorted(weighted_processes, key=lambda p: p.weighted_cpu, reverse=True)

        if unavailable:
            log.debug("cpu_signals_unavailable", signals=sorted(unavailable))

        return CpuUsage(
            raw_percent=raw,
            weighted_score=weighted,
            frequency_factor=freq,
            thermal_factor=thermal,
            frequency_corrected=_clamp(weighted * freq),
            thermal_corrected=_clamp(weighted * thermal),
            corrected_percent=corrected,
            efficiency_ratio=weighted / raw if raw > 0 else 1.0,
            efficiency_score=efficiency,
            scheduler_pressure=scheduler_pressure,
            per_core=cores,
            temperature_c=current.temperature_c,
            current_hz=current.frequency.current_hz if current.frequency else None,
            max_hz=current.frequency.max_hz if current.frequency else None,
            frequency_scaling=power.frequency_scaling if power else False,
            governors=power.governors if power else (),
            top_processes=tuple(top[: cfg.top_processes]),
            unavailable=frozenset(unavailable),
        )

    def _efficiency(
        self,
        processes: list[WeightedProcess],
        cores: tuple[float, ...],
    ) -> float:
        """Share of CPU going to important processes, penalized for uneven cores."""
        total = sum(p.cpu_percent for p in processes)
        if total <= 0:
            return 0.0
        productive = sum(p.cpu_percent for p in processes if p.weight > 1.0)
        score = productive / total * 100.0
        if len(cores) > 1:
            score *= 1.0 - statistics.pstdev(cores) / 100.0
        return _clamp(score)
