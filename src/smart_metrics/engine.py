"""Smart metrics engine: one evaluate() call per poll cycle."""

import json
from dataclasses import dataclass
from datetime import datetime

import structlog

from smart_metrics.config import Config
from smart_metrics.cpu import CpuEngine, CpuUsage
from smart_metrics.memory import MemoryEngine, MemoryPressure
from smart_metrics.quality import quality_score
from smart_metrics.sample import RawSample
from smart_metrics.trend import TrendPredictor, TrendResult
from smart_metrics.weights import WeightTable

log = structlog.get_logger()


@dataclass(frozen=True)
class MetricsSnapshot:
    """Everything derived from one raw sample.

    Produced fresh each cycle. Renderers and exporters read it as-is and
    never need to re-derive a figure.
    """

    timestamp: datetime
    platform: str
    core_count: int
    cpu: CpuUsage
    memory: MemoryPressure
    cpu_trend: TrendResult
    memory_trend: TrendResult
    cpu_quality: float
    memory_quality: float
    unavailable: frozenset[str]  # Signals reported as their neutral default
    degraded_probes: frozenset[str]  # Collector probes that fell back to defaults

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "platform": self.platform,
            "core_count": self.core_count,
            "cpu": self.cpu.to_dict(),
            "memory": self.memory.to_dict(),
            "cpu_trend": self.cpu_trend.to_dict(),
            "memory_trend": self.memory_trend.to_dict(),
            "cpu_quality": self.cpu_quality,
            "memory_quality": self.memory_quality,
            "unavailable": sorted(self.unavailable),
            "degraded_probes": sorted(self.degraded_probes),
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())


class SmartMetricsEngine:
    """Turns raw samples into MetricsSnapshots.

    Holds the previous sample (for CPU tick deltas), swap history and one
    trend predictor per metric stream. Not thread-safe for evaluate();
    call it from a single polling task.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.config.validate()

        trend = self.config.trend
        self.weights = WeightTable(self.config.weights)
        self.cpu_engine = CpuEngine(self.config.cpu, self.weights)
        self.memory_engine = MemoryEngine(self.config.memory)
        self.cpu_predictor = TrendPredictor(
            "cpu",
            trend.cpu_history_size,
            min_points=trend.min_points,
            deadband=trend.direction_deadband,
            direction_window=trend.direction_window,
            critical_level=trend.critical_level,
        )
        self.memory_predictor = TrendPredictor(
            "memory",
            trend.memory_history_size,
            min_points=trend.min_points,
            deadband=trend.direction_deadband,
            direction_window=trend.direction_window,
            critical_level=trend.critical_level,
        )
        self._previous: RawSample | None = None
        self.cycles = 0

    def evaluate(self, sample: RawSample) -> MetricsSnapshot:
        """Score one raw sample and advance the trend history."""
        trend = self.config.trend

        # Zeroed tick counters from a failed probe must not become the next
        # delta baseline; keep the last good sample instead
        cpu_missing = "cpu_times" in sample.degraded or sample.cpu.total <= 0
        cpu = self.cpu_engine.evaluate(sample, None if cpu_missing else self._previous)
        memory = self.memory_engine.evaluate(sample)
        if not cpu_missing:
            self._previous = sample
        self.cycles += 1

        # A cycle without a CPU delta has nothing meaningful to record
        if "cpu_usage" not in cpu.unavailable:
            self.cpu_predictor.record(cpu.corrected_percent)
        if "memory" not in memory.unavailable:
            self.memory_predictor.record(memory.pressure_score)

        cpu_trend = self.cpu_predictor.predict(trend.cpu_horizon)
        memory_trend = self.memory_predictor.predict(trend.memory_horizon)

        unavailable = set(cpu.unavailable | memory.unavailable)
        if not cpu_trend.available:
            unavailable.add("cpu_trend")
        if not memory_trend.available:
            unavailable.add("memory_trend")

        if sample.degraded:
            log.debug("sample_degraded", probes=sorted(sample.degraded))

        return MetricsSnapshot(
            timestamp=datetime.now(),
            platform=sample.platform,
            core_count=sample.core_count,
            cpu=cpu,
            memory=memory,
            cpu_trend=cpu_trend,
            memory_trend=memory_trend,
            cpu_quality=quality_score(cpu.corrected_percent),
            memory_quality=quality_score(memory.pressure_score),
            unavailable=frozenset(unavailable),
            degraded_probes=sample.degraded,
        )
