"""Bounded metric history and linear trend prediction.

One TrendPredictor per metric stream. History is indexed by sample position,
not wall-clock time, so predictions are unaffected by sampling jitter.
"""

import statistics
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum

from smart_metrics.config import ConfigError


class Direction(Enum):
    """Discretized short-term movement of a metric."""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


@dataclass(frozen=True)
class HistoryEntry:
    """Single value in the history buffer."""

    timestamp: float
    value: float


class HistoryBuffer:
    """Ring buffer of (timestamp, value) pairs.

    Holds at most capacity entries; the oldest entry is evicted first.
    """

    def __init__(self, capacity: int = 20) -> None:
        if capacity < 1:
            raise ConfigError(f"history capacity must be >= 1, got {capacity}")
        self._entries: deque[HistoryEntry] = deque(maxlen=capacity)

    def __len__(self) -> int:
        """Return number of entries in buffer."""
        return len(self._entries)

    @property
    def capacity(self) -> int:
        """Return maximum number of entries the buffer can hold."""
        return self._entries.maxlen or 0

    @property
    def entries(self) -> list[HistoryEntry]:
        """Read-only access to entries (returns a copy)."""
        return list(self._entries)

    def values(self) -> list[float]:
        """Values oldest first."""
        return [e.value for e in self._entries]

    def push(self, value: float, timestamp: float | None = None) -> None:
        """Append a value, evicting the oldest when full."""
        ts = time.time() if timestamp is None else timestamp
        self._entries.append(HistoryEntry(timestamp=ts, value=float(value)))


def linear_slope(values: list[float]) -> float:
    """Ordinary least-squares slope of values against their index 0..n-1.

    slope = (n*Sxy - Sx*Sy) / (n*Sxx - Sx^2). Fewer than two points or a
    constant series gives 0.
    """
    n = len(values)
    if n < 2 or min(values) == max(values):
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_x2 = sum(i * i for i in range(n))
    return (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)


def volatility(values: list[float]) -> float:
    """Population standard deviation; 0 for fewer than two points."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def direction(values: list[float], deadband: float, window: int = 3) -> Direction:
    """Compare the change across the last window values with a dead band."""
    if len(values) < 2:
        return Direction.STABLE
    recent = values[-window:]
    change = recent[-1] - recent[0]
    if change > deadband:
        return Direction.INCREASING
    if change < -deadband:
        return Direction.DECREASING
    return Direction.STABLE


@dataclass(frozen=True)
class TrendResult:
    """Trend summary for one metric stream.

    When available is False the history is too short to project; slope and
    predictions are then neutral (0 and empty) rather than estimates.
    """

    metric: str
    available: bool
    points: int
    slope: float = 0.0  # value per sample
    predictions: tuple[float, ...] = ()
    volatility: float = 0.0
    direction: Direction = Direction.STABLE
    acceleration: float = 0.0  # second difference of the last three values
    samples_to_critical: float | None = None

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "metric": self.metric,
            "available": self.available,
            "points": self.points,
            "slope": self.slope,
            "predictions": list(self.predictions),
            "volatility": self.volatility,
            "direction": self.direction.value,
            "acceleration": self.acceleration,
            "samples_to_critical": self.samples_to_critical,
        }


class TrendPredictor:
    """Records one metric stream and projects it forward.

    record() is expected from the single polling thread; the lock lets a
    reporting thread call predict() concurrently.
    """

    def __init__(
        self,
        metric: str,
        capacity: int = 20,
        *,
        min_points: int = 5,
        deadband: float = 5.0,
        direction_window: int = 3,
        value_range: tuple[float, float] = (0.0, 100.0),
        critical_level: float | None = None,
    ) -> None:
        self.metric = metric
        self.history = HistoryBuffer(capacity)
        self.min_points = min_points
        self.deadband = deadband
        self.direction_window = direction_window
        self.value_range = value_range
        self.critical_level = critical_level
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.history)

    def record(self, value: float, timestamp: float | None = None) -> None:
        """Append a value to the history."""
        with self._lock:
            self.history.push(value, timestamp)

    def volatility(self) -> float:
        """Population standard deviation of the current window."""
        with self._lock:
            return volatility(self.history.values())

    def direction(self) -> Direction:
        """Recent direction of the metric."""
        with self._lock:
            return direction(self.history.values(), self.deadband, self.direction_window)

    def predict(self, k: int = 3) -> TrendResult:
        """Project the next k values from a least-squares fit.

        Returns an unavailable result until min_points values are recorded.
        """
        with self._lock:
            values = self.history.values()

        n = len(values)
        vol = volatility(values)
        trend_direction = direction(values, self.deadband, self.direction_window)

        if n < self.min_points:
            return TrendResult(
                metric=self.metric,
                available=False,
                points=n,
                volatility=vol,
                direction=trend_direction,
            )

        slope = linear_slope(values)
        low, high = self.value_range
        last = values[-1]
        predictions = tuple(max(low, min(high, last + slope * i)) for i in range(1, k + 1))
        acceleration = 0.0
        if n >= 3:
            acceleration = (values[-1] - values[-2]) - (values[-2] - values[-3])

        samples_to_critical = None
        if self.critical_level is not None and slope > 0 and last < self.critical_level:
            samples_to_critical = (self.critical_level - last) / slope

        return TrendResult(
            metric=self.metric,
            available=True,
            points=n,
            slope=slope,
            predictions=predictions,
            volatility=vol,
            direction=trend_direction,
            acceleration=acceleration,
            samples_to_critical=samples_to_critical,
        )
