"""Configuration system for smart-metrics."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit
from tomlkit.exceptions import TOMLKitError


class ConfigError(ValueError):
    """Raised when configuration values cannot drive the engine."""


@dataclass
class SystemConfig:
    """Daemon housekeeping configuration."""

    heartbeat_samples: int = 60  # Log heartbeat every N samples
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass
class CollectorConfig:
    """Raw sample collection configuration."""

    sample_interval: float = 5.0  # Seconds between samples
    probe_timeout: float = 2.0  # Seconds per probe before its neutral default is used
    procfs_root: str = "/proc"
    sysfs_root: str = "/sys"


@dataclass
class TrendConfig:
    """Trend predictor configuration (one predictor per metric stream)."""

    cpu_history_size: int = 20
    memory_history_size: int = 30
    cpu_horizon: int = 3  # Predicted values reported for CPU
    memory_horizon: int = 5  # Predicted values reported for memory pressure
    min_points: int = 5  # History needed before projections are reported
    direction_deadband: float = 5.0  # +/- change treated as "stable"
    direction_window: int = 3  # Recent values compared for direction
    critical_level: float = 90.0  # Level used for samples_to_critical


@dataclass
class CpuConfig:
    """CPU smart-usage heuristics."""

    ceiling_multiplier: float = 3.0  # Weighted usage capped at N x raw usage
    throttle_temp_c: float = 80.0  # Thermal factor drops above this temperature
    throttle_step: float = 0.01  # Factor lost per degree above throttle_temp_c
    throttle_floor: float = 0.5  # Lowest thermal factor
    top_processes: int = 10  # Weighted processes kept in the breakdown


@dataclass
class MemoryConfig:
    """Memory pressure heuristics.

    Composite weights encode "used memory dominates, swap matters but less,
    structural signals are secondary". Bands are (low, high) sweet spots in
    percent of total memory.
    """

    # Composite pressure coefficients
    basic_weight: float = 0.4
    swap_weight: float = 0.2
    fault_weight: float = 0.15
    cache_weight: float = 0.1
    kernel_weight: float = 0.1
    system_weight: float = 0.05
    # Cache pressure: 0 above this cache ratio, scaled below it
    cache_floor_ratio: float = 0.05
    cache_scale: float = 2000.0
    # Kernel-structure (slab) pressure
    slab_threshold_pct: float = 10.0
    slab_scale: float = 2.0
    # Efficiency sweet spots
    cache_band: tuple[float, float] = (10.0, 30.0)
    cache_over_penalty: float = 2.0  # Points lost per percent above cache_band
    utilization_band: tuple[float, float] = (70.0, 85.0)
    utilization_over_penalty: float = 3.0  # Points lost per percent above utilization_band
    cache_efficiency_weight: float = 0.4
    utilization_efficiency_weight: float = 0.4
    swap_efficiency_weight: float = 0.2
    # OOM risk tiers: (available % below, points)
    oom_available_tiers: tuple[tuple[float, float], ...] = ((5.0, 50.0), (10.0, 30.0), (20.0, 10.0))
    # OOM risk tiers: (swap used % above, points)
    oom_swap_tiers: tuple[tuple[float, float], ...] = ((90.0, 30.0), (70.0, 20.0), (50.0, 10.0))
    oom_no_swap_points: float = 10.0
    oom_stall_factor: float = 0.2  # Multiplier on pressure-stall full avg60
    oom_slab_pct: float = 15.0
    oom_slab_points: float = 10.0
    # Fragmentation: orders at or above this count as "large" free blocks
    large_order: int = 3
    swap_history_size: int = 10


DEFAULT_WEIGHT_TABLE: dict[str, dict[str, float]] = {
    "interactive": {
        "firefox": 2.5,
        "chrome": 2.5,
        "code": 2.0,
        "gnome": 1.8,
        "kde": 1.8,
        "xorg": 1.5,
        "pulseaudio": 1.3,
    },
    "system": {
        "systemd": 1.8,
        "kernel": 2.0,
        "kworker": 1.5,
        "migration": 1.7,
        "rcu": 1.4,
        "irq": 1.9,
    },
    "background": {
        "cron": 0.8,
        "backup": 0.5,
        "rsync": 0.7,
        "updatedb": 0.6,
    },
    "compute": {
        "gcc": 1.2,
        "make": 1.1,
        "python": 1.0,
        "perl": 1.0,
    },
}


def _default_table() -> dict[str, dict[str, float]]:
    return {category: dict(patterns) for category, patterns in DEFAULT_WEIGHT_TABLE.items()}


@dataclass
class WeightsConfig:
    """Process importance weighting.

    The table is scanned in order: categories first, then patterns within a
    category. The first pattern contained in the command supplies the base
    weight.
    """

    default_weight: float = 1.0
    realtime_multiplier: float = 1.5  # priority < 0
    low_priority_threshold: int = 20
    low_priority_multiplier: float = 0.7  # priority > low_priority_threshold
    negative_nice_step: float = 0.1  # x(1 + |nice| * step)
    positive_nice_step: float = 0.05  # x(1 - nice * step)
    privileged_multiplier: float = 1.3
    # Last so scalar keys stay above the nested [weights.table.*] tables
    table: dict[str, dict[str, float]] = field(default_factory=_default_table)


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        elif isinstance(value, tuple):
            table.add(f.name, [list(v) if isinstance(v, tuple) else v for v in value])
        else:
            table.add(f.name, value)
    return table


SECTIONS = ("system", "collector", "trend", "cpu", "memory", "weights")


@dataclass
class Config:
    """Main configuration container."""

    system: SystemConfig = field(default_factory=SystemConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    trend: TrendConfig = field(default_factory=TrendConfig)
    cpu: CpuConfig = field(default_factory=CpuConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    weights: WeightsConfig = field(default_factory=WeightsConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "smart-metrics"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "smart-metrics"

    @property
    def log_path(self) -> Path:
        """Sampler log path (JSON Lines)."""
        return self.state_dir / "sampler.log"

    def validate(self) -> None:
        """Reject values the engine cannot run with.

        Raises:
            ConfigError: On the first invalid value found.
        """
        trend = self.trend
        for name in ("cpu_history_size", "memory_history_size", "cpu_horizon", "memory_horizon"):
            value = getattr(trend, name)
            if value < 1:
                raise ConfigError(f"trend.{name} must be >= 1, got {value}")
        if trend.min_points < 5:
            raise ConfigError(f"trend.min_points must be >= 5, got {trend.min_points}")
        if trend.direction_window < 2:
            raise ConfigError(f"trend.direction_window must be >= 2, got {trend.direction_window}")
        if trend.direction_deadband < 0:
            raise ConfigError(
                f"trend.direction_deadband must be >= 0, got {trend.direction_deadband}"
            )

        if self.cpu.ceiling_multiplier <= 0:
            raise ConfigError(
                f"cpu.ceiling_multiplier must be > 0, got {self.cpu.ceiling_multiplier}"
            )
        if not 0 < self.cpu.throttle_floor <= 1:
            raise ConfigError(
                f"cpu.throttle_floor must be in (0, 1], got {self.cpu.throttle_floor}"
            )
        if self.cpu.top_processes < 0:
            raise ConfigError(f"cpu.top_processes must be >= 0, got {self.cpu.top_processes}")

        if self.memory.swap_history_size < 2:
            raise ConfigError(
                f"memory.swap_history_size must be >= 2, got {self.memory.swap_history_size}"
            )
        for name in ("cache_band", "utilization_band"):
            low, high = getattr(self.memory, name)
            if not 0 < low <= high <= 100:
                raise ConfigError(f"memory.{name} must satisfy 0 < low <= high <= 100")

        if self.collector.sample_interval <= 0:
            raise ConfigError(
                f"collector.sample_interval must be > 0, got {self.collector.sample_interval}"
            )
        if self.collector.probe_timeout <= 0:
            raise ConfigError(
                f"collector.probe_timeout must be > 0, got {self.collector.probe_timeout}"
            )

        if self.weights.default_weight < 0:
            raise ConfigError("weights.default_weight must be >= 0")
        for category, patterns in self.weights.table.items():
            for pattern, weight in patterns.items():
                if weight < 0:
                    raise ConfigError(f"weights.table.{category}.{pattern} must be >= 0")

    def to_toml(self) -> str:
        """Render the full config as a TOML document."""
        doc = tomlkit.document()
        for name in SECTIONS:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())
        return tomlkit.dumps(doc)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_toml())

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.

        Raises:
            ConfigError: If the file is not valid TOML.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except TOMLKitError as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            system=_load_flat(SystemConfig, data.get("system", {})),
            collector=_load_flat(CollectorConfig, data.get("collector", {})),
            trend=_load_flat(TrendConfig, data.get("trend", {})),
            cpu=_load_flat(CpuConfig, data.get("cpu", {})),
            memory=_load_memory_config(data.get("memory", {})),
            weights=_load_weights_config(data.get("weights", {})),
        )


def _load_flat(cls: type, data: dict):
    """Load a flat dataclass section, using dataclass defaults for missing fields."""
    defaults = cls()
    return cls(**{f.name: data.get(f.name, getattr(defaults, f.name)) for f in fields(cls)})


def _load_memory_config(data: dict) -> MemoryConfig:
    """Load memory config, turning TOML arrays back into tuples."""
    config = _load_flat(MemoryConfig, data)
    config.cache_band = tuple(config.cache_band)
    config.utilization_band = tuple(config.utilization_band)
    config.oom_available_tiers = tuple(tuple(t) for t in config.oom_available_tiers)
    config.oom_swap_tiers = tuple(tuple(t) for t in config.oom_swap_tiers)
    return config


def _load_weights_config(data: dict) -> WeightsConfig:
    """Load weights config.

    A [weights.table] section replaces the default table entirely so that
    pattern order stays under the user's control.
    """
    config = _load_flat(WeightsConfig, data)
    table = data.get("table")
    if table is not None:
        config.table = {
            str(category): {str(p): float(w) for p, w in patterns.items()}
            for category, patterns in table.items()
        }
    return config
