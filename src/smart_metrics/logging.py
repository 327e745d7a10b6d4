"""Console output with Rich and structlog file configuration.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Core console functions (log, info, warn, error)
3. Domain helpers (sampler_started, snapshot_line, heartbeat, etc.)
4. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
stays separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

from smart_metrics.quality import PENALTY_TIERS
from smart_metrics.trend import Direction

if TYPE_CHECKING:
    from smart_metrics.config import Config
    from smart_metrics.engine import MetricsSnapshot

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    HEARTBEAT = "[magenta]♡[/]"
    SIGNAL = "⚡"
    SAMPLE = "[cyan]●[/]"
    DEGRADED = "[yellow]◌[/]"


_DIRECTION_ARROWS = {
    Direction.INCREASING: "[bright_red]↑[/]",
    Direction.STABLE: "[dim]→[/]",
    Direction.DECREASING: "[green]↓[/]",
}

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Styling Helpers
# ─────────────────────────────────────────────────────────────────────────────

_TIER_COLORS = ("bright_red", "bright_yellow", "yellow")


def score_color(score: float) -> str:
    """Rich color for a usage or pressure score (higher is worse).

    Uses the same thresholds as the quality score penalties.
    """
    for (threshold, _), color in zip(PENALTY_TIERS, _TIER_COLORS):
        if score > threshold:
            return color
    return "green"


def direction_arrow(direction: Direction) -> str:
    """Arrow markup for a trend direction."""
    return _DIRECTION_ARROWS[direction]


def _format_score(score: float) -> str:
    return f"[{score_color(score)}]{score:5.1f}%[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def sampler_started(platform: str, interval: float) -> None:
    """Log sampler startup."""
    info(f"Sampling [cyan]{platform}[/] every [cyan]{interval}s[/]", Icon.OK)


def sampler_stopping() -> None:
    """Log sampler shutdown initiated."""
    info("Sampler stopping...", Icon.WAIT)


def sampler_stopped(cycles: int) -> None:
    """Log sampler shutdown complete."""
    info(f"Sampler stopped [dim]({cycles} cycles)[/]", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def snapshot_line(snapshot: MetricsSnapshot) -> None:
    """One console line summarizing a snapshot."""
    cpu = snapshot.cpu
    mem = snapshot.memory
    cpu_arrow = direction_arrow(snapshot.cpu_trend.direction)
    mem_arrow = direction_arrow(snapshot.memory_trend.direction)
    parts = [
        f"cpu {_format_score(cpu.corrected_percent)} {cpu_arrow}"
        f" [dim](raw {cpu.raw_percent:.1f}%)[/]",
        f"mem {_format_score(mem.pressure_score)} {mem_arrow}"
        f" [dim](used {mem.used_percent:.1f}%)[/]",
        f"oom {_format_score(mem.oom_risk)}",
        f"[dim]quality {snapshot.cpu_quality:.0f}/{snapshot.memory_quality:.0f}[/]",
    ]
    if cpu.throttling_active:
        parts.append("[bright_red]throttled[/]")
    info("  ".join(parts), Icon.SAMPLE)


def snapshot_summary(snapshot: MetricsSnapshot) -> None:
    """Multi-line summary of a single snapshot."""
    cpu = snapshot.cpu
    mem = snapshot.memory
    info(
        f"[bold]CPU[/] {_format_score(cpu.corrected_percent)} corrected, "
        f"{cpu.raw_percent:.1f}% raw, weighted score {cpu.weighted_score:.1f} "
        f"[dim](freq x{cpu.frequency_factor:.2f}, thermal x{cpu.thermal_factor:.2f})[/]"
    )
    info(
        f"    efficiency {cpu.efficiency_score:.1f}, "
        f"scheduler pressure {cpu.scheduler_pressure:.1f}%, "
        f"quality {snapshot.cpu_quality:.0f}"
    )
    if cpu.governors:
        info(f"    governors [dim]{', '.join(sorted(set(cpu.governors)))}[/]")
    for proc in cpu.top_processes[:5]:
        info(
            f"    [cyan]{proc.command[:28]}[/] [dim]({proc.pid})[/] "
            f"{proc.cpu_percent:.1f}% x{proc.weight:.2f} [dim]{proc.category or '-'}[/]"
        )
    info(
        f"[bold]MEM[/] {_format_score(mem.pressure_score)} pressure, "
        f"{mem.used_percent:.1f}% used, oom risk {mem.oom_risk:.0f}, "
        f"quality {snapshot.memory_quality:.0f}"
    )
    info(
        f"    swap {mem.swap.usage_percent:.1f}%, "
        f"cache {mem.cache.total_cache_percent:.1f}%, "
        f"fragmentation {mem.fragmentation.fragmentation_percent:.1f}%, "
        f"efficiency {mem.efficiency.overall:.1f}"
    )
    if mem.compression is not None and mem.compression.compression_ratio is not None:
        info(
            f"    zram x{mem.compression.compression_ratio:.1f} "
            f"[dim]({mem.compression.space_saved_bytes // (1024 * 1024)} MiB saved)[/]"
        )
    if snapshot.unavailable:
        info(f"[dim]Unavailable: {', '.join(sorted(snapshot.unavailable))}[/]")


def probe_degraded(probes: list[str]) -> None:
    """Log collector probes that fell back to defaults."""
    warn(f"Probes degraded: [yellow]{', '.join(probes)}[/]", Icon.DEGRADED)


def heartbeat(cycles: int, cpu_avg: float, memory_avg: float, failures: int) -> None:
    """Log periodic heartbeat stats."""
    info(
        f"cpu avg {_format_score(cpu_avg)}, mem avg {_format_score(memory_avg)}, "
        f"[dim]{cycles} cycles, {failures} failed[/]",
        Icon.HEARTBEAT,
    )


def sample_failed(error_msg: str) -> None:
    """Log sample collection failed."""
    error(f"Sample failed: {error_msg}", Icon.FAIL)


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


def config_exists(path: str) -> None:
    """Log config file left untouched."""
    warn(f"Config already exists at [cyan]{path}[/] [dim](use --force)[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, debug: bool = False) -> None:
    """Configure structlog to write JSON Lines to a rotating file.

    Console output is handled by the Rich helpers above.

    Args:
        config: Application config with paths and rotation limits
        debug: Also record debug events (degraded probes, unavailable signals)
    """
    level = logging.DEBUG if debug else logging.INFO

    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("sampler"),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(level)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("sampler"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
