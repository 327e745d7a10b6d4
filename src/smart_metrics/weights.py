"""Process importance weighting.

Maps a process command, kernel priority and niceness onto a multiplier used
by the CPU engine. The table is a plain ordered list of rules; the first
pattern contained in the lowercased command wins.
"""

from dataclasses import dataclass

from smart_metrics.config import WeightsConfig
from smart_metrics.sample import ProcessEntry


@dataclass(frozen=True)
class WeightRule:
    """A single (category, pattern, weight) entry of the weight table."""

    category: str
    pattern: str
    weight: float


@dataclass(frozen=True)
class ProcessWeight:
    """Weight derived for one process in one sample."""

    category: str | None  # None when no pattern matched
    pattern: str | None
    base_weight: float
    weight: float


class WeightTable:
    """Ordered weight rules plus the priority/niceness/privilege adjustments."""

    def __init__(self, config: WeightsConfig) -> None:
        self.config = config
        self.rules: tuple[WeightRule, ...] = tuple(
            WeightRule(category=category, pattern=pattern.lower(), weight=weight)
            for category, patterns in config.table.items()
            for pattern, weight in patterns.items()
        )

    def __len__(self) -> int:
        return len(self.rules)

    def match(self, command: str) -> WeightRule | None:
        """Return the first rule whose pattern is a substring of command."""
        command = command.lower()
        for rule in self.rules:
            if rule.pattern in command:
                return rule
        return None

    def classify(
        self,
        command: str,
        priority: int,
        niceness: int,
        privileged: bool = False,
    ) -> ProcessWeight:
        """Compute the importance weight of a process.

        Adjustments are applied in a fixed order: priority, niceness, privilege.

        Args:
            command: Process command name (matched case-insensitively)
            priority: Kernel priority (<0 realtime, >20 deprioritized)
            niceness: Nice value (-20..19)
            privileged: True if owned by a privileged/system account

        Returns:
            ProcessWeight with the matched rule and final weight (always >= 0)
        """
        cfg = self.config
        rule = self.match(command)
        base = rule.weight if rule else cfg.default_weight
        weight = base

        if priority < 0:
            weight *= cfg.realtime_multiplier
        elif priority > cfg.low_priority_threshold:
            weight *= cfg.low_priority_multiplier

        if niceness < 0:
            weight *= 1.0 + abs(niceness) * cfg.negative_nice_step
        elif niceness > 0:
            weight *= 1.0 - niceness * cfg.positive_nice_step

        if privileged:
            weight *= cfg.privileged_multiplier

        return ProcessWeight(
            category=rule.category if rule else None,
            pattern=rule.pattern if rule else None,
            base_weight=base,
            weight=max(0.0, weight),
        )

    def weigh(self, process: ProcessEntry) -> ProcessWeight:
        """Classify a collected process."""
        return self.classify(
            process.command,
            process.priority,
            process.niceness,
            process.privileged,
        )
