"""Poll loop: collect -> evaluate -> publish at a fixed interval."""

import asyncio
import signal
from collections.abc import Callable

import structlog

from smart_metrics import logging as console
from smart_metrics.collector import SampleCollector, create_collector
from smart_metrics.config import Config
from smart_metrics.engine import MetricsSnapshot, SmartMetricsEngine

log = structlog.get_logger()

SnapshotCallback = Callable[[MetricsSnapshot], None]

# Pause after a failed cycle before retrying
FAILURE_BACKOFF = 1.0


class Sampler:
    """Runs the engine against a collector until stopped.

    The latest snapshot is published by replacing a single reference, so
    other tasks or threads can read last_snapshot without locking.
    """

    def __init__(
        self,
        config: Config,
        collector: SampleCollector | None = None,
        engine: SmartMetricsEngine | None = None,
        on_snapshot: SnapshotCallback | None = None,
        console_output: bool = False,
    ) -> None:
        self.config = config
        self.collector = collector or create_collector(config)
        self.engine = engine or SmartMetricsEngine(config)
        self.on_snapshot = on_snapshot
        self.console_output = console_output
        self.cycles = 0
        self.failures = 0
        self._last_snapshot: MetricsSnapshot | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def last_snapshot(self) -> MetricsSnapshot | None:
        return self._last_snapshot

    @property
    def running(self) -> bool:
        return not self._shutdown_event.is_set()

    def stop(self) -> None:
        """Request shutdown; the loop exits at its next wait point."""
        self._shutdown_event.set()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        if self.console_output:
            console.signal_received(sig.name)
            console.sampler_stopping()
        self.stop()

    async def _wait(self, timeout: float) -> bool:
        """Sleep up to timeout; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def cycle(self) -> MetricsSnapshot:
        """Collect and evaluate one sample, then publish it."""
        sample = await self.collector.collect()
        snapshot = self.engine.evaluate(sample)
        self._last_snapshot = snapshot

        if sample.degraded and self.console_output:
            console.probe_degraded(sorted(sample.degraded))
        if self.on_snapshot is not None:
            self.on_snapshot(snapshot)
        return snapshot

    async def run(self, count: int | None = None, handle_signals: bool = True) -> None:
        """Sample until stop(), SIGINT/SIGTERM, or count cycles have run.

        Each iteration sleeps for whatever remains of sample_interval. A
        failing cycle is logged and the loop carries on.
        """
        loop = asyncio.get_running_loop()
        interval = self.config.collector.sample_interval
        heartbeat_every = self.config.system.heartbeat_samples

        if handle_signals:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        log.info("sampler_started", platform=self.collector.platform, interval=interval)
        if self.console_output:
            console.sampler_started(self.collector.platform, interval)

        # Heartbeat accumulators
        beat_count = 0
        cpu_sum = 0.0
        memory_sum = 0.0

        try:
            while not self._shutdown_event.is_set():
                iteration_start = loop.time()
                try:
                    snapshot = await self.cycle()
                    self.cycles += 1

                    beat_count += 1
                    cpu_sum += snapshot.cpu.corrected_percent
                    memory_sum += snapshot.memory.pressure_score
                    if beat_count >= heartbeat_every:
                        self._heartbeat(cpu_sum / beat_count, memory_sum / beat_count)
                        beat_count = 0
                        cpu_sum = memory_sum = 0.0
                except asyncio.CancelledError:
                    log.info("sampler_cancelled")
                    raise
                except Exception as e:
                    self.cycles += 1
                    self.failures += 1
                    log.error("sample_failed", error=str(e))
                    if self.console_output:
                        console.sample_failed(str(e))
                    if count is not None and self.cycles >= count:
                        break
                    if await self._wait(FAILURE_BACKOFF):
                        break
                    continue

                if count is not None and self.cycles >= count:
                    break

                sleep_time = interval - (loop.time() - iteration_start)
                if sleep_time > 0 and await self._wait(sleep_time):
                    break
        finally:
            if handle_signals:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.remove_signal_handler(sig)
            log.info("sampler_stopped", cycles=self.cycles, failures=self.failures)
            if self.console_output:
                console.sampler_stopped(self.cycles)

    def _heartbeat(self, cpu_avg: float, memory_avg: float) -> None:
        log.info(
            "sampler_heartbeat",
            cycles=self.cycles,
            failures=self.failures,
            cpu_avg=round(cpu_avg, 1),
            memory_avg=round(memory_avg, 1),
        )
        if self.console_output:
            console.heartbeat(self.cycles, cpu_avg, memory_avg, self.failures)


async def take_snapshot(
    collector: SampleCollector,
    engine: SmartMetricsEngine,
    interval: float,
) -> MetricsSnapshot:
    """Collect two samples interval seconds apart and score the second.

    The first sample only primes the CPU tick delta and process CPU shares.
    """
    engine.evaluate(await collector.collect())
    await asyncio.sleep(interval)
    return engine.evaluate(await collector.collect())


async def run_sampler(
    config: Config | None = None,
    count: int | None = None,
    on_snapshot: SnapshotCallback | None = None,
    console_output: bool = True,
) -> Sampler:
    """Run a sampler until shutdown and return it for inspection.

    Args:
        config: Optional config, loads from file if not provided
        count: Stop after this many cycles
        on_snapshot: Called with every snapshot
        console_output: Print Rich status lines
    """
    if config is None:
        config = Config.load()

    sampler = Sampler(config, on_snapshot=on_snapshot, console_output=console_output)
    try:
        await sampler.run(count=count)
    except Exception as e:
        log.exception("sampler_crashed", error=str(e))
        raise
    return sampler
