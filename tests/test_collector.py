"""Tests for the probe-based collector base and process enumeration."""

import asyncio
import sys
import time
from typing import Any
from unittest.mock import MagicMock, patch

import psutil
import pytest

from smart_metrics.collector import (
    Probe,
    SampleCollector,
    create_collector,
    default_priority,
    list_processes,
)
from smart_metrics.config import Config
from smart_metrics.sample import RawSample


class FakeCollector(SampleCollector):
    """Collector whose probes are supplied by the test."""

    platform = "fake"

    def __init__(self, config: Config, probes: list[Probe]) -> None:
        super().__init__(config)
        self._probes = probes

    def probes(self) -> list[Probe]:
        return self._probes

    def build_sample(
        self,
        timestamp: float,
        results: dict[str, Any],
        degraded: frozenset[str],
    ) -> RawSample:
        self.results = results
        return RawSample(
            timestamp=timestamp,
            temperature_c=results.get("temperature"),
            load_average_1m=results.get("load"),
            platform=self.platform,
            degraded=degraded,
        )


def _raise(exc: Exception):
    def read():
        raise exc

    return read


@pytest.fixture
def fast_config() -> Config:
    config = Config()
    config.collector.probe_timeout = 0.05
    return config


class TestCollect:
    @pytest.mark.asyncio
    async def test_all_probes_succeed(self, fast_config: Config) -> None:
        collector = FakeCollector(
            fast_config,
            [Probe("temperature", lambda: 55.0), Probe("load", lambda: 0.5)],
        )
        sample = await collector.collect()
        assert sample.temperature_c == 55.0
        assert sample.load_average_1m == 0.5
        assert sample.degraded == frozenset()

    @pytest.mark.asyncio
    async def test_failed_probe_uses_default(self, fast_config: Config) -> None:
        collector = FakeCollector(
            fast_config,
            [
                Probe("temperature", _raise(OSError("no sensor")), None),
                Probe("load", lambda: 0.5),
            ],
        )
        sample = await collector.collect()
        assert sample.temperature_c is None
        assert sample.load_average_1m == 0.5
        assert sample.degraded == frozenset({"temperature"})

    @pytest.mark.asyncio
    async def test_psutil_error_uses_default(self, fast_config: Config) -> None:
        collector = FakeCollector(
            fast_config, [Probe("load", _raise(psutil.AccessDenied(pid=1)), 0.0)]
        )
        sample = await collector.collect()
        assert sample.load_average_1m == 0.0
        assert "load" in sample.degraded

    @pytest.mark.asyncio
    async def test_slow_probe_times_out(self, fast_config: Config) -> None:
        def slow() -> float:
            time.sleep(0.3)
            return 99.0

        collector = FakeCollector(
            fast_config,
            [Probe("temperature", slow, None), Probe("load", lambda: 1.0)],
        )
        start = time.monotonic()
        sample = await collector.collect()
        assert time.monotonic() - start < 0.25
        assert sample.temperature_c is None
        assert sample.load_average_1m == 1.0
        assert sample.degraded == frozenset({"temperature"})

    @pytest.mark.asyncio
    async def test_probes_run_concurrently(self) -> None:
        """Total time is bounded by the slowest probe, not the sum."""
        config = Config()
        config.collector.probe_timeout = 2.0

        def sleepy() -> int:
            time.sleep(0.1)
            return 1

        collector = FakeCollector(config, [Probe(f"p{i}", sleepy, 0) for i in range(4)])
        start = time.monotonic()
        await collector.collect()
        assert time.monotonic() - start < 0.35
        assert collector.results == {"p0": 1, "p1": 1, "p2": 1, "p3": 1}

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        config = Config()
        config.collector.probe_timeout = 2.0

        def slow() -> int:
            time.sleep(0.2)
            return 1

        collector = FakeCollector(config, [Probe("slow", slow, 0)])
        task = asyncio.create_task(collector.collect())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


class Vanished:
    """A process that exits between listing and reading."""

    @property
    def info(self):
        raise psutil.NoSuchProcess(9)


def _proc_info(pid: int, name: str | None, nice: int | None, uid: int, cpu: float = 1.0):
    proc = MagicMock()
    proc.info = {
        "pid": pid,
        "name": name,
        "nice": nice,
        "cpu_percent": cpu,
        "memory_percent": 0.5,
        "uids": MagicMock(real=uid),
    }
    return proc


class TestListProcesses:
    def test_builds_entries(self) -> None:
        procs = [
            _proc_info(1, "systemd", 0, 0),
            _proc_info(200, "firefox", 5, 1000, cpu=12.5),
        ]
        with patch("smart_metrics.collector.psutil.process_iter", return_value=procs):
            entries = list_processes()

        assert [e.pid for e in entries] == [1, 200]
        assert entries[0].privileged is True
        assert entries[1].privileged is False
        assert entries[1].priority == 25
        assert entries[1].cpu_percent == 12.5

    def test_missing_fields_defaulted(self) -> None:
        procs = [_proc_info(7, None, None, 1000, cpu=None)]
        with patch("smart_metrics.collector.psutil.process_iter", return_value=procs):
            (entry,) = list_processes()
        assert entry.command == "pid_7"
        assert entry.niceness == 0
        assert entry.cpu_percent == 0.0

    def test_vanished_process_skipped(self) -> None:
        procs = [Vanished(), _proc_info(1, "init", 0, 0)]
        with patch("smart_metrics.collector.psutil.process_iter", return_value=procs):
            entries = list_processes()
        assert [e.pid for e in entries] == [1]

    def test_custom_priority_lookup(self) -> None:
        procs = [_proc_info(42, "rt", -5, 0)]
        with patch("smart_metrics.collector.psutil.process_iter", return_value=procs):
            (entry,) = list_processes(lambda pid, nice: -51)
        assert entry.priority == -51

    def test_default_priority(self) -> None:
        assert default_priority(1, 0) == 20
        assert default_priority(1, -20) == 0


class TestCreateCollector:
    def test_linux(self) -> None:
        with patch.object(sys, "platform", "linux"):
            collector = create_collector(Config())
        assert collector.platform == "linux"

    def test_darwin(self) -> None:
        with patch.object(sys, "platform", "darwin"):
            collector = create_collector(Config())
        assert collector.platform == "darwin"

    def test_unsupported(self) -> None:
        with patch.object(sys, "platform", "win32"):
            with pytest.raises(RuntimeError, match="Unsupported platform"):
                create_collector(Config())
