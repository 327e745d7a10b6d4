"""Tests for procfs/sysfs parsing and the Linux collector."""

from pathlib import Path
from unittest.mock import patch

import pytest

from smart_metrics.config import Config
from smart_metrics.linux import (
    LinuxCollector,
    parse_buddyinfo,
    parse_loadavg,
    parse_meminfo,
    parse_pid_stat,
    parse_pressure,
    parse_proc_stat,
    parse_vmstat,
    read_frequency,
    read_compression,
    read_power_state,
    read_temperature,
)
from smart_metrics.sample import CpuTimes

PROC_STAT = """\
cpu  200 0 50 950 10 0 5 0 0 0
cpu0 120 0 30 450 5 0 3 0 0 0
cpu1 80 0 20 500 5 0 2 0 0 0
intr 12345 0 0
ctxt 999
btime 1700000000
"""

MEMINFO = """\
MemTotal:       16384000 kB
MemFree:         2048000 kB
MemAvailable:    8192000 kB
Buffers:          512000 kB
Cached:          4096000 kB
SwapCached:        10240 kB
Dirty:              1024 kB
Writeback:             0 kB
Slab:             819200 kB
SwapTotal:       4096000 kB
SwapFree:        3072000 kB
HugePages_Total:       8
HugePages_Free:        6
Hugepagesize:       2048 kB
"""

VMSTAT = """\
nr_free_pages 512000
pgfault 100000
pgmajfault 250
pswpin 10
pswpout 20
allocstall_dma 1
allocstall_normal 4
allocstall_movable 2
numa_hit 9000
numa_miss 1000
numa_foreign 30
pgalloc_dma 100
pgalloc_dma32 400
pgalloc_normal 9500
pgalloc_movable 0
compact_migrate_scanned 2048
compact_success 12
"""

PRESSURE = """\
some avg10=1.50 avg60=2.25 avg300=0.75 total=123456
full avg10=0.50 avg60=1.00 avg300=0.25 total=65432
"""

BUDDYINFO = """\
Node 0, zone      DMA      1      1      0      0      2      1      1      0      1      1      3
Node 0, zone    DMA32      4      6      5      4      4      4      3      2      2      1    400
Node 0, zone   Normal   1046    527    128     36     17      5     26     40     13     16    940
"""

PID_STAT = (
    "1234 (my (odd) cmd) S 1 1234 1234 0 -1 4194560 500 0 0 0 10 5 0 0 "
    "25 5 1 0 100 1000000 200 18446744073709551615"
)


def _write(root: Path, relative: str, text: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


@pytest.fixture
def procfs(tmp_path: Path) -> Path:
    """A minimal /proc tree."""
    root = tmp_path / "proc"
    _write(root, "stat", PROC_STAT)
    _write(root, "meminfo", MEMINFO)
    _write(root, "vmstat", VMSTAT)
    _write(root, "pressure/memory", PRESSURE)
    _write(root, "buddyinfo", BUDDYINFO)
    _write(root, "loadavg", "1.25 0.80 0.50 2/345 6789\n")
    return root


@pytest.fixture
def sysfs(tmp_path: Path) -> Path:
    """A minimal /sys tree: two thermal zones, two cpufreq cores, zswap and one zram."""
    root = tmp_path / "sys"
    _write(root, "class/thermal/thermal_zone0/temp", "0\n")
    _write(root, "class/thermal/thermal_zone1/temp", "67500\n")
    for cpu, cur in (("cpu0", 1200000), ("cpu1", 2400000)):
        _write(root, f"devices/system/cpu/{cpu}/cpufreq/scaling_cur_freq", f"{cur}\n")
        _write(root, f"devices/system/cpu/{cpu}/cpufreq/cpuinfo_max_freq", "3600000\n")
        _write(root, f"devices/system/cpu/{cpu}/cpufreq/scaling_governor", "powersave\n")
    _write(root, "module/zswap/parameters/enabled", "Y\n")
    _write(root, "block/zram0/mm_stat", "8192 2048 4096 0 4096 0 0 0 0\n")
    return root


class TestParsers:
    def test_proc_stat(self) -> None:
        aggregate, cores = parse_proc_stat(PROC_STAT)
        assert aggregate == CpuTimes(user=200, system=50, idle=950, iowait=10, softirq=5)
        assert len(cores) == 2
        assert cores[0].user == 120
        assert cores[1].idle == 500

    def test_proc_stat_short_lines(self) -> None:
        """Old kernels report fewer columns."""
        aggregate, _ = parse_proc_stat("cpu 1 2 3 4\n")
        assert aggregate == CpuTimes(user=1, nice=2, system=3, idle=4)

    def test_meminfo(self) -> None:
        memory = parse_meminfo(MEMINFO)
        assert memory.total == 16384000 * 1024
        assert memory.available == 8192000 * 1024
        assert memory.slab == 819200 * 1024
        assert memory.swap_used == 1024000 * 1024
        assert memory.hugepages_total == 8
        assert memory.hugepages_free == 6

    def test_vmstat(self) -> None:
        vm = parse_vmstat(VMSTAT, page_size=4096)
        assert vm.page_faults == 100000
        assert vm.major_faults == 250
        assert vm.swapped_in_bytes == 10 * 4096
        assert vm.swapped_out_bytes == 20 * 4096
        assert vm.alloc_stalls == 7
        assert vm.numa_hit == 9000
        assert vm.numa_foreign == 30
        assert vm.pages_allocated == 10000
        assert vm.alloc_failures == 0
        assert vm.compact_scanned == 2048
        assert vm.compact_success == 12

    def test_vmstat_allocation_failures(self) -> None:
        vm = parse_vmstat("pgalloc_normal 90\npgalloc_fail 10\n")
        assert vm.pages_allocated == 90
        assert vm.alloc_failures == 10

    def test_meminfo_zero_available_is_kept(self) -> None:
        memory = parse_meminfo("MemTotal: 1000 kB\nMemFree: 400 kB\nMemAvailable: 0 kB\n")
        assert memory.available == 0
        assert memory.effective_available == 0

    def test_meminfo_without_available_falls_back_to_free(self) -> None:
        memory = parse_meminfo("MemTotal: 1000 kB\nMemFree: 400 kB\n")
        assert memory.available is None
        assert memory.effective_available == 400 * 1024

    def test_pressure(self) -> None:
        stall = parse_pressure(PRESSURE)
        assert stall is not None
        assert stall.some.avg60 == 2.25
        assert stall.some.total == 123456
        assert stall.full is not None
        assert stall.full.avg60 == 1.0

    def test_pressure_without_full_line(self) -> None:
        stall = parse_pressure("some avg10=0.00 avg60=0.10 avg300=0.00 total=1\n\n")
        assert stall is not None
        assert stall.full is None

    def test_pressure_empty(self) -> None:
        assert parse_pressure("") is None

    def test_buddyinfo_sums_zones(self) -> None:
        buddy = parse_buddyinfo(BUDDYINFO)
        assert list(buddy) == [0]
        counts = buddy[0]
        assert len(counts) == 11
        assert counts[0] == 1 + 4 + 1046
        assert counts[10] == 3 + 400 + 940

    def test_buddyinfo_multiple_nodes(self) -> None:
        text = "Node 0, zone Normal 1 2\nNode 1, zone Normal 3 4\n"
        assert parse_buddyinfo(text) == {0: (1, 2), 1: (3, 4)}

    def test_loadavg(self) -> None:
        assert parse_loadavg("1.25 0.80 0.50 2/345 6789\n") == 1.25

    def test_pid_stat_with_parens_in_command(self) -> None:
        assert parse_pid_stat(PID_STAT) == (25, 5)


class TestSysfs:
    def test_temperature_skips_zero_zones(self, sysfs: Path) -> None:
        assert read_temperature(sysfs) == pytest.approx(67.5)

    def test_temperature_missing(self, tmp_path: Path) -> None:
        assert read_temperature(tmp_path) is None

    def test_frequency_averaged(self, sysfs: Path) -> None:
        reading = read_frequency(sysfs)
        assert reading is not None
        assert reading.current_hz == pytest.approx(1.8e9)
        assert reading.max_hz == pytest.approx(3.6e9)

    def test_frequency_missing(self, tmp_path: Path) -> None:
        assert read_frequency(tmp_path) is None

    def test_compression(self, sysfs: Path) -> None:
        counters = read_compression(sysfs)
        assert counters is not None
        assert counters.zswap_enabled is True
        assert counters.zram_devices == 1
        assert counters.zram_original_bytes == 8192
        assert counters.zram_compressed_bytes == 2048

    def test_compression_legacy_zram_files(self, tmp_path: Path) -> None:
        _write(tmp_path, "block/zram0/orig_data_size", "3000\n")
        _write(tmp_path, "block/zram0/compr_data_size", "1000\n")
        counters = read_compression(tmp_path)
        assert counters.zswap_enabled is None
        assert counters.zram_original_bytes == 3000
        assert counters.zram_compressed_bytes == 1000

    def test_compression_missing(self, tmp_path: Path) -> None:
        assert read_compression(tmp_path) is None

    def test_power_state_governors_in_core_order(self, tmp_path: Path) -> None:
        for cpu, governor in (("cpu10", "performance"), ("cpu2", "schedutil")):
            _write(tmp_path, f"devices/system/cpu/{cpu}/cpufreq/scaling_governor", governor)
        power = read_power_state(tmp_path)
        assert power.frequency_scaling is True
        assert power.governors == ("schedutil", "performance")

    def test_power_state_without_cpufreq(self, tmp_path: Path) -> None:
        (tmp_path / "devices" / "system" / "cpu" / "cpu0").mkdir(parents=True)
        power = read_power_state(tmp_path)
        assert power.frequency_scaling is False
        assert power.governors == ()


class TestLinuxCollector:
    @pytest.fixture
    def collector(self, procfs: Path, sysfs: Path) -> LinuxCollector:
        config = Config()
        config.collector.procfs_root = str(procfs)
        config.collector.sysfs_root = str(sysfs)
        return LinuxCollector(config)

    @pytest.mark.asyncio
    async def test_collect(self, collector: LinuxCollector) -> None:
        with patch("smart_metrics.linux.list_processes", return_value=()):
            sample = await collector.collect()

        assert sample.platform == "linux"
        assert sample.degraded == frozenset()
        assert sample.cpu.user == 200
        assert sample.core_count == 2
        assert sample.memory.total == 16384000 * 1024
        assert sample.vm.alloc_stalls == 7
        assert sample.pressure is not None
        assert sample.fragmentation[0][0] == 1051
        assert sample.temperature_c == pytest.approx(67.5)
        assert sample.frequency is not None
        assert sample.load_average_1m == 1.25
        assert sample.vm.pages_allocated == 10000
        assert sample.compression is not None
        assert sample.compression.zram_devices == 1
        assert sample.power.governors == ("powersave", "powersave")

    @pytest.mark.asyncio
    async def test_missing_files_degrade(self, collector: LinuxCollector, procfs: Path) -> None:
        """Unreadable files fall back to neutral defaults instead of failing."""
        (procfs / "buddyinfo").unlink()
        (procfs / "loadavg").unlink()
        (procfs / "pressure" / "memory").unlink()

        with patch("smart_metrics.linux.list_processes", return_value=()):
            sample = await collector.collect()

        assert sample.degraded == frozenset({"fragmentation", "load_average"})
        assert sample.fragmentation == {}
        assert sample.load_average_1m is None
        # No PSI support is a missing signal, not a failure
        assert sample.pressure is None

    def test_priority_from_pid_stat(self, collector: LinuxCollector, procfs: Path) -> None:
        _write(procfs, "1234/stat", PID_STAT)
        assert collector._priority(1234, 5) == 25

    def test_priority_falls_back_to_nice(self, collector: LinuxCollector) -> None:
        assert collector._priority(99999, -5) == 15
