"""Tests for caller-side usage deltas."""

from datetime import datetime
from unittest.mock import patch

import pytest

from procscope.device_usage import AmdgpuStats, AmdxdnaStats, I915Stats, NvidiaStats
from procscope.usage import (
    cpu_fraction,
    decoder_fraction,
    encoder_fraction,
    gpu_fraction,
    gpu_memory_usage,
    npu_fraction,
    npu_memory_usage,
    read_speed,
    started_at,
    write_speed,
)
from tests.conftest import make_snapshot


class TestCpuFraction:
    """CPU share of the whole machine."""

    def test_first_sample(self, ctx) -> None:
        assert cpu_fraction(make_snapshot(), None, ctx) == 0.0

    def test_one_full_core(self, ctx) -> None:
        # 100 ticks/s, 4 CPUs: 100 ticks in 1s is one core out of four
        old = make_snapshot(user_cpu_time=100, system_cpu_time=0, timestamp=1000)
        new = make_snapshot(user_cpu_time=150, system_cpu_time=50, timestamp=2000)
        assert cpu_fraction(new, old, ctx) == pytest.approx(0.25)

    def test_zero_elapsed(self, ctx) -> None:
        old = make_snapshot(timestamp=1000)
        new = make_snapshot(user_cpu_time=500, timestamp=1000)
        assert cpu_fraction(new, old, ctx) == 0.0


class TestIoSpeed:
    """Disk read/write rates."""

    def test_bytes_per_second(self) -> None:
        old = make_snapshot(read_bytes=1000, write_bytes=0, timestamp=0)
        new = make_snapshot(read_bytes=3000, write_bytes=500, timestamp=500)
        assert read_speed(new, old) == pytest.approx(4000.0)
        assert write_speed(new, old) == pytest.approx(1000.0)

    def test_unavailable_counter(self) -> None:
        new = make_snapshot(read_bytes=None, write_bytes=None)
        assert read_speed(new, make_snapshot()) is None
        assert write_speed(new, None) is None

    def test_no_previous_sample(self) -> None:
        assert read_speed(make_snapshot(), None) == 0.0


class TestGpuSums:
    """Per-device fractions summed across devices."""

    def test_sums_devices_present_in_both(self) -> None:
        old = make_snapshot(
            timestamp=0,
            gpu_usage_stats={
                "a": AmdgpuStats(gfx_ns=0, enc_ns=0, dec_ns=0),
                "b": I915Stats(gfx_ns=0, video_ns=0),
            },
        )
        new = make_snapshot(
            timestamp=1000,
            gpu_usage_stats={
                "a": AmdgpuStats(gfx_ns=200_000_000, enc_ns=100_000_000, dec_ns=50_000_000),
                "b": I915Stats(gfx_ns=300_000_000, video_ns=100_000_000),
                "c": AmdgpuStats(gfx_ns=900_000_000),
            },
        )
        assert gpu_fraction(new, old) == pytest.approx(0.5)
        assert encoder_fraction(new, old) == pytest.approx(0.2)
        assert decoder_fraction(new, old) == pytest.approx(0.05)

    def test_unavailable_counts_as_zero(self) -> None:
        old = make_snapshot(timestamp=1000, gpu_usage_stats={"a": AmdgpuStats()})
        new = make_snapshot(timestamp=1000, gpu_usage_stats={"a": AmdgpuStats(gfx_ns=10)})
        assert gpu_fraction(new, old) == 0.0

    def test_memory_skips_families_without_counter(self) -> None:
        snapshot = make_snapshot(
            gpu_usage_stats={
                "a": AmdgpuStats(mem_bytes=100),
                "b": I915Stats(),
                "c": NvidiaStats(mem_bytes=50),
            }
        )
        assert gpu_memory_usage(snapshot) == 150


class TestNpuSums:
    """NPU fractions and memory."""

    def test_fraction_and_memory(self) -> None:
        old = make_snapshot(timestamp=0, npu_usage_stats={"n": AmdxdnaStats(0, 10)})
        new = make_snapshot(
            timestamp=1000, npu_usage_stats={"n": AmdxdnaStats(100_000_000, 4096)}
        )
        assert npu_fraction(new, old) == pytest.approx(0.1)
        assert npu_memory_usage(new) == 4096
        assert npu_fraction(new, None) == 0.0


class TestStartedAt:
    """Process start time."""

    def test_boot_time_plus_ticks(self, ctx) -> None:
        snapshot = make_snapshot(starttime=500)
        with patch("procscope.usage.psutil.boot_time", return_value=1_700_000_000.0):
            assert started_at(snapshot, ctx) == datetime.fromtimestamp(1_700_000_005.0)
