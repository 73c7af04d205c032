"""Caller-side usage figures from two consecutive snapshots of one process.

Snapshots are raw cumulative counters. The caller keeps the previous tick's
snapshot and pairs it by pid; these functions turn a pair into rates.
``old`` is None on the first tick a process is seen.
"""

from datetime import datetime

import psutil

from procscope.config import ProbeContext
from procscope.device_usage import (
    dec_fraction,
    enc_fraction,
    gfx_fraction,
    gpu_memory,
    npu_memory,
    npu_usage_fraction,
    saturating_sub,
)
from procscope.models import ProcessSnapshot


def elapsed_ms(new: ProcessSnapshot, old: ProcessSnapshot) -> int:
    """Milliseconds between two samples (0 if the clock went backwards)."""
    return saturating_sub(new.timestamp, old.timestamp)


def cpu_fraction(new: ProcessSnapshot, old: ProcessSnapshot | None, ctx: ProbeContext) -> float:
    """Share of total machine CPU used between the samples (0.0 to 1.0)."""
    if old is None or old.cpu_time == 0:
        return 0.0
    delta_ticks = saturating_sub(new.cpu_time, old.cpu_time)
    denominator = elapsed_ms(new, old) * ctx.clock_ticks * ctx.num_cpus
    if denominator == 0:
        return 0.0
    return delta_ticks * 1000 / denominator


def _speed(new_bytes: int | None, old_bytes: int | None, dt_ms: int) -> float | None:
    if new_bytes is None or old_bytes is None:
        return None
    if dt_ms == 0:
        return 0.0
    return saturating_sub(new_bytes, old_bytes) / dt_ms * 1000


def read_speed(new: ProcessSnapshot, old: ProcessSnapshot | None) -> float | None:
    """Disk read bytes per second, or None if /proc/<pid>/io was unreadable."""
    if new.read_bytes is None:
        return None
    if old is None:
        return 0.0
    return _speed(new.read_bytes, old.read_bytes, elapsed_ms(new, old))


def write_speed(new: ProcessSnapshot, old: ProcessSnapshot | None) -> float | None:
    """Disk write bytes per second, or None if /proc/<pid>/io was unreadable."""
    if new.write_bytes is None:
        return None
    if old is None:
        return 0.0
    return _speed(new.write_bytes, old.write_bytes, elapsed_ms(new, old))


def _sum_gpu(new: ProcessSnapshot, old: ProcessSnapshot | None, fraction) -> float:
    if old is None:
        return 0.0
    dt = elapsed_ms(new, old)
    total = 0.0
    for device, stats in new.gpu_usage_stats.items():
        previous = old.gpu_usage_stats.get(device)
        if previous is not None:
            total += fraction(stats, previous, dt) or 0.0
    return total


def gpu_fraction(new: ProcessSnapshot, old: ProcessSnapshot | None) -> float:
    """Graphics busy fraction summed over every GPU seen in both samples."""
    return _sum_gpu(new, old, gfx_fraction)


def encoder_fraction(new: ProcessSnapshot, old: ProcessSnapshot | None) -> float:
    return _sum_gpu(new, old, enc_fraction)


def decoder_fraction(new: ProcessSnapshot, old: ProcessSnapshot | None) -> float:
    return _sum_gpu(new, old, dec_fraction)


def gpu_memory_usage(snapshot: ProcessSnapshot) -> int:
    """GPU memory in bytes across all devices; families without the counter add 0."""
    return sum(gpu_memory(stats) or 0 for stats in snapshot.gpu_usage_stats.values())


def npu_fraction(new: ProcessSnapshot, old: ProcessSnapshot | None) -> float:
    if old is None:
        return 0.0
    dt = elapsed_ms(new, old)
    total = 0.0
    for device, stats in new.npu_usage_stats.items():
        previous = old.npu_usage_stats.get(device)
        if previous is not None:
            total += npu_usage_fraction(stats, previous, dt) or 0.0
    return total


def npu_memory_usage(snapshot: ProcessSnapshot) -> int:
    return sum(npu_memory(stats) or 0 for stats in snapshot.npu_usage_stats.values())


def started_at(snapshot: ProcessSnapshot, ctx: ProbeContext) -> datetime:
    """Wall-clock start time of the process (boot time plus starttime ticks)."""
    return datetime.fromtimestamp(psutil.boot_time() + snapshot.starttime / ctx.clock_ticks)
