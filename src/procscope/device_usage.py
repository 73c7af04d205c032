"""Per-process GPU and NPU counter samples and the math on top of them.

Every vendor driver exposes a different set of counters, so each family is
its own frozen dataclass and ``GpuUsageStats`` is the closed union of them.
Three fraction schemes exist:

- nanosecond-busy (amdgpu, i915, v3d, amdxdna): busy-time delta divided by
  the elapsed wall time.
- instant-percentage (nvidia): the driver already reports a percentage, no
  previous sample needed.
- cycle-ratio (xe): busy-cycle delta divided by total-cycle delta.

A fraction that cannot be computed is ``None``. Samples of different
families never combine; that is "unavailable", not an error.
"""

from dataclasses import dataclass, fields
from typing import Union

NS_PER_MS = 1_000_000


@dataclass(frozen=True)
class AmdgpuStats:
    """amdgpu: busy nanoseconds with separate encode and decode engines."""

    gfx_ns: int = 0
    enc_ns: int = 0
    dec_ns: int = 0
    mem_bytes: int = 0


@dataclass(frozen=True)
class I915Stats:
    """i915: busy nanoseconds, one unified video engine, no memory counter."""

    gfx_ns: int = 0
    video_ns: int = 0


@dataclass(frozen=True)
class NvidiaStats:
    """NVIDIA: instantaneous utilization percentages (0-100)."""

    gfx_percentage: int = 0
    enc_percentage: int = 0
    dec_percentage: int = 0
    mem_bytes: int = 0

    def __post_init__(self) -> None:
        for name in ("gfx_percentage", "enc_percentage", "dec_percentage"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within 0..100, got {value}")


@dataclass(frozen=True)
class V3dStats:
    """v3d (Raspberry Pi): busy nanoseconds, no media engine."""

    gfx_ns: int = 0
    mem_bytes: int = 0


@dataclass(frozen=True)
class XeStats:
    """xe: busy and total cycle counters per engine class."""

    gfx_cycles: int = 0
    gfx_total_cycles: int = 0
    video_cycles: int = 0
    video_total_cycles: int = 0
    mem_bytes: int = 0


GpuUsageStats = Union[AmdgpuStats, I915Stats, NvidiaStats, V3dStats, XeStats]


@dataclass(frozen=True)
class AmdxdnaStats:
    """AMD XDNA NPU: busy nanoseconds."""

    usage_ns: int = 0
    mem_bytes: int = 0


NpuUsageStats = AmdxdnaStats


def saturating_sub(a: int, b: int) -> int:
    """Return a - b, floored at zero (counters may reset)."""
    return a - b if a > b else 0


def _ns_fraction(new_ns: int, old_ns: int, elapsed_ms: int) -> float | None:
    if elapsed_ms <= 0:
        return None
    return saturating_sub(new_ns, old_ns) / (elapsed_ms * NS_PER_MS)


def _cycle_fraction(new_busy: int, old_busy: int, new_total: int, old_total: int) -> float | None:
    total_delta = saturating_sub(new_total, old_total)
    if total_delta == 0:
        return None
    return saturating_sub(new_busy, old_busy) / total_delta


def _percentage_fraction(percentage: int) -> float:
    return percentage / 100


# ─────────────────────────────────────────────────────────────────────────────
# GPU
# ─────────────────────────────────────────────────────────────────────────────


def gfx_fraction(new: GpuUsageStats, old: GpuUsageStats, elapsed_ms: int) -> float | None:
    """Graphics engine busy fraction between two samples of one device."""
    if isinstance(new, AmdgpuStats) and isinstance(old, AmdgpuStats):
        return _ns_fraction(new.gfx_ns, old.gfx_ns, elapsed_ms)
    if isinstance(new, I915Stats) and isinstance(old, I915Stats):
        return _ns_fraction(new.gfx_ns, old.gfx_ns, elapsed_ms)
    if isinstance(new, V3dStats) and isinstance(old, V3dStats):
        return _ns_fraction(new.gfx_ns, old.gfx_ns, elapsed_ms)
    if isinstance(new, NvidiaStats) and isinstance(old, NvidiaStats):
        return _percentage_fraction(new.gfx_percentage)
    if isinstance(new, XeStats) and isinstance(old, XeStats):
        return _cycle_fraction(
            new.gfx_cycles, old.gfx_cycles, new.gfx_total_cycles, old.gfx_total_cycles
        )
    return None


def enc_fraction(new: GpuUsageStats, old: GpuUsageStats, elapsed_ms: int) -> float | None:
    """Video encode busy fraction.

    Families with a unified media engine report that engine here.
    """
    if isinstance(new, AmdgpuStats) and isinstance(old, AmdgpuStats):
        return _ns_fraction(new.enc_ns, old.enc_ns, elapsed_ms)
    if isinstance(new, I915Stats) and isinstance(old, I915Stats):
        return _ns_fraction(new.video_ns, old.video_ns, elapsed_ms)
    if isinstance(new, NvidiaStats) and isinstance(old, NvidiaStats):
        return _percentage_fraction(new.enc_percentage)
    if isinstance(new, XeStats) and isinstance(old, XeStats):
        return _cycle_fraction(
            new.video_cycles, old.video_cycles, new.video_total_cycles, old.video_total_cycles
        )
    return None


def dec_fraction(new: GpuUsageStats, old: GpuUsageStats, elapsed_ms: int) -> float | None:
    """Video decode busy fraction.

    i915 only has a unified video engine, which is already reported as
    encode, so decode is 0. xe reports its video engine for both.
    """
    if isinstance(new, AmdgpuStats) and isinstance(old, AmdgpuStats):
        return _ns_fraction(new.dec_ns, old.dec_ns, elapsed_ms)
    if isinstance(new, I915Stats) and isinstance(old, I915Stats):
        return 0.0
    if isinstance(new, NvidiaStats) and isinstance(old, NvidiaStats):
        return _percentage_fraction(new.dec_percentage)
    if isinstance(new, XeStats) and isinstance(old, XeStats):
        return _cycle_fraction(
            new.video_cycles, old.video_cycles, new.video_total_cycles, old.video_total_cycles
        )
    return None


def gpu_memory(stats: GpuUsageStats) -> int | None:
    """Device memory in bytes, or None for families without the counter."""
    if isinstance(stats, I915Stats):
        return None
    if isinstance(stats, (AmdgpuStats, NvidiaStats, V3dStats, XeStats)):
        return stats.mem_bytes
    raise TypeError(f"Not a GPU usage sample: {stats!r}")


def _fieldwise_max(a, b):
    return type(a)(**{f.name: max(getattr(a, f.name), getattr(b, f.name)) for f in fields(a)})


def greater(a: GpuUsageStats, b: GpuUsageStats) -> GpuUsageStats:
    """Fieldwise maximum of two samples of the same family.

    Used to fold several fdinfo readings of one physical device into a
    conservative upper bound. Mismatched families return ``a`` unchanged.
    """
    if type(a) is not type(b):
        return a
    return _fieldwise_max(a, b)


# ─────────────────────────────────────────────────────────────────────────────
# NPU
# ─────────────────────────────────────────────────────────────────────────────


def npu_usage_fraction(new: NpuUsageStats, old: NpuUsageStats, elapsed_ms: int) -> float | None:
    """NPU busy fraction between two samples of one device."""
    if isinstance(new, AmdxdnaStats) and isinstance(old, AmdxdnaStats):
        return _ns_fraction(new.usage_ns, old.usage_ns, elapsed_ms)
    return None


def npu_memory(stats: NpuUsageStats) -> int | None:
    """NPU memory in bytes."""
    return stats.mem_bytes


def npu_greater(a: NpuUsageStats, b: NpuUsageStats) -> NpuUsageStats:
    """Fieldwise maximum of two NPU samples."""
    if type(a) is not type(b):
        return a
    return _fieldwise_max(a, b)
