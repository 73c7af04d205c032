"""Per-process accelerator counters from DRM fdinfo.

Every open DRM/accel file descriptor has a ``/proc/<pid>/fdinfo/<fd>`` entry
with ``key: value`` lines. The ``drm-driver`` key decides which counter
family applies; the remaining keys hold busy time, cycles and memory.

Only descriptors pointing into /dev/dri or /dev/accel are read. Several
descriptors may point at one device; each target is read once and readings
of one device fold together with ``greater``.
"""

import os
import re
from pathlib import Path

import structlog

from procscope.config import ProbeContext
from procscope.device_usage import (
    AmdgpuStats,
    AmdxdnaStats,
    GpuUsageStats,
    I915Stats,
    NpuUsageStats,
    V3dStats,
    XeStats,
    greater,
    npu_greater,
)

log = structlog.get_logger()

DRM_DRIVER = "drm-driver"
DRM_PDEV = "drm-pdev"
DEFAULT_DEVICE = "0"
DEVICE_PREFIXES = ("/dev/dri/", "/dev/accel/")

GFX_NS_FIELDS = {
    "amdgpu": ["drm-engine-compute", "drm-engine-gfx"],
    "i915": ["drm-engine-render"],
    "v3d": ["drm-engine-render"],
}
ENC_NS_FIELDS = {
    "amdgpu": ["drm-engine-enc"],
    "i915": ["drm-engine-video"],
}
DEC_NS_FIELDS = {"amdgpu": ["drm-engine-dec"]}
NPU_NS_FIELDS = {"amdxdna_accel_driver": ["drm-engine-npu-amdxdna"]}

XE_GFX_CYCLES = ["drm-cycles-rcs"]
XE_GFX_TOTAL_CYCLES = ["drm-total-cycles-rcs"]
XE_VIDEO_CYCLES = ["drm-cycles-vcs"]
XE_VIDEO_TOTAL_CYCLES = ["drm-total-cycles-vcs"]

MEM_FIELDS = {
    "amdgpu": ["drm-memory-gtt", "drm-memory-vram"],
    "amdxdna_accel_driver": ["drm-total-memory"],
    "v3d": ["drm-total-memory"],
    "xe": ["drm-total-gtt", "drm-total-vram0"],
}


def parse_fdinfo(text: str) -> dict[str, str]:
    """Parse fdinfo ``key: value`` lines into a dict."""
    content = {}
    for line in text.splitlines():
        name, sep, value = line.partition(":")
        if sep:
            content[name.strip()] = value.strip()
    return content


def sum_fields(content: dict[str, str], names: list[str], pattern: re.Pattern) -> int:
    """Sum the first number matched by ``pattern`` across the named fields."""
    total = 0
    for name in names:
        value = content.get(name)
        if value is None:
            continue
        match = pattern.search(value)
        if match:
            total += int(match.group(1))
    return total


def gpu_stats_from_fdinfo(
    content: dict[str, str], ctx: ProbeContext
) -> tuple[str, GpuUsageStats] | None:
    """Turn one parsed fdinfo into (device, sample), or None if it's not a GPU."""
    driver = content.get(DRM_DRIVER)
    if driver is None:
        return None

    p = ctx.patterns
    device = content.get(DRM_PDEV, DEFAULT_DEVICE)
    mem_names = MEM_FIELDS.get(driver, [])

    def mem() -> int:
        return sum_fields(content, mem_names, p.drm_kib) * 1024

    def ns(table: dict[str, list[str]]) -> int:
        return sum_fields(content, table.get(driver, []), p.drm_ns)

    stats: GpuUsageStats
    if driver == "amdgpu":
        stats = AmdgpuStats(
            gfx_ns=ns(GFX_NS_FIELDS),
            enc_ns=ns(ENC_NS_FIELDS),
            dec_ns=ns(DEC_NS_FIELDS),
            mem_bytes=mem(),
        )
    elif driver == "i915":
        stats = I915Stats(gfx_ns=ns(GFX_NS_FIELDS), video_ns=ns(ENC_NS_FIELDS))
    elif driver == "v3d":
        stats = V3dStats(gfx_ns=ns(GFX_NS_FIELDS), mem_bytes=mem())
    elif driver == "xe":
        stats = XeStats(
            gfx_cycles=sum_fields(content, XE_GFX_CYCLES, p.drm_units),
            gfx_total_cycles=sum_fields(content, XE_GFX_TOTAL_CYCLES, p.drm_units),
            video_cycles=sum_fields(content, XE_VIDEO_CYCLES, p.drm_units),
            video_total_cycles=sum_fields(content, XE_VIDEO_TOTAL_CYCLES, p.drm_units),
            mem_bytes=mem(),
        )
    else:
        return None
    return device, stats


def npu_stats_from_fdinfo(
    content: dict[str, str], ctx: ProbeContext
) -> tuple[str, NpuUsageStats] | None:
    """Turn one parsed fdinfo into (device, sample), or None if it's not an NPU."""
    driver = content.get(DRM_DRIVER)
    if driver != "amdxdna_accel_driver":
        return None

    p = ctx.patterns
    device = content.get(DRM_PDEV, DEFAULT_DEVICE)
    stats = AmdxdnaStats(
        usage_ns=sum_fields(content, NPU_NS_FIELDS[driver], p.drm_ns),
        mem_bytes=sum_fields(content, MEM_FIELDS[driver], p.drm_kib) * 1024,
    )
    return device, stats


def _device_fdinfos(proc_path: Path) -> list[dict[str, str]]:
    """Read fdinfo for each distinct DRM/accel target the process holds open."""
    fd_dir = proc_path / "fd"
    fdinfo_dir = proc_path / "fdinfo"
    seen_targets: set[str] = set()
    result = []

    for fd in os.listdir(fd_dir):
        try:
            target = os.readlink(fd_dir / fd)
        except OSError:
            continue  # fd closed since listing
        if not target.startswith(DEVICE_PREFIXES) or target in seen_targets:
            continue
        seen_targets.add(target)
        try:
            text = (fdinfo_dir / fd).read_text()
        except OSError:
            continue
        result.append(parse_fdinfo(text))

    return result


def collect_device_stats(
    proc_path: Path, ctx: ProbeContext
) -> tuple[dict[str, GpuUsageStats], dict[str, NpuUsageStats]]:
    """Gather GPU and NPU samples for one process.

    Unreadable fd directories (other users' processes, exited processes)
    yield empty maps rather than an error.
    """
    gpu: dict[str, GpuUsageStats] = {}
    npu: dict[str, NpuUsageStats] = {}

    try:
        fdinfos = _device_fdinfos(proc_path)
    except OSError as e:
        log.debug("fdinfo_unreadable", path=str(proc_path), error=str(e))
        return gpu, npu

    for content in fdinfos:
        gpu_entry = gpu_stats_from_fdinfo(content, ctx)
        if gpu_entry is not None:
            device, stats = gpu_entry
            gpu[device] = greater(gpu[device], stats) if device in gpu else stats
            continue
        npu_entry = npu_stats_from_fdinfo(content, ctx)
        if npu_entry is not None:
            device, npu_stats = npu_entry
            npu[device] = npu_greater(npu[device], npu_stats) if device in npu else npu_stats

    return gpu, npu
